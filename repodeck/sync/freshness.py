"""Persisted freshness records for repository list queries.

The store maps a freshness key (see :func:`repodeck.sync.query.freshness_key`)
to the time of the last successful first-page network fetch for that query.
It answers a single question: may the cached result be reused?

The document lives in one JSON file::

    {"version": 1, "fetched": {"personal:3f2a...": "2026-10-17T09:12:00Z"}}

A missing, unreadable or corrupt file is an empty store. Writes run in a
worker thread, like the object cache's flushes. Failed writes are logged and
reported to the caller, and the affected key is treated as stale.
"""

from __future__ import annotations

import asyncio
import datetime as dt  # noqa: TC003 - msgspec resolves annotations at runtime
import typing as typ

import msgspec

from repodeck.common.time import Clock, SystemClock
from repodeck.logging import get_logger, log_debug, log_warning

from ._files import read_bytes, remove_file, write_private_bytes
from .errors import PersistenceError

if typ.TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

_DOCUMENT_VERSION = 1


class _FreshnessDocument(msgspec.Struct, kw_only=True):
    version: int = _DOCUMENT_VERSION
    fetched: dict[str, dt.datetime] = msgspec.field(default_factory=dict)


class FreshnessStore:
    """Key to last-fetch timestamp map with per-call TTL checks.

    Parameters
    ----------
    path
        JSON document holding the records. Read lazily on first use.
    clock
        Time source; tests pass a fake clock to simulate TTL expiry.

    """

    def __init__(self, path: Path, *, clock: Clock | None = None) -> None:
        """Bind the store to its file; nothing is read until first use."""
        self._path = path
        self._clock = clock or SystemClock()
        self._fetched: dict[str, dt.datetime] | None = None
        self.last_error: PersistenceError | None = None

    @property
    def path(self) -> Path:
        """Return the backing file path."""
        return self._path

    def _records(self) -> dict[str, dt.datetime]:
        if self._fetched is None:
            self._fetched = self._load()
        return self._fetched

    def restore(self) -> PersistenceError | None:
        """Read the document now instead of on first use.

        Call it at startup, next to
        :meth:`~repodeck.sync.object_cache.NormalizedObjectCache.restore`, so
        no later check reads the file from inside the event loop.
        """
        self.last_error = None
        self._fetched = self._load()
        return self.last_error

    def _load(self) -> dict[str, dt.datetime]:
        try:
            payload = read_bytes(self._path)
            if payload is None:
                return {}
            document = msgspec.json.decode(payload, type=_FreshnessDocument)
        except (OSError, msgspec.DecodeError) as exc:
            self.last_error = PersistenceError.from_exception(self._path, "read", exc)
            log_warning(
                logger,
                "Freshness store unreadable, treating as empty: %s",
                self.last_error,
            )
            return {}
        return dict(document.fetched)

    async def _save(self) -> PersistenceError | None:
        payload = msgspec.json.encode(_FreshnessDocument(fetched=self._records()))
        try:
            await asyncio.to_thread(write_private_bytes, self._path, payload)
        except OSError as exc:
            error = PersistenceError.from_exception(self._path, "write", exc)
            self.last_error = error
            log_warning(logger, "Freshness store write failed: %s", error)
            return error
        return None

    def is_fresh(self, key: str, ttl: dt.timedelta) -> bool:
        """Return ``True`` when ``key`` was fetched no longer than ``ttl`` ago."""
        fetched_at = self._records().get(key)
        if fetched_at is None:
            return False
        return self._clock.now() - fetched_at <= ttl

    def last_fetched(self, key: str) -> dt.datetime | None:
        """Return the recorded fetch time for ``key``, if any."""
        return self._records().get(key)

    def entries(self) -> dict[str, dt.datetime]:
        """Return a copy of every record, oldest first."""
        return dict(sorted(self._records().items(), key=lambda item: item[1]))

    async def mark_fetched(self, key: str) -> PersistenceError | None:
        """Record a successful fetch of ``key`` now and persist the store.

        When the write fails the in-memory record is dropped again, so the
        next check for ``key`` forces a network fetch.
        """
        fetched_at = self._clock.now()
        records = self._records()
        records[key] = fetched_at
        error = await self._save()
        if error is not None:
            records.pop(key, None)
            return error
        log_debug(logger, "Marked %s fetched at %s", key, fetched_at.isoformat())
        return None

    async def invalidate(self, key: str) -> PersistenceError | None:
        """Forget ``key`` so its next first-page fetch goes to the network."""
        records = self._records()
        if records.pop(key, None) is None:
            return None
        return await self._save()

    def clear(self) -> PersistenceError | None:
        """Drop every record and delete the backing file."""
        self._fetched = {}
        try:
            remove_file(self._path)
        except OSError as exc:
            error = PersistenceError.from_exception(self._path, "remove", exc)
            self.last_error = error
            log_warning(logger, "Freshness store removal failed: %s", error)
            return error
        return None
