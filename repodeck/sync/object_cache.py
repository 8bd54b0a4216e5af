"""Normalized, persisted cache of repository records.

Each repository is stored once, keyed by its node id, no matter how many
queries returned it. Query results are stored separately as *cached pages*:
an ordered tuple of ids plus the page info for one (freshness key, cursor)
pair. A page can only be served when every id it references is present, so
evicting a record invalidates any page that still points at it until
:meth:`NormalizedObjectCache.garbage_collect` strips the dangling reference.

Persistence
-----------
The whole store is serialized to a single JSON document::

    {"version": 1, "records": {"R_1": {...}}, "pages": {"personal:...@": {...}}}

Writes are debounced: the first change schedules a flush ``debounce``
seconds later on the running event loop and later changes coalesce into it.
The document is capped at ``max_bytes``; when it would be larger, the least
recently written records (and pages referencing them) are left out of the
file while staying available in memory. Every persistence failure is logged
and returned, never raised.
"""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

import msgspec

from repodeck.github.models import PageResult, RepositoryRecord
from repodeck.logging import get_logger, log_debug, log_info, log_warning

from ._files import read_bytes, remove_file, write_private_bytes
from .errors import PersistenceError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

logger = get_logger(__name__)

_SNAPSHOT_VERSION = 1
_DEFAULT_MAX_BYTES = 5 * 1024 * 1024
_DEFAULT_DEBOUNCE_S = 0.5
# Bytes a JSON object member adds beyond its key and value: quotes, colon, comma.
_MEMBER_OVERHEAD = 4

type FieldPatch = cabc.Mapping[str, cabc.Callable[[typ.Any], typ.Any]]


def apply_field_patch(record: RepositoryRecord, patch: FieldPatch) -> RepositoryRecord:
    """Return a copy of ``record`` with each patched field recomputed."""
    changes = {name: update(getattr(record, name)) for name, update in patch.items()}
    return msgspec.structs.replace(record, **changes)


class CachedPage(msgspec.Struct, kw_only=True, frozen=True):
    """Ids and page info of one cached query page."""

    ids: tuple[str, ...]
    end_cursor: str | None
    has_next_page: bool
    total_count: int


class _Snapshot(msgspec.Struct, kw_only=True):
    version: int = _SNAPSHOT_VERSION
    records: dict[str, msgspec.Raw] = msgspec.field(default_factory=dict)
    pages: dict[str, CachedPage] = msgspec.field(default_factory=dict)


@dataclasses.dataclass(frozen=True, slots=True)
class CacheStats:
    """Counts describing the in-memory cache."""

    records: int
    pages: int
    dirty: bool


class NormalizedObjectCache:
    """Entity-keyed repository store shared by every list source.

    Parameters
    ----------
    path
        JSON document backing the cache.
    max_bytes
        Upper bound for the on-disk document.
    debounce
        Seconds to wait after the first unsaved change before flushing.

    """

    def __init__(
        self,
        path: Path,
        *,
        max_bytes: int = _DEFAULT_MAX_BYTES,
        debounce: float = _DEFAULT_DEBOUNCE_S,
    ) -> None:
        """Create an empty cache bound to ``path``; call :meth:`restore` to load."""
        self._path = path
        self._max_bytes = max_bytes
        self._debounce = debounce
        self._records: dict[str, RepositoryRecord] = {}
        self._pages: dict[str, CachedPage] = {}
        self._dirty = False
        self._flush_task: asyncio.Task[PersistenceError | None] | None = None
        self.last_error: PersistenceError | None = None

    @property
    def path(self) -> Path:
        """Return the backing file path."""
        return self._path

    def stats(self) -> CacheStats:
        """Return record/page counts and whether unsaved changes exist."""
        return CacheStats(
            records=len(self._records), pages=len(self._pages), dirty=self._dirty
        )

    def __contains__(self, repository_id: object) -> bool:
        """Return ``True`` when a record with this id is cached."""
        return repository_id in self._records

    # -- loading -----------------------------------------------------------

    def restore(self) -> PersistenceError | None:
        """Load the persisted document, replacing the in-memory contents.

        Records that no longer decode as a :class:`RepositoryRecord` (for
        example, partially written data missing required fields) are skipped.
        A missing file is not an error; an unreadable one leaves the cache
        empty and is reported.
        """
        self._records = {}
        self._pages = {}
        try:
            payload = read_bytes(self._path)
            if payload is None:
                return None
            snapshot = msgspec.json.decode(payload, type=_Snapshot)
        except (OSError, msgspec.DecodeError) as exc:
            return self._report(
                PersistenceError.from_exception(self._path, "read", exc)
            )

        skipped = 0
        for repository_id, raw in snapshot.records.items():
            try:
                record = msgspec.json.decode(raw, type=RepositoryRecord)
            except msgspec.DecodeError:
                skipped += 1
                continue
            if record.id == repository_id:
                self._records[repository_id] = record
            else:
                skipped += 1
        self._pages = dict(snapshot.pages)
        log_info(
            logger,
            "Restored object cache from %s: records=%d pages=%d skipped=%d",
            self._path,
            len(self._records),
            len(self._pages),
            skipped,
        )
        return None

    # -- records -----------------------------------------------------------

    def read_record(self, repository_id: str) -> RepositoryRecord | None:
        """Return the cached record for ``repository_id`` without network I/O."""
        return self._records.get(repository_id)

    def write_record(self, record: RepositoryRecord) -> None:
        """Upsert ``record`` as the most recently written entry."""
        self._records.pop(record.id, None)
        self._records[record.id] = record
        self._mark_dirty()

    def write_records(self, records: cabc.Iterable[RepositoryRecord]) -> None:
        """Upsert several records, preserving their order as write order."""
        for record in records:
            self._records.pop(record.id, None)
            self._records[record.id] = record
        self._mark_dirty()

    def patch_fields(
        self, repository_id: str, patch: FieldPatch
    ) -> RepositoryRecord | None:
        """Apply per-field update functions to a cached record.

        Each callable receives the field's current value and returns the new
        one, so deltas such as ``{"stargazer_count": lambda n: n + 1}`` apply
        to whatever the cache currently holds.

        Returns
        -------
        RepositoryRecord | None
            The replacement record, or ``None`` when the id is not cached
            (it may already have been evicted by a delete).

        """
        record = self._records.get(repository_id)
        if record is None:
            log_debug(logger, "Patch skipped for uncached repository %s", repository_id)
            return None
        patched = apply_field_patch(record, patch)
        self.write_record(patched)
        return patched

    def evict(self, repository_id: str) -> bool:
        """Remove a record; return ``True`` when something was removed."""
        if self._records.pop(repository_id, None) is None:
            return False
        self._mark_dirty()
        return True

    def _strip_pages(
        self, drop: cabc.Callable[[str], bool], *, key_prefix: str = ""
    ) -> int:
        removed = 0
        for key, page in list(self._pages.items()):
            if not key.startswith(key_prefix):
                continue
            live = tuple(rid for rid in page.ids if not drop(rid))
            dropped = len(page.ids) - len(live)
            if dropped:
                removed += dropped
                self._pages[key] = msgspec.structs.replace(
                    page, ids=live, total_count=max(0, page.total_count - dropped)
                )
        if removed:
            self._mark_dirty()
        return removed

    def garbage_collect(self) -> int:
        """Strip ids of evicted records from cached pages.

        Returns the number of dangling references removed. Each removal also
        lowers the page's ``total_count`` so a later cache-first read agrees
        with the lists the reconciler already adjusted.
        """
        return self._strip_pages(lambda rid: rid not in self._records)

    def remove_from_pages(self, repository_id: str, *, key_prefix: str = "") -> int:
        """Drop ``repository_id`` from pages whose key starts with ``key_prefix``.

        Used when a record stays cached but no longer belongs to some
        queries, such as a repository made private under a public-only
        filter. Returns the number of pages changed.
        """
        return self._strip_pages(
            lambda rid: rid == repository_id, key_prefix=key_prefix
        )

    # -- pages -------------------------------------------------------------

    def write_page(self, key: str, page: PageResult) -> None:
        """Store every node of ``page`` and the page itself under ``key``."""
        self.write_records(page.nodes)
        self._pages.pop(key, None)
        self._pages[key] = CachedPage(
            ids=tuple(node.id for node in page.nodes),
            end_cursor=page.end_cursor,
            has_next_page=page.has_next_page,
            total_count=page.total_count,
        )
        self._mark_dirty()

    def read_page(self, key: str) -> PageResult | None:
        """Rebuild a cached page, or ``None`` when any referenced record is gone."""
        page = self._pages.get(key)
        if page is None:
            return None
        nodes: list[RepositoryRecord] = []
        for repository_id in page.ids:
            record = self._records.get(repository_id)
            if record is None:
                return None
            nodes.append(record)
        return PageResult(
            nodes=tuple(nodes),
            end_cursor=page.end_cursor,
            has_next_page=page.has_next_page,
            total_count=page.total_count,
            from_cache=True,
        )

    # -- persistence -------------------------------------------------------

    def _report(self, error: PersistenceError) -> PersistenceError:
        self.last_error = error
        log_warning(logger, "Object cache persistence failed: %s", error)
        return error

    def _mark_dirty(self) -> None:
        self._dirty = True
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside an event loop changes wait for an explicit flush().
            return
        self._flush_task = loop.create_task(self._flush_after_debounce())

    async def _flush_after_debounce(self) -> PersistenceError | None:
        await asyncio.sleep(self._debounce)
        return await self.flush()

    def encode_snapshot(self) -> bytes:
        """Serialize the cache, leaving out the oldest entries beyond the cap."""
        encoded = {rid: msgspec.json.encode(rec) for rid, rec in self._records.items()}
        pages = {key: msgspec.json.encode(page) for key, page in self._pages.items()}

        def member_size(key: str, value: bytes) -> int:
            return len(key) + len(value) + _MEMBER_OVERHEAD

        size = sum(member_size(k, v) for k, v in encoded.items())
        size += sum(member_size(k, v) for k, v in pages.items())
        dropped: set[str] = set()
        for repository_id, value in list(encoded.items()):
            if size <= self._max_bytes:
                break
            size -= member_size(repository_id, value)
            del encoded[repository_id]
            dropped.add(repository_id)

        kept_pages: dict[str, CachedPage] = {}
        for key, page in self._pages.items():
            if dropped.intersection(page.ids):
                continue
            kept_pages[key] = page
        for key in list(kept_pages):
            if size <= self._max_bytes:
                break
            size -= member_size(key, pages[key])
            del kept_pages[key]

        if dropped:
            log_debug(
                logger,
                "Object cache over %d bytes; left %d oldest records out of the file",
                self._max_bytes,
                len(dropped),
            )
        snapshot = _Snapshot(
            records={rid: msgspec.Raw(value) for rid, value in encoded.items()},
            pages=kept_pages,
        )
        return msgspec.json.encode(snapshot)

    async def flush(self) -> PersistenceError | None:
        """Write pending changes to disk now."""
        if not self._dirty:
            return None
        payload = self.encode_snapshot()
        self._dirty = False
        try:
            await asyncio.to_thread(write_private_bytes, self._path, payload)
        except OSError as exc:
            self._dirty = True
            return self._report(
                PersistenceError.from_exception(self._path, "write", exc)
            )
        log_debug(
            logger, "Flushed object cache (%d bytes) to %s", len(payload), self._path
        )
        return None

    async def aclose(self) -> PersistenceError | None:
        """Cancel any scheduled flush and write pending changes."""
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()
        return await self.flush()

    def purge(self) -> PersistenceError | None:
        """Empty the cache and delete its file."""
        self._records = {}
        self._pages = {}
        self._dirty = False
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()
        try:
            remove_file(self._path)
        except OSError as exc:
            return self._report(
                PersistenceError.from_exception(self._path, "remove", exc)
            )
        return None


__all__ = [
    "CacheStats",
    "CachedPage",
    "FieldPatch",
    "NormalizedObjectCache",
    "apply_field_patch",
]
