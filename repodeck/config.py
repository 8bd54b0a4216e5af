"""Configuration for the repository list engine.

Usage
-----
Create a configuration with defaults:

>>> config = EngineConfig()
>>> config.page_size
15

Or load from environment variables:

>>> import os
>>> os.environ["REPODECK_SEARCH_TTL_SECONDS"] = "30"
>>> EngineConfig.from_env().search_ttl
datetime.timedelta(seconds=30)

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import os
from pathlib import Path

OBJECT_CACHE_FILENAME = "object-cache.json"
FRESHNESS_FILENAME = "freshness.json"


def _default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "repodeck"


@dc.dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunables for caching, pagination and windowing.

    Attributes
    ----------
    data_dir
        Directory holding the object cache and freshness documents.
    page_size
        Repositories requested per page.
    list_ttl, search_ttl
        How long a first-page fetch stays fresh for browse lists and for
        search results. Search results go stale sooner.
    prefetch_threshold
        Fraction of the loaded items the cursor must reach before the next
        page is requested.
    overscan
        Rows rendered beyond each edge of the visible area.
    cache_max_bytes
        Upper bound for the object cache document on disk.
    cache_debounce
        Delay between the first unsaved cache change and the write.

    """

    data_dir: Path = dc.field(default_factory=_default_data_dir)
    page_size: int = 15
    list_ttl: dt.timedelta = dt.timedelta(minutes=30)
    search_ttl: dt.timedelta = dt.timedelta(seconds=90)
    prefetch_threshold: float = 0.8
    overscan: int = 2
    cache_max_bytes: int = 5 * 1024 * 1024
    cache_debounce: dt.timedelta = dt.timedelta(milliseconds=500)

    @property
    def object_cache_path(self) -> Path:
        """Return the object cache document path."""
        return self.data_dir / OBJECT_CACHE_FILENAME

    @property
    def freshness_path(self) -> Path:
        """Return the freshness document path."""
        return self.data_dir / FRESHNESS_FILENAME

    @staticmethod
    def _parse_int(env_var: str, default: int, *, minimum: int = 1) -> int:
        """Read an integer env var no smaller than ``minimum``."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < minimum:
            msg = f"{env_var} must be at least {minimum}, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _parse_ratio(env_var: str, default: float) -> float:
        """Read a float env var in ``(0, 1]``."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            msg = f"{env_var} must be a number, got: {raw!r}"
            raise ValueError(msg) from exc
        if not 0 < value <= 1:
            msg = f"{env_var} must be in (0, 1], got: {value}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Create configuration from ``REPODECK_*`` environment variables.

        Reads ``REPODECK_DATA_DIR``, ``REPODECK_PAGE_SIZE``,
        ``REPODECK_LIST_TTL_SECONDS``, ``REPODECK_SEARCH_TTL_SECONDS``,
        ``REPODECK_PREFETCH_THRESHOLD``, ``REPODECK_OVERSCAN``,
        ``REPODECK_CACHE_MAX_BYTES`` and ``REPODECK_CACHE_DEBOUNCE_MS``.
        Unset or blank variables keep their defaults.

        Raises
        ------
        ValueError
            If a variable is set to an unparseable or out-of-range value.

        """
        defaults = cls()
        raw_data_dir = os.environ.get("REPODECK_DATA_DIR", "").strip()
        data_dir = (
            Path(raw_data_dir).expanduser() if raw_data_dir else defaults.data_dir
        )

        list_ttl_s = cls._parse_int(
            "REPODECK_LIST_TTL_SECONDS", int(defaults.list_ttl.total_seconds())
        )
        search_ttl_s = cls._parse_int(
            "REPODECK_SEARCH_TTL_SECONDS", int(defaults.search_ttl.total_seconds())
        )
        debounce_ms = cls._parse_int(
            "REPODECK_CACHE_DEBOUNCE_MS",
            int(defaults.cache_debounce.total_seconds() * 1000),
            minimum=0,
        )
        return cls(
            data_dir=data_dir,
            page_size=cls._parse_int("REPODECK_PAGE_SIZE", defaults.page_size),
            list_ttl=dt.timedelta(seconds=list_ttl_s),
            search_ttl=dt.timedelta(seconds=search_ttl_s),
            prefetch_threshold=cls._parse_ratio(
                "REPODECK_PREFETCH_THRESHOLD", defaults.prefetch_threshold
            ),
            overscan=cls._parse_int(
                "REPODECK_OVERSCAN", defaults.overscan, minimum=0
            ),
            cache_max_bytes=cls._parse_int(
                "REPODECK_CACHE_MAX_BYTES", defaults.cache_max_bytes
            ),
            cache_debounce=dt.timedelta(milliseconds=debounce_ms),
        )


__all__ = ["FRESHNESS_FILENAME", "OBJECT_CACHE_FILENAME", "EngineConfig"]
