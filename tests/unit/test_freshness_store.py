"""Unit tests for the persisted freshness store."""

from __future__ import annotations

import datetime as dt
import os
import typing as typ

import pytest

from repodeck.sync.freshness import FreshnessStore

if typ.TYPE_CHECKING:
    from pathlib import Path

    from tests.helpers.fakes import FakeClock

_TTL = dt.timedelta(minutes=30)


def test_unknown_key_is_not_fresh(freshness_store: FreshnessStore) -> None:
    """A key without a record always needs a fetch."""
    assert freshness_store.is_fresh("personal:abc", _TTL) is False


@pytest.mark.asyncio
async def test_mark_fetched_then_fresh_until_ttl_passes(
    freshness_store: FreshnessStore, clock: FakeClock
) -> None:
    """A fetch stays fresh for exactly the TTL."""
    assert await freshness_store.mark_fetched("personal:abc") is None

    assert freshness_store.is_fresh("personal:abc", dt.timedelta(seconds=1))
    clock.advance(_TTL)
    assert freshness_store.is_fresh("personal:abc", _TTL), "Boundary is inclusive."
    clock.advance(dt.timedelta(seconds=1))
    assert not freshness_store.is_fresh("personal:abc", _TTL)


@pytest.mark.asyncio
async def test_records_survive_a_restart(
    freshness_store: FreshnessStore, clock: FakeClock
) -> None:
    """A new store on the same file sees earlier fetches."""
    await freshness_store.mark_fetched("search:q")

    reopened = FreshnessStore(freshness_store.path, clock=clock)

    assert reopened.restore() is None
    assert reopened.last_fetched("search:q") == clock.now()
    assert reopened.is_fresh("search:q", dt.timedelta(seconds=90))


def test_restore_reads_eagerly(tmp_path: Path, clock: FakeClock) -> None:
    """Restore loads the document before the first check."""
    path = tmp_path / "freshness.json"
    path.write_text(
        '{"version": 1, "fetched": {"personal:abc": "2026-10-17T09:00:00Z"}}',
        encoding="utf-8",
    )
    store = FreshnessStore(path, clock=clock)

    assert store.restore() is None
    path.unlink()

    assert store.last_fetched("personal:abc") == clock.now()


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
@pytest.mark.asyncio
async def test_file_is_private(freshness_store: FreshnessStore) -> None:
    """The document is readable by its owner only."""
    await freshness_store.mark_fetched("personal:abc")

    assert freshness_store.path.stat().st_mode & 0o777 == 0o600


def test_corrupt_file_is_an_empty_store(tmp_path: Path, clock: FakeClock) -> None:
    """Unreadable documents are treated as empty and reported."""
    path = tmp_path / "freshness.json"
    path.write_text("{not json", encoding="utf-8")
    store = FreshnessStore(path, clock=clock)

    error = store.restore()

    assert error is not None
    assert error.operation == "read"
    assert store.is_fresh("personal:abc", _TTL) is False


@pytest.mark.asyncio
async def test_failed_write_leaves_key_stale(tmp_path: Path, clock: FakeClock) -> None:
    """A record that could not be persisted is not reported as fresh."""
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = FreshnessStore(blocker / "freshness.json", clock=clock)

    error = await store.mark_fetched("personal:abc")

    assert error is not None, "Expected the write failure to be returned."
    assert error.operation == "write"
    assert store.is_fresh("personal:abc", _TTL) is False


@pytest.mark.asyncio
async def test_invalidate_and_clear(
    freshness_store: FreshnessStore, clock: FakeClock
) -> None:
    """Invalidated keys go stale; clear removes the file."""
    await freshness_store.mark_fetched("starred:a")
    clock.advance(dt.timedelta(seconds=5))
    await freshness_store.mark_fetched("personal:b")

    assert list(freshness_store.entries()) == ["starred:a", "personal:b"]
    assert await freshness_store.invalidate("starred:a") is None
    assert not freshness_store.is_fresh("starred:a", _TTL)
    assert freshness_store.clear() is None
    assert not freshness_store.path.exists()
    assert freshness_store.entries() == {}
