"""Unit tests for per-source page accumulation."""

from __future__ import annotations

import asyncio
import dataclasses
import datetime as dt

import msgspec
import pytest

from repodeck.github.errors import GitHubAPIError
from repodeck.sync.accumulator import PageAccumulator
from repodeck.sync.freshness import FreshnessStore
from repodeck.sync.query import (
    FetchPolicy,
    QuerySpecification,
    SortDirection,
    SourceKind,
    freshness_key,
)
from tests.helpers.fakes import (
    FakeClock,
    FakeNetworkClient,
    RecordingTransport,
    make_record,
)

_SPEC = QuerySpecification(source=SourceKind.PERSONAL, viewer_login="octo")
_TTL = dt.timedelta(minutes=30)


@pytest.fixture
def transport(network_client: FakeNetworkClient) -> RecordingTransport:
    """Serve 40 personal repositories in pages of 15."""
    network_client.serve(
        SourceKind.PERSONAL, [make_record(n) for n in range(40)], page_size=15
    )
    return RecordingTransport(network_client)


@pytest.fixture
def accumulator(
    transport: RecordingTransport, freshness_store: FreshnessStore
) -> PageAccumulator:
    """Provide a personal accumulator with the default query."""
    acc = PageAccumulator(SourceKind.PERSONAL, transport, freshness_store, ttl=_TTL)
    acc.set_query(_SPEC)
    return acc


@pytest.mark.asyncio
async def test_first_fetch_without_record_goes_to_network(
    accumulator: PageAccumulator,
    transport: RecordingTransport,
    freshness_store: FreshnessStore,
    clock: FakeClock,
) -> None:
    """No freshness record forces network-only and records the fetch."""
    page = await accumulator.fetch_page()

    assert page is not None
    assert transport.policies == [FetchPolicy.NETWORK_ONLY]
    assert freshness_store.last_fetched(freshness_key(_SPEC)) == clock.now()
    assert len(accumulator.items) == 15
    assert accumulator.state.total_count == 40
    assert accumulator.state.has_next_page is True
    assert accumulator.loading is False


@pytest.mark.asyncio
async def test_second_fetch_within_ttl_is_cache_first(
    accumulator: PageAccumulator,
    transport: RecordingTransport,
    freshness_store: FreshnessStore,
    clock: FakeClock,
) -> None:
    """A fresh key resolves cache-first and leaves the timestamp alone."""
    await accumulator.fetch_page()
    fetched_at = freshness_store.last_fetched(freshness_key(_SPEC))
    clock.advance(dt.timedelta(seconds=10))

    page = await accumulator.fetch_page(reset=True)

    assert page is not None
    assert page.from_cache is True
    assert transport.policies[-1] is FetchPolicy.CACHE_FIRST
    assert freshness_store.last_fetched(freshness_key(_SPEC)) == fetched_at


@pytest.mark.asyncio
async def test_expired_key_refetches(
    accumulator: PageAccumulator, transport: RecordingTransport, clock: FakeClock
) -> None:
    """Past the TTL the first page goes back to the network."""
    await accumulator.fetch_page()
    clock.advance(_TTL + dt.timedelta(seconds=1))

    await accumulator.fetch_page(reset=True)

    assert transport.policies == [FetchPolicy.NETWORK_ONLY, FetchPolicy.NETWORK_ONLY]


@pytest.mark.asyncio
async def test_next_pages_append_in_server_order(
    accumulator: PageAccumulator,
) -> None:
    """Pages are appended until the connection is exhausted."""
    await accumulator.fetch_page()
    await accumulator.fetch_next_page()
    await accumulator.fetch_next_page()

    assert [item.id for item in accumulator.items] == [f"R_{n}" for n in range(40)]
    assert accumulator.state.has_next_page is False
    assert await accumulator.fetch_next_page() is None


@pytest.mark.asyncio
async def test_failure_leaves_state_untouched(
    accumulator: PageAccumulator, network_client: FakeNetworkClient
) -> None:
    """Transport errors propagate and the accumulated items survive."""
    await accumulator.fetch_page()
    before = accumulator.items
    network_client.error = GitHubAPIError.http_error(502)

    with pytest.raises(GitHubAPIError):
        await accumulator.fetch_next_page()

    assert accumulator.items == before
    assert accumulator.state.end_cursor == "cursor-1"
    assert accumulator.loading is False


@pytest.mark.asyncio
async def test_next_page_while_loading_is_ignored(
    accumulator: PageAccumulator, network_client: FakeNetworkClient
) -> None:
    """Only one fetch per source may be in flight."""
    await accumulator.fetch_page()
    hold = asyncio.Event()
    network_client.hold_next = hold
    in_flight = asyncio.create_task(accumulator.fetch_next_page())
    await asyncio.sleep(0)

    assert accumulator.loading is True
    assert await accumulator.fetch_page("cursor-1") is None

    hold.set()
    assert await in_flight is not None
    assert len(accumulator.items) == 30


@pytest.mark.asyncio
async def test_reset_supersedes_in_flight_fetch(
    accumulator: PageAccumulator, network_client: FakeNetworkClient
) -> None:
    """A late response from a superseded fetch is discarded."""
    await accumulator.fetch_page()
    hold = asyncio.Event()
    network_client.hold_next = hold
    stale = asyncio.create_task(accumulator.fetch_next_page())
    await asyncio.sleep(0)

    fresh = await accumulator.fetch_page(reset=True, policy=FetchPolicy.NETWORK_ONLY)
    hold.set()

    assert fresh is not None
    assert await stale is None
    assert len(accumulator.items) == 15, "The stale second page was not appended."
    assert accumulator.loading is False


@pytest.mark.asyncio
async def test_superseded_failure_is_not_raised(
    accumulator: PageAccumulator, network_client: FakeNetworkClient
) -> None:
    """Errors of superseded fetches resolve to None."""
    hold = asyncio.Event()
    network_client.hold_next = hold
    stale = asyncio.create_task(accumulator.fetch_page())
    await asyncio.sleep(0)
    accumulator.set_query(dataclasses.replace(_SPEC, sort_direction=SortDirection.ASC))
    network_client.error = GitHubAPIError.http_error(500)
    hold.set()

    assert await stale is None
    assert accumulator.items == ()


def test_set_query_resets_only_on_key_change(accumulator: PageAccumulator) -> None:
    """Re-setting an equivalent query keeps the items."""
    assert accumulator.set_query(_SPEC) is False
    assert (
        accumulator.set_query(dataclasses.replace(_SPEC, page_size=30)) is True
    ), "A different page size is a different query."
    with pytest.raises(ValueError, match="cannot serve"):
        accumulator.set_query(
            QuerySpecification(source=SourceKind.STARRED, viewer_login="octo")
        )


@pytest.mark.asyncio
async def test_replace_and_remove_items(accumulator: PageAccumulator) -> None:
    """Replacement swaps the object; removal lowers the total."""
    await accumulator.fetch_page()
    original = accumulator.items[3]

    assert accumulator.replace_item(
        original.id,
        lambda record: msgspec.structs.replace(record, is_archived=True),
    )
    replaced = accumulator.items[3]
    assert replaced is not original
    assert replaced.is_archived is True
    assert accumulator.remove_item(original.id) is True
    assert original.id not in accumulator
    assert accumulator.state.total_count == 39
    assert accumulator.remove_item(original.id) is False
    assert accumulator.state.total_count == 39
