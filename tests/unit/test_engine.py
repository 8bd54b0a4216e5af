"""Unit tests for the repository list engine facade."""

from __future__ import annotations

import dataclasses
import datetime as dt

import pytest

from repodeck.config import EngineConfig
from repodeck.github.errors import GitHubAPIError
from repodeck.github.models import Visibility
from repodeck.sync.engine import RepositoryListEngine
from repodeck.sync.freshness import FreshnessStore
from repodeck.sync.object_cache import NormalizedObjectCache
from repodeck.sync.query import (
    QuerySpecification,
    SourceKind,
    VisibilityFilter,
    freshness_key,
)
from repodeck.sync.transport import CachingRepositoryTransport
from tests.helpers.fakes import FakeClock, FakeNetworkClient, make_record

_PERSONAL = QuerySpecification(source=SourceKind.PERSONAL, viewer_login="octo")
_STARRED = QuerySpecification(source=SourceKind.STARRED, viewer_login="octo")
_SEARCH = QuerySpecification(
    source=SourceKind.SEARCH, viewer_login="octo", search_text="repo"
)


@pytest.fixture
def engine(
    network_client: FakeNetworkClient,
    object_cache: NormalizedObjectCache,
    freshness_store: FreshnessStore,
    engine_config: EngineConfig,
    clock: FakeClock,
) -> RepositoryListEngine:
    """Engine over 40 personal, 3 starred and 5 search results."""
    personal = [make_record(n) for n in range(40)]
    personal[1] = make_record(1, starred=True, stars=2, own_commits=5, parent_commits=9)
    network_client.serve(SourceKind.PERSONAL, personal)
    network_client.serve(
        SourceKind.STARRED,
        [personal[1], make_record(90, starred=True), make_record(91, starred=True)],
    )
    network_client.serve(SourceKind.SEARCH, [make_record(n) for n in range(5)])
    transport = CachingRepositoryTransport(network_client, object_cache)
    return RepositoryListEngine(
        transport, object_cache, freshness_store, config=engine_config, clock=clock
    )


@pytest.mark.asyncio
async def test_cache_first_reuse_within_ttl(
    engine: RepositoryListEngine,
    network_client: FakeNetworkClient,
    clock: FakeClock,
) -> None:
    """The second first-page load within the TTL never touches the network."""
    engine.set_query(_PERSONAL)
    first = await engine.load()
    fetched_at = engine.freshness.last_fetched(freshness_key(_PERSONAL))
    clock.advance(dt.timedelta(seconds=10))

    second = await engine.load(reset=True)

    assert first is not None
    assert first.from_cache is False
    assert second is not None
    assert second.from_cache is True
    assert network_client.fetch_calls == [(SourceKind.PERSONAL, None)]
    assert engine.freshness.last_fetched(freshness_key(_PERSONAL)) == fetched_at


@pytest.mark.asyncio
async def test_search_uses_short_ttl(
    engine: RepositoryListEngine,
    network_client: FakeNetworkClient,
    clock: FakeClock,
) -> None:
    """Search results go stale after 90 seconds."""
    engine.set_query(_SEARCH)
    await engine.load()
    clock.advance(dt.timedelta(seconds=91))

    await engine.load(reset=True)

    assert network_client.fetch_calls == [
        (SourceKind.SEARCH, None),
        (SourceKind.SEARCH, None),
    ]


@pytest.mark.asyncio
async def test_switching_sources_keeps_their_state(
    engine: RepositoryListEngine, network_client: FakeNetworkClient
) -> None:
    """Each source keeps its items when another one is shown."""
    engine.set_query(_PERSONAL)
    await engine.load()
    engine.set_query(_STARRED)
    await engine.load()

    engine.activate(SourceKind.PERSONAL)

    assert engine.active_source is SourceKind.PERSONAL
    assert len(engine.get_accumulated_items()) == 15
    assert len(engine.get_accumulated_items(SourceKind.STARRED)) == 3
    assert len(network_client.fetch_calls) == 2


@pytest.mark.asyncio
async def test_refresh_forces_network(
    engine: RepositoryListEngine, network_client: FakeNetworkClient
) -> None:
    """A manual refresh ignores the fresh cache."""
    engine.set_query(_PERSONAL)
    await engine.load()

    page = await engine.refresh()

    assert page is not None
    assert page.from_cache is False
    assert len(network_client.fetch_calls) == 2


@pytest.mark.asyncio
async def test_prefetch_when_cursor_crosses_threshold(
    engine: RepositoryListEngine,
) -> None:
    """Cursor 12 of 15 loads the next page; cursor 5 does not."""
    engine.set_query(_PERSONAL)
    await engine.load()

    assert await engine.trigger_prefetch_if_needed(5) is None
    page = await engine.trigger_prefetch_if_needed(12)

    assert page is not None
    assert len(engine.get_accumulated_items()) == 30


@pytest.mark.asyncio
async def test_virtual_window_follows_cursor(engine: RepositoryListEngine) -> None:
    """The window is bounded by the viewport and contains the cursor."""
    engine.set_query(_PERSONAL)
    await engine.load()
    await engine.accumulator().fetch_next_page()
    engine.set_viewport(item_height=1, container_height=6)

    assert engine.move_cursor(100) == 29, "Cursor is clamped to the list."
    window = engine.get_virtual_window()
    rows = engine.visible_items()

    assert window.start <= engine.cursor < window.end
    assert len(window) <= 6 + 2 * engine.config.overscan
    assert rows[-1].index == 29
    assert rows[0].offset_index == 0


@pytest.mark.asyncio
async def test_unstar_in_starred_view(
    engine: RepositoryListEngine, network_client: FakeNetworkClient
) -> None:
    """Unstarring removes the starred row, patches personal and goes stale."""
    engine.set_query(_PERSONAL)
    await engine.load()
    engine.set_query(_STARRED)
    await engine.load()
    target = engine.get_accumulated_items()[0]
    total = engine.accumulator().state.total_count

    starred = await engine.toggle_star(target)

    assert starred is False
    assert network_client.mutations == [("unstar", target.id)]
    assert target.id not in engine.accumulator()
    assert engine.accumulator().state.total_count == total - 1
    personal = next(
        item
        for item in engine.get_accumulated_items(SourceKind.PERSONAL)
        if item.id == target.id
    )
    assert personal.viewer_has_starred is False
    assert personal.stargazer_count == 1
    assert engine.freshness.last_fetched(freshness_key(_STARRED)) is None


@pytest.mark.asyncio
async def test_delete_repository(
    engine: RepositoryListEngine, network_client: FakeNetworkClient
) -> None:
    """Deletes are confirmed remotely, then removed everywhere."""
    engine.set_query(_PERSONAL)
    await engine.load()
    target = engine.get_accumulated_items()[4]

    await engine.delete_repository(target)

    assert network_client.mutations == [("delete", target.id)]
    assert engine.cache.read_record(target.id) is None
    assert target.id not in engine.accumulator()
    assert engine.accumulator().state.total_count == 39


@pytest.mark.asyncio
async def test_failed_mutation_changes_nothing(
    engine: RepositoryListEngine, network_client: FakeNetworkClient
) -> None:
    """Without a remote confirmation nothing is patched locally."""
    engine.set_query(_PERSONAL)
    await engine.load()
    target = engine.get_accumulated_items()[0]
    network_client.error = GitHubAPIError.rest_error("archive", 403)

    with pytest.raises(GitHubAPIError):
        await engine.toggle_archive(target)

    assert engine.get_accumulated_items()[0] is target
    assert engine.cache.read_record(target.id) == target


@pytest.mark.asyncio
async def test_visibility_rename_archive_and_sync(
    engine: RepositoryListEngine, clock: FakeClock
) -> None:
    """Each mutation flow lands in the list and the cache."""
    engine.set_query(
        dataclasses.replace(_PERSONAL, visibility_filter=VisibilityFilter.PUBLIC)
    )
    await engine.load()
    items = engine.get_accumulated_items()

    await engine.change_visibility(items[2], Visibility.PRIVATE)
    assert items[2].id not in engine.accumulator()

    result = await engine.rename_repository(items[3], "renamed")
    assert result.name == "renamed"
    renamed = engine.cache.read_record(items[3].id)
    assert renamed is not None
    assert renamed.name == "renamed"

    assert await engine.toggle_archive(items[4]) is True

    fork = items[1]
    assert fork.commits_behind == 4
    await engine.sync_fork(fork)
    synced = next(item for item in engine.get_accumulated_items() if item.id == fork.id)
    assert synced.commits_behind == 0
    assert synced.updated_at == clock.now()


@pytest.mark.asyncio
async def test_open_restores_persisted_state(
    engine_config: EngineConfig, clock: FakeClock
) -> None:
    """A reopened engine serves the fresh first page from disk."""
    online = FakeNetworkClient()
    online.serve(SourceKind.PERSONAL, [make_record(n) for n in range(20)])
    first = RepositoryListEngine.open(online, engine_config, clock=clock)
    first.set_query(_PERSONAL)
    await first.load()
    await first.aclose()

    offline = FakeNetworkClient()
    clock.advance(dt.timedelta(minutes=5))
    second = RepositoryListEngine.open(offline, engine_config, clock=clock)
    second.set_query(_PERSONAL)
    page = await second.load()

    assert page is not None
    assert page.from_cache is True
    assert offline.fetch_calls == []
    assert len(second.get_accumulated_items()) == 15
    await second.aclose()


def test_no_active_source_is_an_error(engine: RepositoryListEngine) -> None:
    """Calls needing a source fail before set_query."""
    with pytest.raises(RuntimeError, match="no active repository source"):
        engine.get_accumulated_items()


@pytest.mark.asyncio
async def test_filtered_items_matches_text_locally(
    engine: RepositoryListEngine,
) -> None:
    """Short filters narrow the loaded rows without a fetch."""
    engine.set_query(_PERSONAL)
    await engine.load()

    matches = engine.filtered_items("repo-1")

    assert [item.name for item in matches] == [
        "repo-1",
        "repo-10",
        "repo-11",
        "repo-12",
        "repo-13",
        "repo-14",
    ]


async def _reopen(
    engine: RepositoryListEngine,
    client: FakeNetworkClient,
    config: EngineConfig,
    clock: FakeClock,
) -> RepositoryListEngine:
    await engine.aclose()
    return RepositoryListEngine.open(client, config, clock=clock)


@pytest.mark.asyncio
async def test_visibility_exclusion_survives_cache_first_reload(
    engine: RepositoryListEngine,
    network_client: FakeNetworkClient,
    engine_config: EngineConfig,
    clock: FakeClock,
) -> None:
    """A repository made private stays out of a public list after a restart."""
    public = dataclasses.replace(_PERSONAL, visibility_filter=VisibilityFilter.PUBLIC)
    engine.set_query(public)
    await engine.load()
    target = engine.get_accumulated_items()[0]
    await engine.change_visibility(target, Visibility.PRIVATE)

    reopened = await _reopen(engine, network_client, engine_config, clock)
    reopened.set_query(public)
    page = await reopened.load()

    assert page is not None
    assert page.from_cache is True
    assert target.id not in reopened.accumulator()
    assert len(reopened.get_accumulated_items()) == 14
    assert reopened.accumulator().state.total_count == 39
    assert len(network_client.fetch_calls) == 1
    await reopened.aclose()


@pytest.mark.asyncio
async def test_unstar_elsewhere_clears_cached_starred_view(
    engine: RepositoryListEngine,
    network_client: FakeNetworkClient,
    engine_config: EngineConfig,
    clock: FakeClock,
) -> None:
    """Unstarring from the owned list empties the cached starred row too."""
    engine.set_query(_STARRED)
    await engine.load()

    second = await _reopen(engine, network_client, engine_config, clock)
    second.set_query(_PERSONAL)
    await second.load()
    target = second.get_accumulated_items()[1]
    assert target.viewer_has_starred is True
    await second.toggle_star(target)
    second.set_query(_STARRED)
    page = await second.load()

    assert page is not None
    assert page.from_cache is True
    assert [item.id for item in second.get_accumulated_items()] == ["R_90", "R_91"]
    assert second.accumulator().state.total_count == 2
    await second.aclose()


@pytest.mark.asyncio
async def test_delete_survives_cache_first_reload(
    engine: RepositoryListEngine,
    network_client: FakeNetworkClient,
    engine_config: EngineConfig,
    clock: FakeClock,
) -> None:
    """A deleted repository is not rebuilt from a cached page."""
    engine.set_query(_PERSONAL)
    await engine.load()
    target = engine.get_accumulated_items()[4]
    await engine.delete_repository(target)

    reopened = await _reopen(engine, network_client, engine_config, clock)
    reopened.set_query(_PERSONAL)
    page = await reopened.load()

    assert page is not None
    assert page.from_cache is True
    assert target.id not in reopened.accumulator()
    assert len(reopened.get_accumulated_items()) == 14
    assert reopened.accumulator().state.total_count == 39
    await reopened.aclose()
