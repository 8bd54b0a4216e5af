"""Facade tying the stores, accumulators, reconciler and window together.

The presentation layer talks to :class:`RepositoryListEngine` only. It
selects the active source, moves the UI cursor, asks for the rows to render
and runs repository mutations, which are confirmed by GitHub first and then
fanned out locally through :class:`~repodeck.sync.reconciler.MutationReconciler`.
"""

from __future__ import annotations

import typing as typ

from repodeck.common.time import SystemClock
from repodeck.config import EngineConfig
from repodeck.logging import get_logger, log_info
from repodeck.windowing import (
    VirtualItem,
    VirtualWindow,
    VirtualWindowCalculator,
    should_prefetch,
    slice_window,
)

from .accumulator import PageAccumulator
from .filtering import filter_records
from .freshness import FreshnessStore
from .object_cache import NormalizedObjectCache
from .query import FetchPolicy, SourceKind, VisibilityFilter, freshness_key
from .reconciler import MutationReconciler
from .transport import CachingRepositoryTransport

if typ.TYPE_CHECKING:
    from repodeck.common.time import Clock
    from repodeck.github.client import (
        ForkSyncResult,
        RenameResult,
        RepositoryNetworkClient,
    )
    from repodeck.github.models import PageResult, RepositoryRecord, Visibility

    from .query import QuerySpecification
    from .transport import RepositoryTransport

logger = get_logger(__name__)

_DEFAULT_ITEM_HEIGHT = 1
_DEFAULT_CONTAINER_HEIGHT = 20


class RepositoryListEngine:
    """Repository list synchronization and windowing for one viewer.

    Parameters
    ----------
    transport
        Policy-resolving transport shared by every accumulator.
    cache
        Normalized object cache the transport writes into.
    freshness
        Freshness store deciding first-page fetch policies.
    config
        Page size, TTLs, prefetch threshold and overscan.
    clock
        Time source for fork-sync timestamps.

    """

    def __init__(
        self,
        transport: RepositoryTransport,
        cache: NormalizedObjectCache,
        freshness: FreshnessStore,
        *,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Create one accumulator per source; no source is active yet."""
        self._config = config or EngineConfig()
        self._transport = transport
        self._cache = cache
        self._freshness = freshness
        self._clock = clock or SystemClock()
        self._accumulators = {
            source: PageAccumulator(
                source,
                transport,
                freshness,
                ttl=(
                    self._config.search_ttl
                    if source is SourceKind.SEARCH
                    else self._config.list_ttl
                ),
            )
            for source in SourceKind
        }
        self._reconciler = MutationReconciler(cache, self._accumulators)
        self._window = VirtualWindowCalculator(overscan=self._config.overscan)
        self._active: SourceKind | None = None
        self._cursor = 0
        self._item_height = _DEFAULT_ITEM_HEIGHT
        self._container_height = _DEFAULT_CONTAINER_HEIGHT

    @classmethod
    def open(
        cls,
        client: RepositoryNetworkClient,
        config: EngineConfig,
        *,
        clock: Clock | None = None,
    ) -> RepositoryListEngine:
        """Build an engine over the persisted stores in ``config.data_dir``."""
        cache = NormalizedObjectCache(
            config.object_cache_path,
            max_bytes=config.cache_max_bytes,
            debounce=config.cache_debounce.total_seconds(),
        )
        cache.restore()
        freshness = FreshnessStore(config.freshness_path, clock=clock)
        freshness.restore()
        transport = CachingRepositoryTransport(client, cache)
        return cls(transport, cache, freshness, config=config, clock=clock)

    async def aclose(self) -> None:
        """Write any pending cache changes."""
        await self._cache.aclose()

    # -- collaborators -------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        """Return the engine configuration."""
        return self._config

    @property
    def cache(self) -> NormalizedObjectCache:
        """Return the normalized object cache."""
        return self._cache

    @property
    def freshness(self) -> FreshnessStore:
        """Return the freshness store."""
        return self._freshness

    @property
    def reconciler(self) -> MutationReconciler:
        """Return the mutation reconciler."""
        return self._reconciler

    def accumulator(self, source: SourceKind | None = None) -> PageAccumulator:
        """Return the accumulator for ``source`` (default: the active one)."""
        return self._accumulators[source or self._require_active()]

    # -- source selection ----------------------------------------------------

    @property
    def active_source(self) -> SourceKind | None:
        """Return the source currently shown."""
        return self._active

    def _require_active(self) -> SourceKind:
        if self._active is None:
            msg = "no active repository source; call set_query() first"
            raise RuntimeError(msg)
        return self._active

    def set_query(self, spec: QuerySpecification) -> bool:
        """Set the query of ``spec.source`` and make that source active.

        Returns ``True`` when the query changed and the source's list was
        cleared.
        """
        changed = self._accumulators[spec.source].set_query(spec)
        self.activate(spec.source)
        if changed:
            self._window.reset()
        return changed

    def activate(self, source: SourceKind) -> None:
        """Show ``source`` without touching any source's accumulated state."""
        if source is not self._active:
            self._active = source
            self._cursor = 0
            self._window.reset()

    async def load(
        self, *, reset: bool = False, policy: FetchPolicy | None = None
    ) -> PageResult | None:
        """Fetch the first page of the active source."""
        return await self.accumulator().fetch_page(reset=reset, policy=policy)

    async def refresh(self) -> PageResult | None:
        """Refetch the active source from the network."""
        self._window.reset()
        return await self.accumulator().refresh()

    def get_accumulated_items(
        self, source: SourceKind | None = None
    ) -> tuple[RepositoryRecord, ...]:
        """Return the items accumulated for ``source`` (default: active)."""
        return self.accumulator(source).items

    def filtered_items(self, text: str | None = None) -> list[RepositoryRecord]:
        """Return active items matching the query's visibility filter and ``text``.

        ``text`` is matched locally against names and descriptions; it is
        meant for filters too short for a server-side search.
        """
        accumulator = self.accumulator()
        spec = accumulator.spec
        return filter_records(
            accumulator.state.items,
            visibility_filter=spec.visibility_filter if spec else VisibilityFilter.ALL,
            text=text,
        )

    # -- cursor and window ---------------------------------------------------

    @property
    def cursor(self) -> int:
        """Return the UI cursor, clamped to the active list."""
        count = len(self.accumulator().state.items) if self._active else 0
        return min(self._cursor, max(0, count - 1))

    def move_cursor(self, cursor: int) -> int:
        """Move the UI cursor, clamping it into the active list."""
        count = len(self.accumulator().state.items)
        self._cursor = min(max(0, cursor), max(0, count - 1))
        return self._cursor

    def set_viewport(self, *, item_height: int, container_height: int) -> None:
        """Set row and viewport heights used by :meth:`get_virtual_window`."""
        if item_height <= 0:
            msg = f"item_height must be positive, got {item_height}"
            raise ValueError(msg)
        self._item_height = item_height
        self._container_height = container_height

    def get_virtual_window(self) -> VirtualWindow:
        """Return the rows of the active list to render around the cursor."""
        count = len(self.accumulator().state.items)
        return self._window.window_for(
            self.cursor, count, self._item_height, self._container_height
        )

    def visible_items(self) -> list[VirtualItem[RepositoryRecord]]:
        """Return the records inside the current virtual window."""
        return slice_window(self.accumulator().state.items, self.get_virtual_window())

    async def trigger_prefetch_if_needed(
        self, cursor: int | None = None
    ) -> PageResult | None:
        """Fetch the next page when the cursor crossed the prefetch threshold."""
        accumulator = self.accumulator()
        state = accumulator.state
        position = self.cursor if cursor is None else cursor
        if not should_prefetch(
            position,
            len(state.items),
            has_next_page=state.has_next_page,
            loading=state.loading,
            threshold=self._config.prefetch_threshold,
        ):
            return None
        log_info(
            logger,
            "Prefetching next %s page at cursor %d of %d",
            accumulator.source,
            position,
            len(state.items),
        )
        return await accumulator.fetch_next_page()

    # -- mutations -----------------------------------------------------------

    async def delete_repository(self, record: RepositoryRecord) -> None:
        """Delete ``record`` on GitHub, then remove it everywhere locally."""
        await self._transport.delete_repository(record)
        self._reconciler.after_delete(record.id)

    async def toggle_archive(self, record: RepositoryRecord) -> bool:
        """Flip the archived flag; return the new value."""
        archived = not record.is_archived
        await self._transport.set_archived(record.id, archived=archived)
        self._reconciler.after_archive_toggle(record.id, archived=archived)
        return archived

    async def change_visibility(
        self, record: RepositoryRecord, visibility: Visibility
    ) -> None:
        """Change visibility on GitHub, then patch or drop the record locally."""
        await self._transport.set_visibility(record, visibility)
        self._reconciler.after_visibility_change(record.id, visibility)

    async def rename_repository(
        self, record: RepositoryRecord, new_name: str
    ) -> RenameResult:
        """Rename on GitHub and record the names GitHub reports."""
        result = await self._transport.rename_repository(record.id, new_name)
        self._reconciler.after_rename(
            record.id, name=result.name, name_with_owner=result.name_with_owner
        )
        return result

    async def toggle_star(self, record: RepositoryRecord) -> bool:
        """Star or unstar ``record``; return the new starred state.

        The starred list's freshness record is dropped as well, so the next
        time that list is shown it is fetched from the network.
        """
        starred = not record.viewer_has_starred
        await self._transport.set_starred(record.id, starred=starred)
        self._reconciler.after_star_toggle(
            record.id, starred=starred, star_delta=1 if starred else -1
        )
        starred_spec = self._accumulators[SourceKind.STARRED].spec
        if starred_spec is not None:
            await self._freshness.invalidate(freshness_key(starred_spec))
        return starred

    async def sync_fork(self, record: RepositoryRecord) -> ForkSyncResult:
        """Merge upstream into a fork and mark it as no longer behind."""
        result = await self._transport.sync_fork(record)
        self._reconciler.after_fork_sync(
            record.id, updated_at=self._clock.now(), commits_behind=0
        )
        return result


__all__ = ["RepositoryListEngine"]
