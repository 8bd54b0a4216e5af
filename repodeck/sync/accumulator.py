"""Per-source accumulation of cursor-paginated repository pages.

One :class:`PageAccumulator` exists for each list source. It owns its item
list: pages are appended in server order, and the list is only replaced by
a first-page fetch (a reset, a query change or a manual refresh). The
mutation reconciler is the only other writer and goes through
:meth:`PageAccumulator.replace_item` and :meth:`PageAccumulator.remove_item`.

Every fetch is tagged with a generation number. Changing the query or
starting a reset bumps the generation, so a slower response belonging to an
older request is discarded when it finally arrives.
"""

from __future__ import annotations

import dataclasses
import typing as typ

from repodeck.logging import get_logger, log_debug, log_error, log_info

from .query import FetchPolicy, freshness_key

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from repodeck.github.models import PageResult, RepositoryRecord

    from .freshness import FreshnessStore
    from .query import QuerySpecification, SourceKind
    from .transport import RepositoryTransport

logger = get_logger(__name__)


@dataclasses.dataclass(slots=True)
class PageAccumulatorState:
    """Accumulated items and page info for one source."""

    items: list[RepositoryRecord] = dataclasses.field(default_factory=list)
    end_cursor: str | None = None
    has_next_page: bool = False
    total_count: int = 0
    loading: bool = False


class PageAccumulator:
    """Append-only page list for one source, with superseding resets.

    Parameters
    ----------
    source
        The list source this accumulator serves.
    transport
        Transport that resolves the fetch policy and performs the request.
    freshness
        Store consulted before first-page fetches and updated after them.
    ttl
        How long a first-page fetch of this source stays fresh.

    """

    def __init__(
        self,
        source: SourceKind,
        transport: RepositoryTransport,
        freshness: FreshnessStore,
        *,
        ttl: dt.timedelta,
    ) -> None:
        """Create an empty accumulator without an active query."""
        self.source = source
        self._transport = transport
        self._freshness = freshness
        self._ttl = ttl
        self._spec: QuerySpecification | None = None
        self._state = PageAccumulatorState()
        self._generation = 0

    @property
    def spec(self) -> QuerySpecification | None:
        """Return the active query specification."""
        return self._spec

    @property
    def state(self) -> PageAccumulatorState:
        """Return the live state; treat it as read-only."""
        return self._state

    @property
    def items(self) -> tuple[RepositoryRecord, ...]:
        """Return the accumulated items in server order."""
        return tuple(self._state.items)

    @property
    def loading(self) -> bool:
        """Return ``True`` while a fetch for this source is in flight."""
        return self._state.loading

    @property
    def freshness_key(self) -> str | None:
        """Return the freshness key of the active query, if any."""
        return freshness_key(self._spec) if self._spec is not None else None

    def set_query(self, spec: QuerySpecification) -> bool:
        """Make ``spec`` the active query.

        Returns ``True`` when the freshness key changed; the accumulated
        items are then cleared and any in-flight fetch is superseded.
        """
        if spec.source is not self.source:
            msg = f"{self.source} accumulator cannot serve a {spec.source} query"
            raise ValueError(msg)
        if self._spec is not None and freshness_key(self._spec) == freshness_key(spec):
            self._spec = spec
            return False
        self._spec = spec
        self.clear()
        return True

    def clear(self) -> None:
        """Drop accumulated items and supersede any in-flight fetch."""
        self._generation += 1
        self._state = PageAccumulatorState()

    def _resolve_policy(self, key: str, policy: FetchPolicy | None) -> FetchPolicy:
        if policy is not None:
            return policy
        if self._freshness.is_fresh(key, self._ttl):
            return FetchPolicy.CACHE_FIRST
        return FetchPolicy.NETWORK_ONLY

    async def fetch_page(
        self,
        cursor: str | None = None,
        *,
        reset: bool = False,
        policy: FetchPolicy | None = None,
    ) -> PageResult | None:
        """Fetch a page and fold it into the accumulated state.

        A call with ``reset`` or without ``cursor`` fetches the first page
        and replaces the items; any other call appends. Without an explicit
        ``policy`` the freshness store decides: ``cache-first`` while the
        query's key is fresh, ``network-only`` otherwise.

        Returns
        -------
        PageResult | None
            The page that was applied, or ``None`` when the call was ignored
            because a fetch was already in flight, or when a newer request
            superseded it before it completed.

        Raises
        ------
        GitHubAPIError
            Transport failures propagate unchanged; the accumulated state is
            left as it was.

        """
        spec = self._spec
        if spec is None:
            msg = f"no query set for the {self.source} accumulator"
            raise RuntimeError(msg)
        first_page = reset or cursor is None
        if self._state.loading and not first_page:
            log_debug(
                logger, "Ignoring %s next-page request while loading", self.source
            )
            return None
        if first_page:
            cursor = None

        key = freshness_key(spec)
        resolved = self._resolve_policy(key, policy)
        self._generation += 1
        generation = self._generation
        self._state.loading = True
        try:
            page = await self._transport.fetch_page(spec, cursor, resolved)
        except Exception as exc:
            if generation != self._generation:
                log_debug(
                    logger, "Discarding failure of superseded %s fetch", self.source
                )
                return None
            log_error(logger, "Fetching %s page failed", self.source, exc_info=exc)
            raise
        finally:
            if generation == self._generation:
                self._state.loading = False

        if generation != self._generation:
            log_debug(logger, "Discarding superseded %s page", self.source)
            return None
        self._apply(page, replace=first_page)
        if first_page and not page.from_cache:
            await self._freshness.mark_fetched(key)
        log_info(
            logger,
            "%s: %d of %d repositories loaded (policy=%s, cached=%s)",
            self.source,
            len(self._state.items),
            self._state.total_count,
            resolved,
            page.from_cache,
        )
        return page

    async def fetch_next_page(self) -> PageResult | None:
        """Append the page after the current end cursor, if there is one."""
        if not self._state.has_next_page or self._state.end_cursor is None:
            return None
        return await self.fetch_page(self._state.end_cursor)

    async def refresh(self) -> PageResult | None:
        """Refetch the first page from the network, replacing the items."""
        return await self.fetch_page(reset=True, policy=FetchPolicy.NETWORK_ONLY)

    def _apply(self, page: PageResult, *, replace: bool) -> None:
        if replace:
            self._state.items = list(page.nodes)
        else:
            self._state.items.extend(page.nodes)
        self._state.end_cursor = page.end_cursor
        self._state.has_next_page = page.has_next_page
        self._state.total_count = page.total_count

    # -- reconciler entry points ---------------------------------------------

    def __contains__(self, repository_id: object) -> bool:
        """Return ``True`` when an item with this id is accumulated."""
        return any(item.id == repository_id for item in self._state.items)

    def replace_item(
        self,
        repository_id: str,
        update: cabc.Callable[[RepositoryRecord], RepositoryRecord],
    ) -> bool:
        """Swap each entry with ``repository_id`` for ``update(entry)``.

        The entry is replaced by a new object, never mutated. Returns
        ``True`` when at least one entry matched.
        """
        replaced = False
        for index, item in enumerate(self._state.items):
            if item.id == repository_id:
                self._state.items[index] = update(item)
                replaced = True
        return replaced

    def remove_item(self, repository_id: str) -> bool:
        """Remove ``repository_id`` and lower ``total_count`` by one."""
        kept = [item for item in self._state.items if item.id != repository_id]
        if len(kept) == len(self._state.items):
            return False
        self._state.items = kept
        self._state.total_count = max(0, self._state.total_count - 1)
        return True


__all__ = ["PageAccumulator", "PageAccumulatorState"]
