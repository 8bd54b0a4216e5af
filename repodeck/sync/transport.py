"""Fetch-policy resolution on top of the network client.

:class:`CachingRepositoryTransport` is the transport the accumulators talk
to. A ``cache-first`` request is answered from the normalized object cache
when the page for that (query, cursor) pair is cached and complete;
otherwise, and for every ``network-only`` request, the network client is
called and the result is written back into the cache.
"""

from __future__ import annotations

import typing as typ

import msgspec

from repodeck.logging import get_logger, log_debug

from .filtering import belongs_to_query
from .query import FetchPolicy, page_cache_key, page_key_prefix

if typ.TYPE_CHECKING:
    from repodeck.github.client import (
        ForkSyncResult,
        RenameResult,
        RepositoryNetworkClient,
    )
    from repodeck.github.models import PageResult, RepositoryRecord, Visibility

    from .object_cache import NormalizedObjectCache
    from .query import QuerySpecification

logger = get_logger(__name__)


class RepositoryTransport(typ.Protocol):
    """Page retrieval with a fetch policy, plus the repository mutations."""

    async def fetch_page(
        self, spec: QuerySpecification, cursor: str | None, policy: FetchPolicy
    ) -> PageResult:
        """Return the page of ``spec`` after ``cursor``."""
        ...

    async def delete_repository(self, record: RepositoryRecord) -> None:
        """Delete a repository."""
        ...

    async def set_archived(self, repository_id: str, *, archived: bool) -> None:
        """Archive or unarchive a repository."""
        ...

    async def set_visibility(
        self, record: RepositoryRecord, visibility: Visibility
    ) -> None:
        """Change a repository's visibility."""
        ...

    async def rename_repository(
        self, repository_id: str, new_name: str
    ) -> RenameResult:
        """Rename a repository."""
        ...

    async def set_starred(self, repository_id: str, *, starred: bool) -> None:
        """Star or unstar a repository."""
        ...

    async def sync_fork(self, record: RepositoryRecord) -> ForkSyncResult:
        """Merge upstream changes into a fork."""
        ...


class CachingRepositoryTransport:
    """:class:`RepositoryTransport` backed by a network client and the object cache."""

    def __init__(
        self, client: RepositoryNetworkClient, cache: NormalizedObjectCache
    ) -> None:
        """Wrap ``client``; fetched pages are written into ``cache``."""
        self._client = client
        self._cache = cache
        self.network_fetches = 0

    async def fetch_page(
        self, spec: QuerySpecification, cursor: str | None, policy: FetchPolicy
    ) -> PageResult:
        """Resolve ``policy`` and return the page of ``spec`` after ``cursor``.

        Cached records that a local mutation moved out of ``spec`` (made
        private under a public-only filter, or unstarred) are left out of a
        cached page, and the page's total is lowered to match.
        """
        key = page_cache_key(spec, cursor)
        if policy is FetchPolicy.CACHE_FIRST:
            cached = self._cache.read_page(key)
            if cached is not None:
                log_debug(logger, "Serving %s from the object cache", key)
                return self._without_departed(key, spec, cached)
            log_debug(logger, "Object cache miss for %s; fetching", key)
        page = await self._client.fetch_page(spec, cursor)
        self.network_fetches += 1
        self._cache.write_page(key, page)
        return page

    def _without_departed(
        self, key: str, spec: QuerySpecification, page: PageResult
    ) -> PageResult:
        kept = tuple(node for node in page.nodes if belongs_to_query(node, spec))
        if len(kept) == len(page.nodes):
            return page
        kept_ids = {node.id for node in kept}
        departed = [node.id for node in page.nodes if node.id not in kept_ids]
        prefix = page_key_prefix(spec)
        for repository_id in departed:
            self._cache.remove_from_pages(repository_id, key_prefix=prefix)
        log_debug(logger, "Dropped %d departed records from %s", len(departed), key)
        return msgspec.structs.replace(
            page,
            nodes=kept,
            total_count=max(0, page.total_count - len(departed)),
        )

    async def delete_repository(self, record: RepositoryRecord) -> None:
        """Delete a repository."""
        await self._client.delete_repository(record)

    async def set_archived(self, repository_id: str, *, archived: bool) -> None:
        """Archive or unarchive a repository."""
        await self._client.set_archived(repository_id, archived=archived)

    async def set_visibility(
        self, record: RepositoryRecord, visibility: Visibility
    ) -> None:
        """Change a repository's visibility."""
        await self._client.set_visibility(record, visibility)

    async def rename_repository(
        self, repository_id: str, new_name: str
    ) -> RenameResult:
        """Rename a repository."""
        return await self._client.rename_repository(repository_id, new_name)

    async def set_starred(self, repository_id: str, *, starred: bool) -> None:
        """Star or unstar a repository."""
        await self._client.set_starred(repository_id, starred=starred)

    async def sync_fork(self, record: RepositoryRecord) -> ForkSyncResult:
        """Merge upstream changes into a fork."""
        return await self._client.sync_fork(record)


__all__ = ["CachingRepositoryTransport", "RepositoryTransport"]
