"""Repository list synchronization: freshness, caching, paging and mutations.

Leaves first:

* :class:`FreshnessStore` decides whether a query's cached result may be
  reused.
* :class:`NormalizedObjectCache` stores each repository once, plus the
  cached query pages that reference them.
* :class:`PageAccumulator` collects cursor-paginated pages per source.
* :class:`MutationReconciler` fans confirmed mutations out to the cache and
  the accumulated lists.
* :class:`RepositoryListEngine` ties them together for the presentation
  layer.
"""

from __future__ import annotations

from .accumulator import PageAccumulator, PageAccumulatorState
from .engine import RepositoryListEngine
from .errors import PersistenceError, QuerySpecificationError, SyncError
from .freshness import FreshnessStore
from .object_cache import CachedPage, CacheStats, NormalizedObjectCache
from .query import (
    FetchPolicy,
    OwnerAffiliation,
    QuerySpecification,
    SortDirection,
    SortField,
    SourceKind,
    VisibilityFilter,
    freshness_key,
    page_cache_key,
    page_key_prefix,
)
from .reconciler import MutationReconciler
from .transport import CachingRepositoryTransport, RepositoryTransport

__all__ = [
    "CacheStats",
    "CachedPage",
    "CachingRepositoryTransport",
    "FetchPolicy",
    "FreshnessStore",
    "MutationReconciler",
    "NormalizedObjectCache",
    "OwnerAffiliation",
    "PageAccumulator",
    "PageAccumulatorState",
    "PersistenceError",
    "QuerySpecification",
    "QuerySpecificationError",
    "RepositoryListEngine",
    "RepositoryTransport",
    "SortDirection",
    "SortField",
    "SourceKind",
    "SyncError",
    "VisibilityFilter",
    "freshness_key",
    "page_cache_key",
    "page_key_prefix",
]
