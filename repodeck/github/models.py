"""Typed repository records exchanged between the transport and the engine.

Records are immutable ``msgspec`` structs. Local mutations never edit a record
in place: they build a replacement with :func:`msgspec.structs.replace`, so a
list holding the old object and a list holding the new one can be told apart
by identity.
"""

from __future__ import annotations

import datetime as dt  # noqa: TC003 - msgspec resolves annotations at runtime
import enum

import msgspec


class Visibility(enum.StrEnum):
    """Repository visibility as reported by GitHub."""

    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    INTERNAL = "INTERNAL"


class OwnerKind(enum.StrEnum):
    """GraphQL ``__typename`` of a repository owner."""

    ORGANIZATION = "Organization"
    USER = "User"


class Language(msgspec.Struct, kw_only=True, frozen=True):
    """Primary language descriptor."""

    name: str
    color: str | None = None


class BranchRef(msgspec.Struct, kw_only=True, frozen=True):
    """Default branch reference with an optional commit-count snapshot.

    Attributes
    ----------
    name : str | None
        Branch name, when known.
    commit_count : int | None
        ``history(first: 0) { totalCount }`` of the branch head. Only present
        when the page was fetched with fork tracking enabled.

    """

    name: str | None = None
    commit_count: int | None = None


class ParentRepository(msgspec.Struct, kw_only=True, frozen=True):
    """Upstream repository of a fork."""

    name_with_owner: str
    default_branch: BranchRef | None = None


class RepositoryOwner(msgspec.Struct, kw_only=True, frozen=True):
    """Owning user or organization."""

    kind: OwnerKind
    login: str


class RepositoryRecord(msgspec.Struct, kw_only=True, frozen=True):
    """One remote repository, keyed by its GraphQL node id.

    Attributes
    ----------
    id : str
        Stable GraphQL node id (``R_...``); the cache key for every patch.
    name : str
        Repository name without owner.
    name_with_owner : str
        ``owner/name`` qualified name.
    visibility : Visibility
        ``PUBLIC``, ``PRIVATE`` or ``INTERNAL``.
    is_private : bool
        ``True`` only for ``PRIVATE``; internal repositories are not private.
    viewer_has_starred : bool | None
        ``None`` when the query that produced the record did not ask.

    """

    id: str
    name: str
    name_with_owner: str
    visibility: Visibility
    is_private: bool
    is_fork: bool
    is_archived: bool
    description: str | None = None
    stargazer_count: int = 0
    fork_count: int = 0
    disk_usage: int = 0
    updated_at: dt.datetime | None = None
    pushed_at: dt.datetime | None = None
    primary_language: Language | None = None
    parent: ParentRepository | None = None
    default_branch: BranchRef | None = None
    owner: RepositoryOwner | None = None
    viewer_has_starred: bool | None = None

    @property
    def owner_login(self) -> str:
        """Return the owner part of ``name_with_owner``."""
        return self.name_with_owner.split("/", 1)[0]

    @property
    def commits_behind(self) -> int | None:
        """Return how many commits a fork trails its parent, when known."""
        own = self.default_branch.commit_count if self.default_branch else None
        parent_branch = self.parent.default_branch if self.parent else None
        upstream = parent_branch.commit_count if parent_branch else None
        if own is None or upstream is None:
            return None
        return max(0, upstream - own)


class RateLimitSnapshot(msgspec.Struct, kw_only=True, frozen=True):
    """GraphQL ``rateLimit`` block returned alongside each page."""

    limit: int
    remaining: int
    reset_at: dt.datetime


class PageResult(msgspec.Struct, kw_only=True, frozen=True):
    """One page of a cursor-paginated repository connection.

    ``from_cache`` is ``True`` when the page was served from the normalized
    object cache without network I/O.
    """

    nodes: tuple[RepositoryRecord, ...]
    end_cursor: str | None
    has_next_page: bool
    total_count: int
    rate_limit: RateLimitSnapshot | None = None
    from_cache: bool = False


__all__ = [
    "BranchRef",
    "Language",
    "OwnerKind",
    "PageResult",
    "ParentRepository",
    "RateLimitSnapshot",
    "RepositoryOwner",
    "RepositoryRecord",
    "Visibility",
]
