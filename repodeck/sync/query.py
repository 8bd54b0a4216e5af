"""Query specifications and freshness-key derivation.

A :class:`QuerySpecification` names everything that changes which
repositories a list shows and in what order. It is never persisted; it only
feeds :func:`freshness_key`, whose output indexes the freshness store and the
cached query pages.

Example:
-------
Two specifications that differ only in sort direction never share a key::

    newest = QuerySpecification(source=SourceKind.PERSONAL, viewer_login="octo")
    oldest = dataclasses.replace(newest, sort_direction=SortDirection.ASC)
    assert freshness_key(newest) != freshness_key(oldest)

"""

from __future__ import annotations

import dataclasses
import enum
import hashlib

import msgspec

from .errors import QuerySpecificationError

_MAX_PAGE_SIZE = 100


class SourceKind(enum.StrEnum):
    """Mutually exclusive repository list sources."""

    PERSONAL = "personal"
    ORGANIZATION = "organization"
    SEARCH = "search"
    STARRED = "starred"


class SortField(enum.StrEnum):
    """GraphQL ``RepositoryOrderField`` values supported by the list views."""

    UPDATED_AT = "UPDATED_AT"
    PUSHED_AT = "PUSHED_AT"
    NAME = "NAME"
    STARGAZERS = "STARGAZERS"


class SortDirection(enum.StrEnum):
    """GraphQL ``OrderDirection`` values."""

    ASC = "ASC"
    DESC = "DESC"


class OwnerAffiliation(enum.StrEnum):
    """GraphQL ``RepositoryAffiliation`` values for the personal source."""

    OWNER = "OWNER"
    COLLABORATOR = "COLLABORATOR"
    ORGANIZATION_MEMBER = "ORGANIZATION_MEMBER"


class VisibilityFilter(enum.StrEnum):
    """Visibility filter applied to a list view."""

    ALL = "all"
    PUBLIC = "public"
    PRIVATE = "private"


class FetchPolicy(enum.StrEnum):
    """How a page request may be satisfied."""

    CACHE_FIRST = "cache-first"
    NETWORK_ONLY = "network-only"


@dataclasses.dataclass(frozen=True, slots=True)
class QuerySpecification:
    """Immutable description of one repository list query.

    Attributes
    ----------
    source
        Which connection the list is read from.
    viewer_login
        Login of the authenticated user. Part of the key so two accounts
        sharing a data directory never read each other's freshness records.
    organization_login
        Organization whose repositories are listed (``ORGANIZATION``), or
        which scopes a search (``SEARCH``).
    search_text
        Free text for ``SEARCH``.
    affiliations
        Owner affiliations for ``PERSONAL``; stored as a frozenset so the
        order they were chosen in never changes the key.

    """

    source: SourceKind
    viewer_login: str = ""
    organization_login: str | None = None
    search_text: str | None = None
    sort_field: SortField = SortField.UPDATED_AT
    sort_direction: SortDirection = SortDirection.DESC
    page_size: int = 15
    fork_tracking: bool = True
    affiliations: frozenset[OwnerAffiliation] = frozenset({OwnerAffiliation.OWNER})
    visibility_filter: VisibilityFilter = VisibilityFilter.ALL

    def __post_init__(self) -> None:
        """Reject specifications the transport cannot express."""
        if not 1 <= self.page_size <= _MAX_PAGE_SIZE:
            raise QuerySpecificationError.page_size(self.page_size, _MAX_PAGE_SIZE)
        if self.source is SourceKind.ORGANIZATION and not self.organization_login:
            raise QuerySpecificationError.missing("organization_login", self.source)
        if self.source is SourceKind.SEARCH and not (self.search_text or "").strip():
            raise QuerySpecificationError.missing("search_text", self.source)
        if self.source is SourceKind.PERSONAL and not self.affiliations:
            raise QuerySpecificationError.missing("affiliations", self.source)

    @property
    def privacy(self) -> str | None:
        """Return the GraphQL ``RepositoryPrivacy`` argument, if any.

        The API cannot filter ``INTERNAL`` repositories, so ``PRIVATE`` is
        sent for the private filter and internal ones are matched locally.
        """
        if self.visibility_filter is VisibilityFilter.PUBLIC:
            return "PUBLIC"
        if self.visibility_filter is VisibilityFilter.PRIVATE:
            return "PRIVATE"
        return None


def _key_fields(spec: QuerySpecification) -> dict[str, object]:
    return {
        "source": spec.source.value,
        "viewer": spec.viewer_login,
        "org": spec.organization_login,
        "q": (spec.search_text or "").strip() or None,
        "sort_field": spec.sort_field.value,
        "sort_direction": spec.sort_direction.value,
        "page_size": spec.page_size,
        "fork_tracking": spec.fork_tracking,
        "affiliations": sorted(affiliation.value for affiliation in spec.affiliations),
        "visibility": spec.visibility_filter.value,
    }


def freshness_key(spec: QuerySpecification) -> str:
    """Return the deterministic freshness key for ``spec``.

    The key is ``"<source>:<digest>"``. The digest covers every field of
    ``spec``, serialized with sorted keys.
    """
    canonical = msgspec.json.encode(_key_fields(spec), order="sorted")
    digest = hashlib.sha256(canonical).hexdigest()[:32]
    return f"{spec.source.value}:{digest}"


def page_key_prefix(spec: QuerySpecification) -> str:
    """Return the prefix shared by every cached page of ``spec``."""
    return f"{freshness_key(spec)}@"


def page_cache_key(spec: QuerySpecification, cursor: str | None) -> str:
    """Return the object-cache key for the page of ``spec`` after ``cursor``."""
    return f"{page_key_prefix(spec)}{cursor or ''}"


__all__ = [
    "FetchPolicy",
    "OwnerAffiliation",
    "QuerySpecification",
    "SortDirection",
    "SortField",
    "SourceKind",
    "VisibilityFilter",
    "freshness_key",
    "page_cache_key",
    "page_key_prefix",
]
