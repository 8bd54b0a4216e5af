"""Local predicates applied to accumulated repository lists."""

from __future__ import annotations

import typing as typ

from repodeck.github.models import Visibility

from .query import SourceKind, VisibilityFilter

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from repodeck.github.models import RepositoryRecord

    from .query import QuerySpecification

MIN_SEARCH_LENGTH = 3

_PRIVATE_LIKE = frozenset({Visibility.PRIVATE, Visibility.INTERNAL})


def visibility_allowed(
    visibility: Visibility, visibility_filter: VisibilityFilter
) -> bool:
    """Return ``True`` when a repository with ``visibility`` passes the filter.

    The private filter matches internal repositories too, as GitHub's own
    repository lists do.
    """
    match visibility_filter:
        case VisibilityFilter.ALL:
            return True
        case VisibilityFilter.PUBLIC:
            return visibility is Visibility.PUBLIC
        case VisibilityFilter.PRIVATE:
            return visibility in _PRIVATE_LIKE


def matches_visibility(
    record: RepositoryRecord, visibility_filter: VisibilityFilter
) -> bool:
    """Return ``True`` when ``record`` belongs in a list with this filter."""
    return visibility_allowed(record.visibility, visibility_filter)


def belongs_to_query(record: RepositoryRecord, spec: QuerySpecification) -> bool:
    """Return ``False`` for records a local mutation moved out of ``spec``'s results.

    Only what the reconciler can change is checked: the visibility filter,
    and the viewer's star for the starred source.
    """
    if spec.source is SourceKind.STARRED and record.viewer_has_starred is False:
        return False
    return matches_visibility(record, spec.visibility_filter)


def matches_text(record: RepositoryRecord, text: str | None) -> bool:
    """Case-insensitive substring match on qualified name and description."""
    needle = (text or "").strip().lower()
    if not needle:
        return True
    if needle in record.name_with_owner.lower():
        return True
    return bool(record.description) and needle in record.description.lower()


def is_server_search(text: str | None) -> bool:
    """Return ``True`` when ``text`` is long enough to run a server search.

    Shorter filters are applied locally with :func:`matches_text`.
    """
    return len((text or "").strip()) >= MIN_SEARCH_LENGTH


def filter_records(
    records: cabc.Iterable[RepositoryRecord],
    *,
    visibility_filter: VisibilityFilter = VisibilityFilter.ALL,
    text: str | None = None,
) -> list[RepositoryRecord]:
    """Return the records passing both filters, in their original order."""
    return [
        record
        for record in records
        if matches_visibility(record, visibility_filter) and matches_text(record, text)
    ]


__all__ = [
    "MIN_SEARCH_LENGTH",
    "belongs_to_query",
    "filter_records",
    "is_server_search",
    "matches_text",
    "matches_visibility",
    "visibility_allowed",
]
