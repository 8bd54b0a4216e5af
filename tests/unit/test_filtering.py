"""Unit tests for local list filters."""

from __future__ import annotations

from repodeck.github.models import Visibility
from repodeck.sync.filtering import (
    filter_records,
    is_server_search,
    matches_text,
    matches_visibility,
)
from repodeck.sync.query import VisibilityFilter
from tests.helpers.fakes import make_record


def test_private_filter_includes_internal() -> None:
    """Internal repositories show under the private filter."""
    internal = make_record(1, visibility=Visibility.INTERNAL)

    assert matches_visibility(internal, VisibilityFilter.PRIVATE)
    assert not matches_visibility(internal, VisibilityFilter.PUBLIC)
    assert matches_visibility(internal, VisibilityFilter.ALL)


def test_text_filter_matches_name_and_description() -> None:
    """Text matching is case-insensitive over name and description."""
    record = make_record(7, description="Terminal UI for GitHub")

    assert matches_text(record, "REPO-7")
    assert matches_text(record, "terminal")
    assert matches_text(record, "  ")
    assert not matches_text(record, "kernel")


def test_filter_records_keeps_order() -> None:
    """Filtering never reorders the list."""
    records = [
        make_record(3),
        make_record(1, visibility=Visibility.PRIVATE),
        make_record(2, visibility=Visibility.INTERNAL),
    ]

    kept = filter_records(records, visibility_filter=VisibilityFilter.PRIVATE)

    assert [record.id for record in kept] == ["R_1", "R_2"]


def test_short_text_stays_local() -> None:
    """Two characters filter locally; three start a server search."""
    assert not is_server_search("ab")
    assert is_server_search(" abc ")
