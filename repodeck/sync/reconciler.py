"""Local fan-out of confirmed repository mutations.

Call these methods only after GitHub confirmed the mutation. Each one
patches the normalized object cache *and* every accumulator list holding
the repository, so neither a visible row nor a later cache-first read can
show the pre-mutation state. Records are replaced, never mutated.

Targets that are not cached or not listed are skipped silently: a racing
delete may already have removed them.
"""

from __future__ import annotations

import typing as typ

import msgspec

from repodeck.github.models import BranchRef, RepositoryRecord, Visibility
from repodeck.logging import get_logger, log_debug

from .filtering import visibility_allowed
from .object_cache import apply_field_patch
from .query import SourceKind, VisibilityFilter, page_key_prefix

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from .accumulator import PageAccumulator
    from .object_cache import FieldPatch, NormalizedObjectCache

logger = get_logger(__name__)


def _set(value: object) -> cabc.Callable[[object], object]:
    return lambda _previous: value


def _synced_branch(
    record: RepositoryRecord, commits_behind: int | None
) -> BranchRef | None:
    """Return the fork's branch snapshot after an upstream sync.

    The new commit count is the parent's known count minus
    ``commits_behind``. The branch is left unchanged when the behind count
    is unknown or when either snapshot is missing (fork tracking off).
    """
    branch = record.default_branch
    parent_branch = record.parent.default_branch if record.parent else None
    if (
        commits_behind is None
        or branch is None
        or branch.commit_count is None
        or parent_branch is None
        or parent_branch.commit_count is None
    ):
        return branch
    behind = max(0, commits_behind)
    return msgspec.structs.replace(
        branch, commit_count=max(0, parent_branch.commit_count - behind)
    )


class MutationReconciler:
    """Applies confirmed mutations to the cache and the accumulated lists."""

    def __init__(
        self,
        cache: NormalizedObjectCache,
        accumulators: cabc.Mapping[SourceKind, PageAccumulator],
    ) -> None:
        """Bind the reconciler to the shared cache and every accumulator."""
        self._cache = cache
        self._accumulators = accumulators

    def _patch(self, repository_id: str, patch: FieldPatch) -> None:
        self._cache.patch_fields(repository_id, patch)
        for accumulator in self._accumulators.values():
            accumulator.replace_item(
                repository_id, lambda record: apply_field_patch(record, patch)
            )

    def after_delete(self, repository_id: str) -> None:
        """Evict the repository and drop it from every list."""
        self._cache.evict(repository_id)
        self._cache.garbage_collect()
        for source, accumulator in self._accumulators.items():
            if accumulator.remove_item(repository_id):
                log_debug(logger, "Removed deleted %s from %s", repository_id, source)

    def after_archive_toggle(self, repository_id: str, *, archived: bool) -> None:
        """Record the new archived flag."""
        self._patch(repository_id, {"is_archived": _set(archived)})

    def after_visibility_change(
        self, repository_id: str, visibility: Visibility
    ) -> None:
        """Record the new visibility and drop the repository where it no longer fits.

        Each list is checked against its own visibility filter. A list that
        excludes the repository also loses it from its cached pages, so a
        later cache-first load cannot bring it back.
        """
        patch: FieldPatch = {
            "visibility": _set(visibility),
            "is_private": _set(visibility is Visibility.PRIVATE),
        }
        self._cache.patch_fields(repository_id, patch)
        for source, accumulator in self._accumulators.items():
            spec = accumulator.spec
            active_filter = spec.visibility_filter if spec else VisibilityFilter.ALL
            if visibility_allowed(visibility, active_filter):
                accumulator.replace_item(
                    repository_id, lambda record: apply_field_patch(record, patch)
                )
                continue
            if spec is not None:
                self._cache.remove_from_pages(
                    repository_id, key_prefix=page_key_prefix(spec)
                )
            if accumulator.remove_item(repository_id):
                log_debug(
                    logger,
                    "Removed %s from %s: no longer matches %s filter",
                    repository_id,
                    source,
                    active_filter,
                )

    def after_rename(
        self, repository_id: str, *, name: str, name_with_owner: str
    ) -> None:
        """Record the new name and qualified name."""
        self._patch(
            repository_id,
            {"name": _set(name), "name_with_owner": _set(name_with_owner)},
        )

    def after_star_toggle(
        self, repository_id: str, *, starred: bool, star_delta: int
    ) -> None:
        """Record the viewer's star and adjust the stargazer count.

        Unstarring also drops the repository from the starred list and from
        every cached starred page, whichever starred query produced it.
        """
        patch: FieldPatch = {
            "viewer_has_starred": _set(starred),
            "stargazer_count": lambda count: max(0, count + star_delta),
        }
        self._patch(repository_id, patch)
        if starred:
            return
        self._cache.remove_from_pages(
            repository_id, key_prefix=f"{SourceKind.STARRED.value}:"
        )
        starred_list = self._accumulators.get(SourceKind.STARRED)
        if starred_list is not None:
            starred_list.remove_item(repository_id)

    def after_fork_sync(
        self,
        repository_id: str,
        *,
        updated_at: dt.datetime,
        commits_behind: int | None = None,
    ) -> None:
        """Record the sync time and, with fork tracking, the new behind count.

        Without ``commits_behind`` only ``updated_at`` changes; the engine
        passes 0 after a successful merge-upstream.
        """

        def sync(record: RepositoryRecord) -> RepositoryRecord:
            return msgspec.structs.replace(
                record,
                updated_at=updated_at,
                default_branch=_synced_branch(record, commits_behind),
            )

        cached = self._cache.read_record(repository_id)
        if cached is not None:
            self._cache.write_record(sync(cached))
        for accumulator in self._accumulators.values():
            accumulator.replace_item(repository_id, sync)


__all__ = ["MutationReconciler"]
