"""Command-line access to the repository list engine.

Subcommands
-----------
``list``
    Fetch the first page(s) of a source and print the rows of the virtual
    window around ``--cursor``.
``status``
    Report the persisted cache files and freshness records.
``purge``
    Delete both persisted files.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import typing as typ

from repodeck.common.time import utcnow
from repodeck.config import EngineConfig
from repodeck.github import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubGraphQLClient,
    GitHubGraphQLConfig,
    GitHubRateLimitError,
)
from repodeck.logging import (
    configure_logging,
    get_logger,
    log_exception,
    log_warning,
)
from repodeck.sync import (
    FetchPolicy,
    FreshnessStore,
    NormalizedObjectCache,
    QuerySpecification,
    QuerySpecificationError,
    RepositoryListEngine,
    SortDirection,
    SortField,
    SourceKind,
    VisibilityFilter,
)
from repodeck.sync.filtering import MIN_SEARCH_LENGTH, is_server_search

if typ.TYPE_CHECKING:
    from repodeck.github.client import RepositoryNetworkClient
    from repodeck.github.models import RepositoryRecord

logger = get_logger(__name__)

_EXIT_ERROR = 1
_EXIT_RATE_LIMITED = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repodeck", description=__doc__)
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (defaults to REPODECK_LOG_LEVEL, then INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List repositories of a source")
    list_cmd.add_argument(
        "source", type=SourceKind, choices=list(SourceKind), help="List source"
    )
    list_cmd.add_argument("--org", default=None, help="Organization login")
    list_cmd.add_argument("--query", default=None, help="Search text")
    list_cmd.add_argument(
        "--sort",
        type=SortField,
        choices=list(SortField),
        default=SortField.UPDATED_AT,
    )
    list_cmd.add_argument(
        "--direction",
        type=SortDirection,
        choices=list(SortDirection),
        default=SortDirection.DESC,
    )
    list_cmd.add_argument(
        "--visibility",
        type=VisibilityFilter,
        choices=list(VisibilityFilter),
        default=VisibilityFilter.ALL,
    )
    list_cmd.add_argument(
        "--no-fork-tracking",
        dest="fork_tracking",
        action="store_false",
        help="Skip commit-count snapshots for forks",
    )
    list_cmd.add_argument("--pages", type=int, default=1, help="Pages to load")
    list_cmd.add_argument("--cursor", type=int, default=0, help="Highlighted row")
    list_cmd.add_argument(
        "--height", type=int, default=20, help="Viewport height in rows"
    )
    list_cmd.add_argument(
        "--refresh", action="store_true", help="Ignore cached pages"
    )
    list_cmd.add_argument(
        "--filter", default=None, help="Only print rows whose name or description match"
    )

    commands.add_parser("status", help="Show cache files and freshness records")
    commands.add_parser("purge", help="Delete the persisted cache files")
    return parser


def _format_row(index: int, record: RepositoryRecord, *, selected: bool) -> str:
    marker = ">" if selected else " "
    flags = "".join(
        flag
        for flag, present in (
            ("A", record.is_archived),
            ("F", record.is_fork),
            ("*", bool(record.viewer_has_starred)),
        )
        if present
    )
    behind = record.commits_behind
    behind_text = f" behind={behind}" if behind else ""
    return (
        f"{marker}{index + 1:>5} {record.name_with_owner:<50} "
        f"{record.visibility.lower():<8} stars={record.stargazer_count}"
        f"{behind_text} {flags}".rstrip()
    )


async def run_list(
    args: argparse.Namespace,
    config: EngineConfig,
    client: RepositoryNetworkClient,
    viewer_login: str,
) -> int:
    """Load ``args.pages`` pages of the chosen source and print the window."""
    if args.source is SourceKind.SEARCH and not is_server_search(args.query):
        print(f"search text must be at least {MIN_SEARCH_LENGTH} characters")
        return _EXIT_ERROR
    spec = QuerySpecification(
        source=args.source,
        viewer_login=viewer_login,
        organization_login=args.org,
        search_text=args.query,
        sort_field=args.sort,
        sort_direction=args.direction,
        page_size=config.page_size,
        fork_tracking=args.fork_tracking,
        visibility_filter=args.visibility,
    )
    engine = RepositoryListEngine.open(client, config)
    try:
        engine.set_query(spec)
        await engine.load(policy=FetchPolicy.NETWORK_ONLY if args.refresh else None)
        accumulator = engine.accumulator()
        for _ in range(max(0, args.pages - 1)):
            if await accumulator.fetch_next_page() is None:
                break
        state = accumulator.state
        engine.set_viewport(item_height=1, container_height=args.height)
        cursor = engine.move_cursor(args.cursor)
        window = engine.get_virtual_window()
        print(
            f"{spec.source}: {len(state.items)} of {state.total_count} loaded; "
            f"rows {window.start + 1}-{window.end}"
        )
        if args.filter:
            matches = engine.filtered_items(args.filter)
            print(f"{len(matches)} loaded rows match {args.filter!r}")
            for index, record in enumerate(matches[: args.height]):
                print(_format_row(index, record, selected=False))
        else:
            for row in engine.visible_items():
                print(
                    _format_row(row.index, row.item, selected=row.index == cursor)
                )
        if state.has_next_page:
            print("more pages available")
    finally:
        await engine.aclose()
    return 0


async def _list_command(args: argparse.Namespace, config: EngineConfig) -> int:
    client = GitHubGraphQLClient(GitHubGraphQLConfig.from_env())
    try:
        viewer_login = await client.fetch_viewer_login()
        return await run_list(args, config, client, viewer_login)
    finally:
        await client.aclose()


def run_status(config: EngineConfig) -> int:
    """Print the persisted files, their sizes and the freshness records."""
    now = utcnow()
    for path in (config.object_cache_path, config.freshness_path):
        size = f"{path.stat().st_size} bytes" if path.exists() else "missing"
        print(f"{path}: {size}")

    cache = NormalizedObjectCache(config.object_cache_path)
    cache.restore()
    stats = cache.stats()
    print(f"cached repositories: {stats.records}, cached pages: {stats.pages}")

    entries = FreshnessStore(config.freshness_path).entries()
    print(f"freshness records: {len(entries)}")
    for key, fetched_at in entries.items():
        ttl = (
            config.search_ttl
            if key.startswith(f"{SourceKind.SEARCH}:")
            else config.list_ttl
        )
        age = now - fetched_at
        state = "fresh" if age <= ttl else "stale"
        print(f"  {key} fetched {int(age.total_seconds())}s ago ({state})")
    return 0


def run_purge(config: EngineConfig) -> int:
    """Delete the object cache and freshness documents."""
    cache_error = NormalizedObjectCache(config.object_cache_path).purge()
    freshness_error = FreshnessStore(config.freshness_path).clear()
    if cache_error or freshness_error:
        print("purge incomplete; see log for details")
        return _EXIT_ERROR
    print(f"purged cache files in {config.data_dir}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the ``repodeck`` command line.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 1 on errors, 2 when rate limited.

    """
    args = _build_parser().parse_args(argv)
    log_level_str = args.log_level or os.environ.get("REPODECK_LOG_LEVEL", "INFO")
    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid log level %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    try:
        config = EngineConfig.from_env()
    except ValueError as exc:
        print(f"invalid configuration: {exc}")
        return _EXIT_ERROR

    match args.command:
        case "status":
            return run_status(config)
        case "purge":
            return run_purge(config)
        case _:
            try:
                return asyncio.run(_list_command(args, config))
            except GitHubRateLimitError as exc:
                when = exc.reset_at.isoformat() if exc.reset_at else "later"
                print(f"GitHub rate limit exhausted; try again after {when}")
                return _EXIT_RATE_LIMITED
            except (GitHubAPIError, GitHubConfigError, QuerySpecificationError) as exc:
                log_exception(logger, "repodeck list failed", exc)
                print(f"error: {exc}")
                return _EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
