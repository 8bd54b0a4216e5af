"""GitHub API client for repository listing and repository mutations.

The client talks to the network only. Fetch-policy resolution and caching
live in :mod:`repodeck.sync.transport`, which wraps this client.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
import typing as typ

import httpx

from repodeck.common.time import parse_timestamp
from repodeck.logging import get_logger, log_debug, log_info
from repodeck.sync.query import QuerySpecification, SourceKind

from . import queries
from .errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
)
from .models import (
    BranchRef,
    Language,
    OwnerKind,
    PageResult,
    ParentRepository,
    RateLimitSnapshot,
    RepositoryOwner,
    RepositoryRecord,
    Visibility,
)

logger = get_logger(__name__)

_TOKEN_ENV_VARS = ("REPODECK_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")
_HTTP_ERROR_STATUS_THRESHOLD = 400
_RATE_LIMIT_STATUSES = frozenset({403, 429})
_HTTP_NO_CONTENT = 204
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_OK = 200
_HTTP_CONFLICT = 409
_HTTP_UNPROCESSABLE = 422
_REST_ACCEPT = "application/vnd.github+json"


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubGraphQLConfig:
    """Configuration for the GitHub API client."""

    token: str
    endpoint: str = "https://api.github.com/graphql"
    rest_endpoint: str = "https://api.github.com"
    timeout_s: float = 20.0
    user_agent: str = "repodeck/0.1"

    @classmethod
    def from_env(cls) -> GitHubGraphQLConfig:
        """Build configuration from the first non-empty token variable.

        ``REPODECK_GITHUB_TOKEN`` wins over ``GITHUB_TOKEN``, which wins over
        ``GH_TOKEN``.
        """
        for name in _TOKEN_ENV_VARS:
            token = os.environ.get(name, "").strip()
            if token:
                return cls(token=token)
        raise GitHubConfigError.missing_token()


@dataclasses.dataclass(frozen=True, slots=True)
class RenameResult:
    """Names GitHub reports after a rename."""

    name: str
    name_with_owner: str


@dataclasses.dataclass(frozen=True, slots=True)
class ForkSyncResult:
    """Outcome of ``POST /repos/{owner}/{repo}/merge-upstream``."""

    message: str
    merge_type: str
    base_branch: str


class RepositoryNetworkClient(typ.Protocol):
    """Network operations the synchronization engine depends on."""

    async def fetch_page(
        self, spec: QuerySpecification, cursor: str | None
    ) -> PageResult:
        """Fetch one page of the connection described by ``spec``."""
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
        """Merge upstream changes into a fork's default branch."""
        ...


# -- response parsing --------------------------------------------------------


def _str(node: dict[str, typ.Any], key: str) -> str | None:
    value = node.get(key)
    return value if isinstance(value, str) else None


def _int(node: dict[str, typ.Any], key: str, default: int = 0) -> int:
    value = node.get(key)
    return value if isinstance(value, int) and not isinstance(value, bool) else default


def _maybe_timestamp(value: object) -> dt.datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def _branch_from(raw: object) -> BranchRef | None:
    if not isinstance(raw, dict):
        return None
    commit_count: int | None = None
    target = raw.get("target")
    if isinstance(target, dict):
        history = target.get("history")
        if isinstance(history, dict) and isinstance(history.get("totalCount"), int):
            commit_count = history["totalCount"]
    return BranchRef(name=_str(raw, "name"), commit_count=commit_count)


def _parent_from(raw: object) -> ParentRepository | None:
    if not isinstance(raw, dict):
        return None
    name_with_owner = _str(raw, "nameWithOwner")
    if name_with_owner is None:
        return None
    return ParentRepository(
        name_with_owner=name_with_owner,
        default_branch=_branch_from(raw.get("defaultBranchRef")),
    )


def _owner_from(raw: object) -> RepositoryOwner | None:
    if not isinstance(raw, dict):
        return None
    login = _str(raw, "login")
    typename = _str(raw, "__typename")
    if login is None or typename not in {kind.value for kind in OwnerKind}:
        return None
    return RepositoryOwner(kind=OwnerKind(typename), login=login)


def _language_from(raw: object) -> Language | None:
    if not isinstance(raw, dict):
        return None
    name = _str(raw, "name")
    if name is None:
        return None
    return Language(name=name, color=_str(raw, "color"))


def record_from_node(node: object) -> RepositoryRecord | None:
    """Convert a GraphQL repository node, or return ``None`` if unusable.

    Search connections may contain empty objects for non-repository hits;
    those, and nodes missing identity fields, are skipped.
    """
    if not isinstance(node, dict):
        return None
    repository_id = _str(node, "id")
    name = _str(node, "name")
    name_with_owner = _str(node, "nameWithOwner")
    raw_visibility = _str(node, "visibility")
    if not (repository_id and name and name_with_owner):
        return None
    if raw_visibility not in {member.value for member in Visibility}:
        raw_visibility = (
            Visibility.PRIVATE.value
            if node.get("isPrivate")
            else Visibility.PUBLIC.value
        )
    visibility = Visibility(raw_visibility)
    starred = node.get("viewerHasStarred")
    return RepositoryRecord(
        id=repository_id,
        name=name,
        name_with_owner=name_with_owner,
        description=_str(node, "description"),
        visibility=visibility,
        is_private=visibility is Visibility.PRIVATE,
        is_fork=bool(node.get("isFork", False)),
        is_archived=bool(node.get("isArchived", False)),
        stargazer_count=_int(node, "stargazerCount"),
        fork_count=_int(node, "forkCount"),
        disk_usage=_int(node, "diskUsage"),
        updated_at=_maybe_timestamp(node.get("updatedAt")),
        pushed_at=_maybe_timestamp(node.get("pushedAt")),
        primary_language=_language_from(node.get("primaryLanguage")),
        parent=_parent_from(node.get("parent")),
        default_branch=_branch_from(node.get("defaultBranchRef")),
        owner=_owner_from(node.get("owner")),
        viewer_has_starred=starred if isinstance(starred, bool) else None,
    )


def _rate_limit_from(data: dict[str, typ.Any]) -> RateLimitSnapshot | None:
    raw = data.get("rateLimit")
    if not isinstance(raw, dict):
        return None
    reset_at = _maybe_timestamp(raw.get("resetAt"))
    if reset_at is None:
        return None
    return RateLimitSnapshot(
        limit=_int(raw, "limit"), remaining=_int(raw, "remaining"), reset_at=reset_at
    )


def _traverse(data: dict[str, typ.Any], path: tuple[str, ...]) -> dict[str, typ.Any]:
    node: object = data
    for key in path:
        if not isinstance(node, dict):
            raise GitHubResponseShapeError.missing(".".join(path))
        node = node.get(key)
    if not isinstance(node, dict):
        raise GitHubResponseShapeError.missing(".".join(path))
    return node


def page_from_connection(
    data: dict[str, typ.Any],
    path: tuple[str, ...],
    *,
    count_field: str = "totalCount",
) -> PageResult:
    """Build a :class:`PageResult` from the connection at ``path``."""
    connection = _traverse(data, path)
    nodes = connection.get("nodes")
    if not isinstance(nodes, list):
        raise GitHubResponseShapeError.missing(".".join((*path, "nodes")))
    page_info = connection.get("pageInfo")
    if not isinstance(page_info, dict):
        raise GitHubResponseShapeError.missing(".".join((*path, "pageInfo")))
    records = tuple(
        record for record in (record_from_node(node) for node in nodes) if record
    )
    return PageResult(
        nodes=records,
        end_cursor=_str(page_info, "endCursor"),
        has_next_page=bool(page_info.get("hasNextPage", False)),
        total_count=_int(connection, count_field, default=len(records)),
        rate_limit=_rate_limit_from(data),
    )


def _is_rate_limited(errors: list[typ.Any]) -> bool:
    return any(
        isinstance(error, dict) and error.get("type") == "RATE_LIMITED"
        for error in errors
    )


def _parse_graphql_payload(payload_raw: object) -> dict[str, typ.Any]:
    """Validate a GraphQL response payload and return its data field."""
    if not isinstance(payload_raw, dict):
        raise GitHubResponseShapeError.missing("response")

    errors = payload_raw.get("errors")
    if errors:
        if isinstance(errors, list) and _is_rate_limited(errors):
            raise GitHubRateLimitError.exhausted(status_code=None, reset_at=None)
        raise GitHubAPIError.graphql_errors(errors)

    data = payload_raw.get("data")
    if not isinstance(data, dict):
        raise GitHubResponseShapeError.missing("data")
    return data


def _rate_limit_error(response: httpx.Response) -> GitHubRateLimitError | None:
    """Return a rate-limit error when ``response`` signals an exhausted quota."""
    if response.status_code not in _RATE_LIMIT_STATUSES:
        return None
    remaining = response.headers.get("x-ratelimit-remaining")
    if remaining != "0" and response.status_code != _HTTP_TOO_MANY_REQUESTS:
        return None
    reset_at: dt.datetime | None = None
    raw_reset = response.headers.get("x-ratelimit-reset", "")
    if raw_reset.isdigit():
        reset_at = dt.datetime.fromtimestamp(int(raw_reset), tz=dt.UTC)
    return GitHubRateLimitError.exhausted(
        status_code=response.status_code, reset_at=reset_at
    )


def _error_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return None


def search_query_text(spec: QuerySpecification) -> str:
    """Return the GitHub search string for a ``SEARCH`` specification.

    Searches are scoped to the organization when one is set, otherwise to
    the viewer, and include forks.
    """
    scope = (
        f"org:{spec.organization_login}"
        if spec.organization_login
        else f"user:{spec.viewer_login}"
    )
    text = (spec.search_text or "").strip()
    return f"{text} {scope} in:name,description fork:true"


class GitHubGraphQLClient:
    """httpx implementation of :class:`RepositoryNetworkClient`."""

    def __init__(
        self,
        config: GitHubGraphQLConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/json",
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def _graphql(
        self, query: str, variables: dict[str, typ.Any]
    ) -> dict[str, typ.Any]:
        """Execute a GraphQL document and return the validated data field."""
        response = await self._client.post(
            self._config.endpoint,
            json={"query": query, "variables": variables},
        )
        rate_limited = _rate_limit_error(response)
        if rate_limited is not None:
            raise rate_limited
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.http_error(response.status_code)
        return _parse_graphql_payload(response.json())

    async def _rest(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, typ.Any] | None = None,
    ) -> httpx.Response:
        response = await self._client.request(
            method,
            f"{self._config.rest_endpoint}{path}",
            json=json,
            headers={"Accept": _REST_ACCEPT},
        )
        rate_limited = _rate_limit_error(response)
        if rate_limited is not None:
            raise rate_limited
        return response

    async def fetch_viewer_login(self) -> str:
        """Return the authenticated user's login."""
        data = await self._graphql(queries.VIEWER_LOGIN_QUERY, {})
        login = _traverse(data, ("viewer",)).get("login")
        if not isinstance(login, str):
            raise GitHubResponseShapeError.missing("viewer.login")
        return login

    async def fetch_page(
        self, spec: QuerySpecification, cursor: str | None
    ) -> PageResult:
        """Fetch one page of the connection described by ``spec``."""
        tracking = spec.fork_tracking
        ordering = {
            "first": spec.page_size,
            "after": cursor,
            "sortField": spec.sort_field.value,
            "sortDirection": spec.sort_direction.value,
            "privacy": spec.privacy,
        }
        match spec.source:
            case SourceKind.PERSONAL:
                data = await self._graphql(
                    queries.viewer_repositories_query(fork_tracking=tracking),
                    {
                        **ordering,
                        "affiliations": sorted(a.value for a in spec.affiliations),
                    },
                )
                page = page_from_connection(data, ("viewer", "repositories"))
            case SourceKind.ORGANIZATION:
                data = await self._graphql(
                    queries.organization_repositories_query(fork_tracking=tracking),
                    {**ordering, "orgLogin": spec.organization_login},
                )
                page = page_from_connection(data, ("organization", "repositories"))
            case SourceKind.SEARCH:
                data = await self._graphql(
                    queries.search_repositories_query(fork_tracking=tracking),
                    {
                        "q": search_query_text(spec),
                        "first": spec.page_size,
                        "after": cursor,
                    },
                )
                page = page_from_connection(
                    data, ("search",), count_field="repositoryCount"
                )
            case SourceKind.STARRED:
                data = await self._graphql(
                    queries.starred_repositories_query(fork_tracking=tracking),
                    {"first": spec.page_size, "after": cursor},
                )
                page = page_from_connection(data, ("viewer", "starredRepositories"))
        log_debug(
            logger,
            "Fetched %s page after=%s nodes=%d total=%d has_next=%s",
            spec.source,
            cursor,
            len(page.nodes),
            page.total_count,
            page.has_next_page,
        )
        return page

    async def delete_repository(self, record: RepositoryRecord) -> None:
        """Delete a repository through ``DELETE /repos/{owner}/{repo}``.

        GraphQL has no delete mutation; the token needs the ``delete_repo``
        scope.
        """
        response = await self._rest("DELETE", f"/repos/{record.name_with_owner}")
        if response.status_code != _HTTP_NO_CONTENT:
            raise GitHubAPIError.rest_error(
                "delete", response.status_code, _error_detail(response)
            )
        log_info(logger, "Deleted repository %s", record.name_with_owner)

    async def set_archived(self, repository_id: str, *, archived: bool) -> None:
        """Archive or unarchive a repository."""
        mutation = queries.ARCHIVE_MUTATION if archived else queries.UNARCHIVE_MUTATION
        await self._graphql(mutation, {"repositoryId": repository_id})
        log_info(
            logger,
            "%s repository %s",
            "Archived" if archived else "Unarchived",
            repository_id,
        )

    async def set_visibility(
        self, record: RepositoryRecord, visibility: Visibility
    ) -> None:
        """Change visibility through ``PATCH /repos/{owner}/{repo}``."""
        response = await self._rest(
            "PATCH",
            f"/repos/{record.name_with_owner}",
            json={"visibility": visibility.value.lower()},
        )
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.rest_error(
                "visibility change", response.status_code, _error_detail(response)
            )
        log_info(
            logger, "Changed visibility of %s to %s", record.name_with_owner, visibility
        )

    async def rename_repository(
        self, repository_id: str, new_name: str
    ) -> RenameResult:
        """Rename a repository and return the names GitHub now reports."""
        data = await self._graphql(
            queries.RENAME_MUTATION, {"repositoryId": repository_id, "name": new_name}
        )
        repository = _traverse(data, ("updateRepository", "repository"))
        name = _str(repository, "name")
        name_with_owner = _str(repository, "nameWithOwner")
        if name is None or name_with_owner is None:
            raise GitHubResponseShapeError.missing("updateRepository.repository")
        log_info(logger, "Renamed repository %s to %s", repository_id, name_with_owner)
        return RenameResult(name=name, name_with_owner=name_with_owner)

    async def set_starred(self, repository_id: str, *, starred: bool) -> None:
        """Star or unstar a repository."""
        mutation = queries.STAR_MUTATION if starred else queries.UNSTAR_MUTATION
        await self._graphql(mutation, {"starrableId": repository_id})
        log_info(
            logger,
            "%s repository %s",
            "Starred" if starred else "Unstarred",
            repository_id,
        )

    async def sync_fork(self, record: RepositoryRecord) -> ForkSyncResult:
        """Merge upstream into the fork's default branch.

        ``204`` means the fork was already up to date. ``409`` (conflicts) and
        ``422`` (branch cannot be synced) are reported with an explanation.
        """
        branch = (
            record.default_branch.name
            if record.default_branch and record.default_branch.name
            else "main"
        )
        response = await self._rest(
            "POST",
            f"/repos/{record.name_with_owner}/merge-upstream",
            json={"branch": branch},
        )
        if response.status_code == _HTTP_NO_CONTENT:
            return ForkSyncResult(
                message="Already up-to-date", merge_type="none", base_branch=branch
            )
        if response.status_code == _HTTP_OK:
            body = response.json()
            if not isinstance(body, dict):
                raise GitHubResponseShapeError.missing("merge-upstream response")
            log_info(logger, "Synced fork %s with upstream", record.name_with_owner)
            return ForkSyncResult(
                message=str(body.get("message", "")),
                merge_type=str(body.get("merge_type", "")),
                base_branch=str(body.get("base_branch", branch)),
            )
        detail = _error_detail(response)
        if response.status_code == _HTTP_CONFLICT:
            detail = (
                f"{detail or 'merge conflict'} "
                "(conflicts detected - manual merge required)"
            )
        elif response.status_code == _HTTP_UNPROCESSABLE:
            detail = f"{detail or 'unprocessable'} (branch could not be synced)"
        raise GitHubAPIError.rest_error("fork sync", response.status_code, detail)


__all__ = [
    "ForkSyncResult",
    "GitHubGraphQLClient",
    "GitHubGraphQLConfig",
    "RenameResult",
    "RepositoryNetworkClient",
    "page_from_connection",
    "record_from_node",
    "search_query_text",
]
