"""GitHub transport: typed records, errors and the httpx API client."""

from __future__ import annotations

from .client import (
    ForkSyncResult,
    GitHubGraphQLClient,
    GitHubGraphQLConfig,
    RenameResult,
    RepositoryNetworkClient,
)
from .errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
)
from .models import PageResult, RateLimitSnapshot, RepositoryRecord, Visibility

__all__ = [
    "ForkSyncResult",
    "GitHubAPIError",
    "GitHubConfigError",
    "GitHubGraphQLClient",
    "GitHubGraphQLConfig",
    "GitHubRateLimitError",
    "GitHubResponseShapeError",
    "PageResult",
    "RateLimitSnapshot",
    "RenameResult",
    "RepositoryNetworkClient",
    "RepositoryRecord",
    "Visibility",
]
