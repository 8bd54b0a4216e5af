"""GitHub transport errors."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt


class GitHubAPIError(RuntimeError):
    """Raised when GitHub returns an error response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int) -> GitHubAPIError:
        """Return an error for non-2xx GraphQL HTTP responses."""
        return cls(f"GitHub GraphQL HTTP {status_code}", status_code=status_code)

    @classmethod
    def graphql_errors(cls, errors: object) -> GitHubAPIError:
        """Return an error for GraphQL `errors` payloads."""
        return cls(f"GitHub GraphQL errors: {errors}")

    @classmethod
    def rest_error(
        cls, operation: str, status_code: int, detail: str | None = None
    ) -> GitHubAPIError:
        """Return an error for a failed REST call, with GitHub's message if any."""
        message = f"GitHub REST {operation} failed (status {status_code})"
        if detail:
            message = f"{message}: {detail}"
        return cls(message, status_code=status_code)


class GitHubRateLimitError(GitHubAPIError):
    """Raised when the API rate limit is exhausted.

    Callers present a "try later" flow instead of a generic failure;
    ``reset_at`` is ``None`` when GitHub did not say when the quota resets.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        reset_at: dt.datetime | None = None,
    ) -> None:
        """Initialise with the optional reset time."""
        self.reset_at = reset_at
        super().__init__(message, status_code=status_code)

    @classmethod
    def exhausted(
        cls, *, status_code: int | None, reset_at: dt.datetime | None
    ) -> GitHubRateLimitError:
        """Return an error for an exhausted rate-limit window."""
        suffix = f"; resets at {reset_at.isoformat()}" if reset_at else ""
        return cls(
            f"GitHub API rate limit exceeded{suffix}",
            status_code=status_code,
            reset_at=reset_at,
        )


class GitHubResponseShapeError(RuntimeError):
    """Raised when GitHub responses are missing expected fields."""

    @classmethod
    def missing(cls, field: str) -> GitHubResponseShapeError:
        """Return an error for a missing response field."""
        return cls(f"GitHub response missing expected field: {field}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def missing_token(cls) -> GitHubConfigError:
        """Return an error when no GitHub token is configured."""
        return cls(
            "REPODECK_GITHUB_TOKEN (or GITHUB_TOKEN / GH_TOKEN) is required "
            "for the GitHub API"
        )

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")
