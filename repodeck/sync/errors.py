"""Errors raised or reported by the synchronization engine."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from pathlib import Path


class SyncError(Exception):
    """Base class for synchronization engine errors."""


class QuerySpecificationError(SyncError, ValueError):
    """Raised when a query specification cannot be sent to GitHub."""

    @classmethod
    def missing(cls, field: str, source: object) -> QuerySpecificationError:
        """Return an error for a field the source requires."""
        return cls(f"{field} is required for the {source} source")

    @classmethod
    def page_size(cls, value: int, maximum: int) -> QuerySpecificationError:
        """Return an error for an out-of-range page size."""
        return cls(f"page_size must be between 1 and {maximum}, got {value}")


class PersistenceError(SyncError):
    """Describes a failed read or write of a persisted engine file.

    Persistence failures are never fatal. Stores return this object instead of
    raising it so callers and tests can observe the failure path directly.

    Attributes
    ----------
    path
        File the operation targeted.
    operation
        ``"read"``, ``"write"`` or ``"remove"``.
    reason
        Text of the underlying error.

    """

    path: Path
    operation: str
    reason: str

    def __init__(self, path: Path, operation: str, reason: str) -> None:
        """Record the failed operation."""
        self.path = path
        self.operation = operation
        self.reason = reason
        super().__init__(f"failed to {operation} {path}: {reason}")

    @classmethod
    def from_exception(
        cls, path: Path, operation: str, exc: BaseException
    ) -> PersistenceError:
        """Wrap an I/O or decode exception."""
        return cls(path, operation, f"{type(exc).__name__}: {exc}")
