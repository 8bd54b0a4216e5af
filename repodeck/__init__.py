"""Repository list synchronization and windowing for a terminal GitHub client."""

from __future__ import annotations

from repodeck.config import EngineConfig
from repodeck.sync import QuerySpecification, RepositoryListEngine, SourceKind

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "QuerySpecification",
    "RepositoryListEngine",
    "SourceKind",
    "__version__",
]
