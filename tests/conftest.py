"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import pytest

from repodeck.config import EngineConfig
from repodeck.sync.freshness import FreshnessStore
from repodeck.sync.object_cache import NormalizedObjectCache
from tests.helpers.fakes import FakeClock, FakeNetworkClient

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def clock() -> FakeClock:
    """Provide a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    """Provide a configuration rooted in a temporary data directory."""
    return EngineConfig(data_dir=tmp_path / "data")


@pytest.fixture
def freshness_store(engine_config: EngineConfig, clock: FakeClock) -> FreshnessStore:
    """Provide a freshness store on the temporary data directory."""
    return FreshnessStore(engine_config.freshness_path, clock=clock)


@pytest.fixture
def object_cache(engine_config: EngineConfig) -> NormalizedObjectCache:
    """Provide an empty object cache with a short debounce."""
    return NormalizedObjectCache(engine_config.object_cache_path, debounce=0.01)


@pytest.fixture
def network_client() -> FakeNetworkClient:
    """Provide an in-memory network client."""
    return FakeNetworkClient()
