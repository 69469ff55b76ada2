"""
Shared pytest fixtures.

Author: CADSync Project
License: MIT
"""

import pytest

from cadsync.config.schema import Config
from cadsync.core.orchestrator import Orchestrator
from cadsync.core.safety_guard import DeletionSafetyGuard
from cadsync.core.state_store import FileStateStore
from cadsync.core.sync_engine import SyncEngine
from cadsync.providers.base import Location

from fakes import InMemoryProvider


@pytest.fixture
def providers():
    """One empty in-memory provider per location."""
    return {loc: InMemoryProvider(loc) for loc in (Location.LOCAL, Location.CLOUD, Location.SHARE)}


@pytest.fixture
def state_db(tmp_path):
    return tmp_path / "state.db"


@pytest.fixture
def state_store(state_db):
    store = FileStateStore(str(state_db))
    yield store
    store.close()


@pytest.fixture
def make_engine(providers, state_store):
    """Factory building an engine over the fixture providers."""
    def _make(max_deletions=50, max_deletion_ratio=0.30, **kwargs):
        return SyncEngine(
            providers,
            state_store,
            guard=DeletionSafetyGuard(max_deletions, max_deletion_ratio),
            max_workers=kwargs.pop("max_workers", 4),
            **kwargs
        )
    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def app_config(tmp_path):
    """Configuration that keeps every file under the test directory."""
    return Config(sync={
        "state_db": str(tmp_path / "state.db"),
        "hash_cache_file": None,
        "max_workers": 2,
    })


@pytest.fixture
def orchestrator(app_config, providers, state_store):
    orch = Orchestrator(app_config, providers=providers, state_store=state_store)
    yield orch
    orch.wait(timeout=10)
