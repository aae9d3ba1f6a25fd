"""
Pytest configuration and shared fixtures for LifeGraph tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests touching SQLite files or the ASGI app
- integration: Tests requiring external APIs
- requires_ollama: Tests requiring Ollama LLM to be running

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import pytest

from api.services.blob_store import SqliteBlobStore
from api.services.container import GraphContainer
from api.services.entity_store import EntityStore
from api.services.identity_resolver import IdentityResolver
from api.services.sync_runs import SyncRunTracker
from tests.fixtures.graph_data import FakeEnrichment


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (SQLite files, ASGI app)")
    config.addinivalue_line("markers", "integration: Integration tests (external APIs)")
    config.addinivalue_line("markers", "requires_ollama: Requires Ollama running")


@pytest.fixture
def store():
    """Memory-only entity store (no durable mirror)."""
    return EntityStore()


@pytest.fixture
def resolver(store):
    return IdentityResolver(store)


@pytest.fixture
def tracker(store):
    return SyncRunTracker(store)


@pytest.fixture
def blobs():
    return SqliteBlobStore()


@pytest.fixture
def enrichment():
    return FakeEnrichment()


@pytest.fixture
def graph(enrichment):
    """Container with in-memory backends and inline durable writes."""
    container = GraphContainer(blobs=SqliteBlobStore(), enrichment=enrichment, async_writes=False)
    container.start()
    yield container
    container.close()


def pytest_collection_modifyitems(config, items):
    """Auto-mark integration tests by name."""
    for item in items:
        if "integration" in item.name or "real_" in item.name:
            item.add_marker(pytest.mark.integration)
