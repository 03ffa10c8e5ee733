"""
Global test configuration and fixtures. Core services run against the in-memory adapters.
"""

import pytest

from indexsync.repositories.memory import InMemoryDefinitionStore, InMemoryDocumentSource, InMemorySearchEngine
from indexsync.services.rebuild import RebuildOrchestrator
from indexsync.services.registry import IndexRegistry
from indexsync.services.search import SubstringSearchEngine
from indexsync.services.stats import StatsAggregator
from indexsync.services.tasks import TaskTracker
from indexsync.utils.retry import RetryPolicy


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    """Three attempts without backoff sleeps."""
    return RetryPolicy(attempts=3, base_delay=0, max_delay=0, jitter=False)


@pytest.fixture
def store() -> InMemoryDefinitionStore:
    return InMemoryDefinitionStore()


@pytest.fixture
def source() -> InMemoryDocumentSource:
    return InMemoryDocumentSource()


@pytest.fixture
def engine() -> InMemorySearchEngine:
    return InMemorySearchEngine()


@pytest.fixture
def registry(store) -> IndexRegistry:
    return IndexRegistry(store)


@pytest.fixture
def tracker(registry) -> TaskTracker:
    tracker = TaskTracker(ttl_seconds=3600)
    registry.add_delete_listener(tracker.forget_index)
    return tracker


@pytest.fixture
def orchestrator(registry, source, engine, tracker, no_wait_retry) -> RebuildOrchestrator:
    return RebuildOrchestrator(registry, source, engine, tracker, batch_size=500, retry_policy=no_wait_retry)


@pytest.fixture
def stats(registry, source, engine, no_wait_retry) -> StatsAggregator:
    return StatsAggregator(registry, source, engine, retry_policy=no_wait_retry)


@pytest.fixture
def search(registry, engine) -> SubstringSearchEngine:
    return SubstringSearchEngine(registry, engine, page_size=2)


@pytest.fixture
def shop_orders(source) -> InMemoryDocumentSource:
    """Three documents in shop.orders."""
    source.insert_many(
        "shop",
        "orders",
        {
            "o1": {"customer": "Ada", "total": 12.5, "items": [{"sku": "A-1"}, {"sku": "B-2"}]},
            "o2": {"customer": "Grace", "total": 7, "paid": True},
            "o3": {"customer": "Linus", "note": None},
        },
    )
    return source


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: HTTP surface tests against in-memory adapters")
