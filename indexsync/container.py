"""
Service wiring. The only place where concrete adapters are chosen and services are constructed.

Usage:
    services = build_services(get_settings())
    await services.registry.load()
    task_id = services.orchestrator.rebuild("orders-idx")
"""

from dataclasses import dataclass

from indexsync.config.logging import get_logger
from indexsync.config.settings import Settings
from indexsync.repositories.base import DefinitionStore, DocumentSource, SearchEngine
from indexsync.repositories.memory import InMemoryDefinitionStore, InMemoryDocumentSource, InMemorySearchEngine
from indexsync.services.rebuild import RebuildOrchestrator
from indexsync.services.registry import IndexRegistry
from indexsync.services.search import SubstringSearchEngine
from indexsync.services.stats import StatsAggregator
from indexsync.services.tasks import TaskTracker
from indexsync.utils.retry import RetryPolicy

logger = get_logger(__name__)


@dataclass
class Services:
    backend: str
    store: DefinitionStore
    source: DocumentSource
    engine: SearchEngine
    registry: IndexRegistry
    tracker: TaskTracker
    orchestrator: RebuildOrchestrator
    stats: StatsAggregator
    search: SubstringSearchEngine


def _build_adapters(settings: Settings) -> tuple[DefinitionStore, DocumentSource, SearchEngine]:
    if settings.backend == "memory":
        return InMemoryDefinitionStore(), InMemoryDocumentSource(), InMemorySearchEngine()

    # Imported here so the memory backend never needs a driver connection
    from indexsync.repositories.mongodb.definitions_repository import MongoDefinitionStore
    from indexsync.repositories.mongodb.source_repository import MongoDocumentSource
    from indexsync.repositories.opensearch.documents_repository import OpenSearchEngine

    return (
        MongoDefinitionStore(),
        MongoDocumentSource(id_field=settings.source_id_field),
        OpenSearchEngine(),
    )


def build_services(
    settings: Settings,
    *,
    store: DefinitionStore | None = None,
    source: DocumentSource | None = None,
    engine: SearchEngine | None = None,
) -> Services:
    """Adapters passed explicitly take precedence over the ones selected by settings.backend."""
    default_store, default_source, default_engine = _build_adapters(settings)
    store = store or default_store
    source = source or default_source
    engine = engine or default_engine

    retry_policy = RetryPolicy(
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    registry = IndexRegistry(store)
    tracker = TaskTracker(ttl_seconds=settings.task_ttl_seconds)
    registry.add_delete_listener(tracker.forget_index)

    services = Services(
        backend=settings.backend,
        store=store,
        source=source,
        engine=engine,
        registry=registry,
        tracker=tracker,
        orchestrator=RebuildOrchestrator(
            registry,
            source,
            engine,
            tracker,
            batch_size=settings.rebuild_batch_size,
            retry_policy=retry_policy,
            timeout_seconds=settings.rebuild_timeout_seconds,
        ),
        stats=StatsAggregator(registry, source, engine, retry_policy=retry_policy),
        search=SubstringSearchEngine(registry, engine, page_size=settings.scan_page_size),
    )
    logger.info(
        "Services built",
        extra={"backend": settings.backend, "batch_size": settings.rebuild_batch_size},
    )
    return services
