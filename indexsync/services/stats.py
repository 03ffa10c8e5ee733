"""Stats Aggregator: source-vs-index document counts. Every call samples the adapters afresh."""

import asyncio
from functools import partial

from indexsync.config.logging import get_logger
from indexsync.domain.errors import InvalidSourceError
from indexsync.domain.models import CollectionStats, IndexStats, SourceBinding
from indexsync.repositories.base import DocumentSource, SearchEngine
from indexsync.services.registry import IndexRegistry
from indexsync.utils.retry import RetryPolicy, retry_async

logger = get_logger(__name__)


class StatsAggregator:
    def __init__(
        self,
        registry: IndexRegistry,
        source: DocumentSource,
        engine: SearchEngine,
        *,
        retry_policy: RetryPolicy | None = None,
    ):
        self._registry = registry
        self._source = source
        self._engine = engine
        self._retry_policy = retry_policy or RetryPolicy()

    async def _binding_stats(self, target: str, binding: SourceBinding) -> CollectionStats:
        doc_count, indexed_doc_count = await asyncio.gather(
            retry_async(
                partial(self._source.count, binding.database, binding.collection),
                self._retry_policy,
                context=f"count {binding}",
            ),
            retry_async(
                partial(self._engine.count_by_provenance, target, binding),
                self._retry_policy,
                context=f"count {binding} in {target}",
            ),
        )
        return CollectionStats(
            database=binding.database,
            collection=binding.collection,
            doc_count=doc_count,
            indexed_doc_count=indexed_doc_count,
        )

    async def index_stats(self, name: str) -> IndexStats:
        """Raises NotFoundError for unknown indices; adapter outages propagate after retries."""
        definition = self._registry.get(name)
        target = definition.target_index_name
        indexed_total, *per_source = await asyncio.gather(
            retry_async(partial(self._engine.count, target), self._retry_policy, context=f"count {target}"),
            *(self._binding_stats(target, binding) for binding in definition.sources),
        )
        stats = IndexStats(
            index_name=name,
            target_index_name=target,
            total_source_docs_count=sum(s.doc_count for s in per_source),
            indexed_docs_count=indexed_total,
            per_source_stats=per_source,
        )
        logger.debug("Index stats computed", extra={"index_name": name, "drift": stats.drift})
        return stats

    async def collection_stats(self, name: str, database: str, collection: str) -> CollectionStats:
        definition = self._registry.get(name)
        binding = SourceBinding.of(database, collection)
        if not definition.has_source(binding):
            raise InvalidSourceError(f"Source {binding} is not part of index {name!r}")
        return await self._binding_stats(definition.target_index_name, binding)
