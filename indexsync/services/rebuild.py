"""
Rebuild Orchestrator: copies source collections into a target index as flattened documents.

A rebuild runs as a background task (pending -> running -> completed | failed). Writes are by
deterministic id, so repeating a rebuild over unchanged data yields the same document set. After a
binding has been fully copied without per-document failures, documents of that provenance that this
rebuild did not write are swept, which drops documents deleted at the source. A clean full rebuild
then sweeps the whole target the same way, which drops documents of bindings the definition no
longer has. Only one rebuild writes into a target at a time.
"""

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial
from typing import TypeVar

from indexsync.config.logging import get_logger
from indexsync.domain.errors import InvalidSourceError, RebuildInProgressError, RepositoryError
from indexsync.domain.models import IndexedDocument, RebuildTask, SourceBinding, SourceDocument
from indexsync.repositories.base import DocumentSource, SearchEngine
from indexsync.services.registry import IndexRegistry
from indexsync.services.tasks import TaskHandle, TaskTracker
from indexsync.utils.flatten import flatten_document
from indexsync.utils.ids import generate_task_id, indexed_document_id
from indexsync.utils.retry import RetryPolicy, retry_async
from indexsync.utils.time import utc_now

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 500


def to_indexed_document(binding: SourceBinding, document: SourceDocument, rebuild_id: str | None) -> IndexedDocument:
    return IndexedDocument(
        id=indexed_document_id(binding.database, binding.collection, document.doc_id),
        fields=flatten_document(document.body),
        provenance=binding,
        rebuild_id=rebuild_id,
    )


class _Stopped(Exception):
    """Cooperative stop between batches (cancel request or deadline)."""


class RebuildOrchestrator:
    def __init__(
        self,
        registry: IndexRegistry,
        source: DocumentSource,
        engine: SearchEngine,
        tracker: TaskTracker,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._registry = registry
        self._source = source
        self._engine = engine
        self._tracker = tracker
        self._batch_size = batch_size
        self._retry_policy = retry_policy or RetryPolicy()
        self._timeout = timeout_seconds

    async def _retry(self, func: Callable[[], Awaitable[T]], context: str) -> T:
        return await retry_async(func, self._retry_policy, context=context)

    def rebuild(self, name: str, scope: SourceBinding | None = None, max_docs: int | None = None) -> str:
        """
        Submit a rebuild of every binding of the index, or only `scope`. Returns the task id at once.
        Raises NotFoundError, InvalidSourceError (scope not part of the index), or RebuildInProgressError.
        """
        definition = self._registry.get(name)
        if scope is not None and not definition.has_source(scope):
            raise InvalidSourceError(f"Source {scope} is not part of index {name!r}")
        if max_docs is not None and max_docs < 0:
            raise ValueError("max_docs must be >= 0")

        target = definition.target_index_name
        # Check-and-submit has no await in between, so two callers cannot both pass the guard
        active = self._tracker.active_task(name) or self._tracker.active_task_for_target(target)
        if active is not None:
            raise RebuildInProgressError(name, active.task_id)

        task = RebuildTask(
            task_id=generate_task_id(),
            index_name=name,
            target_index_name=target,
            scope=scope,
            max_docs=max_docs,
            started_at=utc_now(),
        )
        bindings = (scope,) if scope is not None else definition.sources
        work = partial(self._run, target=target, bindings=bindings, full=scope is None, max_docs=max_docs)
        return self._tracker.submit(task, work)

    def cancel(self, task_id: str) -> RebuildTask:
        """Request cooperative cancellation; takes effect at the next batch boundary."""
        return self._tracker.request_cancel(task_id)

    async def _run(
        self,
        handle: TaskHandle,
        *,
        target: str,
        bindings: tuple[SourceBinding, ...],
        full: bool,
        max_docs: int | None,
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = None if self._timeout is None else loop.time() + self._timeout
        log_ctx = {"task_id": handle.task_id, "index_name": handle.snapshot.index_name, "target": target}
        try:
            total = 0
            for binding in bindings:
                total += await self._retry(
                    partial(self._source.count, binding.database, binding.collection), f"count {binding}"
                )
            if max_docs is not None:
                total = min(total, max_docs)
            handle.start(total)
            logger.info("Rebuild started", extra={**log_ctx, "sources": len(bindings), "total_docs": total})

            await self._retry(partial(self._engine.ensure_index, target), f"ensure index {target}")
            clean = True
            for binding in bindings:
                clean = await self._rebuild_binding(handle, target, binding, max_docs, deadline) and clean
            if full and clean:
                # Drops documents of bindings the definition no longer has
                self._check_stop(handle, deadline)
                await self._retry(
                    partial(self._engine.delete_not_written_by, target, handle.task_id), f"sweep {target}"
                )
        except _Stopped as stop:
            handle.fail(str(stop))
            logger.warning("Rebuild stopped", extra={**log_ctx, "reason": str(stop)})
            return
        except RepositoryError as e:
            handle.fail(f"Rebuild aborted: {e.message}")
            logger.error("Rebuild failed", extra={**log_ctx, "error": e.message})
            return

        task = handle.complete()
        logger.info(
            "Rebuild completed",
            extra={
                **log_ctx,
                "processed_docs": task.processed_docs,
                "indexed_docs": task.indexed_docs,
                "errors": len(task.errors),
            },
        )

    def _check_stop(self, handle: TaskHandle, deadline: float | None) -> None:
        if handle.cancel_requested:
            raise _Stopped("Rebuild cancelled by request")
        if deadline is not None and asyncio.get_running_loop().time() >= deadline:
            raise _Stopped(f"Rebuild timed out after {self._timeout}s")

    async def _rebuild_binding(
        self,
        handle: TaskHandle,
        target: str,
        binding: SourceBinding,
        max_docs: int | None,
        deadline: float | None,
    ) -> bool:
        """Copy one binding and sweep its stale documents. Returns False when the sweep was skipped."""
        token = None
        failures = 0
        truncated = False
        while True:
            self._check_stop(handle, deadline)
            remaining = None if max_docs is None else max_docs - handle.snapshot.processed_docs
            if remaining is not None and remaining <= 0:
                truncated = True
                break

            page = await self._retry(
                partial(self._source.scan_page, binding.database, binding.collection, self._batch_size, token),
                f"scan {binding}",
            )
            documents = page.documents
            if remaining is not None and len(documents) > remaining:
                documents = documents[:remaining]
                truncated = True
            if documents:
                failures += await self._write_batch(handle, target, binding, documents)
            if truncated or page.next_token is None:
                break
            token = page.next_token

        if truncated or failures:
            logger.info(
                "Stale sweep skipped",
                extra={"task_id": handle.task_id, "source": str(binding), "truncated": truncated, "failures": failures},
            )
            return False
        self._check_stop(handle, deadline)
        await self._retry(
            partial(self._engine.delete_stale, target, binding, handle.task_id), f"sweep {binding} in {target}"
        )
        return True

    async def _write_batch(
        self,
        handle: TaskHandle,
        target: str,
        binding: SourceBinding,
        documents: list[SourceDocument],
    ) -> int:
        """Upsert one batch and publish its progress in a single snapshot. Returns the failure count."""
        indexed = [to_indexed_document(binding, d, handle.task_id) for d in documents]
        source_ids = {ix.id: d.doc_id for ix, d in zip(indexed, documents)}
        results = await self._retry(partial(self._engine.bulk_upsert, target, indexed), f"bulk write {target}")

        errors = tuple(
            f"{binding.database}/{binding.collection}/{source_ids.get(r.doc_id, r.doc_id)}: {r.error}"
            for r in results
            if not r.ok
        )
        snapshot = handle.snapshot
        handle.update(
            processed_docs=snapshot.processed_docs + len(documents),
            indexed_docs=snapshot.indexed_docs + (len(results) - len(errors)),
            errors=snapshot.errors + errors,
        )
        return len(errors)

    async def refresh_document(self, database: str, collection: str, source_doc_id: str) -> list[str]:
        """
        Re-sync one source document into every index monitoring its collection. The document is
        upserted when the source still has it and removed from the target indices otherwise.
        Returns the names of the indices touched.
        """
        binding = SourceBinding.of(database, collection)
        names = sorted(self._registry.find_indices_for_source(database, collection))
        if not names:
            return []

        found = await self._retry(
            partial(self._source.get_one, database, collection, source_doc_id), f"get {binding}/{source_doc_id}"
        )
        for name in names:
            target = self._registry.get(name).target_index_name
            if found is None:
                doc_id = indexed_document_id(database, collection, source_doc_id)
                await self._retry(partial(self._engine.delete, target, doc_id), f"delete {target}/{doc_id}")
                continue
            # Stamp with a running rebuild of this binding so its stale sweep keeps the document
            active = self._tracker.active_task_for_target(target)
            rebuild_id = None
            if active is not None and not active.cancel_requested and active.scope in (None, binding):
                rebuild_id = active.task_id
            document = to_indexed_document(binding, found, rebuild_id)
            await self._retry(partial(self._engine.upsert, target, document), f"upsert {target}/{document.id}")

        logger.info(
            "Document refreshed",
            extra={"source": str(binding), "doc_id": source_doc_id, "deleted": found is None, "indices": names},
        )
        return names
