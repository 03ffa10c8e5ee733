"""Rebuild Orchestrator against in-memory adapters, with fault-injecting subclasses."""

import asyncio

import pytest

from indexsync.domain.errors import (
    AdapterConnectionError,
    InvalidSourceError,
    NotFoundError,
    RebuildInProgressError,
    RepositoryError,
)
from indexsync.domain.models import BulkItemResult, SourceBinding, TaskStatus
from indexsync.repositories.memory import InMemoryDocumentSource, InMemorySearchEngine
from indexsync.services.rebuild import RebuildOrchestrator

ORDERS = SourceBinding(database="shop", collection="orders")
USERS = SourceBinding(database="shop", collection="users")


class RejectingEngine(InMemorySearchEngine):
    """Rejects documents whose id is listed, like a mapping error on the real engine."""

    def __init__(self, reject_ids: set[str]):
        super().__init__()
        self.reject_ids = reject_ids

    async def bulk_upsert(self, index_name, documents):
        results = []
        for document in documents:
            if document.id in self.reject_ids:
                results.append(BulkItemResult(document.id, False, "mapper_parsing_exception"))
            else:
                await self.upsert(index_name, document)
                results.append(BulkItemResult(document.id, True))
        return results


class FlakyEngine(InMemorySearchEngine):
    """Connection drops on the first `failures` bulk calls."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.bulk_calls = 0

    async def bulk_upsert(self, index_name, documents):
        self.bulk_calls += 1
        if self.bulk_calls <= self.failures:
            raise AdapterConnectionError("connection reset")
        return await super().bulk_upsert(index_name, documents)


class BrokenSource(InMemoryDocumentSource):
    def __init__(self, exc: Exception):
        super().__init__()
        self.exc = exc

    async def scan_page(self, database, collection, batch_size, after=None):
        raise self.exc


class SlowCountSource(InMemoryDocumentSource):
    async def count(self, database, collection):
        await asyncio.sleep(0.05)
        return await super().count(database, collection)


def seed(source, binding: SourceBinding, n: int, prefix: str = "d") -> None:
    source.insert_many(
        binding.database,
        binding.collection,
        {f"{prefix}{i:04d}": {"n": i, "tags": ["x", f"t{i}"]} for i in range(n)},
    )


def provenance_docs(engine, target: str, binding: SourceBinding) -> dict:
    return {k: d for k, d in engine.documents(target).items() if d.provenance == binding}


async def test_full_rebuild_indexes_every_document(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 3)
    seed(source, USERS, 4, prefix="u")
    await registry.create("shop-idx", "shop_v1", [ORDERS, USERS])

    task = await tracker.wait(orchestrator.rebuild("shop-idx"))

    assert task.status == TaskStatus.COMPLETED
    assert (task.total_docs, task.processed_docs, task.indexed_docs) == (7, 7, 7)
    assert task.errors == ()
    assert await engine.count("shop_v1") == 7
    doc = engine.documents("shop_v1")["shop:orders:d0001"]
    assert doc.fields == {"n": "1", "tags@0": "x", "tags@1": "t1"}
    assert doc.provenance == ORDERS
    assert doc.rebuild_id == task.task_id


async def test_progress_is_published_per_batch(registry, orchestrator, tracker, source):
    seed(source, ORDERS, 1000)
    await registry.create("orders-idx", "orders_v1", [ORDERS])
    seen = []
    tracker.add_listener(lambda t: seen.append((t.processed_docs, t.status)))

    task_id = orchestrator.rebuild("orders-idx")
    await tracker.wait(task_id)

    assert (500, TaskStatus.RUNNING) in seen
    assert seen[-1] == (1000, TaskStatus.COMPLETED)
    processed = [p for p, _ in seen]
    assert processed == sorted(processed)
    assert tracker.get_progress(task_id).remaining_docs == 0


async def test_rebuild_twice_yields_identical_documents(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 20)
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    await tracker.wait(orchestrator.rebuild("orders-idx"))
    first = {k: d.fields for k, d in engine.documents("orders_v1").items()}
    await tracker.wait(orchestrator.rebuild("orders-idx"))
    second = {k: d.fields for k, d in engine.documents("orders_v1").items()}

    assert first == second
    assert len(second) == 20


async def test_partial_rebuild_only_touches_its_provenance(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 5)
    seed(source, USERS, 3, prefix="u")
    await registry.create("shop-idx", "shop_v1", [ORDERS, USERS])
    await tracker.wait(orchestrator.rebuild("shop-idx"))
    orders_before = provenance_docs(engine, "shop_v1", ORDERS)

    source.insert("shop", "users", "u9999", {"name": "new"})
    task = await tracker.wait(orchestrator.rebuild("shop-idx", scope=USERS))

    assert task.status == TaskStatus.COMPLETED
    assert task.total_docs == 4
    assert provenance_docs(engine, "shop_v1", ORDERS) == orders_before
    assert await engine.count_by_provenance("shop_v1", USERS) == 4


async def test_scope_outside_the_index_is_rejected(registry, orchestrator):
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    with pytest.raises(InvalidSourceError):
        orchestrator.rebuild("orders-idx", scope=USERS)


async def test_unknown_index_is_rejected(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.rebuild("missing")


async def test_second_rebuild_while_running_is_rejected(registry, orchestrator, tracker, source):
    seed(source, ORDERS, 600)
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    task_id = orchestrator.rebuild("orders-idx")
    with pytest.raises(RebuildInProgressError) as info:
        orchestrator.rebuild("orders-idx")
    assert info.value.task_id == task_id

    final = await tracker.wait(task_id)
    assert final.processed_docs == 600
    assert len(tracker.list_tasks("orders-idx")) == 1

    # Free again once the first one finished
    await tracker.wait(orchestrator.rebuild("orders-idx"))


async def test_rebuilds_of_different_indices_run_side_by_side(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 10)
    await registry.create("a", "a_v1", [ORDERS])
    await registry.create("b", "b_v1", [ORDERS])

    first, second = orchestrator.rebuild("a"), orchestrator.rebuild("b")
    results = await asyncio.gather(tracker.wait(first), tracker.wait(second))

    assert [r.status for r in results] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]
    assert await engine.count("a_v1") == await engine.count("b_v1") == 10


async def test_per_document_failures_are_recorded(registry, tracker, source, no_wait_retry):
    engine = RejectingEngine({"shop:orders:d0002"})
    orchestrator = RebuildOrchestrator(registry, source, engine, tracker, batch_size=2, retry_policy=no_wait_retry)
    seed(source, ORDERS, 5)
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    task = await tracker.wait(orchestrator.rebuild("orders-idx"))

    assert task.status == TaskStatus.COMPLETED
    assert (task.processed_docs, task.indexed_docs) == (5, 4)
    assert task.errors == ("shop/orders/d0002: mapper_parsing_exception",)
    assert "shop:orders:d0002" not in engine.documents("orders_v1")


async def test_failed_documents_skip_the_stale_sweep(registry, tracker, source, no_wait_retry):
    engine = RejectingEngine(set())
    orchestrator = RebuildOrchestrator(registry, source, engine, tracker, retry_policy=no_wait_retry)
    seed(source, ORDERS, 3)
    await registry.create("orders-idx", "orders_v1", [ORDERS])
    await tracker.wait(orchestrator.rebuild("orders-idx"))

    engine.reject_ids = {"shop:orders:d0001"}
    source.remove("shop", "orders", "d0000")
    await tracker.wait(orchestrator.rebuild("orders-idx"))

    # Nothing removed: the previous copies of d0000 and d0001 are both kept
    assert set(engine.documents("orders_v1")) == {"shop:orders:d0000", "shop:orders:d0001", "shop:orders:d0002"}


async def test_transient_outage_is_retried(registry, tracker, source, no_wait_retry):
    engine = FlakyEngine(failures=2)
    orchestrator = RebuildOrchestrator(registry, source, engine, tracker, retry_policy=no_wait_retry)
    seed(source, ORDERS, 3)
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    task = await tracker.wait(orchestrator.rebuild("orders-idx"))

    assert task.status == TaskStatus.COMPLETED
    assert task.indexed_docs == 3
    assert engine.bulk_calls == 3


async def test_exhausted_retries_fail_the_task(registry, tracker, source, no_wait_retry):
    engine = FlakyEngine(failures=100)
    orchestrator = RebuildOrchestrator(registry, source, engine, tracker, retry_policy=no_wait_retry)
    seed(source, ORDERS, 3)
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    task = await tracker.wait(orchestrator.rebuild("orders-idx"))

    assert task.status == TaskStatus.FAILED
    assert "connection reset" in task.errors[-1]
    assert engine.bulk_calls == no_wait_retry.attempts
    assert task.finished_at is not None


async def test_non_retryable_error_fails_without_retrying(registry, tracker, engine, no_wait_retry):
    source = BrokenSource(RepositoryError("bad cursor"))
    orchestrator = RebuildOrchestrator(registry, source, engine, tracker, retry_policy=no_wait_retry)
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    task = await tracker.wait(orchestrator.rebuild("orders-idx"))

    assert task.status == TaskStatus.FAILED
    assert task.errors == ("Rebuild aborted: bad cursor",)


async def test_deleted_source_documents_are_swept(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 3)
    seed(source, USERS, 2, prefix="u")
    await registry.create("shop-idx", "shop_v1", [ORDERS, USERS])
    await tracker.wait(orchestrator.rebuild("shop-idx"))

    source.remove("shop", "orders", "d0001")
    source.remove("shop", "users", "u0000")
    await tracker.wait(orchestrator.rebuild("shop-idx", scope=ORDERS))

    assert "shop:orders:d0001" not in engine.documents("shop_v1")
    # Out of scope: kept until users is rebuilt
    assert "shop:users:u0000" in engine.documents("shop_v1")


async def test_max_docs_limits_the_rebuild(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 4)
    seed(source, USERS, 4, prefix="u")
    await registry.create("shop-idx", "shop_v1", [ORDERS, USERS])

    task = await tracker.wait(orchestrator.rebuild("shop-idx", max_docs=6))

    assert task.status == TaskStatus.COMPLETED
    assert (task.total_docs, task.processed_docs) == (6, 6)
    assert await engine.count_by_provenance("shop_v1", ORDERS) == 4
    assert await engine.count_by_provenance("shop_v1", USERS) == 2


async def test_truncated_rebuild_does_not_sweep(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 4)
    await registry.create("orders-idx", "orders_v1", [ORDERS])
    await tracker.wait(orchestrator.rebuild("orders-idx"))

    await tracker.wait(orchestrator.rebuild("orders-idx", max_docs=1))

    assert await engine.count("orders_v1") == 4


async def test_cancel_stops_at_the_next_batch(registry, orchestrator, tracker, source):
    seed(source, ORDERS, 10)
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    task_id = orchestrator.rebuild("orders-idx")
    assert orchestrator.cancel(task_id).cancel_requested is True
    task = await tracker.wait(task_id)

    assert task.status == TaskStatus.FAILED
    assert task.processed_docs == 0
    assert task.errors == ("Rebuild cancelled by request",)


async def test_cancel_unknown_task_raises(orchestrator):
    with pytest.raises(NotFoundError):
        orchestrator.cancel("task_missing")


async def test_timeout_fails_the_task(registry, tracker, engine, no_wait_retry):
    source = SlowCountSource()
    seed(source, ORDERS, 3)
    orchestrator = RebuildOrchestrator(
        registry, source, engine, tracker, retry_policy=no_wait_retry, timeout_seconds=0.01
    )
    await registry.create("orders-idx", "orders_v1", [ORDERS])

    task = await tracker.wait(orchestrator.rebuild("orders-idx"))

    assert task.status == TaskStatus.FAILED
    assert "timed out" in task.errors[-1]


async def test_empty_index_definition_completes(registry, orchestrator, tracker, engine):
    await registry.create("empty", "empty_v1")

    task = await tracker.wait(orchestrator.rebuild("empty"))

    assert task.status == TaskStatus.COMPLETED
    assert task.total_docs == 0
    assert await engine.ensure_index("empty_v1") is False


async def test_refresh_document_upserts_into_every_monitoring_index(registry, orchestrator, source, engine):
    await registry.create("a", "a_v1", [ORDERS])
    await registry.create("b", "b_v1", [ORDERS, USERS])
    await registry.create("c", "c_v1", [USERS])
    source.insert("shop", "orders", "o1", {"status": "paid"})

    touched = await orchestrator.refresh_document("shop", "orders", "o1")

    assert touched == ["a", "b"]
    for target in ("a_v1", "b_v1"):
        assert engine.documents(target)["shop:orders:o1"].fields == {"status": "paid"}
    assert engine.documents("c_v1") == {}


async def test_refresh_document_removes_deleted_documents(registry, orchestrator, tracker, source, engine):
    source.insert("shop", "orders", "o1", {"status": "paid"})
    await registry.create("a", "a_v1", [ORDERS])
    await tracker.wait(orchestrator.rebuild("a"))

    source.remove("shop", "orders", "o1")
    assert await orchestrator.refresh_document("shop", "orders", "o1") == ["a"]

    assert engine.documents("a_v1") == {}


async def test_refresh_document_for_unmonitored_source_is_noop(orchestrator):
    assert await orchestrator.refresh_document("shop", "orders", "o1") == []


async def test_full_rebuild_drops_documents_of_removed_sources(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 3)
    seed(source, USERS, 4, prefix="u")
    await registry.create("shop-idx", "shop_v1", [ORDERS, USERS])
    await tracker.wait(orchestrator.rebuild("shop-idx"))
    assert await engine.count("shop_v1") == 7

    await registry.update("shop-idx", sources=[ORDERS])
    task = await tracker.wait(orchestrator.rebuild("shop-idx"))

    assert task.status == TaskStatus.COMPLETED
    assert task.indexed_docs == 3
    assert await engine.count("shop_v1") == 3
    assert await engine.count_by_provenance("shop_v1", USERS) == 0


async def test_scoped_rebuild_keeps_documents_of_detached_sources(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 3)
    seed(source, USERS, 2, prefix="u")
    await registry.create("shop-idx", "shop_v1", [ORDERS, USERS])
    await tracker.wait(orchestrator.rebuild("shop-idx"))

    await registry.detach_source("shop", "users")
    await tracker.wait(orchestrator.rebuild("shop-idx", scope=ORDERS))
    assert await engine.count_by_provenance("shop_v1", USERS) == 2

    await tracker.wait(orchestrator.rebuild("shop-idx"))
    assert await engine.count_by_provenance("shop_v1", USERS) == 0


async def test_full_rebuild_with_failures_keeps_removed_sources(registry, tracker, source, no_wait_retry):
    engine = RejectingEngine(set())
    orchestrator = RebuildOrchestrator(registry, source, engine, tracker, retry_policy=no_wait_retry)
    seed(source, ORDERS, 3)
    seed(source, USERS, 2, prefix="u")
    await registry.create("shop-idx", "shop_v1", [ORDERS, USERS])
    await tracker.wait(orchestrator.rebuild("shop-idx"))

    engine.reject_ids = {"shop:orders:d0000"}
    await registry.update("shop-idx", sources=[ORDERS])
    task = await tracker.wait(orchestrator.rebuild("shop-idx"))

    assert len(task.errors) == 1
    assert await engine.count_by_provenance("shop_v1", USERS) == 2


async def test_deleting_an_index_stops_its_rebuild(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 10)
    await registry.create("idx", "t1", [ORDERS])
    orphan_id = orchestrator.rebuild("idx")

    await registry.delete("idx")
    await registry.create("idx", "t2", [ORDERS])
    task = await tracker.wait(orchestrator.rebuild("idx"))

    assert task.status == TaskStatus.COMPLETED
    assert await engine.count("t2") == 10
    orphan = await tracker.wait(orphan_id)
    assert orphan.status == TaskStatus.FAILED
    assert orphan.errors == ("Rebuild cancelled by request",)
    assert await engine.count("t1") == 0


async def test_one_rebuild_per_target_index(registry, orchestrator, tracker, source, engine):
    seed(source, ORDERS, 10)
    await registry.create("a", "t1", [ORDERS])
    orphan_id = orchestrator.rebuild("a")
    await registry.delete("a")
    await registry.create("b", "t1", [ORDERS])

    # The stopping rebuild of "a" still owns t1
    with pytest.raises(RebuildInProgressError) as info:
        orchestrator.rebuild("b")
    assert info.value.task_id == orphan_id

    await tracker.wait(orphan_id)
    task = await tracker.wait(orchestrator.rebuild("b"))
    assert task.status == TaskStatus.COMPLETED
    assert await engine.count("t1") == 10
