"""In-memory reference adapters: keyset pagination and provenance-scoped deletes."""

import pytest

from indexsync.domain.errors import DuplicateNameError
from indexsync.domain.models import IndexDefinition, IndexedDocument, SourceBinding
from indexsync.utils.time import utc_now

ORDERS = SourceBinding(database="shop", collection="orders")
USERS = SourceBinding(database="shop", collection="users")


def doc(doc_id: str, binding: SourceBinding = ORDERS, rebuild_id: str | None = "task_1") -> IndexedDocument:
    return IndexedDocument(id=doc_id, fields={"k": doc_id}, provenance=binding, rebuild_id=rebuild_id)


async def test_source_pages_are_stable_and_finite(source):
    source.insert_many("shop", "orders", {f"o{i}": {"i": i} for i in range(5)})

    first = await source.scan_page("shop", "orders", 2)
    again = await source.scan_page("shop", "orders", 2)
    assert first == again
    assert [d.doc_id for d in first.documents] == ["o0", "o1"]

    batches = [[d.doc_id for d in batch] async for batch in source.scan("shop", "orders", 2)]
    assert batches == [["o0", "o1"], ["o2", "o3"], ["o4"]]


async def test_source_scan_of_missing_collection_is_empty(source):
    assert [batch async for batch in source.scan("shop", "nothing", 10)] == []
    assert await source.count("shop", "nothing") == 0
    assert await source.get_one("shop", "nothing", "x") is None


async def test_source_returns_copies(source):
    source.insert("shop", "orders", "o1", {"a": 1})

    found = await source.get_one("shop", "orders", "o1")
    found.body["a"] = 2

    assert (await source.get_one("shop", "orders", "o1")).body == {"a": 1}


async def test_engine_scan_pages_through_everything(engine):
    for i in range(7):
        await engine.upsert("idx", doc(f"d{i}"))

    page = await engine.scan_page("idx", None, 3)
    assert len(page.documents) == 3 and page.next_token == "d2"

    assert [d.id async for d in engine.scan("idx", page_size=3)] == [f"d{i}" for i in range(7)]


async def test_engine_missing_index_counts_zero(engine):
    assert await engine.count("nope") == 0
    assert await engine.count_by_provenance("nope", ORDERS) == 0
    assert (await engine.scan_page("nope")).documents == []
    assert await engine.delete("nope", "x") is False


async def test_delete_stale_is_scoped_to_provenance(engine):
    await engine.bulk_upsert(
        "idx",
        [doc("o-old", rebuild_id="task_1"), doc("o-new", rebuild_id="task_2"), doc("o-refreshed", rebuild_id=None)],
    )
    await engine.upsert("idx", doc("u-old", USERS, rebuild_id="task_1"))

    removed = await engine.delete_stale("idx", ORDERS, keep_rebuild_id="task_2")

    assert removed == 2
    assert set(engine.documents("idx")) == {"o-new", "u-old"}


async def test_definition_store_rejects_duplicates(store):
    now = utc_now()
    definition = IndexDefinition(name="idx", target_index_name="t", created_at=now, updated_at=now)
    await store.insert(definition)

    with pytest.raises(DuplicateNameError):
        await store.insert(definition)
    assert await store.replace(definition.model_copy(update={"target_index_name": "t2"})) is True
    assert (await store.list_all())[0].target_index_name == "t2"
    assert await store.delete("idx") is True
    assert await store.replace(definition) is False
