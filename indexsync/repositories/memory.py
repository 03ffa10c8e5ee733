"""
In-process reference adapters. Used by the "memory" backend and by the test-suite.
Ordering mirrors the production adapters: sources and indices page by ascending id.
"""

from bisect import bisect_right
from typing import Any

from indexsync.domain.errors import DuplicateNameError
from indexsync.domain.models import (
    BulkItemResult,
    IndexDefinition,
    IndexedDocument,
    IndexPage,
    SourceBinding,
    SourceDocument,
    SourcePage,
)
from indexsync.repositories.base import DefinitionStore, DocumentSource, SearchEngine


def _page_after(keys: list[str], after: Any, size: int) -> tuple[list[str], Any]:
    ordered = sorted(keys)
    start = 0 if after is None else bisect_right(ordered, after)
    chunk = ordered[start : start + size]
    next_token = chunk[-1] if chunk and start + size < len(ordered) else None
    return chunk, next_token


class InMemoryDocumentSource(DocumentSource):
    def __init__(self) -> None:
        self._collections: dict[tuple[str, str], dict[str, dict[str, Any]]] = {}

    def insert(self, database: str, collection: str, doc_id: str, body: dict[str, Any]) -> None:
        self._collections.setdefault((database, collection), {})[doc_id] = dict(body)

    def insert_many(self, database: str, collection: str, docs: dict[str, dict[str, Any]]) -> None:
        for doc_id, body in docs.items():
            self.insert(database, collection, doc_id, body)

    def remove(self, database: str, collection: str, doc_id: str) -> bool:
        return self._collections.get((database, collection), {}).pop(doc_id, None) is not None

    async def count(self, database: str, collection: str) -> int:
        return len(self._collections.get((database, collection), {}))

    async def scan_page(
        self,
        database: str,
        collection: str,
        batch_size: int,
        after: Any = None,
    ) -> SourcePage:
        docs = self._collections.get((database, collection), {})
        ids, next_token = _page_after(list(docs), after, batch_size)
        return SourcePage([SourceDocument(doc_id, dict(docs[doc_id])) for doc_id in ids], next_token)

    async def get_one(self, database: str, collection: str, doc_id: str) -> SourceDocument | None:
        body = self._collections.get((database, collection), {}).get(doc_id)
        return SourceDocument(doc_id, dict(body)) if body is not None else None


class InMemorySearchEngine(SearchEngine):
    def __init__(self) -> None:
        self._indices: dict[str, dict[str, IndexedDocument]] = {}

    def documents(self, index_name: str) -> dict[str, IndexedDocument]:
        """Snapshot of one index, keyed by document id."""
        return dict(self._indices.get(index_name, {}))

    async def ensure_index(self, index_name: str) -> bool:
        if index_name in self._indices:
            return False
        self._indices[index_name] = {}
        return True

    async def upsert(self, index_name: str, document: IndexedDocument) -> None:
        self._indices.setdefault(index_name, {})[document.id] = document

    async def delete(self, index_name: str, doc_id: str) -> bool:
        return self._indices.get(index_name, {}).pop(doc_id, None) is not None

    async def get(self, index_name: str, doc_id: str) -> IndexedDocument | None:
        return self._indices.get(index_name, {}).get(doc_id)

    async def bulk_upsert(self, index_name: str, documents: list[IndexedDocument]) -> list[BulkItemResult]:
        results: list[BulkItemResult] = []
        for document in documents:
            await self.upsert(index_name, document)
            results.append(BulkItemResult(document.id, True))
        return results

    async def count(self, index_name: str) -> int:
        return len(self._indices.get(index_name, {}))

    async def count_by_provenance(self, index_name: str, binding: SourceBinding) -> int:
        return sum(1 for d in self._indices.get(index_name, {}).values() if d.provenance == binding)

    async def scan_page(self, index_name: str, page_token: Any = None, page_size: int = 500) -> IndexPage:
        docs = self._indices.get(index_name, {})
        ids, next_token = _page_after(list(docs), page_token, page_size)
        return IndexPage([docs[doc_id] for doc_id in ids], next_token)

    async def delete_stale(self, index_name: str, binding: SourceBinding, keep_rebuild_id: str) -> int:
        docs = self._indices.get(index_name, {})
        stale = [
            doc_id
            for doc_id, d in docs.items()
            if d.provenance == binding and d.rebuild_id != keep_rebuild_id
        ]
        for doc_id in stale:
            del docs[doc_id]
        return len(stale)

    async def delete_not_written_by(self, index_name: str, keep_rebuild_id: str) -> int:
        docs = self._indices.get(index_name, {})
        stale = [doc_id for doc_id, d in docs.items() if d.rebuild_id != keep_rebuild_id]
        for doc_id in stale:
            del docs[doc_id]
        return len(stale)


class InMemoryDefinitionStore(DefinitionStore):
    def __init__(self) -> None:
        self._definitions: dict[str, IndexDefinition] = {}

    async def list_all(self) -> list[IndexDefinition]:
        return list(self._definitions.values())

    async def insert(self, definition: IndexDefinition) -> None:
        if definition.name in self._definitions:
            raise DuplicateNameError(f"Index with name {definition.name!r} already exists")
        self._definitions[definition.name] = definition

    async def replace(self, definition: IndexDefinition) -> bool:
        if definition.name not in self._definitions:
            return False
        self._definitions[definition.name] = definition
        return True

    async def delete(self, name: str) -> bool:
        return self._definitions.pop(name, None) is not None
