"""
Adapter contracts consumed by the registry, orchestrator, stats and search services.
Concrete implementations: repositories/memory.py (in-process), repositories/mongodb and
repositories/opensearch (production).
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from indexsync.domain.models import (
    BulkItemResult,
    IndexDefinition,
    IndexedDocument,
    IndexPage,
    SourceBinding,
    SourceDocument,
    SourcePage,
)


class DocumentSource(ABC):
    """Read-only paginated access to source collections."""

    @abstractmethod
    async def count(self, database: str, collection: str) -> int:
        """Number of documents in the collection. Raises AdapterConnectionError when unreachable."""
        ...

    @abstractmethod
    async def scan_page(
        self,
        database: str,
        collection: str,
        batch_size: int,
        after: Any = None,
    ) -> SourcePage:
        """
        Return up to batch_size documents following the `after` token in a stable order.
        next_token is None once the collection is exhausted. Retrying a call with the same
        token returns the same page when the data did not change.
        """
        ...

    @abstractmethod
    async def get_one(self, database: str, collection: str, doc_id: str) -> SourceDocument | None:
        ...

    async def scan(self, database: str, collection: str, batch_size: int) -> AsyncIterator[list[SourceDocument]]:
        """Lazy batches over the whole collection. Each call restarts from the beginning."""
        token: Any = None
        while True:
            page = await self.scan_page(database, collection, batch_size, token)
            if page.documents:
                yield page.documents
            if page.next_token is None:
                return
            token = page.next_token


class SearchEngine(ABC):
    """CRUD and paginated scan over the documents stored in target indices."""

    @abstractmethod
    async def ensure_index(self, index_name: str) -> bool:
        """Create the target index if missing. Returns True when it was created."""
        ...

    @abstractmethod
    async def upsert(self, index_name: str, document: IndexedDocument) -> None:
        ...

    @abstractmethod
    async def delete(self, index_name: str, doc_id: str) -> bool:
        """Returns False when the document was not present."""
        ...

    @abstractmethod
    async def get(self, index_name: str, doc_id: str) -> IndexedDocument | None:
        ...

    @abstractmethod
    async def bulk_upsert(self, index_name: str, documents: list[IndexedDocument]) -> list[BulkItemResult]:
        """Write-by-id for every document. A bad document fails alone; the rest are still written."""
        ...

    @abstractmethod
    async def count(self, index_name: str) -> int:
        ...

    @abstractmethod
    async def count_by_provenance(self, index_name: str, binding: SourceBinding) -> int:
        ...

    @abstractmethod
    async def scan_page(self, index_name: str, page_token: Any = None, page_size: int = 500) -> IndexPage:
        ...

    @abstractmethod
    async def delete_stale(self, index_name: str, binding: SourceBinding, keep_rebuild_id: str) -> int:
        """Delete documents of this provenance that were not written by rebuild keep_rebuild_id."""
        ...

    @abstractmethod
    async def delete_not_written_by(self, index_name: str, keep_rebuild_id: str) -> int:
        """Delete every document of the index, whatever its provenance, not written by keep_rebuild_id."""
        ...

    async def scan(self, index_name: str, page_size: int = 500) -> AsyncIterator[IndexedDocument]:
        """Lazy iteration over every stored document, one page in memory at a time."""
        token: Any = None
        while True:
            page = await self.scan_page(index_name, token, page_size)
            for document in page.documents:
                yield document
            if page.next_token is None:
                return
            token = page.next_token


class DefinitionStore(ABC):
    """Durable storage for index definitions, keyed by name."""

    @abstractmethod
    async def list_all(self) -> list[IndexDefinition]:
        ...

    @abstractmethod
    async def insert(self, definition: IndexDefinition) -> None:
        """Raises DuplicateNameError when the name is taken."""
        ...

    @abstractmethod
    async def replace(self, definition: IndexDefinition) -> bool:
        """Returns False when no definition with that name exists."""
        ...

    @abstractmethod
    async def delete(self, name: str) -> bool:
        ...
