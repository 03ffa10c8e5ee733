"""
Async CRUD, bulk write, and paginated scan over target indices (Search Engine Adapter, OpenSearch flavour).
Document _id is the indexed document id, so a rebuild overwrites in place and re-running it is safe.
"""

from typing import Any

from opensearchpy import AsyncOpenSearch
from opensearchpy.exceptions import NotFoundError as OSNotFoundError
from opensearchpy.exceptions import OpenSearchException
from opensearchpy.helpers import async_streaming_bulk

from indexsync.config.logging import get_logger
from indexsync.domain.models import BulkItemResult, IndexedDocument, IndexPage, SourceBinding
from indexsync.repositories.base import SearchEngine
from indexsync.repositories.opensearch.base import (
    DOC_ID_FIELD,
    REBUILD_ID_FIELD,
    _translate_opensearch_error,
    document_to_source,
    hit_to_document,
    provenance_filter,
)
from indexsync.resources.opensearch.client import get_opensearch_client
from indexsync.resources.opensearch.index_manager import create_index_if_not_exists

logger = get_logger(__name__)

BULK_REQUEST_TIMEOUT = 60


def _item_error(op: dict[str, Any]) -> str:
    err = op.get("error")
    if isinstance(err, dict):
        return str(err.get("reason") or err.get("type") or err)
    return str(err) if err else f"status {op.get('status', 'unknown')}"


class OpenSearchEngine(SearchEngine):
    def __init__(self, client: AsyncOpenSearch | None = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenSearch:
        if self._client is None:
            self._client = get_opensearch_client()
        return self._client

    async def ensure_index(self, index_name: str) -> bool:
        return await create_index_if_not_exists(index_name, client=self.client)

    async def upsert(self, index_name: str, document: IndexedDocument) -> None:
        try:
            await self.client.index(index=index_name, id=document.id, body=document_to_source(document))
        except OpenSearchException as e:
            raise _translate_opensearch_error(e, f"index {index_name}/{document.id}") from e

    async def delete(self, index_name: str, doc_id: str) -> bool:
        try:
            await self.client.delete(index=index_name, id=doc_id)
            return True
        except OSNotFoundError:
            return False
        except OpenSearchException as e:
            raise _translate_opensearch_error(e, f"delete {index_name}/{doc_id}") from e

    async def get(self, index_name: str, doc_id: str) -> IndexedDocument | None:
        try:
            hit = await self.client.get(index=index_name, id=doc_id)
        except OSNotFoundError:
            return None
        except OpenSearchException as e:
            raise _translate_opensearch_error(e, f"get {index_name}/{doc_id}") from e
        return hit_to_document(hit)

    async def bulk_upsert(self, index_name: str, documents: list[IndexedDocument]) -> list[BulkItemResult]:
        """
        One result per input document. Item-level rejections (mapping errors and the like) come back
        as failed results; a transport failure raises so the caller can retry the whole batch.
        """
        if not documents:
            return []
        actions = (
            {"_op_type": "index", "_index": index_name, "_id": d.id, "_source": document_to_source(d)}
            for d in documents
        )
        results: list[BulkItemResult] = []
        try:
            async for ok, item in async_streaming_bulk(
                self.client,
                actions,
                chunk_size=len(documents),
                raise_on_error=False,
                raise_on_exception=True,
                request_timeout=BULK_REQUEST_TIMEOUT,
            ):
                op = item.get("index", {})
                doc_id = str(op.get("_id", "unknown"))
                if ok:
                    results.append(BulkItemResult(doc_id, True))
                else:
                    results.append(BulkItemResult(doc_id, False, _item_error(op)))
        except OpenSearchException as e:
            raise _translate_opensearch_error(e, f"bulk index into {index_name}") from e

        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning(
                "Bulk indexing had item failures",
                extra={"index_name": index_name, "documents": len(documents), "failed": failed},
            )
        return results

    async def count(self, index_name: str) -> int:
        try:
            resp = await self.client.count(index=index_name)
        except OSNotFoundError:
            return 0
        except OpenSearchException as e:
            raise _translate_opensearch_error(e, f"count {index_name}") from e
        return int(resp.get("count", 0))

    async def count_by_provenance(self, index_name: str, binding: SourceBinding) -> int:
        body = {"query": {"bool": {"filter": provenance_filter(binding)}}}
        try:
            resp = await self.client.count(index=index_name, body=body)
        except OSNotFoundError:
            return 0
        except OpenSearchException as e:
            raise _translate_opensearch_error(e, f"count {index_name} for {binding}") from e
        return int(resp.get("count", 0))

    async def scan_page(self, index_name: str, page_token: Any = None, page_size: int = 500) -> IndexPage:
        """Pages are ordered by doc_id; the token is the sort value of the last hit."""
        body: dict[str, Any] = {
            "size": page_size,
            "query": {"match_all": {}},
            "sort": [{DOC_ID_FIELD: "asc"}],
        }
        if page_token is not None:
            body["search_after"] = [page_token]
        try:
            resp = await self.client.search(index=index_name, body=body)
        except OSNotFoundError:
            return IndexPage([], None)
        except OpenSearchException as e:
            raise _translate_opensearch_error(e, f"scan {index_name}") from e
        hits = resp.get("hits", {}).get("hits", [])
        next_token = hits[-1]["sort"][0] if len(hits) == page_size else None
        return IndexPage([hit_to_document(h) for h in hits], next_token)

    async def _delete_by_query(self, index_name: str, query: dict[str, Any], context: str) -> int:
        try:
            # Make this rebuild's writes visible before selecting what to drop
            await self.client.indices.refresh(index=index_name)
            resp = await self.client.delete_by_query(
                index=index_name, body={"query": query}, conflicts="proceed", refresh=True
            )
        except OSNotFoundError:
            return 0
        except OpenSearchException as e:
            raise _translate_opensearch_error(e, context) from e
        return int(resp.get("deleted", 0))

    async def delete_stale(self, index_name: str, binding: SourceBinding, keep_rebuild_id: str) -> int:
        query = {
            "bool": {
                "filter": provenance_filter(binding),
                "must_not": [{"term": {REBUILD_ID_FIELD: keep_rebuild_id}}],
            }
        }
        deleted = await self._delete_by_query(index_name, query, f"delete stale {binding} from {index_name}")
        logger.info(
            "Stale documents removed",
            extra={"index_name": index_name, "source": str(binding), "deleted": deleted},
        )
        return deleted

    async def delete_not_written_by(self, index_name: str, keep_rebuild_id: str) -> int:
        # must_not also matches documents that carry no rebuild_id at all
        query = {"bool": {"must_not": [{"term": {REBUILD_ID_FIELD: keep_rebuild_id}}]}}
        deleted = await self._delete_by_query(index_name, query, f"sweep {index_name}")
        logger.info("Documents outside the rebuild removed", extra={"index_name": index_name, "deleted": deleted})
        return deleted
