"""Shared OpenSearch error handling and document (de)serialization for target indices."""

from typing import Any

from opensearchpy.exceptions import ConnectionError as OSConnectionError
from opensearchpy.exceptions import OpenSearchException

from indexsync.config.logging import get_logger
from indexsync.domain.errors import AdapterConnectionError, RepositoryError
from indexsync.domain.models import IndexedDocument, SourceBinding

logger = get_logger(__name__)

# Field names inside a target-index document
DOC_ID_FIELD = "doc_id"
REBUILD_ID_FIELD = "rebuild_id"
SOURCE_DATABASE_FIELD = "source.database"
SOURCE_COLLECTION_FIELD = "source.collection"
FLAT_FIELD = "flat"


def _translate_opensearch_error(e: OpenSearchException, context: str) -> RepositoryError:
    """Wrap opensearch-py errors into a non-leaking RepositoryError. Transport failures are retryable."""
    logger.warning(
        "OpenSearch operation failed",
        extra={"context": context, "error_type": type(e).__name__},
    )
    if isinstance(e, OSConnectionError):
        return AdapterConnectionError(f"OpenSearch temporarily unavailable: {context}", cause=e)
    return RepositoryError(f"OpenSearch operation failed: {context}: {e}", cause=e)


def provenance_filter(binding: SourceBinding) -> list[dict[str, Any]]:
    return [
        {"term": {SOURCE_DATABASE_FIELD: binding.database}},
        {"term": {SOURCE_COLLECTION_FIELD: binding.collection}},
    ]


def document_to_source(document: IndexedDocument) -> dict[str, Any]:
    """Field order is kept by storing the flattened pairs as a list."""
    return {
        DOC_ID_FIELD: document.id,
        "source": {
            "database": document.provenance.database,
            "collection": document.provenance.collection,
        },
        REBUILD_ID_FIELD: document.rebuild_id,
        FLAT_FIELD: [{"path": path, "value": value} for path, value in document.fields.items()],
    }


def hit_to_document(hit: dict[str, Any]) -> IndexedDocument:
    source = hit.get("_source") or {}
    origin = source.get("source") or {}
    return IndexedDocument(
        id=source.get(DOC_ID_FIELD) or hit["_id"],
        fields={pair["path"]: pair["value"] for pair in source.get(FLAT_FIELD) or []},
        provenance=SourceBinding(database=origin.get("database", ""), collection=origin.get("collection", "")),
        rebuild_id=source.get(REBUILD_ID_FIELD),
    )
