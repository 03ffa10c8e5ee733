"""
Async create of OpenSearch target indices for flattened documents.
Only provenance and id fields are searchable; the flattened pairs are stored, not indexed,
because substring matching happens in the search service.
"""

from typing import Any

from opensearchpy import AsyncOpenSearch
from opensearchpy.exceptions import OpenSearchException, RequestError

from indexsync.config.logging import get_logger
from indexsync.config.storage.opensearch import get_opensearch_config
from indexsync.repositories.opensearch.base import (
    DOC_ID_FIELD,
    FLAT_FIELD,
    REBUILD_ID_FIELD,
    _translate_opensearch_error,
)
from indexsync.resources.opensearch.client import get_opensearch_client

logger = get_logger(__name__)


def build_index_body(number_of_shards: int = 1, number_of_replicas: int = 1) -> dict[str, Any]:
    """Settings and mappings for a target index."""
    properties: dict[str, Any] = {
        DOC_ID_FIELD: {"type": "keyword"},
        REBUILD_ID_FIELD: {"type": "keyword"},
        "source": {
            "properties": {
                "database": {"type": "keyword"},
                "collection": {"type": "keyword"},
            }
        },
        FLAT_FIELD: {"type": "object", "enabled": False},
    }
    return {
        "settings": {
            "index": {
                "number_of_shards": number_of_shards,
                "number_of_replicas": number_of_replicas,
            }
        },
        "mappings": {"properties": properties},
    }


async def create_index_if_not_exists(index_name: str, client: AsyncOpenSearch | None = None) -> bool:
    """
    Create the target index if it does not exist.
    Returns True if the index was created, False if it already existed.
    Raises RepositoryError (AdapterConnectionError when unreachable) on failure.
    """
    if client is None:
        client = get_opensearch_client()
    cfg = get_opensearch_config()
    try:
        if await client.indices.exists(index=index_name):
            logger.debug("Index already exists", extra={"index_name": index_name})
            return False
        body = build_index_body(cfg["number_of_shards"], cfg["number_of_replicas"])
        await client.indices.create(index=index_name, body=body)
    except RequestError as e:
        # Lost a race with another creator
        if e.error == "resource_already_exists_exception":
            return False
        raise _translate_opensearch_error(e, f"create index {index_name}") from e
    except OpenSearchException as e:
        raise _translate_opensearch_error(e, f"create index {index_name}") from e
    logger.info("Index created", extra={"index_name": index_name})
    return True
