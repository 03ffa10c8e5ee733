"""
Shared AsyncOpenSearch client for target indices. Transport-level retries are turned off because
adapter calls are retried with backoff by the services (utils/retry.py).
"""

from opensearchpy import AsyncOpenSearch

from indexsync.config.logging import get_logger
from indexsync.config.storage.opensearch import get_opensearch_config

logger = get_logger(__name__)

_client: AsyncOpenSearch | None = None


def get_opensearch_client() -> AsyncOpenSearch:
    """Created lazily on first use, then reused for the app lifetime."""
    global _client
    if _client is None:
        cfg = get_opensearch_config()
        _client = AsyncOpenSearch(
            hosts=[cfg["host"]],
            http_auth=(cfg["username"], cfg["password"]),
            use_ssl=cfg["use_ssl"],
            verify_certs=cfg["verify_certs"],
            ssl_show_warn=cfg["verify_certs"],
            timeout=cfg["timeout"],
            max_retries=0,
            retry_on_timeout=False,
        )
        logger.info("OpenSearch client created", extra={"host": cfg["host"], "timeout": cfg["timeout"]})
    return _client


async def close_opensearch_client() -> None:
    """Release pooled connections. Called from the app lifespan on shutdown."""
    global _client
    if _client is None:
        return
    client, _client = _client, None
    try:
        await client.close()
    except Exception as e:
        logger.warning("Error closing OpenSearch client", extra={"error": str(e)})
        return
    logger.info("OpenSearch client closed")
