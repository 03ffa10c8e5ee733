"""MongoDB readiness probe used by GET /ready."""

from typing import Any

from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from indexsync.config.logging import get_logger
from indexsync.resources.mongo.client import get_mongo_client, get_registry_collection

logger = get_logger(__name__)


async def ping_mongo() -> dict[str, Any]:
    """
    Ping the server and touch the registry collection, so a reachable server with a
    misconfigured registry still reports not ready. Error strings carry no driver details.
    """
    try:
        await get_mongo_client().admin.command("ping")
        await get_registry_collection().estimated_document_count()
    except ServerSelectionTimeoutError as e:
        logger.warning("MongoDB readiness timeout", extra={"error_type": type(e).__name__})
        return {"ok": False, "error": "connection_timeout"}
    except PyMongoError as e:
        logger.warning("MongoDB readiness check failed", extra={"error_type": type(e).__name__})
        return {"ok": False, "error": "connection_failed"}
    return {"ok": True}
