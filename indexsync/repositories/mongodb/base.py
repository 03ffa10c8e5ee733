"""Shared async MongoDB access patterns and common error handling."""

from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo.errors import ConnectionFailure, ExecutionTimeout, PyMongoError

from indexsync.config.logging import get_logger
from indexsync.domain.errors import AdapterConnectionError, RepositoryError

logger = get_logger(__name__)


def _translate_pymongo_error(e: PyMongoError, context: str) -> RepositoryError:
    """Wrap PyMongo errors into a non-leaking RepositoryError. Connectivity problems are retryable."""
    logger.warning(
        "MongoDB operation failed",
        extra={"context": context, "error_type": type(e).__name__},
    )
    if isinstance(e, (ConnectionFailure, ExecutionTimeout)):
        return AdapterConnectionError(f"MongoDB temporarily unavailable: {context}", cause=e)
    return RepositoryError(f"MongoDB operation failed: {context}", cause=e)


def get_collection(client: AsyncIOMotorClient, database: str, collection: str) -> AsyncIOMotorCollection:
    """Return the named collection of the named database."""
    return client[database][collection]


def parse_object_id(value: str) -> Any:
    """24-hex strings become ObjectId; anything else is kept as the raw string."""
    if len(value) == 24:
        try:
            return ObjectId(value)
        except InvalidId:
            return value
    return value
