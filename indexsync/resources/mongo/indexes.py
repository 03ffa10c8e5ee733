"""
MongoDB index creation for the index-definition registry collection.
Source collections are read-only to this service and get no indexes from it.
"""

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from indexsync.config.logging import get_logger
from indexsync.repositories.mongodb.base import _translate_pymongo_error

logger = get_logger(__name__)


async def create_indexes(registry: AsyncIOMotorCollection) -> None:
    """
    Create the indexes the registry relies on. Called during application startup.
    The unique name index is what turns a concurrent duplicate create into DuplicateNameError.
    """
    try:
        await registry.create_index([("name", 1)], unique=True, name="name_unique")
        await registry.create_index(
            [("sources.database", 1), ("sources.collection", 1)], name="sources_binding"
        )
    except PyMongoError as e:
        raise _translate_pymongo_error(e, "create registry indexes") from e
    logger.info("Created indexes for registry collection", extra={"collection": registry.name})
