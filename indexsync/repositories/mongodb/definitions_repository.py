"""Async CRUD for index definitions in the registry collection. One document per definition name."""

from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError, PyMongoError

from indexsync.domain.errors import DuplicateNameError
from indexsync.domain.models import IndexDefinition, SourceBinding
from indexsync.repositories.base import DefinitionStore
from indexsync.repositories.mongodb.base import _translate_pymongo_error
from indexsync.resources.mongo.client import get_registry_collection


def _definition_to_doc(definition: IndexDefinition) -> dict[str, Any]:
    return {
        "name": definition.name,
        "target_index_name": definition.target_index_name,
        "sources": [{"database": s.database, "collection": s.collection} for s in definition.sources],
        "created_at": definition.created_at,
        "updated_at": definition.updated_at,
    }


def _doc_to_definition(doc: dict[str, Any]) -> IndexDefinition:
    return IndexDefinition(
        name=doc["name"],
        target_index_name=doc["target_index_name"],
        sources=tuple(
            SourceBinding(database=s["database"], collection=s["collection"]) for s in doc.get("sources") or []
        ),
        created_at=doc["created_at"],
        updated_at=doc.get("updated_at") or doc["created_at"],
    )


class MongoDefinitionStore(DefinitionStore):
    def __init__(self, collection: AsyncIOMotorCollection | None = None):
        self._collection = collection

    @property
    def collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            self._collection = get_registry_collection()
        return self._collection

    async def list_all(self) -> list[IndexDefinition]:
        try:
            cursor = self.collection.find({}, {"_id": 0}).sort("name", 1)
            return [_doc_to_definition(doc) async for doc in cursor]
        except PyMongoError as e:
            raise _translate_pymongo_error(e, "list index definitions") from e

    async def insert(self, definition: IndexDefinition) -> None:
        try:
            await self.collection.insert_one(_definition_to_doc(definition))
        except DuplicateKeyError as e:
            raise DuplicateNameError(f"Index with name {definition.name!r} already exists", cause=e) from e
        except PyMongoError as e:
            raise _translate_pymongo_error(e, "insert index definition") from e

    async def replace(self, definition: IndexDefinition) -> bool:
        try:
            result = await self.collection.replace_one({"name": definition.name}, _definition_to_doc(definition))
            return result.matched_count > 0
        except PyMongoError as e:
            raise _translate_pymongo_error(e, "replace index definition") from e

    async def delete(self, name: str) -> bool:
        try:
            result = await self.collection.delete_one({"name": name})
            return result.deleted_count > 0
        except PyMongoError as e:
            raise _translate_pymongo_error(e, "delete index definition") from e
