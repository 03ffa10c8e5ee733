"""
Read-only access to source collections (Document Source Adapter, MongoDB flavour).
Pages are keyset-paginated on _id so a failed page can be fetched again from its token. Collections
may mix _id types (ObjectId next to plain strings), so the keyset follows MongoDB's cross-type order.
"""

import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from bson import ObjectId
from bson.decimal128 import Decimal128
from bson.regex import Regex
from bson.timestamp import Timestamp
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from indexsync.domain.models import SourceDocument, SourcePage
from indexsync.repositories.base import DocumentSource
from indexsync.repositories.mongodb.base import (
    _translate_pymongo_error,
    get_collection,
    parse_object_id,
)
from indexsync.resources.mongo.client import get_mongo_client

# _id types in MongoDB's cross-type sort order, as $type aliases. Arrays cannot be an _id.
_SORT_ORDER = (
    ("null",),
    ("number",),
    ("symbol", "string"),
    ("object",),
    ("binData",),
    ("objectId",),
    ("bool",),
    ("date",),
    ("timestamp",),
    ("regex",),
    ("maxKey",),
)


def _sort_bracket(value: Any) -> int | None:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 6
    if isinstance(value, (int, float, Decimal128)):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, Mapping):
        return 3
    if isinstance(value, bytes):
        return 4
    if isinstance(value, ObjectId):
        return 5
    if isinstance(value, datetime):
        return 7
    if isinstance(value, Timestamp):
        return 8
    if isinstance(value, (Regex, re.Pattern)):
        return 9
    return None


def after_id_filter(token: Any) -> dict[str, Any]:
    """
    Match documents whose _id sorts after token. $gt only compares values of the same type
    bracket, so ids of every type that sorts later are matched by $type.
    """
    bracket = _sort_bracket(token)
    if bracket is None:
        return {"_id": {"$gt": token}}
    later = [alias for group in _SORT_ORDER[bracket + 1 :] for alias in group]
    return {"$or": [{"_id": {"$gt": token}}, {"_id": {"$type": later}}]}


class MongoDocumentSource(DocumentSource):
    """
    Source documents are identified by `id_field` when the document carries a non-blank
    value there, otherwise by str(_id).
    """

    def __init__(self, client: AsyncIOMotorClient | None = None, id_field: str | None = "id"):
        self._client = client
        self.id_field = id_field

    @property
    def client(self) -> AsyncIOMotorClient:
        if self._client is None:
            self._client = get_mongo_client()
        return self._client

    def _source_id(self, doc: dict[str, Any]) -> str:
        if self.id_field:
            custom = doc.get(self.id_field)
            if custom is not None and str(custom).strip():
                return str(custom).strip()
        return str(doc["_id"])

    async def count(self, database: str, collection: str) -> int:
        coll = get_collection(self.client, database, collection)
        try:
            return await coll.count_documents({})
        except PyMongoError as e:
            raise _translate_pymongo_error(e, f"count {database}.{collection}") from e

    async def scan_page(
        self,
        database: str,
        collection: str,
        batch_size: int,
        after: Any = None,
    ) -> SourcePage:
        coll = get_collection(self.client, database, collection)
        query: dict[str, Any] = {} if after is None else after_id_filter(after)
        try:
            cursor = coll.find(query).sort("_id", 1).limit(batch_size)
            raw = [doc async for doc in cursor]
        except PyMongoError as e:
            raise _translate_pymongo_error(e, f"scan {database}.{collection}") from e
        documents = [SourceDocument(self._source_id(doc), doc) for doc in raw]
        next_token = raw[-1]["_id"] if len(raw) == batch_size else None
        return SourcePage(documents, next_token)

    async def get_one(self, database: str, collection: str, doc_id: str) -> SourceDocument | None:
        coll = get_collection(self.client, database, collection)
        try:
            doc = None
            if self.id_field:
                doc = await coll.find_one({self.id_field: doc_id})
            if doc is None:
                doc = await coll.find_one({"_id": parse_object_id(doc_id)})
        except PyMongoError as e:
            raise _translate_pymongo_error(e, f"get {database}.{collection}/{doc_id}") from e
        if doc is None:
            return None
        return SourceDocument(self._source_id(doc), doc)
