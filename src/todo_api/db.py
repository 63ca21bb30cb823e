from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .models import TodoEntity
from .repositories import ListQuery, Repository, new_document, replace_changes, update_changes, utcnow
from .schemas import TodoFields
from .settings import Settings

logger = logging.getLogger(__name__)

_SORT = [("createdAt", DESCENDING), ("_id", DESCENDING)]


# PUBLIC_INTERFACE
def build_filter(query: ListQuery) -> Dict[str, Any]:
    """
    Translate a ListQuery into a MongoDB filter document.

    All supplied filters are ANDed; the search text becomes an OR over title and
    description, matched case-insensitively as a literal substring.
    """
    flt: Dict[str, Any] = {}
    if query.completed is not None:
        flt["completed"] = query.completed
    if query.status:
        flt["status"] = query.status
    if query.tag:
        # Equality against an array field matches on membership
        flt["tags"] = query.tag
    if query.search:
        pattern = re.escape(query.search)
        flt["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    return flt


def _update_spec(to_set: Dict[str, Any], to_unset: List[str]) -> Dict[str, Any]:
    spec: Dict[str, Any] = {"$set": to_set}
    if to_unset:
        spec["$unset"] = {name: "" for name in to_unset}
    return spec


def _object_id(todo_id: str) -> Optional[ObjectId]:
    """Return the ObjectId for a well-formed id string, else None."""
    if not ObjectId.is_valid(todo_id):
        return None
    return ObjectId(todo_id)


# PUBLIC_INTERFACE
def document_to_entity(doc: Mapping[str, Any]) -> TodoEntity:
    """Map a stored MongoDB document to a TodoEntity (`_id` becomes the `id` string)."""
    entity: Dict[str, Any] = {k: v for k, v in doc.items() if k not in {"_id", "__v"}}
    entity["id"] = str(doc["_id"])
    return entity  # type: ignore[return-value]


class MongoConnection:
    """
    Process-wide MongoDB handle, created on first use and released on shutdown.

    connect() may be awaited by every request; only the first one opens the client,
    concurrent first callers wait on the lock and reuse the result.
    """

    def __init__(
        self,
        settings: Settings,
        client_factory: Callable[..., AsyncIOMotorClient] = AsyncIOMotorClient,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory
        self._client: Optional[AsyncIOMotorClient] = None
        self._db: Optional[AsyncIOMotorDatabase] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> AsyncIOMotorDatabase:
        if self._db is not None:
            return self._db
        async with self._lock:
            if self._db is not None:
                return self._db
            url, db_name = self._settings.require_mongodb()
            client: AsyncIOMotorClient = self._client_factory(
                url,
                maxPoolSize=self._settings.mongodb_max_pool_size,
                tz_aware=True,
            )
            try:
                await client.admin.command("ping")
                db = client[db_name]
                await self._ensure_indexes(db[self._settings.mongodb_collection])
            except Exception:
                client.close()
                raise
            self._client = client
            self._db = db
            logger.info('MongoDB connected to database "%s"', db_name)
            return db

    async def _ensure_indexes(self, collection: AsyncIOMotorCollection) -> None:
        await collection.create_index([("createdAt", DESCENDING), ("_id", DESCENDING)])
        await collection.create_index([("status", ASCENDING)])
        await collection.create_index([("tags", ASCENDING)])

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                self._client.close()
                logger.info("MongoDB connection closed")
            self._client = None
            self._db = None


class MongoRepository(Repository):
    """
    Repository storing todos in a MongoDB collection through motor.

    Each call issues one logical operation; writes are single-document atomic.
    """

    def __init__(self, settings: Settings, connection: Optional[MongoConnection] = None) -> None:
        self._settings = settings
        self._connection = connection or MongoConnection(settings)

    async def connect(self) -> None:
        await self._connection.connect()

    async def close(self) -> None:
        await self._connection.close()

    async def _collection(self) -> AsyncIOMotorCollection:
        db = await self._connection.connect()
        return db[self._settings.mongodb_collection]

    async def create(self, fields: TodoFields) -> TodoEntity:
        collection = await self._collection()
        doc = new_document(fields, utcnow())
        result = await collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info("Created todo %s", result.inserted_id)
        return document_to_entity(doc)

    async def get(self, todo_id: str) -> Optional[TodoEntity]:
        oid = _object_id(todo_id)
        if oid is None:
            return None
        collection = await self._collection()
        doc = await collection.find_one({"_id": oid})
        return document_to_entity(doc) if doc else None

    async def _find_and_update(
        self, todo_id: str, changes: Tuple[Dict[str, Any], List[str]]
    ) -> Optional[TodoEntity]:
        oid = _object_id(todo_id)
        if oid is None:
            return None
        collection = await self._collection()
        doc = await collection.find_one_and_update(
            {"_id": oid},
            _update_spec(*changes),
            return_document=ReturnDocument.AFTER,
        )
        return document_to_entity(doc) if doc else None

    async def replace(self, todo_id: str, fields: TodoFields) -> Optional[TodoEntity]:
        return await self._find_and_update(todo_id, replace_changes(fields, utcnow()))

    async def update(self, todo_id: str, fields: TodoFields) -> Optional[TodoEntity]:
        return await self._find_and_update(todo_id, update_changes(fields, utcnow()))

    async def delete(self, todo_id: str) -> Optional[TodoEntity]:
        oid = _object_id(todo_id)
        if oid is None:
            return None
        collection = await self._collection()
        doc = await collection.find_one_and_delete({"_id": oid})
        if doc is None:
            return None
        logger.info("Deleted todo %s", todo_id)
        return document_to_entity(doc)

    async def list(self, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        flt = build_filter(q)
        logger.debug("Listing todos filter=%s limit=%s offset=%s", flt, q.page_size, q.offset)
        collection = await self._collection()

        total = await collection.count_documents(flt)
        if q.page_size == 0:
            # A zero limit means "no limit" to the server
            return [], total

        cursor = collection.find(flt).sort(_SORT).skip(max(q.offset, 0)).limit(q.page_size)
        docs = await cursor.to_list(length=q.page_size)
        return [document_to_entity(d) for d in docs], total
