"""MongoDB storage backend on the asynchronous pymongo client."""

from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

import structlog
from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from geonotes.core.storage.base import (
    CounterStorage,
    Document,
    JobStorage,
    NoteQuery,
    NoteStorage,
    Storage,
    VersionStorage,
)
from geonotes.errors import StorageError

logger = structlog.get_logger(__name__)

# Keeps storage failures prompt instead of waiting for the driver's 30s default
SERVER_SELECTION_TIMEOUT_MS = 5000


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver errors into StorageError."""
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        logger.warning("storage_operation_failed", operation=operation, error=str(e))
        raise StorageError(f"Storage operation '{operation}' failed: {e}") from e


def build_mongo_query(query: NoteQuery) -> dict[str, Any]:
    mongo_query: dict[str, Any] = {}
    if query.ids is not None:
        mongo_query["_id"] = {"$in": query.ids}
    if query.state is not None:
        mongo_query["state"] = query.state
    if query.visibility is not None:
        mongo_query["visibility"] = query.visibility
    if query.owner_id is not None:
        mongo_query["owner_id"] = query.owner_id
    created: dict[str, Any] = {}
    if query.created_after is not None:
        created["$gte"] = query.created_after
    if query.created_before is not None:
        created["$lte"] = query.created_before
    if created:
        mongo_query["created_at"] = created
    return mongo_query


class MongoNoteStorage(NoteStorage):
    def __init__(self, collection: AsyncCollection[Document]) -> None:
        self._collection = collection

    async def create_indexes(self) -> None:
        with storage_errors("notes.create_indexes"):
            await self._collection.create_index([("owner_id", 1), ("visibility", 1)])
            await self._collection.create_index([("state", 1)])
            await self._collection.create_index([("created_at", -1)])

    async def get(self, note_id: UUID) -> Document | None:
        with storage_errors("notes.get"):
            return await self._collection.find_one({"_id": note_id})

    async def insert(self, doc: Document) -> None:
        try:
            with storage_errors("notes.insert"):
                await self._collection.insert_one(doc)
        except DuplicateKeyError as e:
            raise StorageError(f"Duplicate note id: {doc['_id']}") from e

    async def replace(self, doc: Document, expected_version: int) -> bool:
        with storage_errors("notes.replace"):
            result = await self._collection.replace_one({"_id": doc["_id"], "version": expected_version}, doc)
        return result.matched_count == 1

    async def delete(self, note_id: UUID) -> Document | None:
        with storage_errors("notes.delete"):
            return await self._collection.find_one_and_delete({"_id": note_id})

    async def find(self, query: NoteQuery, limit: int, offset: int) -> tuple[int, list[Document]]:
        mongo_query = build_mongo_query(query)
        with storage_errors("notes.find"):
            total = await self._collection.count_documents(mongo_query)
            cursor = self._collection.find(mongo_query).sort([("created_at", -1), ("_id", -1)]).skip(offset).limit(limit)
            docs = await cursor.to_list()
        return total, docs

    async def iter_locations(self) -> AsyncIterator[Document]:
        with storage_errors("notes.iter_locations"):
            async for doc in self._collection.find({}, {"_id": 1, "latitude": 1, "longitude": 1}):
                yield doc


class MongoVersionStorage(VersionStorage):
    def __init__(self, collection: AsyncCollection[Document]) -> None:
        self._collection = collection

    async def create_indexes(self) -> None:
        with storage_errors("note_versions.create_indexes"):
            # The unique key is what serializes concurrent writers of the same note
            await self._collection.create_index([("note_id", 1), ("version", 1)], unique=True)

    async def append(self, doc: Document) -> bool:
        try:
            with storage_errors("note_versions.append"):
                await self._collection.insert_one(doc)
        except DuplicateKeyError:
            return False
        return True

    async def history(self, note_id: UUID) -> list[Document]:
        with storage_errors("note_versions.history"):
            cursor = self._collection.find({"note_id": note_id}, {"_id": 0}).sort("version", 1)
            return await cursor.to_list()

    async def delete(self, note_id: UUID, version: int) -> None:
        with storage_errors("note_versions.delete"):
            await self._collection.delete_one({"note_id": note_id, "version": version})

    async def delete_all(self, note_id: UUID) -> int:
        with storage_errors("note_versions.delete_all"):
            result = await self._collection.delete_many({"note_id": note_id})
        return result.deleted_count


class MongoCounterStorage(CounterStorage):
    def __init__(self, collection: AsyncCollection[Document]) -> None:
        self._collection = collection

    async def create_indexes(self) -> None:
        with storage_errors("quota_counters.create_indexes"):
            await self._collection.create_index([("owner_id", 1)], unique=True)

    async def get(self, owner_id: str) -> int:
        with storage_errors("quota_counters.get"):
            doc = await self._collection.find_one({"owner_id": owner_id}, {"note_ids": 1})
        if doc:
            return len(doc.get("note_ids", []))
        return 0

    async def admit(self, owner_id: str, note_id: UUID, limit: int) -> int | None:
        with storage_errors("quota_counters.get"):
            held = await self._collection.find_one({"owner_id": owner_id, "note_ids": note_id}, {"note_ids": 1})
        if held is not None:
            return len(held["note_ids"])
        if limit <= 0:
            return None
        try:
            with storage_errors("quota_counters.admit"):
                # A full counter fails the filter, so the upsert collides with the unique owner index
                result = await self._collection.find_one_and_update(
                    {"owner_id": owner_id, f"note_ids.{limit - 1}": {"$exists": False}},
                    {"$addToSet": {"note_ids": note_id}},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
        except DuplicateKeyError:
            return None
        return len(result["note_ids"])

    async def release(self, owner_id: str, note_id: UUID) -> int | None:
        with storage_errors("quota_counters.release"):
            result = await self._collection.find_one_and_update(
                {"owner_id": owner_id, "note_ids": note_id},
                {"$pull": {"note_ids": note_id}},
                return_document=ReturnDocument.AFTER,
            )
        if result is None:
            return None
        return len(result["note_ids"])


class MongoJobStorage(JobStorage):
    def __init__(self, collection: AsyncCollection[Document]) -> None:
        self._collection = collection

    async def save(self, doc: Document) -> None:
        with storage_errors("bulk_import_jobs.save"):
            await self._collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    async def get(self, job_id: UUID) -> Document | None:
        with storage_errors("bulk_import_jobs.get"):
            return await self._collection.find_one({"_id": job_id})


class MongoStorage(Storage):
    """Storage bundle backed by one MongoDB database."""

    mongo_client: AsyncMongoClient[Document]
    database: AsyncDatabase[Document]

    def __init__(self, database_url: str) -> None:
        self.mongo_client = AsyncMongoClient(
            database_url,
            uuidRepresentation="standard",
            tz_aware=True,
            serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS,
        )
        self.database = self.mongo_client.get_database(urlparse(database_url).path[1:])
        self.notes = MongoNoteStorage(self.database.get_collection("notes"))
        self.versions = MongoVersionStorage(self.database.get_collection("note_versions"))
        self.counters = MongoCounterStorage(self.database.get_collection("quota_counters"))
        self.jobs = MongoJobStorage(self.database.get_collection("bulk_import_jobs"))

    async def on_start(self) -> None:
        """Create indexes on startup."""
        await self.notes.create_indexes()
        await self.versions.create_indexes()
        await self.counters.create_indexes()
        logger.debug("mongo_storage_started", database=self.database.name)

    async def on_stop(self) -> None:
        await self.mongo_client.aclose()
