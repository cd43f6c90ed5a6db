"""In-process storage backend.

Each operation completes without suspending, which makes every single call
atomic with respect to other asyncio tasks.
"""

from collections.abc import AsyncIterator
from copy import deepcopy
from uuid import UUID

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


def _matches(doc: Document, query: NoteQuery, ids: set[UUID] | None) -> bool:
    if ids is not None and doc["_id"] not in ids:
        return False
    if query.state is not None and doc["state"] != query.state:
        return False
    if query.visibility is not None and doc["visibility"] != query.visibility:
        return False
    if query.owner_id is not None and doc.get("owner_id") != query.owner_id:
        return False
    if query.created_after is not None and doc["created_at"] < query.created_after:
        return False
    return not (query.created_before is not None and doc["created_at"] > query.created_before)


class MemoryNoteStorage(NoteStorage):
    def __init__(self) -> None:
        self._notes: dict[UUID, Document] = {}

    async def get(self, note_id: UUID) -> Document | None:
        doc = self._notes.get(note_id)
        return deepcopy(doc) if doc is not None else None

    async def insert(self, doc: Document) -> None:
        if doc["_id"] in self._notes:
            raise StorageError(f"Duplicate note id: {doc['_id']}")
        self._notes[doc["_id"]] = deepcopy(doc)

    async def replace(self, doc: Document, expected_version: int) -> bool:
        current = self._notes.get(doc["_id"])
        if current is None or current["version"] != expected_version:
            return False
        self._notes[doc["_id"]] = deepcopy(doc)
        return True

    async def delete(self, note_id: UUID) -> Document | None:
        return self._notes.pop(note_id, None)

    async def find(self, query: NoteQuery, limit: int, offset: int) -> tuple[int, list[Document]]:
        ids = set(query.ids) if query.ids is not None else None
        matched = [doc for doc in self._notes.values() if _matches(doc, query, ids)]
        matched.sort(key=lambda doc: (doc["created_at"], str(doc["_id"])), reverse=True)
        return len(matched), [deepcopy(doc) for doc in matched[offset : offset + limit]]

    async def iter_locations(self) -> AsyncIterator[Document]:
        for doc in list(self._notes.values()):
            yield {"_id": doc["_id"], "latitude": doc["latitude"], "longitude": doc["longitude"]}


class MemoryVersionStorage(VersionStorage):
    def __init__(self) -> None:
        self._records: dict[tuple[UUID, int], Document] = {}

    async def append(self, doc: Document) -> bool:
        key = (doc["note_id"], doc["version"])
        if key in self._records:
            return False
        self._records[key] = deepcopy(doc)
        return True

    async def history(self, note_id: UUID) -> list[Document]:
        records = [deepcopy(doc) for (nid, _), doc in self._records.items() if nid == note_id]
        return sorted(records, key=lambda doc: doc["version"])

    async def delete(self, note_id: UUID, version: int) -> None:
        self._records.pop((note_id, version), None)

    async def delete_all(self, note_id: UUID) -> int:
        keys = [key for key in self._records if key[0] == note_id]
        for key in keys:
            del self._records[key]
        return len(keys)


class MemoryCounterStorage(CounterStorage):
    def __init__(self) -> None:
        self._holders: dict[str, set[UUID]] = {}

    async def get(self, owner_id: str) -> int:
        return len(self._holders.get(owner_id, ()))

    async def admit(self, owner_id: str, note_id: UUID, limit: int) -> int | None:
        holders = self._holders.setdefault(owner_id, set())
        if note_id not in holders:
            if len(holders) >= limit:
                return None
            holders.add(note_id)
        return len(holders)

    async def release(self, owner_id: str, note_id: UUID) -> int | None:
        holders = self._holders.get(owner_id)
        if holders is None or note_id not in holders:
            return None
        holders.discard(note_id)
        return len(holders)


class MemoryJobStorage(JobStorage):
    def __init__(self) -> None:
        self._jobs: dict[UUID, Document] = {}

    async def save(self, doc: Document) -> None:
        self._jobs[doc["_id"]] = deepcopy(doc)

    async def get(self, job_id: UUID) -> Document | None:
        doc = self._jobs.get(job_id)
        return deepcopy(doc) if doc is not None else None


class MemoryStorage(Storage):
    def __init__(self) -> None:
        self.notes = MemoryNoteStorage()
        self.versions = MemoryVersionStorage()
        self.counters = MemoryCounterStorage()
        self.jobs = MemoryJobStorage()
