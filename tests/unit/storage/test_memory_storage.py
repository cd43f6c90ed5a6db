"""Tests for the in-process storage backend."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from geonotes.core.storage.base import NoteQuery
from geonotes.core.storage.memory import MemoryStorage
from geonotes.errors import StorageError


def note_doc(**overrides):
    doc = {
        "_id": uuid4(),
        "latitude": 40.7128,
        "longitude": -74.0060,
        "description": "Test note",
        "visibility": "public",
        "owner_id": None,
        "user_data": {},
        "state": "new",
        "version": 1,
        "created_at": datetime(2024, 1, 1, tzinfo=UTC),
        "updated_at": datetime(2024, 1, 1, tzinfo=UTC),
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def memory():
    return MemoryStorage()


class TestMemoryNoteStorage:
    """Tests for MemoryNoteStorage."""

    async def test_insert_and_get_returns_copy(self, memory):
        """Test that stored documents cannot be changed through returned copies."""
        doc = note_doc(user_data={"tags": ["a"]})
        await memory.notes.insert(doc)

        stored = await memory.notes.get(doc["_id"])
        stored["user_data"]["tags"].append("b")
        assert (await memory.notes.get(doc["_id"]))["user_data"] == {"tags": ["a"]}

    async def test_duplicate_insert_raises(self, memory):
        """Test that inserting an existing id raises StorageError."""
        doc = note_doc()
        await memory.notes.insert(doc)
        with pytest.raises(StorageError):
            await memory.notes.insert(doc)

    async def test_replace_is_compare_and_swap(self, memory):
        """Test that replace succeeds only at the expected version."""
        doc = note_doc()
        await memory.notes.insert(doc)

        assert await memory.notes.replace({**doc, "version": 2}, expected_version=1) is True
        assert await memory.notes.replace({**doc, "version": 2}, expected_version=1) is False
        assert await memory.notes.replace(note_doc(), expected_version=1) is False
        assert (await memory.notes.get(doc["_id"]))["version"] == 2

    async def test_delete_returns_document(self, memory):
        """Test that delete returns the removed document once."""
        doc = note_doc()
        await memory.notes.insert(doc)
        assert (await memory.notes.delete(doc["_id"]))["_id"] == doc["_id"]
        assert await memory.notes.delete(doc["_id"]) is None

    async def test_find_filters_and_orders(self, memory):
        """Test that find filters, orders newest first and paginates."""
        base = datetime(2024, 1, 1, tzinfo=UTC)
        old = note_doc(created_at=base)
        middle = note_doc(created_at=base + timedelta(days=1), state="open")
        new = note_doc(created_at=base + timedelta(days=2), visibility="private", owner_id="u1")
        for doc in (old, middle, new):
            await memory.notes.insert(doc)

        total, docs = await memory.notes.find(NoteQuery(), limit=2, offset=0)
        assert total == 3
        assert [d["_id"] for d in docs] == [new["_id"], middle["_id"]]

        total, docs = await memory.notes.find(NoteQuery(), limit=2, offset=2)
        assert [d["_id"] for d in docs] == [old["_id"]]

        _, docs = await memory.notes.find(NoteQuery(state="open"), limit=10, offset=0)
        assert [d["_id"] for d in docs] == [middle["_id"]]

        _, docs = await memory.notes.find(NoteQuery(owner_id="u1", visibility="private"), limit=10, offset=0)
        assert [d["_id"] for d in docs] == [new["_id"]]

        query = NoteQuery(created_after=base + timedelta(hours=1), created_before=base + timedelta(days=1))
        _, docs = await memory.notes.find(query, limit=10, offset=0)
        assert [d["_id"] for d in docs] == [middle["_id"]]

        total, docs = await memory.notes.find(NoteQuery(ids=[old["_id"], uuid4()]), limit=10, offset=0)
        assert (total, [d["_id"] for d in docs]) == (1, [old["_id"]])

        total, _ = await memory.notes.find(NoteQuery(ids=[]), limit=10, offset=0)
        assert total == 0

    async def test_iter_locations(self, memory):
        """Test that iter_locations yields ids with coordinates."""
        doc = note_doc()
        await memory.notes.insert(doc)
        locations = [loc async for loc in memory.notes.iter_locations()]
        assert locations == [{"_id": doc["_id"], "latitude": 40.7128, "longitude": -74.0060}]


class TestMemoryVersionStorage:
    """Tests for MemoryVersionStorage."""

    async def test_append_is_unique_per_version(self, memory):
        """Test that a version can be appended only once per note."""
        note_id = uuid4()
        assert await memory.versions.append({"note_id": note_id, "version": 1}) is True
        assert await memory.versions.append({"note_id": note_id, "version": 1}) is False
        assert await memory.versions.append({"note_id": note_id, "version": 2}) is True

    async def test_history_ordered(self, memory):
        """Test that history is ordered by version and scoped to the note."""
        note_id = uuid4()
        for version in (2, 1, 3):
            await memory.versions.append({"note_id": note_id, "version": version})
        await memory.versions.append({"note_id": uuid4(), "version": 1})

        assert [d["version"] for d in await memory.versions.history(note_id)] == [1, 2, 3]

    async def test_delete_and_delete_all(self, memory):
        """Test that single and bulk deletes remove records."""
        note_id = uuid4()
        for version in (1, 2, 3):
            await memory.versions.append({"note_id": note_id, "version": version})

        await memory.versions.delete(note_id, 3)
        assert [d["version"] for d in await memory.versions.history(note_id)] == [1, 2]
        assert await memory.versions.delete_all(note_id) == 2
        assert await memory.versions.history(note_id) == []


class TestMemoryCounterStorage:
    """Tests for MemoryCounterStorage."""

    async def test_admit_until_limit(self, memory):
        """Test that admit adds notes up to the limit and returns None after it."""
        assert await memory.counters.admit("u1", uuid4(), 2) == 1
        assert await memory.counters.admit("u1", uuid4(), 2) == 2
        assert await memory.counters.admit("u1", uuid4(), 2) is None
        assert await memory.counters.get("u1") == 2

    async def test_admit_is_idempotent_per_note(self, memory):
        """Test that a note already holding a unit is admitted even at the limit."""
        note_id = uuid4()
        assert await memory.counters.admit("u1", note_id, 1) == 1
        assert await memory.counters.admit("u1", note_id, 1) == 1
        assert await memory.counters.get("u1") == 1

    async def test_release_only_held_notes(self, memory):
        """Test that release returns None for a note without a unit."""
        note_id = uuid4()
        assert await memory.counters.release("u1", note_id) is None
        await memory.counters.admit("u1", note_id, 5)
        assert await memory.counters.release("u1", note_id) == 0
        assert await memory.counters.release("u1", note_id) is None
        assert await memory.counters.get("u1") == 0


class TestMemoryJobStorage:
    """Tests for MemoryJobStorage."""

    async def test_save_overwrites(self, memory):
        """Test that saving a job replaces the previous snapshot."""
        job_id = uuid4()
        await memory.jobs.save({"_id": job_id, "status": "queued"})
        await memory.jobs.save({"_id": job_id, "status": "running"})
        assert (await memory.jobs.get(job_id))["status"] == "running"
        assert await memory.jobs.get(uuid4()) is None
