"""Abstract storage collaborators consumed by the services.

Documents are plain dicts in MongoDB shape (``_id`` key). Implementations
must raise StorageError when the backend is unavailable and must never
block indefinitely.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

Document = dict[str, Any]


class NoteQuery(BaseModel):
    """Storage-level note filter. Spatial criteria are resolved to ids by the caller."""

    state: str | None = None
    visibility: str | None = None
    owner_id: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    ids: list[UUID] | None = None


class NoteStorage(ABC):
    @abstractmethod
    async def get(self, note_id: UUID) -> Document | None:
        """Get note document by id, None if absent."""

    @abstractmethod
    async def insert(self, doc: Document) -> None:
        """Insert a new note document."""

    @abstractmethod
    async def replace(self, doc: Document, expected_version: int) -> bool:
        """Compare-and-swap: replace the note only if its stored version equals expected_version.

        Returns False when the note is missing or its version differs.
        """

    @abstractmethod
    async def delete(self, note_id: UUID) -> Document | None:
        """Delete a note and return the deleted document, None if it did not exist."""

    @abstractmethod
    async def find(self, query: NoteQuery, limit: int, offset: int) -> tuple[int, list[Document]]:
        """Return total match count and one page of documents, newest first."""

    @abstractmethod
    def iter_locations(self) -> AsyncIterator[Document]:
        """Iterate over all notes yielding at least _id, latitude and longitude."""


class VersionStorage(ABC):
    @abstractmethod
    async def append(self, doc: Document) -> bool:
        """Insert a version record unless (note_id, version) already exists.

        Returns False on a duplicate key.
        """

    @abstractmethod
    async def history(self, note_id: UUID) -> list[Document]:
        """All version records of a note ordered by version."""

    @abstractmethod
    async def delete(self, note_id: UUID, version: int) -> None:
        """Remove a single record. Used only to roll back an uncommitted append."""

    @abstractmethod
    async def delete_all(self, note_id: UUID) -> int:
        """Remove the whole history of a note."""


class CounterStorage(ABC):
    """Per-owner set of note ids holding a quota unit.

    Tracking ids instead of a bare count makes admission and release
    idempotent for a given note, so a retried operation never counts a note
    twice or releases it twice.
    """

    @abstractmethod
    async def get(self, owner_id: str) -> int:
        """Number of notes holding a unit, 0 if the counter does not exist."""

    @abstractmethod
    async def admit(self, owner_id: str, note_id: UUID, limit: int) -> int | None:
        """Atomically add note_id when fewer than limit notes hold a unit and return the new count.

        A note that already holds a unit is admitted again without change.
        Returns None without mutation when the limit is reached.
        """

    @abstractmethod
    async def release(self, owner_id: str, note_id: UUID) -> int | None:
        """Atomically remove note_id and return the new count.

        Returns None without mutation when the note holds no unit.
        """


class JobStorage(ABC):
    @abstractmethod
    async def save(self, doc: Document) -> None:
        """Insert or replace a job document."""

    @abstractmethod
    async def get(self, job_id: UUID) -> Document | None:
        """Get job document by id, None if absent."""


class Storage(ABC):
    """Bundle of storage collaborators with lifecycle hooks."""

    notes: NoteStorage
    versions: VersionStorage
    counters: CounterStorage
    jobs: JobStorage

    async def on_start(self) -> None:
        """Prepare backend (indexes, connections)."""

    async def on_stop(self) -> None:
        """Release backend resources."""
