from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from geonotes.config import Config
from geonotes.core.core import Core
from geonotes.core.modules.bulk_import.models import BulkImportJob
from geonotes.core.modules.note.models import Note, NoteCreate, NoteFilters, NotePatch, NoteState, VersionRecord
from geonotes.core.pagination import PaginationResult
from geonotes.core.storage.base import Storage
from geonotes.errors import ValidationError
from geonotes.utils import parse_model


class App:
    """Facade for all note engine operations, consumed by the HTTP layer."""

    def __init__(self, config: Config, storage: Storage | None = None) -> None:
        self._core = Core(config, storage)

    @property
    def core(self) -> Core:
        return self._core

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    async def create_note(self, payload: NoteCreate | dict[str, Any]) -> Note:
        """Create a note; private notes count against the owner's quota."""
        return await self._core.services.note.create_note(_parse_note_create(payload))

    async def get_note(self, note_id: UUID) -> Note:
        return await self._core.services.note.get_note(note_id)

    async def transition_note(self, note_id: UUID, target_state: NoteState | str, expected_version: int | None = None) -> Note:
        """Change note state (new->open, open->closed, closed->new, new->closed)."""
        return await self._core.services.note.transition_note(note_id, target_state, expected_version)

    async def update_note(
        self, note_id: UUID, patch: NotePatch | dict[str, Any], expected_version: int | None = None
    ) -> Note:
        """Partially update description, user data, coordinates or visibility."""
        if isinstance(patch, dict):
            patch = parse_model(NotePatch, patch)
        return await self._core.services.note.update_note(note_id, patch, expected_version)

    async def delete_note(self, note_id: UUID) -> None:
        await self._core.services.note.delete_note(note_id)

    async def get_note_versions(self, note_id: UUID) -> list[VersionRecord]:
        return await self._core.services.note.get_note_versions(note_id)

    async def list_notes(self, filters: NoteFilters | None = None, limit: int = 50, offset: int = 0) -> PaginationResult[Note]:
        return await self._core.services.note.list_notes(filters, limit, offset)

    async def query_nearby(self, lat: float, lon: float, radius_meters: float) -> list[Note]:
        """Notes within radius_meters (great-circle distance) of the point, closest first."""
        return await self._core.services.note.query_nearby(lat, lon, radius_meters)

    async def get_private_note_count(self, owner_id: str) -> int:
        return await self._core.services.quota.get_count(owner_id)

    async def submit_bulk_import(self, items: list[Any]) -> UUID:
        """Start an asynchronous bulk import and return its job id."""
        return await self._core.services.bulk_import.submit(items)

    async def get_bulk_import_status(self, job_id: UUID) -> BulkImportJob:
        return await self._core.services.bulk_import.get_status(job_id)

    async def cancel_bulk_import(self, job_id: UUID) -> BulkImportJob:
        return await self._core.services.bulk_import.cancel(job_id)

    async def wait_for_bulk_import(self, job_id: UUID) -> BulkImportJob:
        return await self._core.services.bulk_import.wait(job_id)


def _parse_note_create(payload: NoteCreate | dict[str, Any]) -> NoteCreate:
    if isinstance(payload, NoteCreate):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError("Note payload must be an object")
    return parse_model(NoteCreate, payload)
