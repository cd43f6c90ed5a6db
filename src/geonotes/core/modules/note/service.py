from uuid import UUID

import structlog

from geonotes.core.core import Service
from geonotes.core.modules.geo.distance import haversine_meters
from geonotes.core.modules.geo.validators import (
    validate_coordinates,
    validate_description,
    validate_user_data,
)
from geonotes.core.modules.note.models import (
    Note,
    NoteCreate,
    NoteFilters,
    NotePatch,
    NoteState,
    TransitionKind,
    VersionRecord,
    Visibility,
)
from geonotes.core.modules.note.state import ensure_transition
from geonotes.core.pagination import PaginationResult
from geonotes.core.storage.base import NoteQuery
from geonotes.errors import ConflictError, NotFoundError, StorageError, ValidationError
from geonotes.utils import now

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 500


class NoteService(Service):
    """Sole authority over notes, their lifecycle state and version history.

    Every accepted mutation appends a VersionRecord before the note document
    is replaced. The version log is unique on (note_id, version), so of two
    writers that read the same version only one can append the next record;
    the other gets ConflictError. The note replacement is additionally
    conditioned on the version that was read.
    """

    def _counts_toward_quota(self, note: Note) -> bool:
        if not note.is_private:
            return False
        return self.core.config.quota_counts_closed or note.state != NoteState.CLOSED

    async def get_note(self, note_id: UUID) -> Note:
        """Get the latest version of a note."""
        doc = await self.storage.notes.get(note_id)
        if doc is None:
            raise NotFoundError(f"Note not found: {note_id}")
        return Note.model_validate(doc)

    async def get_note_versions(self, note_id: UUID) -> list[VersionRecord]:
        """Full history of a note ordered by version number."""
        await self.get_note(note_id)
        docs = await self.storage.versions.history(note_id)
        return [VersionRecord.model_validate(doc) for doc in docs]

    async def create_note(self, data: NoteCreate) -> Note:
        """Create a note in state NEW with version 1.

        Private notes take one unit of the owner's quota; the unit is given
        back if the note cannot be stored.
        """
        config = self.core.config
        latitude, longitude = validate_coordinates(data.latitude, data.longitude)
        description = validate_description(data.description, config.description_max_length)
        user_data = validate_user_data(data.user_data, config.user_data_max_bytes)
        owner_id = data.owner_id.strip() if data.owner_id is not None else None
        if owner_id == "":
            raise ValidationError("Owner id must not be empty")
        if data.visibility == Visibility.PRIVATE and owner_id is None:
            raise ValidationError("Private notes require an owner")

        timestamp = now()
        note = Note(
            latitude=latitude,
            longitude=longitude,
            description=description,
            visibility=data.visibility,
            owner_id=owner_id,
            user_data=user_data,
            state=NoteState.NEW,
            version=1,
            created_at=timestamp,
            updated_at=timestamp,
        )

        admitted = self._counts_toward_quota(note)
        if admitted and note.owner_id is not None:
            await self.core.services.quota.admit_private(note.owner_id, note.id)

        record = VersionRecord.of(note, TransitionKind.CREATE)
        try:
            if not await self.storage.versions.append(record.model_dump()):
                raise ConflictError(f"Version history already exists for note {note.id}")
            try:
                await self.storage.notes.insert(note.to_mongo())
            except StorageError:
                await self._discard_version(record)
                raise
        except (ConflictError, StorageError):
            if admitted and note.owner_id is not None:
                await self.core.services.quota.release(note.owner_id, note.id)
            raise

        self.core.services.spatial.insert(note.id, note.latitude, note.longitude)
        logger.info("note_created", note_id=note.id, visibility=note.visibility, owner_id=note.owner_id)
        return note

    async def transition_note(self, note_id: UUID, target: NoteState | str, expected_version: int | None = None) -> Note:
        """Move a note along an edge of the lifecycle state machine."""
        try:
            target_state = NoteState(target)
        except ValueError:
            raise ValidationError(f"Unknown note state: {target!r}") from None

        note = await self.get_note(note_id)
        self._check_expected_version(note, expected_version)
        ensure_transition(note.state, target_state)

        updated = note.model_copy(update={"state": target_state, "version": note.version + 1, "updated_at": now()})
        await self._commit_with_quota(note, updated, TransitionKind.STATE_CHANGE)
        logger.info(
            "note_transitioned",
            note_id=note_id,
            from_state=note.state,
            to_state=target_state,
            version=updated.version,
        )
        return updated

    async def update_note(self, note_id: UUID, patch: NotePatch, expected_version: int | None = None) -> Note:
        """Apply a partial update of non-state fields.

        Relocating moves the note in the spatial index. Visibility changes
        adjust the owner's quota.
        """
        if patch.is_empty():
            raise ValidationError("Patch contains no changes")

        config = self.core.config
        note = await self.get_note(note_id)
        self._check_expected_version(note, expected_version)

        changes: dict[str, object] = {}
        if patch.description is not None:
            changes["description"] = validate_description(patch.description, config.description_max_length)
        if patch.user_data is not None:
            changes["user_data"] = validate_user_data(patch.user_data, config.user_data_max_bytes)
        if patch.latitude is not None or patch.longitude is not None:
            latitude, longitude = validate_coordinates(
                patch.latitude if patch.latitude is not None else note.latitude,
                patch.longitude if patch.longitude is not None else note.longitude,
            )
            changes["latitude"] = latitude
            changes["longitude"] = longitude
        if patch.visibility is not None:
            if patch.visibility == Visibility.PRIVATE and note.owner_id is None:
                raise ValidationError("Anonymous notes cannot be made private")
            changes["visibility"] = patch.visibility

        updated = note.model_copy(update={**changes, "version": note.version + 1, "updated_at": now()})
        await self._commit_with_quota(note, updated, TransitionKind.EDIT)

        logger.info("note_updated", note_id=note_id, fields=sorted(changes), version=updated.version)
        return updated

    async def delete_note(self, note_id: UUID) -> None:
        """Delete a note with its history, index entry and quota unit.

        The note document goes first and its version history last, so the
        history of a deletion that failed part way lets a repeated call
        finish the remaining steps.
        """
        doc = await self.storage.notes.delete(note_id)
        if doc is not None:
            note = Note.model_validate(doc)
        else:
            history = await self.storage.versions.history(note_id)
            if not history:
                raise NotFoundError(f"Note not found: {note_id}")
            snapshot = VersionRecord.model_validate(history[-1]).snapshot
            note = Note(id=note_id, **snapshot.model_dump())
            logger.info("note_delete_resumed", note_id=note_id)

        self.core.services.spatial.remove(note_id)
        if note.is_private and note.owner_id is not None:
            await self.core.services.quota.release(note.owner_id, note_id)
        deleted_versions = await self.storage.versions.delete_all(note_id)
        logger.info("note_deleted", note_id=note_id, deleted_versions=deleted_versions)

    async def list_notes(
        self,
        filters: NoteFilters | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PaginationResult[Note]:
        """Get paginated notes, newest first, optionally filtered.

        Args:
            filters: Criteria combined with AND; a location criterion is
                resolved through the spatial index
            limit: Maximum number of notes to return
            offset: Number of notes to skip

        Returns:
            Paginated list of notes
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("Offset must not be negative")

        filters = filters or NoteFilters()
        query = NoteQuery(
            state=filters.state,
            visibility=filters.visibility,
            owner_id=filters.owner_id,
            created_after=filters.created_after,
            created_before=filters.created_before,
        )
        if filters.location is not None:
            location = filters.location
            query.ids = self.core.services.spatial.query_radius(
                location.latitude, location.longitude, location.radius_meters
            )

        total, docs = await self.storage.notes.find(query, limit, offset)
        items = [Note.model_validate(doc) for doc in docs]
        logger.debug("list_notes", filters=filters.model_dump(exclude_none=True), total=total, returned=len(items))
        return PaginationResult(items=items, total=total, limit=limit, offset=offset)

    async def query_nearby(self, lat: float, lon: float, radius_meters: float) -> list[Note]:
        """Notes within radius_meters of the point, closest first."""
        matches = self.core.services.spatial.nearby(lat, lon, radius_meters)
        if not matches:
            return []

        ids = [note_id for note_id, _ in matches]
        _, docs = await self.storage.notes.find(NoteQuery(ids=ids), limit=len(ids), offset=0)
        notes = {note.id: note for note in (Note.model_validate(doc) for doc in docs)}

        result = []
        for note_id in ids:
            note = notes.get(note_id)
            # Skip notes deleted or moved away while the query was running
            if note is None or haversine_meters(lat, lon, note.latitude, note.longitude) > radius_meters:
                continue
            result.append(note)
        return result

    def _check_expected_version(self, note: Note, expected_version: int | None) -> None:
        if expected_version is not None and note.version != expected_version:
            raise ConflictError(f"Note {note.id} is at version {note.version}, expected {expected_version}")

    async def _commit_with_quota(self, current: Note, updated: Note, transition: TransitionKind) -> None:
        """Commit a mutation and move the owner's quota unit when the note starts or stops counting."""
        quota = self.core.services.quota
        counted_before = self._counts_toward_quota(current)
        counted_after = self._counts_toward_quota(updated)
        owner_id = updated.owner_id

        if counted_after and not counted_before and owner_id is not None:
            await quota.admit_private(owner_id, updated.id)
            try:
                await self._commit(current, updated, transition)
            except (ConflictError, NotFoundError, StorageError):
                await self._release_unless_counted(owner_id, updated.id)
                raise
            return

        await self._commit(current, updated, transition)
        if counted_before and not counted_after and owner_id is not None:
            await quota.release(owner_id, updated.id)

    async def _release_unless_counted(self, owner_id: str, note_id: UUID) -> None:
        """Give back a unit taken for a failed commit unless a concurrent writer made the note count."""
        doc = await self.storage.notes.get(note_id)
        if doc is None or not self._counts_toward_quota(Note.model_validate(doc)):
            await self.core.services.quota.release(owner_id, note_id)

    async def _commit(self, current: Note, updated: Note, transition: TransitionKind) -> None:
        record = VersionRecord.of(updated, transition)
        if not await self.storage.versions.append(record.model_dump()):
            logger.info("note_conflict", note_id=current.id, version=updated.version)
            raise ConflictError(f"Note {current.id} was modified concurrently (version {updated.version} exists)")

        try:
            replaced = await self.storage.notes.replace(updated.to_mongo(), expected_version=current.version)
        except StorageError:
            await self._discard_version(record)
            raise

        if not replaced:
            await self._discard_version(record)
            if await self.storage.notes.get(current.id) is None:
                raise NotFoundError(f"Note not found: {current.id}")
            raise ConflictError(f"Note {current.id} was modified concurrently")

        # Same step as the write, so index moves are applied in commit order
        if (updated.latitude, updated.longitude) != (current.latitude, current.longitude):
            self.core.services.spatial.move(updated.id, updated.latitude, updated.longitude)

    async def _discard_version(self, record: VersionRecord) -> None:
        """Roll back a version record whose note write did not happen."""
        try:
            await self.storage.versions.delete(record.note_id, record.version)
        except StorageError:
            logger.warning("version_rollback_failed", note_id=record.note_id, version=record.version)
