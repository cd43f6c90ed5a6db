from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Self
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from geonotes.core.db import MongoModel
from geonotes.utils import now


class NoteState(StrEnum):
    """Lifecycle states of a note."""

    NEW = "new"
    OPEN = "open"
    CLOSED = "closed"


class Visibility(StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"


class TransitionKind(StrEnum):
    """Kind of mutation that produced a version record."""

    CREATE = "create"
    EDIT = "edit"
    STATE_CHANGE = "state_change"


class Note(MongoModel):
    """Location-tagged report."""

    latitude: float
    longitude: float
    description: str
    visibility: Visibility = Visibility.PUBLIC
    owner_id: str | None = None  # Absent for anonymous notes, required for private ones
    user_data: dict[str, Any] = Field(default_factory=dict)  # Opaque, never inspected
    state: NoteState = NoteState.NEW
    version: int = 1
    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)

    @property
    def is_private(self) -> bool:
        return self.visibility == Visibility.PRIVATE

    def snapshot(self) -> "NoteSnapshot":
        return NoteSnapshot.model_validate(self.model_dump(exclude={"id"}))


class NoteSnapshot(BaseModel):
    """Full field values of a note at one version."""

    latitude: float
    longitude: float
    description: str
    visibility: Visibility
    owner_id: str | None
    user_data: dict[str, Any]
    state: NoteState
    version: int
    created_at: datetime
    updated_at: datetime


class VersionRecord(BaseModel):
    """Immutable entry of a note's history, keyed by (note_id, version)."""

    note_id: UUID
    version: int
    transition: TransitionKind
    snapshot: NoteSnapshot
    created_at: datetime = Field(default_factory=now)

    @classmethod
    def of(cls, note: Note, transition: TransitionKind) -> Self:
        return cls(note_id=note.id, version=note.version, transition=transition, snapshot=note.snapshot())


class NoteCreate(BaseModel):
    """Input for note creation."""

    latitude: float
    longitude: float
    description: str
    visibility: Visibility = Visibility.PUBLIC
    owner_id: str | None = None
    user_data: dict[str, Any] = Field(default_factory=dict)


class NotePatch(BaseModel):
    """Partial update of non-state note fields. None means unchanged."""

    description: str | None = None
    user_data: dict[str, Any] | None = None
    latitude: float | None = None
    longitude: float | None = None
    visibility: Visibility | None = None

    def is_empty(self) -> bool:
        return not self.model_fields_set or all(getattr(self, name) is None for name in self.model_fields_set)


class LocationQuery(BaseModel):
    latitude: float
    longitude: float
    radius_meters: float


class NoteFilters(BaseModel):
    """Criteria for listing notes. All criteria are combined with AND."""

    state: NoteState | None = None
    visibility: Visibility | None = None
    owner_id: str | None = None
    location: LocationQuery | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None

    @field_validator("created_after", "created_before")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        # Naive datetimes are treated as UTC, matching stored timestamps
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
