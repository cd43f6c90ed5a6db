from datetime import datetime
from enum import StrEnum
from typing import Any, Self
from uuid import UUID

from pydantic import BaseModel, Field

from geonotes.core.db import MongoModel
from geonotes.utils import now


class JobStatus(StrEnum):
    """Bulk import job states. Status only moves forward: queued -> running -> terminal."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"  # Every item succeeded
    PARTIALLY_COMPLETED = "partially_completed"  # At least one item failed, including every item rejected
    FAILED = "failed"  # Aborted before any item succeeded (storage outage, unexpected error)
    CANCELLED = "cancelled"  # Stopped early, committed notes are kept

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.QUEUED, JobStatus.RUNNING)


class ItemOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BulkImportItemResult(BaseModel):
    """Outcome of one batch item."""

    index: int  # Position in the submitted batch
    outcome: ItemOutcome
    note_id: UUID | None = None
    error_code: str | None = None
    error_message: str | None = None
    payload: Any = None  # Original payload, kept for failed items only

    @classmethod
    def success(cls, index: int, note_id: UUID) -> Self:
        return cls(index=index, outcome=ItemOutcome.SUCCEEDED, note_id=note_id)

    @classmethod
    def failure(cls, index: int, error_code: str, error_message: str, payload: Any) -> Self:
        return cls(
            index=index,
            outcome=ItemOutcome.FAILED,
            error_code=error_code,
            error_message=error_message,
            payload=payload,
        )


class BulkImportJob(MongoModel):
    """Tracked asynchronous batch creation of notes.

    Invariant: succeeded + failed <= total, with equality once the status is terminal.
    """

    status: JobStatus = JobStatus.QUEUED
    total: int
    succeeded: int = 0
    failed: int = 0
    items: list[BulkImportItemResult] = Field(default_factory=list)  # In completion order
    error: str | None = None  # Reason of a job-level failure
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def record(self, result: BulkImportItemResult) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Job {self.id} is already {self.status}")
        self.items.append(result)
        if result.outcome == ItemOutcome.SUCCEEDED:
            self.succeeded += 1
        else:
            self.failed += 1
