"""Asynchronous bulk note import with per-item failure isolation."""

import asyncio
from typing import Any
from uuid import UUID

import structlog

from geonotes.core.core import Service
from geonotes.core.modules.bulk_import.models import BulkImportItemResult, BulkImportJob, JobStatus
from geonotes.core.modules.note.models import NoteCreate
from geonotes.core.storage.base import Storage
from geonotes.errors import InvalidTransitionError, NotFoundError, StorageError, UserError, ValidationError, error_code
from geonotes.utils import now, parse_model

logger = structlog.get_logger(__name__)

CANCELLED_CODE = "cancelled"


class JobRun:
    """Live state of a job while its background task runs."""

    def __init__(self, job: BulkImportJob, payloads: list[Any]) -> None:
        self.job = job
        self.payloads = payloads
        self.lock = asyncio.Lock()  # Guards job mutations and their persistence
        self.recorded: set[int] = set()
        self.abort_code: str | None = None  # Set when remaining items must not be attempted
        self.abort_reason: str | None = None
        self.task: asyncio.Task[None] | None = None

    @property
    def should_stop(self) -> bool:
        return self.job.cancel_requested or self.abort_code is not None

    def abort(self, code: str, reason: str) -> None:
        if self.abort_code is None:
            self.abort_code = code
            self.abort_reason = reason

    def record(self, result: BulkImportItemResult) -> None:
        self.recorded.add(result.index)
        self.job.record(result)

    def fail_unattempted(self, code: str, message: str) -> None:
        for index, payload in enumerate(self.payloads):
            if index not in self.recorded:
                self.record(BulkImportItemResult.failure(index, code, message, payload))


class BulkImportService(Service):
    """Runs bulk imports on a bounded pool of workers.

    Each item goes through NoteService.create_note exactly once, like any
    other caller. Job progress is kept in memory while the job runs and is
    persisted after every item, so polling always sees a snapshot that only
    moves forward.
    """

    def __init__(self, storage: Storage) -> None:
        super().__init__(storage)
        self._runs: dict[UUID, JobRun] = {}
        self._background_tasks: set[asyncio.Task[None]] = set()

    async def on_stop(self) -> None:
        """Cancel running jobs and wait for in-flight items to finish."""
        for run in self._runs.values():
            if not run.job.is_terminal:
                run.job.cancel_requested = True
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def submit(self, items: Any) -> UUID:
        """Register a batch of note payloads and start processing it in the background.

        Returns the job id immediately; the job starts in QUEUED status.
        """
        config = self.core.config
        if not isinstance(items, list):
            raise ValidationError("Bulk import items must be a list")
        if not items:
            raise ValidationError("Bulk import batch is empty")
        if len(items) > config.bulk_max_items:
            raise ValidationError(f"Bulk import batch exceeds {config.bulk_max_items} items (got {len(items)})")

        job = BulkImportJob(total=len(items))
        await self.storage.jobs.save(job.to_mongo())

        run = JobRun(job, list(items))
        self._runs[job.id] = run
        task = asyncio.create_task(self._run(run))
        run.task = task
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

        logger.info("bulk_import_submitted", job_id=job.id, total=job.total)
        return job.id

    async def get_status(self, job_id: UUID) -> BulkImportJob:
        """Snapshot of the job. Safe to poll at any time."""
        run = self._runs.get(job_id)
        if run is not None:
            return run.job.model_copy(deep=True)
        doc = await self.storage.jobs.get(job_id)
        if doc is None:
            raise NotFoundError(f"Bulk import job not found: {job_id}")
        return BulkImportJob.model_validate(doc)

    async def cancel(self, job_id: UUID) -> BulkImportJob:
        """Request cooperative cancellation.

        Workers finish the item they are processing and stop before taking the
        next one. Notes already created are kept.
        """
        run = self._runs.get(job_id)
        if run is None or run.job.is_terminal:
            job = await self.get_status(job_id)
            raise InvalidTransitionError(f"Bulk import job {job_id} is already {job.status}")
        run.job.cancel_requested = True
        logger.info("bulk_import_cancel_requested", job_id=job_id, processed=run.job.processed, total=run.job.total)
        return run.job.model_copy(deep=True)

    async def wait(self, job_id: UUID) -> BulkImportJob:
        """Wait until the job reaches a terminal status and return it."""
        run = self._runs.get(job_id)
        if run is not None and run.task is not None:
            await asyncio.shield(run.task)
        return await self.get_status(job_id)

    async def _run(self, run: JobRun) -> None:
        job = run.job
        try:
            await self._execute(run)
        except Exception as e:
            logger.exception("bulk_import_crashed", job_id=job.id)
            async with run.lock:
                if not job.is_terminal:
                    run.fail_unattempted(error_code(e), "Not attempted: import aborted")
                    job.error = str(e) or type(e).__name__
                    self._finish(run, JobStatus.FAILED if job.succeeded == 0 else JobStatus.PARTIALLY_COMPLETED)
        finally:
            if await self._persist(run):
                self._runs.pop(job.id, None)

    async def _execute(self, run: JobRun) -> None:
        job = run.job
        async with run.lock:
            job.status = JobStatus.RUNNING
            job.started_at = now()
            await self._persist(run)
        logger.info("bulk_import_started", job_id=job.id, total=job.total)

        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(len(run.payloads)):
            queue.put_nowait(index)

        concurrency = min(self.core.config.bulk_concurrency, job.total)
        async with asyncio.TaskGroup() as workers:
            for _ in range(concurrency):
                workers.create_task(self._worker(run, queue))

        async with run.lock:
            if job.cancel_requested and job.processed < job.total:
                run.fail_unattempted(CANCELLED_CODE, "Not attempted: job cancelled")
                self._finish(run, JobStatus.CANCELLED)
            elif run.abort_code is not None:
                run.fail_unattempted(run.abort_code, f"Not attempted: {run.abort_reason}")
                job.error = run.abort_reason
                self._finish(run, JobStatus.FAILED if job.succeeded == 0 else JobStatus.PARTIALLY_COMPLETED)
            elif job.failed == 0:
                self._finish(run, JobStatus.COMPLETED)
            else:
                # Every item was attempted; rejected items are results, not a job failure
                self._finish(run, JobStatus.PARTIALLY_COMPLETED)

    async def _worker(self, run: JobRun, queue: asyncio.Queue[int]) -> None:
        # Cancellation is checked between items only, never in the middle of one
        while not run.should_stop:
            try:
                index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            result = await self._import_item(run, index, run.payloads[index])
            async with run.lock:
                run.record(result)
                await self._persist(run)

    async def _import_item(self, run: JobRun, index: int, payload: Any) -> BulkImportItemResult:
        try:
            data = parse_model(NoteCreate, payload)
            note = await self.core.services.note.create_note(data)
        except UserError as e:
            logger.debug("bulk_import_item_failed", index=index, error_code=e.code, error=str(e))
            return BulkImportItemResult.failure(index, e.code, str(e), payload)
        except StorageError as e:
            logger.warning("bulk_import_storage_failed", job_id=run.job.id, index=index, error=str(e))
            run.abort(StorageError.code, "Storage unavailable")
            return BulkImportItemResult.failure(index, StorageError.code, str(e), payload)
        except Exception as e:
            logger.exception("bulk_import_item_crashed", job_id=run.job.id, index=index)
            run.abort(error_code(e), "Import aborted after an unexpected error")
            return BulkImportItemResult.failure(index, error_code(e), str(e) or type(e).__name__, payload)
        return BulkImportItemResult.success(index, note.id)

    def _finish(self, run: JobRun, status: JobStatus) -> None:
        job = run.job
        job.status = status
        job.completed_at = now()
        logger.info(
            "bulk_import_finished",
            job_id=job.id,
            status=status,
            total=job.total,
            succeeded=job.succeeded,
            failed=job.failed,
        )

    async def _persist(self, run: JobRun) -> bool:
        """Save the job snapshot. Failures are logged, the in-memory run stays authoritative."""
        try:
            await self.storage.jobs.save(run.job.to_mongo())
        except StorageError:
            logger.warning("bulk_import_persist_failed", job_id=run.job.id, status=run.job.status)
            return False
        return True
