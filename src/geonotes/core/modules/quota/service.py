from uuid import UUID

import structlog

from geonotes.core.core import Service
from geonotes.core.modules.quota.models import Admission
from geonotes.core.storage.base import Storage
from geonotes.errors import QuotaExceededError
from geonotes.utils import KeyedLock

logger = structlog.get_logger(__name__)


class QuotaService(Service):
    """Per-owner private note quota.

    Each counted note holds one unit, recorded by note id. Admitting a note
    that already holds a unit, or releasing one that holds none, changes
    nothing, so retried creates, updates and deletes keep the count equal to
    the number of counted notes.
    """

    def __init__(self, storage: Storage) -> None:
        super().__init__(storage)
        self._owner_locks = KeyedLock()

    @property
    def limit(self) -> int:
        return self.core.config.quota_limit

    async def get_count(self, owner_id: str) -> int:
        return await self.storage.counters.get(owner_id)

    async def try_admit_private(self, owner_id: str, note_id: UUID) -> Admission:
        """Atomically check the owner's counter against the limit and take a unit for the note."""
        async with self._owner_locks.hold(owner_id):
            count = await self.storage.counters.admit(owner_id, note_id, self.limit)
            if count is None:
                current = await self.storage.counters.get(owner_id)
                logger.info("quota_denied", owner_id=owner_id, note_id=note_id, count=current, limit=self.limit)
                return Admission(owner_id=owner_id, admitted=False, count=current, limit=self.limit)

        logger.debug("quota_admitted", owner_id=owner_id, note_id=note_id, count=count, limit=self.limit)
        return Admission(owner_id=owner_id, admitted=True, count=count, limit=self.limit)

    async def admit_private(self, owner_id: str, note_id: UUID) -> Admission:
        """Like try_admit_private but raises QuotaExceededError on denial."""
        admission = await self.try_admit_private(owner_id, note_id)
        if not admission.admitted:
            raise QuotaExceededError(
                f"Owner '{owner_id}' already has {admission.count} private notes (limit {admission.limit})"
            )
        return admission

    async def release(self, owner_id: str, note_id: UUID) -> int:
        """Give back the note's unit. Releasing a note that holds none is a no-op."""
        async with self._owner_locks.hold(owner_id):
            count = await self.storage.counters.release(owner_id, note_id)
        if count is None:
            logger.debug("quota_release_not_held", owner_id=owner_id, note_id=note_id)
            return await self.get_count(owner_id)
        logger.debug("quota_released", owner_id=owner_id, note_id=note_id, count=count)
        return count
