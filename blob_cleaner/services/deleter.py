import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blob_cleaner.api.v1.metrics import BLOBS_DELETED
from blob_cleaner.commands.ledger import get_job, mark_cleaned
from blob_cleaner.commands.references import is_referenced
from blob_cleaner.db.session import AsyncSessionLocal, begin_snapshot
from blob_cleaner.domain.errors import JobNotFoundError, CleanupConflictError, StorageTimeoutError
from blob_cleaner.domain.models import JobRecord
from blob_cleaner.domain.stages import Stage
from blob_cleaner.domain.states import DeletionOutcome, TERMINAL_STATUSES
from blob_cleaner.services.storage import BlobStore, DeleteResult
from blob_cleaner.settings import settings

logger = logging.getLogger(__name__)

class BlobDeleter:
    """
    Deletes a job's blobs and then marks the row cleaned.

    Order is always delete-then-mark. If marking fails after the delete went
    through, the flag stays false and the next pass retries; the store treats
    the second delete as ALREADY_ABSENT. No transaction is held open while
    talking to storage.
    """

    def __init__(
        self,
        store: BlobStore,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        storage_timeout: Optional[float] = None
    ):
        self.store = store
        self.session_factory = session_factory
        self.storage_timeout = storage_timeout if storage_timeout is not None else settings.STORAGE_TIMEOUT_SECONDS

    async def delete_and_mark(self, stage: Stage, job: JobRecord) -> DeletionOutcome:
        if job.blob_cleaned:
            return DeletionOutcome.ALREADY_CLEANED

        # 1. Re-verify against fresh state; a consumer may have been queued since selection
        async with self.session_factory() as session:
            async with session.begin():
                await begin_snapshot(session)
                current = await get_job(session, stage, job.id)
                if current is None:
                    logger.info(f"{stage} job {job.id} disappeared before cleanup, skipping")
                    return DeletionOutcome.SKIPPED_MISSING
                if current.blob_cleaned:
                    return DeletionOutcome.ALREADY_CLEANED
                if current.status not in TERMINAL_STATUSES:
                    logger.info(f"{stage} job {job.id} is {current.status} again, skipping")
                    return DeletionOutcome.SKIPPED_NOT_TERMINAL
                if await is_referenced(session, stage, current):
                    logger.debug(f"{stage} job {job.id} is still referenced downstream, skipping")
                    return DeletionOutcome.SKIPPED_REFERENCED

        # 2. Delete from storage
        for blob_ref in current.blob_refs:
            result = await self._delete_blob(blob_ref)
            logger.debug(f"Blob {blob_ref}: {result}")

        # 3. Mark
        async with self.session_factory() as session:
            async with session.begin():
                try:
                    await mark_cleaned(session, stage, job.id)
                except JobNotFoundError:
                    logger.warning(f"{stage} job {job.id} vanished after its blobs were deleted")
                    return DeletionOutcome.SKIPPED_MISSING
                except CleanupConflictError:
                    logger.info(f"{stage} job {job.id} was marked cleaned by another worker")
                    return DeletionOutcome.ALREADY_CLEANED

        BLOBS_DELETED.labels(stage=str(stage)).inc()
        logger.info(f"Cleaned {len(current.blob_refs)} blob(s) for {stage} job {job.id}")
        return DeletionOutcome.CLEANED

    async def _delete_blob(self, blob_ref: str) -> DeleteResult:
        try:
            return await asyncio.wait_for(self.store.delete(blob_ref), timeout=self.storage_timeout)
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(blob_ref, self.storage_timeout) from e
