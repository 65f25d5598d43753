from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blob_cleaner.domain.models import JobRecord
from blob_cleaner.domain.stages import Stage
from blob_cleaner.domain.states import ACTIVE_STATUSES

async def is_referenced(session: AsyncSession, stage: Stage, job: JobRecord) -> bool:
    """
    True if any downstream row for the same batch is still queued or in progress.

    Terminal stages have no consumers and are never referenced. Run this on
    the same session (snapshot) that selected the candidate.
    """
    for consumer in stage.downstream:
        model = consumer.model
        stmt = (
            select(model.id)
            .where(
                model.l1_batch_number == job.l1_batch_number,
                model.status.in_(ACTIVE_STATUSES),
            )
            .limit(1)
        )
        if await session.scalar(stmt) is not None:
            return True
    return False

async def filter_unreferenced(
    session: AsyncSession,
    stage: Stage,
    jobs: list[JobRecord]
) -> list[JobRecord]:
    return [job for job in jobs if not await is_referenced(session, stage, job)]
