from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update, func, exists
from sqlalchemy.ext.asyncio import AsyncSession

from blob_cleaner.db.models import BlobJobMixin
from blob_cleaner.domain.errors import JobNotFoundError, CleanupConflictError
from blob_cleaner.domain.models import JobRecord
from blob_cleaner.domain.stages import Stage
from blob_cleaner.domain.states import JobStatus, TERMINAL_STATUSES, ACTIVE_STATUSES

def _completed_at(model: type[BlobJobMixin]):
    # Rows finished before processing_finished_at was populated fall back to updated_at
    return func.coalesce(model.processing_finished_at, model.updated_at)

def _to_record(stage: Stage, row: BlobJobMixin) -> JobRecord:
    return JobRecord(
        id=row.id,
        stage=stage,
        l1_batch_number=row.l1_batch_number,
        status=JobStatus(row.status),
        blob_cleaned=row.is_blob_cleaned,
        processing_finished_at=row.processing_finished_at,
    )

async def list_cleanup_candidates(
    session: AsyncSession,
    stage: Stage,
    limit: int = 100,
    unreferenced_only: bool = False
) -> list[JobRecord]:
    """
    Returns terminal rows whose blobs have not been cleaned yet.
    Oldest completions first, so storage growth stays bounded.

    With `unreferenced_only`, rows whose batch still has a queued or
    in-progress downstream job are left out of the batch, so they cannot
    crowd newer candidates out of `limit`.
    """
    model = stage.model
    stmt = (
        select(model)
        .where(
            model.status.in_(TERMINAL_STATUSES),
            model.is_blob_cleaned.is_(False),
        )
        .order_by(_completed_at(model).asc(), model.id.asc())
        .limit(limit)
    )
    if unreferenced_only:
        for consumer in stage.downstream:
            downstream = consumer.model
            stmt = stmt.where(
                ~exists().where(
                    downstream.l1_batch_number == model.l1_batch_number,
                    downstream.status.in_(ACTIVE_STATUSES),
                )
            )
    rows = (await session.execute(stmt)).scalars().all()
    return [_to_record(stage, row) for row in rows]

async def get_job(session: AsyncSession, stage: Stage, job_id: int) -> Optional[JobRecord]:
    model = stage.model
    row = (await session.execute(select(model).where(model.id == job_id))).scalar_one_or_none()
    if row is None:
        return None
    return _to_record(stage, row)

async def mark_cleaned(session: AsyncSession, stage: Stage, job_id: int) -> None:
    """
    Sets is_blob_cleaned for exactly one row, only if it is still false.

    Raises JobNotFoundError if the row is gone and CleanupConflictError if
    another worker already marked it. Both are benign for callers.
    """
    model = stage.model
    stmt = (
        update(model)
        .where(model.id == job_id, model.is_blob_cleaned.is_(False))
        .values(is_blob_cleaned=True)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount == 1:
        return

    exists = await session.scalar(select(model.id).where(model.id == job_id))
    if exists is None:
        raise JobNotFoundError(stage, job_id)
    raise CleanupConflictError(stage, job_id)

async def count_stuck_blobs(
    session: AsyncSession,
    stage: Stage,
    older_than: timedelta,
    now: Optional[datetime] = None
) -> int:
    """
    Counts terminal rows that are still uncleaned after `older_than`.
    A non-zero value means deletion keeps failing for those blobs.
    """
    model = stage.model
    cutoff = (now or datetime.now(timezone.utc)) - older_than
    stmt = (
        select(func.count())
        .select_from(model)
        .where(
            model.status.in_(TERMINAL_STATUSES),
            model.is_blob_cleaned.is_(False),
            _completed_at(model) < cutoff,
        )
    )
    return (await session.execute(stmt)).scalar() or 0
