import logging
import time
from datetime import timedelta
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blob_cleaner.api.v1.metrics import CLEANUP_FAILURES, CLEANUP_SKIPPED, CLEANUP_PASS_DURATION, STUCK_BLOBS
from blob_cleaner.commands.ledger import list_cleanup_candidates, count_stuck_blobs
from blob_cleaner.commands.references import filter_unreferenced
from blob_cleaner.db.session import AsyncSessionLocal, begin_snapshot
from blob_cleaner.domain.errors import StorageError
from blob_cleaner.domain.models import CleanupReport
from blob_cleaner.domain.stages import Stage, CLEANUP_ORDER
from blob_cleaner.domain.states import DeletionOutcome
from blob_cleaner.services.deleter import BlobDeleter
from blob_cleaner.settings import settings

logger = logging.getLogger(__name__)

async def run_cleanup_pass(
    deleter: BlobDeleter,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    batch_size: Optional[int] = None,
    stages: Iterable[Stage] = CLEANUP_ORDER,
    dry_run: bool = False
) -> CleanupReport:
    """
    One pass over every stage:
    1. Read a batch of unreferenced candidates (one snapshot).
    2. Hand each survivor to the deleter, outside the read transaction.

    A failure on one job is logged and counted; the rest of the batch still runs.
    """
    limit = batch_size or settings.CLEANUP_BATCH_SIZE
    report = CleanupReport(dry_run=dry_run)
    started = time.monotonic()

    for stage in stages:
        stage_report = report.for_stage(stage)

        async with session_factory() as session:
            async with session.begin():
                await begin_snapshot(session)
                candidates = await list_cleanup_candidates(session, stage, limit, unreferenced_only=True)
                # Same snapshot; only trips if the query and tracker ever disagree
                eligible = await filter_unreferenced(session, stage, candidates)

        stage_report.candidates = len(candidates)
        referenced = len(candidates) - len(eligible)
        if referenced:
            stage_report.skipped += referenced
            CLEANUP_SKIPPED.labels(stage=str(stage), reason=DeletionOutcome.SKIPPED_REFERENCED).inc(referenced)

        if dry_run:
            stage_report.would_clean = [job.id for job in eligible]
            logger.info(f"[dry-run] {stage}: would clean {len(eligible)} of {len(candidates)} candidates")
            continue

        for job in eligible:
            try:
                outcome = await deleter.delete_and_mark(stage, job)
            except StorageError as e:
                logger.warning(f"Cleanup of {stage} job {job.id} failed, will retry next pass: {e}")
                CLEANUP_FAILURES.labels(stage=str(stage), kind=e.kind).inc()
                stage_report.failed += 1
                continue
            except Exception as e:
                logger.error(f"Unexpected error cleaning {stage} job {job.id}: {e}", exc_info=True)
                CLEANUP_FAILURES.labels(stage=str(stage), kind="unexpected").inc()
                stage_report.failed += 1
                continue

            stage_report.record(outcome)
            if outcome not in (DeletionOutcome.CLEANED, DeletionOutcome.ALREADY_CLEANED):
                CLEANUP_SKIPPED.labels(stage=str(stage), reason=outcome).inc()

        if candidates:
            logger.info(
                f"{stage}: {stage_report.cleaned} cleaned, {stage_report.skipped} skipped, "
                f"{stage_report.failed} failed of {len(candidates)} candidates"
            )

    CLEANUP_PASS_DURATION.observe(time.monotonic() - started)
    return report

async def refresh_stuck_gauges(
    session: AsyncSession,
    threshold_seconds: Optional[int] = None,
    stages: Iterable[Stage] = CLEANUP_ORDER
) -> dict[Stage, int]:
    """Recomputes the stuck-blob gauge per stage. Runs on every instance."""
    if threshold_seconds is None:
        threshold_seconds = settings.STUCK_BLOB_THRESHOLD_SECONDS
    threshold = timedelta(seconds=threshold_seconds)
    counts = {}
    for stage in stages:
        count = await count_stuck_blobs(session, stage, threshold)
        STUCK_BLOBS.labels(stage=str(stage)).set(count)
        counts[stage] = count
    return counts
