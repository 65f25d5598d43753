from fastapi import APIRouter
from pydantic import BaseModel

from blob_cleaner.api.deps import DbSession, Scheduler
from blob_cleaner.scheduler.ticker import refresh_stuck_gauges
from blob_cleaner.settings import settings

router = APIRouter()

class CleanupRequest(BaseModel):
    # None keeps the scheduler's configured mode
    dry_run: bool | None = None

@router.post("/cleanup")
async def trigger_cleanup(scheduler: Scheduler, payload: CleanupRequest | None = None):
    dry_run = payload.dry_run if payload else None
    report = await scheduler.run_once(dry_run=dry_run)
    return report.as_dict()

@router.get("/stuck")
async def stuck_blobs(session: DbSession, threshold_seconds: int | None = None):
    threshold = threshold_seconds if threshold_seconds is not None else settings.STUCK_BLOB_THRESHOLD_SECONDS
    counts = await refresh_stuck_gauges(session, threshold)
    return {
        "threshold_seconds": threshold,
        "stages": {str(stage): count for stage, count in counts.items()},
    }
