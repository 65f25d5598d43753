from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from blob_cleaner.db.session import get_db_session
from blob_cleaner.scheduler.service import CleanupScheduler

# Dependency for DB session
DbSession = Annotated[AsyncSession, Depends(get_db_session)]

def get_scheduler(request: Request) -> CleanupScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Cleanup scheduler not configured")
    return scheduler

Scheduler = Annotated[CleanupScheduler, Depends(get_scheduler)]
