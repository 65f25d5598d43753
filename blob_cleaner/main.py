import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from blob_cleaner.settings import settings
from blob_cleaner.api.v1.admin import router as admin_router
from blob_cleaner.api.v1.metrics import router as metrics_router

logger = logging.getLogger("uvicorn")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    from blob_cleaner.db.session import AsyncSessionLocal
    from blob_cleaner.scheduler.service import CleanupScheduler
    from blob_cleaner.services.deleter import BlobDeleter
    from blob_cleaner.services.storage import build_blob_store

    store = build_blob_store(settings)
    deleter = BlobDeleter(store, session_factory=AsyncSessionLocal)
    scheduler = CleanupScheduler(deleter, session_factory=AsyncSessionLocal)
    app.state.scheduler = scheduler

    if settings.SCHEDULER_ENABLED:
        await scheduler.start()
    else:
        logger.info("Cleanup scheduler disabled; passes run only via /api/v1/admin/cleanup.")

    yield

    # Shutdown
    await scheduler.stop()
    await store.close()

app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan
)

app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
app.include_router(metrics_router, tags=["metrics"])

@app.get("/health")
async def health():
    return {"status": "ok"}
