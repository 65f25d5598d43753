import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from blob_cleaner.db.session import AsyncSessionLocal
from blob_cleaner.domain.models import CleanupReport
from blob_cleaner.scheduler.ticker import run_cleanup_pass, refresh_stuck_gauges
from blob_cleaner.services.deleter import BlobDeleter
from blob_cleaner.settings import settings

logger = logging.getLogger(__name__)

class CleanupScheduler:
    """
    Runs cleanup passes on a fixed interval.

    Several instances may run at once; the conditional update in the ledger
    keeps them from double-marking, so no leader election is needed.
    """

    def __init__(
        self,
        deleter: BlobDeleter,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        interval: Optional[float] = None,
        batch_size: Optional[int] = None,
        dry_run: Optional[bool] = None
    ):
        self.deleter = deleter
        self.session_factory = session_factory
        self.interval = interval if interval is not None else settings.CLEANUP_INTERVAL_SECONDS
        self.batch_size = batch_size or settings.CLEANUP_BATCH_SIZE
        self.dry_run = dry_run if dry_run is not None else settings.CLEANUP_DRY_RUN
        self._running = False
        self._task = None
        self._stop_event = asyncio.Event()
        self.passes = 0

    async def start(self):
        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())
        logger.info("Cleanup scheduler started.")

    async def stop(self, grace: Optional[float] = None):
        """
        Ends the loop between passes. A pass already running gets `grace`
        seconds to finish before it is cancelled.
        """
        self._running = False
        self._stop_event.set()
        if self._task:
            grace = grace if grace is not None else settings.SCHEDULER_STOP_GRACE_SECONDS
            try:
                await asyncio.wait_for(self._task, timeout=grace)
            except asyncio.TimeoutError:
                logger.warning(f"Cleanup pass still running after {grace}s, cancelled.")
            except asyncio.CancelledError:
                pass
        logger.info("Cleanup scheduler stopped.")

    async def run_once(self, dry_run: Optional[bool] = None) -> CleanupReport:
        report = await run_cleanup_pass(
            self.deleter,
            session_factory=self.session_factory,
            batch_size=self.batch_size,
            dry_run=self.dry_run if dry_run is None else dry_run,
        )
        async with self.session_factory() as session:
            await refresh_stuck_gauges(session)
        return report

    async def run(self, max_passes: Optional[int] = None):
        """
        `max_passes`:
        To run until stopped, pass None.
        To run a fixed number of passes, pass N.
        """
        self._running = True
        completed = 0
        while self._running and (max_passes is None or completed < max_passes):
            try:
                await self.run_once()
            except Exception as e:
                # Database hiccups end this pass only; the next tick retries
                logger.error(f"Error in cleanup pass: {e}", exc_info=True)
            completed += 1
            self.passes += 1

            if max_passes is not None and completed >= max_passes:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Cleanup scheduler finished after {completed} pass(es).")
