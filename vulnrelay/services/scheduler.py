"""Background scheduler service for result cache maintenance."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from vulnrelay.services.result_cache import ResultCache

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL = 10 * 60.0


class SchedulerService:
    """Runs periodic housekeeping jobs next to the collection engine.

    The only job today is the result cache sweep, which deletes expired
    entries so memory does not grow with images that left the environment.
    """

    def __init__(
        self, cache: ResultCache, cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL
    ) -> None:
        """Initialize the scheduler service.

        Args:
            cache: Result cache to sweep
            cleanup_interval: Seconds between sweeps
        """
        if cleanup_interval <= 0:
            raise ValueError(f"cleanup_interval must be positive, got {cleanup_interval}")

        self.cache = cache
        self.cleanup_interval = cleanup_interval
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._last_cleanup: Optional[datetime] = None
        self._last_removed = 0

    async def start(self) -> None:
        """Start the background scheduler."""
        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self._run_cache_cleanup,
            IntervalTrigger(seconds=self.cleanup_interval),
            id="cache_cleanup",
            name="Result Cache Cleanup",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
        )

        self.scheduler.start()
        logger.info(
            f"Background scheduler started, cache cleanup every {self.cleanup_interval:.0f}s"
        )

    async def stop(self) -> None:
        """Stop the background scheduler."""
        if self.scheduler:
            try:
                self.scheduler.shutdown(wait=False)
                # Give event loop a chance to process shutdown
                await asyncio.sleep(0)
                logger.info("Background scheduler stopped")
            except RuntimeError as e:
                logger.error(f"Scheduler shutdown error: {e}")
            self.scheduler = None

    async def _run_cache_cleanup(self) -> int:
        removed = self.cache.cleanup()
        self._last_cleanup = datetime.now(timezone.utc)
        self._last_removed = removed
        if removed:
            logger.info(f"Cache cleanup removed {removed} expired entries")
        return removed

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status for diagnostics."""
        next_run = None
        if self.scheduler:
            job = self.scheduler.get_job("cache_cleanup")
            if job and job.next_run_time:
                next_run = job.next_run_time.isoformat()

        stats = self.cache.stats()
        return {
            "running": bool(self.scheduler and self.scheduler.running),
            "cleanup_interval": self.cleanup_interval,
            "next_cleanup": next_run,
            "last_cleanup": self._last_cleanup.isoformat() if self._last_cleanup else None,
            "last_removed": self._last_removed,
            "cache_entries": stats.total,
            "cache_expired": stats.expired,
        }
