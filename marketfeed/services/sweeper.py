"""
Periodic removal of expired cache entries.

Expiry is lazy, so correctness never depends on this job; it only keeps
long-dead keys from piling up in memory.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from marketfeed.services.cache import TieredCache


class CacheSweeper:
    """Runs ``TieredCache.cleanup_expired`` on an interval."""

    JOB_ID = "cache_sweep"

    def __init__(
        self,
        cache: TieredCache,
        interval_seconds: int = 300,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler or AsyncIOScheduler()
        self._is_running = False

    async def sweep(self) -> int:
        try:
            removed = await self.cache.cleanup_expired()
        except Exception as e:
            logger.error(f"Cache sweep failed: {e}")
            return 0
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")
        return removed

    def start(self) -> None:
        """Start sweeping. Must be called with a running event loop."""
        if self._is_running:
            return

        self.scheduler.add_job(
            self.sweep,
            IntervalTrigger(seconds=self.interval_seconds),
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(f"Cache sweeper started (every {self.interval_seconds}s)")

    def stop(self) -> None:
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Cache sweeper stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running
