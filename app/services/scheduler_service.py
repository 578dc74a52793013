import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.services.cache_service import get_feed_cache
from app.services.epg_fetch_service import FeedBuildError, get_merged_feed
from app.services.fetch_types import OutputFormat


logger = logging.getLogger(__name__)

class CacheScheduler:
    """Scheduler for cache maintenance jobs"""

    def __init__(self):
        self.scheduler: AsyncIOScheduler | None = None

    async def _purge_job(self) -> None:
        """Background job that drops expired cache entries"""
        logger.debug("Scheduled cache purge triggered")
        try:
            removed = get_feed_cache().purge_expired()
            logger.debug("Scheduled cache purge removed %s entries", removed)
        except Exception as e:
            logger.error(f"Exception in scheduled cache purge: {e}", exc_info=True)

    async def _warm_job(self) -> None:
        """One-off job that builds the default plain feed"""
        logger.info("Warming merged feed cache (ttl %ss)", settings.default_ttl_sec)
        try:
            await get_merged_feed(OutputFormat.PLAIN, settings.default_ttl_sec)
        except FeedBuildError as e:
            logger.error(f"Cache warm-up failed: {e}")

    def start(self) -> None:
        """Start the scheduler with the cache maintenance jobs"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        try:
            trigger = CronTrigger.from_crontab(settings.cache_purge_cron)
        except (ValueError, KeyError) as exc:
            logger.error("Invalid cron expression '%s': %s", settings.cache_purge_cron, exc)
            raise

        self.scheduler = AsyncIOScheduler(timezone='UTC')
        self.scheduler.add_job(
            self._purge_job,
            trigger=trigger,
            id='cache_purge',
            max_instances=1,
            coalesce=True,
        )
        if settings.cache_warm_on_start:
            self.scheduler.add_job(self._warm_job, id='cache_warm', max_instances=1)

        self.scheduler.start()
        next_time = self.get_next_run_time()
        logger.info(
            "Scheduler started. Next cache purge: %s",
            next_time.isoformat() if next_time else "unknown"
        )

    def shutdown(self) -> None:
        """Shutdown the scheduler"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
            self.scheduler = None

    def get_next_run_time(self) -> datetime | None:
        """Get next scheduled purge time"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job('cache_purge')
        return job.next_run_time if job else None


cache_scheduler = CacheScheduler()
