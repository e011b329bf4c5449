"""
Cache maintenance scheduler.
APScheduler jobs that purge expired cache entries and refresh the catalog.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from medsearch.search.service import MedicationSearchService
from medsearch.utils import logged_job


class CacheMaintenanceScheduler:
    """Periodic cache cleanup and catalog refresh."""

    def __init__(
        self,
        service: MedicationSearchService,
        cleanup_interval_minutes: float = 60,
        catalog_refresh_hours: float = 6,
    ):
        self.service = service
        self.cleanup_interval_minutes = cleanup_interval_minutes
        self.catalog_refresh_hours = catalog_refresh_hours
        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    @logged_job
    async def cleanup_job(self) -> dict[str, int]:
        """Purge expired entries from both cache tiers."""
        return await self.service.cache.cleanup_expired()

    @logged_job
    async def refresh_job(self) -> int:
        """Force a catalog refetch."""
        catalog = await self.service.refresh_catalog(force=True)
        return len(catalog)

    def start(self) -> None:
        """Start the scheduler (needs a running event loop)."""
        if self._is_running:
            logger.warning("Cache maintenance scheduler is already running")
            return

        self.scheduler.add_job(
            self.cleanup_job,
            trigger="interval",
            minutes=self.cleanup_interval_minutes,
            id="cache_cleanup_job",
            name="Cache Cleanup",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.refresh_job,
            trigger="interval",
            hours=self.catalog_refresh_hours,
            id="catalog_refresh_job",
            name="Catalog Refresh",
            replace_existing=True,
        )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            f"Cache maintenance scheduler started: cleanup every "
            f"{self.cleanup_interval_minutes} minutes, catalog refresh every "
            f"{self.catalog_refresh_hours} hours"
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self._is_running:
            logger.warning("Cache maintenance scheduler is not running")
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Cache maintenance scheduler stopped")

    def is_running(self) -> bool:
        return self._is_running

    async def run_cleanup_now(self) -> dict[str, int] | None:
        """Run a cleanup immediately (manual trigger)."""
        logger.info("Manual cache cleanup triggered")
        return await self.cleanup_job()
