"""Mapping refresh scheduler using APScheduler.

Runs MappingStore.refresh() on a fixed interval, independently of query
handling.

Usage:
    scheduler = MappingRefreshScheduler(store, http_client)
    scheduler.start()

    # On shutdown:
    scheduler.stop()
"""

from datetime import UTC, datetime, timedelta

import httpx
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from seadexerr.config import settings
from seadexerr.mapping.store import MappingStore

logger = structlog.get_logger(__name__)

JOB_ID = "mapping_refresh"


class MappingRefreshScheduler:
    """Periodically refreshes the mapping store.

    Overlapping runs are prevented (max_instances=1) and missed runs are
    coalesced, so a slow download never stacks refreshes.
    """

    def __init__(
        self,
        store: MappingStore,
        client: httpx.AsyncClient | None = None,
        interval_seconds: int | None = None,
    ):
        """Initialize the refresh scheduler.

        Args:
            store: Mapping store to refresh
            client: Shared HTTP client for downloads (optional)
            interval_seconds: Seconds between refreshes. Uses
                settings.mapping_refresh_interval if None.
        """
        self._store = store
        self._client = client
        self._interval_seconds = interval_seconds or settings.mapping_refresh_interval
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self, run_immediately: bool = False) -> None:
        """Start the refresh schedule.

        Must be called from within a running event loop.

        Args:
            run_immediately: Schedule the first refresh right away instead of
                after one interval.
        """
        if self._is_running:
            logger.warning("mapping_scheduler_already_running")
            return

        self._scheduler = AsyncIOScheduler()

        first_run = datetime.now(UTC)
        if not run_immediately:
            first_run += timedelta(seconds=self._interval_seconds)

        self._scheduler.add_job(
            self.run_now,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id=JOB_ID,
            name="Mapping Refresh",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=first_run,
        )

        self._scheduler.start()
        self._is_running = True

        logger.info(
            "mapping_scheduler_started",
            interval_seconds=self._interval_seconds,
            next_run=first_run.isoformat(),
        )

    def stop(self) -> None:
        """Stop the scheduler without waiting for a running refresh."""
        if self._scheduler and self._is_running:
            self._scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("mapping_scheduler_stopped")

    async def run_now(self) -> bool:
        """Run a refresh immediately.

        Returns:
            True if the mapping table was replaced
        """
        try:
            return await self._store.refresh(self._client)
        except Exception as e:
            # Keep the job alive whatever happens inside one run
            logger.exception("mapping_scheduled_refresh_crashed", error=str(e))
            return False
