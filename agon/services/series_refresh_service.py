"""
Series refresh service: keeps recurring series materialized ahead of time.

Background worker that wakes up every SERIES_REFRESH_INTERVAL_SECONDS and
runs materialization for every active series, so games keep appearing as
the look-ahead window moves forward.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from agon.database import db
from agon.services import recurrence_service
from agon.utils.constants import SERIES_REFRESH_INTERVAL_SECONDS
from agon.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class SeriesRefreshService:
    """Background service that extends active recurring series."""

    def __init__(
        self,
        poll_interval_seconds: int = SERIES_REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._poll_interval_seconds = poll_interval_seconds
        self._clock = clock
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def start(self) -> None:
        """Start the background refresh worker."""
        if not self.is_running:
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Series refresh worker started")

    def stop(self) -> None:
        """Stop the background refresh worker."""
        self._stop_event.set()
        if self.is_running:
            self._worker_task.cancel()
            logger.info("Series refresh worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: refresh, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.refresh_all()
            except Exception as e:
                logger.error(f"Error in series refresh worker: {e}", exc_info=True)

            # Wait for poll interval or until stop is signalled
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._poll_interval_seconds
                )
                # If wait_for returns normally, stop_event was set → exit
                break
            except asyncio.TimeoutError:
                # Timeout means interval elapsed, loop again
                pass

    async def refresh_all(self) -> Dict[str, int]:
        """
        Materialize every active series once.

        Returns:
            Dict of series_id -> number of games built
        """
        async with db.AsyncSessionLocal() as session:
            results = await recurrence_service.materialize_active_series(
                session, clock=self._clock
            )

        built = sum(results.values())
        if built:
            logger.info(f"Series refresh built {built} game(s) across {len(results)} series")
        return results


# Global singleton
_refresh_service = SeriesRefreshService()


def get_series_refresh_service() -> SeriesRefreshService:
    """Get the global series refresh service instance."""
    return _refresh_service
