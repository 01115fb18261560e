"""
Open play enforcement scheduler: runs the capacity engine on a fixed period.

Background worker that, every poll interval, evaluates each facility with
scheduled open play sessions. Each facility gets its own deadline and its
own transaction; one facility failing does not stop the others. Ticks never
overlap: the loop is sequential and manual runs share the same lock.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from pickleclub.services.open_play_engine import OpenPlayEngine
from pickleclub.utils import constants
from pickleclub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class OpenPlayEnforcementScheduler:
    """Background service that periodically enforces open play capacity rules."""

    def __init__(
        self,
        engine: OpenPlayEngine,
        interval_seconds: float = constants.OPEN_PLAY_POLL_INTERVAL_SECONDS,
        evaluation_timeout_seconds: float = constants.OPEN_PLAY_EVALUATION_TIMEOUT_SECONDS,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if evaluation_timeout_seconds <= 0:
            raise ValueError("evaluation_timeout_seconds must be > 0")
        self._engine = engine
        self._interval_seconds = interval_seconds
        self._evaluation_timeout_seconds = evaluation_timeout_seconds
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def start(self) -> None:
        """Start the background enforcement worker."""
        if not self.is_running:
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info(
                f"Open play enforcement worker started (every {self._interval_seconds}s, "
                f"{self._evaluation_timeout_seconds}s per facility)"
            )

    def stop(self) -> None:
        """Stop the background enforcement worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Open play enforcement worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: run a tick, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in open play enforcement worker: {e}", exc_info=True)

            # Wait for poll interval or until stop is signalled
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
                # If wait_for returns normally, stop_event was set → exit
                break
            except asyncio.TimeoutError:
                # Timeout means interval elapsed, loop again
                pass

    async def run_once(self, comparison_time: Optional[datetime] = None) -> List[int]:
        """
        Evaluate every facility with scheduled open play sessions once.

        Waits for an in-progress tick to finish rather than overlapping it.

        Args:
            comparison_time: Reference time shared by all facilities; defaults to now

        Returns:
            Facility ids whose evaluation failed or timed out
        """
        async with self._run_lock:
            comparison_time = comparison_time or utcnow()
            facility_ids = await self._engine.list_facilities_to_evaluate(comparison_time)
            if not facility_ids:
                logger.debug("No facilities with scheduled open play sessions")
                return []

            failed: List[int] = []
            for facility_id in facility_ids:
                if not await self._evaluate_facility(facility_id, comparison_time):
                    failed.append(facility_id)
            return failed

    async def _evaluate_facility(self, facility_id: int, comparison_time: datetime) -> bool:
        try:
            await asyncio.wait_for(
                self._engine.evaluate_sessions_approaching_cutoff(facility_id, comparison_time),
                timeout=self._evaluation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Open play enforcement for facility {facility_id} exceeded "
                f"{self._evaluation_timeout_seconds}s deadline; transaction rolled back"
            )
            return False
        except Exception as e:
            logger.error(
                f"Open play enforcement run failed for facility {facility_id}: {e}",
                exc_info=True,
            )
            return False

        logger.debug(f"Open play enforcement run completed for facility {facility_id}")
        return True
