"""LifecycleSweeper — periodic maintenance as an asyncio task.

Each pass promotes and expires detections, evicts expired cooldowns,
drops expired cache entries and releases abandoned scan locks.  Tests
drive a single pass with :meth:`LifecycleSweeper.sweep_once`.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from tradedesk.cache import DecisionCache
from tradedesk.detection.service import DetectionService
from tradedesk.risk.cooldown import CooldownTracker
from tradedesk.scan_lock import ScanLockController

logger = logging.getLogger("tradedesk.sweeper")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleSweeper:
    """Runs maintenance every *interval_seconds* until stopped.

    Args:
        detections: Detection lifecycle service.
        cooldowns: Cooldown tracker.
        cache: Decision cache.
        scan_lock: Scan lock controller.
        interval_seconds: Delay between passes.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        detections: DetectionService,
        cooldowns: CooldownTracker,
        cache: DecisionCache,
        scan_lock: ScanLockController,
        interval_seconds: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._detections = detections
        self._cooldowns = cooldowns
        self._cache = cache
        self._scan_lock = scan_lock
        self._interval = interval_seconds
        self._now = clock or _utc_now
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._pass_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pass_count(self) -> int:
        return self._pass_count

    def sweep_once(self, now: Optional[datetime] = None) -> dict:
        """Run one maintenance pass and return what it did."""
        now = now or self._now()
        report = self._detections.sweep(now)
        cooldowns_evicted = self._cooldowns.sweep(now)
        cache_evicted = self._cache.cleanup()
        stale_locks = self._scan_lock.sweep_stale()
        self._pass_count += 1

        summary = {
            "detections_promoted": report.promoted,
            "detections_expired": report.expired,
            "detections_evicted": report.evicted,
            "cooldowns_evicted": cooldowns_evicted,
            "cache_evicted": cache_evicted,
            "stale_locks": stale_locks,
        }
        logger.debug("Sweep pass %d: %s", self._pass_count, summary)
        return summary

    async def run(self) -> None:
        """Loop until :meth:`stop` is called."""
        logger.info("Lifecycle sweeper started (every %.0fs).", self._interval)
        while not self._stop_event.is_set():
            try:
                self.sweep_once()
            except Exception as exc:
                logger.error("Sweep pass failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Lifecycle sweeper stopped.")

    def start(self) -> asyncio.Task:
        """Schedule :meth:`run` on the running loop."""
        if self.running:
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
