"""Scan concurrency controller — one in-flight scan per strategy.

Different strategies may scan in parallel up to ``max_concurrent``.
Locks older than ``timeout_seconds`` are treated as abandoned and
swept before every acquire.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

logger = logging.getLogger("tradedesk.scan_lock")

MAX_CONCURRENT_SCANS = 3
SCAN_TIMEOUT_SECONDS = 300.0


class ScanLockError(Exception):
    """Base class for scan lock refusals."""


class ScanInProgressError(ScanLockError):
    def __init__(self, strategy_id: str) -> None:
        self.strategy_id = strategy_id
        super().__init__(f"Scan already in progress for {strategy_id}")


class TooManyScansError(ScanLockError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Maximum concurrent scans ({limit}) reached")


@dataclass
class _ActiveScan:
    started_at: datetime
    symbol_count: int
    progress: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScanLockController:
    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT_SCANS,
        timeout_seconds: float = SCAN_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._max_concurrent = max_concurrent
        self._timeout_seconds = timeout_seconds
        self._now = clock or _utc_now
        self._scans: dict[str, _ActiveScan] = {}

    def acquire(self, strategy_id: str, symbol_count: int, force: bool = False) -> None:
        """Take the lock for *strategy_id*.

        Raises:
            ScanInProgressError: The strategy is already scanning and
                *force* is not set.
            TooManyScansError: The concurrency ceiling is reached.
        """
        self.sweep_stale()
        if force and strategy_id in self._scans:
            logger.warning("Force-releasing scan lock for %s", strategy_id)
            self.release(strategy_id)
        if strategy_id in self._scans:
            logger.warning("Scan already in progress for %s", strategy_id)
            raise ScanInProgressError(strategy_id)
        if len(self._scans) >= self._max_concurrent:
            logger.warning("Maximum concurrent scans (%d) reached", self._max_concurrent)
            raise TooManyScansError(self._max_concurrent)

        self._scans[strategy_id] = _ActiveScan(
            started_at=self._now(), symbol_count=symbol_count
        )
        logger.info("Scan lock acquired for %s (%d symbols)", strategy_id, symbol_count)

    def release(self, strategy_id: str) -> None:
        scan = self._scans.pop(strategy_id, None)
        if scan is not None:
            elapsed = (self._now() - scan.started_at).total_seconds()
            logger.info("Scan lock released for %s (took %.0fs)", strategy_id, elapsed)

    @asynccontextmanager
    async def scan(
        self, strategy_id: str, symbol_count: int, force: bool = False
    ) -> AsyncIterator[None]:
        """Hold the lock for the duration of the ``async with`` block."""
        self.acquire(strategy_id, symbol_count, force=force)
        try:
            yield
        finally:
            self.release(strategy_id)

    def sweep_stale(self) -> int:
        now = self._now()
        stale = [
            sid for sid, scan in self._scans.items()
            if (now - scan.started_at).total_seconds() > self._timeout_seconds
        ]
        for sid in stale:
            logger.warning("Releasing stale scan lock for %s", sid)
            del self._scans[sid]
        return len(stale)

    def update_progress(self, strategy_id: str, completed: int) -> None:
        scan = self._scans.get(strategy_id)
        if scan is not None:
            scan.progress = completed

    def is_scan_in_progress(self, strategy_id: str) -> bool:
        return strategy_id in self._scans

    def active_scans(self) -> list[dict]:
        now = self._now()
        return [
            {
                "strategy_id": sid,
                "started_at": scan.started_at.isoformat(),
                "symbol_count": scan.symbol_count,
                "progress": scan.progress,
                "elapsed_seconds": round((now - scan.started_at).total_seconds(), 1),
            }
            for sid, scan in self._scans.items()
        ]

    def status(self) -> dict:
        return {
            "active": len(self._scans),
            "max_concurrent": self._max_concurrent,
            "available": max(0, self._max_concurrent - len(self._scans)),
            "scans": self.active_scans(),
        }
