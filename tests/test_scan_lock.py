"""Tests for the scan concurrency controller."""

from datetime import datetime, timedelta, timezone

import pytest

from tradedesk.scan_lock import (
    ScanInProgressError,
    ScanLockController,
    ScanLockError,
    TooManyScansError,
)

T0 = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TestScanLock:
    def test_one_scan_per_strategy(self):
        lock = ScanLockController(clock=_Clock())
        lock.acquire("rsi-bounce", 5)
        with pytest.raises(ScanInProgressError, match="rsi-bounce"):
            lock.acquire("rsi-bounce", 5)
        lock.release("rsi-bounce")
        lock.acquire("rsi-bounce", 5)

    def test_concurrency_ceiling(self):
        lock = ScanLockController(max_concurrent=3, clock=_Clock())
        for sid in ("rsi-bounce", "cci-zero", "ema-pullback"):
            lock.acquire(sid, 1)
        with pytest.raises(TooManyScansError, match="3"):
            lock.acquire("bollinger-mr", 1)
        assert issubclass(TooManyScansError, ScanLockError)

    def test_force_takes_over(self):
        lock = ScanLockController(clock=_Clock())
        lock.acquire("rsi-bounce", 5)
        lock.acquire("rsi-bounce", 8, force=True)
        assert lock.active_scans()[0]["symbol_count"] == 8

    def test_stale_locks_swept_on_acquire(self):
        clock = _Clock()
        lock = ScanLockController(timeout_seconds=300, clock=clock)
        lock.acquire("rsi-bounce", 5)
        clock.advance(seconds=301)
        lock.acquire("rsi-bounce", 5)
        assert lock.is_scan_in_progress("rsi-bounce")

    def test_sweep_stale_counts(self):
        clock = _Clock()
        lock = ScanLockController(clock=clock)
        lock.acquire("rsi-bounce", 5)
        clock.advance(seconds=200)
        lock.acquire("cci-zero", 5)
        clock.advance(seconds=150)
        assert lock.sweep_stale() == 1
        assert not lock.is_scan_in_progress("rsi-bounce")
        assert lock.is_scan_in_progress("cci-zero")

    def test_status_and_progress(self):
        clock = _Clock()
        lock = ScanLockController(clock=clock)
        lock.acquire("rsi-bounce", 10)
        lock.update_progress("rsi-bounce", 4)
        clock.advance(seconds=12)
        status = lock.status()
        assert status["active"] == 1
        assert status["available"] == 2
        scan = status["scans"][0]
        assert scan["progress"] == 4
        assert scan["elapsed_seconds"] == 12.0

    def test_release_unknown_is_noop(self):
        ScanLockController().release("never-acquired")


class TestScanContextManager:
    @pytest.mark.asyncio
    async def test_releases_on_exit(self):
        lock = ScanLockController(clock=_Clock())
        async with lock.scan("rsi-bounce", 3):
            assert lock.is_scan_in_progress("rsi-bounce")
        assert not lock.is_scan_in_progress("rsi-bounce")

    @pytest.mark.asyncio
    async def test_releases_on_error(self):
        lock = ScanLockController(clock=_Clock())
        with pytest.raises(RuntimeError):
            async with lock.scan("rsi-bounce", 3):
                raise RuntimeError("provider exploded")
        assert lock.status()["active"] == 0

    @pytest.mark.asyncio
    async def test_refusal_does_not_release_holder(self):
        lock = ScanLockController(clock=_Clock())
        async with lock.scan("rsi-bounce", 3):
            with pytest.raises(ScanInProgressError):
                async with lock.scan("rsi-bounce", 3):
                    pass
            assert lock.is_scan_in_progress("rsi-bounce")
