"""Detection service — promotes strong Decisions into tracked detections.

A Decision is promoted when it is actionable and graded at least
``min_grade``.  Repeat sightings of the same strategy/symbol/direction
refresh the existing active detection instead of creating a new one; a
sighting in the opposite direction invalidates the old one.

A new detection stays actionable for one entry window after its
cool-down ends.  If the SQLite store fails on any call the service logs
a warning and carries on with an in-memory store (degraded mode).
"""

import logging
import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, TypeVar

from tradedesk.detection.memory_store import DEFAULT_MAX_ENTRIES, InMemoryDetectionStore
from tradedesk.detection.store import DetectionStore
from tradedesk.models.decision import Decision, grade_rank
from tradedesk.models.detection import (
    Detection,
    DetectionFilters,
    SweepReport,
    new_detection_id,
)

logger = logging.getLogger("tradedesk.detection")

DEFAULT_COOLDOWN_MINUTES = 60
DEFAULT_MIN_GRADE = "B"

_T = TypeVar("_T")


class DetectionNotFoundError(KeyError):
    """Raised when a detection id is unknown."""

    def __init__(self, detection_id: str) -> None:
        self.detection_id = detection_id
        super().__init__(f"Detection {detection_id} not found")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DetectionService:
    """Lifecycle operations over a ``DetectionStore``.

    Args:
        store: SQLite or in-memory backend.
        cooldown_minutes: Time a new detection spends in ``cooling_down``.
        min_grade: Lowest grade that gets promoted.
        memory_max_entries: Bound for the fallback store in degraded mode.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: DetectionStore,
        cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES,
        min_grade: str = DEFAULT_MIN_GRADE,
        memory_max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._cooldown = timedelta(minutes=cooldown_minutes)
        self._min_rank = grade_rank(min_grade)
        self._memory_max_entries = memory_max_entries
        self._degraded = isinstance(store, InMemoryDetectionStore)
        self._now = clock or _utc_now

    @property
    def store(self) -> DetectionStore:
        return self._store

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _enter_degraded(self, operation: str, exc: Exception) -> None:
        logger.warning(
            "Detection storage %s failed (%s), continuing in memory only",
            operation, exc,
        )
        self._store = InMemoryDetectionStore(max_entries=self._memory_max_entries)
        self._degraded = True

    def _call(self, operation: str, fn: Callable[[DetectionStore], _T]) -> _T:
        """Run *fn* against the store, falling back to memory on SQLite errors."""
        try:
            return fn(self._store)
        except sqlite3.Error as exc:
            if self._degraded:
                raise
            self._enter_degraded(operation, exc)
            return fn(self._store)

    def should_promote(self, decision: Decision) -> bool:
        return (
            decision.is_actionable
            and decision.entry_price is not None
            and decision.stop_loss is not None
            and decision.take_profit is not None
            and grade_rank(decision.grade) >= self._min_rank
        )

    def _bar_expiry(self, decision: Decision, cooldown_ends_at: datetime) -> Optional[datetime]:
        """End of the entry window, counted from the end of the cool-down."""
        if decision.validity is None:
            return None
        window = decision.validity.expires_at - decision.timestamp
        return max(decision.validity.expires_at, cooldown_ends_at + window)

    def process_decision(self, decision: Decision) -> Optional[Detection]:
        """Create or refresh a detection for *decision*.

        Returns the stored detection, or ``None`` when the Decision does not
        qualify for promotion.
        """
        if not self.should_promote(decision):
            return None
        return self._call("promote", lambda store: self._promote(store, decision))

    def _promote(self, store: DetectionStore, decision: Decision) -> Detection:
        now = self._now()
        existing = store.find_active(
            decision.strategy_id, decision.symbol, decision.direction
        )
        if existing is not None:
            better = grade_rank(decision.grade) > grade_rank(existing.grade)
            refreshed = replace(
                existing,
                last_detected_at=now,
                detection_count=existing.detection_count + 1,
                grade=decision.grade if better else existing.grade,
                confidence=max(existing.confidence, decision.confidence),
            )
            store.update(refreshed)
            if better:
                logger.info(
                    "Detection %s upgraded %s -> %s",
                    existing.id, existing.grade, decision.grade,
                )
            return refreshed

        opposite = "short" if decision.direction == "long" else "long"
        stale = store.find_active(decision.strategy_id, decision.symbol, opposite)
        if stale is not None:
            store.update(stale.with_status("invalidated", now, "direction flip"))
            logger.info("Detection %s invalidated by direction flip", stale.id)

        cooldown_ends_at = now + self._cooldown
        detection = Detection(
            id=new_detection_id(),
            symbol=decision.symbol,
            strategy_id=decision.strategy_id,
            strategy_name=decision.strategy_name,
            style=decision.style,
            direction=decision.direction,
            grade=decision.grade,
            confidence=decision.confidence,
            entry_price=decision.entry_price,
            stop_loss=decision.stop_loss,
            take_profit=decision.take_profit,
            status="cooling_down",
            first_detected_at=now,
            last_detected_at=now,
            cooldown_ends_at=cooldown_ends_at,
            created_at=now,
            bar_expires_at=self._bar_expiry(decision, cooldown_ends_at),
            triggers=decision.reasons,
            reason_codes=decision.reason_codes,
            tiered_exits=decision.tiered_exits,
        )
        store.create(detection)
        logger.info(
            "New detection %s: %s %s %s (%s)",
            detection.id, detection.strategy_id, detection.symbol,
            detection.direction, detection.grade,
        )
        return detection

    # ── Status transitions ───────────────────────────────────────────────

    def _transition(
        self, detection_id: str, status: str, reason: Optional[str]
    ) -> Detection:
        current = self.get(detection_id)
        updated = current.with_status(status, self._now(), reason)
        self._call("update", lambda store: store.update(updated))
        logger.info("Detection %s: %s -> %s", detection_id, current.status, status)
        return updated

    def execute(self, detection_id: str, reason: Optional[str] = None) -> Detection:
        return self._transition(detection_id, "executed", reason)

    def dismiss(self, detection_id: str, reason: Optional[str] = None) -> Detection:
        return self._transition(detection_id, "dismissed", reason)

    def invalidate(self, detection_id: str, reason: str) -> Detection:
        return self._transition(detection_id, "invalidated", reason)

    # ── Queries ──────────────────────────────────────────────────────────

    def get(self, detection_id: str) -> Detection:
        """Raises ``DetectionNotFoundError`` for an unknown id."""
        detection = self._call("read", lambda store: store.get(detection_id))
        if detection is None:
            raise DetectionNotFoundError(detection_id)
        return detection

    def find_active(
        self, strategy_id: str, symbol: str, direction: str
    ) -> Optional[Detection]:
        return self._call(
            "read", lambda store: store.find_active(strategy_id, symbol, direction)
        )

    def list(self, filters: Optional[DetectionFilters] = None) -> dict:
        return self._call("read", lambda store: store.list(filters or DetectionFilters()))

    def summary(self) -> dict:
        summary = self._call("read", lambda store: store.summary())
        summary["degraded"] = self._degraded
        return summary

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Expire, promote and clean up in one pass."""
        now = now or self._now()
        report = self._call("sweep", lambda store: store.sweep(now))
        report.evicted = self._call("cleanup", lambda store: store.cleanup(now))
        if report.promoted or report.expired:
            logger.info(
                "Detection sweep: %d promoted, %d expired",
                report.promoted, report.expired,
            )
        return report
