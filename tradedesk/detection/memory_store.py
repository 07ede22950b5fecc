"""In-memory detection store — bounded, used when SQLite is unavailable.

Entries older than ``max_age`` are evicted, terminal entries after a
shorter grace period, and the store never holds more than
``max_entries`` records (oldest ``created_at`` evicted first).
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from tradedesk.detection.store import summarize
from tradedesk.models.detection import (
    ACTIVE_STATUSES,
    Detection,
    DetectionFilters,
    SweepReport,
)

logger = logging.getLogger("tradedesk.detection")

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_MAX_AGE = timedelta(hours=24)
TERMINAL_GRACE = timedelta(hours=1)


class InMemoryDetectionStore:
    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_age: timedelta = DEFAULT_MAX_AGE,
        terminal_grace: timedelta = TERMINAL_GRACE,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self._max_entries = max_entries
        self._max_age = max_age
        self._terminal_grace = terminal_grace
        self._items: dict[str, Detection] = {}

    def create(self, detection: Detection) -> Detection:
        self._items[detection.id] = detection
        self._enforce_bound()
        return detection

    def get(self, detection_id: str) -> Optional[Detection]:
        return self._items.get(detection_id)

    def find_active(
        self, strategy_id: str, symbol: str, direction: str
    ) -> Optional[Detection]:
        for det in self._items.values():
            if (
                det.status in ACTIVE_STATUSES
                and det.strategy_id == strategy_id
                and det.symbol == symbol
                and det.direction == direction
            ):
                return det
        return None

    def list(self, filters: DetectionFilters) -> dict:
        matched = [d for d in self._items.values() if filters.matches(d)]
        matched.sort(key=lambda d: d.first_detected_at, reverse=True)
        page = matched[filters.offset:filters.offset + filters.limit]
        return {"detections": page, "total": len(matched)}

    def update(self, detection: Detection) -> None:
        if detection.id not in self._items:
            raise KeyError(f"Detection {detection.id} not found")
        self._items[detection.id] = detection

    def summary(self) -> dict:
        return summarize(self._items.values())

    def count(self) -> int:
        return len(self._items)

    def sweep(self, now: datetime) -> SweepReport:
        """Promote finished cool-downs and expire detections past their bar."""
        report = SweepReport()
        for det_id, det in list(self._items.items()):
            if det.is_terminal:
                continue
            if det.bar_expires_at is not None and det.bar_expires_at <= now:
                self._items[det_id] = det.with_status("expired", now, "Entry bar expired")
                report.expired += 1
                report.expired_ids.append(det_id)
            elif det.status == "cooling_down" and det.cooldown_ends_at <= now:
                self._items[det_id] = det.with_status("eligible", now)
                report.promoted += 1
                report.promoted_ids.append(det_id)
        return report

    def cleanup(self, now: datetime) -> int:
        removed = 0
        for det_id, det in list(self._items.items()):
            age = now - det.created_at
            if age > self._max_age or (det.is_terminal and age > self._terminal_grace):
                del self._items[det_id]
                removed += 1
        removed += self._enforce_bound()
        if removed:
            logger.info(
                "Cleaned %d detection(s) from memory store (remaining: %d)",
                removed, len(self._items),
            )
        return removed

    def clear(self) -> None:
        self._items.clear()

    def _enforce_bound(self) -> int:
        overflow = len(self._items) - self._max_entries
        if overflow <= 0:
            return 0
        oldest = sorted(self._items.values(), key=lambda d: d.created_at)[:overflow]
        for det in oldest:
            del self._items[det.id]
        return overflow
