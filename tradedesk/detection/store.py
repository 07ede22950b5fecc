"""Detection store contract shared by the SQLite and in-memory backends."""

from datetime import datetime
from typing import Iterable, Optional, Protocol, runtime_checkable

from tradedesk.models.detection import (
    ALL_STATUSES,
    Detection,
    DetectionFilters,
    SweepReport,
)


@runtime_checkable
class DetectionStore(Protocol):
    """Persistence operations used by ``DetectionService``."""

    def create(self, detection: Detection) -> Detection: ...

    def get(self, detection_id: str) -> Optional[Detection]: ...

    def find_active(
        self, strategy_id: str, symbol: str, direction: str
    ) -> Optional[Detection]: ...

    def list(self, filters: DetectionFilters) -> dict: ...

    def update(self, detection: Detection) -> None: ...

    def summary(self) -> dict: ...

    def sweep(self, now: datetime) -> SweepReport: ...

    def cleanup(self, now: datetime) -> int: ...

    def count(self) -> int: ...


def summarize(detections: Iterable[Detection]) -> dict:
    """Aggregate counts by status and strategy."""
    by_status = {status: 0 for status in ALL_STATUSES}
    by_strategy: dict[str, int] = {}
    total = 0
    for det in detections:
        total += 1
        by_status[det.status] += 1
        by_strategy[det.strategy_id] = by_strategy.get(det.strategy_id, 0) + 1
    return {
        "total": total,
        "by_status": by_status,
        "by_strategy": by_strategy,
        "cooling_down": by_status["cooling_down"],
        "eligible": by_status["eligible"],
    }
