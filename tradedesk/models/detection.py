"""Detection model — a promoted Decision tracked through its lifecycle.

Lifecycle::

    cooling_down ──▶ eligible ──▶ executed | dismissed | expired | invalidated

Transitions are one-directional; terminal states are final.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Literal, Optional, Sequence

from tradedesk.models.decision import TieredExit

DetectionStatus = Literal[
    "cooling_down", "eligible", "executed", "dismissed", "expired", "invalidated"
]

ACTIVE_STATUSES: frozenset[str] = frozenset({"cooling_down", "eligible"})
TERMINAL_STATUSES: frozenset[str] = frozenset(
    {"executed", "dismissed", "expired", "invalidated"}
)
ALL_STATUSES: tuple[str, ...] = (
    "cooling_down", "eligible", "executed", "dismissed", "expired", "invalidated",
)

# Allowed (from, to) pairs.
_TRANSITIONS: dict[str, frozenset[str]] = {
    "cooling_down": frozenset(
        {"eligible", "executed", "dismissed", "expired", "invalidated"}
    ),
    "eligible": frozenset({"executed", "dismissed", "expired", "invalidated"}),
}


class InvalidTransitionError(ValueError):
    """Raised when a status change would violate the lifecycle."""

    def __init__(self, detection_id: str, current: str, target: str) -> None:
        self.detection_id = detection_id
        self.current = current
        self.target = target
        super().__init__(
            f"Detection {detection_id} cannot move from '{current}' to '{target}'"
        )


def can_transition(current: str, target: str) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def new_detection_id() -> str:
    return f"det_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class Detection:
    """A persisted, lifecycle-tracked signal."""

    id: str
    symbol: str
    strategy_id: str
    strategy_name: str
    style: str
    direction: str
    grade: str
    confidence: int
    entry_price: float
    stop_loss: float
    take_profit: float
    status: DetectionStatus
    first_detected_at: datetime
    last_detected_at: datetime
    cooldown_ends_at: datetime
    created_at: datetime
    detection_count: int = 1
    bar_expires_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None
    status_reason: Optional[str] = None
    triggers: tuple[str, ...] = ()
    reason_codes: tuple[str, ...] = ()
    tiered_exits: tuple[TieredExit, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def with_status(
        self,
        status: str,
        now: datetime,
        reason: Optional[str] = None,
    ) -> "Detection":
        """Return a copy moved to *status*.

        Raises ``InvalidTransitionError`` for illegal moves.
        """
        if not can_transition(self.status, status):
            raise InvalidTransitionError(self.id, self.status, status)
        return replace(
            self, status=status, status_changed_at=now, status_reason=reason
        )

    def to_dict(self) -> dict:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value is not None else None

        return {
            "id": self.id,
            "symbol": self.symbol,
            "strategy_id": self.strategy_id,
            "strategy_name": self.strategy_name,
            "style": self.style,
            "direction": self.direction,
            "grade": self.grade,
            "confidence": self.confidence,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "status": self.status,
            "first_detected_at": _iso(self.first_detected_at),
            "last_detected_at": _iso(self.last_detected_at),
            "detection_count": self.detection_count,
            "cooldown_ends_at": _iso(self.cooldown_ends_at),
            "bar_expires_at": _iso(self.bar_expires_at),
            "status_changed_at": _iso(self.status_changed_at),
            "status_reason": self.status_reason,
            "created_at": _iso(self.created_at),
            "triggers": list(self.triggers),
            "reason_codes": list(self.reason_codes),
            "tiered_exits": [
                {
                    "label": t.label,
                    "price": t.price,
                    "r_multiple": t.r_multiple,
                    "close_percent": t.close_percent,
                    "action": t.action,
                }
                for t in self.tiered_exits
            ],
        }


@dataclass(frozen=True)
class DetectionFilters:
    """Query filters for listing detections."""

    status: Optional[Sequence[str]] = None
    strategy_id: Optional[str] = None
    symbol: Optional[str] = None
    grade: Optional[str] = None
    limit: int = 100
    offset: int = 0

    def matches(self, detection: Detection) -> bool:
        if self.status is not None and detection.status not in self.status:
            return False
        if self.strategy_id is not None and detection.strategy_id != self.strategy_id:
            return False
        if self.symbol is not None and detection.symbol != self.symbol:
            return False
        if self.grade is not None and detection.grade != self.grade:
            return False
        return True


@dataclass
class SweepReport:
    """Counts from one lifecycle sweep."""

    promoted: int = 0
    expired: int = 0
    evicted: int = 0
    promoted_ids: list[str] = field(default_factory=list)
    expired_ids: list[str] = field(default_factory=list)
