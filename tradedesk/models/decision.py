"""Decision model — the immutable output of one evaluation cycle.

A Decision is never mutated; gates produce a superseding copy via
``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Literal, Optional

Direction = Literal["long", "short", "none"]
Grade = Literal["A+", "A", "B+", "B", "C", "no-trade"]
TrendAlignment = Literal["aligned", "counter", "neutral", "unknown"]
VolatilityLevel = Literal["low", "normal", "high", "extreme"]

# Total order used for cooldown upgrades and detection promotion.
GRADE_RANK: dict[str, int] = {
    "no-trade": 0,
    "C": 1,
    "B": 2,
    "B+": 3,
    "A": 4,
    "A+": 5,
}

_GRADE_THRESHOLDS: list[tuple[int, Grade]] = [
    (90, "A+"),
    (80, "A"),
    (70, "B+"),
    (60, "B"),
    (50, "C"),
]


def grade_for_confidence(confidence: float) -> Grade:
    """Map a 0–100 confidence score onto a discrete grade."""
    for threshold, grade in _GRADE_THRESHOLDS:
        if confidence >= threshold:
            return grade
    return "no-trade"


def grade_rank(grade: str) -> int:
    """Rank of *grade*; unknown grades rank with ``no-trade``."""
    return GRADE_RANK.get(grade, 0)


# ── Value objects ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PositionSizeResult:
    """Output of the position sizer for one candidate trade."""

    lots: float
    units: float
    risk_amount: float
    stop_distance: float
    stop_pips: float
    margin_required: float
    margin_limited: bool
    max_lot_limited: bool
    is_valid: bool
    spread_cost: float = 0.0
    commission_cost: float = 0.0
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class GatingOutcome:
    """What the post-sizing gates said about a Decision."""

    cooldown_blocked: bool = False
    cooldown_reason: Optional[str] = None
    volatility_blocked: bool = False
    volatility_level: VolatilityLevel = "normal"
    volatility_reason: Optional[str] = None
    trend_alignment: TrendAlignment = "unknown"


@dataclass(frozen=True)
class TieredExit:
    """One leg of the staged take-profit plan."""

    label: str
    price: float
    r_multiple: float
    close_percent: int
    action: str


@dataclass(frozen=True)
class ValidityWindow:
    optimal_until: datetime
    expires_at: datetime


# ── Decision ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Decision:
    """Result of evaluating one strategy against one symbol."""

    symbol: str
    strategy_id: str
    strategy_name: str
    style: str
    direction: Direction
    confidence: int
    grade: Grade
    timestamp: datetime
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    position: Optional[PositionSizeResult] = None
    reasons: tuple[str, ...] = ()
    reason_codes: tuple[str, ...] = ()
    gating: GatingOutcome = field(default_factory=GatingOutcome)
    validity: Optional[ValidityWindow] = None
    tiered_exits: tuple[TieredExit, ...] = ()
    error: Optional[str] = None

    @property
    def is_actionable(self) -> bool:
        return self.direction != "none"

    @property
    def risk_reward(self) -> Optional[float]:
        if self.entry_price is None or self.stop_loss is None or self.take_profit is None:
            return None
        risk = abs(self.entry_price - self.stop_loss)
        if risk == 0:
            return None
        return abs(self.take_profit - self.entry_price) / risk

    def suppressed(self, reason: str, **gating_changes) -> "Decision":
        """Return a superseding no-trade copy that keeps the original levels.

        The levels stay for display; a ``none`` direction is never traded.
        """
        return replace(
            self,
            direction="none",
            grade="no-trade",
            reasons=self.reasons + (reason,),
            gating=replace(self.gating, **gating_changes),
        )

    def to_dict(self) -> dict:
        """JSON-ready representation (datetimes as ISO-8601 strings)."""
        return _jsonable(asdict(self))


def no_trade(
    symbol: str,
    strategy_id: str,
    strategy_name: str,
    style: str,
    timestamp: datetime,
    reason: str,
    error: Optional[str] = None,
) -> Decision:
    """Build a no-trade Decision for a symbol that produced no signal."""
    return Decision(
        symbol=symbol,
        strategy_id=strategy_id,
        strategy_name=strategy_name,
        style=style,
        direction="none",
        confidence=0,
        grade="no-trade",
        timestamp=timestamp,
        reasons=(reason,),
        error=error,
    )


def is_valid_order(
    direction: str,
    entry: float,
    stop_loss: float,
    take_profit: float,
) -> bool:
    """Check that stop and target sit on the correct sides of entry.

    Long: ``stop < entry < target``.  Short: ``target < entry < stop``.
    """
    if direction == "long":
        return stop_loss < entry < take_profit
    if direction == "short":
        return take_profit < entry < stop_loss
    return False


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
