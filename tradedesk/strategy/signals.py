"""Shared signal helpers — candle shape, stop placement, Decision assembly.

Pure functions, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from tradedesk.models.decision import (
    Decision,
    GatingOutcome,
    TieredExit,
    ValidityWindow,
    grade_for_confidence,
    is_valid_order,
)
from tradedesk.models.market import Bar, IndicatorData
from tradedesk.strategy.base import StrategyMeta

MIN_CONFIDENCE = 50

# entry interval → (optimal minutes, expiry minutes)
_TIMING_WINDOWS: dict[str, tuple[int, int]] = {
    "H1": (30, 60),
    "H4": (120, 240),
    "D1": (360, 720),
}


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalized_slope(values: list, end_idx: int, lookback: int) -> float:
    """Per-bar fractional change of *values* over *lookback* bars to *end_idx*.

    Returns 0 when either end is missing or the start is zero.
    """
    start_idx = end_idx - lookback
    if start_idx < 0 or end_idx >= len(values):
        return 0.0
    start, end = values[start_idx], values[end_idx]
    if start is None or end is None or start == 0:
        return 0.0
    return (end - start) / start / lookback


@dataclass(frozen=True)
class CandleShape:
    ok: bool
    wick_ratio: float
    body_ratio: float


def rejection_candle(
    bar: Bar,
    direction: str,
    min_wick_ratio: float = 0.5,
    max_body_ratio: float = 0.5,
) -> CandleShape:
    """Detect a pin-bar style rejection in *direction*.

    Long: long lower wick, small body, bullish close.  Short mirrors it.
    """
    candle_range = bar.high - bar.low
    if candle_range <= 0:
        return CandleShape(ok=False, wick_ratio=0.0, body_ratio=0.0)

    body_ratio = abs(bar.close - bar.open) / candle_range
    if direction == "long":
        wick_ratio = (min(bar.open, bar.close) - bar.low) / candle_range
        closes_with = bar.close > bar.open
    else:
        wick_ratio = (bar.high - max(bar.open, bar.close)) / candle_range
        closes_with = bar.close < bar.open

    ok = wick_ratio >= min_wick_ratio and body_ratio <= max_body_ratio and closes_with
    return CandleShape(ok=ok, wick_ratio=wick_ratio, body_ratio=body_ratio)


# ── Stops and targets ────────────────────────────────────────────────────


def swing_stop(
    bars: list[Bar],
    signal_idx: int,
    direction: str,
    atr: float,
    lookback: int = 5,
    buffer_atr: float = 0.2,
) -> float:
    """Stop just beyond the recent swing extreme up to the signal bar."""
    window = bars[max(0, signal_idx - lookback + 1) : signal_idx + 1]
    if direction == "long":
        return min(b.low for b in window) - atr * buffer_atr
    return max(b.high for b in window) + atr * buffer_atr


def atr_stop(entry: float, direction: str, atr: float, multiple: float = 1.5) -> float:
    if direction == "long":
        return entry - atr * multiple
    return entry + atr * multiple


def tighter_stop(direction: str, entry: float, structural: float, atr_based: float) -> float:
    """Pick whichever valid stop sits closer to *entry*.

    A structural stop on the wrong side of entry is ignored.
    """
    if direction == "long":
        candidates = [s for s in (structural, atr_based) if s < entry]
        return max(candidates) if candidates else atr_based
    candidates = [s for s in (structural, atr_based) if s > entry]
    return min(candidates) if candidates else atr_based


def target_from_risk(entry: float, stop: float, direction: str, r_multiple: float) -> float:
    risk = abs(entry - stop)
    if direction == "long":
        return entry + risk * r_multiple
    return entry - risk * r_multiple


def tiered_exits(entry: float, stop: float, direction: str) -> tuple[TieredExit, ...]:
    """Staged exit plan: 1R half-off with stop to break-even, 2R, runner."""
    risk = abs(entry - stop)
    sign = 1 if direction == "long" else -1
    return (
        TieredExit(
            label="TP1",
            price=entry + sign * risk,
            r_multiple=1.0,
            close_percent=50,
            action="Close 50% and move SL to break-even",
        ),
        TieredExit(
            label="TP2",
            price=entry + sign * risk * 2,
            r_multiple=2.0,
            close_percent=30,
            action="Close 30% and trail remainder",
        ),
        TieredExit(
            label="Runner",
            price=entry + sign * risk * 3,
            r_multiple=3.0,
            close_percent=20,
            action="Trail at 1x ATR after TP2",
        ),
    )


def validity_window(entry_interval: str, now: datetime) -> ValidityWindow:
    optimal, expiry = _TIMING_WINDOWS.get(entry_interval, _TIMING_WINDOWS["H1"])
    return ValidityWindow(
        optimal_until=now + timedelta(minutes=optimal),
        expires_at=now + timedelta(minutes=expiry),
    )


# ── Decision assembly ────────────────────────────────────────────────────


def build_decision(
    meta: StrategyMeta,
    data: IndicatorData,
    direction: str,
    confidence: float,
    entry: float,
    stop_loss: float,
    take_profit: float,
    triggers: list[str],
    reason_codes: list[str],
    now: datetime,
    trend_alignment: str = "unknown",
) -> Optional[Decision]:
    """Assemble a candidate Decision, or ``None`` when it is not tradable.

    Rejects when the order levels are on the wrong sides of entry or the
    clamped confidence is below ``MIN_CONFIDENCE``.
    """
    if not is_valid_order(direction, entry, stop_loss, take_profit):
        return None

    score = int(round(clamp(confidence, 0, 100)))
    if score < MIN_CONFIDENCE:
        return None

    return Decision(
        symbol=data.symbol,
        strategy_id=meta.id,
        strategy_name=meta.name,
        style=meta.style,
        direction=direction,
        confidence=score,
        grade=grade_for_confidence(score),
        timestamp=now,
        entry_price=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        reasons=tuple(triggers),
        reason_codes=tuple(reason_codes),
        gating=GatingOutcome(trend_alignment=trend_alignment),
        validity=validity_window(data.entry_interval, now),
        tiered_exits=tiered_exits(entry, stop_loss, direction),
    )
