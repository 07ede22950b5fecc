"""Break and retest of a swing level (intraday breakout).

Implements ``StrategyProtocol``.  Requires market structure that agrees
with the break, a break of at least half an ATR, and an accepting
rejection candle on the retest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

from tradedesk.models.decision import Decision
from tradedesk.models.market import Bar, IndicatorData
from tradedesk.models.settings import UserSettings
from tradedesk.strategy.base import StrategyMeta
from tradedesk.strategy.preflight import (
    DEFAULT_POLICY,
    PreflightPolicy,
    run_preflight,
    trend_alignment,
    trend_confidence_adjustment,
)
from tradedesk.strategy.signals import build_decision, target_from_risk

logger = logging.getLogger("tradedesk.strategy")

Structure = Literal["bullish", "bearish", "neutral"]


@dataclass(frozen=True)
class SwingPoint:
    index: int
    price: float
    kind: Literal["high", "low"]


def find_swing_points(bars: list[Bar], lookback: int = 5) -> list[SwingPoint]:
    """Bars whose high (low) is strictly beyond *lookback* bars on each side."""
    swings: list[SwingPoint] = []
    for i in range(lookback, len(bars) - lookback):
        bar = bars[i]
        neighbours = bars[i - lookback:i] + bars[i + 1:i + lookback + 1]
        if all(n.high < bar.high for n in neighbours):
            swings.append(SwingPoint(i, bar.high, "high"))
        if all(n.low > bar.low for n in neighbours):
            swings.append(SwingPoint(i, bar.low, "low"))
    return swings


def detect_structure(swings: list[SwingPoint]) -> Structure:
    """HH/HL is bullish, LH/LL bearish, judged on the last four swings."""
    recent = swings[-4:]
    highs = [s.price for s in recent if s.kind == "high"]
    lows = [s.price for s in recent if s.kind == "low"]
    if len(highs) < 2 or len(lows) < 2:
        return "neutral"
    if highs[-1] > highs[-2] and lows[-1] > lows[-2]:
        return "bullish"
    if highs[-1] < highs[-2] and lows[-1] < lows[-2]:
        return "bearish"
    return "neutral"


@dataclass(frozen=True)
class Acceptance:
    accepted: bool
    wick_ratio: float
    close_position: float


def check_acceptance(bar: Bar, direction: str) -> Acceptance:
    """Retest candle closes in the outer 30% of its range with a 40% wick."""
    span = bar.high - bar.low
    if span <= 0:
        return Acceptance(False, 0.0, 0.5)
    close_position = (bar.close - bar.low) / span
    if direction == "long":
        wick_ratio = (min(bar.open, bar.close) - bar.low) / span
        return Acceptance(close_position >= 0.7 and wick_ratio >= 0.4, wick_ratio, close_position)
    wick_ratio = (bar.high - max(bar.open, bar.close)) / span
    return Acceptance(close_position <= 0.3 and wick_ratio >= 0.4, wick_ratio, close_position)


class BreakRetestStrategy:
    """Breakout of a swing level followed by an accepted retest.

    Flow:
        1. Preflight (breakout archetype).
        2. Levels: highest swing high / lowest swing low formed before the
           breakout window.
        3. A close beyond the level in the five bars before the signal,
           at least 0.5 ATR past it, with agreeing structure.
        4. Signal bar retests the level and closes back beyond it with an
           accepting candle.
        5. No opposing swing within 0.75 ATR of entry.
        6. Stop 0.3 ATR beyond the retest extreme or level.  Target: 2R.
    """

    BREAK_WINDOW = 5
    LEVEL_WINDOW = 40
    STRUCTURE_WINDOW = 50
    MIN_BREAK_ATR = 0.5
    ROOM_ATR = 0.75
    STOP_BUFFER_ATR = 0.3
    RETEST_TOLERANCE = 0.002
    RR_TARGET = 2.0
    MIN_CONFIDENCE = 55

    meta = StrategyMeta(
        id="break-retest",
        name="Break & Retest",
        description="Structure-confirmed breakout with an accepted retest",
        style="intraday",
        trend_timeframe="H4",
        entry_timeframe="H1",
        archetype="breakout",
        required_indicators=("atr",),
        min_bars=100,
        version="2026-01-02",
    )

    def __init__(self, policy: PreflightPolicy = DEFAULT_POLICY) -> None:
        self._policy = policy

    def analyze(
        self,
        data: IndicatorData,
        settings: UserSettings,
        now: Optional[datetime] = None,
    ) -> Optional[Decision]:
        now = now or datetime.now(timezone.utc)
        bars = data.bars
        sig = data.signal_index

        atr = data.value("atr", sig)
        preflight = run_preflight(
            data, atr, self.meta.archetype, self.meta.min_bars, now, self._policy
        )
        if not preflight.passed:
            logger.debug("[%s] %s rejected: %s", self.meta.id, data.symbol, preflight.reason)
            return None
        if atr is None:
            return None

        closed = bars[:sig + 1]
        swings = find_swing_points(closed[-self.STRUCTURE_WINDOW:], 5)
        structure = detect_structure(swings)

        break_start = sig - self.BREAK_WINDOW
        level_swings = find_swing_points(bars[max(0, break_start - self.LEVEL_WINDOW):break_start], 3)
        highs = [s.price for s in level_swings if s.kind == "high"]
        lows = [s.price for s in level_swings if s.kind == "low"]
        if not highs or not lows:
            return None
        resistance, support = max(highs), min(lows)

        breakout = bars[break_start:sig]
        signal_bar = bars[sig]
        entry = bars[data.entry_index].open

        triggers: list[str] = []
        codes: list[str] = []
        direction = None

        if structure == "bullish" and any(b.close > resistance for b in breakout):
            distance = max(b.close for b in breakout) - resistance
            if distance < atr * self.MIN_BREAK_ATR:
                return None
            if not (signal_bar.low <= resistance * (1 + self.RETEST_TOLERANCE) and signal_bar.close > resistance):
                return None
            acceptance = check_acceptance(signal_bar, "long")
            if not acceptance.accepted:
                return None
            overhead = [s.price for s in swings if s.kind == "high" and s.price > resistance]
            if overhead and min(overhead) - entry < atr * self.ROOM_ATR:
                return None
            direction, level = "long", resistance
            triggers += [
                f"Resistance {resistance:.5f} broken by {distance / atr:.2f} ATR",
                "Structure: HH/HL",
                f"Retest accepted (close at {acceptance.close_position:.0%} of range)",
            ]
        elif structure == "bearish" and any(b.close < support for b in breakout):
            distance = support - min(b.close for b in breakout)
            if distance < atr * self.MIN_BREAK_ATR:
                return None
            if not (signal_bar.high >= support * (1 - self.RETEST_TOLERANCE) and signal_bar.close < support):
                return None
            acceptance = check_acceptance(signal_bar, "short")
            if not acceptance.accepted:
                return None
            underfoot = [s.price for s in swings if s.kind == "low" and s.price < support]
            if underfoot and entry - max(underfoot) < atr * self.ROOM_ATR:
                return None
            direction, level = "short", support
            triggers += [
                f"Support {support:.5f} broken by {distance / atr:.2f} ATR",
                "Structure: LH/LL",
                f"Retest accepted (close at {acceptance.close_position:.0%} of range)",
            ]

        if direction is None:
            return None
        codes += ["BREAK_CONFIRMED", "RETEST_CONFIRMED", "REJECTION_CONFIRMED"]
        confidence = 35

        # Trend is a bonus or penalty for breakouts, never a veto.
        trend = preflight.h4_trend
        alignment = trend_alignment(trend, direction)
        if alignment == "aligned":
            codes.append("TREND_ALIGNED")
        elif alignment == "counter":
            codes.append("TREND_COUNTER")
        confidence += trend_confidence_adjustment(trend, direction)
        confidence += preflight.confidence_adjustment

        if direction == "long":
            stop = min(signal_bar.low, level) - atr * self.STOP_BUFFER_ATR
        else:
            stop = max(signal_bar.high, level) + atr * self.STOP_BUFFER_ATR
        target = target_from_risk(entry, stop, direction, self.RR_TARGET)
        confidence += 10
        codes.append("RR_FAVORABLE")

        if confidence < self.MIN_CONFIDENCE:
            return None
        return build_decision(
            self.meta, data, direction, confidence, entry, stop, target,
            triggers, codes, now, alignment,
        )
