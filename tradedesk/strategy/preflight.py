"""Preflight quality gate — shared validity checks run before signal logic.

Hard rejects, in order:
    1. Enough bars.
    2. Signal bar closed (its open precedes the entry bar's open).
    3. Entry bar fresh enough for the entry interval.
    4. ATR above a minimum percentage of price.

A passing result also carries the higher-timeframe trend and a
session-quality confidence delta.  Neither of those rejects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal, Optional

from tradedesk.market.instruments import session_class
from tradedesk.models.decision import TrendAlignment
from tradedesk.models.market import IndicatorData, all_present

logger = logging.getLogger("tradedesk.preflight")

Archetype = Literal["trend-continuation", "mean-reversion", "breakout", "momentum"]

MIN_TREND_BARS = 10
TREND_NEUTRAL_BAND_PCT = 0.5


@dataclass(frozen=True)
class PreflightPolicy:
    """Switches and limits for the hard checks."""

    enforce_closed_bar: bool = True
    enforce_entry_freshness: bool = True
    enforce_min_volatility: bool = True
    min_atr_percent: float = 0.05
    max_entry_age: dict[str, timedelta] = field(
        default_factory=lambda: {
            "H1": timedelta(minutes=15),
            "H4": timedelta(minutes=60),
            "D1": timedelta(hours=4),
        }
    )


DEFAULT_POLICY = PreflightPolicy()


@dataclass(frozen=True)
class HigherTimeframeTrend:
    """Trend context from the trend timeframe's last closed bar."""

    direction: Literal["bullish", "bearish", "neutral"]
    strength: Literal["strong", "moderate", "weak"]
    price_vs_ema200_pct: float
    adx: float


@dataclass(frozen=True)
class PreflightResult:
    passed: bool
    reason: Optional[str] = None
    h4_trend: Optional[HigherTimeframeTrend] = None
    confidence_adjustment: int = 0
    details: dict = field(default_factory=dict)


# ── Trend context ────────────────────────────────────────────────────────


def detect_htf_trend(data: IndicatorData) -> Optional[HigherTimeframeTrend]:
    """Classify the trend timeframe from price vs EMA200 and ADX.

    Uses the last closed trend bar.  Returns ``None`` when fewer than
    ``MIN_TREND_BARS`` trend bars exist or either reading is missing.
    """
    if len(data.trend_bars) < MIN_TREND_BARS:
        return None
    idx = len(data.trend_bars) - 2
    ema200 = data.trend_value("ema200", idx)
    adx = data.trend_value("adx", idx)
    if not all_present(ema200, adx) or ema200 == 0:
        return None

    close = data.trend_bars[idx].close
    distance_pct = (close - ema200) / ema200 * 100

    if distance_pct > TREND_NEUTRAL_BAND_PCT:
        direction = "bullish"
    elif distance_pct < -TREND_NEUTRAL_BAND_PCT:
        direction = "bearish"
    else:
        direction = "neutral"

    if adx > 30:
        strength = "strong"
    elif adx > 20:
        strength = "moderate"
    else:
        strength = "weak"

    return HigherTimeframeTrend(
        direction=direction,
        strength=strength,
        price_vs_ema200_pct=distance_pct,
        adx=adx,
    )


def trend_alignment(
    trend: Optional[HigherTimeframeTrend],
    direction: str,
) -> TrendAlignment:
    if trend is None:
        return "unknown"
    if trend.direction == "neutral":
        return "neutral"
    if (direction == "long" and trend.direction == "bullish") or (
        direction == "short" and trend.direction == "bearish"
    ):
        return "aligned"
    return "counter"


def trend_confidence_adjustment(
    trend: Optional[HigherTimeframeTrend],
    direction: str,
) -> int:
    """Bonus for trading with the higher timeframe, penalty against it."""
    alignment = trend_alignment(trend, direction)
    if alignment == "aligned":
        return {"strong": 20, "moderate": 15, "weak": 10}[trend.strength]
    if alignment == "counter":
        return {"strong": -30, "moderate": -20, "weak": -10}[trend.strength]
    return 0


# ── Session quality ──────────────────────────────────────────────────────


def session_adjustment(symbol: str, utc_hour: int) -> int:
    """Confidence delta for the trading session at *utc_hour*.

    FX favours the London open and the London/New York overlap and
    penalises the Asian session; crypto only penalises its quietest hours.
    """
    if session_class(symbol) == "crypto":
        if 2 <= utc_hour < 6:
            return -10
        if 14 <= utc_hour < 22:
            return 5
        return 0

    if utc_hour < 6:
        return -15
    if 7 <= utc_hour < 9:
        return 15
    if 9 <= utc_hour < 13:
        return 10
    if 13 <= utc_hour < 17:
        return 20
    if 17 <= utc_hour < 21:
        return 5
    return 0


# ── Gate ─────────────────────────────────────────────────────────────────


def run_preflight(
    data: IndicatorData,
    atr: Optional[float],
    archetype: Archetype,
    min_bars: int,
    now: datetime,
    policy: PreflightPolicy = DEFAULT_POLICY,
) -> PreflightResult:
    """Run the hard checks and, on success, gather trend/session context.

    Args:
        data: Bars and series for the symbol.
        atr: ATR reading at the signal bar (``None`` if missing).
        archetype: Strategy archetype, reported in ``details``.
        min_bars: Minimum number of entry bars.
        now: Current UTC time (injected for testability).
        policy: Check switches and limits.
    """
    bars = data.bars

    if len(bars) < min_bars:
        return PreflightResult(
            passed=False,
            reason=f"Insufficient bars: {len(bars)} < {min_bars}",
        )

    if len(bars) < 3:
        return PreflightResult(passed=False, reason="Not enough bars")

    signal_bar = bars[-2]
    entry_bar = bars[-1]
    if policy.enforce_closed_bar and not signal_bar.timestamp < entry_bar.timestamp:
        return PreflightResult(passed=False, reason="Signal bar not yet closed")

    if policy.enforce_entry_freshness:
        max_age = policy.max_entry_age.get(
            data.entry_interval, policy.max_entry_age["H1"]
        )
        age = now - entry_bar.timestamp
        if age > max_age:
            return PreflightResult(
                passed=False,
                reason=(
                    f"Stale entry: entry bar is {int(age.total_seconds() // 60)}min old "
                    f"(max {int(max_age.total_seconds() // 60)}min)"
                ),
            )

    if policy.enforce_min_volatility:
        price = signal_bar.close
        if atr is None or price <= 0:
            return PreflightResult(passed=False, reason="Dead market: ATR unavailable")
        atr_pct = atr / price * 100
        if atr_pct < policy.min_atr_percent:
            return PreflightResult(
                passed=False,
                reason=(
                    f"Dead market: ATR {atr_pct:.3f}% < {policy.min_atr_percent}%"
                ),
            )

    trend = detect_htf_trend(data)
    session_delta = session_adjustment(data.symbol, now.hour)

    return PreflightResult(
        passed=True,
        h4_trend=trend,
        confidence_adjustment=session_delta,
        details={
            "archetype": archetype,
            "session_adjustment": session_delta,
            "trend_available": trend is not None,
        },
    )
