"""Volatility gate — classifies current ATR against its trailing average.

Only ``extreme`` volatility blocks a signal.  ``high`` and ``low`` are
reported so callers can annotate the Decision.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from tradedesk.models.decision import VolatilityLevel

logger = logging.getLogger("tradedesk.volatility")

MIN_HISTORY = 5
AVERAGE_PERIOD = 20

EXTREME_HIGH = 3.0
HIGH = 2.0
LOW = 0.3
EXTREME_LOW = 0.15

# Naturally more (or less) volatile symbols get scaled thresholds.
ASSET_MULTIPLIERS: dict[str, float] = {
    "BTCUSD": 1.5,
    "ETHUSD": 1.5,
    "XRPUSD": 1.8,
    "SOLUSD": 1.8,
    "DOGEUSD": 2.0,
    "ADAUSD": 1.6,
    "LTCUSD": 1.6,
    "USDZAR": 1.3,
    "USDMXN": 1.3,
    "USDTRY": 1.5,
    "USDSEK": 1.2,
    "USDNOK": 1.2,
    "USDHKD": 0.8,
}


@dataclass(frozen=True)
class VolatilityResult:
    allowed: bool
    level: VolatilityLevel
    ratio: float
    current_atr: float
    average_atr: float
    reason: str


def check_volatility(
    symbol: str,
    current_atr: float,
    atr_history: Sequence[float],
) -> VolatilityResult:
    """Classify *current_atr* against the mean of the last 20 history values.

    Args:
        symbol: Used to look up the asset multiplier.
        current_atr: ATR at the signal bar.
        atr_history: Prior ATR readings, oldest first, missing values removed.

    Returns:
        ``VolatilityResult``; ``allowed`` is ``False`` only when the level
        is ``extreme``.
    """
    if len(atr_history) < MIN_HISTORY:
        return VolatilityResult(
            allowed=True,
            level="normal",
            ratio=1.0,
            current_atr=current_atr,
            average_atr=current_atr,
            reason="Insufficient ATR history",
        )

    average = float(np.mean(np.asarray(atr_history[-AVERAGE_PERIOD:], dtype=float)))
    ratio = current_atr / average if average > 0 else 1.0

    mult = ASSET_MULTIPLIERS.get(symbol.upper(), 1.0)
    extreme_high = EXTREME_HIGH * mult
    high = HIGH * mult
    low = LOW / mult
    extreme_low = EXTREME_LOW / mult

    if ratio >= extreme_high:
        level, allowed = "extreme", False
        reason = (
            f"Extreme volatility: ATR {ratio:.1f}x average "
            f"(>= {extreme_high:.1f}x threshold)"
        )
    elif ratio >= high:
        level, allowed = "high", True
        reason = f"High volatility: ATR {ratio:.1f}x average (>= {high:.1f}x)"
    elif ratio <= extreme_low:
        level, allowed = "low", True
        reason = f"Extremely low volatility: ATR {ratio:.2f}x average (<= {extreme_low:.2f}x)"
    elif ratio <= low:
        level, allowed = "low", True
        reason = f"Low volatility: ATR {ratio:.2f}x average (<= {low:.2f}x)"
    else:
        level, allowed = "normal", True
        reason = f"Normal volatility: ATR {ratio:.2f}x average"

    if not allowed:
        logger.info("Volatility gate closed for %s: %s", symbol, reason)

    return VolatilityResult(
        allowed=allowed,
        level=level,
        ratio=ratio,
        current_atr=current_atr,
        average_atr=average,
        reason=reason,
    )
