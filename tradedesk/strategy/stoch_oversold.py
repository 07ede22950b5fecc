"""Stochastic oversold/overbought cross, trend-aligned (intraday).

Implements ``StrategyProtocol``.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from tradedesk.models.decision import Decision
from tradedesk.models.market import IndicatorData, all_present
from tradedesk.models.settings import UserSettings
from tradedesk.strategy.base import StrategyMeta
from tradedesk.strategy.preflight import (
    DEFAULT_POLICY,
    PreflightPolicy,
    run_preflight,
    trend_confidence_adjustment,
)
from tradedesk.strategy.signals import (
    atr_stop,
    build_decision,
    rejection_candle,
    swing_stop,
    target_from_risk,
    tighter_stop,
)

logger = logging.getLogger("tradedesk.strategy")


class StochOversoldStrategy:
    """%K/%D cross inside the extreme zone, only with the H4 trend.

    Requires a rejection candle on the signal bar and price on the trend
    side of EMA200.  Stop is the tighter of the two-bar swing (0.3 ATR
    buffer) and 1.5 ATR; target is 1.5R.
    """

    RR_TARGET = 1.5

    meta = StrategyMeta(
        id="stoch-oversold",
        name="Stochastic Oversold",
        description="Trend-aligned stochastic crossover with rejection confirmation",
        style="intraday",
        trend_timeframe="H4",
        entry_timeframe="H1",
        archetype="trend-continuation",
        required_indicators=("stoch_k", "stoch_d", "atr", "ema200"),
        min_bars=250,
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

        trend = preflight.h4_trend
        if trend is None:
            return None

        k, d = data.value("stoch_k", sig), data.value("stoch_d", sig)
        k_prev, d_prev = data.value("stoch_k", sig - 1), data.value("stoch_d", sig - 1)
        ema200 = data.value("ema200", sig)
        if not all_present(k, d, k_prev, d_prev, ema200, atr):
            return None

        signal_bar = bars[sig]
        triggers: list[str] = []
        codes: list[str] = []
        confidence = 0
        direction = None

        if k < 20 and k_prev < d_prev and k > d:
            if trend.direction != "bullish" or signal_bar.close < ema200:
                return None
            shape = rejection_candle(signal_bar, "long")
            if not shape.ok:
                return None
            direction = "long"
            confidence += 35
            triggers.append(f"Stochastic oversold at K={k:.1f}, K crossed above D")
            triggers.append(f"Bullish rejection candle ({shape.wick_ratio:.0%} lower wick)")
            codes += ["STOCH_OVERSOLD", "STOCH_CROSS_UP", "REJECTION_CONFIRMED"]
            if k < 10:
                confidence += 10
                triggers.append("Stochastic extremely oversold")

        elif k > 80 and k_prev > d_prev and k < d:
            if trend.direction != "bearish" or signal_bar.close > ema200:
                return None
            shape = rejection_candle(signal_bar, "short")
            if not shape.ok:
                return None
            direction = "short"
            confidence += 35
            triggers.append(f"Stochastic overbought at K={k:.1f}, K crossed below D")
            triggers.append(f"Bearish rejection candle ({shape.wick_ratio:.0%} upper wick)")
            codes += ["STOCH_OVERBOUGHT", "STOCH_CROSS_DOWN", "REJECTION_CONFIRMED"]
            if k > 90:
                confidence += 10
                triggers.append("Stochastic extremely overbought")

        if direction is None:
            return None

        confidence += trend_confidence_adjustment(trend, direction)
        triggers.append(f"H4 trend {trend.direction} (ADX={trend.adx:.1f})")
        codes.append("TREND_ALIGNED")
        confidence += preflight.confidence_adjustment

        entry = bars[data.entry_index].open
        stop = tighter_stop(
            direction,
            entry,
            swing_stop(bars, sig, direction, atr, lookback=2, buffer_atr=0.3),
            atr_stop(entry, direction, atr, 1.5),
        )
        target = target_from_risk(entry, stop, direction, self.RR_TARGET)
        confidence += 10
        codes.append("RR_FAVORABLE")

        return build_decision(
            self.meta, data, direction, confidence, entry, stop, target,
            triggers, codes, now, "aligned",
        )
