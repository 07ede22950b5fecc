"""Bollinger Band mean reversion (intraday).

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
    trend_alignment,
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


class BollingerMRStrategy:
    """Fade a band touch; rejection candle and RSI extreme add confidence.

    Trading against a *strong* higher-timeframe trend is vetoed outright.
    """

    RR_TARGET = 1.5

    meta = StrategyMeta(
        id="bollinger-mr",
        name="Bollinger Mean Reversion",
        description="Mean reversion from Bollinger Band touches with rejection candle and H4 trend",
        style="intraday",
        trend_timeframe="H4",
        entry_timeframe="H1",
        archetype="mean-reversion",
        required_indicators=("bb_upper", "bb_middle", "bb_lower", "rsi", "atr"),
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

        upper = data.value("bb_upper", sig)
        lower = data.value("bb_lower", sig)
        rsi = data.value("rsi", sig)
        if not all_present(upper, lower, rsi, atr):
            return None

        signal_bar = bars[sig]
        triggers: list[str] = []
        codes: list[str] = []
        confidence = 0
        direction = None

        if signal_bar.low <= lower:
            direction = "long"
            confidence += 25
            triggers.append(f"Price touched lower band at {lower:.5f}")
            codes.append("BB_TOUCH_LOWER")
            if rejection_candle(signal_bar, "long").ok:
                confidence += 20
                triggers.append("Bullish rejection")
                codes.append("REJECTION_CONFIRMED")
            if rsi < 35:
                confidence += 15
                triggers.append(f"RSI oversold at {rsi:.1f}")
                codes.append("RSI_OVERSOLD")

        elif signal_bar.high >= upper:
            direction = "short"
            confidence += 25
            triggers.append(f"Price touched upper band at {upper:.5f}")
            codes.append("BB_TOUCH_UPPER")
            if rejection_candle(signal_bar, "short").ok:
                confidence += 20
                triggers.append("Bearish rejection")
                codes.append("REJECTION_CONFIRMED")
            if rsi > 65:
                confidence += 15
                triggers.append(f"RSI overbought at {rsi:.1f}")
                codes.append("RSI_OVERBOUGHT")

        if direction is None:
            return None

        trend = preflight.h4_trend
        alignment = trend_alignment(trend, direction)
        if alignment == "counter" and trend.strength == "strong":
            return None
        confidence += trend_confidence_adjustment(trend, direction)
        if alignment == "aligned":
            codes.append("TREND_ALIGNED")
        elif alignment == "counter":
            codes.append("TREND_COUNTER")
        confidence += preflight.confidence_adjustment

        entry = bars[data.entry_index].open
        stop = tighter_stop(
            direction,
            entry,
            swing_stop(bars, sig, direction, atr, lookback=3, buffer_atr=0.25),
            atr_stop(entry, direction, atr, 1.5),
        )
        target = target_from_risk(entry, stop, direction, self.RR_TARGET)
        confidence += 10
        codes.append("RR_FAVORABLE")

        return build_decision(
            self.meta, data, direction, confidence, entry, stop, target,
            triggers, codes, now, alignment,
        )
