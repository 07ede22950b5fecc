"""Williams %R extreme turn with an EMA50 filter (intraday mean reversion).

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
from tradedesk.strategy.signals import atr_stop, build_decision

logger = logging.getLogger("tradedesk.strategy")


class WilliamsEmaStrategy:
    """Williams %R stays beyond -80/-20 for two bars and turns back.

    Flow:
        1. Preflight (mean-reversion archetype).
        2. Two bars beyond the extreme with the signal bar turning.
        3. Close on the trend side of EMA50 adds confidence, the other
           side costs some.
        4. Stop 1.5 ATR, target 2.5 ATR.
    """

    OVERSOLD = -80.0
    OVERBOUGHT = -20.0
    DEEP_OVERSOLD = -90.0
    DEEP_OVERBOUGHT = -10.0
    STOP_ATR = 1.5
    TARGET_ATR = 2.5

    meta = StrategyMeta(
        id="williams-ema",
        name="Williams %R + EMA",
        description="Williams %R extremes with EMA50 trend filter",
        style="intraday",
        trend_timeframe="H4",
        entry_timeframe="H1",
        archetype="mean-reversion",
        required_indicators=("willr", "ema50", "atr"),
        min_bars=60,
        version="2025-12-29",
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

        willr = data.value("willr", sig)
        willr_prev = data.value("willr", sig - 1)
        ema50 = data.value("ema50", sig)
        if not all_present(willr, willr_prev, ema50, atr):
            return None

        signal_bar = bars[sig]
        triggers: list[str] = []
        codes: list[str] = []
        confidence = 0
        direction = None

        if willr < self.OVERSOLD and willr_prev < self.OVERSOLD and willr > willr_prev:
            direction = "long"
            confidence += 30
            triggers += [f"Williams %R oversold at {willr:.1f}", "Williams %R turning up"]
            codes.append("WILLR_OVERSOLD")
            if signal_bar.close > ema50:
                confidence += 20
                triggers.append("Close above EMA50")
            else:
                confidence -= 10
            if willr < self.DEEP_OVERSOLD:
                confidence += 10
                triggers.append("Williams %R deeply oversold")
            if signal_bar.close > signal_bar.open:
                confidence += 10
                triggers.append("Bullish candle confirmation")
        elif willr > self.OVERBOUGHT and willr_prev > self.OVERBOUGHT and willr < willr_prev:
            direction = "short"
            confidence += 30
            triggers += [f"Williams %R overbought at {willr:.1f}", "Williams %R turning down"]
            codes.append("WILLR_OVERBOUGHT")
            if signal_bar.close < ema50:
                confidence += 20
                triggers.append("Close below EMA50")
            else:
                confidence -= 10
            if willr > self.DEEP_OVERBOUGHT:
                confidence += 10
                triggers.append("Williams %R deeply overbought")
            if signal_bar.close < signal_bar.open:
                confidence += 10
                triggers.append("Bearish candle confirmation")

        if direction is None:
            return None

        trend = preflight.h4_trend
        alignment = trend_alignment(trend, direction)
        if alignment == "aligned":
            codes.append("TREND_ALIGNED")
        elif alignment == "counter":
            codes.append("TREND_COUNTER")
        confidence += trend_confidence_adjustment(trend, direction)
        confidence += preflight.confidence_adjustment

        entry = bars[data.entry_index].open
        stop = atr_stop(entry, direction, atr, self.STOP_ATR)
        target = entry + atr * self.TARGET_ATR if direction == "long" else entry - atr * self.TARGET_ATR
        confidence += 10
        codes.append("RR_FAVORABLE")

        return build_decision(
            self.meta, data, direction, confidence, entry, stop, target,
            triggers, codes, now, alignment,
        )
