"""EMA pullback continuation (intraday).

Implements ``StrategyProtocol``.  Buys dips into the EMA20/EMA50 zone of
an established trend; sells rallies into it in a downtrend.
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
    target_from_risk,
    tighter_stop,
)

logger = logging.getLogger("tradedesk.strategy")


class EmaPullbackStrategy:
    """Trend continuation after a pullback into the EMA20/50 zone.

    Flow:
        1. Preflight (trend-continuation archetype).
        2. Trend: close beyond EMA200 and EMA20 beyond EMA50, ADX ≥ 20.
        3. Signal bar trades into the EMA zone and closes back beyond EMA20.
        4. Counter-trend on the higher timeframe is rejected.
        5. Stop: tighter of the far side of the zone (0.5 ATR buffer) and
           2 ATR.  Target: 2R.
    """

    MIN_ADX = 20.0
    RR_TARGET = 2.0

    meta = StrategyMeta(
        id="ema-pullback",
        name="EMA Pullback",
        description="Pullback into the EMA20/50 zone within an EMA200 trend",
        style="intraday",
        trend_timeframe="H4",
        entry_timeframe="H1",
        archetype="trend-continuation",
        required_indicators=("ema20", "ema50", "ema200", "rsi", "adx", "atr"),
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

        ema20 = data.value("ema20", sig)
        ema50 = data.value("ema50", sig)
        ema200 = data.value("ema200", sig)
        rsi = data.value("rsi", sig)
        adx = data.value("adx", sig)
        if not all_present(ema20, ema50, ema200, rsi, adx, atr):
            return None
        if adx < self.MIN_ADX:
            return None

        signal_bar = bars[sig]
        zone_high = max(ema20, ema50)
        zone_low = min(ema20, ema50)
        in_zone = signal_bar.low <= zone_high and signal_bar.high >= zone_low

        triggers: list[str] = []
        codes: list[str] = []
        confidence = 0
        direction = None

        if in_zone and signal_bar.close > ema200 and ema20 > ema50 and signal_bar.close > ema20:
            direction = "long"
            confidence += 40
            triggers.append("Pullback into EMA20/50 zone in uptrend")
            codes.append("EMA_PULLBACK")
            if 40 <= rsi <= 60:
                confidence += 10
                triggers.append(f"RSI reset to {rsi:.1f}")
        elif in_zone and signal_bar.close < ema200 and ema20 < ema50 and signal_bar.close < ema20:
            direction = "short"
            confidence += 40
            triggers.append("Pullback into EMA20/50 zone in downtrend")
            codes.append("EMA_PULLBACK")
            if 40 <= rsi <= 60:
                confidence += 10
                triggers.append(f"RSI reset to {rsi:.1f}")

        if direction is None:
            return None

        trend = preflight.h4_trend
        alignment = trend_alignment(trend, direction)
        if alignment == "counter":
            return None
        if alignment == "aligned":
            codes.append("TREND_ALIGNED")
        confidence += trend_confidence_adjustment(trend, direction)
        confidence += preflight.confidence_adjustment

        entry = bars[data.entry_index].open
        structural = zone_low - atr * 0.5 if direction == "long" else zone_high + atr * 0.5
        stop = tighter_stop(direction, entry, structural, atr_stop(entry, direction, atr, 2.0))
        target = target_from_risk(entry, stop, direction, self.RR_TARGET)
        confidence += 10
        codes.append("RR_FAVORABLE")

        return build_decision(
            self.meta, data, direction, confidence, entry, stop, target,
            triggers, codes, now, alignment,
        )
