"""Triple EMA stack pullback (intraday trend continuation).

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
    build_decision,
    normalized_slope,
    target_from_risk,
)

logger = logging.getLogger("tradedesk.strategy")


class TripleEmaStrategy:
    """EMA8/21/55 stacked in one direction, signal bar tags EMA21 and holds.

    Stop sits 0.5 ATR beyond the farther of the signal bar extreme and
    EMA55.  Target: 2R.
    """

    SLOPE_LOOKBACK = 5
    MIN_SLOPE = 0.0001
    RR_TARGET = 2.0

    meta = StrategyMeta(
        id="triple-ema",
        name="Triple EMA Stack",
        description="EMA8/21/55 alignment with a pullback to EMA21",
        style="intraday",
        trend_timeframe="H4",
        entry_timeframe="H1",
        archetype="trend-continuation",
        required_indicators=("ema8", "ema21", "ema55", "atr"),
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

        ema8 = data.value("ema8", sig)
        ema21 = data.value("ema21", sig)
        ema55 = data.value("ema55", sig)
        if not all_present(ema8, ema21, ema55, atr):
            return None

        signal_bar = bars[sig]
        slope = normalized_slope(data.series["ema21"], sig, self.SLOPE_LOOKBACK)

        triggers: list[str] = []
        codes: list[str] = []
        confidence = 0
        direction = None

        if ema8 > ema21 > ema55 and signal_bar.low <= ema21 < signal_bar.close:
            direction = "long"
            confidence += 30
            triggers += ["EMA8 > EMA21 > EMA55", "Pulled back to EMA21 and closed above"]
            codes += ["EMA_BULLISH_STACK", "EMA_PULLBACK"]
            if slope > self.MIN_SLOPE:
                confidence += 15
                triggers.append("EMA21 sloping up")
            if signal_bar.close > signal_bar.open:
                confidence += 10
                triggers.append("Bullish candle confirmation")
        elif ema8 < ema21 < ema55 and signal_bar.close < ema21 <= signal_bar.high:
            direction = "short"
            confidence += 30
            triggers += ["EMA8 < EMA21 < EMA55", "Pulled back to EMA21 and closed below"]
            codes += ["EMA_BEARISH_STACK", "EMA_PULLBACK"]
            if slope < -self.MIN_SLOPE:
                confidence += 15
                triggers.append("EMA21 sloping down")
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
        if direction == "long":
            stop = min(signal_bar.low, ema55) - atr * 0.5
        else:
            stop = max(signal_bar.high, ema55) + atr * 0.5
        target = target_from_risk(entry, stop, direction, self.RR_TARGET)
        confidence += 15
        codes.append("RR_FAVORABLE")

        return build_decision(
            self.meta, data, direction, confidence, entry, stop, target,
            triggers, codes, now, alignment,
        )
