"""RSI oversold/overbought bounce (intraday, H4 trend / H1 entry).

Implements ``StrategyProtocol``.  Fades RSI extremes once the oscillator
hooks back out of the zone on the signal bar.
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
    swing_stop,
    target_from_risk,
    tighter_stop,
)

logger = logging.getLogger("tradedesk.strategy")


class RsiBounceStrategy:
    """Mean reversion from an RSI hook out of oversold/overbought.

    Flow:
        1. Preflight (mean-reversion archetype).
        2. Long when the previous RSI was below 30 and the signal-bar RSI
           turned up; short mirrors at 70.
        3. Score: hook 35, deep extreme 10, band touch 10, confirming
           candle 10, SMA20 side 5, favourable R:R 10, plus trend and
           session adjustments.
        4. Stop: tighter of the 5-bar swing (0.2 ATR buffer) and 1.5 ATR.
           Target: 1.5R.
    """

    OVERSOLD = 30.0
    OVERBOUGHT = 70.0
    EXTREME_LOW = 25.0
    EXTREME_HIGH = 75.0
    RR_TARGET = 1.5

    meta = StrategyMeta(
        id="rsi-bounce",
        name="RSI Oversold Bounce",
        description="Mean reversion from RSI extremes with Bollinger Band confirmation",
        style="intraday",
        trend_timeframe="H4",
        entry_timeframe="H1",
        archetype="mean-reversion",
        required_indicators=("rsi", "atr", "bb_upper", "bb_lower", "sma20"),
        min_bars=50,
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

        rsi = data.value("rsi", sig)
        rsi_prev = data.value("rsi", sig - 1)
        bb_upper = data.value("bb_upper", sig)
        bb_lower = data.value("bb_lower", sig)
        sma20 = data.value("sma20", sig)
        if not all_present(rsi, rsi_prev, bb_upper, bb_lower, sma20, atr):
            return None

        signal_bar = bars[sig]
        prev_bar = bars[sig - 1]
        triggers: list[str] = []
        codes: list[str] = []
        confidence = 0
        direction = None

        if rsi_prev < self.OVERSOLD and rsi > rsi_prev:
            direction = "long"
            confidence += 35
            triggers.append(f"RSI hooked up from {rsi_prev:.1f} to {rsi:.1f}")
            codes.append("RSI_OVERSOLD")
            if rsi_prev < self.EXTREME_LOW:
                confidence += 10
                triggers.append("RSI deeply oversold")
                codes.append("RSI_EXTREME_LOW")
            if min(signal_bar.low, prev_bar.low) <= bb_lower:
                confidence += 10
                triggers.append(f"Price tagged lower band at {bb_lower:.5f}")
                codes.append("BB_TOUCH_LOWER")
            if signal_bar.close > signal_bar.open:
                confidence += 10
                triggers.append("Bullish candle confirmation")
            if signal_bar.close > sma20:
                confidence += 5
                triggers.append("Closed above SMA20")

        elif rsi_prev > self.OVERBOUGHT and rsi < rsi_prev:
            direction = "short"
            confidence += 35
            triggers.append(f"RSI hooked down from {rsi_prev:.1f} to {rsi:.1f}")
            codes.append("RSI_OVERBOUGHT")
            if rsi_prev > self.EXTREME_HIGH:
                confidence += 10
                triggers.append("RSI deeply overbought")
                codes.append("RSI_EXTREME_HIGH")
            if max(signal_bar.high, prev_bar.high) >= bb_upper:
                confidence += 10
                triggers.append(f"Price tagged upper band at {bb_upper:.5f}")
                codes.append("BB_TOUCH_UPPER")
            if signal_bar.close < signal_bar.open:
                confidence += 10
                triggers.append("Bearish candle confirmation")
            if signal_bar.close < sma20:
                confidence += 5
                triggers.append("Closed below SMA20")

        if direction is None:
            return None

        alignment = trend_alignment(preflight.h4_trend, direction)
        confidence += trend_confidence_adjustment(preflight.h4_trend, direction)
        if alignment == "aligned":
            codes.append("TREND_ALIGNED")
        elif alignment == "counter":
            codes.append("TREND_COUNTER")
        confidence += preflight.confidence_adjustment

        entry = bars[data.entry_index].open
        stop = tighter_stop(
            direction,
            entry,
            swing_stop(bars, sig, direction, atr, lookback=5, buffer_atr=0.2),
            atr_stop(entry, direction, atr, 1.5),
        )
        target = target_from_risk(entry, stop, direction, self.RR_TARGET)
        confidence += 10
        codes.append("RR_FAVORABLE")

        return build_decision(
            self.meta, data, direction, confidence, entry, stop, target,
            triggers, codes, now, alignment,
        )
