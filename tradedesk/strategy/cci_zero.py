"""CCI zero-line cross from an extreme (intraday momentum).

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
    swing_stop,
    target_from_risk,
    tighter_stop,
)

logger = logging.getLogger("tradedesk.strategy")


class CciZeroStrategy:
    """CCI crossing zero after visiting ±100 within the last two bars."""

    EXTREME = 100.0
    RR_TARGET = 2.0

    meta = StrategyMeta(
        id="cci-zero",
        name="CCI Zero-Line Cross",
        description="CCI crossing zero from extremes with H4 trend filter",
        style="intraday",
        trend_timeframe="H4",
        entry_timeframe="H1",
        archetype="momentum",
        required_indicators=("cci", "ema200", "atr"),
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

        cci = data.value("cci", sig)
        cci_prev = data.value("cci", sig - 1)
        cci_prev2 = data.value("cci", sig - 2)
        ema200 = data.value("ema200", sig)
        if not all_present(cci, cci_prev, cci_prev2, ema200, atr):
            return None

        signal_bar = bars[sig]
        triggers: list[str] = []
        codes: list[str] = []
        confidence = 0
        direction = None

        was_low = cci_prev2 < -self.EXTREME or cci_prev < -self.EXTREME
        was_high = cci_prev2 > self.EXTREME or cci_prev > self.EXTREME

        if was_low and cci_prev <= 0 <= cci and cci != cci_prev:
            direction = "long"
            confidence += 30
            triggers.append(f"CCI crossed above zero ({cci_prev:.0f} -> {cci:.0f})")
            codes += ["CCI_ZERO_CROSS_UP", "CCI_EXTREME_LOW"]
            if signal_bar.close > ema200:
                confidence += 15
                triggers.append("Price above EMA200")
        elif was_high and cci_prev >= 0 >= cci and cci != cci_prev:
            direction = "short"
            confidence += 30
            triggers.append(f"CCI crossed below zero ({cci_prev:.0f} -> {cci:.0f})")
            codes += ["CCI_ZERO_CROSS_DOWN", "CCI_EXTREME_HIGH"]
            if signal_bar.close < ema200:
                confidence += 15
                triggers.append("Price below EMA200")

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
            swing_stop(bars, sig, direction, atr, lookback=3, buffer_atr=0.3),
            atr_stop(entry, direction, atr, 1.5),
        )
        target = target_from_risk(entry, stop, direction, self.RR_TARGET)
        confidence += 10
        codes.append("RR_FAVORABLE")

        return build_decision(
            self.meta, data, direction, confidence, entry, stop, target,
            triggers, codes, now, alignment,
        )
