"""Indicator provider — bars plus computed indicator series per symbol.

The decision engine depends only on :class:`IndicatorProvider`; the
shipped :class:`CandleIndicatorProvider` fetches candles over HTTP and
computes series locally.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, runtime_checkable

from tradedesk.market import indicators as ind
from tradedesk.market.candle_client import CandleClient
from tradedesk.market.instruments import StaticInstrumentProvider
from tradedesk.models.market import Bar, IndicatorData

logger = logging.getLogger("tradedesk.provider")

# style → (entry interval, trend interval)
TIMEFRAMES: dict[str, tuple[str, str]] = {
    "intraday": ("H1", "H4"),
    "swing": ("H4", "D1"),
}


@runtime_checkable
class IndicatorProvider(Protocol):
    """Source of aligned bars and indicator series."""

    async def get_indicators(self, symbol: str, style: str) -> IndicatorData:
        """Return bars and series for *symbol* at the timeframes of *style*."""
        ...


# ── Series builders ──────────────────────────────────────────────────────


def _entry_builders() -> dict[str, Callable[[list[Bar]], dict[str, list[float]]]]:
    def bollinger(bars):
        upper, middle, lower = ind.calculate_bollinger(bars, 20, 2.0)
        return {"bb_upper": upper, "bb_middle": middle, "bb_lower": lower}

    def stochastic(bars):
        k, d = ind.calculate_stochastic(bars, 14, 3)
        return {"stoch_k": k, "stoch_d": d}

    return {
        "rsi": lambda bars: {"rsi": ind.calculate_rsi(bars, 14)},
        "atr": lambda bars: {"atr": ind.calculate_atr(bars, 14)},
        "ema8": lambda bars: {"ema8": ind.calculate_ema(bars, 8)},
        "ema20": lambda bars: {"ema20": ind.calculate_ema(bars, 20)},
        "ema21": lambda bars: {"ema21": ind.calculate_ema(bars, 21)},
        "ema50": lambda bars: {"ema50": ind.calculate_ema(bars, 50)},
        "ema55": lambda bars: {"ema55": ind.calculate_ema(bars, 55)},
        "ema200": lambda bars: {"ema200": ind.calculate_ema(bars, 200)},
        "sma20": lambda bars: {"sma20": ind.calculate_sma(bars, 20)},
        "adx": lambda bars: {"adx": ind.calculate_adx(bars, 14)},
        "cci": lambda bars: {"cci": ind.calculate_cci(bars, 20)},
        "willr": lambda bars: {"willr": ind.calculate_williams_r(bars, 14)},
        "bollinger": bollinger,
        "stochastic": stochastic,
    }


def _trend_builders() -> dict[str, Callable[[list[Bar]], dict[str, list[float]]]]:
    return {
        "ema200": lambda bars: {"ema200": ind.calculate_ema(bars, 200)},
        "adx": lambda bars: {"adx": ind.calculate_adx(bars, 14)},
    }


def build_series(
    bars: list[Bar],
    builders: dict[str, Callable[[list[Bar]], dict[str, list[float]]]],
) -> tuple[dict[str, list[float]], list[str]]:
    """Run each builder; a builder lacking data is reported, not fatal.

    Returns ``(series, errors)``.
    """
    series: dict[str, list[float]] = {}
    errors: list[str] = []
    for name, build in builders.items():
        try:
            series.update(build(bars))
        except ValueError as exc:
            errors.append(f"{name}: {exc}")
    return series, errors


class CandleIndicatorProvider:
    """Fetches entry and trend candles, then computes indicator series.

    Args:
        client: Candle source.
        instruments: Maps trading symbols to candle-source names.
        entry_count: Entry-timeframe candles to request.
        trend_count: Trend-timeframe candles to request.
    """

    def __init__(
        self,
        client: CandleClient,
        instruments: StaticInstrumentProvider,
        entry_count: int = 300,
        trend_count: int = 250,
    ) -> None:
        self._client = client
        self._instruments = instruments
        self._entry_count = entry_count
        self._trend_count = trend_count

    async def get_indicators(self, symbol: str, style: str) -> IndicatorData:
        """Fetch and compute everything strategies of *style* may need.

        Raises:
            ValueError: *symbol* is not a known instrument or *style* is
                not recognised.
            httpx.HTTPError: the candle source failed after retries.
        """
        spec = self._instruments.get_spec(symbol)
        if spec is None:
            raise ValueError(f"Unknown instrument '{symbol}'")
        if style not in TIMEFRAMES:
            raise ValueError(f"Unknown style '{style}'")

        entry_interval, trend_interval = TIMEFRAMES[style]
        bars = await self._client.fetch_candles(
            spec.data_symbol, entry_interval, self._entry_count
        )
        trend_bars = await self._client.fetch_candles(
            spec.data_symbol, trend_interval, self._trend_count
        )

        series, errors = build_series(bars, _entry_builders())
        trend_series, trend_errors = build_series(trend_bars, _trend_builders())
        errors.extend(f"trend {e}" for e in trend_errors)
        if errors:
            logger.debug("%s indicator gaps: %s", symbol, "; ".join(errors))

        return IndicatorData(
            symbol=spec.symbol,
            style=style,
            entry_interval=entry_interval,
            bars=bars,
            series=series,
            trend_interval=trend_interval,
            trend_bars=trend_bars,
            trend_series=trend_series,
            errors=errors,
        )
