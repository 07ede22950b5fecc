"""Market data models — bars, aligned indicator series, per-symbol bundles.

Indicator readings are either a float or ``None`` (missing).  A reading of
``0.0`` is a real value; presence is always tested with ``is None``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Literal, Optional

logger = logging.getLogger("tradedesk.market")

Style = Literal["intraday", "swing"]
Interval = Literal["H1", "H4", "D1"]

# Series with a value per bar; ``None`` marks a missing reading.
Series = list[Optional[float]]


@dataclass(frozen=True)
class Bar:
    """A single OHLCV candle.  ``timestamp`` is the bar's open time (UTC)."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


def to_value(raw) -> Optional[float]:
    """Normalise a raw indicator reading to ``float`` or ``None``.

    ``None``, NaN, infinities and non-numeric input are missing.
    """
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def align_series(values: Iterable, length: int) -> Series:
    """Return *values* cleaned and aligned 1:1 with *length* bars.

    A longer series keeps its newest *length* values; a shorter one is
    front-padded with ``None`` so that the last value always lines up
    with the last bar.
    """
    cleaned = [to_value(v) for v in values]
    if len(cleaned) > length:
        return cleaned[len(cleaned) - length:]
    if len(cleaned) < length:
        return [None] * (length - len(cleaned)) + cleaned
    return cleaned


@dataclass
class IndicatorData:
    """Bars plus named indicator series for one symbol and style.

    Series are aligned against their bars on construction, so strategies
    can index them with the same index as the bars.
    """

    symbol: str
    style: Style
    entry_interval: Interval
    bars: list[Bar]
    series: dict[str, Series] = field(default_factory=dict)
    trend_interval: Optional[Interval] = None
    trend_bars: list[Bar] = field(default_factory=list)
    trend_series: dict[str, Series] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.series = self._align(self.series, len(self.bars), "entry")
        self.trend_series = self._align(
            self.trend_series, len(self.trend_bars), "trend"
        )

    def _align(self, raw: dict, length: int, label: str) -> dict[str, Series]:
        aligned: dict[str, Series] = {}
        for name, values in raw.items():
            values = list(values)
            if len(values) != length:
                logger.debug(
                    "%s %s series '%s' length %d != %d bars, realigning",
                    self.symbol, label, name, len(values), length,
                )
            aligned[name] = align_series(values, length)
        return aligned

    # ── Accessors ────────────────────────────────────────────────────────

    def value(self, name: str, index: int) -> Optional[float]:
        """Reading of entry-timeframe series *name* at bar *index*."""
        values = self.series.get(name)
        if values is None or index < 0 or index >= len(values):
            return None
        return values[index]

    def trend_value(self, name: str, index: int) -> Optional[float]:
        """Reading of trend-timeframe series *name* at trend bar *index*."""
        values = self.trend_series.get(name)
        if values is None or index < 0 or index >= len(values):
            return None
        return values[index]

    def has(self, names: Iterable[str]) -> bool:
        """True when every named entry series is present."""
        return all(name in self.series for name in names)

    @property
    def signal_index(self) -> int:
        return len(self.bars) - 2

    @property
    def entry_index(self) -> int:
        return len(self.bars) - 1


def all_present(*values: Optional[float]) -> bool:
    """True when no value is missing.  Zero counts as present."""
    return all(v is not None for v in values)
