"""Hand-built market scenarios shared by strategy and engine tests."""

from datetime import datetime, timedelta, timezone

from tradedesk.models.market import Bar, IndicatorData

# 14:10 UTC: London/New York overlap, entry bar opened 10 minutes ago.
NOW = datetime(2026, 3, 10, 14, 10, tzinfo=timezone.utc)
ENTRY_OPEN = NOW - timedelta(minutes=10)


def flat_bars(count: int, price: float = 1.0860, end: datetime = ENTRY_OPEN) -> list[Bar]:
    """*count* hourly bars ending with an entry bar that opens at *end*."""
    start = end - timedelta(hours=count - 1)
    return [
        Bar(
            timestamp=start + timedelta(hours=i),
            open=price,
            high=price + 0.0005,
            low=price - 0.0005,
            close=price - 0.0002,
        )
        for i in range(count)
    ]


def rsi_bounce_data(
    symbol: str = "EURUSD",
    count: int = 60,
    atr_history: float = 0.0012,
    end: datetime = ENTRY_OPEN,
) -> IndicatorData:
    """RSI hooks from 22 to 25 at the lower band; entry opens at 1.0850.

    The swing low (1.0840) sits two bars before entry.  ATR at the signal
    bar is 0.0012; earlier readings are *atr_history*.
    """
    bars = flat_bars(count, end=end)
    prev, sig, entry = count - 3, count - 2, count - 1
    bars[prev] = Bar(bars[prev].timestamp, 1.0856, 1.0858, 1.0840, 1.0844)
    bars[sig] = Bar(bars[sig].timestamp, 1.0843, 1.0852, 1.0841, 1.0849)
    bars[entry] = Bar(bars[entry].timestamp, 1.0850, 1.0851, 1.0849, 1.0850)

    rsi = [50.0] * count
    rsi[prev] = 22.0
    rsi[sig] = 25.0
    atr = [atr_history] * count
    atr[sig] = 0.0012
    atr[entry] = 0.0012

    return IndicatorData(
        symbol=symbol,
        style="intraday",
        entry_interval="H1",
        bars=bars,
        series={
            "rsi": rsi,
            "atr": atr,
            "bb_upper": [1.0875] * count,
            "bb_middle": [1.0860] * count,
            "bb_lower": [1.0845] * count,
            "sma20": [1.0845] * count,
        },
    )


def cci_cross_data(count: int = 260) -> IndicatorData:
    """CCI climbs from -150 through zero; price above EMA200."""
    bars = flat_bars(count)
    sig = count - 2
    cci = [0.0] * count
    cci[sig - 2] = -150.0
    cci[sig - 1] = -20.0
    cci[sig] = 30.0
    return IndicatorData(
        symbol="EURUSD",
        style="intraday",
        entry_interval="H1",
        bars=bars,
        series={
            "cci": cci,
            "ema200": [1.0800] * count,
            "atr": [0.0012] * count,
        },
    )


def triple_ema_data(count: int = 80) -> IndicatorData:
    """EMA8 > EMA21 > EMA55; the signal bar dips to EMA21 and closes above."""
    bars = flat_bars(count)
    return IndicatorData(
        symbol="EURUSD",
        style="intraday",
        entry_interval="H1",
        bars=bars,
        series={
            "ema8": [1.0862] * count,
            "ema21": [1.0857] * count,
            "ema55": [1.0850] * count,
            "atr": [0.0010] * count,
        },
    )


def williams_data(count: int = 80) -> IndicatorData:
    """Williams %R at -95 then -85; closes sit above EMA50."""
    bars = flat_bars(count)
    sig = count - 2
    willr = [-50.0] * count
    willr[sig - 1] = -95.0
    willr[sig] = -85.0
    return IndicatorData(
        symbol="EURUSD",
        style="intraday",
        entry_interval="H1",
        bars=bars,
        series={
            "willr": willr,
            "ema50": [1.0850] * count,
            "atr": [0.0010] * count,
        },
    )


def break_retest_data(count: int = 120) -> IndicatorData:
    """Higher highs and lows, a break of 1.0840 and an accepted retest.

    Swings: high 1.0830, low 1.0770, high 1.0840, low 1.0780.  The break
    closes at 1.0852 and the signal bar retests down to 1.0838.
    """
    bars = flat_bars(count, price=1.0800)
    sig = count - 2

    def spike(idx: int, high: float = 1.0805, low: float = 1.0795) -> None:
        bars[idx] = Bar(bars[idx].timestamp, 1.0800, high, low, 1.0800)

    spike(sig - 38, high=1.0830)
    spike(sig - 30, low=1.0770)
    spike(sig - 22, high=1.0840)
    spike(sig - 14, low=1.0780)

    shapes = [
        (1.0800, 1.0822, 1.0799, 1.0820),
        (1.0820, 1.0840, 1.0818, 1.0838),
        (1.0838, 1.0856, 1.0836, 1.0852),
        (1.0852, 1.0854, 1.0845, 1.0846),
        (1.0846, 1.0848, 1.0842, 1.0844),
        (1.0846, 1.0850, 1.0838, 1.0849),
        (1.0849, 1.0851, 1.0848, 1.0850),
    ]
    for offset, (o, h, l, c) in enumerate(shapes):
        idx = sig - 5 + offset
        bars[idx] = Bar(bars[idx].timestamp, o, h, l, c)

    return IndicatorData(
        symbol="EURUSD",
        style="intraday",
        entry_interval="H1",
        bars=bars,
        series={"atr": [0.0010] * count},
    )


class FakeProvider:
    """IndicatorProvider returning canned data, or raising per symbol."""

    def __init__(self, data: dict, failures: dict | None = None) -> None:
        self._data = data
        self._failures = failures or {}
        self.calls: list[tuple[str, str]] = []

    async def get_indicators(self, symbol: str, style: str) -> IndicatorData:
        self.calls.append((symbol, style))
        if symbol in self._failures:
            raise self._failures[symbol]
        return self._data[symbol]
