"""Technical indicator series — ATR, EMA, SMA, RSI, ADX, Bollinger, Stochastic, CCI, Williams %R.

Pure functions, no I/O.  Every function returns a list the same length as
*bars*; positions before the indicator is ready hold ``float('nan')``,
which ``align_series`` later turns into ``None``.
"""

import math

import numpy as np

from tradedesk.models.market import Bar

_NAN = float("nan")


def _require(bars: list[Bar], needed: int, label: str) -> None:
    if len(bars) < needed:
        raise ValueError(
            f"Need at least {needed} candles for {label}, got {len(bars)}"
        )


# ── Moving averages ──────────────────────────────────────────────────────


def calculate_ema(bars: list[Bar], period: int) -> list[float]:
    """Exponential Moving Average of closes.

    ``EMA_today = close × k + EMA_yesterday × (1 - k)`` with
    ``k = 2 / (period + 1)``, seeded with the SMA of the first *period*
    closes.

    Raises ``ValueError`` if fewer than *period* candles are provided.
    """
    _require(bars, period, f"EMA({period})")

    k = 2.0 / (period + 1)
    closes = [b.close for b in bars]
    ema: list[float] = [_NAN] * len(closes)
    ema[period - 1] = sum(closes[:period]) / period
    for i in range(period, len(closes)):
        ema[i] = closes[i] * k + ema[i - 1] * (1 - k)
    return ema


def calculate_sma(bars: list[Bar], period: int) -> list[float]:
    """Simple moving average of closes."""
    _require(bars, period, f"SMA({period})")

    closes = np.array([b.close for b in bars], dtype=float)
    window = np.convolve(closes, np.ones(period) / period, mode="valid")
    return [_NAN] * (period - 1) + window.tolist()


# ── Volatility ───────────────────────────────────────────────────────────


def _true_ranges(bars: list[Bar]) -> list[float]:
    ranges = [bars[0].high - bars[0].low]
    for i in range(1, len(bars)):
        prev_close = bars[i - 1].close
        ranges.append(
            max(
                bars[i].high - bars[i].low,
                abs(bars[i].high - prev_close),
                abs(bars[i].low - prev_close),
            )
        )
    return ranges


def calculate_atr(bars: list[Bar], period: int = 14) -> list[float]:
    """Wilder-smoothed Average True Range series.

    ``TR = max(high - low, |high - prev_close|, |low - prev_close|)``;
    the first ATR is the mean of *period* true ranges (from the second
    bar on), then ``ATR = (prev × (period - 1) + TR) / period``.
    """
    _require(bars, period + 1, f"ATR({period})")

    tr = _true_ranges(bars)
    atr: list[float] = [_NAN] * len(bars)
    atr[period] = sum(tr[1 : period + 1]) / period
    for i in range(period + 1, len(bars)):
        atr[i] = (atr[i - 1] * (period - 1) + tr[i]) / period
    return atr


def calculate_bollinger(
    bars: list[Bar],
    period: int = 20,
    std_dev: float = 2.0,
) -> tuple[list[float], list[float], list[float]]:
    """Bollinger Bands around SMA(close, *period*).

    Returns ``(upper, middle, lower)``.
    """
    _require(bars, period, f"Bollinger({period})")

    closes = [b.close for b in bars]
    n = len(closes)
    upper: list[float] = [_NAN] * n
    middle: list[float] = [_NAN] * n
    lower: list[float] = [_NAN] * n

    for i in range(period - 1, n):
        window = closes[i - period + 1 : i + 1]
        sma = sum(window) / period
        sigma = math.sqrt(sum((x - sma) ** 2 for x in window) / period)
        middle[i] = sma
        upper[i] = sma + std_dev * sigma
        lower[i] = sma - std_dev * sigma

    return upper, middle, lower


# ── Oscillators ──────────────────────────────────────────────────────────


def calculate_rsi(bars: list[Bar], period: int = 14) -> list[float]:
    """Wilder's Relative Strength Index.

    Requires at least ``period + 1`` candles.
    """
    _require(bars, period + 1, f"RSI({period})")

    closes = [b.close for b in bars]
    deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    rsi: list[float] = [_NAN] * len(bars)
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    def _rsi_from_avgs(ag: float, al: float) -> float:
        if al == 0:
            return 100.0
        return 100.0 - 100.0 / (1.0 + ag / al)

    rsi[period] = _rsi_from_avgs(avg_gain, avg_loss)
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        rsi[i + 1] = _rsi_from_avgs(avg_gain, avg_loss)

    return rsi


def calculate_stochastic(
    bars: list[Bar],
    k_period: int = 14,
    d_period: int = 3,
) -> tuple[list[float], list[float]]:
    """Stochastic oscillator ``(%K, %D)``.

    ``%K = 100 × (close - lowest_low) / (highest_high - lowest_low)`` over
    *k_period*; ``%D`` is the SMA of %K over *d_period*.  A flat window
    reads 50.
    """
    _require(bars, k_period + d_period - 1, f"Stochastic({k_period},{d_period})")

    highs = np.array([b.high for b in bars], dtype=float)
    lows = np.array([b.low for b in bars], dtype=float)
    closes = np.array([b.close for b in bars], dtype=float)
    n = len(bars)

    k = np.full(n, np.nan)
    for i in range(k_period - 1, n):
        hh = highs[i - k_period + 1 : i + 1].max()
        ll = lows[i - k_period + 1 : i + 1].min()
        span = hh - ll
        k[i] = 50.0 if span == 0 else 100.0 * (closes[i] - ll) / span

    d = np.full(n, np.nan)
    for i in range(k_period + d_period - 2, n):
        d[i] = k[i - d_period + 1 : i + 1].mean()

    return k.tolist(), d.tolist()


def calculate_cci(bars: list[Bar], period: int = 20) -> list[float]:
    """Commodity Channel Index on typical price.

    ``CCI = (TP - SMA(TP)) / (0.015 × mean_deviation)``.
    """
    _require(bars, period, f"CCI({period})")

    tp = np.array([(b.high + b.low + b.close) / 3.0 for b in bars], dtype=float)
    cci = np.full(len(bars), np.nan)
    for i in range(period - 1, len(bars)):
        window = tp[i - period + 1 : i + 1]
        mean = window.mean()
        mean_dev = np.abs(window - mean).mean()
        cci[i] = 0.0 if mean_dev == 0 else (tp[i] - mean) / (0.015 * mean_dev)
    return cci.tolist()


def calculate_williams_r(bars: list[Bar], period: int = 14) -> list[float]:
    """Williams %R over *period*, from -100 (at the low) to 0 (at the high).

    A flat window reads -50.
    """
    _require(bars, period, f"Williams %R({period})")

    highs = np.array([b.high for b in bars], dtype=float)
    lows = np.array([b.low for b in bars], dtype=float)
    closes = np.array([b.close for b in bars], dtype=float)

    willr = np.full(len(bars), np.nan)
    for i in range(period - 1, len(bars)):
        hh = highs[i - period + 1 : i + 1].max()
        ll = lows[i - period + 1 : i + 1].min()
        span = hh - ll
        willr[i] = -50.0 if span == 0 else -100.0 * (hh - closes[i]) / span
    return willr.tolist()


# ── Trend strength ───────────────────────────────────────────────────────


def calculate_adx(bars: list[Bar], period: int = 14) -> list[float]:
    """Average Directional Index.

    +DM/−DM and TR are Wilder-smoothed over *period*, DX is derived from
    the directional indices, and ADX is the Wilder-smoothed DX.

    Requires at least ``2 × period + 1`` candles.
    """
    _require(bars, 2 * period + 1, f"ADX({period})")

    n = len(bars)
    plus_dm_raw: list[float] = [0.0]
    minus_dm_raw: list[float] = [0.0]
    tr_raw: list[float] = [0.0]

    for i in range(1, n):
        up_move = bars[i].high - bars[i - 1].high
        down_move = bars[i - 1].low - bars[i].low
        plus_dm_raw.append(up_move if (up_move > down_move and up_move > 0) else 0.0)
        minus_dm_raw.append(
            down_move if (down_move > up_move and down_move > 0) else 0.0
        )
        prev_close = bars[i - 1].close
        tr_raw.append(
            max(
                bars[i].high - bars[i].low,
                abs(bars[i].high - prev_close),
                abs(bars[i].low - prev_close),
            )
        )

    s_pdm = sum(plus_dm_raw[1 : period + 1])
    s_mdm = sum(minus_dm_raw[1 : period + 1])
    s_tr = sum(tr_raw[1 : period + 1])

    def _dx(pdm: float, mdm: float, tr: float) -> float:
        if tr == 0:
            return 0.0
        plus_di = 100.0 * pdm / tr
        minus_di = 100.0 * mdm / tr
        di_sum = plus_di + minus_di
        if di_sum == 0:
            return 0.0
        return 100.0 * abs(plus_di - minus_di) / di_sum

    dx_values = [_dx(s_pdm, s_mdm, s_tr)]
    for i in range(period + 1, n):
        s_pdm = s_pdm - s_pdm / period + plus_dm_raw[i]
        s_mdm = s_mdm - s_mdm / period + minus_dm_raw[i]
        s_tr = s_tr - s_tr / period + tr_raw[i]
        dx_values.append(_dx(s_pdm, s_mdm, s_tr))

    adx: list[float] = [_NAN] * n
    adx_prev = sum(dx_values[:period]) / period
    adx[2 * period - 1] = adx_prev
    for j in range(period, len(dx_values)):
        adx_prev = (adx_prev * (period - 1) + dx_values[j]) / period
        adx[period + j] = adx_prev

    return adx
