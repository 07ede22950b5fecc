"""Tests for tradedesk.market.indicators and series building."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from tradedesk.market.indicators import (
    calculate_adx,
    calculate_atr,
    calculate_bollinger,
    calculate_cci,
    calculate_ema,
    calculate_rsi,
    calculate_sma,
    calculate_stochastic,
    calculate_williams_r,
)
from tradedesk.market.provider import _entry_builders, build_series
from tradedesk.models.market import Bar

T0 = datetime(2026, 1, 5, tzinfo=timezone.utc)


def _make_bars(closes, spread=0.001):
    return [
        Bar(T0 + timedelta(hours=i), c, c + spread, c - spread, c)
        for i, c in enumerate(closes)
    ]


class TestMovingAverages:
    def test_sma_values_and_warmup(self):
        sma = calculate_sma(_make_bars([1, 2, 3, 4, 5]), 3)
        assert math.isnan(sma[0]) and math.isnan(sma[1])
        assert sma[2:] == pytest.approx([2.0, 3.0, 4.0])

    def test_ema_seeded_with_sma(self):
        ema = calculate_ema(_make_bars([1, 2, 3, 4]), 3)
        assert ema[2] == pytest.approx(2.0)
        assert ema[3] == pytest.approx(4 * 0.5 + 2.0 * 0.5)

    def test_too_few_bars_raises(self):
        with pytest.raises(ValueError, match="EMA"):
            calculate_ema(_make_bars([1, 2]), 3)


class TestVolatility:
    def test_atr_constant_range(self):
        atr = calculate_atr(_make_bars([1.0] * 20, spread=0.001), 14)
        assert math.isnan(atr[13])
        assert atr[14] == pytest.approx(0.002)
        assert atr[-1] == pytest.approx(0.002)

    def test_bollinger_flat_market_collapses(self):
        upper, middle, lower = calculate_bollinger(_make_bars([1.5] * 25), 20)
        assert upper[-1] == pytest.approx(1.5)
        assert middle[-1] == pytest.approx(1.5)
        assert lower[-1] == pytest.approx(1.5)


class TestOscillators:
    def test_rsi_rising_market_is_100(self):
        rsi = calculate_rsi(_make_bars([1 + i * 0.01 for i in range(20)]), 14)
        assert rsi[-1] == pytest.approx(100.0)

    def test_rsi_bounded(self):
        closes = [1 + 0.01 * ((-1) ** i) * (i % 5) for i in range(40)]
        rsi = [v for v in calculate_rsi(_make_bars(closes), 14) if not math.isnan(v)]
        assert all(0 <= v <= 100 for v in rsi)

    def test_stochastic_flat_window_reads_50(self):
        k, d = calculate_stochastic(
            [Bar(T0 + timedelta(hours=i), 1, 1, 1, 1) for i in range(20)]
        )
        assert k[-1] == pytest.approx(50.0)
        assert d[-1] == pytest.approx(50.0)

    def test_cci_flat_is_zero(self):
        assert calculate_cci(_make_bars([1.2] * 25), 20)[-1] == pytest.approx(0.0)

    def test_williams_r_range(self):
        bars = _make_bars([1.0, 1.1, 1.2, 1.3, 1.2])
        willr = calculate_williams_r(bars, 3)
        assert math.isnan(willr[1])
        # Close just under the window high reads close to 0.
        assert willr[3] == pytest.approx(-100 * (1.301 - 1.3) / (1.301 - 1.099))
        assert all(-100 <= v <= 0 for v in willr[2:])

    def test_williams_r_flat_window_reads_minus_50(self):
        bars = [Bar(T0 + timedelta(hours=i), 1.0, 1.0, 1.0, 1.0) for i in range(5)]
        assert calculate_williams_r(bars, 3)[-1] == -50.0

    def test_adx_needs_two_periods(self):
        with pytest.raises(ValueError, match="ADX"):
            calculate_adx(_make_bars([1.0] * 20), 14)


class TestBuildSeries:
    def test_short_history_reports_instead_of_failing(self):
        series, errors = build_series(_make_bars([1.0] * 30), _entry_builders())
        assert "rsi" in series
        assert "bb_lower" in series
        assert "ema200" not in series
        assert any(e.startswith("ema200") for e in errors)
