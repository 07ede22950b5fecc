"""Tests for the OANDA candle client, its rate limiter and the candle-backed indicator provider."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from tradedesk.config import Config
from tradedesk.market.candle_client import CandleClient, parse_candle_time
from tradedesk.market.instruments import StaticInstrumentProvider
from tradedesk.market.provider import CandleIndicatorProvider
from tradedesk.market.rate_limiter import RateLimitError, TokenBucket
from tradedesk.models.market import Bar


def _make_config(environment: str = "practice") -> Config:
    return Config(
        oanda_api_token="test-token",
        oanda_environment=environment,
        db_path="data/tradedesk.db",
        log_level="INFO",
        api_port=8080,
        max_concurrent_scans=3,
        scan_timeout_seconds=300,
        cache_ttl_seconds=300,
        no_trade_cache_ttl_seconds=120,
        detection_cooldown_minutes=60,
        detection_min_grade="B",
        memory_store_max_entries=1000,
        sweep_interval_seconds=300,
        default_symbols=("EURUSD",),
    )


# ── Mock OANDA responses ────────────────────────────────────────────────

MOCK_CANDLES_RESPONSE = {
    "instrument": "EUR_USD",
    "granularity": "H1",
    "candles": [
        {
            "complete": True,
            "volume": 1234,
            "time": "2026-03-10T12:00:00.000000000Z",
            "mid": {"o": "1.08500", "h": "1.08620", "l": "1.08410", "c": "1.08550"},
        },
        {
            "complete": False,
            "volume": 310,
            "time": "2026-03-10T13:00:00.000000000Z",
            "mid": {"o": "1.08550", "h": "1.08600", "l": "1.08520", "c": "1.08580"},
        },
    ],
}


def _response(status: int, url: str, payload=None) -> httpx.Response:
    return httpx.Response(
        status, json=payload or {}, request=httpx.Request("GET", url)
    )


# ── Client ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_parse_candles(monkeypatch):
    """Bars populated from mock JSON; the forming candle is kept."""
    client = CandleClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured.update(url=url, headers=headers, params=params)
        return _response(200, url, MOCK_CANDLES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    bars = await client.fetch_candles("EUR_USD", "H1", count=2)
    assert len(bars) == 2
    bar = bars[0]
    assert isinstance(bar, Bar)
    assert bar.open == pytest.approx(1.085)
    assert bar.high == pytest.approx(1.0862)
    assert bar.low == pytest.approx(1.0841)
    assert bar.close == pytest.approx(1.0855)
    assert bar.volume == 1234
    assert bar.timestamp == datetime(2026, 3, 10, 12, tzinfo=timezone.utc)

    assert captured["url"].endswith("/v3/instruments/EUR_USD/candles")
    assert captured["params"] == {"granularity": "H1", "count": 2, "price": "M"}
    assert captured["headers"]["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_daily_granularity(monkeypatch):
    client = CandleClient(_make_config())
    seen = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        seen.append(params["granularity"])
        return _response(200, url, {"candles": []})

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.fetch_candles("EUR_USD", "D1") == []
    assert seen == ["D"]


@pytest.mark.asyncio
async def test_unsupported_interval():
    with pytest.raises(ValueError, match="M5"):
        await CandleClient(_make_config()).fetch_candles("EUR_USD", "M5")


@pytest.mark.asyncio
async def test_retries_transient_errors(monkeypatch):
    """503 then 200: the second attempt succeeds."""
    client = CandleClient(_make_config(), retry_base_delay=0)
    statuses = iter([503, 200])

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(next(statuses), url, MOCK_CANDLES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    bars = await client.fetch_candles("EUR_USD", "H1")
    assert len(bars) == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(monkeypatch):
    client = CandleClient(_make_config(), retry_base_delay=0)
    attempts = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        attempts.append(url)
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.ConnectError):
        await client.fetch_candles("EUR_USD", "H1")
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_client_errors_not_retried(monkeypatch):
    client = CandleClient(_make_config(), retry_base_delay=0)
    attempts = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        attempts.append(url)
        return _response(401, url)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.HTTPStatusError):
        await client.fetch_candles("EUR_USD", "H1")
    assert len(attempts) == 1


def test_environment_switching():
    """Practice URL for practice, live URL for live."""
    assert CandleClient(_make_config("practice"))._base_url == "https://api-fxpractice.oanda.com"
    assert CandleClient(_make_config("live"))._base_url == "https://api-fxtrade.oanda.com"


def test_parse_candle_time_drops_nanoseconds():
    parsed = parse_candle_time("2026-03-10T13:00:00.123456789Z")
    assert parsed == datetime(2026, 3, 10, 13, tzinfo=timezone.utc)


# ── Indicator provider ──────────────────────────────────────────────────


def _make_bars(count: int, interval: timedelta) -> list[Bar]:
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return [
        Bar(start + interval * i, 1.08 + i * 1e-5, 1.081 + i * 1e-5, 1.079 + i * 1e-5, 1.0805 + i * 1e-5)
        for i in range(count)
    ]


@pytest.mark.asyncio
async def test_provider_fetches_entry_and_trend():
    client = AsyncMock()
    client.fetch_candles.side_effect = [
        _make_bars(300, timedelta(hours=1)),
        _make_bars(250, timedelta(hours=4)),
    ]
    provider = CandleIndicatorProvider(client, StaticInstrumentProvider())

    data = await provider.get_indicators("eurusd", "intraday")

    assert data.symbol == "EURUSD"
    assert data.entry_interval == "H1"
    assert data.trend_interval == "H4"
    assert len(data.bars) == 300
    assert {"rsi", "atr", "bb_lower", "ema200", "cci"} <= set(data.series)
    assert "ema200" in data.trend_series
    first_call = client.fetch_candles.await_args_list[0]
    assert first_call.args == ("EUR_USD", "H1", 300)


@pytest.mark.asyncio
async def test_provider_rejects_unknown_symbol():
    provider = CandleIndicatorProvider(AsyncMock(), StaticInstrumentProvider())
    with pytest.raises(ValueError, match="Unknown instrument"):
        await provider.get_indicators("FOOBAR", "intraday")


# ── Rate limiter ────────────────────────────────────────────────────────


class _FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_bucket_allows_burst_then_waits():
    fake = _FakeTime()
    bucket = TokenBucket(capacity=2, refill_per_second=4.0, clock=fake, sleep=fake.sleep)
    assert await bucket.acquire() == 0
    assert await bucket.acquire() == 0
    waited = await bucket.acquire()
    assert waited == pytest.approx(0.25)
    assert bucket.state()["available"] == 0


@pytest.mark.asyncio
async def test_bucket_refills_over_time():
    fake = _FakeTime()
    bucket = TokenBucket(capacity=3, refill_per_second=1.0, clock=fake, sleep=fake.sleep)
    for _ in range(3):
        await bucket.acquire()
    fake.now += 10
    assert bucket.state()["available"] == 3


@pytest.mark.asyncio
async def test_bucket_timeout():
    fake = _FakeTime()
    bucket = TokenBucket(capacity=1, refill_per_second=0.1, clock=fake, sleep=fake.sleep)
    await bucket.acquire()
    with pytest.raises(RateLimitError, match="No request slot"):
        await bucket.acquire(timeout=5)
    assert fake.sleeps == []


@pytest.mark.asyncio
async def test_bucket_refuses_when_queue_full():
    bucket = TokenBucket(capacity=1, refill_per_second=1.0, max_waiters=0)
    with pytest.raises(RateLimitError, match="queue full"):
        await bucket.acquire()


def test_bucket_rejects_bad_settings():
    with pytest.raises(ValueError):
        TokenBucket(capacity=0, refill_per_second=1.0)


@pytest.mark.asyncio
async def test_client_takes_a_token_per_attempt(monkeypatch):
    limiter = AsyncMock()
    client = CandleClient(_make_config(), retry_base_delay=0, limiter=limiter)
    statuses = iter([429, 200])

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _response(next(statuses), url, MOCK_CANDLES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    await client.fetch_candles("EUR_USD", "H1")
    assert limiter.acquire.await_count == 2


def test_default_limiter_follows_config():
    client = CandleClient(replace(_make_config(), candle_requests_per_second=5.0))
    assert client._limiter.state()["capacity"] == 5
