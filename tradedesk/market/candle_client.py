"""OANDA v20 REST candle client (read-only).

Fetches mid-price candles for the indicator provider.  No account or
order endpoints are used.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from tradedesk.config import Config
from tradedesk.market.rate_limiter import TokenBucket
from tradedesk.models.market import Bar

logger = logging.getLogger("tradedesk.candles")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

# Interval name → OANDA granularity
GRANULARITY: dict[str, str] = {
    "H1": "H1",
    "H4": "H4",
    "D1": "D",
}


def parse_candle_time(raw: str) -> datetime:
    """Parse OANDA RFC3339 timestamps (nanosecond precision) to aware UTC."""
    return datetime.fromisoformat(raw[:19]).replace(tzinfo=timezone.utc)


class CandleClient:
    """Async client for the OANDA ``/v3/instruments/{name}/candles`` endpoint.

    Args:
        config: Application config providing the token and environment.
        retry_base_delay: Seconds before the first retry (tests pass 0).
        limiter: Shared request budget; built from
            ``config.candle_requests_per_second`` when omitted.
    """

    def __init__(
        self,
        config: Config,
        retry_base_delay: float = _RETRY_BASE_DELAY,
        limiter: Optional[TokenBucket] = None,
    ) -> None:
        self._base_url = config.candle_base_url
        self._retry_base_delay = retry_base_delay
        if limiter is None:
            rate = config.candle_requests_per_second
            limiter = TokenBucket(capacity=max(1, int(rate)), refill_per_second=rate)
        self._limiter = limiter
        self._headers = {
            "Authorization": f"Bearer {config.oanda_api_token}",
            "Content-Type": "application/json",
        }

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _get_with_retry(self, url: str, params: dict) -> httpx.Response:
        """GET with exponential-backoff retry.

        Every attempt first takes a token from the limiter.  Retries on
        transient server errors (502, 503, 504) and rate-limits (429).
        Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            delay = self._retry_base_delay * (2 ** attempt)
            await self._limiter.acquire()
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(
                        url, headers=self._headers, params=params, timeout=30.0,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    logger.warning(
                        "Candle GET %s returned %d, retry %d/%d in %.1fs",
                        url, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                logger.warning(
                    "Candle GET %s transport error (%s), retry %d/%d in %.1fs",
                    url, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    # ── Candle data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        instrument: str,
        interval: str,
        count: int = 300,
    ) -> list[Bar]:
        """Fetch candles, oldest first.

        The last candle is normally still forming; it is kept because it
        serves as the entry bar.

        Args:
            instrument: OANDA name, e.g. ``"EUR_USD"``.
            interval: ``"H1"``, ``"H4"`` or ``"D1"``.
            count: number of candles to request (max 5000).
        """
        if interval not in GRANULARITY:
            raise ValueError(f"Unsupported interval '{interval}'")

        url = f"{self._base_url}/v3/instruments/{instrument}/candles"
        params = {
            "granularity": GRANULARITY[interval],
            "count": count,
            "price": "M",
        }
        resp = await self._get_with_retry(url, params)

        bars: list[Bar] = []
        for c in resp.json().get("candles", []):
            mid = c["mid"]
            bars.append(
                Bar(
                    timestamp=parse_candle_time(c["time"]),
                    open=float(mid["o"]),
                    high=float(mid["h"]),
                    low=float(mid["l"]),
                    close=float(mid["c"]),
                    volume=float(c.get("volume", 0)),
                )
            )
        return bars
