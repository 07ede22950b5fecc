"""Decision cache — short-lived memo of per-symbol scan results.

Actionable decisions and no-trade/blocked decisions live in separate
buckets with their own TTLs, so a quiet market is re-checked sooner
than a live signal is recomputed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from tradedesk.models.decision import Decision

logger = logging.getLogger("tradedesk.cache")

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_NO_TRADE_TTL_SECONDS = 120.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _CacheEntry:
    decision: Decision
    strategy_id: str
    expires_at: datetime


class DecisionCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        no_trade_ttl_seconds: float = DEFAULT_NO_TRADE_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._no_trade_ttl = timedelta(seconds=no_trade_ttl_seconds)
        self._now = clock or _utc_now
        self._entries: dict[str, _CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _keys(symbol: str, strategy_id: str) -> tuple[str, str]:
        return (
            f"decision:{symbol}:{strategy_id}",
            f"no-trade:{symbol}:{strategy_id}",
        )

    def get(self, symbol: str, strategy_id: str) -> Optional[Decision]:
        """Return a live cached decision, checking the actionable bucket first."""
        now = self._now()
        for key in self._keys(symbol, strategy_id):
            entry = self._entries.get(key)
            if entry is None:
                continue
            if now >= entry.expires_at:
                del self._entries[key]
                continue
            self._hits += 1
            logger.debug("Cache hit %s", key)
            return entry.decision
        self._misses += 1
        return None

    def put(self, decision: Decision) -> None:
        """Store *decision* in the bucket matching its direction.

        Writing one bucket clears the other so a symbol never has both.
        """
        actionable_key, no_trade_key = self._keys(decision.symbol, decision.strategy_id)
        if decision.is_actionable:
            key, other, ttl = actionable_key, no_trade_key, self._ttl
        else:
            key, other, ttl = no_trade_key, actionable_key, self._no_trade_ttl
        self._entries.pop(other, None)
        self._entries[key] = _CacheEntry(
            decision=decision,
            strategy_id=decision.strategy_id,
            expires_at=self._now() + ttl,
        )

    def cleanup(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._now()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self, strategy_id: Optional[str] = None) -> int:
        """Clear everything, or only entries for *strategy_id*."""
        if strategy_id is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            doomed = [k for k, e in self._entries.items() if e.strategy_id == strategy_id]
            for key in doomed:
                del self._entries[key]
            removed = len(doomed)
        logger.info("Cleared %d cached decision(s)", removed)
        return removed

    def stats(self) -> dict:
        lookups = self._hits + self._misses
        actionable = sum(1 for k in self._entries if k.startswith("decision:"))
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "size": len(self._entries),
            "actionable": actionable,
            "no_trade": len(self._entries) - actionable,
        }
