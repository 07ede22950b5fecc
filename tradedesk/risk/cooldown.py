"""Signal cooldown tracker — suppresses re-emission of an equivalent signal.

One entry per ``symbol:style:strategy`` key.  A new signal on a key with
a live entry is blocked unless it reverses direction or carries a
strictly better grade.

Entries are mirrored in memory and persisted through ``CooldownRepo``.
If the database fails at startup or on a write, the tracker logs a
warning and keeps running from memory alone (degraded mode).
"""

from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from tradedesk.models.cooldown import CooldownEntry, cooldown_key
from tradedesk.models.decision import grade_rank
from tradedesk.repos.cooldown_repo import CooldownRepo

logger = logging.getLogger("tradedesk.cooldown")

DEFAULT_DURATIONS: dict[str, timedelta] = {
    "intraday": timedelta(hours=4),
    "swing": timedelta(hours=24),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CooldownCheck:
    allowed: bool
    reason: Optional[str] = None
    remaining_minutes: int = 0
    existing: Optional[CooldownEntry] = None


class CooldownTracker:
    """Per-key cooldown state with durable backing.

    Args:
        repo: Durable store, or ``None`` for memory-only operation.
        clock: Returns the current UTC time (tests inject a fixed clock).
        durations: Style → default cooldown length.
    """

    def __init__(
        self,
        repo: Optional[CooldownRepo] = None,
        clock: Optional[Callable[[], datetime]] = None,
        durations: Optional[dict[str, timedelta]] = None,
    ) -> None:
        self._repo = repo
        self._now = clock or _utc_now
        self._durations = durations or DEFAULT_DURATIONS
        self._entries: dict[str, CooldownEntry] = {}
        self._degraded = repo is None

    # ── Lifecycle ────────────────────────────────────────────────────────

    def init(self) -> None:
        """Restore live entries from the durable store."""
        if self._repo is None:
            return
        try:
            restored = self._repo.load_active(self._now())
        except sqlite3.Error as exc:
            self._enter_degraded("load", exc)
            return
        for entry in restored:
            self._entries[entry.key] = entry
        logger.info("Restored %d cooldown entr(ies) from storage", len(restored))

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _enter_degraded(self, operation: str, exc: Exception) -> None:
        if not self._degraded:
            logger.warning(
                "Cooldown storage %s failed (%s), continuing in memory only",
                operation, exc,
            )
        self._degraded = True

    # ── Gate ─────────────────────────────────────────────────────────────

    def check(
        self,
        symbol: str,
        style: str,
        strategy_id: str,
        direction: str,
        grade: str,
    ) -> CooldownCheck:
        """Decide whether a new signal may pass.

        Allowed when there is no live entry, when the direction flips, or
        when *grade* ranks strictly above the stored grade.  ``none``
        directions and ``no-trade`` grades pass straight through.
        """
        if direction == "none" or grade == "no-trade":
            return CooldownCheck(allowed=True)

        key = cooldown_key(symbol, style, strategy_id)
        entry = self._entries.get(key)
        if entry is None:
            return CooldownCheck(allowed=True)

        now = self._now()
        if now >= entry.expires_at:
            self._evict(key)
            return CooldownCheck(allowed=True, reason="Previous cooldown expired")

        if direction != entry.direction:
            return CooldownCheck(
                allowed=True,
                reason=f"Direction changed: {entry.direction} -> {direction}",
                existing=entry,
            )

        if grade_rank(grade) > grade_rank(entry.grade):
            return CooldownCheck(
                allowed=True,
                reason=f"Grade upgraded: {entry.grade} -> {grade}",
                existing=entry,
            )

        remaining = math.ceil((entry.expires_at - now).total_seconds() / 60)
        return CooldownCheck(
            allowed=False,
            reason=(
                f"Cooldown active: {remaining}min remaining "
                f"({entry.grade} {entry.direction})"
            ),
            remaining_minutes=remaining,
            existing=entry,
        )

    def record(
        self,
        symbol: str,
        style: str,
        strategy_id: str,
        direction: str,
        grade: str,
        expires_at: Optional[datetime] = None,
    ) -> CooldownEntry:
        """Start (or restart) the cooldown window for a passing signal.

        An explicit *expires_at* wins over the style default.
        """
        now = self._now()
        if expires_at is None:
            expires_at = now + self._durations.get(style, DEFAULT_DURATIONS["intraday"])

        entry = CooldownEntry(
            symbol=symbol,
            style=style,
            strategy_id=strategy_id,
            direction=direction,
            grade=grade,
            created_at=now,
            expires_at=expires_at,
        )
        self._entries[entry.key] = entry

        if not self._degraded:
            try:
                self._repo.upsert(entry)
            except sqlite3.Error as exc:
                self._enter_degraded("write", exc)

        logger.debug(
            "Cooldown recorded %s %s %s until %s",
            entry.key, direction, grade, expires_at.isoformat(),
        )
        return entry

    # ── Maintenance ──────────────────────────────────────────────────────

    def _evict(self, key: str) -> None:
        self._entries.pop(key, None)
        if not self._degraded:
            try:
                self._repo.delete(key)
            except sqlite3.Error as exc:
                self._enter_degraded("delete", exc)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Evict expired entries from memory and storage.

        Returns the number of in-memory entries removed.
        """
        now = now or self._now()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        if not self._degraded:
            try:
                self._repo.delete_expired(now)
            except sqlite3.Error as exc:
                self._enter_degraded("sweep", exc)
        if expired:
            logger.debug("Swept %d expired cooldown(s)", len(expired))
        return len(expired)

    def clear(self, symbol: str, style: str, strategy_id: str) -> bool:
        key = cooldown_key(symbol, style, strategy_id)
        existed = key in self._entries
        self._evict(key)
        return existed

    def clear_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        if not self._degraded:
            try:
                self._repo.delete_all()
            except sqlite3.Error as exc:
                self._enter_degraded("clear", exc)
        logger.info("Cleared %d cooldown entr(ies)", count)
        return count

    def get(self, symbol: str, style: str, strategy_id: str) -> Optional[CooldownEntry]:
        return self._entries.get(cooldown_key(symbol, style, strategy_id))

    def active_entries(self) -> list[CooldownEntry]:
        now = self._now()
        return sorted(
            (e for e in self._entries.values() if e.expires_at > now),
            key=lambda e: e.expires_at,
        )

    def stats(self) -> dict:
        active = self.active_entries()
        by_strategy: dict[str, int] = {}
        for entry in active:
            by_strategy[entry.strategy_id] = by_strategy.get(entry.strategy_id, 0) + 1
        return {
            "active": len(active),
            "by_strategy": by_strategy,
            "degraded": self._degraded,
        }
