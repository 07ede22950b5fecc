"""Cooldown repository — SQLite persistence for cooldown entries."""

from datetime import datetime

from tradedesk.models.cooldown import CooldownEntry
from tradedesk.repos.db import from_db_time, get_connection, to_db_time


class CooldownRepo:
    """Data access layer for the ``cooldowns`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def upsert(self, entry: CooldownEntry) -> None:
        """Insert or replace the entry for its key."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO cooldowns
                    (key, symbol, style, strategy_id, direction, grade,
                     created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    direction = excluded.direction,
                    grade = excluded.grade,
                    created_at = excluded.created_at,
                    expires_at = excluded.expires_at
                """,
                (
                    entry.key, entry.symbol, entry.style, entry.strategy_id,
                    entry.direction, entry.grade,
                    to_db_time(entry.created_at), to_db_time(entry.expires_at),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = get_connection(self._db_path)
        try:
            conn.execute("DELETE FROM cooldowns WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def delete_all(self) -> int:
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute("DELETE FROM cooldowns")
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    def delete_expired(self, now: datetime) -> int:
        """Remove entries whose ``expires_at`` is at or before *now*."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                "DELETE FROM cooldowns WHERE expires_at <= ?", (to_db_time(now),)
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def load_active(self, now: datetime) -> list[CooldownEntry]:
        """Return every entry that has not yet expired."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM cooldowns WHERE expires_at > ?", (to_db_time(now),)
            ).fetchall()
            return [
                CooldownEntry(
                    symbol=row["symbol"],
                    style=row["style"],
                    strategy_id=row["strategy_id"],
                    direction=row["direction"],
                    grade=row["grade"],
                    created_at=from_db_time(row["created_at"]),
                    expires_at=from_db_time(row["expires_at"]),
                )
                for row in rows
            ]
        finally:
            conn.close()
