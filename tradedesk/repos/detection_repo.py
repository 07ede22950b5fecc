"""Detection repository — SQLite persistence for the detections table."""

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Optional

from tradedesk.detection.store import summarize
from tradedesk.models.decision import TieredExit
from tradedesk.models.detection import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Detection,
    DetectionFilters,
    SweepReport,
)
from tradedesk.repos.db import from_db_time, get_connection, to_db_time

logger = logging.getLogger("tradedesk.detection")

# Terminal rows older than this are removed by ``cleanup``.
TERMINAL_RETENTION = timedelta(days=30)

_COLUMNS = (
    "id", "symbol", "strategy_id", "strategy_name", "style", "direction",
    "grade", "confidence", "entry_price", "stop_loss", "take_profit",
    "status", "first_detected_at", "last_detected_at", "detection_count",
    "cooldown_ends_at", "bar_expires_at", "status_changed_at",
    "status_reason", "created_at", "triggers", "reason_codes", "tiered_exits",
)


def _json_list(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed JSON column value: %r", raw[:80])
        return []
    return value if isinstance(value, list) else []


def _to_row(det: Detection) -> tuple:
    exits = [
        {
            "label": t.label,
            "price": t.price,
            "r_multiple": t.r_multiple,
            "close_percent": t.close_percent,
            "action": t.action,
        }
        for t in det.tiered_exits
    ]
    return (
        det.id, det.symbol, det.strategy_id, det.strategy_name, det.style,
        det.direction, det.grade, det.confidence, det.entry_price,
        det.stop_loss, det.take_profit, det.status,
        to_db_time(det.first_detected_at), to_db_time(det.last_detected_at),
        det.detection_count, to_db_time(det.cooldown_ends_at),
        to_db_time(det.bar_expires_at) if det.bar_expires_at else None,
        to_db_time(det.status_changed_at) if det.status_changed_at else None,
        det.status_reason, to_db_time(det.created_at),
        json.dumps(list(det.triggers)), json.dumps(list(det.reason_codes)),
        json.dumps(exits),
    )


def _from_row(row: sqlite3.Row) -> Detection:
    return Detection(
        id=row["id"],
        symbol=row["symbol"],
        strategy_id=row["strategy_id"],
        strategy_name=row["strategy_name"],
        style=row["style"],
        direction=row["direction"],
        grade=row["grade"],
        confidence=row["confidence"],
        entry_price=row["entry_price"],
        stop_loss=row["stop_loss"],
        take_profit=row["take_profit"],
        status=row["status"],
        first_detected_at=from_db_time(row["first_detected_at"]),
        last_detected_at=from_db_time(row["last_detected_at"]),
        detection_count=row["detection_count"],
        cooldown_ends_at=from_db_time(row["cooldown_ends_at"]),
        bar_expires_at=from_db_time(row["bar_expires_at"]),
        status_changed_at=from_db_time(row["status_changed_at"]),
        status_reason=row["status_reason"],
        created_at=from_db_time(row["created_at"]),
        triggers=tuple(_json_list(row["triggers"])),
        reason_codes=tuple(_json_list(row["reason_codes"])),
        tiered_exits=tuple(
            TieredExit(**item) for item in _json_list(row["tiered_exits"])
        ),
    )


class SqliteDetectionStore:
    """Data access layer for detection records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def create(self, detection: Detection) -> Detection:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                f"INSERT INTO detections ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                _to_row(detection),
            )
            conn.commit()
            return detection
        finally:
            conn.close()

    def update(self, detection: Detection) -> None:
        """Overwrite the mutable fields of an existing row."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE detections
                SET status = ?, status_changed_at = ?, status_reason = ?,
                    last_detected_at = ?, detection_count = ?,
                    grade = ?, confidence = ?
                WHERE id = ?
                """,
                (
                    detection.status,
                    to_db_time(detection.status_changed_at)
                    if detection.status_changed_at else None,
                    detection.status_reason,
                    to_db_time(detection.last_detected_at),
                    detection.detection_count,
                    detection.grade,
                    detection.confidence,
                    detection.id,
                ),
            )
            conn.commit()
            if cur.rowcount == 0:
                raise KeyError(f"Detection {detection.id} not found")
        finally:
            conn.close()

    def sweep(self, now: datetime) -> SweepReport:
        """Expire detections past their bar, then promote finished cool-downs."""
        report = SweepReport()
        stamp = to_db_time(now)
        active = tuple(ACTIVE_STATUSES)
        conn = get_connection(self._db_path)
        try:
            expired = conn.execute(
                f"""
                SELECT id FROM detections
                WHERE status IN ({', '.join('?' for _ in active)})
                  AND bar_expires_at IS NOT NULL AND bar_expires_at <= ?
                """,
                (*active, stamp),
            ).fetchall()
            report.expired_ids = [row["id"] for row in expired]
            for det_id in report.expired_ids:
                conn.execute(
                    """
                    UPDATE detections
                    SET status = 'expired', status_changed_at = ?,
                        status_reason = 'Entry bar expired'
                    WHERE id = ?
                    """,
                    (stamp, det_id),
                )

            promoted = conn.execute(
                """
                SELECT id FROM detections
                WHERE status = 'cooling_down' AND cooldown_ends_at <= ?
                """,
                (stamp,),
            ).fetchall()
            report.promoted_ids = [row["id"] for row in promoted]
            for det_id in report.promoted_ids:
                conn.execute(
                    """
                    UPDATE detections
                    SET status = 'eligible', status_changed_at = ?,
                        status_reason = NULL
                    WHERE id = ?
                    """,
                    (stamp, det_id),
                )
            conn.commit()
        finally:
            conn.close()

        report.expired = len(report.expired_ids)
        report.promoted = len(report.promoted_ids)
        return report

    def cleanup(self, now: datetime) -> int:
        """Delete terminal rows whose status changed before the retention window."""
        terminal = tuple(TERMINAL_STATUSES)
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                f"""
                DELETE FROM detections
                WHERE status IN ({', '.join('?' for _ in terminal)})
                  AND COALESCE(status_changed_at, created_at) <= ?
                """,
                (*terminal, to_db_time(now - TERMINAL_RETENTION)),
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get(self, detection_id: str) -> Optional[Detection]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM detections WHERE id = ?", (detection_id,)
            ).fetchone()
            return _from_row(row) if row is not None else None
        finally:
            conn.close()

    def find_active(
        self, strategy_id: str, symbol: str, direction: str
    ) -> Optional[Detection]:
        active = tuple(ACTIVE_STATUSES)
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                f"""
                SELECT * FROM detections
                WHERE strategy_id = ? AND symbol = ? AND direction = ?
                  AND status IN ({', '.join('?' for _ in active)})
                ORDER BY first_detected_at DESC
                LIMIT 1
                """,
                (strategy_id, symbol, direction, *active),
            ).fetchone()
            return _from_row(row) if row is not None else None
        finally:
            conn.close()

    def list(self, filters: DetectionFilters) -> dict:
        """Return matching detections, newest first.

        Returns:
            ``{"detections": [Detection, ...], "total": int}``
        """
        conditions: list[str] = []
        params: list = []

        if filters.status:
            statuses = list(filters.status)
            conditions.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if filters.strategy_id is not None:
            conditions.append("strategy_id = ?")
            params.append(filters.strategy_id)
        if filters.symbol is not None:
            conditions.append("symbol = ?")
            params.append(filters.symbol)
        if filters.grade is not None:
            conditions.append("grade = ?")
            params.append(filters.grade)

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM detections {where_clause}
                ORDER BY first_detected_at DESC
                LIMIT ? OFFSET ?
                """,
                (*params, filters.limit, filters.offset),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM detections {where_clause}", params
            ).fetchone()[0]
            return {"detections": [_from_row(r) for r in rows], "total": total}
        finally:
            conn.close()

    def summary(self) -> dict:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute("SELECT * FROM detections").fetchall()
        finally:
            conn.close()
        return summarize(_from_row(r) for r in rows)

    def count(self) -> int:
        conn = get_connection(self._db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM detections").fetchone()[0]
        finally:
            conn.close()
