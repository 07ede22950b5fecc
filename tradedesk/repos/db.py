"""Database initialization and connection management.

Runs migrations on first boot, provides connection factory.
"""

import pathlib
import sqlite3
from datetime import datetime, timezone
from typing import Optional


_MIGRATION_DIR = pathlib.Path(__file__).resolve().parent / "migrations"


def init_db(db_path: str) -> None:
    """Initialize the database by running the schema migrations.

    Creates the parent directory of a file-backed database when needed.
    Every statement is idempotent, so re-running on an existing database
    is safe.

    Args:
        db_path: Path to the SQLite database file.
    """
    if db_path != ":memory:":
        pathlib.Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        for migration_file in sorted(_MIGRATION_DIR.glob("*.sql")):
            conn.executescript(migration_file.read_text(encoding="utf-8"))
        conn.commit()
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    Callers are responsible for closing the connection.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def to_db_time(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 text, so stored times sort lexically."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None
