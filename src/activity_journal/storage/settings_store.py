from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

R_SIZE_KEY = "r_size"
DEFAULT_R_SIZE = 8.0


def get_setting(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    if row is None:
        return default
    return row[0]


def put_setting(conn: sqlite3.Connection, key: str, value: object) -> None:
    if not key or len(key) > 255:
        raise ValueError(f"Invalid setting key: {key!r}")
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
        """,
        (key, str(value), datetime.now(timezone.utc).isoformat()),
    )
    conn.commit()


def get_r_size(conn: sqlite3.Connection) -> float:
    """Dollar risk per trade; losing trades are sized as |P/L| / r_size."""
    raw = get_setting(conn, R_SIZE_KEY)
    if raw is None:
        return DEFAULT_R_SIZE
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_R_SIZE
    return value if value > 0 else DEFAULT_R_SIZE


def set_r_size(conn: sqlite3.Connection, value: float) -> None:
    if value <= 0:
        raise ValueError("r_size must be positive")
    put_setting(conn, R_SIZE_KEY, value)
