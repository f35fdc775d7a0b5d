from __future__ import annotations

import hashlib
import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Mapping

from activity_journal.ingest.normalize import (
    StatementKey,
    format_timestamp,
    row_key,
    to_execution_row,
)
from activity_journal.models import TradeRow

_STATEMENT_COLUMNS = (
    "timestamp",
    "timestamp_us",
    "symbol",
    "side",
    "position_action",
    "asset_category",
    "currency",
    "quantity",
    "trade_price",
    "proceeds",
    "comm_fee",
    "realized_pl",
)


@dataclass(frozen=True)
class InsertResult:
    inserted: int
    duplicates: int
    rejected: int


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS activity_statements (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            timestamp_us INTEGER NOT NULL,
            symbol TEXT NOT NULL,
            side TEXT NOT NULL CHECK (side IN ('buy', 'sell')),
            position_action TEXT NOT NULL CHECK (position_action IN ('build', 'close')),
            asset_category TEXT,
            currency TEXT,
            quantity TEXT NOT NULL,
            trade_price TEXT NOT NULL,
            proceeds TEXT,
            comm_fee TEXT,
            realized_pl TEXT,
            inserted_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS activity_statements_natural_key
        ON activity_statements (timestamp_us, symbol, side, quantity, trade_price)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS activity_statements_symbol_time
        ON activity_statements (symbol, timestamp)
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS trades (
            trade_id TEXT PRIMARY KEY,
            datetime TEXT NOT NULL,
            ticker TEXT NOT NULL,
            aggregated_side TEXT NOT NULL CHECK (aggregated_side IN ('LONG', 'SHORT', '-')),
            result TEXT NOT NULL CHECK (result IN ('WIN', 'LOSE')),
            realized_pl TEXT NOT NULL,
            action_chain TEXT,
            duration INTEGER,
            entry_timeslot TEXT,
            close_timeslot TEXT,
            metadata TEXT NOT NULL DEFAULT '{}',
            inserted_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


def insert_statement_rows(
    conn: sqlite3.Connection,
    rows: Iterable[Mapping[str, Any]],
    *,
    batch_size: int = 500,
) -> InsertResult:
    """Store parsed statement rows, skipping ones already present.

    Rows are keyed on (timestamp, symbol, side, quantity, price) after
    normalization, so a re-imported statement inserts nothing.
    """
    prepared: list[dict[str, Any]] = []
    seen: set[StatementKey] = set()
    rejected = 0
    duplicates = 0
    for row in rows:
        stored = to_execution_row(row)
        if stored is None:
            rejected += 1
            continue
        key = row_key(stored)
        if key in seen:
            duplicates += 1
            continue
        seen.add(key)
        prepared.append(stored)

    existing = existing_statement_keys(conn, seen)
    fresh = [row for row in prepared if row_key(row) not in existing]
    duplicates += len(prepared) - len(fresh)

    inserted_at = _utc_now()
    inserted = 0
    columns = ", ".join(_STATEMENT_COLUMNS)
    placeholders = ", ".join(f":{name}" for name in _STATEMENT_COLUMNS)
    for chunk in _chunks(fresh, max(1, batch_size)):
        before = conn.total_changes
        conn.executemany(
            f"""
            INSERT OR IGNORE INTO activity_statements ({columns}, inserted_at)
            VALUES ({placeholders}, :inserted_at)
            """,
            [{**row, "inserted_at": inserted_at} for row in chunk],
        )
        inserted += conn.total_changes - before
    conn.commit()
    duplicates += len(fresh) - inserted
    return InsertResult(inserted=inserted, duplicates=duplicates, rejected=rejected)


def existing_statement_keys(
    conn: sqlite3.Connection, keys: Iterable[StatementKey]
) -> set[StatementKey]:
    wanted = set(keys)
    if not wanted:
        return set()
    low = min(key[0] for key in wanted)
    high = max(key[0] for key in wanted)
    symbols = sorted({key[1] for key in wanted})
    placeholders = ", ".join("?" for _ in symbols)
    rows = conn.execute(
        f"""
        SELECT timestamp_us, symbol, side, quantity, trade_price
        FROM activity_statements
        WHERE timestamp_us BETWEEN ? AND ? AND symbol IN ({placeholders})
        """,
        [low, high, *symbols],
    ).fetchall()
    found = {(int(r[0]), str(r[1]), str(r[2]), str(r[3]), str(r[4])) for r in rows}
    return found & wanted


def upsert_trades(conn: sqlite3.Connection, trades: Iterable[TradeRow]) -> int:
    now = _utc_now()
    rows = []
    for trade in trades:
        realized = _money(trade.realized_pl)
        when = format_timestamp(trade.datetime)
        trade_id = trade.trade_id or trade_key(when, trade.ticker, trade.aggregated_side, realized)
        trade.trade_id = trade_id
        rows.append(
            {
                "trade_id": trade_id,
                "datetime": when,
                "ticker": trade.ticker,
                "aggregated_side": trade.aggregated_side,
                "result": trade.result,
                "realized_pl": realized,
                "action_chain": json.dumps(trade.action_chain) if trade.action_chain else None,
                "duration": trade.duration,
                "entry_timeslot": trade.entry_timeslot,
                "close_timeslot": trade.close_timeslot,
                "metadata": _json_dump(dict(trade.metadata)),
                "inserted_at": now,
                "updated_at": now,
            }
        )
    conn.executemany(
        """
        INSERT INTO trades (
            trade_id, datetime, ticker, aggregated_side, result, realized_pl, action_chain,
            duration, entry_timeslot, close_timeslot, metadata, inserted_at, updated_at
        )
        VALUES (
            :trade_id, :datetime, :ticker, :aggregated_side, :result, :realized_pl, :action_chain,
            :duration, :entry_timeslot, :close_timeslot, :metadata, :inserted_at, :updated_at
        )
        ON CONFLICT(trade_id) DO UPDATE SET
            result=excluded.result,
            action_chain=excluded.action_chain,
            duration=excluded.duration,
            entry_timeslot=excluded.entry_timeslot,
            close_timeslot=excluded.close_timeslot,
            updated_at=excluded.updated_at
        """,
        rows,
    )
    conn.commit()
    return len(rows)


def update_trade_metadata(
    conn: sqlite3.Connection, trade_id: str, changes: Mapping[str, Any]
) -> bool:
    row = conn.execute("SELECT metadata FROM trades WHERE trade_id = ?", (trade_id,)).fetchone()
    if row is None:
        return False
    try:
        current = json.loads(row[0] or "{}")
    except json.JSONDecodeError:
        current = {}
    if not isinstance(current, dict):
        current = {}
    current.update(changes)
    conn.execute(
        "UPDATE trades SET metadata = ?, updated_at = ? WHERE trade_id = ?",
        (_json_dump(current), _utc_now(), trade_id),
    )
    conn.commit()
    return True


def trade_key(when: str, ticker: str, aggregated_side: str, realized_pl: str) -> str:
    digest = hashlib.sha1("|".join((when, ticker, aggregated_side, realized_pl)).encode("utf-8"))
    return f"trade:{digest.hexdigest()}"


def _money(value: Decimal) -> str:
    return format(value.quantize(Decimal("0.01")), "f")


def _chunks(items: list[dict[str, Any]], size: int) -> Iterable[list[dict[str, Any]]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _utc_now() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def _json_dump(value: object) -> str:
    if value is None:
        return "{}"
    return json.dumps(value, sort_keys=True, default=str)
