from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from activity_journal.ingest.normalize import format_timestamp
from activity_journal.models import Execution, TradeRow


def connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


class SqliteExecutionSource:
    """Execution store backed by the activity_statements table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def find_by_symbol_and_time_range(
        self, symbol: str, start: datetime, end: datetime
    ) -> list[Execution]:
        return find_by_symbol_and_time_range(self._conn, symbol, start, end)


def find_by_symbol_and_time_range(
    conn: sqlite3.Connection, symbol: str, start: datetime, end: datetime
) -> list[Execution]:
    return load_executions(conn, symbol=symbol, start=start, end=end)


def load_executions(
    conn: sqlite3.Connection,
    *,
    symbol: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Execution]:
    clauses: list[str] = []
    params: list[Any] = []
    if symbol is not None:
        clauses.append("symbol = ?")
        params.append(symbol)
    if start is not None:
        clauses.append("timestamp >= ?")
        params.append(format_timestamp(start))
    if end is not None:
        clauses.append("timestamp < ?")
        params.append(format_timestamp(end))
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    query = f"SELECT * FROM activity_statements{where} ORDER BY timestamp, id"
    return [_execution_from_row(row) for row in _rows(conn, query, params)]


def load_executions_between(
    conn: sqlite3.Connection, start_date: date, end_date: date
) -> list[Execution]:
    start = datetime.combine(start_date, time(0), tzinfo=timezone.utc)
    end = datetime.combine(end_date, time(0), tzinfo=timezone.utc) + timedelta(days=1)
    return load_executions(conn, start=start, end=end)


def statement_dates(conn: sqlite3.Connection) -> list[str]:
    rows = _rows(
        conn,
        "SELECT DISTINCT substr(timestamp, 1, 10) AS day FROM activity_statements ORDER BY day",
        [],
    )
    return [row[0] for row in rows]


def load_trades(
    conn: sqlite3.Connection,
    *,
    start: date | None = None,
    end: date | None = None,
) -> list[TradeRow]:
    clauses: list[str] = []
    params: list[Any] = []
    if start is not None:
        clauses.append("datetime >= ?")
        params.append(format_timestamp(datetime.combine(start, time(0), tzinfo=timezone.utc)))
    if end is not None:
        clauses.append("datetime < ?")
        params.append(
            format_timestamp(
                datetime.combine(end, time(0), tzinfo=timezone.utc) + timedelta(days=1)
            )
        )
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    query = f"SELECT * FROM trades{where} ORDER BY datetime, ticker"
    return [_trade_from_row(row) for row in _rows(conn, query, params)]


def load_trade(conn: sqlite3.Connection, trade_id: str) -> TradeRow | None:
    rows = _rows(conn, "SELECT * FROM trades WHERE trade_id = ?", [trade_id])
    if not rows:
        return None
    return _trade_from_row(rows[0])


def _rows(conn: sqlite3.Connection, query: str, params: list[Any]) -> list[sqlite3.Row]:
    cursor = conn.cursor()
    cursor.row_factory = sqlite3.Row
    return cursor.execute(query, params).fetchall()


def _execution_from_row(row: Any) -> Execution:
    return Execution(
        execution_id=row["id"],
        symbol=row["symbol"],
        timestamp=_parse_iso(row["timestamp"]),
        quantity=Decimal(row["quantity"]),
        price=_decimal_or_none(row["trade_price"]),
        comm_fee=_decimal_or_none(row["comm_fee"]),
        realized_pl=_decimal_or_none(row["realized_pl"]),
        asset_category=row["asset_category"],
        currency=row["currency"],
    )


def _trade_from_row(row: Any) -> TradeRow:
    return TradeRow(
        trade_id=row["trade_id"],
        datetime=_parse_iso(row["datetime"]),
        ticker=row["ticker"],
        aggregated_side=row["aggregated_side"],
        result=row["result"],
        realized_pl=Decimal(row["realized_pl"]),
        action_chain=_load_chain(row["action_chain"]),
        duration=row["duration"],
        entry_timeslot=row["entry_timeslot"],
        close_timeslot=row["close_timeslot"],
        metadata=_maybe_json(row["metadata"]),
    )


def _load_chain(value: str | None) -> dict[str, Any] | None:
    chain = _maybe_json(value) if value else None
    if not isinstance(chain, dict) or not chain:
        return None
    return dict(sorted(chain.items(), key=lambda item: _index_or_max(item[0])))


def _index_or_max(key: str) -> int:
    try:
        return int(key)
    except ValueError:
        return 1 << 31


def _maybe_json(value: Any) -> Any:
    if value is None:
        return {}
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return value


def _decimal_or_none(value: str | None) -> Decimal | None:
    if value in (None, ""):
        return None
    return Decimal(value)


def _parse_iso(value: str | None) -> datetime:
    if value is None:
        raise ValueError("Missing timestamp")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
