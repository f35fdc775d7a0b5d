from __future__ import annotations

import os
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request

from activity_journal.config.app_config import load_app_config
from activity_journal.ingest.normalize import parse_day, truncate_to_second
from activity_journal.models import Execution, TradeRow
from activity_journal.reconstruct.action_chain import build_action_chain
from activity_journal.reconstruct.trades import build_trade_rows, closing_items
from activity_journal.storage import sqlite_reader
from activity_journal.storage.sqlite_store import connect as sqlite_connect
from activity_journal.storage.sqlite_store import init_db, upsert_trades


app = FastAPI(title="Activity Journal")


@app.get("/api/statements")
def statements_api(request: Request) -> list[dict[str, Any]]:
    start, end = _date_range(request)
    symbol = (request.query_params.get("symbol") or "").strip() or None
    conn = _open_reader()
    try:
        if start is None and end is None:
            executions = sqlite_reader.load_executions(conn, symbol=symbol)
        else:
            first = start or end
            last = end or start
            executions = [
                stmt
                for stmt in sqlite_reader.load_executions_between(conn, first, last)
                if symbol is None or stmt.symbol == symbol
            ]
    finally:
        conn.close()
    return [_execution_payload(stmt) for stmt in executions]


@app.get("/api/statement-dates")
def statement_dates_api() -> list[str]:
    conn = _open_reader()
    try:
        return sqlite_reader.statement_dates(conn)
    finally:
        conn.close()


@app.get("/api/trades")
def trades_api(request: Request) -> list[dict[str, Any]]:
    start, end = _date_range(request)
    conn = _open_reader()
    try:
        trades = sqlite_reader.load_trades(conn, start=start, end=end)
    finally:
        conn.close()
    return [_trade_payload(trade) for trade in trades]


@app.get("/api/trades/{trade_id}")
def trade_api(trade_id: str) -> dict[str, Any]:
    conn = _open_reader()
    try:
        trade = sqlite_reader.load_trade(conn, trade_id)
    finally:
        conn.close()
    if trade is None:
        raise HTTPException(status_code=404, detail="Trade not found.")
    return _trade_payload(trade)


@app.get("/api/trades/{trade_id}/action-chain")
def trade_action_chain_api(trade_id: str) -> dict[str, Any]:
    conn = _open_reader()
    try:
        trade = sqlite_reader.load_trade(conn, trade_id)
        if trade is None:
            raise HTTPException(status_code=404, detail="Trade not found.")
        chain = trade.action_chain
        rebuilt = False
        if chain is None:
            close = _closing_execution(conn, trade)
            if close is not None:
                chain = build_action_chain(close, source=sqlite_reader.SqliteExecutionSource(conn))
                rebuilt = chain is not None
    finally:
        conn.close()
    if chain is None:
        raise HTTPException(status_code=404, detail="Action chain not available.")
    return {"trade_id": trade_id, "rebuilt": rebuilt, "action_chain": chain}


@app.post("/api/trades/rebuild")
def rebuild_trades_api(request: Request) -> dict[str, Any]:
    start, end = _date_range(request)
    db_path = _resolve_db_path()
    if not db_path.exists():
        raise HTTPException(status_code=404, detail="Database not found.")

    conn = sqlite_connect(db_path)
    try:
        init_db(conn)
        if start is None and end is None:
            dates = sqlite_reader.statement_dates(conn)
            if not dates:
                return {"trades": 0, "saved": 0, "unresolved": []}
            start, end = date.fromisoformat(dates[0]), date.fromisoformat(dates[-1])
        first = start or end
        last = end or start
        closes = closing_items(sqlite_reader.load_executions_between(conn, first, last))
        trades = build_trade_rows(
            closes,
            sqlite_reader.SqliteExecutionSource(conn),
            timeslots=load_app_config().timeslots,
        )
        saved = upsert_trades(conn, trades) if trades else 0
    finally:
        conn.close()
    return {
        "trades": len(trades),
        "saved": saved,
        "unresolved": [trade.trademark for trade in trades if trade.action_chain is None],
    }


def _resolve_db_path() -> Path:
    override = os.environ.get("ACTIVITY_JOURNAL_DB", "").strip()
    if override:
        return Path(override)
    return load_app_config().app.db_path


def _open_reader():
    db_path = _resolve_db_path()
    if not db_path.exists():
        raise HTTPException(status_code=404, detail="Database not found.")
    return sqlite_reader.connect(db_path)


def _date_range(request: Request) -> tuple[date | None, date | None]:
    bounds = []
    for name in ("start", "end"):
        raw = request.query_params.get(name)
        if not raw:
            bounds.append(None)
            continue
        parsed = parse_day(raw)
        if parsed is None:
            raise HTTPException(status_code=400, detail=f"Invalid {name} date: {raw}")
        bounds.append(parsed)
    start, end = bounds
    if start is not None and end is not None and end < start:
        raise HTTPException(status_code=400, detail="end must not be before start.")
    return start, end


def _closing_execution(conn, trade: TradeRow) -> Execution | None:
    second = truncate_to_second(trade.datetime)
    candidates = sqlite_reader.load_executions(
        conn, symbol=trade.ticker, start=second, end=second + timedelta(seconds=1)
    )
    for stmt in candidates:
        if stmt.realized_pl is not None and not stmt.realized_pl.is_zero():
            return stmt
    return None


def _execution_payload(stmt: Execution) -> dict[str, Any]:
    return {
        "id": stmt.execution_id,
        "symbol": stmt.symbol,
        "datetime": stmt.timestamp.isoformat(),
        "side": stmt.side,
        "quantity": float(stmt.quantity),
        "price": _float_or_none(stmt.price),
        "comm_fee": _float_or_none(stmt.comm_fee),
        "realized_pl": _float_or_none(stmt.realized_pl),
        "asset_category": stmt.asset_category,
        "currency": stmt.currency,
    }


def _trade_payload(trade: TradeRow) -> dict[str, Any]:
    return {
        "trade_id": trade.trade_id,
        "trademark": trade.trademark,
        "datetime": trade.datetime.isoformat(),
        "ticker": trade.ticker,
        "aggregated_side": trade.aggregated_side,
        "result": trade.result,
        "realized_pl": float(trade.realized_pl),
        "duration": trade.duration,
        "entry_timeslot": trade.entry_timeslot,
        "close_timeslot": trade.close_timeslot,
        "action_chain": trade.action_chain,
        "metadata": dict(trade.metadata) if isinstance(trade.metadata, dict) else {},
    }


def _float_or_none(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def main() -> None:
    import uvicorn

    app_config = load_app_config()
    uvicorn.run(
        "activity_journal.web.app:app",
        host=app_config.app.host,
        port=app_config.app.port,
        reload=app_config.app.reload,
    )


if __name__ == "__main__":
    main()
