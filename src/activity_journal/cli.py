from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from activity_journal.config.app_config import load_app_config
from activity_journal.ingest.normalize import parse_day
from activity_journal.models import TradeRow
from activity_journal.reconstruct.trades import build_trade_rows, closing_items
from activity_journal.storage.sqlite_reader import SqliteExecutionSource, load_executions_between
from activity_journal.storage.sqlite_store import connect, init_db, upsert_trades


def main(argv: list[str] | None = None) -> int:
    app_config = load_app_config()
    parser = argparse.ArgumentParser(
        description="Rebuild closed trades and their action chains from stored activity statements."
    )
    parser.add_argument("--db", type=Path, default=app_config.app.db_path, help="SQLite DB path.")
    parser.add_argument("--start", type=str, default=None, help="First day (YYYY-MM-DD or YYYYMMDD).")
    parser.add_argument("--end", type=str, default=None, help="Last day, inclusive (default: --start).")
    parser.add_argument("--save", action="store_true", help="Upsert rebuilt trades into the trades table.")
    parser.add_argument("--json", action="store_true", help="Print trades with chains as JSON.")
    parser.add_argument("--out", type=Path, default=None, help="Write output to a file instead of stdout.")
    args = parser.parse_args(argv)

    start = parse_day(args.start) if args.start else datetime.now(timezone.utc).date()
    end = parse_day(args.end) if args.end else start
    if start is None or end is None:
        print("Invalid --start/--end date.", file=sys.stderr)
        return 2
    if end < start:
        start, end = end, start

    conn = connect(args.db)
    try:
        init_db(conn)
        closes = closing_items(load_executions_between(conn, start, end))
        trades = build_trade_rows(
            closes, SqliteExecutionSource(conn), timeslots=app_config.timeslots
        )
        if args.save and trades:
            saved = upsert_trades(conn, trades)
            print(f"Saved {saved} trades.", file=sys.stderr)
    finally:
        conn.close()

    unresolved = [trade for trade in trades if trade.action_chain is None]
    for trade in unresolved:
        print(
            f"warning: no action chain for {trade.ticker} close at {trade.datetime.isoformat()}",
            file=sys.stderr,
        )

    if not trades:
        print(f"No closed trades between {start.isoformat()} and {end.isoformat()}.")
        return 0

    output = _render_json(trades) if args.json else _render_table(trades)
    if args.out is None:
        for line in output:
            print(line)
    else:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text("\n".join(output) + "\n", encoding="utf-8")
    return 0


def _render_table(trades: list[TradeRow]) -> list[str]:
    output = ["close_time ticker side result realized_pl duration entry_slot close_slot chain"]
    for trade in trades:
        output.append(
            f"{trade.datetime.isoformat()} {trade.ticker} {trade.aggregated_side} {trade.result} "
            f"{trade.realized_pl} {_format_optional(trade.duration)} "
            f"{_format_optional(trade.entry_timeslot)} {_format_optional(trade.close_timeslot)} "
            f"{_format_chain(trade)}"
        )
    return output


def _render_json(trades: list[TradeRow]) -> list[str]:
    payload = [
        {
            "datetime": trade.datetime.isoformat(),
            "ticker": trade.ticker,
            "aggregated_side": trade.aggregated_side,
            "result": trade.result,
            "realized_pl": str(trade.realized_pl),
            "duration": trade.duration,
            "entry_timeslot": trade.entry_timeslot,
            "close_timeslot": trade.close_timeslot,
            "action_chain": trade.action_chain,
        }
        for trade in trades
    ]
    return [json.dumps(payload, indent=2)]


def _format_chain(trade: TradeRow) -> str:
    if not trade.action_chain:
        return "na"
    return ",".join(
        f"{entry['action']}:{entry['quantity']:g}" for entry in trade.action_chain.values()
    )


def _format_optional(value: object) -> str:
    return "na" if value is None else str(value)


if __name__ == "__main__":
    raise SystemExit(main())
