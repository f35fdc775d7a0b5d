from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from activity_journal.config.app_config import load_app_config
from activity_journal.ingest.normalize import parse_day
from activity_journal.storage.settings_store import get_r_size
from activity_journal.storage.sqlite_reader import load_trades
from activity_journal.storage.sqlite_store import connect, init_db, update_trade_metadata
from activity_journal.sync.notion_api import NotionClient, NotionConfig, load_dotenv
from activity_journal.sync.reconciler import STATUS_CREATED, STATUS_ERROR, sync_trades


def main(argv: list[str] | None = None) -> int:
    app_config = load_app_config()
    parser = argparse.ArgumentParser(description="Sync stored trades into the Notion trade journal.")
    parser.add_argument("--db", type=Path, default=app_config.app.db_path, help="SQLite DB path.")
    parser.add_argument("--env", type=Path, default=app_config.app.env_path, help="Path to .env file.")
    parser.add_argument("--start", type=str, default=None, help="First day (YYYY-MM-DD or YYYYMMDD).")
    parser.add_argument("--end", type=str, default=None, help="Last day, inclusive.")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing pages.")
    args = parser.parse_args(argv)

    start = parse_day(args.start) if args.start else None
    end = parse_day(args.end) if args.end else None
    if (args.start and start is None) or (args.end and end is None):
        print("Invalid --start/--end date.", file=sys.stderr)
        return 2

    env = load_dotenv(args.env)
    env.update(os.environ)
    try:
        config = NotionConfig.from_env(env, app_config.notion)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    data_source_id = env.get("NOTION_DATA_SOURCE_ID", "").strip() or app_config.notion.data_source_id
    if not data_source_id:
        print("Missing Notion data source id (NOTION_DATA_SOURCE_ID or [notion].data_source_id).", file=sys.stderr)
        return 1

    if not args.db.exists():
        print(f"Database not found: {args.db}", file=sys.stderr)
        return 1

    conn = connect(args.db)
    try:
        init_db(conn)
        trades = load_trades(conn, start=start, end=end)
        if not trades:
            print("No stored trades to sync.")
            return 0
        client = NotionClient(config)
        try:
            report = sync_trades(
                client,
                data_source_id,
                trades,
                app_config.notion.properties,
                r_size=get_r_size(conn),
                dry_run=args.dry_run,
            )
        except (RuntimeError, OSError) as exc:
            print(f"Notion query failed: {exc}", file=sys.stderr)
            return 1

        by_trademark = {trade.trademark: trade for trade in trades}
        for outcome in report.outcomes:
            if outcome.status == STATUS_ERROR:
                print(f"error: {outcome.trademark}: {outcome.error}", file=sys.stderr)
                continue
            trade = by_trademark.get(outcome.trademark)
            if outcome.status == STATUS_CREATED and outcome.page_id and trade and trade.trade_id:
                update_trade_metadata(conn, trade.trade_id, {"notion_page_id": outcome.page_id})
            if outcome.changed:
                print(f"{outcome.trademark}: {', '.join(outcome.changed)}")
    finally:
        conn.close()

    prefix = "dry run " if args.dry_run else ""
    print(
        f"{prefix}created {report.created} updated {report.updated} "
        f"unchanged {report.unchanged} errors {report.errors}"
    )
    return 1 if report.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
