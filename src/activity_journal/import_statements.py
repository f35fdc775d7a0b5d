from __future__ import annotations

import argparse
import sys
from pathlib import Path

from activity_journal.config.app_config import load_app_config
from activity_journal.ingest.activity_statement import load_statement_rows
from activity_journal.storage.sqlite_store import connect, init_db, insert_statement_rows


def main(argv: list[str] | None = None) -> int:
    app_config = load_app_config()
    parser = argparse.ArgumentParser(description="Import activity statement CSV exports into SQLite.")
    parser.add_argument("paths", type=Path, nargs="*", help="Activity statement CSV files.")
    parser.add_argument("--db", type=Path, default=app_config.app.db_path, help="SQLite DB path.")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=app_config.ingest.batch_size,
        help="Rows per insert batch.",
    )
    args = parser.parse_args(argv)

    paths = list(args.paths)
    if not paths and app_config.ingest.uploads_dir.exists():
        paths = sorted(app_config.ingest.uploads_dir.glob("*.csv"))
    if not paths:
        print("No statement files given.", file=sys.stderr)
        return 1

    conn = connect(args.db)
    try:
        init_db(conn)
        totals = {"inserted": 0, "duplicates": 0, "rejected": 0, "skipped": 0}
        for path in paths:
            try:
                result = load_statement_rows(path)
            except (OSError, ValueError) as exc:
                print(f"warning: cannot read {path}: {exc}", file=sys.stderr)
                continue
            stored = insert_statement_rows(conn, result.rows, batch_size=args.batch_size)
            totals["inserted"] += stored.inserted
            totals["duplicates"] += stored.duplicates
            totals["rejected"] += stored.rejected
            totals["skipped"] += result.skipped
            period = f" ({result.period})" if result.period else ""
            print(
                f"{path.name}{period}: inserted {stored.inserted} "
                f"duplicates {stored.duplicates} rejected {stored.rejected}"
            )
    finally:
        conn.close()

    if totals["skipped"]:
        print(f"Skipped {totals['skipped']} non-order trade rows.", file=sys.stderr)
    if totals["rejected"]:
        print(f"Rejected {totals['rejected']} rows during normalization.", file=sys.stderr)
    for name, count in totals.items():
        print(f"{name} {count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
