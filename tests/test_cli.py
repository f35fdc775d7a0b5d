"""Command-line entry points against a temporary database."""

import json

from activity_journal import cli, import_statements, sync_notion
from activity_journal.storage import sqlite_reader

STATEMENT = """Statement,Data,Period,"September 24, 2025"
Trades,Header,DataDiscriminator,Asset Category,Currency,Symbol,Date/Time,Quantity,T. Price,Proceeds,Comm/Fee,Realized P/L
Trades,Data,Order,Stocks,USD,AAPL,"2025-09-24, 14:25:00",30,150,-4500,-1,0
Trades,Data,Order,Stocks,USD,AAPL,"2025-09-24, 14:28:00",20,150.5,-3010,-1,0
Trades,Data,Order,Stocks,USD,AAPL,"2025-09-24, 18:30:00",-50,152,7600,-1,88
"""


def _import(tmp_path, capsys):
    csv_path = tmp_path / "statement.csv"
    csv_path.write_text(STATEMENT, encoding="utf-8")
    db_path = tmp_path / "journal.sqlite"
    assert import_statements.main([str(csv_path), "--db", str(db_path)]) == 0
    return csv_path, db_path, capsys.readouterr()


def test_import_twice_is_idempotent(tmp_path, capsys):
    csv_path, db_path, first = _import(tmp_path, capsys)
    assert "inserted 3" in first.out

    assert import_statements.main([str(csv_path), "--db", str(db_path)]) == 0
    second = capsys.readouterr()
    assert "inserted 0 duplicates 3" in second.out


def test_import_warns_on_unsupported_file(tmp_path, capsys):
    bad = tmp_path / "statement.txt"
    bad.write_text("x", encoding="utf-8")
    assert import_statements.main([str(bad), "--db", str(tmp_path / "journal.sqlite")]) == 0
    assert "warning: cannot read" in capsys.readouterr().err


def test_trades_command_prints_and_saves(tmp_path, capsys):
    _, db_path, _ = _import(tmp_path, capsys)

    code = cli.main(["--db", str(db_path), "--start", "2025-09-24", "--json", "--save"])
    assert code == 0
    captured = capsys.readouterr()
    [trade] = json.loads(captured.out)
    assert trade["ticker"] == "AAPL"
    assert trade["result"] == "WIN"
    assert list(trade["action_chain"]) == ["1", "2", "3"]
    assert "Saved 1 trades." in captured.err

    conn = sqlite_reader.connect(db_path)
    try:
        assert len(sqlite_reader.load_trades(conn)) == 1
    finally:
        conn.close()


def test_trades_command_table_and_bad_date(tmp_path, capsys):
    _, db_path, _ = _import(tmp_path, capsys)

    assert cli.main(["--db", str(db_path), "--start", "20250924"]) == 0
    out = capsys.readouterr().out
    assert "open_position:30,add_size:20,close_position:-50" in out

    assert cli.main(["--db", str(db_path), "--start", "24.09.2025"]) == 2


def test_sync_requires_token(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("NOTION_API_TOKEN", raising=False)
    code = sync_notion.main(["--db", str(tmp_path / "journal.sqlite"), "--env", str(tmp_path / ".env")])
    assert code == 1
    assert "NOTION_API_TOKEN" in capsys.readouterr().err
