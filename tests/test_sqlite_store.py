"""SQLite storage for statements, trades and settings."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from activity_journal.models import TradeRow
from activity_journal.storage import sqlite_reader
from activity_journal.storage.settings_store import get_r_size, get_setting, put_setting, set_r_size
from activity_journal.storage.sqlite_store import (
    connect,
    init_db,
    insert_statement_rows,
    update_trade_metadata,
    upsert_trades,
)


def _row(when: str, quantity: str, price: str = "150", symbol: str = "AAPL", realized: str = "0") -> dict:
    return {
        "datetime": when,
        "symbol": symbol,
        "quantity": quantity,
        "trade_price": price,
        "realized_pl": realized,
        "comm_fee": "-1",
        "currency": "USD",
    }


@pytest.fixture()
def conn(tmp_path):
    connection = connect(tmp_path / "data" / "journal.sqlite")
    init_db(connection)
    yield connection
    connection.close()


def test_reimport_inserts_nothing(conn):
    rows = [
        _row("2025-09-24 10:25:00", "30"),
        _row("2025-09-24 14:30:00", "-30", price="151", realized="28"),
    ]
    first = insert_statement_rows(conn, rows)
    assert (first.inserted, first.duplicates, first.rejected) == (2, 0, 0)

    again = insert_statement_rows(
        conn,
        [
            _row("2025-09-24 10:25:00", "30.000000", price="150.00"),
            _row("2025-09-24 14:30:00", "-30", price="151", realized="28"),
        ],
    )
    assert (again.inserted, again.duplicates, again.rejected) == (0, 2, 0)
    count = conn.execute("SELECT COUNT(*) FROM activity_statements").fetchone()[0]
    assert count == 2


def test_duplicates_within_one_batch_and_rejects(conn):
    rows = [
        _row("2025-09-24 10:25:00", "30"),
        _row("2025-09-24 10:25:00", "30"),
        _row("2025-09-24 10:26:00", "0"),
        _row("", "5"),
    ]
    result = insert_statement_rows(conn, rows, batch_size=1)
    assert (result.inserted, result.duplicates, result.rejected) == (1, 1, 2)


def test_range_query_is_half_open_and_ordered(conn):
    insert_statement_rows(
        conn,
        [
            _row("2025-09-24 14:30:00", "-30", realized="28"),
            _row("2025-09-24 10:25:00", "30"),
            _row("2025-09-24 10:25:00", "7", symbol="MSFT"),
            _row("2025-09-25 00:00:00", "1"),
        ],
    )
    source = sqlite_reader.SqliteExecutionSource(conn)
    start = datetime(2025, 9, 24, tzinfo=timezone.utc)
    found = source.find_by_symbol_and_time_range("AAPL", start, start + timedelta(days=1))

    assert [stmt.quantity for stmt in found] == [Decimal("30"), Decimal("-30")]
    assert found[0].timestamp == datetime(2025, 9, 24, 10, 25, tzinfo=timezone.utc)
    assert found[1].realized_pl == Decimal("28")
    assert found[0].side == "buy"
    assert found[1].side == "sell"

    upto_close = source.find_by_symbol_and_time_range(
        "AAPL", start, datetime(2025, 9, 24, 14, 30, 1, tzinfo=timezone.utc)
    )
    assert len(upto_close) == 2
    before_close = source.find_by_symbol_and_time_range(
        "AAPL", start, datetime(2025, 9, 24, 14, 30, tzinfo=timezone.utc)
    )
    assert len(before_close) == 1


def test_statement_dates_and_day_range(conn):
    insert_statement_rows(
        conn,
        [
            _row("2025-09-24 10:25:00", "30"),
            _row("2025-09-25 11:00:00", "-30", realized="5"),
            _row("2025-09-26 11:00:00", "3"),
        ],
    )
    assert sqlite_reader.statement_dates(conn) == ["2025-09-24", "2025-09-25", "2025-09-26"]
    between = sqlite_reader.load_executions_between(conn, date(2025, 9, 24), date(2025, 9, 25))
    assert len(between) == 2


def test_upsert_trades_keeps_chain_order(conn):
    chain = {
        str(idx): {
            "execution_id": idx,
            "action": "add_size" if 1 < idx < 11 else ("open_position" if idx == 1 else "close_position"),
            "quantity": 1.0 if idx < 11 else -10.0,
            "datetime": f"2025-09-24T10:{idx:02d}:00+00:00",
            "price": None,
        }
        for idx in range(1, 12)
    }
    trade = TradeRow(
        datetime=datetime(2025, 9, 24, 10, 11, tzinfo=timezone.utc),
        ticker="AAPL",
        aggregated_side="LONG",
        result="WIN",
        realized_pl=Decimal("12.50"),
        action_chain=chain,
        duration=600,
    )
    assert upsert_trades(conn, [trade]) == 1
    assert trade.trade_id.startswith("trade:")

    loaded = sqlite_reader.load_trade(conn, trade.trade_id)
    assert list(loaded.action_chain) == [str(idx) for idx in range(1, 12)]
    assert loaded.realized_pl == Decimal("12.50")
    assert loaded.trademark == trade.trademark

    trade.result = "LOSE"
    upsert_trades(conn, [trade])
    assert conn.execute("SELECT COUNT(*) FROM trades").fetchone()[0] == 1
    assert sqlite_reader.load_trade(conn, trade.trade_id).result == "LOSE"


def test_trade_metadata_and_date_filter(conn):
    trade = TradeRow(
        datetime=datetime(2025, 9, 24, 14, 30, tzinfo=timezone.utc),
        ticker="AAPL",
        aggregated_side="SHORT",
        result="LOSE",
        realized_pl=Decimal("-4"),
    )
    upsert_trades(conn, [trade])
    assert update_trade_metadata(conn, trade.trade_id, {"notion_page_id": "page-1"})
    assert not update_trade_metadata(conn, "trade:missing", {"x": 1})

    [loaded] = sqlite_reader.load_trades(conn, start=date(2025, 9, 24), end=date(2025, 9, 24))
    assert loaded.metadata == {"notion_page_id": "page-1"}
    assert loaded.action_chain is None
    assert sqlite_reader.load_trades(conn, start=date(2025, 9, 25)) == []


def test_settings_round_trip(conn):
    assert get_setting(conn, "missing", "fallback") == "fallback"
    put_setting(conn, "theme", "dark")
    put_setting(conn, "theme", "light")
    assert get_setting(conn, "theme") == "light"
    with pytest.raises(ValueError):
        put_setting(conn, "", "x")


def test_r_size_defaults_and_validation(conn):
    assert get_r_size(conn) == 8.0
    set_r_size(conn, 25)
    assert get_r_size(conn) == 25.0
    with pytest.raises(ValueError):
        set_r_size(conn, 0)
    put_setting(conn, "r_size", "not a number")
    assert get_r_size(conn) == 8.0
