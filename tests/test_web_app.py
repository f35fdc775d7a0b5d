"""JSON API over the journal database."""

import pytest
from fastapi.testclient import TestClient

from activity_journal.storage.sqlite_store import connect, init_db, insert_statement_rows
from activity_journal.web.app import app

ROWS = [
    {"datetime": "2025-09-24 14:25:00", "symbol": "AAPL", "quantity": "30", "trade_price": "150", "realized_pl": "0"},
    {"datetime": "2025-09-24 14:28:00", "symbol": "AAPL", "quantity": "20", "trade_price": "150.5", "realized_pl": "0"},
    {"datetime": "2025-09-24 18:30:00", "symbol": "AAPL", "quantity": "-50", "trade_price": "152", "realized_pl": "90"},
    {"datetime": "2025-09-25 15:00:00", "symbol": "MSFT", "quantity": "-5", "trade_price": "400", "realized_pl": "-12"},
]


@pytest.fixture()
def client(tmp_path, monkeypatch):
    db_path = tmp_path / "journal.sqlite"
    conn = connect(db_path)
    init_db(conn)
    insert_statement_rows(conn, ROWS)
    conn.close()
    monkeypatch.setenv("ACTIVITY_JOURNAL_DB", str(db_path))
    return TestClient(app)


def test_statement_dates(client):
    response = client.get("/api/statement-dates")
    assert response.status_code == 200
    assert response.json() == ["2025-09-24", "2025-09-25"]


def test_statements_filtered_by_day_and_symbol(client):
    response = client.get("/api/statements", params={"start": "20250924", "symbol": "AAPL"})
    assert response.status_code == 200
    payload = response.json()
    assert [row["quantity"] for row in payload] == [30.0, 20.0, -50.0]
    assert payload[2]["side"] == "sell"
    assert payload[2]["realized_pl"] == 90.0

    assert len(client.get("/api/statements").json()) == 4


def test_bad_dates_are_rejected(client):
    assert client.get("/api/statements", params={"start": "yesterday"}).status_code == 400
    assert client.get("/api/trades", params={"start": "2025-09-25", "end": "2025-09-24"}).status_code == 400


def test_rebuild_then_read_trades(client):
    assert client.get("/api/trades").json() == []

    response = client.post("/api/trades/rebuild")
    assert response.status_code == 200
    summary = response.json()
    assert summary["trades"] == 2
    assert summary["saved"] == 2
    assert summary["unresolved"] == ["MSFT@2025-09-25T15:00:00+00:00"]

    trades = client.get("/api/trades", params={"start": "2025-09-24", "end": "2025-09-24"}).json()
    assert len(trades) == 1
    trade = trades[0]
    assert trade["ticker"] == "AAPL"
    assert trade["result"] == "WIN"
    assert trade["aggregated_side"] == "LONG"
    assert trade["duration"] == 4 * 3600 + 5 * 60

    detail = client.get(f"/api/trades/{trade['trade_id']}")
    assert detail.status_code == 200
    assert detail.json()["trademark"] == "AAPL@2025-09-24T18:30:00+00:00"

    chain = client.get(f"/api/trades/{trade['trade_id']}/action-chain").json()
    assert chain["rebuilt"] is False
    assert [entry["action"] for entry in chain["action_chain"].values()] == [
        "open_position",
        "add_size",
        "close_position",
    ]


def test_unresolved_chain_is_not_found(client):
    client.post("/api/trades/rebuild", params={"start": "2025-09-25"})
    [trade] = client.get("/api/trades").json()
    assert trade["ticker"] == "MSFT"
    response = client.get(f"/api/trades/{trade['trade_id']}/action-chain")
    assert response.status_code == 404


def test_unknown_trade(client):
    assert client.get("/api/trades/trade:nope").status_code == 404
    assert client.get("/api/trades/trade:nope/action-chain").status_code == 404


def test_missing_database(tmp_path, monkeypatch):
    monkeypatch.setenv("ACTIVITY_JOURNAL_DB", str(tmp_path / "absent.sqlite"))
    response = TestClient(app).get("/api/trades")
    assert response.status_code == 404
