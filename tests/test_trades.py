"""Trade rows built from closing executions."""

from datetime import datetime, timezone
from decimal import Decimal

from activity_journal.config.app_config import TimeslotSettings, default_timeslots
from activity_journal.metrics.timing import chain_duration_seconds, chain_timeslots, timeslot_label
from activity_journal.models import Execution
from activity_journal.reconstruct.action_chain import InMemoryExecutionSource
from activity_journal.reconstruct.trades import aggregated_side, build_trade_rows, closing_items


def _at(hour: int, minute: int, second: int = 0, micro: int = 0) -> datetime:
    return datetime(2025, 9, 24, hour, minute, second, micro, tzinfo=timezone.utc)


def _stmt(execution_id, when, quantity, realized=None, symbol="AAPL") -> Execution:
    return Execution(
        execution_id=execution_id,
        symbol=symbol,
        timestamp=when,
        quantity=Decimal(str(quantity)),
        price=Decimal("100"),
        realized_pl=Decimal(str(realized)) if realized is not None else None,
    )


def test_closing_items_need_realized_pl():
    executions = [
        _stmt(2, _at(15, 0), -10, realized="12.5"),
        _stmt(1, _at(14, 0), 10, realized="0"),
        _stmt(3, _at(14, 30), 5),
    ]
    assert [stmt.execution_id for stmt in closing_items(executions)] == [2]


def test_aggregated_side_from_close_direction():
    assert aggregated_side(_stmt(1, _at(15, 0), -10)) == "LONG"
    assert aggregated_side(_stmt(1, _at(15, 0), 10)) == "SHORT"
    assert aggregated_side(_stmt(1, _at(15, 0), 0)) == "-"


def test_build_trade_rows():
    executions = [
        _stmt(1, _at(14, 25), 30),
        _stmt(2, _at(14, 28), 20),
        _stmt(3, _at(18, 30, 5, 400_000), -50, realized="120.456"),
        _stmt(4, _at(19, 0), -8, realized="-16", symbol="MSFT"),
    ]
    source = InMemoryExecutionSource(executions)

    trades = build_trade_rows(closing_items(executions), source, timeslots=default_timeslots())

    assert len(trades) == 2
    won, lost = trades
    assert won.ticker == "AAPL"
    assert won.datetime == _at(18, 30, 5)
    assert won.aggregated_side == "LONG"
    assert won.result == "WIN"
    assert won.realized_pl == Decimal("120.46")
    assert [entry["action"] for entry in won.action_chain.values()] == [
        "open_position",
        "add_size",
        "close_position",
    ]
    assert won.duration == 4 * 3600 + 5 * 60 + 5
    assert won.entry_timeslot == "1000-1030"
    assert won.close_timeslot == "1430-1500"
    assert won.trademark == "AAPL@2025-09-24T18:30:05+00:00"

    assert lost.result == "LOSE"
    assert lost.action_chain is None
    assert lost.duration is None
    assert lost.entry_timeslot is None
    assert len(source.queries) == 2


def test_timeslot_labels_follow_session():
    settings = default_timeslots()
    assert timeslot_label(_at(13, 0), settings) is None
    assert timeslot_label(_at(13, 30), settings) == "0930-1000"
    assert timeslot_label(_at(14, 30), settings) == "1030-1100"
    assert timeslot_label(_at(20, 59), settings) == "1630-1700"
    assert timeslot_label(_at(21, 0), settings) is None


def test_timeslot_label_uneven_session_end():
    settings = TimeslotSettings(timezone="UTC", slot_minutes=45, session_start=600, session_end=700)
    assert timeslot_label(_at(11, 35), settings) == "1130-1140"
    assert timeslot_label(_at(12, 0), settings) is None


def test_unknown_timezone_has_no_slot():
    settings = TimeslotSettings(timezone="Mars/Olympus", slot_minutes=30, session_start=0, session_end=1440)
    assert timeslot_label(_at(12, 0), settings) is None


def test_duration_and_slots_from_chain():
    chain = {
        "1": {"action": "open_position", "datetime": "2025-09-24T13:45:00+00:00"},
        "2": {"action": "close_position", "datetime": "2025-09-24T14:15:30+00:00"},
    }
    assert chain_duration_seconds(chain) == 1830
    assert chain_timeslots(chain, default_timeslots()) == ("0930-1000", "1000-1030")
    assert chain_duration_seconds(None) is None
    assert chain_duration_seconds({"1": {"action": "open_position"}}) is None
    assert chain_timeslots(None, default_timeslots()) == (None, None)
