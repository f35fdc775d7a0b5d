"""Backtrack from a closing execution to the executions that built the position.

For a close of quantity Q at time T on symbol S:

1. Collect S's executions from midnight UTC of T's day up to T (second
   granularity, inclusive).
2. Find the close itself among them by its timestamp truncated to the second.
3. Walk the earlier executions newest-first, summing opposite-direction
   quantities until the sum reaches |Q|. Same-direction executions met on the
   way are kept as partial closes.
4. Order the kept executions plus the close by time and label them.

Every failure (bad input, close not found, not enough opening quantity)
returns None. Nothing in here raises on malformed data.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Protocol, Sequence

from activity_journal.ingest.normalize import as_utc, parse_decimal, parse_timestamp, truncate_to_second
from activity_journal.models import (
    ACTION_ADD_SIZE,
    ACTION_CLOSE_POSITION,
    ACTION_OPEN_POSITION,
    ACTION_PARTIAL_CLOSE,
    ActionChain,
    ChainEntry,
    Execution,
)

FILL_EXACT = "exact"
FILL_OVERFILL = "overfill"
FILL_INCOMPLETE = "incomplete"

_ONE_SECOND = timedelta(seconds=1)


class ExecutionSource(Protocol):
    def find_by_symbol_and_time_range(
        self, symbol: str, start: datetime, end: datetime
    ) -> list[Execution]:
        """Executions for symbol with start <= timestamp < end, oldest first."""
        ...


class InMemoryExecutionSource:
    def __init__(self, executions: Iterable[Execution]) -> None:
        self._executions = sorted(utc_executions(executions), key=lambda item: item.timestamp)
        self.queries: list[tuple[str, datetime, datetime]] = []

    def find_by_symbol_and_time_range(
        self, symbol: str, start: datetime, end: datetime
    ) -> list[Execution]:
        self.queries.append((symbol, start, end))
        return [
            item
            for item in self._executions
            if item.symbol == symbol and start <= item.timestamp < end
        ]


@dataclass(frozen=True)
class ClosingRequest:
    timestamp: datetime
    symbol: str
    quantity: Decimal

    @property
    def day(self) -> date:
        return self.timestamp.date()

    @property
    def target_quantity(self) -> Decimal:
        return abs(self.quantity)

    @property
    def is_sell(self) -> bool:
        return self.quantity < 0


@dataclass
class OpeningScan:
    outcome: str
    accumulated: Decimal
    executions: list[Execution] = field(default_factory=list)


def build_action_chain(
    item: Any,
    candidates: Sequence[Execution] | None = None,
    *,
    source: ExecutionSource | None = None,
) -> ActionChain | None:
    """Build the action chain for one closing trade item.

    `item` is a mapping or object exposing datetime, ticker/symbol and a
    signed quantity. `candidates` is an optional prefetched execution list;
    without it the executions are fetched from `source`.
    """
    request = extract_closing_request(item)
    if request is None:
        return None

    start, end = day_window(request)
    if candidates is not None:
        window = filter_candidates(candidates, request.symbol, start, end)
    elif source is not None:
        window = utc_executions(source.find_by_symbol_and_time_range(request.symbol, start, end))
    else:
        return None

    entries = build_chain_entries(sorted(window, key=lambda stmt: stmt.timestamp), request)
    if entries is None:
        return None
    return {str(entry.index): entry.to_dict() for entry in entries}


def build_action_chains_batch(
    items: Sequence[Any], source: ExecutionSource
) -> list[tuple[Any, ActionChain | None]]:
    """Build chains for many closing items with one fetch per (symbol, day).

    Returns one (item, chain) pair per input item, in input order. An item
    whose chain cannot be built gets None without affecting the others.
    """
    days: list[tuple[str, date]] = []
    for item in items:
        request = extract_closing_request(item, require_quantity=False)
        if request is None:
            continue
        pair = (request.symbol, request.day)
        if pair not in days:
            days.append(pair)

    prefetched = prefetch_executions(source, days)
    return [(item, build_action_chain(item, prefetched)) for item in items]


def prefetch_executions(
    source: ExecutionSource, days: Iterable[tuple[str, date]]
) -> list[Execution]:
    fetched: list[Execution] = []
    for symbol, day in days:
        start = datetime.combine(day, time(0), tzinfo=timezone.utc)
        fetched.extend(source.find_by_symbol_and_time_range(symbol, start, start + timedelta(days=1)))
    return fetched


def extract_closing_request(item: Any, *, require_quantity: bool = True) -> ClosingRequest | None:
    timestamp = parse_timestamp(_field(item, "datetime", "timestamp"))
    symbol = _field(item, "ticker", "symbol")
    quantity = _extract_quantity(_field(item, "quantity"))
    if timestamp is None or not isinstance(symbol, str) or not symbol:
        return None
    if quantity is None or quantity.is_zero():
        if require_quantity:
            return None
        quantity = Decimal(0)
    try:
        # The window end and the prefetched day must both be representable.
        truncate_to_second(timestamp) + _ONE_SECOND
        datetime.combine(timestamp.date(), time(0), tzinfo=timezone.utc) + timedelta(days=1)
    except OverflowError:
        return None
    return ClosingRequest(timestamp=timestamp, symbol=symbol, quantity=quantity)


def day_window(request: ClosingRequest) -> tuple[datetime, datetime]:
    start = datetime.combine(request.day, time(0), tzinfo=timezone.utc)
    end = truncate_to_second(request.timestamp) + _ONE_SECOND
    return start, end


def filter_candidates(
    candidates: Iterable[Execution], symbol: str, start: datetime, end: datetime
) -> list[Execution]:
    return [
        stmt
        for stmt in utc_executions(candidates)
        if stmt.symbol == symbol and start <= stmt.timestamp < end
    ]


def utc_executions(executions: Iterable[Execution]) -> list[Execution]:
    """Executions with aware UTC timestamps; naive ones are read as UTC.

    Executions whose timestamp cannot be placed in UTC are dropped.
    """
    normalized: list[Execution] = []
    for stmt in executions:
        if not isinstance(stmt.timestamp, datetime):
            continue
        try:
            timestamp = as_utc(stmt.timestamp)
        except OverflowError:
            continue
        if timestamp is not stmt.timestamp:
            stmt = replace(stmt, timestamp=timestamp)
        normalized.append(stmt)
    return normalized


def build_chain_entries(
    statements: Sequence[Execution], request: ClosingRequest
) -> list[ChainEntry] | None:
    """Label the executions that make up the position closed by `request`.

    `statements` must already be restricted to the request's day window and
    sorted oldest first.
    """
    if request.target_quantity.is_zero():
        return None

    close_second = truncate_to_second(request.timestamp)
    close_statement = next(
        (stmt for stmt in statements if truncate_to_second(stmt.timestamp) == close_second),
        None,
    )
    if close_statement is None:
        return None

    before_close = [stmt for stmt in statements if stmt.timestamp < close_statement.timestamp]
    scan = scan_opening_executions(before_close, request.target_quantity, request.is_sell)
    if scan.outcome == FILL_INCOMPLETE:
        return None

    ordered = sorted(
        [*scan.executions, close_statement],
        key=lambda stmt: truncate_to_second(stmt.timestamp),
    )
    total = len(ordered)
    return [
        ChainEntry(index=idx, execution=stmt, action=_action_for(stmt, idx, total, request.is_sell))
        for idx, stmt in enumerate(ordered, start=1)
    ]


def scan_opening_executions(
    before_close: Sequence[Execution], target: Decimal, close_is_sell: bool
) -> OpeningScan:
    """Walk backwards from the close accumulating opening-direction quantity.

    Stops on an exact match or on the first overshoot; both keep the last
    execution. Running out of executions first is incomplete.
    """
    collected: list[Execution] = []
    accumulated = Decimal(0)
    outcome = FILL_INCOMPLETE

    for stmt in reversed(before_close):
        if stmt.quantity.is_zero():
            continue
        if _is_opening(stmt.quantity, close_is_sell):
            accumulated += abs(stmt.quantity)
            collected.append(stmt)
            if accumulated == target:
                outcome = FILL_EXACT
                break
            if accumulated > target:
                outcome = FILL_OVERFILL
                break
        else:
            collected.append(stmt)

    collected.reverse()
    if outcome == FILL_INCOMPLETE:
        return OpeningScan(outcome=outcome, accumulated=accumulated)
    return OpeningScan(outcome=outcome, accumulated=accumulated, executions=collected)


def _action_for(stmt: Execution, index: int, total: int, close_is_sell: bool) -> str:
    if index == 1:
        return ACTION_OPEN_POSITION
    if index == total:
        return ACTION_CLOSE_POSITION
    if _is_opening(stmt.quantity, close_is_sell):
        return ACTION_ADD_SIZE
    return ACTION_PARTIAL_CLOSE


def _is_opening(quantity: Decimal, close_is_sell: bool) -> bool:
    if close_is_sell:
        return quantity > 0
    return quantity < 0


def _extract_quantity(value: Any) -> Decimal | None:
    if isinstance(value, (int, float, Decimal, str)):
        return parse_decimal(value)
    return None


def _field(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            value = item.get(name)
        else:
            value = getattr(item, name, None)
        if value is not None:
            return value
    return None
