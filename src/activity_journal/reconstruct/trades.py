from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

from activity_journal.config.app_config import TimeslotSettings
from activity_journal.ingest.normalize import truncate_to_second
from activity_journal.metrics.timing import chain_duration_seconds, chain_timeslots
from activity_journal.models import Execution, TradeRow
from activity_journal.reconstruct.action_chain import ExecutionSource, build_action_chains_batch

_CENTS = Decimal("0.01")


def closing_items(executions: Iterable[Execution]) -> list[Execution]:
    """Executions that realized P/L, i.e. closed or reduced a position."""
    return [
        item
        for item in sorted(executions, key=lambda stmt: stmt.timestamp)
        if item.realized_pl is not None and not item.realized_pl.is_zero()
    ]


def aggregated_side(close: Execution) -> str:
    if close.quantity < 0:
        return "LONG"
    if close.quantity > 0:
        return "SHORT"
    return "-"


def build_trade_rows(
    closes: Sequence[Execution],
    source: ExecutionSource,
    *,
    timeslots: TimeslotSettings,
) -> list[TradeRow]:
    rows: list[TradeRow] = []
    for close, chain in build_action_chains_batch(closes, source):
        realized = (close.realized_pl or Decimal(0)).quantize(_CENTS)
        entry_slot, close_slot = chain_timeslots(chain, timeslots)
        rows.append(
            TradeRow(
                datetime=truncate_to_second(close.timestamp),
                ticker=close.symbol,
                aggregated_side=aggregated_side(close),
                result="WIN" if realized > 0 else "LOSE",
                realized_pl=realized,
                action_chain=chain,
                duration=chain_duration_seconds(chain),
                entry_timeslot=entry_slot,
                close_timeslot=close_slot,
            )
        )
    return rows
