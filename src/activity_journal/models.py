from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

ACTION_OPEN_POSITION = "open_position"
ACTION_ADD_SIZE = "add_size"
ACTION_PARTIAL_CLOSE = "partial_close"
ACTION_CLOSE_POSITION = "close_position"

ACTION_LABELS = (
    ACTION_OPEN_POSITION,
    ACTION_ADD_SIZE,
    ACTION_PARTIAL_CLOSE,
    ACTION_CLOSE_POSITION,
)

# Chain as handed to downstream consumers: {"1": {...}, "2": {...}, ...}
ActionChain = dict[str, dict[str, Any]]


@dataclass(frozen=True)
class Execution:
    execution_id: int | str | None
    symbol: str
    timestamp: datetime
    quantity: Decimal
    price: Decimal | None = None
    comm_fee: Decimal | None = None
    realized_pl: Decimal | None = None
    asset_category: str | None = None
    currency: str | None = None

    @property
    def side(self) -> str:
        return "buy" if self.quantity > 0 else "sell"


@dataclass(frozen=True)
class ChainEntry:
    index: int
    execution: Execution
    action: str

    def to_dict(self) -> dict[str, Any]:
        execution = self.execution
        return {
            "execution_id": execution.execution_id,
            "action": self.action,
            "quantity": float(execution.quantity),
            "datetime": execution.timestamp.isoformat(),
            "price": float(execution.price) if execution.price is not None else None,
        }


@dataclass
class TradeRow:
    datetime: datetime
    ticker: str
    aggregated_side: str
    result: str
    realized_pl: Decimal
    action_chain: ActionChain | None = None
    duration: int | None = None
    entry_timeslot: str | None = None
    close_timeslot: str | None = None
    trade_id: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def trademark(self) -> str:
        return f"{self.ticker}@{self.datetime.isoformat()}"
