from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Any, Mapping

KEY_SCALE = 8
_QUANTUM = Decimal(1).scaleb(-KEY_SCALE)
_KEY_CONTEXT = Context(prec=40, rounding=ROUND_HALF_UP)
_ZERO_KEY = format(Decimal(0).quantize(_QUANTUM), "f")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_BROKER_DATETIME = re.compile(r"^(\d{4}-\d{2}-\d{2})[\s,]+(\d{2}:\d{2}:\d{2}(?:\.\d+)?)")

StatementKey = tuple[int, str, str, str, str]


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a statement/closing timestamp into an aware UTC datetime.

    Naive values are taken as UTC. Returns None for anything that cannot be
    read as a point in time.
    """
    if isinstance(value, datetime):
        return _utc_or_none(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        return _utc_or_none(datetime.fromisoformat(text))
    except ValueError:
        pass
    match = _BROKER_DATETIME.match(text)
    if match is None:
        return None
    try:
        return _utc_or_none(datetime.fromisoformat(f"{match.group(1)} {match.group(2)}"))
    except ValueError:
        return None


def parse_day(value: Any) -> date | None:
    """Read "YYYY-MM-DD" or "YYYYMMDD" as a calendar date."""
    if isinstance(value, datetime):
        parsed = _utc_or_none(value)
        return parsed.date() if parsed is not None else None
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if re.fullmatch(r"\d{8}", text):
        text = f"{text[:4]}-{text[4:6]}-{text[6:]}"
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def timestamp_micros(value: datetime) -> int:
    return (as_utc(value) - _EPOCH) // timedelta(microseconds=1)


def parse_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return parse_decimal(repr(value))
    if not isinstance(value, str):
        return None
    text = value.strip().replace(",", "")
    if not text:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def normalize_decimal(value: Any) -> str | None:
    """Render a numeric value with exactly eight fractional digits.

    Unreadable values render as zero. Values too large to carry eight
    fractional digits return None.
    """
    parsed = parse_decimal(value)
    if parsed is None:
        return _ZERO_KEY
    try:
        quantized = parsed.quantize(_QUANTUM, context=_KEY_CONTEXT)
    except InvalidOperation:
        return None
    if quantized.is_zero():
        return _ZERO_KEY
    return format(quantized, "f")


def infer_side(quantity: Any) -> str:
    # Unparseable quantities fall through to "buy".
    parsed = parse_decimal(quantity)
    if parsed is not None and parsed < 0:
        return "sell"
    return "buy"


def infer_position_action(realized_pl: Any) -> str:
    parsed = parse_decimal(realized_pl)
    if parsed is None or parsed.is_zero():
        return "build"
    return "close"


def statement_key(
    timestamp: Any,
    symbol: Any,
    quantity: Any,
    price: Any,
    side: str | None = None,
) -> StatementKey | None:
    parsed = parse_timestamp(timestamp)
    quantity_key = normalize_decimal(quantity)
    price_key = normalize_decimal(price)
    if parsed is None or quantity_key is None or price_key is None:
        return None
    return (
        timestamp_micros(parsed),
        "" if symbol is None else str(symbol).strip(),
        side or infer_side(quantity),
        quantity_key,
        price_key,
    )


def statement_key_for_row(row: Mapping[str, Any]) -> StatementKey | None:
    return statement_key(
        _pick(row, "datetime", "timestamp"),
        _pick(row, "symbol", "ticker"),
        _pick(row, "quantity"),
        _pick(row, "trade_price", "price"),
        side=_pick(row, "side"),
    )


def to_execution_row(row: Mapping[str, Any]) -> dict[str, Any] | None:
    """Map a parsed statement row onto stored column values.

    Rows without a usable timestamp or symbol, whose quantity is zero or
    unreadable, or whose quantity or price is out of range, are rejected
    with None.
    """
    timestamp = parse_timestamp(_pick(row, "datetime", "timestamp"))
    symbol = _pick(row, "symbol", "ticker")
    quantity = parse_decimal(_pick(row, "quantity"))
    if timestamp is None or not symbol or quantity is None or quantity.is_zero():
        return None
    symbol = str(symbol).strip()
    raw_quantity = _pick(row, "quantity")
    price = _pick(row, "trade_price", "price")
    quantity_text = normalize_decimal(quantity)
    price_text = normalize_decimal(price)
    if quantity_text is None or price_text is None:
        return None
    realized_pl = _pick(row, "realized_pl")
    return {
        "timestamp": format_timestamp(timestamp),
        "timestamp_us": timestamp_micros(timestamp),
        "symbol": symbol,
        "side": infer_side(raw_quantity),
        "position_action": infer_position_action(realized_pl),
        "asset_category": _text_or_none(_pick(row, "asset_category")),
        "currency": _text_or_none(_pick(row, "currency")),
        "quantity": quantity_text,
        "trade_price": price_text,
        "proceeds": _decimal_text_or_none(_pick(row, "proceeds")),
        "comm_fee": _decimal_text_or_none(_pick(row, "comm_fee")),
        "realized_pl": _decimal_text_or_none(realized_pl),
    }


def row_key(stored: Mapping[str, Any]) -> StatementKey:
    return (
        int(stored["timestamp_us"]),
        str(stored["symbol"]),
        str(stored["side"]),
        str(stored["quantity"]),
        str(stored["trade_price"]),
    )


def format_timestamp(value: datetime) -> str:
    # Fixed width so stored text sorts in time order.
    return as_utc(value).isoformat(timespec="microseconds")


def truncate_to_second(value: datetime) -> datetime:
    return value.replace(microsecond=0)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utc_or_none(value: datetime) -> datetime | None:
    # Offsets near datetime.min/max overflow when shifted to UTC.
    try:
        return as_utc(value)
    except OverflowError:
        return None


def _pick(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in row and row[key] not in (None, ""):
            return row[key]
    return None


def _text_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _decimal_text_or_none(value: Any) -> str | None:
    if parse_decimal(value) is None:
        return None
    return normalize_decimal(value)
