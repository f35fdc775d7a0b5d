from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

_COLUMNS = {
    "asset_category": "Asset Category",
    "currency": "Currency",
    "symbol": "Symbol",
    "datetime": "Date/Time",
    "quantity": "Quantity",
    "trade_price": "T. Price",
    "current_price": "C. Price",
    "proceeds": "Proceeds",
    "comm_fee": "Comm/Fee",
    "basis": "Basis",
    "realized_pl": "Realized P/L",
    "mtm_pl": "MTM P/L",
    "code": "Code",
}
_ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}(?:\.\d+)?$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_BROKER_DATETIME = re.compile(r"^(\d{4}-\d{2}-\d{2})[\s,]+(\d{2}:\d{2}:\d{2}(?:\.\d+)?)")


@dataclass(frozen=True)
class IngestResult:
    rows: list[dict[str, str | None]]
    skipped: int = 0
    period: str | None = None


def load_statement_rows(path: str | Path) -> IngestResult:
    source_path = Path(path)
    if source_path.suffix.lower() != ".csv":
        raise ValueError(f"Unsupported file type: {source_path.suffix}")
    return parse_statement_content(source_path.read_text(encoding="utf-8-sig"))


def parse_statement_content(content: str) -> IngestResult:
    records = list(csv.reader(io.StringIO(content)))
    rows, skipped = _trade_rows(records)
    return IngestResult(rows=rows, skipped=skipped, period=_period(records))


def parse_period(content: str) -> str | None:
    return _period(csv.reader(io.StringIO(content)))


def normalize_datetime(value: str | None) -> str | None:
    """Clean a broker "Date/Time" cell into something ISO-parseable.

    "2025-09-24, 13:45:33" and "2025-09-24,13:45:33" both become
    "2025-09-24 13:45:33"; ISO values and bare dates pass through.
    """
    if value is None:
        return None
    text = value.strip()
    if _ISO_DATETIME.match(text) or _ISO_DATE.match(text):
        return text
    match = _BROKER_DATETIME.match(text)
    if match is None:
        return text
    return f"{match.group(1)} {match.group(2)}"


def _trade_rows(records: Iterable[list[str]]) -> tuple[list[dict[str, str | None]], int]:
    header: dict[str, int] | None = None
    rows: list[dict[str, str | None]] = []
    skipped = 0
    for record in records:
        if len(record) < 2 or record[0] != "Trades":
            continue
        kind = record[1]
        if kind == "Header":
            header = {name: idx for idx, name in enumerate(record[2:])}
            continue
        if kind != "Data" or header is None:
            continue
        cells = record[2:]
        discriminator = header.get("DataDiscriminator")
        if discriminator is not None and _cell(cells, discriminator) != "Order":
            skipped += 1
            continue
        row = {key: _cell(cells, header.get(column)) for key, column in _COLUMNS.items()}
        row["datetime"] = normalize_datetime(row["datetime"])
        rows.append(row)
    return rows, skipped


def _period(records: Iterable[list[str]]) -> str | None:
    for record in records:
        if len(record) >= 4 and record[:3] == ["Statement", "Data", "Period"]:
            return record[3]
    return None


def _cell(cells: list[str], index: int | None) -> str | None:
    if index is None or index >= len(cells):
        return None
    return cells[index]
