"""Push reconstructed trades into the journaling workspace.

Each trade maps to one page, identified by its trademark title
("TICKER@ISO-DATETIME"). Missing pages are created; existing pages only get
the properties whose values differ.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from activity_journal.config.app_config import NotionProperties
from activity_journal.ingest.normalize import parse_timestamp
from activity_journal.models import ACTION_ADD_SIZE, TradeRow
from activity_journal.sync.notion_api import iter_pages

STATUS_CREATED = "created"
STATUS_UPDATED = "updated"
STATUS_UNCHANGED = "unchanged"
STATUS_ERROR = "error"

# Property name -> (notion type, value)
DesiredProperties = dict[str, tuple[str, Any]]


@dataclass(frozen=True)
class SyncOutcome:
    trademark: str
    status: str
    page_id: str | None = None
    changed: tuple[str, ...] = ()
    error: str | None = None


@dataclass
class SyncReport:
    outcomes: list[SyncOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def created(self) -> int:
        return self.count(STATUS_CREATED)

    @property
    def updated(self) -> int:
        return self.count(STATUS_UPDATED)

    @property
    def unchanged(self) -> int:
        return self.count(STATUS_UNCHANGED)

    @property
    def errors(self) -> int:
        return self.count(STATUS_ERROR)


def trade_properties(
    trade: TradeRow, names: NotionProperties, *, r_size: float | None = None
) -> DesiredProperties:
    realized = float(trade.realized_pl)
    desired: DesiredProperties = {
        names.title: ("title", trade.trademark),
        names.datetime: ("date", trade.datetime.isoformat()),
        names.ticker: ("rich_text", trade.ticker),
        names.side: ("select", trade.aggregated_side),
        names.result: ("select", trade.result),
        names.realized_pl: ("number", realized),
        names.duration: ("number", trade.duration),
        names.entry_timeslot: ("select", trade.entry_timeslot),
        names.close_timeslot: ("select", trade.close_timeslot),
        names.add_size: ("checkbox", _has_add_size(trade.action_chain)),
    }
    if trade.result == "LOSE" and r_size:
        desired[names.size] = ("number", round(abs(realized) / r_size, 2))
    return desired


def to_notion_properties(desired: DesiredProperties) -> dict[str, Any]:
    return {name: _encode(kind, value) for name, (kind, value) in desired.items()}


def diff_properties(desired: DesiredProperties, page: Mapping[str, Any]) -> DesiredProperties:
    current = page.get("properties") if isinstance(page, Mapping) else None
    if not isinstance(current, Mapping):
        current = {}
    changed: DesiredProperties = {}
    for name, (kind, value) in desired.items():
        existing = flatten_property(current.get(name))
        if not _same_value(kind, value, existing):
            changed[name] = (kind, value)
    return changed


def flatten_property(prop: Any) -> Any:
    """Reduce a typed page property to a plain comparable value."""
    if not isinstance(prop, Mapping):
        return None
    kind = prop.get("type")
    if kind is None:
        kind = next((key for key in _ENCODERS if key in prop), None)
    value = prop.get(kind) if kind else None
    if kind in ("title", "rich_text"):
        if not isinstance(value, list):
            return ""
        return "".join(_plain_text(part) for part in value)
    if kind == "date":
        return value.get("start") if isinstance(value, Mapping) else None
    if kind == "select":
        return value.get("name") if isinstance(value, Mapping) else None
    if kind in ("number", "checkbox"):
        return value
    return None


def page_title(page: Mapping[str, Any], title_property: str) -> str | None:
    properties = page.get("properties")
    if not isinstance(properties, Mapping):
        return None
    title = flatten_property(properties.get(title_property))
    return title or None


def index_pages_by_title(
    pages: Iterable[Mapping[str, Any]], title_property: str
) -> dict[str, Mapping[str, Any]]:
    index: dict[str, Mapping[str, Any]] = {}
    for page in pages:
        title = page_title(page, title_property)
        if title and title not in index:
            index[title] = page
    return index


def sync_trades(
    client: Any,
    data_source_id: str,
    trades: Iterable[TradeRow],
    names: NotionProperties,
    *,
    r_size: float | None = None,
    dry_run: bool = False,
) -> SyncReport:
    existing = index_pages_by_title(iter_pages(client, data_source_id), names.title)
    report = SyncReport()
    for trade in trades:
        desired = trade_properties(trade, names, r_size=r_size)
        page = existing.get(trade.trademark)
        try:
            if page is None:
                page_id = None
                if not dry_run:
                    created = client.create_page(
                        {
                            "parent": {"data_source_id": data_source_id},
                            "properties": to_notion_properties(desired),
                        }
                    )
                    page_id = _page_id(created)
                report.outcomes.append(
                    SyncOutcome(trademark=trade.trademark, status=STATUS_CREATED, page_id=page_id)
                )
                continue

            page_id = _page_id(page)
            changed = diff_properties(desired, page)
            if not changed:
                report.outcomes.append(
                    SyncOutcome(trademark=trade.trademark, status=STATUS_UNCHANGED, page_id=page_id)
                )
                continue
            if not dry_run and page_id is not None:
                client.update_page(page_id, to_notion_properties(changed))
            report.outcomes.append(
                SyncOutcome(
                    trademark=trade.trademark,
                    status=STATUS_UPDATED,
                    page_id=page_id,
                    changed=tuple(sorted(changed)),
                )
            )
        except RuntimeError as exc:
            report.outcomes.append(
                SyncOutcome(trademark=trade.trademark, status=STATUS_ERROR, error=str(exc))
            )
    return report


def _encode(kind: str, value: Any) -> dict[str, Any]:
    return _ENCODERS[kind](value)


def _encode_text(kind: str):
    def encode(value: Any) -> dict[str, Any]:
        if value in (None, ""):
            return {kind: []}
        return {kind: [{"type": "text", "text": {"content": str(value)}}]}

    return encode


def _encode_date(value: Any) -> dict[str, Any]:
    return {"date": {"start": value} if value else None}


def _encode_select(value: Any) -> dict[str, Any]:
    return {"select": {"name": str(value)} if value not in (None, "") else None}


_ENCODERS = {
    "title": _encode_text("title"),
    "rich_text": _encode_text("rich_text"),
    "date": _encode_date,
    "select": _encode_select,
    "number": lambda value: {"number": value},
    "checkbox": lambda value: {"checkbox": bool(value)},
}


def _same_value(kind: str, desired: Any, existing: Any) -> bool:
    if kind == "date":
        if not desired or not existing:
            return not desired and not existing
        return parse_timestamp(desired) == parse_timestamp(existing)
    if kind == "number":
        if desired is None or existing is None:
            return desired is None and existing is None
        try:
            return round(float(desired), 6) == round(float(existing), 6)
        except (TypeError, ValueError):
            return False
    if kind == "checkbox":
        return bool(desired) == bool(existing)
    if kind in ("title", "rich_text"):
        return (desired or "") == (existing or "")
    return (desired or None) == (existing or None)


def _plain_text(part: Any) -> str:
    if not isinstance(part, Mapping):
        return ""
    if isinstance(part.get("plain_text"), str):
        return part["plain_text"]
    text = part.get("text")
    if isinstance(text, Mapping) and isinstance(text.get("content"), str):
        return text["content"]
    return ""


def _page_id(page: Any) -> str | None:
    if isinstance(page, Mapping) and page.get("id") is not None:
        return str(page["id"])
    return None


def _has_add_size(chain: Mapping[str, Any] | None) -> bool:
    if not isinstance(chain, Mapping):
        return False
    return any(
        isinstance(entry, Mapping) and entry.get("action") == ACTION_ADD_SIZE
        for entry in chain.values()
    )
