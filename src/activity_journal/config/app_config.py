from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    import tomli as tomllib


@dataclass(frozen=True)
class AppSettings:
    db_path: Path
    host: str
    port: int
    reload: bool
    env_path: Path


@dataclass(frozen=True)
class IngestSettings:
    batch_size: int
    uploads_dir: Path


@dataclass(frozen=True)
class NotionProperties:
    title: str
    datetime: str
    ticker: str
    side: str
    result: str
    realized_pl: str
    duration: str
    entry_timeslot: str
    close_timeslot: str
    add_size: str
    size: str


@dataclass(frozen=True)
class NotionSettings:
    base_url: str
    version: str
    timeout_seconds: float
    retry_attempts: int
    retry_backoff_seconds: float
    page_size: int
    data_source_id: str | None
    properties: NotionProperties


@dataclass(frozen=True)
class TimeslotSettings:
    timezone: str
    slot_minutes: int
    session_start: int
    session_end: int


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    ingest: IngestSettings
    notion: NotionSettings
    timeslots: TimeslotSettings


def load_app_config(path: Path | None = None) -> AppConfig:
    config_path = path or Path("config/app.toml")
    raw: Mapping[str, Any] = {}
    if config_path.exists():
        raw = tomllib.loads(config_path.read_text(encoding="utf-8"))

    app_raw = _section(raw, "app")
    ingest_raw = _section(raw, "ingest")
    notion_raw = _section(raw, "notion")
    props_raw = _section(notion_raw, "properties")
    slots_raw = _section(raw, "timeslots")

    app = AppSettings(
        db_path=Path(app_raw.get("db_path", "data/activity_journal.sqlite")),
        host=str(app_raw.get("host", "127.0.0.1")),
        port=int(app_raw.get("port", 8000)),
        reload=bool(app_raw.get("reload", False)),
        env_path=Path(app_raw.get("env_path", ".env")),
    )

    ingest = IngestSettings(
        batch_size=max(1, int(ingest_raw.get("batch_size", 500))),
        uploads_dir=Path(ingest_raw.get("uploads_dir", "data/uploads")),
    )

    properties = NotionProperties(
        title=str(props_raw.get("title", "Trademark")),
        datetime=str(props_raw.get("datetime", "Datetime")),
        ticker=str(props_raw.get("ticker", "Ticker")),
        side=str(props_raw.get("side", "Side")),
        result=str(props_raw.get("result", "Result")),
        realized_pl=str(props_raw.get("realized_pl", "Realized P/L")),
        duration=str(props_raw.get("duration", "Duration")),
        entry_timeslot=str(props_raw.get("entry_timeslot", "Entry Timeslot")),
        close_timeslot=str(props_raw.get("close_timeslot", "Close Timeslot")),
        add_size=str(props_raw.get("add_size", "Add Size")),
        size=str(props_raw.get("size", "Size")),
    )

    notion = NotionSettings(
        base_url=str(notion_raw.get("base_url", "https://api.notion.com/v1")).rstrip("/"),
        version=str(notion_raw.get("version", "2025-09-03")),
        timeout_seconds=float(notion_raw.get("timeout_seconds", 30.0)),
        retry_attempts=int(notion_raw.get("retry_attempts", 3)),
        retry_backoff_seconds=float(notion_raw.get("retry_backoff_seconds", 1.0)),
        page_size=int(notion_raw.get("page_size", 100)),
        data_source_id=_str_or_none(notion_raw.get("data_source_id")),
        properties=properties,
    )

    session_start = _minutes_or_default(slots_raw.get("session_start"), "09:30")
    session_end = _minutes_or_default(slots_raw.get("session_end"), "17:00")
    if session_end <= session_start:
        session_start, session_end = _minutes("09:30"), _minutes("17:00")

    timeslots = TimeslotSettings(
        timezone=str(slots_raw.get("timezone", "America/New_York")).strip() or "America/New_York",
        slot_minutes=max(1, int(slots_raw.get("slot_minutes", 30))),
        session_start=session_start,
        session_end=session_end,
    )

    return AppConfig(app=app, ingest=ingest, notion=notion, timeslots=timeslots)


def default_timeslots() -> TimeslotSettings:
    return TimeslotSettings(
        timezone="America/New_York",
        slot_minutes=30,
        session_start=_minutes("09:30"),
        session_end=_minutes("17:00"),
    )


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if isinstance(value, Mapping):
        return value
    return {}


def _str_or_none(value: Any) -> str | None:
    if value in (None, ""):
        return None
    return str(value).strip() or None


def _minutes_or_default(value: Any, default: str) -> int:
    if isinstance(value, str):
        try:
            return _minutes(value)
        except ValueError:
            pass
    return _minutes(default)


def _minutes(value: str) -> int:
    match = re.match(r"^(\d{1,2}):(\d{2})$", value.strip())
    if not match:
        raise ValueError(f"Invalid time value: {value}")
    hour = int(match.group(1))
    minute = int(match.group(2))
    if hour < 0 or hour > 24 or minute < 0 or minute > 59 or (hour == 24 and minute):
        raise ValueError(f"Invalid time value: {value}")
    return hour * 60 + minute
