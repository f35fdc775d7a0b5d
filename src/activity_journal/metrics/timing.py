from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from activity_journal.config.app_config import TimeslotSettings
from activity_journal.ingest.normalize import parse_timestamp
from activity_journal.models import ACTION_CLOSE_POSITION


def chain_duration_seconds(chain: Mapping[str, Any] | None) -> int | None:
    open_time, close_time = _chain_bounds(chain)
    if open_time is None or close_time is None:
        return None
    return int((close_time - open_time).total_seconds())


def chain_timeslots(
    chain: Mapping[str, Any] | None, settings: TimeslotSettings
) -> tuple[str | None, str | None]:
    open_time, close_time = _chain_bounds(chain)
    entry = timeslot_label(open_time, settings) if open_time is not None else None
    close = timeslot_label(close_time, settings) if close_time is not None else None
    return entry, close


def timeslot_label(timestamp: datetime, settings: TimeslotSettings) -> str | None:
    """Bucket a timestamp into a session slot such as "1000-1030"."""
    try:
        zone = ZoneInfo(settings.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    local = timestamp.astimezone(zone)
    minute = local.hour * 60 + local.minute
    if minute < settings.session_start or minute >= settings.session_end:
        return None
    step = max(1, settings.slot_minutes)
    slot_start = settings.session_start + ((minute - settings.session_start) // step) * step
    slot_end = min(slot_start + step, settings.session_end)
    return f"{_hhmm(slot_start)}-{_hhmm(slot_end)}"


def _chain_bounds(
    chain: Mapping[str, Any] | None,
) -> tuple[datetime | None, datetime | None]:
    if not isinstance(chain, Mapping):
        return None, None
    opening = chain.get("1")
    closing = next(
        (
            entry
            for entry in chain.values()
            if isinstance(entry, Mapping) and entry.get("action") == ACTION_CLOSE_POSITION
        ),
        None,
    )
    open_time = parse_timestamp(opening.get("datetime")) if isinstance(opening, Mapping) else None
    close_time = parse_timestamp(closing.get("datetime")) if closing is not None else None
    return open_time, close_time


def _hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}{minutes % 60:02d}"
