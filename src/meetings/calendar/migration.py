"""Reconciling meeting time payloads into a canonical calendar."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from dateutil.rrule import rrulestr

from meetings.calendar.models import (
    CalendarEntry,
    format_ical_date,
    parse_iso_datetime,
    rrule_parts,
    to_iso_string,
)
from meetings.calendar.recurrence import current_or_last_occurrence, get_calendar_end
from meetings.errors import MeetingValidationError

logger = logging.getLogger(__name__)

OPEN_XCHANGE_TYPE = "io.ox"


def migrate_meeting_time(
    *,
    start_time: str | None = None,
    end_time: str | None = None,
    calendar: list[CalendarEntry] | None = None,
    external_rrule: str | None = None,
) -> list[CalendarEntry] | None:
    """Reduce the three meeting-time shapes to one canonical calendar.

    The shapes are a legacy ``start_time``/``end_time`` pair, a full
    ``calendar`` and a recurrence rule from an external system, which only
    applies together with the pair. Returns None when the payload carries no
    time at all.

    Raises
    ------
    MeetingValidationError
        If more than one shape is supplied or the pair is incomplete.
    """
    has_pair_part = start_time is not None or end_time is not None

    if calendar is not None and has_pair_part:
        raise MeetingValidationError("calendar cannot be combined with start_time/end_time")
    if calendar is not None and external_rrule is not None:
        raise MeetingValidationError("calendar cannot be combined with an external recurrence rule")
    if has_pair_part and (start_time is None or end_time is None):
        raise MeetingValidationError("start_time and end_time must be given together")

    if calendar is not None:
        return list(calendar)

    if start_time is None or end_time is None:
        return None

    try:
        start = parse_iso_datetime(start_time)
        end = parse_iso_datetime(end_time)
    except ValueError as exc:
        raise MeetingValidationError(f"Invalid ISO 8601 time: {exc}") from exc

    try:
        return [
            CalendarEntry(
                uid=str(uuid.uuid4()),
                dtstart=format_ical_date(start),
                dtend=format_ical_date(end),
                rrule=external_rrule,
            )
        ]
    except ValueError as exc:
        raise MeetingValidationError(str(exc)) from exc


def extract_external_rrule(external_data: dict[str, Any] | None) -> str | None:
    """Return the first recurrence rule of an Open-Xchange reference, if valid.

    The reference lives at ``external_data["io.ox"]`` and needs a string
    ``folder``; every entry of ``rrules`` must parse.
    """
    value = (external_data or {}).get(OPEN_XCHANGE_TYPE)
    if not isinstance(value, dict):
        return None
    if not isinstance(value.get("folder"), str):
        return None
    if value.get("id") is not None and not isinstance(value.get("id"), str):
        return None

    rrules = value.get("rrules")
    if rrules is None:
        return None
    if not isinstance(rrules, list) or not all(_is_valid_rrule(r) for r in rrules):
        logger.warning("Ignoring malformed external recurrence rules: %r", rrules)
        return None
    return rrules[0] if rrules else None


def _is_valid_rrule(rule: Any) -> bool:
    if not isinstance(rule, str):
        return False
    try:
        rrulestr(rule, dtstart=datetime(2000, 1, 1), ignoretz=True)
    except (ValueError, TypeError):
        return False
    return True


def get_force_deletion_time(
    auto_deletion_offset: int | None, calendar: list[CalendarEntry] | None
) -> int | None:
    """Unix time in milliseconds at which the meeting room may be deleted.

    That is the end of the last occurrence plus ``max(0, offset)`` minutes;
    None for no offset, an empty calendar, or an infinite series.
    """
    if auto_deletion_offset is None or not calendar:
        return None
    calendar_end = get_calendar_end(calendar)
    if calendar_end is None:
        return None
    deletion = calendar_end + timedelta(minutes=max(0, auto_deletion_offset))
    return int(deletion.timestamp() * 1000)


def get_meeting_start_time(
    calendar: list[CalendarEntry] | None, *, now: datetime | None = None
) -> str | None:
    occurrence = _current(calendar, now)
    return to_iso_string(occurrence.start) if occurrence else None


def get_meeting_end_time(
    calendar: list[CalendarEntry] | None, *, now: datetime | None = None
) -> str | None:
    occurrence = _current(calendar, now)
    return to_iso_string(occurrence.end) if occurrence else None


def _current(calendar: list[CalendarEntry] | None, now: datetime | None):  # noqa: ANN202
    if not calendar:
        return None
    return current_or_last_occurrence(calendar, now or datetime.now(UTC))


# ---------------------------------------------------------------------------
# Human readable repetition text
# ---------------------------------------------------------------------------

_FREQ_UNITS = {
    "DAILY": "day",
    "WEEKLY": "week",
    "MONTHLY": "month",
    "YEARLY": "year",
}

_WEEKDAYS = {
    "MO": "Monday",
    "TU": "Tuesday",
    "WE": "Wednesday",
    "TH": "Thursday",
    "FR": "Friday",
    "SA": "Saturday",
    "SU": "Sunday",
}


def describe_rrule(rule: str | None) -> str:
    """English description of a recurrence rule, e.g. ``Every 2 weeks on Monday, 5 times``."""
    if not rule:
        return "No repetition"

    parts = rrule_parts(rule)
    unit = _FREQ_UNITS.get(parts.get("FREQ", ""), parts.get("FREQ", "").lower())
    interval = int(parts.get("INTERVAL", "1") or 1)
    text = f"Every {unit}" if interval == 1 else f"Every {interval} {unit}s"

    if "BYDAY" in parts:
        days = [_WEEKDAYS.get(d[-2:], d) for d in parts["BYDAY"].split(",")]
        text += " on " + ", ".join(days)
    if "COUNT" in parts:
        text += f", {parts['COUNT']} times"
    elif "UNTIL" in parts:
        until = parts["UNTIL"].rstrip("Z")
        text += f", until {until[0:4]}-{until[4:6]}-{until[6:8]}"
    return text
