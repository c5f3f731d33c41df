"""Calendar entry models and iCalendar-style date helpers.

A meeting's schedule is a list of CalendarEntry. Times are stored as
floating local time plus an IANA zone id (``{tzid, value}``), never as a
bare instant, so recurrence expansion can follow local civil time.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import rrulestr
from pydantic import BaseModel, ConfigDict, Field, field_validator

ICAL_DATE_FORMAT = "%Y%m%dT%H%M%S"


class DateTimeEntry(BaseModel):
    """A timezoned date-time, e.g. ``{"tzid": "Europe/Berlin", "value": "20220101T100000"}``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tzid: str
    value: str = Field(pattern=r"^\d{8}T\d{6}$")

    @field_validator("tzid")
    @classmethod
    def _ensure_valid_timezone(cls, value: str) -> str:
        if value != "UTC":
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value


class CalendarEntry(BaseModel):
    """One entry of a meeting calendar.

    A bare entry is a single meeting, an entry with ``rrule`` is a series,
    and an entry with ``recurrence_id`` overrides one occurrence of the
    series sharing its ``uid``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    uid: str = Field(min_length=1)
    dtstart: DateTimeEntry
    dtend: DateTimeEntry
    rrule: str | None = None
    exdate: tuple[DateTimeEntry, ...] | None = None
    recurrence_id: DateTimeEntry | None = Field(default=None, alias="recurrenceId")

    @field_validator("rrule")
    @classmethod
    def _validate_rrule(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("rrule must not be empty")
        try:
            rrulestr(value, dtstart=datetime(2000, 1, 1), ignoretz=True)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Invalid recurrence rule {value!r}: {exc}") from exc
        return value

    def to_content(self) -> dict[str, Any]:
        """Serialize to the state-event wire shape (camelCase ``recurrenceId``)."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------


def zone(tzid: str) -> ZoneInfo:
    return ZoneInfo("UTC") if tzid == "UTC" else ZoneInfo(tzid)


def parse_ical_date(entry: DateTimeEntry) -> datetime:
    """Return the aware datetime described by *entry*."""
    return datetime.strptime(entry.value, ICAL_DATE_FORMAT).replace(tzinfo=zone(entry.tzid))


def format_ical_date(value: datetime, tzid: str = "UTC") -> DateTimeEntry:
    """Express *value* as floating local time in *tzid*.

    Naive datetimes are treated as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    local = value.astimezone(zone(tzid))
    return DateTimeEntry(tzid=tzid, value=local.strftime(ICAL_DATE_FORMAT))


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO 8601 string; a trailing ``Z`` and naive values mean UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_iso_string(value: datetime) -> str:
    """ISO string in UTC without microseconds, e.g. ``2022-01-01T10:00:00Z``."""
    return value.astimezone(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def same_instant(a: DateTimeEntry, b: DateTimeEntry) -> bool:
    return parse_ical_date(a) == parse_ical_date(b)


# ---------------------------------------------------------------------------
# Entry classification
# ---------------------------------------------------------------------------


def is_single_entry(entry: CalendarEntry) -> bool:
    return entry.rrule is None and entry.recurrence_id is None


def is_rrule_entry(entry: CalendarEntry) -> bool:
    return entry.rrule is not None and entry.recurrence_id is None


def is_rrule_override_entry(entry: CalendarEntry) -> bool:
    return entry.recurrence_id is not None


def rrule_parts(rule: str) -> dict[str, str]:
    """Split ``FREQ=WEEKLY;COUNT=3`` (optionally prefixed ``RRULE:``) into a dict."""
    if rule.upper().startswith("RRULE:"):
        rule = rule[len("RRULE:") :]
    parts: dict[str, str] = {}
    for item in rule.split(";"):
        key, sep, value = item.partition("=")
        if sep:
            parts[key.strip().upper()] = value.strip()
    return parts


def is_finite_series(rule: str) -> bool:
    parts = rrule_parts(rule)
    return "COUNT" in parts or "UNTIL" in parts


def is_recurring_calendar(calendar: list[CalendarEntry]) -> bool:
    return bool(calendar) and calendar[0].rrule is not None
