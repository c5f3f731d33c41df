"""Diffing of meeting calendars.

Compares the stored calendar of a meeting with an updated one and reports
typed changes: series time/rule updates, added/updated/deleted overrides and
newly excluded occurrences.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from meetings.calendar.models import (
    CalendarEntry,
    DateTimeEntry,
    format_ical_date,
    is_rrule_entry,
    is_rrule_override_entry,
    is_single_entry,
    parse_ical_date,
)


class CalendarChangeType(StrEnum):
    UPDATE_SINGLE_OR_RECURRING_TIME = "updateSingleOrRecurringTime"
    UPDATE_SINGLE_OR_RECURRING_RRULE = "updateSingleOrRecurringRrule"
    ADD_OVERRIDE = "addOverride"
    UPDATE_OVERRIDE = "updateOverride"
    DELETE_OVERRIDE = "deleteOverride"
    ADD_EXDATE = "addExdate"


@dataclass(frozen=True)
class CalendarChange:
    """A single calendar change.

    Which optional fields are set depends on ``change_type``:

    - time updates carry ``uid`` plus ``old_start``/``old_end``/``new_start``/``new_end``
    - rule updates carry ``uid`` plus ``old_rrule``/``new_rrule``
    - override changes carry ``value`` (and ``old_value`` for updates,
      ``old_start``/``old_end`` of the replaced occurrence for additions)
    - exdate additions carry the excluded occurrence as ``old_start``/``old_end``
    """

    change_type: CalendarChangeType
    uid: str | None = None
    value: CalendarEntry | None = None
    old_value: CalendarEntry | None = None
    old_start: DateTimeEntry | None = None
    old_end: DateTimeEntry | None = None
    new_start: DateTimeEntry | None = None
    new_end: DateTimeEntry | None = None
    old_rrule: str | None = None
    new_rrule: str | None = None


@dataclass
class _SeriesState:
    base: CalendarEntry | None = None
    overrides: dict[datetime, CalendarEntry] = field(default_factory=dict)


def _index(calendar: list[CalendarEntry]) -> dict[str, _SeriesState]:
    states: dict[str, _SeriesState] = {}
    for entry in calendar:
        state = states.setdefault(entry.uid, _SeriesState())
        if is_single_entry(entry) or is_rrule_entry(entry):
            state.base = entry
        if is_rrule_override_entry(entry):
            state.overrides[parse_ical_date(entry.recurrence_id)] = entry
    return states


def _shift(start: DateTimeEntry, base: CalendarEntry) -> DateTimeEntry:
    duration = parse_ical_date(base.dtend) - parse_ical_date(base.dtstart)
    return format_ical_date(parse_ical_date(start) + duration, start.tzid)


def extract_calendar_changes(
    calendar: list[CalendarEntry], new_calendar: list[CalendarEntry]
) -> list[CalendarChange]:
    """Return the changes that turn *calendar* into *new_calendar*."""
    states = _index(calendar)
    changes: list[CalendarChange] = []

    for new_entry in new_calendar:
        state = states.get(new_entry.uid)

        if is_rrule_override_entry(new_entry):
            old_override = (
                state.overrides.get(parse_ical_date(new_entry.recurrence_id)) if state else None
            )
            if old_override is not None:
                if old_override != new_entry:
                    changes.append(
                        CalendarChange(
                            change_type=CalendarChangeType.UPDATE_OVERRIDE,
                            value=new_entry,
                            old_value=old_override,
                        )
                    )
            elif state and state.base is not None and is_rrule_entry(state.base):
                changes.append(
                    CalendarChange(
                        change_type=CalendarChangeType.ADD_OVERRIDE,
                        value=new_entry,
                        old_start=new_entry.recurrence_id,
                        old_end=_shift(new_entry.recurrence_id, state.base),
                    )
                )
            continue

        base = state.base if state else None
        if base is None:
            continue

        if is_rrule_entry(new_entry) and is_rrule_entry(base):
            old_exdates = list(base.exdate or ())
            for exdate in new_entry.exdate or ():
                if exdate in old_exdates:
                    continue
                override = state.overrides.get(parse_ical_date(exdate))
                if override is not None:
                    changes.append(
                        CalendarChange(change_type=CalendarChangeType.DELETE_OVERRIDE, value=override)
                    )
                else:
                    changes.append(
                        CalendarChange(
                            change_type=CalendarChangeType.ADD_EXDATE,
                            old_start=exdate,
                            old_end=_shift(exdate, base),
                        )
                    )

        if (new_entry.dtstart, new_entry.dtend) != (base.dtstart, base.dtend):
            changes.append(
                CalendarChange(
                    change_type=CalendarChangeType.UPDATE_SINGLE_OR_RECURRING_TIME,
                    uid=new_entry.uid,
                    old_start=base.dtstart,
                    old_end=base.dtend,
                    new_start=new_entry.dtstart,
                    new_end=new_entry.dtend,
                )
            )

        if new_entry.rrule != base.rrule:
            changes.append(
                CalendarChange(
                    change_type=CalendarChangeType.UPDATE_SINGLE_OR_RECURRING_RRULE,
                    uid=new_entry.uid,
                    old_rrule=base.rrule,
                    new_rrule=new_entry.rrule,
                )
            )

    return changes
