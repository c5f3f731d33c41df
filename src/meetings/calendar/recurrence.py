"""Recurrence expansion over meeting calendars.

Series are expanded in the local civil time of their ``dtstart`` zone (so a
weekly 10:00 meeting stays at 10:00 across DST changes) and compared in UTC
once expanded.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from dateutil.rrule import rruleset, rrulestr

from meetings.calendar.models import (
    CalendarEntry,
    format_ical_date,
    is_finite_series,
    is_rrule_entry,
    is_rrule_override_entry,
    is_single_entry,
    parse_ical_date,
    same_instant,
    zone,
)

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime(9999, 1, 1)


@dataclass(frozen=True)
class MeetingOccurrence:
    """One concrete instance of a meeting.

    ``entries`` holds the series entry first and, for a diverging
    occurrence, the override entry last.
    """

    uid: str
    start: datetime
    end: datetime
    entries: tuple[CalendarEntry, ...]
    recurrence_id: datetime | None = None


class RecurrenceSeries:
    """A series entry expanded with dateutil, in the local time of ``dtstart``."""

    def __init__(self, entry: CalendarEntry) -> None:
        if entry.rrule is None:
            raise ValueError(f"Calendar entry {entry.uid} has no recurrence rule")
        self.entry = entry
        self.tz = zone(entry.dtstart.tzid)
        self.duration = parse_ical_date(entry.dtend) - parse_ical_date(entry.dtstart)
        self.is_finite = is_finite_series(entry.rrule)

        self.ruleset = rruleset()
        self.ruleset.rrule(
            rrulestr(entry.rrule, dtstart=self.to_local(parse_ical_date(entry.dtstart)), ignoretz=True)
        )
        for exdate in entry.exdate or ():
            self.ruleset.exdate(self.to_local(parse_ical_date(exdate)))

    def to_local(self, value: datetime) -> datetime:
        """Naive wall-clock time in the series zone."""
        return value.astimezone(self.tz).replace(tzinfo=None)

    def from_local(self, value: datetime) -> datetime:
        return value.replace(tzinfo=self.tz)

    def contains(self, recurrence_id: datetime) -> bool:
        """True if *recurrence_id* is a (non-excluded) occurrence of the series."""
        local = self.to_local(recurrence_id)
        found = self.ruleset.after(local, inc=True)
        return found is not None and found == local

    def occurrences_after(self, value: datetime, *, count: int) -> list[datetime]:
        result: list[datetime] = []
        current = self.ruleset.after(self.to_local(value), inc=True)
        while current is not None and len(result) < count:
            result.append(self.from_local(current))
            current = self.ruleset.after(current)
        return result

    def occurrences_between(self, start: datetime, end: datetime) -> list[datetime]:
        return [
            self.from_local(d)
            for d in self.ruleset.between(self.to_local(start), self.to_local(end), inc=True)
        ]

    def last_occurrence(self) -> datetime | None:
        if not self.is_finite:
            return None
        last = self.ruleset.before(_FAR_FUTURE)
        return self.from_local(last) if last is not None else None


def _in_window(start: datetime, end: datetime, from_time: datetime, to_time: datetime | None) -> bool:
    return from_time <= end and (to_time is None or start <= to_time)


def _overrides_for(calendar: Iterable[CalendarEntry], uid: str) -> list[CalendarEntry]:
    return [c for c in calendar if is_rrule_override_entry(c) and c.uid == uid]


def calculate_calendar_events(
    calendar: list[CalendarEntry],
    from_time: datetime,
    to_time: datetime | None = None,
    limit: int | None = None,
) -> list[MeetingOccurrence]:
    """Expand *calendar* into occurrences that overlap ``[from_time, to_time]``.

    Running occurrences that started before *from_time* are included. With
    only *limit*, the first *limit* upcoming occurrences are returned.
    """
    if to_time is None and limit is None:
        raise ValueError("Either limit or to_time must be given")

    events: list[MeetingOccurrence] = []

    for entry in filter(is_single_entry, calendar):
        start, end = parse_ical_date(entry.dtstart), parse_ical_date(entry.dtend)
        if _in_window(start, end, from_time, to_time):
            events.append(MeetingOccurrence(uid=entry.uid, start=start, end=end, entries=(entry,)))

    for entry in filter(is_rrule_entry, calendar):
        series = RecurrenceSeries(entry)
        overrides = _overrides_for(calendar, entry.uid)
        # move the window back by one duration so running occurrences are kept
        window_start = from_time - series.duration

        if to_time is not None:
            recurrence_ids = series.occurrences_between(window_start, to_time)
        else:
            # overrides can move occurrences out of the limit, so over-generate
            recurrence_ids = series.occurrences_after(window_start, count=limit + len(overrides))

        by_recurrence_id: dict[datetime, MeetingOccurrence] = {
            rid.astimezone(UTC): MeetingOccurrence(
                uid=entry.uid,
                start=rid,
                end=rid + series.duration,
                entries=(entry,),
                recurrence_id=rid,
            )
            for rid in recurrence_ids
        }

        for override in overrides:
            rid = parse_ical_date(override.recurrence_id)
            if not series.contains(rid):
                continue
            by_recurrence_id[rid.astimezone(UTC)] = MeetingOccurrence(
                uid=override.uid,
                start=parse_ical_date(override.dtstart),
                end=parse_ical_date(override.dtend),
                entries=(entry, override),
                recurrence_id=rid,
            )

        events.extend(
            e for e in by_recurrence_id.values() if _in_window(e.start, e.end, from_time, to_time)
        )

    events.sort(key=lambda e: e.start)
    return events[:limit] if limit is not None else events


def get_calendar_end(calendar: list[CalendarEntry]) -> datetime | None:
    """Return the end of the last occurrence, or None for infinite/empty calendars."""
    end_dates = [parse_ical_date(e.dtend) for e in calendar if is_single_entry(e)]

    for entry in filter(is_rrule_entry, calendar):
        series = RecurrenceSeries(entry)
        if not series.is_finite:
            return None

        last = series.last_occurrence()
        if last is None:
            continue
        end_dates.append(last + series.duration)
        end_dates.extend(
            parse_ical_date(o.dtend)
            for o in _overrides_for(calendar, entry.uid)
            if series.contains(parse_ical_date(o.recurrence_id))
        )

    return max(end_dates) if end_dates else None


def get_calendar_event(
    calendar: list[CalendarEntry],
    uid: str | None = None,
    recurrence_id: datetime | None = None,
    *,
    now: datetime | None = None,
) -> MeetingOccurrence | None:
    """Find one occurrence.

    With *recurrence_id*, the occurrence of series *uid* with that id (an
    override replaces it). Otherwise the current or next occurrence from
    *now*, falling back to the last occurrence of an ended calendar.
    """
    related = calendar if uid is None else [c for c in calendar if c.uid == uid]

    if recurrence_id is not None:
        override = next(
            (
                o
                for o in _overrides_for(calendar, uid)
                if parse_ical_date(o.recurrence_id) == recurrence_id
            ),
            None,
        )
        if override is not None:
            window = (parse_ical_date(override.dtstart), parse_ical_date(override.dtend))
        else:
            window = (recurrence_id, recurrence_id)
        candidates = calculate_calendar_events(related, from_time=window[0], to_time=window[1])
        return next((e for e in candidates if e.recurrence_id == recurrence_id), None)

    return current_or_last_occurrence(related, now or datetime.now(UTC))


def compute_current_occurrence(
    calendar: list[CalendarEntry], now: datetime
) -> MeetingOccurrence | None:
    """Return the active-or-next occurrence: the one with the earliest end ≥ *now*.

    Returns None once every occurrence has ended.
    """
    upcoming = calculate_calendar_events(calendar, from_time=now, limit=len(calendar) + 1)
    if not upcoming:
        return None
    return min(upcoming, key=lambda e: (e.end, e.start))


def current_or_last_occurrence(
    calendar: list[CalendarEntry], now: datetime
) -> MeetingOccurrence | None:
    """Like :func:`compute_current_occurrence`, but an ended calendar reports its final occurrence.

    Used where a finished meeting still needs a time to display.
    """
    occurrence = compute_current_occurrence(calendar, now)
    if occurrence is not None:
        return occurrence

    calendar_end = get_calendar_end(calendar)
    if calendar_end is None or calendar_end >= now:
        return None
    last = calculate_calendar_events(
        calendar, from_time=calendar_end - timedelta(milliseconds=1), limit=len(calendar) + 1
    )
    return max(last, key=lambda e: e.end) if last else None


# ---------------------------------------------------------------------------
# Deleting occurrences
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CalendarDeletion:
    """Result of deleting one occurrence.

    ``delete_series`` is set when the occurrence was the last remaining one
    of the meeting; the caller closes the room instead of writing a calendar
    in which nothing is left.
    """

    calendar: list[CalendarEntry]
    delete_series: bool = False
    changed: bool = False


def delete_calendar_event(
    calendar: list[CalendarEntry], uid: str, recurrence_id: datetime | None
) -> CalendarDeletion:
    """Exclude one occurrence of series *uid*.

    Removes a matching override and appends *recurrence_id* to the series
    ``exdate``. Deleting an occurrence that is already excluded is a no-op.
    """
    series_entry = next((c for c in calendar if c.uid == uid and is_rrule_entry(c)), None)

    if series_entry is None:
        if any(c.uid == uid and is_single_entry(c) for c in calendar):
            return CalendarDeletion(calendar=list(calendar), delete_series=True)
        return CalendarDeletion(calendar=list(calendar))

    if recurrence_id is None:
        return CalendarDeletion(calendar=list(calendar), delete_series=True)

    if get_calendar_event(calendar, uid, recurrence_id) is None:
        logger.debug("Occurrence %s of %s is not part of the calendar", recurrence_id, uid)
        return CalendarDeletion(calendar=list(calendar))

    new_exdate = format_ical_date(recurrence_id, series_entry.dtstart.tzid)
    existing = series_entry.exdate or ()
    exdates = existing if any(same_instant(e, new_exdate) for e in existing) else (*existing, new_exdate)
    updated_series = series_entry.model_copy(update={"exdate": exdates})

    series = RecurrenceSeries(updated_series)
    if series.is_finite and series.ruleset.after(datetime.min, inc=True) is None:
        return CalendarDeletion(calendar=list(calendar), delete_series=True)

    updated: list[CalendarEntry] = []
    for c in calendar:
        if (
            is_rrule_override_entry(c)
            and c.uid == uid
            and parse_ical_date(c.recurrence_id) == recurrence_id
        ):
            continue
        updated.append(updated_series if c is series_entry else c)
    return CalendarDeletion(calendar=updated, changed=True)


def override_calendar_entries(
    calendar: list[CalendarEntry], new_entry: CalendarEntry
) -> list[CalendarEntry]:
    """Insert *new_entry*, replacing the entry (or override) it supersedes."""
    if is_rrule_override_entry(new_entry):
        return [
            c
            for c in calendar
            if not (
                c.recurrence_id is not None
                and c.uid == new_entry.uid
                and same_instant(c.recurrence_id, new_entry.recurrence_id)
            )
        ] + [new_entry]

    return [c for c in calendar if c.uid != new_entry.uid] + [new_entry]
