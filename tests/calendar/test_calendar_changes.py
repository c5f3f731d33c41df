"""Tests for calendar diffing."""

from __future__ import annotations

import pytest

from meetings.calendar.changes import CalendarChangeType, extract_calendar_changes
from meetings.calendar.models import CalendarEntry, DateTimeEntry

pytestmark = pytest.mark.unit


def _dt(value: str) -> DateTimeEntry:
    return DateTimeEntry(tzid="UTC", value=value)


SERIES = CalendarEntry(
    uid="series",
    dtstart=_dt("20300107T100000"),
    dtend=_dt("20300107T110000"),
    rrule="FREQ=WEEKLY;COUNT=3",
)


def _override(start: str, end: str) -> CalendarEntry:
    return CalendarEntry(
        uid="series",
        dtstart=_dt(start),
        dtend=_dt(end),
        recurrence_id=_dt("20300114T100000"),
    )


def _types(changes) -> list[CalendarChangeType]:
    return [c.change_type for c in changes]


class TestExtractCalendarChanges:
    def test_identical_calendars(self):
        assert extract_calendar_changes([SERIES], [SERIES]) == []

    def test_time_update(self):
        moved = SERIES.model_copy(
            update={"dtstart": _dt("20300107T120000"), "dtend": _dt("20300107T130000")}
        )
        (change,) = extract_calendar_changes([SERIES], [moved])

        assert change.change_type == CalendarChangeType.UPDATE_SINGLE_OR_RECURRING_TIME
        assert change.uid == "series"
        assert change.old_start == _dt("20300107T100000")
        assert change.new_end == _dt("20300107T130000")

    def test_rrule_update(self):
        longer = SERIES.model_copy(update={"rrule": "FREQ=WEEKLY;COUNT=5"})
        (change,) = extract_calendar_changes([SERIES], [longer])

        assert change.change_type == CalendarChangeType.UPDATE_SINGLE_OR_RECURRING_RRULE
        assert change.old_rrule == "FREQ=WEEKLY;COUNT=3"
        assert change.new_rrule == "FREQ=WEEKLY;COUNT=5"

    def test_single_to_series_is_an_rrule_update(self):
        single = SERIES.model_copy(update={"rrule": None})
        assert _types(extract_calendar_changes([single], [SERIES])) == [
            CalendarChangeType.UPDATE_SINGLE_OR_RECURRING_RRULE
        ]

    def test_add_override_reports_replaced_occurrence(self):
        override = _override("20300115T120000", "20300115T130000")
        (change,) = extract_calendar_changes([SERIES], [SERIES, override])

        assert change.change_type == CalendarChangeType.ADD_OVERRIDE
        assert change.value == override
        assert change.old_start == _dt("20300114T100000")
        assert change.old_end == _dt("20300114T110000")

    def test_update_override(self):
        first = _override("20300115T120000", "20300115T130000")
        second = _override("20300116T120000", "20300116T130000")
        (change,) = extract_calendar_changes([SERIES, first], [SERIES, second])

        assert change.change_type == CalendarChangeType.UPDATE_OVERRIDE
        assert change.old_value == first
        assert change.value == second

    def test_unchanged_override(self):
        override = _override("20300115T120000", "20300115T130000")
        assert extract_calendar_changes([SERIES, override], [SERIES, override]) == []

    def test_exdate_on_overridden_occurrence_deletes_override(self):
        override = _override("20300115T120000", "20300115T130000")
        excluded = SERIES.model_copy(update={"exdate": (_dt("20300114T100000"),)})
        (change,) = extract_calendar_changes([SERIES, override], [excluded])

        assert change.change_type == CalendarChangeType.DELETE_OVERRIDE
        assert change.value == override

    def test_new_exdate(self):
        excluded = SERIES.model_copy(update={"exdate": (_dt("20300114T100000"),)})
        (change,) = extract_calendar_changes([SERIES], [excluded])

        assert change.change_type == CalendarChangeType.ADD_EXDATE
        assert change.old_start == _dt("20300114T100000")
        assert change.old_end == _dt("20300114T110000")

    def test_existing_exdate_is_not_reported_again(self):
        excluded = SERIES.model_copy(update={"exdate": (_dt("20300114T100000"),)})
        assert extract_calendar_changes([excluded], [excluded]) == []

    def test_new_uid_is_ignored(self):
        other = SERIES.model_copy(update={"uid": "other"})
        assert extract_calendar_changes([SERIES], [other]) == []
