"""Calendar and recurrence model for meetings.

Pure data and algorithms over calendar entries; no I/O.
"""

from meetings.calendar.changes import CalendarChange, CalendarChangeType, extract_calendar_changes
from meetings.calendar.migration import (
    describe_rrule,
    extract_external_rrule,
    get_force_deletion_time,
    get_meeting_end_time,
    get_meeting_start_time,
    migrate_meeting_time,
)
from meetings.calendar.models import (
    CalendarEntry,
    DateTimeEntry,
    format_ical_date,
    parse_ical_date,
)
from meetings.calendar.recurrence import (
    CalendarDeletion,
    MeetingOccurrence,
    calculate_calendar_events,
    compute_current_occurrence,
    current_or_last_occurrence,
    delete_calendar_event,
    get_calendar_end,
    get_calendar_event,
    override_calendar_entries,
)

__all__ = [
    "CalendarChange",
    "CalendarChangeType",
    "CalendarDeletion",
    "CalendarEntry",
    "DateTimeEntry",
    "MeetingOccurrence",
    "calculate_calendar_events",
    "compute_current_occurrence",
    "current_or_last_occurrence",
    "delete_calendar_event",
    "describe_rrule",
    "extract_calendar_changes",
    "extract_external_rrule",
    "format_ical_date",
    "get_calendar_end",
    "get_calendar_event",
    "get_force_deletion_time",
    "get_meeting_end_time",
    "get_meeting_start_time",
    "migrate_meeting_time",
    "override_calendar_entries",
    "parse_ical_date",
]
