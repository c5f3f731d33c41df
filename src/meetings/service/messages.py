"""User-facing texts: invite reasons and meeting change notifications.

Texts are English; dates are rendered in the acting user's timezone.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from meetings.calendar.changes import CalendarChange, CalendarChangeType, extract_calendar_changes
from meetings.calendar.migration import describe_rrule
from meetings.calendar.models import CalendarEntry, is_recurring_calendar, parse_iso_datetime
from meetings.rooms.snapshot import Meeting
from meetings.schemas import UserContext

logger = logging.getLogger(__name__)

KICK_REASON = "User {user_id} has been removed by {sender}"
CLOSED_ROOM_MESSAGE = "Room was closed by administrator"

_INVITED_TEXT = (
    "You've been invited to a meeting by {organizer}. It will take place on {start_date} at "
    "{start_time} {timezone} and ends on {end_date} at {end_time} {timezone}. Please accept "
    'this invitation by clicking the "Accept" button to add the meeting to your calendar. '
    'To stay away from the meeting, click on the "Reject" button.'
)
_ORGANIZER_TEXT = (
    "The meeting was created for you. It will take place on {start_date} at {start_time} "
    '{timezone}. Please accept this invitation by clicking the "Accept" button to add the '
    'meeting to your calendar. To stay away from the meeting, click on the "Reject" button.'
)
_INVITED_HTML = (
    "You've been invited to a meeting by {organizer}. It will take place on <b>{start_date} "
    "at {start_time} {timezone}</b> and ends on <b>{end_date} at {end_time} {timezone}</b>. "
    'Please accept this invitation by clicking the "Accept" button to add the meeting to your '
    'calendar. To stay away from the meeting, click on the "Reject" button.'
)
_ORGANIZER_HTML = (
    "The meeting was created for you. It will take place on <b>{start_date} at {start_time} "
    '{timezone}</b>. Please accept this invitation by clicking the "Accept" button to add the '
    'meeting to your calendar. To stay away from the meeting, click on the "Reject" button.'
)

_TIME_CHANGE_TYPES = frozenset(
    {
        CalendarChangeType.UPDATE_SINGLE_OR_RECURRING_TIME,
        CalendarChangeType.ADD_OVERRIDE,
        CalendarChangeType.UPDATE_OVERRIDE,
        CalendarChangeType.DELETE_OVERRIDE,
        CalendarChangeType.ADD_EXDATE,
    }
)


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def _local(value: str | datetime, timezone: str) -> datetime:
    moment = parse_iso_datetime(value) if isinstance(value, str) else value
    return moment.astimezone(_zone(timezone))


def _date(value: datetime) -> str:
    return value.strftime("%m/%d/%Y")


def _time(value: datetime) -> str:
    return value.strftime("%I:%M %p").lstrip("0")


def format_date_time(value: str | datetime, timezone: str) -> str:
    """``06/28/2021 10:07 PM UTC`` style rendering in *timezone*."""
    local = _local(value, timezone)
    return f"{_date(local)} {_time(local)} {local.tzname()}"


@dataclass(frozen=True)
class InviteReasons:
    text: str
    html: str


def make_invite_reasons(
    *,
    description: str | None,
    start_time: str | None,
    end_time: str | None,
    user: UserContext,
    organizer_display_name: str | None,
    is_organizer: bool,
) -> InviteReasons:
    """Reasons attached to a meeting invite, for the organizer or for an invitee."""
    if start_time is None or end_time is None:
        return InviteReasons(text="", html="")

    start = _local(start_time, user.timezone)
    end = _local(end_time, user.timezone)
    params = {
        "organizer": organizer_display_name or "",
        "start_date": _date(start),
        "start_time": _time(start),
        "end_date": _date(end),
        "end_time": _time(end),
        "timezone": start.tzname(),
    }
    html_params = {k: html.escape(v) for k, v in params.items()}

    if is_organizer:
        text = _ORGANIZER_TEXT.format(**params)
        html_reason = _ORGANIZER_HTML.format(**html_params)
    else:
        text = _INVITED_TEXT.format(**params)
        html_reason = _INVITED_HTML.format(**html_params)

    if description:
        html_reason += f"<hr><div><i>{html.escape(description)}</i></div>"
    return InviteReasons(text=text, html=html_reason)


def nudge_reason(previous_reason: str | None, reason: str) -> str:
    """Return *reason*, with a trailing space if it equals the stored reason.

    Clients only re-render an invite when the reason text changes, so an
    unchanged reason is altered by whitespace to surface the other changes.
    """
    if previous_reason and previous_reason == reason:
        return f"{reason} "
    return reason


@dataclass(frozen=True)
class MeetingChanges:
    title_changed: bool = False
    description_changed: bool = False
    time_changed: bool = False
    repetition_changed: bool = False
    calendar_changes: list[CalendarChange] = field(default_factory=list)

    @property
    def anything_changed(self) -> bool:
        return (
            self.title_changed
            or self.description_changed
            or self.time_changed
            or bool(self.calendar_changes)
        )


def compute_meeting_changes(old: Meeting, new: Meeting) -> MeetingChanges:
    """Diff two projections of the same meeting."""
    calendar_changes = extract_calendar_changes(old.calendar, new.calendar)
    time_changed = (old.start_time, old.end_time) != (new.start_time, new.end_time) or any(
        c.change_type in _TIME_CHANGE_TYPES for c in calendar_changes
    )
    repetition_changed = any(
        c.change_type == CalendarChangeType.UPDATE_SINGLE_OR_RECURRING_RRULE
        for c in calendar_changes
    )
    return MeetingChanges(
        title_changed=old.title != new.title,
        description_changed=old.description != new.description,
        time_changed=time_changed,
        repetition_changed=repetition_changed,
        calendar_changes=calendar_changes,
    )


def _current(text: str) -> str:
    return f"<strong>{text}</strong><br>"


def _previous(text: str) -> str:
    return f'<font color="#888">(previously: {text})</font><br>'


def _repetition_text(calendar: list[CalendarEntry]) -> str:
    if is_recurring_calendar(calendar):
        return describe_rrule(calendar[0].rrule)
    return describe_rrule(None)


def _date_range(meeting: Meeting, timezone: str) -> str:
    if meeting.start_time is None or meeting.end_time is None:
        return "-"
    start = format_date_time(meeting.start_time, timezone)
    end = format_date_time(meeting.end_time, timezone)
    return f"{start} to {end}"


def render_change_notification(
    user: UserContext, old: Meeting, new: Meeting, changes: MeetingChanges
) -> str | None:
    """HTML notice listing current and previous values of every changed field."""
    if not changes.anything_changed:
        return None

    esc = html.escape
    parts = [_current("CHANGES")]
    if changes.title_changed:
        parts.append(_current(f"Title: {esc(new.title or '')}"))
        parts.append(_previous(esc(old.title or "")))
    if changes.time_changed:
        parts.append(_current(f"Date: {esc(_date_range(new, user.timezone))}"))
        parts.append(_previous(esc(_date_range(old, user.timezone))))
    if changes.description_changed:
        parts.append(_current(f"Description: {esc(new.description or '')}"))
        parts.append(_previous(esc(old.description or "")))
    if changes.repetition_changed:
        parts.append(_current(f"Repeat meeting: {esc(_repetition_text(new.calendar))}"))
        parts.append(_previous(esc(_repetition_text(old.calendar))))
    return "".join(parts)
