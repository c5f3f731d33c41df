"""Event type names and the raw state-event record."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StateEventName(StrEnum):
    M_ROOM_NAME = "m.room.name"
    M_ROOM_CREATE = "m.room.create"
    M_ROOM_TOPIC = "m.room.topic"
    M_ROOM_MEMBER = "m.room.member"
    M_ROOM_POWER_LEVELS = "m.room.power_levels"
    M_ROOM_ENCRYPTION = "m.room.encryption"
    M_ROOM_TOMBSTONE = "m.room.tombstone"
    M_SPACE_PARENT = "m.space.parent"
    M_SPACE_CHILD = "m.space.child"
    IO_ELEMENT_WIDGETS_LAYOUT = "io.element.widgets.layout"
    IM_VECTOR_MODULAR_WIDGETS = "im.vector.modular.widgets"
    NIC_MEETINGS_METADATA = "net.nordeck.meetings.metadata"


class RoomEventName(StrEnum):
    M_ROOM_MESSAGE = "m.room.message"
    NIC_MEETINGS_MEETING_CREATE = "net.nordeck.meetings.meeting.create"
    NIC_MEETINGS_MEETING_UPDATE_DETAILS = "net.nordeck.meetings.meeting.update"
    NIC_MEETINGS_MEETING_CLOSE = "net.nordeck.meetings.meeting.close"
    NIC_MEETINGS_MEETING_CHANGE_MESSAGING_PERMISSIONS = (
        "net.nordeck.meetings.meeting.change.message_permissions"
    )
    NIC_MEETINGS_MEETING_WIDGETS_HANDLE = "net.nordeck.meetings.meeting.widgets.handle"
    NIC_MEETINGS_MEETING_PARTICIPANTS_HANDLE = "net.nordeck.meetings.meeting.participants.handle"
    NIC_MEETINGS_SUB_MEETINGS_SEND_MESSAGE = "net.nordeck.meetings.sub_meetings.send_message"
    NIC_MEETINGS_BREAKOUT_SESSIONS_CREATE = "net.nordeck.meetings.breakoutsessions.create"


class MeetingType(StrEnum):
    MEETING = "net.nordeck.meetings.meeting"
    BREAKOUT_SESSION = "net.nordeck.meetings.breakoutsession"


class WidgetType(StrEnum):
    COCKPIT = "net.nordeck.meetings.widget.cockpit"
    BREAKOUT_SESSIONS = "net.nordeck.meetings.widget.breakout-sessions"


class Membership(StrEnum):
    JOIN = "join"
    INVITE = "invite"
    LEAVE = "leave"
    BAN = "ban"
    KNOCK = "knock"


_STATE_EVENT_TYPES = frozenset(StateEventName)


def is_state_event_type(event_type: str) -> bool:
    """An event type is a state type iff it is one of the known state events."""
    return event_type in _STATE_EVENT_TYPES


class StateEvent(BaseModel):
    """One state event as returned by the protocol client."""

    model_config = ConfigDict(extra="ignore")

    type: str
    state_key: str = ""
    content: dict[str, Any] = Field(default_factory=dict)
    sender: str | None = None
    event_id: str | None = None
