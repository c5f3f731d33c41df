"""Room state: event names, power levels, snapshots and loading."""

from meetings.rooms.events import (
    MeetingType,
    Membership,
    RoomEventName,
    StateEvent,
    StateEventName,
    WidgetType,
    is_state_event_type,
)
from meetings.rooms.power_levels import (
    PowerLevelAction,
    PowerLevels,
    assert_can_kick,
    assert_power_level_for,
    calculate_user_power_level,
    has_power_level_for,
)
from meetings.rooms.snapshot import Meeting, Participant, RoomSnapshot

__all__ = [
    "Meeting",
    "MeetingType",
    "Membership",
    "Participant",
    "PowerLevelAction",
    "PowerLevels",
    "RoomEventName",
    "RoomSnapshot",
    "StateEvent",
    "StateEventName",
    "WidgetType",
    "assert_can_kick",
    "assert_power_level_for",
    "calculate_user_power_level",
    "has_power_level_for",
]
