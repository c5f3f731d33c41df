"""Power-level evaluation for room state changes and actions.

Event types and actions live in separate namespaces. An event type resolves
its required level from ``events[type]``, then ``state_default`` or
``events_default``, then the built-in default (50 for state events, 0 for
everything else). An action resolves from its path in the power-level
content, then the built-in default of 50.

A room without power levels denies everything.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from meetings.errors import PermissionDeniedError
from meetings.rooms.events import is_state_event_type

if TYPE_CHECKING:
    from meetings.rooms.snapshot import RoomSnapshot

logger = logging.getLogger(__name__)

DEFAULT_STATE_LEVEL = 50
DEFAULT_EVENT_LEVEL = 0
DEFAULT_ACTION_LEVEL = 50


class PowerLevelAction(StrEnum):
    BAN = "ban"
    INVITE = "invite"
    KICK = "kick"
    REDACT = "redact"
    NOTIFY_ROOM = "notifications.room"


# Location of each action's threshold inside the power-level content.
_ACTION_PATHS: dict[PowerLevelAction, tuple[str, ...]] = {
    PowerLevelAction.BAN: ("ban",),
    PowerLevelAction.INVITE: ("invite",),
    PowerLevelAction.KICK: ("kick",),
    PowerLevelAction.REDACT: ("redact",),
    PowerLevelAction.NOTIFY_ROOM: ("notifications", "room"),
}


def _as_level(value: Any) -> int | float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value):
        return None
    return value


def _walk(content: dict[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = content
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


@dataclass(frozen=True)
class PowerLevels:
    """Parsed ``m.room.power_levels`` content."""

    users_default: int | float = 0
    users: dict[str, int | float] = field(default_factory=dict)
    events_default: int | float | None = None
    state_default: int | float | None = None
    events: dict[str, int | float] = field(default_factory=dict)
    action_levels: dict[PowerLevelAction, int | float] = field(default_factory=dict)

    @classmethod
    def from_content(cls, content: dict[str, Any]) -> PowerLevels:
        users = {
            user_id: level
            for user_id, raw in (content.get("users") or {}).items()
            if (level := _as_level(raw)) is not None
        }
        events = {
            event_type: level
            for event_type, raw in (content.get("events") or {}).items()
            if (level := _as_level(raw)) is not None
        }
        actions = {
            action: level
            for action, path in _ACTION_PATHS.items()
            if (level := _as_level(_walk(content, path))) is not None
        }
        return cls(
            users_default=_as_level(content.get("users_default")) or 0,
            users=users,
            events_default=_as_level(content.get("events_default")),
            state_default=_as_level(content.get("state_default")),
            events=events,
            action_levels=actions,
        )

    def user_level(self, user_id: str) -> int | float:
        return self.users.get(user_id, self.users_default)

    def required_for_event(self, event_type: str) -> int | float:
        if event_type in self.events:
            return self.events[event_type]
        if is_state_event_type(event_type):
            return self.state_default if self.state_default is not None else DEFAULT_STATE_LEVEL
        return self.events_default if self.events_default is not None else DEFAULT_EVENT_LEVEL

    def required_for_action(self, action: PowerLevelAction) -> int | float:
        return self.action_levels.get(action, DEFAULT_ACTION_LEVEL)

    def required_for(self, event_type_or_action: str) -> int | float:
        if isinstance(event_type_or_action, PowerLevelAction):
            return self.required_for_action(event_type_or_action)
        return self.required_for_event(event_type_or_action)


def calculate_user_power_level(
    power_levels: PowerLevels | dict[str, Any] | None, user_id: str
) -> int | float:
    """Effective level of *user_id*: ``users[user]``, else ``users_default``, else 0."""
    if power_levels is None:
        return 0
    if isinstance(power_levels, dict):
        power_levels = PowerLevels.from_content(power_levels)
    return power_levels.user_level(user_id)


def has_power_level_for(
    room: RoomSnapshot, user_id: str, event_type_or_action: str
) -> bool:
    """Whether *user_id* may send *event_type_or_action* in *room*.

    Pass a ``PowerLevelAction`` to check an action, any other string is
    treated as an event type.
    """
    power_levels = room.power_levels
    if power_levels is None:
        logger.debug("Room %s has no power levels, denying %s", room.room_id, event_type_or_action)
        return False
    return power_levels.user_level(user_id) >= power_levels.required_for(event_type_or_action)


def assert_power_level_for(room: RoomSnapshot, user_id: str, *event_types_or_actions: str) -> None:
    """Raise ``PermissionDeniedError`` unless every listed permission holds."""
    for event_type_or_action in event_types_or_actions:
        if not has_power_level_for(room, user_id, event_type_or_action):
            kind = "action" if isinstance(event_type_or_action, PowerLevelAction) else "event"
            raise PermissionDeniedError(
                f"User {user_id} has not enough power level to send {kind} "
                f"{event_type_or_action} in room {room.room_id}"
            )


def assert_can_kick(room: RoomSnapshot, user_id: str, target_ids: Iterable[str]) -> None:
    """Raise unless *user_id* strictly out-ranks every target.

    Runs on top of the ``kick`` action check, not instead of it.
    """
    power_levels = room.power_levels
    if power_levels is None:
        raise PermissionDeniedError(f"Room {room.room_id} has no power levels")
    actor_level = power_levels.user_level(user_id)
    for target_id in target_ids:
        if actor_level <= power_levels.user_level(target_id):
            raise PermissionDeniedError(
                f"User {user_id} has not enough power level to kick {target_id}"
            )
