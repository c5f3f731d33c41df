"""Typed, read-only view of a room reconstructed from its state events.

A RoomSnapshot is built fresh for every operation and never patched in
place: writes go to the protocol and the next operation re-reads state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from meetings.calendar.migration import (
    get_meeting_end_time,
    get_meeting_start_time,
    migrate_meeting_time,
)
from meetings.calendar.models import CalendarEntry
from meetings.errors import MeetingValidationError
from meetings.rooms.events import Membership, MeetingType, StateEvent, StateEventName
from meetings.rooms.power_levels import PowerLevels

logger = logging.getLogger(__name__)


class MeetingMetadataContent(BaseModel):
    """Content of the ``net.nordeck.meetings.metadata`` state event."""

    model_config = ConfigDict(extra="allow")

    creator: str | None = None
    calendar: list[CalendarEntry] | None = None
    start_time: str | None = None
    end_time: str | None = None
    auto_deletion_offset: int | None = None
    force_deletion_at: int | None = None
    external_data: dict[str, Any] | None = None


@dataclass(frozen=True)
class Participant:
    user_id: str
    membership: Membership
    display_name: str | None = None


@dataclass(frozen=True)
class Meeting:
    """Projection of a meeting room's state."""

    room_id: str
    type: MeetingType
    creator: str | None
    title: str | None
    description: str | None
    calendar: list[CalendarEntry] = field(default_factory=list)
    parent_room_id: str | None = None
    widget_ids: list[str] = field(default_factory=list)
    participants: list[Participant] = field(default_factory=list)
    external_data: dict[str, Any] | None = None
    auto_deletion_offset: int | None = None
    force_deletion_at: int | None = None

    @property
    def participant_ids(self) -> list[str]:
        return [p.user_id for p in self.participants]

    @property
    def start_time(self) -> str | None:
        return get_meeting_start_time(self.calendar)

    @property
    def end_time(self) -> str | None:
        return get_meeting_end_time(self.calendar)


class RoomSnapshot:
    """Classified state of one room.

    Holds power levels, the optional meeting projection, widget and
    membership events and the space parent/child links.
    """

    def __init__(self, room_id: str, events: list[StateEvent | dict[str, Any]]) -> None:
        self.room_id = room_id
        self._events: list[StateEvent] = [
            e if isinstance(e, StateEvent) else StateEvent.model_validate(e) for e in events
        ]

    def __repr__(self) -> str:
        return f"RoomSnapshot(room_id={self.room_id!r}, events={len(self._events)})"

    def room_events_by_name(self, event_type: str) -> list[StateEvent]:
        return [e for e in self._events if e.type == event_type]

    def _first_content(self, event_type: str) -> dict[str, Any] | None:
        events = self.room_events_by_name(event_type)
        return events[0].content if events else None

    # -- simple accessors -------------------------------------------------

    @property
    def title(self) -> str | None:
        return (self._first_content(StateEventName.M_ROOM_NAME) or {}).get("name")

    @property
    def topic(self) -> str | None:
        return (self._first_content(StateEventName.M_ROOM_TOPIC) or {}).get("topic")

    @property
    def power_level_content(self) -> dict[str, Any] | None:
        return self._first_content(StateEventName.M_ROOM_POWER_LEVELS)

    @cached_property
    def power_levels(self) -> PowerLevels | None:
        content = self.power_level_content
        return PowerLevels.from_content(content) if content is not None else None

    @property
    def encryption_event(self) -> StateEvent | None:
        events = self.room_events_by_name(StateEventName.M_ROOM_ENCRYPTION)
        return events[0] if events else None

    def room_member_events(self) -> list[StateEvent]:
        return self.room_events_by_name(StateEventName.M_ROOM_MEMBER)

    def participants(self, ignore: tuple[str, ...] = ()) -> list[Participant]:
        """Members that joined or are invited."""
        result: list[Participant] = []
        for event in self.room_member_events():
            membership = event.content.get("membership")
            if membership not in (Membership.INVITE, Membership.JOIN):
                continue
            if event.state_key in ignore:
                continue
            result.append(
                Participant(
                    user_id=event.state_key,
                    membership=Membership(membership),
                    display_name=event.content.get("displayname"),
                )
            )
        return result

    # -- space links ------------------------------------------------------

    @property
    def space_sub_rooms(self) -> dict[str, dict[str, Any]]:
        """Child room id to space-child content, for links that declare ``via``."""
        return {
            e.state_key: e.content
            for e in self.room_events_by_name(StateEventName.M_SPACE_CHILD)
            if e.content.get("via")
        }

    @property
    def space_parent_id(self) -> str | None:
        events = self.room_events_by_name(StateEventName.M_SPACE_PARENT)
        return events[0].state_key if events else None

    # -- widgets ----------------------------------------------------------

    def widget_events(self, *, include_removed: bool = False) -> list[StateEvent]:
        """Widget state events with ``content.id`` forced to the state key.

        Widgets whose content has no ``type`` are removed widgets and are
        skipped unless *include_removed* is set.
        """
        result: list[StateEvent] = []
        for event in self.room_events_by_name(StateEventName.IM_VECTOR_MODULAR_WIDGETS):
            if not include_removed and event.content.get("type") is None:
                continue
            content_id = event.content.get("id")
            if content_id is not None and content_id != event.state_key:
                logger.warning(
                    "Widget id mismatch in room %s: content.id=%s state_key=%s",
                    self.room_id,
                    content_id,
                    event.state_key,
                )
            result.append(
                event.model_copy(update={"content": {**event.content, "id": event.state_key}})
            )
        return result

    def widget_event_by_id(self, widget_id: str) -> StateEvent | None:
        return next((e for e in self.widget_events() if e.content["id"] == widget_id), None)

    def widget_event_by_type(self, widget_type: str) -> StateEvent | None:
        return next((e for e in self.widget_events() if e.content.get("type") == widget_type), None)

    # -- meeting projection -----------------------------------------------

    @cached_property
    def meeting(self) -> Meeting | None:
        create_content = self._first_content(StateEventName.M_ROOM_CREATE)
        metadata_raw = self._first_content(StateEventName.NIC_MEETINGS_METADATA)
        if create_content is None or metadata_raw is None:
            return None

        meeting_type = create_content.get("type")
        if meeting_type not in (MeetingType.MEETING, MeetingType.BREAKOUT_SESSION):
            return None

        try:
            metadata = MeetingMetadataContent.model_validate(metadata_raw)
        except ValidationError:
            logger.warning("Malformed meeting metadata in room %s", self.room_id, exc_info=True)
            return None

        calendar = metadata.calendar
        if calendar is None:
            try:
                calendar = migrate_meeting_time(
                    start_time=metadata.start_time, end_time=metadata.end_time
                )
            except MeetingValidationError:
                logger.warning("Unreadable legacy meeting time in room %s", self.room_id)
                calendar = None

        return Meeting(
            room_id=self.room_id,
            type=MeetingType(meeting_type),
            creator=metadata.creator,
            title=self.title,
            description=self.topic,
            calendar=calendar or [],
            parent_room_id=self.space_parent_id,
            widget_ids=[e.content["id"] for e in self.widget_events()],
            participants=self.participants(),
            external_data=metadata.external_data,
            auto_deletion_offset=metadata.auto_deletion_offset,
            force_deletion_at=metadata.force_deletion_at,
        )
