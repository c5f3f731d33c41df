"""Shared test fixtures for the meetings test suite.

The canonical definitions live in the root ``conftest.py`` so tests can import
the fakes and state builders directly (``from conftest import FakeProtocolClient``).

FakeProtocolClient keeps room state in memory and records every write so tests
can assert on the exact protocol traffic an operation produced.
"""

from __future__ import annotations

import copy
import itertools
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import pytest

from meetings.errors import ProtocolRequestError
from meetings.protocol.base import ProtocolClient

BOT_USER = "@bot:example.org"
CREATOR = "@alice:example.org"


@dataclass
class SentStateEvent:
    room_id: str
    type: str
    state_key: str
    content: dict[str, Any]


@dataclass
class SentEvent:
    room_id: str
    type: str
    content: dict[str, Any]


@dataclass
class MemberCall:
    room_id: str
    user_id: str
    reason: str | None = None


@dataclass
class FakeProtocolClient(ProtocolClient):
    """In-memory protocol client.

    ``rooms`` maps a room id to its list of state events; state writes to a
    known room are applied to it, so a second operation reads the result of
    the first. ``fail`` maps a
    ``(method, key)`` pair to the exception raised by that call, where *key*
    is the room id (or the ``room_id/user_id`` pair for invites and kicks).
    """

    user_id: str = BOT_USER
    rooms: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)
    fail: dict[tuple[str, str], Exception] = field(default_factory=dict)
    created_room_id: str | None = "!new:example.org"

    state_writes: list[SentStateEvent] = field(default_factory=list)
    events: list[SentEvent] = field(default_factory=list)
    invites: list[MemberCall] = field(default_factory=list)
    kicks: list[MemberCall] = field(default_factory=list)
    left: list[str] = field(default_factory=list)
    created: list[dict[str, Any]] = field(default_factory=list)
    state_reads: list[str] = field(default_factory=list)

    _ids: itertools.count = field(default_factory=itertools.count)

    def _maybe_fail(self, method: str, key: str) -> None:
        exc = self.fail.get((method, key))
        if exc is not None:
            raise exc

    def _event_id(self) -> str:
        return f"$event{next(self._ids)}"

    # -- reads ------------------------------------------------------------

    async def get_user_id(self) -> str:
        return self.user_id

    async def get_user_profile(self, user_id: str) -> dict[str, Any]:
        return dict(self.profiles.get(user_id, {}))

    async def get_room_state(self, room_id: str) -> list[dict[str, Any]]:
        self._maybe_fail("get_room_state", room_id)
        self.state_reads.append(room_id)
        if room_id not in self.rooms:
            raise ProtocolRequestError(status_code=404, message="Unknown room", errcode="M_NOT_FOUND")
        return copy.deepcopy(self.rooms[room_id])

    async def get_room_state_event(
        self, room_id: str, event_type: str, state_key: str = ""
    ) -> dict[str, Any]:
        self._maybe_fail("get_room_state_event", room_id)
        for event in self.rooms.get(room_id, []):
            if event["type"] == event_type and event.get("state_key", "") == state_key:
                return copy.deepcopy(event["content"])
        raise ProtocolRequestError(
            status_code=404, message="Event not found", errcode="M_NOT_FOUND"
        )

    # -- writes -----------------------------------------------------------

    async def create_room(self, options: dict[str, Any]) -> str | None:
        self.created.append(options)
        return self.created_room_id

    async def send_state_event(
        self, room_id: str, event_type: str, state_key: str, content: dict[str, Any]
    ) -> str:
        self._maybe_fail("send_state_event", room_id)
        self._maybe_fail(f"send_state_event:{event_type}", room_id)
        self.state_writes.append(SentStateEvent(room_id, event_type, state_key, content))
        if room_id in self.rooms:
            self._apply_state(room_id, str(event_type), state_key, copy.deepcopy(content))
        return self._event_id()

    def _apply_state(
        self, room_id: str, event_type: str, state_key: str, content: dict[str, Any]
    ) -> None:
        room = self.rooms[room_id]
        new_event = state(event_type, content, state_key)
        for index, event in enumerate(room):
            if event["type"] == event_type and event.get("state_key", "") == state_key:
                room[index] = new_event
                return
        room.append(new_event)

    async def send_event(self, room_id: str, event_type: str, content: dict[str, Any]) -> str:
        self._maybe_fail("send_event", room_id)
        self.events.append(SentEvent(room_id, event_type, content))
        return self._event_id()

    async def invite_user(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        self._maybe_fail("invite_user", f"{room_id}/{user_id}")
        self.invites.append(MemberCall(room_id, user_id, reason))

    async def kick_user(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        self._maybe_fail("kick_user", f"{room_id}/{user_id}")
        self.kicks.append(MemberCall(room_id, user_id, reason))

    async def leave_room(self, room_id: str) -> None:
        self._maybe_fail("leave_room", room_id)
        self.left.append(room_id)

    # -- helpers ----------------------------------------------------------

    def writes_of(self, event_type: str, room_id: str | None = None) -> list[SentStateEvent]:
        return [
            w
            for w in self.state_writes
            if w.type == event_type and (room_id is None or w.room_id == room_id)
        ]


# ---------------------------------------------------------------------------
# State builders
# ---------------------------------------------------------------------------


def state(event_type: str, content: dict[str, Any], state_key: str = "") -> dict[str, Any]:
    return {"type": event_type, "state_key": state_key, "content": content}


def power_levels_event(
    users: dict[str, int] | None = None, **overrides: Any
) -> dict[str, Any]:
    content: dict[str, Any] = {
        "users": {BOT_USER: 101, CREATOR: 100, **(users or {})},
        "users_default": 0,
        "events_default": 0,
        "state_default": 50,
        "ban": 50,
        "kick": 50,
        "invite": 0,
        "redact": 50,
        "events": {},
    }
    content.update(overrides)
    return state("m.room.power_levels", content)


def member_event(user_id: str, membership: str = "join", **content: Any) -> dict[str, Any]:
    return state("m.room.member", {"membership": membership, **content}, user_id)


def widget_event(widget_id: str, widget_type: str = "custom", **content: Any) -> dict[str, Any]:
    body = {"id": widget_id, "type": widget_type, "url": f"https://widgets/{widget_id}"}
    body.update(content)
    return state("im.vector.modular.widgets", body, widget_id)


def single_calendar(
    start: str = "20300101T100000", end: str = "20300101T110000", uid: str = "entry-1"
) -> list[dict[str, Any]]:
    return [
        {
            "uid": uid,
            "dtstart": {"tzid": "UTC", "value": start},
            "dtend": {"tzid": "UTC", "value": end},
        }
    ]


def meeting_room_state(
    *,
    meeting_type: str = "net.nordeck.meetings.meeting",
    title: str = "Weekly sync",
    topic: str = "Agenda",
    calendar: list[dict[str, Any]] | None = None,
    members: Iterable[tuple[str, str]] = ((CREATOR, "join"), (BOT_USER, "join")),
    power_users: dict[str, int] | None = None,
    power_overrides: dict[str, Any] | None = None,
    children: Iterable[str] = (),
    parent: str | None = None,
    widgets: Iterable[dict[str, Any]] = (),
    extra: Iterable[dict[str, Any]] = (),
) -> list[dict[str, Any]]:
    """State of a meeting room as the homeserver would return it."""
    events = [
        state("m.room.create", {"type": meeting_type, "creator": CREATOR}),
        state(
            "net.nordeck.meetings.metadata",
            {
                "creator": CREATOR,
                "calendar": calendar if calendar is not None else single_calendar(),
            },
        ),
        state("m.room.name", {"name": title}),
        state("m.room.topic", {"topic": topic}),
        power_levels_event(power_users, **(power_overrides or {})),
    ]
    events.extend(member_event(user_id, membership) for user_id, membership in members)
    events.extend(state("m.space.child", {"via": ["example.org"]}, child) for child in children)
    if parent is not None:
        events.append(state("m.space.parent", {"via": ["example.org"]}, parent))
    events.extend(widgets)
    events.extend(extra)
    return events


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_client() -> FakeProtocolClient:
    return FakeProtocolClient(profiles={CREATOR: {"displayname": "Alice"}})


EVENTS_CONFIG = {
    "state_events": [
        {"type": "m.room.guest_access", "content": {"guest_access": "forbidden"}},
        {
            "type": "im.vector.modular.widgets",
            "state_key": "jitsi",
            "optional": False,
            "content": {
                "type": "jitsi",
                "url": "https://meet.example.org/{{base32_room_id}}",
                "name": "Video conference",
                "data": {"title": "{{title}}"},
            },
        },
        {
            "type": "im.vector.modular.widgets",
            "state_key": "etherpad",
            "optional": True,
            "content": {"type": "etherpad", "url": "https://pad.example.org/", "name": "Notes"},
        },
    ],
    "room_events": [
        {"type": "m.room.message", "content": {"msgtype": "m.notice", "body": "Welcome to {{title}}"}}
    ],
}

WIDGET_LAYOUTS = [
    {"widgetIds": ["jitsi"], "layouts": {"jitsi": {"container": "center"}}},
    {
        "widgetIds": ["etherpad", "jitsi"],
        "layouts": {"jitsi": {"container": "top"}, "etherpad": {"container": "right"}},
    },
]


@pytest.fixture
def meeting_service(fake_client: FakeProtocolClient):
    from meetings.config import WidgetDefaults
    from meetings.service.meetings import MeetingService
    from meetings.widgets.events_config import RoomEventsConfig
    from meetings.widgets.layout import WidgetLayoutConfig, WidgetLayoutMatcher

    return MeetingService(
        fake_client,
        events_config=RoomEventsConfig.model_validate(EVENTS_CONFIG),
        layouts=WidgetLayoutMatcher(WidgetLayoutConfig.model_validate(c) for c in WIDGET_LAYOUTS),
        widget_defaults=WidgetDefaults(
            cockpit_url="https://widgets.example.org/cockpit",
            breakout_session_url="https://widgets.example.org/breakout",
        ),
        auto_deletion_offset=30,
        link_share="https://matrix.to/#/",
    )
