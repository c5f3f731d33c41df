"""Tests for adding and removing meeting widgets."""

from __future__ import annotations

import pytest
from conftest import CREATOR, FakeProtocolClient, meeting_room_state, widget_event

from meetings.errors import PermissionDeniedError, ProtocolRequestError, WidgetCleanupError
from meetings.rooms.snapshot import RoomSnapshot
from meetings.schemas import MeetingWidgetsHandle, UserContext

pytestmark = pytest.mark.unit

ROOM = "!room:example.org"
COCKPIT_ID = "net.nordeck.meetings.widget.cockpit-1"
WIDGETS = "im.vector.modular.widgets"
LAYOUT = "io.element.widgets.layout"

ALICE = UserContext(user_id=CREATOR)


@pytest.fixture
def room(fake_client: FakeProtocolClient) -> FakeProtocolClient:
    fake_client.rooms[ROOM] = meeting_room_state(
        widgets=[
            widget_event("jitsi", "jitsi"),
            widget_event(COCKPIT_ID, "net.nordeck.meetings.widget.cockpit"),
        ]
    )
    return fake_client


def _handle(*widget_ids: str, add: bool) -> MeetingWidgetsHandle:
    return MeetingWidgetsHandle(target_room_id=ROOM, widget_ids=list(widget_ids), add=add)


def _widget_ids(client: FakeProtocolClient) -> list[str]:
    return RoomSnapshot(ROOM, client.rooms[ROOM]).meeting.widget_ids


class TestAdd:
    async def test_add_widget(self, meeting_service, room):
        resulting = await meeting_service.handle_widgets(ALICE, _handle("etherpad", add=True))

        assert resulting == ["jitsi", COCKPIT_ID, "etherpad"]
        written = {w.state_key: w.content for w in room.writes_of(WIDGETS)}
        assert written["etherpad"]["type"] == "etherpad"
        # Existing configured widgets are re-rendered from their template
        assert written["jitsi"]["data"] == {"title": "Weekly sync"}
        assert written["jitsi"]["url"].startswith("https://meet.example.org/")
        assert COCKPIT_ID not in written

        (layout,) = room.writes_of(LAYOUT)
        assert layout.content == {
            "widgets": {"jitsi": {"container": "top"}, "etherpad": {"container": "right"}}
        }

    async def test_cockpit_is_created_when_missing(self, meeting_service, fake_client):
        fake_client.rooms[ROOM] = meeting_room_state(widgets=[widget_event("jitsi", "jitsi")])

        await meeting_service.handle_widgets(ALICE, _handle("etherpad", add=True))

        cockpits = [
            w
            for w in fake_client.writes_of(WIDGETS)
            if w.content.get("type") == "net.nordeck.meetings.widget.cockpit"
        ]
        assert len(cockpits) == 1

    async def test_nothing_to_add(self, meeting_service, room):
        resulting = await meeting_service.handle_widgets(ALICE, _handle("jitsi", add=True))

        assert resulting == ["jitsi", COCKPIT_ID]
        assert room.state_writes == []


class TestRemove:
    async def test_add_then_remove_restores_widget_set(self, meeting_service, room):
        before = _widget_ids(room)

        await meeting_service.handle_widgets(ALICE, _handle("etherpad", add=True))
        resulting = await meeting_service.handle_widgets(ALICE, _handle("etherpad", add=False))

        assert resulting == ["jitsi", COCKPIT_ID]
        assert _widget_ids(room) == before
        cleared = room.writes_of(WIDGETS)[-1]
        assert (cleared.state_key, cleared.content) == ("etherpad", {})
        assert room.writes_of(LAYOUT)[-1].content == {"widgets": {"jitsi": {"container": "center"}}}

    async def test_removing_unknown_widget_is_a_no_op(self, meeting_service, room):
        resulting = await meeting_service.handle_widgets(ALICE, _handle("whiteboard", add=False))

        assert resulting == ["jitsi", COCKPIT_ID]
        assert room.state_writes == []

    async def test_cleanup_failure(self, meeting_service, room):
        await meeting_service.handle_widgets(ALICE, _handle("etherpad", add=True))
        room.fail[(f"send_state_event:{WIDGETS}", ROOM)] = ProtocolRequestError(
            status_code=500, message="boom"
        )

        with pytest.raises(WidgetCleanupError) as exc_info:
            await meeting_service.handle_widgets(ALICE, _handle("etherpad", add=False))

        assert exc_info.value.room_ids == [ROOM]
        assert "etherpad" in _widget_ids(room)


async def test_permission_denied(meeting_service, room):
    with pytest.raises(PermissionDeniedError):
        await meeting_service.handle_widgets(
            UserContext(user_id="@bob:example.org"), _handle("etherpad", add=True)
        )
    assert room.state_writes == []
