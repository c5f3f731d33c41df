"""Tests for loading room snapshots and traversing space children."""

from __future__ import annotations

import pytest
from conftest import FakeProtocolClient, meeting_room_state

from meetings.errors import ProtocolRequestError, RoomLoadError, RoomNotFoundError
from meetings.rooms.loader import RoomLoader, user_domain

pytestmark = pytest.mark.unit

ROOT = "!root:example.org"


def test_user_domain():
    assert user_domain("@bot:example.org") == "example.org"
    assert user_domain("@bot:example.org:8448") == "example.org:8448"


class TestFetchRoom:
    async def _fetch(self, client: FakeProtocolClient, room_id: str):
        return await RoomLoader(client).fetch_room(room_id)

    async def test_snapshot_of_full_state(self, fake_client: FakeProtocolClient):
        fake_client.rooms[ROOT] = meeting_room_state()
        room = await self._fetch(fake_client, ROOT)
        assert room.room_id == ROOT
        assert room.meeting is not None

    async def test_unknown_room(self, fake_client: FakeProtocolClient):
        with pytest.raises(RoomNotFoundError) as exc_info:
            await self._fetch(fake_client, "!missing:example.org")
        assert exc_info.value.room_id == "!missing:example.org"

    async def test_forbidden_room(self, fake_client: FakeProtocolClient):
        fake_client.fail[("get_room_state", ROOT)] = ProtocolRequestError(
            status_code=403, message="Not joined", errcode="M_FORBIDDEN"
        )
        with pytest.raises(RoomNotFoundError):
            await self._fetch(fake_client, ROOT)

    async def test_server_errors_propagate(self, fake_client: FakeProtocolClient):
        fake_client.fail[("get_room_state", ROOT)] = ProtocolRequestError(
            status_code=500, message="boom"
        )
        with pytest.raises(ProtocolRequestError):
            await self._fetch(fake_client, ROOT)


class TestLoadPartialRooms:
    async def test_rooms_without_parent_link_are_filtered(self, fake_client: FakeProtocolClient):
        fake_client.rooms["!a:x"] = meeting_room_state(parent=ROOT)
        fake_client.rooms["!b:x"] = meeting_room_state(parent="!elsewhere:x")
        fake_client.rooms["!c:x"] = meeting_room_state(meeting_type="m.space", parent=ROOT)

        rooms = await RoomLoader(fake_client).load_partial_rooms(["!a:x", "!b:x", "!c:x"], ROOT)

        assert [r.room_id for r in rooms] == ["!a:x", "!c:x"]
        assert rooms[0].meeting is not None
        assert rooms[1].meeting is None

    async def test_extra_filters_are_loaded(self, fake_client: FakeProtocolClient):
        fake_client.rooms["!a:x"] = meeting_room_state(parent=ROOT)
        rooms = await RoomLoader(fake_client).load_partial_rooms(
            ["!a:x"], ROOT, [("m.room.power_levels", "")]
        )
        assert rooms[0].power_levels is not None

    async def test_other_errors_are_aggregated(self, fake_client: FakeProtocolClient):
        fake_client.rooms["!a:x"] = meeting_room_state(parent=ROOT)
        fake_client.rooms["!b:x"] = meeting_room_state(parent=ROOT)
        fake_client.fail[("get_room_state_event", "!b:x")] = ProtocolRequestError(
            status_code=502, message="bad gateway"
        )

        with pytest.raises(RoomLoadError) as exc_info:
            await RoomLoader(fake_client).load_partial_rooms(["!a:x", "!b:x"], ROOT)
        assert exc_info.value.room_ids == ["!b:x"]


class TestTraverseRoomChildren:
    async def test_all_descendants_once(self, fake_client: FakeProtocolClient):
        fake_client.rooms[ROOT] = meeting_room_state(children=["!a:x", "!b:x"])
        fake_client.rooms["!a:x"] = meeting_room_state(parent=ROOT, children=["!c:x"])
        fake_client.rooms["!b:x"] = meeting_room_state(parent=ROOT)
        # cycle back to the root must not be followed
        fake_client.rooms["!c:x"] = meeting_room_state(parent="!a:x", children=[ROOT])

        loader = RoomLoader(fake_client)
        root = await loader.fetch_room(ROOT)
        rooms = await loader.traverse_room_children(root)

        assert sorted(r.room_id for r in rooms) == ["!a:x", "!b:x", "!c:x"]
        assert len(rooms) == 3

    async def test_children_are_full_snapshots(self, fake_client: FakeProtocolClient):
        fake_client.rooms[ROOT] = meeting_room_state(children=["!a:x"])
        fake_client.rooms["!a:x"] = meeting_room_state(parent=ROOT, title="Child")

        loader = RoomLoader(fake_client)
        (child,) = await loader.traverse_room_children(await loader.fetch_room(ROOT))
        assert child.title == "Child"
        assert child.power_levels is not None

    async def test_foreign_children_are_skipped(self, fake_client: FakeProtocolClient):
        fake_client.rooms[ROOT] = meeting_room_state(children=["!gone:x", "!foreign:x"])
        fake_client.rooms["!foreign:x"] = meeting_room_state(parent="!other:x")

        loader = RoomLoader(fake_client)
        assert await loader.traverse_room_children(await loader.fetch_room(ROOT)) == []


async def test_parent_add_child_room(fake_client: FakeProtocolClient):
    await RoomLoader(fake_client).parent_add_child_room(ROOT, "!child:x")

    (write,) = fake_client.state_writes
    assert (write.room_id, write.type, write.state_key) == (ROOT, "m.space.child", "!child:x")
    assert write.content == {"via": ["example.org"]}
