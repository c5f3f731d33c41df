"""Loading room snapshots through the protocol client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence

from meetings.errors import ProtocolRequestError, RoomFailure, RoomLoadError, RoomNotFoundError
from meetings.protocol.base import ProtocolClient
from meetings.rooms.events import StateEvent, StateEventName
from meetings.rooms.snapshot import RoomSnapshot

logger = logging.getLogger(__name__)


def user_domain(user_id: str) -> str:
    """Server part of a ``@local:domain`` user id."""
    return user_id.split(":", 1)[1] if ":" in user_id else user_id


class RoomLoader:
    """Reads rooms fresh from the protocol; never caches between calls."""

    def __init__(self, client: ProtocolClient) -> None:
        self._client = client

    async def fetch_room(self, room_id: str) -> RoomSnapshot:
        """Full state of *room_id*.

        Raises
        ------
        RoomNotFoundError
            If the room does not exist or is not readable.
        """
        try:
            events = await self._client.get_room_state(room_id)
        except ProtocolRequestError as exc:
            if exc.status_code in (403, 404):
                raise RoomNotFoundError(room_id) from exc
            raise
        return RoomSnapshot(room_id, events)

    async def load_partial_rooms(
        self,
        room_ids: Iterable[str],
        parent_room_id: str | None = None,
        extra_filters: Sequence[tuple[str, str]] = (),
    ) -> list[RoomSnapshot]:
        """Load rooms with only a few selected state events.

        Each room gets ``m.room.create``, the meeting metadata, the
        ``m.space.parent`` link to *parent_room_id* (when given) and every
        ``(event_type, state_key)`` in *extra_filters*. A room missing any of
        them is filtered out; other errors are raised together after every
        room was tried.
        """
        selectors: list[tuple[str, str]] = [
            (StateEventName.M_ROOM_CREATE, ""),
            (StateEventName.NIC_MEETINGS_METADATA, ""),
        ]
        if parent_room_id:
            selectors.append((StateEventName.M_SPACE_PARENT, parent_room_id))
        selectors.extend(extra_filters)

        ids = list(room_ids)
        outcomes = await asyncio.gather(
            *(self._load_partial(room_id, selectors) for room_id in ids),
            return_exceptions=True,
        )

        rooms: list[RoomSnapshot] = []
        failures: list[RoomFailure] = []
        for room_id, outcome in zip(ids, outcomes, strict=True):
            if isinstance(outcome, ProtocolRequestError) and outcome.is_not_found:
                logger.debug("Room %s filtered out of partial load", room_id)
            elif isinstance(outcome, Exception):
                failures.append(RoomFailure(room_id, outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                rooms.append(outcome)

        if failures:
            raise RoomLoadError("Failed to load rooms", failures)
        return rooms

    async def _load_partial(self, room_id: str, selectors: list[tuple[str, str]]) -> RoomSnapshot:
        contents = await asyncio.gather(
            *(
                self._client.get_room_state_event(room_id, event_type, state_key)
                for event_type, state_key in selectors
            )
        )
        events = [
            StateEvent(type=event_type, state_key=state_key, content=content)
            for (event_type, state_key), content in zip(selectors, contents, strict=True)
        ]
        return RoomSnapshot(room_id, events)

    async def traverse_room_children(self, parent: RoomSnapshot) -> list[RoomSnapshot]:
        """Every descendant reachable through space-child links, each room once."""
        visited: set[str] = {parent.room_id}
        rooms: list[RoomSnapshot] = []

        async def _load(room: RoomSnapshot) -> None:
            child_ids = [cid for cid in room.space_sub_rooms if cid not in visited]
            if not child_ids:
                return
            visited.update(child_ids)
            children = await self.load_partial_rooms(child_ids, room.room_id)
            # Partial loads do not carry space-child links, re-read the full state
            full_children = await asyncio.gather(*(self.fetch_room(c.room_id) for c in children))
            await asyncio.gather(*(_load(child) for child in full_children))
            rooms.extend(full_children)

        await _load(parent)
        return rooms

    async def parent_add_child_room(self, parent_room_id: str, child_room_id: str) -> None:
        """Link *child_room_id* under *parent_room_id* via the service account's domain."""
        user_id = await self._client.get_user_id()
        await self._client.send_state_event(
            parent_room_id,
            StateEventName.M_SPACE_CHILD,
            child_room_id,
            {"via": [user_domain(user_id)]},
        )
