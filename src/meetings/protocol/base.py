"""Abstract protocol client consumed by the meetings engine."""

from __future__ import annotations

import abc
from typing import Any

MESSAGE_EVENT_TYPE = "m.room.message"


class ProtocolClient(abc.ABC):
    """Narrow room-protocol interface used by the orchestrator.

    Implementations raise ``ProtocolRequestError`` when the server rejects a
    request; ``is_not_found`` identifies a missing room or state event.
    """

    @abc.abstractmethod
    async def get_user_id(self) -> str:
        """Id of the acting service account."""
        ...

    @abc.abstractmethod
    async def get_user_profile(self, user_id: str) -> dict[str, Any]:
        """Profile of *user_id*; ``displayname`` may be missing."""
        ...

    @abc.abstractmethod
    async def get_room_state(self, room_id: str) -> list[dict[str, Any]]:
        """All current state events of a room."""
        ...

    @abc.abstractmethod
    async def get_room_state_event(
        self, room_id: str, event_type: str, state_key: str = ""
    ) -> dict[str, Any]:
        """Content of one state event."""
        ...

    @abc.abstractmethod
    async def create_room(self, options: dict[str, Any]) -> str | None:
        """Create a room and return its id."""
        ...

    @abc.abstractmethod
    async def send_state_event(
        self, room_id: str, event_type: str, state_key: str, content: dict[str, Any]
    ) -> str:
        """Write a state event and return its event id."""
        ...

    @abc.abstractmethod
    async def send_event(self, room_id: str, event_type: str, content: dict[str, Any]) -> str:
        """Send a timeline event and return its event id."""
        ...

    @abc.abstractmethod
    async def invite_user(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        ...

    @abc.abstractmethod
    async def kick_user(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        ...

    @abc.abstractmethod
    async def leave_room(self, room_id: str) -> None:
        ...

    async def send_html_notice(self, room_id: str, html: str, text: str | None = None) -> str:
        content = _html_message("m.notice", html, text)
        return await self.send_event(room_id, MESSAGE_EVENT_TYPE, content)

    async def send_html_text(self, room_id: str, html: str, text: str | None = None) -> str:
        content = _html_message("m.text", html, text)
        return await self.send_event(room_id, MESSAGE_EVENT_TYPE, content)


def _html_message(msgtype: str, html: str, text: str | None) -> dict[str, Any]:
    return {
        "msgtype": msgtype,
        "body": text if text is not None else html,
        "format": "org.matrix.custom.html",
        "formatted_body": html,
    }
