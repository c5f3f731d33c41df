"""Widget state writes: built-in cockpit/breakout widgets and configured widgets."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from meetings.config import WidgetDefaults
from meetings.core.metrics import OrchestratorMetrics
from meetings.protocol.base import ProtocolClient
from meetings.rooms.events import StateEventName, WidgetType
from meetings.widgets.events_config import RoomEventsConfig
from meetings.widgets.templates import EventContentParams, render_event_content

logger = logging.getLogger(__name__)


def new_widget_id(widget_type: WidgetType) -> str:
    return f"{widget_type}-{uuid.uuid4().hex}"


class WidgetClient:
    def __init__(
        self,
        client: ProtocolClient,
        defaults: WidgetDefaults,
        events_config: RoomEventsConfig,
        metrics: OrchestratorMetrics | None = None,
    ) -> None:
        self._client = client
        self._defaults = defaults
        self._events_config = events_config
        self._metrics = metrics or OrchestratorMetrics()

    async def _write(self, room_id: str, widget_id: str, content: dict[str, Any]) -> str:
        return await self._metrics.track_write(
            StateEventName.IM_VECTOR_MODULAR_WIDGETS,
            self._client.send_state_event(
                room_id, StateEventName.IM_VECTOR_MODULAR_WIDGETS, widget_id, content
            ),
        )

    async def _send_widget(self, room_id: str, content: dict[str, Any]) -> str:
        return await self._write(room_id, content["id"], content)

    async def create_cockpit_widget(self, room_id: str) -> str:
        content = {
            "id": new_widget_id(WidgetType.COCKPIT),
            "type": WidgetType.COCKPIT.value,
            "url": self._defaults.cockpit_url,
            "name": self._defaults.cockpit_name,
        }
        logger.debug("Adding cockpit widget %s to room %s", content["id"], room_id)
        return await self._send_widget(room_id, content)

    async def create_breakout_session_widget(self, room_id: str) -> str:
        content = {
            "id": new_widget_id(WidgetType.BREAKOUT_SESSIONS),
            "type": WidgetType.BREAKOUT_SESSIONS.value,
            "url": self._defaults.breakout_session_url,
            "name": self._defaults.breakout_session_name,
        }
        logger.debug("Adding breakout session widget %s to room %s", content["id"], room_id)
        return await self._send_widget(room_id, content)

    def is_custom_configured_widget(self, widget_id: str) -> bool:
        return widget_id in self._events_config.widget_contents

    async def create_or_update_custom_widget(
        self,
        room_id: str,
        title: str | None,
        widget_id: str,
        current_content: dict[str, Any] | None,
    ) -> bool:
        """Write the rendered template of *widget_id* unless the room already has it.

        Ids that are not configured are ignored. Returns whether a write was
        issued.
        """
        template = self._events_config.widget_contents.get(widget_id)
        if template is None:
            return False

        params = EventContentParams.for_room(room_id, title)
        content = render_event_content(StateEventName.IM_VECTOR_MODULAR_WIDGETS, template, params)
        if content == current_content:
            return False

        await self._write(room_id, widget_id, content)
        return True

    async def clear_widget(self, room_id: str, widget_id: str) -> None:
        await self._write(room_id, widget_id, {})
