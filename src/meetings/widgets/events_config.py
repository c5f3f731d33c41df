"""Room-events configuration: state and room events added to every new meeting.

The configuration is a JSON document with ``state_events`` and
``room_events`` arrays. Widget state events (``im.vector.modular.widgets``)
need a non-empty ``state_key`` that doubles as the widget id, an
``optional`` flag and content with ``type``, ``url`` and ``name``; widgets
that are not optional are installed by default.
"""

from __future__ import annotations

import json
import logging
from functools import cached_property
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from meetings.config import ConfigError
from meetings.rooms.events import StateEventName

logger = logging.getLogger(__name__)


class WidgetContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    url: str
    name: str
    avatar_url: str | None = None
    data: dict[str, Any] | None = None


class ConfiguredStateEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    state_key: str = ""
    optional: bool | None = None
    content: dict[str, Any]

    @property
    def is_widget(self) -> bool:
        return self.type == StateEventName.IM_VECTOR_MODULAR_WIDGETS

    @model_validator(mode="after")
    def _check_widget_shape(self) -> ConfiguredStateEvent:
        if self.is_widget:
            if not self.state_key:
                raise ValueError("widget state events require a state_key (the widget id)")
            if self.optional is None:
                raise ValueError(f"widget {self.state_key} requires an 'optional' flag")
            try:
                WidgetContent.model_validate(self.content)
            except ValidationError as exc:
                raise ValueError(f"widget {self.state_key} has invalid content: {exc}") from exc
        elif self.optional is not None:
            raise ValueError(f"'optional' is only allowed on widget events, not {self.type}")
        return self


class ConfiguredRoomEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    content: dict[str, Any]


class RoomEventsConfig(BaseModel):
    """Validated, read-only room-events configuration."""

    model_config = ConfigDict(frozen=True)

    state_events: list[ConfiguredStateEvent] = Field(default_factory=list)
    room_events: list[ConfiguredRoomEvent] = Field(default_factory=list)

    @cached_property
    def widget_events(self) -> list[ConfiguredStateEvent]:
        return [e for e in self.state_events if e.is_widget]

    @cached_property
    def widget_contents(self) -> dict[str, dict[str, Any]]:
        """Widget id to template content, with ``id`` set to the state key."""
        return {e.state_key: {**e.content, "id": e.state_key} for e in self.widget_events}

    @cached_property
    def all_widget_ids(self) -> list[str]:
        return [e.state_key for e in self.widget_events]

    @cached_property
    def default_widget_ids(self) -> list[str]:
        return [e.state_key for e in self.widget_events if not e.optional]


def load_room_events_config(path: Path | None) -> RoomEventsConfig:
    """Read and validate the room-events JSON; no path means an empty configuration.

    Raises
    ------
    ConfigError
        If the file is missing, not valid JSON, or fails validation.
    """
    if path is None:
        return RoomEventsConfig()
    if not path.is_file():
        raise ConfigError(f"Room events config not found: {path}")
    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    try:
        config = RoomEventsConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid room events config {path}: {exc}") from exc
    logger.debug(
        "Loaded %d state events and %d room events from %s",
        len(config.state_events),
        len(config.room_events),
        path,
    )
    return config
