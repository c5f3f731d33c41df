"""Static widget-layout table and its exact-set matcher."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from meetings.config import ConfigError

logger = logging.getLogger(__name__)


class LayoutContainer(StrEnum):
    TOP = "top"
    BOTTOM = "bottom"
    CENTER = "center"
    LEFT = "left"
    RIGHT = "right"


class WidgetLayout(BaseModel):
    model_config = ConfigDict(frozen=True)

    container: LayoutContainer
    index: int | float | None = None
    width: int | float | None = None
    height: int | float | None = None


class WidgetLayoutConfig(BaseModel):
    """Layouts for one exact combination of widget ids."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    widget_ids: tuple[str, ...] = Field(alias="widgetIds")
    layouts: dict[str, WidgetLayout] = Field(default_factory=dict)

    @field_validator("widget_ids", mode="after")
    @classmethod
    def _sort_ids(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(sorted(value))


_LAYOUTS_ADAPTER = TypeAdapter(list[WidgetLayoutConfig])


class WidgetLayoutMatcher:
    """Read-only lookup from a widget id set to its configured layout."""

    def __init__(self, configs: Iterable[WidgetLayoutConfig] = ()) -> None:
        self._configs = tuple(configs)

    def __len__(self) -> int:
        return len(self._configs)

    def match(self, widget_ids: Iterable[str]) -> dict[str, Any] | None:
        """Layout event content for exactly *widget_ids*, in any order.

        Returns ``{"widgets": {id: layout}}`` for the first matching entry, or
        None when no entry has the same id set.
        """
        wanted = tuple(sorted(widget_ids))
        for config in self._configs:
            if config.widget_ids == wanted:
                return {
                    "widgets": {
                        widget_id: layout.model_dump(mode="json", exclude_none=True)
                        for widget_id, layout in config.layouts.items()
                    }
                }
        logger.debug("No widget layout configured for %s", list(wanted))
        return None


def load_widget_layouts(path: Path | None) -> WidgetLayoutMatcher:
    """Read the layout JSON array; no path yields a matcher that never matches.

    Raises
    ------
    ConfigError
        If the file is missing, not valid JSON, or fails validation.
    """
    if path is None:
        return WidgetLayoutMatcher()
    if not path.is_file():
        raise ConfigError(f"Widget layout config not found: {path}")
    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    try:
        configs = _LAYOUTS_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid widget layout config {path}: {exc}") from exc
    return WidgetLayoutMatcher(configs)
