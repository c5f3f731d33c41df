"""Widget configuration, rendering, layout matching and widget writes."""

from meetings.widgets.client import WidgetClient
from meetings.widgets.events_config import RoomEventsConfig, load_room_events_config
from meetings.widgets.layout import WidgetLayoutMatcher, load_widget_layouts
from meetings.widgets.templates import EventContentParams, render_event_content

__all__ = [
    "EventContentParams",
    "RoomEventsConfig",
    "WidgetClient",
    "WidgetLayoutMatcher",
    "load_room_events_config",
    "load_widget_layouts",
    "render_event_content",
]
