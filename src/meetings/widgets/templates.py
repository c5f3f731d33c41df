"""Placeholder rendering for configured event contents.

Configured state and room events may reference the room they are sent to
through ``{{name}}`` placeholders inside any string value:

- ``{{room_id}}``, ``{{base32_room_id}}``, ``{{title}}``, ``{{uuid}}``
- ``{{data.<key>}}`` for literal values of a widget's own ``data`` map
- ``{{#encodeURIComponent}}...{{/encodeURIComponent}}`` URL-encodes the
  rendered text between the tags

Unknown placeholders render as an empty string.
"""

from __future__ import annotations

import base64
import re
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import quote

from meetings.rooms.events import StateEventName

_SECTION_PATTERN = re.compile(r"\{\{#encodeURIComponent\}\}(.*?)\{\{/encodeURIComponent\}\}", re.S)
_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")

# Characters left alone by JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"


@dataclass(frozen=True)
class EventContentParams:
    room_id: str | None = None
    base32_room_id: str | None = None
    title: str = ""
    uuid: str | None = None

    @classmethod
    def for_room(cls, room_id: str | None, title: str | None) -> EventContentParams:
        if room_id is None:
            return cls(title=title or "")
        encoded = base64.b32encode(room_id.encode()).decode("ascii")
        return cls(
            room_id=room_id,
            base32_room_id=encoded.rstrip("="),
            title=title or "",
            uuid=encoded[:25],
        )


def encode_uri_component(text: str) -> str:
    return quote(text, safe=_URI_COMPONENT_SAFE)


def _lookup(model: dict[str, Any], name: str) -> Any:
    node: Any = model
    for part in name.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def render_template(template: str, model: dict[str, Any]) -> str:
    """Substitute placeholders and sections in a single string."""

    def _placeholder(match: re.Match) -> str:
        value = _lookup(model, match.group(1))
        if value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def _section(match: re.Match) -> str:
        return encode_uri_component(_PLACEHOLDER_PATTERN.sub(_placeholder, match.group(1)))

    rendered = _SECTION_PATTERN.sub(_section, template)
    return _PLACEHOLDER_PATTERN.sub(_placeholder, rendered)


def _render_value(value: Any, model: dict[str, Any]) -> Any:
    if isinstance(value, dict):
        return {k: _render_value(v, model) for k, v in value.items()}
    if isinstance(value, list):
        return [_render_value(item, model) for item in value]
    if isinstance(value, str):
        return render_template(value, model)
    return value


def render_event_content(
    event_type: str, content: dict[str, Any], params: EventContentParams
) -> dict[str, Any]:
    """Render every string leaf of *content*.

    Widget contents additionally expose their literal ``data`` values (those
    that are not placeholders themselves) as ``data.<key>``.
    """
    model: dict[str, Any] = asdict(params)
    if event_type == StateEventName.IM_VECTOR_MODULAR_WIDGETS:
        data = content.get("data") or {}
        literals = {
            key: value
            for key, value in data.items()
            if not (isinstance(value, str) and value.startswith("{{"))
        }
        if literals:
            model["data"] = literals
    return _render_value(content, model)
