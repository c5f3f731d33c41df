"""Meetings engine configuration loading and validation.

Reads ``meetings.toml`` (or the process environment) and returns a validated
MeetingsConfig dataclass. The two JSON tables referenced by the config (room
events and widget layouts) are loaded separately by their readers.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_LINK_SHARE = "https://matrix.to/#/"
DEFAULT_FANOUT_CONCURRENCY = 20

# Pattern matching ${VAR_NAME}, alphanumeric and underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [meetings.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"


@dataclass
class WidgetDefaults:
    """URLs and names of the widgets the engine adds on its own."""

    cockpit_url: str = ""
    cockpit_name: str = "Meeting controls"
    breakout_session_url: str = ""
    breakout_session_name: str = "Breakout sessions"


@dataclass
class MeetingsConfig:
    homeserver_url: str
    access_token: str
    auto_deletion_offset: int | None = None
    link_share: str = DEFAULT_LINK_SHARE
    events_config_path: Path | None = None
    widget_layouts_path: Path | None = None
    fanout_concurrency: int = DEFAULT_FANOUT_CONCURRENCY
    widgets: WidgetDefaults = field(default_factory=WidgetDefaults)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> MeetingsConfig:
        """Build configuration from environment variables.

        Raises
        ------
        ConfigError
            If a required variable is missing or a numeric value is malformed.
        """
        homeserver_url = os.environ.get("HOMESERVER_URL", "").strip()
        if not homeserver_url:
            raise ConfigError("HOMESERVER_URL is required")
        access_token = os.environ.get("ACCESS_TOKEN", "").strip()
        if not access_token:
            raise ConfigError("ACCESS_TOKEN is required")

        widgets = WidgetDefaults(
            cockpit_url=os.environ.get("MEETINGWIDGET_COCKPIT_URL", ""),
            cockpit_name=os.environ.get("MEETINGWIDGET_COCKPIT_NAME", WidgetDefaults.cockpit_name),
            breakout_session_url=os.environ.get("BREAKOUT_SESSION_WIDGET_URL", ""),
            breakout_session_name=os.environ.get(
                "BREAKOUT_SESSION_WIDGET_NAME", WidgetDefaults.breakout_session_name
            ),
        )
        return cls(
            homeserver_url=homeserver_url,
            access_token=access_token,
            auto_deletion_offset=_parse_optional_int(
                os.environ.get("AUTO_DELETION_OFFSET"), "AUTO_DELETION_OFFSET"
            ),
            link_share=os.environ.get("MATRIX_LINK_SHARE", DEFAULT_LINK_SHARE),
            fanout_concurrency=_parse_fanout(
                os.environ.get("FANOUT_CONCURRENCY"), "FANOUT_CONCURRENCY"
            ),
            events_config_path=_optional_path(os.environ.get("DEFAULT_EVENTS_CONFIG")),
            widget_layouts_path=_optional_path(os.environ.get("DEFAULT_WIDGET_LAYOUTS_CONFIG")),
            widgets=widgets,
            logging=_parse_logging(
                {
                    "level": os.environ.get("LOG_LEVEL", "INFO"),
                    "format": os.environ.get("LOG_FORMAT", "text"),
                }
            ),
        )


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _parse_optional_int(raw: Any, name: str) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: {raw!r}. Expected an integer.") from exc


def _parse_fanout(raw: Any, name: str) -> int:
    """Parse a fan-out width: a positive integer no larger than the 20-room cap."""
    value = _parse_optional_int(raw, name)
    if value is None:
        return DEFAULT_FANOUT_CONCURRENCY
    if not 0 < value <= DEFAULT_FANOUT_CONCURRENCY:
        raise ConfigError(
            f"Invalid {name}: {value!r}. "
            f"Must be an integer between 1 and {DEFAULT_FANOUT_CONCURRENCY}."
        )
    return value


def _optional_path(raw: Any) -> Path | None:
    if not raw:
        return None
    return Path(str(raw))


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"Invalid meetings.logging.format: {fmt!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=level, format=fmt)


def load_config(config_path: Path) -> MeetingsConfig:
    """Load and validate a ``meetings.toml`` file.

    Relative JSON table paths are resolved against the directory holding the
    TOML file.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or lacks required fields.
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        data = tomllib.loads(config_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc

    data = resolve_env_vars(data)

    section = data.get("meetings")
    if not isinstance(section, dict):
        raise ConfigError("Missing [meetings] section in config")

    homeserver_url = section.get("homeserver_url")
    if not homeserver_url:
        raise ConfigError("Missing required field: meetings.homeserver_url")
    access_token = section.get("access_token")
    if not access_token:
        raise ConfigError("Missing required field: meetings.access_token")

    fanout_concurrency = _parse_fanout(
        section.get("fanout_concurrency", DEFAULT_FANOUT_CONCURRENCY),
        "meetings.fanout_concurrency",
    )

    base_dir = config_path.parent

    def _relative(raw: Any) -> Path | None:
        path = _optional_path(raw)
        if path is not None and not path.is_absolute():
            path = base_dir / path
        return path

    widgets_section = section.get("widgets", {})
    widgets = WidgetDefaults(
        cockpit_url=str(widgets_section.get("cockpit_url", "")),
        cockpit_name=str(widgets_section.get("cockpit_name", WidgetDefaults.cockpit_name)),
        breakout_session_url=str(widgets_section.get("breakout_session_url", "")),
        breakout_session_name=str(
            widgets_section.get("breakout_session_name", WidgetDefaults.breakout_session_name)
        ),
    )

    return MeetingsConfig(
        homeserver_url=str(homeserver_url),
        access_token=str(access_token),
        auto_deletion_offset=_parse_optional_int(
            section.get("auto_deletion_offset"), "meetings.auto_deletion_offset"
        ),
        link_share=str(section.get("link_share", DEFAULT_LINK_SHARE)),
        events_config_path=_relative(section.get("events_config")),
        widget_layouts_path=_relative(section.get("widget_layouts_config")),
        fanout_concurrency=fanout_concurrency,
        widgets=widgets,
        logging=_parse_logging(section.get("logging", {})),
    )
