"""CLI for the meetings engine: inspect configuration and run meeting operations."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import click
from pydantic import TypeAdapter, ValidationError

from meetings.calendar.models import CalendarEntry, parse_iso_datetime, to_iso_string
from meetings.calendar.recurrence import compute_current_occurrence
from meetings.config import ConfigError, MeetingsConfig, load_config
from meetings.core.logging import configure_logging
from meetings.core.telemetry import init_telemetry
from meetings.errors import MeetingsError
from meetings.protocol.matrix import MatrixClient
from meetings.schemas import CloseMethod, MeetingClose, SubMeetingsSendMessage, UserContext
from meetings.service.meetings import MeetingService
from meetings.widgets.events_config import load_room_events_config
from meetings.widgets.layout import load_widget_layouts

logger = logging.getLogger(__name__)

_CALENDAR_ADAPTER = TypeAdapter(list[CalendarEntry])

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to meetings.toml (defaults to environment variables)",
)


def _load(config_path: Path | None) -> MeetingsConfig:
    try:
        config = load_config(config_path) if config_path else MeetingsConfig.from_env()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    # An explicit --log-level wins over [meetings.logging].
    root = click.get_current_context().find_root()
    cli_level = (root.obj or {}).get("log_level")
    configure_logging(level=cli_level or config.logging.level, fmt=config.logging.format)
    logger.debug("Loaded config for homeserver %s", config.homeserver_url)

    init_telemetry("meetings-engine")
    return config


@click.group()
@click.version_option(version="0.1.0")
@click.option("--log-level", default=None, help="Log level (overrides the configured level)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Meetings: lifecycle and authorization engine for meeting rooms."""
    ctx.obj = {"log_level": log_level.upper() if log_level else None}
    configure_logging(level=ctx.obj["log_level"] or "WARNING")


@cli.command("check-config")
@_config_option
def check_config(config_path: Path | None) -> None:
    """Validate the configuration and the JSON tables it references."""
    config = _load(config_path)
    try:
        events_config = load_room_events_config(config.events_config_path)
        layouts = load_widget_layouts(config.widget_layouts_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Homeserver:       {config.homeserver_url}")
    click.echo(f"Auto deletion:    {config.auto_deletion_offset or 'disabled'}")
    click.echo(f"Widgets:          {', '.join(events_config.all_widget_ids) or '(none)'}")
    click.echo(f"Default widgets:  {', '.join(events_config.default_widget_ids) or '(none)'}")
    click.echo(f"Room events:      {len(events_config.room_events)}")
    click.echo(f"Widget layouts:   {len(layouts)}")


@cli.command("match-layout")
@click.argument("widget_ids", nargs=-1, required=True)
@click.option(
    "--layouts",
    "layouts_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to the widget layout JSON",
)
def match_layout(widget_ids: tuple[str, ...], layouts_path: Path) -> None:
    """Print the layout event content configured for WIDGET_IDS."""
    try:
        matcher = load_widget_layouts(layouts_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    content = matcher.match(widget_ids)
    if content is None:
        click.echo("No layout configured for these widgets")
        return
    click.echo(json.dumps(content, indent=2, sort_keys=True))


@cli.command("next-occurrence")
@click.argument("calendar_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--now", "now_iso", default=None, help="Reference time in ISO 8601 (default: now)")
def next_occurrence(calendar_path: Path, now_iso: str | None) -> None:
    """Print the active or next occurrence of a calendar JSON file."""
    try:
        calendar = _CALENDAR_ADAPTER.validate_json(calendar_path.read_text())
    except ValidationError as exc:
        click.echo(f"Invalid calendar: {exc}", err=True)
        sys.exit(1)

    now = parse_iso_datetime(now_iso) if now_iso else datetime.now(UTC)
    occurrence = compute_current_occurrence(calendar, now)
    if occurrence is None:
        click.echo("No occurrence")
        return
    click.echo(f"{to_iso_string(occurrence.start)} {to_iso_string(occurrence.end)}")


@cli.command()
@click.argument("room_id")
@click.option("--actor", required=True, help="User id the meeting is closed on behalf of")
@click.option(
    "--method",
    type=click.Choice([m.value for m in CloseMethod]),
    default=CloseMethod.TOMBSTONE.value,
    show_default=True,
)
@_config_option
def close(room_id: str, actor: str, method: str, config_path: Path | None) -> None:
    """Close the meeting ROOM_ID and all of its sub rooms."""
    config = _load(config_path)
    payload = MeetingClose(target_room_id=room_id, method=CloseMethod(method))

    async def _run(service: MeetingService) -> list[str]:
        return await service.close_meeting(UserContext(user_id=actor), payload)

    left = _run_with_service(config, _run)
    click.echo(f"Closed {len(left)} room(s)")


@cli.command()
@click.argument("room_id")
@click.argument("message")
@click.option("--actor", required=True, help="User id the message is sent on behalf of")
@_config_option
def broadcast(room_id: str, message: str, actor: str, config_path: Path | None) -> None:
    """Send MESSAGE to every sub meeting of ROOM_ID."""
    config = _load(config_path)
    payload = SubMeetingsSendMessage(target_room_id=room_id, message=message)

    async def _run(service: MeetingService):  # noqa: ANN202
        return await service.send_message_to_sub_meetings(UserContext(user_id=actor), payload)

    result = _run_with_service(config, _run)
    click.echo(
        f"Sent: {len(result.sent)}  skipped: {len(result.skipped)}  "
        f"failed: {len(result.failures)}"
    )


def _run_with_service(config: MeetingsConfig, func):  # noqa: ANN001, ANN202
    async def _main():  # noqa: ANN202
        client = MatrixClient(config.homeserver_url, config.access_token)
        try:
            service = MeetingService.from_config(config, client)
            return await func(service)
        finally:
            await client.shutdown()

    try:
        return asyncio.run(_main())
    except (ConfigError, MeetingsError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
