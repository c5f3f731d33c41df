"""Meeting lifecycle orchestration.

Every operation is one pass over freshly loaded room state: load, check
power levels, compute what changed, write, fan out follow-up writes and
aggregate failures. Nothing is cached between operations.
"""

from __future__ import annotations

import asyncio
import contextlib
import html
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from meetings.calendar.migration import (
    extract_external_rrule,
    get_force_deletion_time,
    get_meeting_end_time,
    get_meeting_start_time,
    migrate_meeting_time,
)
from meetings.calendar.models import CalendarEntry
from meetings.calendar.recurrence import delete_calendar_event
from meetings.config import DEFAULT_LINK_SHARE, MeetingsConfig, WidgetDefaults
from meetings.core.logging import set_actor_context
from meetings.core.metrics import OrchestratorMetrics
from meetings.core.pool import MAX_CONCURRENCY, run_bounded
from meetings.core.telemetry import operation_span
from meetings.errors import (
    CloseMeetingError,
    MeetingNotFoundError,
    MeetingsError,
    MeetingValidationError,
    ParticipantError,
    RoomFailure,
    RoomNotCreatedError,
    WidgetCleanupError,
)
from meetings.protocol.base import ProtocolClient
from meetings.rooms.events import (
    Membership,
    MeetingType,
    RoomEventName,
    StateEventName,
    WidgetType,
)
from meetings.rooms.loader import RoomLoader, user_domain
from meetings.rooms.power_levels import (
    PowerLevelAction,
    assert_can_kick,
    assert_power_level_for,
    has_power_level_for,
)
from meetings.rooms.snapshot import Meeting, RoomSnapshot
from meetings.schemas import (
    BreakoutSessions,
    CloseMethod,
    MeetingClose,
    MeetingCreate,
    MeetingCreateResult,
    MeetingParticipantsHandle,
    MeetingUpdateDetails,
    MeetingWidgetsHandle,
    MessagingPermission,
    SubMeetingsSendMessage,
    UserContext,
)
from meetings.service.messages import (
    CLOSED_ROOM_MESSAGE,
    KICK_REASON,
    MeetingChanges,
    compute_meeting_changes,
    make_invite_reasons,
    nudge_reason,
    render_change_notification,
)
from meetings.widgets.client import WidgetClient
from meetings.widgets.events_config import RoomEventsConfig, load_room_events_config
from meetings.widgets.layout import WidgetLayoutMatcher, load_widget_layouts
from meetings.widgets.templates import EventContentParams, render_event_content

logger = logging.getLogger(__name__)

CREATOR_POWER_LEVEL = 100
SERVICE_ACCOUNT_POWER_LEVEL = 101
HTML_REASON_KEY = "io.element.html_reason"

# Configured state events that are not part of the initial room state
_SKIPPED_CONFIG_EVENTS = frozenset(
    {
        StateEventName.M_ROOM_NAME,
        StateEventName.M_ROOM_TOPIC,
        StateEventName.IM_VECTOR_MODULAR_WIDGETS,
        StateEventName.M_SPACE_PARENT,
    }
)
# Configured state events merged with values derived from the request
_MERGED_CONFIG_EVENTS = frozenset(
    {
        StateEventName.M_ROOM_MEMBER,
        StateEventName.M_ROOM_POWER_LEVELS,
        StateEventName.M_ROOM_ENCRYPTION,
    }
)


@dataclass
class BroadcastResult:
    sent: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[RoomFailure] = field(default_factory=list)


@dataclass
class _InitialRoom:
    options: dict[str, Any]
    member_events: list[dict[str, Any]]


class MeetingService:
    """Meeting operations on top of a protocol client.

    Parameters
    ----------
    client:
        Protocol client acting as the service account.
    events_config:
        State and room events added to new meetings, including widget templates.
    layouts:
        Static widget-layout table.
    """

    def __init__(
        self,
        client: ProtocolClient,
        *,
        events_config: RoomEventsConfig | None = None,
        layouts: WidgetLayoutMatcher | None = None,
        widget_defaults: WidgetDefaults | None = None,
        auto_deletion_offset: int | None = None,
        link_share: str = DEFAULT_LINK_SHARE,
        concurrency: int = MAX_CONCURRENCY,
        metrics: OrchestratorMetrics | None = None,
    ) -> None:
        self._client = client
        self._events_config = events_config or RoomEventsConfig()
        self._layouts = layouts or WidgetLayoutMatcher()
        self._rooms = RoomLoader(client)
        self._metrics = metrics or OrchestratorMetrics()
        self._widgets = WidgetClient(
            client, widget_defaults or WidgetDefaults(), self._events_config, self._metrics
        )
        self._auto_deletion_offset = auto_deletion_offset
        self._link_share = link_share
        self._concurrency = concurrency

    @classmethod
    def from_config(cls, config: MeetingsConfig, client: ProtocolClient) -> MeetingService:
        return cls(
            client,
            events_config=load_room_events_config(config.events_config_path),
            layouts=load_widget_layouts(config.widget_layouts_path),
            widget_defaults=config.widgets,
            auto_deletion_offset=config.auto_deletion_offset,
            link_share=config.link_share,
            concurrency=config.fanout_concurrency,
        )

    @property
    def rooms(self) -> RoomLoader:
        return self._rooms

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _operation(
        self, name: str, user: UserContext, room_id: str | None = None
    ) -> Iterator[None]:
        set_actor_context(user.user_id)
        try:
            with operation_span(name, room_id=room_id):
                yield
        except Exception as exc:
            self._metrics.record_operation(name, type(exc).__name__)
            raise
        else:
            self._metrics.record_operation(name, "success")
        finally:
            set_actor_context(None)

    async def _send_state(
        self, room_id: str, event_type: str, state_key: str, content: dict[str, Any]
    ) -> str:
        event_id = await self._metrics.track_write(
            event_type, self._client.send_state_event(room_id, event_type, state_key, content)
        )
        logger.debug("Sent %s/%s to room %s", event_type, state_key, room_id)
        return event_id

    async def _load_meeting(self, room_id: str) -> tuple[RoomSnapshot, Meeting]:
        room = await self._rooms.fetch_room(room_id)
        if room.meeting is None:
            raise MeetingNotFoundError(room_id)
        return room, room.meeting

    async def _display_name(self, user_id: str) -> str:
        profile = await self._client.get_user_profile(user_id)
        return profile.get("displayname") or user_id

    def _check_widget_ids(self, widget_ids: list[str] | None) -> None:
        unknown = [w for w in widget_ids or [] if not self._widgets.is_custom_configured_widget(w)]
        if unknown:
            raise MeetingValidationError(f"Unknown widget ids: {', '.join(unknown)}")

    async def _apply_layout(self, room_id: str, widget_ids: list[str]) -> None:
        if not widget_ids:
            return
        content = self._layouts.match(widget_ids)
        if content is not None:
            await self._send_state(room_id, StateEventName.IO_ELEMENT_WIDGETS_LAYOUT, "", content)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_meeting(
        self,
        user: UserContext,
        payload: MeetingCreate,
        meeting_type: MeetingType = MeetingType.MEETING,
    ) -> MeetingCreateResult:
        """Create a meeting room and return its id and share link.

        Raises
        ------
        MeetingValidationError
            For conflicting time shapes or unknown widget ids.
        RoomNotCreatedError
            If room creation returned no id.
        """
        with self._operation("create", user, payload.parent_room_id):
            self._check_widget_ids(payload.widget_ids)
            calendar = migrate_meeting_time(
                start_time=payload.start_time,
                end_time=payload.end_time,
                calendar=payload.calendar,
                external_rrule=extract_external_rrule(payload.external_data),
            )

            # Meetings with a calendar always get a deletion time
            enable_auto_deletion = (
                payload.enable_auto_deletion is not False or payload.calendar is not None
            )
            auto_deletion_offset = self._auto_deletion_offset if enable_auto_deletion else None

            bot_user = await self._client.get_user_id()
            parent = (
                await self._rooms.fetch_room(payload.parent_room_id)
                if payload.parent_room_id
                else None
            )

            initial = await self._build_initial_room(
                user, payload, meeting_type, calendar, auto_deletion_offset, bot_user, parent
            )
            room_id = await self._metrics.track_write(
                "create_room", self._client.create_room(initial.options)
            )
            if not room_id:
                raise RoomNotCreatedError()
            logger.info("Created %s room %s for %s", meeting_type.value, room_id, user.user_id)

            widget_ids = (
                list(payload.widget_ids)
                if payload.widget_ids is not None
                else list(self._events_config.default_widget_ids)
            )
            await asyncio.gather(
                *(
                    self._send_state(room_id, e["type"], e["state_key"], e["content"])
                    for e in initial.member_events
                ),
                self._setup_widgets(meeting_type, room_id, payload.title, widget_ids),
                self._apply_layout(room_id, widget_ids),
                self._send_room_events(room_id, payload.title),
            )

            if parent is not None and has_power_level_for(
                parent, bot_user, StateEventName.M_SPACE_CHILD
            ):
                await self._rooms.parent_add_child_room(parent.room_id, room_id)

            return MeetingCreateResult(room_id=room_id, meeting_url=f"{self._link_share}{room_id}")

    async def _build_initial_room(
        self,
        user: UserContext,
        payload: MeetingCreate,
        meeting_type: MeetingType,
        calendar: list[CalendarEntry] | None,
        auto_deletion_offset: int | None,
        bot_user: str,
        parent: RoomSnapshot | None,
    ) -> _InitialRoom:
        configured = [
            e for e in self._events_config.state_events if e.type not in _SKIPPED_CONFIG_EVENTS
        ]
        merged = [e for e in configured if e.type in _MERGED_CONFIG_EVENTS]
        passthrough = [e for e in configured if e.type not in _MERGED_CONFIG_EVENTS]

        params = EventContentParams.for_room(None, payload.title)

        config_members = [e for e in merged if e.type == StateEventName.M_ROOM_MEMBER]
        config_member_ids = {e.state_key for e in config_members}
        config_power = next(
            (e.content for e in merged if e.type == StateEventName.M_ROOM_POWER_LEVELS), None
        )
        config_encryption = next(
            (e.content for e in merged if e.type == StateEventName.M_ROOM_ENCRYPTION), None
        )
        config_users: dict[str, Any] = dict((config_power or {}).get("users") or {})

        power_users: dict[str, int] = {}
        if not config_users.get(user.user_id):
            power_users[user.user_id] = CREATOR_POWER_LEVEL
        if not config_users.get(bot_user):
            power_users[bot_user] = SERVICE_ACCOUNT_POWER_LEVEL

        participants = payload.participants or []
        invitees = list(dict.fromkeys([user.user_id, *(p.user_id for p in participants)]))
        participant_levels = {p.user_id: p.power_level for p in participants}

        member_events: list[dict[str, Any]] = [
            {"type": e.type, "state_key": e.state_key, "content": dict(e.content)}
            for e in config_members
        ]
        for invitee in invitees:
            if invitee in config_member_ids:
                continue
            level = participant_levels.get(invitee)
            if not config_users.get(invitee) and level:
                power_users[invitee] = level
            member_events.append(
                {
                    "type": StateEventName.M_ROOM_MEMBER.value,
                    "state_key": invitee,
                    "content": {"membership": Membership.INVITE.value},
                }
            )

        organizer = await self._display_name(user.user_id)
        start_time = get_meeting_start_time(calendar)
        end_time = get_meeting_end_time(calendar)
        rendered_members: list[dict[str, Any]] = []
        for event in member_events:
            if event["state_key"] == bot_user:
                continue
            content = event["content"]
            if not content.get("reason") and not content.get(HTML_REASON_KEY):
                reasons = make_invite_reasons(
                    description=payload.description,
                    start_time=start_time,
                    end_time=end_time,
                    user=user,
                    organizer_display_name=organizer,
                    is_organizer=event["state_key"] == user.user_id,
                )
                content = {**content, "reason": reasons.text, HTML_REASON_KEY: reasons.html}
            rendered_members.append(
                {**event, "content": render_event_content(event["type"], content, params)}
            )

        power_levels: dict[str, Any] = {
            **(config_power or {}),
            "users": {**config_users, **power_users},
        }
        if payload.messaging_power_level is not None:
            power_levels["events_default"] = payload.messaging_power_level

        metadata: dict[str, Any] = {
            "calendar": [e.to_content() for e in calendar] if calendar is not None else None,
            "force_deletion_at": get_force_deletion_time(auto_deletion_offset, calendar),
            "creator": user.user_id,
            "external_data": payload.external_data,
        }
        initial_state: list[dict[str, Any]] = [
            {
                "type": e.type,
                "state_key": e.state_key,
                "content": render_event_content(e.type, e.content, params),
            }
            for e in passthrough
        ]
        initial_state.append(
            {
                "type": StateEventName.NIC_MEETINGS_METADATA.value,
                "state_key": "",
                "content": {k: v for k, v in metadata.items() if v is not None},
            }
        )
        if parent is not None:
            initial_state.append(
                {
                    "type": StateEventName.M_SPACE_PARENT.value,
                    "state_key": parent.room_id,
                    "content": {"via": [user_domain(bot_user)]},
                }
            )

        encryption = config_encryption
        if encryption is None and parent is not None and parent.encryption_event is not None:
            encryption = parent.encryption_event.content
        if encryption is not None:
            initial_state.append(
                {
                    "type": StateEventName.M_ROOM_ENCRYPTION.value,
                    "state_key": "",
                    "content": dict(encryption),
                }
            )

        options = {
            "name": payload.title,
            "topic": payload.description,
            "visibility": "private",
            "creation_content": {"type": meeting_type.value},
            "preset": "private_chat",
            "initial_state": initial_state,
            "power_level_content_override": power_levels,
        }
        return _InitialRoom(options=options, member_events=rendered_members)

    async def _setup_widgets(
        self, meeting_type: MeetingType, room_id: str, title: str, widget_ids: list[str]
    ) -> None:
        if meeting_type == MeetingType.MEETING:
            await self._widgets.create_breakout_session_widget(room_id)
        await self._widgets.create_cockpit_widget(room_id)
        for widget_id in widget_ids:
            await self._widgets.create_or_update_custom_widget(room_id, title, widget_id, None)

    async def _send_room_events(self, room_id: str, title: str) -> None:
        params = EventContentParams.for_room(room_id, title)
        for event in self._events_config.room_events:
            content = render_event_content(event.type, event.content, params)
            await self._metrics.track_write(
                event.type, self._client.send_event(room_id, event.type, content)
            )

    async def create_breakout_sessions(
        self, user: UserContext, parent_room_id: str, payload: BreakoutSessions
    ) -> list[MeetingCreateResult]:
        """Create one breakout session per group under *parent_room_id*, in order."""
        results: list[MeetingCreateResult] = []
        for group in payload.groups:
            meeting_create = MeetingCreate(
                parent_room_id=parent_room_id,
                title=group.title,
                description=payload.description,
                start_time=payload.start_time,
                end_time=payload.end_time,
                widget_ids=payload.widget_ids,
                participants=group.participants,
                enable_auto_deletion=payload.enable_auto_deletion,
            )
            results.append(
                await self.create_meeting(user, meeting_create, MeetingType.BREAKOUT_SESSION)
            )
        return results

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_meeting_details(
        self, user: UserContext, payload: MeetingUpdateDetails
    ) -> MeetingChanges:
        """Apply title, description, time and external data changes.

        Changes are computed against the stored room state, so fields the
        caller repeats unchanged do not trigger writes or notifications.
        """
        with self._operation("update", user, payload.target_room_id):
            room, meeting = await self._load_meeting(payload.target_room_id)
            assert_power_level_for(
                room,
                user.user_id,
                StateEventName.M_ROOM_NAME,
                StateEventName.M_ROOM_TOPIC,
                RoomEventName.M_ROOM_MESSAGE,
                StateEventName.NIC_MEETINGS_METADATA,
                StateEventName.IM_VECTOR_MODULAR_WIDGETS,
            )

            calendar = migrate_meeting_time(
                start_time=payload.start_time,
                end_time=payload.end_time,
                calendar=payload.calendar,
                external_rrule=extract_external_rrule(payload.external_data),
            )
            updated = replace(
                meeting,
                calendar=calendar if calendar is not None else meeting.calendar,
                title=payload.title if payload.title is not None else meeting.title,
                description=(
                    payload.description if payload.description is not None else meeting.description
                ),
                external_data=(
                    payload.external_data
                    if payload.external_data is not None
                    else meeting.external_data
                ),
            )
            changes = compute_meeting_changes(meeting, updated)

            await self._write_metadata(room.room_id, updated)

            writes = [self._rewrite_invites(user, room, meeting, updated, changes)]
            if changes.title_changed:
                writes.append(
                    self._send_state(
                        room.room_id, StateEventName.M_ROOM_NAME, "", {"name": updated.title}
                    )
                )
            if changes.description_changed and updated.description is not None:
                writes.append(
                    self._send_state(
                        room.room_id,
                        StateEventName.M_ROOM_TOPIC,
                        "",
                        {"topic": updated.description},
                    )
                )
            for widget_id in meeting.widget_ids:
                current = room.widget_event_by_id(widget_id)
                writes.append(
                    self._widgets.create_or_update_custom_widget(
                        room.room_id,
                        updated.title,
                        widget_id,
                        current.content if current is not None else None,
                    )
                )
            await asyncio.gather(*writes)

            bot_user = await self._client.get_user_id()
            if changes.anything_changed and has_power_level_for(
                room, bot_user, RoomEventName.M_ROOM_MESSAGE
            ):
                notification = render_change_notification(user, meeting, updated, changes)
                if notification is not None:
                    await self._metrics.track_write(
                        RoomEventName.M_ROOM_MESSAGE,
                        self._client.send_html_text(room.room_id, notification),
                    )

            logger.info(
                "Updated meeting %s (title=%s description=%s time=%s)",
                room.room_id,
                changes.title_changed,
                changes.description_changed,
                changes.time_changed,
            )
            return changes

    async def _write_metadata(self, room_id: str, meeting: Meeting) -> None:
        content: dict[str, Any] = {
            "creator": meeting.creator,
            "calendar": [e.to_content() for e in meeting.calendar],
            "force_deletion_at": get_force_deletion_time(
                self._auto_deletion_offset, meeting.calendar
            ),
            "external_data": meeting.external_data,
        }
        await self._send_state(
            room_id,
            StateEventName.NIC_MEETINGS_METADATA,
            "",
            {k: v for k, v in content.items() if v is not None},
        )

    async def _rewrite_invites(
        self,
        user: UserContext,
        room: RoomSnapshot,
        meeting: Meeting,
        updated: Meeting,
        changes: MeetingChanges,
    ) -> None:
        if not (changes.title_changed or changes.description_changed or changes.time_changed):
            return
        invites = [
            e for e in room.room_member_events() if e.content.get("membership") == Membership.INVITE
        ]
        if not invites:
            return

        creator = meeting.creator or user.user_id
        organizer = await self._display_name(creator)
        writes = []
        for event in invites:
            reasons = make_invite_reasons(
                description=updated.description,
                start_time=updated.start_time,
                end_time=updated.end_time,
                user=user,
                organizer_display_name=organizer,
                is_organizer=event.state_key == creator,
            )
            content = {
                **event.content,
                "reason": nudge_reason(event.content.get("reason"), reasons.text),
                HTML_REASON_KEY: reasons.html,
            }
            writes.append(
                self._send_state(room.room_id, StateEventName.M_ROOM_MEMBER, event.state_key, content)
            )
        await asyncio.gather(*writes)

    async def delete_meeting_occurrence(
        self, user: UserContext, room_id: str, uid: str, recurrence_id: datetime
    ) -> bool:
        """Exclude one occurrence, or close the meeting when nothing would remain.

        Returns True when the whole meeting was closed.
        """
        _room, meeting = await self._load_meeting(room_id)
        deletion = delete_calendar_event(meeting.calendar, uid, recurrence_id)
        if deletion.delete_series:
            await self.close_meeting(user, MeetingClose(target_room_id=room_id))
            return True
        if deletion.changed:
            await self.update_meeting_details(
                user, MeetingUpdateDetails(target_room_id=room_id, calendar=deletion.calendar)
            )
        return False

    # ------------------------------------------------------------------
    # Widgets and participants
    # ------------------------------------------------------------------

    async def handle_widgets(self, user: UserContext, payload: MeetingWidgetsHandle) -> list[str]:
        """Add or remove widget ids and return the resulting widget set.

        Raises
        ------
        WidgetCleanupError
            If some removed widgets could not be cleared.
        """
        with self._operation("handle_widgets", user, payload.target_room_id):
            room, meeting = await self._load_meeting(payload.target_room_id)
            assert_power_level_for(
                room,
                user.user_id,
                StateEventName.IM_VECTOR_MODULAR_WIDGETS,
                StateEventName.IO_ELEMENT_WIDGETS_LAYOUT,
            )

            widget_ids = dict.fromkeys(meeting.widget_ids)
            changed = False
            for widget_id in payload.widget_ids:
                if payload.add and widget_id not in widget_ids:
                    widget_ids[widget_id] = None
                    changed = True
                elif not payload.add and widget_id in widget_ids:
                    del widget_ids[widget_id]
                    changed = True

            resulting = list(widget_ids)
            if not changed:
                return resulting

            if room.widget_event_by_type(WidgetType.COCKPIT) is None:
                await self._widgets.create_cockpit_widget(room.room_id)

            async def _update(widget_id: str) -> None:
                current = room.widget_event_by_id(widget_id)
                await self._widgets.create_or_update_custom_widget(
                    room.room_id,
                    meeting.title,
                    widget_id,
                    current.content if current is not None else None,
                )

            await asyncio.gather(*(_update(w) for w in resulting))
            await self._cleanup_widgets(room, resulting)
            await self._apply_layout(
                room.room_id, [w for w in resulting if self._widgets.is_custom_configured_widget(w)]
            )
            return resulting

    async def _cleanup_widgets(self, room: RoomSnapshot, keep: list[str]) -> None:
        to_clear = [
            widget_id
            for widget_id in self._events_config.all_widget_ids
            if widget_id not in keep and room.widget_event_by_id(widget_id) is not None
        ]
        outcome = await run_bounded(
            to_clear,
            lambda widget_id: self._widgets.clear_widget(room.room_id, widget_id),
            concurrency=self._concurrency,
        )
        if outcome.any_failed:
            for widget_id, exc in outcome.failures:
                logger.error(
                    "Could not clear widget %s in room %s: %s", widget_id, room.room_id, exc
                )
            self._metrics.record_batch_failures("handle_widgets", len(outcome.failures))
            raise WidgetCleanupError(
                f"Could not clear widgets in room {room.room_id}",
                [RoomFailure(room.room_id, exc) for _widget_id, exc in outcome.failures],
            )

    async def handle_participants(
        self, user: UserContext, payload: MeetingParticipantsHandle
    ) -> None:
        """Invite or kick users; failed user ids are raised together after all calls ran.

        Raises
        ------
        PermissionDeniedError
            Before any call if the actor may not invite/kick, or does not
            out-rank every kick target.
        ParticipantError
            If some invite/kick calls failed. Successful calls are kept.
        """
        with self._operation("handle_participants", user, payload.target_room_id):
            room, _meeting = await self._load_meeting(payload.target_room_id)
            action = PowerLevelAction.INVITE if payload.invite else PowerLevelAction.KICK
            assert_power_level_for(
                room, user.user_id, RoomEventName.NIC_MEETINGS_MEETING_PARTICIPANTS_HANDLE, action
            )
            user_ids = list(dict.fromkeys(payload.user_ids))
            if action == PowerLevelAction.KICK:
                assert_can_kick(room, user.user_id, user_ids)

            async def _apply(target: str) -> None:
                if payload.invite:
                    await self._metrics.track_write(
                        "invite", self._client.invite_user(room.room_id, target)
                    )
                else:
                    reason = KICK_REASON.format(user_id=target, sender=user.user_id)
                    await self._metrics.track_write(
                        "kick", self._client.kick_user(room.room_id, target, reason)
                    )

            outcome = await run_bounded(user_ids, _apply, concurrency=self._concurrency)
            if outcome.any_failed:
                failed = [target for target, _exc in outcome.failures]
                self._metrics.record_batch_failures("handle_participants", len(failed))
                logger.warning(
                    "%s failed in room %s for %s",
                    action.value,
                    room.room_id,
                    ", ".join(failed),
                )
                raise ParticipantError(failed)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def change_messaging_permissions(
        self, user: UserContext, payload: MessagingPermission
    ) -> None:
        with self._operation("change_messaging_permissions", user, payload.target_room_id):
            room = await self._rooms.fetch_room(payload.target_room_id)
            assert_power_level_for(room, user.user_id, StateEventName.M_ROOM_POWER_LEVELS)
            content = dict(room.power_level_content or {})
            content["events_default"] = payload.messaging_power_level
            await self._send_state(room.room_id, StateEventName.M_ROOM_POWER_LEVELS, "", content)

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def _assert_close_permission(
        self, room: RoomSnapshot, user: UserContext, method: CloseMethod
    ) -> None:
        if method == CloseMethod.TOMBSTONE:
            assert_power_level_for(room, user.user_id, StateEventName.M_ROOM_TOMBSTONE)
        else:
            assert_power_level_for(room, user.user_id, PowerLevelAction.KICK)

    async def close_meeting(self, user: UserContext, payload: MeetingClose) -> list[str]:
        """Close a meeting and every descendant room.

        Each room is processed independently; a room with any error is not
        left. Returns the ids of the rooms that were left.

        Raises
        ------
        CloseMeetingError
            After the whole batch ran, if some rooms could not be closed.
        """
        with self._operation("close", user, payload.target_room_id):
            root = await self._rooms.fetch_room(payload.target_room_id)
            assert_power_level_for(root, user.user_id, StateEventName.IM_VECTOR_MODULAR_WIDGETS)
            self._assert_close_permission(root, user, payload.method)
            if root.meeting is None:
                raise MeetingNotFoundError(payload.target_room_id)

            children = await self._rooms.traverse_room_children(root)
            rooms = [*children, root]
            bot_user = await self._client.get_user_id()
            replacement_room = root.meeting.parent_room_id

            async def _close(room: RoomSnapshot) -> str:
                await self._close_room(room, user, payload.method, bot_user, replacement_room)
                return room.room_id

            outcome = await run_bounded(rooms, _close, concurrency=self._concurrency)
            if outcome.any_failed:
                failures = [RoomFailure(room.room_id, exc) for room, exc in outcome.failures]
                self._metrics.record_batch_failures("close", len(failures))
                logger.error(
                    "Closing meeting %s failed for %d of %d rooms: %s",
                    root.room_id,
                    len(failures),
                    len(rooms),
                    "; ".join(str(f) for f in failures),
                )
                raise CloseMeetingError("Could not close all meeting rooms", failures)
            return [room_id for _room, room_id in outcome.results]

    async def _close_room(
        self,
        room: RoomSnapshot,
        user: UserContext,
        method: CloseMethod,
        bot_user: str,
        replacement_room: str | None,
    ) -> None:
        self._assert_close_permission(room, user, method)
        errors: list[str] = []

        if has_power_level_for(room, user.user_id, StateEventName.IM_VECTOR_MODULAR_WIDGETS):
            widget_ids = [e.state_key for e in room.widget_events()]
            results = await asyncio.gather(
                *(self._widgets.clear_widget(room.room_id, w) for w in widget_ids),
                return_exceptions=True,
            )
            for widget_id, result in zip(widget_ids, results, strict=True):
                if isinstance(result, Exception):
                    errors.append(f"can not remove widget {widget_id}: {result}")

        if method == CloseMethod.KICK_ALL_PARTICIPANTS:
            targets = [p.user_id for p in room.participants() if p.user_id != bot_user]
            results = await asyncio.gather(
                *(
                    self._metrics.track_write(
                        "kick", self._client.kick_user(room.room_id, target, CLOSED_ROOM_MESSAGE)
                    )
                    for target in dict.fromkeys(targets)
                ),
                return_exceptions=True,
            )
            kick_errors = [r for r in results if isinstance(r, Exception)]
            if kick_errors:
                errors.append(f"error during users kicking: {kick_errors[0]}")

        if method == CloseMethod.TOMBSTONE:
            content: dict[str, Any] = {"body": CLOSED_ROOM_MESSAGE}
            if replacement_room is not None:
                content["replacement_room"] = replacement_room
            try:
                await self._send_state(room.room_id, StateEventName.M_ROOM_TOMBSTONE, "", content)
            except Exception as exc:
                errors.append(f"can not tombstone room: {exc}")

        if errors:
            raise MeetingsError(f"Closing room {room.room_id} failed: {'; '.join(errors)}")

        await self._metrics.track_write("leave", self._client.leave_room(room.room_id))
        logger.debug("Closed and left room %s", room.room_id)

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    async def send_message_to_sub_meetings(
        self, user: UserContext, payload: SubMeetingsSendMessage
    ) -> BroadcastResult:
        """Post an HTML notice in every child room where the user may send messages.

        Rooms without permission are skipped; send failures are logged and
        returned, never raised.
        """
        with self._operation("broadcast", user, payload.target_room_id):
            parent = await self._rooms.fetch_room(payload.target_room_id)
            children = await self._rooms.load_partial_rooms(
                list(parent.space_sub_rooms),
                parent.room_id,
                [(StateEventName.M_ROOM_POWER_LEVELS, "")],
            )
            result = BroadcastResult()
            if not children:
                return result

            display_name = await self._display_name(user.user_id)
            notice = f"<b>{html.escape(display_name)}:</b> {html.escape(payload.message)}"

            async def _send(room: RoomSnapshot) -> bool:
                if not has_power_level_for(room, user.user_id, RoomEventName.M_ROOM_MESSAGE):
                    return False
                await self._metrics.track_write(
                    RoomEventName.M_ROOM_MESSAGE,
                    self._client.send_html_notice(room.room_id, notice),
                )
                return True

            outcome = await run_bounded(children, _send, concurrency=self._concurrency)
            for room, sent in outcome.results:
                (result.sent if sent else result.skipped).append(room.room_id)
            result.failures = [RoomFailure(room.room_id, exc) for room, exc in outcome.failures]

            if result.failures:
                self._metrics.record_batch_failures("broadcast", len(result.failures))
                logger.error(
                    "Unable to send messages to sub rooms: %d of %d failed: %s",
                    len(result.failures),
                    len(children),
                    "; ".join(str(f) for f in result.failures),
                )
            return result

