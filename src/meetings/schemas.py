"""Typed command payloads accepted by the meeting service."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from meetings.calendar.models import CalendarEntry, parse_iso_datetime


def _check_iso(value: str | None) -> str | None:
    if value is not None:
        try:
            parse_iso_datetime(value)
        except ValueError as exc:
            raise ValueError(f"not an ISO 8601 time: {value!r}") from exc
    return value


class UserContext(BaseModel):
    """The acting user of one command."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    locale: str = "en"
    timezone: str = "UTC"


class Participant(BaseModel):
    user_id: str
    power_level: int | None = Field(default=None, ge=0)


class _MeetingTime(BaseModel):
    start_time: str | None = None
    end_time: str | None = None
    calendar: list[CalendarEntry] | None = None
    external_data: dict[str, Any] | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_times(cls, value: str | None) -> str | None:
        return _check_iso(value)

    @model_validator(mode="after")
    def _exclusive_time_shapes(self) -> _MeetingTime:
        if self.calendar is not None and (
            self.start_time is not None or self.end_time is not None
        ):
            raise ValueError("calendar cannot be combined with start_time/end_time")
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        return self


class MeetingCreate(_MeetingTime):
    parent_room_id: str | None = None
    title: str
    description: str = ""
    widget_ids: list[str] | None = None
    participants: list[Participant] | None = None
    messaging_power_level: int | None = Field(default=None, ge=0)
    enable_auto_deletion: bool | None = None


class MeetingCreateResult(BaseModel):
    room_id: str
    meeting_url: str


class MeetingUpdateDetails(_MeetingTime):
    target_room_id: str
    title: str | None = None
    description: str | None = None


class MeetingWidgetsHandle(BaseModel):
    target_room_id: str
    widget_ids: list[str]
    add: bool


class MeetingParticipantsHandle(BaseModel):
    target_room_id: str
    user_ids: list[str] = Field(alias="userIds")
    invite: bool

    model_config = ConfigDict(populate_by_name=True)


class CloseMethod(StrEnum):
    TOMBSTONE = "tombstone"
    KICK_ALL_PARTICIPANTS = "kick_all_participants"


class MeetingClose(BaseModel):
    target_room_id: str
    method: CloseMethod = CloseMethod.TOMBSTONE


class MessagingPermission(BaseModel):
    target_room_id: str
    messaging_power_level: int = Field(ge=0)


class SubMeetingsSendMessage(BaseModel):
    target_room_id: str
    message: str


class BreakoutSessionGroup(BaseModel):
    title: str
    participants: list[Participant] = Field(default_factory=list)


class BreakoutSessions(BaseModel):
    groups: list[BreakoutSessionGroup] = Field(default_factory=list)
    description: str = ""
    start_time: str
    end_time: str
    widget_ids: list[str] | None = None
    enable_auto_deletion: bool | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_times(cls, value: str | None) -> str | None:
        return _check_iso(value)
