"""Meeting lifecycle orchestration and user-facing texts."""

from meetings.service.meetings import BroadcastResult, MeetingService
from meetings.service.messages import MeetingChanges, compute_meeting_changes

__all__ = ["BroadcastResult", "MeetingChanges", "MeetingService", "compute_meeting_changes"]
