"""Typed errors raised by the meetings engine.

Every error carries a ``status_code`` so the command layer can map it onto
an HTTP-like response without inspecting the class hierarchy.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass


class MeetingsError(RuntimeError):
    """Base error for all meeting lifecycle failures."""

    status_code = 500


class PermissionDeniedError(MeetingsError):
    """Raised when the actor lacks the power level for an event type or action."""

    status_code = 403


class RoomNotFoundError(MeetingsError):
    """Raised when a room cannot be read."""

    status_code = 404

    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__(f"Room not found: {room_id}")


class MeetingNotFoundError(MeetingsError):
    """Raised when a room exists but does not carry a meeting."""

    status_code = 404

    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__(f"Room {room_id} is not a meeting")


class RoomNotCreatedError(MeetingsError):
    """Raised when room creation returned no room id."""

    def __init__(self) -> None:
        super().__init__("Room was not created")


class MeetingValidationError(MeetingsError):
    """Raised for payloads rejected before any room is touched."""

    status_code = 400


class ParticipantError(MeetingsError):
    """Raised when some invite/kick calls failed; successes are kept."""

    def __init__(self, user_ids: Iterable[str]) -> None:
        self.user_ids = list(user_ids)
        super().__init__(f"Participant operation failed for: {', '.join(self.user_ids)}")


@dataclass(frozen=True)
class RoomFailure:
    """A single failed unit of a multi-room operation."""

    room_id: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.room_id}: {self.error}"


class BatchError(MeetingsError):
    """Aggregate of per-room failures collected after a whole batch ran."""

    def __init__(self, message: str, failures: Sequence[RoomFailure]) -> None:
        self.failures = list(failures)
        details = "; ".join(str(f) for f in self.failures)
        super().__init__(f"{message} ({len(self.failures)} failed): {details}")

    @property
    def room_ids(self) -> list[str]:
        return [f.room_id for f in self.failures]


class CloseMeetingError(BatchError):
    """Raised after closing a meeting tree when some rooms could not be closed."""


class WidgetCleanupError(BatchError):
    """Raised when some widgets could not be cleared."""


class RoomLoadError(BatchError):
    """Raised when some rooms of a partial load failed for reasons other than 404."""


class ProtocolRequestError(MeetingsError):
    """Raised by the protocol adapter when the homeserver rejects a request."""

    def __init__(self, *, status_code: int, message: str, errcode: str | None = None) -> None:
        self.status_code = status_code
        self.errcode = errcode
        self.message = message
        super().__init__(f"Protocol request failed ({status_code} {errcode or '-'}): {message}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404 and self.errcode in (None, "M_NOT_FOUND")
