"""Errors raised by room operations.

Every error is raised before the operation mutates room state, so the
transport can turn it into a rejection for the requester alone.
"""

from __future__ import annotations


class RoomError(Exception):
    """Base class for rejected room operations."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthorizationError(RoomError):
    """Requester may not perform the operation (not host, wrong phase, bad target)."""

    kind = "authorization"


class RoomValidationError(RoomError):
    """Malformed request data."""

    kind = "validation"


class CapacityError(RoomError):
    """Room full or no free group slot."""

    kind = "capacity"


class RoomNotFoundError(RoomError):
    """Unknown room code, player or session."""

    kind = "not_found"


class QuizStateError(RoomError):
    """Operation is not valid in the current quiz or evaluation state."""

    kind = "state"
