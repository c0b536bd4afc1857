"""Service for seating participants in a room's slots."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Callable, Mapping
from uuid import uuid4

from peer_quiz.constants.quiz_constants import MAX_GROUPS
from peer_quiz.core.errors import CapacityError, RoomValidationError
from peer_quiz.core.models import Participant, Role, Room, SlotKind

logger = logging.getLogger(__name__)

_ROLE_PREFIX = re.compile(r"^\s*\[\s*(?:group\s*\d+|teacher)\s*\]\s*", re.IGNORECASE)
_JOINABLE_ROLES = (Role.GROUP, Role.TEACHER)


def clean_name(name: str) -> str:
    """Strip every leading role prefix so a prefix is never applied twice."""
    cleaned = name.strip()
    while True:
        stripped = _ROLE_PREFIX.sub("", cleaned, count=1)
        if stripped == cleaned:
            return cleaned
        cleaned = stripped.strip()


def group_display_name(group_number: int, name: str) -> str:
    return f"[Group {group_number}] {clean_name(name)}"


def teacher_display_name(name: str) -> str:
    return f"[Teacher] {clean_name(name)}"


def placeholder_name(group_number: int) -> str:
    return f"Group {group_number}"


@dataclass(slots=True)
class JoinRequest:
    session_id: str
    role: Role
    display_name: str
    group_number: int | None = None


@dataclass(slots=True)
class Departure:
    """What happened to a room when a session left it."""

    participant: Participant
    removed: bool
    promoted: Participant | None = None
    room_empty: bool = False


class LobbyManager:
    """Resolves joins to slots and releases slots on leave."""

    def __init__(self, id_factory: Callable[[], str] | None = None) -> None:
        self._new_id = id_factory or (lambda: uuid4().hex)

    def create_slots(self, host_name: str, host_session: str) -> list[Participant]:
        """Host entry followed by one placeholder per group number."""
        host = Participant(
            slot_id=self._new_id(),
            display_name=host_name,
            role=Role.HOST,
            session_id=host_session,
        )
        return [host] + [self._placeholder(number) for number in range(1, MAX_GROUPS + 1)]

    def resolve_join(
        self,
        room: Room,
        request: JoinRequest,
        saved_scores: Mapping[str, float] | None = None,
    ) -> Participant:
        """Seat a joining session, or raise when the request cannot be seated."""
        if request.role not in _JOINABLE_ROLES:
            raise RoomValidationError("Role must be group or teacher.")
        if not clean_name(request.display_name or ""):
            raise RoomValidationError("A name is required to join.")
        if room.find_by_session(request.session_id) is not None:
            raise RoomValidationError("You are already in this room.")

        saved_scores = saved_scores or {}
        if request.role is Role.TEACHER:
            participant = Participant(
                slot_id=self._new_id(),
                display_name=teacher_display_name(request.display_name),
                role=Role.TEACHER,
                session_id=request.session_id,
            )
            room.participants.append(participant)
            return participant
        return self._seat_group(room, request, saved_scores)

    def _seat_group(
        self,
        room: Room,
        request: JoinRequest,
        saved_scores: Mapping[str, float],
    ) -> Participant:
        number = request.group_number
        if number is None or not 1 <= number <= MAX_GROUPS:
            raise RoomValidationError(f"Group number must be between 1 and {MAX_GROUPS}.")
        occupied = sum(1 for p in room.participants if p.is_scorable)
        if occupied >= MAX_GROUPS:
            raise CapacityError(f"Room is full (at most {MAX_GROUPS} groups).")

        name = group_display_name(number, request.display_name)
        slot = next(
            (
                p
                for p in room.participants
                if p.role is Role.GROUP and p.is_placeholder and p.group_number == number
            ),
            None,
        )
        if slot is None:
            raise CapacityError(f"No free slot for group {number}.")

        returning = slot.previous_name == name
        if slot.previous_name is not None and not returning:
            # Answers, ratings and ledger entries stay with the departed group.
            slot.slot_id = self._new_id()
        if name in saved_scores:
            slot.cumulative_score = float(saved_scores[name])
        elif not returning:
            slot.cumulative_score = 0.0
        slot.display_name = name
        slot.slot_kind = SlotKind.OCCUPIED
        slot.previous_name = None
        self.rebind_session(slot, request.session_id)
        logger.info("%s took slot %s (score %s)", name, slot.slot_id, slot.cumulative_score)
        return slot

    def rebind_session(self, participant: Participant, session_id: str) -> None:
        """Attach a new transport session to an existing slot."""
        participant.session_id = session_id

    def release(self, room: Room, session_id: str) -> Departure | None:
        """Free the slot held by ``session_id``; ``None`` if it holds none."""
        participant = room.find_by_session(session_id)
        if participant is None:
            return None

        was_host = participant.is_host
        if participant.role is Role.GROUP and participant.group_number is not None:
            participant.previous_name = participant.display_name
            participant.display_name = placeholder_name(participant.group_number)
            participant.slot_kind = SlotKind.PLACEHOLDER
            participant.session_id = None
            removed = False
        else:
            room.participants.remove(participant)
            removed = True

        departure = Departure(participant=participant, removed=removed)
        if not room.online_participants():
            departure.room_empty = True
        elif was_host:
            departure.promoted = self._promote_host(room)
        return departure

    def _promote_host(self, room: Room) -> Participant:
        successor = room.online_participants()[0]
        if successor.role is Role.GROUP and successor.group_number is not None:
            # Keep the fixed slot count: a fresh placeholder takes over the group number.
            position = room.participants.index(successor)
            room.participants[position] = self._placeholder(successor.group_number)
            room.participants.insert(0, successor)
            successor.group_number = None
        successor.role = Role.HOST
        successor.slot_kind = SlotKind.OCCUPIED
        logger.info("Host role moved to %s in room %s", successor.display_name, room.code)
        return successor

    def _placeholder(self, group_number: int) -> Participant:
        return Participant(
            slot_id=self._new_id(),
            display_name=placeholder_name(group_number),
            role=Role.GROUP,
            group_number=group_number,
            slot_kind=SlotKind.PLACEHOLDER,
        )
