from __future__ import annotations

import itertools

import pytest

from peer_quiz.core.models import Criterion, EvaluationSetup, RatingLevel, Role, Room
from peer_quiz.core.room_manager import RoomManager
from peer_quiz.core.services.game_session import GameSession
from peer_quiz.core.services.lobby_manager import JoinRequest, LobbyManager
from peer_quiz.storage.archive import RoomArchive
from peer_quiz.storage.document_store import MemoryDocumentStore


class TickClock:
    """Monotonic clock that advances one second per reading."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


@pytest.fixture
def clock():
    return TickClock()


@pytest.fixture
def lobby():
    counter = itertools.count(1)
    return LobbyManager(id_factory=lambda: f"slot-{next(counter)}")


@pytest.fixture
def room(lobby):
    return Room(code="ROOM01", owner_name="Host", participants=lobby.create_slots("Host", "host-session"))


@pytest.fixture
def seat_group(lobby, room):
    def seat(number, name=None, session_id=None, saved_scores=None):
        request = JoinRequest(
            session_id=session_id or f"group-{number}",
            role=Role.GROUP,
            display_name=name or f"Group{number}",
            group_number=number,
        )
        return lobby.resolve_join(room, request, saved_scores)

    return seat


@pytest.fixture
def seat_teacher(lobby, room):
    def seat(name="Ann", session_id="teacher-1"):
        return lobby.resolve_join(room, JoinRequest(session_id=session_id, role=Role.TEACHER, display_name=name))

    return seat


@pytest.fixture
def evaluation_setup():
    return EvaluationSetup(
        host_criteria=[Criterion(id="c1", max_score=40.0, name="Presentation")],
        peer_criteria=[Criterion(id="p1", max_score=20.0, name="Teamwork")],
        teacher_criteria=[Criterion(id="t1", max_score=10.0, name="Content")],
        levels=[RatingLevel(id=level, label=f"Level {level}") for level in range(1, 5)],
    )


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def archive(store):
    return RoomArchive(store)


@pytest.fixture
def manager(archive, lobby, clock):
    codes = iter(["ABC123", "DEF456", "GHI789", "JKL012"])
    return RoomManager(
        archive,
        lobby=lobby,
        game=GameSession(clock=clock),
        code_factory=lambda: next(codes),
    )
