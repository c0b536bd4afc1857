"""Domain models for quiz rooms, participants and evaluations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any

from peer_quiz.constants.quiz_constants import DEFAULT_TIME_LIMIT_SECONDS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    HOST = "host"
    GROUP = "group"
    TEACHER = "teacher"


class SlotKind(str, Enum):
    PLACEHOLDER = "placeholder"
    OCCUPIED = "occupied"


class EvaluationPhase(str, Enum):
    """Phases of one evaluation round, in the order they are visited."""

    HOST = "host"
    PEERS = "peers"
    TEACHERS = "teachers"
    DONE = "done"


class EvaluationSource(str, Enum):
    """Which section of the evaluation log a submission lands in."""

    HOST = "host"
    PEERS = "peers"
    TEACHERS = "teachers"


class ContributionCategory(str, Enum):
    QUIZ = "quiz"
    HOST_EVAL = "host_eval"
    PEER_EVAL = "peer_eval"
    TEACHER_EVAL = "teacher_eval"


@dataclass(slots=True)
class Participant:
    """A room slot and, while occupied, the session bound to it.

    ``slot_id`` is the stable identity used by answers, the evaluation log and
    the contribution ledger. ``session_id`` is the transport handle and changes
    on every reconnect.
    """

    slot_id: str
    display_name: str
    role: Role
    session_id: str | None = None
    group_number: int | None = None
    slot_kind: SlotKind = SlotKind.OCCUPIED
    cumulative_score: float = 0.0
    previous_name: str | None = None  # Last claimant of a vacated placeholder

    @property
    def is_host(self) -> bool:
        return self.role is Role.HOST

    @property
    def is_placeholder(self) -> bool:
        return self.slot_kind is SlotKind.PLACEHOLDER

    @property
    def is_online(self) -> bool:
        return self.session_id is not None

    @property
    def is_scorable(self) -> bool:
        """Occupied group slot: eligible for quiz scoring and for being evaluated."""
        return self.role is Role.GROUP and not self.is_placeholder

    @property
    def is_claimed(self) -> bool:
        """Group slot that is occupied now or was claimed earlier in this room."""
        return self.role is Role.GROUP and (not self.is_placeholder or self.previous_name is not None)

    @property
    def claimed_name(self) -> str:
        if self.is_placeholder and self.previous_name is not None:
            return self.previous_name
        return self.display_name

    def to_view(self) -> dict[str, Any]:
        return {
            "id": self.slot_id,
            "name": self.display_name,
            "role": self.role.value,
            "is_host": self.is_host,
            "group_number": self.group_number,
            "placeholder": self.is_placeholder,
            "online": self.is_online,
            "score": self.cumulative_score,
        }


@dataclass(slots=True)
class QuizQuestion:
    """Multiple-choice question with a single correct option."""

    question_text: str
    options: list[str]
    correct_option_index: int
    time_limit_seconds: int = DEFAULT_TIME_LIMIT_SECONDS
    media_path: str | None = None
    media_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_text": self.question_text,
            "options": list(self.options),
            "correct_option_index": self.correct_option_index,
            "time_limit_seconds": self.time_limit_seconds,
            "media_path": self.media_path,
            "media_type": self.media_type,
        }


@dataclass(slots=True)
class Quiz:
    questions: list[QuizQuestion]
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "questions": [question.to_dict() for question in self.questions],
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class SubmittedAnswer:
    """Answer to one question. ``submitted_at`` only orders answers within a room."""

    slot_id: str
    question_index: int
    selected_option_index: int
    submitted_at: float


@dataclass(slots=True)
class Criterion:
    id: str
    max_score: float
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "max_score": self.max_score}


@dataclass(slots=True)
class RatingLevel:
    id: int
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label}


@dataclass(slots=True)
class EvaluationSetup:
    """Criteria per evaluator kind plus the rating scale shown to evaluators."""

    host_criteria: list[Criterion]
    peer_criteria: list[Criterion]
    teacher_criteria: list[Criterion]
    levels: list[RatingLevel] = field(default_factory=list)

    def criteria_for(self, source: EvaluationSource) -> list[Criterion]:
        if source is EvaluationSource.HOST:
            return self.host_criteria
        if source is EvaluationSource.PEERS:
            return self.peer_criteria
        return self.teacher_criteria

    def to_dict(self) -> dict[str, Any]:
        return {
            "host_criteria": [c.to_dict() for c in self.host_criteria],
            "peer_criteria": [c.to_dict() for c in self.peer_criteria],
            "teacher_criteria": [c.to_dict() for c in self.teacher_criteria],
            "levels": [level.to_dict() for level in self.levels],
        }

    @classmethod
    def from_dict(cls, document: dict[str, Any]) -> "EvaluationSetup":
        def criteria(key: str) -> list[Criterion]:
            return [
                Criterion(id=str(item["id"]), max_score=float(item["max_score"]), name=item.get("name", ""))
                for item in document.get(key) or []
            ]

        peer = criteria("peer_criteria")
        return cls(
            host_criteria=criteria("host_criteria"),
            peer_criteria=peer,
            teacher_criteria=criteria("teacher_criteria") or list(peer),
            levels=[
                RatingLevel(id=int(item["id"]), label=item.get("label", ""))
                for item in document.get("levels") or []
            ],
        )


# target slot -> criterion id -> level
Ratings = dict[str, dict[str, int]]


@dataclass(slots=True)
class EvaluationLog:
    """Merge-only record of every rating submitted in the current round."""

    host: Ratings = field(default_factory=dict)
    peers: dict[str, Ratings] = field(default_factory=dict)
    teachers: dict[str, Ratings] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.host or self.peers or self.teachers)

    def to_dict(self) -> dict[str, Any]:
        return {"host": self.host, "peers": self.peers, "teachers": self.teachers}

    @classmethod
    def from_dict(cls, document: dict[str, Any]) -> "EvaluationLog":
        return cls(
            host=document.get("host") or {},
            peers=document.get("peers") or {},
            teachers=document.get("teachers") or {},
        )


@dataclass(slots=True)
class ContributionLedger:
    """Amount applied per slot and category during the current round."""

    entries: dict[str, dict[ContributionCategory, float]] = field(default_factory=dict)

    def applied_amount(self, slot_id: str, category: ContributionCategory) -> float | None:
        return self.entries.get(slot_id, {}).get(category)

    def has_applied(self, slot_id: str, category: ContributionCategory) -> bool:
        return category in self.entries.get(slot_id, {})

    def record(self, slot_id: str, category: ContributionCategory, amount: float) -> None:
        self.entries.setdefault(slot_id, {})[category] = amount

    def clear_evaluations(self) -> None:
        for categories in self.entries.values():
            for category in (
                ContributionCategory.HOST_EVAL,
                ContributionCategory.PEER_EVAL,
                ContributionCategory.TEACHER_EVAL,
            ):
                categories.pop(category, None)

    def clear(self) -> None:
        self.entries.clear()


@dataclass(slots=True)
class Room:
    """One quiz and evaluation session, keyed by its code."""

    code: str
    owner_name: str  # Persistence key; fixed even if the host role moves
    participants: list[Participant] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    quiz: Quiz | None = None
    quiz_active: bool = False
    current_question_index: int = 0
    answers: dict[tuple[str, int], SubmittedAnswer] = field(default_factory=dict)
    evaluation_setup: EvaluationSetup | None = None
    evaluation_active: bool = False
    evaluation_phase: EvaluationPhase = EvaluationPhase.HOST
    evaluation_log: EvaluationLog = field(default_factory=EvaluationLog)
    ledger: ContributionLedger = field(default_factory=ContributionLedger)
    lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    @property
    def host(self) -> Participant | None:
        return next((p for p in self.participants if p.is_host), None)

    def find_by_session(self, session_id: str) -> Participant | None:
        return next((p for p in self.participants if p.session_id == session_id), None)

    def find_by_slot(self, slot_id: str) -> Participant | None:
        return next((p for p in self.participants if p.slot_id == slot_id), None)

    def online_participants(self) -> list[Participant]:
        return [p for p in self.participants if p.is_online]

    def online_groups(self) -> list[Participant]:
        return [p for p in self.participants if p.is_scorable and p.is_online]

    def online_teachers(self) -> list[Participant]:
        return [p for p in self.participants if p.role is Role.TEACHER and p.is_online]

    def claimed_groups(self) -> list[Participant]:
        return [p for p in self.participants if p.is_claimed]

    def session_ids(self) -> list[str]:
        return [p.session_id for p in self.participants if p.session_id is not None]

    def roster(self) -> list[dict[str, Any]]:
        return [p.to_view() for p in self.participants]
