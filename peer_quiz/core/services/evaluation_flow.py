"""Evaluation round state machine: host, then peers, then teachers, then done."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Mapping

from peer_quiz.constants.evaluation_constants import MAX_RATING_LEVEL, MIN_RATING_LEVEL, RATING_LEVEL_COUNT
from peer_quiz.core.errors import (
    AuthorizationError,
    QuizStateError,
    RoomNotFoundError,
    RoomValidationError,
)
from peer_quiz.core.models import (
    ContributionCategory,
    Criterion,
    EvaluationLog,
    EvaluationPhase,
    EvaluationSetup,
    EvaluationSource,
    Participant,
    Role,
    Room,
)
from peer_quiz.core.services.evaluation_log import merge_log, peer_average, teacher_average
from peer_quiz.core.services.score_accumulator import ContributionResult, ScoreAccumulator, raw_score

logger = logging.getLogger(__name__)

_PHASE_FOR_SOURCE = {
    EvaluationSource.HOST: EvaluationPhase.HOST,
    EvaluationSource.PEERS: EvaluationPhase.PEERS,
    EvaluationSource.TEACHERS: EvaluationPhase.TEACHERS,
}


@dataclass(slots=True)
class SubmissionReceipt:
    """Accepted submission: contributions it caused and phases it moved through."""

    source: EvaluationSource
    evaluator: Participant
    contributions: dict[ContributionCategory, dict[str, ContributionResult]] = field(default_factory=dict)
    transitions: list[EvaluationPhase] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return EvaluationPhase.DONE in self.transitions

    def deltas(self) -> dict[str, float]:
        """Score added per slot by this submission, across categories."""
        totals: dict[str, float] = {}
        for results in self.contributions.values():
            for slot_id, result in results.items():
                if result.applied:
                    totals[slot_id] = totals.get(slot_id, 0.0) + result.delta
        return totals


@dataclass(slots=True)
class PhaseAdvance:
    transitions: list[EvaluationPhase] = field(default_factory=list)
    teacher_contributions: dict[str, ContributionResult] = field(default_factory=dict)


def validate_setup(setup: EvaluationSetup) -> EvaluationSetup:
    """Check criteria and levels; teacher criteria fall back to the peer criteria."""
    if not setup.host_criteria:
        raise RoomValidationError("At least one host criterion is required.")
    if not setup.peer_criteria:
        raise RoomValidationError("At least one peer criterion is required.")
    teacher_criteria = setup.teacher_criteria or list(setup.peer_criteria)
    for label, criteria in (
        ("host", setup.host_criteria),
        ("peer", setup.peer_criteria),
        ("teacher", teacher_criteria),
    ):
        _validate_criteria(label, criteria)

    level_ids = [level.id for level in setup.levels]
    if len(set(level_ids)) != len(level_ids):
        raise RoomValidationError("Rating level ids must be unique.")
    if any(not 1 <= level_id <= RATING_LEVEL_COUNT for level_id in level_ids):
        raise RoomValidationError(f"Rating level ids must be between 1 and {RATING_LEVEL_COUNT}.")

    return EvaluationSetup(
        host_criteria=list(setup.host_criteria),
        peer_criteria=list(setup.peer_criteria),
        teacher_criteria=list(teacher_criteria),
        levels=sorted(setup.levels, key=lambda level: level.id),
    )


def _validate_criteria(label: str, criteria: list[Criterion]) -> None:
    ids = [criterion.id for criterion in criteria]
    if any(not criterion_id for criterion_id in ids):
        raise RoomValidationError(f"Every {label} criterion needs an id.")
    if len(set(ids)) != len(ids):
        raise RoomValidationError(f"{label.capitalize()} criterion ids must be unique.")
    if any(criterion.max_score <= 0 for criterion in criteria):
        raise RoomValidationError(f"{label.capitalize()} criterion max scores must be positive.")


class EvaluationStateMachine:
    """Gates evaluation submissions by phase and moves the round forward."""

    def __init__(self, accumulator: ScoreAccumulator) -> None:
        self._accumulator = accumulator

    def start_round(self, room: Room, setup: EvaluationSetup) -> None:
        """Begin a fresh round: phase ``host``, empty log, evaluation ledger cleared."""
        room.evaluation_setup = validate_setup(setup)
        room.evaluation_active = True
        room.evaluation_phase = EvaluationPhase.HOST
        room.evaluation_log = EvaluationLog()
        room.ledger.clear_evaluations()
        logger.info("Evaluation round started in room %s", room.code)

    def reset_round(self, room: Room) -> None:
        """Drop the current round without starting another (new quiz round)."""
        room.evaluation_active = False
        room.evaluation_phase = EvaluationPhase.HOST
        room.evaluation_log = EvaluationLog()
        room.ledger.clear_evaluations()

    def submit_host(
        self,
        room: Room,
        evaluator: Participant,
        ratings: Mapping[str, Mapping[str, int]],
    ) -> SubmissionReceipt:
        if not evaluator.is_host:
            raise AuthorizationError("Only the host can submit host evaluations.")
        self._require_phase(room, EvaluationSource.HOST)
        self._validate_ratings(room, evaluator, ratings, EvaluationSource.HOST)

        merge_log(room.evaluation_log, ratings, EvaluationSource.HOST)
        receipt = SubmissionReceipt(source=EvaluationSource.HOST, evaluator=evaluator)
        criteria = room.evaluation_setup.host_criteria
        receipt.contributions[ContributionCategory.HOST_EVAL] = {
            target_id: self._accumulator.apply_contribution(
                room,
                target_id,
                ContributionCategory.HOST_EVAL,
                raw_score(room.evaluation_log.host[target_id], criteria),
            )
            for target_id in ratings
        }

        if len(room.online_groups()) >= 2:
            next_phase = EvaluationPhase.PEERS
        elif room.online_teachers():
            next_phase = EvaluationPhase.TEACHERS
        else:
            next_phase = EvaluationPhase.DONE
        advance = PhaseAdvance()
        self._transition(room, next_phase, advance)
        self._advance(room, advance)
        self._fill_receipt(receipt, advance)
        return receipt

    def submit_peer(
        self,
        room: Room,
        evaluator: Participant,
        ratings: Mapping[str, Mapping[str, int]],
    ) -> SubmissionReceipt:
        if not evaluator.is_scorable:
            raise AuthorizationError("Only groups can submit peer evaluations.")
        self._require_phase(room, EvaluationSource.PEERS)
        self._validate_ratings(room, evaluator, ratings, EvaluationSource.PEERS)

        merge_log(room.evaluation_log, ratings, EvaluationSource.PEERS, evaluator.slot_id)
        receipt = SubmissionReceipt(source=EvaluationSource.PEERS, evaluator=evaluator)
        receipt.contributions[ContributionCategory.PEER_EVAL] = self._apply_peer_averages(room)
        self._fill_receipt(receipt, self._advance(room, PhaseAdvance()))
        return receipt

    def submit_teacher(
        self,
        room: Room,
        evaluator: Participant,
        ratings: Mapping[str, Mapping[str, int]],
    ) -> SubmissionReceipt:
        if evaluator.role is not Role.TEACHER:
            raise AuthorizationError("Only teachers can submit teacher evaluations.")
        self._require_phase(room, EvaluationSource.TEACHERS)
        self._validate_ratings(room, evaluator, ratings, EvaluationSource.TEACHERS)

        merge_log(room.evaluation_log, ratings, EvaluationSource.TEACHERS, evaluator.slot_id)
        receipt = SubmissionReceipt(source=EvaluationSource.TEACHERS, evaluator=evaluator)
        self._fill_receipt(receipt, self._advance(room, PhaseAdvance()))
        return receipt

    def submit_member(
        self,
        room: Room,
        evaluator: Participant,
        ratings: Mapping[str, Mapping[str, int]],
    ) -> SubmissionReceipt:
        """Peer or teacher submission, routed by the evaluator's role."""
        if evaluator.role is Role.TEACHER:
            return self.submit_teacher(room, evaluator, ratings)
        if evaluator.role is Role.GROUP:
            return self.submit_peer(room, evaluator, ratings)
        raise AuthorizationError("The host submits host evaluations only.")

    def advance_if_complete(self, room: Room) -> list[EvaluationPhase]:
        """Apply every transition whose completion predicate currently holds."""
        return self._advance(room, PhaseAdvance()).transitions

    def _advance(self, room: Room, advance: PhaseAdvance) -> PhaseAdvance:
        if not room.evaluation_active:
            return advance
        if room.evaluation_phase is EvaluationPhase.PEERS and self.peers_complete(room):
            next_phase = EvaluationPhase.TEACHERS if room.online_teachers() else EvaluationPhase.DONE
            self._transition(room, next_phase, advance)
        if room.evaluation_phase is EvaluationPhase.TEACHERS and self.teachers_complete(room):
            self._transition(room, EvaluationPhase.DONE, advance)
        return advance

    def _fill_receipt(self, receipt: SubmissionReceipt, advance: PhaseAdvance) -> None:
        receipt.transitions.extend(advance.transitions)
        if advance.teacher_contributions:
            receipt.contributions[ContributionCategory.TEACHER_EVAL] = advance.teacher_contributions

    def peers_complete(self, room: Room) -> bool:
        """Every online group has rated every other online group."""
        groups = [p.slot_id for p in room.online_groups()]
        for evaluator_id in groups:
            rated = room.evaluation_log.peers.get(evaluator_id, {})
            if any(target_id not in rated for target_id in groups if target_id != evaluator_id):
                return False
        return True

    def teachers_complete(self, room: Room) -> bool:
        """Every online teacher has rated every online group."""
        groups = [p.slot_id for p in room.online_groups()]
        for teacher in room.online_teachers():
            rated = room.evaluation_log.teachers.get(teacher.slot_id, {})
            if any(target_id not in rated for target_id in groups):
                return False
        return True

    def _transition(self, room: Room, phase: EvaluationPhase, advance: PhaseAdvance) -> None:
        room.evaluation_phase = phase
        advance.transitions.append(phase)
        logger.info("Room %s evaluation phase -> %s", room.code, phase.value)
        if phase is EvaluationPhase.DONE:
            advance.teacher_contributions = self._apply_teacher_averages(room)

    def _apply_peer_averages(self, room: Room) -> dict[str, ContributionResult]:
        group_ids = [p.slot_id for p in room.participants if p.role is Role.GROUP]
        results = {}
        for target in room.claimed_groups():
            value = peer_average(room.evaluation_log, room.evaluation_setup, target.slot_id, group_ids)
            if value is None:
                continue
            results[target.slot_id] = self._accumulator.apply_contribution(
                room, target.slot_id, ContributionCategory.PEER_EVAL, value
            )
        return results

    def _apply_teacher_averages(self, room: Room) -> dict[str, ContributionResult]:
        results = {}
        for target in room.claimed_groups():
            value = teacher_average(room.evaluation_log, room.evaluation_setup, target.slot_id)
            if value is None:
                continue
            results[target.slot_id] = self._accumulator.apply_contribution(
                room, target.slot_id, ContributionCategory.TEACHER_EVAL, value
            )
        return results

    def _require_phase(self, room: Room, source: EvaluationSource) -> None:
        if not room.evaluation_active or room.evaluation_setup is None:
            raise QuizStateError("Evaluation has not started.")
        if room.evaluation_phase is EvaluationPhase.DONE:
            raise QuizStateError("This evaluation round is already complete.")
        if room.evaluation_phase is not _PHASE_FOR_SOURCE[source]:
            raise AuthorizationError(
                f"Submissions from {source.value} are not accepted during the "
                f"{room.evaluation_phase.value} phase."
            )

    def _validate_ratings(
        self,
        room: Room,
        evaluator: Participant,
        ratings: Mapping[str, Mapping[str, int]],
        source: EvaluationSource,
    ) -> None:
        if not ratings:
            raise RoomValidationError("No ratings were submitted.")
        criteria_ids = {c.id for c in room.evaluation_setup.criteria_for(source)}
        for target_id, target_ratings in ratings.items():
            target = room.find_by_slot(target_id)
            if target is None:
                raise RoomNotFoundError(f"Player {target_id} not found.")
            if target.slot_id == evaluator.slot_id:
                raise AuthorizationError("You cannot evaluate yourself.")
            if target.role is Role.TEACHER:
                raise AuthorizationError("Teachers are not evaluated.")
            if target.is_host:
                raise AuthorizationError("The host is not evaluated.")
            if not target.is_claimed:
                raise AuthorizationError(f"{target.display_name} has not been claimed by a group.")
            if not target_ratings:
                raise RoomValidationError(f"No ratings given for {target.display_name}.")
            for criterion_id, level in target_ratings.items():
                if str(criterion_id) not in criteria_ids:
                    raise RoomValidationError(f"Unknown criterion {criterion_id}.")
                if isinstance(level, bool) or not isinstance(level, int):
                    raise RoomValidationError("Rating levels must be whole numbers.")
                if not MIN_RATING_LEVEL <= level <= MAX_RATING_LEVEL:
                    raise RoomValidationError(
                        f"Rating levels must be between {MIN_RATING_LEVEL} and {MAX_RATING_LEVEL}."
                    )
