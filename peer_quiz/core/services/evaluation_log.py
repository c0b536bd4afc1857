"""Merging evaluation submissions into the round log and summarizing it.

The log, not the live score, is the source for summary tables: every row is
recomputed from the ratings each time it is requested.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from peer_quiz.constants.evaluation_constants import (
    PEER_AVERAGE_DECIMALS,
    TEACHER_AVERAGE_DECIMALS,
)
from peer_quiz.core.models import (
    ContributionCategory,
    Criterion,
    EvaluationLog,
    EvaluationSetup,
    EvaluationSource,
    Participant,
    Ratings,
    Role,
)
from peer_quiz.core.services.score_accumulator import cap_for, raw_score


def merge_log(
    log: EvaluationLog,
    incoming: Mapping[str, Mapping[str, int]],
    source: EvaluationSource,
    source_id: str | None = None,
) -> EvaluationLog:
    """Deep-merge ``incoming`` (target -> criterion -> level) into ``log``.

    A criterion value overwrites only the same (evaluator, target, criterion)
    key; ratings of other criteria from earlier submissions are kept.
    """
    if source is EvaluationSource.HOST:
        section = log.host
    else:
        if source_id is None:
            raise ValueError("Peer and teacher ratings need an evaluator id.")
        evaluators = log.peers if source is EvaluationSource.PEERS else log.teachers
        section = evaluators.setdefault(source_id, {})

    for target_id, ratings in incoming.items():
        merged = section.setdefault(target_id, {})
        for criterion_id, level in ratings.items():
            merged[str(criterion_id)] = int(level)
    return log


def host_score(log: EvaluationLog, setup: EvaluationSetup, target_id: str) -> float:
    return raw_score(log.host.get(target_id, {}), setup.host_criteria)


def evaluator_scores(
    evaluations: Mapping[str, Ratings],
    criteria: Iterable[Criterion],
    target_id: str,
    evaluator_ids: Iterable[str] | None = None,
) -> list[float]:
    """Raw score of every evaluator who rated ``target_id`` (never the target itself)."""
    criteria = list(criteria)
    allowed = set(evaluator_ids) if evaluator_ids is not None else None
    return [
        raw_score(ratings[target_id], criteria)
        for evaluator_id, ratings in evaluations.items()
        if evaluator_id != target_id
        and target_id in ratings
        and (allowed is None or evaluator_id in allowed)
    ]


def average(scores: list[float], decimals: int) -> float | None:
    if not scores:
        return None
    return round(sum(scores) / len(scores), decimals)


def peer_average(
    log: EvaluationLog,
    setup: EvaluationSetup,
    target_id: str,
    group_ids: Iterable[str] | None = None,
) -> float | None:
    scores = evaluator_scores(log.peers, setup.peer_criteria, target_id, group_ids)
    return average(scores, PEER_AVERAGE_DECIMALS)


def teacher_average(log: EvaluationLog, setup: EvaluationSetup, target_id: str) -> float | None:
    scores = evaluator_scores(log.teachers, setup.teacher_criteria, target_id)
    return average(scores, TEACHER_AVERAGE_DECIMALS)


@dataclass(slots=True)
class SummaryRow:
    slot_id: str
    display_name: str
    quiz_score: float
    host_score: float
    teacher_average: float
    peer_average: float
    total: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.slot_id,
            "name": self.display_name,
            "quiz_score": self.quiz_score,
            "host_score": self.host_score,
            "teacher_average": self.teacher_average,
            "peer_average": self.peer_average,
            "total": self.total,
        }


def build_summary(
    log: EvaluationLog,
    setup: EvaluationSetup,
    participants: Iterable[Participant],
    quiz_scores: Mapping[str, float] | None = None,
) -> list[SummaryRow]:
    """One row per claimed group slot, in slot order.

    Host and peer parts use the same caps as the score accumulator so a
    row's total matches what was added to the live score.
    """
    participants = list(participants)
    quiz_scores = quiz_scores or {}
    group_ids = [p.slot_id for p in participants if p.role is Role.GROUP]

    rows = []
    for participant in participants:
        if not participant.is_claimed:
            continue
        target = participant.slot_id
        host_part = cap_for(ContributionCategory.HOST_EVAL, host_score(log, setup, target))
        peer_part = cap_for(
            ContributionCategory.PEER_EVAL, peer_average(log, setup, target, group_ids) or 0.0
        )
        teacher_part = teacher_average(log, setup, target) or 0.0
        quiz_part = float(quiz_scores.get(target, 0.0))
        rows.append(
            SummaryRow(
                slot_id=target,
                display_name=participant.claimed_name,
                quiz_score=quiz_part,
                host_score=host_part,
                teacher_average=teacher_part,
                peer_average=peer_part,
                total=round(quiz_part + host_part + peer_part + teacher_part, TEACHER_AVERAGE_DECIMALS),
            )
        )
    return rows
