"""Service that folds quiz and evaluation contributions into cumulative scores."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Iterable, Mapping

from peer_quiz.constants.evaluation_constants import (
    HOST_EVALUATION_CAP,
    PEER_EVALUATION_CAP,
    RATING_LEVEL_COUNT,
)
from peer_quiz.core.errors import RoomNotFoundError
from peer_quiz.core.models import ContributionCategory, Criterion, Room

logger = logging.getLogger(__name__)

_CAPS: dict[ContributionCategory, float] = {
    ContributionCategory.HOST_EVAL: HOST_EVALUATION_CAP,
    ContributionCategory.PEER_EVAL: PEER_EVALUATION_CAP,
}


class ContributionStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class ContributionResult:
    status: ContributionStatus
    delta: float = 0.0

    @property
    def applied(self) -> bool:
        return self.status is ContributionStatus.APPLIED


def criterion_points(criterion: Criterion, level: int) -> float:
    """Linear mapping of a rating level onto a criterion's maximum score."""
    return (criterion.max_score / RATING_LEVEL_COUNT) * level


def raw_score(ratings: Mapping[str, int], criteria: Iterable[Criterion]) -> float:
    """Sum the points of one evaluator's ratings for one target."""
    by_id = {criterion.id: criterion for criterion in criteria}
    return sum(
        criterion_points(by_id[criterion_id], level)
        for criterion_id, level in ratings.items()
        if criterion_id in by_id
    )


def cap_for(category: ContributionCategory, amount: float) -> float:
    cap = _CAPS.get(category)
    amount = max(0.0, amount)
    return min(amount, cap) if cap is not None else amount


class ScoreAccumulator:
    """Applies each contribution category at most once per slot and round.

    ``quiz`` replaces the score. ``host_eval`` and ``teacher_eval`` are added
    once. ``peer_eval`` follows recompute-and-redelta: the ledger keeps the
    average already added and only the difference to a new average is added.
    """

    def apply_contribution(
        self,
        room: Room,
        slot_id: str,
        category: ContributionCategory,
        amount: float,
    ) -> ContributionResult:
        participant = room.find_by_slot(slot_id)
        if participant is None:
            raise RoomNotFoundError("Player not found.")

        amount = cap_for(category, amount)
        previous = room.ledger.applied_amount(slot_id, category)

        if category is ContributionCategory.QUIZ:
            delta = amount - participant.cumulative_score
            participant.cumulative_score = amount
        elif category is ContributionCategory.PEER_EVAL:
            if previous is not None and previous == amount:
                return ContributionResult(ContributionStatus.SKIPPED)
            delta = amount - (previous or 0.0)
            participant.cumulative_score = max(0.0, participant.cumulative_score + delta)
        else:
            if previous is not None:
                return ContributionResult(ContributionStatus.SKIPPED)
            delta = amount
            participant.cumulative_score += delta

        room.ledger.record(slot_id, category, amount)
        logger.info(
            "%s for %s: %+.2f -> %.2f",
            category.value,
            participant.claimed_name,
            delta,
            participant.cumulative_score,
        )
        return ContributionResult(ContributionStatus.APPLIED, delta)

    def reset_scores(self, room: Room) -> None:
        """Zero every score and forget all contributions (quiz restart)."""
        for participant in room.participants:
            participant.cumulative_score = 0.0
        room.ledger.clear()

    def set_score(self, room: Room, slot_id: str, score: float) -> None:
        """Manual override by the host; contributions already applied stay recorded."""
        participant = room.find_by_slot(slot_id)
        if participant is None:
            raise RoomNotFoundError("Player not found.")
        participant.cumulative_score = score
