"""Quiz scoring: ranked points for correct answers, fastest first."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from peer_quiz.constants.quiz_constants import POINTS_BY_RANK
from peer_quiz.core.models import Participant, Quiz, SubmittedAnswer


def points_for_rank(rank: int) -> int:
    """Points for the ``rank``-th correct answer (0 is fastest)."""
    if 0 <= rank < len(POINTS_BY_RANK):
        return POINTS_BY_RANK[rank]
    return 0


@dataclass(slots=True)
class QuestionDetail:
    question_index: int
    question_text: str
    options: list[str]
    correct_option_index: int
    selected_option_index: int | None
    answered: bool
    is_correct: bool
    points_earned: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_index": self.question_index,
            "question": self.question_text,
            "options": list(self.options),
            "correct_answer": self.correct_option_index,
            "player_answer": self.selected_option_index,
            "answered": self.answered,
            "is_correct": self.is_correct,
            "points_earned": self.points_earned,
        }


@dataclass(slots=True)
class ParticipantQuizResult:
    slot_id: str
    display_name: str
    score: int
    correct_answers: int
    total_questions: int
    details: list[QuestionDetail] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.slot_id,
            "player_name": self.display_name,
            "score": self.score,
            "correct_answers": self.correct_answers,
            "total_questions": self.total_questions,
            "details": [detail.to_dict() for detail in self.details],
        }


@dataclass(slots=True)
class RankedAnswer:
    slot_id: str
    rank: int
    points: int


@dataclass(slots=True)
class QuizScoreboard:
    """Per-participant results, best first, and the ranking of each question."""

    results: list[ParticipantQuizResult]
    ranked_points: list[list[RankedAnswer]]

    def totals(self) -> dict[str, int]:
        return {result.slot_id: result.score for result in self.results}

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "ranked_points": [
                [{"player_id": r.slot_id, "rank": r.rank, "points": r.points} for r in ranking]
                for ranking in self.ranked_points
            ],
        }


def score_quiz(
    quiz: Quiz,
    answers: Mapping[tuple[str, int], SubmittedAnswer],
    participants: Iterable[Participant],
) -> QuizScoreboard:
    """Score every question for ``participants``.

    Correct answers are ranked by submission time; ``answers`` preserves
    arrival order so equal timestamps keep first-come order. Wrong or
    missing answers earn nothing.
    """
    scorable = list(participants)
    totals = {p.slot_id: 0 for p in scorable}
    details: dict[str, list[QuestionDetail]] = {p.slot_id: [] for p in scorable}
    ranked_points: list[list[RankedAnswer]] = []

    for index, question in enumerate(quiz.questions):
        correct = sorted(
            (
                answer
                for (slot_id, question_index), answer in answers.items()
                if question_index == index
                and slot_id in totals
                and answer.selected_option_index == question.correct_option_index
            ),
            key=lambda answer: answer.submitted_at,
        )
        ranking = [
            RankedAnswer(slot_id=answer.slot_id, rank=rank, points=points_for_rank(rank))
            for rank, answer in enumerate(correct)
        ]
        ranked_points.append(ranking)
        points_by_slot = {entry.slot_id: entry.points for entry in ranking}

        for slot_id in totals:
            answer = answers.get((slot_id, index))
            earned = points_by_slot.get(slot_id, 0)
            totals[slot_id] += earned
            details[slot_id].append(
                QuestionDetail(
                    question_index=index,
                    question_text=question.question_text,
                    options=list(question.options),
                    correct_option_index=question.correct_option_index,
                    selected_option_index=answer.selected_option_index if answer else None,
                    answered=answer is not None,
                    is_correct=slot_id in points_by_slot,
                    points_earned=earned,
                )
            )

    results = [
        ParticipantQuizResult(
            slot_id=p.slot_id,
            display_name=p.claimed_name,
            score=totals[p.slot_id],
            correct_answers=sum(1 for d in details[p.slot_id] if d.is_correct),
            total_questions=len(quiz.questions),
            details=details[p.slot_id],
        )
        for p in scorable
    ]
    results.sort(key=lambda result: -result.score)
    return QuizScoreboard(results=results, ranked_points=ranked_points)
