"""Validation and normalization of quiz definitions."""

from __future__ import annotations

from typing import Any

from peer_quiz.constants.quiz_constants import (
    DEFAULT_TIME_LIMIT_SECONDS,
    MAX_OPTIONS,
    MAX_QUESTIONS,
    MIN_OPTIONS,
    MIN_QUESTIONS,
)
from peer_quiz.core.errors import RoomValidationError
from peer_quiz.core.models import Quiz, QuizQuestion

_MEDIA_TYPES = ("image", "video")


def prepare_quiz(questions: list[QuizQuestion]) -> Quiz:
    """Validate a full quiz and return a normalized copy."""
    if not MIN_QUESTIONS <= len(questions) <= MAX_QUESTIONS:
        raise RoomValidationError(
            f"Quiz must contain between {MIN_QUESTIONS} and {MAX_QUESTIONS} questions."
        )
    return Quiz(questions=[_prepare_question(q, number) for number, q in enumerate(questions, start=1)])


def quiz_from_document(document: dict[str, Any]) -> Quiz:
    """Rebuild a stored quiz. Stored quizzes were validated when saved."""
    questions = [
        QuizQuestion(
            question_text=item["question_text"],
            options=list(item["options"]),
            correct_option_index=int(item["correct_option_index"]),
            time_limit_seconds=item.get("time_limit_seconds") or DEFAULT_TIME_LIMIT_SECONDS,
            media_path=item.get("media_path"),
            media_type=item.get("media_type"),
        )
        for item in document.get("questions", [])
    ]
    return prepare_quiz(questions)


def _prepare_question(question: QuizQuestion, number: int) -> QuizQuestion:
    cleaned_text = question.question_text.strip()
    if not cleaned_text:
        raise RoomValidationError(f"Question {number}: text must not be empty.")

    options = _validate_options(question.options, number)
    if not 0 <= question.correct_option_index < len(options):
        raise RoomValidationError(f"Question {number}: correct option is out of range.")

    media_type = question.media_type
    if question.media_path and media_type not in _MEDIA_TYPES:
        raise RoomValidationError(f"Question {number}: media type must be image or video.")

    return QuizQuestion(
        question_text=cleaned_text,
        options=options,
        correct_option_index=question.correct_option_index,
        time_limit_seconds=_normalize_time_limit(question.time_limit_seconds, number),
        media_path=question.media_path or None,
        media_type=media_type if question.media_path else None,
    )


def _validate_options(options: list[str], number: int) -> list[str]:
    if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
        raise RoomValidationError(
            f"Question {number}: must have between {MIN_OPTIONS} and {MAX_OPTIONS} options."
        )
    cleaned = [option.strip() for option in options]
    if any(not option for option in cleaned):
        raise RoomValidationError(f"Question {number}: option text cannot be empty.")
    return cleaned


def _normalize_time_limit(time_limit_seconds: int | None, number: int) -> int:
    if time_limit_seconds is None:
        return DEFAULT_TIME_LIMIT_SECONDS
    if isinstance(time_limit_seconds, bool) or not isinstance(time_limit_seconds, int):
        raise RoomValidationError(f"Question {number}: time limit must be a whole number of seconds.")
    if time_limit_seconds <= 0:
        raise RoomValidationError(f"Question {number}: time limit must be positive.")
    return time_limit_seconds
