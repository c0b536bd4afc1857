"""Service for running a quiz inside a room: question flow and answer intake."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from peer_quiz.core.errors import AuthorizationError, QuizStateError, RoomValidationError
from peer_quiz.core.models import Participant, Quiz, QuizQuestion, Room, SubmittedAnswer
from peer_quiz.core.prompt_renderer import PromptRenderer

logger = logging.getLogger(__name__)


class GameSession:
    """Moves a room through its quiz and records answers write-once."""

    def __init__(
        self,
        renderer: PromptRenderer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._renderer = renderer or PromptRenderer()
        self._clock = clock

    def load_quiz(self, room: Room, quiz: Quiz) -> None:
        """Replace the room's quiz and discard any progress on the old one."""
        room.quiz = quiz
        self.stop(room)
        room.current_question_index = 0
        room.answers = {}

    def start(self, room: Room) -> QuizQuestion:
        if room.quiz is None or not room.quiz.questions:
            raise QuizStateError("No quiz has been created yet.")
        room.quiz_active = True
        room.current_question_index = 0
        room.answers = {}
        return room.quiz.questions[0]

    def stop(self, room: Room) -> None:
        room.quiz_active = False

    def is_active(self, room: Room) -> bool:
        return room.quiz_active and room.quiz is not None

    def advance(self, room: Room) -> QuizQuestion | None:
        """Move to the next question; ``None`` once the last one has been passed."""
        if not self.is_active(room):
            raise QuizStateError("Quiz is not active.")
        room.current_question_index += 1
        if room.current_question_index < len(room.quiz.questions):
            return room.quiz.questions[room.current_question_index]
        return None

    def record_answer(
        self,
        room: Room,
        participant: Participant,
        question_index: int,
        option_index: int,
    ) -> tuple[SubmittedAnswer, bool]:
        """Record an answer. Returns the stored answer and whether it is new.

        The first answer per (slot, question) wins; repeats return the stored
        answer unchanged.
        """
        if not self.is_active(room):
            raise QuizStateError("Quiz is not active.")
        if not participant.is_scorable:
            raise AuthorizationError("Only groups can answer quiz questions.")
        if not 0 <= question_index <= room.current_question_index:
            raise RoomValidationError("Question index is not open for answers.")
        options = room.quiz.questions[question_index].options
        if not 0 <= option_index < len(options):
            raise RoomValidationError("Selected option is out of range.")

        key = (participant.slot_id, question_index)
        existing = room.answers.get(key)
        if existing is not None:
            return existing, False

        answer = SubmittedAnswer(
            slot_id=participant.slot_id,
            question_index=question_index,
            selected_option_index=option_index,
            submitted_at=self._clock(),
        )
        room.answers[key] = answer
        logger.info(
            "Answer from %s for question %d in room %s: %d",
            participant.display_name,
            question_index,
            room.code,
            option_index,
        )
        return answer, True

    def question_payload(self, room: Room) -> dict[str, Any]:
        """Client view of the current question; never includes the correct option."""
        if room.quiz is None:
            raise QuizStateError("No quiz has been created yet.")
        index = room.current_question_index
        question = room.quiz.questions[index]
        return {
            "current_question": index,
            "question_number": index + 1,
            "total_questions": len(room.quiz.questions),
            "question": question.question_text,
            "question_html": self._renderer.render_fragment(question.question_text),
            "options": list(question.options),
            "time_limit": question.time_limit_seconds,
            "media_path": question.media_path,
            "media_type": question.media_type,
        }

    def info(self, room: Room) -> dict[str, Any]:
        return {
            "has_quiz": room.quiz is not None,
            "quiz_active": room.quiz_active,
            "current_question": room.current_question_index,
            "total_questions": len(room.quiz.questions) if room.quiz else 0,
        }
