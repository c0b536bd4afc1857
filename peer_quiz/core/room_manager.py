"""Room registry and the operations clients perform on rooms.

Each operation runs to completion under the room's lock and returns an
``Outcome``: a reply for the requester and events for everyone in the room.
Lock order: a room lock may take the registry lock, never the reverse.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import math
import random
from threading import Lock
from typing import Any, Callable, Iterator, Mapping

from peer_quiz.constants.quiz_constants import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH
from peer_quiz.core.errors import (
    AuthorizationError,
    QuizStateError,
    RoomNotFoundError,
    RoomValidationError,
)
from peer_quiz.core.events import Event, Outcome
from peer_quiz.core.models import (
    ContributionCategory,
    EvaluationPhase,
    EvaluationSetup,
    Participant,
    QuizQuestion,
    Role,
    Room,
)
from peer_quiz.core.services.evaluation_flow import (
    EvaluationStateMachine,
    SubmissionReceipt,
    validate_setup,
)
from peer_quiz.core.services.evaluation_log import SummaryRow, build_summary
from peer_quiz.core.services.game_session import GameSession
from peer_quiz.core.services.lobby_manager import JoinRequest, LobbyManager
from peer_quiz.core.services.quiz_repository import prepare_quiz
from peer_quiz.core.services.score_accumulator import ScoreAccumulator
from peer_quiz.core.services.scoreboard import score_quiz
from peer_quiz.storage.archive import QUIZZES, RoomArchive, score_snapshot

logger = logging.getLogger(__name__)

_NOT_IN_ROOM = "You are not in a room."


def generate_room_code(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def _normalize_code(room_code: str) -> str:
    return (room_code or "").strip().upper()


class RoomManager:
    """Facade over the lobby, game session, accumulator and evaluation services."""

    def __init__(
        self,
        archive: RoomArchive,
        *,
        lobby: LobbyManager | None = None,
        game: GameSession | None = None,
        accumulator: ScoreAccumulator | None = None,
        evaluation: EvaluationStateMachine | None = None,
        code_factory: Callable[[], str] | None = None,
    ) -> None:
        self._archive = archive
        self._lobby = lobby or LobbyManager()
        self._game = game or GameSession()
        self._accumulator = accumulator or ScoreAccumulator()
        self._evaluation = evaluation or EvaluationStateMachine(self._accumulator)
        self._new_code = code_factory or generate_room_code

        self._lock = Lock()
        self._rooms: dict[str, Room] = {}
        self._session_rooms: dict[str, str] = {}

    # --- Registry ---

    def get_room(self, room_code: str) -> Room:
        with self._lock:
            room = self._rooms.get(_normalize_code(room_code))
        if room is None:
            raise RoomNotFoundError("Room does not exist.")
        return room

    def room_count(self) -> int:
        with self._lock:
            return len(self._rooms)

    def room_code_for(self, session_id: str) -> str | None:
        with self._lock:
            return self._session_rooms.get(session_id)

    def session_ids(self, room_code: str) -> list[str]:
        """Sessions currently bound to a slot in ``room_code``."""
        with self._lock:
            room = self._rooms.get(room_code)
        if room is None:
            return []
        with room.lock:
            return room.session_ids()

    @contextmanager
    def _locked_room(self, room_code: str) -> Iterator[Room]:
        room = self.get_room(room_code)
        with room.lock:
            with self._lock:
                if self._rooms.get(room.code) is not room:
                    raise RoomNotFoundError("Room does not exist.")
            yield room

    @contextmanager
    def _session_room(self, session_id: str) -> Iterator[tuple[Room, Participant]]:
        room_code = self.room_code_for(session_id)
        if room_code is None:
            raise RoomNotFoundError(_NOT_IN_ROOM)
        with self._locked_room(room_code) as room:
            participant = room.find_by_session(session_id)
            if participant is None:
                raise RoomNotFoundError(_NOT_IN_ROOM)
            yield room, participant

    @staticmethod
    def _require_host(participant: Participant, action: str) -> None:
        if not participant.is_host:
            raise AuthorizationError(f"Only the host can {action}.")

    # --- Joining and leaving ---

    def create_room(self, session_id: str, display_name: str, load_existing: bool = False) -> Outcome:
        name = (display_name or "").strip()
        if not name:
            raise RoomValidationError("A name is required to create a room.")
        if self.room_code_for(session_id) is not None:
            raise RoomValidationError("You are already in a room.")

        room = Room(code="", owner_name=name, participants=self._lobby.create_slots(name, session_id))
        saved: dict[str, Any] = {"scores_data": None, "quiz": None, "evaluation_setup": None}
        if load_existing:
            saved["scores_data"] = self._archive.load_scores(name)
            quiz = self._archive.load_quiz(name)
            if quiz is not None:
                self._game.load_quiz(room, quiz)
                saved["quiz"] = quiz.to_dict()
            setup = self._archive.load_evaluation_setup(name)
            if setup is not None:
                room.evaluation_setup = setup
                saved["evaluation_setup"] = setup.to_dict()

        with self._lock:
            code = self._new_code()
            while code in self._rooms:
                code = self._new_code()
            room.code = code
            self._rooms[code] = room
            self._session_rooms[session_id] = code

        logger.info(
            "Room created: %s by %s%s", code, name, " (loading saved data)" if load_existing else ""
        )
        host = room.participants[0]
        reply = Event(
            "room-created",
            {
                "room_code": code,
                "player": host.to_view(),
                "players": room.roster(),
                "is_host": True,
                "load_existing": load_existing,
                **saved,
            },
        )
        return Outcome(reply=reply, room_code=code)

    def join_room(
        self,
        session_id: str,
        room_code: str,
        role: Role | str,
        display_name: str,
        group_number: int | None = None,
    ) -> Outcome:
        try:
            role = Role(role)
        except ValueError as exc:
            raise RoomValidationError("Role must be group or teacher.") from exc
        if self.room_code_for(session_id) is not None:
            raise RoomValidationError("You are already in a room.")

        with self._locked_room(room_code) as room:
            saved_scores = self._archive.saved_score_map(room.owner_name)
            request = JoinRequest(
                session_id=session_id,
                role=role,
                display_name=display_name,
                group_number=group_number,
            )
            participant = self._lobby.resolve_join(room, request, saved_scores)
            with self._lock:
                self._session_rooms[session_id] = room.code

            logger.info(
                "%s joined room %s (score %s)",
                participant.display_name,
                room.code,
                participant.cumulative_score,
            )
            outcome = Outcome(
                reply=Event(
                    "room-joined",
                    {
                        "room_code": room.code,
                        "player": participant.to_view(),
                        "players": room.roster(),
                        "is_host": False,
                        "saved_score": participant.cumulative_score,
                    },
                ),
                room_code=room.code,
            )
            outcome.broadcast("player-joined", {"player": participant.to_view(), "players": room.roster()})
            return outcome

    def leave_room(self, session_id: str, *, disconnected: bool = False) -> Outcome:
        """Release the requester's slot. A disconnect outside any room is a no-op."""
        if disconnected and self.room_code_for(session_id) is None:
            return Outcome()

        with self._session_room(session_id) as (room, participant):
            name = participant.display_name
            departure = self._lobby.release(room, session_id)
            with self._lock:
                self._session_rooms.pop(session_id, None)
                if departure.room_empty:
                    self._rooms.pop(room.code, None)

            reply = None if disconnected else Event("left-room", {"room_code": room.code})
            outcome = Outcome(reply=reply, room_code=room.code)
            if departure.room_empty:
                logger.info("Room %s deleted (empty)", room.code)
                return outcome

            logger.info("%s left room %s", name, room.code)
            outcome.broadcast(
                "player-left",
                {"player_id": participant.slot_id, "player_name": name, "players": room.roster()},
            )
            if departure.promoted is not None:
                outcome.broadcast("host-changed", {"player": departure.promoted.to_view()})

            transitions = self._evaluation.advance_if_complete(room)
            if transitions:
                self._archive.save_scores(room.owner_name, room.code, room.participants)
                self._archive.save_evaluation_log(room.owner_name, room.code, room.evaluation_log)
                outcome.broadcast("players-list", {"players": room.roster()})
                self._announce_transitions(room, transitions, outcome)
            return outcome

    def get_players(self, session_id: str) -> Outcome:
        with self._session_room(session_id) as (room, _participant):
            return Outcome(reply=Event("players-list", {"players": room.roster()}), room_code=room.code)

    # --- Quiz ---

    def create_quiz(self, session_id: str, questions: list[QuizQuestion]) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            self._require_host(participant, "create a quiz")
            quiz = prepare_quiz(questions)
            self._game.load_quiz(room, quiz)
            saved = self._archive.save_quiz(room.owner_name, quiz)
            logger.info("Quiz created in room %s with %d questions", room.code, len(quiz.questions))
            reply = Event(
                "quiz-created",
                {
                    "success": True,
                    "saved": saved,
                    "question_count": len(quiz.questions),
                    "message": "Quiz saved." if saved else "Quiz created but could not be saved.",
                },
            )
            return Outcome(reply=reply, room_code=room.code)

    def start_quiz(self, session_id: str) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            self._require_host(participant, "start the quiz")
            self._game.start(room)
            self._accumulator.reset_scores(room)
            self._evaluation.reset_round(room)
            logger.info("Quiz started in room %s", room.code)

            outcome = Outcome(room_code=room.code)
            outcome.broadcast("quiz-started", self._game.question_payload(room))
            outcome.broadcast("players-list", {"players": room.roster()})
            return outcome

    def submit_answer(self, session_id: str, question_index: int, option_index: int) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            answer, is_new = self._game.record_answer(room, participant, question_index, option_index)
            reply = Event(
                "answer-submitted",
                {
                    "success": True,
                    "question_index": answer.question_index,
                    "answer": answer.selected_option_index,
                    "duplicate": not is_new,
                },
            )
            return Outcome(reply=reply, room_code=room.code)

    def next_question(self, session_id: str) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            self._require_host(participant, "move to the next question")
            outcome = Outcome(room_code=room.code)
            if self._game.advance(room) is None:
                self._finish_quiz(room, outcome)
            else:
                logger.info(
                    "Question %d in room %s", room.current_question_index + 1, room.code
                )
                outcome.broadcast("next-question", self._game.question_payload(room))
            return outcome

    def end_quiz(self, session_id: str) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            self._require_host(participant, "end the quiz")
            if not self._game.is_active(room):
                raise QuizStateError("Quiz is not active.")
            outcome = Outcome(room_code=room.code)
            self._finish_quiz(room, outcome)
            return outcome

    def _finish_quiz(self, room: Room, outcome: Outcome) -> None:
        self._game.stop(room)
        scoreboard = score_quiz(room.quiz, room.answers, room.claimed_groups())
        for slot_id, total in scoreboard.totals().items():
            self._accumulator.apply_contribution(room, slot_id, ContributionCategory.QUIZ, total)

        saved = self._archive.save_scores(room.owner_name, room.code, room.participants)
        self._archive.save_quiz_details(room.owner_name, room.code, scoreboard)
        logger.info("Quiz ended in room %s", room.code)
        outcome.broadcast(
            "quiz-ended",
            {"results": [result.to_dict() for result in scoreboard.results], "saved": saved},
        )
        outcome.broadcast("players-list", {"players": room.roster()})

    def get_quiz_info(self, session_id: str) -> Outcome:
        with self._session_room(session_id) as (room, _participant):
            return Outcome(reply=Event("quiz-info", self._game.info(room)), room_code=room.code)

    # --- Scores ---

    def save_scores(self, session_id: str) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            self._require_host(participant, "save scores")
            saved = self._archive.save_scores(room.owner_name, room.code, room.participants)
            reply = Event(
                "scores-saved",
                {"success": saved, "message": "Scores saved." if saved else "Scores could not be saved."},
            )
            return Outcome(reply=reply, room_code=room.code)

    def load_scores(self, host_name: str) -> Outcome:
        scores_data = self.saved_scores(host_name)
        if scores_data is None:
            return Outcome(reply=Event("scores-loaded", {"success": False, "message": "No saved scores found."}))
        return Outcome(reply=Event("scores-loaded", {"success": True, "scores_data": scores_data}))

    def has_saved_quiz(self, host_name: str) -> bool:
        return self._archive.exists(QUIZZES, self._require_host_name(host_name))

    def saved_scores(self, host_name: str) -> dict[str, Any] | None:
        return self._archive.load_scores(self._require_host_name(host_name))

    def store_score_rows(self, host_name: str, room_code: str | None, rows: list[dict[str, Any]]) -> bool:
        """Persist a client-supplied snapshot without touching any live room."""
        return self._archive.save_score_rows(self._require_host_name(host_name), room_code, rows)

    @staticmethod
    def _require_host_name(host_name: str) -> str:
        name = (host_name or "").strip()
        if not name:
            raise RoomValidationError("Host name required.")
        return name

    def get_current_scores(self, session_id: str) -> Outcome:
        with self._session_room(session_id) as (room, _participant):
            reply = Event(
                "current-scores",
                {"room_code": room.code, "scores": score_snapshot(room.participants)},
            )
            return Outcome(reply=reply, room_code=room.code)

    def update_player_score(self, session_id: str, player_id: str, new_score: float) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            self._require_host(participant, "update scores")
            if (
                isinstance(new_score, bool)
                or not isinstance(new_score, (int, float))
                or not math.isfinite(new_score)
                or new_score < 0
            ):
                raise RoomValidationError("Invalid score.")
            target = room.find_by_slot(player_id)
            if target is None or not target.is_claimed:
                raise RoomNotFoundError("Player not found.")

            old_score = target.cumulative_score
            self._accumulator.set_score(room, target.slot_id, float(new_score))
            self._archive.save_scores(room.owner_name, room.code, room.participants)
            logger.info("Score updated for %s: %s -> %s", target.claimed_name, old_score, new_score)

            outcome = Outcome(
                reply=Event(
                    "score-update-success",
                    {"message": f"Score for {target.claimed_name} set to {target.cumulative_score}."},
                ),
                room_code=room.code,
            )
            outcome.broadcast(
                "player-score-updated",
                {
                    "player_id": target.slot_id,
                    "player_name": target.claimed_name,
                    "new_score": target.cumulative_score,
                    "players": room.roster(),
                },
            )
            return outcome

    # --- Evaluation ---

    def save_evaluation_setup(self, session_id: str, setup: EvaluationSetup) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            self._require_host(participant, "change evaluation criteria")
            if room.evaluation_active and room.evaluation_phase is not EvaluationPhase.DONE:
                raise QuizStateError("Criteria cannot change during an evaluation round.")
            room.evaluation_setup = validate_setup(setup)
            saved = self._archive.save_evaluation_setup(room.owner_name, room.evaluation_setup)
            return Outcome(reply=Event("setup-saved", {"success": True, "saved": saved}), room_code=room.code)

    def start_evaluation(self, session_id: str, setup: EvaluationSetup | None = None) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            self._require_host(participant, "start evaluation")
            if room.quiz_active:
                raise QuizStateError("End the quiz before starting evaluation.")
            setup = setup or room.evaluation_setup or self._archive.load_evaluation_setup(room.owner_name)
            if setup is None:
                raise RoomValidationError("Evaluation criteria are required.")

            self._evaluation.start_round(room, setup)
            self._archive.save_evaluation_setup(room.owner_name, room.evaluation_setup)
            self._archive.save_evaluation_log(room.owner_name, room.code, room.evaluation_log)

            outcome = Outcome(room_code=room.code)
            outcome.broadcast(
                "evaluation-started",
                {
                    "setup": room.evaluation_setup.to_dict(),
                    "phase": room.evaluation_phase.value,
                    "players": room.roster(),
                },
            )
            return outcome

    def submit_host_evaluation(
        self, session_id: str, ratings: Mapping[str, Mapping[str, int]]
    ) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            receipt = self._evaluation.submit_host(room, participant, ratings)
            return self._after_submission(room, receipt)

    def submit_member_evaluation(
        self, session_id: str, ratings: Mapping[str, Mapping[str, int]]
    ) -> Outcome:
        with self._session_room(session_id) as (room, participant):
            receipt = self._evaluation.submit_member(room, participant, ratings)
            return self._after_submission(room, receipt)

    def get_evaluation_summary(self, session_id: str) -> Outcome:
        with self._session_room(session_id) as (room, _participant):
            if room.evaluation_setup is None:
                raise QuizStateError("No evaluation has been configured.")
            rows = self._summary(room)
            reply = Event(
                "evaluation-summary",
                {
                    "phase": room.evaluation_phase.value,
                    "active": room.evaluation_active,
                    "results": [row.to_dict() for row in rows],
                },
            )
            return Outcome(reply=reply, room_code=room.code)

    def _after_submission(self, room: Room, receipt: SubmissionReceipt) -> Outcome:
        saved = self._archive.save_scores(room.owner_name, room.code, room.participants)
        saved = self._archive.save_evaluation_log(room.owner_name, room.code, room.evaluation_log) and saved
        logger.info(
            "%s evaluation from %s accepted in room %s",
            receipt.source.value,
            receipt.evaluator.display_name,
            room.code,
        )

        outcome = Outcome(
            reply=Event(
                "evaluation-accepted",
                {"source": receipt.source.value, "phase": room.evaluation_phase.value, "saved": saved},
            ),
            room_code=room.code,
        )
        outcome.broadcast("players-list", {"players": room.roster()})
        outcome.broadcast(
            "evaluation-scores-added",
            {
                "source": receipt.source.value,
                "evaluator_id": receipt.evaluator.slot_id,
                "deltas": receipt.deltas(),
                "updated_players": [p.to_view() for p in room.claimed_groups()],
            },
        )
        self._announce_transitions(room, receipt.transitions, outcome)
        return outcome

    def _announce_transitions(
        self, room: Room, transitions: list[EvaluationPhase], outcome: Outcome
    ) -> None:
        for phase in transitions:
            outcome.broadcast("evaluation-phase-changed", {"phase": phase.value})
        if EvaluationPhase.DONE in transitions:
            self._finalize_evaluation(room, outcome)

    def _finalize_evaluation(self, room: Room, outcome: Outcome) -> None:
        rows = [row.to_dict() for row in self._summary(room)]
        saved = self._archive.save_evaluation_results(room.owner_name, room.code, rows, room.evaluation_log)
        logger.info("Evaluation complete in room %s", room.code)
        outcome.broadcast("evaluation-results", {"results": rows, "saved": saved})
        outcome.broadcast("evaluation-complete", {"phase": EvaluationPhase.DONE.value})

    def _summary(self, room: Room) -> list[SummaryRow]:
        quiz_scores = {
            p.slot_id: room.ledger.applied_amount(p.slot_id, ContributionCategory.QUIZ) or 0.0
            for p in room.claimed_groups()
        }
        return build_summary(room.evaluation_log, room.evaluation_setup, room.participants, quiz_scores)
