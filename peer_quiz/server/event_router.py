"""Dispatch of client WebSocket events to room operations."""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import ValidationError

from peer_quiz.core.errors import RoomError
from peer_quiz.core.events import Event, Outcome
from peer_quiz.core.room_manager import RoomManager
from peer_quiz.server.payloads import (
    ClientFrame,
    CreateQuizPayload,
    CreateRoomPayload,
    EvaluationPayload,
    JoinRoomPayload,
    LoadScoresPayload,
    SaveSetupPayload,
    StartEvaluationPayload,
    SubmitAnswerPayload,
    UpdateScorePayload,
)

logger = logging.getLogger(__name__)

Handler = Callable[[RoomManager, str, dict[str, Any]], Outcome]


def _create_room(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = CreateRoomPayload.model_validate(data)
    return manager.create_room(session_id, payload.name, payload.load_existing)


def _join_room(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = JoinRoomPayload.model_validate(data)
    return manager.join_room(
        session_id, payload.room_code, payload.role, payload.name, payload.group_number
    )


def _create_quiz(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = CreateQuizPayload.model_validate(data)
    return manager.create_quiz(session_id, payload.to_questions())


def _submit_answer(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = SubmitAnswerPayload.model_validate(data)
    return manager.submit_answer(session_id, payload.question_index, payload.answer)


def _load_scores(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = LoadScoresPayload.model_validate(data)
    return manager.load_scores(payload.host_name)


def _update_player_score(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = UpdateScorePayload.model_validate(data)
    return manager.update_player_score(session_id, payload.player_id, payload.new_score)


def _save_evaluation_setup(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = SaveSetupPayload.model_validate(data)
    return manager.save_evaluation_setup(session_id, payload.setup.to_setup())


def _start_evaluation(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = StartEvaluationPayload.model_validate(data)
    setup = payload.setup.to_setup() if payload.setup is not None else None
    return manager.start_evaluation(session_id, setup)


def _submit_host_evaluation(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = EvaluationPayload.model_validate(data)
    return manager.submit_host_evaluation(session_id, payload.ratings)


def _submit_member_evaluation(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
    payload = EvaluationPayload.model_validate(data)
    return manager.submit_member_evaluation(session_id, payload.ratings)


def _session_only(operation: Callable[[RoomManager, str], Outcome]) -> Handler:
    def handler(manager: RoomManager, session_id: str, data: dict[str, Any]) -> Outcome:
        return operation(manager, session_id)

    return handler


HANDLERS: dict[str, Handler] = {
    "create-room": _create_room,
    "join-room": _join_room,
    "leave-room": _session_only(RoomManager.leave_room),
    "get-players": _session_only(RoomManager.get_players),
    "create-quiz": _create_quiz,
    "start-quiz": _session_only(RoomManager.start_quiz),
    "submit-answer": _submit_answer,
    "next-question": _session_only(RoomManager.next_question),
    "end-quiz": _session_only(RoomManager.end_quiz),
    "get-quiz-info": _session_only(RoomManager.get_quiz_info),
    "save-scores": _session_only(RoomManager.save_scores),
    "load-scores": _load_scores,
    "get-current-scores": _session_only(RoomManager.get_current_scores),
    "update-player-score": _update_player_score,
    "save-evaluation-setup": _save_evaluation_setup,
    "start-evaluation": _start_evaluation,
    "submit-host-evaluation": _submit_host_evaluation,
    "submit-member-evaluation": _submit_member_evaluation,
    "get-evaluation-summary": _session_only(RoomManager.get_evaluation_summary),
}


def _rejection(kind: str, message: str) -> Outcome:
    return Outcome(reply=Event("error", {"kind": kind, "message": message}))


def dispatch(manager: RoomManager, session_id: str, message: Any) -> Outcome:
    """Run one client frame. Rejections come back as an ``error`` reply, never raised."""
    try:
        frame = ClientFrame.model_validate(message)
    except ValidationError:
        logger.warning("Malformed frame from %s", session_id)
        return _rejection("validation", "Malformed message.")

    handler = HANDLERS.get(frame.event)
    if handler is None:
        logger.warning("Unknown event %r from %s", frame.event, session_id)
        return _rejection("validation", f"Unknown event: {frame.event}")

    try:
        return handler(manager, session_id, frame.data)
    except ValidationError as exc:
        logger.warning("Invalid %s payload from %s: %s", frame.event, session_id, exc.errors())
        return _rejection("validation", f"Invalid data for {frame.event}.")
    except RoomError as exc:
        logger.warning("Rejected %s from %s: %s", frame.event, session_id, exc.message)
        return _rejection(exc.kind, exc.message)


def disconnect(manager: RoomManager, session_id: str) -> Outcome:
    """Release whatever slot a dropped connection held."""
    try:
        return manager.leave_room(session_id, disconnected=True)
    except RoomError as exc:
        logger.warning("Disconnect cleanup for %s failed: %s", session_id, exc.message)
        return Outcome()
