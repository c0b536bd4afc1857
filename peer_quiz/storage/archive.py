"""Best-effort persistence of room documents.

Writes happen after the in-memory state has changed. A failed write is
logged and reported as ``False``; it never undoes the in-memory change.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Iterable

from peer_quiz.constants.quiz_constants import MAX_GROUPS
from peer_quiz.core.errors import RoomValidationError
from peer_quiz.core.models import EvaluationLog, EvaluationSetup, Participant, Quiz
from peer_quiz.core.services.quiz_repository import quiz_from_document
from peer_quiz.core.services.scoreboard import QuizScoreboard
from peer_quiz.storage.document_store import Document, DocumentKey, DocumentStore

logger = logging.getLogger(__name__)

QUIZZES = "quizzes"
SCORES = "scores"
EVALUATION_SETUPS = "evaluation-setups"
EVALUATION_LOGS = "evaluation-logs"
QUIZ_DETAILS = "quiz-details"
EVALUATION_RESULTS = "evaluation-results"

_PERSISTENCE_ERRORS = (OSError, ValueError, TypeError, KeyError)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def score_snapshot(participants: Iterable[Participant]) -> list[dict[str, Any]]:
    """First claimed groups in slot order, as stored in the scores document."""
    groups = [p for p in participants if p.is_claimed][:MAX_GROUPS]
    return [{"name": p.claimed_name, "score": p.cumulative_score, "id": p.slot_id} for p in groups]


class RoomArchive:
    """Reads and writes the documents that outlive a room."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def _write(self, key: DocumentKey, document: Document) -> bool:
        try:
            self._store.put(key, document)
        except _PERSISTENCE_ERRORS:
            logger.exception("Failed to save %s for %s", key.collection, key.host_name)
            return False
        logger.info("Saved %s for %s", key.collection, key.host_name)
        return True

    def _read(self, key: DocumentKey) -> Document | None:
        try:
            return self._store.get(key)
        except _PERSISTENCE_ERRORS:
            logger.exception("Failed to load %s for %s", key.collection, key.host_name)
            return None

    def exists(self, collection: str, host_name: str) -> bool:
        try:
            return self._store.exists(DocumentKey(collection, host_name))
        except OSError:
            logger.exception("Failed to check %s for %s", collection, host_name)
            return False

    # --- Quiz definitions ---

    def save_quiz(self, host_name: str, quiz: Quiz) -> bool:
        document = {"host_name": host_name, "quiz": quiz.to_dict(), "saved_at": _timestamp()}
        return self._write(DocumentKey(QUIZZES, host_name), document)

    def load_quiz(self, host_name: str) -> Quiz | None:
        document = self._read(DocumentKey(QUIZZES, host_name))
        if document is None:
            return None
        try:
            return quiz_from_document(document["quiz"])
        except (RoomValidationError, *_PERSISTENCE_ERRORS):
            logger.exception("Stored quiz for %s is invalid", host_name)
            return None

    # --- Score snapshots ---

    def save_scores(self, host_name: str, room_code: str, participants: Iterable[Participant]) -> bool:
        return self.save_score_rows(host_name, room_code, score_snapshot(participants))

    def save_score_rows(self, host_name: str, room_code: str | None, rows: list[dict[str, Any]]) -> bool:
        now = _timestamp()
        document = {
            "host_name": host_name,
            "room_code": room_code,
            "scores": rows[:MAX_GROUPS],
            "saved_at": now,
            "last_updated": now,
        }
        return self._write(DocumentKey(SCORES, host_name), document)

    def load_scores(self, host_name: str) -> Document | None:
        return self._read(DocumentKey(SCORES, host_name))

    def saved_score_map(self, host_name: str) -> dict[str, float]:
        """Display name -> last saved score."""
        document = self.load_scores(host_name) or {}
        scores = {}
        for row in document.get("scores") or []:
            try:
                scores[row["name"]] = float(row.get("score") or 0)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed score row for %s: %r", host_name, row)
        return scores

    # --- Evaluation documents ---

    def save_evaluation_setup(self, host_name: str, setup: EvaluationSetup) -> bool:
        document = {"host_name": host_name, "setup": setup.to_dict(), "updated_at": _timestamp()}
        return self._write(DocumentKey(EVALUATION_SETUPS, host_name), document)

    def load_evaluation_setup(self, host_name: str) -> EvaluationSetup | None:
        document = self._read(DocumentKey(EVALUATION_SETUPS, host_name))
        if document is None or "setup" not in document:
            return None
        try:
            return EvaluationSetup.from_dict(document["setup"])
        except _PERSISTENCE_ERRORS:
            logger.exception("Stored evaluation setup for %s is invalid", host_name)
            return None

    def save_evaluation_log(self, host_name: str, room_code: str, log: EvaluationLog) -> bool:
        document = {
            "host_name": host_name,
            "room_code": room_code,
            "log": log.to_dict(),
            "updated_at": _timestamp(),
        }
        return self._write(DocumentKey(EVALUATION_LOGS, host_name, room_code), document)

    def load_evaluation_log(self, host_name: str, room_code: str) -> EvaluationLog | None:
        document = self._read(DocumentKey(EVALUATION_LOGS, host_name, room_code))
        if document is None:
            return None
        return EvaluationLog.from_dict(document.get("log") or {})

    def save_quiz_details(self, host_name: str, room_code: str, scoreboard: QuizScoreboard) -> bool:
        document = {
            "host_name": host_name,
            "room_code": room_code,
            **scoreboard.to_dict(),
            "completed_at": _timestamp(),
        }
        return self._write(DocumentKey(QUIZ_DETAILS, host_name, room_code), document)

    def save_evaluation_results(
        self,
        host_name: str,
        room_code: str,
        rows: list[dict[str, Any]],
        log: EvaluationLog,
    ) -> bool:
        document = {
            "host_name": host_name,
            "room_code": room_code,
            "results": rows,
            "log": log.to_dict(),
            "completed_at": _timestamp(),
        }
        return self._write(DocumentKey(EVALUATION_RESULTS, host_name, room_code), document)
