import json
import logging

import pytest

from peer_quiz.core.models import EvaluationLog, Quiz, QuizQuestion, SlotKind
from peer_quiz.storage.archive import QUIZZES, SCORES, RoomArchive, score_snapshot
from peer_quiz.storage.document_store import (
    DocumentKey,
    JsonFileDocumentStore,
    MemoryDocumentStore,
    sanitize_file_name,
)


class FailingStore(MemoryDocumentStore):
    def put(self, key, document):
        raise OSError("disk full")


class TestDocumentStores:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [("Ms. Smith!", "ms-smith"), ("  ", "unnamed"), ("Room_ABC 123", "room-abc-123")],
    )
    def test_sanitize_file_name(self, name, expected):
        assert sanitize_file_name(name) == expected

    def test_file_store_layout(self, tmp_path):
        store = JsonFileDocumentStore(tmp_path)
        key = DocumentKey(SCORES, "Ms. Smith", "ABC123")

        store.put(key, {"scores": [{"name": "Æsir", "score": 3}]})

        path = tmp_path / "scores" / "ms-smith-abc123.json"
        assert store.path_for(key) == path
        assert json.loads(path.read_text(encoding="utf-8")) == {"scores": [{"name": "Æsir", "score": 3}]}
        assert not path.with_suffix(".json.tmp").exists()
        assert store.get(key)["scores"][0]["name"] == "Æsir"
        assert store.exists(key)

    def test_missing_document(self, tmp_path):
        store = JsonFileDocumentStore(tmp_path)
        key = DocumentKey(QUIZZES, "nobody")
        assert store.get(key) is None
        assert not store.exists(key)

    def test_memory_store_returns_copies(self):
        store = MemoryDocumentStore()
        key = DocumentKey(SCORES, "Host")
        store.put(key, {"scores": [1]})

        store.get(key)["scores"].append(2)

        assert store.get(key) == {"scores": [1]}

    def test_memory_store_rejects_unserializable_documents(self):
        with pytest.raises(TypeError):
            MemoryDocumentStore().put(DocumentKey(SCORES, "Host"), {"when": object()})


class TestRoomArchive:
    def test_score_snapshot_lists_claimed_groups(self, room, seat_group, seat_teacher):
        alpha = seat_group(1, "Alpha")
        seat_group(3, "Gamma").cumulative_score = 4.0
        seat_teacher()
        alpha.slot_kind = SlotKind.PLACEHOLDER
        alpha.previous_name = alpha.display_name
        alpha.display_name = "Group 1"

        rows = score_snapshot(room.participants)

        assert [row["name"] for row in rows] == ["[Group 1] Alpha", "[Group 3] Gamma"]
        assert rows[1]["score"] == 4.0

    def test_saved_score_map(self, archive):
        archive.save_score_rows(
            "Host",
            "ABC123",
            [{"name": "[Group 1] A", "score": 5}, {"name": "[Group 2] B", "score": "bad"}, {"score": 1}],
        )
        assert archive.saved_score_map("Host") == {"[Group 1] A": 5.0}

    def test_quiz_round_trip(self, archive):
        quiz = Quiz(questions=[QuizQuestion("Q", ["a", "b"], 1)])
        assert archive.save_quiz("Host", quiz)
        assert archive.exists(QUIZZES, "Host")
        assert archive.load_quiz("Host").questions[0].correct_option_index == 1

    def test_invalid_stored_quiz_is_ignored(self, store, archive):
        store.put(DocumentKey(QUIZZES, "Host"), {"quiz": {"questions": []}})
        assert archive.load_quiz("Host") is None

    def test_evaluation_documents(self, archive, evaluation_setup):
        evaluation_setup.teacher_criteria = []
        archive.save_evaluation_setup("Host", evaluation_setup)
        restored = archive.load_evaluation_setup("Host")
        assert [c.id for c in restored.teacher_criteria] == ["p1"]

        log = EvaluationLog(host={"g1": {"c1": 3}})
        archive.save_evaluation_log("Host", "ABC123", log)
        assert archive.load_evaluation_log("Host", "ABC123") == log
        assert archive.load_evaluation_log("Host", "OTHER1") is None

    def test_failed_write_is_logged_and_reported(self, caplog):
        archive = RoomArchive(FailingStore())
        with caplog.at_level(logging.ERROR, logger="peer_quiz.storage.archive"):
            assert archive.save_score_rows("Host", None, []) is False
        assert "Failed to save scores for Host" in caplog.text
