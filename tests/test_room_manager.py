import pytest

from peer_quiz.core.errors import (
    AuthorizationError,
    QuizStateError,
    RoomNotFoundError,
    RoomValidationError,
)
from peer_quiz.core.models import EvaluationPhase, QuizQuestion
from peer_quiz.storage.archive import EVALUATION_RESULTS, QUIZ_DETAILS
from peer_quiz.storage.document_store import DocumentKey

ROOM = "ABC123"


def _questions():
    return [
        QuizQuestion("Q1: pick a", ["a", "b"], 0),
        QuizQuestion("Q2: pick b", ["a", "b"], 1),
    ]


def _event_names(outcome):
    return [event.name for event in outcome.broadcasts]


def _scores(manager, session_id="host"):
    players = manager.get_players(session_id).reply.data["players"]
    return {player["name"]: player["score"] for player in players}


@pytest.fixture
def hosted(manager):
    manager.create_room("host", "Teacher1")
    return manager


@pytest.fixture
def group_ids(hosted):
    ids = {}
    for number in range(1, 5):
        outcome = hosted.join_room(f"g{number}", ROOM, "group", f"Group{number}", number)
        ids[number] = outcome.reply.data["player"]["id"]
    return ids


class TestRooms:
    def test_create_room_replies_to_host(self, manager):
        outcome = manager.create_room("host", "Teacher1")

        assert outcome.reply.name == "room-created"
        assert outcome.reply.data["room_code"] == ROOM
        assert outcome.reply.data["is_host"] is True
        assert len(outcome.reply.data["players"]) == 5
        assert outcome.broadcasts == []

    def test_create_room_requires_name(self, manager):
        with pytest.raises(RoomValidationError):
            manager.create_room("host", "  ")

    def test_session_cannot_hold_two_rooms(self, hosted):
        with pytest.raises(RoomValidationError):
            hosted.create_room("host", "Again")

    def test_join_unknown_room(self, hosted):
        with pytest.raises(RoomNotFoundError):
            hosted.join_room("g1", "NOPE00", "group", "Alpha", 1)

    def test_join_is_case_insensitive_and_broadcast(self, hosted):
        outcome = hosted.join_room("g1", "abc123", "group", "Alpha", 1)

        assert outcome.reply.name == "room-joined"
        assert outcome.reply.data["player"]["name"] == "[Group 1] Alpha"
        assert _event_names(outcome) == ["player-joined"]
        assert sorted(hosted.session_ids(ROOM)) == ["g1", "host"]

    def test_unknown_role(self, hosted):
        with pytest.raises(RoomValidationError):
            hosted.join_room("x", ROOM, "observer", "Alpha")

    def test_group_leaves_and_recovers_score(self, hosted, group_ids):
        hosted.update_player_score("host", group_ids[1], 12)

        left = hosted.leave_room("g1")
        assert left.reply.name == "left-room"
        assert _event_names(left) == ["player-left"]
        assert "g1" not in hosted.session_ids(ROOM)

        again = hosted.join_room("g1-again", ROOM, "group", "Group1", 1)
        assert again.reply.data["player"]["id"] == group_ids[1]
        assert again.reply.data["saved_score"] == 12.0

    def test_host_leaving_promotes_next_participant(self, hosted, group_ids):
        outcome = hosted.leave_room("host")

        assert "host-changed" in _event_names(outcome)
        promoted = outcome.broadcasts[-1].data["player"]
        assert promoted["id"] == group_ids[1]
        assert promoted["is_host"] is True
        # Host checks pass for the promoted group; only the missing quiz is rejected.
        with pytest.raises(QuizStateError):
            hosted.start_quiz("g1")

    def test_last_leave_deletes_room(self, hosted):
        hosted.leave_room("host")
        assert hosted.room_count() == 0
        with pytest.raises(RoomNotFoundError):
            hosted.get_room(ROOM)

    def test_disconnect_outside_room_is_a_no_op(self, manager):
        outcome = manager.leave_room("stranger", disconnected=True)
        assert outcome.reply is None and outcome.broadcasts == []

    def test_operations_require_membership(self, manager):
        with pytest.raises(RoomNotFoundError):
            manager.get_players("stranger")


class TestQuiz:
    def test_only_host_creates_and_starts(self, hosted, group_ids):
        with pytest.raises(AuthorizationError):
            hosted.create_quiz("g1", _questions())
        hosted.create_quiz("host", _questions())
        with pytest.raises(AuthorizationError):
            hosted.start_quiz("g1")

    def test_start_without_quiz(self, hosted):
        with pytest.raises(QuizStateError):
            hosted.start_quiz("host")

    def test_end_quiz_when_inactive(self, hosted):
        hosted.create_quiz("host", _questions())
        with pytest.raises(QuizStateError):
            hosted.end_quiz("host")

    def test_create_quiz_is_saved(self, hosted, archive):
        outcome = hosted.create_quiz("host", _questions())
        assert outcome.reply.data == {
            "success": True,
            "saved": True,
            "question_count": 2,
            "message": "Quiz saved.",
        }
        assert archive.load_quiz("Teacher1") is not None

    def test_start_quiz_broadcasts_first_question(self, hosted, group_ids):
        hosted.create_quiz("host", _questions())
        outcome = hosted.start_quiz("host")

        assert _event_names(outcome) == ["quiz-started", "players-list"]
        payload = outcome.broadcasts[0].data
        assert payload["question"] == "Q1: pick a"
        assert payload["time_limit"] == 30

    def test_duplicate_answer_is_acknowledged(self, hosted, group_ids):
        hosted.create_quiz("host", _questions())
        hosted.start_quiz("host")

        first = hosted.submit_answer("g1", 0, 0)
        repeat = hosted.submit_answer("g1", 0, 1)

        assert first.reply.data["duplicate"] is False
        assert repeat.reply.data["duplicate"] is True
        assert repeat.reply.data["answer"] == 0

    def test_new_group_on_vacated_slot_answers_afresh(self, hosted, group_ids):
        hosted.create_quiz("host", _questions())
        hosted.start_quiz("host")
        hosted.submit_answer("g1", 0, 1)
        hosted.leave_room("g1")

        joined = hosted.join_room("beta", ROOM, "group", "Beta", 1)
        reply = hosted.submit_answer("beta", 0, 0).reply.data

        assert joined.reply.data["player"]["id"] != group_ids[1]
        assert reply["duplicate"] is False
        assert reply["answer"] == 0

    def test_end_quiz_persists_details(self, hosted, group_ids, store):
        hosted.create_quiz("host", _questions())
        hosted.start_quiz("host")
        hosted.submit_answer("g1", 0, 0)

        outcome = hosted.end_quiz("host")

        assert _event_names(outcome) == ["quiz-ended", "players-list"]
        assert outcome.broadcasts[0].data["results"][0]["player_id"] == group_ids[1]
        assert store.exists(DocumentKey(QUIZ_DETAILS, "Teacher1", ROOM))
        assert hosted.get_quiz_info("host").reply.data["quiz_active"] is False

    def test_end_to_end_quiz_then_host_evaluation(self, hosted, group_ids, evaluation_setup):
        hosted.create_quiz("host", _questions())
        hosted.start_quiz("host")
        hosted.submit_answer("g1", 0, 0)
        hosted.submit_answer("g2", 0, 0)
        hosted.submit_answer("g3", 0, 1)

        hosted.next_question("host")
        for number in range(1, 5):
            hosted.submit_answer(f"g{number}", 1, 0)
        ended = hosted.next_question("host")

        assert "quiz-ended" in _event_names(ended)
        scores = _scores(hosted)
        assert [scores[f"[Group {n}] Group{n}"] for n in range(1, 5)] == [5, 4, 0, 0]

        hosted.start_evaluation("host", evaluation_setup)
        outcome = hosted.submit_host_evaluation("host", {group_ids[n]: {"c1": 4} for n in range(1, 5)})

        scores = _scores(hosted)
        assert [scores[f"[Group {n}] Group{n}"] for n in range(1, 5)] == [45, 44, 40, 40]
        assert outcome.reply.data["phase"] == EvaluationPhase.PEERS.value
        assert "evaluation-phase-changed" in _event_names(outcome)


class TestScores:
    def test_update_player_score(self, hosted, group_ids, archive):
        outcome = hosted.update_player_score("host", group_ids[2], 7.5)

        assert outcome.reply.name == "score-update-success"
        assert _event_names(outcome) == ["player-score-updated"]
        assert outcome.broadcasts[0].data["new_score"] == 7.5
        assert archive.saved_score_map("Teacher1")["[Group 2] Group2"] == 7.5

    @pytest.mark.parametrize("score", [-1, True, float("nan"), float("inf"), float("-inf")])
    def test_update_rejects_invalid_score(self, hosted, group_ids, score):
        with pytest.raises(RoomValidationError):
            hosted.update_player_score("host", group_ids[1], score)

    def test_update_rejects_non_group(self, hosted, group_ids):
        host_id = hosted.get_room(ROOM).host.slot_id
        with pytest.raises(RoomNotFoundError):
            hosted.update_player_score("host", host_id, 3)

    def test_save_and_load_scores(self, hosted, group_ids):
        saved = hosted.save_scores("host")
        assert saved.reply.data["success"] is True

        loaded = hosted.load_scores("Teacher1")
        rows = loaded.reply.data["scores_data"]["scores"]
        assert [row["name"] for row in rows] == [f"[Group {n}] Group{n}" for n in range(1, 5)]

    def test_load_scores_for_unknown_host(self, hosted):
        assert hosted.load_scores("Nobody").reply.data["success"] is False

    def test_current_scores(self, hosted, group_ids):
        rows = hosted.get_current_scores("g3").reply.data["scores"]
        assert [row["id"] for row in rows] == [group_ids[n] for n in range(1, 5)]


class TestEvaluation:
    def test_start_requires_setup(self, hosted):
        with pytest.raises(RoomValidationError):
            hosted.start_evaluation("host")

    def test_saved_setup_is_reused(self, hosted, group_ids, evaluation_setup):
        hosted.save_evaluation_setup("host", evaluation_setup)
        outcome = hosted.start_evaluation("host")
        assert _event_names(outcome) == ["evaluation-started"]
        assert outcome.broadcasts[0].data["phase"] == "host"

    def test_cannot_start_during_quiz(self, hosted, group_ids, evaluation_setup):
        hosted.create_quiz("host", _questions())
        hosted.start_quiz("host")
        with pytest.raises(QuizStateError):
            hosted.start_evaluation("host", evaluation_setup)

    def test_disconnect_completes_round(self, hosted, group_ids, evaluation_setup, store):
        hosted.leave_room("g4")
        hosted.start_evaluation("host", evaluation_setup)
        hosted.submit_host_evaluation("host", {group_ids[n]: {"c1": 2} for n in (1, 2, 3)})
        hosted.submit_member_evaluation("g1", {group_ids[2]: {"p1": 4}, group_ids[3]: {"p1": 4}})
        hosted.submit_member_evaluation("g2", {group_ids[1]: {"p1": 4}})

        outcome = hosted.leave_room("g3", disconnected=True)

        names = _event_names(outcome)
        assert outcome.reply is None
        assert names[-3:] == ["evaluation-phase-changed", "evaluation-results", "evaluation-complete"]
        assert store.exists(DocumentKey(EVALUATION_RESULTS, "Teacher1", ROOM))

    def test_summary_and_completion(self, hosted, group_ids, evaluation_setup):
        for number in (3, 4):
            hosted.leave_room(f"g{number}")
        hosted.start_evaluation("host", evaluation_setup)
        hosted.submit_host_evaluation("host", {group_ids[1]: {"c1": 4}, group_ids[2]: {"c1": 2}})
        hosted.submit_member_evaluation("g1", {group_ids[2]: {"p1": 2}})
        done = hosted.submit_member_evaluation("g2", {group_ids[1]: {"p1": 4}})

        assert "evaluation-complete" in _event_names(done)
        rows = hosted.get_evaluation_summary("g1").reply.data["results"]
        totals = {row["player_id"]: row["total"] for row in rows}
        assert totals[group_ids[1]] == 60.0
        assert totals[group_ids[2]] == 30.0

    def test_new_group_on_vacated_slot_has_no_inherited_ratings(self, hosted, group_ids, evaluation_setup):
        hosted.start_evaluation("host", evaluation_setup)
        hosted.submit_host_evaluation("host", {group_ids[n]: {"c1": 4} for n in range(1, 5)})
        hosted.leave_room("g1")

        beta_id = hosted.join_room("beta", ROOM, "group", "Beta", 1).reply.data["player"]["id"]

        assert _scores(hosted)["[Group 1] Beta"] == 0.0
        rows = hosted.get_evaluation_summary("beta").reply.data["results"]
        by_id = {row["player_id"]: row for row in rows}
        assert by_id[beta_id]["host_score"] == 0.0
        assert by_id[beta_id]["total"] == 0.0
        assert by_id[group_ids[2]]["host_score"] == 40.0

    def test_rejected_submission_is_reported(self, hosted, group_ids, evaluation_setup):
        hosted.start_evaluation("host", evaluation_setup)
        with pytest.raises(AuthorizationError):
            hosted.submit_member_evaluation("g1", {group_ids[2]: {"p1": 1}})
