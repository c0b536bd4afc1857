from peer_quiz.core.models import Participant, Quiz, QuizQuestion, Role, SubmittedAnswer
from peer_quiz.core.services.scoreboard import points_for_rank, score_quiz


def _groups(count):
    return [
        Participant(slot_id=f"g{n}", display_name=f"[Group {n}] G{n}", role=Role.GROUP, group_number=n)
        for n in range(1, count + 1)
    ]


def _quiz(*correct_indexes):
    return Quiz(
        questions=[
            QuizQuestion(question_text=f"Q{i + 1}", options=["a", "b", "c"], correct_option_index=correct)
            for i, correct in enumerate(correct_indexes)
        ]
    )


def _answers(*entries):
    """Entries of (slot_id, question_index, option, submitted_at), in arrival order."""
    return {
        (slot_id, index): SubmittedAnswer(slot_id, index, option, submitted_at)
        for slot_id, index, option, submitted_at in entries
    }


class TestPointTable:
    def test_points_by_rank(self):
        assert [points_for_rank(rank) for rank in range(6)] == [5, 4, 3, 2, 0, 0]

    def test_five_correct_answers_ranked_by_time(self):
        groups = _groups(5)
        answers = _answers(
            ("g3", 0, 0, 30.0),
            ("g1", 0, 0, 10.0),
            ("g5", 0, 0, 50.0),
            ("g2", 0, 0, 20.0),
            ("g4", 0, 0, 40.0),
        )

        board = score_quiz(_quiz(0), answers, groups)

        assert board.totals() == {"g1": 5, "g2": 4, "g3": 3, "g4": 2, "g5": 0}
        assert [entry.slot_id for entry in board.ranked_points[0]] == ["g1", "g2", "g3", "g4", "g5"]


class TestScoreQuiz:
    def test_wrong_and_missing_answers_earn_nothing(self):
        groups = _groups(3)
        answers = _answers(("g1", 0, 2, 1.0), ("g2", 0, 1, 2.0))

        board = score_quiz(_quiz(1), answers, groups)

        assert board.totals() == {"g1": 0, "g2": 5, "g3": 0}
        details = {result.slot_id: result.details[0] for result in board.results}
        assert details["g1"].answered and not details["g1"].is_correct
        assert not details["g3"].answered and details["g3"].selected_option_index is None
        assert details["g2"].points_earned == 5

    def test_equal_timestamps_keep_arrival_order(self):
        groups = _groups(2)
        answers = _answers(("g2", 0, 0, 5.0), ("g1", 0, 0, 5.0))

        board = score_quiz(_quiz(0), answers, groups)

        assert board.totals() == {"g2": 5, "g1": 4}

    def test_results_sorted_best_first_across_questions(self):
        groups = _groups(2)
        answers = _answers(
            ("g1", 0, 0, 1.0),
            ("g2", 0, 0, 2.0),
            ("g2", 1, 1, 3.0),
            ("g1", 1, 0, 4.0),
        )

        board = score_quiz(_quiz(0, 1), answers, groups)

        assert [(r.slot_id, r.score, r.correct_answers) for r in board.results] == [
            ("g2", 9, 2),
            ("g1", 5, 1),
        ]
        assert board.to_dict()["results"][0]["player_name"] == "[Group 2] G2"

    def test_answers_from_other_slots_are_ignored(self):
        groups = _groups(1)
        answers = _answers(("teacher", 0, 0, 1.0), ("g1", 0, 0, 2.0))

        board = score_quiz(_quiz(0), answers, groups)

        assert board.totals() == {"g1": 5}
