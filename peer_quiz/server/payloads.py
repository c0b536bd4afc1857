"""Pydantic models for inbound WebSocket frames and HTTP bodies."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from peer_quiz.core.models import Criterion, EvaluationSetup, QuizQuestion, RatingLevel


class ClientFrame(BaseModel):
    event: str
    data: dict = Field(default_factory=dict)


class CreateRoomPayload(BaseModel):
    name: str
    load_existing: bool = False


class JoinRoomPayload(BaseModel):
    room_code: str
    name: str
    role: Literal["group", "teacher"] = "group"
    group_number: int | None = None


class QuestionPayload(BaseModel):
    question: str
    options: list[str]
    correct_answer: int
    time_limit: int | None = None
    media_path: str | None = None
    media_type: Literal["image", "video"] | None = None

    def to_question(self) -> QuizQuestion:
        return QuizQuestion(
            question_text=self.question,
            options=list(self.options),
            correct_option_index=self.correct_answer,
            time_limit_seconds=self.time_limit,
            media_path=self.media_path,
            media_type=self.media_type,
        )


class CreateQuizPayload(BaseModel):
    questions: list[QuestionPayload]

    def to_questions(self) -> list[QuizQuestion]:
        return [question.to_question() for question in self.questions]


class SubmitAnswerPayload(BaseModel):
    question_index: int
    answer: int


class UpdateScorePayload(BaseModel):
    player_id: str
    new_score: float = Field(allow_inf_nan=False)


class LoadScoresPayload(BaseModel):
    host_name: str


class CriterionPayload(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    max_score: float
    name: str = ""


class LevelPayload(BaseModel):
    id: int
    label: str = ""


class EvaluationSetupPayload(BaseModel):
    host_criteria: list[CriterionPayload]
    peer_criteria: list[CriterionPayload]
    teacher_criteria: list[CriterionPayload] = Field(default_factory=list)
    levels: list[LevelPayload] = Field(default_factory=list)

    def to_setup(self) -> EvaluationSetup:
        def criteria(items: list[CriterionPayload]) -> list[Criterion]:
            return [Criterion(id=item.id, max_score=item.max_score, name=item.name) for item in items]

        return EvaluationSetup(
            host_criteria=criteria(self.host_criteria),
            peer_criteria=criteria(self.peer_criteria),
            teacher_criteria=criteria(self.teacher_criteria),
            levels=[RatingLevel(id=level.id, label=level.label) for level in self.levels],
        )


class SaveSetupPayload(BaseModel):
    setup: EvaluationSetupPayload


class StartEvaluationPayload(BaseModel):
    setup: EvaluationSetupPayload | None = None


class EvaluationPayload(BaseModel):
    """Ratings keyed by target player id, then criterion id."""

    model_config = ConfigDict(strict=True)

    ratings: dict[str, dict[str, int]]


# --- HTTP bodies ---


class HostNamePayload(BaseModel):
    host_name: str


class ScoreRowPayload(BaseModel):
    name: str
    score: float = 0.0
    id: str | None = None


class SaveScoresPayload(BaseModel):
    host_name: str
    room_code: str | None = None
    scores: list[ScoreRowPayload]
