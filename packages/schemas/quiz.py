"""Quiz schemas: question variants, quizzes, attempts, results and review payloads.

Questions form a closed set of variants discriminated by `kind`. Each variant
validates its own correct-answer definition at construction time so a quiz
that reaches the engine is always well-formed.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

QuestionKind = Literal["multiple_choice", "true_false", "fill_blank", "short_answer", "matching"]
SubmitTrigger = Literal["manual", "timer", "stale"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Option(_Frozen):
    """A selectable option (multiple choice) or a matching item/match."""
    id: str = Field(..., min_length=1)
    text: str


class MatchPair(_Frozen):
    """A (item, match) association for matching questions."""
    item_id: str
    match_id: str


class _QuestionBase(_Frozen):
    id: str = Field(..., min_length=1)
    prompt: str
    points: int = Field(default=1, gt=0)
    explanation: Optional[str] = None


def _unique_ids(options: List[Option], what: str) -> set[str]:
    ids = [o.id for o in options]
    if len(ids) != len(set(ids)):
        raise ValueError(f"duplicate {what} ids")
    return set(ids)


class MultipleChoiceQuestion(_QuestionBase):
    """Single- or multi-select question; more than one correct id means multi-select."""
    kind: Literal["multiple_choice"] = "multiple_choice"
    options: List[Option]
    correct: List[str]

    @model_validator(mode="after")
    def _check_correct(self) -> "MultipleChoiceQuestion":
        if not self.options:
            raise ValueError("multiple_choice requires at least one option")
        ids = _unique_ids(self.options, "option")
        if not self.correct:
            raise ValueError("multiple_choice requires at least one correct option")
        unknown = set(self.correct) - ids
        if unknown:
            raise ValueError(f"correct ids not among options: {sorted(unknown)}")
        return self

    @property
    def multi_select(self) -> bool:
        return len(set(self.correct)) > 1


class TrueFalseQuestion(_QuestionBase):
    kind: Literal["true_false"] = "true_false"
    correct: bool


class _AcceptedAnswers(_QuestionBase):
    accepted: List[str]

    @model_validator(mode="after")
    def _check_accepted(self) -> "_AcceptedAnswers":
        if not any(a.strip() for a in self.accepted):
            raise ValueError(f"{self.kind} requires at least one non-blank accepted answer")
        return self


class FillBlankQuestion(_AcceptedAnswers):
    kind: Literal["fill_blank"] = "fill_blank"


class ShortAnswerQuestion(_AcceptedAnswers):
    kind: Literal["short_answer"] = "short_answer"


class MatchingQuestion(_QuestionBase):
    """Two parallel lists plus the set of correct (item, match) pairs."""
    kind: Literal["matching"] = "matching"
    items: List[Option]
    matches: List[Option]
    correct_pairs: List[MatchPair]

    @model_validator(mode="after")
    def _check_pairs(self) -> "MatchingQuestion":
        item_ids = _unique_ids(self.items, "item")
        match_ids = _unique_ids(self.matches, "match")
        if not self.correct_pairs:
            raise ValueError("matching requires at least one correct pair")
        seen: set[str] = set()
        for pair in self.correct_pairs:
            if pair.item_id not in item_ids:
                raise ValueError(f"correct pair references unknown item {pair.item_id!r}")
            if pair.match_id not in match_ids:
                raise ValueError(f"correct pair references unknown match {pair.match_id!r}")
            if pair.item_id in seen:
                raise ValueError(f"item {pair.item_id!r} is paired more than once")
            seen.add(pair.item_id)
        return self


Question = Annotated[
    Union[
        MultipleChoiceQuestion,
        TrueFalseQuestion,
        FillBlankQuestion,
        ShortAnswerQuestion,
        MatchingQuestion,
    ],
    Field(discriminator="kind"),
]


class Quiz(_Frozen):
    """A quiz owned by a course module. Immutable once loaded."""
    id: str = Field(..., min_length=1)
    title: str
    description: Optional[str] = None
    course_id: Optional[str] = None
    module_id: Optional[str] = None
    time_limit: Optional[int] = Field(default=None, ge=0)  # minutes
    passing_score: int = Field(default=70, ge=0, le=100)
    attempts_allowed: int = Field(default=1, ge=0)  # 0 = unlimited
    show_correct_answers: bool = True
    questions: List[Question] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_questions(self) -> "Quiz":
        ids = [q.id for q in self.questions]
        if len(ids) != len(set(ids)):
            raise ValueError("duplicate question ids")
        return self

    @property
    def max_points(self) -> int:
        return sum(q.points for q in self.questions)

    @property
    def time_limit_seconds(self) -> Optional[int]:
        return self.time_limit * 60 if self.time_limit else None

    def question(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)


class AttemptState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SCORED = "scored"


class QuestionOutcome(BaseModel):
    question_id: str
    is_correct: bool
    points_earned: int = 0


class Result(BaseModel):
    """Scored outcome of a single attempt."""
    model_config = ConfigDict(frozen=True)

    attempt_id: str
    quiz_id: str
    user_id: str
    score: int = Field(..., ge=0, le=100)
    passed: bool
    earned_points: int
    max_points: int
    correct_count: int
    total_questions: int
    breakdown: List[QuestionOutcome]
    elapsed_seconds: Optional[float] = None
    time_taken: Optional[str] = None
    trigger: Optional[SubmitTrigger] = None
    degraded: bool = False

    def outcome(self, question_id: str) -> Optional[QuestionOutcome]:
        return next((o for o in self.breakdown if o.question_id == question_id), None)


class Attempt(BaseModel):
    """One user taking one quiz. `answers` holds normalized answers in quiz order."""
    id: str
    quiz_id: str
    user_id: str
    answers: dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    elapsed_seconds: Optional[float] = None
    state: AttemptState = AttemptState.NOT_STARTED
    trigger: Optional[SubmitTrigger] = None
    result: Optional[Result] = None


class ReviewItem(BaseModel):
    question_id: str
    kind: QuestionKind
    prompt: str
    points: int
    user_answer: Any = None
    correct_answer: Any = None
    explanation: Optional[str] = None
    is_correct: bool
    points_earned: int


class ReviewPayload(BaseModel):
    attempt_id: str
    quiz_id: str
    quiz_title: str
    score: int
    passed: bool
    passing_score: int
    earned_points: int
    max_points: int
    time_taken: Optional[str] = None
    correct_answers_shown: bool
    items: List[ReviewItem]
