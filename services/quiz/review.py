"""Review projection: turns a scored attempt into the per-question review payload."""

from __future__ import annotations

from typing import Optional

from packages.schemas.quiz import Attempt, AttemptState, Quiz, Result, ReviewItem, ReviewPayload

from .errors import AttemptNotScoredError
from .normalizer import coerce_stored, correct_answer, display


def project(quiz: Quiz, attempt: Attempt, result: Optional[Result]) -> ReviewPayload:
    """Build the review payload for a scored attempt.

    Correct answers are left out when the quiz disables `show_correct_answers`;
    correctness always comes from the stored result, never from re-scoring.

    Raises:
        AttemptNotScoredError: if the attempt is not scored yet.
    """
    if attempt.state is not AttemptState.SCORED or result is None:
        raise AttemptNotScoredError(f"attempt {attempt.id} is {attempt.state.value}, not scored")

    reveal = quiz.show_correct_answers
    items = []
    for q in quiz.questions:
        outcome = result.outcome(q.id)
        user_answer = coerce_stored(q, attempt.answers.get(q.id))
        items.append(
            ReviewItem(
                question_id=q.id,
                kind=q.kind,
                prompt=q.prompt,
                points=q.points,
                user_answer=display(q, user_answer),
                correct_answer=display(q, correct_answer(q)) if reveal else None,
                explanation=q.explanation,
                is_correct=bool(outcome and outcome.is_correct),
                points_earned=outcome.points_earned if outcome else 0,
            )
        )

    return ReviewPayload(
        attempt_id=attempt.id,
        quiz_id=quiz.id,
        quiz_title=quiz.title,
        score=result.score,
        passed=result.passed,
        passing_score=quiz.passing_score,
        earned_points=result.earned_points,
        max_points=result.max_points,
        time_taken=result.time_taken,
        correct_answers_shown=reveal,
        items=items,
    )
