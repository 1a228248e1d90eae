"""Scoring utilities for the quiz engine.

Functions:
- score_choice: exact set equality between selected and correct option ids.
- score_true_false: boolean equality; unanswered is always incorrect.
- score_text: trimmed, case-insensitive match against any accepted answer.
- score_keywords: opt-in keyword-overlap heuristic for short answers.
- score_matching: exact equality of the submitted and correct pair sets.
- score: aggregate per-question results into a `Result`.

No partial credit: a question earns either all of its points or none.
"""

from __future__ import annotations

import math
from typing import Any, Literal, Mapping, Optional

from packages.schemas.quiz import Question, QuestionOutcome, Quiz, Result, SubmitTrigger

from .errors import EmptyQuizError
from .normalizer import coerce_stored, correct_answer

ShortAnswerPolicy = Literal["exact", "keywords"]

KEYWORD_THRESHOLD = 0.6


def score_choice(q: Question, ans: Any) -> bool:
    """True iff the selected id set equals the correct id set exactly."""
    if not ans:
        return False
    return set(ans) == set(q.correct)


def score_true_false(q: Question, ans: Any) -> bool:
    return isinstance(ans, bool) and ans == q.correct


def score_text(q: Question, ans: Any) -> bool:
    """Case-insensitive/trimmed equality with any accepted answer."""
    if not isinstance(ans, str) or not ans.strip():
        return False
    cand = ans.strip().casefold()
    return any(cand == a.strip().casefold() for a in q.accepted if a.strip())


def score_keywords(q: Question, ans: Any, threshold: float = KEYWORD_THRESHOLD) -> bool:
    """Correct when enough accepted-answer keywords appear in the answer.

    Keywords are the whitespace tokens of every accepted answer; the answer needs
    at least ceil(len(keywords) * threshold) matching tokens.
    """
    if not isinstance(ans, str) or not ans.strip():
        return False
    keywords = [w for a in q.accepted for w in a.casefold().split()]
    words = ans.casefold().split()
    hits = sum(1 for w in words if w in keywords)
    return hits >= math.ceil(len(keywords) * threshold)


def score_matching(q: Question, ans: Any) -> bool:
    if not ans:
        return False
    return set(map(tuple, ans)) == set(correct_answer(q))


def is_correct(q: Question, ans: Any, short_answer_policy: ShortAnswerPolicy = "exact") -> bool:
    """Evaluate one normalized answer against its question."""
    ans = coerce_stored(q, ans)
    if q.kind == "multiple_choice":
        return score_choice(q, ans)
    if q.kind == "true_false":
        return score_true_false(q, ans)
    if q.kind == "fill_blank":
        return score_text(q, ans)
    if q.kind == "short_answer":
        if short_answer_policy == "keywords":
            return score_keywords(q, ans)
        return score_text(q, ans)
    if q.kind == "matching":
        return score_matching(q, ans)
    raise ValueError(f"unsupported question kind {q.kind!r}")


def percentage(earned: int, maximum: int) -> int:
    """Round half up, so 50.5 -> 51 (Python's round() would give 50)."""
    if maximum <= 0:
        return 0
    return int(math.floor(earned * 100 / maximum + 0.5))


def format_elapsed(seconds: Optional[float]) -> Optional[str]:
    """Seconds as "m:ss"."""
    if seconds is None:
        return None
    total = max(0, int(seconds))
    return f"{total // 60}:{total % 60:02d}"


def score(
    quiz: Quiz,
    answers: Mapping[str, Any],
    *,
    attempt_id: str = "",
    user_id: str = "",
    elapsed_seconds: Optional[float] = None,
    trigger: Optional[SubmitTrigger] = None,
    short_answer_policy: ShortAnswerPolicy = "exact",
) -> Result:
    """Score a normalized answer set against `quiz`.

    Missing entries in `answers` count as unanswered. A fully blank answer set
    scores 0.

    Raises:
        EmptyQuizError: if the quiz has no questions.
    """
    if not quiz.questions:
        raise EmptyQuizError(f"quiz {quiz.id} has no questions")

    breakdown = []
    earned = 0
    for q in quiz.questions:
        ok = is_correct(q, answers.get(q.id), short_answer_policy)
        points = q.points if ok else 0
        earned += points
        breakdown.append(QuestionOutcome(question_id=q.id, is_correct=ok, points_earned=points))

    maximum = quiz.max_points
    pct = percentage(earned, maximum)
    return Result(
        attempt_id=attempt_id,
        quiz_id=quiz.id,
        user_id=user_id,
        score=pct,
        passed=pct >= quiz.passing_score,
        earned_points=earned,
        max_points=maximum,
        correct_count=sum(1 for o in breakdown if o.is_correct),
        total_questions=len(quiz.questions),
        breakdown=breakdown,
        elapsed_seconds=elapsed_seconds,
        time_taken=format_elapsed(elapsed_seconds),
        trigger=trigger,
    )


def zero_result(
    quiz: Quiz,
    *,
    attempt_id: str,
    user_id: str,
    elapsed_seconds: Optional[float] = None,
    trigger: Optional[SubmitTrigger] = None,
) -> Result:
    """Best-effort result used when scoring itself failed; every question counts as wrong."""
    maximum = sum(getattr(q, "points", 0) for q in quiz.questions)
    return Result(
        attempt_id=attempt_id,
        quiz_id=quiz.id,
        user_id=user_id,
        score=0,
        passed=False,
        earned_points=0,
        max_points=maximum,
        correct_count=0,
        total_questions=len(quiz.questions),
        breakdown=[QuestionOutcome(question_id=q.id, is_correct=False) for q in quiz.questions],
        elapsed_seconds=elapsed_seconds,
        time_taken=format_elapsed(elapsed_seconds),
        trigger=trigger,
        degraded=True,
    )
