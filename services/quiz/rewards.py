"""First-pass rewards.

The first time a user passes a quiz they receive the quiz's maximum points and
an achievement notification. Later passes, degraded results and failures earn
nothing.
"""

from __future__ import annotations

import logging
from typing import Optional

from packages.common.events import EventBus, Notification
from packages.schemas.quiz import Quiz, Result

from .repo import QuizRepository

log = logging.getLogger(__name__)


def quiz_link(quiz: Quiz) -> str:
    if quiz.course_id:
        return f"/courses/{quiz.course_id}/quizzes/{quiz.id}"
    return f"/quizzes/{quiz.id}"


def award_first_pass(repo: QuizRepository, bus: EventBus, quiz: Quiz, result: Result) -> Optional[int]:
    """Award points and notify on a user's first passing result for `quiz`.

    Returns:
        The points awarded, or None when nothing was awarded.
    """
    if not result.passed or result.degraded:
        return None
    if repo.has_passed(result.user_id, quiz.id, exclude_attempt_id=result.attempt_id):
        return None

    points = result.max_points
    total = repo.award_points(result.user_id, points)
    bus.notify(
        Notification(
            user_id=result.user_id,
            title="Quiz Passed!",
            message=f'Congratulations! You passed the "{quiz.title}" quiz with a score of {result.score}%.',
            type="ACHIEVEMENT",
            link_url=quiz_link(quiz),
        )
    )
    log.info("first pass awarded", extra={"user_id": result.user_id, "quiz_id": quiz.id, "points": points, "total": total})
    return points
