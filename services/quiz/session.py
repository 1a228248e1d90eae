"""Attempt session state machine.

Lifecycle: not_started -> in_progress -> submitting -> scored (terminal).

One `AttemptSession` owns one attempt, its answer set and its countdown. Every
transition out of `in_progress` runs under the session's lock, so a timer
expiry racing a manual submit scores the attempt exactly once; the loser
observes `scored` and gets the stored result back.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from packages.common.tracing import xapi_event
from packages.schemas.quiz import Attempt, AttemptState, Quiz, Result, SubmitTrigger

from . import metrics
from .clock import Clock, SystemClock, TimerHandle
from .errors import (
    AttemptLimitExceeded,
    EmptyQuizError,
    InvalidStateError,
    MalformedAnswerError,
    UnknownQuestionError,
)
from .normalizer import NormalizedAnswer, blank_answers, normalize
from .repo import QuizRepository
from .scorer import ShortAnswerPolicy, score, zero_result

log = logging.getLogger(__name__)

Scorer = Callable[..., Result]
FinalizedHook = Callable[["AttemptSession", Result], None]


class AttemptSession:
    """Drives a single quiz attempt from start to its scored result.

    Args:
        quiz: The quiz being attempted (immutable).
        user_id: The learner.
        repo: Persistence collaborator.
        clock: Monotonic clock that also schedules the countdown.
        scorer: Scoring function with the signature of `scorer.score`.
        short_answer_policy: Passed through to the scorer.
        grace_seconds: Added to the quiz time limit before auto-submit.
        on_finalized: Called once, outside the lock, after the result is stored.
    """

    def __init__(
        self,
        quiz: Quiz,
        user_id: str,
        repo: QuizRepository,
        clock: Optional[Clock] = None,
        *,
        attempt_id: Optional[str] = None,
        scorer: Scorer = score,
        short_answer_policy: ShortAnswerPolicy = "exact",
        grace_seconds: float = 0.0,
        on_finalized: Optional[FinalizedHook] = None,
    ) -> None:
        self.quiz = quiz
        self.repo = repo
        self.clock = clock or SystemClock()
        self.attempt = Attempt(id=attempt_id or uuid.uuid4().hex, quiz_id=quiz.id, user_id=user_id)
        self._scorer = scorer
        self._policy = short_answer_policy
        self._grace = grace_seconds
        self._on_finalized = on_finalized
        self._lock = threading.Lock()
        self._timer: Optional[TimerHandle] = None
        self._started: Optional[float] = None
        self._deadline: Optional[float] = None
        self._stored_result: Optional[Result] = None

    # ---- read side ----
    @property
    def attempt_id(self) -> str:
        return self.attempt.id

    @property
    def user_id(self) -> str:
        return self.attempt.user_id

    @property
    def state(self) -> AttemptState:
        return self.attempt.state

    @property
    def result(self) -> Optional[Result]:
        return self.attempt.result

    @property
    def timed(self) -> bool:
        return self._deadline is not None

    def age(self) -> float:
        """Seconds since start (0 before start)."""
        return 0.0 if self._started is None else self.clock.now() - self._started

    def remaining_seconds(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self.clock.now())

    def snapshot(self) -> Attempt:
        with self._lock:
            return self.attempt.model_copy(deep=True)

    # ---- transitions ----
    def start(self) -> Attempt:
        """Begin the attempt: blank answers, start time and, for timed quizzes, the countdown.

        Raises:
            InvalidStateError: if already started.
            EmptyQuizError: if the quiz has no questions.
            AttemptLimitExceeded: if the user used every allowed attempt.
        """
        with self._lock:
            if self.attempt.state is not AttemptState.NOT_STARTED:
                raise InvalidStateError(f"attempt {self.attempt_id} already started")
            if not self.quiz.questions:
                raise EmptyQuizError(f"quiz {self.quiz.id} has no questions")
            allowed = self.quiz.attempts_allowed
            if allowed > 0:
                used = self.repo.count_scored_attempts(self.user_id, self.quiz.id)
                if used >= allowed:
                    metrics.mark_limit_rejection()
                    log.warning(
                        "attempt limit reached",
                        extra={"user_id": self.user_id, "quiz_id": self.quiz.id, "used": used, "allowed": allowed},
                    )
                    raise AttemptLimitExceeded(
                        f"user {self.user_id} used {used} of {allowed} attempts for quiz {self.quiz.id}"
                    )

            self._started = self.clock.now()
            self.attempt.started_at = datetime.now(timezone.utc)
            self.attempt.answers = blank_answers(self.quiz.questions)
            self.attempt.state = AttemptState.IN_PROGRESS
            limit = self.quiz.time_limit_seconds
            if limit:
                self._deadline = self._started + limit + self._grace
                self._timer = self.clock.call_later(limit + self._grace, self.expire)
            self.repo.save_attempt(self.attempt)

        metrics.mark_started()
        log.info(
            "attempt started",
            extra={"attempt_id": self.attempt_id, "quiz_id": self.quiz.id, "time_limit_s": limit},
        )
        xapi_event(self.user_id, "attempted", f"quiz:{self.quiz.id}", attempt_id=self.attempt_id)
        return self.attempt

    def record_answer(self, question_id: str, raw: Any) -> NormalizedAnswer:
        """Normalize `raw` and replace the stored answer for `question_id`.

        Raises:
            InvalidStateError: unless the attempt is in progress.
            UnknownQuestionError: if the question is not part of the quiz.
            MalformedAnswerError: if the payload shape does not fit the question kind.
        """
        self.check_deadline()
        with self._lock:
            if self.attempt.state is not AttemptState.IN_PROGRESS:
                raise InvalidStateError(
                    f"cannot record answers while attempt {self.attempt_id} is {self.attempt.state.value}"
                )
            if self._deadline is not None and self.clock.now() >= self._deadline:
                raise InvalidStateError(f"time is up for attempt {self.attempt_id}")
            question = self.quiz.question(question_id)
            if question is None:
                raise UnknownQuestionError(f"question {question_id} is not part of quiz {self.quiz.id}")
            try:
                value = normalize(question, raw)
            except MalformedAnswerError:
                metrics.mark_malformed()
                log.warning("malformed answer rejected", extra={"attempt_id": self.attempt_id, "question_id": question_id})
                raise
            self.attempt.answers[question_id] = value
            self.repo.save_attempt(self.attempt)
            return value

    def submit(self, elapsed_seconds: Optional[float] = None) -> Result:
        """Score the current answers. Idempotent: later calls return the stored result.

        Args:
            elapsed_seconds: Client-reported time taken; measured from the clock when omitted.

        Raises:
            InvalidStateError: if the attempt was never started.
            EmptyQuizError: propagated from the scorer; the attempt stays in progress.
            Exception: a repository error while storing the result; the attempt stays in progress.
        """
        return self._finalize("manual", elapsed_seconds, best_effort=False)

    def expire(self) -> Optional[Result]:
        """Countdown callback: auto-submit whatever is recorded. Never raises."""
        try:
            return self._finalize("timer", None, best_effort=True)
        except Exception:
            log.exception("auto-submit failed", extra={"attempt_id": self.attempt_id})
            return self.attempt.result

    def expire_stale(self) -> Optional[Result]:
        """Close an abandoned attempt with its current answers."""
        return self._finalize("stale", None, best_effort=True)

    def check_deadline(self) -> bool:
        """Finalize now if the countdown is overdue but its callback has not run yet.

        Returns True when the attempt is scored after the check.
        """
        if (
            self._deadline is not None
            and self.attempt.state is AttemptState.IN_PROGRESS
            and self.clock.now() >= self._deadline
        ):
            self.expire()
        return self.attempt.state is AttemptState.SCORED

    def _score(self, trigger: SubmitTrigger, elapsed: Optional[float], best_effort: bool) -> Result:
        try:
            return self._scorer(
                self.quiz,
                self.attempt.answers,
                attempt_id=self.attempt_id,
                user_id=self.user_id,
                elapsed_seconds=elapsed,
                trigger=trigger,
                short_answer_policy=self._policy,
            )
        except Exception:
            metrics.mark_scoring_failure(best_effort)
            if not best_effort:
                self.attempt.state = AttemptState.IN_PROGRESS
                log.exception("scoring failed", extra={"attempt_id": self.attempt_id})
                raise
            log.exception(
                "scoring failed during auto-submit, storing zero result",
                extra={"attempt_id": self.attempt_id, "trigger": trigger},
            )
            return zero_result(
                self.quiz,
                attempt_id=self.attempt_id,
                user_id=self.user_id,
                elapsed_seconds=elapsed,
                trigger=trigger,
            )

    def _finalize(self, trigger: SubmitTrigger, elapsed: Optional[float], best_effort: bool) -> Result:
        """Score and persist under the lock; state becomes `scored` only once both writes succeed.

        A persistence failure puts the attempt back in progress and propagates. An
        overdue attempt is retried by `check_deadline`, and a result row that was
        already written is reused instead of being scored or inserted again.
        """
        with self._lock:
            if self.attempt.state is AttemptState.SCORED:
                return self.attempt.result
            if self.attempt.state is not AttemptState.IN_PROGRESS:
                raise InvalidStateError(f"attempt {self.attempt_id} is {self.attempt.state.value}")

            self.attempt.state = AttemptState.SUBMITTING
            if self._stored_result is not None:
                # result row written by an earlier pass whose attempt save failed
                result = self._stored_result
                elapsed, trigger = result.elapsed_seconds, result.trigger or trigger
            else:
                if elapsed is None:
                    elapsed = self.age()
                result = self._score(trigger, elapsed, best_effort)

            scored = self.attempt.model_copy(
                update={
                    "elapsed_seconds": elapsed,
                    "trigger": trigger,
                    "result": result,
                    "state": AttemptState.SCORED,
                }
            )
            try:
                if self._stored_result is None:
                    self.repo.save_result(result)
                    self._stored_result = result
                self.repo.save_attempt(scored)
            except Exception:
                self.attempt.state = AttemptState.IN_PROGRESS
                metrics.mark_persistence_failure(trigger)
                log.exception(
                    "result persistence failed, attempt left in progress",
                    extra={"attempt_id": self.attempt_id, "trigger": trigger},
                )
                raise

            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.attempt = scored

        metrics.mark_scored(trigger, result.passed, result.score)
        log.info(
            "attempt scored",
            extra={
                "attempt_id": self.attempt_id,
                "trigger": trigger,
                "score": result.score,
                "passed": result.passed,
                "degraded": result.degraded,
            },
        )
        xapi_event(
            self.user_id,
            "passed" if result.passed else "completed",
            f"quiz:{self.quiz.id}",
            attempt_id=self.attempt_id,
            score=result.score,
        )
        if self._on_finalized is not None:
            self._on_finalized(self, result)
        return result
