"""Quiz attempt service.

Host-facing facade over attempt sessions:
- keeps live (in-progress) sessions by attempt id;
- resumes a user's open attempt instead of opening a second one for the same quiz;
- falls back to the repository for attempts that are already scored;
- applies first-pass rewards after each result;
- closes abandoned attempts (`expire_stale`).

Live sessions are process-local; a restart leaves unscored attempts persisted
as in progress without a session to drive them.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from packages.common.config import Settings, get_settings
from packages.common.events import EventBus
from packages.schemas.quiz import AttemptState, Result, ReviewPayload

from .clock import Clock, SystemClock
from .errors import AttemptNotFoundError, InvalidStateError
from .normalizer import NormalizedAnswer
from .repo import QuizRepository
from .review import project
from .rewards import award_first_pass
from .scorer import score
from .session import AttemptSession, Scorer

log = logging.getLogger(__name__)


class QuizService:
    def __init__(
        self,
        repo: QuizRepository,
        clock: Optional[Clock] = None,
        bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
        scorer: Scorer = score,
    ) -> None:
        self.repo = repo
        self.clock = clock or SystemClock()
        self.bus = bus or EventBus()
        self.settings = settings or get_settings()
        self._scorer = scorer
        self._sessions: Dict[str, AttemptSession] = {}
        self._lock = threading.RLock()

    # ---- lifecycle ----
    def start_attempt(self, quiz_id: str, user_id: str) -> AttemptSession:
        """Start (or resume) the user's attempt at `quiz_id`.

        Raises:
            QuizNotFoundError, EmptyQuizError, AttemptLimitExceeded
        """
        quiz = self.repo.load_quiz(quiz_id)
        with self._lock:
            open_session = self._open_session(quiz_id, user_id)
            if open_session is not None and not open_session.check_deadline():
                log.info("resuming open attempt", extra={"attempt_id": open_session.attempt_id})
                return open_session

            session = AttemptSession(
                quiz,
                user_id,
                self.repo,
                self.clock,
                scorer=self._scorer,
                short_answer_policy=self.settings.SHORT_ANSWER_POLICY,
                grace_seconds=self.settings.TIMER_GRACE_SECONDS,
                on_finalized=self._finalized,
            )
            session.start()
            self._sessions[session.attempt_id] = session
        return session

    def record_answer(self, attempt_id: str, question_id: str, raw: Any) -> NormalizedAnswer:
        return self._live(attempt_id).record_answer(question_id, raw)

    def submit(self, attempt_id: str, elapsed_seconds: Optional[float] = None) -> Result:
        """Submit an attempt; repeated submits return the stored result."""
        with self._lock:
            session = self._sessions.get(attempt_id)
        if session is not None:
            return session.submit(elapsed_seconds)
        result = self.repo.load_result(attempt_id)
        if result is not None:
            return result
        raise self._missing(attempt_id)

    def review(self, attempt_id: str) -> ReviewPayload:
        """Review payload of a scored attempt.

        Raises:
            AttemptNotScoredError: while the attempt is still open.
            AttemptNotFoundError: for unknown attempt ids.
        """
        with self._lock:
            session = self._sessions.get(attempt_id)
        if session is not None:
            return project(session.quiz, session.snapshot(), session.result)
        attempt = self.repo.load_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFoundError(f"attempt {attempt_id} not found")
        quiz = self.repo.load_quiz(attempt.quiz_id)
        return project(quiz, attempt, self.repo.load_result(attempt_id))

    def get_attempt(self, attempt_id: str):
        with self._lock:
            session = self._sessions.get(attempt_id)
        if session is not None:
            return session.snapshot()
        attempt = self.repo.load_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFoundError(f"attempt {attempt_id} not found")
        return attempt

    def remaining_seconds(self, attempt_id: str) -> Optional[float]:
        with self._lock:
            session = self._sessions.get(attempt_id)
        return session.remaining_seconds() if session else None

    def expire_stale(self) -> int:
        """Auto-submit abandoned attempts.

        Untimed attempts older than STALE_ATTEMPT_HOURS are submitted with trigger
        "stale"; timed attempts past their deadline are submitted as timer expiries.

        Returns:
            Number of attempts closed.
        """
        max_age = self.settings.STALE_ATTEMPT_HOURS * 3600
        with self._lock:
            sessions: List[AttemptSession] = list(self._sessions.values())
        closed = 0
        for s in sessions:
            if s.state is not AttemptState.IN_PROGRESS:
                continue
            if s.timed:
                if s.check_deadline():
                    closed += 1
            elif s.age() >= max_age:
                try:
                    s.expire_stale()
                except Exception:
                    log.exception("stale attempt not closed", extra={"attempt_id": s.attempt_id})
                    continue
                closed += 1
        if closed:
            log.info("stale attempts closed", extra={"count": closed})
        return closed

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ---- internals ----
    def _open_session(self, quiz_id: str, user_id: str) -> Optional[AttemptSession]:
        with self._lock:
            return next(
                (
                    s for s in self._sessions.values()
                    if s.quiz.id == quiz_id and s.user_id == user_id and s.state is AttemptState.IN_PROGRESS
                ),
                None,
            )

    def _live(self, attempt_id: str) -> AttemptSession:
        with self._lock:
            session = self._sessions.get(attempt_id)
        if session is None:
            raise self._missing(attempt_id)
        return session

    def _missing(self, attempt_id: str) -> Exception:
        attempt = self.repo.load_attempt(attempt_id)
        if attempt is None:
            return AttemptNotFoundError(f"attempt {attempt_id} not found")
        if attempt.state is AttemptState.SCORED:
            return InvalidStateError(f"attempt {attempt_id} is already scored")
        return InvalidStateError(f"attempt {attempt_id} has no live session")

    def _finalized(self, session: AttemptSession, result: Result) -> None:
        with self._lock:
            self._sessions.pop(session.attempt_id, None)
        if not self.settings.FIRST_PASS_AWARD:
            return
        try:
            award_first_pass(self.repo, self.bus, session.quiz, result)
        except Exception:
            log.exception("first-pass award failed", extra={"attempt_id": session.attempt_id})
