"""Repository layer for the quiz engine.

Defines the persistence contract the engine needs and two adapters:
- `InMemoryQuizRepository`: dict-backed, thread-safe; the default and the test double.
- `SqlQuizRepository`: SQLAlchemy 2.0 ORM over any supported database URL.

Each call is atomic at the single-record level.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional, Protocol

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from packages.schemas.quiz import Attempt, Quiz, Result

from .errors import QuizNotFoundError
from .models import AttemptRow, Base, QuizRow, ResultRow, UserPointsRow


class QuizRepository(Protocol):
    def load_quiz(self, quiz_id: str) -> Quiz: ...
    def save_quiz(self, quiz: Quiz) -> None: ...
    def count_scored_attempts(self, user_id: str, quiz_id: str) -> int: ...
    def save_attempt(self, attempt: Attempt) -> None: ...
    def load_attempt(self, attempt_id: str) -> Optional[Attempt]: ...
    def save_result(self, result: Result) -> None: ...
    def load_result(self, attempt_id: str) -> Optional[Result]: ...
    def has_passed(self, user_id: str, quiz_id: str, exclude_attempt_id: Optional[str] = None) -> bool: ...
    def award_points(self, user_id: str, points: int) -> int: ...
    def get_points(self, user_id: str) -> int: ...


class InMemoryQuizRepository:
    """Thread-safe dict-backed repository."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._quizzes: Dict[str, Quiz] = {}
        self._attempts: Dict[str, Attempt] = {}
        self._results: Dict[str, Result] = {}
        self._points: Dict[str, int] = {}
        self.result_writes = 0

    def load_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise QuizNotFoundError(f"quiz {quiz_id} not found")
        return quiz

    def save_quiz(self, quiz: Quiz) -> None:
        with self._lock:
            self._quizzes[quiz.id] = quiz

    def count_scored_attempts(self, user_id: str, quiz_id: str) -> int:
        with self._lock:
            return sum(1 for r in self._results.values() if r.user_id == user_id and r.quiz_id == quiz_id)

    def save_attempt(self, attempt: Attempt) -> None:
        with self._lock:
            self._attempts[attempt.id] = attempt.model_copy(deep=True)

    def load_attempt(self, attempt_id: str) -> Optional[Attempt]:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
        return attempt.model_copy(deep=True) if attempt else None

    def save_result(self, result: Result) -> None:
        with self._lock:
            self._results[result.attempt_id] = result
            self.result_writes += 1

    def load_result(self, attempt_id: str) -> Optional[Result]:
        with self._lock:
            return self._results.get(attempt_id)

    def has_passed(self, user_id: str, quiz_id: str, exclude_attempt_id: Optional[str] = None) -> bool:
        with self._lock:
            return any(
                r.passed and r.user_id == user_id and r.quiz_id == quiz_id and r.attempt_id != exclude_attempt_id
                for r in self._results.values()
            )

    def award_points(self, user_id: str, points: int) -> int:
        with self._lock:
            self._points[user_id] = self._points.get(user_id, 0) + points
            return self._points[user_id]

    def get_points(self, user_id: str) -> int:
        with self._lock:
            return self._points.get(user_id, 0)


class SqlQuizRepository:
    """SQLAlchemy-backed repository; payloads are stored as JSON text."""

    def __init__(self, url: str, echo: bool = False) -> None:
        kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        self.Session = sessionmaker(self.engine, expire_on_commit=False)

    def init_db(self) -> None:
        """Create database schema if it doesn't exist."""
        Base.metadata.create_all(self.engine)

    def load_quiz(self, quiz_id: str) -> Quiz:
        with self.Session() as s:
            row = s.get(QuizRow, quiz_id)
            if row is None:
                raise QuizNotFoundError(f"quiz {quiz_id} not found")
            return Quiz.model_validate_json(row.payload)

    def save_quiz(self, quiz: Quiz) -> None:
        with self.Session.begin() as s:
            s.merge(QuizRow(id=quiz.id, title=quiz.title, payload=quiz.model_dump_json()))

    def count_scored_attempts(self, user_id: str, quiz_id: str) -> int:
        with self.Session() as s:
            q = select(func.count()).select_from(ResultRow).where(
                ResultRow.user_id == user_id, ResultRow.quiz_id == quiz_id
            )
            return int(s.execute(q).scalar_one())

    def save_attempt(self, attempt: Attempt) -> None:
        with self.Session.begin() as s:
            s.merge(
                AttemptRow(
                    id=attempt.id,
                    quiz_id=attempt.quiz_id,
                    user_id=attempt.user_id,
                    state=attempt.state.value,
                    payload=attempt.model_dump_json(),
                )
            )

    def load_attempt(self, attempt_id: str) -> Optional[Attempt]:
        with self.Session() as s:
            row = s.get(AttemptRow, attempt_id)
            return Attempt.model_validate_json(row.payload) if row else None

    def save_result(self, result: Result) -> None:
        # attempt_id is the primary key: a second insert for the same attempt fails
        with self.Session.begin() as s:
            s.add(
                ResultRow(
                    attempt_id=result.attempt_id,
                    quiz_id=result.quiz_id,
                    user_id=result.user_id,
                    score=result.score,
                    passed=result.passed,
                    payload=result.model_dump_json(),
                )
            )

    def load_result(self, attempt_id: str) -> Optional[Result]:
        with self.Session() as s:
            row = s.get(ResultRow, attempt_id)
            return Result.model_validate_json(row.payload) if row else None

    def has_passed(self, user_id: str, quiz_id: str, exclude_attempt_id: Optional[str] = None) -> bool:
        with self.Session() as s:
            q = select(ResultRow.attempt_id).where(
                ResultRow.user_id == user_id, ResultRow.quiz_id == quiz_id, ResultRow.passed.is_(True)
            )
            if exclude_attempt_id is not None:
                q = q.where(ResultRow.attempt_id != exclude_attempt_id)
            return s.execute(q.limit(1)).first() is not None

    def award_points(self, user_id: str, points: int) -> int:
        with self.Session.begin() as s:
            row = s.get(UserPointsRow, user_id, with_for_update=True)
            if row is None:
                row = UserPointsRow(user_id=user_id, points=0)
                s.add(row)
            row.points += points
            return row.points

    def get_points(self, user_id: str) -> int:
        with self.Session() as s:
            row: Optional[UserPointsRow] = s.get(UserPointsRow, user_id)
            return row.points if row else 0


def build_repository(database_url: Optional[str]) -> QuizRepository:
    """In-memory repository when no URL is configured, otherwise a SQL one with schema created."""
    if not database_url:
        return InMemoryQuizRepository()
    repo = SqlQuizRepository(database_url)
    repo.init_db()
    return repo


__all__ = [
    "QuizRepository",
    "InMemoryQuizRepository",
    "SqlQuizRepository",
    "build_repository",
]
