"""SQLAlchemy models for the quiz engine.

Defines four tables:
- QuizRow: a quiz definition stored as its validated JSON payload.
- AttemptRow: one attempt with its lifecycle state and JSON payload.
- ResultRow: the single result of a scored attempt, keyed by attempt id.
- UserPointsRow: points awarded to a user for first passes.
"""

from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import Boolean, Integer, String, Text, ForeignKey, Index

Base = declarative_base()


class QuizRow(Base):
    __tablename__ = "quizzes"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    payload: Mapped[str] = mapped_column(Text)  # JSON encoded Quiz


class AttemptRow(Base):
    """Quiz attempt.

    Attributes:
        id: Attempt id (uuid hex).
        quiz_id: Quiz being attempted.
        user_id: Learner id.
        state: Lifecycle state value (not_started/in_progress/submitting/scored).
        payload: JSON encoded Attempt including normalized answers.
    """

    __tablename__ = "quiz_attempts"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    quiz_id: Mapped[str] = mapped_column(ForeignKey("quizzes.id"))
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    state: Mapped[str] = mapped_column(String(16))
    payload: Mapped[str] = mapped_column(Text)


class ResultRow(Base):
    __tablename__ = "quiz_results"
    __table_args__ = (Index("ix_quiz_results_user_quiz", "user_id", "quiz_id"),)
    attempt_id: Mapped[str] = mapped_column(ForeignKey("quiz_attempts.id"), primary_key=True)
    quiz_id: Mapped[str] = mapped_column(String(64))
    user_id: Mapped[str] = mapped_column(String(64))
    score: Mapped[int] = mapped_column(Integer)
    passed: Mapped[bool] = mapped_column(Boolean)
    payload: Mapped[str] = mapped_column(Text)  # JSON encoded Result


class UserPointsRow(Base):
    __tablename__ = "user_points"
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    points: Mapped[int] = mapped_column(Integer, default=0)
