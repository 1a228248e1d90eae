"""Shared fixtures for quiz engine tests."""

import pytest

from packages.common.config import Settings
from packages.schemas.quiz import Quiz
from services.quiz.clock import ManualClock
from services.quiz.repo import InMemoryQuizRepository


def make_quiz(**overrides) -> Quiz:
    """Quiz with one question of every kind (10 points each)."""
    data = {
        "id": "geo-1",
        "title": "Geography basics",
        "course_id": "c1",
        "passing_score": 70,
        "attempts_allowed": 0,
        "questions": [
            {
                "id": "mc",
                "kind": "multiple_choice",
                "prompt": "Which are European capitals?",
                "points": 10,
                "options": [
                    {"id": "A", "text": "Paris"},
                    {"id": "B", "text": "Rome"},
                    {"id": "C", "text": "Sydney"},
                ],
                "correct": ["A", "B"],
                "explanation": "Sydney is not a capital.",
            },
            {"id": "tf", "kind": "true_false", "prompt": "The Nile is in Africa.", "points": 10, "correct": True},
            {
                "id": "fb",
                "kind": "fill_blank",
                "prompt": "The capital of France is ___.",
                "points": 10,
                "accepted": ["Paris"],
            },
            {
                "id": "sa",
                "kind": "short_answer",
                "prompt": "Name the longest river.",
                "points": 10,
                "accepted": ["Nile", "The Nile"],
            },
            {
                "id": "mt",
                "kind": "matching",
                "prompt": "Match country to capital.",
                "points": 10,
                "items": [{"id": "fr", "text": "France"}, {"id": "it", "text": "Italy"}],
                "matches": [{"id": "paris", "text": "Paris"}, {"id": "rome", "text": "Rome"}],
                "correct_pairs": [
                    {"item_id": "fr", "match_id": "paris"},
                    {"item_id": "it", "match_id": "rome"},
                ],
            },
        ],
    }
    data.update(overrides)
    return Quiz.model_validate(data)


PERFECT_ANSWERS = {
    "mc": ["B", "A"],
    "tf": True,
    "fb": " paris ",
    "sa": "nile",
    "mt": [{"itemId": "fr", "matchId": "paris"}, {"item_id": "it", "match_id": "rome"}],
}


def two_question_quiz(**overrides) -> Quiz:
    data = {
        "id": "q-e2e",
        "title": "End to end",
        "passing_score": 70,
        "attempts_allowed": 0,
        "questions": [
            {
                "id": "q1",
                "kind": "multiple_choice",
                "prompt": "Pick A",
                "points": 50,
                "options": [{"id": "A", "text": "a"}, {"id": "B", "text": "b"}],
                "correct": ["A"],
            },
            {"id": "q2", "kind": "true_false", "prompt": "True?", "points": 50, "correct": True},
        ],
    }
    data.update(overrides)
    return Quiz.model_validate(data)


@pytest.fixture
def quiz() -> Quiz:
    return make_quiz()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def repo(quiz) -> InMemoryQuizRepository:
    r = InMemoryQuizRepository()
    r.save_quiz(quiz)
    return r


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, ENV="test", STALE_ATTEMPT_HOURS=1.0)


@pytest.fixture
def quiz_factory():
    return make_quiz


@pytest.fixture
def e2e_quiz_factory():
    return two_question_quiz


@pytest.fixture
def perfect_answers() -> dict:
    return dict(PERFECT_ANSWERS)
