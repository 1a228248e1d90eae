"""
Quiz bank loader.

- Reads a YAML or JSON document with a top-level `quizzes:` list (or a bare list).
- Replaces ${ENV_VAR} from os.environ before parsing; unknown variables are kept as-is.
- Handles UTF-8 with or without BOM.
- Every quiz is validated with the `Quiz` schema; a ValidationError is raised unchanged.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, List

import yaml

from packages.schemas.quiz import Quiz

from .repo import QuizRepository

log = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _sub_env_vars(text: str) -> str:
    return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), m.group(0)), text)


def parse_quiz_bank(text: str, fmt: str = "yaml") -> List[Quiz]:
    """Parse quiz definitions from YAML/JSON text."""
    text = _sub_env_vars(text)
    data: Any = json.loads(text) if fmt == "json" else yaml.safe_load(text)
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("quizzes", [])
    if not isinstance(data, list):
        raise ValueError("quiz bank must be a list or a mapping with a 'quizzes' list")
    return [Quiz.model_validate(item) for item in data]


def load_quiz_bank(path: str | Path) -> List[Quiz]:
    """Load and validate every quiz in the file at `path`."""
    p = Path(path)
    text = p.read_text(encoding="utf-8-sig")
    fmt = "json" if p.suffix.lower() == ".json" else "yaml"
    quizzes = parse_quiz_bank(text, fmt)
    log.info("quiz bank loaded", extra={"path": str(p), "count": len(quizzes)})
    return quizzes


def seed_repository(repo: QuizRepository, path: str | Path) -> int:
    quizzes = load_quiz_bank(path)
    for quiz in quizzes:
        repo.save_quiz(quiz)
    return len(quizzes)
