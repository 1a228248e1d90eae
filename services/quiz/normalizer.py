"""Answer normalization.

Converts raw client answers into a canonical, comparable form per question kind:

- multiple_choice: sorted tuple of known option ids
- true_false: bool
- fill_blank / short_answer: trimmed string
- matching: sorted tuple of (item_id, match_id) pairs

`None` always means "unanswered". Canonical forms are hashable and JSON friendly
(tuples dump as arrays), so they can be stored on the Attempt as-is.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from packages.schemas.quiz import (
    FillBlankQuestion,
    MatchingQuestion,
    MultipleChoiceQuestion,
    Question,
    ShortAnswerQuestion,
    TrueFalseQuestion,
)

from .errors import MalformedAnswerError

NormalizedAnswer = Union[None, bool, str, Tuple[str, ...], Tuple[Tuple[str, str], ...]]

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def _normalize_choice(q: MultipleChoiceQuestion, raw: Any) -> NormalizedAnswer:
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, _SEQUENCE_TYPES) or not all(isinstance(i, str) for i in raw):
        raise MalformedAnswerError(f"question {q.id}: expected an option id or a list of option ids")
    known = {o.id for o in q.options}
    # stray ids from a corrupted payload are treated as absent
    selected = tuple(sorted({i for i in raw if i in known}))
    return selected or None


def _normalize_bool(q: TrueFalseQuestion, raw: Any) -> NormalizedAnswer:
    if raw is None or isinstance(raw, bool):
        return raw
    raise MalformedAnswerError(f"question {q.id}: expected true/false")


def _normalize_text(q: Union[FillBlankQuestion, ShortAnswerQuestion], raw: Any) -> NormalizedAnswer:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise MalformedAnswerError(f"question {q.id}: expected a text answer")
    text = raw.strip()
    return text or None


def _pair_of(q: MatchingQuestion, entry: Any) -> Tuple[Any, Any]:
    if isinstance(entry, Mapping):
        item = entry.get("item_id", entry.get("itemId"))
        match = entry.get("match_id", entry.get("matchId"))
    elif isinstance(entry, (list, tuple)) and len(entry) == 2:
        item, match = entry
    else:
        raise MalformedAnswerError(f"question {q.id}: expected (item, match) pairs")
    for part in (item, match):
        # a missing side leaves the pair unanswered; any other non-string is a shape error
        if part is not None and not isinstance(part, str):
            raise MalformedAnswerError(f"question {q.id}: pair ids must be strings")
    return item, match


def _normalize_matching(q: MatchingQuestion, raw: Any) -> NormalizedAnswer:
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        entries = [_pair_of(q, e) for e in raw.items()]
    elif isinstance(raw, _SEQUENCE_TYPES):
        entries = [_pair_of(q, e) for e in raw]
    else:
        raise MalformedAnswerError(f"question {q.id}: expected (item, match) pairs")

    items = {o.id for o in q.items}
    matches = {o.id for o in q.matches}
    chosen: Dict[str, str] = {}
    for item, match in entries:
        if item in items and match in matches:
            chosen[item] = match  # re-pairing an item replaces the earlier choice
    return tuple(sorted(chosen.items())) or None


_NORMALIZERS: Dict[str, Callable[[Any, Any], NormalizedAnswer]] = {
    "multiple_choice": _normalize_choice,
    "true_false": _normalize_bool,
    "fill_blank": _normalize_text,
    "short_answer": _normalize_text,
    "matching": _normalize_matching,
}


def normalize(question: Question, raw: Any) -> NormalizedAnswer:
    """Normalize `raw` for `question`.

    Missing or partial data is legal and yields `None` (unanswered) or a reduced
    answer. Only a payload whose basic shape is wrong for the kind raises.

    Raises:
        MalformedAnswerError: if the payload shape does not fit the question kind.
    """
    try:
        fn = _NORMALIZERS[question.kind]
    except KeyError:
        raise MalformedAnswerError(f"unsupported question kind {question.kind!r}") from None
    return fn(question, raw)


def coerce_stored(question: Question, stored: Any) -> NormalizedAnswer:
    """Rebuild a canonical answer from its JSON form (lists instead of tuples)."""
    if stored is None:
        return None
    if question.kind == "multiple_choice":
        return tuple(stored)
    if question.kind == "matching":
        return tuple((str(i), str(m)) for i, m in stored)
    return stored


def display(question: Question, answer: NormalizedAnswer) -> Any:
    """Render a normalized answer back into a form the presentation layer can show."""
    if answer is None:
        return None
    if question.kind == "multiple_choice":
        texts = {o.id: o.text for o in question.options}
        return [{"id": i, "text": texts.get(i, i)} for i in answer]
    if question.kind == "matching":
        items = {o.id: o.text for o in question.items}
        matches = {o.id: o.text for o in question.matches}
        return [
            {"item_id": i, "item": items.get(i, i), "match_id": m, "match": matches.get(m, m)}
            for i, m in answer
        ]
    return answer


def correct_answer(question: Question) -> NormalizedAnswer:
    """The canonical correct answer.

    Same shape as `normalize` output, except text kinds which return the tuple of
    every accepted answer.
    """
    if question.kind == "multiple_choice":
        return tuple(sorted(set(question.correct)))
    if question.kind == "true_false":
        return question.correct
    if question.kind == "matching":
        return tuple(sorted((p.item_id, p.match_id) for p in question.correct_pairs))
    return tuple(a.strip() for a in question.accepted if a.strip())


def blank_answers(questions: Sequence[Question]) -> Dict[str, Optional[Any]]:
    """One unanswered entry per question, in quiz order."""
    return {q.id: None for q in questions}
