"""Tests for the attempt session state machine."""

import threading
from typing import Optional

import pytest

from packages.schemas.quiz import AttemptState
from services.quiz.errors import (
    AttemptLimitExceeded,
    EmptyQuizError,
    InvalidStateError,
    MalformedAnswerError,
    UnknownQuestionError,
)
from services.quiz.clock import ManualClock
from services.quiz.repo import InMemoryQuizRepository
from services.quiz.scorer import score
from services.quiz.session import AttemptSession


class CountingScorer:
    """Wraps the real scorer and counts invocations."""

    def __init__(self, delay_event: Optional[threading.Event] = None) -> None:
        self.calls = 0
        self._lock = threading.Lock()
        self._delay = delay_event

    def __call__(self, *args, **kwargs):
        with self._lock:
            self.calls += 1
        if self._delay is not None:
            self._delay.wait(timeout=1.0)
        return score(*args, **kwargs)


def _session(quiz, repo, clock, **kw) -> AttemptSession:
    return AttemptSession(quiz, "u1", repo, clock, **kw)


def test_start_initializes_blank_answers(quiz, repo, clock) -> None:
    s = _session(quiz, repo, clock)
    attempt = s.start()
    if attempt.state is not AttemptState.IN_PROGRESS:
        pytest.fail(f"Expected in_progress, got {attempt.state}")
    if list(attempt.answers) != [q.id for q in quiz.questions]:
        pytest.fail("Answer set must have one entry per question, in quiz order")
    if any(v is not None for v in attempt.answers.values()):
        pytest.fail("All answers should start blank")
    if repo.load_attempt(s.attempt_id) is None:
        pytest.fail("Started attempt should be persisted")
    if clock.pending != 0:
        pytest.fail("Untimed quiz should not arm a countdown")


def test_start_twice_is_invalid(quiz, repo, clock) -> None:
    s = _session(quiz, repo, clock)
    s.start()
    with pytest.raises(InvalidStateError):
        s.start()


def test_record_answer_rules(quiz, repo, clock) -> None:
    s = _session(quiz, repo, clock)
    with pytest.raises(InvalidStateError):
        s.record_answer("tf", True)
    s.start()
    s.record_answer("tf", True)
    s.record_answer("tf", False)
    if s.attempt.answers["tf"] is not False:
        pytest.fail("Recording again should replace the stored answer")
    with pytest.raises(UnknownQuestionError):
        s.record_answer("nope", True)
    with pytest.raises(MalformedAnswerError):
        s.record_answer("mt", True)
    if s.state is not AttemptState.IN_PROGRESS:
        pytest.fail("A malformed answer must not fail the attempt")
    s.submit()
    with pytest.raises(InvalidStateError):
        s.record_answer("tf", True)


def test_submit_is_idempotent(quiz, repo, clock) -> None:
    scorer = CountingScorer()
    s = _session(quiz, repo, clock, scorer=scorer)
    s.start()
    s.record_answer("fb", "Paris")
    first = s.submit(elapsed_seconds=42)
    second = s.submit(elapsed_seconds=99)
    if first is not second or first != second:
        pytest.fail("Second submit must return the stored result unchanged")
    if scorer.calls != 1:
        pytest.fail(f"Expected one scoring pass, got {scorer.calls}")
    if repo.result_writes != 1:
        pytest.fail(f"Expected one persisted result, got {repo.result_writes}")
    if first.elapsed_seconds != 42 or first.time_taken != "0:42" or first.trigger != "manual":
        pytest.fail(f"Unexpected submit metadata {first}")


def test_submit_before_start_is_invalid(quiz, repo, clock) -> None:
    with pytest.raises(InvalidStateError):
        _session(quiz, repo, clock).submit()


def test_timer_expiry_auto_submits(quiz_factory, repo, clock) -> None:
    quiz = quiz_factory(time_limit=1)
    repo.save_quiz(quiz)
    s = _session(quiz, repo, clock)
    s.start()
    s.record_answer("tf", True)
    clock.advance(59)
    if s.state is not AttemptState.IN_PROGRESS or s.remaining_seconds() != 1:
        pytest.fail("Attempt should still be open one second before the deadline")
    clock.advance(1)
    if s.state is not AttemptState.SCORED:
        pytest.fail(f"Expected scored after expiry, got {s.state}")
    if s.result.trigger != "timer" or s.result.earned_points != 10:
        pytest.fail(f"Expiry should score recorded answers, got {s.result}")
    if s.result.elapsed_seconds != 60:
        pytest.fail(f"Expected 60 elapsed seconds, got {s.result.elapsed_seconds}")
    with pytest.raises(InvalidStateError):
        s.record_answer("fb", "Paris")


def test_manual_submit_cancels_countdown(quiz_factory, repo, clock) -> None:
    quiz = quiz_factory(time_limit=5)
    s = _session(quiz, repo, clock)
    s.start()
    s.submit()
    if clock.pending != 0:
        pytest.fail("Countdown should be cancelled by a manual submit")
    if clock.advance(600) != 0:
        pytest.fail("No callback should fire after submit")


def test_overdue_record_answer_finalizes_first(quiz_factory, repo) -> None:
    """A late answer arriving before the timer thread runs is refused and closes the attempt."""

    class LazyClock:
        def __init__(self) -> None:
            self.t = 0.0

        def now(self) -> float:
            return self.t

        def call_later(self, delay, callback):
            class _H:
                def cancel(self) -> None:
                    pass
            return _H()  # never fires on its own

    quiz = quiz_factory(time_limit=1)
    clk = LazyClock()
    s = _session(quiz, repo, clk)
    s.start()
    clk.t = 61
    with pytest.raises(InvalidStateError):
        s.record_answer("tf", True)
    if s.state is not AttemptState.SCORED or s.result.trigger != "timer":
        pytest.fail("Overdue attempt should be closed as a timer expiry")


def test_expiry_and_manual_submit_race_scores_once(quiz, repo, clock) -> None:
    gate = threading.Event()
    scorer = CountingScorer(delay_event=gate)
    s = _session(quiz, repo, clock, scorer=scorer)
    s.start()
    results = []

    def manual() -> None:
        results.append(s.submit())

    def timer() -> None:
        results.append(s.expire())

    threads = [threading.Thread(target=manual), threading.Thread(target=timer)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(timeout=5)

    if scorer.calls != 1:
        pytest.fail(f"Scoring ran {scorer.calls} times")
    if repo.result_writes != 1:
        pytest.fail(f"Persisted {repo.result_writes} results")
    if len(results) != 2 or results[0] is not results[1]:
        pytest.fail("Both callers should observe the same result")


def test_expiry_scoring_failure_stores_degraded_result(quiz_factory, repo, clock) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("corrupt quiz definition")

    quiz = quiz_factory(time_limit=1)
    s = _session(quiz, repo, clock, scorer=broken)
    s.start()
    clock.advance(60)
    if s.state is not AttemptState.SCORED:
        pytest.fail("Expiry must never leave the attempt in progress")
    r = repo.load_result(s.attempt_id)
    if r is None or not r.degraded or r.score != 0 or r.passed:
        pytest.fail(f"Expected a degraded zero result, got {r}")


def test_manual_scoring_failure_keeps_attempt_open(quiz, repo, clock) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    s = _session(quiz, repo, clock, scorer=broken)
    s.start()
    with pytest.raises(RuntimeError):
        s.submit()
    if s.state is not AttemptState.IN_PROGRESS:
        pytest.fail("A failed manual submit should leave the attempt open")
    if repo.result_writes != 0:
        pytest.fail("No result should be stored")


def test_attempt_limit(quiz_factory, repo, clock) -> None:
    quiz = quiz_factory(attempts_allowed=2)
    for _ in range(2):
        s = _session(quiz, repo, clock)
        s.start()
        s.submit()
    with pytest.raises(AttemptLimitExceeded):
        _session(quiz, repo, clock).start()
    # another user is unaffected
    AttemptSession(quiz, "u2", repo, clock).start()


def test_unlimited_attempts(quiz_factory, repo, clock) -> None:
    quiz = quiz_factory(attempts_allowed=0)
    for _ in range(4):
        s = _session(quiz, repo, clock)
        s.start()
        s.submit()
    fifth = _session(quiz, repo, clock)
    fifth.start()
    if fifth.state is not AttemptState.IN_PROGRESS:
        pytest.fail("Fifth attempt should start when attempts are unlimited")


def test_empty_quiz_cannot_start(quiz_factory, repo, clock) -> None:
    with pytest.raises(EmptyQuizError):
        _session(quiz_factory(questions=[]), repo, clock).start()


class FlakyRepository(InMemoryQuizRepository):
    """In-memory repository whose result or attempt writes fail a set number of times."""

    def __init__(self, result_failures: int = 0, scored_attempt_failures: int = 0) -> None:
        super().__init__()
        self.result_failures = result_failures
        self.scored_attempt_failures = scored_attempt_failures

    def save_result(self, result) -> None:
        if self.result_failures:
            self.result_failures -= 1
            raise RuntimeError("database unavailable")
        super().save_result(result)

    def save_attempt(self, attempt) -> None:
        if attempt.state is AttemptState.SCORED and self.scored_attempt_failures:
            self.scored_attempt_failures -= 1
            raise RuntimeError("database unavailable")
        super().save_attempt(attempt)


def test_failed_result_write_keeps_attempt_open(quiz) -> None:
    repo = FlakyRepository(result_failures=1)
    repo.save_quiz(quiz)
    s = _session(quiz, repo, ManualClock())
    s.start()
    with pytest.raises(RuntimeError):
        s.submit()
    if s.state is not AttemptState.IN_PROGRESS or s.result is not None:
        pytest.fail(f"Unstored result must not close the attempt, state={s.state}")
    if repo.count_scored_attempts("u1", quiz.id) != 0 or repo.load_result(s.attempt_id) is not None:
        pytest.fail("Nothing should be persisted after the failed write")
    s.record_answer("tf", True)
    result = s.submit()
    if s.state is not AttemptState.SCORED or repo.load_result(s.attempt_id) != result:
        pytest.fail("Retried submit should persist and close the attempt")
    if result.earned_points != 10 or repo.result_writes != 1:
        pytest.fail(f"Unexpected retried result {result}")


def test_failed_attempt_write_reuses_stored_result(quiz) -> None:
    repo = FlakyRepository(scored_attempt_failures=1)
    repo.save_quiz(quiz)
    scorer = CountingScorer()
    s = _session(quiz, repo, ManualClock(), scorer=scorer)
    s.start()
    with pytest.raises(RuntimeError):
        s.submit(elapsed_seconds=5)
    if s.state is not AttemptState.IN_PROGRESS:
        pytest.fail("Attempt should stay open until its scored state is stored")
    result = s.submit(elapsed_seconds=50)
    if result is not repo.load_result(s.attempt_id) or result.elapsed_seconds != 5:
        pytest.fail("The already stored result should be reused, not rescored")
    if scorer.calls != 1 or repo.result_writes != 1:
        pytest.fail(f"Scored {scorer.calls} times, stored {repo.result_writes} results")
    if repo.load_attempt(s.attempt_id).state is not AttemptState.SCORED:
        pytest.fail("Stored attempt should be scored after the retry")


def test_failed_expiry_write_is_retried_on_next_access(quiz_factory) -> None:
    quiz = quiz_factory(time_limit=1)
    repo = FlakyRepository(result_failures=1)
    repo.save_quiz(quiz)
    clock = ManualClock()
    finalized = []
    s = _session(quiz, repo, clock, on_finalized=lambda session, result: finalized.append(result))
    s.start()
    clock.advance(60)
    if s.state is not AttemptState.IN_PROGRESS or finalized:
        pytest.fail("A failed expiry write must leave the attempt open and unreported")
    with pytest.raises(InvalidStateError):
        s.record_answer("tf", True)
    if s.state is not AttemptState.SCORED or s.result.trigger != "timer":
        pytest.fail("The overdue attempt should be closed on the next access")
    if len(finalized) != 1 or repo.result_writes != 1:
        pytest.fail("The retried expiry should be stored and reported once")
