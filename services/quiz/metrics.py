"""
Prometheus metrics for quiz attempts.
Exposed by the service app at GET /metrics.
"""
from prometheus_client import Counter, Histogram

attempts_started_total = Counter(
    "quiz_attempts_started_total",
    "Total number of quiz attempts started",
)

# Scored attempts by what triggered submission (manual, timer, stale) and verdict
attempts_scored_total = Counter(
    "quiz_attempts_scored_total",
    "Total number of quiz attempts scored",
    ["trigger", "passed"],
)

scoring_failures_total = Counter(
    "quiz_scoring_failures_total",
    "Scoring errors, labeled by whether a degraded zero result was stored",
    ["degraded"],
)

limit_rejections_total = Counter(
    "quiz_attempt_limit_rejections_total",
    "Attempts refused because the allowed attempt count was used up",
)

malformed_answers_total = Counter(
    "quiz_malformed_answers_total",
    "Answer payloads rejected for having the wrong shape",
)

persistence_failures_total = Counter(
    "quiz_result_persistence_failures_total",
    "Finalizations rolled back because the result or attempt could not be stored",
    ["trigger"],
)

score_percent = Histogram(
    "quiz_score_percent",
    "Distribution of attempt scores (0-100)",
    buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
)


def mark_started() -> None:
    attempts_started_total.inc()


def mark_scored(trigger: str, passed: bool, score: int) -> None:
    """Count a scored attempt and record its score."""
    attempts_scored_total.labels(trigger=trigger, passed=str(passed).lower()).inc()
    score_percent.observe(score)


def mark_scoring_failure(degraded: bool) -> None:
    scoring_failures_total.labels(degraded=str(degraded).lower()).inc()


def mark_limit_rejection() -> None:
    limit_rejections_total.inc()


def mark_malformed() -> None:
    malformed_answers_total.inc()


def mark_persistence_failure(trigger: str) -> None:
    persistence_failures_total.labels(trigger=trigger).inc()
