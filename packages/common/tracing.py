"""Request correlation and learning telemetry.

- `trace_middleware` gives every HTTP request an `X-Request-ID` (taken from the
  caller or generated) and exposes it to log records for the request's duration.
- `xapi_event` records one attempt-lifecycle statement in a simplified xAPI
  shape: actor (learner), verb, object (`quiz:<id>`), plus result fields.
"""

from .logging import get_request_id, set_request_id
from fastapi import Request, Response
from typing import Any, Callable, Awaitable, Dict
import json
import logging
import time
import uuid

logger = logging.getLogger("quiz.telemetry")

# attempted: attempt started; completed: scored below the passing score; passed: scored at or above it
QUIZ_VERBS = frozenset({"attempted", "completed", "passed"})


async def trace_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """Bind a correlation id to the request and echo it as `X-Request-ID`."""
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    set_request_id(rid)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers["X-Request-ID"] = rid
    return response


def xapi_event(actor_id: str, verb: str, obj: str, **extras: Any) -> Dict[str, Any]:
    """Log an attempt-lifecycle statement and return it.

    Args:
        actor_id: The learner's user id.
        verb: One of `QUIZ_VERBS`.
        obj: The quiz, as "quiz:<id>".
        **extras: Result context such as `attempt_id` and `score`.

    Raises:
        ValueError: for a verb outside `QUIZ_VERBS`.
    """
    if verb not in QUIZ_VERBS:
        raise ValueError(f"unknown telemetry verb {verb!r}")
    event: Dict[str, Any] = {
        "actor": actor_id,
        "verb": verb,
        "object": obj,
        "ts": round(time.time(), 3),
        "request_id": get_request_id(),
        "result": extras,
    }
    logger.info(f"EVENT {json.dumps(event, ensure_ascii=False, default=str)}")
    return event
