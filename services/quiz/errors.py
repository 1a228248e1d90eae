"""Error taxonomy for the quiz engine.

All errors are local and recoverable: they reject a single operation and are
surfaced to the host application for user-facing messaging.
"""


class QuizEngineError(Exception):
    """Base class for every error raised by the quiz engine."""


class MalformedAnswerError(QuizEngineError):
    """Raw answer payload has the wrong basic shape for the question kind."""


class UnknownQuestionError(MalformedAnswerError):
    """Answer targets a question id that is not part of the quiz."""


class InvalidStateError(QuizEngineError):
    """Operation attempted in the wrong attempt lifecycle state."""


class AttemptLimitExceeded(QuizEngineError):
    """User has already used every allowed attempt for the quiz."""


class EmptyQuizError(QuizEngineError):
    """Quiz has no questions, so its maximum score is undefined."""


class AttemptNotScoredError(QuizEngineError):
    """Review requested before the attempt was scored."""


class QuizNotFoundError(QuizEngineError, LookupError):
    pass


class AttemptNotFoundError(QuizEngineError, LookupError):
    pass
