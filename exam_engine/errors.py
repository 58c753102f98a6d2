"""Engine exceptions with a standardized error body.

Every error carries a machine-readable ``code``, a human ``message`` and
optional ``details``; ``exam_engine.app`` turns them into
``{"code", "message", "details"}`` JSON responses using ``status_code``.
"""
from typing import Any


class EngineError(Exception):
    """Base class for all engine errors."""

    status_code = 400
    code = "ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFound(EngineError):
    status_code = 404
    code = "NOT_FOUND"


class Forbidden(EngineError):
    status_code = 403
    code = "FORBIDDEN"


# Selection


class EmptySelection(EngineError):
    """A selection request asked for zero questions in total."""

    code = "EMPTY_SELECTION"

    def __init__(self) -> None:
        super().__init__("At least one question must be selected")


class InsufficientQuestions(EngineError):
    """A category cannot satisfy its requested counts."""

    code = "INSUFFICIENT_QUESTIONS"

    def __init__(self, category: str, kind: str, requested: int, available: int) -> None:
        self.category = category
        self.kind = kind
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"Not enough {kind} questions in category {category} "
            f"(found {available}, need {requested})",
            {
                "category": category,
                "kind": kind,
                "requested": requested,
                "available": available,
                "shortfall": self.shortfall,
            },
        )


# Session lifecycle


class AlreadyLocked(EngineError):
    """Re-entry into a finished attempt; callers redirect to the result."""

    status_code = 409
    code = "ALREADY_LOCKED"

    def __init__(self, test_id: str, user_id: int, test_kind: str) -> None:
        self.test_id = test_id
        self.user_id = user_id
        self.test_kind = test_kind
        super().__init__(
            "This test has already been submitted",
            {
                "testId": test_id,
                "testKind": test_kind,
                "redirect": f"/api/sessions/{test_kind}/{test_id}/result",
            },
        )


class StaleSubmission(EngineError):
    """A lock whose payload disagrees with the lock already committed."""

    status_code = 409
    code = "STALE_SUBMISSION"

    def __init__(self, attempt_id: str) -> None:
        self.attempt_id = attempt_id
        super().__init__(
            "Attempt was already submitted with different answers",
            {"attemptId": attempt_id},
        )


class SyncFailure(EngineError):
    """Persisting an in-progress attempt failed after all retries."""

    status_code = 503
    code = "SYNC_FAILURE"

    def __init__(self, attempt_id: str | None, attempts: int, cause: Exception | None = None) -> None:
        self.attempt_id = attempt_id
        self.attempts = attempts
        super().__init__(
            f"Could not save answers after {attempts} attempts",
            {"attemptId": attempt_id, "attempts": attempts, "cause": str(cause) if cause else None},
        )


class TestNotStarted(EngineError):
    """The scheduled start of a live or challenge test is in the future."""

    __test__ = False  # not a pytest class

    status_code = 403
    code = "TEST_NOT_STARTED"

    def __init__(self, test_id: str, starts_at: str) -> None:
        super().__init__(
            "Test has not started yet",
            {"testId": test_id, "startsAt": starts_at},
        )


class TestWindowClosed(EngineError):
    """The scheduled window closed before any session was started."""

    __test__ = False

    status_code = 410
    code = "TEST_EXPIRED"

    def __init__(self, test_id: str) -> None:
        super().__init__("Test window has closed", {"testId": test_id})


class TestWindowOpen(EngineError):
    """Batch evaluation or rankings requested before the window closed."""

    __test__ = False

    status_code = 409
    code = "TEST_WINDOW_OPEN"

    def __init__(self, test_id: str, ends_at: str | None) -> None:
        super().__init__(
            "Test window is still open",
            {"testId": test_id, "endsAt": ends_at},
        )


class SessionNotRunning(EngineError):
    """An answer operation arrived while the session was not running."""

    status_code = 409
    code = "SESSION_NOT_RUNNING"


# Evaluation


class EvaluationInconsistency(EngineError):
    """A question reference could not be resolved during evaluation.

    Never escapes the evaluator: the offending question is scored as not
    attempted and recorded on the result.
    """

    code = "EVALUATION_INCONSISTENCY"

    def __init__(self, question_id: str, question_type: str) -> None:
        self.question_id = question_id
        self.question_type = question_type
        super().__init__(
            f"Question {question_id} ({question_type}) not found in catalog",
            {"questionId": question_id, "type": question_type},
        )


# Challenges


class ChallengeStateError(EngineError):
    status_code = 409
    code = "CHALLENGE_STATE"


class CoinTransferFailed(EngineError):
    """The winner/loser transfer could not be committed after retries."""

    status_code = 500
    code = "COIN_TRANSFER_FAILED"

    def __init__(self, challenge_id: str, attempts: int, cause: Exception | None = None) -> None:
        self.challenge_id = challenge_id
        super().__init__(
            f"Coin transfer for challenge {challenge_id} failed after {attempts} attempts",
            {"challengeId": challenge_id, "attempts": attempts, "cause": str(cause) if cause else None},
        )
