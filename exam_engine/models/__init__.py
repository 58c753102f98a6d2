"""Pydantic models."""
from exam_engine.models.challenges import (
    CategoryRequest,
    ChallengeCreate,
    ChallengeResponse,
)
from exam_engine.models.sessions import (
    AnswerPayload,
    AnswersSyncRequest,
    SessionSnapshot,
    SubmitRequest,
)

__all__ = [
    "AnswerPayload",
    "AnswersSyncRequest",
    "CategoryRequest",
    "ChallengeCreate",
    "ChallengeResponse",
    "SessionSnapshot",
    "SubmitRequest",
]
