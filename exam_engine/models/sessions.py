"""Session-related Pydantic models."""
from pydantic import BaseModel, Field


class AnswerPayload(BaseModel):
    """Model for one flattened answer."""

    questionId: str = Field(..., min_length=1)
    selected: int | None = None
    timeTakenSeconds: int = Field(0, ge=0)
    parentId: str | None = None


class AnswersSyncRequest(BaseModel):
    """Model for persisting in-progress answers."""

    answers: list[AnswerPayload]
    tabSwitchCount: int | None = Field(None, ge=0)


class SubmitRequest(BaseModel):
    """Model for submitting an attempt."""

    testId: str = Field(..., min_length=1)
    answers: list[AnswerPayload]
    timeTaken: int = Field(0, ge=0)
    tabSwitchCount: int = Field(0, ge=0)


class SessionSnapshot(BaseModel):
    """Model for a loaded session."""

    attemptId: str
    testId: str
    testKind: str
    state: str
    remainingSeconds: int
    serverTime: str
    currentIndex: int
    tabSwitchCount: int
    questions: list[dict[str, object]]
    answers: list[dict[str, object]]
    syncError: str | None = None
