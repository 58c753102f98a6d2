"""Challenge-related Pydantic models."""
from datetime import datetime

from pydantic import BaseModel, Field


class CategoryRequest(BaseModel):
    """Model for the question counts drawn from one category."""

    category: str = Field(..., min_length=1)
    numQuestions: int = Field(0, ge=0)
    numComprehensive: int = Field(0, ge=0)


class ChallengeCreate(BaseModel):
    """Model for creating a challenge."""

    invitedUser: str = Field(..., min_length=3)
    categories: list[CategoryRequest] = Field(..., min_length=1)
    time: int = Field(..., gt=0)
    startTime: datetime | None = None
    title: str | None = None


class ChallengeResponse(BaseModel):
    """Model for challenge details."""

    id: str
    testId: str
    status: str
    creatorId: int
    invitedId: int
    winnerId: int | None = None
    startsAt: str | None = None
    time: int
    remainingSeconds: int
    summary: list[dict[str, object]] | None = None
