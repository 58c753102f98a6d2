"""Challenge endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session as DbSession

from exam_engine.database import get_db
from exam_engine.dependencies import get_clock, get_current_user
from exam_engine.models import ChallengeCreate, ChallengeResponse
from exam_engine.models.db.user import User
from exam_engine.services import challenge_service
from exam_engine.utils.time_utils import Clock
from exam_engine.utils.validation import validate_id

router = APIRouter(prefix="/api/challenges", tags=["challenges"])


@router.post("", response_model=ChallengeResponse, status_code=status.HTTP_201_CREATED)
def create_challenge(
    payload: ChallengeCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[DbSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict[str, object]:
    """Create a challenge test and invite another user."""
    now = clock.now()
    challenge = challenge_service.create_challenge(db, current_user, payload, now)
    return challenge_service.challenge_to_dict(db, challenge, now)


@router.post("/{challenge_id}/accept", response_model=ChallengeResponse)
def accept_challenge(
    challenge_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[DbSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict[str, object]:
    """Accept a pending challenge."""
    challenge_id = validate_id("challengeId", challenge_id)
    now = clock.now()
    challenge = challenge_service.accept_challenge(db, challenge_id, current_user, now)
    return challenge_service.challenge_to_dict(db, challenge, now)


@router.get("/{challenge_id}", response_model=ChallengeResponse)
def get_challenge(
    challenge_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[DbSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict[str, object]:
    """Get challenge details, with per-participant stats once completed."""
    challenge_id = validate_id("challengeId", challenge_id)
    now = clock.now()
    challenge = challenge_service.get_challenge(db, challenge_id)
    challenge_service.require_participant(challenge, current_user.id)
    challenge_service.expire_if_overdue(db, challenge, now)
    return challenge_service.challenge_to_dict(db, challenge, now)


@router.post("/{challenge_id}/resolve", response_model=ChallengeResponse)
def resolve_challenge(
    challenge_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[DbSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict[str, object]:
    """Resolve a challenge once both participants have submitted."""
    challenge_id = validate_id("challengeId", challenge_id)
    now = clock.now()
    challenge = challenge_service.get_challenge(db, challenge_id)
    challenge_service.require_participant(challenge, current_user.id)
    challenge = challenge_service.resolve_challenge(db, challenge_id, now)
    return challenge_service.challenge_to_dict(db, challenge, now)
