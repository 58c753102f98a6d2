"""Service layer for two-participant challenges."""
import logging
import random
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from exam_engine.config import (
    CHALLENGE_LOSS_PENALTY,
    CHALLENGE_WIN_REWARD,
    RESOLVE_MAX_RETRIES,
)
from exam_engine.errors import (
    ChallengeStateError,
    CoinTransferFailed,
    EngineError,
    Forbidden,
    NotFound,
)
from exam_engine.models.challenges import ChallengeCreate
from exam_engine.models.db.attempt import AttemptResult
from exam_engine.models.db.challenge import Challenge, ChallengeStatus
from exam_engine.models.db.test import Test, TestKind
from exam_engine.models.db.user import User
from exam_engine.services import ledger_service
from exam_engine.services.auth_service import get_user_by_email
from exam_engine.services.selection_service import SelectionRequest, select_questions
from exam_engine.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)


def get_challenge(db: DBSession, challenge_id: str) -> Challenge:
    challenge = db.get(Challenge, challenge_id)
    if challenge is None:
        raise NotFound("Challenge not found", {"challengeId": challenge_id})
    return challenge


def get_challenge_for_test(db: DBSession, test_id: str) -> Challenge | None:
    return db.execute(
        select(Challenge).where(Challenge.test_id == test_id)
    ).scalar_one_or_none()


def require_participant(challenge: Challenge, user_id: int) -> None:
    if user_id not in challenge.participant_ids:
        raise Forbidden("You are not part of this challenge", {"challengeId": challenge.id})


def is_overdue(challenge: Challenge, now: datetime) -> bool:
    """A pending challenge whose window has closed."""
    if challenge.status != ChallengeStatus.PENDING.value:
        return False
    return challenge.test.window_closed(now)


def expire_if_overdue(db: DBSession, challenge: Challenge, now: datetime) -> bool:
    """Move an overdue pending challenge to ``expired`` and commit.

    Returns:
        True if the challenge is expired afterwards.
    """
    if not is_overdue(challenge, now):
        return challenge.status == ChallengeStatus.EXPIRED.value
    if _mark_expired(db, challenge.id):
        logger.info(f"Challenge {challenge.id} expired before acceptance")
    db.commit()
    db.refresh(challenge)
    return challenge.status == ChallengeStatus.EXPIRED.value


def create_challenge(
    db: DBSession,
    creator: User,
    payload: ChallengeCreate,
    now: datetime,
    rng: random.Random | None = None,
) -> Challenge:
    """
    Create a challenge test and invite a user.

    The question draw, the test and the challenge commit together; on any
    failure nothing is stored.
    """
    invitee = get_user_by_email(db, payload.invitedUser)
    if invitee is None:
        raise NotFound("Invited user not found", {"invitedUser": payload.invitedUser})
    if invitee.id == creator.id:
        raise EngineError("You cannot challenge yourself")

    starts_at = ensure_utc(payload.startTime) if payload.startTime else ensure_utc(now)
    requests = [
        SelectionRequest(
            category=item.category.strip(),
            count_atomic=item.numQuestions,
            count_comprehensive=item.numComprehensive,
        )
        for item in payload.categories
    ]

    try:
        refs = select_questions(db, requests, now, rng)
        test = Test(
            kind=TestKind.CHALLENGE.value,
            title=payload.title or f"Challenge: {creator.username} vs {invitee.username}",
            time_seconds=payload.time,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(seconds=payload.time),
            created_by=creator.id,
        )
        test.refs = refs
        db.add(test)
        db.flush()

        challenge = Challenge(
            test_id=test.id,
            creator_id=creator.id,
            invited_id=invitee.id,
            status=ChallengeStatus.PENDING.value,
        )
        db.add(challenge)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(challenge)
    logger.info(
        f"Challenge {challenge.id} created by user {creator.id} for user {invitee.id} "
        f"({len(refs)} questions)"
    )
    return challenge


def _mark_expired(db: DBSession, challenge_id: str) -> bool:
    result = db.execute(
        update(Challenge)
        .where(
            Challenge.id == challenge_id,
            Challenge.status == ChallengeStatus.PENDING.value,
        )
        .values(status=ChallengeStatus.EXPIRED.value)
    )
    return result.rowcount == 1


def accept_challenge(db: DBSession, challenge_id: str, user: User, now: datetime) -> Challenge:
    """Accept a pending challenge. Only the invited user may accept."""
    challenge = get_challenge(db, challenge_id)
    if challenge.invited_id != user.id:
        raise Forbidden("Only the invited user can accept", {"challengeId": challenge_id})

    if expire_if_overdue(db, challenge, now):
        raise ChallengeStateError("Challenge has expired", {"challengeId": challenge_id})

    result = db.execute(
        update(Challenge)
        .where(
            Challenge.id == challenge_id,
            Challenge.status == ChallengeStatus.PENDING.value,
        )
        .values(status=ChallengeStatus.ACCEPTED.value, accepted_at=now)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(challenge)
        raise ChallengeStateError(
            f"Challenge is {challenge.status}",
            {"challengeId": challenge_id, "status": challenge.status},
        )
    db.commit()
    db.refresh(challenge)
    logger.info(f"Challenge {challenge_id} accepted by user {user.id}")
    return challenge


def participant_results(db: DBSession, challenge: Challenge) -> dict[int, AttemptResult]:
    """Stored results of the participants, keyed by user id."""
    rows = db.execute(
        select(AttemptResult).where(
            AttemptResult.test_id == challenge.test_id,
            AttemptResult.test_kind == TestKind.CHALLENGE.value,
            AttemptResult.user_id.in_(challenge.participant_ids),
        )
    ).scalars().all()
    return {row.user_id: row for row in rows}


def _ranking_key(result: AttemptResult) -> float:
    if result.total_score is not None:
        return float(result.total_score)
    return float(result.total_correct)


def decide_winner(results: dict[int, AttemptResult]) -> int | None:
    """
    Winner by total score (total correct when no score was recorded).
    Strictly greater wins; equal is a tie and returns None.
    """
    (first_id, first), (second_id, second) = sorted(results.items())
    first_key = _ranking_key(first)
    second_key = _ranking_key(second)
    if first_key > second_key:
        return first_id
    if second_key > first_key:
        return second_id
    return None


def resolve_challenge(
    db: DBSession,
    challenge_id: str,
    now: datetime,
    max_retries: int = RESOLVE_MAX_RETRIES,
) -> Challenge:
    """
    Complete a challenge once both participants have results.

    The status flip (compare-and-set on ``accepted``) and the coin transfer
    share one transaction. Safe to call any number of times from either
    side: only one call completes the challenge and moves coins.

    Raises:
        CoinTransferFailed: the transaction failed on every attempt.
    """
    last_error: Exception | None = None
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        challenge = get_challenge(db, challenge_id)
        db.refresh(challenge)
        if challenge.status == ChallengeStatus.COMPLETED.value:
            return challenge
        if challenge.status != ChallengeStatus.ACCEPTED.value:
            raise ChallengeStateError(
                f"Challenge is {challenge.status}",
                {"challengeId": challenge_id, "status": challenge.status},
            )

        results = participant_results(db, challenge)
        if len(results) < 2:
            return challenge

        winner_id = decide_winner(results)
        try:
            flipped = db.execute(
                update(Challenge)
                .where(
                    Challenge.id == challenge_id,
                    Challenge.status == ChallengeStatus.ACCEPTED.value,
                )
                .values(
                    status=ChallengeStatus.COMPLETED.value,
                    winner_id=winner_id,
                    completed_at=now,
                )
            )
            if flipped.rowcount != 1:
                # Another resolver completed it first
                db.rollback()
                continue

            if winner_id is not None:
                loser_id = next(uid for uid in challenge.participant_ids if uid != winner_id)
                ledger_service.transfer(
                    db,
                    winner_id,
                    loser_id,
                    challenge_id,
                    CHALLENGE_WIN_REWARD,
                    CHALLENGE_LOSS_PENALTY,
                )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            last_error = e
            logger.warning(
                f"Resolving challenge {challenge_id} failed "
                f"(attempt {attempt + 1}/{attempts}): {e}"
            )
            continue

        db.refresh(challenge)
        if winner_id is None:
            logger.info(f"Challenge {challenge_id} completed as a tie")
        else:
            logger.info(f"Challenge {challenge_id} completed, winner user {winner_id}")
        return challenge

    challenge = get_challenge(db, challenge_id)
    db.refresh(challenge)
    if challenge.status == ChallengeStatus.COMPLETED.value:
        return challenge
    logger.error(f"Coin transfer for challenge {challenge_id} failed: {last_error}")
    raise CoinTransferFailed(challenge_id, attempts, last_error)


def challenge_summary(db: DBSession, challenge: Challenge) -> list[dict[str, Any]]:
    """Per-participant statistics for a challenge."""
    results = participant_results(db, challenge)
    summary: list[dict[str, Any]] = []
    for user_id in challenge.participant_ids:
        user = db.get(User, user_id)
        result = results.get(user_id)
        entry: dict[str, Any] = {
            "userId": user_id,
            "username": user.username if user else None,
            "submitted": result is not None,
        }
        if result is not None:
            entry.update(
                {
                    "score": result.total_score,
                    "correct": result.total_correct,
                    "total": result.total_questions,
                    "percentage": round(
                        result.total_correct / result.total_questions * 100, 2
                    ) if result.total_questions else 0.0,
                    "timeTaken": result.time_taken,
                    "unanswered": result.total_questions - result.total_attempted,
                }
            )
        summary.append(entry)
    return summary


def expire_overdue_challenges(db: DBSession, now: datetime) -> int:
    """Mark pending challenges whose window closed as expired."""
    pending = db.execute(
        select(Challenge).where(Challenge.status == ChallengeStatus.PENDING.value)
    ).scalars().all()

    expired = 0
    for challenge in pending:
        if is_overdue(challenge, now) and _mark_expired(db, challenge.id):
            expired += 1
    db.commit()
    if expired:
        logger.info(f"Expired {expired} pending challenges")
    return expired


def challenge_to_dict(db: DBSession, challenge: Challenge, now: datetime) -> dict[str, Any]:
    test = challenge.test
    data: dict[str, Any] = {
        "id": challenge.id,
        "testId": challenge.test_id,
        "status": challenge.status,
        "creatorId": challenge.creator_id,
        "invitedId": challenge.invited_id,
        "winnerId": challenge.winner_id,
        "startsAt": ensure_utc(test.starts_at).isoformat() if test.starts_at else None,
        "time": test.time_seconds,
        "remainingSeconds": test.remaining_seconds(now),
        "summary": None,
    }
    if challenge.status == ChallengeStatus.COMPLETED.value:
        data["summary"] = challenge_summary(db, challenge)
    return data
