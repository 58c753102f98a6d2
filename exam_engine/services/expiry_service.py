"""Background sweep for abandoned sessions and overdue challenges."""
import logging
import threading
import time

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from exam_engine.config import EXPIRY_SWEEP_INTERVAL_SECONDS
from exam_engine.database import SessionLocal
from exam_engine.errors import EngineError
from exam_engine.models.db.attempt import AttemptSession
from exam_engine.models.db.challenge import Challenge, ChallengeStatus
from exam_engine.models.db.test import Test
from exam_engine.services import challenge_service, submission_service
from exam_engine.utils.time_utils import Clock, ServerClock, ensure_utc

logger = logging.getLogger(__name__)


def lock_overdue_sessions(db: DBSession, clock: Clock) -> int:
    """Lock and evaluate open sessions whose time ran out, using their stored answers."""
    now = clock.now()
    open_sessions = db.execute(
        select(AttemptSession).where(AttemptSession.locked.is_(False))
    ).scalars().all()

    locked = 0
    for session in open_sessions:
        test = db.get(Test, session.test_id)
        if test is None:
            continue
        if ensure_utc(now) < test.deadline(session.started_at):
            continue
        try:
            submission_service.submit_attempt(db, test, session.user_id, [], now)
            locked += 1
        except EngineError as e:
            logger.warning(f"Could not auto-submit attempt {session.id}: {e.message}")

    if locked:
        logger.info(f"Auto-submitted {locked} overdue attempts")
    return locked


def resolve_ready_challenges(db: DBSession, clock: Clock) -> int:
    """Resolve accepted challenges where both results are in."""
    accepted = db.execute(
        select(Challenge.id).where(Challenge.status == ChallengeStatus.ACCEPTED.value)
    ).scalars().all()

    resolved = 0
    for challenge_id in accepted:
        try:
            challenge = challenge_service.resolve_challenge(db, challenge_id, clock.now())
        except EngineError as e:
            logger.error(f"Could not resolve challenge {challenge_id}: {e.message}")
            continue
        if challenge.status == ChallengeStatus.COMPLETED.value:
            resolved += 1
    return resolved


def run_expiry_sweep(clock: Clock | None = None) -> dict[str, int]:
    """Run one sweep in its own database session."""
    clock = clock or ServerClock()
    db = SessionLocal()
    try:
        return {
            "expiredChallenges": challenge_service.expire_overdue_challenges(db, clock.now()),
            "lockedAttempts": lock_overdue_sessions(db, clock),
            "resolvedChallenges": resolve_ready_challenges(db, clock),
        }
    finally:
        db.close()


def schedule_expiry_sweep(interval: int = EXPIRY_SWEEP_INTERVAL_SECONDS) -> threading.Thread | None:
    """Start the periodic sweep in a daemon thread."""
    if interval <= 0:
        return None

    def _worker() -> None:
        while True:
            time.sleep(interval)
            try:
                run_expiry_sweep()
            except Exception:
                logger.exception("Expiry sweep failed")

    thread = threading.Thread(
        target=_worker,
        name="expiry_sweep",
        daemon=True,
    )
    thread.start()
    return thread
