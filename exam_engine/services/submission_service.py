"""Submission flow: lock an attempt, evaluate it, store the result, resolve challenges."""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from exam_engine.errors import (
    ChallengeStateError,
    NotFound,
    TestNotStarted,
    TestWindowClosed,
)
from exam_engine.models.db.attempt import AttemptResult, AttemptSession
from exam_engine.models.db.challenge import Challenge, ChallengeStatus
from exam_engine.models.db.test import Test, TestKind
from exam_engine.services import challenge_service
from exam_engine.services.answer_sync import AnswerSync, AttemptAnswer, FlatAnswerSet, group_by_parent
from exam_engine.services.catalog_service import QuestionCatalog
from exam_engine.services.evaluation_service import EvaluatedResult, evaluate
from exam_engine.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)


def get_test(db: DBSession, test_id: str, test_kind: TestKind) -> Test:
    """Get a test of the given kind."""
    test = db.get(Test, test_id)
    if test is None or test.kind != test_kind.value:
        raise NotFound("Test not found", {"testId": test_id, "testKind": test_kind.value})
    return test


def check_access(
    db: DBSession,
    test: Test,
    user_id: int,
    now: datetime,
    has_session: bool,
) -> Challenge | None:
    """
    Enforce the scheduled window and challenge membership.

    A pending challenge whose window has closed is expired here rather than
    waiting for the sweep.

    Raises:
        TestNotStarted: before the scheduled start.
        TestWindowClosed: the window closed and no session was ever started,
            or the challenge expired.
        ChallengeStateError: the challenge is not accepted.
    """
    challenge: Challenge | None = None
    if test.test_kind == TestKind.CHALLENGE:
        challenge = challenge_service.get_challenge_for_test(db, test.id)
        if challenge is None:
            raise NotFound("Challenge not found", {"testId": test.id})
        challenge_service.require_participant(challenge, user_id)
        challenge_service.expire_if_overdue(db, challenge, now)
        if challenge.status == ChallengeStatus.EXPIRED.value:
            raise TestWindowClosed(test.id)
        if challenge.status == ChallengeStatus.PENDING.value:
            raise ChallengeStateError(
                "Challenge has not been accepted",
                {"challengeId": challenge.id, "status": challenge.status},
            )

    if not test.test_kind.is_scheduled or test.starts_at is None:
        return challenge

    starts_at = ensure_utc(test.starts_at)
    if ensure_utc(now) < starts_at:
        raise TestNotStarted(test.id, starts_at.isoformat())
    if not has_session and test.window_closed(now):
        raise TestWindowClosed(test.id)
    return challenge


def find_result(db: DBSession, attempt_id: str) -> AttemptResult | None:
    return db.execute(
        select(AttemptResult).where(AttemptResult.attempt_id == attempt_id)
    ).scalar_one_or_none()


def get_result(db: DBSession, test_id: str, user_id: int, test_kind: TestKind) -> AttemptResult:
    """Get the evaluated result of a user's attempt."""
    result = db.execute(
        select(AttemptResult).where(
            AttemptResult.test_id == test_id,
            AttemptResult.user_id == user_id,
            AttemptResult.test_kind == test_kind.value,
        )
    ).scalar_one_or_none()
    if result is None:
        raise NotFound("Result not found", {"testId": test_id, "testKind": test_kind.value})
    return result


def store_result(
    db: DBSession,
    session: AttemptSession,
    evaluated: EvaluatedResult,
) -> AttemptResult:
    """Insert the result row once; a concurrent insert for the same attempt wins."""
    result = AttemptResult(
        attempt_id=session.id,
        test_id=session.test_id,
        user_id=session.user_id,
        test_kind=session.test_kind,
        total_questions=evaluated.total_questions,
        total_attempted=evaluated.total_attempted,
        total_correct=evaluated.total_correct,
        total_score=evaluated.total_score,
        accuracy=evaluated.accuracy,
        confidence=evaluated.confidence,
        time_taken=session.time_taken or evaluated.time_taken,
        tab_switch_count=session.tab_switch_count,
        submitted_at=evaluated.submitted_at,
    )
    result.category_scores = {
        name: score.to_dict() for name, score in evaluated.category_scores.items()
    }
    result.question_results = [outcome.to_dict() for outcome in evaluated.outcomes]
    result.unresolved = list(evaluated.unresolved)

    db.add(result)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_result(db, session.id)
        if existing is None:
            raise
        return existing
    db.refresh(result)
    return result


def evaluate_session(
    db: DBSession,
    test: Test,
    session: AttemptSession,
    catalog: QuestionCatalog,
) -> AttemptResult:
    """Evaluate a locked session from its stored answers and store the result."""
    existing = find_result(db, session.id)
    if existing is not None:
        return existing

    answers = [AttemptAnswer.from_dict(data) for data in session.answers]
    evaluated = evaluate(
        test.refs,
        group_by_parent(answers),
        catalog,
        attempt_id=session.id,
        owner_id=session.user_id,
        submitted_at=ensure_utc(session.locked_at or session.updated_at),
    )
    if evaluated.unresolved:
        logger.warning(
            f"Attempt {session.id} evaluated with {len(evaluated.unresolved)} unresolved references"
        )
    return store_result(db, session, evaluated)


def submit_attempt(
    db: DBSession,
    test: Test,
    user_id: int,
    answers: list[AttemptAnswer],
    now: datetime,
    time_taken: int | None = None,
    tab_switch_count: int | None = None,
    catalog: QuestionCatalog | None = None,
    sync: AnswerSync | None = None,
) -> AttemptResult:
    """
    Lock an attempt with its final answers and evaluate it.

    Answers are applied onto the stored session, so a submission without any
    answers locks what was last persisted. Repeating a submission with the
    same answers returns the stored result without side effects.

    Raises:
        StaleSubmission: the attempt was already locked with other answers.
        CoinTransferFailed: the challenge could not be resolved.
    """
    catalog = catalog or QuestionCatalog(db)
    catalog.preload(test.refs)
    sync = sync or AnswerSync(db)

    arena = FlatAnswerSet.from_refs(test.refs, catalog)
    session = sync.restore(test.id, user_id, test.kind)
    if session is None:
        session = sync.create(test.id, user_id, test.kind, arena.to_dicts(), now)
    else:
        arena.hydrate(session.answers)
    arena.apply(answers)

    if time_taken is None:
        time_taken = sum(slot.time_taken_seconds for slot in arena.slots)
    time_taken = min(time_taken, test.time_seconds)

    session, newly_locked = sync.lock(
        session.id, arena.to_dicts(), now, tab_switch_count, time_taken
    )
    if newly_locked:
        logger.info(f"Submitted attempt {session.id} for test {test.id} by user {user_id}")

    result = evaluate_session(db, test, session, catalog)

    if test.test_kind == TestKind.CHALLENGE:
        challenge = challenge_service.get_challenge_for_test(db, test.id)
        if challenge is not None:
            challenge_service.resolve_challenge(db, challenge.id, now)

    return result


def result_to_dict(result: AttemptResult) -> dict[str, Any]:
    return {
        "attemptId": result.attempt_id,
        "testId": result.test_id,
        "userId": result.user_id,
        "testKind": result.test_kind,
        "totalQuestions": result.total_questions,
        "totalAttempted": result.total_attempted,
        "totalCorrect": result.total_correct,
        "totalScore": result.total_score,
        "accuracy": result.accuracy,
        "confidence": result.confidence,
        "timeTaken": result.time_taken,
        "tabSwitchCount": result.tab_switch_count,
        "categoryScores": result.category_scores,
        "questions": result.question_results,
        "unresolved": result.unresolved,
        "submittedAt": ensure_utc(result.submitted_at).isoformat(),
    }
