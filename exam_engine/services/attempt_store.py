"""Persistence of attempt sessions.

Every write is a conditional UPDATE guarded by ``locked = false`` and the
row version, so concurrent writers never clear a lock and never lose a
time increment.
"""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from exam_engine.errors import AlreadyLocked, NotFound, StaleSubmission, SyncFailure
from exam_engine.models.db.attempt import AttemptSession
from exam_engine.utils.json_utils import fingerprint, json_dump

logger = logging.getLogger(__name__)

# Conditional update attempts before giving up on a contended row
MAX_CAS_ATTEMPTS = 5


def _fresh(db: DBSession, attempt_id: str) -> AttemptSession:
    session = db.execute(
        select(AttemptSession)
        .where(AttemptSession.id == attempt_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if session is None:
        raise NotFound("Attempt not found", {"attemptId": attempt_id})
    return session


def restore(db: DBSession, test_id: str, user_id: int, test_kind: str) -> AttemptSession | None:
    """Get the stored session for (test, user, kind), if any."""
    return db.execute(
        select(AttemptSession)
        .where(
            AttemptSession.test_id == test_id,
            AttemptSession.user_id == user_id,
            AttemptSession.test_kind == test_kind,
        )
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def create_session(
    db: DBSession,
    test_id: str,
    user_id: int,
    test_kind: str,
    answers: list[dict[str, Any]],
    started_at: datetime,
) -> AttemptSession:
    """
    Create the session row for a first load.
    A concurrent first load for the same owner wins; its row is returned.
    """
    session = AttemptSession(
        test_id=test_id,
        user_id=user_id,
        test_kind=test_kind,
        started_at=started_at,
        updated_at=started_at,
    )
    session.answers = answers
    db.add(session)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = restore(db, test_id, user_id, test_kind)
        if existing is None:
            raise
        return existing
    db.refresh(session)
    return session


def merge_answers(
    stored: list[dict[str, Any]],
    incoming: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """
    Merge incoming answers into stored ones.
    Selection is last write wins; per-question time never decreases.
    Stored answers missing from ``incoming`` are kept.
    """
    stored_by_id = {answer["questionId"]: answer for answer in stored}
    merged: list[dict[str, Any]] = []
    seen: set[str] = set()

    for answer in incoming:
        question_id = answer["questionId"]
        if question_id in seen:
            continue
        seen.add(question_id)
        previous = stored_by_id.get(question_id)
        entry = dict(answer)
        if previous is not None:
            entry["timeTakenSeconds"] = max(
                int(previous.get("timeTakenSeconds") or 0),
                int(answer.get("timeTakenSeconds") or 0),
            )
            if entry.get("parentId") is None and previous.get("parentId") is not None:
                entry["parentId"] = previous["parentId"]
        merged.append(entry)

    for answer in stored:
        if answer["questionId"] not in seen:
            merged.append(dict(answer))

    return merged


def persist(
    db: DBSession,
    attempt_id: str,
    answers: list[dict[str, Any]],
    now: datetime,
    tab_switch_count: int | None = None,
    time_taken: int | None = None,
) -> AttemptSession:
    """
    Write in-progress answers and metadata.

    Raises:
        AlreadyLocked: the session was locked before this write landed.
        SyncFailure: the row stayed contended for every attempt.
    """
    for _ in range(MAX_CAS_ATTEMPTS):
        session = _fresh(db, attempt_id)
        if session.locked:
            raise AlreadyLocked(session.test_id, session.user_id, session.test_kind)

        values: dict[str, Any] = {
            "answers_json": json_dump(merge_answers(session.answers, answers)),
            "version": session.version + 1,
            "updated_at": now,
        }
        if tab_switch_count is not None:
            values["tab_switch_count"] = max(session.tab_switch_count, tab_switch_count)
        if time_taken is not None:
            values["time_taken"] = max(session.time_taken, time_taken)

        result = db.execute(
            update(AttemptSession)
            .where(
                AttemptSession.id == attempt_id,
                AttemptSession.locked.is_(False),
                AttemptSession.version == session.version,
            )
            .values(**values)
        )
        if result.rowcount == 1:
            db.commit()
            return _fresh(db, attempt_id)
        db.rollback()

    raise SyncFailure(attempt_id, MAX_CAS_ATTEMPTS)


def lock_fingerprint(answers: list[dict[str, Any]]) -> str:
    """Fingerprint of a final answer payload, independent of answer order."""
    canonical = sorted(
        (
            {
                "questionId": answer["questionId"],
                "selected": answer.get("selected"),
                "timeTakenSeconds": int(answer.get("timeTakenSeconds") or 0),
                "parentId": answer.get("parentId"),
            }
            for answer in answers
        ),
        key=lambda item: item["questionId"],
    )
    return fingerprint(canonical)


def lock(
    db: DBSession,
    attempt_id: str,
    final_answers: list[dict[str, Any]],
    now: datetime,
    tab_switch_count: int | None = None,
    time_taken: int | None = None,
) -> tuple[AttemptSession, bool]:
    """
    Lock a session with its final answers. The only irreversible write.

    Returns:
        Tuple of (session, newly_locked). A repeat call with an identical
        payload returns the locked session with ``newly_locked`` False.

    Raises:
        StaleSubmission: already locked with a different payload.
    """
    payload_fingerprint = lock_fingerprint(final_answers)

    for _ in range(MAX_CAS_ATTEMPTS):
        session = _fresh(db, attempt_id)
        if session.locked:
            if session.lock_fingerprint == payload_fingerprint:
                return session, False
            logger.warning(
                f"Stale submission for attempt {attempt_id} "
                f"(user {session.user_id}); original lock stands"
            )
            raise StaleSubmission(attempt_id)

        values: dict[str, Any] = {
            "answers_json": json_dump(merge_answers(session.answers, final_answers)),
            "locked": True,
            "locked_at": now,
            "lock_fingerprint": payload_fingerprint,
            "version": session.version + 1,
            "updated_at": now,
        }
        if tab_switch_count is not None:
            values["tab_switch_count"] = max(session.tab_switch_count, tab_switch_count)
        if time_taken is not None:
            values["time_taken"] = max(session.time_taken, time_taken)

        result = db.execute(
            update(AttemptSession)
            .where(
                AttemptSession.id == attempt_id,
                AttemptSession.locked.is_(False),
                AttemptSession.version == session.version,
            )
            .values(**values)
        )
        if result.rowcount == 1:
            db.commit()
            logger.info(f"Locked attempt {attempt_id} for user {session.user_id}")
            return _fresh(db, attempt_id), True
        db.rollback()

    raise SyncFailure(attempt_id, MAX_CAS_ATTEMPTS)
