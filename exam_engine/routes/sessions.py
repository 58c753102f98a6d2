"""Test session endpoints: start or resume, sync answers, submit, result."""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session as DbSession

from exam_engine.database import get_db
from exam_engine.dependencies import get_clock, get_current_user
from exam_engine.models import AnswersSyncRequest, SessionSnapshot, SubmitRequest
from exam_engine.models.db.user import User
from exam_engine.services import attempt_store, submission_service
from exam_engine.services.answer_sync import AttemptAnswer
from exam_engine.services.session_machine import TestSession
from exam_engine.utils.time_utils import Clock
from exam_engine.utils.validation import validate_id, validate_test_kind

router = APIRouter(prefix="/api/sessions/{test_kind}/{test_id}", tags=["sessions"])


@router.post("/start", response_model=SessionSnapshot)
def start_session(
    test_kind: str,
    test_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[DbSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict[str, object]:
    """Start a new session or resume the stored one with the remaining time."""
    kind = validate_test_kind(test_kind)
    test_id = validate_id("testId", test_id)

    session = TestSession(db, test_id, kind, current_user.id, clock=clock)
    session.load()
    return session.snapshot()


@router.put("/answers")
def sync_answers(
    test_kind: str,
    test_id: str,
    payload: AnswersSyncRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[DbSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict[str, object]:
    """Persist in-progress answers."""
    kind = validate_test_kind(test_kind)
    test_id = validate_id("testId", test_id)

    session = TestSession(db, test_id, kind, current_user.id, clock=clock)
    session.load()
    if payload.tabSwitchCount is not None:
        session.tab_switch_count = max(session.tab_switch_count, payload.tabSwitchCount)
    session.apply_answers(
        [AttemptAnswer.from_dict(answer.model_dump()) for answer in payload.answers]
    )
    if session.sync_error is not None:
        raise session.sync_error

    return {
        "status": "saved",
        "attemptId": session.attempt.id,
        "state": session.state.value,
        "remainingSeconds": session.remaining_seconds,
    }


@router.post("/submit")
def submit_session(
    test_kind: str,
    test_id: str,
    payload: SubmitRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[DbSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> dict[str, object]:
    """Lock the attempt with its final answers and return the evaluated result."""
    kind = validate_test_kind(test_kind)
    test_id = validate_id("testId", test_id)
    if payload.testId != test_id:
        raise HTTPException(status_code=400, detail="Mismatched testId")

    now = clock.now()
    test = submission_service.get_test(db, test_id, kind)
    prior = attempt_store.restore(db, test_id, current_user.id, kind.value)
    submission_service.check_access(
        db, test, current_user.id, now, has_session=prior is not None
    )

    result = submission_service.submit_attempt(
        db,
        test,
        current_user.id,
        [AttemptAnswer.from_dict(answer.model_dump()) for answer in payload.answers],
        now,
        time_taken=payload.timeTaken,
        tab_switch_count=payload.tabSwitchCount,
    )
    return submission_service.result_to_dict(result)


@router.get("/result")
def get_session_result(
    test_kind: str,
    test_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    """Get the evaluated result of the current user's attempt."""
    kind = validate_test_kind(test_kind)
    test_id = validate_id("testId", test_id)

    result = submission_service.get_result(db, test_id, current_user.id, kind)
    return submission_service.result_to_dict(result)
