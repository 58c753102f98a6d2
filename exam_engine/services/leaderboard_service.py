"""Live test evaluation, rankings and per-question statistics."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from exam_engine.errors import EngineError, Forbidden, NotFound, TestWindowOpen
from exam_engine.models.db.attempt import AttemptResult, AttemptSession
from exam_engine.models.db.test import Test, TestKind
from exam_engine.models.db.user import User
from exam_engine.services import submission_service
from exam_engine.services.catalog_service import QuestionCatalog
from exam_engine.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)


@dataclass
class LeaderboardEntry:
    user_id: int
    username: str | None
    display_name: str | None
    total_score: float
    total_correct: int
    accuracy: float
    time_taken: int
    submitted_at: datetime
    rank: int = 0
    percentile: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "displayName": self.display_name,
            "totalScore": self.total_score,
            "totalCorrect": self.total_correct,
            "accuracy": self.accuracy,
            "timeTaken": self.time_taken,
            "submittedAt": ensure_utc(self.submitted_at).isoformat(),
            "rank": self.rank,
            "percentile": self.percentile,
        }


@dataclass
class QuestionStats:
    question_id: str
    parent_id: str | None = None
    total_attempts: int = 0
    correct_count: int = 0

    @property
    def correct_percentage(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return round(self.correct_count / self.total_attempts * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "parentId": self.parent_id,
            "totalAttempts": self.total_attempts,
            "correctCount": self.correct_count,
            "correctPercentage": self.correct_percentage,
        }


def get_closed_live_test(db: DBSession, test_id: str, now: datetime) -> Test:
    """Get a live test whose window has closed.

    Raises:
        NotFound: no live test with this id.
        TestWindowOpen: the window has not closed yet.
    """
    test = submission_service.get_test(db, test_id, TestKind.LIVE)
    if not test.window_closed(now):
        window_end = test.window_end
        raise TestWindowOpen(test.id, window_end.isoformat() if window_end else None)
    return test


def live_results(db: DBSession, test_id: str) -> list[AttemptResult]:
    return list(
        db.execute(
            select(AttemptResult)
            .where(
                AttemptResult.test_id == test_id,
                AttemptResult.test_kind == TestKind.LIVE.value,
            )
            .order_by(AttemptResult.id)
        ).scalars().all()
    )


def evaluate_live_test(db: DBSession, test_id: str, user: User, now: datetime) -> dict[str, Any]:
    """
    Lock and evaluate every participant's session of a closed live test.

    Sessions already submitted keep their stored result, so running this
    again changes nothing. Only the test's creator may run it; tests without
    a creator may be evaluated by any user.

    Raises:
        Forbidden: the user did not create the test.
        TestWindowOpen: the window has not closed yet.
        NotFound: nobody started the test.
    """
    test = get_closed_live_test(db, test_id, now)
    if test.created_by is not None and test.created_by != user.id:
        raise Forbidden("Only the test creator can evaluate it", {"testId": test_id})

    participants = db.execute(
        select(AttemptSession.user_id)
        .where(
            AttemptSession.test_id == test.id,
            AttemptSession.test_kind == TestKind.LIVE.value,
        )
        .order_by(AttemptSession.started_at)
    ).scalars().all()
    if not participants:
        raise NotFound("No user submissions found", {"testId": test_id})

    catalog = QuestionCatalog(db)
    evaluated = 0
    for user_id in participants:
        try:
            submission_service.submit_attempt(db, test, user_id, [], now, catalog=catalog)
        except EngineError as e:
            logger.warning(f"Could not evaluate user {user_id} on live test {test_id}: {e.message}")
            continue
        evaluated += 1

    logger.info(f"Evaluated {evaluated}/{len(participants)} participants of live test {test_id}")
    return {
        "testId": test.id,
        "evaluatedUsers": evaluated,
        "participantCount": len(participants),
    }


def _ranking_key(entry: LeaderboardEntry) -> tuple:
    # Higher score, then more correct, then higher accuracy, then less time
    return (
        -entry.total_score,
        -entry.total_correct,
        -entry.accuracy,
        entry.time_taken,
        entry.user_id,
    )


def leaderboard(db: DBSession, test_id: str, now: datetime) -> list[LeaderboardEntry]:
    """Ranked results of a closed live test with rank and percentile."""
    test = get_closed_live_test(db, test_id, now)

    entries: list[LeaderboardEntry] = []
    for result in live_results(db, test.id):
        user = db.get(User, result.user_id)
        entries.append(
            LeaderboardEntry(
                user_id=result.user_id,
                username=user.username if user else None,
                display_name=user.display_name if user else None,
                total_score=result.total_score,
                total_correct=result.total_correct,
                accuracy=result.accuracy,
                time_taken=result.time_taken,
                submitted_at=result.submitted_at,
            )
        )

    entries.sort(key=_ranking_key)
    count = len(entries)
    for index, entry in enumerate(entries):
        entry.rank = index + 1
        entry.percentile = round((count - index) / count * 100)
    return entries


def question_stats(db: DBSession, test_id: str, now: datetime) -> list[QuestionStats]:
    """Attempt and correct counts per question, in test order."""
    test = get_closed_live_test(db, test_id, now)

    stats: dict[str, QuestionStats] = {}
    for result in live_results(db, test.id):
        for outcome in result.question_results:
            question_id = outcome["questionId"]
            entry = stats.get(question_id)
            if entry is None:
                entry = stats[question_id] = QuestionStats(question_id, outcome.get("parentId"))
            if outcome.get("attempted"):
                entry.total_attempts += 1
            if outcome.get("correct"):
                entry.correct_count += 1
    return list(stats.values())
