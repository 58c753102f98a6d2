"""Database models."""
from exam_engine.models.db.user import User
from exam_engine.models.db.question import ComprehensiveQuestion, Question, SubQuestion
from exam_engine.models.db.test import QuestionType, Test, TestKind
from exam_engine.models.db.attempt import AttemptResult, AttemptSession
from exam_engine.models.db.challenge import Challenge, ChallengeStatus, CoinLedgerEntry

__all__ = [
    "User",
    "Question",
    "ComprehensiveQuestion",
    "SubQuestion",
    "QuestionType",
    "Test",
    "TestKind",
    "AttemptSession",
    "AttemptResult",
    "Challenge",
    "ChallengeStatus",
    "CoinLedgerEntry",
]
