"""Scoring of submitted attempts.

``evaluate`` is pure: it reads the catalog and its arguments only, never the
wall clock, so evaluating the same submission twice gives the same result.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from exam_engine.config import CORRECT_MARK, WRONG_MARK
from exam_engine.errors import EvaluationInconsistency
from exam_engine.models.db.question import ComprehensiveQuestion, Question
from exam_engine.models.db.test import QuestionType
from exam_engine.services.answer_sync import GroupedAnswer, sub_answer_id
from exam_engine.services.catalog_service import Catalog, normalize_correct_index

logger = logging.getLogger(__name__)

UNCATEGORIZED = "uncategorized"


@dataclass
class CategoryScore:
    score: float = 0.0
    total_questions: int = 0
    attempted: int = 0
    correct: int = 0
    time_spent: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": round(self.score, 2),
            "totalQuestions": self.total_questions,
            "attempted": self.attempted,
            "correct": self.correct,
            "timeSpent": self.time_spent,
        }


@dataclass
class QuestionOutcome:
    question_id: str
    category: str
    selected: int | None
    correct_index: int | None
    correct: bool
    attempted: bool
    marks: float
    time_taken_seconds: int
    parent_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "parentId": self.parent_id,
            "category": self.category,
            "selected": self.selected,
            "correctIndex": self.correct_index,
            "correct": self.correct,
            "attempted": self.attempted,
            "marks": self.marks,
            "timeTakenSeconds": self.time_taken_seconds,
        }


@dataclass
class EvaluatedResult:
    attempt_id: str
    owner_id: int
    submitted_at: datetime
    total_questions: int = 0
    total_attempted: int = 0
    total_correct: int = 0
    total_score: float = 0.0
    time_taken: int = 0
    category_scores: dict[str, CategoryScore] = field(default_factory=dict)
    outcomes: list[QuestionOutcome] = field(default_factory=list)
    unresolved: list[dict[str, str]] = field(default_factory=list)

    @property
    def accuracy(self) -> float:
        """Share of attempted questions answered correctly."""
        if self.total_attempted == 0:
            return 0.0
        return round(self.total_correct / self.total_attempted, 4)

    @property
    def confidence(self) -> float:
        """Share of questions attempted."""
        if self.total_questions == 0:
            return 0.0
        return round(self.total_attempted / self.total_questions, 4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attemptId": self.attempt_id,
            "ownerId": self.owner_id,
            "submittedAt": self.submitted_at.isoformat(),
            "totalQuestions": self.total_questions,
            "totalAttempted": self.total_attempted,
            "totalCorrect": self.total_correct,
            "totalScore": self.total_score,
            "accuracy": self.accuracy,
            "confidence": self.confidence,
            "timeTaken": self.time_taken,
            "categoryScores": {
                name: score.to_dict() for name, score in self.category_scores.items()
            },
            "questions": [outcome.to_dict() for outcome in self.outcomes],
            "unresolved": list(self.unresolved),
        }


def _mark(
    result: EvaluatedResult,
    question_id: str,
    category: str,
    selected: int | None,
    correct_index: int | None,
    time_taken: int,
    parent_id: str | None,
    correct_mark: float,
    wrong_mark: float,
) -> None:
    attempted = selected is not None
    correct = attempted and correct_index is not None and selected == correct_index
    if correct:
        marks = correct_mark
    elif attempted:
        marks = wrong_mark
    else:
        marks = 0.0

    bucket = result.category_scores.setdefault(category, CategoryScore())
    bucket.total_questions += 1
    bucket.time_spent += time_taken
    bucket.score += marks
    if attempted:
        bucket.attempted += 1
    if correct:
        bucket.correct += 1

    result.total_questions += 1
    result.total_attempted += int(attempted)
    result.total_correct += int(correct)
    result.total_score += marks
    result.outcomes.append(
        QuestionOutcome(
            question_id=question_id,
            category=category,
            selected=selected,
            correct_index=correct_index,
            correct=correct,
            attempted=attempted,
            marks=marks,
            time_taken_seconds=time_taken,
            parent_id=parent_id,
        )
    )


def _record_unresolved(
    result: EvaluatedResult,
    ref: dict[str, Any],
    answer: GroupedAnswer | None,
    correct_mark: float,
    wrong_mark: float,
) -> None:
    error = EvaluationInconsistency(ref["id"], ref["type"])
    logger.warning(f"Attempt {result.attempt_id}: {error.message}; scored as not attempted")
    result.unresolved.append({"id": ref["id"], "type": ref["type"]})

    if ref["type"] == QuestionType.COMPREHENSIVE.value:
        count = len(answer.sub_selected) if answer and answer.sub_selected else 1
        for index in range(count):
            _mark(
                result, sub_answer_id(ref["id"], index), UNCATEGORIZED, None, None, 0,
                ref["id"], correct_mark, wrong_mark,
            )
    else:
        _mark(
            result, ref["id"], UNCATEGORIZED, None, None, 0, None,
            correct_mark, wrong_mark,
        )


def evaluate(
    ordered_refs: list[dict[str, Any]],
    answers: list[GroupedAnswer],
    catalog: Catalog,
    *,
    attempt_id: str,
    owner_id: int,
    submitted_at: datetime,
    correct_mark: float = CORRECT_MARK,
    wrong_mark: float = WRONG_MARK,
) -> EvaluatedResult:
    """
    Score an attempt against its test's ordered references.

    Answers are matched to references by id; references without an answer
    count as not attempted. Unresolvable references never abort evaluation.
    Totals and per-category scores are clamped at zero.
    """
    by_id = {answer.question_id: answer for answer in answers}
    result = EvaluatedResult(
        attempt_id=attempt_id, owner_id=owner_id, submitted_at=submitted_at
    )

    for ref in ordered_refs:
        answer = by_id.get(ref["id"])
        item = catalog.get(ref["id"], ref["type"])

        if ref["type"] == QuestionType.COMPREHENSIVE.value:
            if not isinstance(item, ComprehensiveQuestion):
                _record_unresolved(result, ref, answer, correct_mark, wrong_mark)
                continue
            for index, sub in enumerate(item.sub_questions):
                selected = None
                time_taken = 0
                if answer is not None and index < len(answer.sub_selected):
                    selected = answer.sub_selected[index]
                    time_taken = answer.sub_times[index]
                _mark(
                    result,
                    sub_answer_id(item.id, index),
                    sub.effective_category,
                    selected,
                    normalize_correct_index(sub.correct_answer, sub.options),
                    time_taken,
                    item.id,
                    correct_mark,
                    wrong_mark,
                )
            continue

        if not isinstance(item, Question):
            _record_unresolved(result, ref, answer, correct_mark, wrong_mark)
            continue
        _mark(
            result,
            item.id,
            item.category,
            answer.selected if answer is not None else None,
            normalize_correct_index(item.correct_answer, item.options),
            answer.time_taken_seconds if answer is not None else 0,
            None,
            correct_mark,
            wrong_mark,
        )

    result.total_score = round(max(0.0, result.total_score), 2)
    result.total_correct = max(0, result.total_correct)
    result.time_taken = sum(outcome.time_taken_seconds for outcome in result.outcomes)
    for bucket in result.category_scores.values():
        bucket.score = max(0.0, bucket.score)
    return result
