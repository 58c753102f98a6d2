"""Question catalog: lookup, answer normalization and ingestion."""
import logging
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession, selectinload

from exam_engine.models.db.question import ComprehensiveQuestion, Question, SubQuestion
from exam_engine.models.db.test import QuestionType

logger = logging.getLogger(__name__)

CatalogItem = Question | ComprehensiveQuestion


class Catalog(Protocol):
    """Anything that resolves a question reference to its body."""

    def get(self, question_id: str, question_type: str) -> CatalogItem | None: ...


def normalize_correct_index(correct: Any, options: list[str]) -> int | None:
    """Return the option index of an authored correct answer, or None.

    Authored answers are either the option text or the option index
    (as an int or a digit string). Text matches win over digit parsing so
    numeric option labels resolve by text.
    """
    if correct is None or isinstance(correct, bool):
        return None
    if isinstance(correct, int):
        return correct if 0 <= correct < len(options) else None
    if isinstance(correct, str):
        if correct in options:
            return options.index(correct)
        stripped = correct.strip()
        if stripped in options:
            return options.index(stripped)
        if stripped.isdigit():
            index = int(stripped)
            return index if 0 <= index < len(options) else None
    return None


class QuestionCatalog:
    """Database-backed catalog with a per-instance cache."""

    def __init__(self, db: DBSession) -> None:
        self.db = db
        self._cache: dict[tuple[str, str], CatalogItem | None] = {}

    def get(self, question_id: str, question_type: str) -> CatalogItem | None:
        key = (question_type, question_id)
        if key in self._cache:
            return self._cache[key]

        item: CatalogItem | None
        if question_type == QuestionType.QUESTION.value:
            item = self.db.get(Question, question_id)
        elif question_type == QuestionType.COMPREHENSIVE.value:
            item = self.db.execute(
                select(ComprehensiveQuestion)
                .options(selectinload(ComprehensiveQuestion.sub_questions))
                .where(ComprehensiveQuestion.id == question_id)
            ).scalar_one_or_none()
        else:
            item = None

        self._cache[key] = item
        return item

    def preload(self, refs: list[dict[str, Any]]) -> None:
        """Fetch all bodies for a reference list in two queries."""
        atomic_ids = [r["id"] for r in refs if r.get("type") == QuestionType.QUESTION.value]
        comp_ids = [r["id"] for r in refs if r.get("type") == QuestionType.COMPREHENSIVE.value]

        if atomic_ids:
            rows = self.db.execute(
                select(Question).where(Question.id.in_(atomic_ids))
            ).scalars().all()
            found = {row.id: row for row in rows}
            for qid in atomic_ids:
                self._cache[(QuestionType.QUESTION.value, qid)] = found.get(qid)

        if comp_ids:
            rows = self.db.execute(
                select(ComprehensiveQuestion)
                .options(selectinload(ComprehensiveQuestion.sub_questions))
                .where(ComprehensiveQuestion.id.in_(comp_ids))
            ).scalars().all()
            found = {row.id: row for row in rows}
            for cid in comp_ids:
                self._cache[(QuestionType.COMPREHENSIVE.value, cid)] = found.get(cid)


def public_question_view(ref: dict[str, Any], item: CatalogItem | None) -> dict[str, Any]:
    """Client-facing body of a reference, without correct answers."""
    if item is None:
        return {"id": ref["id"], "type": ref["type"], "missing": True}

    if isinstance(item, Question):
        return {
            "id": item.id,
            "type": QuestionType.QUESTION.value,
            "prompt": item.prompt,
            "options": item.options,
            "category": item.category,
            "subCategory": item.sub_category,
            "image": item.image_ref,
        }

    return {
        "id": item.id,
        "type": QuestionType.COMPREHENSIVE.value,
        "title": item.title,
        "passage": item.passage,
        "category": item.category,
        "subCategory": item.sub_category,
        "subQuestions": [
            {
                "id": f"{item.id}_{index}",
                "parentId": item.id,
                "prompt": sub.prompt,
                "options": sub.options,
                "category": sub.effective_category,
                "subCategory": sub.effective_sub_category,
            }
            for index, sub in enumerate(item.sub_questions)
        ],
    }


# Ingestion


def _require_resolvable(correct: Any, options: list[str], label: str) -> None:
    if not options:
        raise ValueError(f"{label}: options are required")
    if normalize_correct_index(correct, options) is None:
        raise ValueError(f"{label}: correct answer {correct!r} matches no option")


def add_question(
    db: DBSession,
    prompt: str,
    options: list[str],
    correct_answer: Any,
    category: str,
    sub_category: str | None = None,
    explanation: str | None = None,
    image_ref: str | None = None,
    question_id: str | None = None,
) -> Question:
    """Add an atomic question. Does not commit."""
    _require_resolvable(correct_answer, options, f"question {prompt[:40]!r}")
    question = Question(
        prompt=prompt,
        category=category,
        sub_category=sub_category,
        explanation=explanation,
        image_ref=image_ref,
    )
    if question_id:
        question.id = question_id
    question.options = options
    question.correct_answer = correct_answer
    db.add(question)
    return question


def add_comprehensive(
    db: DBSession,
    title: str,
    passage: str,
    category: str,
    sub_questions: list[dict[str, Any]],
    sub_category: str | None = None,
    question_id: str | None = None,
) -> ComprehensiveQuestion:
    """Add a comprehensive passage with its ordered sub-questions. Does not commit."""
    if not sub_questions:
        raise ValueError(f"comprehensive {title!r}: at least one sub-question is required")

    parent = ComprehensiveQuestion(
        title=title,
        passage=passage,
        category=category,
        sub_category=sub_category,
    )
    if question_id:
        parent.id = question_id

    for position, data in enumerate(sub_questions):
        options = list(data.get("options") or [])
        correct = data.get("correctAnswer")
        _require_resolvable(correct, options, f"comprehensive {title!r} sub-question {position}")
        sub = SubQuestion(
            position=position,
            prompt=data.get("question") or data.get("prompt") or "",
            explanation=data.get("explanation"),
            category=data.get("category"),
            sub_category=data.get("subCategory"),
        )
        if data.get("id"):
            sub.id = data["id"]
        sub.options = options
        sub.correct_answer = correct
        parent.sub_questions.append(sub)

    db.add(parent)
    return parent


def import_catalog(db: DBSession, payload: dict[str, Any]) -> tuple[int, int]:
    """Import ``{"questions": [...], "comprehensive": [...]}`` and commit.

    Returns:
        Tuple of (atomic count, comprehensive count)
    """
    atomic = 0
    comprehensive = 0
    try:
        for data in payload.get("questions") or []:
            add_question(
                db,
                prompt=data.get("question") or data.get("prompt") or "",
                options=list(data.get("options") or []),
                correct_answer=data.get("correctAnswer"),
                category=data["category"],
                sub_category=data.get("subCategory"),
                explanation=data.get("explanation"),
                image_ref=data.get("image"),
                question_id=data.get("id"),
            )
            atomic += 1
        for data in payload.get("comprehensive") or []:
            add_comprehensive(
                db,
                title=data.get("title") or "",
                passage=data.get("passage") or data.get("content") or "",
                category=data["category"],
                sub_questions=list(data.get("questions") or []),
                sub_category=data.get("subCategory"),
                question_id=data.get("id"),
            )
            comprehensive += 1
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Imported {atomic} questions and {comprehensive} comprehensive passages")
    return atomic, comprehensive
