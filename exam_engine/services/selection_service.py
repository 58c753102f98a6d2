"""Question selection for generated tests."""
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from exam_engine.config import SELECTION_POOL_FACTOR
from exam_engine.errors import EmptySelection, InsufficientQuestions
from exam_engine.models.db.question import ComprehensiveQuestion, Question
from exam_engine.models.db.test import QuestionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionRequest:
    """How many atomic and comprehensive questions to draw from one category."""

    category: str
    count_atomic: int = 0
    count_comprehensive: int = 0

    @property
    def total(self) -> int:
        return self.count_atomic + self.count_comprehensive


def _claim_candidates(
    db: DBSession,
    model: type[Question] | type[ComprehensiveQuestion],
    category: str,
    count: int,
) -> list[Any]:
    """
    Read up to ``count * SELECTION_POOL_FACTOR`` rows of a category,
    least recently selected first, locking them against concurrent selectors.
    Rows already locked by another transaction are skipped.
    """
    pool_size = count * max(1, SELECTION_POOL_FACTOR)
    stmt = (
        select(model)
        .where(model.category == category)
        .order_by(model.last_selected_at.asc().nulls_first(), model.selection_key)
        .limit(pool_size)
        .with_for_update(skip_locked=True)
    )
    return list(db.execute(stmt).scalars().all())


def _draw(
    db: DBSession,
    model: type[Question] | type[ComprehensiveQuestion],
    category: str,
    count: int,
    kind: str,
    rng: random.Random,
) -> list[Any]:
    if count == 0:
        return []
    candidates = _claim_candidates(db, model, category, count)
    if len(candidates) < count:
        raise InsufficientQuestions(category, kind, count, len(candidates))

    # Stalest rows first; random choice among equally stale ones
    never_selected = [row for row in candidates if row.last_selected_at is None]
    if len(never_selected) >= count:
        return rng.sample(never_selected, count)
    picked = list(never_selected)
    rest = [row for row in candidates if row.last_selected_at is not None]
    picked.extend(rest[: count - len(picked)])
    return picked


def _merge_requests(requests: list[SelectionRequest]) -> list[SelectionRequest]:
    """Combine repeated categories so one row is never drawn twice."""
    merged: dict[str, SelectionRequest] = {}
    for request in requests:
        current = merged.get(request.category)
        if current is None:
            merged[request.category] = request
        else:
            merged[request.category] = SelectionRequest(
                request.category,
                current.count_atomic + request.count_atomic,
                current.count_comprehensive + request.count_comprehensive,
            )
    return list(merged.values())


def select_questions(
    db: DBSession,
    requests: list[SelectionRequest],
    now: datetime,
    rng: random.Random | None = None,
) -> list[dict[str, str]]:
    """
    Select an ordered list of question references.

    Atomic and comprehensive questions are drawn independently, shuffled
    together within each category, categories are concatenated in request
    order, and the result is shuffled once more.

    Every category is checked before any selection marker is touched, and
    nothing is committed here: the caller commits together with the test
    that stores the references.

    Raises:
        EmptySelection: requested total is zero.
        InsufficientQuestions: a category cannot satisfy its counts.
    """
    rng = rng or random.Random()
    if sum(request.total for request in requests) == 0:
        raise EmptySelection()
    requests = _merge_requests(requests)

    drawn: list[tuple[list[Question], list[ComprehensiveQuestion]]] = []
    for request in requests:
        atomic = _draw(
            db, Question, request.category, request.count_atomic,
            QuestionType.QUESTION.value, rng,
        )
        comprehensive = _draw(
            db, ComprehensiveQuestion, request.category, request.count_comprehensive,
            QuestionType.COMPREHENSIVE.value, rng,
        )
        drawn.append((atomic, comprehensive))

    refs: list[dict[str, str]] = []
    seen: set[tuple[str, str]] = set()
    for atomic, comprehensive in drawn:
        category_refs = [
            {"id": row.id, "type": QuestionType.QUESTION.value} for row in atomic
        ] + [
            {"id": row.id, "type": QuestionType.COMPREHENSIVE.value} for row in comprehensive
        ]
        rng.shuffle(category_refs)
        for ref in category_refs:
            key = (ref["type"], ref["id"])
            if key in seen:
                continue
            seen.add(key)
            refs.append(ref)

        for row in [*atomic, *comprehensive]:
            row.last_selected_at = now
            row.selection_key = rng.random()

    rng.shuffle(refs)
    db.flush()

    logger.info(
        f"Selected {len(refs)} questions from "
        f"{', '.join(request.category for request in requests)}"
    )
    return refs
