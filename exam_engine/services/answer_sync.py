"""Flattened answer sets and retrying persistence of in-progress attempts."""
import logging
import time
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from exam_engine.config import SYNC_MAX_RETRIES, SYNC_RETRY_DELAY_MS
from exam_engine.errors import SyncFailure
from exam_engine.models.db.attempt import AttemptSession
from exam_engine.models.db.question import ComprehensiveQuestion
from exam_engine.models.db.test import QuestionType
from exam_engine.services import attempt_store
from exam_engine.services.catalog_service import Catalog

logger = logging.getLogger(__name__)


def sub_answer_id(parent_id: str, index: int) -> str:
    """Synthetic id of the ``index``-th sub-question of a comprehensive item."""
    return f"{parent_id}_{index}"


def sub_answer_position(answer_id: str, parent_id: str) -> int | None:
    """Position encoded in a synthetic sub-answer id, or None if malformed."""
    prefix = f"{parent_id}_"
    if not answer_id.startswith(prefix):
        return None
    suffix = answer_id[len(prefix):]
    return int(suffix) if suffix.isdigit() else None


@dataclass
class AttemptAnswer:
    """One flattened answer. ``selected`` None means not attempted."""

    question_id: str
    selected: int | None = None
    time_taken_seconds: int = 0
    parent_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AttemptAnswer":
        selected = data.get("selected")
        if isinstance(selected, bool) or not isinstance(selected, int) or selected < 0:
            selected = None
        return cls(
            question_id=str(data["questionId"]),
            selected=selected,
            time_taken_seconds=max(0, int(data.get("timeTakenSeconds") or 0)),
            parent_id=data.get("parentId"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "selected": self.selected,
            "timeTakenSeconds": self.time_taken_seconds,
            "parentId": self.parent_id,
        }


@dataclass
class GroupedAnswer:
    """An answer per test reference; comprehensive items carry one entry per sub-question."""

    question_id: str
    question_type: str
    selected: int | None = None
    time_taken_seconds: int = 0
    sub_selected: list[int | None] = field(default_factory=list)
    sub_times: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "questionId": self.question_id,
            "type": self.question_type,
            "timeTakenSeconds": self.time_taken_seconds,
        }
        if self.question_type == QuestionType.COMPREHENSIVE.value:
            data["selected"] = list(self.sub_selected)
            data["subTimes"] = list(self.sub_times)
        else:
            data["selected"] = self.selected
        return data


def group_by_parent(answers: list[AttemptAnswer]) -> list[GroupedAnswer]:
    """
    Regroup flattened answers: sub-answers sharing a ``parent_id`` fold into
    one comprehensive entry with summed time, ordered by their position.
    Entries keep the order in which each id first appears.
    """
    grouped: list[GroupedAnswer] = []
    parents: dict[str, GroupedAnswer] = {}

    for answer in answers:
        if answer.parent_id is None:
            grouped.append(
                GroupedAnswer(
                    question_id=answer.question_id,
                    question_type=QuestionType.QUESTION.value,
                    selected=answer.selected,
                    time_taken_seconds=answer.time_taken_seconds,
                )
            )
            continue

        parent = parents.get(answer.parent_id)
        if parent is None:
            parent = GroupedAnswer(
                question_id=answer.parent_id,
                question_type=QuestionType.COMPREHENSIVE.value,
            )
            parents[answer.parent_id] = parent
            grouped.append(parent)

        position = sub_answer_position(answer.question_id, answer.parent_id)
        if position is None:
            position = len(parent.sub_selected)
        while len(parent.sub_selected) <= position:
            parent.sub_selected.append(None)
            parent.sub_times.append(0)
        parent.sub_selected[position] = answer.selected
        parent.sub_times[position] = answer.time_taken_seconds
        parent.time_taken_seconds = sum(parent.sub_times)

    return grouped


class FlatAnswerSet:
    """
    Arena of flattened answers for one attempt.

    Slots are laid out in test order; every comprehensive reference expands
    into one slot per sub-question. ``parents`` maps a comprehensive id to
    the slot indices of its sub-answers.
    """

    def __init__(self) -> None:
        self.slots: list[AttemptAnswer] = []
        self.parents: dict[str, list[int]] = {}
        self._index: dict[str, int] = {}

    @classmethod
    def from_refs(cls, refs: list[dict[str, Any]], catalog: Catalog) -> "FlatAnswerSet":
        arena = cls()
        for ref in refs:
            if ref["type"] == QuestionType.COMPREHENSIVE.value:
                item = catalog.get(ref["id"], ref["type"])
                if not isinstance(item, ComprehensiveQuestion):
                    # Unresolvable passage: nothing to answer, evaluation records it
                    continue
                for index, _ in enumerate(item.sub_questions):
                    arena._append(
                        AttemptAnswer(
                            question_id=sub_answer_id(item.id, index),
                            parent_id=item.id,
                        )
                    )
            else:
                arena._append(AttemptAnswer(question_id=ref["id"]))
        return arena

    def _append(self, answer: AttemptAnswer) -> None:
        self._index[answer.question_id] = len(self.slots)
        if answer.parent_id is not None:
            self.parents.setdefault(answer.parent_id, []).append(len(self.slots))
        self.slots.append(answer)

    def __len__(self) -> int:
        return len(self.slots)

    def __getitem__(self, index: int) -> AttemptAnswer:
        return self.slots[index]

    def get(self, question_id: str) -> AttemptAnswer | None:
        index = self._index.get(question_id)
        return None if index is None else self.slots[index]

    def children(self, parent_id: str) -> list[AttemptAnswer]:
        return [self.slots[i] for i in self.parents.get(parent_id, [])]

    def hydrate(self, stored: list[dict[str, Any]]) -> None:
        """Copy stored selections and times into matching slots; unknown ids are ignored."""
        for data in stored:
            slot = self.get(str(data.get("questionId")))
            if slot is None:
                continue
            restored = AttemptAnswer.from_dict(data)
            slot.selected = restored.selected
            slot.time_taken_seconds = max(slot.time_taken_seconds, restored.time_taken_seconds)

    def apply(self, answers: list[AttemptAnswer]) -> list[AttemptAnswer]:
        """Apply client answers to known slots; returns the ones that matched."""
        applied: list[AttemptAnswer] = []
        for answer in answers:
            slot = self.get(answer.question_id)
            if slot is None:
                logger.warning(f"Ignoring answer for unknown question {answer.question_id}")
                continue
            slot.selected = answer.selected
            slot.time_taken_seconds = max(slot.time_taken_seconds, answer.time_taken_seconds)
            applied.append(slot)
        return applied

    def to_dicts(self) -> list[dict[str, Any]]:
        return [slot.to_dict() for slot in self.slots]

    def grouped(self) -> list[GroupedAnswer]:
        return group_by_parent(self.slots)


class AnswerSync:
    """
    Persists attempt state through ``attempt_store`` with bounded retries.

    Database errors are retried with exponential backoff; after
    ``max_retries`` attempts a ``SyncFailure`` is raised.
    """

    def __init__(
        self,
        db: DBSession,
        max_retries: int = SYNC_MAX_RETRIES,
        retry_delay_ms: int = SYNC_RETRY_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.db = db
        self.max_retries = max(1, max_retries)
        self.retry_delay_ms = max(0, retry_delay_ms)
        self._sleep = sleep

    def run(
        self,
        attempt_id: str | None,
        operation: Callable[[], Any],
        guard: AbstractContextManager | None = None,
    ) -> Any:
        """
        Call ``operation`` until it stops raising database errors.

        ``guard`` (a lock) is held around each call and each rollback but not
        during the backoff wait.
        """
        guard = guard or nullcontext()
        last_error: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                with guard:
                    return operation()
            except SQLAlchemyError as e:
                with guard:
                    self.db.rollback()
                last_error = e
                if attempt + 1 < self.max_retries:
                    wait_ms = self.retry_delay_ms * (2**attempt)
                    logger.warning(
                        f"Sync of attempt {attempt_id} failed, retrying in {wait_ms} ms "
                        f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    if wait_ms:
                        self._sleep(wait_ms / 1000)
        logger.error(f"Giving up syncing attempt {attempt_id}: {last_error}")
        raise SyncFailure(attempt_id, self.max_retries, last_error)

    def restore(self, test_id: str, user_id: int, test_kind: str) -> AttemptSession | None:
        return self.run(
            None, lambda: attempt_store.restore(self.db, test_id, user_id, test_kind)
        )

    def create(
        self,
        test_id: str,
        user_id: int,
        test_kind: str,
        answers: list[dict[str, Any]],
        started_at: datetime,
    ) -> AttemptSession:
        return self.run(
            None,
            lambda: attempt_store.create_session(
                self.db, test_id, user_id, test_kind, answers, started_at
            ),
        )

    def persist(
        self,
        attempt_id: str,
        answers: list[dict[str, Any]],
        now: datetime,
        tab_switch_count: int | None = None,
        time_taken: int | None = None,
    ) -> AttemptSession:
        return self.run(
            attempt_id,
            lambda: attempt_store.persist(
                self.db, attempt_id, answers, now, tab_switch_count, time_taken
            ),
        )

    def lock(
        self,
        attempt_id: str,
        final_answers: list[dict[str, Any]],
        now: datetime,
        tab_switch_count: int | None = None,
        time_taken: int | None = None,
    ) -> tuple[AttemptSession, bool]:
        return self.run(
            attempt_id,
            lambda: attempt_store.lock(
                self.db, attempt_id, final_answers, now, tab_switch_count, time_taken
            ),
        )
