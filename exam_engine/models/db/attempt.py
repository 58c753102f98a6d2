"""
Attempt session and evaluated result database models.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_engine.database import Base
from exam_engine.utils.json_utils import json_dump, json_load


class AttemptSession(Base):
    """
    Persisted in-progress attempt.
    One row per (test, user, kind); answers are stored flattened.
    ``locked`` flips to true exactly once and is never cleared.
    """

    __tablename__ = "attempt_sessions"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    test_id: Mapped[str] = mapped_column(
        ForeignKey("tests.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    test_kind: Mapped[str] = mapped_column(String(20), nullable=False)

    answers_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    tab_switch_count: Mapped[int] = mapped_column(default=0, nullable=False)
    time_taken: Mapped[int] = mapped_column(default=0, nullable=False)
    # Bumped on every write; conditional updates compare against it
    version: Mapped[int] = mapped_column(default=1, nullable=False)

    started_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    locked: Mapped[bool] = mapped_column(default=False, nullable=False, index=True)
    locked_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    lock_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("test_id", "user_id", "test_kind", name="uq_session_owner"),
    )

    result: Mapped["AttemptResult | None"] = relationship(
        "AttemptResult", back_populates="session", uselist=False
    )

    @property
    def answers(self) -> list[dict[str, Any]]:
        """Parse flattened answers from JSON."""
        return json_load(self.answers_json, [])

    @answers.setter
    def answers(self, value: list[dict[str, Any]]) -> None:
        self.answers_json = json_dump(value)

    def __repr__(self) -> str:
        return (
            f"<AttemptSession(id={self.id}, test_id={self.test_id}, "
            f"user_id={self.user_id}, locked={self.locked})>"
        )


class AttemptResult(Base):
    """Evaluated result of a locked attempt session."""

    __tablename__ = "attempt_results"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    attempt_id: Mapped[str] = mapped_column(
        ForeignKey("attempt_sessions.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    test_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    test_kind: Mapped[str] = mapped_column(String(20), nullable=False)

    total_questions: Mapped[int] = mapped_column(default=0, nullable=False)
    total_attempted: Mapped[int] = mapped_column(default=0, nullable=False)
    total_correct: Mapped[int] = mapped_column(default=0, nullable=False)
    total_score: Mapped[float] = mapped_column(sa.Float, default=0.0, nullable=False)
    accuracy: Mapped[float] = mapped_column(sa.Float, default=0.0, nullable=False)
    confidence: Mapped[float] = mapped_column(sa.Float, default=0.0, nullable=False)
    time_taken: Mapped[int] = mapped_column(default=0, nullable=False)
    tab_switch_count: Mapped[int] = mapped_column(default=0, nullable=False)

    category_scores_json: Mapped[str] = mapped_column(Text, default="{}", nullable=False)
    question_results_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    unresolved_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)

    submitted_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )

    session: Mapped["AttemptSession"] = relationship(
        "AttemptSession", back_populates="result"
    )

    @property
    def category_scores(self) -> dict[str, dict[str, Any]]:
        return json_load(self.category_scores_json, {})

    @category_scores.setter
    def category_scores(self, value: dict[str, dict[str, Any]]) -> None:
        self.category_scores_json = json_dump(value)

    @property
    def question_results(self) -> list[dict[str, Any]]:
        return json_load(self.question_results_json, [])

    @question_results.setter
    def question_results(self, value: list[dict[str, Any]]) -> None:
        self.question_results_json = json_dump(value)

    @property
    def unresolved(self) -> list[dict[str, Any]]:
        return json_load(self.unresolved_json, [])

    @unresolved.setter
    def unresolved(self, value: list[dict[str, Any]]) -> None:
        self.unresolved_json = json_dump(value)
