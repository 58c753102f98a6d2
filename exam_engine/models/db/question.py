"""
Question catalog models: atomic questions and comprehensive passages.
"""

from __future__ import annotations

import random
import uuid
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_engine.database import Base
from exam_engine.utils.json_utils import json_dump, json_load


def _new_id() -> str:
    return uuid.uuid4().hex


class _OptionsMixin:
    """JSON-backed options and authored correct answer."""

    options_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    # Authored answer as given: option text or option index
    correct_answer_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def options(self) -> list[str]:
        """Parse options from JSON."""
        return json_load(self.options_json, [])

    @options.setter
    def options(self, value: list[str] | None) -> None:
        """Serialize options to JSON."""
        self.options_json = json_dump(list(value or []))

    @property
    def correct_answer(self) -> Any:
        """Parse the authored correct answer."""
        return json_load(self.correct_answer_json)

    @correct_answer.setter
    def correct_answer(self, value: Any) -> None:
        self.correct_answer_json = None if value is None else json_dump(value)


class Question(_OptionsMixin, Base):
    """Atomic multiple-choice question."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    sub_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    image_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Selection ordering
    selection_key: Mapped[float] = mapped_column(
        sa.Float, default=random.random, nullable=False, index=True
    )
    last_selected_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Question(id={self.id}, category='{self.category}')>"


class ComprehensiveQuestion(Base):
    """
    Reading passage with embedded sub-questions.
    Never answered as a unit: each sub-question is answered and timed on its own.
    """

    __tablename__ = "comprehensive_questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    passage: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    sub_category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    selection_key: Mapped[float] = mapped_column(
        sa.Float, default=random.random, nullable=False, index=True
    )
    last_selected_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    sub_questions: Mapped[list["SubQuestion"]] = relationship(
        "SubQuestion",
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="SubQuestion.position",
    )


class SubQuestion(_OptionsMixin, Base):
    """Question embedded in a comprehensive passage, in authored order."""

    __tablename__ = "sub_questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    parent_id: Mapped[str] = mapped_column(
        ForeignKey("comprehensive_questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Falls back to the parent's category when unset
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sub_category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("parent_id", "position", name="uq_sub_question_position"),
    )

    parent: Mapped["ComprehensiveQuestion"] = relationship(
        "ComprehensiveQuestion", back_populates="sub_questions"
    )

    @property
    def effective_category(self) -> str:
        return self.category or self.parent.category

    @property
    def effective_sub_category(self) -> str | None:
        return self.sub_category or self.parent.sub_category
