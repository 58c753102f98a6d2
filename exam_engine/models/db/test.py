"""
Test definition model: an ordered list of question references plus a time budget.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from exam_engine.database import Base
from exam_engine.utils.json_utils import json_dump, json_load
from exam_engine.utils.time_utils import elapsed_seconds, ensure_utc


class TestKind(str, enum.Enum):
    """Kinds of test; live and challenge tests run in a scheduled window."""

    __test__ = False

    PRACTICE = "practice"
    LIVE = "live"
    ASSESSMENT = "assessment"
    CHALLENGE = "challenge"

    @property
    def is_scheduled(self) -> bool:
        return self in (TestKind.LIVE, TestKind.CHALLENGE)


class QuestionType(str, enum.Enum):
    """Type tag of an ordered question reference."""

    QUESTION = "question"
    COMPREHENSIVE = "comprehensive"


class Test(Base):
    """
    Test record. Only references are stored; bodies are resolved through the
    catalog when a session loads. Order is fixed at creation.
    """

    __test__ = False
    __tablename__ = "tests"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    kind: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    refs_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    time_seconds: Mapped[int] = mapped_column(nullable=False)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sub_category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Scheduled window (live, challenge)
    starts_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    ends_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    created_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def refs(self) -> list[dict[str, Any]]:
        """Parse ordered question references from JSON."""
        return json_load(self.refs_json, [])

    @refs.setter
    def refs(self, value: list[dict[str, Any]]) -> None:
        self.refs_json = json_dump(
            [{"id": ref["id"], "type": ref["type"]} for ref in value]
        )

    @property
    def test_kind(self) -> TestKind:
        return TestKind(self.kind)

    @property
    def window_end(self) -> datetime | None:
        """Close of the scheduled window: explicit end, else start + budget."""
        if self.ends_at is not None:
            return ensure_utc(self.ends_at)
        if self.starts_at is not None:
            return ensure_utc(self.starts_at) + timedelta(seconds=self.time_seconds)
        return None

    def window_closed(self, now: datetime) -> bool:
        """True from the instant the scheduled window ends."""
        window_end = self.window_end
        return window_end is not None and ensure_utc(now) >= window_end

    def clock_start(self, started_at: datetime | None) -> datetime | None:
        """When an attempt's countdown began.

        Scheduled tests count from the scheduled start, so late joiners get
        less time; others count from the session start.
        """
        if self.test_kind.is_scheduled and self.starts_at is not None:
            return ensure_utc(self.starts_at)
        return ensure_utc(started_at) if started_at is not None else None

    def deadline(self, started_at: datetime | None) -> datetime | None:
        start = self.clock_start(started_at)
        if start is None:
            return None
        return start + timedelta(seconds=self.time_seconds)

    def remaining_seconds(self, now: datetime, started_at: datetime | None = None) -> int:
        """Time budget minus elapsed time on the trusted clock, never negative.

        Without a start (an unstarted practice attempt) the full budget remains.
        """
        start = self.clock_start(started_at)
        if start is None:
            return self.time_seconds
        return max(0, self.time_seconds - elapsed_seconds(start, now))

    def __repr__(self) -> str:
        return f"<Test(id={self.id}, kind='{self.kind}', questions={len(self.refs)})>"
