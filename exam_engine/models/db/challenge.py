"""
Challenge and coin ledger database models.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_engine.database import Base

if TYPE_CHECKING:
    from exam_engine.models.db.test import Test
    from exam_engine.models.db.user import User


class ChallengeStatus(str, enum.Enum):
    """Lifecycle of a two-participant challenge."""

    PENDING = "pending"  # Waiting for the invitee
    ACCEPTED = "accepted"  # Both may take the test
    COMPLETED = "completed"  # Resolved, coins moved
    EXPIRED = "expired"  # Never accepted before the window closed


class Challenge(Base):
    """A challenge between a creator and an invited user over one shared test."""

    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: uuid.uuid4().hex
    )
    test_id: Mapped[str] = mapped_column(
        ForeignKey("tests.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    creator_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    invited_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=ChallengeStatus.PENDING.value, nullable=False, index=True
    )
    winner_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    accepted_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    test: Mapped["Test"] = relationship("Test")
    creator: Mapped["User"] = relationship("User", foreign_keys=[creator_id])
    invited: Mapped["User"] = relationship("User", foreign_keys=[invited_id])

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.creator_id, self.invited_id)

    def __repr__(self) -> str:
        return f"<Challenge(id={self.id}, status='{self.status}')>"


class CoinLedgerEntry(Base):
    """Signed coin movement; at most one per (challenge, user)."""

    __tablename__ = "coin_ledger"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    challenge_id: Mapped[str | None] = mapped_column(
        ForeignKey("challenges.id", ondelete="SET NULL"), nullable=True
    )
    delta: Mapped[int] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_ledger_challenge_user"),
    )
