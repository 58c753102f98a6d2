"""Coin ledger writes.

None of these functions commit: they run inside the caller's transaction
so a balance change and the state change that justifies it land together.
"""
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session as DBSession

from exam_engine.models.db.challenge import CoinLedgerEntry
from exam_engine.models.db.user import User

logger = logging.getLogger(__name__)

REASON_CHALLENGE_WIN = "challenge_win"
REASON_CHALLENGE_LOSS = "challenge_loss"


def _apply(
    db: DBSession,
    user_id: int,
    delta: int,
    reason: str,
    challenge_id: str | None,
) -> CoinLedgerEntry:
    entry = CoinLedgerEntry(
        user_id=user_id,
        delta=delta,
        reason=reason,
        challenge_id=challenge_id,
    )
    db.add(entry)
    db.execute(
        update(User).where(User.id == user_id).values(coins=User.coins + delta)
    )
    # Flush now so a duplicate (challenge, user) entry fails inside this transaction
    db.flush()
    return entry


def credit(
    db: DBSession,
    user_id: int,
    amount: int,
    reason: str,
    challenge_id: str | None = None,
) -> CoinLedgerEntry:
    """Add coins to a user."""
    if amount < 0:
        raise ValueError("Credit amount must be non-negative")
    return _apply(db, user_id, amount, reason, challenge_id)


def debit(
    db: DBSession,
    user_id: int,
    amount: int,
    reason: str,
    challenge_id: str | None = None,
) -> CoinLedgerEntry:
    """Remove coins from a user."""
    if amount < 0:
        raise ValueError("Debit amount must be non-negative")
    return _apply(db, user_id, -amount, reason, challenge_id)


def transfer(
    db: DBSession,
    winner_id: int,
    loser_id: int,
    challenge_id: str,
    reward: int,
    penalty: int,
) -> tuple[CoinLedgerEntry, CoinLedgerEntry]:
    """Reward the winner and penalize the loser of a challenge."""
    won = credit(db, winner_id, reward, REASON_CHALLENGE_WIN, challenge_id)
    lost = debit(db, loser_id, penalty, REASON_CHALLENGE_LOSS, challenge_id)
    logger.info(
        f"Challenge {challenge_id}: user {winner_id} +{reward}, user {loser_id} -{penalty}"
    )
    return won, lost
