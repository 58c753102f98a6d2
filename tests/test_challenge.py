from datetime import timedelta

import pytest
from sqlalchemy import func, select

from exam_engine.errors import ChallengeStateError, EngineError, Forbidden, TestWindowClosed
from exam_engine.models.challenges import ChallengeCreate
from exam_engine.models.db import Challenge, ChallengeStatus, CoinLedgerEntry, Test, TestKind, User
from exam_engine.services import challenge_service, expiry_service, submission_service
from exam_engine.services.answer_sync import AttemptAnswer
from exam_engine.services.session_machine import SessionState, TestSession


@pytest.fixture
def players(make_user):
    return make_user("alice", coins=500), make_user("bob", coins=500)


def _create(db, clock, creator, categories=None, time=600, start_in=0):
    payload = ChallengeCreate(
        invitedUser="bob@example.com",
        categories=categories or [{"category": "Math", "numQuestions": 10, "numComprehensive": 0}],
        time=time,
        startTime=clock.now() + timedelta(seconds=start_in),
    )
    return challenge_service.create_challenge(db, creator, payload, clock.now())


def _submit(db, clock, challenge, user, correct: int):
    """Answer ``correct`` questions with the right option and leave the rest blank."""
    test = db.get(Test, challenge.test_id)
    answers = [
        AttemptAnswer(ref["id"], selected=1 if index < correct else None)
        for index, ref in enumerate(test.refs)
    ]
    return submission_service.submit_attempt(db, test, user.id, answers, clock.now())


def _balances(db, *users):
    for user in users:
        db.refresh(user)
    return tuple(user.coins for user in users)


def test_create_and_accept(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 12)

    challenge = _create(db, clock, alice)
    assert challenge.status == ChallengeStatus.PENDING.value
    assert len(challenge.test.refs) == 10
    assert challenge.test.kind == TestKind.CHALLENGE.value

    with pytest.raises(Forbidden):
        challenge_service.accept_challenge(db, challenge.id, alice, clock.now())

    accepted = challenge_service.accept_challenge(db, challenge.id, bob, clock.now())
    assert accepted.status == ChallengeStatus.ACCEPTED.value

    with pytest.raises(ChallengeStateError):
        challenge_service.accept_challenge(db, challenge.id, bob, clock.now())


def test_cannot_challenge_yourself(db, clock, make_user, add_atomic) -> None:
    bob = make_user("bob")
    add_atomic("Math", 10)

    with pytest.raises(EngineError):
        _create(db, clock, bob)


def test_pending_challenge_cannot_be_started(db, clock, players, add_atomic) -> None:
    alice, _ = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice)

    session = TestSession(db, challenge.test_id, TestKind.CHALLENGE, alice.id, clock=clock)
    with pytest.raises(ChallengeStateError):
        session.load()


def test_winner_gets_reward_and_loser_pays(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice)
    challenge_service.accept_challenge(db, challenge.id, bob, clock.now())

    _submit(db, clock, challenge, alice, correct=8)
    db.refresh(challenge)
    assert challenge.status == ChallengeStatus.ACCEPTED.value

    _submit(db, clock, challenge, bob, correct=5)
    db.refresh(challenge)

    assert challenge.status == ChallengeStatus.COMPLETED.value
    assert challenge.winner_id == alice.id
    assert _balances(db, alice, bob) == (600, 450)


def test_winner_independent_of_submission_order(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice)
    challenge_service.accept_challenge(db, challenge.id, bob, clock.now())

    _submit(db, clock, challenge, bob, correct=5)
    _submit(db, clock, challenge, alice, correct=8)
    db.refresh(challenge)

    assert challenge.winner_id == alice.id
    assert _balances(db, alice, bob) == (600, 450)


def test_tie_moves_no_coins(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice)
    challenge_service.accept_challenge(db, challenge.id, bob, clock.now())

    first = _submit(db, clock, challenge, alice, correct=7)
    second = _submit(db, clock, challenge, bob, correct=7)
    db.refresh(challenge)

    assert first.total_correct == second.total_correct == 7
    assert challenge.status == ChallengeStatus.COMPLETED.value
    assert challenge.winner_id is None
    assert _balances(db, alice, bob) == (500, 500)
    assert db.execute(select(func.count()).select_from(CoinLedgerEntry)).scalar_one() == 0


def test_resolution_transfers_exactly_once(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice)
    challenge_service.accept_challenge(db, challenge.id, bob, clock.now())
    _submit(db, clock, challenge, alice, correct=3)
    _submit(db, clock, challenge, bob, correct=9)

    for _ in range(3):
        challenge_service.resolve_challenge(db, challenge.id, clock.now())
    _submit(db, clock, challenge, bob, correct=9)

    entries = db.execute(select(CoinLedgerEntry)).scalars().all()
    assert sorted((e.user_id, e.delta) for e in entries) == sorted([(bob.id, 100), (alice.id, -50)])
    assert _balances(db, alice, bob) == (450, 600)


def test_failed_transfer_rolls_back_and_raises(db, clock, players, add_atomic, monkeypatch) -> None:
    from sqlalchemy.exc import OperationalError

    from exam_engine.errors import CoinTransferFailed
    from exam_engine.services import ledger_service

    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice)
    challenge_service.accept_challenge(db, challenge.id, bob, clock.now())
    test = db.get(Test, challenge.test_id)

    def broken(*args, **kwargs):
        raise OperationalError("UPDATE users", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger_service, "transfer", broken)
    submission_service.submit_attempt(
        db, test, alice.id, [AttemptAnswer(test.refs[0]["id"], selected=1)], clock.now()
    )
    with pytest.raises(CoinTransferFailed):
        submission_service.submit_attempt(db, test, bob.id, [], clock.now())

    db.refresh(challenge)
    assert challenge.status == ChallengeStatus.ACCEPTED.value
    assert challenge.winner_id is None
    assert _balances(db, alice, bob) == (500, 500)


def test_overdue_pending_challenge_expires(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice, time=300)

    clock.advance(301)
    assert challenge_service.expire_overdue_challenges(db, clock.now()) == 1
    db.refresh(challenge)
    assert challenge.status == ChallengeStatus.EXPIRED.value

    with pytest.raises(ChallengeStateError):
        challenge_service.accept_challenge(db, challenge.id, bob, clock.now())
    with pytest.raises(TestWindowClosed):
        TestSession(db, challenge.test_id, TestKind.CHALLENGE, bob.id, clock=clock).load()


def test_sweep_submits_abandoned_challenge_attempts(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice, time=300)
    challenge_service.accept_challenge(db, challenge.id, bob, clock.now())

    alice_session = TestSession(db, challenge.test_id, TestKind.CHALLENGE, alice.id, clock=clock)
    alice_session.load()
    alice_session.select_answer(1)
    TestSession(db, challenge.test_id, TestKind.CHALLENGE, bob.id, clock=clock).load()

    clock.advance(301)
    assert expiry_service.lock_overdue_sessions(db, clock) == 2

    db.refresh(challenge)
    assert challenge.status == ChallengeStatus.COMPLETED.value
    assert challenge.winner_id == alice.id
    summary = challenge_service.challenge_summary(db, challenge)
    assert [entry["correct"] for entry in summary] == [1, 0]
    assert summary[1]["unanswered"] == 10


def test_coins_only_change_through_resolution(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice)
    challenge_service.accept_challenge(db, challenge.id, bob, clock.now())
    _submit(db, clock, challenge, alice, correct=4)

    assert _balances(db, alice, bob) == (500, 500)
    total = db.execute(select(func.sum(User.coins))).scalar_one()
    assert total == 1000
    assert db.execute(select(func.count()).select_from(Challenge)).scalar_one() == 1


def test_starting_overdue_pending_challenge_expires_it(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice, time=600)

    clock.advance(3600)
    session = TestSession(db, challenge.test_id, TestKind.CHALLENGE, bob.id, clock=clock)
    with pytest.raises(TestWindowClosed):
        session.load()

    assert session.state == SessionState.EXPIRED
    db.refresh(challenge)
    assert challenge.status == ChallengeStatus.EXPIRED.value


def test_window_closes_at_its_end_instant(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice, time=300)
    test = db.get(Test, challenge.test_id)

    clock.advance(299)
    assert not test.window_closed(clock.now())
    assert not challenge_service.is_overdue(challenge, clock.now())

    clock.advance(1)
    assert test.window_closed(clock.now())
    with pytest.raises(ChallengeStateError):
        challenge_service.accept_challenge(db, challenge.id, bob, clock.now())
    db.refresh(challenge)
    assert challenge.status == ChallengeStatus.EXPIRED.value


def test_remaining_time_counts_from_scheduled_start(db, clock, players, add_atomic) -> None:
    alice, _ = players
    add_atomic("Math", 10)
    challenge = _create(db, clock, alice, time=300, start_in=60)

    assert challenge_service.challenge_to_dict(db, challenge, clock.now())["remainingSeconds"] == 300
    clock.advance(160)
    assert challenge_service.challenge_to_dict(db, challenge, clock.now())["remainingSeconds"] == 200
    clock.advance(500)
    assert challenge_service.challenge_to_dict(db, challenge, clock.now())["remainingSeconds"] == 0


def test_invited_user_matched_case_insensitively(db, clock, players, add_atomic) -> None:
    alice, bob = players
    add_atomic("Math", 10)
    payload = ChallengeCreate(
        invitedUser="  Bob@Example.COM ",
        categories=[{"category": "Math", "numQuestions": 10}],
        time=600,
    )

    challenge = challenge_service.create_challenge(db, alice, payload, clock.now())

    assert challenge.invited_id == bob.id
