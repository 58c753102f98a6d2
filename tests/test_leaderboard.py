import pytest

from conftest import auth_headers, question_refs
from exam_engine.errors import Forbidden, NotFound, TestWindowOpen
from exam_engine.models.db import TestKind
from exam_engine.services import leaderboard_service
from exam_engine.services.answer_sync import AnswerSync
from exam_engine.services.session_machine import TestSession


def _take(db, clock, test, user, choices, ticks=0) -> TestSession:
    """Open a live session and pick ``choices[i]`` for question ``i``."""
    session = TestSession(
        db, test.id, TestKind.LIVE, user.id, clock=clock, sync=AnswerSync(db, retry_delay_ms=0)
    )
    session.load()
    for index, choice in enumerate(choices):
        session.jump_to(index)
        session.select_answer(choice)
    for _ in range(ticks):
        session.tick()
    return session


@pytest.fixture
def live_round(db, clock, make_user, add_atomic, make_test):
    """Three participants: all correct, two right and one wrong, nothing answered."""
    test = make_test(
        question_refs(add_atomic("Math", 3)),
        time_seconds=600,
        kind=TestKind.LIVE,
        starts_at=clock.now(),
    )
    ada, ben, cy = make_user("ada"), make_user("ben"), make_user("cy")
    _take(db, clock, test, ada, [1, 1, 1])
    _take(db, clock, test, ben, [1, 1, 0])
    _take(db, clock, test, cy, [])
    return test, (ada, ben, cy)


def test_evaluate_locks_every_participant(db, clock, live_round) -> None:
    test, (ada, _, _) = live_round
    clock.advance(601)

    summary = leaderboard_service.evaluate_live_test(db, test.id, ada, clock.now())

    assert summary == {"testId": test.id, "evaluatedUsers": 3, "participantCount": 3}
    results = leaderboard_service.live_results(db, test.id)
    assert sorted(r.total_score for r in results) == [0.0, 1.75, 3.0]

    again = leaderboard_service.evaluate_live_test(db, test.id, ada, clock.now())
    assert again["evaluatedUsers"] == 3
    assert len(leaderboard_service.live_results(db, test.id)) == 3


def test_leaderboard_ranks_and_percentiles(db, clock, live_round) -> None:
    test, (ada, ben, cy) = live_round
    clock.advance(601)
    leaderboard_service.evaluate_live_test(db, test.id, ada, clock.now())

    entries = leaderboard_service.leaderboard(db, test.id, clock.now())

    assert [e.user_id for e in entries] == [ada.id, ben.id, cy.id]
    assert [e.rank for e in entries] == [1, 2, 3]
    assert [e.percentile for e in entries] == [100, 67, 33]
    assert entries[0].to_dict()["username"] == "ada"
    assert entries[1].total_correct == 2


def test_equal_scores_rank_faster_first(db, clock, make_user, add_atomic, make_test) -> None:
    test = make_test(
        question_refs(add_atomic("Math", 2)),
        time_seconds=600,
        kind=TestKind.LIVE,
        starts_at=clock.now(),
    )
    slow, fast = make_user("slow"), make_user("fast")
    _take(db, clock, test, slow, [1], ticks=5)
    _take(db, clock, test, fast, [1], ticks=2)
    clock.advance(601)
    leaderboard_service.evaluate_live_test(db, test.id, slow, clock.now())

    entries = leaderboard_service.leaderboard(db, test.id, clock.now())

    assert [e.user_id for e in entries] == [fast.id, slow.id]
    assert entries[0].total_score == entries[1].total_score
    assert entries[0].time_taken < entries[1].time_taken


def test_question_stats(db, clock, live_round) -> None:
    test, (ada, _, _) = live_round
    clock.advance(601)
    leaderboard_service.evaluate_live_test(db, test.id, ada, clock.now())

    stats = leaderboard_service.question_stats(db, test.id, clock.now())

    assert [s.question_id for s in stats] == [ref["id"] for ref in test.refs]
    assert [(s.total_attempts, s.correct_count) for s in stats] == [(2, 2), (2, 2), (2, 1)]
    assert stats[2].correct_percentage == 50.0
    assert stats[0].to_dict()["correctPercentage"] == 100.0


def test_rankings_wait_for_window_to_close(db, clock, live_round) -> None:
    test, (ada, _, _) = live_round
    clock.advance(599)

    with pytest.raises(TestWindowOpen):
        leaderboard_service.evaluate_live_test(db, test.id, ada, clock.now())
    with pytest.raises(TestWindowOpen):
        leaderboard_service.leaderboard(db, test.id, clock.now())
    with pytest.raises(TestWindowOpen):
        leaderboard_service.question_stats(db, test.id, clock.now())


def test_only_creator_may_evaluate(db, clock, live_round) -> None:
    test, (ada, ben, _) = live_round
    test.created_by = ada.id
    db.commit()
    clock.advance(601)

    with pytest.raises(Forbidden):
        leaderboard_service.evaluate_live_test(db, test.id, ben, clock.now())
    assert leaderboard_service.evaluate_live_test(db, test.id, ada, clock.now())["evaluatedUsers"] == 3


def test_evaluate_without_participants(db, clock, make_user, add_atomic, make_test) -> None:
    user = make_user()
    test = make_test(
        question_refs(add_atomic("Math", 2)),
        time_seconds=300,
        kind=TestKind.LIVE,
        starts_at=clock.now(),
    )
    clock.advance(300)

    with pytest.raises(NotFound):
        leaderboard_service.evaluate_live_test(db, test.id, user, clock.now())
    assert leaderboard_service.leaderboard(db, test.id, clock.now()) == []


def test_live_test_endpoints(client, db, clock, live_round) -> None:
    test, (ada, ben, _) = live_round
    base = f"/api/live-tests/{test.id}"

    response = client.get(f"{base}/leaderboard", headers=auth_headers(ben.id))
    assert response.status_code == 409
    assert response.json()["code"] == "TEST_WINDOW_OPEN"

    clock.advance(601)
    response = client.post(f"{base}/evaluate", headers=auth_headers(ada.id))
    assert response.status_code == 200
    assert response.json()["evaluatedUsers"] == 3

    response = client.get(f"{base}/leaderboard", headers=auth_headers(ben.id))
    assert response.status_code == 200
    body = response.json()
    assert body["participantCount"] == 3
    assert [e["rank"] for e in body["entries"]] == [1, 2, 3]
    assert body["position"]["userId"] == ben.id
    assert body["position"]["rank"] == 2

    response = client.get(f"{base}/question-stats", headers=auth_headers(ben.id))
    assert response.status_code == 200
    assert [q["correctCount"] for q in response.json()["questions"]] == [2, 2, 1]
