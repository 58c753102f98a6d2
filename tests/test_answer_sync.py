import pytest
from sqlalchemy.exc import OperationalError

from conftest import question_refs
from exam_engine.errors import AlreadyLocked, StaleSubmission, SyncFailure
from exam_engine.services import attempt_store
from exam_engine.services.answer_sync import (
    AnswerSync,
    AttemptAnswer,
    FlatAnswerSet,
    group_by_parent,
    sub_answer_id,
)
from exam_engine.services.catalog_service import QuestionCatalog


def test_group_by_parent_folds_sub_answers() -> None:
    answers = [
        AttemptAnswer("q1", selected=2, time_taken_seconds=5),
        AttemptAnswer("p_0", selected=1, time_taken_seconds=3, parent_id="p"),
        AttemptAnswer("p_1", selected=None, time_taken_seconds=4, parent_id="p"),
        AttemptAnswer("p_2", selected=0, time_taken_seconds=2, parent_id="p"),
    ]

    grouped = group_by_parent(answers)

    assert [g.question_id for g in grouped] == ["q1", "p"]
    parent = grouped[1]
    assert parent.question_type == "comprehensive"
    assert parent.sub_selected == [1, None, 0]
    assert parent.sub_times == [3, 4, 2]
    assert parent.time_taken_seconds == 9


def test_group_by_parent_orders_sub_answers_by_position() -> None:
    answers = [
        AttemptAnswer("p_1", selected=1, parent_id="p"),
        AttemptAnswer("p_0", selected=0, parent_id="p"),
    ]
    assert group_by_parent(answers)[0].sub_selected == [0, 1]


def test_negative_selection_means_not_attempted() -> None:
    answer = AttemptAnswer.from_dict({"questionId": "q", "selected": -1, "timeTakenSeconds": 3})
    assert answer.selected is None
    assert answer.time_taken_seconds == 3


def test_flat_answer_set_expands_comprehensive(db, add_atomic, add_passage) -> None:
    questions = add_atomic("Math", 1)
    (passage,) = add_passage("English", subs=3)
    refs = question_refs(questions) + [{"id": passage.id, "type": "comprehensive"}]

    arena = FlatAnswerSet.from_refs(refs, QuestionCatalog(db))

    assert len(arena) == 4
    assert arena[0].parent_id is None
    assert [a.question_id for a in arena.children(passage.id)] == [
        sub_answer_id(passage.id, index) for index in range(3)
    ]
    assert arena.parents[passage.id] == [1, 2, 3]


def test_flat_answer_set_ignores_unknown_answers(db, add_atomic) -> None:
    questions = add_atomic("Math", 1)
    arena = FlatAnswerSet.from_refs(question_refs(questions), QuestionCatalog(db))

    applied = arena.apply([AttemptAnswer("other", selected=1), AttemptAnswer(questions[0].id, selected=2)])

    assert len(applied) == 1
    assert arena[0].selected == 2


def test_merge_keeps_time_monotonic() -> None:
    stored = [{"questionId": "q1", "selected": 1, "timeTakenSeconds": 30, "parentId": None}]
    incoming = [{"questionId": "q1", "selected": 2, "timeTakenSeconds": 10, "parentId": None}]

    merged = attempt_store.merge_answers(stored, incoming)

    assert merged == [{"questionId": "q1", "selected": 2, "timeTakenSeconds": 30, "parentId": None}]


def _new_session(db, clock, make_user, add_atomic, make_test):
    user = make_user()
    questions = add_atomic("Math", 2)
    test = make_test(question_refs(questions))
    answers = [{"questionId": q.id, "selected": None, "timeTakenSeconds": 0, "parentId": None} for q in questions]
    session = attempt_store.create_session(db, test.id, user.id, test.kind, answers, clock.now())
    return session, answers


def test_persist_never_decreases_time(db, clock, make_user, add_atomic, make_test) -> None:
    session, answers = _new_session(db, clock, make_user, add_atomic, make_test)
    first = [dict(answers[0], selected=1, timeTakenSeconds=20)]
    attempt_store.persist(db, session.id, first, clock.now())

    second = [dict(answers[0], selected=3, timeTakenSeconds=5)]
    stored = attempt_store.persist(db, session.id, second, clock.now(), tab_switch_count=2)

    by_id = {a["questionId"]: a for a in stored.answers}
    assert by_id[answers[0]["questionId"]]["selected"] == 3
    assert by_id[answers[0]["questionId"]]["timeTakenSeconds"] == 20
    assert stored.tab_switch_count == 2
    assert stored.version == 3


def test_lock_is_idempotent_for_identical_payload(db, clock, make_user, add_atomic, make_test) -> None:
    session, answers = _new_session(db, clock, make_user, add_atomic, make_test)
    final = [dict(answers[0], selected=1, timeTakenSeconds=7), answers[1]]

    locked, newly = attempt_store.lock(db, session.id, final, clock.now())
    again, newly_again = attempt_store.lock(db, session.id, list(reversed(final)), clock.now())

    assert newly is True
    assert newly_again is False
    assert locked.locked and again.locked
    assert again.lock_fingerprint == locked.lock_fingerprint


def test_lock_with_different_payload_is_stale(db, clock, make_user, add_atomic, make_test) -> None:
    session, answers = _new_session(db, clock, make_user, add_atomic, make_test)
    attempt_store.lock(db, session.id, answers, clock.now())

    changed = [dict(answers[0], selected=2)]
    with pytest.raises(StaleSubmission):
        attempt_store.lock(db, session.id, changed, clock.now())

    stored = attempt_store.restore(db, session.test_id, session.user_id, session.test_kind)
    assert stored.answers[0]["selected"] is None


def test_persist_cannot_touch_locked_session(db, clock, make_user, add_atomic, make_test) -> None:
    session, answers = _new_session(db, clock, make_user, add_atomic, make_test)
    attempt_store.lock(db, session.id, answers, clock.now())

    with pytest.raises(AlreadyLocked):
        attempt_store.persist(db, session.id, [dict(answers[0], selected=1)], clock.now())

    stored = attempt_store.restore(db, session.test_id, session.user_id, session.test_kind)
    assert stored.locked is True


def test_answer_sync_retries_then_succeeds(db, clock, make_user, add_atomic, make_test, monkeypatch) -> None:
    session, answers = _new_session(db, clock, make_user, add_atomic, make_test)
    real_persist = attempt_store.persist
    calls = {"n": 0}

    def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] < 3:
            raise OperationalError("UPDATE attempt_sessions", {}, Exception("database is locked"))
        return real_persist(*args, **kwargs)

    monkeypatch.setattr(attempt_store, "persist", flaky)
    delays: list[float] = []
    sync = AnswerSync(db, max_retries=3, retry_delay_ms=100, sleep=delays.append)

    stored = sync.persist(session.id, [dict(answers[0], selected=1)], clock.now())

    assert calls["n"] == 3
    assert delays == [0.1, 0.2]
    assert stored.answers[0]["selected"] == 1


def test_answer_sync_raises_after_retries(db, clock, make_user, add_atomic, make_test, monkeypatch) -> None:
    session, answers = _new_session(db, clock, make_user, add_atomic, make_test)

    def broken(*args, **kwargs):
        raise OperationalError("UPDATE attempt_sessions", {}, Exception("disk I/O error"))

    monkeypatch.setattr(attempt_store, "persist", broken)
    sync = AnswerSync(db, max_retries=2, retry_delay_ms=0)

    with pytest.raises(SyncFailure) as exc_info:
        sync.persist(session.id, answers, clock.now())
    assert exc_info.value.attempts == 2
