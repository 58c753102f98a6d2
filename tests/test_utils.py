from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from exam_engine.models.db import TestKind
from exam_engine.utils import json_utils, time_utils, validation


def test_json_round_trip() -> None:
    payload = {"message": "привет", "count": 2}
    dumped = json_utils.json_dump(payload)
    assert "привет" in dumped
    assert json_utils.json_load(dumped) == payload


def test_json_load_falls_back_on_bad_input() -> None:
    assert json_utils.json_load(None, []) == []
    assert json_utils.json_load("", {"fallback": True}) == {"fallback": True}
    assert json_utils.json_load("{broken", []) == []


def test_fingerprint_ignores_key_order() -> None:
    first = json_utils.fingerprint([{"questionId": "q1", "selected": 1}])
    second = json_utils.fingerprint([{"selected": 1, "questionId": "q1"}])
    changed = json_utils.fingerprint([{"questionId": "q1", "selected": 2}])

    assert first == second
    assert first != changed
    assert len(first) == 64


def test_ensure_utc_treats_naive_as_utc() -> None:
    naive = datetime(2026, 1, 1, 8, 30)
    assert time_utils.ensure_utc(naive) == datetime(2026, 1, 1, 8, 30, tzinfo=timezone.utc)

    offset = datetime(2026, 1, 1, 10, 30, tzinfo=timezone(timedelta(hours=2)))
    assert time_utils.ensure_utc(offset).hour == 8


def test_elapsed_seconds_never_negative() -> None:
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert time_utils.elapsed_seconds(start, start + timedelta(seconds=90.7)) == 90
    assert time_utils.elapsed_seconds(start, start - timedelta(seconds=5)) == 0
    assert time_utils.elapsed_seconds(start.replace(tzinfo=None), start + timedelta(seconds=3)) == 3


def test_frozen_clock_advances_only_when_told() -> None:
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    clock = time_utils.FrozenClock(start)

    assert clock.now() == start
    assert clock.advance(30) == start + timedelta(seconds=30)
    clock.set(start.replace(tzinfo=None))
    assert clock.now() == start


def test_validate_id() -> None:
    assert validation.validate_id("testId", "  abc123 ") == "abc123"
    with pytest.raises(HTTPException):
        validation.validate_id("testId", "   ")
    with pytest.raises(HTTPException):
        validation.validate_id("testId", "../etc")
    with pytest.raises(HTTPException):
        validation.validate_id("testId", "x" * 65)


def test_validate_test_kind() -> None:
    assert validation.validate_test_kind("challenge") == TestKind.CHALLENGE
    with pytest.raises(HTTPException) as exc_info:
        validation.validate_test_kind("quiz")
    assert exc_info.value.status_code == 404
