import os
import tempfile
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DB_DIR", tempfile.mkdtemp(prefix="exam_engine_"))
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SYNC_RETRY_DELAY_MS"] = "0"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import exam_engine.models.db  # noqa: F401
from exam_engine.app import app
from exam_engine.database import Base, get_db
from exam_engine.dependencies import get_clock
from exam_engine.models.db import Test, TestKind
from exam_engine.services.auth_service import create_access_token, create_user
from exam_engine.services.catalog_service import add_comprehensive, add_question
from exam_engine.utils.time_utils import FrozenClock

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(username: str | None = None, coins: int = 0):
        counter["n"] += 1
        name = username or f"user{counter['n']}"
        return create_user(db, name, f"{name}@example.com", coins=coins)

    return _make


@pytest.fixture
def add_atomic(db):
    """Add ``count`` questions whose correct answer is option index 1 ("B")."""

    def _add(category: str, count: int, correct_answer: object = "B") -> list:
        questions = [
            add_question(
                db,
                prompt=f"{category} question {index}",
                options=["A", "B", "C", "D"],
                correct_answer=correct_answer,
                category=category,
            )
            for index in range(count)
        ]
        db.commit()
        return questions

    return _add


@pytest.fixture
def add_passage(db):
    """Add ``count`` comprehensive passages, each with ``subs`` sub-questions (answer "B")."""

    def _add(category: str, count: int = 1, subs: int = 3, sub_categories: list | None = None) -> list:
        passages = []
        for index in range(count):
            passages.append(
                add_comprehensive(
                    db,
                    title=f"{category} passage {index}",
                    passage="Read the text.",
                    category=category,
                    sub_questions=[
                        {
                            "question": f"Sub {position}",
                            "options": ["A", "B", "C"],
                            "correctAnswer": "B",
                            "category": (sub_categories or [None] * subs)[position],
                        }
                        for position in range(subs)
                    ],
                )
            )
        db.commit()
        return passages

    return _add


@pytest.fixture
def make_test(db):
    def _make(
        refs: list[dict],
        time_seconds: int = 600,
        kind: TestKind = TestKind.PRACTICE,
        starts_at: datetime | None = None,
    ) -> Test:
        test = Test(
            kind=kind.value,
            title="Sample test",
            time_seconds=time_seconds,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(seconds=time_seconds) if starts_at else None,
        )
        test.refs = refs
        db.add(test)
        db.commit()
        db.refresh(test)
        return test

    return _make


def question_refs(questions: list) -> list[dict]:
    return [{"id": q.id, "type": "question"} for q in questions]


@pytest.fixture
def client(session_factory, clock):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
