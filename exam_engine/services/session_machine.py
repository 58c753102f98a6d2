"""
In-process state machine for one user's timed test session.

LOADING -> RESTORING | FRESH -> RUNNING -> LOCKED, plus the terminal EXPIRED
state for a scheduled window that closed before any session was started.
Nothing leaves LOCKED or EXPIRED.

All public methods take the session's re-entrant lock, so a ``SessionTicker``
thread and the caller's thread can drive the same ``TestSession``. Store
writes take the lock per attempt and release it between retries.
"""
import enum
import logging
import threading
from typing import Any

from sqlalchemy.orm import Session as DBSession

from exam_engine.errors import (
    AlreadyLocked,
    SessionNotRunning,
    StaleSubmission,
    SyncFailure,
    TestWindowClosed,
)
from exam_engine.models.db.attempt import AttemptResult, AttemptSession
from exam_engine.models.db.test import Test, TestKind
from exam_engine.services import attempt_store, submission_service
from exam_engine.services.answer_sync import AnswerSync, AttemptAnswer, FlatAnswerSet
from exam_engine.services.catalog_service import QuestionCatalog, public_question_view
from exam_engine.utils.time_utils import Clock, ServerClock

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    LOADING = "loading"
    RESTORING = "restoring"
    FRESH = "fresh"
    RUNNING = "running"
    LOCKED = "locked"
    EXPIRED = "expired"


class TestSession:
    """One user's attempt at one test, held in memory and mirrored to the store."""

    __test__ = False

    def __init__(
        self,
        db: DBSession,
        test_id: str,
        test_kind: TestKind,
        user_id: int,
        clock: Clock | None = None,
        sync: AnswerSync | None = None,
    ) -> None:
        self.db = db
        self.test_id = test_id
        self.test_kind = test_kind
        self.user_id = user_id
        self.clock = clock or ServerClock()
        self.sync = sync or AnswerSync(db)
        self.catalog = QuestionCatalog(db)

        self.state = SessionState.LOADING
        self.test: Test | None = None
        self.attempt: AttemptSession | None = None
        self.answers = FlatAnswerSet()
        self.current_index = 0
        self.remaining_seconds = 0
        self.tab_switch_count = 0
        self.result: AttemptResult | None = None
        self.sync_error: SyncFailure | None = None
        self._dirty = False
        self._lock = threading.RLock()

    # Loading

    def load(self) -> SessionState:
        """
        Resolve the test and its questions, then restore or create the session.

        Raises:
            AlreadyLocked: the user already submitted this test.
            TestNotStarted: before the scheduled start.
            TestWindowClosed: the window closed without a session (state EXPIRED).
        """
        with self._lock:
            if self.state != SessionState.LOADING:
                return self.state

            test = submission_service.get_test(self.db, self.test_id, self.test_kind)
            self.test = test
            self.catalog.preload(test.refs)
            self.answers = FlatAnswerSet.from_refs(test.refs, self.catalog)

            now = self.clock.now()
            prior = self.sync.restore(test.id, self.user_id, test.kind)
            if prior is not None and prior.locked:
                raise AlreadyLocked(test.id, self.user_id, test.kind)

            try:
                submission_service.check_access(
                    self.db, test, self.user_id, now, has_session=prior is not None
                )
            except TestWindowClosed:
                self.state = SessionState.EXPIRED
                raise

            if prior is not None:
                self.state = SessionState.RESTORING
                self.attempt = prior
                self.answers.hydrate(prior.answers)
                self.tab_switch_count = prior.tab_switch_count
                started_at = prior.started_at
                logger.info(f"Restoring attempt {prior.id} for user {self.user_id}")
            else:
                self.state = SessionState.FRESH
                self.attempt = self.sync.create(
                    test.id, self.user_id, test.kind, self.answers.to_dicts(), now
                )
                started_at = self.attempt.started_at

            self.remaining_seconds = test.remaining_seconds(now, started_at)
            self.state = SessionState.RUNNING

            if self.remaining_seconds <= 0:
                logger.info(f"Attempt {self.attempt.id} out of time on load, submitting")
                self.submit()
            return self.state

    # Mutations

    def _require_running(self) -> None:
        if self.state != SessionState.RUNNING:
            raise SessionNotRunning(
                f"Session is {self.state.value}",
                {"testId": self.test_id, "state": self.state.value},
            )

    def _write(self) -> None:
        """One store write of the in-memory state. Runs with the lock held."""
        if self.state != SessionState.RUNNING or not self._dirty:
            return
        attempt_store.persist(
            self.db,
            self.attempt.id,
            self.answers.to_dicts(),
            self.clock.now(),
            tab_switch_count=self.tab_switch_count,
            time_taken=self.time_taken,
        )
        self._dirty = False
        self.sync_error = None

    def _flush(self) -> None:
        """Mirror in-memory state to the store. Failures are kept, not raised.

        Call without holding the lock; it is only taken around each write
        attempt, never during retry waits.
        """
        if self.attempt is None:
            return
        try:
            self.sync.run(self.attempt.id, self._write, guard=self._lock)
        except SyncFailure as e:
            with self._lock:
                self.sync_error = e
        except AlreadyLocked:
            # Locked elsewhere (another tab or the expiry sweep)
            with self._lock:
                self._adopt_remote_lock()

    def _adopt_remote_lock(self) -> None:
        self.state = SessionState.LOCKED
        self._dirty = False
        self.result = submission_service.find_result(self.db, self.attempt.id)
        logger.info(f"Attempt {self.attempt.id} was locked by another writer")

    @property
    def has_unsynced_changes(self) -> bool:
        return self._dirty

    def retry_sync(self) -> bool:
        """Push unsynced state again; True once the store is up to date."""
        self._flush()
        return not self._dirty

    @property
    def time_taken(self) -> int:
        if self.test is None:
            return 0
        return max(0, self.test.time_seconds - self.remaining_seconds)

    @property
    def current_answer(self) -> AttemptAnswer:
        return self.answers[self.current_index]

    def select_answer(self, index: int | None) -> None:
        """Select an option for the current question; None clears it."""
        with self._lock:
            self._require_running()
            if index is not None and index < 0:
                index = None
            self.current_answer.selected = index
            self._dirty = True
        self._flush()

    def apply_answers(self, answers: list[AttemptAnswer]) -> None:
        """Apply a batch of client answers (HTTP sync)."""
        with self._lock:
            self._require_running()
            self.answers.apply(answers)
            self._dirty = True
        self._flush()

    def jump_to(self, index: int) -> None:
        with self._lock:
            self._require_running()
            if not 0 <= index < len(self.answers):
                raise IndexError(f"Question index {index} out of range")
            self.current_index = index

    def next_question(self) -> None:
        with self._lock:
            self._require_running()
            if self.current_index + 1 < len(self.answers):
                self.current_index += 1

    def previous_question(self) -> None:
        with self._lock:
            self._require_running()
            if self.current_index > 0:
                self.current_index -= 1

    def record_tab_switch(self) -> None:
        with self._lock:
            self._require_running()
            self.tab_switch_count += 1
            self._dirty = True
        self._flush()

    def tick(self) -> None:
        """One second passes: charge the current question and count down."""
        with self._lock:
            if self.state != SessionState.RUNNING:
                return
            if len(self.answers):
                self.current_answer.time_taken_seconds += 1
            self.remaining_seconds = max(0, self.remaining_seconds - 1)
            if self.remaining_seconds == 0:
                logger.info(f"Attempt {self.attempt.id} out of time, submitting")
                self.submit()
                return
            self._dirty = True
        self._flush()

    # Submission

    def submit(self) -> AttemptResult | None:
        """
        Lock and evaluate. Runs once; later calls return the same result.
        """
        with self._lock:
            if self.state == SessionState.LOCKED:
                return self.result
            self._require_running()
            try:
                self.result = submission_service.submit_attempt(
                    self.db,
                    self.test,
                    self.user_id,
                    list(self.answers.slots),
                    self.clock.now(),
                    time_taken=self.time_taken,
                    tab_switch_count=self.tab_switch_count,
                    catalog=self.catalog,
                    sync=self.sync,
                )
            except StaleSubmission:
                self._adopt_remote_lock()
                return self.result
            self.state = SessionState.LOCKED
            self._dirty = False
            return self.result

    def snapshot(self) -> dict[str, Any]:
        """Client view of the session."""
        with self._lock:
            refs = self.test.refs if self.test else []
            return {
                "attemptId": self.attempt.id if self.attempt else None,
                "testId": self.test_id,
                "testKind": self.test_kind.value,
                "state": self.state.value,
                "remainingSeconds": self.remaining_seconds,
                "serverTime": self.clock.now().isoformat(),
                "currentIndex": self.current_index,
                "tabSwitchCount": self.tab_switch_count,
                "questions": [
                    public_question_view(ref, self.catalog.get(ref["id"], ref["type"]))
                    for ref in refs
                ],
                "answers": self.answers.to_dicts(),
                "syncError": self.sync_error.message if self.sync_error else None,
            }


class SessionTicker:
    """Daemon thread calling ``tick()`` once per interval until stopped
    or until the session leaves RUNNING."""

    def __init__(self, session: TestSession, interval: float = 1.0) -> None:
        self.session = session
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"session_ticker_{session.test_id}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            if self.session.state != SessionState.RUNNING:
                break
            try:
                self.session.tick()
            except Exception:
                logger.exception(f"Ticker for test {self.session.test_id} stopped on error")
                break
