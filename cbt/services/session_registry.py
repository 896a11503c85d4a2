"""In-process store of running exam sessions for the HTTP host.

Sessions are keyed by (student_id, exam_id). Each lookup first catches the
session clock up with the time elapsed since the previous request, so an
exam whose time ran out is force-submitted before the request is served.

Sessions that are over and saved are dropped once they have been seen
finished for ``retention`` seconds. A finished session whose submission
failed is kept until it is retried or replaced.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from cbt import config
from cbt.errors import ExamAccessError, ExamNotFoundError, SessionLoadError, SessionNotFoundError
from cbt.schemas import ExamInfo, ExamSettings
from cbt.services.clock import SessionClock
from cbt.services.exam_session import ExamSession, SessionState
from cbt.services.repositories import QuestionSource, StatusReporter, SubmissionSink
from cbt.services.scoring import ScoringPolicy
from cbt.utils import as_utc, utcnow

logger = logging.getLogger(__name__)


def check_access(
    exam: ExamInfo,
    settings: ExamSettings,
    token: Optional[str],
    now: datetime,
) -> None:
    """Raise ExamAccessError unless the student may start this exam now.

    The window is compared in UTC; a naive ``now`` is taken as UTC.
    """
    now = as_utc(now)
    if exam.token or settings.require_token:
        if not exam.token or token != exam.token:
            raise ExamAccessError("Invalid exam token")
    if exam.start_time and now < exam.start_time:
        raise ExamAccessError("Exam has not started yet")
    if exam.end_time and now > exam.end_time:
        raise ExamAccessError("Exam window has closed")


class SessionRegistry:
    def __init__(
        self,
        source: QuestionSource,
        sink: SubmissionSink,
        reporter: Optional[StatusReporter] = None,
        policy: Optional[ScoringPolicy] = None,
        monotonic: Callable[[], float] = time.monotonic,
        utcnow: Callable[[], datetime] = utcnow,
        retention: float = config.FINISHED_RETENTION_SECONDS,
    ):
        self.source = source
        self.sink = sink
        self.reporter = reporter
        self.policy = policy
        self._monotonic = monotonic
        self._utcnow = utcnow
        self.retention = retention
        self._sessions: Dict[Tuple[str, int], Tuple[ExamSession, SessionClock]] = {}
        self._done_since: Dict[Tuple[str, int], float] = {}
        self._lock = threading.Lock()

    def start(self, student_id: str, exam_id: int, token: Optional[str] = None) -> ExamSession:
        """Start an exam, or resume the student's running session for it.

        A finished session whose submission failed is returned as well, so
        the student can retry it instead of starting over.

        Raises:
            ExamNotFoundError: If the exam does not exist
            ExamAccessError: If the token is wrong or the window is closed
            SessionLoadError: If the questions could not be loaded
        """
        with self._lock:
            self._prune()
            current = self._sessions.get((student_id, exam_id))
            if current:
                session, clock = current
                clock.sync()
                if session.is_active or (
                    session.state is SessionState.FINISHED and not session.is_persisted
                ):
                    logger.info("Resuming session %s for student %s", session.session_id, student_id)
                    return session

            try:
                exam = self.source.load_exam(exam_id)
                settings = self.source.load_exam_settings()
            except Exception as exc:
                raise SessionLoadError(f"Could not load exam {exam_id}") from exc
            if exam is None:
                raise ExamNotFoundError(f"Exam {exam_id} not found")

            check_access(exam, settings, token, self._utcnow())

            session = ExamSession(
                student_id,
                exam,
                self.source,
                self.sink,
                reporter=self.reporter,
                policy=self.policy,
            )
            session.load()
            clock = SessionClock(session, monotonic=self._monotonic)
            self._sessions[(student_id, exam_id)] = (session, clock)
            self._done_since.pop((student_id, exam_id), None)
            return session

    def get(self, student_id: str, exam_id: int) -> ExamSession:
        with self._lock:
            self._prune()
            entry = self._sessions.get((student_id, exam_id))
            if not entry:
                raise SessionNotFoundError(
                    f"No session for student {student_id} in exam {exam_id}"
                )
            session, clock = entry
        clock.sync()
        return session

    def discard(self, student_id: str, exam_id: int) -> None:
        with self._lock:
            self._sessions.pop((student_id, exam_id), None)
            self._done_since.pop((student_id, exam_id), None)

    def _prune(self) -> None:
        now = self._monotonic()
        for key, (session, _clock) in list(self._sessions.items()):
            if not session.is_terminal:
                continue
            if session.state is SessionState.FINISHED and not session.is_persisted:
                continue
            since = self._done_since.setdefault(key, now)
            if now - since >= self.retention:
                del self._sessions[key]
                del self._done_since[key]
                logger.debug("Dropped session %s for student %s", session.session_id, key[0])
