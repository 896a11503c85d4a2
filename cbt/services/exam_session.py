"""
Exam Session State Machine

One student's single attempt at one exam, from load to submit:

    Loading -> Active -> Submitting -> Finished

plus the terminal states Empty (no questions) and LoadFailed, and Abandoned
for a session thrown away without submitting.

While Active the session tracks a question cursor, the captured answers
(one per question id, last write wins), the set of questions flagged for
review and the remaining-time counter. Every mutation happens in memory; the
only collaborator calls are the question load at start and the submission
at the end.

Submitting always leaves Active, even when the submission collaborator
fails. The answers and score are frozen at that point and a failed persist
is retried with exactly the same payload through ``retry_submit``.
"""

import functools
import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from cbt import config
from cbt.errors import EmptyExamError, SessionLoadError, SessionStateError, SubmissionError
from cbt.schemas import Answer, ExamInfo, ExamSettings, StudentExamStatus, SubmissionRecord, is_answered
from cbt.services import scoring
from cbt.services.repositories import QuestionSource, StatusReporter, SubmissionSink
from cbt.utils import format_time

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    FINISHED = "finished"
    EMPTY = "empty"
    LOAD_FAILED = "load_failed"
    ABANDONED = "abandoned"


TERMINAL_STATES = frozenset(
    {SessionState.FINISHED, SessionState.EMPTY, SessionState.LOAD_FAILED, SessionState.ABANDONED}
)


class Direction(str, Enum):
    NEXT = "next"
    PREV = "prev"


@dataclass(frozen=True)
class SubmitSummary:
    """Counts shown in the submit-confirmation dialog."""

    total: int
    answered: int
    unanswered: int
    flagged: int


@dataclass(frozen=True)
class QuestionStatus:
    index: int
    question_id: str
    answered: bool
    flagged: bool
    current: bool


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class ExamSession:
    def __init__(
        self,
        student_id: str,
        exam: ExamInfo,
        questions: QuestionSource,
        submissions: SubmissionSink,
        reporter: Optional[StatusReporter] = None,
        policy: Optional[scoring.ScoringPolicy] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.student_id = student_id
        self.exam = exam
        self.policy = policy or scoring.DEFAULT_POLICY

        self._source = questions
        self._sink = submissions
        self._reporter = reporter
        self._lock = threading.RLock()

        self.state = SessionState.LOADING
        self.questions: tuple = ()
        self.settings: ExamSettings = ExamSettings()
        self.current_index = 0
        self.remaining_seconds = exam.duration_minutes * 60
        self._answers: Dict[str, Any] = {}
        self.flagged: Set[str] = set()

        # Filled in once the session leaves Active
        self.frozen_answers: tuple = ()
        self.score: Optional[int] = None
        self.auto_submitted = False
        self.submission: Optional[SubmissionRecord] = None
        self.submission_error: Optional[SubmissionError] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @_locked
    def load(self) -> SessionState:
        """Take the question snapshot and settings, then become Active.

        Raises:
            SessionLoadError: If the question source fails. The session is
                left in LoadFailed; the host decides whether to try again
                with a new session.
        """
        if self.state is not SessionState.LOADING:
            raise SessionStateError(f"Cannot load a session in state '{self.state.value}'")

        try:
            questions = self._source.load_questions(self.exam.id)
            settings = self._source.load_exam_settings()
        except Exception as exc:
            self.state = SessionState.LOAD_FAILED
            logger.error("Loading exam %s failed for student %s: %s", self.exam.id, self.student_id, exc)
            raise SessionLoadError(f"Could not load exam {self.exam.id}") from exc

        # Deep copies: later question-bank edits must not reach this session.
        self.questions = tuple(q.model_copy(deep=True) for q in questions)
        self.settings = settings.model_copy()

        if not self.questions:
            self.state = SessionState.EMPTY
            logger.warning("Exam %s has no questions", self.exam.id)
            return self.state

        self.remaining_seconds = self.exam.duration_minutes * 60
        self.state = SessionState.ACTIVE
        logger.info(
            "Session %s started: student=%s exam=%s questions=%d seconds=%d",
            self.session_id,
            self.student_id,
            self.exam.id,
            len(self.questions),
            self.remaining_seconds,
        )
        self._report(StudentExamStatus.IN_PROGRESS)
        return self.state

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_persisted(self) -> bool:
        return self.submission is not None

    def _require_active(self) -> None:
        if self.state is not SessionState.ACTIVE:
            raise SessionStateError(
                f"Session {self.session_id} is '{self.state.value}', not active"
            )

    # ------------------------------------------------------------------
    # Active operations
    # ------------------------------------------------------------------

    @_locked
    def select_answer(self, question_id: str, value: Any) -> None:
        """Record an answer. The value's shape is not checked here."""
        self._require_active()
        if question_id not in self._question_ids():
            raise ValueError(f"Question {question_id} is not part of this exam")
        self._answers[question_id] = value
        logger.debug("Session %s: answer for %s recorded", self.session_id, question_id)

    @_locked
    def navigate(self, direction) -> int:
        """Move the cursor one step; stays put at either end."""
        self._require_active()
        direction = Direction(direction)
        if direction is Direction.NEXT:
            self.current_index = min(self.current_index + 1, len(self.questions) - 1)
        elif self.settings.allow_navigate_back:
            self.current_index = max(self.current_index - 1, 0)
        return self.current_index

    @_locked
    def jump_to(self, index: int) -> int:
        self._require_active()
        if not 0 <= index < len(self.questions):
            return self.current_index
        if index < self.current_index and not self.settings.allow_navigate_back:
            return self.current_index
        self.current_index = index
        return self.current_index

    @_locked
    def toggle_review(self, question_id: str) -> bool:
        """Flip the review flag; returns whether the question is now flagged."""
        self._require_active()
        if question_id not in self._question_ids():
            raise ValueError(f"Question {question_id} is not part of this exam")
        if question_id in self.flagged:
            self.flagged.discard(question_id)
            return False
        self.flagged.add(question_id)
        return True

    @_locked
    def request_submit(self) -> Optional[SubmitSummary]:
        """Counts for the confirmation prompt. None once the session is no longer active."""
        if self.state is not SessionState.ACTIVE:
            return None
        return self.submit_summary()

    @_locked
    def confirm_submit(self) -> Optional[SubmissionRecord]:
        """Submit after the student confirmed. A no-op once already submitted."""
        if self.state is SessionState.LOADING:
            raise SessionStateError("Cannot submit before the exam is loaded")
        return self._submit(forced=False)

    @_locked
    def tick(self, seconds: int = 1) -> bool:
        """Count down; at zero the session submits itself.

        Returns True only for the tick that forced the submission.
        """
        if self.state is not SessionState.ACTIVE:
            return False
        self.remaining_seconds = max(0, self.remaining_seconds - seconds)
        if self.remaining_seconds > 0:
            return False
        logger.info("Session %s: time is up, submitting", self.session_id)
        self._submit(forced=True)
        return True

    @_locked
    def retry_submit(self) -> Optional[SubmissionRecord]:
        """Resend the frozen answers and score after a failed submission."""
        if self.state is not SessionState.FINISHED:
            raise SessionStateError(
                f"Nothing to retry for a session in state '{self.state.value}'"
            )
        if self.is_persisted:
            return self.submission
        logger.info("Session %s: retrying submission", self.session_id)
        self._persist()
        return self.submission

    @_locked
    def abandon(self) -> None:
        """Discard an unfinished session without persisting anything."""
        if self.is_terminal:
            return
        self.state = SessionState.ABANDONED
        self._answers.clear()
        logger.info("Session %s abandoned", self.session_id)
        self._report(StudentExamStatus.LOGGED_OUT)

    def _submit(self, forced: bool) -> Optional[SubmissionRecord]:
        if self.state is not SessionState.ACTIVE:
            return self.submission

        self.state = SessionState.SUBMITTING
        self.auto_submitted = forced
        self.frozen_answers = tuple(self._answer_list())
        self.score = scoring.score(self.questions, self.frozen_answers, self.policy)
        logger.info(
            "Session %s submitting: answered=%d score=%d forced=%s",
            self.session_id,
            len(self.frozen_answers),
            self.score,
            forced,
        )
        self._persist()
        self.state = SessionState.FINISHED
        return self.submission

    def _persist(self) -> None:
        try:
            self.submission = self._sink.submit_session(
                self.student_id,
                self.exam.id,
                list(self.frozen_answers),
                self.score,
                session_id=self.session_id,
                auto_submitted=self.auto_submitted,
            )
        except Exception as exc:
            error = SubmissionError(f"Saving answers for exam {self.exam.id} failed: {exc}")
            error.__cause__ = exc
            self.submission_error = error
            logger.warning("Session %s: submission failed: %s", self.session_id, exc)
            return
        self.submission_error = None
        self._report(StudentExamStatus.FINISHED)

    def _report(self, status: StudentExamStatus) -> None:
        if self._reporter is None:
            return
        try:
            self._reporter.report_status(self.student_id, self.exam.id, status)
        except Exception:
            # Status reporting never interrupts the exam.
            logger.warning(
                "Status report %s failed for student %s", status.value, self.student_id, exc_info=True
            )

    # ------------------------------------------------------------------
    # Read-only views for the host UI
    # ------------------------------------------------------------------

    def _question_ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def _answer_list(self) -> List[Answer]:
        return [
            Answer(question_id=q.id, value=self._answers[q.id])
            for q in self.questions
            if q.id in self._answers
        ]

    @property
    def answers(self) -> List[Answer]:
        if self.state in (SessionState.SUBMITTING, SessionState.FINISHED):
            return list(self.frozen_answers)
        return self._answer_list()

    def answer_for(self, question_id: str) -> Any:
        return self._answers.get(question_id)

    @property
    def current_question(self):
        if not self.questions:
            raise EmptyExamError(f"Exam {self.exam.id} has no questions")
        return self.questions[self.current_index]

    def is_question_answered(self, question_id: str) -> bool:
        return question_id in self._answers and is_answered(self._answers[question_id])

    @_locked
    def question_statuses(self) -> List[QuestionStatus]:
        return [
            QuestionStatus(
                index=i,
                question_id=q.id,
                answered=self.is_question_answered(q.id),
                flagged=q.id in self.flagged,
                current=i == self.current_index,
            )
            for i, q in enumerate(self.questions)
        ]

    @_locked
    def submit_summary(self) -> SubmitSummary:
        total = len(self.questions)
        answered = sum(1 for q in self.questions if self.is_question_answered(q.id))
        return SubmitSummary(
            total=total,
            answered=answered,
            unanswered=total - answered,
            flagged=len(self.flagged),
        )

    @property
    def remaining_display(self) -> str:
        return format_time(self.remaining_seconds)

    @property
    def is_low_time(self) -> bool:
        return self.is_active and self.remaining_seconds < config.LOW_TIME_WARNING_SECONDS
