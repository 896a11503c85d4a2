"""Collaborator interfaces consumed by the exam session, plus in-memory versions.

The session never talks to a storage technology directly. The SQLModel
implementations live in ``cbt.services.sql_repositories``.
"""

import logging
from typing import Dict, List, Optional, Protocol, Tuple

from cbt.schemas import (
    Answer,
    ExamInfo,
    ExamSettings,
    StudentExamStatus,
    SubmissionRecord,
)
from cbt.utils import utcnow

logger = logging.getLogger(__name__)


class QuestionSource(Protocol):
    def load_exam(self, exam_id: int) -> Optional[ExamInfo]: ...

    def load_questions(self, exam_id: int) -> List: ...

    def load_exam_settings(self) -> ExamSettings: ...


class SubmissionSink(Protocol):
    def submit_session(
        self,
        student_id: str,
        exam_id: int,
        answers: List[Answer],
        score: int,
        *,
        session_id: str,
        auto_submitted: bool = False,
    ) -> SubmissionRecord:
        """Persist a finished session. Must overwrite per (student_id, exam_id)."""
        ...


class StatusReporter(Protocol):
    def report_status(
        self, student_id: str, exam_id: int, status: StudentExamStatus
    ) -> None: ...


class InMemoryQuestionSource:
    def __init__(self, settings: Optional[ExamSettings] = None):
        self.exams: Dict[int, ExamInfo] = {}
        self.questions: Dict[int, List] = {}
        self.settings = settings or ExamSettings()

    def add_exam(self, exam: ExamInfo, questions: List) -> None:
        self.exams[exam.id] = exam
        self.questions[exam.id] = list(questions)

    def load_exam(self, exam_id: int) -> Optional[ExamInfo]:
        return self.exams.get(exam_id)

    def load_questions(self, exam_id: int) -> List:
        return list(self.questions.get(exam_id, []))

    def load_exam_settings(self) -> ExamSettings:
        return self.settings


class InMemorySubmissionSink:
    def __init__(self):
        self.records: Dict[Tuple[str, int], SubmissionRecord] = {}
        self.calls = 0

    def submit_session(
        self,
        student_id: str,
        exam_id: int,
        answers: List[Answer],
        score: int,
        *,
        session_id: str,
        auto_submitted: bool = False,
    ) -> SubmissionRecord:
        self.calls += 1
        record = SubmissionRecord(
            session_id=session_id,
            student_id=student_id,
            exam_id=exam_id,
            answers=list(answers),
            score=score,
            auto_submitted=auto_submitted,
            submitted_at=utcnow(),
        )
        if (student_id, exam_id) in self.records:
            logger.info("Overwriting submission for student=%s exam=%s", student_id, exam_id)
        self.records[(student_id, exam_id)] = record
        return record


class InMemoryStatusReporter:
    def __init__(self):
        self.statuses: Dict[Tuple[str, int], StudentExamStatus] = {}

    def report_status(
        self, student_id: str, exam_id: int, status: StudentExamStatus
    ) -> None:
        self.statuses[(student_id, exam_id)] = status
