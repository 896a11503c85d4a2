"""SQLModel-backed collaborators for running exam sessions.

A running session outlives any single request, so each call opens its own
database session on the engine instead of borrowing the request's.
"""

from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from cbt.schemas import Answer, ExamInfo, ExamSettings, StudentExamStatus, SubmissionRecord
from cbt.services import exam_service, result_service


class SqlQuestionSource:
    def __init__(self, engine: Engine):
        self.engine = engine

    def load_exam(self, exam_id: int) -> Optional[ExamInfo]:
        with Session(self.engine) as session:
            exam = exam_service.get_exam(session, exam_id)
            return exam_service.exam_info(exam) if exam else None

    def load_questions(self, exam_id: int) -> List:
        with Session(self.engine) as session:
            return exam_service.list_questions(session, exam_id)

    def load_exam_settings(self) -> ExamSettings:
        with Session(self.engine) as session:
            return exam_service.get_settings(session)


class SqlSubmissionSink:
    def __init__(self, engine: Engine):
        self.engine = engine

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
        with Session(self.engine) as session:
            return result_service.save_submission(
                session,
                student_id=student_id,
                exam_id=exam_id,
                answers=answers,
                score=score,
                session_id=session_id,
                auto_submitted=auto_submitted,
            )


class SqlStatusReporter:
    def __init__(self, engine: Engine):
        self.engine = engine

    def report_status(
        self, student_id: str, exam_id: int, status: StudentExamStatus
    ) -> None:
        with Session(self.engine) as session:
            result_service.set_status(session, student_id, exam_id, status)
