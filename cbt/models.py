"""SQLModel tables backing the exam, question, submission and monitoring collaborators.

Datetime columns hold naive UTC.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from cbt.utils import db_now


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    category: str = Field(default="")
    duration_minutes: int
    token: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_at: datetime = Field(default_factory=db_now)
    updated_at: datetime = Field(default_factory=db_now)


class ExamQuestion(SQLModel, table=True):
    """A question belonging to an exam.

    ``payload`` holds the type-specific part (options, matching lists and the
    answer key) as a JSON string.
    """

    __table_args__ = (
        UniqueConstraint("exam_id", "question_key", name="uq_examquestion_key"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id")
    question_key: str  # id used by sessions and answers, e.g. "q1"
    position: int = Field(default=0)
    question_type: str
    question_text: str
    image_url: Optional[str] = None
    payload: str = Field(default="{}")


class Submission(SQLModel, table=True):
    """The durable result of a finished session, one per (student, exam)."""

    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_submission_student_exam"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str
    student_id: str
    exam_id: int = Field(foreign_key="exam.id")
    answers_json: str = Field(default="[]")
    score: int
    auto_submitted: bool = Field(default=False)
    submitted_at: datetime = Field(default_factory=db_now)
    score_overridden: bool = Field(default=False)
    override_note: Optional[str] = None


class MonitoringStatus(SQLModel, table=True):
    """Latest exam status of a student, shown on the monitoring dashboard."""

    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_monitoring_student_exam"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: str
    exam_id: int = Field(foreign_key="exam.id")
    status: str = Field(default="not_started")  # not_started | in_progress | finished | logged_out
    updated_at: datetime = Field(default_factory=db_now)


class ExamSettingsRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question_display: str = Field(default="single")  # single | all
    allow_navigate_back: bool = Field(default=True)
    default_duration: int = Field(default=60)
    require_token: bool = Field(default=False)
