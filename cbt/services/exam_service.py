"""Exam, question and settings storage helpers used by the admin routes and the SQL collaborators."""

import json
import logging
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, func, select

from cbt.models import Exam, ExamQuestion, ExamSettingsRecord
from cbt.schemas import ExamInfo, ExamSettings, parse_question
from cbt.utils import db_now, to_db_time

logger = logging.getLogger(__name__)

EXAM_NAME_MAX_LENGTH = 200
EXAM_DURATION_MAX_MINUTES = 600

# Fields stored in their own columns rather than in the JSON payload
_COLUMN_FIELDS = {"id", "type", "text", "image_url"}


def create_exam(
    session: Session,
    name: str,
    duration_minutes: int,
    category: str = "",
    token: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
) -> Exam:
    name = (name or "").strip()
    if not name:
        raise ValueError("Exam name cannot be empty")
    if len(name) > EXAM_NAME_MAX_LENGTH:
        raise ValueError(f"Exam name cannot exceed {EXAM_NAME_MAX_LENGTH} characters")
    if duration_minutes < 1:
        raise ValueError("duration_minutes must be at least 1")
    if duration_minutes > EXAM_DURATION_MAX_MINUTES:
        raise ValueError(f"duration_minutes cannot exceed {EXAM_DURATION_MAX_MINUTES}")
    start_time = to_db_time(start_time)
    end_time = to_db_time(end_time)
    if start_time and end_time and start_time >= end_time:
        raise ValueError("start_time must be before end_time")

    exam = Exam(
        name=name,
        category=category,
        duration_minutes=duration_minutes,
        token=token or None,
        start_time=start_time,
        end_time=end_time,
    )
    session.add(exam)
    session.commit()
    session.refresh(exam)
    logger.info("Created exam %s (%s)", exam.id, exam.name)
    return exam


def get_exam(session: Session, exam_id: int) -> Optional[Exam]:
    return session.get(Exam, exam_id)


def exam_info(exam: Exam) -> ExamInfo:
    return ExamInfo(
        id=exam.id,
        name=exam.name,
        category=exam.category,
        duration_minutes=exam.duration_minutes,
        token=exam.token,
        start_time=exam.start_time,
        end_time=exam.end_time,
    )


def question_from_record(record: ExamQuestion):
    data = json.loads(record.payload or "{}")
    data.update(
        id=record.question_key,
        type=record.question_type,
        text=record.question_text,
        image_url=record.image_url,
    )
    return parse_question(data)


def add_question(session: Session, exam_id: int, question) -> ExamQuestion:
    """Append a question to an exam.

    ``question`` may be a parsed question or a plain dict; dicts are
    validated into the matching question type first.

    Raises:
        ValueError: If the exam does not exist or the question id is taken
    """
    exam = session.get(Exam, exam_id)
    if not exam:
        raise ValueError(f"Exam with id={exam_id} does not exist")

    if isinstance(question, dict):
        question = parse_question(question)

    existing = session.exec(
        select(ExamQuestion).where(
            ExamQuestion.exam_id == exam_id,
            ExamQuestion.question_key == question.id,
        )
    ).first()
    if existing:
        raise ValueError(f"Question id {question.id!r} already exists in exam {exam_id}")

    position = session.exec(
        select(func.count(ExamQuestion.id)).where(ExamQuestion.exam_id == exam_id)
    ).one()

    record = ExamQuestion(
        exam_id=exam_id,
        question_key=question.id,
        position=position,
        question_type=question.type,
        question_text=question.text,
        image_url=question.image_url,
        payload=json.dumps(question.model_dump(mode="json", exclude=_COLUMN_FIELDS)),
    )
    session.add(record)
    exam.updated_at = db_now()
    session.add(exam)
    session.commit()
    session.refresh(record)
    return record


def list_questions(session: Session, exam_id: int) -> List:
    records = session.exec(
        select(ExamQuestion)
        .where(ExamQuestion.exam_id == exam_id)
        .order_by(ExamQuestion.position, ExamQuestion.id)
    ).all()
    return [question_from_record(r) for r in records]


def get_settings(session: Session) -> ExamSettings:
    record = session.exec(select(ExamSettingsRecord)).first()
    if not record:
        return ExamSettings()
    return ExamSettings(
        question_display=record.question_display,
        allow_navigate_back=record.allow_navigate_back,
        default_duration=record.default_duration,
        require_token=record.require_token,
    )


def save_settings(session: Session, settings: ExamSettings) -> ExamSettings:
    record = session.exec(select(ExamSettingsRecord)).first()
    if not record:
        record = ExamSettingsRecord()
    record.question_display = settings.question_display
    record.allow_navigate_back = settings.allow_navigate_back
    record.default_duration = settings.default_duration
    record.require_token = settings.require_token
    session.add(record)
    session.commit()
    return settings
