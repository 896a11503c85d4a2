"""Submission, score-override and monitoring-status storage."""

import json
import logging
from typing import List, Optional

from sqlmodel import Session, select

from cbt.models import MonitoringStatus, Submission
from cbt.schemas import Answer, StudentExamStatus, SubmissionRecord
from cbt.utils import db_now, sanitize_note, validate_score

logger = logging.getLogger(__name__)


def to_record(submission: Submission) -> SubmissionRecord:
    return SubmissionRecord(
        session_id=submission.session_id,
        student_id=submission.student_id,
        exam_id=submission.exam_id,
        answers=[Answer(**a) for a in json.loads(submission.answers_json or "[]")],
        score=submission.score,
        auto_submitted=submission.auto_submitted,
        submitted_at=submission.submitted_at,
        score_overridden=submission.score_overridden,
        override_note=submission.override_note,
    )


def get_submission(session: Session, exam_id: int, student_id: str) -> Optional[Submission]:
    return session.exec(
        select(Submission).where(
            Submission.exam_id == exam_id,
            Submission.student_id == student_id,
        )
    ).first()


def save_submission(
    session: Session,
    student_id: str,
    exam_id: int,
    answers: List[Answer],
    score: int,
    session_id: str,
    auto_submitted: bool = False,
) -> SubmissionRecord:
    """Insert or overwrite the submission for (student_id, exam_id)."""
    answers_json = json.dumps([a.model_dump(mode="json") for a in answers])

    existing = get_submission(session, exam_id, student_id)
    if existing:
        logger.info("Overwriting submission for student=%s exam=%s", student_id, exam_id)
        submission = existing
    else:
        submission = Submission(student_id=student_id, exam_id=exam_id, score=score, session_id=session_id)

    submission.session_id = session_id
    submission.answers_json = answers_json
    submission.score = score
    submission.auto_submitted = auto_submitted
    submission.submitted_at = db_now()
    submission.score_overridden = False
    submission.override_note = None
    session.add(submission)
    session.commit()
    session.refresh(submission)
    return to_record(submission)


def list_results(session: Session, exam_id: Optional[int] = None) -> List[SubmissionRecord]:
    stmt = select(Submission).order_by(Submission.submitted_at.desc())
    if exam_id is not None:
        stmt = stmt.where(Submission.exam_id == exam_id)
    return [to_record(s) for s in session.exec(stmt).all()]


def override_score(
    session: Session,
    exam_id: int,
    student_id: str,
    score: int,
    note: Optional[str] = None,
) -> SubmissionRecord:
    """Rewrite the score of an existing submission; nothing else changes.

    Raises:
        ValueError: If the submission does not exist or the score is out of range
    """
    validate_score(score)
    submission = get_submission(session, exam_id, student_id)
    if not submission:
        raise ValueError(f"No submission for student {student_id} in exam {exam_id}")

    submission.score = score
    submission.score_overridden = True
    submission.override_note = sanitize_note(note) if note else None
    session.add(submission)
    session.commit()
    session.refresh(submission)
    logger.info("Score for student=%s exam=%s overridden to %d", student_id, exam_id, score)
    return to_record(submission)


def set_status(
    session: Session, student_id: str, exam_id: int, status: StudentExamStatus
) -> MonitoringStatus:
    row = session.exec(
        select(MonitoringStatus).where(
            MonitoringStatus.student_id == student_id,
            MonitoringStatus.exam_id == exam_id,
        )
    ).first()
    if not row:
        row = MonitoringStatus(student_id=student_id, exam_id=exam_id)
    row.status = StudentExamStatus(status).value
    row.updated_at = db_now()
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def list_statuses(session: Session, exam_id: int) -> List[MonitoringStatus]:
    return session.exec(
        select(MonitoringStatus)
        .where(MonitoringStatus.exam_id == exam_id)
        .order_by(MonitoringStatus.student_id)
    ).all()
