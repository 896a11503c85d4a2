"""Administrator routes: exam setup, settings, monitoring and results review."""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from cbt import config
from cbt.database import get_session
from cbt.deps import get_essay_grader
from cbt.errors import GraderError
from cbt.schemas import EssayQuestion, ExamSettings
from cbt.services import exam_service, result_service
from cbt.services.essay_grader import EssayGrader

router = APIRouter()


class CreateExamIn(BaseModel):
    name: str
    category: str = ""
    duration_minutes: Optional[int] = None
    token: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class ScoreOverrideIn(BaseModel):
    score: int
    note: Optional[str] = None


class EssaySuggestionIn(BaseModel):
    question_id: str


def _exam_or_404(session: Session, exam_id: int):
    exam = exam_service.get_exam(session, exam_id)
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    return exam


# 1) EXAMS AND QUESTIONS
@router.post("/exams")
def api_create_exam(payload: CreateExamIn = Body(...), session: Session = Depends(get_session)):
    duration = payload.duration_minutes
    if duration is None:
        duration = exam_service.get_settings(session).default_duration or config.DEFAULT_DURATION
    try:
        exam = exam_service.create_exam(
            session,
            name=payload.name,
            duration_minutes=duration,
            category=payload.category,
            token=payload.token,
            start_time=payload.start_time,
            end_time=payload.end_time,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return exam_service.exam_info(exam).model_dump(mode="json")


@router.get("/exams/{exam_id}")
def api_get_exam(exam_id: int, session: Session = Depends(get_session)):
    exam = _exam_or_404(session, exam_id)
    info = exam_service.exam_info(exam).model_dump(mode="json")
    info["question_count"] = len(exam_service.list_questions(session, exam_id))
    return info


@router.post("/exams/{exam_id}/questions")
def api_add_question(
    exam_id: int,
    payload: Dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
):
    _exam_or_404(session, exam_id)
    try:
        record = exam_service.add_question(session, exam_id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return exam_service.question_from_record(record).model_dump(mode="json")


@router.get("/exams/{exam_id}/questions")
def api_list_questions(exam_id: int, session: Session = Depends(get_session)):
    _exam_or_404(session, exam_id)
    return [q.model_dump(mode="json") for q in exam_service.list_questions(session, exam_id)]


# 2) SETTINGS
@router.get("/settings")
def api_get_settings(session: Session = Depends(get_session)):
    return exam_service.get_settings(session)


@router.put("/settings")
def api_save_settings(payload: ExamSettings = Body(...), session: Session = Depends(get_session)):
    return exam_service.save_settings(session, payload)


# 3) MONITORING
@router.get("/exams/{exam_id}/monitoring")
def api_monitoring(exam_id: int, session: Session = Depends(get_session)):
    _exam_or_404(session, exam_id)
    return [
        {"student_id": s.student_id, "status": s.status, "updated_at": s.updated_at}
        for s in result_service.list_statuses(session, exam_id)
    ]


# 4) RESULTS
@router.get("/exams/{exam_id}/results")
def api_results(exam_id: int, session: Session = Depends(get_session)):
    _exam_or_404(session, exam_id)
    return [r.model_dump(mode="json") for r in result_service.list_results(session, exam_id)]


@router.put("/exams/{exam_id}/results/{student_id}/score")
def api_override_score(
    exam_id: int,
    student_id: str,
    payload: ScoreOverrideIn = Body(...),
    session: Session = Depends(get_session),
):
    if not result_service.get_submission(session, exam_id, student_id):
        raise HTTPException(status_code=404, detail="Submission not found")
    try:
        record = result_service.override_score(
            session, exam_id, student_id, payload.score, note=payload.note
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return record.model_dump(mode="json")


@router.post("/exams/{exam_id}/results/{student_id}/essay-suggestion")
async def api_essay_suggestion(
    exam_id: int,
    student_id: str,
    payload: EssaySuggestionIn = Body(...),
    session: Session = Depends(get_session),
    grader: EssayGrader = Depends(get_essay_grader),
):
    """Ask the AI grader for a 0-100 suggestion on one essay answer."""
    submission = result_service.get_submission(session, exam_id, student_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")

    question = next(
        (q for q in exam_service.list_questions(session, exam_id) if q.id == payload.question_id),
        None,
    )
    if not isinstance(question, EssayQuestion):
        raise HTTPException(status_code=400, detail="Question is not an essay question")

    record = result_service.to_record(submission)
    answer_text = next(
        (a.value for a in record.answers if a.question_id == question.id), None
    )
    if not isinstance(answer_text, str):
        answer_text = ""

    try:
        suggestion = await grader.suggest_score(question.text, answer_text, question.rubric)
    except GraderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {
        "question_id": question.id,
        "student_id": student_id,
        "suggested_score": suggestion,
        "current_score": record.score,
    }
