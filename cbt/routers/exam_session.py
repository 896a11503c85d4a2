"""
Exam Taking Routes

Handles:
- Starting (or resuming) an exam session
- Answer capture, navigation and review flags
- Submit confirmation counts and confirmed submission
- Retrying a failed submission
- Abandoning a session

The student id is passed as a query parameter; login is handled elsewhere.
"""

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi import status as http_status
from pydantic import BaseModel

from cbt.deps import get_registry
from cbt.services.exam_session import Direction, ExamSession, SessionState
from cbt.services.session_registry import SessionRegistry

router = APIRouter()


class AnswerIn(BaseModel):
    value: Any = None


class NavigateIn(BaseModel):
    direction: Direction


class JumpIn(BaseModel):
    index: int


def public_question(question) -> dict:
    """Question payload for students: everything except the answer key."""
    return question.model_dump(mode="json", exclude={"correct_answer"})


def session_view(session: ExamSession) -> dict:
    view = {
        "session_id": session.session_id,
        "student_id": session.student_id,
        "exam_id": session.exam.id,
        "exam_name": session.exam.name,
        "state": session.state.value,
        "total_questions": len(session.questions),
        "remaining_seconds": session.remaining_seconds,
        "remaining_display": session.remaining_display,
        "low_time": session.is_low_time,
    }
    if session.state is SessionState.EMPTY:
        view["message"] = "This exam has no questions. Please contact your proctor."
        return view

    if session.questions:
        display = session.settings.question_display
        view.update(
            {
                "question_display": display,
                "allow_navigate_back": session.settings.allow_navigate_back,
                "current_index": session.current_index,
                "current_question": public_question(session.current_question),
                "current_answer": session.answer_for(session.current_question.id),
                "statuses": [asdict(s) for s in session.question_statuses()],
                "summary": asdict(session.submit_summary()),
            }
        )
        if display == "all":
            view["questions"] = [public_question(q) for q in session.questions]
            view["answers"] = {a.question_id: a.value for a in session.answers}

    if session.state is SessionState.FINISHED:
        view.update(
            {
                "score": session.score,
                "auto_submitted": session.auto_submitted,
                "is_persisted": session.is_persisted,
                "submission_error": str(session.submission_error) if session.submission_error else None,
            }
        )
    return view


def _raise_if_unsaved(session: ExamSession) -> None:
    if session.state is SessionState.FINISHED and session.submission_error:
        raise HTTPException(
            status_code=http_status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "Your answers could not be saved. Please try again.",
                "error": str(session.submission_error),
                "session": session_view(session),
            },
        )


@router.post("/{exam_id}/start")
def start_session(
    exam_id: int,
    student_id: str = Query(...),
    token: Optional[str] = Query(None),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.start(student_id, exam_id, token=token)
    return session_view(session)


@router.get("/{exam_id}")
def get_session_view(
    exam_id: int,
    student_id: str = Query(...),
    registry: SessionRegistry = Depends(get_registry),
):
    return session_view(registry.get(student_id, exam_id))


@router.put("/{exam_id}/answers/{question_id}")
def select_answer(
    exam_id: int,
    question_id: str,
    student_id: str = Query(...),
    payload: AnswerIn = Body(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(student_id, exam_id)
    try:
        session.select_answer(question_id, payload.value)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return session_view(session)


@router.post("/{exam_id}/navigate")
def navigate(
    exam_id: int,
    student_id: str = Query(...),
    payload: NavigateIn = Body(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(student_id, exam_id)
    session.navigate(payload.direction)
    return session_view(session)


@router.post("/{exam_id}/jump")
def jump_to(
    exam_id: int,
    student_id: str = Query(...),
    payload: JumpIn = Body(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(student_id, exam_id)
    session.jump_to(payload.index)
    return session_view(session)


@router.post("/{exam_id}/review/{question_id}")
def toggle_review(
    exam_id: int,
    question_id: str,
    student_id: str = Query(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(student_id, exam_id)
    try:
        flagged = session.toggle_review(question_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    view = session_view(session)
    view["flagged"] = flagged
    return view


@router.post("/{exam_id}/submit-request")
def request_submit(
    exam_id: int,
    student_id: str = Query(...),
    registry: SessionRegistry = Depends(get_registry),
):
    """Counts for the "are you sure?" dialog; null once the exam is already submitted."""
    session = registry.get(student_id, exam_id)
    summary = session.request_submit()
    return {
        "confirmation": asdict(summary) if summary else None,
        "session": session_view(session),
    }


@router.post("/{exam_id}/submit")
def confirm_submit(
    exam_id: int,
    student_id: str = Query(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(student_id, exam_id)
    session.confirm_submit()
    _raise_if_unsaved(session)
    return session_view(session)


@router.post("/{exam_id}/retry-submit")
def retry_submit(
    exam_id: int,
    student_id: str = Query(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(student_id, exam_id)
    session.retry_submit()
    _raise_if_unsaved(session)
    return session_view(session)


@router.post("/{exam_id}/abandon")
def abandon(
    exam_id: int,
    student_id: str = Query(...),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(student_id, exam_id)
    session.abandon()
    registry.discard(student_id, exam_id)
    return {"status": "abandoned", "state": session.state.value}
