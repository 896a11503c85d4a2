"""FastAPI entrypoint for the computer-based testing service."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from cbt import config
from cbt.database import create_db_and_tables, engine
from cbt.errors import (
    CBTError,
    EmptyExamError,
    ExamAccessError,
    ExamNotFoundError,
    GraderError,
    SessionLoadError,
    SessionNotFoundError,
    SessionStateError,
    SubmissionError,
)
from cbt.models import Exam, ExamSettingsRecord
from cbt.routers import admin as admin_router_module
from cbt.routers import exam_session as exam_session_router_module
from cbt.services import exam_service

logger = logging.getLogger(__name__)

app = FastAPI(title="CBT Exam Service")

ERROR_STATUS = {
    ExamNotFoundError: status.HTTP_404_NOT_FOUND,
    SessionNotFoundError: status.HTTP_404_NOT_FOUND,
    ExamAccessError: status.HTTP_403_FORBIDDEN,
    SessionStateError: status.HTTP_409_CONFLICT,
    EmptyExamError: status.HTTP_409_CONFLICT,
    SessionLoadError: status.HTTP_503_SERVICE_UNAVAILABLE,
    SubmissionError: status.HTTP_502_BAD_GATEWAY,
    GraderError: status.HTTP_502_BAD_GATEWAY,
}


@app.exception_handler(CBTError)
async def cbt_exception_handler(request: Request, exc: CBTError):
    """Translate engine errors into JSON responses."""
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# Routers
app.include_router(exam_session_router_module.router, prefix="/sessions", tags=["sessions"])
app.include_router(admin_router_module.router, prefix="/admin", tags=["admin"])


@app.get("/")
def home():
    return {"service": "cbt", "status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize logging and the database schema, and seed sample data."""
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_db_and_tables()
    with Session(engine) as session:
        if not session.exec(select(ExamSettingsRecord)).first():
            session.add(ExamSettingsRecord(default_duration=config.DEFAULT_DURATION))
            session.commit()

        if not session.exec(select(Exam)).first():
            exam = exam_service.create_exam(
                session, name="Literacy Assessment Pack 1", category="Literacy",
                duration_minutes=60, token="TOKEN123",
            )
            sample_questions = [
                {
                    "id": "q1",
                    "type": "single_choice",
                    "text": "Who was the first president of Indonesia?",
                    "options": [
                        {"id": "q1o1", "text": "Soekarno"},
                        {"id": "q1o2", "text": "Soeharto"},
                        {"id": "q1o3", "text": "B.J. Habibie"},
                    ],
                    "correct_answer": "q1o1",
                },
                {
                    "id": "q2",
                    "type": "multiple_choice_complex",
                    "text": "Choose two national heroes of Indonesia.",
                    "options": [
                        {"id": "q2o1", "text": "Pangeran Diponegoro"},
                        {"id": "q2o2", "text": "Gajah Mada"},
                        {"id": "q2o3", "text": "Cut Nyak Dien"},
                    ],
                    "correct_answer": ["q2o1", "q2o3"],
                },
                {
                    "id": "q3",
                    "type": "short_answer",
                    "text": "If 5 + x = 12, what is x?",
                    "correct_answer": "7",
                },
            ]
            for q in sample_questions:
                exam_service.add_question(session, exam.id, q)
            logger.info("Seeded sample exam %s", exam.id)
