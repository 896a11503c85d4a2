"""Shared FastAPI dependencies for the session registry and the essay grader."""

from functools import lru_cache

from cbt.database import engine
from cbt.services.essay_grader import EssayGrader, GeminiEssayGrader
from cbt.services.session_registry import SessionRegistry
from cbt.services.sql_repositories import SqlQuestionSource, SqlStatusReporter, SqlSubmissionSink


@lru_cache(maxsize=None)
def get_registry() -> SessionRegistry:
    """The process-wide registry of running exam sessions."""
    return SessionRegistry(
        source=SqlQuestionSource(engine),
        sink=SqlSubmissionSink(engine),
        reporter=SqlStatusReporter(engine),
    )


def get_essay_grader() -> EssayGrader:
    return GeminiEssayGrader()
