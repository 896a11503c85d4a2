import sys
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, text


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

from sqlalchemy.pool import StaticPool

from cbt.schemas import (
    EssayQuestion,
    ExamInfo,
    MatchingQuestion,
    MultipleChoiceComplexQuestion,
    ShortAnswerQuestion,
    SingleChoiceQuestion,
)
from cbt.services.exam_session import ExamSession
from cbt.services.repositories import (
    InMemoryQuestionSource,
    InMemoryStatusReporter,
    InMemorySubmissionSink,
)

# StaticPool: every connection shares the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield

    # Clean up in FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM submission"))
        session.exec(text("DELETE FROM monitoringstatus"))
        session.exec(text("DELETE FROM examquestion"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM examsettingsrecord"))
        session.commit()


@pytest.fixture
def engine():
    return test_engine


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# TIME
# ============================================================================


class ManualTime:
    """Monotonic time source the tests move forward by hand."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def manual_time():
    return ManualTime()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from fastapi.testclient import TestClient

from cbt.database import get_session
from cbt.deps import get_essay_grader, get_registry
from cbt.main import app
from cbt.services.session_registry import SessionRegistry
from cbt.services.sql_repositories import SqlQuestionSource, SqlStatusReporter, SqlSubmissionSink


@pytest.fixture
def registry(manual_time):
    return SessionRegistry(
        source=SqlQuestionSource(test_engine),
        sink=SqlSubmissionSink(test_engine),
        reporter=SqlStatusReporter(test_engine),
        monotonic=manual_time,
    )


@pytest.fixture
def client(registry):
    """TestClient wired to the in-memory database and a registry on manual time."""

    def override_get_session():
        # Must use the same test_engine instance that has tables
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_registry] = lambda: registry

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def override_grader():
    """Install a fake essay grader for the duration of a test."""

    def install(grader):
        app.dependency_overrides[get_essay_grader] = lambda: grader

    return install


# ============================================================================
# QUESTION FIXTURES
# ============================================================================


def _options(prefix, count=3):
    return [{"id": f"{prefix}o{i}", "text": f"Option {i}"} for i in range(1, count + 1)]


@pytest.fixture
def single_choice():
    def build(qid="sc1", correct=None):
        return SingleChoiceQuestion(
            id=qid,
            text=f"Pick one ({qid})",
            options=_options(qid),
            correct_answer=correct or f"{qid}o1",
        )

    return build


@pytest.fixture
def multiple_choice():
    def build(qid="mc1", correct=None):
        return MultipleChoiceComplexQuestion(
            id=qid,
            text=f"Pick all that apply ({qid})",
            options=_options(qid),
            correct_answer=correct or [f"{qid}o1", f"{qid}o3"],
        )

    return build


@pytest.fixture
def matching():
    def build(qid="m1"):
        return MatchingQuestion(
            id=qid,
            text="Match the capitals",
            prompts=[{"id": "p1", "text": "Indonesia"}, {"id": "p2", "text": "Japan"}],
            answers=[{"id": "a1", "text": "Jakarta"}, {"id": "a2", "text": "Tokyo"}],
            correct_answer={"p1": "a1", "p2": "a2"},
        )

    return build


@pytest.fixture
def short_answer():
    def build(qid="sa1", correct="7"):
        return ShortAnswerQuestion(id=qid, text="If 5 + x = 12, what is x?", correct_answer=correct)

    return build


@pytest.fixture
def essay():
    def build(qid="es1"):
        return EssayQuestion(id=qid, text="Describe your school.", rubric="Clarity and detail")

    return build


# ============================================================================
# IN-MEMORY SESSION FIXTURES
# ============================================================================


@pytest.fixture
def source():
    return InMemoryQuestionSource()


@pytest.fixture
def sink():
    return InMemorySubmissionSink()


@pytest.fixture
def reporter():
    return InMemoryStatusReporter()


@pytest.fixture
def make_session(source, sink, reporter):
    """Build and load an ExamSession over in-memory collaborators."""

    def build(questions, duration_minutes=60, settings=None, exam_id=1, student_id="1001", load=True, **kwargs):
        exam = ExamInfo(id=exam_id, name="Literacy Pack", duration_minutes=duration_minutes)
        source.add_exam(exam, questions)
        if settings is not None:
            source.settings = settings
        session = ExamSession(student_id, exam, source, kwargs.pop("submissions", sink), reporter=reporter, **kwargs)
        if load:
            session.load()
        return session

    return build
