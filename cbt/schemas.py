"""Value types shared by the scoring engine, the exam session and the collaborators.

Questions are a tagged union keyed by ``type``. Each variant knows how to
compare a submitted answer value against its own answer key, so there is no
untyped structural comparison anywhere in the engine.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from cbt.utils import as_utc


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE_COMPLEX = "multiple_choice_complex"
    MATCHING = "matching"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"


class StudentExamStatus(str, Enum):
    """Monitoring status shown on the proctor dashboard."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    LOGGED_OUT = "logged_out"


class Option(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    image_url: Optional[str] = None


class MatchingItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str


class _QuestionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    text: str
    image_url: Optional[str] = None

    has_answer_key: ClassVar[bool] = True

    def is_correct(self, value: Any) -> bool:
        """Return True if ``value`` matches the answer key. Never raises."""
        raise NotImplementedError


def _option_ids(options: List[Option]) -> set:
    return {o.id for o in options}


class SingleChoiceQuestion(_QuestionBase):
    type: Literal["single_choice"] = "single_choice"
    options: List[Option]
    correct_answer: str = Field(min_length=1)

    @model_validator(mode="after")
    def _key_in_options(self):
        if self.correct_answer not in _option_ids(self.options):
            raise ValueError(
                f"correct_answer {self.correct_answer!r} is not one of the options"
            )
        return self

    def is_correct(self, value: Any) -> bool:
        return isinstance(value, str) and value == self.correct_answer


class MultipleChoiceComplexQuestion(_QuestionBase):
    type: Literal["multiple_choice_complex"] = "multiple_choice_complex"
    options: List[Option]
    correct_answer: List[str] = Field(min_length=1)

    @model_validator(mode="after")
    def _keys_in_options(self):
        unknown = set(self.correct_answer) - _option_ids(self.options)
        if unknown:
            raise ValueError(f"correct_answer references unknown options: {sorted(unknown)}")
        return self

    def is_correct(self, value: Any) -> bool:
        # Compared as sets: member order and repeats do not matter.
        if isinstance(value, (str, bytes, Mapping)):
            return False
        if not isinstance(value, (list, tuple, set, frozenset)):
            return False
        if not all(isinstance(v, str) for v in value):
            return False
        return set(value) == set(self.correct_answer)


class MatchingQuestion(_QuestionBase):
    type: Literal["matching"] = "matching"
    prompts: List[MatchingItem] = Field(min_length=1)
    answers: List[MatchingItem] = Field(min_length=1)
    correct_answer: Dict[str, str]

    @model_validator(mode="after")
    def _key_covers_prompts(self):
        prompt_ids = {p.id for p in self.prompts}
        answer_ids = {a.id for a in self.answers}
        if set(self.correct_answer) != prompt_ids:
            raise ValueError("correct_answer must map every prompt id exactly once")
        bad = set(self.correct_answer.values()) - answer_ids
        if bad:
            raise ValueError(f"correct_answer references unknown answers: {sorted(bad)}")
        return self

    def is_correct(self, value: Any) -> bool:
        if not isinstance(value, Mapping):
            return False
        return dict(value) == self.correct_answer


class ShortAnswerQuestion(_QuestionBase):
    type: Literal["short_answer"] = "short_answer"
    correct_answer: str = Field(min_length=1)

    def is_correct(self, value: Any) -> bool:
        return isinstance(value, str) and value == self.correct_answer


class EssayQuestion(_QuestionBase):
    """Graded out of band (AI suggestion plus manual override)."""

    type: Literal["essay"] = "essay"
    rubric: Optional[str] = None

    has_answer_key: ClassVar[bool] = False

    def is_correct(self, value: Any) -> bool:
        return False


Question = Annotated[
    Union[
        SingleChoiceQuestion,
        MultipleChoiceComplexQuestion,
        MatchingQuestion,
        ShortAnswerQuestion,
        EssayQuestion,
    ],
    Field(discriminator="type"),
]

question_adapter: TypeAdapter = TypeAdapter(Question)


def parse_question(data: Any):
    """Validate a plain dict into the matching question variant."""
    return question_adapter.validate_python(data)


class Answer(BaseModel):
    """One captured answer. ``value`` is shaped by the question type."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    value: Any = None


def is_answered(value: Any) -> bool:
    """Return True for a non-empty answer value.

    Empty strings and empty collections are unanswered. Scalars such as ``0``
    or ``False`` count as answered.
    """
    if value is None:
        return False
    if isinstance(value, (str, bytes)):
        return len(value) > 0
    if isinstance(value, (list, tuple, set, frozenset, Mapping)):
        return len(value) > 0
    return True


class ExamSettings(BaseModel):
    question_display: Literal["single", "all"] = "single"
    allow_navigate_back: bool = True
    default_duration: int = Field(default=60, gt=0)
    require_token: bool = False


class ExamInfo(BaseModel):
    """Exam metadata needed to run a session.

    The window times are held as aware UTC; naive input is taken as UTC.
    """

    id: int
    name: str
    category: str = ""
    duration_minutes: int = Field(gt=0)
    token: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, value):
        return as_utc(value)

    @model_validator(mode="after")
    def _window_is_ordered(self):
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class SubmissionRecord(BaseModel):
    session_id: str
    student_id: str
    exam_id: int
    answers: List[Answer]
    score: int
    auto_submitted: bool = False
    submitted_at: datetime
    score_overridden: bool = False
    override_note: Optional[str] = None

    @field_validator("submitted_at")
    @classmethod
    def _to_utc(cls, value):
        return as_utc(value)
