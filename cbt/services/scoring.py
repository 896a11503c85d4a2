"""Automatic scoring: (questions, answers) -> integer score in [0, 100].

Only question types with a machine-checkable answer key are counted. Essay
questions never count. Matching questions are left out unless the scoring
policy opts in.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Sequence

from cbt import config
from cbt.schemas import Answer, QuestionType


BASE_SCORED_TYPES = frozenset(
    {
        QuestionType.SINGLE_CHOICE.value,
        QuestionType.MULTIPLE_CHOICE_COMPLEX.value,
        QuestionType.SHORT_ANSWER.value,
    }
)

# Score given when nothing in the exam can be machine-graded.
EMPTY_EXAM_SCORE = 100


@dataclass(frozen=True)
class ScoringPolicy:
    include_matching: bool = False

    @property
    def scored_types(self) -> frozenset:
        if self.include_matching:
            return BASE_SCORED_TYPES | {QuestionType.MATCHING.value}
        return BASE_SCORED_TYPES


DEFAULT_POLICY = ScoringPolicy(include_matching=config.SCORE_MATCHING)


def gradable_questions(questions: Iterable, policy: ScoringPolicy = DEFAULT_POLICY) -> List:
    return [q for q in questions if q.type in policy.scored_types]


def latest_answers(answers: Iterable[Answer]) -> Dict[str, Any]:
    """Collapse an answer list to question_id -> value, last write wins."""
    values: Dict[str, Any] = {}
    for answer in answers:
        values[answer.question_id] = answer.value
    return values


def count_correct(
    questions: Sequence, answers: Iterable[Answer], policy: ScoringPolicy = DEFAULT_POLICY
) -> int:
    values = latest_answers(answers)
    correct = 0
    for question in gradable_questions(questions, policy):
        if question.id in values and question.is_correct(values[question.id]):
            correct += 1
    return correct


def percentage(correct: int, total: int) -> int:
    """Round ``correct / total * 100`` half away from zero (12.5 -> 13)."""
    exact = Decimal(correct * 100) / Decimal(total)
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def score(
    questions: Sequence, answers: Iterable[Answer], policy: ScoringPolicy = DEFAULT_POLICY
) -> int:
    gradable = gradable_questions(questions, policy)
    if not gradable:
        return EMPTY_EXAM_SCORE
    return percentage(count_correct(gradable, answers, policy), len(gradable))
