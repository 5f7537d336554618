"""Value types for a single test attempt.

Everything here is immutable.  State changes go through the pure transition
functions in ``attempt_state``; each returns a new ``Attempt``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

# int for single choice, float for numerical entry, tuple for multiple choice.
Answer = Union[int, float, tuple[int, ...], None]


class Lifecycle(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class QuestionType(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"
    NUMERICAL = "numerical"


class QuestionStatus(str, Enum):
    NOT_VISITED = "not_visited"
    NOT_ANSWERED = "not_answered"
    ANSWERED = "answered"
    MARKED_FOR_REVIEW = "marked_for_review"
    ANSWERED_AND_MARKED = "answered_and_marked"


class Outcome(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNATTEMPTED = "unattempted"


@dataclass(frozen=True, slots=True)
class NumericRange:
    min: float
    max: float

    def __post_init__(self) -> None:
        if self.min > self.max:
            raise ValueError("range min must be <= max")

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True, slots=True)
class NumericalAnswer:
    exact_value: float
    range: NumericRange | None = None
    unit: str | None = None


@dataclass(frozen=True, slots=True)
class Question:
    """Reference data from the question bank; the engine never mutates it."""

    id: str
    subject: str
    difficulty: str = "medium"
    exam_type: str = ""
    question_type: QuestionType = QuestionType.SINGLE
    prompt: object | None = None  # opaque content for the UI
    options: tuple[object, ...] = ()
    correct_option: int | None = None
    correct_options: tuple[int, ...] = ()
    numerical_answer: NumericalAnswer | None = None
    topic: str | None = None
    error_tag: str | None = None  # "conceptual" | "calculation"


@dataclass(frozen=True, slots=True)
class AttemptQuestionState:
    selected_option: Answer = None
    is_marked: bool = False
    is_visited: bool = False
    time_taken_s: float = 0.0

    @property
    def is_answered(self) -> bool:
        return self.selected_option is not None

    @property
    def status(self) -> QuestionStatus:
        return derive_status(self)


def derive_status(state: AttemptQuestionState) -> QuestionStatus:
    answered = state.is_answered
    if answered and state.is_marked:
        return QuestionStatus.ANSWERED_AND_MARKED
    if state.is_marked:
        return QuestionStatus.MARKED_FOR_REVIEW
    if answered:
        return QuestionStatus.ANSWERED
    if state.is_visited:
        return QuestionStatus.NOT_ANSWERED
    return QuestionStatus.NOT_VISITED


@dataclass(frozen=True, slots=True)
class MarkingScheme:
    correct: float = 5.0
    incorrect: float = 0.0
    unattempted: float = 0.0


@dataclass(frozen=True, slots=True)
class ScoreResult:
    raw_score: float
    correct_count: int
    incorrect_count: int
    unattempted_count: int
    accuracy_percent: float
    time_taken_s: float

    @property
    def total_questions(self) -> int:
        return self.correct_count + self.incorrect_count + self.unattempted_count


@dataclass(frozen=True, slots=True)
class AttemptItem:
    question: Question
    state: AttemptQuestionState


@dataclass(frozen=True, slots=True)
class Attempt:
    test_id: str
    total_duration_s: float
    marking_scheme: MarkingScheme
    items: tuple[AttemptItem, ...]
    active_index: int = 0
    remaining_s: float = 0.0
    lifecycle: Lifecycle = Lifecycle.NOT_STARTED
    score: ScoreResult | None = None

    def __post_init__(self) -> None:
        if self.total_duration_s < 0:
            raise ValueError("total_duration_s must be >= 0")
        if self.items and not (0 <= self.active_index < len(self.items)):
            raise ValueError("active_index must index into items")

    @property
    def question_count(self) -> int:
        return len(self.items)

    @property
    def is_completed(self) -> bool:
        return self.lifecycle is Lifecycle.COMPLETED

    @property
    def active_item(self) -> AttemptItem | None:
        if not self.items:
            return None
        return self.items[self.active_index]


def new_attempt(
    *,
    test_id: str,
    questions: list[Question] | tuple[Question, ...],
    total_duration_s: float,
    marking_scheme: MarkingScheme | None = None,
) -> Attempt:
    """Build a not-started attempt with fresh per-question state."""

    return Attempt(
        test_id=str(test_id),
        total_duration_s=float(total_duration_s),
        marking_scheme=marking_scheme if marking_scheme is not None else MarkingScheme(),
        items=tuple(AttemptItem(question=q, state=AttemptQuestionState()) for q in questions),
        remaining_s=float(total_duration_s),
    )
