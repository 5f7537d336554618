"""Behavioural signals and error-pattern heuristics.

All functions are pure: the same attempt and event sequence always produce the
same output.  Events are read, never mutated.

The confidence buckets and error categories are heuristics.  They describe how
a student worked through the paper; they are not ground truth about why an
answer was wrong.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

from .config import AnalyticsThresholds
from .interaction_log import InteractionAction, InteractionEvent
from .models import Answer, Attempt, Outcome, Question, QuestionType
from .scoring import classify


class ErrorCategory(str, Enum):
    CONCEPTUAL = "conceptual"
    CALCULATION = "calculation"
    TIME_MANAGEMENT = "time_management"
    CARELESS = "careless"


@dataclass(frozen=True, slots=True)
class QuestionBehavior:
    question_id: str
    subject: str
    visit_count: int
    revisit_count: int
    time_between_visits: tuple[float, ...]
    hesitation_s: float | None
    revision_count: int
    final_outcome: Outcome


@dataclass(frozen=True, slots=True)
class ConfidenceMetrics:
    quick_answers: tuple[str, ...]
    long_deliberations: tuple[str, ...]
    multiple_revisions: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class SectionTransition:
    from_subject: str
    to_subject: str
    timestamp: float
    time_spent_in_prev_section: float


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    question_id: str
    category: ErrorCategory
    selected_option: Answer
    correct_option: Answer
    concept_tested: str
    time_spent_s: float


@dataclass(frozen=True, slots=True)
class ErrorAnalysis:
    errors: tuple[ClassifiedError, ...]

    def ids(self, category: ErrorCategory) -> tuple[str, ...]:
        return tuple(e.question_id for e in self.errors if e.category is category)


def _by_question(events: Iterable[InteractionEvent], action: InteractionAction) -> dict[str, list[InteractionEvent]]:
    grouped: dict[str, list[InteractionEvent]] = {}
    for e in events:
        if e.action is action:
            grouped.setdefault(e.question_id, []).append(e)
    for seq in grouped.values():
        seq.sort(key=lambda e: (e.timestamp_enter, e.timestamp_leave))
    return grouped


def question_behaviors(attempt: Attempt, events: Sequence[InteractionEvent] = ()) -> tuple[QuestionBehavior, ...]:
    visits = _by_question(events, InteractionAction.VISIT)
    answers = _by_question(events, InteractionAction.ANSWER)

    out: list[QuestionBehavior] = []
    for item in attempt.items:
        qid = item.question.id
        q_visits = visits.get(qid, [])
        q_answers = answers.get(qid, [])

        visit_count = len(q_visits)
        if visit_count == 0 and item.state.is_visited:
            # No log supplied: the state still knows the question was shown.
            visit_count = 1

        gaps = tuple(
            max(0.0, q_visits[k].timestamp_enter - q_visits[k - 1].timestamp_leave) for k in range(1, len(q_visits))
        )

        hesitation: float | None = None
        if q_visits and q_answers:
            hesitation = max(0.0, q_answers[0].timestamp_enter - q_visits[0].timestamp_enter)

        out.append(
            QuestionBehavior(
                question_id=qid,
                subject=item.question.subject,
                visit_count=visit_count,
                revisit_count=max(0, visit_count - 1),
                time_between_visits=gaps,
                hesitation_s=hesitation,
                revision_count=max(0, len(q_answers) - 1),
                final_outcome=classify(item.question, item.state.selected_option),
            )
        )
    return tuple(out)


def confidence_metrics(
    attempt: Attempt,
    behaviors: Sequence[QuestionBehavior],
    thresholds: AnalyticsThresholds,
) -> ConfidenceMetrics:
    """Bucket answered questions by how decisively they were answered.

    quick: first answer within ``quick_answer_s`` of the first visit and never revised.
    long: hesitation above ``long_deliberation_multiple`` times the mean hesitation.
    multiple revisions: the answer was changed ``multiple_revisions_min`` times or more.
    """

    answered = {item.question.id for item in attempt.items if item.state.is_answered}
    hesitations = [b.hesitation_s for b in behaviors if b.hesitation_s is not None]
    mean_h = (sum(hesitations) / len(hesitations)) if hesitations else 0.0
    long_cutoff = mean_h * thresholds.long_deliberation_multiple

    quick: list[str] = []
    long: list[str] = []
    revised: list[str] = []
    for b in behaviors:
        if b.hesitation_s is not None:
            if b.question_id in answered and b.revision_count == 0 and b.hesitation_s <= thresholds.quick_answer_s:
                quick.append(b.question_id)
            if mean_h > 0.0 and b.hesitation_s > long_cutoff:
                long.append(b.question_id)
        if b.revision_count >= thresholds.multiple_revisions_min:
            revised.append(b.question_id)

    return ConfidenceMetrics(quick_answers=tuple(quick), long_deliberations=tuple(long), multiple_revisions=tuple(revised))


def section_transitions(attempt: Attempt, events: Sequence[InteractionEvent] = ()) -> tuple[SectionTransition, ...]:
    subject_of = {item.question.id: item.question.subject for item in attempt.items}
    visits = sorted(
        (e for e in events if e.action is InteractionAction.VISIT and e.question_id in subject_of),
        key=lambda e: (e.timestamp_enter, e.timestamp_leave),
    )

    out: list[SectionTransition] = []
    section_started = visits[0].timestamp_enter if visits else 0.0
    prev = None
    for v in visits:
        if prev is not None and subject_of[v.question_id] != subject_of[prev.question_id]:
            out.append(
                SectionTransition(
                    from_subject=subject_of[prev.question_id],
                    to_subject=subject_of[v.question_id],
                    timestamp=v.timestamp_enter,
                    time_spent_in_prev_section=max(0.0, prev.timestamp_leave - section_started),
                )
            )
            section_started = v.timestamp_enter
        prev = v
    return tuple(out)


def subject_average_times(attempt: Attempt) -> dict[str, float]:
    """Mean time per attempted question, per subject (0 when none attempted)."""

    sums: dict[str, float] = {}
    counts: dict[str, int] = {}
    for item in attempt.items:
        subject = item.question.subject
        sums.setdefault(subject, 0.0)
        counts.setdefault(subject, 0)
        if item.state.is_answered:
            sums[subject] += item.state.time_taken_s
            counts[subject] += 1
    return {s: (sums[s] / counts[s]) if counts[s] else 0.0 for s in sums}


def classify_error(
    time_spent_s: float,
    subject_average_s: float,
    *,
    error_tag: str | None,
    question_type: QuestionType,
    thresholds: AnalyticsThresholds,
) -> ErrorCategory:
    """Attribute one wrong answer to a likely cause.

    careless         time < careless_ratio * subject average
    time_management  time > time_management_ratio * subject average
    calculation      tagged "calculation", or an untagged numerical question
    conceptual       everything else
    """

    if subject_average_s > 0.0:
        if time_spent_s < thresholds.careless_ratio * subject_average_s:
            return ErrorCategory.CARELESS
        if time_spent_s > thresholds.time_management_ratio * subject_average_s:
            return ErrorCategory.TIME_MANAGEMENT

    tag = (error_tag or "").strip().lower()
    if tag == ErrorCategory.CALCULATION.value:
        return ErrorCategory.CALCULATION
    if tag == ErrorCategory.CONCEPTUAL.value:
        return ErrorCategory.CONCEPTUAL
    if question_type is QuestionType.NUMERICAL:
        return ErrorCategory.CALCULATION
    return ErrorCategory.CONCEPTUAL


def error_analysis(attempt: Attempt, thresholds: AnalyticsThresholds) -> ErrorAnalysis:
    averages = subject_average_times(attempt)
    errors: list[ClassifiedError] = []
    for item in attempt.items:
        q = item.question
        if classify(q, item.state.selected_option) is not Outcome.INCORRECT:
            continue
        category = classify_error(
            item.state.time_taken_s,
            averages.get(q.subject, 0.0),
            error_tag=q.error_tag,
            question_type=q.question_type,
            thresholds=thresholds,
        )
        errors.append(
            ClassifiedError(
                question_id=q.id,
                category=category,
                selected_option=item.state.selected_option,
                correct_option=expected_answer(item.question),
                concept_tested=q.topic or q.subject,
                time_spent_s=item.state.time_taken_s,
            )
        )
    return ErrorAnalysis(errors=tuple(errors))


def expected_answer(question: Question) -> Answer:
    if question.question_type is QuestionType.NUMERICAL:
        return None if question.numerical_answer is None else question.numerical_answer.exact_value
    if question.question_type is QuestionType.MULTIPLE and question.correct_options:
        return tuple(question.correct_options)
    return question.correct_option
