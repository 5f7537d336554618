"""Analytics aggregation over a finished (or in-flight) attempt.

``build_snapshot`` is the entry point.  It is a pure function of the attempt,
the interaction events and the thresholds: nothing is cached and calling it
twice on the same input yields equal snapshots.  The snapshot is never a source
of truth; persist the attempt and the event log, and re-derive.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .behavior import (
    ConfidenceMetrics,
    ErrorAnalysis,
    QuestionBehavior,
    SectionTransition,
    confidence_metrics,
    error_analysis,
    question_behaviors,
    section_transitions,
)
from .config import AnalyticsThresholds
from .interaction_log import InteractionAction, InteractionEvent
from .models import Attempt, Outcome
from .scoring import classify

# Edges of the fine-grained id lists on the results screen.
_FINE_EDGES_S = (30.0, 60.0, 120.0)


@dataclass(frozen=True, slots=True)
class SubjectMetrics:
    subject: str
    total: int
    attempted: int
    correct: int
    incorrect: int
    accuracy: float
    time_spent: float
    average_time_per_question: float
    time_estimated: bool = False


@dataclass(frozen=True, slots=True)
class TimeDistribution:
    quick: float
    moderate: float
    lengthy: float
    quick_count: int
    moderate_count: int
    lengthy_count: int
    less_than_30s: tuple[str, ...]
    between_30_and_60s: tuple[str, ...]
    between_1_and_2min: tuple[str, ...]
    more_than_2min: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class StrategyMetrics:
    optimal_choices: int
    backtracking: int
    subject_switching: int
    time_wasted_on_incorrect: float
    time_spent_on_correct: float
    unused_time: float
    correctly_marked_review: int
    unnecessary_reviews: int
    effective_revisions: int


@dataclass(frozen=True, slots=True)
class SectionCompletion:
    completion_rate: float
    time_utilization: float
    efficiency: float


@dataclass(frozen=True, slots=True)
class CompletionMetrics:
    planned_pace: float
    actual_pace: float
    pace_variation: tuple[float, ...]
    section_completion: tuple[tuple[str, SectionCompletion], ...]
    time_management_score: int


@dataclass(frozen=True, slots=True)
class AnalyticsSnapshot:
    total_time_spent: float
    average_time_per_question: float
    subject_wise: tuple[SubjectMetrics, ...]
    time_distribution: TimeDistribution
    behaviors: tuple[QuestionBehavior, ...]
    confidence: ConfidenceMetrics
    section_transitions: tuple[SectionTransition, ...]
    errors: ErrorAnalysis
    strategy: StrategyMetrics
    completion: CompletionMetrics


def time_taken_s(attempt: Attempt) -> float:
    if attempt.score is not None:
        return attempt.score.time_taken_s
    return max(0.0, attempt.total_duration_s - attempt.remaining_s)


def distribute_time_by_share(question_counts: Mapping[str, int], total_time_s: float) -> dict[str, float]:
    """Split ``total_time_s`` across subjects in proportion to their question counts.

    This is the documented estimate used when no per-subject time was recorded.
    """

    total = sum(max(0, int(n)) for n in question_counts.values())
    if total <= 0 or total_time_s <= 0:
        return {s: 0.0 for s in question_counts}
    return {s: float(total_time_s) * max(0, int(n)) / total for s, n in question_counts.items()}


def subject_metrics(attempt: Attempt) -> tuple[SubjectMetrics, ...]:
    totals: dict[str, int] = {}
    attempted: dict[str, int] = {}
    correct: dict[str, int] = {}
    spent: dict[str, float] = {}
    for item in attempt.items:
        s = item.question.subject
        totals[s] = totals.get(s, 0) + 1
        spent[s] = spent.get(s, 0.0) + item.state.time_taken_s
        outcome = classify(item.question, item.state.selected_option)
        if outcome is not Outcome.UNATTEMPTED:
            attempted[s] = attempted.get(s, 0) + 1
        if outcome is Outcome.CORRECT:
            correct[s] = correct.get(s, 0) + 1

    estimated = False
    elapsed = time_taken_s(attempt)
    if totals and sum(spent.values()) <= 0.0 and elapsed > 0.0:
        spent = distribute_time_by_share(totals, elapsed)
        estimated = True

    out: list[SubjectMetrics] = []
    for s, total in totals.items():
        a = attempted.get(s, 0)
        c = correct.get(s, 0)
        t = spent.get(s, 0.0)
        out.append(
            SubjectMetrics(
                subject=s,
                total=total,
                attempted=a,
                correct=c,
                incorrect=a - c,
                accuracy=(c / a) if a else 0.0,
                time_spent=t,
                average_time_per_question=(t / a) if a else 0.0,
                time_estimated=estimated,
            )
        )
    return tuple(out)


def time_distribution(attempt: Attempt, thresholds: AnalyticsThresholds) -> TimeDistribution:
    """Bucket attempted questions by time spent.

    Shares are of attempted questions; the fine-grained id lists cover every
    question in the paper.
    """

    quick = moderate = lengthy = 0
    fine: tuple[list[str], list[str], list[str], list[str]] = ([], [], [], [])
    for item in attempt.items:
        t = item.state.time_taken_s
        if t < _FINE_EDGES_S[0]:
            fine[0].append(item.question.id)
        elif t < _FINE_EDGES_S[1]:
            fine[1].append(item.question.id)
        elif t <= _FINE_EDGES_S[2]:
            fine[2].append(item.question.id)
        else:
            fine[3].append(item.question.id)

        if not item.state.is_answered:
            continue
        if t < thresholds.quick_bucket_s:
            quick += 1
        elif t > thresholds.lengthy_bucket_s:
            lengthy += 1
        else:
            moderate += 1

    n = quick + moderate + lengthy
    return TimeDistribution(
        quick=(quick / n) if n else 0.0,
        moderate=(moderate / n) if n else 0.0,
        lengthy=(lengthy / n) if n else 0.0,
        quick_count=quick,
        moderate_count=moderate,
        lengthy_count=lengthy,
        less_than_30s=tuple(fine[0]),
        between_30_and_60s=tuple(fine[1]),
        between_1_and_2min=tuple(fine[2]),
        more_than_2min=tuple(fine[3]),
    )


def time_management_score(dist: TimeDistribution, thresholds: AnalyticsThresholds) -> int:
    n = dist.quick_count + dist.moderate_count + dist.lengthy_count
    if n == 0:
        return 0
    w_quick, w_moderate, w_lengthy = thresholds.efficiency_weights
    weighted = dist.quick_count * w_quick + dist.moderate_count * w_moderate + dist.lengthy_count * w_lengthy
    return int(round(weighted / n * 100))


def strategy_metrics(
    attempt: Attempt,
    events: Sequence[InteractionEvent],
    behaviors: Sequence[QuestionBehavior],
    transitions: Sequence[SectionTransition],
) -> StrategyMetrics:
    """Sequencing, time use and review habits.

    optimal choices: correct answers that were never revised.
    backtracking: moves from a question to an earlier one, in visit order.
    correctly marked review: marked questions that ended correct.
    unnecessary reviews: marked questions whose answer was never revised.
    effective revisions: revised questions that ended correct.
    """

    position = {item.question.id: i for i, item in enumerate(attempt.items)}
    visits = sorted(
        (e for e in events if e.action is InteractionAction.VISIT and e.question_id in position),
        key=lambda e: (e.timestamp_enter, e.timestamp_leave),
    )
    backtracking = sum(1 for prev, cur in zip(visits, visits[1:]) if position[cur.question_id] < position[prev.question_id])

    by_id = {b.question_id: b for b in behaviors}
    wasted = on_correct = 0.0
    optimal_count = marked_correct = unnecessary = effective = 0
    for item in attempt.items:
        b = by_id[item.question.id]
        outcome = b.final_outcome
        t = item.state.time_taken_s
        if outcome is Outcome.CORRECT:
            on_correct += t
            if b.revision_count == 0:
                optimal_count += 1
            if b.revision_count > 0:
                effective += 1
        elif outcome is Outcome.INCORRECT:
            wasted += t
        if item.state.is_marked:
            if outcome is Outcome.CORRECT:
                marked_correct += 1
            if b.revision_count == 0:
                unnecessary += 1

    return StrategyMetrics(
        optimal_choices=optimal_count,
        backtracking=backtracking,
        subject_switching=len(transitions),
        time_wasted_on_incorrect=wasted,
        time_spent_on_correct=on_correct,
        unused_time=max(0.0, attempt.remaining_s),
        correctly_marked_review=marked_correct,
        unnecessary_reviews=unnecessary,
        effective_revisions=effective,
    )


def completion_metrics(
    attempt: Attempt,
    subjects: Sequence[SubjectMetrics],
    dist: TimeDistribution,
    thresholds: AnalyticsThresholds,
) -> CompletionMetrics:
    n = attempt.question_count
    planned = (attempt.total_duration_s / n) if n else 0.0
    answered = [item for item in attempt.items if item.state.is_answered]
    actual = (time_taken_s(attempt) / len(answered)) if answered else 0.0

    sections: list[tuple[str, SectionCompletion]] = []
    for s in subjects:
        planned_subject = planned * s.total
        sections.append(
            (
                s.subject,
                SectionCompletion(
                    completion_rate=(s.attempted / s.total) if s.total else 0.0,
                    time_utilization=(s.time_spent / planned_subject) if planned_subject > 0 else 0.0,
                    efficiency=(s.correct / s.attempted) if s.attempted else 0.0,
                ),
            )
        )

    return CompletionMetrics(
        planned_pace=planned,
        actual_pace=actual,
        pace_variation=tuple(item.state.time_taken_s - planned for item in answered),
        section_completion=tuple(sections),
        time_management_score=time_management_score(dist, thresholds),
    )


def build_snapshot(
    attempt: Attempt,
    events: Sequence[InteractionEvent] = (),
    *,
    thresholds: AnalyticsThresholds | None = None,
) -> AnalyticsSnapshot:
    th = thresholds if thresholds is not None else AnalyticsThresholds()
    events = tuple(events)

    subjects = subject_metrics(attempt)
    dist = time_distribution(attempt, th)
    behaviors = question_behaviors(attempt, events)
    transitions = section_transitions(attempt, events)
    total = time_taken_s(attempt)
    n = attempt.question_count

    return AnalyticsSnapshot(
        total_time_spent=total,
        average_time_per_question=(total / n) if n else 0.0,
        subject_wise=subjects,
        time_distribution=dist,
        behaviors=behaviors,
        confidence=confidence_metrics(attempt, behaviors, th),
        section_transitions=transitions,
        errors=error_analysis(attempt, th),
        strategy=strategy_metrics(attempt, events, behaviors, transitions),
        completion=completion_metrics(attempt, subjects, dist, th),
    )
