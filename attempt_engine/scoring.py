from __future__ import annotations

from .errors import ScoringPreconditionError
from .models import Answer, Attempt, Lifecycle, Outcome, Question, QuestionType, ScoreResult

# Numerical answers are floats; compare with a tolerance well below any
# meaningful answer precision.
_NUMERIC_EPS = 1e-9


def classify(question: Question, selected: Answer) -> Outcome:
    """Classify one answer as correct, incorrect or unattempted."""

    if selected is None:
        return Outcome.UNATTEMPTED
    return Outcome.CORRECT if is_correct(question, selected) else Outcome.INCORRECT


def is_correct(question: Question, selected: Answer) -> bool:
    if selected is None:
        return False

    qtype = question.question_type
    if qtype is QuestionType.NUMERICAL:
        numeric = question.numerical_answer
        if numeric is None or isinstance(selected, tuple):
            return False
        value = float(selected)
        if numeric.range is not None:
            return numeric.range.min - _NUMERIC_EPS <= value <= numeric.range.max + _NUMERIC_EPS
        return abs(value - float(numeric.exact_value)) <= _NUMERIC_EPS

    if qtype is QuestionType.MULTIPLE:
        expected = set(question.correct_options)
        if not expected and question.correct_option is not None:
            expected = {question.correct_option}
        chosen = set(selected) if isinstance(selected, tuple) else {selected}
        return bool(expected) and chosen == expected

    if question.correct_option is None or isinstance(selected, tuple):
        return False
    return selected == question.correct_option


def score(attempt: Attempt) -> ScoreResult:
    """Compute the final score of an attempt under its marking scheme.

    A zero-question attempt yields an all-zero result.  Accuracy is taken over
    attempted questions only and is 0 when nothing was attempted.
    """

    if attempt.lifecycle is Lifecycle.NOT_STARTED:
        raise ScoringPreconditionError(f"attempt {attempt.test_id} was never started")

    time_taken_s = max(0.0, float(attempt.total_duration_s) - float(attempt.remaining_s))
    if not attempt.items:
        return ScoreResult(
            raw_score=0.0,
            correct_count=0,
            incorrect_count=0,
            unattempted_count=0,
            accuracy_percent=0.0,
            time_taken_s=time_taken_s,
        )

    correct = incorrect = unattempted = 0
    for item in attempt.items:
        outcome = classify(item.question, item.state.selected_option)
        if outcome is Outcome.CORRECT:
            correct += 1
        elif outcome is Outcome.INCORRECT:
            incorrect += 1
        else:
            unattempted += 1

    scheme = attempt.marking_scheme
    raw = correct * scheme.correct + incorrect * scheme.incorrect + unattempted * scheme.unattempted
    attempted = correct + incorrect
    accuracy = (correct / attempted * 100.0) if attempted > 0 else 0.0

    return ScoreResult(
        raw_score=float(raw),
        correct_count=correct,
        incorrect_count=incorrect,
        unattempted_count=unattempted,
        accuracy_percent=float(accuracy),
        time_taken_s=time_taken_s,
    )
