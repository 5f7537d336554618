from __future__ import annotations

from dataclasses import replace

import pytest

from attempt_engine import attempt_state as st
from attempt_engine.errors import ScoringPreconditionError
from attempt_engine.models import (
    MarkingScheme,
    NumericalAnswer,
    NumericRange,
    Outcome,
    Question,
    QuestionType,
    new_attempt,
)
from attempt_engine.scoring import classify, is_correct, score


def _single(qid: str, correct: int = 0) -> Question:
    return Question(id=qid, subject="s", options=("a", "b", "c", "d"), correct_option=correct)


def test_worked_example_marking_scheme() -> None:
    """Three questions under {+4, -1, 0}: one right, one wrong, one skipped."""
    attempt = new_attempt(
        test_id="t",
        questions=[_single("q1"), _single("q2"), _single("q3")],
        total_duration_s=60.0,
        marking_scheme=MarkingScheme(correct=4.0, incorrect=-1.0, unattempted=0.0),
    )
    attempt = st.start(attempt)
    attempt = st.record_answer(attempt, 0, 0)
    attempt = st.record_answer(attempt, 1, 2)

    result = score(attempt)
    assert result.raw_score == pytest.approx(3.0)
    assert result.accuracy_percent == pytest.approx(50.0)
    assert (result.correct_count, result.incorrect_count, result.unattempted_count) == (1, 1, 1)


def test_nothing_answered_scores_unattempted_only() -> None:
    attempt = new_attempt(
        test_id="t",
        questions=[_single("q1"), _single("q2"), _single("q3"), _single("q4")],
        total_duration_s=60.0,
        marking_scheme=MarkingScheme(correct=4.0, incorrect=-1.0, unattempted=-0.25),
    )
    result = score(st.start(attempt))
    assert result.accuracy_percent == 0.0
    assert result.raw_score == pytest.approx(4 * -0.25)
    assert result.unattempted_count == 4


def test_counts_always_sum_to_total() -> None:
    questions = [_single(f"q{i}", correct=i % 4) for i in range(10)]
    attempt = st.start(new_attempt(test_id="t", questions=questions, total_duration_s=60.0))
    for i in range(0, 10, 2):
        attempt = st.record_answer(attempt, i, 1)
    result = score(attempt)
    assert result.correct_count + result.incorrect_count + result.unattempted_count == 10
    assert result.total_questions == 10


def test_scoring_is_deterministic() -> None:
    attempt = st.start(new_attempt(test_id="t", questions=[_single("q1"), _single("q2", 1)], total_duration_s=60.0))
    attempt = st.record_answer(attempt, 1, 1)
    attempt = st.tick(attempt, 12.5)
    assert score(attempt) == score(attempt)


def test_numeric_range_is_inclusive() -> None:
    q = Question(
        id="n",
        subject="s",
        question_type=QuestionType.NUMERICAL,
        numerical_answer=NumericalAnswer(exact_value=10.0, range=NumericRange(9.8, 10.2)),
    )
    assert is_correct(q, 10.0)
    assert is_correct(q, 9.8)
    assert is_correct(q, 10.2)
    assert not is_correct(q, 10.5)
    assert classify(q, None) is Outcome.UNATTEMPTED


def test_numeric_without_range_needs_exact_value() -> None:
    q = Question(
        id="n",
        subject="s",
        question_type=QuestionType.NUMERICAL,
        numerical_answer=NumericalAnswer(exact_value=79.0),
    )
    assert is_correct(q, 79.0)
    assert is_correct(q, 79)
    assert not is_correct(q, 79.01)


def test_multiple_choice_needs_exact_set() -> None:
    q = Question(
        id="m",
        subject="s",
        question_type=QuestionType.MULTIPLE,
        options=("a", "b", "c", "d"),
        correct_options=(0, 2),
    )
    assert classify(q, (0, 2)) is Outcome.CORRECT
    assert classify(q, (2, 0)) is Outcome.CORRECT
    assert classify(q, (0,)) is Outcome.INCORRECT
    assert classify(q, (0, 1, 2)) is Outcome.INCORRECT


def test_time_taken_is_duration_minus_remaining() -> None:
    attempt = st.start(new_attempt(test_id="t", questions=[_single("q1")], total_duration_s=100.0))
    attempt = st.tick(attempt, 37.0)
    assert score(attempt).time_taken_s == pytest.approx(37.0)


def test_zero_questions_is_degenerate_not_an_error() -> None:
    attempt = st.start(new_attempt(test_id="t", questions=[], total_duration_s=10.0))
    result = score(attempt)
    assert result.raw_score == 0.0
    assert result.accuracy_percent == 0.0
    assert result.total_questions == 0


def test_scoring_unstarted_attempt_raises() -> None:
    attempt = new_attempt(test_id="t", questions=[_single("q1")], total_duration_s=10.0)
    with pytest.raises(ScoringPreconditionError):
        score(attempt)


def test_stored_score_matches_rescoring() -> None:
    attempt = st.start(new_attempt(test_id="t", questions=[_single("q1"), _single("q2")], total_duration_s=10.0))
    done = st.submit(st.record_answer(attempt, 0, 0))
    assert done.score == score(replace(done, score=None))
