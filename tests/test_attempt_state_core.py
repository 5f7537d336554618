"""Tests for the pure attempt state transitions.

Every transition returns a new ``Attempt``; these tests check the lifecycle
rules, navigation bounds, answer coercion and the derived question statuses.
No clock or pygame is involved.
"""

from __future__ import annotations

import pytest

from attempt_engine import attempt_state as st
from attempt_engine.errors import OutOfRangeError
from attempt_engine.models import (
    Lifecycle,
    MarkingScheme,
    NumericalAnswer,
    Question,
    QuestionStatus,
    QuestionType,
    new_attempt,
)


def _questions() -> list[Question]:
    return [
        Question(id="q1", subject="physics", options=("a", "b", "c", "d"), correct_option=0),
        Question(
            id="q2",
            subject="physics",
            question_type=QuestionType.MULTIPLE,
            options=("a", "b", "c", "d"),
            correct_options=(1, 3),
        ),
        Question(
            id="q3",
            subject="maths",
            question_type=QuestionType.NUMERICAL,
            numerical_answer=NumericalAnswer(exact_value=2.0),
        ),
    ]


def _started(duration: float = 600.0):
    return st.start(new_attempt(test_id="t1", questions=_questions(), total_duration_s=duration))


def test_start_seeds_countdown_and_visits_first_question() -> None:
    attempt = new_attempt(test_id="t1", questions=_questions(), total_duration_s=600.0)
    assert attempt.lifecycle is Lifecycle.NOT_STARTED

    started = st.start(attempt)
    assert started.lifecycle is Lifecycle.IN_PROGRESS
    assert started.remaining_s == 600.0
    assert started.items[0].state.is_visited
    assert not started.items[1].state.is_visited
    # Starting twice is a no-op.
    assert st.start(started) is started


def test_navigate_marks_visited_and_rejects_out_of_range() -> None:
    attempt = st.navigate_to(_started(), 2)
    assert attempt.active_index == 2
    assert attempt.items[2].state.is_visited

    with pytest.raises(OutOfRangeError):
        st.navigate_to(attempt, 3)
    with pytest.raises(IndexError):
        st.navigate_to(attempt, -1)


@pytest.mark.parametrize("index", [0, 1, -1])
def test_navigate_on_empty_attempt_is_out_of_range(index: int) -> None:
    empty = st.start(new_attempt(test_id="t0", questions=[], total_duration_s=60.0))
    assert empty.lifecycle is Lifecycle.IN_PROGRESS
    with pytest.raises(OutOfRangeError):
        st.navigate_to(empty, index)


def test_navigation_before_start_is_allowed() -> None:
    attempt = new_attempt(test_id="t1", questions=_questions(), total_duration_s=60.0)
    previewed = st.navigate_to(attempt, 1)
    assert previewed.active_index == 1
    assert previewed.items[1].state.is_visited
    assert previewed.lifecycle is Lifecycle.NOT_STARTED


def test_mutations_before_start_are_noops() -> None:
    attempt = new_attempt(test_id="t1", questions=_questions(), total_duration_s=60.0)
    assert st.record_answer(attempt, 0, 1) is attempt
    assert st.toggle_mark(attempt, 0) is attempt
    assert st.accrue_time(attempt, 0, 5.0) is attempt
    assert st.tick(attempt, 5.0) is attempt
    assert st.submit(attempt) is attempt


def test_record_answer_and_clear_keeps_visited() -> None:
    attempt = st.record_answer(_started(), 0, 2)
    assert attempt.items[0].state.selected_option == 2
    assert attempt.items[0].state.status is QuestionStatus.ANSWERED

    cleared = st.record_answer(attempt, 0, None)
    assert cleared.items[0].state.selected_option is None
    assert cleared.items[0].state.is_visited
    assert cleared.items[0].state.status is QuestionStatus.NOT_ANSWERED


def test_answer_coercion_by_question_type() -> None:
    attempt = _started()
    attempt = st.record_answer(attempt, 1, [3, 1, 3])
    assert attempt.items[1].state.selected_option == (1, 3)
    attempt = st.record_answer(attempt, 1, ())
    assert attempt.items[1].state.selected_option is None

    attempt = st.record_answer(attempt, 2, 2)
    assert attempt.items[2].state.selected_option == 2.0
    assert isinstance(attempt.items[2].state.selected_option, float)

    with pytest.raises(ValueError):
        st.record_answer(attempt, 0, 7)
    with pytest.raises(TypeError):
        st.record_answer(attempt, 0, True)
    with pytest.raises(TypeError):
        st.record_answer(attempt, 2, "2")


def test_toggle_mark_is_independent_of_answer() -> None:
    attempt = st.toggle_mark(_started(), 0)
    assert attempt.items[0].state.status is QuestionStatus.MARKED_FOR_REVIEW
    attempt = st.record_answer(attempt, 0, 0)
    assert attempt.items[0].state.status is QuestionStatus.ANSWERED_AND_MARKED
    attempt = st.toggle_mark(attempt, 0)
    assert attempt.items[0].state.status is QuestionStatus.ANSWERED


def test_accrue_time_rejects_negative_delta() -> None:
    attempt = st.accrue_time(_started(), 0, 2.5)
    attempt = st.accrue_time(attempt, 0, 1.5)
    assert attempt.items[0].state.time_taken_s == pytest.approx(4.0)

    with pytest.raises(ValueError):
        st.accrue_time(attempt, 0, -1.0)
    with pytest.raises(ValueError):
        st.tick(attempt, -0.1)


def test_tick_floors_at_zero_and_submits_once() -> None:
    attempt = st.record_answer(_started(duration=10.0), 0, 0)
    attempt = st.tick(attempt, 4.0)
    assert attempt.remaining_s == pytest.approx(6.0)
    assert attempt.lifecycle is Lifecycle.IN_PROGRESS

    expired = st.tick(attempt, 100.0)
    assert expired.remaining_s == 0.0
    assert expired.lifecycle is Lifecycle.COMPLETED
    assert expired.score is not None
    assert expired.score.correct_count == 1
    assert expired.score.time_taken_s == pytest.approx(10.0)

    # Further ticks are no-ops and keep the original score object.
    assert st.tick(expired, 1.0) is expired


def test_mutations_after_submit_are_noops() -> None:
    done = st.submit(st.record_answer(_started(), 0, 0))
    assert done.lifecycle is Lifecycle.COMPLETED

    assert st.record_answer(done, 0, 1) is done
    assert st.toggle_mark(done, 1) is done
    assert st.accrue_time(done, 0, 3.0) is done
    assert st.navigate_to(done, 2) is done
    # Out-of-range navigation on a finished attempt is still a no-op.
    assert st.navigate_to(done, 99) is done


def test_submit_is_idempotent() -> None:
    done = st.submit(st.record_answer(_started(), 0, 0))
    again = st.submit(done)
    assert again is done
    assert again.score is done.score


def test_lifecycle_violation_reports_operation() -> None:
    done = st.submit(_started())
    violation = st.lifecycle_violation(done, "toggle_mark")
    assert violation is not None
    assert violation.operation == "toggle_mark"
    assert violation.lifecycle == "completed"
    assert st.lifecycle_violation(_started(), "toggle_mark") is None


def test_question_stats_and_states() -> None:
    attempt = _started()
    attempt = st.record_answer(attempt, 0, 1)
    attempt = st.navigate_to(attempt, 1)
    attempt = st.toggle_mark(attempt, 1)

    stats = st.question_stats(attempt)
    assert (stats.answered, stats.marked, stats.visited, stats.not_visited) == (1, 1, 2, 1)

    states = st.question_states(attempt)
    assert states["answered"] == ["q1"]
    assert states["markedForReview"] == ["q2"]
    assert states["notVisited"] == ["q3"]
    assert states["notAnswered"] == []
    assert states["markedAndAnswered"] == []


def test_zero_question_attempt_starts_and_submits() -> None:
    attempt = st.start(new_attempt(test_id="empty", questions=[], total_duration_s=30.0, marking_scheme=MarkingScheme()))
    assert attempt.active_item is None
    done = st.submit(st.tick(attempt, 5.0))
    assert done.score is not None
    assert done.score.total_questions == 0
    assert done.score.raw_score == 0.0
