"""Pure state transitions for an attempt.

Every function takes an ``Attempt`` and returns an ``Attempt``.  Calls that
are not valid for the current lifecycle phase return the input unchanged
(the caller gets the same object back), so a finished attempt stays a frozen,
inspectable record.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace

from .errors import InvalidLifecycleOperation, OutOfRangeError
from .models import (
    Answer,
    Attempt,
    AttemptItem,
    Lifecycle,
    Question,
    QuestionStatus,
    QuestionType,
)
from .scoring import score

logger = logging.getLogger(__name__)

# Operations accepted before start(); everything else needs IN_PROGRESS.
_PRE_START_OPS = frozenset({"navigate_to"})


def lifecycle_violation(attempt: Attempt, operation: str) -> InvalidLifecycleOperation | None:
    """Return the violation for ``operation`` in the attempt's phase, or None if allowed."""

    if attempt.lifecycle is Lifecycle.IN_PROGRESS:
        return None
    if attempt.lifecycle is Lifecycle.NOT_STARTED and operation in _PRE_START_OPS:
        return None
    return InvalidLifecycleOperation(operation, attempt.lifecycle.value)


def _ignored(attempt: Attempt, operation: str) -> bool:
    violation = lifecycle_violation(attempt, operation)
    if violation is None:
        return False
    logger.debug("%s", violation)
    return True


def _check_index(attempt: Attempt, index: int) -> None:
    if isinstance(index, bool) or not isinstance(index, int):
        raise TypeError("question index must be an int")
    if not (0 <= index < len(attempt.items)):
        raise OutOfRangeError(index, len(attempt.items))


def _with_item(attempt: Attempt, index: int, item: AttemptItem, **changes: object) -> Attempt:
    items = attempt.items[:index] + (item,) + attempt.items[index + 1 :]
    return replace(attempt, items=items, **changes)


def start(attempt: Attempt) -> Attempt:
    """not_started -> in_progress; seeds the countdown and shows the active question."""

    if attempt.lifecycle is not Lifecycle.NOT_STARTED:
        logger.debug("start ignored: attempt is %s", attempt.lifecycle.value)
        return attempt

    started = replace(attempt, lifecycle=Lifecycle.IN_PROGRESS, remaining_s=float(attempt.total_duration_s))
    if started.items:
        item = started.items[started.active_index]
        started = _with_item(started, started.active_index, replace(item, state=replace(item.state, is_visited=True)))
    logger.info("attempt %s started (%d questions, %.0fs)", attempt.test_id, attempt.question_count, attempt.total_duration_s)
    return started


def navigate_to(attempt: Attempt, index: int) -> Attempt:
    if _ignored(attempt, "navigate_to"):
        return attempt
    _check_index(attempt, index)

    item = attempt.items[index]
    if item.state.is_visited:
        return replace(attempt, active_index=index)
    return _with_item(attempt, index, replace(item, state=replace(item.state, is_visited=True)), active_index=index)


def record_answer(attempt: Attempt, index: int, option: Answer) -> Attempt:
    """Set (or with ``None``, clear) the selected answer for a question."""

    if _ignored(attempt, "record_answer"):
        return attempt
    _check_index(attempt, index)

    item = attempt.items[index]
    value = coerce_answer(item.question, option)
    if value == item.state.selected_option:
        return attempt
    return _with_item(attempt, index, replace(item, state=replace(item.state, selected_option=value)))


def toggle_mark(attempt: Attempt, index: int) -> Attempt:
    if _ignored(attempt, "toggle_mark"):
        return attempt
    _check_index(attempt, index)

    item = attempt.items[index]
    return _with_item(attempt, index, replace(item, state=replace(item.state, is_marked=not item.state.is_marked)))


def accrue_time(attempt: Attempt, index: int, delta_s: float) -> Attempt:
    """Add ``delta_s`` seconds to a question's time; negative deltas are rejected."""

    delta = _check_delta(delta_s)
    if _ignored(attempt, "accrue_time"):
        return attempt
    _check_index(attempt, index)
    if delta == 0.0:
        return attempt

    item = attempt.items[index]
    new_state = replace(item.state, time_taken_s=item.state.time_taken_s + delta)
    return _with_item(attempt, index, replace(item, state=new_state))


def tick(attempt: Attempt, delta_s: float) -> Attempt:
    """Count the timer down; reaching zero submits the attempt."""

    delta = _check_delta(delta_s)
    if _ignored(attempt, "tick"):
        return attempt

    remaining = max(0.0, attempt.remaining_s - delta)
    ticked = replace(attempt, remaining_s=remaining)
    if remaining <= 0.0:
        logger.info("attempt %s time expired; auto-submitting", attempt.test_id)
        return submit(ticked)
    return ticked


def submit(attempt: Attempt) -> Attempt:
    """in_progress -> completed, scoring exactly once.

    Submitting a completed attempt returns it unchanged with its existing score.
    """

    if attempt.lifecycle is Lifecycle.COMPLETED:
        return attempt
    if _ignored(attempt, "submit"):
        return attempt

    result = score(attempt)
    logger.info(
        "attempt %s submitted: score=%s correct=%d incorrect=%d unattempted=%d",
        attempt.test_id,
        result.raw_score,
        result.correct_count,
        result.incorrect_count,
        result.unattempted_count,
    )
    return replace(attempt, lifecycle=Lifecycle.COMPLETED, score=result)


def coerce_answer(question: Question, value: Answer) -> Answer:
    """Validate an answer against the question type and return its canonical form."""

    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError("answer must not be a bool")

    qtype = question.question_type
    if qtype is QuestionType.NUMERICAL:
        if not isinstance(value, (int, float)):
            raise TypeError(f"numerical question {question.id} needs a number")
        number = float(value)
        if not math.isfinite(number):
            raise ValueError("numerical answer must be finite")
        return number

    if qtype is QuestionType.MULTIPLE:
        if isinstance(value, int):
            value = (value,)
        if not isinstance(value, (tuple, list, set, frozenset)):
            raise TypeError(f"multiple-answer question {question.id} needs a collection of options")
        options = sorted({_check_option(question, o) for o in value})
        return tuple(options) if options else None

    if not isinstance(value, int):
        raise TypeError(f"question {question.id} needs an option index")
    return _check_option(question, value)


def _check_option(question: Question, option: object) -> int:
    if isinstance(option, bool) or not isinstance(option, int):
        raise TypeError("option index must be an int")
    if option < 0 or (question.options and option >= len(question.options)):
        raise ValueError(f"option {option} is not valid for question {question.id}")
    return option


def _check_delta(delta_s: float) -> float:
    delta = float(delta_s)
    if not math.isfinite(delta) or delta < 0.0:
        raise ValueError(f"time delta must be a non-negative number, got {delta_s!r}")
    return delta


@dataclass(frozen=True, slots=True)
class QuestionStats:
    answered: int
    marked: int
    visited: int
    not_visited: int


def question_stats(attempt: Attempt) -> QuestionStats:
    states = [item.state for item in attempt.items]
    visited = sum(1 for s in states if s.is_visited)
    return QuestionStats(
        answered=sum(1 for s in states if s.is_answered),
        marked=sum(1 for s in states if s.is_marked),
        visited=visited,
        not_visited=len(states) - visited,
    )


_STATUS_KEYS = {
    QuestionStatus.NOT_VISITED: "notVisited",
    QuestionStatus.NOT_ANSWERED: "notAnswered",
    QuestionStatus.ANSWERED: "answered",
    QuestionStatus.MARKED_FOR_REVIEW: "markedForReview",
    QuestionStatus.ANSWERED_AND_MARKED: "markedAndAnswered",
}


def question_states(attempt: Attempt) -> dict[str, list[str]]:
    """Group question ids by their derived display status."""

    grouped: dict[str, list[str]] = {key: [] for key in _STATUS_KEYS.values()}
    for item in attempt.items:
        grouped[_STATUS_KEYS[item.state.status]].append(item.question.id)
    return grouped
