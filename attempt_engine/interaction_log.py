"""Interaction records consumed by the analytics aggregator.

Events are immutable and the log is append-only.  ``InteractionRecorder`` is
the default capture adapter used by ``AttemptSession``; any other producer can
hand the aggregator its own sequence of ``InteractionEvent`` values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import Answer


class InteractionAction(str, Enum):
    VISIT = "visit"
    ANSWER = "answer"
    MARK = "mark"
    UNMARK = "unmark"


class NavigationAction(str, Enum):
    CLICK = "click"
    NEXT = "next"
    PREV = "prev"
    MARK = "mark"
    UNMARK = "unmark"
    ANSWER = "answer"


@dataclass(frozen=True, slots=True)
class InteractionEvent:
    question_id: str
    timestamp_enter: float
    timestamp_leave: float
    action: InteractionAction
    from_option: Answer = None
    to_option: Answer = None

    @property
    def duration_s(self) -> float:
        return max(0.0, self.timestamp_leave - self.timestamp_enter)


@dataclass(frozen=True, slots=True)
class NavigationEntry:
    timestamp: float
    from_question: str | None
    to_question: str | None
    action: NavigationAction


class InteractionRecorder:
    """Collects visit/answer/mark events and navigation history for one attempt."""

    def __init__(self) -> None:
        self._events: list[InteractionEvent] = []
        self._navigation: list[NavigationEntry] = []
        self._open_question: str | None = None
        self._opened_at: float | None = None

    @property
    def open_question(self) -> str | None:
        return self._open_question

    def enter(self, question_id: str, at_s: float) -> None:
        """Start a visit; any visit still open is closed at the same instant."""

        if self._open_question == question_id:
            return
        self.leave(at_s)
        self._open_question = question_id
        self._opened_at = float(at_s)

    def leave(self, at_s: float) -> None:
        if self._open_question is None or self._opened_at is None:
            return
        self._events.append(
            InteractionEvent(
                question_id=self._open_question,
                timestamp_enter=self._opened_at,
                timestamp_leave=max(self._opened_at, float(at_s)),
                action=InteractionAction.VISIT,
            )
        )
        self._open_question = None
        self._opened_at = None

    def answer(self, question_id: str, at_s: float, *, from_option: Answer, to_option: Answer) -> None:
        t = float(at_s)
        self._events.append(
            InteractionEvent(
                question_id=question_id,
                timestamp_enter=t,
                timestamp_leave=t,
                action=InteractionAction.ANSWER,
                from_option=from_option,
                to_option=to_option,
            )
        )

    def mark(self, question_id: str, at_s: float, *, marked: bool) -> None:
        t = float(at_s)
        action = InteractionAction.MARK if marked else InteractionAction.UNMARK
        self._events.append(InteractionEvent(question_id=question_id, timestamp_enter=t, timestamp_leave=t, action=action))

    def navigate(
        self,
        at_s: float,
        *,
        from_question: str | None,
        to_question: str | None,
        action: NavigationAction,
    ) -> None:
        self._navigation.append(
            NavigationEntry(timestamp=float(at_s), from_question=from_question, to_question=to_question, action=action)
        )

    def events(self) -> tuple[InteractionEvent, ...]:
        return tuple(self._events)

    def navigation(self) -> tuple[NavigationEntry, ...]:
        return tuple(self._navigation)
