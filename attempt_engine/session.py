"""Clock-driven session around the pure attempt transitions.

``AttemptSession`` is what a UI talks to.  It owns the current ``Attempt``
value, charges elapsed clock time to the active question before anything
changes which question is active, counts the timer down on ``update()``, and
records the interaction log the analytics run over.

Timestamps in the interaction log and navigation history are seconds since
``start()``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from . import attempt_state
from .analytics import AnalyticsSnapshot, build_snapshot
from .clock import Clock
from .config import AnalyticsThresholds
from .errors import InvalidLifecycleOperation
from .interaction_log import InteractionRecorder, NavigationAction
from .models import Answer, Attempt, Lifecycle, ScoreResult
from .persistence import AttemptRepository
from .results import build_payload

logger = logging.getLogger(__name__)


class AttemptSession:
    def __init__(
        self,
        attempt: Attempt,
        *,
        clock: Clock,
        repository: AttemptRepository | None = None,
        attempt_id: str | None = None,
        thresholds: AnalyticsThresholds | None = None,
        recorder: InteractionRecorder | None = None,
        strict: bool = False,
    ) -> None:
        self._attempt = attempt
        self._clock = clock
        self._repository = repository
        self._attempt_id = str(attempt_id) if attempt_id is not None else attempt.test_id
        self._thresholds = thresholds if thresholds is not None else AnalyticsThresholds()
        self._recorder = recorder if recorder is not None else InteractionRecorder()
        self._strict = bool(strict)
        self._lock = threading.Lock()

        self._started_at_s: float | None = None
        self._last_flush_s: float | None = None
        if attempt.lifecycle is Lifecycle.IN_PROGRESS:
            # Resuming: place the start so that elapsed time matches the countdown.
            now = self._clock.now()
            self._started_at_s = now - max(0.0, attempt.total_duration_s - attempt.remaining_s)
            self._last_flush_s = now
            if attempt.active_item is not None:
                self._recorder.enter(attempt.active_item.question.id, self._elapsed())

    @classmethod
    def from_repository(
        cls,
        repository: AttemptRepository,
        attempt_id: str,
        *,
        clock: Clock,
        **kwargs: Any,
    ) -> AttemptSession:
        attempt = repository.load(attempt_id)
        if attempt is None:
            raise KeyError(f"no attempt stored under {attempt_id!r}")
        return cls(attempt, clock=clock, repository=repository, attempt_id=attempt_id, **kwargs)

    @property
    def attempt(self) -> Attempt:
        return self._attempt

    @property
    def attempt_id(self) -> str:
        return self._attempt_id

    @property
    def lifecycle(self) -> Lifecycle:
        return self._attempt.lifecycle

    @property
    def active_index(self) -> int:
        return self._attempt.active_index

    @property
    def recorder(self) -> InteractionRecorder:
        return self._recorder

    def remaining_s(self) -> float:
        """Countdown value as of now, without mutating the attempt."""

        remaining = self._attempt.remaining_s
        if self._attempt.lifecycle is Lifecycle.IN_PROGRESS and self._last_flush_s is not None:
            remaining -= max(0.0, self._clock.now() - self._last_flush_s)
        return max(0.0, remaining)

    def start(self) -> None:
        with self._lock:
            self._check("start", allowed=(Lifecycle.NOT_STARTED,))
            if self._attempt.lifecycle is not Lifecycle.NOT_STARTED:
                return
            self._attempt = attempt_state.start(self._attempt)
            now = self._clock.now()
            self._started_at_s = now
            self._last_flush_s = now
            item = self._attempt.active_item
            if item is not None:
                self._recorder.enter(item.question.id, 0.0)
                self._recorder.navigate(0.0, from_question=None, to_question=item.question.id, action=NavigationAction.CLICK)
            self._save()

    def update(self) -> None:
        """Charge elapsed time and count down; expiry submits the attempt."""

        with self._lock:
            self._flush()

    def navigate_to(self, index: int, *, action: NavigationAction = NavigationAction.CLICK) -> None:
        with self._lock:
            self._navigate(index, action)

    def next(self) -> None:
        """Move to the next question; a no-op on the last one."""

        with self._lock:
            if self._attempt.active_index + 1 < self._attempt.question_count:
                self._navigate(self._attempt.active_index + 1, NavigationAction.NEXT)

    def prev(self) -> None:
        with self._lock:
            if self._attempt.active_index > 0:
                self._navigate(self._attempt.active_index - 1, NavigationAction.PREV)

    def _navigate(self, index: int, action: NavigationAction) -> None:
        self._check("navigate_to", allowed=(Lifecycle.NOT_STARTED, Lifecycle.IN_PROGRESS))
        self._flush()
        before = self._attempt
        self._attempt = attempt_state.navigate_to(self._attempt, index)
        if self._attempt is before or self._attempt.lifecycle is not Lifecycle.IN_PROGRESS:
            return
        prev_item = before.active_item
        item = self._attempt.active_item
        if item is None:
            return
        at = self._elapsed()
        if prev_item is None or prev_item.question.id != item.question.id:
            self._recorder.enter(item.question.id, at)
        self._recorder.navigate(
            at,
            from_question=None if prev_item is None else prev_item.question.id,
            to_question=item.question.id,
            action=action,
        )

    def answer(self, option: Answer, *, index: int | None = None) -> None:
        """Record an answer for ``index`` (the active question by default)."""

        with self._lock:
            self._check("record_answer")
            self._flush()
            i = self._attempt.active_index if index is None else index
            before = self._attempt
            self._attempt = attempt_state.record_answer(self._attempt, i, option)
            if self._attempt is before:
                return
            qid = self._attempt.items[i].question.id
            at = self._elapsed()
            self._recorder.answer(
                qid,
                at,
                from_option=before.items[i].state.selected_option,
                to_option=self._attempt.items[i].state.selected_option,
            )
            self._recorder.navigate(at, from_question=qid, to_question=qid, action=NavigationAction.ANSWER)

    def clear(self, *, index: int | None = None) -> None:
        self.answer(None, index=index)

    def toggle_mark(self, *, index: int | None = None) -> None:
        with self._lock:
            self._check("toggle_mark")
            self._flush()
            i = self._attempt.active_index if index is None else index
            before = self._attempt
            self._attempt = attempt_state.toggle_mark(self._attempt, i)
            if self._attempt is before:
                return
            qid = self._attempt.items[i].question.id
            marked = self._attempt.items[i].state.is_marked
            at = self._elapsed()
            self._recorder.mark(qid, at, marked=marked)
            self._recorder.navigate(
                at,
                from_question=qid,
                to_question=qid,
                action=NavigationAction.MARK if marked else NavigationAction.UNMARK,
            )

    def submit(self) -> ScoreResult | None:
        """Submit once; later calls (from any thread) return the same result."""

        with self._lock:
            if self._attempt.lifecycle is Lifecycle.COMPLETED:
                return self._attempt.score
            self._check("submit")
            self._flush()
            if self._attempt.lifecycle is Lifecycle.IN_PROGRESS:
                self._attempt = attempt_state.submit(self._attempt)
                self._on_completed()
            return self._attempt.score

    def snapshot(self) -> AnalyticsSnapshot:
        return build_snapshot(self._attempt, self._recorder.events(), thresholds=self._thresholds)

    def payload(self) -> dict[str, Any]:
        return build_payload(self._attempt, self.snapshot(), self._recorder.navigation())

    def save(self) -> None:
        with self._lock:
            self._save()

    def _elapsed(self) -> float:
        if self._started_at_s is None:
            return 0.0
        return max(0.0, self._clock.now() - self._started_at_s)

    def _check(
        self,
        operation: str,
        *,
        allowed: tuple[Lifecycle, ...] = (Lifecycle.IN_PROGRESS,),
    ) -> None:
        if not self._strict or self._attempt.lifecycle in allowed:
            return
        raise InvalidLifecycleOperation(operation, self._attempt.lifecycle.value)

    def _flush(self) -> None:
        if self._attempt.lifecycle is not Lifecycle.IN_PROGRESS or self._last_flush_s is None:
            return
        now = self._clock.now()
        dt = max(0.0, now - self._last_flush_s)
        self._last_flush_s = now
        if dt == 0.0:
            return

        charged = min(dt, self._attempt.remaining_s)
        if self._attempt.items and charged > 0.0:
            self._attempt = attempt_state.accrue_time(self._attempt, self._attempt.active_index, charged)
        self._attempt = attempt_state.tick(self._attempt, dt)
        if self._attempt.lifecycle is Lifecycle.COMPLETED:
            self._on_completed()

    def _on_completed(self) -> None:
        self._recorder.leave(self._elapsed())
        if self._repository is None:
            return
        self._repository.save(self._attempt_id, self._attempt)
        self._repository.save_result(self._attempt_id, self.payload())
        logger.info("attempt %s saved as %s", self._attempt.test_id, self._attempt_id)

    def _save(self) -> None:
        if self._repository is not None:
            self._repository.save(self._attempt_id, self._attempt)
