"""Exception hierarchy for the attempt engine."""

from __future__ import annotations


class AttemptEngineError(Exception):
    """Base class for every error raised by the engine."""


class OutOfRangeError(AttemptEngineError, IndexError):
    """Navigation or mutation targeted a question index that does not exist."""

    def __init__(self, index: int, count: int) -> None:
        super().__init__(f"question index {index} out of range for {count} question(s)")
        self.index = index
        self.count = count


class InvalidLifecycleOperation(AttemptEngineError):
    """A mutation was attempted outside the in-progress phase.

    The state store treats this as a no-op; only a strict session raises it.
    """

    def __init__(self, operation: str, lifecycle: str) -> None:
        super().__init__(f"{operation} ignored: attempt is {lifecycle}")
        self.operation = operation
        self.lifecycle = lifecycle


class MalformedAttemptDataError(AttemptEngineError, ValueError):
    """Externally sourced attempt data is structurally corrupt."""


class ScoringPreconditionError(AttemptEngineError):
    """Scoring was requested for an attempt that cannot be scored."""
