"""Exception taxonomy raised by the quiz session engine."""

from __future__ import annotations

__all__ = [
    "QuizEngineError",
    "Forbidden",
    "NotFound",
    "InvalidArgument",
    "EmptySelection",
    "StaleState",
    "PositionNotFrontier",
    "AlreadyAnswered",
    "InvalidTransition",
    "SessionStoreError",
]


class QuizEngineError(RuntimeError):
    """Base class for every error the engine raises for a single call."""


class Forbidden(QuizEngineError):
    """The caller does not own the quiz or session."""

    def __init__(self) -> None:
        # Uniform message so non-owners learn nothing about the resource.
        super().__init__("Access denied.")


class NotFound(QuizEngineError):
    """The requested quiz or session does not exist."""


class InvalidArgument(QuizEngineError, ValueError):
    """A count, option set, position or name failed validation."""


class EmptySelection(QuizEngineError):
    """A selection mode produced no qualifying questions."""


class StaleState(QuizEngineError):
    """The caller acted on an outdated view of session progress.

    Safe to retry after re-resolving navigation; stored progress is never
    modified when one of these is raised.
    """


class PositionNotFrontier(StaleState):
    def __init__(self, position: int, frontier: int) -> None:
        super().__init__(
            f"Position {position} is not the frontier (expected {frontier})."
        )
        self.position = position
        self.frontier = frontier


class AlreadyAnswered(StaleState):
    def __init__(self, position: int) -> None:
        super().__init__(f"Position {position} has already been answered.")
        self.position = position


class InvalidTransition(QuizEngineError):
    """An illegal session status change was requested."""


class SessionStoreError(QuizEngineError):
    """Raised when session persistence fails (IO, corruption, lock timeout)."""
