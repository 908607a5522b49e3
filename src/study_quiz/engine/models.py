"""Data structures shared across the quiz session engine.

Quizzes and questions are read-only inputs supplied by a question source.
Sessions and their items are the engine's own state; they are immutable
values and every mutation produces a new ``QuizSession`` that the store
persists as a unit.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, MutableMapping, Union

from .errors import InvalidArgument, SessionStoreError

__all__ = [
    "SelectionMode",
    "SessionStatus",
    "Quiz",
    "Question",
    "Unanswered",
    "Answered",
    "AnswerState",
    "UNANSWERED",
    "SessionItem",
    "QuizSession",
    "frontier_of",
    "utc_timestamp",
]


class SelectionMode(str, enum.Enum):
    ALL = "all"
    RANDOM_N = "random-n"
    UNANSWERED = "unanswered"
    WEAKEST = "weakest"
    RETRY_INCORRECT = "retry-incorrect"
    RETRY_BOOKMARKED = "retry-bookmarked"

    @classmethod
    def parse(cls, value: "str | SelectionMode") -> "SelectionMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            choices = ", ".join(mode.value for mode in cls)
            raise InvalidArgument(
                f"Unknown selection mode '{value}' (expected one of: "
                f"{choices})."
            ) from exc

    @property
    def is_retry(self) -> bool:
        return self in (
            SelectionMode.RETRY_INCORRECT,
            SelectionMode.RETRY_BOOKMARKED,
        )

    @property
    def uses_count(self) -> bool:
        return self in (
            SelectionMode.RANDOM_N,
            SelectionMode.UNANSWERED,
            SelectionMode.WEAKEST,
        )

    @property
    def uses_history(self) -> bool:
        """True for modes that pick from the owner's earlier sessions."""

        return self in (SelectionMode.UNANSWERED, SelectionMode.WEAKEST)


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Quiz:
    """Quiz metadata as supplied by the question source."""

    quiz_id: str
    owner_id: str
    question_ids: tuple[str, ...]
    name: str = ""
    categories: tuple[str, ...] = ()


@dataclass(frozen=True)
class Question:
    """A multiple-choice question; ``correct`` holds 0-based option indices."""

    question_id: str
    prompt: str
    options: tuple[str, ...]
    correct: frozenset[int]
    category: str | None = None
    explanation: str | None = None

    @property
    def is_multi_select(self) -> bool:
        return len(self.correct) > 1

    def option_text(self, index: int) -> str | None:
        if 0 <= index < len(self.options):
            return self.options[index]
        return None


@dataclass(frozen=True)
class Unanswered:
    """Marker state for an item that has not been answered yet."""

    answered = False


@dataclass(frozen=True)
class Answered:
    """Write-once outcome recorded when an item is answered."""

    correct: bool
    chosen: frozenset[int]
    duration_ms: int

    answered = True


AnswerState = Union[Unanswered, Answered]
UNANSWERED = Unanswered()


@dataclass(frozen=True)
class SessionItem:
    """One question placed at a fixed 1-based position within a session."""

    position: int
    question_id: str
    answer: AnswerState = UNANSWERED
    bookmarked: bool = False

    @property
    def answered(self) -> bool:
        return isinstance(self.answer, Answered)

    @property
    def correct(self) -> bool | None:
        if isinstance(self.answer, Answered):
            return self.answer.correct
        return None

    @property
    def chosen(self) -> frozenset[int]:
        if isinstance(self.answer, Answered):
            return self.answer.chosen
        return frozenset()

    @property
    def duration_ms(self) -> int | None:
        if isinstance(self.answer, Answered):
            return self.answer.duration_ms
        return None

    def to_dict(self) -> MutableMapping[str, Any]:
        payload: MutableMapping[str, Any] = {
            "position": self.position,
            "question_id": self.question_id,
            "bookmarked": self.bookmarked,
        }
        if isinstance(self.answer, Answered):
            payload["answer"] = {
                "correct": self.answer.correct,
                "chosen": sorted(self.answer.chosen),
                "duration_ms": self.answer.duration_ms,
            }
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SessionItem":
        raw_answer = payload.get("answer")
        answer: AnswerState = UNANSWERED
        if raw_answer is not None:
            if not isinstance(raw_answer, Mapping):
                raise SessionStoreError(
                    "Session item answer must be a mapping when present."
                )
            answer = Answered(
                correct=bool(raw_answer["correct"]),
                chosen=frozenset(int(idx) for idx in raw_answer["chosen"]),
                duration_ms=int(raw_answer["duration_ms"]),
            )
        return cls(
            position=int(payload["position"]),
            question_id=str(payload["question_id"]),
            answer=answer,
            bookmarked=bool(payload.get("bookmarked", False)),
        )


@dataclass(frozen=True)
class QuizSession:
    """A user's attempt at a quiz with its fixed, ordered item list."""

    session_id: str
    owner_id: str
    quiz_id: str
    name: str
    mode: SelectionMode
    items: tuple[SessionItem, ...]
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: str = field(default_factory=lambda: utc_timestamp())
    completed_at: str | None = None
    source_session_id: str | None = None

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def frontier(self) -> int:
        return frontier_of(self.items)

    @property
    def answered_count(self) -> int:
        return self.frontier - 1

    @property
    def fully_answered(self) -> bool:
        return self.frontier > self.total

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def item_at(self, position: int) -> SessionItem:
        if not 1 <= position <= len(self.items):
            raise InvalidArgument(
                f"Position {position} is outside 1..{len(self.items)}."
            )
        return self.items[position - 1]

    def with_item(self, item: SessionItem) -> "QuizSession":
        items = list(self.items)
        items[item.position - 1] = item
        return replace(self, items=tuple(items))

    def to_dict(self) -> MutableMapping[str, Any]:
        return {
            "session_id": self.session_id,
            "owner_id": self.owner_id,
            "quiz_id": self.quiz_id,
            "name": self.name,
            "mode": self.mode.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "source_session_id": self.source_session_id,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "QuizSession":
        try:
            items = tuple(
                SessionItem.from_dict(entry) for entry in payload["items"]
            )
            session = cls(
                session_id=str(payload["session_id"]),
                owner_id=str(payload["owner_id"]),
                quiz_id=str(payload["quiz_id"]),
                name=str(payload["name"]),
                mode=SelectionMode(payload["mode"]),
                items=items,
                status=SessionStatus(payload["status"]),
                created_at=str(payload["created_at"]),
                completed_at=payload.get("completed_at"),
                source_session_id=payload.get("source_session_id"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise SessionStoreError(
                f"Session payload is malformed: {exc}"
            ) from exc
        _check_positions(session.items)
        return session


def frontier_of(items: Iterable[SessionItem]) -> int:
    """Return the first unanswered position (``len(items) + 1`` when none)."""

    frontier = 1
    for item in items:
        if not item.answered:
            break
        frontier += 1
    return frontier


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_positions(items: tuple[SessionItem, ...]) -> None:
    for expected, item in enumerate(items, start=1):
        if item.position != expected:
            raise SessionStoreError(
                f"Session item positions are not contiguous at {expected}."
            )
    answered = [item.answered for item in items]
    frontier = frontier_of(items)
    if any(answered[frontier - 1 :]):
        raise SessionStoreError(
            "Session items violate the answered-prefix invariant."
        )
