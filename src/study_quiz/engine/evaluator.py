"""Score submitted answers and record them against the session."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from .config import DEFAULT_MAX_DURATION_MS
from .errors import AlreadyAnswered, InvalidArgument, PositionNotFrontier
from .models import Question, QuizSession
from .store import BaseSessionStore

__all__ = [
    "AnswerResult",
    "AnswerEvaluator",
    "clamp_duration",
    "validate_choice",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnswerResult:
    """Feedback returned after an answer is accepted."""

    position: int
    correct: bool
    chosen: frozenset[int]
    correct_options: frozenset[int]
    explanation: Optional[str]
    duration_ms: int
    next_position: Optional[int]

    @property
    def finished(self) -> bool:
        """True once the last position has been answered."""

        return self.next_position is None


class AnswerEvaluator:
    def __init__(
        self,
        store: BaseSessionStore,
        *,
        max_duration_ms: int = DEFAULT_MAX_DURATION_MS,
    ) -> None:
        self._store = store
        self._max_duration_ms = max_duration_ms

    def submit(
        self,
        session: QuizSession,
        question: Question,
        position: int,
        chosen: Iterable[int],
        duration_ms: int,
    ) -> AnswerResult:
        """Validate, score and persist an answer for ``position``.

        ``session`` is the caller's snapshot and is used for early validation
        only; the store re-checks the frontier inside its transaction, so a
        concurrent submit that commits first makes this one fail with
        :class:`PositionNotFrontier` or :class:`AlreadyAnswered`.
        """

        item = session.item_at(position)
        if item.question_id != question.question_id:
            raise InvalidArgument(
                f"Question '{question.question_id}' is not at position "
                f"{position}."
            )
        if item.answered:
            raise AlreadyAnswered(position)
        if position != session.frontier:
            raise PositionNotFrontier(position, session.frontier)

        picked = validate_choice(question, chosen)
        duration = clamp_duration(duration_ms, self._max_duration_ms)
        correct = picked == question.correct

        updated = self._store.mark_answered(
            session.session_id,
            position,
            correct=correct,
            chosen=picked,
            duration_ms=duration,
        )
        next_position = updated.frontier
        logger.debug(
            "Answer evaluated",
            extra={
                "session_id": session.session_id,
                "position": position,
                "correct": correct,
                "multi_select": question.is_multi_select,
            },
        )
        return AnswerResult(
            position=position,
            correct=correct,
            chosen=picked,
            correct_options=question.correct,
            explanation=question.explanation,
            duration_ms=duration,
            next_position=(
                next_position if next_position <= updated.total else None
            ),
        )


def validate_choice(
    question: Question, chosen: Iterable[int]
) -> frozenset[int]:
    """Return ``chosen`` as a set after checking every index is valid."""

    if chosen is None:
        raise InvalidArgument("Select at least one option.")
    picked = set()
    for raw in chosen:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise InvalidArgument(f"Option index {raw!r} is not an integer.")
        if not 0 <= raw < len(question.options):
            raise InvalidArgument(
                f"Option index {raw} is out of range for question "
                f"'{question.question_id}'."
            )
        picked.add(raw)
    if not picked:
        raise InvalidArgument("Select at least one option.")
    return frozenset(picked)


def clamp_duration(
    duration_ms: int, ceiling: int = DEFAULT_MAX_DURATION_MS
) -> int:
    """Clamp a client-reported duration into ``[0, ceiling]``.

    Infinite values clamp to the nearest bound; NaN is rejected.
    """

    if isinstance(duration_ms, float) and math.isinf(duration_ms):
        return ceiling if duration_ms > 0 else 0
    try:
        value = int(duration_ms)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidArgument(
            f"Duration {duration_ms!r} is not a number."
        ) from exc
    return max(0, min(value, ceiling))
