"""Resolve which position a caller may render next."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Optional

from .errors import InvalidArgument
from .models import QuizSession

__all__ = ["Intent", "NavigationResolver", "parse_intent"]

IntentKind = Literal["next", "previous", "resume", "goto"]

_GOTO_RE = re.compile(r"^(?:goto|g)\s*[:= ]\s*(-?\d+)$")


@dataclass(frozen=True)
class Intent:
    """A navigation request; ``target`` is only used by ``goto``."""

    kind: IntentKind
    target: Optional[int] = None

    @classmethod
    def next(cls) -> "Intent":
        return cls("next")

    @classmethod
    def previous(cls) -> "Intent":
        return cls("previous")

    @classmethod
    def resume(cls) -> "Intent":
        return cls("resume")

    @classmethod
    def goto(cls, target: int) -> "Intent":
        return cls("goto", target)


def parse_intent(raw: str) -> Intent:
    """Parse ``next``, ``previous``, ``resume`` or ``goto:<k>``."""

    text = (raw or "").strip().lower()
    if text in {"next", "n"}:
        return Intent.next()
    if text in {"previous", "prev", "p"}:
        return Intent.previous()
    if text in {"resume", "r"}:
        return Intent.resume()
    match = _GOTO_RE.match(text)
    if match:
        return Intent.goto(int(match.group(1)))
    raise InvalidArgument(f"Unrecognized navigation intent '{raw}'.")


class NavigationResolver:
    """Map an intent plus stored progress to the position to render.

    The resolver keeps no state. The only pointer that matters is the
    frontier, which is derived from the items on every call; the view may
    move freely behind it but never past it.
    """

    def resolve(
        self,
        session: QuizSession,
        intent: Intent,
        current: Optional[int] = None,
    ) -> int:
        frontier = session.frontier
        last = session.total
        # Fully answered sessions have no frontier item to show; cap at N
        # so the caller can render the final question and move to results.
        ceiling = min(frontier, last)

        if intent.kind == "resume":
            return ceiling
        if intent.kind == "goto":
            if intent.target is None or intent.target < 1:
                raise InvalidArgument(
                    f"Cannot jump to position {intent.target}."
                )
            return min(intent.target, ceiling)

        position = self._current(current, ceiling)
        if intent.kind == "previous":
            return max(1, position - 1)
        if intent.kind == "next":
            return min(position + 1, ceiling)
        raise InvalidArgument(f"Unknown navigation intent '{intent.kind}'.")

    @staticmethod
    def _current(current: Optional[int], ceiling: int) -> int:
        if current is None:
            return ceiling
        if isinstance(current, bool) or current < 1:
            raise InvalidArgument(f"Position {current} is not valid.")
        # A stale page may report a position past the frontier.
        return min(current, ceiling)
