"""Build the ordered question list for a new session."""

from __future__ import annotations

import logging
import random
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import EmptySelection, InvalidArgument
from .models import QuizSession, Quiz, SelectionMode

__all__ = ["SessionSelector"]

logger = logging.getLogger(__name__)


class SessionSelector:
    """Pick and shuffle question ids for a session according to a mode.

    - all: every quiz question, shuffled
    - random-n: a uniform sample of ``min(count, quiz size)`` questions
    - unanswered: questions never answered in the owner's earlier sessions
      of the quiz, topped up with random others to reach ``count``
    - weakest: the ``count`` questions with the worst accuracy across the
      owner's earlier sessions (at least one miss), topped up likewise
    - retry-incorrect / retry-bookmarked: questions from a reference session
      whose items were answered incorrectly or bookmarked

    Each question appears at most once. The default generator is an unseeded
    ``random.SystemRandom``; tests may inject a seeded ``random.Random``.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.SystemRandom()

    def select(
        self,
        quiz: Quiz,
        mode: SelectionMode,
        *,
        count: Optional[int] = None,
        reference: Optional[QuizSession] = None,
        history: Sequence[QuizSession] = (),
    ) -> List[str]:
        mode = SelectionMode.parse(mode)
        if mode is SelectionMode.ALL:
            chosen = self._all(quiz)
        elif mode is SelectionMode.RANDOM_N:
            chosen = self._random_n(quiz, count)
        elif mode is SelectionMode.UNANSWERED:
            chosen = self._unanswered(quiz, count, history)
        elif mode is SelectionMode.WEAKEST:
            chosen = self._weakest(quiz, count, history)
        else:
            chosen = self._retry(quiz, mode, reference)
        logger.debug(
            "Selected session questions",
            extra={
                "quiz_id": quiz.quiz_id,
                "mode": mode.value,
                "selected": len(chosen),
            },
        )
        return chosen

    def _all(self, quiz: Quiz) -> List[str]:
        ids = _quiz_ids(quiz)
        self._rng.shuffle(ids)
        return ids

    def _random_n(self, quiz: Quiz, count: Optional[int]) -> List[str]:
        count = _require_count(SelectionMode.RANDOM_N, count)
        ids = _quiz_ids(quiz)
        # sample() already returns its picks in random order.
        return self._rng.sample(ids, min(count, len(ids)))

    def _unanswered(
        self,
        quiz: Quiz,
        count: Optional[int],
        history: Iterable[QuizSession],
    ) -> List[str]:
        count = _require_count(SelectionMode.UNANSWERED, count)
        ids = _quiz_ids(quiz)
        seen = {
            item.question_id
            for session in history
            if session.quiz_id == quiz.quiz_id
            for item in session.items
            if item.answered
        }
        fresh = [qid for qid in ids if qid not in seen]
        self._rng.shuffle(fresh)
        return self._top_up(fresh[:count], ids, count)

    def _weakest(
        self,
        quiz: Quiz,
        count: Optional[int],
        history: Iterable[QuizSession],
    ) -> List[str]:
        count = _require_count(SelectionMode.WEAKEST, count)
        ids = _quiz_ids(quiz)
        known = set(ids)
        tallies: Dict[str, List[int]] = {}
        for session in history:
            if session.quiz_id != quiz.quiz_id:
                continue
            for item in session.items:
                if not item.answered or item.question_id not in known:
                    continue
                tally = tallies.setdefault(item.question_id, [0, 0])
                tally[0] += 1
                if not item.correct:
                    tally[1] += 1
        missed = [qid for qid, (_, wrong) in tallies.items() if wrong]
        # Worst accuracy first, then most misses.
        missed.sort(
            key=lambda qid: (
                (tallies[qid][0] - tallies[qid][1]) / tallies[qid][0],
                -tallies[qid][1],
                qid,
            )
        )
        picked = missed[:count]
        self._rng.shuffle(picked)
        return self._top_up(picked, ids, count)

    def _top_up(
        self, picked: List[str], ids: Sequence[str], count: int
    ) -> List[str]:
        if len(picked) >= count:
            return picked
        chosen = set(picked)
        rest = [qid for qid in ids if qid not in chosen]
        self._rng.shuffle(rest)
        return picked + rest[: count - len(picked)]

    def _retry(
        self,
        quiz: Quiz,
        mode: SelectionMode,
        reference: Optional[QuizSession],
    ) -> List[str]:
        if reference is None:
            raise InvalidArgument(f"{mode.value} requires a source session.")
        if reference.quiz_id != quiz.quiz_id:
            raise InvalidArgument(
                "The source session belongs to a different quiz."
            )
        if mode is SelectionMode.RETRY_INCORRECT:
            picked = [
                item.question_id
                for item in reference.items
                if item.answered and item.correct is False
            ]
            label = "incorrect"
        else:
            picked = [
                item.question_id
                for item in reference.items
                if item.bookmarked
            ]
            label = "bookmarked"
        known = set(quiz.question_ids)
        ids = [qid for qid in _unique(picked) if qid in known]
        if not ids:
            raise EmptySelection(
                f"Session '{reference.session_id}' has no {label} questions."
            )
        self._rng.shuffle(ids)
        return ids


def _require_count(mode: SelectionMode, count: Optional[int]) -> int:
    if count is None or isinstance(count, bool) or count <= 0:
        raise InvalidArgument(
            f"{mode.value} requires a question count greater than zero."
        )
    return count


def _quiz_ids(quiz: Quiz) -> List[str]:
    ids = _unique(quiz.question_ids)
    if not ids:
        raise EmptySelection(f"Quiz '{quiz.quiz_id}' has no questions.")
    return ids


def _unique(ids: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(ids))
