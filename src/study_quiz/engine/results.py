"""Summary statistics for a session and for a quiz across sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

from .errors import InvalidArgument
from .models import Question, Quiz, QuizSession, SessionStatus

__all__ = [
    "UNCATEGORIZED",
    "CategoryAccuracy",
    "Summary",
    "SessionReport",
    "CategoryStats",
    "DailyAccuracy",
    "QuizStats",
    "ResultsAggregator",
    "round_percent",
    "round_tenth_percent",
]

UNCATEGORIZED = "uncategorized"


@dataclass(frozen=True)
class CategoryAccuracy:
    """Correct/answered counts for a single category."""

    category: str
    correct: int
    total: int

    @property
    def accuracy(self) -> float:
        if self.total == 0:
            return 0.0
        return self.correct / self.total


@dataclass(frozen=True)
class Summary:
    session_id: str
    status: SessionStatus
    score_percent: int
    correct_count: int
    answered_count: int
    total_items: int
    total_duration_ms: int
    incorrect_positions: tuple[int, ...]
    bookmarked_positions: tuple[int, ...]
    per_category: Dict[str, CategoryAccuracy] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionReport:
    """One row of a user's session history."""

    session_id: str
    quiz_id: str
    name: str
    mode: str
    status: SessionStatus
    answered: int
    total: int
    correct: int
    score_percent: Optional[int]
    created_at: str
    source_session_id: Optional[str]


@dataclass(frozen=True)
class CategoryStats:
    """How one category of a quiz has gone across every session."""

    category: str
    total_questions: int
    unique_answered: int
    correct: int
    answered: int

    @property
    def accuracy_percent(self) -> Optional[float]:
        if self.answered == 0:
            return None
        return round_tenth_percent(self.correct, self.answered)


@dataclass(frozen=True)
class DailyAccuracy:
    """Answers given in sessions started on ``date`` (``YYYY-MM-DD``)."""

    date: str
    correct: int
    answered: int

    @property
    def accuracy_percent(self) -> float:
        return round_tenth_percent(self.correct, self.answered)


@dataclass(frozen=True)
class QuizStats:
    quiz_id: str
    sessions: int
    total_questions: int
    unique_answered: int
    total_answered: int
    total_correct: int
    per_category: Dict[str, CategoryStats] = field(default_factory=dict)
    daily: tuple[DailyAccuracy, ...] = ()

    @property
    def accuracy_percent(self) -> Optional[float]:
        if self.total_answered == 0:
            return None
        return round_tenth_percent(self.total_correct, self.total_answered)


class ResultsAggregator:
    def summarize(
        self,
        session: QuizSession,
        questions: Mapping[str, Question],
    ) -> Summary:
        """Summarize ``session`` using ``questions`` for category lookups.

        The score is taken over every item in the session, so unanswered
        items count against it when summarizing an unfinished session.
        """

        total = session.total
        if total == 0:
            raise InvalidArgument(
                f"Session '{session.session_id}' has no items to summarize."
            )

        correct = 0
        duration = 0
        incorrect: list[int] = []
        bookmarked: list[int] = []
        buckets: Dict[str, list[int]] = {}
        for item in session.items:
            if item.bookmarked:
                bookmarked.append(item.position)
            if not item.answered:
                continue
            duration += item.duration_ms or 0
            question = questions.get(item.question_id)
            category = (
                question.category
                if question is not None and question.category
                else UNCATEGORIZED
            )
            bucket = buckets.setdefault(category, [0, 0])
            bucket[1] += 1
            if item.correct:
                correct += 1
                bucket[0] += 1
            else:
                incorrect.append(item.position)

        return Summary(
            session_id=session.session_id,
            status=session.status,
            score_percent=round_percent(correct, total),
            correct_count=correct,
            answered_count=session.answered_count,
            total_items=total,
            total_duration_ms=duration,
            incorrect_positions=tuple(incorrect),
            bookmarked_positions=tuple(bookmarked),
            per_category={
                name: CategoryAccuracy(name, counts[0], counts[1])
                for name, counts in sorted(buckets.items())
            },
        )

    def report(self, session: QuizSession) -> SessionReport:
        answered = session.answered_count
        correct = sum(1 for item in session.items if item.correct)
        return SessionReport(
            session_id=session.session_id,
            quiz_id=session.quiz_id,
            name=session.name,
            mode=session.mode.value,
            status=session.status,
            answered=answered,
            total=session.total,
            correct=correct,
            score_percent=(
                round_percent(correct, session.total) if answered else None
            ),
            created_at=session.created_at,
            source_session_id=session.source_session_id,
        )

    def quiz_stats(
        self,
        quiz: Quiz,
        questions: Mapping[str, Question],
        sessions: Iterable[QuizSession],
    ) -> QuizStats:
        """Aggregate every answer given to ``quiz`` across ``sessions``.

        Only questions still in the bank count. Every category of the bank
        is listed, including ones nobody has answered yet. Days are taken
        from each session's ``created_at``.
        """

        bank = {
            qid: questions[qid]
            for qid in quiz.question_ids
            if qid in questions
        }
        categories: Dict[str, _CategoryTally] = {}
        for question in bank.values():
            name = question.category or UNCATEGORIZED
            categories.setdefault(name, _CategoryTally()).questions += 1

        answered_ids: set[str] = set()
        days: Dict[str, list[int]] = {}
        correct = answered = session_count = 0
        for session in sessions:
            if session.quiz_id != quiz.quiz_id:
                continue
            session_count += 1
            day = days.setdefault(session.created_at[:10], [0, 0])
            for item in session.items:
                question = bank.get(item.question_id)
                if question is None or not item.answered:
                    continue
                hit = 1 if item.correct else 0
                answered += 1
                correct += hit
                day[0] += hit
                day[1] += 1
                answered_ids.add(item.question_id)
                tally = categories[question.category or UNCATEGORIZED]
                tally.answered += 1
                tally.correct += hit
                tally.seen.add(item.question_id)

        return QuizStats(
            quiz_id=quiz.quiz_id,
            sessions=session_count,
            total_questions=len(bank),
            unique_answered=len(answered_ids),
            total_answered=answered,
            total_correct=correct,
            per_category={
                name: CategoryStats(
                    category=name,
                    total_questions=tally.questions,
                    unique_answered=len(tally.seen),
                    correct=tally.correct,
                    answered=tally.answered,
                )
                for name, tally in sorted(categories.items())
            },
            daily=tuple(
                DailyAccuracy(date, counts[0], counts[1])
                for date, counts in sorted(days.items())
                if counts[1]
            ),
        )


class _CategoryTally:
    """Running counts for one category while building ``QuizStats``."""

    def __init__(self) -> None:
        self.questions = 0
        self.answered = 0
        self.correct = 0
        self.seen: set[str] = set()


def round_percent(part: int, whole: int) -> int:
    """Integer percentage rounded half-up, so 62.5 becomes 63."""

    if whole <= 0:
        raise InvalidArgument("Cannot compute a percentage of zero items.")
    return (200 * part + whole) // (2 * whole)


def round_tenth_percent(part: int, whole: int) -> float:
    """Percentage rounded half-up to one decimal place."""

    if whole <= 0:
        raise InvalidArgument("Cannot compute a percentage of zero items.")
    return ((2000 * part + whole) // (2 * whole)) / 10
