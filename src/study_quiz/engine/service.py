"""Public operations of the quiz session engine.

``QuizEngine`` is the only entry point callers need. Each method checks
ownership first, then delegates to the selector, store, navigation resolver,
evaluator or aggregator. Nothing is mutated when the ownership check fails.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional, Union

from .auth import AuthorizationGate
from .config import EngineConfig
from .errors import InvalidArgument, NotFound
from .evaluator import AnswerEvaluator, AnswerResult
from .models import (
    Question,
    QuizSession,
    SelectionMode,
    SessionItem,
    SessionStatus,
)
from .navigation import Intent, NavigationResolver, parse_intent
from .results import QuizStats, ResultsAggregator, SessionReport, Summary
from .selector import SessionSelector
from .source import JsonlQuestionSource, QuestionSource
from .store import BaseSessionStore, SessionStore, new_session_id

__all__ = ["QuizEngine", "PositionView", "RETRY_MODES"]

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 120

RETRY_MODES: Mapping[str, SelectionMode] = {
    "incorrect": SelectionMode.RETRY_INCORRECT,
    "bookmarked": SelectionMode.RETRY_BOOKMARKED,
}
_RETRY_SUFFIX = {
    SelectionMode.RETRY_INCORRECT: "retry",
    SelectionMode.RETRY_BOOKMARKED: "bm",
}


@dataclass(frozen=True)
class PositionView:
    """Everything needed to render one position of a session.

    ``editable`` is true only for the frontier of an active session; answered
    positions are shown read-only with their stored feedback.
    """

    session_id: str
    position: int
    total: int
    frontier: int
    question: Question
    item: SessionItem
    editable: bool

    @property
    def answered(self) -> bool:
        return self.item.answered


class QuizEngine:
    def __init__(
        self,
        source: QuestionSource,
        store: BaseSessionStore,
        *,
        selector: Optional[SessionSelector] = None,
        gate: Optional[AuthorizationGate] = None,
        navigator: Optional[NavigationResolver] = None,
        aggregator: Optional[ResultsAggregator] = None,
        max_duration_ms: Optional[int] = None,
        default_count: int = 10,
    ) -> None:
        self.source = source
        self.store = store
        self.selector = selector or SessionSelector()
        self.gate = gate or AuthorizationGate()
        self.navigator = navigator or NavigationResolver()
        self.aggregator = aggregator or ResultsAggregator()
        if max_duration_ms is None:
            self.evaluator = AnswerEvaluator(store)
        else:
            self.evaluator = AnswerEvaluator(
                store, max_duration_ms=max_duration_ms
            )
        self.default_count = default_count

    @classmethod
    def from_config(cls, config: EngineConfig) -> "QuizEngine":
        """Build an engine over the workspace's quiz banks and sessions."""

        layout = config.workspace()
        store = SessionStore(
            layout.path_for("sessions"),
            lock_timeout=config.store.lock_timeout_seconds,
        )
        return cls(
            JsonlQuestionSource(layout.path_for("quizzes")),
            store,
            max_duration_ms=config.session.max_duration_ms,
            default_count=config.session.default_count,
        )

    # -- session lifecycle -------------------------------------------------

    def create_session(
        self,
        user_id: str,
        quiz_id: str,
        mode: Union[str, SelectionMode],
        count: Optional[int] = None,
        source_session_id: Optional[str] = None,
        *,
        name: Optional[str] = None,
    ) -> QuizSession:
        quiz = self.source.quiz(quiz_id)
        self.gate.authorize(user_id, quiz)
        mode = SelectionMode.parse(mode)

        reference: Optional[QuizSession] = None
        if mode.is_retry:
            if not source_session_id:
                raise InvalidArgument(
                    f"{mode.value} requires a source session."
                )
            reference = self.store.get(source_session_id)
            self.gate.authorize(user_id, reference)
        if mode.uses_count and count is None:
            count = self.default_count
        history: List[QuizSession] = []
        if mode.uses_history:
            history = self.store.list_sessions(
                owner_id=user_id, quiz_id=quiz.quiz_id
            )

        session_name = _clean_name(name or _default_name(reference, mode))
        question_ids = self.selector.select(
            quiz, mode, count=count, reference=reference, history=history
        )
        session = QuizSession(
            session_id=new_session_id(),
            owner_id=user_id,
            quiz_id=quiz.quiz_id,
            name=session_name,
            mode=mode,
            items=tuple(
                SessionItem(position=position, question_id=qid)
                for position, qid in enumerate(question_ids, start=1)
            ),
            source_session_id=reference.session_id if reference else None,
        )
        return self.store.create(session)

    def retry(
        self,
        user_id: str,
        session_id: str,
        mode: Union[str, SelectionMode],
    ) -> QuizSession:
        """Start a new session from an earlier session's misses or marks."""

        if isinstance(mode, SelectionMode):
            retry_mode = mode
        else:
            key = str(mode).strip().lower()
            retry_mode = RETRY_MODES.get(key) or SelectionMode.parse(key)
        if not retry_mode.is_retry:
            raise InvalidArgument(
                "Retry mode must be 'incorrect' or 'bookmarked'."
            )
        source = self._owned_session(user_id, session_id)
        return self.create_session(
            user_id,
            source.quiz_id,
            retry_mode,
            source_session_id=source.session_id,
        )

    def abandon(self, user_id: str, session_id: str) -> QuizSession:
        self._owned_session(user_id, session_id)
        return self.store.set_status(session_id, SessionStatus.ABANDONED)

    def complete(self, user_id: str, session_id: str) -> Summary:
        """Mark a fully answered session completed and return its summary.

        Calling this again on a completed session only recomputes the
        summary.
        """

        self._owned_session(user_id, session_id)
        session = self.store.set_status(session_id, SessionStatus.COMPLETED)
        return self._summarize(session)

    def summarize(self, user_id: str, session_id: str) -> Summary:
        return self._summarize(self._owned_session(user_id, session_id))

    # -- navigation and answering -----------------------------------------

    def resume(self, user_id: str, session_id: str) -> int:
        session = self._owned_session(user_id, session_id)
        return self.navigator.resolve(session, Intent.resume())

    def navigate(
        self,
        user_id: str,
        session_id: str,
        intent: Union[str, Intent],
        current: Optional[int] = None,
    ) -> int:
        session = self._owned_session(user_id, session_id)
        if not isinstance(intent, Intent):
            intent = parse_intent(intent)
        return self.navigator.resolve(session, intent, current)

    def view(
        self, user_id: str, session_id: str, position: int
    ) -> PositionView:
        """Return the renderable state of ``position``, capped at frontier."""

        session = self._owned_session(user_id, session_id)
        target = self.navigator.resolve(session, Intent.goto(position))
        item = session.item_at(target)
        return PositionView(
            session_id=session.session_id,
            position=target,
            total=session.total,
            frontier=session.frontier,
            question=self._question(session, item),
            item=item,
            editable=session.is_active and target == session.frontier,
        )

    def submit_answer(
        self,
        user_id: str,
        session_id: str,
        position: int,
        chosen: Iterable[int],
        duration_ms: int,
    ) -> AnswerResult:
        session = self._owned_session(user_id, session_id)
        item = session.item_at(position)
        question = self._question(session, item)
        return self.evaluator.submit(
            session, question, position, chosen, duration_ms
        )

    def toggle_bookmark(
        self, user_id: str, session_id: str, position: int
    ) -> bool:
        self._owned_session(user_id, session_id)
        return self.store.toggle_bookmark(session_id, position)

    # -- history ------------------------------------------------------------

    def history(
        self, user_id: str, quiz_id: Optional[str] = None
    ) -> List[SessionReport]:
        if quiz_id is not None:
            self.gate.authorize(user_id, self.source.quiz(quiz_id))
        return [
            self.aggregator.report(session)
            for session in self.store.list_sessions(
                owner_id=user_id, quiz_id=quiz_id
            )
        ]

    def quiz_stats(self, user_id: str, quiz_id: str) -> QuizStats:
        """Accuracy for ``quiz_id`` across all of the user's sessions."""

        quiz = self.source.quiz(quiz_id)
        self.gate.authorize(user_id, quiz)
        return self.aggregator.quiz_stats(
            quiz,
            self.source.questions_of(quiz_id),
            self.store.list_sessions(owner_id=user_id, quiz_id=quiz_id),
        )

    def find_incomplete(
        self, user_id: str, quiz_id: str, name: str
    ) -> Optional[QuizSession]:
        """Return the newest active session called ``name``, if any."""

        self.gate.authorize(user_id, self.source.quiz(quiz_id))
        for session in self.store.list_sessions(
            owner_id=user_id, quiz_id=quiz_id
        ):
            if session.name == name and session.is_active:
                return session
        return None

    def rename_session(
        self, user_id: str, session_id: str, name: str
    ) -> QuizSession:
        session = self._owned_session(user_id, session_id)
        cleaned = _clean_name(name)
        if cleaned == session.name:
            return session
        return self.store.rename(session_id, cleaned)

    def delete_session(self, user_id: str, session_id: str) -> None:
        self._owned_session(user_id, session_id)
        self.store.delete(session_id)

    # -- helpers -------------------------------------------------------------

    def _owned_session(self, user_id: str, session_id: str) -> QuizSession:
        session = self.store.get(session_id)
        self.gate.authorize(user_id, session)
        return session

    def _question(self, session: QuizSession, item: SessionItem) -> Question:
        questions = self.source.questions_of(session.quiz_id)
        try:
            return questions[item.question_id]
        except KeyError as exc:
            raise NotFound(
                f"Question '{item.question_id}' is no longer in quiz "
                f"'{session.quiz_id}'."
            ) from exc

    def _summarize(self, session: QuizSession) -> Summary:
        questions = self.source.questions_of(session.quiz_id)
        return self.aggregator.summarize(session, questions)


def _clean_name(name: str) -> str:
    cleaned = " ".join(str(name or "").split())
    if not cleaned:
        raise InvalidArgument("Session name must not be empty.")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise InvalidArgument(
            f"Session name must be at most {MAX_NAME_LENGTH} characters."
        )
    return cleaned


def _default_name(
    reference: Optional[QuizSession], mode: SelectionMode
) -> str:
    suffix = secrets.token_hex(3)
    if reference is not None:
        tag = f"-{_RETRY_SUFFIX[mode]}-{suffix}"
        return reference.name[: MAX_NAME_LENGTH - len(tag)] + tag
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"session-{stamp}-{suffix}"
