from __future__ import annotations

import logging
import random
import sys
from pathlib import Path
from typing import Callable, Iterator, List

import pytest

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

# Ensure src/ is importable when the package is not installed
ROOT = TESTS_DIR.parent
for extra in (ROOT / "src",):
    path_str = str(extra)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from fixtures import (  # noqa: E402
    OWNER,
    QUIZ_ID,
    make_questions,
    right_choice,
    wrong_choice,
)
from study_quiz.engine import (  # noqa: E402
    InMemorySessionStore,
    QuizEngine,
    SessionSelector,
    SessionStore,
    StaticQuestionSource,
)


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    yield
    logger = logging.getLogger("study_quiz")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def quiz_source() -> StaticQuestionSource:
    """In-memory source holding the five-question ``general`` quiz."""

    source = StaticQuestionSource()
    source.add_quiz(QUIZ_ID, OWNER, make_questions(), name="General")
    return source


@pytest.fixture
def engine(quiz_source: StaticQuestionSource) -> QuizEngine:
    return QuizEngine(
        quiz_source,
        InMemorySessionStore(),
        selector=SessionSelector(random.Random(7)),
    )


@pytest.fixture
def file_engine(
    quiz_source: StaticQuestionSource, tmp_path: Path
) -> QuizEngine:
    return QuizEngine(
        quiz_source,
        SessionStore(tmp_path / "sessions"),
        selector=SessionSelector(random.Random(7)),
    )


AnswerPlan = Callable[[QuizEngine, str, List[bool]], None]


@pytest.fixture
def answer_all() -> AnswerPlan:
    """Answer positions 1..len(plan) right (True) or wrong (False)."""

    def _answer(engine: QuizEngine, session_id: str, plan: List[bool]):
        for position, correct in enumerate(plan, start=1):
            view = engine.view(OWNER, session_id, position)
            choice = (
                right_choice(view.question)
                if correct
                else wrong_choice(view.question)
            )
            engine.submit_answer(OWNER, session_id, position, choice, 1000)

    return _answer
