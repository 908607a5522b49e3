from __future__ import annotations

import pytest

from study_quiz.engine import errors
from study_quiz.engine.evaluator import (
    AnswerEvaluator,
    clamp_duration,
    validate_choice,
)
from study_quiz.engine.models import (
    Question,
    QuizSession,
    SelectionMode,
    SessionItem,
)
from study_quiz.engine.store import InMemorySessionStore

SINGLE = Question(
    question_id="q1",
    prompt="2 + 2?",
    options=("3", "4", "5"),
    correct=frozenset({1}),
    explanation="Basic addition.",
)
MULTI = Question(
    question_id="q2",
    prompt="Primes?",
    options=("2", "4", "5", "9"),
    correct=frozenset({0, 2}),
)


@pytest.fixture
def backend():
    backend = InMemorySessionStore()
    backend.create(
        QuizSession(
            session_id="s1",
            owner_id="alice",
            quiz_id="general",
            name="eval",
            mode=SelectionMode.ALL,
            items=(
                SessionItem(position=1, question_id="q1"),
                SessionItem(position=2, question_id="q2"),
            ),
        )
    )
    return backend


def test_correct_single_answer(backend):
    evaluator = AnswerEvaluator(backend)

    result = evaluator.submit(backend.get("s1"), SINGLE, 1, [1], 2500)

    assert result.correct
    assert result.chosen == frozenset({1})
    assert result.correct_options == frozenset({1})
    assert result.explanation == "Basic addition."
    assert result.duration_ms == 2500
    assert result.next_position == 2
    assert not result.finished
    assert backend.get("s1").frontier == 2


def test_multi_select_requires_exact_set(backend):
    evaluator = AnswerEvaluator(backend)
    evaluator.submit(backend.get("s1"), SINGLE, 1, [0], 10)

    result = evaluator.submit(backend.get("s1"), MULTI, 2, [0], 10)

    assert not result.correct
    assert result.finished
    assert result.next_position is None


def test_multi_select_exact_match_is_correct(backend):
    evaluator = AnswerEvaluator(backend)
    evaluator.submit(backend.get("s1"), SINGLE, 1, [1], 10)

    result = evaluator.submit(backend.get("s1"), MULTI, 2, [2, 0, 2], 10)

    assert result.correct


def test_superset_is_incorrect(backend):
    evaluator = AnswerEvaluator(backend)
    evaluator.submit(backend.get("s1"), SINGLE, 1, [1], 10)

    result = evaluator.submit(backend.get("s1"), MULTI, 2, [0, 1, 2], 10)

    assert not result.correct


def test_duration_is_clamped(backend):
    evaluator = AnswerEvaluator(backend, max_duration_ms=1000)

    result = evaluator.submit(backend.get("s1"), SINGLE, 1, [1], 99_999)

    assert result.duration_ms == 1000
    assert backend.get("s1").item_at(1).duration_ms == 1000


def test_second_submit_is_rejected(backend):
    evaluator = AnswerEvaluator(backend)
    evaluator.submit(backend.get("s1"), SINGLE, 1, [1], 10)
    before = backend.get("s1")

    with pytest.raises(errors.AlreadyAnswered):
        evaluator.submit(before, SINGLE, 1, [0], 10)

    assert backend.get("s1") == before


def test_stale_snapshot_loses_to_store(backend):
    evaluator = AnswerEvaluator(backend)
    stale = backend.get("s1")
    evaluator.submit(backend.get("s1"), SINGLE, 1, [1], 10)

    with pytest.raises(errors.AlreadyAnswered):
        evaluator.submit(stale, SINGLE, 1, [0], 10)


def test_off_frontier_submit(backend):
    evaluator = AnswerEvaluator(backend)

    with pytest.raises(errors.PositionNotFrontier):
        evaluator.submit(backend.get("s1"), MULTI, 2, [0], 10)


def test_question_must_match_position(backend):
    evaluator = AnswerEvaluator(backend)

    with pytest.raises(errors.InvalidArgument):
        evaluator.submit(backend.get("s1"), MULTI, 1, [0], 10)


@pytest.mark.parametrize("chosen", [[], None, [3], [-1], ["1"], [True]])
def test_validate_choice_rejects_bad_input(chosen):
    with pytest.raises(errors.InvalidArgument):
        validate_choice(SINGLE, chosen)


def test_invalid_choice_leaves_state_untouched(backend):
    evaluator = AnswerEvaluator(backend)

    with pytest.raises(errors.InvalidArgument):
        evaluator.submit(backend.get("s1"), SINGLE, 1, [7], 10)

    assert backend.get("s1").frontier == 1


def test_clamp_duration_bounds():
    assert clamp_duration(-50) == 0
    assert clamp_duration(1234) == 1234
    assert clamp_duration(10**9) == 300_000
    assert clamp_duration("42", 100) == 42
    with pytest.raises(errors.InvalidArgument):
        clamp_duration("soon")


def test_clamp_duration_non_finite():
    assert clamp_duration(float("inf")) == 300_000
    assert clamp_duration(float("inf"), 100) == 100
    assert clamp_duration(float("-inf")) == 0
    assert clamp_duration(12.9) == 12
    with pytest.raises(errors.InvalidArgument):
        clamp_duration(float("nan"))
