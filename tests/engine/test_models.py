from __future__ import annotations

import json

import pytest

from study_quiz.engine import errors
from study_quiz.engine.models import (
    UNANSWERED,
    Answered,
    QuizSession,
    SelectionMode,
    SessionItem,
    SessionStatus,
    frontier_of,
)


def _items(*answered: bool) -> tuple[SessionItem, ...]:
    return tuple(
        SessionItem(
            position=index,
            question_id=f"q{index}",
            answer=(
                Answered(correct=True, chosen=frozenset({0}), duration_ms=5)
                if flag
                else UNANSWERED
            ),
        )
        for index, flag in enumerate(answered, start=1)
    )


def _session(*answered: bool) -> QuizSession:
    return QuizSession(
        session_id="s1",
        owner_id="alice",
        quiz_id="general",
        name="first",
        mode=SelectionMode.ALL,
        items=_items(*answered),
    )


def test_frontier_is_first_unanswered_position():
    assert frontier_of(_items()) == 1
    assert frontier_of(_items(False, False)) == 1
    assert frontier_of(_items(True, True, False)) == 3
    assert frontier_of(_items(True, True)) == 3


def test_session_progress_properties():
    session = _session(True, False, False)

    assert session.total == 3
    assert session.frontier == 2
    assert session.answered_count == 1
    assert not session.fully_answered
    assert session.is_active
    assert _session(True, True).fully_answered


def test_item_accessors_follow_answer_state():
    answered, pending = _items(True, False)

    assert answered.answered and answered.correct is True
    assert answered.chosen == frozenset({0})
    assert answered.duration_ms == 5
    assert not pending.answered
    assert pending.correct is None
    assert pending.chosen == frozenset()
    assert pending.duration_ms is None


def test_item_at_rejects_out_of_range_positions():
    session = _session(False, False)

    assert session.item_at(2).question_id == "q2"
    with pytest.raises(errors.InvalidArgument):
        session.item_at(0)
    with pytest.raises(errors.InvalidArgument):
        session.item_at(3)


def test_session_document_roundtrip():
    session = _session(True, False)
    payload = json.loads(json.dumps(session.to_dict()))

    restored = QuizSession.from_dict(payload)

    assert restored == session
    assert payload["items"][0]["answer"]["chosen"] == [0]
    assert "answer" not in payload["items"][1]


def test_from_dict_wraps_malformed_payloads():
    payload = _session(False).to_dict()
    del payload["owner_id"]

    with pytest.raises(errors.SessionStoreError, match="malformed"):
        QuizSession.from_dict(payload)


def test_from_dict_rejects_gaps_in_answered_prefix():
    payload = _session(False, True).to_dict()
    payload["items"][1]["answer"] = {
        "correct": True,
        "chosen": [0],
        "duration_ms": 1,
    }

    with pytest.raises(errors.SessionStoreError, match="prefix"):
        QuizSession.from_dict(payload)


def test_from_dict_rejects_non_contiguous_positions():
    payload = _session(False, False).to_dict()
    payload["items"][1]["position"] = 5

    with pytest.raises(errors.SessionStoreError, match="contiguous"):
        QuizSession.from_dict(payload)


def test_selection_mode_parse():
    assert SelectionMode.parse(" Random-N ") is SelectionMode.RANDOM_N
    assert SelectionMode.parse(SelectionMode.ALL) is SelectionMode.ALL
    assert SelectionMode.RETRY_BOOKMARKED.is_retry
    assert not SelectionMode.ALL.is_retry
    with pytest.raises(errors.InvalidArgument, match="Unknown selection"):
        SelectionMode.parse("weakness")


def test_status_values_are_strings():
    assert SessionStatus("abandoned") is SessionStatus.ABANDONED
    assert SessionStatus.COMPLETED.value == "completed"
