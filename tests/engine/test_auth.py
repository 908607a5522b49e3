from __future__ import annotations

import logging

import pytest

from study_quiz.engine import errors
from study_quiz.engine.auth import AuthorizationGate
from study_quiz.engine.models import Quiz

QUIZ = Quiz(quiz_id="general", owner_id="alice", question_ids=("q1",))


def test_owner_is_allowed():
    gate = AuthorizationGate()

    gate.authorize("alice", QUIZ)
    assert gate.is_allowed("alice", QUIZ)


@pytest.mark.parametrize("caller", ["bob", "", None, "Alice"])
def test_non_owner_is_denied(caller):
    gate = AuthorizationGate()

    with pytest.raises(errors.Forbidden) as excinfo:
        gate.authorize(caller, QUIZ)

    assert str(excinfo.value) == "Access denied."
    assert not gate.is_allowed(caller, QUIZ)


def test_denial_is_logged(caplog):
    caplog.set_level(logging.WARNING, logger="study_quiz.engine.auth")

    with pytest.raises(errors.Forbidden):
        AuthorizationGate().authorize("mallory", QUIZ)

    record = caplog.records[-1]
    assert record.message == "Access denied"
    assert record.caller_id == "mallory"
    assert record.resource == "Quiz"
