from __future__ import annotations

import re
import threading

import pytest

from fixtures import OWNER, QUIZ_ID, right_choice, wrong_choice
from fixtures import write_quiz_bank
from study_quiz.core import workspace
from study_quiz.engine import config as config_mod
from study_quiz.engine import errors
from study_quiz.engine.models import SelectionMode, SessionStatus
from study_quiz.engine.service import MAX_NAME_LENGTH, QuizEngine
from study_quiz.engine.store import InMemorySessionStore, SessionStore


def _submit(engine, session_id, position, correct=True, duration=1000):
    question = engine.view(OWNER, session_id, position).question
    choice = right_choice(question) if correct else wrong_choice(question)
    return engine.submit_answer(
        OWNER, session_id, position, choice, duration
    )


# -- creation -----------------------------------------------------------------


def test_create_all_session(engine):
    session = engine.create_session(OWNER, QUIZ_ID, "all")

    assert session.total == 5
    assert session.status is SessionStatus.ACTIVE
    assert session.mode is SelectionMode.ALL
    assert sorted(i.question_id for i in session.items) == [
        "q1",
        "q2",
        "q3",
        "q4",
        "q5",
    ]
    assert [i.position for i in session.items] == [1, 2, 3, 4, 5]
    assert not any(i.answered or i.bookmarked for i in session.items)
    assert re.fullmatch(r"session-\d{8}-\d{6}-[0-9a-f]{6}", session.name)
    assert engine.store.get(session.session_id) == session


def test_create_random_n_session(engine):
    session = engine.create_session(
        OWNER, QUIZ_ID, SelectionMode.RANDOM_N, 3, name="Quick  three"
    )

    assert session.total == 3
    assert len({i.question_id for i in session.items}) == 3
    assert session.name == "Quick three"


def test_random_n_without_count_uses_default(quiz_source):
    engine = QuizEngine(
        quiz_source, InMemorySessionStore(), default_count=2
    )

    session = engine.create_session(OWNER, QUIZ_ID, "random-n")

    assert session.total == 2


def test_create_rejects_bad_input(engine):
    with pytest.raises(errors.InvalidArgument):
        engine.create_session(OWNER, QUIZ_ID, "random-n", 0)
    with pytest.raises(errors.InvalidArgument):
        engine.create_session(OWNER, QUIZ_ID, "weakness")
    with pytest.raises(errors.InvalidArgument):
        engine.create_session(OWNER, QUIZ_ID, "retry-incorrect")
    with pytest.raises(errors.NotFound):
        engine.create_session(OWNER, "missing", "all")
    assert engine.store.list_sessions() == []


def test_empty_quiz_cannot_start(engine, quiz_source):
    quiz_source.add_quiz("empty", OWNER, [])

    with pytest.raises(errors.EmptySelection):
        engine.create_session(OWNER, "empty", "all")


def test_session_names_are_unique_per_quiz(engine):
    engine.create_session(OWNER, QUIZ_ID, "all", name="weekly")

    with pytest.raises(errors.InvalidArgument, match="already in use"):
        engine.create_session(OWNER, QUIZ_ID, "all", name="weekly")
    with pytest.raises(errors.InvalidArgument):
        engine.create_session(OWNER, QUIZ_ID, "all", name="   ")
    with pytest.raises(errors.InvalidArgument):
        engine.create_session(
            OWNER, QUIZ_ID, "all", name="x" * (MAX_NAME_LENGTH + 1)
        )


@pytest.mark.parametrize("engine_fixture", ["engine", "file_engine"])
def test_concurrent_creates_keep_names_unique(request, engine_fixture):
    engine = request.getfixturevalue(engine_fixture)
    outcomes = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        try:
            engine.create_session(OWNER, QUIZ_ID, "all", name="race")
            outcomes.append("ok")
        except errors.InvalidArgument:
            outcomes.append("taken")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("taken") == 7
    names = [s.name for s in engine.store.list_sessions(owner_id=OWNER)]
    assert names == ["race"]


# -- ownership ----------------------------------------------------------------


def test_non_owner_cannot_create(engine):
    with pytest.raises(errors.Forbidden):
        engine.create_session("bob", QUIZ_ID, "all")
    assert engine.store.list_sessions() == []


def test_non_owner_cannot_touch_session(engine):
    session = engine.create_session(OWNER, QUIZ_ID, "all")
    sid = session.session_id
    question = engine.view(OWNER, sid, 1).question

    calls = [
        lambda: engine.resume("bob", sid),
        lambda: engine.navigate("bob", sid, "next", 1),
        lambda: engine.view("bob", sid, 1),
        lambda: engine.submit_answer(
            "bob", sid, 1, right_choice(question), 10
        ),
        lambda: engine.toggle_bookmark("bob", sid, 1),
        lambda: engine.abandon("bob", sid),
        lambda: engine.complete("bob", sid),
        lambda: engine.summarize("bob", sid),
        lambda: engine.retry("bob", sid, "incorrect"),
        lambda: engine.rename_session("bob", sid, "mine"),
        lambda: engine.delete_session("bob", sid),
    ]
    for call in calls:
        with pytest.raises(errors.Forbidden):
            call()

    assert engine.store.get(sid) == session
    assert engine.history("bob") == []


# -- answering and navigation -------------------------------------------------


def test_all_correct_random_n_scores_100(engine):
    session = engine.create_session(OWNER, QUIZ_ID, "random-n", 5)
    sid = session.session_id

    results = [_submit(engine, sid, pos) for pos in range(1, 6)]
    summary = engine.complete(OWNER, sid)

    assert [r.next_position for r in results] == [2, 3, 4, 5, None]
    assert results[-1].finished
    assert summary.score_percent == 100
    assert summary.correct_count == 5
    assert summary.status is SessionStatus.COMPLETED


def test_one_wrong_answer_scores_80(engine):
    session = engine.create_session(OWNER, QUIZ_ID, "random-n", 5)
    sid = session.session_id

    for pos in range(1, 6):
        _submit(engine, sid, pos, correct=pos != 3)
    summary = engine.complete(OWNER, sid)

    assert summary.score_percent == 80
    assert summary.correct_count == 4
    assert summary.incorrect_positions == (3,)
    assert summary.total_duration_ms == 5000


def test_second_submit_raises_already_answered(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id
    _submit(engine, sid, 1)
    before = engine.store.get(sid)

    with pytest.raises(errors.AlreadyAnswered):
        _submit(engine, sid, 1, correct=False)

    assert engine.store.get(sid) == before


def test_submit_ahead_of_frontier(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id
    _submit(engine, sid, 1)

    with pytest.raises(errors.PositionNotFrontier):
        _submit(engine, sid, 3)

    assert engine.store.get(sid).frontier == 2


def test_submit_out_of_range_position(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id

    with pytest.raises(errors.InvalidArgument):
        engine.submit_answer(OWNER, sid, 9, [0], 10)


def test_answered_positions_always_form_prefix(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id

    for pos in (1, 3, 2, 2, 5, 3, 4):
        try:
            _submit(engine, sid, pos)
        except errors.StaleState:
            pass
        flags = [i.answered for i in engine.store.get(sid).items]
        assert flags == sorted(flags, reverse=True)


def test_navigation_never_passes_frontier(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id
    _submit(engine, sid, 1)
    _submit(engine, sid, 2)

    assert engine.resume(OWNER, sid) == 3
    assert engine.navigate(OWNER, sid, "next", 3) == 3
    assert engine.navigate(OWNER, sid, "prev", 3) == 2
    assert engine.navigate(OWNER, sid, "previous", 1) == 1
    assert engine.navigate(OWNER, sid, "goto:5") == 3
    with pytest.raises(errors.InvalidArgument):
        engine.navigate(OWNER, sid, "sideways")


def test_view_marks_only_frontier_editable(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id
    result = _submit(engine, sid, 1, correct=False)

    review = engine.view(OWNER, sid, 1)
    current = engine.view(OWNER, sid, 2)
    capped = engine.view(OWNER, sid, 5)

    assert review.answered and not review.editable
    assert review.item.correct is False
    assert review.item.chosen == result.chosen
    assert current.editable and not current.answered
    assert capped.position == 2
    assert (current.total, current.frontier) == (5, 2)


def test_durations_are_clamped(quiz_source):
    engine = QuizEngine(
        quiz_source, InMemorySessionStore(), max_duration_ms=500
    )
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id

    result = _submit(engine, sid, 1, duration=10_000)

    assert result.duration_ms == 500


def test_bookmark_toggle(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id

    assert engine.toggle_bookmark(OWNER, sid, 4) is True
    assert engine.toggle_bookmark(OWNER, sid, 4) is False
    assert not engine.store.get(sid).item_at(4).bookmarked


# -- lifecycle ----------------------------------------------------------------


def test_abandon_midway_and_resume(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id
    _submit(engine, sid, 1)
    _submit(engine, sid, 2)

    abandoned = engine.abandon(OWNER, sid)

    assert abandoned.status is SessionStatus.ABANDONED
    assert abandoned.frontier == 3
    assert engine.resume(OWNER, sid) == 3
    with pytest.raises(errors.InvalidTransition):
        _submit(engine, sid, 3)
    with pytest.raises(errors.InvalidTransition):
        engine.abandon(OWNER, sid)
    assert not engine.view(OWNER, sid, 3).editable


def test_complete_requires_all_answers(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "random-n", 2).session_id
    _submit(engine, sid, 1)

    with pytest.raises(errors.InvalidTransition):
        engine.complete(OWNER, sid)

    partial = engine.summarize(OWNER, sid)
    assert partial.status is SessionStatus.ACTIVE
    assert partial.score_percent == 50


def test_complete_is_idempotent(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "random-n", 2).session_id
    _submit(engine, sid, 1)
    _submit(engine, sid, 2, correct=False)

    first = engine.complete(OWNER, sid)
    completed_at = engine.store.get(sid).completed_at
    second = engine.complete(OWNER, sid)

    assert first == second
    assert first.score_percent == 50
    assert engine.store.get(sid).completed_at == completed_at
    with pytest.raises(errors.InvalidTransition):
        engine.abandon(OWNER, sid)


# -- retry --------------------------------------------------------------------


def test_retry_incorrect_uses_missed_questions(engine):
    source = engine.create_session(
        OWNER, QUIZ_ID, "random-n", 3, name="round one"
    )
    sid = source.session_id
    _submit(engine, sid, 1, correct=True)
    _submit(engine, sid, 2, correct=False)
    _submit(engine, sid, 3, correct=False)
    engine.complete(OWNER, sid)
    missed = {source.items[1].question_id, source.items[2].question_id}

    retry = engine.retry(OWNER, sid, "incorrect")

    assert retry.session_id != sid
    assert retry.mode is SelectionMode.RETRY_INCORRECT
    assert retry.total == 2
    assert {i.question_id for i in retry.items} == missed
    assert retry.source_session_id == sid
    assert re.fullmatch(r"round one-retry-[0-9a-f]{6}", retry.name)
    assert engine.store.get(sid).status is SessionStatus.COMPLETED


def test_retry_bookmarked(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id
    engine.toggle_bookmark(OWNER, sid, 2)
    marked = engine.store.get(sid).item_at(2).question_id

    retry = engine.retry(OWNER, sid, SelectionMode.RETRY_BOOKMARKED)

    assert [i.question_id for i in retry.items] == [marked]
    assert "-bm-" in retry.name


def test_retry_with_nothing_to_retry(engine):
    sid = engine.create_session(OWNER, QUIZ_ID, "random-n", 1).session_id
    _submit(engine, sid, 1)

    with pytest.raises(errors.EmptySelection):
        engine.retry(OWNER, sid, "incorrect")
    with pytest.raises(errors.InvalidArgument):
        engine.retry(OWNER, sid, "all")


def test_retry_name_is_truncated(engine):
    long_name = "n" * MAX_NAME_LENGTH
    sid = engine.create_session(
        OWNER, QUIZ_ID, "random-n", 1, name=long_name
    ).session_id
    _submit(engine, sid, 1, correct=False)

    retry = engine.retry(OWNER, sid, "incorrect")

    assert len(retry.name) == MAX_NAME_LENGTH
    assert "-retry-" in retry.name


# -- history-driven selection and stats ---------------------------------------


def test_unanswered_mode_skips_answered_questions(engine, answer_all):
    first = engine.create_session(OWNER, QUIZ_ID, "random-n", 3)
    answer_all(engine, first.session_id, [True, False, True])
    seen = {item.question_id for item in first.items}

    fresh = engine.create_session(OWNER, QUIZ_ID, "unanswered", 2)
    topped_up = engine.create_session(OWNER, QUIZ_ID, "unanswered")

    assert fresh.mode is SelectionMode.UNANSWERED
    assert {item.question_id for item in fresh.items}.isdisjoint(seen)
    assert topped_up.total == 5


def test_weakest_mode_targets_missed_questions(engine, answer_all):
    first = engine.create_session(OWNER, QUIZ_ID, "all")
    answer_all(engine, first.session_id, [True, True, False, True, True])
    missed = first.item_at(3).question_id

    weakest = engine.create_session(OWNER, QUIZ_ID, "weakest", 1)

    assert [item.question_id for item in weakest.items] == [missed]


def test_quiz_stats_for_owner_only(engine, quiz_source, answer_all):
    quiz_source.add_quiz("bobs", "bob", [])
    sid = engine.create_session(OWNER, QUIZ_ID, "all").session_id
    answer_all(engine, sid, [True, False, True, True])

    stats = engine.quiz_stats(OWNER, QUIZ_ID)

    assert stats.sessions == 1
    assert (stats.total_answered, stats.total_correct) == (4, 3)
    assert stats.accuracy_percent == 75.0
    assert stats.unique_answered == 4
    assert len(stats.daily) == 1
    with pytest.raises(errors.Forbidden):
        engine.quiz_stats(OWNER, "bobs")
    with pytest.raises(errors.Forbidden):
        engine.quiz_stats("bob", QUIZ_ID)


# -- history and management ---------------------------------------------------


def test_history_and_find_incomplete(engine, quiz_source):
    quiz_source.add_quiz("bobs", "bob", [])
    first = engine.create_session(OWNER, QUIZ_ID, "all", name="a")
    second = engine.create_session(OWNER, QUIZ_ID, "random-n", 2, name="b")
    _submit(engine, second.session_id, 1)

    reports = engine.history(OWNER)

    assert {r.session_id for r in reports} == {
        first.session_id,
        second.session_id,
    }
    by_id = {r.session_id: r for r in reports}
    assert by_id[second.session_id].answered == 1
    assert by_id[second.session_id].score_percent == 50
    assert by_id[first.session_id].score_percent is None
    assert engine.history(OWNER, QUIZ_ID) == reports
    with pytest.raises(errors.Forbidden):
        engine.history(OWNER, "bobs")

    found = engine.find_incomplete(OWNER, QUIZ_ID, "b")
    assert found is not None and found.session_id == second.session_id
    engine.abandon(OWNER, second.session_id)
    assert engine.find_incomplete(OWNER, QUIZ_ID, "b") is None


def test_rename_and_delete(engine):
    one = engine.create_session(OWNER, QUIZ_ID, "all", name="one")
    engine.create_session(OWNER, QUIZ_ID, "all", name="two")

    renamed = engine.rename_session(OWNER, one.session_id, "  first ")
    assert renamed.name == "first"
    assert engine.rename_session(OWNER, one.session_id, "first") == renamed
    with pytest.raises(errors.InvalidArgument):
        engine.rename_session(OWNER, one.session_id, "two")

    engine.delete_session(OWNER, one.session_id)
    with pytest.raises(errors.NotFound):
        engine.resume(OWNER, one.session_id)


def test_missing_session_is_not_found(engine):
    with pytest.raises(errors.NotFound):
        engine.resume(OWNER, "does-not-exist")


# -- persistence --------------------------------------------------------------


def test_progress_survives_a_new_engine(file_engine, quiz_source):
    sid = file_engine.create_session(OWNER, QUIZ_ID, "all").session_id
    _submit(file_engine, sid, 1)
    _submit(file_engine, sid, 2)

    reopened = QuizEngine(
        quiz_source, SessionStore(file_engine.store.root)
    )

    assert reopened.resume(OWNER, sid) == 3
    assert reopened.view(OWNER, sid, 1).answered


def test_from_config_uses_workspace(tmp_path):
    home = tmp_path / "home"
    cfg = config_mod.load_config(
        env={workspace.WORKSPACE_ENV: str(home)},
        overrides={"paths": {"data_home": str(home)}},
    )
    layout = cfg.workspace()
    write_quiz_bank(layout.path_for("quizzes"))

    engine = QuizEngine.from_config(cfg)
    session = engine.create_session(OWNER, QUIZ_ID, "all")

    assert engine.store.root == layout.path_for("sessions")
    assert (
        layout.path_for("sessions") / session.session_id / "session.json"
    ).is_file()
