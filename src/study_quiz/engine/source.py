"""Question sources: read-only access to quizzes and their question banks.

The engine only depends on the :class:`QuestionSource` protocol. Two
implementations ship with the package: an in-memory source and a JSONL bank
laid out as ``<root>/<quiz_id>/quiz.toml`` plus
``<root>/<quiz_id>/questions.jsonl``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence

from study_quiz.core import config as toml_config

from .errors import InvalidArgument, NotFound
from .models import Question, Quiz

__all__ = [
    "QuestionSource",
    "StaticQuestionSource",
    "JsonlQuestionSource",
    "parse_question",
    "read_jsonl",
    "write_jsonl",
]

logger = logging.getLogger(__name__)

_QUIZ_FILENAME = "quiz.toml"
_QUESTIONS_FILENAME = "questions.jsonl"


class QuestionSource(Protocol):
    def quiz(self, quiz_id: str) -> Quiz:
        """Return quiz metadata or raise :class:`NotFound`."""

    def questions_of(self, quiz_id: str) -> Mapping[str, Question]:
        """Return the quiz's questions keyed by question id."""


class StaticQuestionSource:
    """Question source backed by in-memory quizzes."""

    def __init__(self) -> None:
        self._quizzes: Dict[str, Quiz] = {}
        self._questions: Dict[str, Dict[str, Question]] = {}

    def add_quiz(
        self,
        quiz_id: str,
        owner_id: str,
        questions: Sequence[Question],
        *,
        name: str = "",
    ) -> Quiz:
        bank = _index_questions(questions)
        categories = _categories(bank.values())
        quiz = Quiz(
            quiz_id=quiz_id,
            owner_id=owner_id,
            question_ids=tuple(bank),
            name=name or quiz_id,
            categories=categories,
        )
        self._quizzes[quiz_id] = quiz
        self._questions[quiz_id] = bank
        return quiz

    def quiz(self, quiz_id: str) -> Quiz:
        try:
            return self._quizzes[quiz_id]
        except KeyError as exc:
            raise NotFound(f"Quiz '{quiz_id}' not found.") from exc

    def questions_of(self, quiz_id: str) -> Mapping[str, Question]:
        self.quiz(quiz_id)
        return dict(self._questions[quiz_id])


class JsonlQuestionSource:
    """Question source reading quiz directories under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def quiz_ids(self) -> List[str]:
        if not self._root.is_dir():
            return []
        return sorted(
            child.name
            for child in self._root.iterdir()
            if (child / _QUIZ_FILENAME).is_file()
        )

    def quiz(self, quiz_id: str) -> Quiz:
        meta = self._read_meta(quiz_id)
        bank = self._read_bank(quiz_id)
        owner = meta.get("owner_id")
        if not isinstance(owner, str) or not owner.strip():
            raise InvalidArgument(
                f"Quiz '{quiz_id}' must declare a non-empty owner_id."
            )
        return Quiz(
            quiz_id=quiz_id,
            owner_id=owner.strip(),
            question_ids=tuple(bank),
            name=str(meta.get("name") or quiz_id),
            categories=_categories(bank.values()),
        )

    def questions_of(self, quiz_id: str) -> Mapping[str, Question]:
        self._read_meta(quiz_id)
        return self._read_bank(quiz_id)

    def _directory(self, quiz_id: str) -> Path:
        if not quiz_id or "/" in quiz_id or quiz_id.startswith("."):
            raise NotFound(f"Quiz '{quiz_id}' not found.")
        return self._root / quiz_id

    def _read_meta(self, quiz_id: str) -> Mapping[str, Any]:
        path = self._directory(quiz_id) / _QUIZ_FILENAME
        if not path.is_file():
            raise NotFound(f"Quiz '{quiz_id}' not found.")
        try:
            return toml_config.read_document(path, kind="quiz")
        except toml_config.TomlDocumentError as exc:
            raise InvalidArgument(str(exc)) from exc

    def _read_bank(self, quiz_id: str) -> Dict[str, Question]:
        path = self._directory(quiz_id) / _QUESTIONS_FILENAME
        if not path.is_file():
            return {}
        try:
            records = read_jsonl(path)
        except json.JSONDecodeError as exc:
            raise InvalidArgument(
                f"Failed to parse question bank {path}: {exc}"
            ) from exc
        questions = [parse_question(record) for record in records]
        logger.debug(
            "Loaded question bank",
            extra={"quiz_id": quiz_id, "questions": len(questions)},
        )
        return _index_questions(questions)


def parse_question(record: Mapping[str, Any]) -> Question:
    """Validate a raw question mapping and build a :class:`Question`.

    Required keys: ``id``, ``prompt``, ``options`` (two or more non-empty
    strings) and ``correct`` (a non-empty list of 0-based option indices).
    ``category`` and ``explanation`` are optional.
    """

    if not isinstance(record, Mapping):
        raise InvalidArgument("question must be a mapping")
    qid = str(record.get("id", "")).strip()
    if not qid:
        raise InvalidArgument("question id is required")
    prompt = str(record.get("prompt", "")).strip()
    if not prompt:
        raise InvalidArgument(f"question '{qid}': prompt is required")
    options = record.get("options")
    if not isinstance(options, list) or len(options) < 2:
        raise InvalidArgument(
            f"question '{qid}': options must list at least two choices"
        )
    texts = tuple(str(option).strip() for option in options)
    if not all(texts):
        raise InvalidArgument(f"question '{qid}': option text must be set")
    correct = record.get("correct")
    if isinstance(correct, int) and not isinstance(correct, bool):
        correct = [correct]
    if not isinstance(correct, list) or not correct:
        raise InvalidArgument(
            f"question '{qid}': correct must list at least one option index"
        )
    indices = set()
    for raw in correct:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise InvalidArgument(
                f"question '{qid}': correct indices must be integers"
            )
        if not 0 <= raw < len(texts):
            raise InvalidArgument(
                f"question '{qid}': correct index {raw} is out of range"
            )
        indices.add(raw)
    category = record.get("category")
    explanation = record.get("explanation")
    return Question(
        question_id=qid,
        prompt=prompt,
        options=texts,
        correct=frozenset(indices),
        category=str(category).strip() or None if category else None,
        explanation=str(explanation) if explanation else None,
    )


def read_jsonl(path: Path) -> List[dict]:
    data: List[dict] = []
    with Path(path).open("r", encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            data.append(json.loads(line))
    return data


def write_jsonl(path: Path, records: Iterable[Mapping[str, Any]]) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as fh:
        for record in records:
            fh.write(json.dumps(dict(record), ensure_ascii=False))
            fh.write("\n")


def _index_questions(questions: Iterable[Question]) -> Dict[str, Question]:
    bank: Dict[str, Question] = {}
    for question in questions:
        if question.question_id in bank:
            raise InvalidArgument(
                f"duplicate question id '{question.question_id}'"
            )
        bank[question.question_id] = question
    return bank


def _categories(questions: Iterable[Question]) -> tuple[str, ...]:
    return tuple(
        sorted({q.category for q in questions if q.category is not None})
    )
