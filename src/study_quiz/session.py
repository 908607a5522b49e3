"""Rich-powered interactive loop driving a persisted quiz session.

The loop owns no quiz state of its own. Every keystroke is translated into a
``QuizEngine`` call and the screen is redrawn from what the engine returns, so
a session can be abandoned mid-way and resumed later from another terminal.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Literal, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .engine.errors import InvalidArgument, InvalidTransition, StaleState
from .engine.evaluator import AnswerResult
from .engine.models import SessionStatus
from .engine.navigation import Intent
from .engine.results import Summary
from .engine.service import PositionView, QuizEngine

__all__ = [
    "SessionCommand",
    "EngineSessionResult",
    "parse_session_command",
    "parse_choice_keys",
    "choice_key",
    "run_engine_session",
    "render_summary",
    "show_results",
]

InputProvider = Callable[[], str]
Clock = Callable[[], float]
ExitAction = Literal["completed", "abandoned", "quit"]
CommandType = Literal[
    "answer", "next", "prev", "goto", "bookmark", "results", "abandon", "quit"
]

_RESERVED_WORDS = {
    "n": "next",
    "next": "next",
    "p": "prev",
    "prev": "prev",
    "previous": "prev",
    "m": "bookmark",
    "mark": "bookmark",
    "bookmark": "bookmark",
    "results": "results",
    "done": "results",
    "abandon": "abandon",
    "q": "quit",
    "quit": "quit",
    "exit": "quit",
}
_ANSWER_PREFIXES = {"ans", "answer"}


@dataclass(frozen=True)
class SessionCommand:
    """Normalized user command parsed from console input."""

    type: CommandType
    choices: tuple[int, ...] = ()
    target: Optional[int] = None


@dataclass(frozen=True)
class EngineSessionResult:
    """Return value from ``run_engine_session``."""

    session_id: str
    exit_action: ExitAction
    summary: Optional[Summary] = None


def choice_key(index: int) -> str:
    return chr(ord("A") + index)


def parse_choice_keys(raw: str) -> tuple[int, ...]:
    """Turn ``"a"``, ``"a,c"`` or ``"a c"`` into 0-based option indices."""

    tokens = [
        token for token in (raw or "").replace(",", " ").split() if token
    ]
    if not tokens:
        raise InvalidArgument("Select at least one option.")
    indices: list[int] = []
    for token in tokens:
        if len(token) != 1 or not token.isalpha():
            raise InvalidArgument(f"'{token}' is not an option key.")
        index = ord(token.upper()) - ord("A")
        if index not in indices:
            indices.append(index)
    return tuple(indices)


def parse_session_command(raw: str | None) -> SessionCommand | None:
    """Parse raw user input into a structured command.

    Bare input is tried as a reserved word first, so an option whose key
    collides with one (``n``, ``p``, ``m``, ``q``) is answered with an
    explicit prefix such as ``ans n``.
    """

    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    lowered = text.lower()
    keyword = _RESERVED_WORDS.get(lowered)
    if keyword is not None:
        return SessionCommand(keyword)
    head, _, rest = lowered.replace(":", " ").partition(" ")
    if head in _ANSWER_PREFIXES:
        try:
            return SessionCommand("answer", choices=parse_choice_keys(rest))
        except InvalidArgument:
            return None
    if head in {"g", "goto"} and rest.strip():
        try:
            return SessionCommand("goto", target=int(rest.strip()))
        except ValueError:
            return None
    try:
        return SessionCommand("answer", choices=parse_choice_keys(text))
    except InvalidArgument:
        return None


def run_engine_session(
    engine: QuizEngine,
    user_id: str,
    session_id: str,
    console: Console,
    input_provider: InputProvider,
    *,
    show_explanations: bool = True,
    clock: Clock = time.monotonic,
) -> EngineSessionResult:
    """Play ``session_id`` interactively until it is finished or left."""

    position = engine.resume(user_id, session_id)
    shown_position: Optional[int] = None
    shown_at = clock()

    while True:
        view = engine.view(user_id, session_id, position)
        position = view.position
        if position != shown_position:
            shown_position = position
            shown_at = clock()
        _render_position(console, view, show_explanations=show_explanations)

        try:
            raw = input_provider()
        except (EOFError, KeyboardInterrupt, StopIteration):
            console.print("\n[bold yellow]Session interrupted.[/]")
            return EngineSessionResult(session_id, "quit")
        command = parse_session_command(raw)
        if command is None:
            console.print("[red]Unrecognized command. Try again.[/]")
            continue

        if command.type == "quit":
            console.print(
                "\n[bold yellow]Progress saved. Resume any time.[/]"
            )
            return EngineSessionResult(session_id, "quit")
        if command.type == "abandon":
            engine.abandon(user_id, session_id)
            console.print("\n[bold yellow]Session abandoned.[/]")
            return EngineSessionResult(session_id, "abandoned")
        if command.type == "results":
            summary = show_results(engine, user_id, session_id, console)
            if summary.status is SessionStatus.COMPLETED:
                return EngineSessionResult(session_id, "completed", summary)
            continue
        if command.type == "bookmark":
            marked = engine.toggle_bookmark(user_id, session_id, position)
            label = "Bookmarked" if marked else "Bookmark removed for"
            console.print(f"{label} question {position}.")
            continue
        if command.type in {"next", "prev", "goto"}:
            try:
                position = engine.navigate(
                    user_id,
                    session_id,
                    _intent_for(command),
                    current=position,
                )
            except InvalidArgument as exc:
                console.print(f"[red]{exc}[/red]")
            continue

        if not view.editable:
            console.print(
                "[red]This question is read-only. Use n, p or goto to "
                "move around.[/red]"
            )
            continue
        elapsed_ms = int((clock() - shown_at) * 1000)
        try:
            result = engine.submit_answer(
                user_id, session_id, position, command.choices, elapsed_ms
            )
        except StaleState:
            # Another terminal answered first; jump to the live frontier.
            position = engine.resume(user_id, session_id)
            console.print(
                f"[dim]Progress changed elsewhere; now at question "
                f"{position}.[/dim]"
            )
            continue
        except (InvalidArgument, InvalidTransition) as exc:
            console.print(f"[red]{exc}[/red]")
            continue

        _render_feedback(console, result, show_explanations=show_explanations)
        if result.finished:
            summary = show_results(engine, user_id, session_id, console)
            return EngineSessionResult(session_id, "completed", summary)
        position = result.next_position or position


def _intent_for(command: SessionCommand) -> Intent:
    if command.type == "next":
        return Intent.next()
    if command.type == "prev":
        return Intent.previous()
    return Intent.goto(command.target if command.target is not None else 0)


def show_results(
    engine: QuizEngine, user_id: str, session_id: str, console: Console
) -> Summary:
    """Render the summary, completing the session once fully answered."""

    summary = engine.summarize(user_id, session_id)
    finished = summary.answered_count == summary.total_items
    if finished and summary.status is SessionStatus.ACTIVE:
        summary = engine.complete(user_id, session_id)
    render_summary(console, summary)
    return summary


def _render_position(
    console: Console, view: PositionView, *, show_explanations: bool
) -> None:
    question = view.question
    item = view.item
    header = Text.assemble(
        (f"Question {view.position}", "bold cyan"),
        (f" / {view.total}", "dim"),
    )
    if item.bookmarked:
        header.append("  [bookmarked]", style="yellow")
    console.print()
    console.rule(header)
    console.print(Text(question.prompt, style="bold"))
    if question.is_multi_select:
        console.print(Text("Select all that apply.", style="italic"))

    table = Table(show_header=False, box=box.SIMPLE, expand=True)
    table.add_column("Key", justify="center", style="cyan")
    table.add_column("Choice")
    for index, option in enumerate(question.options):
        picked = index in item.chosen
        indicator = "•" if picked else " "
        row_text = Text(indicator + " ")
        option_text = Text(option)
        if item.answered:
            if index in question.correct:
                option_text.stylize("bold green")
            elif picked:
                option_text.stylize("bold red")
        row_text += option_text
        table.add_row(choice_key(index), row_text)
    console.print(table)

    if item.answered:
        verdict = "Correct" if item.correct else "Incorrect"
        style = "green" if item.correct else "red"
        console.print(Text(f"Your answer: {verdict}", style=style))
        if show_explanations and question.explanation:
            console.print(Text(question.explanation, style="dim"))

    if view.editable:
        keys = [choice_key(index) for index in range(len(question.options))]
        choices = f"choices [{', '.join(keys)}]"
        if any(key.lower() in _RESERVED_WORDS for key in keys):
            choices += " or ans <keys>"
        command_hint = (
            f"Commands: {choices}, n (next), p (prev), m (mark), "
            "goto <k>, results, quit"
        )
    else:
        command_hint = (
            "Commands: n (next), p (prev), m (mark), goto <k>, results, quit"
        )
    console.print(
        Text(
            f"Answered {view.frontier - 1}/{view.total} | {command_hint}",
            style="dim",
        )
    )


def _render_feedback(
    console: Console,
    result: AnswerResult,
    *,
    show_explanations: bool,
) -> None:
    answer_keys = ", ".join(
        choice_key(index) for index in sorted(result.correct_options)
    )
    if result.correct:
        body = Text("Correct!", style="bold green")
        border = "green"
    else:
        body = Text(f"Incorrect. Answer: {answer_keys}", style="bold red")
        border = "red"
    if show_explanations and result.explanation:
        body.append("\n\n")
        body.append(result.explanation)
    console.print(
        Panel(
            body,
            title=f"Question {result.position}",
            border_style=border,
        )
    )


def render_summary(console: Console, summary: Summary) -> None:
    """Print the score overview plus per-category and position tables."""

    console.print()
    console.rule(Text("Quiz Summary", style="bold magenta"))

    overview = Table(
        show_header=False,
        box=box.MINIMAL_DOUBLE_HEAD,
        expand=False,
    )
    overview.add_column("Metric", style="bold")
    overview.add_column("Value", justify="right")
    overview.add_row("Status", summary.status.value)
    overview.add_row("Score", f"{summary.score_percent}%")
    overview.add_row("Correct", str(summary.correct_count))
    overview.add_row(
        "Answered", f"{summary.answered_count}/{summary.total_items}"
    )
    overview.add_row("Time", _format_duration(summary.total_duration_ms))
    console.print(overview)

    if summary.per_category:
        per_category = Table(
            title="Per category", box=box.SIMPLE, expand=False
        )
        per_category.add_column("Category")
        per_category.add_column("Answered", justify="right")
        per_category.add_column("Correct", justify="right")
        per_category.add_column("Accuracy", justify="right")
        for name, metrics in summary.per_category.items():
            per_category.add_row(
                name,
                str(metrics.total),
                str(metrics.correct),
                f"{metrics.accuracy * 100:.1f}%",
            )
        console.print(per_category)

    if summary.incorrect_positions:
        console.print(
            "Incorrect: "
            + ", ".join(str(pos) for pos in summary.incorrect_positions)
        )
    if summary.bookmarked_positions:
        console.print(
            "Bookmarked: "
            + ", ".join(str(pos) for pos in summary.bookmarked_positions)
        )


def _format_duration(duration_ms: int) -> str:
    seconds = duration_ms // 1000
    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m {seconds:02d}s"
