"""Command-line entry points for the study-quiz engine."""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from .core import workspace as workspace_mod
from .core.logging import configure_logger
from .engine import config as config_mod
from .engine.errors import (
    EmptySelection,
    Forbidden,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    SessionStoreError,
    StaleState,
)
from .engine.models import SelectionMode
from .engine.service import RETRY_MODES, QuizEngine
from .session import (
    InputProvider,
    parse_choice_keys,
    run_engine_session,
    show_results,
)

USER_ENV = "STUDY_QUIZ_USER"

logger = logging.getLogger("study_quiz.cli")

Handler = Callable[[argparse.Namespace, "CommandContext"], int]


class CommandContext:
    """Lazily built collaborators shared by command handlers."""

    def __init__(
        self,
        args: argparse.Namespace,
        *,
        console: Console,
        input_provider: InputProvider,
        env: Mapping[str, str],
    ) -> None:
        self.args = args
        self.console = console
        self.input_provider = input_provider
        self.env = env
        self._config: Optional[config_mod.EngineConfig] = None
        self._engine: Optional[QuizEngine] = None

    @property
    def user_id(self) -> str:
        explicit = (self.args.user or "").strip()
        if explicit:
            return explicit
        from_env = (self.env.get(USER_ENV) or "").strip()
        return from_env or getpass.getuser()

    @property
    def config(self) -> config_mod.EngineConfig:
        if self._config is None:
            self._config = config_mod.load_config(
                explicit_path=_to_path(self.args.config), env=self.env
            )
        return self._config

    @property
    def engine(self) -> QuizEngine:
        if self._engine is None:
            self._engine = QuizEngine.from_config(self.config)
        return self._engine

    def configure_logging(self) -> None:
        cfg = self.config
        layout = cfg.workspace()
        configure_logger(
            "study_quiz",
            log_dir=layout.path_for("logs"),
            level=cfg.logging.level,
            verbose=cfg.logging.verbose or bool(self.args.verbose),
        )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="study-quiz",
        description="Run persisted multiple-choice quiz sessions.",
    )
    parser.add_argument(
        "--user",
        help=f"Acting user id (defaults to ${USER_ENV} or the login name).",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to the config TOML (defaults to the workspace config).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Mirror log output to stderr.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init",
        help="Create the workspace and a default config file.",
    )
    init_parser.add_argument(
        "--path",
        type=str,
        help="Workspace directory (defaults to $STUDY_QUIZ_DATA_HOME).",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file if present.",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Manage the configuration file.",
    )
    _build_config_subcommands(config_parser)

    subparsers.add_parser(
        "quizzes",
        help="List quizzes owned by the acting user.",
    )

    start_parser = subparsers.add_parser(
        "start",
        help="Create a new session for a quiz and play it.",
    )
    start_parser.add_argument("quiz")
    start_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in SelectionMode if not mode.is_retry],
        help="Question selection mode (defaults to session.default_mode).",
    )
    start_parser.add_argument(
        "--count",
        type=int,
        help="Number of questions for random-n, unanswered and weakest.",
    )
    start_parser.add_argument("--name", help="Session name.")
    _add_play_flags(start_parser)

    play_parser = subparsers.add_parser(
        "play",
        help="Resume a session at its first unanswered question.",
    )
    play_parser.add_argument("session")
    play_parser.add_argument(
        "--no-explain", dest="explain", action="store_false"
    )
    play_parser.set_defaults(explain=True)

    resume_parser = subparsers.add_parser(
        "resume",
        help="Resume the newest active session with the given name.",
    )
    resume_parser.add_argument("quiz")
    resume_parser.add_argument("name")
    resume_parser.add_argument(
        "--no-explain", dest="explain", action="store_false"
    )
    resume_parser.set_defaults(explain=True)

    answer_parser = subparsers.add_parser(
        "answer",
        help="Submit an answer without the interactive loop.",
    )
    answer_parser.add_argument("session")
    answer_parser.add_argument("position", type=int)
    answer_parser.add_argument(
        "choices",
        help="Option keys, e.g. 'b' or 'a,c'.",
    )
    answer_parser.add_argument(
        "--duration-ms",
        type=int,
        default=0,
        help="Time spent on the question in milliseconds.",
    )

    bookmark_parser = subparsers.add_parser(
        "bookmark",
        help="Toggle the bookmark on a position.",
    )
    bookmark_parser.add_argument("session")
    bookmark_parser.add_argument("position", type=int)

    abandon_parser = subparsers.add_parser(
        "abandon",
        help="Stop a session without completing it.",
    )
    abandon_parser.add_argument("session")

    results_parser = subparsers.add_parser(
        "results",
        help="Show results, completing the session when fully answered.",
    )
    results_parser.add_argument("session")

    retry_parser = subparsers.add_parser(
        "retry",
        help="Start a session from an earlier session's misses or marks.",
    )
    retry_parser.add_argument("session")
    retry_parser.add_argument(
        "--mode",
        choices=sorted(RETRY_MODES),
        default="incorrect",
    )
    _add_play_flags(retry_parser)

    history_parser = subparsers.add_parser(
        "history",
        help="List the acting user's sessions, newest first.",
    )
    history_parser.add_argument("--quiz", help="Only show this quiz.")

    stats_parser = subparsers.add_parser(
        "stats",
        help="Show accuracy for a quiz across all of your sessions.",
    )
    stats_parser.add_argument("quiz")

    rename_parser = subparsers.add_parser("rename", help="Rename a session.")
    rename_parser.add_argument("session")
    rename_parser.add_argument("name")

    delete_parser = subparsers.add_parser("delete", help="Delete a session.")
    delete_parser.add_argument("session")

    return parser


def _build_config_subcommands(parent: argparse.ArgumentParser) -> None:
    subparsers = parent.add_subparsers(dest="config_command", required=True)

    init_parser = subparsers.add_parser(
        "init",
        help="Write the default configuration template.",
    )
    init_parser.add_argument(
        "--path",
        type=str,
        help="Optional destination (defaults to the workspace config dir).",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file if present.",
    )

    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate the active configuration file.",
    )
    validate_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress success output; errors still print to stderr.",
    )

    subparsers.add_parser(
        "path",
        help="Print the resolved config path.",
    )


def _add_play_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--no-play",
        dest="play",
        action="store_false",
        help="Only create the session; do not start the interactive loop.",
    )
    parser.add_argument("--no-explain", dest="explain", action="store_false")
    parser.set_defaults(play=True, explain=True)


def _to_path(value: str | None) -> Path | None:
    if value is None:
        return None
    return Path(value).expanduser().resolve()


def _handle_init(args: argparse.Namespace, ctx: CommandContext) -> int:
    try:
        layout = workspace_mod.ensure_workspace(
            env=ctx.env, path=_to_path(args.path)
        )
    except workspace_mod.WorkspaceError as exc:
        _print_error(str(exc))
        return 2
    target = layout.path_for("config") / config_mod.CONFIG_FILENAME
    if target.exists() and not args.force:
        print(f"Config already exists at {target}")
    else:
        try:
            config_mod.write_template(target, overwrite=args.force)
        except config_mod.ConfigError as exc:
            _print_error(str(exc))
            return 2
        print(f"Wrote config template to {target}")
    print(f"Workspace ready at {layout.home}")
    for name, path in layout.items():
        marker = "created" if layout.created.get(name) else "exists"
        print(f"  {name:<9} {path} ({marker})")
    return 0


def _handle_config(args: argparse.Namespace, ctx: CommandContext) -> int:
    command = args.config_command
    explicit_path = _to_path(args.config)
    if command == "init":
        path_override = _to_path(args.path) or explicit_path
        try:
            target = config_mod.resolve_config_path(
                explicit_path=path_override, env=ctx.env
            )
            config_mod.write_template(target, overwrite=args.force)
        except config_mod.ConfigError as exc:
            _print_error(str(exc))
            return 2
        print(f"Wrote config template to {target}")
        return 0
    if command == "validate":
        cfg = ctx.config
        if not args.quiet:
            print("Configuration OK")
            print(f"  max_duration_ms: {cfg.session.max_duration_ms}")
            print(f"  default_count: {cfg.session.default_count}")
            print(f"  default_mode: {cfg.session.default_mode.value}")
            print(f"  lock_timeout: {cfg.store.lock_timeout_seconds}")
            print(f"  log_level: {cfg.logging.level}")
        return 0
    if command == "path":
        print(
            config_mod.resolve_config_path(
                explicit_path=explicit_path, env=ctx.env
            )
        )
        return 0
    raise RuntimeError(f"Unhandled config command: {command}")


def _handle_quizzes(args: argparse.Namespace, ctx: CommandContext) -> int:
    engine = ctx.engine
    source = engine.source
    rows = []
    for quiz_id in source.quiz_ids():
        quiz = source.quiz(quiz_id)
        if engine.gate.is_allowed(ctx.user_id, quiz):
            rows.append(quiz)
    if not rows:
        print("No quizzes found.")
        return 1
    table = Table(box=box.SIMPLE)
    table.add_column("Quiz")
    table.add_column("Name")
    table.add_column("Questions", justify="right")
    table.add_column("Categories")
    for quiz in rows:
        table.add_row(
            quiz.quiz_id,
            quiz.name,
            str(len(quiz.question_ids)),
            ", ".join(quiz.categories) or "-",
        )
    ctx.console.print(table)
    return 0


def _handle_start(args: argparse.Namespace, ctx: CommandContext) -> int:
    mode = args.mode or ctx.config.session.default_mode.value
    session = ctx.engine.create_session(
        ctx.user_id, args.quiz, mode, args.count, name=args.name
    )
    print(
        f"Created session {session.session_id} ('{session.name}', "
        f"{session.total} question(s))."
    )
    if not args.play:
        return 0
    return _play(ctx, session.session_id, explain=args.explain)


def _handle_play(args: argparse.Namespace, ctx: CommandContext) -> int:
    return _play(ctx, args.session, explain=args.explain)


def _handle_resume(args: argparse.Namespace, ctx: CommandContext) -> int:
    session = ctx.engine.find_incomplete(ctx.user_id, args.quiz, args.name)
    if session is None:
        print(f"No active session named '{args.name}' for quiz {args.quiz}.")
        return 1
    return _play(ctx, session.session_id, explain=args.explain)


def _handle_answer(args: argparse.Namespace, ctx: CommandContext) -> int:
    result = ctx.engine.submit_answer(
        ctx.user_id,
        args.session,
        args.position,
        parse_choice_keys(args.choices),
        args.duration_ms,
    )
    verdict = "correct" if result.correct else "incorrect"
    print(f"Question {result.position}: {verdict}.")
    if result.explanation:
        print(result.explanation)
    if result.finished:
        print("All questions answered. Run 'results' to finish.")
    else:
        print(f"Next question: {result.next_position}")
    return 0


def _handle_bookmark(args: argparse.Namespace, ctx: CommandContext) -> int:
    marked = ctx.engine.toggle_bookmark(
        ctx.user_id, args.session, args.position
    )
    state = "bookmarked" if marked else "not bookmarked"
    print(f"Question {args.position} is now {state}.")
    return 0


def _handle_abandon(args: argparse.Namespace, ctx: CommandContext) -> int:
    session = ctx.engine.abandon(ctx.user_id, args.session)
    print(
        f"Abandoned session {session.session_id} at "
        f"{session.answered_count}/{session.total}."
    )
    return 0


def _handle_results(args: argparse.Namespace, ctx: CommandContext) -> int:
    show_results(ctx.engine, ctx.user_id, args.session, ctx.console)
    return 0


def _handle_retry(args: argparse.Namespace, ctx: CommandContext) -> int:
    session = ctx.engine.retry(ctx.user_id, args.session, args.mode)
    print(
        f"Created retry session {session.session_id} ('{session.name}', "
        f"{session.total} question(s))."
    )
    if not args.play:
        return 0
    return _play(ctx, session.session_id, explain=args.explain)


def _handle_history(args: argparse.Namespace, ctx: CommandContext) -> int:
    reports = ctx.engine.history(ctx.user_id, args.quiz)
    if not reports:
        print("No sessions found.")
        return 1
    table = Table(box=box.SIMPLE)
    table.add_column("Session")
    table.add_column("Quiz")
    table.add_column("Name")
    table.add_column("Mode")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Created")
    for report in reports:
        score = (
            f"{report.score_percent}%"
            if report.score_percent is not None
            else "-"
        )
        table.add_row(
            report.session_id,
            report.quiz_id,
            report.name,
            report.mode,
            report.status.value,
            f"{report.answered}/{report.total}",
            score,
            report.created_at,
        )
    ctx.console.print(table)
    return 0


def _handle_stats(args: argparse.Namespace, ctx: CommandContext) -> int:
    stats = ctx.engine.quiz_stats(ctx.user_id, args.quiz)
    if stats.total_answered == 0:
        print(f"No answers recorded for quiz '{stats.quiz_id}' yet.")
        return 1

    overview = Table(show_header=False, box=box.MINIMAL_DOUBLE_HEAD)
    overview.add_column("Metric", style="bold")
    overview.add_column("Value", justify="right")
    overview.add_row("Sessions", str(stats.sessions))
    overview.add_row(
        "Questions seen",
        f"{stats.unique_answered}/{stats.total_questions}",
    )
    overview.add_row("Answers", str(stats.total_answered))
    overview.add_row("Correct", str(stats.total_correct))
    overview.add_row("Accuracy", f"{stats.accuracy_percent}%")
    ctx.console.print(overview)

    per_category = Table(title="Per category", box=box.SIMPLE)
    per_category.add_column("Category")
    per_category.add_column("Seen", justify="right")
    per_category.add_column("Answers", justify="right")
    per_category.add_column("Accuracy", justify="right")
    for category in stats.per_category.values():
        accuracy = category.accuracy_percent
        per_category.add_row(
            category.category,
            f"{category.unique_answered}/{category.total_questions}",
            str(category.answered),
            "-" if accuracy is None else f"{accuracy}%",
        )
    ctx.console.print(per_category)

    daily = Table(title="Daily accuracy", box=box.SIMPLE)
    daily.add_column("Date")
    daily.add_column("Answers", justify="right")
    daily.add_column("Accuracy", justify="right")
    for day in stats.daily:
        daily.add_row(day.date, str(day.answered), f"{day.accuracy_percent}%")
    ctx.console.print(daily)
    return 0


def _handle_rename(args: argparse.Namespace, ctx: CommandContext) -> int:
    session = ctx.engine.rename_session(ctx.user_id, args.session, args.name)
    print(f"Session {session.session_id} is now '{session.name}'.")
    return 0


def _handle_delete(args: argparse.Namespace, ctx: CommandContext) -> int:
    ctx.engine.delete_session(ctx.user_id, args.session)
    print(f"Deleted session {args.session}.")
    return 0


def _play(ctx: CommandContext, session_id: str, *, explain: bool) -> int:
    result = run_engine_session(
        ctx.engine,
        ctx.user_id,
        session_id,
        ctx.console,
        ctx.input_provider,
        show_explanations=explain,
    )
    logger.info(
        "Interactive session ended",
        extra={"session_id": session_id, "exit_action": result.exit_action},
    )
    return 0


_HANDLERS: Mapping[str, Handler] = {
    "init": _handle_init,
    "config": _handle_config,
    "quizzes": _handle_quizzes,
    "start": _handle_start,
    "play": _handle_play,
    "resume": _handle_resume,
    "answer": _handle_answer,
    "bookmark": _handle_bookmark,
    "abandon": _handle_abandon,
    "results": _handle_results,
    "retry": _handle_retry,
    "history": _handle_history,
    "stats": _handle_stats,
    "rename": _handle_rename,
    "delete": _handle_delete,
}

# Commands that must work before a workspace or config file exists.
_BOOTSTRAP_COMMANDS = {"init", "config"}


def main(
    argv: Sequence[str] | None = None,
    *,
    console: Console | None = None,
    input_provider: InputProvider | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:  # pragma: no cover - argparse already handles
        return int(exc.code)

    handler = _HANDLERS.get(args.command)
    if handler is None:
        parser.error("Command not implemented yet.")
        return 2

    console = console or Console()
    ctx = CommandContext(
        args,
        console=console,
        input_provider=input_provider
        or (lambda: console.input("[bold cyan]> [/]")),
        env=os.environ if env is None else env,
    )
    try:
        if args.command not in _BOOTSTRAP_COMMANDS:
            ctx.configure_logging()
        return handler(args, ctx)
    except (Forbidden, NotFound) as exc:
        _print_error(str(exc))
        return 2
    except (InvalidArgument, EmptySelection) as exc:
        _print_error(str(exc))
        return 2
    except (config_mod.ConfigError, workspace_mod.WorkspaceError) as exc:
        _print_error(str(exc))
        return 2
    except (InvalidTransition, StaleState) as exc:
        _print_error(str(exc))
        return 1
    except SessionStoreError as exc:
        logger.error("Session store failure", exc_info=True)
        _print_error(str(exc))
        return 1


def _print_error(message: str) -> None:
    sys.stderr.write(message + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
