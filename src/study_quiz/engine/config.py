"""Configuration for the quiz session engine.

The config file is optional: every key has a default, and a TOML document only
needs to override what differs. Unknown keys are rejected so typos surface
immediately instead of being silently ignored.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from study_quiz.core import config as toml_config
from study_quiz.core import workspace

from .models import SelectionMode

__all__ = [
    "CONFIG_PATH_ENV",
    "CONFIG_FILENAME",
    "ConfigError",
    "EngineConfig",
    "SessionConfig",
    "StoreConfig",
    "LoggingConfig",
    "PathsConfig",
    "config_template",
    "load_config",
    "resolve_config_path",
    "write_template",
]

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "STUDY_QUIZ_CONFIG"
CONFIG_FILENAME = "study-quiz.toml"
DEFAULT_MAX_DURATION_MS = 300_000


class ConfigError(RuntimeError):
    """Raised when configuration parsing or validation fails."""


@dataclass(frozen=True)
class PathsConfig:
    data_home_override: Optional[Path]


@dataclass(frozen=True)
class SessionConfig:
    max_duration_ms: int
    default_count: int
    default_mode: SelectionMode


@dataclass(frozen=True)
class StoreConfig:
    lock_timeout_seconds: float


@dataclass(frozen=True)
class LoggingConfig:
    level: str
    verbose: bool


@dataclass(frozen=True)
class EngineConfig:
    paths: PathsConfig
    session: SessionConfig
    store: StoreConfig
    logging: LoggingConfig

    def workspace(self, *, create: bool = True) -> workspace.WorkspaceLayout:
        """Resolve the workspace honouring ``paths.data_home``."""

        return workspace.ensure_workspace(
            path=self.paths.data_home_override, create=create
        )


def _require_positive_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{field}' must be a positive integer.")
    return value


def _require_positive_number(value: Any, *, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{field}' must be a number.")
    if value <= 0:
        raise ConfigError(f"'{field}' must be greater than zero.")
    return float(value)


def _require_bool(value: Any, *, field: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'{field}' must be a boolean.")
    return value


def _coerce_optional_path(value: Any, *, field: str) -> Optional[Path]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{field}' must be a non-empty string when set.")
    return Path(value).expanduser().resolve()


def _build_session(section: Mapping[str, Any]) -> SessionConfig:
    max_duration_ms = _require_positive_int(
        section.get("max_duration_ms"), field="session.max_duration_ms"
    )
    default_count = _require_positive_int(
        section.get("default_count"), field="session.default_count"
    )
    raw_mode = section.get("default_mode")
    allowed = [mode.value for mode in SelectionMode if not mode.is_retry]
    if raw_mode not in allowed:
        raise ConfigError(
            "session.default_mode must be one of " + ", ".join(allowed) + "."
        )
    default_mode = SelectionMode(raw_mode)
    return SessionConfig(
        max_duration_ms=max_duration_ms,
        default_count=default_count,
        default_mode=default_mode,
    )


def _build_logging(section: Mapping[str, Any]) -> LoggingConfig:
    level = section.get("level")
    if not isinstance(level, str):
        raise ConfigError("'logging.level' must be a string.")
    level = level.strip().upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigError(
            "logging.level must be one of "
            "DEBUG, INFO, WARNING, ERROR, CRITICAL."
        )
    verbose = _require_bool(section.get("verbose"), field="logging.verbose")
    return LoggingConfig(level=level, verbose=verbose)


def _build_config(tree: Mapping[str, Any]) -> EngineConfig:
    return EngineConfig(
        paths=PathsConfig(
            data_home_override=_coerce_optional_path(
                tree["paths"].get("data_home"), field="paths.data_home"
            )
        ),
        session=_build_session(tree["session"]),
        store=StoreConfig(
            lock_timeout_seconds=_require_positive_number(
                tree["store"].get("lock_timeout_seconds"),
                field="store.lock_timeout_seconds",
            )
        ),
        logging=_build_logging(tree["logging"]),
    )


def resolve_config_path(
    *,
    explicit_path: Optional[Path] = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    env_map = os.environ if env is None else env
    if explicit_path is not None:
        return explicit_path.expanduser().resolve()
    override = (env_map.get(CONFIG_PATH_ENV) or "").strip()
    if override:
        return Path(override).expanduser().resolve()
    layout = workspace.ensure_workspace(env=env_map, create=False)
    return layout.path_for("config") / CONFIG_FILENAME


def load_config(
    *,
    explicit_path: Optional[Path] = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> EngineConfig:
    """Load configuration, falling back to defaults when no file exists.

    An explicitly requested path must exist; the implicit workspace location
    is optional.
    """

    path = resolve_config_path(explicit_path=explicit_path, env=env)
    tree = copy.deepcopy(_DEFAULTS)
    applied: list[str] = []
    try:
        if path.exists() or explicit_path is not None:
            document = toml_config.read_document(path)
            applied += toml_config.apply_overrides(
                tree, document, source=str(path)
            )
        if overrides:
            applied += toml_config.apply_overrides(tree, overrides)
    except toml_config.TomlDocumentError as exc:
        raise ConfigError(str(exc)) from exc
    logger.debug(
        "Configuration loaded",
        extra={"config_path": str(path), "overridden": applied},
    )
    return _build_config(tree)


def config_template() -> str:
    return _CONFIG_TEMPLATE.strip() + "\n"


def write_template(
    path: Path, *, overwrite: bool = False, mode: int = 0o600
) -> Path:
    try:
        return toml_config.write_document(
            path, config_template(), overwrite=overwrite, mode=mode
        )
    except toml_config.TomlDocumentError as exc:
        raise ConfigError(str(exc)) from exc


_DEFAULTS: Dict[str, Any] = {
    "paths": {
        "data_home": None,
    },
    "session": {
        "max_duration_ms": DEFAULT_MAX_DURATION_MS,
        "default_count": 10,
        "default_mode": SelectionMode.ALL.value,
    },
    "store": {
        "lock_timeout_seconds": 5.0,
    },
    "logging": {
        "level": "INFO",
        "verbose": False,
    },
}


_CONFIG_TEMPLATE = """
# study-quiz configuration

[paths]
# Override the workspace root (defaults to ~/.study-quiz-data)
# data_home = "~/my-quiz-data"

[session]
# Per-answer durations above this ceiling are clamped (milliseconds)
max_duration_ms = 300000
# Question count used by random-n, unanswered and weakest when --count
# is omitted
default_count = 10
# Selection mode for new sessions: "all", "random-n", "unanswered"
# or "weakest"
default_mode = "all"

[store]
# Seconds to wait for another writer to release a session lock
lock_timeout_seconds = 5.0

[logging]
level = "INFO"
verbose = false
"""
