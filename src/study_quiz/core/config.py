"""Reading and writing the TOML files kept in a study-quiz workspace.

Two kinds of TOML live there: the engine configuration and one ``quiz.toml``
per quiz bank. Errors name the kind of file and its path so the message tells
the user exactly what to fix.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, List, Mapping, MutableMapping, Optional

__all__ = [
    "DOCUMENT_KINDS",
    "TomlDocumentError",
    "read_document",
    "apply_overrides",
    "write_document",
]

DOCUMENT_KINDS: Mapping[str, str] = {
    "config": "config file",
    "quiz": "quiz metadata file",
}


class TomlDocumentError(RuntimeError):
    """Raised when a workspace TOML file cannot be read, merged or written."""

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


def read_document(path: Path, *, kind: str = "config") -> dict[str, Any]:
    """Parse the TOML file at ``path``.

    ``kind`` is one of :data:`DOCUMENT_KINDS` and only changes the wording
    of errors.
    """

    label = DOCUMENT_KINDS[kind]
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        raise TomlDocumentError(
            f"{label.capitalize()} not found: {path}", path=path
        ) from exc
    except tomllib.TOMLDecodeError as exc:
        raise TomlDocumentError(
            f"Failed to parse {label} {path}: {exc}", path=path
        ) from exc


def apply_overrides(
    tree: MutableMapping[str, Any],
    overrides: Mapping[str, Any],
    *,
    source: str = "overrides",
) -> List[str]:
    """Merge ``overrides`` into ``tree`` in place.

    ``tree`` fixes the allowed shape: unknown keys are rejected, tables must
    stay tables and values must stay values. Returns the dotted keys that were
    set, in document order.
    """

    applied: List[str] = []
    _merge(tree, overrides, prefix="", source=source, applied=applied)
    return applied


def _merge(
    tree: MutableMapping[str, Any],
    overrides: Mapping[str, Any],
    *,
    prefix: str,
    source: str,
    applied: List[str],
) -> None:
    for key, value in overrides.items():
        dotted = f"{prefix}{key}"
        if key not in tree:
            raise TomlDocumentError(
                f"Unknown configuration key '{dotted}' in {source}."
            )
        current = tree[key]
        if isinstance(current, MutableMapping):
            if not isinstance(value, Mapping):
                raise TomlDocumentError(
                    f"'{dotted}' in {source} must be a table, found "
                    f"{type(value).__name__}."
                )
            _merge(
                current,
                value,
                prefix=f"{dotted}.",
                source=source,
                applied=applied,
            )
            continue
        if isinstance(value, Mapping):
            raise TomlDocumentError(
                f"'{dotted}' in {source} must be a value, not a table."
            )
        tree[key] = value
        applied.append(dotted)


def write_document(
    path: Path,
    text: str,
    *,
    overwrite: bool = False,
    mode: int = 0o600,
) -> Path:
    """Write ``text`` to ``path``, refusing to clobber unless ``overwrite``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with path.open("w" if overwrite else "x", encoding="utf-8") as handle:
            handle.write(text)
    except FileExistsError as exc:
        raise TomlDocumentError(
            f"File already exists: {path}", path=path
        ) from exc
    try:
        path.chmod(mode)
    except PermissionError:  # pragma: no cover - depends on filesystem
        pass
    return path
