"""Core shared helpers for the study-quiz engine and CLI."""

from __future__ import annotations

from .config import (
    DOCUMENT_KINDS,
    TomlDocumentError,
    apply_overrides,
    read_document,
    write_document,
)
from .logging import JsonLogFormatter, configure_logger
from .workspace import (
    WORKSPACE_ENV,
    WorkspaceError,
    WorkspaceLayout,
    ensure_workspace,
)

__all__ = [
    "DOCUMENT_KINDS",
    "TomlDocumentError",
    "apply_overrides",
    "read_document",
    "write_document",
    "JsonLogFormatter",
    "configure_logger",
    "WORKSPACE_ENV",
    "WorkspaceError",
    "WorkspaceLayout",
    "ensure_workspace",
]
