"""Session persistence with per-session transactional access.

Every mutation runs inside :meth:`transaction`, which holds a lock keyed by the
session id for the whole read-modify-write cycle. Writers on the same session
serialize; writers on different sessions never contend. Reads through
:meth:`get` take no lock and may observe a slightly older frontier, which is
safe because progress only ever moves forward.

``SessionStore`` keeps one JSON document per session on disk and guards it
with both an in-process lock and an exclusive lock file, so separate processes
sharing a workspace serialize as well. ``InMemorySessionStore`` offers the same
contract without touching the filesystem.

Session names are unique per owner and quiz. ``create`` and ``rename`` check
that under a lock keyed by owner and quiz, always taken before the session
lock.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .errors import (
    AlreadyAnswered,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    PositionNotFrontier,
    SessionStoreError,
)
from .models import (
    Answered,
    QuizSession,
    SessionStatus,
    utc_timestamp,
)

__all__ = [
    "SessionTransaction",
    "BaseSessionStore",
    "SessionStore",
    "InMemorySessionStore",
    "new_session_id",
]

logger = logging.getLogger(__name__)

_SESSION_FILENAME = "session.json"
_LOCK_FILENAME = ".lock"
_NAME_LOCK_PREFIX = ".names-"
_DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


class SessionTransaction:
    """Mutable holder for the session being rewritten inside a transaction."""

    def __init__(self, session: QuizSession) -> None:
        self.original = session
        self.session = session

    @property
    def changed(self) -> bool:
        return self.session is not self.original


class BaseSessionStore:
    """Mutation rules shared by every store backend.

    Subclasses provide raw persistence (``_read``, ``_write``, ``_remove``,
    ``_session_ids``) and a per-session lock (``_locked``).
    """

    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def create(self, session: QuizSession) -> QuizSession:
        """Persist a freshly built session together with all of its items."""

        if not session.items:
            raise InvalidArgument("A session needs at least one item.")
        with self._name_scope(session.owner_id, session.quiz_id):
            self._ensure_name_free(session)
            with self._locked(session.session_id, create=True):
                if self._exists(session.session_id):
                    raise SessionStoreError(
                        f"Session '{session.session_id}' already exists."
                    )
                self._write(session)
        logger.info(
            "Session created",
            extra={
                "session_id": session.session_id,
                "quiz_id": session.quiz_id,
                "mode": session.mode.value,
                "items": session.total,
            },
        )
        return session

    def get(self, session_id: str) -> QuizSession:
        return self._read(session_id)

    @contextmanager
    def transaction(self, session_id: str) -> Iterator[SessionTransaction]:
        """Run a read-modify-write cycle on one session.

        The holder's ``session`` attribute may be replaced; the new value is
        written back when the block exits without an exception.
        """

        with self._locked(session_id):
            txn = SessionTransaction(self._read(session_id))
            yield txn
            if txn.changed:
                if txn.session.session_id != session_id:
                    raise SessionStoreError(
                        "A transaction cannot change the session id."
                    )
                self._write(txn.session)

    def mark_answered(
        self,
        session_id: str,
        position: int,
        *,
        correct: bool,
        chosen: frozenset[int],
        duration_ms: int,
    ) -> QuizSession:
        with self.transaction(session_id) as txn:
            session = txn.session
            if not session.is_active:
                raise InvalidTransition(
                    f"Session '{session_id}' is {session.status.value}; "
                    "answers are closed."
                )
            item = session.item_at(position)
            if item.answered:
                raise AlreadyAnswered(position)
            frontier = session.frontier
            if position != frontier:
                raise PositionNotFrontier(position, frontier)
            answer = Answered(
                correct=bool(correct),
                chosen=frozenset(chosen),
                duration_ms=int(duration_ms),
            )
            txn.session = session.with_item(replace(item, answer=answer))
        logger.info(
            "Answer recorded",
            extra={
                "session_id": session_id,
                "position": position,
                "correct": bool(correct),
                "duration_ms": int(duration_ms),
            },
        )
        return txn.session

    def toggle_bookmark(self, session_id: str, position: int) -> bool:
        with self.transaction(session_id) as txn:
            item = txn.session.item_at(position)
            updated = replace(item, bookmarked=not item.bookmarked)
            txn.session = txn.session.with_item(updated)
        logger.debug(
            "Bookmark toggled",
            extra={
                "session_id": session_id,
                "position": position,
                "bookmarked": updated.bookmarked,
            },
        )
        return updated.bookmarked

    def set_status(
        self, session_id: str, status: SessionStatus
    ) -> QuizSession:
        """Apply ``active -> completed`` or ``active -> abandoned``."""

        status = SessionStatus(status)
        with self.transaction(session_id) as txn:
            session = txn.session
            if (
                session.status is SessionStatus.COMPLETED
                and status is SessionStatus.COMPLETED
            ):
                return session
            if session.status is not SessionStatus.ACTIVE:
                raise InvalidTransition(
                    f"Cannot move session from {session.status.value} to "
                    f"{status.value}."
                )
            if status is SessionStatus.COMPLETED:
                if not session.fully_answered:
                    raise InvalidTransition(
                        "Cannot complete a session with unanswered items "
                        f"({session.answered_count}/{session.total})."
                    )
                txn.session = replace(
                    session, status=status, completed_at=utc_timestamp()
                )
            elif status is SessionStatus.ABANDONED:
                txn.session = replace(session, status=status)
            else:
                raise InvalidTransition("Sessions cannot be reactivated.")
        logger.info(
            "Session status changed",
            extra={"session_id": session_id, "status": status.value},
        )
        return txn.session

    def rename(self, session_id: str, name: str) -> QuizSession:
        current = self._read(session_id)
        with self._name_scope(current.owner_id, current.quiz_id):
            self._ensure_name_free(replace(current, name=name))
            with self.transaction(session_id) as txn:
                txn.session = replace(txn.session, name=name)
        return txn.session

    def delete(self, session_id: str) -> None:
        with self._locked(session_id):
            if not self._exists(session_id):
                raise NotFound(f"Session '{session_id}' not found.")
            self._remove(session_id)
        logger.info("Session deleted", extra={"session_id": session_id})

    def list_sessions(
        self,
        *,
        owner_id: Optional[str] = None,
        quiz_id: Optional[str] = None,
    ) -> List[QuizSession]:
        """Return matching sessions, newest first."""

        sessions: List[QuizSession] = []
        for session_id in self._session_ids():
            try:
                session = self._read(session_id)
            except NotFound:
                continue  # deleted between listing and reading
            if owner_id is not None and session.owner_id != owner_id:
                continue
            if quiz_id is not None and session.quiz_id != quiz_id:
                continue
            sessions.append(session)
        sessions.sort(key=lambda s: (s.created_at, s.session_id), reverse=True)
        return sessions

    def _ensure_name_free(self, session: QuizSession) -> None:
        for existing in self.list_sessions(
            owner_id=session.owner_id, quiz_id=session.quiz_id
        ):
            if (
                existing.name == session.name
                and existing.session_id != session.session_id
            ):
                raise InvalidArgument(
                    f"Session name '{session.name}' is already in use for "
                    "this quiz. Please choose a different name."
                )

    @contextmanager
    def _thread_lock(self, key: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def _name_scope(self, owner_id: str, quiz_id: str):
        return self._thread_lock(_name_key(owner_id, quiz_id))

    def _locked(
        self, session_id: str, *, create: bool = False
    ):  # pragma: no cover - abstract
        raise NotImplementedError

    def _exists(self, session_id: str) -> bool:  # pragma: no cover
        raise NotImplementedError

    def _read(self, session_id: str) -> QuizSession:  # pragma: no cover
        raise NotImplementedError

    def _write(self, session: QuizSession) -> None:  # pragma: no cover
        raise NotImplementedError

    def _remove(self, session_id: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def _session_ids(self) -> List[str]:  # pragma: no cover
        raise NotImplementedError


class InMemorySessionStore(BaseSessionStore):
    """Store keeping serialized session documents in a dict."""

    def __init__(self) -> None:
        super().__init__()
        self._documents: Dict[str, Mapping[str, Any]] = {}

    def _locked(self, session_id: str, *, create: bool = False):
        return self._thread_lock(session_id)

    def _exists(self, session_id: str) -> bool:
        return session_id in self._documents

    def _read(self, session_id: str) -> QuizSession:
        try:
            payload = self._documents[session_id]
        except KeyError as exc:
            raise NotFound(f"Session '{session_id}' not found.") from exc
        return QuizSession.from_dict(payload)

    def _write(self, session: QuizSession) -> None:
        # Round-trip through plain data so callers never share state.
        self._documents[session.session_id] = json.loads(
            json.dumps(session.to_dict())
        )

    def _remove(self, session_id: str) -> None:
        del self._documents[session_id]

    def _session_ids(self) -> List[str]:
        return list(self._documents)


class SessionStore(BaseSessionStore):
    """File-backed store: ``<root>/<session_id>/session.json``."""

    def __init__(
        self,
        root: Path,
        *,
        lock_timeout: float = _DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__()
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock_timeout = lock_timeout

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, session_id: str) -> Path:
        if (
            not session_id
            or session_id.startswith(".")
            or os.sep in session_id
            or "/" in session_id
        ):
            raise NotFound(f"Session '{session_id}' not found.")
        return self._root / session_id

    @contextmanager
    def _name_scope(self, owner_id: str, quiz_id: str) -> Iterator[None]:
        key = _name_key(owner_id, quiz_id)
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]
        with self._thread_lock(key):
            with _SessionLock(
                self._root / f"{_NAME_LOCK_PREFIX}{digest}.lock",
                timeout=self._lock_timeout,
            ):
                yield

    @contextmanager
    def _locked(
        self, session_id: str, *, create: bool = False
    ) -> Iterator[None]:
        directory = self.path_for(session_id)
        with self._thread_lock(session_id):
            if create:
                directory.mkdir(parents=True, exist_ok=True)
            elif not directory.is_dir():
                raise NotFound(f"Session '{session_id}' not found.")
            lock = _SessionLock(
                directory / _LOCK_FILENAME, timeout=self._lock_timeout
            )
            try:
                lock.acquire()
            except FileNotFoundError as exc:
                # Deleted while we waited for the thread lock.
                raise NotFound(f"Session '{session_id}' not found.") from exc
            try:
                yield
            finally:
                lock.release()

    def _exists(self, session_id: str) -> bool:
        return (self.path_for(session_id) / _SESSION_FILENAME).is_file()

    def _read(self, session_id: str) -> QuizSession:
        target = self.path_for(session_id) / _SESSION_FILENAME
        if not target.is_file():
            raise NotFound(f"Session '{session_id}' not found.")
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise SessionStoreError(
                f"Failed to parse session file: {target}"
            ) from exc
        if not isinstance(payload, Mapping):
            raise SessionStoreError(
                f"Session file must contain an object: {target}"
            )
        return QuizSession.from_dict(payload)

    def _write(self, session: QuizSession) -> None:
        target = self.path_for(session.session_id) / _SESSION_FILENAME
        _atomic_write_json(target, session.to_dict())

    def _remove(self, session_id: str) -> None:
        # The held lock file goes with the directory; release tolerates that.
        shutil.rmtree(self.path_for(session_id))

    def _session_ids(self) -> List[str]:
        return sorted(
            child.name
            for child in self._root.iterdir()
            if (child / _SESSION_FILENAME).is_file()
        )


class _SessionLock:
    """Filesystem lock using exclusive file creation."""

    def __init__(self, path: Path, *, timeout: float) -> None:
        self._path = path
        self._timeout = timeout

    def acquire(self) -> None:
        deadline = time.time() + self._timeout
        while True:
            try:
                fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.close(fd)
                return
            except FileExistsError:
                if time.time() > deadline:
                    raise SessionStoreError(
                        f"Timed out waiting for session lock: {self._path}"
                    )
                time.sleep(0.05)

    def release(self) -> None:
        self._path.unlink(missing_ok=True)

    def __enter__(self) -> "_SessionLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.release()


def _atomic_write_json(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        "w",
        delete=False,
        encoding="utf-8",
        dir=str(path.parent),
        prefix=".session-",
        suffix=".tmp",
    )
    try:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.flush()
        os.fsync(handle.fileno())
    finally:
        handle.close()
    os.replace(handle.name, path)
    try:
        path.chmod(0o600)
    except PermissionError:  # pragma: no cover - depends on filesystem
        pass


def _name_key(owner_id: str, quiz_id: str) -> str:
    return f"names:{owner_id}\x00{quiz_id}"


def new_session_id() -> str:
    return uuid.uuid4().hex
