"""Server-side session storage and the middleware that drives it.

The session store is an injected dependency: an in-memory store for tests
and single-process use, a file-based store for multi-worker deployments.
Each request gets an explicit ``Session`` object on ``request.state.session``.
"""

import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from pydantic import ValidationError as PydanticValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .logging import get_logger
from .models import Session
from .storage import JsonFile, StorageError

logger = get_logger("sessions")

SESSION_COOKIE = "relay_session"


class SessionStore(ABC):
    """Persistence for ``Session`` objects keyed by session id.

    Sessions idle for longer than ``ttl`` seconds are treated as absent.
    """

    def __init__(self, ttl: int = 1800, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock

    def create(self) -> Session:
        """Create a new, not yet persisted session."""
        return Session(updated_at=self.clock())

    @abstractmethod
    def load(self, session_id: str) -> Session | None:
        """Get a live session by id."""

    @abstractmethod
    def save(self, session: Session) -> None:
        """Persist a session and forget any ids it was rotated away from."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Delete a session."""

    @abstractmethod
    def cleanup_expired(self) -> int:
        """Remove idle sessions. Returns the number removed."""

    def _is_expired(self, record: dict) -> bool:
        try:
            return self.clock() - float(record["updated_at"]) > self.ttl
        except (KeyError, TypeError, ValueError):
            return True

    def _from_record(self, record: dict) -> Session | None:
        try:
            return Session.model_validate(record)
        except PydanticValidationError:
            return None


class MemorySessionStore(SessionStore):
    """Process-local session store."""

    def __init__(self, ttl: int = 1800, clock: Callable[[], float] = time.time):
        super().__init__(ttl, clock)
        self._sessions: dict[str, dict] = {}

    def load(self, session_id: str) -> Session | None:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        if self._is_expired(record):
            del self._sessions[session_id]
            return None
        return self._from_record(record)

    def save(self, session: Session) -> None:
        for old_id in session.retired_ids:
            self._sessions.pop(old_id, None)
        session.updated_at = self.clock()
        self._sessions[session.session_id] = session.to_record()

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def cleanup_expired(self) -> int:
        expired = [sid for sid, record in self._sessions.items() if self._is_expired(record)]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class FileSessionStore(SessionStore):
    """File-based session storage with atomic writes and locking.

    Works across multiple uvicorn workers: every save is a read-modify-write
    of ``sessions.json`` under the file's exclusive lock. Two requests of the
    same session racing each other resolve as last writer wins.
    """

    def __init__(
        self,
        session_file: Path,
        ttl: int = 1800,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize session store.

        Args:
            session_file: Path to the JSON file for storing sessions.
            ttl: Idle lifetime in seconds.
            clock: Source of the current epoch time.
        """
        super().__init__(ttl, clock)
        self._file = JsonFile(session_file)

    def _read(self) -> dict[str, dict]:
        try:
            data = self._file.read(default={})
        except StorageError:
            return {}
        return data if isinstance(data, dict) else {}

    def load(self, session_id: str) -> Session | None:
        record = self._read().get(session_id)
        if not isinstance(record, dict) or self._is_expired(record):
            return None
        session = self._from_record(record)
        if session is None:
            logger.warning("Discarding unreadable session record")
        return session

    def save(self, session: Session) -> None:
        session.updated_at = self.clock()
        record = session.to_record()
        retired = session.retired_ids

        def mutate(sessions):
            if not isinstance(sessions, dict):
                sessions = {}
            # Idle records are dropped on every write
            sessions = {
                sid: rec
                for sid, rec in sessions.items()
                if sid not in retired and not self._is_expired(rec)
            }
            sessions[session.session_id] = record
            return sessions

        self._file.update(mutate, default={})

    def delete(self, session_id: str) -> bool:
        found = False

        def mutate(sessions):
            nonlocal found
            if not isinstance(sessions, dict):
                return {}
            found = sessions.pop(session_id, None) is not None
            return sessions

        self._file.update(mutate, default={})
        return found

    def cleanup_expired(self) -> int:
        removed = 0

        def mutate(sessions):
            nonlocal removed
            if not isinstance(sessions, dict):
                return {}
            live = {sid: rec for sid, rec in sessions.items() if not self._is_expired(rec)}
            removed = len(sessions) - len(live)
            return live

        self._file.update(mutate, default={})
        return removed


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach a ``Session`` to every request and persist it afterwards.

    Brand-new sessions that are still blank after the request are neither
    stored nor sent to the client. When the session id changed during the
    request (login, logout) the cookie is re-issued.
    """

    def __init__(
        self,
        app,
        store: SessionStore,
        cookie_name: str = SESSION_COOKIE,
        secure: bool | None = None,
    ):
        """Initialize middleware.

        Args:
            app: ASGI application.
            store: Session store.
            cookie_name: Name of the session cookie.
            secure: Force the Secure flag on or off. None follows the scheme.
        """
        super().__init__(app)
        self.store = store
        self.cookie_name = cookie_name
        self.secure = secure

    async def dispatch(self, request: Request, call_next) -> Response:
        incoming_id = request.cookies.get(self.cookie_name)
        session = self.store.load(incoming_id) if incoming_id else None
        is_new = session is None
        if session is None:
            session = self.store.create()

        request.state.session = session
        response = await call_next(request)

        if is_new and session.is_blank:
            return response

        self.store.save(session)

        if session.session_id != incoming_id:
            secure = self.secure if self.secure is not None else request.url.scheme == "https"
            response.set_cookie(
                key=self.cookie_name,
                value=session.session_id,
                httponly=True,
                samesite="strict",
                secure=secure,
                path="/",
            )
        return response
