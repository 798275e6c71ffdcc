"""FastAPI dependency injection for Relay CMS.

Services are created once by ``create_app`` and kept in an ``AppState`` on
``app.state.relay``; route handlers receive them through ``Depends``.
"""

from dataclasses import dataclass

from fastapi import HTTPException, Request

from .audit_log import AuditLogger
from .auth import AuthManager
from .config import AppConfig
from .content import ContentStore
from .csrf import CSRFProtection
from .menus import MenuStore
from .models import Session
from .session_store import SessionStore
from .settings import SettingsStore
from .themes import ThemeManager
from .users import UserStore


@dataclass
class AppState:
    """Application state container."""

    config: AppConfig
    users: UserStore
    auth: AuthManager
    csrf: CSRFProtection
    sessions: SessionStore
    content: ContentStore
    menus: MenuStore
    settings: SettingsStore
    themes: ThemeManager
    audit_logger: AuditLogger


def get_app_state(request: Request) -> AppState:
    """Get application state from request.

    Raises:
        HTTPException: If app state not initialized.
    """
    state = getattr(request.app.state, "relay", None)
    if state is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return state


def get_session(request: Request) -> Session:
    """Session attached by ``SessionMiddleware``."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise HTTPException(status_code=500, detail="Session middleware not installed")
    return session
