"""FastAPI application for Relay CMS."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .admin.routes import STATIC_DIR as ADMIN_STATIC_DIR
from .admin.routes import router as admin_router
from .core.audit_log import AuditLogger
from .core.auth import AuthManager
from .core.config import AppConfig
from .core.content import ContentStore
from .core.csrf import CSRFProtection
from .core.dependencies import AppState
from .core.errors import LoginRequired, NotFound, PersistenceFailure
from .core.logging import get_logger, setup_logging
from .core.menus import MenuStore
from .core.passwords import PasswordHasher
from .core.security_headers import SecurityHeadersMiddleware
from .core.session_store import (
    FileSessionStore,
    MemorySessionStore,
    SessionMiddleware,
    SessionStore,
)
from .core.settings import SettingsStore
from .core.themes import TemplateSystemError, ThemeManager
from .core.urls import get_base_path, url_base
from .core.users import UserStore
from .frontend.routes import render_not_found
from .frontend.routes import router as public_router

logger = get_logger("app")


def build_session_store(config: AppConfig) -> SessionStore:
    """Session store selected by ``config.session_backend``."""
    if config.session_backend == "memory":
        return MemorySessionStore(ttl=config.session_timeout_seconds)
    return FileSessionStore(config.sessions_file, ttl=config.session_timeout_seconds)


def build_state(config: AppConfig, session_store: SessionStore | None = None) -> AppState:
    """Create all services for one installation."""
    users = UserStore(config.users_file)
    settings = SettingsStore(config.settings_file)
    auth = AuthManager(
        users,
        hasher=PasswordHasher(config.password_scheme, config.bcrypt_rounds),
        session_timeout=config.session_timeout_seconds,
        max_attempts=config.max_login_attempts,
        lockout_window=config.lockout_seconds,
        password_min_length=config.password_min_length,
    )
    return AppState(
        config=config,
        users=users,
        auth=auth,
        csrf=CSRFProtection(ttl=config.csrf_token_ttl_seconds),
        sessions=session_store or build_session_store(config),
        content=ContentStore(config.content_dir),
        menus=MenuStore(config.menu_dir),
        settings=settings,
        themes=ThemeManager(config.themes_dir, settings),
        audit_logger=AuditLogger(config.audit_log_path),
    )


async def periodic_cleanup(sessions: SessionStore, interval: int) -> None:
    """Drop idle sessions every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = sessions.cleanup_expired()
        except Exception as e:
            logger.error("Error in periodic session cleanup: %s", e)
            continue
        if removed:
            logger.info("Cleaned up %d expired sessions", removed)


def make_lifespan(state: AppState):
    """Lifespan running the session cleanup task."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(
            periodic_cleanup(state.sessions, state.config.session_cleanup_seconds)
        )
        yield
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        state.sessions.cleanup_expired()

    return lifespan


def register_exception_handlers(app: FastAPI) -> None:
    """Map core errors onto HTTP responses."""

    @app.exception_handler(LoginRequired)
    async def login_required_handler(request: Request, exc: LoginRequired):
        return RedirectResponse(url_base("/admin/login", get_base_path(request)), status_code=303)

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        try:
            return render_not_found(request)
        except TemplateSystemError:
            return HTMLResponse("<h1>404 Not Found</h1>", status_code=404)

    @app.exception_handler(TemplateSystemError)
    async def template_error_handler(request: Request, exc: TemplateSystemError):
        return HTMLResponse("<h1>Template system error</h1>", status_code=500)

    @app.exception_handler(PersistenceFailure)
    async def persistence_error_handler(request: Request, exc: PersistenceFailure):
        return HTMLResponse("<h1>Could not save data</h1>", status_code=500)


def create_app(config: AppConfig | None = None, session_store: SessionStore | None = None) -> FastAPI:
    """Application factory.

    Args:
        config: Installation configuration, read from the environment when
            omitted.
        session_store: Session store to use instead of the configured one.

    Returns:
        Configured FastAPI application.
    """
    config = config or AppConfig.from_env()
    setup_logging(config.log_level, config.log_file)

    state = build_state(config, session_store)
    if not config.users_file.exists():
        logger.warning("No users configured; run 'relaycms init' in %s", config.base_dir)

    app = FastAPI(
        title="Relay CMS",
        description="A flat-file content management system",
        version=__version__,
        debug=config.debug,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=make_lifespan(state),
    )
    app.state.relay = state

    # Order matters: the public catch-all route goes last
    app.include_router(admin_router)
    app.mount("/admin/static", StaticFiles(directory=ADMIN_STATIC_DIR), name="admin_static")
    app.include_router(public_router)

    register_exception_handlers(app)

    app.add_middleware(SessionMiddleware, store=state.sessions, secure=config.cookie_secure)
    app.add_middleware(SecurityHeadersMiddleware)

    return app
