"""Admin routes for Relay CMS: login, dashboard, theme and menu editing."""

import json
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..core.audit_log import client_info
from ..core.csrf import CSRFError
from ..core.dependencies import AppState, get_app_state, get_session
from ..core.errors import (
    AuthFailure,
    NotFound,
    PersistenceFailure,
    RateLimitExceeded,
    ValidationError,
)
from ..core.logging import admin_logger
from ..core.menus import DEFAULT_MENUS, flatten, is_menu_name, nest
from ..core.models import Session
from ..core.paths import sanitize_name
from ..core.urls import get_base_path, strip_base_path, url_base

router = APIRouter(prefix="/admin", tags=["admin"])

TEMPLATES_DIR = Path(__file__).parent / "templates"
STATIC_DIR = Path(__file__).parent / "static"

templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "htm", "xml"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

# Status codes carried in the redirect after a dashboard form post
MESSAGES = {
    "password_changed": "Password changed successfully.",
    "theme_changed": "Theme changed successfully.",
}
ERRORS = {
    "csrf": "Invalid security token. Please reload the page and try again.",
    "password_mismatch": "New passwords do not match.",
    "password_short": "New password must be at least {min_length} characters.",
    "password_wrong": "Current password is incorrect.",
    "invalid_theme": "Invalid theme selected.",
    "save_failed": "Could not save changes. Please try again.",
}


def render_admin(request: Request, name: str, status_code: int = 200, **context: Any) -> HTMLResponse:
    """Render an admin template."""
    base_path = get_base_path(request)
    html = templates.get_template(name).render(
        url=lambda path: url_base(path, base_path),
        **context,
    )
    return HTMLResponse(html, status_code=status_code)


def redirect_to(request: Request, path: str, **params: str) -> RedirectResponse:
    """303 redirect to a site-relative path."""
    target = url_base(path, get_base_path(request))
    if params:
        target += "?" + "&".join(f"{key}={value}" for key, value in params.items())
    return RedirectResponse(target, status_code=303)


def require_login(
    request: Request,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(get_session),
) -> Session:
    """Dependency requiring an authenticated session.

    Raises:
        LoginRequired: Handled by the application with a redirect to the
            login page.
    """
    destination = strip_base_path(request.url.path, get_base_path(request))
    state.auth.require_authenticated(session, destination if request.method == "GET" else None)
    return session


async def check_form_csrf(request: Request, state: AppState, session: Session) -> dict:
    """Parse the form body and validate its CSRF token.

    Raises:
        CSRFError: Missing, expired or mismatched token.
    """
    form = await request.form()
    token = state.csrf.get_token_from_request(request, form)
    state.csrf.require_valid(session, token)
    return form


# ============================================================================
# Login / logout
# ============================================================================


def render_login(
    request: Request,
    state: AppState,
    session: Session,
    error: str | None = None,
    username: str = "",
    status_code: int = 200,
) -> HTMLResponse:
    return render_admin(
        request,
        "login.html",
        status_code=status_code,
        csrf_field=state.csrf.token_field(session),
        site_name=state.settings.load().site_name,
        error=error,
        login_username=username,
    )


@router.get("/login", response_class=HTMLResponse)
async def login_page(
    request: Request,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(get_session),
):
    """Render the login form."""
    if state.auth.check(session):
        return redirect_to(request, "/admin/")
    return render_login(request, state, session)


@router.post("/login", response_class=HTMLResponse)
async def login_submit(
    request: Request,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(get_session),
):
    """Handle login form submission."""
    client = client_info(request)
    try:
        form = await check_form_csrf(request, state, session)
    except CSRFError as e:
        return render_login(request, state, session, error=str(e), status_code=403)

    username = str(form.get("username", "")).strip()
    password = str(form.get("password", ""))

    try:
        user = state.auth.login(session, username, password)
    except RateLimitExceeded as e:
        state.audit_logger.log_login_failed(username, reason="locked_out", **client)
        return render_login(request, state, session, error=str(e), username=username, status_code=429)
    except AuthFailure as e:
        state.audit_logger.log_login_failed(username, **client)
        return render_login(request, state, session, error=str(e), username=username, status_code=401)

    # New privilege level, new token
    state.csrf.issue(session)
    state.audit_logger.log_login_success(user.username, **client)

    target = state.auth.pop_redirect(session)
    return redirect_to(request, target)


@router.get("/logout")
async def logout(
    request: Request,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(get_session),
):
    """Log out and return to the login page."""
    username = state.auth.current_user(session)
    if username:
        state.audit_logger.log_logout(username, ip=client_info(request)["ip"])
    state.auth.logout(session)
    return redirect_to(request, "/admin/login")


# ============================================================================
# Dashboard
# ============================================================================


@router.get("", response_class=HTMLResponse)
@router.get("/", response_class=HTMLResponse)
async def dashboard(
    request: Request,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(require_login),
):
    """Render admin dashboard."""
    menus = sorted(set(state.menus.list_menus()) | set(DEFAULT_MENUS))
    is_admin = state.auth.is_admin(session)

    message = MESSAGES.get(request.query_params.get("msg", ""))
    error = ERRORS.get(request.query_params.get("err", ""))
    if error:
        error = error.format(min_length=state.auth.password_min_length)

    return render_admin(
        request,
        "dashboard.html",
        username=session.username,
        is_admin=is_admin,
        menus=menus,
        users=state.auth.list_users() if is_admin else [],
        themes=state.themes.list_themes(),
        active_theme=state.themes.active_theme(),
        site_name=state.settings.load().site_name,
        csrf_field=state.csrf.token_field(session),
        password_min_length=state.auth.password_min_length,
        message=message,
        error=error,
    )


@router.post("/change-password")
async def change_password(
    request: Request,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(require_login),
):
    """Change the logged-in user's password."""
    try:
        form = await check_form_csrf(request, state, session)
    except CSRFError:
        return redirect_to(request, "/admin/", err="csrf")

    current = str(form.get("current_password", ""))
    new = str(form.get("new_password", ""))
    confirm = str(form.get("confirm_password", ""))

    if new != confirm:
        return redirect_to(request, "/admin/", err="password_mismatch")

    try:
        state.auth.change_password(session.username, current, new)
    except ValidationError:
        return redirect_to(request, "/admin/", err="password_short")
    except AuthFailure:
        return redirect_to(request, "/admin/", err="password_wrong")
    except PersistenceFailure:
        return redirect_to(request, "/admin/", err="save_failed")

    state.audit_logger.log_password_change(session.username, ip=client_info(request)["ip"])
    return redirect_to(request, "/admin/", msg="password_changed")


@router.post("/change-theme")
async def change_theme(
    request: Request,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(require_login),
):
    """Switch the active theme."""
    try:
        form = await check_form_csrf(request, state, session)
    except CSRFError:
        return redirect_to(request, "/admin/", err="csrf")

    theme = str(form.get("theme", ""))
    try:
        state.themes.set_active(theme)
    except ValidationError:
        return redirect_to(request, "/admin/", err="invalid_theme")
    except PersistenceFailure:
        return redirect_to(request, "/admin/", err="save_failed")

    state.audit_logger.log_theme_change(theme, actor=session.username, ip=client_info(request)["ip"])
    return redirect_to(request, "/admin/", msg="theme_changed")


# ============================================================================
# Menu editor
# ============================================================================


@router.get("/menus/{name}", response_class=HTMLResponse)
async def menu_editor(
    request: Request,
    name: str,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(require_login),
):
    """Render the indent-based menu editor."""
    menu_name = sanitize_name(name)
    if menu_name is None or not is_menu_name(menu_name):
        raise NotFound(name)

    return render_admin(
        request,
        "menu_editor.html",
        username=session.username,
        is_admin=state.auth.is_admin(session),
        menu_name=menu_name,
        flat_items=flatten(state.menus.load(menu_name)),
        csrf_meta=state.csrf.token_meta(session),
        site_name=state.settings.load().site_name,
    )


def menu_error(error: str, error_type: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": error, "error_type": error_type, **extra},
        status_code=status_code,
    )


def parse_menu_payload(form) -> list:
    """Menu tree from the submitted form.

    Accepts a nested ``menu_data`` array or a flat, indented
    ``menu_items`` array.

    Raises:
        ValidationError: Missing or malformed payload.
    """
    raw_flat = form.get("menu_items")
    raw_nested = form.get("menu_data")
    try:
        if raw_flat is not None:
            flat = json.loads(raw_flat)
            if not isinstance(flat, list):
                raise ValidationError("Menu items must be a list.")
            return nest(flat)
        if raw_nested is not None:
            return json.loads(raw_nested)
    except (json.JSONDecodeError, TypeError):
        raise ValidationError("Menu data is not valid JSON.")
    except RecursionError:
        raise ValidationError("Menu data is nested too deeply.")
    raise ValidationError("No menu data submitted.")


@router.post("/save-menu")
async def save_menu(
    request: Request,
    state: AppState = Depends(get_app_state),
    session: Session = Depends(get_session),
):
    """Save a menu from the editor (JSON API)."""
    if not state.auth.check(session):
        return menu_error(
            "Your session has expired. Please log in again.",
            "session_expired",
            401,
            redirect=url_base("/admin/login", get_base_path(request)),
        )

    form = await request.form()
    failure = state.csrf.check(session, state.csrf.get_token_from_request(request, form))
    if failure is not None:
        return menu_error(CSRFError(failure).args[0], failure.value, 403)

    menu_name = str(form.get("menu_name", ""))
    try:
        items = parse_menu_payload(form)
        state.menus.save(menu_name, items)
    except ValidationError as e:
        return menu_error(str(e), "invalid_menu", 400)
    except PersistenceFailure:
        admin_logger.error("Saving menu %s failed", menu_name)
        return menu_error("Could not save menu. Please try again.", "save_failed", 500)

    state.audit_logger.log_menu_save(menu_name, actor=session.username, ip=client_info(request)["ip"])
    return {"success": True, "message": "Menu saved successfully."}
