"""Public content pages and theme assets."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse, HTMLResponse

from ..core.content import ContentPage
from ..core.dependencies import AppState, get_app_state, get_session
from ..core.errors import NotFound
from ..core.models import Session
from ..core.paths import is_identifier, is_within
from ..core.themes import PageContext
from ..core.urls import get_base_path

router = APIRouter(tags=["public"])

NOT_FOUND_HTML = "<p>The page you requested could not be found.</p>"


def build_page_context(
    state: AppState,
    request: Request,
    session: Session,
    page: ContentPage,
    status_code: int = 200,
) -> PageContext:
    """Collect everything a theme template needs for one page."""
    menus = state.menus
    return PageContext(
        site_name=state.settings.load().site_name,
        title=page.title(default="Relay"),
        metadata=page.metadata,
        content_html=page.html,
        path=page.path,
        header_menu=menus.load("header-menu"),
        left_menu=menus.load("left-menu"),
        right_menu=menus.load("right-menu"),
        base_path=get_base_path(request),
        is_authenticated=state.auth.current_user(session) is not None,
        status_code=status_code,
    )


def render_not_found(request: Request) -> HTMLResponse:
    """Render the themed 404 page.

    Themes may ship a ``404`` template; otherwise ``main`` is used.
    """
    state = get_app_state(request)
    page = ContentPage(
        path="404",
        metadata={"title": "Page Not Found"},
        html=NOT_FOUND_HTML,
    )
    context = build_page_context(state, request, get_session(request), page, status_code=404)
    html = state.themes.render("404", context)
    return HTMLResponse(html, status_code=404)


@router.get("/themes/{theme}/static/{asset_path:path}")
async def theme_asset(
    theme: str,
    asset_path: str,
    state: AppState = Depends(get_app_state),
):
    """Serve a file from a theme's ``static/`` directory."""
    if not is_identifier(theme) or not asset_path:
        raise NotFound(asset_path)

    # No hidden files, no empty or relative segments
    if any(not part or part.startswith(".") for part in asset_path.split("/")):
        raise NotFound(asset_path)

    static_root = state.themes.static_path(theme)
    candidate = static_root / asset_path
    if not candidate.is_file() or not is_within(candidate, static_root):
        raise NotFound(asset_path)

    return FileResponse(candidate)


@router.get("/", response_class=HTMLResponse)
@router.get("/{path:path}", response_class=HTMLResponse)
async def content_page(
    request: Request,
    path: str = "",
    state: AppState = Depends(get_app_state),
    session: Session = Depends(get_session),
):
    """Render a content page with the active theme."""
    page = state.content.load(path)
    context = build_page_context(state, request, session, page)
    return HTMLResponse(state.themes.render(page.template, context))
