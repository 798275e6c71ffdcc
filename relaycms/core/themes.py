"""Theme discovery, validation and rendering."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from .errors import RelayError, ValidationError
from .logging import theme_logger
from .menu_render import DefaultMenuRenderer, MenuRenderer, get_menu_renderer
from .menus import MenuItems
from .paths import is_identifier, is_within, sanitize_name
from .settings import DEFAULT_SETTINGS, SettingsStore
from .urls import url_base

DEFAULT_THEME = DEFAULT_SETTINGS["active_theme"]
DEFAULT_TEMPLATE = "main"
TEMPLATE_SUFFIX = ".html"
REQUIRED_METADATA = ("name", "version", "templates")


class TemplateSystemError(RelayError):
    """The active theme has no usable ``main`` template."""

    pass


@dataclass
class ThemeInfo:
    """Theme metadata from theme.json."""

    directory: str
    name: str
    version: str
    templates: list[str]
    description: str = ""
    author: str = ""
    menu_renderer: str = ""


@dataclass
class PageContext:
    """Everything a page template can see, exposed as ``page``.

    Menus are plain menu trees; templates render them through
    ``page.render_menu`` and ``page.render_header`` so the active theme's
    renderer is used.
    """

    site_name: str = DEFAULT_SETTINGS["site_name"]
    title: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    content_html: str = ""
    path: str = "index"
    header_menu: MenuItems = field(default_factory=list)
    left_menu: MenuItems = field(default_factory=list)
    right_menu: MenuItems = field(default_factory=list)
    theme: str = DEFAULT_THEME
    base_path: str = ""
    is_authenticated: bool = False
    status_code: int = 200
    menu_renderer: MenuRenderer = field(default_factory=DefaultMenuRenderer)
    year: int = field(default_factory=lambda: datetime.now().year)

    @property
    def current_path(self) -> str:
        """Site-relative path used for active-menu highlighting."""
        return "/" if self.path == "index" else f"/{self.path}"

    @property
    def content(self) -> Markup:
        """Rendered page body (trusted HTML)."""
        return Markup(self.content_html)

    @property
    def grid_class(self) -> str:
        has_left = bool(self.left_menu)
        has_right = bool(self.right_menu)
        if has_left and has_right:
            return "relay-grid three-column"
        if has_left:
            return "relay-grid two-column-left"
        if has_right:
            return "relay-grid two-column-right"
        return "relay-grid single-column"

    def url(self, path: str) -> str:
        return url_base(path, self.base_path)

    def asset(self, path: str) -> str:
        """URL of a file in the theme's ``static/`` directory."""
        return url_base(f"/themes/{self.theme}/static/{path.lstrip('/')}", self.base_path)

    def render_menu(self, items: MenuItems) -> Markup:
        return self.menu_renderer.render(items, self.current_path)

    def render_header(self, items: MenuItems) -> Markup:
        return self.menu_renderer.render_header(items, self.current_path)


class ThemeManager:
    """Manages theme selection, lookup and rendering.

    The active theme is read from the settings on every call, so a theme
    change made by one worker is picked up by all.
    """

    def __init__(self, themes_dir: Path, settings: SettingsStore):
        """Initialize theme manager.

        Args:
            themes_dir: Path to themes directory.
            settings: Settings store holding ``active_theme``.
        """
        self.themes_dir = themes_dir
        self.settings = settings
        self._envs: dict[str, Environment] = {}

    def theme_path(self, name: str) -> Path:
        return self.themes_dir / name

    def active_theme(self) -> str:
        """Name of the theme to render with.

        Falls back to ``default`` when the configured theme is invalid or its
        directory is missing.
        """
        name = self.settings.get("active_theme", DEFAULT_THEME)
        if not is_identifier(name):
            theme_logger.warning("Invalid active theme %r, using default", name)
            return DEFAULT_THEME
        if not self.theme_path(name).is_dir():
            theme_logger.warning("Theme directory for %r missing, using default", name)
            return DEFAULT_THEME
        return name

    def list_available(self) -> list[str]:
        """Theme directories containing a ``theme.json``, sorted."""
        if not self.themes_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.themes_dir.iterdir()
            if not entry.name.startswith(".")
            and entry.is_dir()
            and (entry / "theme.json").is_file()
        )

    def get_metadata(self, name: str) -> ThemeInfo | None:
        """Load ``theme.json`` of a theme.

        Returns:
            ThemeInfo, or None if the name is invalid, the file is missing or
            malformed, or a required field is absent.
        """
        if not is_identifier(name):
            return None
        json_path = self.theme_path(name) / "theme.json"
        try:
            with open(json_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            theme_logger.warning("Unreadable theme.json for %s: %s", name, e)
            return None

        if not isinstance(data, dict) or any(key not in data for key in REQUIRED_METADATA):
            return None

        templates = data["templates"]
        return ThemeInfo(
            directory=name,
            name=str(data["name"]),
            version=str(data["version"]),
            templates=list(templates) if isinstance(templates, (list, dict)) else [],
            description=str(data.get("description", "")),
            author=str(data.get("author", "")),
            menu_renderer=str(data.get("menu_renderer", "")),
        )

    def validate(self, name: str) -> bool:
        """Check that a theme is complete enough to be activated."""
        if not is_identifier(name):
            return False
        path = self.theme_path(name)
        return (
            path.is_dir()
            and (path / "theme.json").is_file()
            and (path / "templates").is_dir()
            and (path / "templates" / f"{DEFAULT_TEMPLATE}{TEMPLATE_SUFFIX}").is_file()
            and self.get_metadata(name) is not None
        )

    def list_themes(self) -> list[ThemeInfo]:
        """Metadata of all valid themes."""
        return [info for name in self.list_available() if (info := self.get_metadata(name))]

    def set_active(self, name: str) -> None:
        """Activate a theme.

        Raises:
            ValidationError: The theme is missing or invalid.
            PersistenceFailure: The settings could not be written.
        """
        if not self.validate(name):
            raise ValidationError("Invalid theme selected.")
        self.settings.set("active_theme", name)
        theme_logger.info("Active theme changed to %s", name)

    def templates_path(self, theme: str | None = None) -> Path:
        return self.theme_path(theme or self.active_theme()) / "templates"

    def static_path(self, theme: str) -> Path:
        return self.theme_path(theme) / "static"

    def get_template_path(self, name: str, theme: str | None = None) -> Path | None:
        """Locate a template of the active theme.

        Args:
            name: Template name without extension; empty means ``main``.
            theme: Theme to look in, the active theme by default.

        Returns:
            Path to the template, or None if invalid or missing.
        """
        sanitized = sanitize_name(name or "", default=DEFAULT_TEMPLATE)
        if sanitized is None:
            return None
        root = self.templates_path(theme)
        candidate = root / f"{sanitized}{TEMPLATE_SUFFIX}"
        if not candidate.is_file() or not is_within(candidate, root):
            return None
        return candidate

    def get_env(self, theme: str) -> Environment:
        """Get or create the Jinja2 environment of a theme."""
        env = self._envs.get(theme)
        if env is None:
            env = Environment(
                loader=FileSystemLoader(str(self.templates_path(theme))),
                autoescape=select_autoescape(["html", "htm", "xml"]),
                trim_blocks=True,
                lstrip_blocks=True,
            )
            self._envs[theme] = env
        return env

    def menu_renderer(self, theme: str | None = None) -> MenuRenderer:
        """Menu renderer chosen by the theme's ``theme.json``."""
        info = self.get_metadata(theme or self.active_theme())
        return get_menu_renderer(info.menu_renderer if info else None)

    def render(self, template: str, context: PageContext, **extra: Any) -> str:
        """Render a template of the active theme.

        Unknown templates fall back to ``main``.

        Raises:
            TemplateSystemError: The theme has no ``main`` template.
        """
        theme = self.active_theme()
        path = self.get_template_path(template, theme)
        if path is None:
            if (template or DEFAULT_TEMPLATE) != DEFAULT_TEMPLATE:
                theme_logger.warning("Template %r not found, falling back to main", template)
            path = self.get_template_path(DEFAULT_TEMPLATE, theme)
        if path is None:
            theme_logger.error(
                "Template system error: main template missing in %s", self.templates_path(theme)
            )
            raise TemplateSystemError("Template system error: main template not found.")

        context.theme = theme
        context.menu_renderer = self.menu_renderer(theme)
        return self.get_env(theme).get_template(path.name).render(page=context, **extra)
