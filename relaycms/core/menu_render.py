"""HTML rendering strategies for navigation menus.

A theme names its renderer in ``theme.json`` (``"menu_renderer": "uswds"``);
themes that name none, or an unknown one, get ``DefaultMenuRenderer``.
"""

from markupsafe import Markup, escape

from .logging import theme_logger
from .menus import MenuItems, is_active


class MenuRenderer:
    """Base class for menu renderers."""

    name = "base"

    def render(self, items: MenuItems, current_path: str = "", depth: int = 0) -> Markup:
        """Render a nested (sidebar) menu."""
        raise NotImplementedError

    def render_header(self, items: MenuItems, current_path: str = "") -> Markup:
        """Render a horizontal header menu."""
        raise NotImplementedError

    @staticmethod
    def _children(item: dict) -> MenuItems:
        children = item.get("children")
        return children if isinstance(children, list) else []


class DefaultMenuRenderer(MenuRenderer):
    """``relay-menu`` markup."""

    name = "default"

    def render(self, items: MenuItems, current_path: str = "", depth: int = 0) -> Markup:
        if not items:
            return Markup("")

        parts = [f'<ul class="relay-menu relay-menu-depth-{depth}">']
        for item in items:
            children = self._children(item)
            classes = ["relay-menu-item"]
            if is_active(item["url"], current_path):
                classes.append("active")
            if children:
                classes.append("has-children")

            parts.append(f'<li class="{" ".join(classes)}">')
            parts.append(f'<a href="{escape(item["url"])}">{escape(item["label"])}</a>')
            if children:
                parts.append(self.render(children, current_path, depth + 1))
            parts.append("</li>")
        parts.append("</ul>")
        return Markup("".join(parts))

    def render_header(self, items: MenuItems, current_path: str = "") -> Markup:
        if not items:
            return Markup("")

        parts = ['<nav class="relay-header-menu"><ul>']
        for item in items:
            active = ' class="active"' if is_active(item["url"], current_path) else ""
            parts.append(
                f'<li{active}><a href="{escape(item["url"])}">{escape(item["label"])}</a></li>'
            )
        parts.append("</ul></nav>")
        return Markup("".join(parts))


class UswdsMenuRenderer(MenuRenderer):
    """U.S. Web Design System markup: sidenav and accordion primary nav."""

    name = "uswds"

    def render(self, items: MenuItems, current_path: str = "", depth: int = 0) -> Markup:
        if not items:
            return Markup("")

        css = "usa-sidenav__sublist" if depth > 0 else "usa-sidenav"
        parts = [f'<ul class="{css}">']
        for item in items:
            current = ' class="usa-current"' if is_active(item["url"], current_path) else ""
            parts.append('<li class="usa-sidenav__item">')
            parts.append(f'<a href="{escape(item["url"])}"{current}>{escape(item["label"])}</a>')
            children = self._children(item)
            if children:
                parts.append(self.render(children, current_path, depth + 1))
            parts.append("</li>")
        parts.append("</ul>")
        return Markup("".join(parts))

    def render_header(self, items: MenuItems, current_path: str = "") -> Markup:
        if not items:
            return Markup("")

        parts = [
            '<nav aria-label="Primary navigation" class="usa-nav">',
            '<ul class="usa-nav__primary usa-accordion">',
        ]
        section = 0
        for item in items:
            label = escape(item["label"])
            current = " usa-current" if is_active(item["url"], current_path) else ""
            children = self._children(item)

            parts.append('<li class="usa-nav__primary-item">')
            if children:
                section += 1
                section_id = f"nav-section-{section}"
                parts.append(
                    f'<button class="usa-accordion__button usa-nav__link{current}" '
                    f'aria-expanded="false" aria-controls="{section_id}">'
                    f"<span>{label}</span></button>"
                )
                parts.append(f'<ul id="{section_id}" class="usa-nav__submenu">')
                for child in children:
                    child_current = (
                        ' class="usa-current"' if is_active(child["url"], current_path) else ""
                    )
                    parts.append(
                        f'<li class="usa-nav__submenu-item"><a href="{escape(child["url"])}"'
                        f'{child_current}>{escape(child["label"])}</a></li>'
                    )
                parts.append("</ul>")
            else:
                parts.append(
                    f'<a class="usa-nav__link{current}" href="{escape(item["url"])}">'
                    f"<span>{label}</span></a>"
                )
            parts.append("</li>")
        parts.append("</ul></nav>")
        return Markup("".join(parts))


MENU_RENDERERS: dict[str, type[MenuRenderer]] = {
    DefaultMenuRenderer.name: DefaultMenuRenderer,
    UswdsMenuRenderer.name: UswdsMenuRenderer,
}


def get_menu_renderer(name: str | None) -> MenuRenderer:
    """Look up a renderer by name, falling back to the default."""
    if not name:
        return DefaultMenuRenderer()
    renderer_cls = MENU_RENDERERS.get(name)
    if renderer_cls is None:
        theme_logger.warning("Unknown menu renderer %r, using default", name)
        return DefaultMenuRenderer()
    return renderer_cls()
