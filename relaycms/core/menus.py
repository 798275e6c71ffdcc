"""Navigation menus: tree transforms and JSON persistence.

A menu is a list of ``{"label", "url", "children"?}`` nodes of arbitrary
depth. The admin editor works on a flat list where each node carries an
``indent`` level instead of ``children``; ``flatten`` and ``nest`` convert
between the two shapes.
"""

from pathlib import Path
from typing import Any

from .errors import ValidationError
from .logging import storage_logger
from .paths import is_identifier, is_within, sanitize_name
from .storage import JsonFile, StorageError

DEFAULT_MENUS = ("header-menu", "left-menu", "right-menu")

# Nesting levels accepted by validate()
MAX_DEPTH = 32

MenuItems = list[dict[str, Any]]


def flatten(items: MenuItems) -> MenuItems:
    """Flatten a menu tree depth-first, pre-order.

    Each node is emitted without ``children`` and with ``indent`` set to its
    depth, followed by its descendants.
    """
    flat: MenuItems = []
    pending = [(item, 0) for item in reversed(items)]
    while pending:
        item, depth = pending.pop()
        node = {key: value for key, value in item.items() if key != "children"}
        node["indent"] = depth
        flat.append(node)
        children = item.get("children")
        if children:
            pending.extend((child, depth + 1) for child in reversed(children))
    return flat


def nest(flat: MenuItems) -> MenuItems:
    """Rebuild a menu tree from a flat, indented list.

    An item becomes a child of the closest preceding item with a smaller
    indent. Indent jumps of more than one level are clamped to that
    ancestor. ``children`` only appears on nodes that have children.

    Raises:
        ValidationError: An entry is not an object or its indent is not a
            non-negative integer.
    """
    roots: MenuItems = []
    stack: list[tuple[int, dict[str, Any]]] = []

    for item in flat:
        if not isinstance(item, dict):
            raise ValidationError("Menu items must be objects.")
        indent = item.get("indent", 0)
        if isinstance(indent, bool) or not isinstance(indent, int) or indent < 0:
            raise ValidationError("Menu item indent must be a non-negative integer.")

        node = {key: value for key, value in item.items() if key not in ("indent", "children")}

        while stack and stack[-1][0] >= indent:
            stack.pop()

        if stack:
            stack[-1][1].setdefault("children", []).append(node)
        else:
            roots.append(node)
        stack.append((indent, node))

    return roots


def validate(items: Any, max_depth: int = MAX_DEPTH) -> bool:
    """Check the structure of a menu tree.

    Every node must be an object with non-empty string ``label`` and
    ``url``. ``children``, when present, must be a list that validates too.
    Trees nested deeper than ``max_depth`` levels are rejected.
    """
    pending = [(items, 0)]
    while pending:
        level, depth = pending.pop()
        if not isinstance(level, list) or depth >= max_depth:
            return False
        for item in level:
            if not isinstance(item, dict):
                return False
            for key in ("label", "url"):
                value = item.get(key)
                if not isinstance(value, str) or not value.strip():
                    return False
            if "children" in item:
                pending.append((item["children"], depth + 1))
    return True


def is_menu_name(name: str) -> bool:
    return "menu" in name and is_identifier(name)


def _normalize(path: str) -> str:
    path = "/" + path.strip().strip("/")
    return path


def is_active(url: str, current_path: str) -> bool:
    """Check whether a menu item points at (or above) the current page.

    ``/docs`` is active on ``/docs`` and on ``/docs/intro``; ``/`` is only
    active on the home page.
    """
    if not isinstance(url, str) or not isinstance(current_path, str):
        return False
    url = _normalize(url)
    current = _normalize(current_path)
    if url == current:
        return True
    return url != "/" and current.startswith(url + "/")


class MenuStore:
    """Menus stored as ``<menu_dir>/<name>.json``.

    Menu names must contain ``menu``, which keeps the store away from the
    other JSON documents sharing the config directory.
    """

    def __init__(self, menu_dir: Path):
        """Initialize menu store.

        Args:
            menu_dir: Directory holding the menu files.
        """
        self.menu_dir = menu_dir

    def _file(self, name: str) -> JsonFile | None:
        name = sanitize_name(name)
        if name is None or not is_menu_name(name):
            return None
        path = self.menu_dir / f"{name}.json"
        if path.exists() and not is_within(path, self.menu_dir):
            storage_logger.warning("Blocked menu file escaping its directory: %s", name)
            return None
        return JsonFile(path)

    def load(self, name: str) -> MenuItems:
        """Load a menu.

        Invalid names, missing files and malformed menus all load as an empty
        menu.
        """
        menu_file = self._file(name)
        if menu_file is None:
            return []
        try:
            items = menu_file.read(default=[])
        except StorageError:
            return []
        if not validate(items):
            storage_logger.warning("Ignoring malformed menu: %s", name)
            return []
        return items

    def save(self, name: str, items: MenuItems) -> None:
        """Replace a menu.

        Raises:
            ValidationError: Invalid menu name or structure. Nothing is
                written.
            PersistenceFailure: The file could not be written.
        """
        menu_file = self._file(name)
        if menu_file is None:
            raise ValidationError("Invalid menu name.")
        if not validate(items):
            raise ValidationError("Invalid menu structure.")
        menu_file.write(items)
        storage_logger.info("Saved menu %s (%d top-level items)", name, len(items))

    def exists(self, name: str) -> bool:
        menu_file = self._file(name)
        return menu_file is not None and menu_file.exists

    def list_menus(self) -> list[str]:
        """Names of the stored menus, sorted."""
        if not self.menu_dir.is_dir():
            return []
        return sorted(
            path.stem
            for path in self.menu_dir.glob("*.json")
            if is_menu_name(path.stem) and path.is_file()
        )
