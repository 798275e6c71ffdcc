"""URL helpers for installations served below a path prefix.

The base path is the ASGI ``root_path`` (e.g. ``/relay`` when a reverse
proxy mounts the site there); an empty string means the site is at ``/``.
"""

from fastapi import Request


def normalize_base_path(base_path: str | None) -> str:
    """Turn ``""``, ``"/"`` and ``"relay/"`` into ``""``, ``""`` and ``"/relay"``."""
    if not base_path:
        return ""
    stripped = base_path.strip("/")
    return f"/{stripped}" if stripped else ""


def get_base_path(request: Request) -> str:
    """Base path of the running application."""
    return normalize_base_path(request.scope.get("root_path", ""))


def url_base(path: str, base_path: str = "") -> str:
    """Prefix a site-relative path with the base path.

    Args:
        path: Path such as ``/admin/`` or ``themes/default/static/x.css``.
        base_path: Installation prefix.

    Returns:
        Absolute URL path.
    """
    base_path = normalize_base_path(base_path)
    if path in ("", "/"):
        return f"{base_path}/"
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base_path}{path}"


def strip_base_path(full_path: str, base_path: str = "") -> str:
    """Remove the base path from a request path.

    Paths that do not start with the base path are returned unchanged.
    """
    base_path = normalize_base_path(base_path)
    if not base_path:
        return full_path
    if full_path == base_path or full_path.startswith(f"{base_path}/"):
        return full_path[len(base_path):] or "/"
    return full_path
