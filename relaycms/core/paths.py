"""Sanitization of untrusted path-like strings.

Content paths may contain ``/``-separated segments; template, theme and menu
names live in a flat namespace and may not contain slashes at all. Every
rejection is reported the same way (``None``) so callers cannot tell a
malicious request from a missing file.
"""

import re
from pathlib import Path

from .logging import get_logger

logger = get_logger("paths")

IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_-]+$")
DEFAULT_CONTENT_PATH = "index"


def is_identifier(value: str) -> bool:
    """Check a single path segment / flat name against the identifier regex."""
    return isinstance(value, str) and bool(IDENTIFIER_RE.fullmatch(value))


def sanitize_path(raw: str) -> str | None:
    """Normalize a content path.

    Args:
        raw: Untrusted path, e.g. the URL path of a request.

    Returns:
        The normalized ``a/b/c`` path, ``"index"`` for an empty path, or
        ``None`` if the path was rejected.
    """
    if not isinstance(raw, str):
        return None

    path = raw.replace("\0", "").strip("/")
    if not path:
        return DEFAULT_CONTENT_PATH

    segments = path.split("/")
    for segment in segments:
        if segment in ("", ".", ".."):
            logger.debug("Rejected path %r: bad segment %r", raw, segment)
            return None
        if not IDENTIFIER_RE.fullmatch(segment):
            logger.debug("Rejected path %r: invalid characters", raw)
            return None

    return "/".join(segments)


def sanitize_name(raw: str, default: str | None = None) -> str | None:
    """Normalize a flat name (template, theme or menu).

    Args:
        raw: Untrusted name.
        default: Value used for an empty name. Without a default an empty
            name is rejected.

    Returns:
        The name, the default, or ``None`` if rejected.
    """
    if not isinstance(raw, str):
        return None

    name = raw.replace("\0", "").strip()
    if not name:
        return default

    if not IDENTIFIER_RE.fullmatch(name):
        logger.debug("Rejected name %r", raw)
        return None

    return name


def is_within(path: Path, root: Path) -> bool:
    """Check that ``path`` resolves to a location inside ``root``.

    Both sides are resolved through symlinks first, which defeats links that
    point outside the root even when every character of the name is valid.
    """
    try:
        resolved = path.resolve(strict=True)
        root_resolved = root.resolve(strict=True)
    except (OSError, RuntimeError):
        return False
    return resolved == root_resolved or resolved.is_relative_to(root_resolved)


def resolve_within(root: Path, relative: str, suffix: str = "") -> Path | None:
    """Build ``root/relative + suffix`` and containment-check it.

    Args:
        root: Designated root directory.
        relative: Already sanitized relative path.
        suffix: File extension to append (e.g. ``".md"``).

    Returns:
        The resolved absolute path, or ``None`` if it does not exist or
        resolves outside ``root``.
    """
    candidate = root / f"{relative}{suffix}"
    if not is_within(candidate, root):
        if candidate.exists() or candidate.is_symlink():
            logger.warning("Blocked path escaping its root: %s", relative)
        return None
    return candidate.resolve()
