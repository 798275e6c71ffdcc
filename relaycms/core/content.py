"""Markdown content pages with a minimal frontmatter block."""

from dataclasses import dataclass, field
from pathlib import Path

from markdown_it import MarkdownIt

from .errors import NotFound
from .logging import content_logger
from .paths import is_within, resolve_within, sanitize_path

FRONTMATTER_DELIMITER = "---"
CONTENT_SUFFIX = ".md"


def parse_frontmatter(text: str) -> tuple[dict[str, str], str]:
    """Split a ``key: value`` frontmatter block off a Markdown document.

    The block must start on the first line with exactly ``---`` and end at
    the next line that is exactly ``---``. Lines are split on the first
    colon; surrounding quotes are stripped from values. Without a closing
    delimiter the whole text is treated as body.

    Args:
        text: Raw file contents.

    Returns:
        Tuple of (metadata, trimmed body).
    """
    # Only \n and \r\n end a line; other separators belong to the text
    lines = [line.removesuffix("\r") for line in text.split("\n")]
    if lines[0] != FRONTMATTER_DELIMITER:
        return {}, text.strip()

    for end, line in enumerate(lines[1:], start=1):
        if line == FRONTMATTER_DELIMITER:
            break
    else:
        return {}, text.strip()

    metadata: dict[str, str] = {}
    for line in lines[1:end]:
        line = line.strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        if key:
            metadata[key] = value.strip().strip("\"'")

    body = "\n".join(lines[end + 1 :])
    return metadata, body.strip()


def create_markdown() -> MarkdownIt:
    """Markdown renderer for content pages.

    Raw HTML is passed through: content files are written by people with
    filesystem access to the site.
    """
    return MarkdownIt("commonmark", {"html": True}).enable(["table", "strikethrough"])


@dataclass
class ContentPage:
    """A rendered content page."""

    path: str
    metadata: dict[str, str] = field(default_factory=dict)
    html: str = ""

    def title(self, default: str = "") -> str:
        return self.metadata.get("title") or default

    @property
    def template(self) -> str:
        """Template requested by the frontmatter (unsanitized)."""
        return self.metadata.get("template", "")


class ContentStore:
    """Markdown files under the content directory."""

    def __init__(self, content_dir: Path):
        """Initialize content store.

        Args:
            content_dir: Root of the content tree.
        """
        self.content_dir = content_dir
        self.md = create_markdown()

    def get_file_path(self, path: str) -> Path:
        """Map a request path onto a content file.

        Raises:
            NotFound: The path is invalid, escapes the content directory or
                does not exist.
        """
        sanitized = sanitize_path(path)
        if sanitized is None:
            raise NotFound(path)
        file_path = resolve_within(self.content_dir, sanitized, CONTENT_SUFFIX)
        if file_path is None or not file_path.is_file():
            raise NotFound(path)
        return file_path

    def exists(self, path: str) -> bool:
        try:
            self.get_file_path(path)
        except NotFound:
            return False
        return True

    def render_markdown(self, text: str) -> str:
        """Render Markdown to HTML."""
        return self.md.render(text)

    def load(self, path: str) -> ContentPage:
        """Load and render a content page.

        Raises:
            NotFound: See ``get_file_path``; unreadable files also count as
                missing.
        """
        file_path = self.get_file_path(path)
        try:
            text = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            content_logger.error("Could not read content file %s: %s", file_path, e)
            raise NotFound(path) from e

        metadata, body = parse_frontmatter(text)
        return ContentPage(
            path=sanitize_path(path) or path,
            metadata=metadata,
            html=self.render_markdown(body),
        )

    def list_files(self, path: str = "") -> list[str]:
        """List content pages below a directory.

        Args:
            path: Subdirectory of the content tree, empty for all.

        Returns:
            Sorted content paths relative to the content root, without the
            ``.md`` extension.
        """
        root = self.content_dir
        if path:
            sanitized = sanitize_path(path)
            if sanitized is None:
                return []
            root = self.content_dir / sanitized
        if not root.is_dir() or not is_within(root, self.content_dir):
            return []

        pages = []
        for file_path in root.rglob(f"*{CONTENT_SUFFIX}"):
            if not file_path.is_file() or not is_within(file_path, self.content_dir):
                continue
            relative = file_path.relative_to(self.content_dir)
            pages.append(relative.with_suffix("").as_posix())
        return sorted(pages)
