"""Markup renderers for brog.

Each renderer turns one type of content body into HTML. Bodies are rendered
by render_markup, which is memoized: the same body always yields the same
HTML, so unchanged posts cost nothing on a rebuild.

Key classes:
- Heading: A heading collected for the table of contents.
- MarkdownRenderer: Renders Markdown to HTML with syntax highlighting.
- HTMLRenderer: Passes through HTML content.
- RendererRegistry: Picks a renderer by file type.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from pathlib import Path

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .utils import escape_html, is_html, is_markdown


@dataclass(frozen=True)
class Heading:
    """A heading extracted from markdown content for TOC generation.

    Attributes:
        id: Anchor ID for the heading (URL-friendly slug).
        text: The text content of the heading.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text."""
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


def _rewrite_image_path(src: str) -> str:
    """Point relative image sources at the assets directory.

    Args:
        src: Original image source.

    Returns:
        ``/assets/<src>`` for relative sources, otherwise ``src`` unchanged.
    """
    if src.startswith(("http://", "https://", "//", "/", "data:")):
        return src
    if src.startswith("./"):
        src = src[2:]
    return f"/assets/{src}"


class _HighlightRenderer(mistune.HTMLRenderer):
    """Markdown renderer with heading anchors, image rewriting and highlighting.

    Attributes:
        headings: List of Heading objects extracted during rendering.
    """

    def __init__(self):
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text) or "section"

        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        self.headings.append(Heading(id=heading_id, text=text, level=level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def image(self, text: str, url: str | None = None, title: str | None = None) -> str:
        return super().image(text, _rewrite_image_path(url or ""), title)

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a code block, highlighted by Pygments when the language is known."""
        lang = info.split()[0] if info else ""
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                return highlight(code, lexer, HtmlFormatter(cssclass="highlight"))
        lang_class = f' class="language-{escape_html(lang)}"' if lang else ""
        return f"<pre><code{lang_class}>{escape_html(code)}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown content to HTML."""

    @property
    def source_type(self) -> str:
        return "markdown"

    def can_render(self, path: Path) -> bool:
        return is_markdown(path)

    def render(self, content: str) -> tuple[str, list[Heading]]:
        """Render Markdown content to HTML.

        Returns:
            Tuple of (rendered HTML, list of Heading objects).
        """
        renderer = _HighlightRenderer()
        markdown = mistune.create_markdown(
            renderer=renderer, plugins=["strikethrough", "footnotes", "table", "url"]
        )
        return markdown(content), renderer.headings


class HTMLRenderer:
    """Passes through HTML content unchanged."""

    @property
    def source_type(self) -> str:
        return "html"

    def can_render(self, path: Path) -> bool:
        return is_html(path)

    def render(self, content: str) -> tuple[str, list[Heading]]:
        return content, []


class RendererRegistry:
    """Registry for markup renderers, in priority order."""

    def __init__(self):
        self._renderers: list = []
        self.register(MarkdownRenderer())
        self.register(HTMLRenderer())

    def register(self, renderer) -> None:
        self._renderers.append(renderer)

    def get_renderer(self, path: Path):
        """Return the first renderer that can handle the file, or None."""
        for renderer in self._renderers:
            if renderer.can_render(path):
                return renderer
        return None

    def for_source_type(self, source_type: str):
        for renderer in self._renderers:
            if renderer.source_type == source_type:
                return renderer
        raise KeyError(source_type)


default_renderer_registry = RendererRegistry()


@functools.lru_cache(maxsize=2048)
def render_markup(body: str, source_type: str) -> tuple[str, tuple[Heading, ...]]:
    """Render a content body to HTML.

    Args:
        body: Raw markup, front-matter removed.
        source_type: "markdown" or "html".

    Returns:
        Tuple of (HTML, headings). Results are cached by input.
    """
    renderer = default_renderer_registry.for_source_type(source_type)
    html, headings = renderer.render(body)
    return html, tuple(headings)
