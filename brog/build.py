"""Site rendering for brog.

This module turns a ContentSet and a TemplateSet into a SiteSnapshot. It is a
pure function of its inputs: no clock reads, no filesystem access, and stable
ordering everywhere, so rendering the same inputs twice gives byte-identical
documents.

Key functions:
- render_site: ContentSet + TemplateSet -> SiteSnapshot.
- build_snapshot: Load content and templates for a Configuration and render.
"""

from __future__ import annotations

import logging
from typing import Any

from markupsafe import Markup

from .collections import ItemCollection, Pagination
from .config import Configuration
from .content import ContentItem, ContentKind, ContentSet, ContentStore
from .errors import BuildError, RenderError
from .renderers import render_markup
from .snapshot import RenderedDocument, SiteSnapshot
from .templates import NOT_FOUND_TEMPLATE, TemplateSet

logger = logging.getLogger(__name__)


def url_for(path: str) -> str:
    """Root-relative URL for a slug or path."""
    if path.startswith(("http://", "https://", "//")):
        return path
    return path if path.startswith("/") else f"/{path}"


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message."""
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"


class SiteRenderer:
    """Renders every document of a site with one TemplateSet.

    Attributes:
        content: The content being rendered.
        templates: Compiled templates.
        config: Site configuration (title, metadata, page size).
        version: Version stamped on the snapshot and exposed to templates.
    """

    def __init__(
        self,
        content: ContentSet,
        templates: TemplateSet,
        config: Configuration,
        version: int = 1,
    ):
        self.content = content
        self.templates = templates
        self.config = config
        self.version = version
        self.posts = ItemCollection(content.posts())
        self.pages = ItemCollection(content.pages())

    def _base_context(self) -> dict[str, Any]:
        return {
            "site_title": self.config.site_title,
            "site": self.config.site_metadata,
            "version": self.version,
            "posts": self.posts,
            "pages": self.pages,
            "url_for": url_for,
        }

    def _template_for(self, item: ContentItem) -> str:
        if item.template:
            return item.template
        return "post" if item.kind is ContentKind.POST else "page"

    def render_item(self, item: ContentItem) -> RenderedDocument:
        """Render one post or page with its template.

        Raises:
            TemplateError: If the template is missing.
            RenderError: If substitution fails.
        """
        name = self._template_for(item)
        try:
            html, toc = render_markup(item.body, item.source_type)
        except Exception as exc:
            raise RenderError(item, f"cannot render markup: {_format_error_message(exc)}", exc) from exc
        context = self._base_context()
        context.update(item=item, content=Markup(html), toc=toc)
        rendered = self._render(name, context, item)
        return RenderedDocument(url=item.url, title=item.title, body=rendered.encode("utf-8"))

    def render_listing(self, chunk: ItemCollection, pagination: Pagination) -> RenderedDocument:
        """Render one index page."""
        context = self._base_context()
        context.update(listing=chunk, pagination=pagination)
        label = "index" if pagination.number == 1 else f"index page {pagination.number}"
        rendered = self._render("index", context, label)
        return RenderedDocument(
            url=pagination.url, title=self.config.site_title, body=rendered.encode("utf-8")
        )

    def render_not_found(self) -> RenderedDocument | None:
        if not self.templates.has(NOT_FOUND_TEMPLATE):
            return None
        rendered = self._render(NOT_FOUND_TEMPLATE, self._base_context(), "not found page")
        return RenderedDocument(url="", title="Not Found", body=rendered.encode("utf-8"))

    def _render(self, name: str, context: dict[str, Any], item: Any) -> str:
        try:
            return self.templates.render(name, context)
        except BuildError:
            raise
        except Exception as exc:
            raise RenderError(item, _format_error_message(exc), exc) from exc

    def render(self) -> SiteSnapshot:
        posts = tuple(self.render_item(item) for item in self.posts)
        pages = {item.slug: self.render_item(item) for item in self.pages}
        chunks = self.posts.paginate(self.config.posts_per_page)
        listings = tuple(
            self.render_listing(chunk, Pagination(number, len(chunks)))
            for number, chunk in enumerate(chunks, start=1)
        )
        return SiteSnapshot(
            version=self.version,
            posts=posts,
            pages=pages,
            listings=listings,
            not_found=self.render_not_found(),
        )


def render_site(
    content: ContentSet,
    templates: TemplateSet,
    config: Configuration,
    version: int = 1,
) -> SiteSnapshot:
    """Render a complete SiteSnapshot.

    Args:
        content: Posts and pages to render.
        templates: Compiled templates; "index", "post" and "page" are used.
        config: Site configuration.
        version: Version of the resulting snapshot.

    Raises:
        TemplateError: If a needed template is missing.
        RenderError: If substitution fails for an item or listing.
    """
    snapshot = SiteRenderer(content, templates, config, version).render()
    logger.debug(
        "Rendered snapshot %d: %d posts, %d pages, %d listing pages",
        snapshot.version,
        len(snapshot.posts),
        len(snapshot.pages),
        len(snapshot.listings),
    )
    return snapshot


def build_snapshot(
    config: Configuration,
    version: int = 1,
    include_drafts: bool = False,
) -> SiteSnapshot:
    """Load content and templates from disk and render them.

    Raises:
        BuildError: If any stage fails.
    """
    content = ContentStore(config, include_drafts=include_drafts).build()
    templates = TemplateSet.load(config.template_path)
    return render_site(content, templates, config, version)
