"""Content processing for brog.

This module scans the post and page directories, extracts front-matter and
metadata, and assembles immutable ContentItem objects into a ContentSet.

Key classes:
- ContentKind: Post or page.
- ContentItem: One post or page, identified by its source path.
- ContentSet: Immutable mapping of source path to ContentItem, with unique slugs.
- FileContentLoader: Discovers content files in a directory.
- ItemBuilder: Builds a ContentItem from one file.
- ContentStore: Full and incremental builds for a Configuration.

Builds are fail-fast: the first malformed file aborts the whole build with a
ContentParseError, so a caller never receives a partially updated set.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .config import Configuration
from .errors import ContentParseError, DuplicateSlugError
from .extractors import CompositeMetadataExtractor, coerce_date, default_metadata_extractor
from .renderers import RendererRegistry, default_renderer_registry
from .utils import freeze, is_draft, is_ignored_name, is_internal_path, slugify

logger = logging.getLogger(__name__)


class ContentKind(str, Enum):
    POST = "post"
    PAGE = "page"


@dataclass(frozen=True)
class ContentItem:
    """A post or page with all its metadata.

    Attributes:
        path: Path to the source file; the item's identity.
        kind: ContentKind.POST or ContentKind.PAGE.
        title: Human-readable title.
        slug: URL slug, unique within a ContentSet.
        body: Raw markup body with the front-matter removed.
        date: Publication date; None for pages without a front-matter date.
        description: Short description, from front-matter or first paragraph.
        tags: Tags listed in front-matter.
        draft: Whether this is a draft (file name starts with an underscore).
        template: Template name override from front-matter, if any.
        source_type: "markdown" or "html".
        frontmatter: Parsed front-matter, read-only.
    """

    path: Path
    kind: ContentKind
    title: str
    slug: str
    body: str
    date: datetime | None = None
    description: str = ""
    tags: tuple[str, ...] = ()
    draft: bool = False
    template: str | None = None
    source_type: str = "markdown"
    frontmatter: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def url(self) -> str:
        return f"/{self.slug}"

    @property
    def is_post(self) -> bool:
        return self.kind is ContentKind.POST


def _post_sort_key(item: ContentItem) -> tuple[datetime, str]:
    return (item.date or datetime.min, item.slug)


class ContentSet(Mapping[Path, ContentItem]):
    """Immutable set of content items keyed by source path.

    Construction enforces slug uniqueness across posts and pages, because both
    share the ``/{slug}`` URL space.

    Raises:
        DuplicateSlugError: If two items map to the same slug.
    """

    def __init__(self, items: Iterable[ContentItem] = ()):
        by_path: dict[Path, ContentItem] = {}
        by_slug: dict[str, ContentItem] = {}
        for item in sorted(items, key=lambda i: str(i.path)):
            existing = by_slug.get(item.slug)
            if existing is not None:
                raise DuplicateSlugError(item.slug, [existing.path, item.path])
            by_path[item.path] = item
            by_slug[item.slug] = item
        self._items = by_path
        self._by_slug = by_slug
        self._posts = tuple(
            sorted((i for i in by_path.values() if i.is_post), key=_post_sort_key, reverse=True)
        )
        self._pages = tuple(
            sorted((i for i in by_path.values() if not i.is_post), key=lambda i: i.slug)
        )

    def __getitem__(self, key: Path) -> ContentItem:
        return self._items[key]

    def __iter__(self) -> Iterator[Path]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def posts(self) -> tuple[ContentItem, ...]:
        """Posts, newest first; equal dates are ordered by slug."""
        return self._posts

    def pages(self) -> tuple[ContentItem, ...]:
        """Pages, ordered by slug."""
        return self._pages

    def get_slug(self, slug: str) -> ContentItem | None:
        return self._by_slug.get(slug)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"ContentSet({len(self._posts)} posts, {len(self._pages)} pages)"


class FileContentLoader:
    """Discovers content files in a directory.

    Attributes:
        directory: Directory to scan.
        registry: Renderer registry deciding which files are content.
    """

    def __init__(self, directory: Path, registry: RendererRegistry | None = None):
        self.directory = directory
        self.registry = registry or default_renderer_registry

    def is_content_file(self, path: Path, include_drafts: bool = False) -> bool:
        """Whether ``path`` (inside the directory) would be loaded as content."""
        try:
            rel = path.relative_to(self.directory)
        except ValueError:
            return False
        if is_internal_path(rel) or is_ignored_name(path.name):
            return False
        if is_draft(path) and not include_drafts:
            return False
        return self.registry.get_renderer(path) is not None

    def iter_files(self, include_drafts: bool = False) -> list[Path]:
        """List content files, sorted by path.

        Raises:
            ContentParseError: If the directory cannot be listed.
        """
        files: list[Path] = []
        try:
            for path in self.directory.rglob("*"):
                if path.is_dir():
                    continue
                if self.is_content_file(path, include_drafts):
                    files.append(path)
        except OSError as exc:
            raise ContentParseError(self.directory, f"cannot scan directory: {exc}", exc) from exc
        return sorted(files)


class ItemBuilder:
    """Builds ContentItem objects from source files."""

    def __init__(
        self,
        registry: RendererRegistry | None = None,
        metadata_extractor: CompositeMetadataExtractor | None = None,
    ):
        self.registry = registry or default_renderer_registry
        self.metadata_extractor = metadata_extractor or default_metadata_extractor

    def build(self, path: Path, kind: ContentKind) -> ContentItem:
        """Build a ContentItem from a source file.

        Raises:
            ContentParseError: If the file cannot be read or its front-matter
                is malformed.
        """
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ContentParseError(path, f"cannot read file: {exc}", exc) from exc

        metadata = self.metadata_extractor.extract(raw, path)
        frontmatter: dict[str, Any] = metadata["frontmatter"]

        title = frontmatter.get("title", metadata["title"])
        if title is None or isinstance(title, dict | list):
            raise ContentParseError(path, "title must be a plain value")

        slug = frontmatter.get("slug")
        if slug is None:
            slug = slugify(path.stem)
        elif not isinstance(slug, str) or slugify(slug) != slug:
            raise ContentParseError(path, f"invalid slug {slug!r}; use lowercase letters, digits and '-'")

        if "date" in frontmatter:
            date = coerce_date(frontmatter["date"], path)
        elif kind is ContentKind.POST:
            date = metadata["date"]
        else:
            date = None

        template = frontmatter.get("template")
        if template is not None and not isinstance(template, str):
            raise ContentParseError(path, "template must be a string")

        return ContentItem(
            path=path,
            kind=kind,
            title=str(title),
            slug=slug,
            body=metadata["body"],
            date=date,
            description=str(frontmatter.get("description", metadata["description"])),
            tags=_tags(frontmatter.get("tags"), path),
            draft=is_draft(path),
            template=template,
            source_type=self.registry.get_renderer(path).source_type,
            frontmatter=freeze(frontmatter),
        )


def _tags(value: Any, path: Path) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(t.strip() for t in value.split(",") if t.strip())
    if isinstance(value, list):
        return tuple(str(t) for t in value)
    raise ContentParseError(path, "tags must be a list or a comma separated string")


def _normalize(path: Path | str) -> Path:
    return Path(os.path.abspath(path))


class ContentStore:
    """Builds ContentSets from the directories of a Configuration.

    Attributes:
        config: The configuration naming the post and page directories.
        include_drafts: Whether draft files are loaded.
    """

    def __init__(
        self,
        config: Configuration,
        include_drafts: bool = False,
        builder: ItemBuilder | None = None,
    ):
        self.config = config
        self.include_drafts = include_drafts
        self._builder = builder or ItemBuilder()
        self._loaders = {
            ContentKind.POST: FileContentLoader(config.post_path),
            ContentKind.PAGE: FileContentLoader(config.page_path),
        }

    def kind_for(self, path: Path) -> ContentKind | None:
        """Return which directory ``path`` belongs to, or None."""
        path = _normalize(path)
        for kind, loader in self._loaders.items():
            if path == loader.directory or path.is_relative_to(loader.directory):
                return kind
        return None

    def build(self) -> ContentSet:
        """Scan every content file and build a fresh ContentSet.

        Raises:
            ContentParseError: On the first malformed file or a slug collision.
        """
        items = []
        for kind, loader in self._loaders.items():
            for path in loader.iter_files(self.include_drafts):
                items.append(self._builder.build(path, kind))
        content = ContentSet(items)
        logger.debug("Built %r", content)
        return content

    def build_incremental(self, previous: ContentSet, changed_paths: Iterable[Path]) -> ContentSet:
        """Rebuild only the changed files on top of ``previous``.

        Deleted files are dropped, changed or new files are re-parsed and all
        other items are reused. Directory-level changes fall back to a full
        build. The result is the same as ``build()``.

        Raises:
            ContentParseError: On the first malformed file or a slug collision.
        """
        items = dict(previous.items())
        for path in sorted({_normalize(p) for p in changed_paths}):
            kind = self.kind_for(path)
            if kind is None:
                continue
            loader = self._loaders[kind]
            if path == loader.directory or path.is_dir() or self._contains_items(items, path):
                logger.debug("Directory change at %s; doing a full build", path)
                return self.build()
            items.pop(path, None)
            if path.is_file() and loader.is_content_file(path, self.include_drafts):
                items[path] = self._builder.build(path, kind)
        return ContentSet(items.values())

    @staticmethod
    def _contains_items(items: Mapping[Path, ContentItem], directory: Path) -> bool:
        return any(p != directory and p.is_relative_to(directory) for p in items)


def build_content(config: Configuration, include_drafts: bool = False) -> ContentSet:
    """Build the full ContentSet for a configuration."""
    return ContentStore(config, include_drafts=include_drafts).build()
