from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from .content import ContentItem


class ItemCollection(Sequence[ContentItem]):
    """Lightweight helper for working with lists of ContentItems in templates and code."""

    def __init__(self, items: Iterable[ContentItem]):
        self._items = tuple(items)

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return ItemCollection(self._items[item])
        return self._items[item]

    def with_tag(self, tag: str) -> ItemCollection:
        return ItemCollection(i for i in self._items if tag in i.tags)

    def published(self) -> ItemCollection:
        return ItemCollection(i for i in self._items if not i.draft)

    def latest(self, count: int = 5) -> ItemCollection:
        """The first ``count`` items; posts are already newest first."""
        return ItemCollection(self._items[:count])

    def tags(self) -> list[str]:
        """All tags used by the items, sorted."""
        return sorted({tag for i in self._items for tag in i.tags})

    def paginate(self, per_page: int) -> list[ItemCollection]:
        """Split into chunks of ``per_page`` items.

        An empty collection still yields one empty page, so the index always
        exists.
        """
        if per_page < 1:
            raise ValueError("per_page must be at least 1")
        chunks = [
            ItemCollection(self._items[start : start + per_page])
            for start in range(0, len(self._items), per_page)
        ]
        return chunks or [ItemCollection(())]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"ItemCollection({len(self._items)} items)"


def listing_url(number: int) -> str:
    """URL of listing page ``number`` (1-based); page 1 is the index."""
    return "/" if number <= 1 else f"/page/{number}"


@dataclass(frozen=True)
class Pagination:
    """Position of one listing page among all listing pages."""

    number: int
    total: int

    @property
    def url(self) -> str:
        return listing_url(self.number)

    @property
    def prev_url(self) -> str | None:
        return listing_url(self.number - 1) if self.number > 1 else None

    @property
    def next_url(self) -> str | None:
        return listing_url(self.number + 1) if self.number < self.total else None
