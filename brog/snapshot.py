"""Immutable site snapshots and the reference the server reads them through.

A SiteSnapshot is the fully rendered site at one point in time. The serving
engine holds exactly one live snapshot in a SnapshotRef. Request handlers read
the reference once and use that snapshot for the whole response; the rebuild
task builds a new snapshot off to the side and publishes it with a single
reference assignment, so readers never wait on a rebuild.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .collections import listing_url


@dataclass(frozen=True)
class RenderedDocument:
    """One rendered, servable document.

    Attributes:
        url: URL path the document is served at.
        title: Title of the document.
        body: Encoded response body.
        content_type: Value of the Content-Type header.
        etag: Strong entity tag derived from the body.
    """

    url: str
    title: str
    body: bytes
    content_type: str = "text/html; charset=utf-8"
    etag: str = field(init=False)

    def __post_init__(self) -> None:
        digest = hashlib.sha1(self.body).hexdigest()
        object.__setattr__(self, "etag", f'"{digest}"')


@dataclass(frozen=True)
class SiteSnapshot:
    """The whole rendered site, immutable.

    Attributes:
        version: Build number; each published snapshot has a higher version.
        posts: Rendered posts, newest first.
        pages: Rendered pages by slug.
        listings: Rendered index pages; listings[0] is served at "/".
        not_found: Rendered 404 page, if the site has one.
        routes: URL path to document, derived from the fields above.
    """

    version: int
    posts: tuple[RenderedDocument, ...] = ()
    pages: Mapping[str, RenderedDocument] = field(default_factory=lambda: MappingProxyType({}))
    listings: tuple[RenderedDocument, ...] = ()
    not_found: RenderedDocument | None = None
    routes: Mapping[str, RenderedDocument] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        routes: dict[str, RenderedDocument] = {}
        for number, listing in enumerate(self.listings, start=1):
            routes[listing_url(number)] = listing
        for document in (*self.posts, *self.pages.values()):
            routes[document.url] = document
        object.__setattr__(self, "pages", MappingProxyType(dict(self.pages)))
        object.__setattr__(self, "routes", MappingProxyType(routes))

    def lookup(self, path: str) -> RenderedDocument | None:
        """Return the document served at URL ``path``, or None.

        A trailing slash is ignored, and ``/page/1`` is the index.
        """
        if path != "/":
            path = path.rstrip("/") or "/"
        if path == "/page/1":
            path = "/"
        return self.routes.get(path)


class SnapshotRef:
    """Atomically swappable reference to the live SiteSnapshot.

    Reads are a single attribute load and take no lock. Swaps are serialized
    among writers and must strictly increase the version.
    """

    def __init__(self, snapshot: SiteSnapshot | None = None):
        self._snapshot = snapshot
        self._swap_lock = threading.Lock()

    def get(self) -> SiteSnapshot | None:
        return self._snapshot

    @property
    def version(self) -> int:
        snapshot = self._snapshot
        return snapshot.version if snapshot is not None else 0

    def swap(self, snapshot: SiteSnapshot) -> SiteSnapshot | None:
        """Publish ``snapshot`` and return the one it replaced.

        Raises:
            ValueError: If ``snapshot`` is not newer than the live one.
        """
        with self._swap_lock:
            previous = self._snapshot
            if previous is not None and snapshot.version <= previous.version:
                raise ValueError(
                    f"snapshot version {snapshot.version} is not newer than {previous.version}"
                )
            self._snapshot = snapshot
            return previous
