"""Error taxonomy for brog.

Errors are grouped by how far they are allowed to propagate:

- ConfigError: fatal at startup; during a rebuild it only skips that rebuild.
- BuildError and its subclasses (ContentParseError, DuplicateSlugError,
  TemplateError, RenderError): abort the current rebuild, the last good
  snapshot stays live.
- ServingError: fails a single HTTP request.
- WatchError: logged while the watch is re-established.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any


class BrogError(Exception):
    """Base class for all brog errors."""


class ConfigError(BrogError):
    """Configuration file missing, malformed or pointing at missing directories.

    Attributes:
        message: Human-readable error message.
        path: The config file or directory at fault, when known.
    """

    def __init__(self, message: str, path: Path | None = None):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class BuildError(BrogError):
    """Error during a site build with source context.

    Attributes:
        source_path: File (or template name) that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path | str,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


class ContentParseError(BuildError):
    """A post or page could not be read or its front-matter is malformed."""

    def __init__(self, path: Path, reason: str, original_error: Exception | None = None):
        super().__init__(path, reason, original_error)

    @property
    def path(self) -> Path:
        return self.source_path

    @property
    def reason(self) -> str:
        return self.message


class DuplicateSlugError(ContentParseError):
    """Two content items map to the same URL slug."""

    def __init__(self, slug: str, paths: Sequence[Path]):
        self.slug = slug
        self.paths = tuple(paths)
        others = ", ".join(str(p) for p in self.paths[:-1])
        super().__init__(
            self.paths[-1], f"slug '{slug}' is already used by {others}"
        )


class TemplateError(BuildError):
    """A template is missing or fails to compile."""

    def __init__(self, name: str, reason: str, original_error: Exception | None = None):
        self.name = name
        super().__init__(name, reason, original_error)

    @property
    def reason(self) -> str:
        return self.message


class RenderError(BuildError):
    """Substituting an item (or listing) into its template failed.

    Attributes:
        item: The ContentItem being rendered, or a label such as "index page 2".
    """

    def __init__(self, item: Any, reason: str, original_error: Exception | None = None):
        self.item = item
        source = getattr(item, "path", item)
        super().__init__(source, reason, original_error)

    @property
    def reason(self) -> str:
        return self.message


class ServingError(BrogError):
    """A single request could not be answered.

    Attributes:
        status: HTTP status code to send.
        message: Short explanation.
    """

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"{status}: {message}")


class WatchError(BrogError):
    """A watched directory went away or the observer died."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")
