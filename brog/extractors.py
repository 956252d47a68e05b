"""Metadata extractors for brog.

Each extractor handles a single type of metadata. The content store runs them
through a CompositeMetadataExtractor and lets front-matter values win over
derived ones.

Key classes:
- FrontmatterExtractor: Splits YAML front-matter from the body.
- TitleExtractor: Extracts title from the first heading or filename.
- DateExtractor: Extracts date from front-matter, filename or file metadata.
- DescriptionExtractor: Extracts description from the body.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from .errors import ContentParseError
from .utils import extract_date_from_name, first_paragraph, titleize

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n(.*?)^---[ \t]*$\n?", re.DOTALL | re.MULTILINE)


def extract_frontmatter(text: str, path: Path) -> tuple[dict[str, Any], str]:
    """Extract YAML front-matter from content.

    Content without a leading ``---`` line has no front-matter. Once a file
    opens a front-matter block it must be well formed.

    Args:
        text: Raw file content.
        path: Path of the file, for error reporting.

    Returns:
        Tuple of (front-matter dict, remaining body).

    Raises:
        ContentParseError: If the block is unterminated, is not valid YAML or
            is not a mapping.
    """
    text = text.lstrip("\ufeff")
    first_line = text.split("\n", 1)[0].rstrip()
    if first_line != "---":
        return {}, text
    match = FRONTMATTER_RE.match(text)
    if not match:
        raise ContentParseError(path, "unterminated front-matter (missing closing '---')")
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise ContentParseError(path, f"invalid YAML front-matter: {exc}", exc) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ContentParseError(path, "front-matter must be a mapping of keys to values")
    return data, text[match.end() :]


def coerce_date(value: Any, path: Path) -> datetime:
    """Turn a front-matter date into a naive datetime.

    Aware datetimes are converted to UTC so that all dates compare.

    Raises:
        ContentParseError: If the value is not a date.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise ContentParseError(path, f"invalid date {value!r}", exc) from exc
    else:
        raise ContentParseError(path, f"invalid date {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class FrontmatterExtractor:
    """Extracts YAML front-matter from content."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        frontmatter, body = extract_frontmatter(content, path)
        return {"frontmatter": frontmatter, "body": body}


class TitleExtractor:
    """Extracts title from content or filename.

    Looks for a level-1 heading (# Title) in the content,
    falling back to titleizing the filename.
    """

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        for line in content.splitlines():
            stripped = line.strip()
            if stripped.startswith("# "):
                return {"title": stripped.lstrip("# ").strip()}
        return {"title": titleize(path.name)}


class DateExtractor:
    """Extracts date from filename or file metadata.

    Looks for YYYY-MM-DD prefix in filename, falling back
    to file modification time.
    """

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        found = extract_date_from_name(path.stem)
        if found is None:
            try:
                found = datetime.fromtimestamp(path.stat().st_mtime)
            except OSError as exc:
                raise ContentParseError(path, f"cannot stat file: {exc}", exc) from exc
        return {"date": found}


class DescriptionExtractor:
    """Extracts a short description from the first paragraph."""

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        return {"description": first_paragraph(content)}


class CompositeMetadataExtractor:
    """Combines multiple metadata extractors.

    The front-matter extractor always runs first; the remaining extractors see
    the body with the front-matter removed.
    """

    def __init__(self, extractors: list | None = None):
        """Initialize with a list of extractors.

        Args:
            extractors: Extractors to run on the body. If None, uses the defaults.
        """
        self._frontmatter = FrontmatterExtractor()
        if extractors is None:
            self._extractors = [
                TitleExtractor(),
                DateExtractor(),
                DescriptionExtractor(),
            ]
        else:
            self._extractors = list(extractors)

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        """Extract all metadata from content.

        Runs all registered extractors and merges their results.
        Later extractors can override earlier ones.

        Returns:
            Dictionary with 'frontmatter', 'body' and derived keys.
        """
        result = self._frontmatter.extract(content, path)
        for extractor in self._extractors:
            result.update(extractor.extract(result["body"], path))
        return result


default_metadata_extractor = CompositeMetadataExtractor()
