"""Template loading for brog.

This module uses Jinja2 to compile the template directory. All template files
are read and compiled together into one environment, so a TemplateSet is a
consistent picture of the directory at load time: later edits on disk do not
leak into it.

Key class:
- TemplateSet: Compiled templates of a directory, looked up by name.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import (
    DictLoader,
    Environment,
    StrictUndefined,
    Template,
    TemplateNotFound,
    TemplateSyntaxError,
    select_autoescape,
)

from .errors import TemplateError
from .utils import is_ignored_name

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".html.jinja", ".jinja", ".html", "")
REQUIRED_TEMPLATES = ("index", "post", "page")
NOT_FOUND_TEMPLATE = "not_found"


def _format_date(value: Any, fmt: str = "%B %d, %Y") -> str:
    """Jinja filter formatting a date, tolerating None."""
    if value is None:
        return ""
    return value.strftime(fmt)


class TemplateSet:
    """Compiled templates, looked up by name.

    A name such as "post" resolves to the first existing file among
    ``post.html.jinja``, ``post.jinja``, ``post.html`` and ``post``.

    Attributes:
        directory: Directory the templates were read from, if any.
        env: Jinja2 environment holding the compiled templates.
    """

    def __init__(self, sources: Mapping[str, str], directory: Path | None = None):
        """Compile every template source.

        Args:
            sources: Mapping of template file name (posix, relative) to source.
            directory: Directory the sources came from, for error messages.

        Raises:
            TemplateError: If a source fails to compile or a required template
                is missing.
        """
        self.directory = directory
        self._sources = dict(sources)
        self.env = Environment(
            loader=DictLoader(self._sources),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            auto_reload=False,
            cache_size=-1,
        )
        self.env.filters["date"] = _format_date
        self._compiled: dict[str, Template] = {}
        for filename in sorted(self._sources):
            try:
                self._compiled[filename] = self.env.get_template(filename)
            except TemplateSyntaxError as exc:
                raise TemplateError(
                    filename, f"syntax error on line {exc.lineno}: {exc.message}", exc
                ) from exc
        for name in REQUIRED_TEMPLATES:
            self.get(name)

    @classmethod
    def load(cls, directory: Path) -> TemplateSet:
        """Read and compile every file below ``directory``.

        Raises:
            TemplateError: If a file cannot be read or compiled, or a required
                template is missing.
        """
        sources: dict[str, str] = {}
        try:
            paths = sorted(p for p in directory.rglob("*") if p.is_file())
        except OSError as exc:
            raise TemplateError(str(directory), f"cannot scan template directory: {exc}", exc) from exc
        for path in paths:
            if is_ignored_name(path.name):
                continue
            name = path.relative_to(directory).as_posix()
            try:
                sources[name] = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise TemplateError(name, f"cannot read template: {exc}", exc) from exc
        templates = cls(sources, directory)
        logger.debug("Loaded %d templates from %s", len(sources), directory)
        return templates

    @property
    def names(self) -> list[str]:
        return sorted(self._sources)

    def resolve(self, name: str) -> str | None:
        """Return the file name a template name resolves to, or None."""
        for suffix in TEMPLATE_SUFFIXES:
            candidate = f"{name}{suffix}"
            if candidate in self._compiled:
                return candidate
        return None

    def has(self, name: str) -> bool:
        return self.resolve(name) is not None

    def get(self, name: str) -> Template:
        """Return the compiled template for ``name``.

        Raises:
            TemplateError: If no file matches the name.
        """
        filename = self.resolve(name)
        if filename is None:
            where = f" in {self.directory}" if self.directory else ""
            raise TemplateError(name, f"template not found{where}")
        return self._compiled[filename]

    def render(self, name: str, context: dict[str, Any]) -> str:
        """Render template ``name`` with ``context``.

        Raises:
            TemplateError: If the template, or one it includes or extends, is
                missing.
        """
        template = self.get(name)
        try:
            return template.render(**context)
        except TemplateNotFound as exc:
            raise TemplateError(name, f"references missing template '{exc.name}'", exc) from exc
