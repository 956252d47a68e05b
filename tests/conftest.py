from pathlib import Path

import pytest
import yaml

from brog.config import load_config

TEMPLATES = {
    "index.html": (
        "<h1>{{ site_title }}</h1>"
        "{% for p in listing %}<a href=\"{{ p.url }}\">{{ p.title }}</a>{% endfor %}"
        "<!-- v{{ version }} -->"
    ),
    "post.html": "<title>{{ item.title }}</title>{{ content }}<!-- v{{ version }} -->",
    "page.html": "<title>{{ item.title }}</title>{{ content }}<!-- v{{ version }} -->",
}

HELLO_POST = "---\ntitle: Hello\n---\nHi there\n"


def write_site(root: Path, posts=None, pages=None, templates=None, config=None) -> Path:
    for name in ("posts", "pages", "templates", "assets"):
        (root / name).mkdir(parents=True, exist_ok=True)
    settings = {"site_title": "Test Brog", "rewatch_delay": 0.05, "shutdown_grace": 2}
    settings.update(config or {})
    (root / "brog.yaml").write_text(yaml.safe_dump(settings), encoding="utf-8")
    for name, text in (templates if templates is not None else TEMPLATES).items():
        (root / "templates" / name).write_text(text, encoding="utf-8")
    for name, text in (posts or {}).items():
        (root / "posts" / name).write_text(text, encoding="utf-8")
    for name, text in (pages or {}).items():
        (root / "pages" / name).write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def make_site(tmp_path):
    def _make(**kwargs) -> Path:
        return write_site(tmp_path / "site", **kwargs)

    return _make


@pytest.fixture
def site(make_site):
    return make_site(
        posts={"2023-01-01-hello.md": HELLO_POST},
        pages={"about.md": "# About\n\nAll about us.\n"},
    )


@pytest.fixture
def config(site):
    return load_config(site)
