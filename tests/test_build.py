import pytest

from brog.build import build_snapshot, render_site, url_for
from brog.config import load_config
from brog.content import ContentStore
from brog.errors import RenderError, TemplateError
from brog.renderers import Heading, _rewrite_image_path, render_markup
from brog.templates import TemplateSet


def test_render_markup_highlights_and_collects_headings():
    html, toc = render_markup(
        "# Title\n\n## Part\n\n## Part\n\n```python\nprint('hi')\n```\n\n```nolang\n<x>\n```\n",
        "markdown",
    )
    assert '<h1 id="title">Title</h1>' in html
    assert '<h2 id="part-1">Part</h2>' in html
    assert 'class="highlight"' in html
    assert '<pre><code class="language-nolang">&lt;x&gt;' in html
    assert toc == (
        Heading(id="title", text="Title", level=1),
        Heading(id="part", text="Part", level=2),
        Heading(id="part-1", text="Part", level=2),
    )


def test_render_markup_passes_html_through():
    assert render_markup("<p>raw</p>", "html") == ("<p>raw</p>", ())


def test_image_paths_point_at_assets():
    assert _rewrite_image_path("logo.png") == "/assets/logo.png"
    assert _rewrite_image_path("./img/a.png") == "/assets/img/a.png"
    assert _rewrite_image_path("/static/a.png") == "/static/a.png"
    assert _rewrite_image_path("https://x.test/a.png") == "https://x.test/a.png"
    html, _ = render_markup("![Logo](logo.png)", "markdown")
    assert 'src="/assets/logo.png"' in html


def test_url_for():
    assert url_for("assets/style.css") == "/assets/style.css"
    assert url_for("/") == "/"
    assert url_for("https://example.com") == "https://example.com"


def test_build_snapshot_routes(config):
    snapshot = build_snapshot(config, version=3)
    assert snapshot.version == 3
    assert set(snapshot.routes) == {"/", "/hello", "/about"}

    hello = snapshot.lookup("/hello")
    assert hello.title == "Hello"
    assert b"<title>Hello</title>" in hello.body
    assert b"<p>Hi there</p>" in hello.body
    assert b"<!-- v3 -->" in hello.body
    assert snapshot.lookup("/hello/") is hello
    assert snapshot.pages["about"] is snapshot.lookup("/about")

    index = snapshot.lookup("/")
    assert b'<a href="/hello">Hello</a>' in index.body
    assert snapshot.lookup("/page/1") is index
    assert snapshot.lookup("/page/2") is None
    assert snapshot.not_found is None


def test_render_is_deterministic(config):
    content = ContentStore(config).build()
    templates = TemplateSet.load(config.template_path)
    first = render_site(content, templates, config, version=1)
    second = render_site(content, templates, config, version=1)
    assert first.routes.keys() == second.routes.keys()
    for url, document in first.routes.items():
        assert document.body == second.routes[url].body
        assert document.etag == second.routes[url].etag


def test_listings_are_paginated(make_site):
    posts = {f"2024-01-{day:02d}-post-{day}.md": f"Post {day}" for day in range(1, 6)}
    site = make_site(posts=posts, config={"posts_per_page": 2})
    snapshot = build_snapshot(load_config(site))
    assert len(snapshot.listings) == 3
    assert set(snapshot.routes) >= {"/", "/page/2", "/page/3"}
    assert b"/post-5" in snapshot.lookup("/").body
    assert b"/post-1" in snapshot.lookup("/page/3").body
    assert snapshot.lookup("/page/4") is None


def test_empty_site_still_has_an_index(make_site):
    snapshot = build_snapshot(load_config(make_site()))
    assert set(snapshot.routes) == {"/"}


def test_item_template_override_and_not_found(make_site):
    templates = {
        "index.html": "index",
        "post.html": "post",
        "page.html": "page",
        "wide.html": "wide {{ item.title }} {{ site.author }}",
        "not_found.html": "gone {{ site_title }}",
    }
    site = make_site(
        pages={"about.md": "---\ntemplate: wide\n---\nAbout"},
        templates=templates,
        config={"site": {"author": "Ann"}},
    )
    snapshot = build_snapshot(load_config(site))
    assert snapshot.lookup("/about").body == b"wide About Ann"
    assert snapshot.not_found.body == b"gone Test Brog"


def test_drafts_only_render_when_included(make_site):
    site = make_site(posts={"_secret.md": "Shh", "2024-01-01-public.md": "Hi"})
    config = load_config(site)
    assert build_snapshot(config).lookup("/secret") is None
    assert build_snapshot(config, include_drafts=True).lookup("/secret") is not None


def test_undefined_variable_is_a_render_error(config):
    (config.template_path / "post.html").write_text("{{ item.nope }}", encoding="utf-8")
    with pytest.raises(RenderError) as excinfo:
        build_snapshot(config)
    assert excinfo.value.item.slug == "hello"
    assert excinfo.value.source_path == excinfo.value.item.path


def test_missing_item_template_is_a_template_error(config):
    (config.page_path / "about.md").write_text("---\ntemplate: fancy\n---\nAbout", encoding="utf-8")
    with pytest.raises(TemplateError) as excinfo:
        build_snapshot(config)
    assert excinfo.value.name == "fancy"


def test_listing_failure_names_the_listing(config):
    (config.template_path / "index.html").write_text("{{ nope }}", encoding="utf-8")
    with pytest.raises(RenderError) as excinfo:
        build_snapshot(config)
    assert excinfo.value.item == "index"
