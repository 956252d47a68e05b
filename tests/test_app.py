import socket
import threading
import time
import urllib.error
import urllib.request

import pytest

from brog.app import Brog, LifecycleState
from brog.errors import ConfigError, ContentParseError
from brog.watcher import ChangeNotification


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def get(brog, path):
    host, port = brog.address
    try:
        with urllib.request.urlopen(f"http://{host}:{port}{path}", timeout=5) as response:
            return response.status, response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8")


@pytest.fixture
def brog(site):
    app = Brog(site, port=0)
    app.start()
    yield app
    app.stop()


def test_start_serves_version_one_and_stop_is_idempotent(site):
    app = Brog(site, port=0)
    assert app.state is LifecycleState.STOPPED
    app.start()
    try:
        assert app.state is LifecycleState.RUNNING
        assert app.snapshots.version == 1
        status, body = get(app, "/hello")
        assert status == 200
        assert "Hi there" in body
        assert "<!-- v1 -->" in body
    finally:
        app.stop()
    assert app.state is LifecycleState.STOPPED
    assert app.server is None and app.watcher is None
    app.stop()
    assert app.state is LifecycleState.STOPPED


def test_start_failure_is_fatal_and_releases_everything(site):
    (site / "posts" / "2024-01-01-broken.md").write_text("---\ntitle: [\n---\n", encoding="utf-8")
    app = Brog(site, port=0)
    with pytest.raises(ContentParseError):
        app.start()
    assert app.state is LifecycleState.STOPPED
    assert app.server is None


def test_missing_config_is_fatal(tmp_path):
    app = Brog(tmp_path, port=0)
    with pytest.raises(ConfigError):
        app.start()
    assert app.state is LifecycleState.STOPPED


def test_port_in_use_is_fatal(make_site):
    site = make_site(config={"hostname": "127.0.0.1"})
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        app = Brog(site, port=sock.getsockname()[1])
        with pytest.raises(OSError):
            app.start()
    assert app.state is LifecycleState.STOPPED
    assert app.server is None
    assert app.watcher is None


def test_edit_is_served_without_errors(brog, site):
    statuses = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            statuses.append(get(brog, "/hello")[0])

    thread = threading.Thread(target=reader)
    thread.start()
    try:
        (site / "posts" / "2023-01-01-hello.md").write_text("---\ntitle: Hello\n---\nBye\n", encoding="utf-8")
        assert wait_for(lambda: "Bye" in get(brog, "/hello")[1])
    finally:
        stop.set()
        thread.join()

    assert brog.snapshots.version >= 2
    assert statuses
    assert all(status == 200 for status in statuses)
    status, body = get(brog, "/hello")
    assert "<title>Hello</title>" in body
    assert f"<!-- v{brog.snapshots.version} -->" in body


def test_failed_rebuild_keeps_serving_previous_snapshot(brog, site):
    post = site / "posts" / "2023-01-01-hello.md"
    post.write_text("---\ntitle: [\n---\nBroken\n", encoding="utf-8")
    assert wait_for(lambda: brog.last_error is not None)
    assert isinstance(brog.last_error, ContentParseError)
    assert brog.snapshots.version == 1
    status, body = get(brog, "/hello")
    assert status == 200
    assert "Hi there" in body

    post.write_text("---\ntitle: Hello\n---\nFixed\n", encoding="utf-8")
    assert wait_for(lambda: "Fixed" in get(brog, "/hello")[1])
    assert brog.last_error is None


def test_burst_of_changes_gives_one_rebuild(make_site):
    site = make_site(posts={"2023-01-01-hello.md": "Hi"}, config={"rewatch_delay": 0.4})
    app = Brog(site, port=0)
    app.start()
    try:
        for i in range(10):
            (site / "posts" / f"2024-01-{i + 1:02d}-post-{i}.md").write_text(f"Post {i}", encoding="utf-8")
        assert wait_for(lambda: app.snapshots.version == 2)
        time.sleep(1.0)
        assert app.snapshots.version == 2
        assert get(app, "/post-9")[0] == 200
    finally:
        app.stop()


def test_repeated_edits_to_one_post_give_one_rebuild(make_site):
    site = make_site(posts={"2023-01-01-hello.md": "Hi"}, config={"rewatch_delay": 0.4})
    app = Brog(site, port=0)
    app.start()
    post = site / "posts" / "2023-01-01-hello.md"
    try:
        for i in range(10):
            post.write_text(f"Edit {i}", encoding="utf-8")
            time.sleep(0.01)
        assert wait_for(lambda: app.snapshots.version == 2)
        time.sleep(1.0)
        assert app.snapshots.version == 2
        assert "Edit 9" in get(app, "/hello")[1]
    finally:
        app.stop()


def test_template_change_is_picked_up(brog, site):
    (site / "templates" / "post.html").write_text("NEW {{ item.title }}", encoding="utf-8")
    assert wait_for(lambda: get(brog, "/hello")[1] == "NEW Hello")


def test_new_and_deleted_content(brog, site):
    (site / "pages" / "contact.md").write_text("Write to us", encoding="utf-8")
    assert wait_for(lambda: get(brog, "/contact")[0] == 200)
    (site / "pages" / "contact.md").unlink()
    assert wait_for(lambda: get(brog, "/contact")[0] == 404)


def test_rebuild_directly(site):
    app = Brog(site, port=0, watch=False)
    app.start()
    try:
        post = site / "posts" / "2023-01-01-hello.md"
        post.write_text("Direct", encoding="utf-8")
        snapshot = app.rebuild([post])
        assert snapshot.version == 2
        assert app.snapshots.get() is snapshot
        assert b"Direct" in snapshot.lookup("/hello").body

        (site / "posts" / "2023-05-05-hello.md").write_text("Same slug", encoding="utf-8")
        assert app.rebuild([site / "posts" / "2023-05-05-hello.md"]) is None
        assert app.snapshots.version == 2
    finally:
        app.stop()


def test_failed_paths_are_retried_with_the_next_change(site):
    app = Brog(site, port=0, watch=False)
    app.start()
    try:
        bad = site / "posts" / "2023-01-01-hello.md"
        bad.write_text("---\ndate: never\n---\n", encoding="utf-8")
        assert app.rebuild([bad]) is None

        other = site / "pages" / "about.md"
        other.write_text("Edited", encoding="utf-8")
        # The broken post is still part of the site, so this rebuild fails too.
        assert app.rebuild([other]) is None
        assert app.snapshots.version == 1

        bad.write_text("Good again", encoding="utf-8")
        snapshot = app.rebuild([bad])
        assert snapshot is not None
        assert b"Edited" in snapshot.lookup("/about").body
    finally:
        app.stop()


def test_missing_directory_skips_rebuild(site):
    app = Brog(site, port=0, watch=False)
    app.start()
    try:
        for child in (site / "pages").iterdir():
            child.unlink()
        (site / "pages").rmdir()
        assert app.rebuild([site / "pages"]) is None
        assert isinstance(app.last_error, ConfigError)
        assert get(app, "/about")[0] == 200
    finally:
        app.stop()


def test_notifications_are_coalesced(site, monkeypatch):
    app = Brog(site, port=0, watch=False)
    app.start()
    calls = []
    entered = threading.Event()
    release = threading.Event()

    def fake_rebuild(paths=()):
        calls.append(set(paths))
        entered.set()
        release.wait(5)

    monkeypatch.setattr(app, "rebuild", fake_rebuild)
    try:
        app.notify(ChangeNotification(frozenset({site / "a"}), 1))
        assert entered.wait(5)
        app.notify(ChangeNotification(frozenset({site / "b"}), 2))
        app.notify(ChangeNotification(frozenset({site / "c"}), 3))
        release.set()
        assert wait_for(lambda: len(calls) == 2)
        time.sleep(0.2)
    finally:
        release.set()
        app.stop()
    assert calls == [{site / "a"}, {site / "b", site / "c"}]


def test_unexpected_rebuild_error_does_not_kill_the_worker(site, monkeypatch, caplog):
    app = Brog(site, port=0, watch=False)
    app.start()
    calls = []

    def flaky_rebuild(paths=()):
        calls.append(paths)
        if len(calls) == 1:
            raise RuntimeError("surprise")

    monkeypatch.setattr(app, "rebuild", flaky_rebuild)
    try:
        app.notify(ChangeNotification(frozenset({site / "a"}), 1))
        assert wait_for(lambda: len(calls) == 1)
        app.notify(ChangeNotification(frozenset({site / "b"}), 2))
        assert wait_for(lambda: len(calls) == 2)
    finally:
        app.stop()
    assert "surprise" in caplog.text


def test_stop_discards_in_progress_rebuild(site, monkeypatch):
    import brog.app

    app = Brog(site, port=0, watch=False)
    app.start()
    entered = threading.Event()
    release = threading.Event()
    real_render = brog.app.render_site

    def slow_render(*args, **kwargs):
        entered.set()
        release.wait(5)
        return real_render(*args, **kwargs)

    monkeypatch.setattr("brog.app.render_site", slow_render)
    post = site / "posts" / "2023-01-01-hello.md"
    post.write_text("Never served", encoding="utf-8")
    app.notify(ChangeNotification(frozenset({post}), 1))
    assert entered.wait(5)

    stopper = threading.Thread(target=app.stop)
    stopper.start()
    assert wait_for(app._cancel.is_set)
    release.set()
    stopper.join(10)
    assert app.state is LifecycleState.STOPPED
    assert app.snapshots.version == 1


def test_run_blocks_until_request_stop(site):
    app = Brog(site, port=0)
    thread = threading.Thread(target=app.run)
    thread.start()
    try:
        assert wait_for(lambda: app.state is LifecycleState.RUNNING)
        assert get(app, "/")[0] == 200
    finally:
        app.request_stop()
        thread.join(10)
    assert not thread.is_alive()
    assert app.state is LifecycleState.STOPPED
