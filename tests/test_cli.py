from datetime import datetime

from click.testing import CliRunner

from brog import __version__
from brog.build import build_snapshot
from brog.cli import cli
from brog.config import load_config


def init_site(tmp_path):
    runner = CliRunner()
    target = tmp_path / "mybrog"
    result = runner.invoke(cli, ["init", str(target)])
    assert result.exit_code == 0, result.output
    return target


def test_init_scaffolds_a_servable_brog(tmp_path):
    target = init_site(tmp_path)
    assert (target / "brog.yaml").exists()
    assert (target / "templates" / "post.html.jinja").exists()
    assert (target / "posts" / "2024-01-01-welcome.md").exists()
    assert (target / "assets" / "style.css").exists()

    snapshot = build_snapshot(load_config(target))
    assert set(snapshot.routes) == {"/", "/welcome", "/about"}
    assert snapshot.not_found is not None
    assert b"Welcome to the Brog" in snapshot.lookup("/").body
    assert b'class="highlight"' in snapshot.lookup("/welcome").body

    # refuses to initialize over an existing brog
    result = CliRunner().invoke(cli, ["init", str(target)])
    assert result.exit_code != 0
    assert "already" in result.output


def test_init_keeps_existing_files(tmp_path):
    target = tmp_path / "mybrog"
    (target / "assets").mkdir(parents=True)
    (target / "assets" / "style.css").write_text("mine", encoding="utf-8")
    result = CliRunner().invoke(cli, ["init", str(target)])
    assert result.exit_code == 0
    assert (target / "assets" / "style.css").read_text(encoding="utf-8") == "mine"


def test_create_and_page(monkeypatch, tmp_path):
    target = init_site(tmp_path)
    monkeypatch.chdir(target)
    runner = CliRunner()

    result = runner.invoke(cli, ["create", "My", "First", "Post"])
    assert result.exit_code == 0, result.output
    expected = target / "posts" / f"{datetime.now():%Y-%m-%d}-my-first-post.md"
    assert expected.exists()
    assert "title: My First Post" in expected.read_text(encoding="utf-8")
    assert "will become one with the brog" in result.output

    result = runner.invoke(cli, ["page", "contact", "us"])
    assert result.exit_code == 0, result.output
    assert (target / "pages" / "contact-us.md").exists()

    snapshot = build_snapshot(load_config(target))
    assert snapshot.lookup("/my-first-post") is not None
    assert snapshot.lookup("/contact-us") is not None


def test_create_refuses_duplicate_slug(monkeypatch, tmp_path):
    target = init_site(tmp_path)
    monkeypatch.chdir(target)
    result = CliRunner().invoke(cli, ["page", "welcome"])
    assert result.exit_code != 0
    assert "welcome" in result.output
    assert not (target / "pages" / "welcome.md").exists()


def test_create_prompts_when_no_name_given(monkeypatch, tmp_path):
    target = init_site(tmp_path)
    monkeypatch.chdir(target)

    class Answer:
        def __init__(self, value):
            self.value = value

        def ask(self):
            return self.value

    monkeypatch.setattr("brog.cli.questionary.text", lambda *a, **k: Answer("Prompted Post"))
    result = CliRunner().invoke(cli, ["create"])
    assert result.exit_code == 0, result.output
    assert list((target / "posts").glob("*-prompted-post.md"))

    monkeypatch.setattr("brog.cli.questionary.text", lambda *a, **k: Answer(None))
    result = CliRunner().invoke(cli, ["page"])
    assert result.exit_code != 0


def test_commands_outside_a_brog_fail(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    for args in (["create", "x"], ["page", "x"], ["server"]):
        result = runner.invoke(cli, args)
        assert result.exit_code == 1
        assert "brog init" in result.output


def test_server_wires_options_and_signals(monkeypatch, tmp_path):
    target = init_site(tmp_path)
    monkeypatch.chdir(target)
    called = {}

    class DummyBrog:
        def __init__(self, config_path, development=False, include_drafts=False, port=None):
            called.update(
                path=config_path, development=development, drafts=include_drafts, port=port
            )
            self.address = ("localhost", port or 3000)

        def start(self):
            called["started"] = True

        def run(self):
            called["ran"] = True

        def request_stop(self):
            called["stop_requested"] = True

    handlers = {}
    monkeypatch.setattr("brog.app.Brog", DummyBrog)
    monkeypatch.setattr("brog.cli.signal.signal", lambda sig, handler: handlers.setdefault(sig, handler))
    monkeypatch.setattr("brog.cli.setup_logging", lambda *a, **k: None)

    result = CliRunner().invoke(cli, ["server", "devel", "--drafts", "--port", "5055"])
    assert result.exit_code == 0, result.output
    assert called["development"] is True
    assert called["drafts"] is True
    assert called["port"] == 5055
    assert called["started"] and called["ran"]
    assert "http://localhost:5055" in result.output

    assert len(handlers) == 2
    next(iter(handlers.values()))(2, None)
    assert called["stop_requested"]


def test_server_start_failure_exits_with_error(monkeypatch, tmp_path):
    target = init_site(tmp_path)
    monkeypatch.chdir(target)

    class FailingBrog:
        def __init__(self, *args, **kwargs):
            pass

        def start(self):
            raise OSError("address already in use")

    monkeypatch.setattr("brog.app.Brog", FailingBrog)
    monkeypatch.setattr("brog.cli.setup_logging", lambda *a, **k: None)
    result = CliRunner().invoke(cli, ["server"])
    assert result.exit_code == 1
    assert "address already in use" in result.output


def test_server_rejects_unknown_mode(monkeypatch, tmp_path):
    result = CliRunner().invoke(cli, ["server", "staging"])
    assert result.exit_code == 2


def test_version():
    result = CliRunner().invoke(cli, ["version"])
    assert result.exit_code == 0
    assert result.output.strip() == __version__

    result = CliRunner().invoke(cli, ["--version"])
    assert __version__ in result.output


def test_help_command_matches_help_option():
    runner = CliRunner()
    result = runner.invoke(cli, ["help"])
    assert result.exit_code == 0
    assert result.output == runner.invoke(cli, ["--help"]).output
    assert "server" in result.output
