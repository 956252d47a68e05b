"""Command-line interface for brog.

This module defines the CLI commands using the Click framework. Every command
works on the brog structure in the current working directory.

Commands:
- init: Create a new brog structure.
- create: Create a blank post.
- page: Create a blank page.
- server: Serve the brog, rebuilding as files change.
- version: Print the version.
"""

from __future__ import annotations

import shutil
import signal
from datetime import datetime
from pathlib import Path

import click
import questionary

from . import __version__
from .config import CONFIG_FILENAME, Configuration, load_config
from .errors import BrogError
from .logs import setup_logging
from .utils import is_html, is_markdown, slugify, titleize

# Files copied by ``brog init``
_SKELETON_DIR = Path(__file__).parent / "skeleton"


def _error(message: str) -> None:
    prefix = (
        click.style("[", fg="bright_black")
        + click.style("ERROR", fg="red")
        + click.style("]", fg="bright_black")
    )
    click.echo(f"{prefix} {message}", err=True)


def _try_init_message() -> None:
    click.echo("Try initializing a brog here, run: brog init")


def _load_or_exit(action: str) -> Configuration:
    try:
        return load_config(Path.cwd())
    except BrogError as exc:
        _error(f"Couldn't {action}.")
        _error(f"Message: {exc}")
        _try_init_message()
        raise SystemExit(1) from None


@click.group()
@click.version_option(version=__version__, prog_name="brog")
def cli():
    """Initialize, write and serve a brog."""


@cli.command()
@click.argument("directory", required=False, default=".")
def init(directory: str):
    """Create a new brog structure in DIRECTORY (default: here)."""
    target = Path(directory).resolve()
    if (target / CONFIG_FILENAME).exists():
        raise click.ClickException(f"A brog already lives at {target}")
    click.echo(click.style("A dark geometric shape is approaching...", fg="bright_black"))
    created = _scaffold(target)
    click.echo(f"Initialized a brog at {target} ({created} files)")


@cli.command()
@click.argument("words", nargs=-1)
def create(words: tuple[str, ...]):
    """Create a blank post named WORDS."""
    config = _load_or_exit("create new post")
    path = _create_content(config, config.post_path, words, "post")
    click.echo(f"'{path.relative_to(config.root)}' will become one with the brog.")


@cli.command()
@click.argument("words", nargs=-1)
def page(words: tuple[str, ...]):
    """Create a blank page named WORDS."""
    config = _load_or_exit("create new page")
    path = _create_content(config, config.page_path, words, "page")
    click.echo(f"'{path.relative_to(config.root)}' will become one with the brog.")


@cli.command()
@click.argument("mode", required=False, type=click.Choice(["devel"]))
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--port", type=int, required=False, help="Port to serve on (overrides brog.yaml)")
def server(mode: str | None, drafts: bool, port: int | None):
    """Serve the brog here; 'devel' uses the development port and live reload."""
    from .app import Brog

    development = mode == "devel"
    config = _load_or_exit("start brog server")
    setup_logging(config.log_level, config.log_file)

    brog = Brog(config.root, development=development, include_drafts=drafts, port=port)
    try:
        brog.start()
    except (BrogError, OSError) as exc:
        _error("Couldn't start brog server.")
        _error(f"Message: {exc}")
        raise SystemExit(1) from None

    def _handle_signal(signum, frame):
        brog.request_stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    if development:
        click.echo(click.style("Will go live in development.", fg="yellow"))
    host, bound = brog.address
    click.echo(f"Serving at http://{host}:{bound} (Ctrl+C to stop)")
    brog.run()
    click.echo("Brog invasion interrupted.")


@cli.command()
def version():
    """Print the version of brog."""
    click.echo(__version__)


@cli.command("help")
@click.pass_context
def help_(ctx):
    """Show this message and exit."""
    click.echo(ctx.parent.get_help())


def _create_content(config: Configuration, directory: Path, words: tuple[str, ...], kind: str) -> Path:
    """Write a blank post or page and return its path."""
    name = " ".join(words).strip()
    if not name:
        name = questionary.text(
            f"Name of the new {kind}:",
            validate=lambda x: len(x.strip()) > 0 or "Name cannot be empty",
            style=_questionary_style(),
        ).ask()
        if name is None:
            raise click.Abort()
        name = name.strip()

    slug = slugify(name)
    existing = _existing_slugs(config)
    if slug in existing:
        raise click.ClickException(f"A file with slug '{slug}' already exists: {existing[slug].name}")

    if kind == "post":
        filename = f"{datetime.now().strftime('%Y-%m-%d')}-{slug}.md"
    else:
        filename = f"{slug}.md"
    target = directory / filename
    title = titleize(slug)
    target.write_text(f"---\ntitle: {title}\n---\n\n# {title}\n\n", encoding="utf-8")
    return target


def _existing_slugs(config: Configuration) -> dict[str, Path]:
    """Slugs already used by posts and pages, which share one URL space."""
    slugs: dict[str, Path] = {}
    for directory in (config.post_path, config.page_path):
        for path in sorted(directory.rglob("*")):
            if path.is_file() and (is_markdown(path) or is_html(path)):
                slugs.setdefault(slugify(path.stem), path)
    return slugs


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> int:
    """Copy the skeleton into ``root`` without overwriting existing files.

    Returns:
        The number of files copied.
    """
    copied = 0
    for src_path in sorted(_SKELETON_DIR.rglob("*")):
        if src_path.is_dir():
            continue
        dest_path = root / src_path.relative_to(_SKELETON_DIR)
        if dest_path.exists():
            continue
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)
        copied += 1
    return copied
