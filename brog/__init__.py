"""Brog blog server.

This package serves a blog straight from a directory of Markdown posts, pages and
Jinja2 templates. Content is compiled in memory into immutable site snapshots which
are swapped atomically while the HTTP server keeps answering requests.

The main entry point is the CLI module, which provides commands for initializing a
brog structure, creating posts and pages, and running the server.

Architecture:
- config: immutable configuration loaded from brog.yaml
- content: scanning posts/pages into an immutable ContentSet
- renderers/templates/build: markup + templates -> SiteSnapshot
- watcher: debounced filesystem change notifications
- server: threaded HTTP server over the live snapshot
- app: lifecycle controller tying everything together
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
