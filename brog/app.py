"""Lifecycle of a running brog.

Brog ties the pieces together: it loads the configuration, builds and renders
the first snapshot, starts the server, and keeps the snapshot current by
feeding watcher notifications to a single rebuild worker. A failed rebuild
never replaces what is being served.

States move STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from collections.abc import Iterable
from enum import Enum
from pathlib import Path

from .build import render_site
from .config import Configuration, load_config
from .content import ContentSet, ContentStore
from .errors import BuildError, ConfigError
from .server import LiveReload, SiteServer
from .snapshot import SiteSnapshot, SnapshotRef
from .templates import TemplateSet
from .watcher import ChangeNotification, Watcher

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class _Cancelled(Exception):
    """Raised inside a rebuild when the controller is stopping."""


def _is_under(path: Path, directory: Path) -> bool:
    path = Path(os.path.abspath(path))
    return path == directory or path.is_relative_to(directory)


class Brog:
    """A brog site being served.

    Attributes:
        config_path: The config file, or the directory holding brog.yaml.
        development: Serve on the development port with live reload.
        include_drafts: Load draft posts and pages.
        port: Port overriding the configured one (0 picks a free port).
        watch: Watch the content and template directories for changes.
        config: The loaded configuration, once started.
        snapshots: Reference to the live snapshot.
        last_error: Error of the most recent rebuild, None if it succeeded.
    """

    def __init__(
        self,
        config_path: Path | str,
        development: bool = False,
        include_drafts: bool = False,
        port: int | None = None,
        watch: bool = True,
    ):
        self.config_path = Path(config_path)
        self.development = development
        self.include_drafts = include_drafts
        self.port = port
        self.watch = watch
        self.config: Configuration | None = None
        self.snapshots = SnapshotRef()
        self.server: SiteServer | None = None
        self.watcher: Watcher | None = None
        self.live_reload: LiveReload | None = None
        self.last_error: Exception | None = None

        self._state = LifecycleState.STOPPED
        self._state_lock = threading.Lock()
        self._stop_flag = False
        self._cancel = threading.Event()
        self._queue: queue.Queue[ChangeNotification | None] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._rebuild_lock = threading.Lock()
        self._store: ContentStore | None = None
        self._content: ContentSet | None = None
        self._templates: TemplateSet | None = None
        self._dirty: set[Path] = set()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def address(self) -> tuple[str, int]:
        if self.server is None:
            raise RuntimeError("brog is not running")
        return self.server.address

    def start(self) -> None:
        """Load, build and start serving.

        Raises:
            ConfigError: If the configuration is invalid.
            BuildError: If the initial build or render fails.
            OSError: If the server cannot bind its port.
            RuntimeError: If brog is starting or stopping.
        """
        with self._state_lock:
            if self._state is LifecycleState.RUNNING:
                return
            if self._state is not LifecycleState.STOPPED:
                raise RuntimeError(f"cannot start while {self._state.value}")
            self._state = LifecycleState.STARTING
            self._stop_flag = False
        self._cancel.clear()
        try:
            self._start()
        except BaseException:
            self._release()
            self._state = LifecycleState.STOPPED
            raise
        self._state = LifecycleState.RUNNING
        logger.info("brog is running (snapshot %d)", self.snapshots.version)

    def _start(self) -> None:
        config = load_config(self.config_path)
        self.config = config
        self._store = ContentStore(config, include_drafts=self.include_drafts)
        self._content = self._store.build()
        self._templates = TemplateSet.load(config.template_path)
        self._dirty = set()
        self.snapshots = SnapshotRef(render_site(self._content, self._templates, config, version=1))

        if self.development:
            self.live_reload = LiveReload(config.hostname, config.reload_port())
            self.live_reload.start()
        self.server = SiteServer(config, self.snapshots, self.development, self.live_reload)
        address = None if self.port is None else (config.hostname, self.port)
        self.server.serve(address)

        self._queue = queue.Queue()
        self._worker = threading.Thread(target=self._rebuild_loop, name="brog-rebuild", daemon=True)
        self._worker.start()

        if self.watch:
            self.watcher = Watcher(
                config.watched_paths,
                self.notify,
                delay=config.rewatch_delay,
                use_polling=config.use_polling,
            )
            self.watcher.start()

    def run(self) -> None:
        """Start if needed and block until a stop is requested, then stop."""
        if self._state is LifecycleState.STOPPED:
            self.start()
        try:
            while not self._stop_flag and self._state is LifecycleState.RUNNING:
                time.sleep(0.1)
        finally:
            self.stop()

    def request_stop(self) -> None:
        """Ask ``run`` to stop. Never blocks; safe to call from a signal handler."""
        self._stop_flag = True

    def stop(self) -> None:
        """Stop watching and rebuilding, then stop the server. Idempotent."""
        self._stop_flag = True
        with self._state_lock:
            if self._state is not LifecycleState.RUNNING:
                return
            self._state = LifecycleState.STOPPING
        logger.info("Stopping brog")
        try:
            self._release()
        finally:
            self._state = LifecycleState.STOPPED
        logger.info("brog stopped")

    def _release(self) -> None:
        self._cancel.set()
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        if self._worker is not None:
            self._queue.put(None)
            self._worker.join()
            self._worker = None
        if self.server is not None:
            grace = self.config.shutdown_grace if self.config else None
            self.server.stop(grace)
            self.server = None
        if self.live_reload is not None:
            self.live_reload.stop()
            self.live_reload = None

    def notify(self, notification: ChangeNotification) -> None:
        """Queue a change notification for the rebuild worker."""
        logger.debug(
            "Change notification %d: %s",
            notification.sequence,
            ", ".join(sorted(str(p) for p in notification.paths)),
        )
        self._queue.put(notification)

    def _rebuild_loop(self) -> None:
        while True:
            notification = self._queue.get()
            if notification is None:
                return
            paths = set(notification.paths)
            # Fold everything that queued up during the last rebuild into one.
            while True:
                try:
                    queued = self._queue.get_nowait()
                except queue.Empty:
                    break
                if queued is None:
                    return
                paths |= queued.paths
            if self._cancel.is_set():
                return
            try:
                self.rebuild(paths)
            except Exception:
                logger.exception(
                    "Unexpected error during rebuild; still serving snapshot %d", self.snapshots.version
                )

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise _Cancelled()

    def rebuild(self, paths: Iterable[Path] = ()) -> SiteSnapshot | None:
        """Rebuild after ``paths`` changed and publish the new snapshot.

        Returns:
            The published snapshot, or None when the rebuild failed or was
            cancelled; the previous snapshot stays live in both cases.
        """
        if self.config is None or self._store is None or self._content is None:
            raise RuntimeError("brog is not started")
        config = self.config
        with self._rebuild_lock:
            changed = self._dirty | {Path(p) for p in paths}
            version = self.snapshots.version + 1
            started = time.perf_counter()
            try:
                config.check_paths()
                templates = self._templates
                if templates is None or any(_is_under(p, config.template_path) for p in changed):
                    templates = TemplateSet.load(config.template_path)
                self._check_cancelled()
                content = self._store.build_incremental(self._content, changed)
                self._check_cancelled()
                snapshot = render_site(content, templates, config, version)
                self._check_cancelled()
            except _Cancelled:
                logger.info("Rebuild cancelled; discarding its result")
                return None
            except (ConfigError, BuildError) as exc:
                self._dirty = changed
                self.last_error = exc
                logger.error("Rebuild failed: %s; still serving snapshot %d", exc, self.snapshots.version)
                return None

            if self.server is not None:
                self.server.swap(snapshot)
            else:
                self.snapshots.swap(snapshot)
            self._content = content
            self._templates = templates
            self._dirty = set()
            self.last_error = None
            logger.info(
                "Rebuilt snapshot %d from %d change(s) in %.3fs",
                snapshot.version,
                len(changed),
                time.perf_counter() - started,
            )
            return snapshot
