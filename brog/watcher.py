"""Filesystem watching for brog.

The watcher turns raw watchdog events into debounced ChangeNotifications:
bursts of events (an editor writing a temp file then renaming it, a git
checkout touching many posts) collapse into one notification carrying every
changed path. The watcher never rebuilds anything itself; it hands each
notification to a callback.

Key classes:
- ChangeNotification: The set of paths that changed, with a sequence number.
- Debouncer: Coalesces pushed paths until a quiet window has passed.
- Watcher: Owns the watchdog observer, the debouncer and a supervisor that
  re-establishes watches when a directory disappears or the observer dies.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from .errors import WatchError
from .utils import is_ignored_name

logger = logging.getLogger(__name__)

# Events that do not change anything on disk.
_IGNORED_EVENT_TYPES = ("opened", "closed_no_write")


@dataclass(frozen=True)
class ChangeNotification:
    """Paths changed since the previous notification.

    Attributes:
        paths: Changed files or directories.
        sequence: 1 for the first notification, then increasing by one.
    """

    paths: frozenset[Path]
    sequence: int


class Debouncer:
    """Coalesces pushed paths into notifications after a quiet window.

    Every push restarts the window; once ``window`` seconds pass without a
    push, all pending paths are emitted as one ChangeNotification from the
    debouncer thread. Notifications are emitted one at a time, in order.
    """

    def __init__(
        self,
        window: float,
        emit: Callable[[ChangeNotification], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window
        self._emit = emit
        self._clock = clock
        self._cond = threading.Condition()
        self._pending: dict[Path, None] = {}
        self._deadline = 0.0
        self._sequence = 0
        self._stopped = False
        self._thread: threading.Thread | None = None

    def push(self, path: Path) -> None:
        with self._cond:
            self._pending[path] = None
            self._deadline = self._clock() + self.window
            self._cond.notify()

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="brog-debouncer", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the thread; pending paths are dropped."""
        with self._cond:
            self._stopped = True
            self._cond.notify()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _next_batch(self) -> frozenset[Path] | None:
        with self._cond:
            while not self._stopped:
                if not self._pending:
                    self._cond.wait()
                    continue
                remaining = self._deadline - self._clock()
                if remaining > 0:
                    self._cond.wait(remaining)
                    continue
                batch = frozenset(self._pending)
                self._pending.clear()
                return batch
            return None

    def _run(self) -> None:
        while True:
            batch = self._next_batch()
            if batch is None:
                return
            self._sequence += 1
            notification = ChangeNotification(paths=batch, sequence=self._sequence)
            try:
                self._emit(notification)
            except Exception:
                logger.exception("Change notification %d could not be delivered", notification.sequence)


class _ChangeHandler(FileSystemEventHandler):
    """Forwards relevant watchdog events to the debouncer."""

    def __init__(self, push: Callable[[Path], None]):
        super().__init__()
        self._push = push

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _IGNORED_EVENT_TYPES:
            return
        if event.is_directory and event.event_type == "modified":
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if not raw:
                continue
            path = Path(os.fsdecode(raw))
            if is_ignored_name(path.name):
                continue
            self._push(path)


class Watcher:
    """Watches directories and calls ``notify`` with debounced changes.

    Attributes:
        paths: Directories watched recursively.
        delay: Debounce window in seconds.
        use_polling: Use watchdog's PollingObserver instead of native events.
    """

    def __init__(
        self,
        paths: Iterable[Path],
        notify: Callable[[ChangeNotification], None],
        delay: float = 0.25,
        use_polling: bool = False,
        check_interval: float = 1.0,
        retry_initial: float = 0.5,
        retry_max: float = 30.0,
    ):
        self.paths = tuple(Path(p) for p in paths)
        self.delay = delay
        self.use_polling = use_polling
        self._check_interval = check_interval
        self._retry_initial = retry_initial
        self._retry_max = retry_max
        self._debouncer = Debouncer(delay, notify)
        self._handler = _ChangeHandler(self._debouncer.push)
        self._observer = None
        self._observer_lock = threading.Lock()
        self._stop = threading.Event()
        self._supervisor: threading.Thread | None = None
        self._missing: set[Path] = set()
        self._started = False

    def start(self) -> None:
        """Start watching.

        Raises:
            OSError: If the initial watches cannot be established.
        """
        if self._started:
            return
        self._debouncer.start()
        self._start_observer()
        self._supervisor = threading.Thread(
            target=self._supervise, name="brog-watch-supervisor", daemon=True
        )
        self._supervisor.start()
        self._started = True
        logger.info("Watching %s", ", ".join(str(p) for p in self.paths))

    def stop(self, timeout: float = 5.0) -> None:
        """Stop watching. Safe to call more than once."""
        self._stop.set()
        if self._supervisor is not None:
            self._supervisor.join(timeout)
            self._supervisor = None
        self._stop_observer(timeout)
        self._debouncer.stop(timeout)

    def _new_observer(self):
        return PollingObserver() if self.use_polling else Observer()

    def _start_observer(self) -> None:
        observer = self._new_observer()
        for path in self.paths:
            if path.is_dir():
                observer.schedule(self._handler, str(path), recursive=True)
        observer.start()
        with self._observer_lock:
            self._observer = observer

    def _stop_observer(self, timeout: float = 5.0) -> None:
        with self._observer_lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout)

    def _restart_observer(self) -> None:
        self._stop_observer()
        self._start_observer()

    def _observer_alive(self) -> bool:
        with self._observer_lock:
            return self._observer is not None and self._observer.is_alive()

    def _check(self) -> WatchError | None:
        """Look for lost or recovered directories; return the current problem."""
        missing = {p for p in self.paths if not p.is_dir()}
        for path in sorted(missing - self._missing):
            logger.warning("%s", WatchError(path, "watched directory disappeared"))
            # Let the rebuild notice the missing directory.
            self._debouncer.push(path)
        recovered = self._missing - missing
        self._missing = missing
        if recovered or not self._observer_alive():
            self._restart_observer()
            for path in sorted(recovered):
                logger.info("Watch re-established on %s", path)
                self._debouncer.push(path)
        if missing:
            first = sorted(missing)[0]
            return WatchError(first, "watched directory is missing")
        return None

    def _supervise(self) -> None:
        delay = self._retry_initial
        wait = self._check_interval
        while not self._stop.wait(wait):
            try:
                problem = self._check()
            except Exception as exc:
                problem = WatchError(self.paths[0], f"cannot re-establish watch: {exc}")
                logger.warning("%s; retrying in %.1fs", problem, delay)
            if problem is None:
                delay = self._retry_initial
                wait = self._check_interval
            else:
                wait = delay
                delay = min(delay * 2, self._retry_max)
