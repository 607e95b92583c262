"""
Watches the mods root and reports bursts of filesystem changes as one event.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from modshelf.models.config import DEFAULT_DEBOUNCE_MS
from modshelf.utils.naming import TEMP_MARKER

log = logging.getLogger(__name__)


class _ChangeHandler(FileSystemEventHandler):
    """Runs on the observer thread; only hands events over to the loop."""

    def __init__(self, watcher: "RepositoryWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in ("opened", "closed", "closed_no_write"):
            return
        if TEMP_MARKER in str(event.src_path):
            # Intermediate state of a two-phase rename; the final rename follows.
            return
        self._watcher.notify_threadsafe()


class RepositoryWatcher:
    """
    Recursive watchdog observer on the mods root with debouncing on the event
    loop: the callback receives the root path once the tree has been quiet for
    ``debounce_ms``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_change: Callable[[Path], None],
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ):
        self._loop = loop
        self._on_change = on_change
        self._delay = debounce_ms / 1000
        self._observer: Observer | None = None
        self._root: Path | None = None
        self._pending: asyncio.TimerHandle | None = None

    @property
    def root(self) -> Path | None:
        return self._root

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, root: Path) -> None:
        """Starts watching ``root``, replacing any earlier watch."""
        self.stop()
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._root = root
        log.info(f"Watching '{root}' for changes.")

    def stop(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=1.0)
            self._observer = None
            log.debug(f"Stopped watching '{self._root}'.")
        self._root = None

    def notify_threadsafe(self) -> None:
        self._loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
        self._pending = self._loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._pending = None
        if self._root is not None:
            log.debug(f"Change burst under '{self._root}'.")
            self._on_change(self._root)
