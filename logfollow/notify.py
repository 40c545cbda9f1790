"""Backoff waiters: plain sleeps, or sleeps cut short by watchdog file events.

Polling is always the fallback. A ``ChangeNotifier`` only shortens a wait
when the filesystem reports a change to the followed path; every wait is
still bounded by the requested duration.
"""

import logging
import os
import threading
import time

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class PollWaiter:
    """Default waiter: a fixed sleep."""

    def __init__(self, sleep=time.sleep):
        self._sleep = sleep

    def wait(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def close(self) -> None:
        pass


class ChangeNotifier(FileSystemEventHandler):
    """Wakes a waiting session when the followed file is modified, created or moved onto."""

    def __init__(self, path: str, observer_factory=Observer):
        super().__init__()
        self._path = os.path.abspath(path)
        self._changed = threading.Event()
        self._observer = observer_factory()
        self._started = False

    def start(self) -> None:
        watch_dir = os.path.dirname(self._path)
        try:
            self._observer.schedule(self, watch_dir, recursive=False)
            self._observer.start()
        except OSError as e:
            # Network filesystems and exhausted watch limits end up here.
            logger.warning("File notifications unavailable for %s, polling only: %s", watch_dir, e)
            return
        self._started = True
        logger.debug("Watching directory %s for changes to %s", watch_dir, self._path)

    def wait(self, seconds: float) -> None:
        if seconds > 0 and self._changed.wait(seconds):
            logger.debug("Woken early by change to %s", self._path)
        self._changed.clear()

    def close(self) -> None:
        if self._started:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._started = False

    def _matches(self, event) -> bool:
        if event.is_directory:
            return False
        paths = [event.src_path, getattr(event, "dest_path", "")]
        return any(p and os.path.abspath(p) == self._path for p in paths)

    def on_modified(self, event):
        if self._matches(event):
            self._changed.set()

    def on_created(self, event):
        if self._matches(event):
            self._changed.set()

    def on_moved(self, event):
        if self._matches(event):
            self._changed.set()
