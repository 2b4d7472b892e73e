"""
Directory change monitor.

Watches a directory tree with watchdog and turns filesystem events into a
stream of changed paths the control loop can wait on. Editor swap files,
VCS metadata and other noise are filtered with fnmatch-style patterns.
"""

from __future__ import annotations

import fnmatch
import os
import queue
import threading
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config.constants import DEFAULT_IGNORE_PATTERNS
from .exceptions import MonitorError
from .log import Logger

# Events that mean content changed; opened/closed are not
_CHANGE_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}
)


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, monitor: ChangeMonitor) -> None:
        super().__init__()
        self._monitor = monitor

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _CHANGE_EVENTS:
            return
        # A directory's mtime changes with its entries, which are reported anyway
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            return
        self._monitor.notify(os.fsdecode(event.src_path))
        dest = getattr(event, "dest_path", "")
        if dest:
            self._monitor.notify(os.fsdecode(dest))


class ChangeMonitor:
    """
    Watches a directory tree recursively and queues changed paths.

    Example:
        >>> monitor = ChangeMonitor(lg, ".", ignore=[".git", "*.swp"])
        >>> monitor.start()
        >>> path = monitor.wait_for_next_change()
        >>> monitor.wait_for_quiet(0.1)
        >>> monitor.stop()
    """

    def __init__(
        self,
        lg: Logger,
        root: str | Path,
        ignore: Iterable[str] = DEFAULT_IGNORE_PATTERNS,
    ) -> None:
        """
        Args:
            lg: Logger for the monitor's own diagnostics
            root: Directory to watch, including all subdirectories
            ignore: fnmatch patterns; a path is ignored if any component matches
        """
        self._lg = lg
        self._root = Path(root).resolve()
        self._ignore = tuple(ignore)
        self._changes: queue.Queue[Path] = queue.Queue()
        self._lock = threading.RLock()
        self._observer: Any = None

    @property
    def root(self) -> Path:
        return self._root

    @property
    def ignore(self) -> tuple[str, ...]:
        return self._ignore

    def start(self) -> None:
        """
        Start watching.

        Raises:
            MonitorError: If the root is not a directory or cannot be watched
        """
        with self._lock:
            if self._observer is not None:
                return
            if not self._root.is_dir():
                raise MonitorError("not a directory", root=str(self._root))

            observer = Observer()
            try:
                observer.schedule(_ChangeHandler(self), str(self._root), recursive=True)
                observer.start()
            except OSError as e:
                raise MonitorError(
                    "cannot watch directory", root=str(self._root), error=e
                ) from e
            self._observer = observer
            self._lg.debug(
                "watching", extra={"root": str(self._root), "ignore": list(self._ignore)}
            )

    def stop(self) -> None:
        """Stop watching; queued changes are kept."""
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5.0)
        self._lg.trace("stopped watching", extra={"root": str(self._root)})

    def is_running(self) -> bool:
        with self._lock:
            return self._observer is not None and self._observer.is_alive()

    def is_ignored(self, path: str | Path) -> bool:
        """Whether any component of path below the root matches an ignore pattern."""
        path = Path(path)
        try:
            parts = path.relative_to(self._root).parts
        except ValueError:
            parts = path.parts
        return any(
            fnmatch.fnmatch(part, pattern) for part in parts for pattern in self._ignore
        )

    def notify(self, path: str | Path) -> bool:
        """
        Record a change to path unless it is ignored.

        Called from the observer thread; safe to call from anywhere.

        Returns:
            True if the change was queued
        """
        if self.is_ignored(path):
            self._lg.trace("ignored change", extra={"path": str(path)})
            return False
        self._lg.trace("change", extra={"path": str(path)})
        self._changes.put(Path(path))
        return True

    def wait_for_next_change(self, timeout: float | None = None) -> Path | None:
        """
        Block until a change is queued.

        Returns:
            The changed path, or None if timeout expired first
        """
        try:
            return self._changes.get(timeout=timeout)
        except queue.Empty:
            return None

    def wait_until_quiet(self, secs: float) -> bool:
        """
        Wait up to secs for the tree to stay quiet.

        Returns:
            True if a change arrived early (it is consumed), False if the
            full interval passed without one
        """
        return self.wait_for_next_change(timeout=secs) is not None

    def wait_for_quiet(self, secs: float) -> int:
        """
        Absorb changes until none has arrived for secs.

        Returns:
            How many changes were absorbed
        """
        absorbed = 0
        start = time.monotonic()
        while self.wait_until_quiet(secs):
            absorbed += 1
        if absorbed:
            self._lg.trace(
                "quiet again",
                extra={"absorbed": absorbed, "after": time.monotonic() - start},
            )
        return absorbed

    def drain(self) -> int:
        """Discard all queued changes and return how many there were."""
        count = 0
        while True:
            try:
                self._changes.get_nowait()
            except queue.Empty:
                return count
            count += 1

    def __enter__(self) -> ChangeMonitor:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()
