"""
Process supervision: the driver-side Supervisor, the watcher process it
starts for each generation, and the terminal and descriptor helpers they use.
"""

from .launcher import EXIT_LAUNCH_FAILED
from .supervisor import ABORT_SLACK_SECS, Supervisor
from .watcher import EXIT_WATCHER_FAULT, Watcher, WatcherEvent, WatcherState

__all__ = [
    "ABORT_SLACK_SECS",
    "EXIT_LAUNCH_FAILED",
    "EXIT_WATCHER_FAULT",
    "Supervisor",
    "Watcher",
    "WatcherEvent",
    "WatcherState",
]
