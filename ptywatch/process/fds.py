"""
File descriptor hygiene.

A watcher lives for one generation only. Any descriptor it keeps open by
accident (an inherited pipe end, a stray log file) outlives the generation
and, for pipes, keeps the other side from ever seeing end-of-file. The
watcher therefore closes everything that is not on an explicit allow-list
right after it has launched the target command.
"""

from __future__ import annotations

import os
from collections.abc import Iterable

# Per-process descriptor tables, in order of preference
_FD_DIRS = ("/proc/self/fd", "/dev/fd")


def open_fds() -> set[int]:
    """
    Enumerate the descriptors currently open in this process.

    Uses the kernel's per-process descriptor directory when one is available
    and falls back to probing every descriptor up to the soft limit.
    """
    for fd_dir in _FD_DIRS:
        try:
            names = os.listdir(fd_dir)
        except OSError:
            continue
        # The listing itself used a descriptor that is closed again by now
        return {int(name) for name in names if name.isdigit() and _is_open(int(name))}

    return {fd for fd in range(_max_fd()) if _is_open(fd)}


def close_fds(keep: Iterable[int]) -> list[int]:
    """
    Close every open descriptor that is not in keep.

    Args:
        keep: Descriptors to leave open (standard streams must be listed too)

    Returns:
        The descriptors that were closed, in ascending order
    """
    allowed = set(keep)
    closed = []
    for fd in sorted(open_fds() - allowed):
        try:
            os.close(fd)
        except OSError:
            # Closed concurrently, e.g. by a finalizer of an object owning it
            continue
        closed.append(fd)
    return closed


def _is_open(fd: int) -> bool:
    try:
        os.fstat(fd)
    except OSError:
        return False
    return True


def _max_fd() -> int:
    try:
        limit = os.sysconf("SC_OPEN_MAX")
    except (ValueError, OSError):
        limit = -1
    return limit if limit > 0 else 1024
