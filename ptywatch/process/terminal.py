"""
Pseudo-terminal helpers used by the watcher process.
"""

from __future__ import annotations

import fcntl
import os
import struct
import termios

# struct winsize: rows, cols, xpixel, ypixel
_WINSIZE_FORMAT = "HHHH"
_WINSIZE_BUF = bytes(struct.calcsize(_WINSIZE_FORMAT))

_DEFAULT_EOF = b"\x04"


def open_pair() -> tuple[int, int]:
    """
    Allocate a pseudo-terminal pair.

    Returns:
        (master, subordinate) descriptors, both non-inheritable
    """
    master, subordinate = os.openpty()
    return master, subordinate


def disable_echo(fd: int) -> None:
    """
    Turn off input echo on a terminal.

    The real terminal the user types into already echoes; a second echo from
    the pseudo-terminal would only pile up unread on the master side.
    """
    attrs = termios.tcgetattr(fd)
    attrs[3] &= ~(termios.ECHO | termios.ECHONL)
    termios.tcsetattr(fd, termios.TCSANOW, attrs)


def get_window_size(fd: int) -> tuple[int, int, int, int]:
    """Read (rows, cols, xpixel, ypixel) from a terminal."""
    buf = fcntl.ioctl(fd, termios.TIOCGWINSZ, _WINSIZE_BUF)
    rows, cols, xpixel, ypixel = struct.unpack(_WINSIZE_FORMAT, buf)
    return rows, cols, xpixel, ypixel


def set_window_size(fd: int, rows: int, cols: int, xpixel: int = 0, ypixel: int = 0) -> None:
    """Set the window size of a terminal; the foreground job gets SIGWINCH."""
    buf = struct.pack(_WINSIZE_FORMAT, rows, cols, xpixel, ypixel)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, buf)


def copy_window_size(src: int, dst: int) -> tuple[int, int]:
    """
    Copy the window size of terminal src to terminal dst.

    Returns:
        The (rows, cols) that were copied

    Raises:
        OSError: If src is not a terminal (ENOTTY) or dst is closed
    """
    rows, cols, xpixel, ypixel = get_window_size(src)
    set_window_size(dst, rows, cols, xpixel, ypixel)
    return rows, cols


def eof_byte(fd: int) -> bytes:
    """The terminal's end-of-file character (VEOF), normally Ctrl-D."""
    try:
        cc = termios.tcgetattr(fd)[6]
    except termios.error:
        return _DEFAULT_EOF
    value = cc[termios.VEOF]
    if isinstance(value, int):
        return bytes([value])
    return value or _DEFAULT_EOF
