"""
Exec launcher and the launch-result back-channel.

The target command is started two process levels below the driver: driver
-> watcher -> target. ``subprocess.Popen`` already turns an exec-time failure
in the target into an ``OSError`` inside the watcher, but the driver has no
such channel to the watcher. The watcher therefore forwards the outcome
through a one-shot pipe:

- the pipe is closed without a single byte written: the command was executed
- the pipe carries the decimal errno, then is closed: exec failed

The driver reads until end-of-file, which makes launch failures observable
synchronously from ``Supervisor.spawn``.

A second one-shot pipe carries the pid of a successfully launched command,
so the driver can still kill it if the watcher itself stops responding.
"""

from __future__ import annotations

import errno
import os
import signal
import subprocess
from collections.abc import Mapping, Sequence

from ptywatch.exceptions import SupervisorError

# Exit status of a watcher whose target could not be executed (shell convention)
EXIT_LAUNCH_FAILED = 127

# Upper bound for a well-formed result ("-2147483648" would be 11 bytes)
_MAX_RESULT_BYTES = 16

_UNCATCHABLE = frozenset({signal.SIGKILL, signal.SIGSTOP})


def _restore_default_signals() -> None:
    """
    Runs in the forked child right before exec.

    Ignored dispositions survive exec. The driver ignores SIGINT and the
    watcher ignores nearly everything, so without this the target would
    inherit both, and could neither be interrupted nor hung up.
    """
    for sig in signal.valid_signals():
        if sig in _UNCATCHABLE:
            continue
        try:
            signal.signal(sig, signal.SIG_DFL)
        except (OSError, ValueError):
            # Signals reserved by the C library cannot be changed
            continue
    signal.pthread_sigmask(signal.SIG_SETMASK, set())


def launch(
    argv: Sequence[str],
    stdin: int,
    env: Mapping[str, str] | None = None,
) -> subprocess.Popen[bytes]:
    """
    Execute the target command with stdin attached to the given terminal.

    stdout and stderr are inherited from the caller. The target stays in the
    caller's process group, so job-control keys typed at the real terminal
    still reach it directly.

    Args:
        argv: Command and arguments; argv[0] is looked up on PATH
        stdin: Descriptor to use as the command's standard input
        env: Environment for the command (default: inherit)

    Raises:
        OSError: If the command could not be executed (errno set)
    """
    return subprocess.Popen(
        list(argv),
        stdin=stdin,
        env=env,
        close_fds=True,
        preexec_fn=_restore_default_signals,
    )


def launch_errno(exc: BaseException) -> int:
    """Errno to report for a failed launch; EIO when the error carries none."""
    code = getattr(exc, "errno", None)
    return code if isinstance(code, int) and code > 0 else errno.EIO


def write_exec_result(fd: int, code: int) -> None:
    """Report a failed launch through the result pipe (the caller closes fd)."""
    data = str(code).encode("ascii")
    while data:
        written = os.write(fd, data)
        data = data[written:]


def _read_decimal(fd: int, what: str) -> int | None:
    """Read to end-of-file; None for an empty pipe, else the decimal number it carried."""
    data = b""
    while True:
        chunk = os.read(fd, _MAX_RESULT_BYTES)
        if not chunk:
            break
        data += chunk
        if len(data) > _MAX_RESULT_BYTES:
            raise SupervisorError(f"malformed {what}", data=data[:32])

    if not data:
        return None
    try:
        return int(data.decode("ascii"))
    except (UnicodeDecodeError, ValueError):
        raise SupervisorError(f"malformed {what}", data=data) from None


def read_exec_result(fd: int) -> int | None:
    """
    Block until the launch outcome is known.

    Args:
        fd: Read end of the result pipe; the caller must have closed its own
            copy of the write end, or this never sees end-of-file

    Returns:
        None if the command was executed, otherwise the errno of the failure

    Raises:
        SupervisorError: If the pipe carried something other than an errno
    """
    return _read_decimal(fd, "launch result")


def write_target_pid(fd: int, pid: int) -> None:
    """Tell the supervisor which process runs the command, then close fd."""
    try:
        write_exec_result(fd, pid)
    finally:
        os.close(fd)


def read_target_pid(fd: int) -> int | None:
    """
    Pid of the launched command, read after a successful launch result.

    The watcher writes and closes the pid pipe before it closes the result
    pipe, so by then this never blocks. None if the watcher sent nothing.
    """
    return _read_decimal(fd, "command pid")
