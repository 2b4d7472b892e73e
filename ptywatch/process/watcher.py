"""
Watcher process: owns the pseudo-terminal and mediates between the
supervisor and one generation of the target command.

The supervisor starts it as ``python -m ptywatch.process.watcher``. It then:

1. ignores all signals except the abort request, SIGCHLD and SIGWINCH,
   whose handlers only queue an event
2. opens a pseudo-terminal and launches the target with its stdin attached
   to the subordinate side
3. sends the target's pid to the supervisor, if asked to
4. closes every descriptor it does not need
5. reports the launch outcome to the supervisor
6. runs a single-threaded event loop that forwards its own stdin to the
   terminal master, mirrors window resizes and drives shutdown

Shutdown is graceful first: the master is closed, which fails any blocking
terminal read in the target, the target gets SIGHUP, and only if it is still
around after the grace period it is killed. The watcher exits once the
target has been reaped.

End of its own stdin does not end the watcher by itself. It passes the
terminal's EOF character on to the target and keeps running until the
target has exited or an abort request arrives. A target that ignores EOF
therefore keeps its watcher alive.
"""

from __future__ import annotations

import argparse
import collections
import enum
import errno
import os
import selectors
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Sequence
from types import FrameType

from ptywatch.config import parse_duration, parse_signal
from ptywatch.exceptions import ConfigError
from ptywatch.log import LogConfig, Logger, LoggerFactory

from . import fds, terminal
from .launcher import (
    EXIT_LAUNCH_FAILED,
    launch,
    launch_errno,
    write_exec_result,
    write_target_pid,
)

DEFAULT_GRACE_SECS = 2.0
DEFAULT_CHUNK_SIZE = 1024

# Distinct from the target's own statuses and from EXIT_LAUNCH_FAILED
EXIT_WATCHER_FAULT = 70  # EX_SOFTWARE

_UNCATCHABLE = frozenset({signal.SIGKILL, signal.SIGSTOP})

# Ignoring these would turn a crash into a busy loop
_FAULT_SIGNALS = frozenset({signal.SIGSEGV, signal.SIGBUS, signal.SIGFPE, signal.SIGILL})


class WatcherState(enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    ABORTING = "aborting"
    DONE = "done"


class WatcherEvent(enum.Enum):
    ABORT = "abort"
    CHILD_EXITED = "child-exited"
    RESIZED = "resized"


def _make_selector() -> selectors.BaseSelector:
    # epoll refuses regular files and /dev/null, both valid as stdin; poll
    # accepts them, except on macOS where poll() does not work on terminals
    if sys.platform != "darwin" and hasattr(selectors, "PollSelector"):
        return selectors.PollSelector()
    return selectors.SelectSelector()


class Watcher:
    """
    State machine for one watcher generation.

    States move STARTING -> RUNNING -> ABORTING -> DONE. RUNNING can also
    go straight to DONE: once stdin has reached end-of-file, the watcher is
    done as soon as the target exits. Events are queued by signal handlers
    and dispatched by the event loop, so no work ever runs inside a handler.
    """

    def __init__(
        self,
        lg: Logger,
        argv: Sequence[str],
        result_fd: int,
        pid_fd: int | None = None,
        abort_signal: signal.Signals = signal.SIGTERM,
        grace_secs: float = DEFAULT_GRACE_SECS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        stdin_fd: int = 0,
    ) -> None:
        """
        Args:
            lg: Logger for watcher diagnostics (stderr)
            argv: Target command and arguments
            result_fd: Write end of the launch-result pipe
            pid_fd: Write end of the pipe that receives the command's pid
            abort_signal: Signal the supervisor sends to request shutdown
            grace_secs: How long the target may take to exit after SIGHUP
            chunk_size: Maximum bytes read from stdin at a time
            stdin_fd: Input forwarded to the target
        """
        if not argv:
            raise ValueError("no command given")
        if abort_signal in (signal.SIGCHLD, signal.SIGWINCH) or abort_signal in _UNCATCHABLE:
            raise ValueError(f"{signal.Signals(abort_signal).name} cannot request abort")

        self._lg = lg
        self._argv = list(argv)
        self._result_fd: int | None = result_fd
        self._pid_fd: int | None = pid_fd
        self._abort_signal = signal.Signals(abort_signal)
        self._grace_secs = grace_secs
        self._chunk_size = chunk_size
        self._stdin_fd = stdin_fd

        self._state = WatcherState.STARTING
        self._events: collections.deque[WatcherEvent] = collections.deque()
        self._child: subprocess.Popen[bytes] | None = None
        self._child_pid: int | None = None
        self._master: int | None = None
        self._selector: selectors.BaseSelector | None = None
        self._wakeup: tuple[int, int] | None = None
        self._pending = bytearray()
        self._input_open = True
        self._deadline: float | None = None

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def child_pid(self) -> int | None:
        """Pid of the running target, or None once it has been reaped."""
        return self._child_pid

    @property
    def returncode(self) -> int | None:
        """Exit code of the target once reaped (negative: killed by that signal)."""
        return self._child.returncode if self._child is not None else None

    def run(self) -> int:
        """
        Run the watcher until the target has been reaped.

        Returns:
            Exit status for the watcher process
        """
        try:
            if not self._start():
                return EXIT_LAUNCH_FAILED
            self._loop()
        except Exception:
            self._fail()
            raise
        finally:
            self._close()
        return 0

    def _fail(self) -> None:
        """
        Best-effort cleanup after an unexpected fault.

        Kills the target so it is not orphaned and, if the supervisor is still
        waiting for the launch outcome, reports EIO instead of letting the
        closing pipe read as success.
        """
        if self._child_pid is not None:
            try:
                os.kill(self._child_pid, signal.SIGKILL)
            except OSError:
                pass
        if self._result_fd is not None:
            try:
                write_exec_result(self._result_fd, errno.EIO)
            except OSError:
                pass

    # -- start-up ----------------------------------------------------------

    def _start(self) -> bool:
        # Handlers go in before the launch, so an abort request that arrives
        # while the command starts is queued instead of killing the watcher
        # and orphaning the command
        self._selector = _make_selector()
        self._open_wakeup()
        self._install_signal_table()

        master, subordinate = terminal.open_pair()
        self._master = master
        try:
            terminal.disable_echo(subordinate)
            self._sync_window_size()
            try:
                self._child = launch(self._argv, stdin=subordinate)
            except (OSError, subprocess.SubprocessError) as e:
                code = launch_errno(e)
                self._lg.debug(
                    "launch failed", extra={"command": self._argv[0], "errno": code}
                )
                self._report_launch(code)
                return False
        finally:
            os.close(subordinate)

        self._child_pid = self._child.pid
        if self._pid_fd is not None:
            pid_fd, self._pid_fd = self._pid_fd, None
            write_target_pid(pid_fd, self._child_pid)

        assert self._wakeup is not None
        keep = {0, 1, 2, self._stdin_fd, master, *self._wakeup}
        if self._result_fd is not None:
            keep.add(self._result_fd)
        closed = fds.close_fds(keep)
        if closed:
            self._lg.trace("closed inherited descriptors", extra={"fds": closed})

        # A fast target may have exited before SIGCHLD had a handler
        self._events.append(WatcherEvent.CHILD_EXITED)

        self._state = WatcherState.RUNNING
        os.set_blocking(master, False)
        self._update_interest()
        self._report_launch(None)
        self._lg.debug(
            "command started",
            extra={"pid": self._child_pid, "command": self._argv[0]},
        )
        return True

    def _report_launch(self, code: int | None) -> None:
        if self._result_fd is None:
            return
        try:
            if code is not None:
                write_exec_result(self._result_fd, code)
        finally:
            os.close(self._result_fd)
            self._result_fd = None

    def _open_wakeup(self) -> None:
        assert self._selector is not None
        rfd, wfd = os.pipe()
        os.set_blocking(rfd, False)
        os.set_blocking(wfd, False)
        self._wakeup = (rfd, wfd)
        self._selector.register(rfd, selectors.EVENT_READ, self._drain_wakeup)

    def _install_signal_table(self) -> None:
        assert self._wakeup is not None
        handled = {
            self._abort_signal: WatcherEvent.ABORT,
            signal.SIGCHLD: WatcherEvent.CHILD_EXITED,
            signal.SIGWINCH: WatcherEvent.RESIZED,
        }
        for sig in signal.valid_signals():
            if sig in _UNCATCHABLE or sig in _FAULT_SIGNALS or sig in handled:
                continue
            try:
                signal.signal(sig, signal.SIG_IGN)
            except (OSError, ValueError):
                # Signals reserved by the C library cannot be changed
                continue
        for sig, event in handled.items():
            signal.signal(sig, self._queue(event))
        signal.set_wakeup_fd(self._wakeup[1], warn_on_full_buffer=False)

    def _queue(self, event: WatcherEvent) -> Callable[[int, FrameType | None], None]:
        def handler(signum: int, frame: FrameType | None) -> None:
            self._events.append(event)

        return handler

    # -- event loop --------------------------------------------------------

    def _loop(self) -> None:
        assert self._selector is not None
        while self._state is not WatcherState.DONE:
            self._dispatch_events()
            if self._state is WatcherState.DONE:
                break
            if self._deadline is not None and time.monotonic() >= self._deadline:
                self._force_kill()
                continue
            for key, mask in self._selector.select(self._timeout()):
                key.data(mask)

    def _timeout(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def _dispatch_events(self) -> None:
        while self._events:
            event = self._events.popleft()
            if event is WatcherEvent.ABORT:
                self._on_abort()
            elif event is WatcherEvent.CHILD_EXITED:
                self._on_child_exited()
            elif event is WatcherEvent.RESIZED:
                self._on_resize()

    def _drain_wakeup(self, mask: int) -> None:
        assert self._wakeup is not None
        while True:
            try:
                if not os.read(self._wakeup[0], 512):
                    return
            except BlockingIOError:
                return

    # -- input forwarding --------------------------------------------------

    def _on_input_ready(self, mask: int) -> None:
        try:
            data = os.read(self._stdin_fd, self._chunk_size)
        except BlockingIOError:
            return
        except OSError as e:
            # EIO: the real terminal hung up, or we are a background job
            if e.errno != errno.EIO:
                raise
            data = b""

        if not data:
            self._on_end_of_input()
            return

        self._lg.trace("forwarding input", extra={"bytes": len(data)})
        self._pending += data
        self._flush_pending()

    def _on_master_writable(self, mask: int) -> None:
        self._flush_pending()

    def _flush_pending(self) -> None:
        while self._pending and self._master is not None:
            try:
                written = os.write(self._master, self._pending)
            except BlockingIOError:
                break
            except OSError as e:
                if e.errno != errno.EIO:
                    raise
                self._lg.debug(
                    "terminal closed, dropping input", extra={"bytes": len(self._pending)}
                )
                self._pending.clear()
                break
            del self._pending[:written]
        self._update_interest()

    def _on_end_of_input(self) -> None:
        self._lg.debug("end of input")
        self._input_open = False
        if self._master is not None:
            self._pending += terminal.eof_byte(self._master)
            self._flush_pending()
        else:
            self._update_interest()
        if self._child_pid is None and self._state is WatcherState.RUNNING:
            self._finish()

    def _update_interest(self) -> None:
        """Read stdin only while nothing is pending, write the master only when something is."""
        running = self._state is WatcherState.RUNNING
        self._set_interest(
            self._master,
            selectors.EVENT_WRITE,
            self._on_master_writable,
            bool(self._pending),
        )
        self._set_interest(
            self._stdin_fd,
            selectors.EVENT_READ,
            self._on_input_ready,
            running and self._input_open and not self._pending,
        )

    def _set_interest(
        self,
        fd: int | None,
        events: int,
        callback: Callable[[int], None],
        wanted: bool,
    ) -> None:
        if self._selector is None or fd is None:
            return
        registered = fd in self._selector.get_map()
        if wanted and not registered:
            self._selector.register(fd, events, callback)
        elif not wanted and registered:
            self._selector.unregister(fd)

    # -- events ------------------------------------------------------------

    def _on_abort(self) -> None:
        if self._state is not WatcherState.RUNNING:
            self._lg.trace("abort already in progress", extra={"state": self._state.value})
            return

        self._state = WatcherState.ABORTING
        self._input_open = False
        self._pending.clear()
        self._update_interest()
        self._close_master()

        if self._child_pid is None:
            self._finish()
            return

        self._lg.debug("hanging up command", extra={"pid": self._child_pid})
        self._send(signal.SIGHUP)
        self._deadline = time.monotonic() + self._grace_secs

    def _on_child_exited(self) -> None:
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                break
            if pid == 0:
                break
            if pid != self._child_pid:
                self._lg.trace("reaped unknown child", extra={"pid": pid})
                continue

            code = os.waitstatus_to_exitcode(status)
            if self._child is not None:
                self._child.returncode = code
            self._child_pid = None
            if self._state is WatcherState.RUNNING:
                self._lg.info("command exited", extra={"pid": pid, "code": code})
            else:
                self._lg.debug("command exited", extra={"pid": pid, "code": code})

        if self._child_pid is None:
            if self._state is WatcherState.ABORTING or (
                self._state is WatcherState.RUNNING and not self._input_open
            ):
                self._finish()

    def _on_resize(self) -> None:
        if self._master is None:
            return
        if self._sync_window_size():
            self._lg.trace("window resized")

    def _sync_window_size(self) -> bool:
        if self._master is None:
            return False
        try:
            rows, cols = terminal.copy_window_size(self._stdin_fd, self._master)
        except OSError as e:
            self._lg.debug("cannot copy window size", extra={"exception": e})
            return False
        self._lg.trace("window size", extra={"rows": rows, "cols": cols})
        return True

    def _force_kill(self) -> None:
        self._deadline = None
        if self._child_pid is None:
            return
        self._lg.warning(
            "command ignored hang-up, killing",
            extra={"pid": self._child_pid, "after": float(self._grace_secs)},
        )
        self._send(signal.SIGKILL)

    def _send(self, sig: signal.Signals) -> None:
        if self._child_pid is None:
            return
        try:
            os.kill(self._child_pid, sig)
        except ProcessLookupError:
            pass

    def _finish(self) -> None:
        self._state = WatcherState.DONE
        self._deadline = None

    # -- teardown ----------------------------------------------------------

    def _close_master(self) -> None:
        if self._master is None:
            return
        self._set_interest(self._master, 0, self._on_master_writable, False)
        os.close(self._master)
        self._master = None

    def _close(self) -> None:
        if self._wakeup is not None:
            signal.set_wakeup_fd(-1)
        if self._selector is not None:
            self._selector.close()
            self._selector = None
        if self._wakeup is not None:
            for fd in self._wakeup:
                os.close(fd)
            self._wakeup = None
        self._close_master()
        if self._pid_fd is not None:
            os.close(self._pid_fd)
            self._pid_fd = None
        if self._result_fd is not None:
            os.close(self._result_fd)
            self._result_fd = None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m ptywatch.process.watcher",
        description="Run one command generation on a pseudo-terminal (internal).",
    )
    parser.add_argument("--result-fd", type=int, required=True)
    parser.add_argument("--pid-fd", type=int)
    parser.add_argument("--abort-signal", default="SIGTERM")
    parser.add_argument("--grace", default=str(DEFAULT_GRACE_SECS))
    parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    parser.add_argument("--log-level", default="info")
    parser.add_argument("--colors", action="store_true")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the watcher process; ``--`` separates the command."""
    parser = _build_parser()
    args_list = list(sys.argv[1:] if argv is None else argv)
    if "--" not in args_list:
        parser.error("missing '--' before the command")
    split = args_list.index("--")
    command = args_list[split + 1 :]
    args = parser.parse_args(args_list[:split])
    if not command:
        parser.error("no command given")

    try:
        config = LogConfig.from_params(args.log_level, colors=args.colors)
        lg = LoggerFactory.derive(LoggerFactory.create_root(config), "watcher")
        watcher = Watcher(
            lg,
            command,
            result_fd=args.result_fd,
            pid_fd=args.pid_fd,
            abort_signal=parse_signal(args.abort_signal),
            grace_secs=parse_duration(args.grace),
            chunk_size=args.chunk_size,
        )
    except (ConfigError, ValueError) as e:
        # Nothing was launched; the supervisor must not read a closed pipe as success
        try:
            write_exec_result(args.result_fd, errno.EINVAL)
        except OSError:
            pass
        parser.error(str(e))

    try:
        return watcher.run()
    except Exception as e:
        lg.critical("watcher fault", extra={"exception": e}, exc_info=True)
        os._exit(EXIT_WATCHER_FAULT)


if __name__ == "__main__":
    sys.exit(main())
