"""
Driver-side handle on the watcher process.

A Supervisor owns at most one watcher at a time. Spawning starts a watcher,
which launches the target command and reports back whether exec succeeded;
aborting asks the watcher to shut its generation down and waits until it has.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from ptywatch.exceptions import LaunchError, SupervisorStateError
from ptywatch.log import Logger

from .launcher import launch_errno, read_exec_result, read_target_pid
from .watcher import DEFAULT_CHUNK_SIZE, DEFAULT_GRACE_SECS

# Extra time the watcher gets on top of the grace period to reap and exit
ABORT_SLACK_SECS = 2.0

_WATCHER_MODULE = "ptywatch.process.watcher"

# Directory that contains the ptywatch package
_PACKAGE_ROOT = str(Path(__file__).resolve().parents[2])


class Supervisor:
    """
    Runs the target command through a watcher process, one generation at a time.

    Example:
        with Supervisor(lg) as sup:
            sup.spawn(["pytest", "-x"])
            ...
            sup.respawn(["pytest", "-x"])
    """

    def __init__(
        self,
        lg: Logger,
        *,
        abort_signal: signal.Signals = signal.SIGTERM,
        grace_secs: float = DEFAULT_GRACE_SECS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        log_level: str = "info",
        log_colors: bool = False,
        stdin: int | None = None,
        stdout: int | None = None,
        stderr: int | None = None,
    ) -> None:
        """
        Args:
            lg: Logger instance
            abort_signal: Signal used to ask the watcher to abort
            grace_secs: Grace period the watcher gives the target after hang-up
            chunk_size: Input chunk size for the watcher
            log_level: Log level passed on to watcher processes
            log_colors: Whether watcher processes may use colors
            stdin: Input the watcher forwards to the target (default: inherited)
            stdout: Output of watcher and target (default: inherited)
            stderr: Diagnostics of watcher and target (default: inherited)
        """
        self._lg = lg
        self._grace_secs = grace_secs
        self._abort_signal = signal.Signals(abort_signal)
        self._chunk_size = chunk_size
        self._log_level = log_level
        self._log_colors = log_colors
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr
        self._watcher: subprocess.Popen[bytes] | None = None
        self._target_pid: int | None = None

    @property
    def watcher_pid(self) -> int | None:
        """Pid of the recorded watcher, or None when there is none."""
        return self._watcher.pid if self._watcher is not None else None

    @property
    def target_pid(self) -> int | None:
        """Pid of the command the recorded watcher launched, if known."""
        return self._target_pid

    @property
    def running(self) -> bool:
        """Whether a watcher is recorded and has not exited yet."""
        return self._watcher is not None and self._watcher.poll() is None

    @property
    def grace_secs(self) -> float:
        return self._grace_secs

    def spawn(self, argv: Sequence[str]) -> int:
        """
        Start a watcher running argv and wait for the launch outcome.

        If the wait is interrupted (a quit signal raising KeyboardInterrupt),
        the half-started generation is aborted before the exception goes on.

        Returns:
            Pid of the new watcher

        Raises:
            SupervisorStateError: If a watcher is still recorded
            ValueError: If argv is empty
            LaunchError: If the command could not be executed; nothing is
                recorded in that case
        """
        if self._watcher is not None:
            raise SupervisorStateError(
                "watcher still running, abort it first", pid=self._watcher.pid
            )
        if not argv:
            raise ValueError("no command given")

        rfd, wfd = os.pipe()
        pid_rfd, pid_wfd = os.pipe()
        try:
            try:
                watcher = subprocess.Popen(
                    self._watcher_cmd(argv, wfd, pid_wfd),
                    stdin=self._stdin,
                    stdout=self._stdout,
                    stderr=self._stderr,
                    pass_fds=(wfd, pid_wfd),
                    env=self._watcher_env(),
                )
            except OSError as e:
                self._lg.error("cannot start watcher", extra={"exception": e})
                raise LaunchError(launch_errno(e), argv[0]) from e
            finally:
                # Our copies of the write ends must go, or the reads never see EOF
                os.close(wfd)
                os.close(pid_wfd)

            # Recorded before the wait, so abort() can always find it
            self._watcher = watcher
            try:
                code = read_exec_result(rfd)
                if code is None:
                    self._target_pid = read_target_pid(pid_rfd)
            except BaseException:
                self._lg.debug("interrupted while starting", extra={"pid": watcher.pid})
                self.abort()
                raise
        finally:
            os.close(rfd)
            os.close(pid_rfd)

        if code is not None:
            watcher.wait()
            self._watcher = None
            self._lg.debug(
                "launch failed",
                extra={"command": argv[0], "errno": code, "watcher": watcher.returncode},
            )
            raise LaunchError(code, argv[0])

        self._lg.debug(
            "watcher started",
            extra={"pid": watcher.pid, "command": argv[0], "target": self._target_pid},
        )
        return watcher.pid

    def abort(self) -> None:
        """
        Shut the current generation down and wait until the watcher is gone.

        A no-op when no watcher is recorded. The watcher gets the grace period
        plus some slack; if it is still alive after that, the command and
        then the watcher are killed.
        """
        watcher = self._watcher
        if watcher is None:
            return

        self._lg.debug("aborting watcher", extra={"pid": watcher.pid})
        self._signal_watcher(watcher)

        timeout = self._grace_secs + ABORT_SLACK_SECS
        try:
            watcher.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._lg.error(
                "watcher did not exit, killing",
                extra={"pid": watcher.pid, "target": self._target_pid, "after": timeout},
            )
            # The command first: while the watcher lives its pid cannot be reused
            self._kill_target()
            watcher.kill()
            watcher.wait()

        self._watcher = None
        self._target_pid = None
        self._lg.trace("watcher exited", extra={"pid": watcher.pid, "code": watcher.returncode})

    def respawn(self, argv: Sequence[str]) -> int:
        """Abort the current generation (if any) and spawn a new one."""
        self.abort()
        return self.spawn(argv)

    def close(self) -> None:
        self.abort()

    def __enter__(self) -> Supervisor:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __del__(self) -> None:
        # Ask for the usual hang-up and grace sequence; the watcher carries it
        # out on its own, so the finalizer never blocks
        watcher = getattr(self, "_watcher", None)
        if watcher is not None:
            self._signal_watcher(watcher)

    def _signal_watcher(self, watcher: subprocess.Popen[bytes]) -> None:
        if watcher.poll() is not None:
            return
        try:
            watcher.send_signal(self._abort_signal)
        except ProcessLookupError:
            pass

    def _kill_target(self) -> None:
        if self._target_pid is None:
            return
        try:
            os.kill(self._target_pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _watcher_cmd(self, argv: Sequence[str], result_fd: int, pid_fd: int) -> list[str]:
        cmd = [
            sys.executable,
            "-m",
            _WATCHER_MODULE,
            "--result-fd",
            str(result_fd),
            "--pid-fd",
            str(pid_fd),
            "--abort-signal",
            self._abort_signal.name,
            "--grace",
            repr(float(self._grace_secs)),
            "--chunk-size",
            str(self._chunk_size),
            "--log-level",
            self._log_level,
        ]
        if self._log_colors:
            cmd.append("--colors")
        cmd.append("--")
        cmd.extend(argv)
        return cmd

    def _watcher_env(self) -> Mapping[str, str]:
        env = dict(os.environ)
        path = env.get("PYTHONPATH")
        env["PYTHONPATH"] = _PACKAGE_ROOT + os.pathsep + path if path else _PACKAGE_ROOT
        return env
