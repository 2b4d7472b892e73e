"""
Integration tests running the watcher module as its own process.
"""

import errno
import os
import signal
import subprocess
import sys
from pathlib import Path

import pytest

import ptywatch
from ptywatch.process.launcher import EXIT_LAUNCH_FAILED, read_exec_result, read_target_pid
from tests.helpers.process import Pipes, process_exists, wait_for

PACKAGE_ROOT = str(Path(ptywatch.__file__).resolve().parents[1])


def start_watcher(command, stdin, stdout=None, extra_args=(), pass_fds=()):
    """Start a watcher and return (process, launch errno or None)."""
    r, w = os.pipe()
    env = {**os.environ, "PYTHONPATH": PACKAGE_ROOT}
    try:
        proc = subprocess.Popen(
            [
                sys.executable,
                "-m",
                "ptywatch.process.watcher",
                "--result-fd",
                str(w),
                "--log-level",
                "warning",
                *extra_args,
                "--",
                *command,
            ],
            stdin=stdin,
            stdout=stdout,
            pass_fds=(w, *pass_fds),
            env=env,
        )
    finally:
        os.close(w)
    try:
        return proc, read_exec_result(r)
    finally:
        os.close(r)


@pytest.fixture
def pipes():
    p = Pipes.open()
    yield p
    p.close()


@pytest.mark.integration
class TestWatcherProcess:
    """Test the watcher's process-level contract."""

    def test_launch_failure_reported(self, pipes):
        proc, code = start_watcher(["/nonexistent/cmd"], stdin=pipes.in_r)

        assert code == errno.ENOENT
        assert proc.wait(timeout=10) == EXIT_LAUNCH_FAILED

    def test_exits_after_end_of_input_and_target_exit(self):
        proc, code = start_watcher(["/bin/sh", "-c", "exit 0"], stdin=subprocess.DEVNULL)

        assert code is None
        assert proc.wait(timeout=10) == 0

    def test_abort_signal_ends_watcher(self, pipes):
        proc, code = start_watcher(["/bin/sleep", "60"], stdin=pipes.in_r)
        assert code is None

        proc.send_signal(signal.SIGTERM)

        assert proc.wait(timeout=10) == 0

    def test_custom_abort_signal(self, pipes):
        proc, _ = start_watcher(
            ["/bin/sleep", "60"],
            stdin=pipes.in_r,
            extra_args=["--abort-signal", "USR1", "--grace", "500ms"],
        )

        proc.send_signal(signal.SIGUSR1)

        assert proc.wait(timeout=10) == 0

    @pytest.mark.parametrize(
        "sig", [signal.SIGINT, signal.SIGHUP, signal.SIGTSTP, signal.SIGUSR2]
    )
    def test_other_signals_ignored(self, pipes, sig):
        proc, _ = start_watcher(["/bin/sleep", "60"], stdin=pipes.in_r)
        try:
            proc.send_signal(sig)

            # Still alive and still responsive to the abort signal
            assert not wait_for(lambda: proc.poll() is not None, timeout=0.5)
        finally:
            proc.send_signal(signal.SIGTERM)
            proc.wait(timeout=10)

        assert proc.returncode == 0

    def test_input_forwarded_through_terminal(self, pipes):
        proc, _ = start_watcher(["/bin/cat"], stdin=pipes.in_r, stdout=pipes.out_w)
        try:
            pipes.send(b"through the pty\n")

            assert pipes.read_until(b"pty\n") == b"through the pty\n"
        finally:
            proc.send_signal(signal.SIGTERM)
            proc.wait(timeout=10)

    def test_target_sees_a_terminal(self, pipes):
        proc, _ = start_watcher(
            ["/bin/sh", "-c", "test -t 0 && echo tty || echo notty"],
            stdin=pipes.in_r,
            stdout=pipes.out_w,
        )
        try:
            assert pipes.read_until(b"tty\n") == b"tty\n"
        finally:
            proc.send_signal(signal.SIGTERM)
            proc.wait(timeout=10)

    def test_target_pid_reported(self, pipes):
        r, w = os.pipe()
        try:
            proc, code = start_watcher(
                ["/bin/sleep", "60"],
                stdin=pipes.in_r,
                extra_args=("--pid-fd", str(w)),
                pass_fds=(w,),
            )
        finally:
            os.close(w)
        try:
            target = read_target_pid(r)
        finally:
            os.close(r)
        assert code is None
        assert target is not None and process_exists(target)

        proc.send_signal(signal.SIGTERM)

        assert proc.wait(timeout=10) == 0
        assert wait_for(lambda: not process_exists(target))
