"""
Tests for process/launcher.py.

Tests the exec launcher and the launch-result pipe protocol.
"""

import errno
import os
import signal
import subprocess
import sys

import pytest

from ptywatch.exceptions import SupervisorError
from ptywatch.process.launcher import (
    launch,
    launch_errno,
    read_exec_result,
    read_target_pid,
    write_exec_result,
    write_target_pid,
)


@pytest.fixture
def stdin_fd():
    fd = os.open(os.devnull, os.O_RDONLY)
    yield fd
    os.close(fd)


@pytest.mark.unit
class TestLaunch:
    """Test starting commands."""

    def test_exit_status(self, stdin_fd):
        proc = launch(["/bin/sh", "-c", "exit 3"], stdin=stdin_fd)

        assert proc.wait(timeout=10) == 3

    def test_missing_command(self, stdin_fd):
        with pytest.raises(OSError) as exc_info:
            launch(["/nonexistent/command"], stdin=stdin_fd)

        assert launch_errno(exc_info.value) == errno.ENOENT

    def test_ignored_signals_not_inherited(self, stdin_fd):
        script = (
            "import signal, sys; "
            "sys.exit(0 if signal.getsignal(signal.SIGUSR1) == signal.SIG_DFL else 1)"
        )
        previous = signal.signal(signal.SIGUSR1, signal.SIG_IGN)
        try:
            proc = launch([sys.executable, "-c", script], stdin=stdin_fd)
        finally:
            signal.signal(signal.SIGUSR1, previous)

        assert proc.wait(timeout=10) == 0

    def test_stdin_attached(self):
        r, w = os.pipe()
        try:
            proc = launch(["/bin/sh", "-c", "read line; test \"$line\" = ping"], stdin=r)
            os.write(w, b"ping\n")
        finally:
            os.close(r)
            os.close(w)

        assert proc.wait(timeout=10) == 0

    def test_env(self, stdin_fd):
        proc = launch(
            ["/bin/sh", "-c", 'test "$PTYWATCH_TEST_VALUE" = 42'],
            stdin=stdin_fd,
            env={**os.environ, "PTYWATCH_TEST_VALUE": "42"},
        )

        assert proc.wait(timeout=10) == 0


@pytest.mark.unit
class TestLaunchErrno:
    def test_errno_taken_from_error(self):
        assert launch_errno(PermissionError(errno.EACCES, "denied")) == errno.EACCES

    def test_missing_errno_is_eio(self):
        assert launch_errno(subprocess.SubprocessError("preexec failed")) == errno.EIO
        assert launch_errno(OSError("no errno")) == errno.EIO


@pytest.mark.unit
class TestExecResult:
    """Test the launch-result pipe protocol."""

    def test_closed_without_data_is_success(self):
        r, w = os.pipe()
        os.close(w)
        try:
            assert read_exec_result(r) is None
        finally:
            os.close(r)

    def test_errno_transported(self):
        r, w = os.pipe()
        write_exec_result(w, errno.ENOENT)
        os.close(w)
        try:
            assert read_exec_result(r) == errno.ENOENT
        finally:
            os.close(r)

    @pytest.mark.parametrize("payload", [b"abc", b"\xff\xfe", b"1" * 40])
    def test_malformed(self, payload):
        r, w = os.pipe()
        os.write(w, payload)
        os.close(w)
        try:
            with pytest.raises(SupervisorError, match="malformed"):
                read_exec_result(r)
        finally:
            os.close(r)


@pytest.mark.unit
class TestTargetPid:
    """Test the pipe carrying the command's pid."""

    def test_pid_transported_and_writer_closed(self):
        r, w = os.pipe()
        write_target_pid(w, 4321)
        try:
            with pytest.raises(OSError):
                os.fstat(w)
            assert read_target_pid(r) == 4321
        finally:
            os.close(r)

    def test_nothing_sent(self):
        r, w = os.pipe()
        os.close(w)
        try:
            assert read_target_pid(r) is None
        finally:
            os.close(r)

    def test_malformed(self):
        r, w = os.pipe()
        os.write(w, b"pid")
        os.close(w)
        try:
            with pytest.raises(SupervisorError, match="malformed command pid"):
                read_target_pid(r)
        finally:
            os.close(r)
