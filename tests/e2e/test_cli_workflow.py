"""
End-to-end tests running the ptywatch command.
"""

import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

import ptywatch
from tests.helpers.process import Pipes

PACKAGE_ROOT = str(Path(ptywatch.__file__).resolve().parents[1])


def run_ptywatch(args, **kwargs) -> subprocess.Popen:
    env = {
        key: value for key, value in os.environ.items() if not key.startswith("PTYWATCH_")
    }
    env["PYTHONPATH"] = PACKAGE_ROOT
    return subprocess.Popen(
        [sys.executable, "-m", "ptywatch", *args], env=env, **kwargs
    )


@pytest.fixture
def pipes():
    p = Pipes.open()
    yield p
    p.close()


@pytest.mark.integration
@pytest.mark.slow
class TestCliWorkflow:
    """Test the whole tool: start, restart on change, quit."""

    def test_restart_on_change_then_quit(self, pipes, temp_dir):
        proc = run_ptywatch(
            ["-w", str(temp_dir), "-q", "50ms", "--", "/bin/sh", "-c", "echo run"],
            stdin=pipes.in_r,
            stdout=pipes.out_w,
            stderr=subprocess.DEVNULL,
            cwd=temp_dir,
        )
        try:
            assert b"run\n" in pipes.read_until(b"run\n")
            # Give the observer a moment to come up after the first launch
            time.sleep(0.5)

            (temp_dir / "changed.txt").write_text("x")

            assert b"run\n" in pipes.read_until(b"run\n")
        finally:
            proc.send_signal(signal.SIGTERM)
            code = proc.wait(timeout=15)

        assert code == 0

    def test_interrupt_ignored_quit_honored(self, pipes, temp_dir):
        proc = run_ptywatch(
            ["-w", str(temp_dir), "--", "/bin/cat"],
            stdin=pipes.in_r,
            stdout=pipes.out_w,
            stderr=subprocess.DEVNULL,
            cwd=temp_dir,
        )
        try:
            pipes.send(b"up\n")
            assert pipes.read_until(b"up\n") == b"up\n"

            proc.send_signal(signal.SIGINT)
            time.sleep(0.3)
            assert proc.poll() is None

            proc.send_signal(signal.SIGQUIT)
            assert proc.wait(timeout=15) == 0
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

    def test_first_launch_failure_exits_1(self, temp_dir):
        proc = run_ptywatch(
            ["-w", str(temp_dir), "--", "/nonexistent/ptywatch-cmd"],
            stdin=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            cwd=temp_dir,
        )
        _, err = proc.communicate(timeout=15)

        assert proc.returncode == 1
        assert b"No such file or directory" in err

    def test_usage_error(self, temp_dir):
        proc = run_ptywatch([], stderr=subprocess.PIPE, cwd=temp_dir)
        _, err = proc.communicate(timeout=15)

        assert proc.returncode == 2
        assert b"usage:" in err
