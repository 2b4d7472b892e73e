"""
Integration tests for the Supervisor with real watcher and target processes.

Covers:
- The cat/echo scenario
- Clean reap and at most one generation alive
- Hang-up first, kill after the grace period
- Launch failures surfaced from two process levels down
- Input forwarding
- Idempotent abort
- Input written once an abort is under way reaching only the next generation
- No command left running by the finalizer, an interrupted spawn or a
  watcher that stopped responding
"""

import errno
import gc
import os
import random
import signal
import threading
import time

import pytest

from ptywatch.exceptions import LaunchError, SupervisorStateError
from ptywatch.process.supervisor import ABORT_SLACK_SECS, Supervisor
from tests.helpers.process import find_processes, process_exists, wait_for

# Prints its own pid, then keeps running until hung up
PID_THEN_SLEEP = ["/bin/sh", "-c", "echo pid=$$; exec sleep 60"]


def read_pid(pipes) -> int:
    data = pipes.read_until(b"\n")
    assert data.startswith(b"pid="), data
    return int(data.split(b"=")[1].split()[0])


@pytest.mark.integration
class TestScenario:
    """The canonical restart scenario."""

    def test_cat_then_echo(self, make_supervisor, pipes):
        sup = make_supervisor()

        sup.spawn(["/bin/cat"])
        pipes.send(b"hello\n")
        assert pipes.read_until(b"hello\n") == b"hello\n"

        watcher_pid = sup.watcher_pid
        sup.abort()
        assert sup.watcher_pid is None
        with pytest.raises(ChildProcessError):
            os.waitpid(watcher_pid, os.WNOHANG)

        sup.respawn(["/bin/echo", "hi"])
        assert b"hi" in pipes.read_until(b"hi\n")

    def test_input_forwarded_in_order(self, make_supervisor, pipes):
        sup = make_supervisor()
        sup.spawn(["/bin/cat"])

        lines = b"".join(b"line %d\n" % i for i in range(50))
        pipes.send(lines)

        assert pipes.read_until(b"line 49\n") == lines

    def test_next_generation_gets_input(self, make_supervisor, pipes):
        sup = make_supervisor()
        sup.spawn(["/bin/cat"])
        pipes.send(b"first\n")
        assert pipes.read_until(b"first\n") == b"first\n"

        sup.respawn(["/bin/cat"])
        pipes.send(b"second\n")

        assert pipes.read_until(b"second\n") == b"second\n"


@pytest.mark.integration
class TestGenerations:
    """At most one generation, and nothing left behind."""

    def test_respawn_ends_previous_target(self, make_supervisor, pipes):
        sup = make_supervisor()
        sup.spawn(PID_THEN_SLEEP)
        previous = read_pid(pipes)

        for _ in range(3):
            sup.respawn(PID_THEN_SLEEP)
            assert not process_exists(previous)
            current = read_pid(pipes)
            assert current != previous
            assert process_exists(current)
            previous = current

        sup.abort()
        assert not process_exists(previous)

    def test_spawn_while_running_is_fatal(self, make_supervisor):
        sup = make_supervisor()
        sup.spawn(["/bin/cat"])

        with pytest.raises(SupervisorStateError):
            sup.spawn(["/bin/cat"])

    def test_abort_twice(self, make_supervisor):
        sup = make_supervisor()
        sup.spawn(["/bin/cat"])

        sup.abort()
        sup.abort()

        assert sup.watcher_pid is None
        assert not sup.running

    def test_target_exit_keeps_watcher(self, make_supervisor, pipes):
        # stdin is still open, so the watcher waits for the next abort
        sup = make_supervisor()
        sup.spawn(["/bin/echo", "done"])
        assert b"done" in pipes.read_until(b"done\n")

        time.sleep(0.2)
        assert sup.running

    def test_end_of_input_ends_generation(self, make_supervisor, pipes):
        sup = make_supervisor()
        sup.spawn(["/bin/cat"])
        pipes.send(b"bye\n")
        assert pipes.read_until(b"bye\n") == b"bye\n"

        os.close(pipes.in_w)
        pipes.in_w = os.open(os.devnull, os.O_WRONLY)

        assert wait_for(lambda: not sup.running)


@pytest.mark.integration
class TestLaunchFailure:
    """Launch failures are reported synchronously."""

    def test_missing_executable(self, make_supervisor):
        sup = make_supervisor()

        with pytest.raises(LaunchError) as exc_info:
            sup.spawn(["/nonexistent/ptywatch-test-command"])

        assert exc_info.value.errno == errno.ENOENT
        assert exc_info.value.command == "/nonexistent/ptywatch-test-command"
        assert sup.watcher_pid is None
        # The failed watcher has been reaped
        with pytest.raises(ChildProcessError):
            os.waitpid(-1, os.WNOHANG)

    def test_not_executable(self, make_supervisor, temp_dir):
        script = temp_dir / "script.sh"
        script.write_text("#!/bin/sh\necho nope\n")
        script.chmod(0o644)
        sup = make_supervisor()

        with pytest.raises(LaunchError) as exc_info:
            sup.spawn([str(script)])

        assert exc_info.value.errno == errno.EACCES

    def test_spawn_after_failure(self, make_supervisor, pipes):
        sup = make_supervisor()
        with pytest.raises(LaunchError):
            sup.spawn(["/nonexistent/ptywatch-test-command"])

        sup.spawn(["/bin/echo", "recovered"])

        assert b"recovered" in pipes.read_until(b"recovered\n")


@pytest.mark.integration
@pytest.mark.slow
class TestGracefulShutdown:
    """Hang-up first, kill only after the grace period."""

    def test_prompt_exit_skips_grace(self, make_supervisor, pipes):
        sup = make_supervisor(grace_secs=5.0)
        sup.spawn(PID_THEN_SLEEP)
        pid = read_pid(pipes)

        start = time.monotonic()
        sup.abort()
        elapsed = time.monotonic() - start

        assert elapsed < 5.0
        assert not process_exists(pid)

    def test_blocked_reader_unblocked(self, make_supervisor, pipes):
        sup = make_supervisor(grace_secs=5.0)
        sup.spawn(["/bin/cat"])
        pipes.send(b"ready\n")
        assert pipes.read_until(b"ready\n") == b"ready\n"

        start = time.monotonic()
        sup.abort()

        assert time.monotonic() - start < 5.0

    def test_hangup_ignored_then_killed(self, make_supervisor, pipes):
        grace = 1.0
        sup = make_supervisor(grace_secs=grace)
        sup.spawn(
            [
                "/bin/sh",
                "-c",
                "trap '' HUP; echo pid=$$; while :; do sleep 0.1; done",
            ]
        )
        pid = read_pid(pipes)

        start = time.monotonic()
        sup.abort()
        elapsed = time.monotonic() - start

        assert elapsed >= grace
        assert elapsed < grace + ABORT_SLACK_SECS
        assert not process_exists(pid)


@pytest.mark.integration
@pytest.mark.slow
class TestInputAfterAbort:
    """Input sent while a generation is being aborted belongs to the next one."""

    # Tags each line with its pid; after the terminal goes away it ignores
    # hang-up, so the abort spends the whole grace period on it
    TAGGER = [
        "/bin/sh",
        "-c",
        "trap '' HUP; while read line; do echo \"$$:$line\"; done; exec sleep 60",
    ]

    def test_only_next_generation_sees_input(self, make_supervisor, pipes):
        sup = make_supervisor(grace_secs=1.0)
        sup.spawn(self.TAGGER)
        old = sup.target_pid
        pipes.send(b"one\n")
        assert pipes.read_until(b":one\n") == f"{old}:one\n".encode()

        sender = threading.Timer(0.3, pipes.send, args=(b"two\n",))
        sender.start()
        sup.abort()
        sender.join()

        sup.spawn(self.TAGGER)
        new = sup.target_pid

        assert new != old
        assert pipes.read_until(b":two\n") == f"{new}:two\n".encode()

    def test_input_between_generations(self, make_supervisor, pipes):
        sup = make_supervisor(grace_secs=0.5)
        sup.spawn(self.TAGGER)
        old = sup.target_pid
        pipes.send(b"ready\n")
        assert pipes.read_until(b":ready\n") == f"{old}:ready\n".encode()

        sup.abort()
        pipes.send(b"later\n")
        sup.spawn(self.TAGGER)

        assert pipes.read_until(b":later\n") == f"{sup.target_pid}:later\n".encode()


@pytest.mark.integration
@pytest.mark.slow
class TestNoOrphans:
    """Every way a generation can end takes its command with it."""

    def test_target_pid_reported(self, make_supervisor, pipes):
        sup = make_supervisor()
        sup.spawn(PID_THEN_SLEEP)

        assert sup.target_pid == read_pid(pipes)

    def test_finalizer_ends_command(self, lg, pipes):
        sup = Supervisor(
            lg, grace_secs=0.5, log_level="warning", stdin=pipes.in_r, stdout=pipes.out_w
        )
        sup.spawn(["/bin/sleep", "60"])
        target = sup.target_pid
        watcher = sup._watcher

        del sup
        gc.collect()

        try:
            assert wait_for(lambda: not process_exists(target), timeout=5)
        finally:
            watcher.wait(timeout=10)
        assert watcher.returncode == 0

    @pytest.mark.skipif(not os.path.isdir("/proc"), reason="needs /proc")
    @pytest.mark.parametrize("delay", [0.05, 0.15, 0.4])
    def test_interrupted_spawn_leaves_nothing(self, make_supervisor, delay):
        sup = make_supervisor(grace_secs=0.5)
        # A unique duration identifies this test's command in the process table
        marker = f"{60 + random.random():.6f}"

        def interrupt(signum, frame):
            raise KeyboardInterrupt

        previous = signal.signal(signal.SIGALRM, interrupt)
        signal.setitimer(signal.ITIMER_REAL, delay)
        try:
            with pytest.raises(KeyboardInterrupt):
                sup.spawn(["/bin/sleep", marker])
                time.sleep(5)
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
            signal.signal(signal.SIGALRM, previous)
            # What a quit would do next
            sup.abort()

        assert sup.watcher_pid is None
        assert wait_for(lambda: not find_processes(marker), timeout=5)

    def test_stopped_watcher_command_killed(self, make_supervisor):
        sup = make_supervisor(grace_secs=0.2)
        sup.spawn(["/bin/sleep", "60"])
        target = sup.target_pid
        os.kill(sup.watcher_pid, signal.SIGSTOP)

        start = time.monotonic()
        sup.abort()

        assert time.monotonic() - start >= 0.2 + ABORT_SLACK_SECS
        assert sup.watcher_pid is None
        assert wait_for(lambda: not process_exists(target), timeout=5)
