"""
Control loop: restart the command whenever the watched tree changes.
"""

from __future__ import annotations

from collections.abc import Sequence

from .exceptions import LaunchError
from .log import Logger
from .monitor import ChangeMonitor
from .process.supervisor import Supervisor

# Upper bound for a single blocking wait, so quit signals are noticed promptly
_POLL_SECS = 1.0


class Runner:
    """
    Alternates respawn, wait for change and wait for quiet, until interrupted.

    Example:
        runner = Runner(lg, supervisor, monitor, ["pytest", "-x"], quiet_secs=0.1)
        sys.exit(runner.run())
    """

    def __init__(
        self,
        lg: Logger,
        supervisor: Supervisor,
        monitor: ChangeMonitor,
        argv: Sequence[str],
        quiet_secs: float,
    ) -> None:
        self._lg = lg
        self._supervisor = supervisor
        self._monitor = monitor
        self._argv = list(argv)
        self._quiet_secs = quiet_secs
        self._generation = 0

    @property
    def generation(self) -> int:
        """How many times the command has been started."""
        return self._generation

    def run(self) -> int:
        """
        Run until a quit signal arrives.

        Returns:
            0 when quit, 1 if the command could not be started the first time
        """
        try:
            if not self._start(first=True):
                return 1
            self._monitor.start()
            while True:
                self._wait_and_restart()
        except KeyboardInterrupt:
            self._lg.debug("quit requested")
            return 0
        finally:
            self._monitor.stop()
            self._supervisor.abort()

    def _wait_and_restart(self) -> None:
        path = None
        while path is None:
            path = self._monitor.wait_for_next_change(timeout=_POLL_SECS)
        count = 1 + self._monitor.wait_for_quiet(self._quiet_secs)
        self._lg.info("restarting", extra={"path": str(path), "changes": count})
        self._start(first=False)

    def _start(self, first: bool) -> bool:
        try:
            if first:
                self._supervisor.spawn(self._argv)
            else:
                self._supervisor.respawn(self._argv)
        except LaunchError as e:
            self._lg.error(
                f"cannot run {e.command}: {e.strerror}", extra={"errno": e.errno}
            )
            return False
        self._generation += 1
        return True
