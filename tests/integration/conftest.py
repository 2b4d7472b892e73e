"""
Fixtures for tests that run real watcher and target processes.
"""

from collections.abc import Generator

import pytest

from ptywatch.log import Logger
from ptywatch.process.supervisor import Supervisor
from tests.helpers.process import Pipes


@pytest.fixture
def pipes() -> Generator[Pipes, None, None]:
    p = Pipes.open()
    yield p
    p.close()


@pytest.fixture
def make_supervisor(lg: Logger, pipes: Pipes):
    """Factory for supervisors wired to the pipes; all are aborted at teardown."""
    created = []

    def make(grace_secs: float = 2.0) -> Supervisor:
        sup = Supervisor(
            lg,
            grace_secs=grace_secs,
            log_level="warning",
            stdin=pipes.in_r,
            stdout=pipes.out_w,
        )
        created.append(sup)
        return sup

    yield make
    for sup in created:
        sup.abort()
