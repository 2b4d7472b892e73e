"""
Exception hierarchy for ptywatch.

Launch failures and configuration problems are recoverable and carry enough
context for the driver to report them. Supervisor state violations signal a
bug in the caller and are meant to propagate.
"""

import os
from typing import Any


class PtywatchError(Exception):
    """
    Base exception for all ptywatch errors.

    Keyword context is kept on the instance and appended to the message, so a
    single log line or CLI message says what went wrong and with which value.

    Example:
        >>> str(MonitorError("not a directory", root="/tmp/x"))
        'not a directory (root=/tmp/x)'
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ConfigError(PtywatchError):
    """
    Invalid configuration.

    Raised for an unreadable or malformed YAML file, a duration that cannot
    be parsed, an unknown signal name or a value of the wrong type.
    """


class InvalidLogLevelError(ConfigError):
    """A log level name that is not trace, debug, info, warning, error, critical or false."""

    def __init__(self, level: Any) -> None:
        self.level = level
        super().__init__("unknown log level", level=level)


class MonitorError(PtywatchError):
    """Raised when the change monitor cannot watch its root."""


class SupervisorError(PtywatchError):
    """Base class for process supervisor errors."""


class SupervisorStateError(SupervisorError):
    """
    spawn() was called while a watcher is still recorded.

    The caller paired spawn and abort wrongly; this is a bug, not a runtime
    condition, and is not meant to be caught.
    """


class LaunchError(SupervisorError):
    """
    The target command could not be executed.

    Carries the OS error number reported by the failed exec, e.g. ENOENT for a
    missing executable or EACCES for a file without execute permission.
    """

    def __init__(self, errno: int, command: str) -> None:
        self.errno = errno
        self.strerror = os.strerror(errno)
        self.command = command
        super().__init__(self.strerror, command=command, errno=errno)
