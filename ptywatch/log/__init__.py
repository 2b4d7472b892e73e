"""
Logging for ptywatch, built on the standard logging module.

Adds a TRACE level below DEBUG, structured extra fields rendered as
``[key:value]``, colored output on terminals, and derived loggers
(/supervisor, /monitor, /runner, /watcher) that share the root's handler.

Levels are given by name (trace, debug, info, warning, error, critical),
by number, or as false to turn logging off.
"""

import logging
from typing import IO

from ptywatch.exceptions import InvalidLogLevelError

from . import levels
from .config import LogConfig
from .factory import LoggerFactory
from .formatters import LogFormatter
from .logger import Logger

logging.addLevelName(levels.TRACE, "TRACE")

TRACE = levels.TRACE


def resolve_level(s: str | int | bool) -> int | bool:
    """
    Resolve log level from string, numeric value, or boolean.

    Raises:
        InvalidLogLevelError: If the log level is invalid
    """
    return LogConfig.resolve_level(s)


def create_root_lg(
    level: str | int | bool = "info",
    micros: bool = False,
    colors: bool = True,
    stream: IO[str] | None = None,
) -> Logger:
    """
    Create a root logger writing to stderr.

    Example:
        >>> lg = create_root_lg("debug")
    """
    config = LogConfig.from_params(level, micros=micros, colors=colors)
    return LoggerFactory.create_root(config, stream=stream)


def derive_lg(lg: Logger, tags: str | list[str]) -> Logger:
    return LoggerFactory.derive(lg, tags)


__all__ = [
    "TRACE",
    "InvalidLogLevelError",
    "LogConfig",
    "LogFormatter",
    "Logger",
    "LoggerFactory",
    "create_root_lg",
    "derive_lg",
    "levels",
    "resolve_level",
]
