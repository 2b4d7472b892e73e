"""
Creation of root loggers and the loggers derived from them.

All loggers write to stderr: stdout is the target command's, and the
supervisor must never interleave its own records with the command's output.
"""

import logging
import sys
from typing import IO, Any

from .config import LogConfig
from .formatters import LogFormatter
from .logger import Logger


class LoggerFactory:
    """
    Builds the logger tree used by the driver and the watcher process.

    Example:
        >>> lg = LoggerFactory.create_root(LogConfig.from_params("info"))
        >>> lg.info("watching", extra={"root": "."})
        [12:34:56,789] [I] watching                    [root:.] [1234] [/]
        >>> LoggerFactory.derive(lg, "supervisor").name
        '/supervisor'
    """

    @staticmethod
    def create_root(
        config: LogConfig,
        stream: IO[str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Logger:
        """Create the root logger ("/") writing to stream (default: stderr)."""
        return LoggerFactory.create("/", config, stream=stream, extra=extra)

    @staticmethod
    def create(
        name: str,
        config: LogConfig,
        stream: IO[str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Logger:
        """
        Create a standalone logger with its own stream handler.

        The logger is not registered with the logging manager, so a second
        root logger in the same process (as in tests) is always a fresh one.
        Colors are dropped unless the stream is a terminal.
        """
        stream = stream if stream is not None else sys.stderr
        isatty = getattr(stream, "isatty", None)
        if config.colors and not (isatty and isatty()):
            config = config.without_colors()

        handler = logging.StreamHandler(stream)
        handler.setFormatter(LogFormatter(config))

        lg = Logger(name, config, extra)
        lg.addHandler(handler)
        lg.propagate = False
        return lg

    @staticmethod
    def derive(parent: Logger, tags: str | list[str]) -> Logger:
        """
        Derive a logger named below parent that writes through the root's handler.

        Args:
            parent: Root or derived logger
            tags: One tag, or a list forming a path ("process", "watcher")

        Returns:
            Logger sharing the parent's config, extra fields and disabled state
        """
        path = "/".join([tags] if isinstance(tags, str) else tags)
        name = "/" + path if parent.name == "/" else f"{parent.name}/{path}"

        lg = Logger(name, parent.config, dict(parent._extra))
        lg._root_logger = parent._root_logger or parent
        lg.disabled = parent.disabled
        lg.parent = parent
        lg.propagate = False
        return lg
