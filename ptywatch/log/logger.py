"""
Logger class for the logging system.

Adds three things to the standard logger: extra fields fixed per logger and
merged into every record, a TRACE level, and derived "view" loggers that
write through the root logger's handler.
"""

import collections
import logging
import sys
from typing import Any

from . import levels
from .config import LogConfig

Extra = dict[str, Any] | collections.OrderedDict


class Logger(logging.Logger):
    """
    Logger with structured extra fields.

    Records carry the merged extra fields as a single attribute that
    LogFormatter renders as ``[key:value]``, instead of spreading them over
    the record where they could collide with LogRecord attributes.
    """

    def __init__(self, name: str, config: LogConfig | None = None, extra: Extra | None = None):
        """
        Args:
            name: Logger name, "/" for the root
            config: Logger configuration (default: info level)
            extra: Fields included in every record of this logger
        """
        config = config or LogConfig.from_params("info")
        off = config.level is False
        super().__init__(name, logging.CRITICAL + 1 if off else config.level)
        self._config = config
        self._logging_disabled = off
        self._extra: Extra = extra or {}
        self._root_logger: Logger | None = None  # set on derived loggers

    @property
    def config(self) -> LogConfig:
        return self._config

    @property
    def disabled(self) -> bool:  # type: ignore[override]
        return self._logging_disabled

    @disabled.setter
    def disabled(self, value: bool) -> None:
        self._logging_disabled = value

    def makeRecord(  # type: ignore[override]
        self,
        name: str,
        level: int,
        fn: str,
        lno: int,
        msg: str,
        args: tuple,
        exc_info: Any | None,
        func: str | None = None,
        extra: Extra | None = None,
        sinfo: str | None = None,
    ) -> logging.LogRecord:
        record = super().makeRecord(
            name, level, fn, lno, msg, args, exc_info, func=func, sinfo=sinfo
        )
        ordered = isinstance(self._extra, collections.OrderedDict) or isinstance(
            extra, collections.OrderedDict
        )
        merged: Extra = collections.OrderedDict(self._extra) if ordered else dict(self._extra)
        merged.update(extra or {})
        # setattr keeps the attribute name unmangled
        setattr(record, "__ptywatch__extra", merged)
        return record

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at TRACE level (below DEBUG)."""
        if self.isEnabledFor(levels.TRACE):
            self._log(levels.TRACE, msg, args, **kwargs)

    def _log(self, level: int, msg: str, args: tuple, **kwargs: Any) -> None:  # type: ignore[override]
        if self._logging_disabled:
            return
        try:
            super()._log(level, msg, args, **kwargs)
        except (TypeError, ValueError) as e:
            # A bad format string must not take the supervisor down
            sys.stderr.write(f"ptywatch: cannot log {msg[:80]!r} [{self.name}]: {e}\n")

    def callHandlers(self, record: logging.LogRecord) -> None:
        """Derived loggers hand records to the root's handlers; the root to its own."""
        if self._root_logger is None:
            super().callHandlers(record)
            return
        for handler in self._root_logger.handlers:
            if record.levelno >= handler.level:
                handler.handle(record)
