"""
Log formatter for the logging system.

Renders records as::

    [12:34:56,789] [I] restarting                     [path:src/app.py] [4242] [/runner]

with the level letter, message and extra fields colored per level when the
output stream is a terminal.
"""

import collections
import logging
import re
from typing import Any

from ptywatch.delta import delta_str

from . import levels
from .config import LogConfig

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# "[" + timestamp + "] [L] "
_PREFIX_WIDTH = 1 + 4 + 1 + 2
_STAMP_WIDTH = 12
_STAMP_WIDTH_MICROS = 16


def _visual_len(text: str) -> int:
    if "\x1b" not in text:
        return len(text)
    return len(_ANSI_PATTERN.sub("", text))


def _render_value(key: str, value: Any) -> str:
    if key == "exception" and isinstance(value, BaseException):
        return f"{value.__class__.__name__}: {value}"
    if key == "after" and isinstance(value, float):
        return delta_str(value)
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def _fields(record: logging.LogRecord) -> list[str]:
    """
    Extra fields attached by Logger as ``[key:value]``.

    Keys are sorted unless the caller passed an OrderedDict. Values end up in
    the format string itself, so % is doubled.
    """
    extra = getattr(record, "__ptywatch__extra", None)
    if not extra:
        return []
    keys = list(extra) if isinstance(extra, collections.OrderedDict) else sorted(extra)
    return [f"[{key}:{_render_value(key, extra[key]).replace('%', '%%')}]" for key in keys]


class _StampFormatter(logging.Formatter):
    """Standard formatter with optional microsecond timestamps."""

    def __init__(self, micros: bool) -> None:
        super().__init__(levels.LINE_FORMAT)
        self._micros = micros

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = super().formatTime(record)
        if self._micros:
            stamp += f".{int(record.created * 1_000_000) % 1000:03d}"
        return stamp

    def format_with(self, record: logging.LogRecord, fmt: str) -> str:
        self._style._fmt = fmt
        return self.format(record)


class LogFormatter(logging.Formatter):
    """
    Formatter with per-level colors and structured extra fields.

    Extra fields are written after the message, padded so that they start in
    the same column for short messages. The pid and the logger name close the
    line; the pid matters because records from the driver and from the
    watcher process interleave on the same stderr.
    """

    def __init__(self, config: LogConfig):
        super().__init__()
        self._config = config
        self._stamp = _StampFormatter(config.micros)

    @property
    def config(self) -> LogConfig:
        return self._config

    def format(self, record: logging.LogRecord) -> str:
        if self._config.colors:
            fmt = self._colored_format(record)
        else:
            fmt = self._plain_format(record)
        return self._stamp.format_with(record, fmt)

    def _padding(self, record: logging.LogRecord) -> str:
        if self._config.micros:
            stamp, column = _STAMP_WIDTH_MICROS, levels.FIELD_COLUMN_MICROS
        else:
            stamp, column = _STAMP_WIDTH, levels.FIELD_COLUMN
        width = _PREFIX_WIDTH + stamp + _visual_len(record.getMessage())
        return " " * max(1, column - width)

    def _plain_format(self, record: logging.LogRecord) -> str:
        fmt = levels.LINE_FORMAT
        fields = _fields(record)
        if fields:
            fmt += self._padding(record) + " ".join(fields)
        return fmt + " [%(process)d] [%(name)s]"

    def _colored_format(self, record: logging.LogRecord) -> str:
        col = levels.level_color(record.levelno)
        strong = levels.bold(col)
        dim = levels.gray(9) + "m"
        reset = levels.RESET

        fmt = f"{col}m[%(asctime)s] [{strong}%(levelname).1s{reset}{col}m] "
        fmt += f"{strong}%(message)s{reset}"
        fields = _fields(record)
        if fields:
            fmt += self._padding(record) + col + "m" + " ".join(fields) + reset
        return fmt + f" {dim}[%(process)d] [%(name)s]{reset}"
