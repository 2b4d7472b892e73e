"""
Levels, line layout and level colors for ptywatch log records.
"""

import logging

# Below DEBUG; per-chunk input forwarding, reap loops, ignored changes
TRACE = 5

# Names accepted by --log-level, the config file and the watcher command line
LEVEL_NAMES: dict[str, int | bool] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
    "false": False,  # no output at all
}

LINE_FORMAT = "[%(asctime)s] [%(levelname).1s] %(message)s"

# Column at which extra fields start, so records from the driver and the
# watcher line up on the shared stderr
FIELD_COLUMN = 70
FIELD_COLUMN_MICROS = 74

RESET = "\x1b[0m"

# Escape sequences are left open (no trailing "m") so bold can be appended
RED = "\x1b[31"
YELLOW = "\x1b[33"
MAGENTA = "\x1b[35"
CYAN = "\x1b[36"
DEFAULT = "\x1b[38"

_GRAY_BASE = 232
_GRAY_STEPS = 24


def gray(step: int) -> str:
    """Open escape sequence for a step (0-23, clamped) of the 256-color gray ramp."""
    step = max(0, min(step, _GRAY_STEPS - 1))
    return f"\x1b[38;5;{_GRAY_BASE + step}"


_LEVEL_COLORS: dict[int, str] = {
    TRACE: gray(12),
    logging.DEBUG: "\x1b[38;5;32",
    logging.INFO: CYAN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: MAGENTA,
}


def level_color(levelno: int) -> str:
    """Open escape sequence for a level; unknown levels get the default foreground."""
    return _LEVEL_COLORS.get(levelno, DEFAULT)


def bold(color: str) -> str:
    return color + ";1m"


def level_name(level: int | bool) -> str:
    """Name for a resolved level, as accepted by resolve_level()."""
    if level is False:
        return "false"
    for name, value in LEVEL_NAMES.items():
        if value is not False and value == level:
            return name
    return str(level)
