"""
Configuration defaults and resource limits.
"""

from typing import Any

# Maximum config file size (1MB); anything larger is not a ptywatch config
MAX_CONFIG_SIZE_BYTES = 1024 * 1024

# Looked up in the current directory when --config is not given
DEFAULT_CONFIG_FILENAME = ".ptywatch.yaml"

# PTYWATCH_SUPERVISOR__GRACE=5s -> supervisor.grace
ENV_PREFIX = "PTYWATCH_"
ENV_PATH_SEPARATOR = "__"

# Editor droppings and VCS metadata; "4913" is the scratch file vim writes on save
DEFAULT_IGNORE_PATTERNS = [
    ".git",
    ".hg",
    ".svn",
    "__pycache__",
    "*.pyc",
    "*.swp",
    "*.swx",
    "*~",
    ".#*",
    "4913",
]

DEFAULTS: dict[str, Any] = {
    "watch": {
        "root": ".",
        "quiet": "100ms",
        "ignore": DEFAULT_IGNORE_PATTERNS,
    },
    "supervisor": {
        "grace": "2s",
        "abort_signal": "SIGTERM",
        "chunk_size": 1024,
        "quit_signals": ["SIGQUIT", "SIGTERM"],
    },
    "logging": {
        "level": "info",
        "colors": True,
        "micros": False,
    },
}
