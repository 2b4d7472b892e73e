"""
Configuration management package.

This module provides:
- Config class layering defaults, an optional YAML file and env overrides
- Parsers for the duration and signal values the config accepts
"""

from .config import Config, find_config_file, parse_duration, parse_signal
from .constants import (
    DEFAULT_CONFIG_FILENAME,
    DEFAULT_IGNORE_PATTERNS,
    DEFAULTS,
    ENV_PREFIX,
    MAX_CONFIG_SIZE_BYTES,
)

__all__ = [
    "Config",
    "find_config_file",
    "parse_duration",
    "parse_signal",
    "DEFAULT_CONFIG_FILENAME",
    "DEFAULT_IGNORE_PATTERNS",
    "DEFAULTS",
    "ENV_PREFIX",
    "MAX_CONFIG_SIZE_BYTES",
]
