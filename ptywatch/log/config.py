"""
Configuration for the logging system.

LogConfig is immutable so the same instance can be shared between the
supervisor, the monitor and the runner without one of them changing what
the others print.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from ptywatch.exceptions import InvalidLogLevelError

from . import levels


@dataclass(frozen=True)
class LogConfig:
    """
    Immutable configuration for root loggers.

    Attributes:
        level: Numeric level, or False to disable logging
        micros: Whether to append microseconds to timestamps
        colors: Whether to emit ANSI colors (only honored on terminals)
    """

    level: int | bool = logging.INFO
    micros: bool = False
    colors: bool = True

    @staticmethod
    def resolve_level(level: str | int | bool) -> int | bool:
        """
        Resolve a level given as name, number or boolean.

        Raises:
            InvalidLogLevelError: If the name is unknown
        """
        if isinstance(level, bool):
            return logging.INFO if level else False
        if isinstance(level, int):
            return level
        name = str(level).strip().lower()
        if name.isdigit():
            return int(name)
        try:
            return levels.LEVEL_NAMES[name]
        except KeyError:
            raise InvalidLogLevelError(level) from None

    @classmethod
    def from_params(
        cls,
        level: str | int | bool,
        micros: bool = False,
        colors: bool = True,
    ) -> LogConfig:
        return cls(level=cls.resolve_level(level), micros=micros, colors=colors)

    @classmethod
    def from_config(cls, config: Any, section: str = "logging") -> LogConfig:
        """
        Create LogConfig from a ptywatch Config (or anything with dot-path get()).

        Example:
            config = Config(".ptywatch.yaml")
            log_config = LogConfig.from_config(config)
        """
        return cls.from_params(
            level=config.get(f"{section}.level", "info"),
            micros=bool(config.get(f"{section}.micros", False)),
            colors=bool(config.get(f"{section}.colors", True)),
        )

    def without_colors(self) -> LogConfig:
        return replace(self, colors=False)

    @property
    def level_name(self) -> str:
        """Level as a name suitable for passing on a command line."""
        return levels.level_name(self.level)
