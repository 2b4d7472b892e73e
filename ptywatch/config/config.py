"""
Configuration loading for ptywatch.

Values are layered in this order, later layers winning:

1. Built-in defaults (``constants.DEFAULTS``)
2. An optional YAML file (``--config`` or ``./.ptywatch.yaml``)
3. Environment overrides (``PTYWATCH_<SECTION>__<KEY>=value``)

Command-line flags are applied on top by the CLI.
"""

from __future__ import annotations

import copy
import os
import signal
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from ptywatch.delta import InvalidDurationError, delta_to_secs
from ptywatch.dot_dict import DotDict
from ptywatch.exceptions import ConfigError

from .constants import (
    DEFAULT_CONFIG_FILENAME,
    DEFAULTS,
    ENV_PATH_SEPARATOR,
    ENV_PREFIX,
    MAX_CONFIG_SIZE_BYTES,
)


def _check_file_size(path: Path) -> None:
    """Refuse files that are too large to be a config."""
    file_size = os.path.getsize(path)
    if file_size > MAX_CONFIG_SIZE_BYTES:
        raise ConfigError(
            f"configuration file is {file_size} bytes, "
            f"exceeding maximum size of {MAX_CONFIG_SIZE_BYTES} bytes",
            path=str(path),
        )


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge override into base; nested dicts are merged, everything else replaced."""
    for key, val in override.items():
        if isinstance(val, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], val)
        else:
            base[key] = val
    return base


def find_config_file(cwd: str | Path | None = None) -> Path | None:
    """Return the default config file in cwd if it exists."""
    candidate = Path(cwd or os.getcwd()) / DEFAULT_CONFIG_FILENAME
    return candidate if candidate.is_file() else None


def parse_signal(value: str | int) -> signal.Signals:
    """
    Resolve a signal given by name or number.

    Args:
        value: "SIGTERM", "TERM", "term" or 15

    Raises:
        ConfigError: If the signal is unknown on this platform
    """
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return signal.Signals(value)
        except ValueError:
            raise ConfigError("unknown signal", signal=value) from None

    name = str(value).strip().upper()
    if name.isdigit():
        return parse_signal(int(name))
    if not name.startswith("SIG"):
        name = "SIG" + name
    try:
        return signal.Signals[name]
    except KeyError:
        raise ConfigError("unknown signal", signal=value) from None


def parse_duration(value: str | int | float) -> float:
    """
    Resolve a duration given as seconds or a compact string ("2s", "100ms").

    Raises:
        ConfigError: If the duration cannot be parsed
    """
    try:
        return delta_to_secs(value)
    except InvalidDurationError as e:
        raise ConfigError(str(e), duration=value) from None


class Config(DotDict):
    """
    ptywatch configuration.

    Example:
        config = Config("etc/ptywatch.yaml")
        grace = config.duration("supervisor.grace")
        abort_signal = config.signal("supervisor.abort_signal")
    """

    _RESERVED_KEYS = DotDict._RESERVED_KEYS | frozenset(
        {"path", "duration", "signal", "signals", "integer"}
    )

    def __init__(
        self,
        fname: str | Path | None = None,
        enable_env_overrides: bool = True,
        env_prefix: str = ENV_PREFIX,
    ) -> None:
        """
        Load configuration.

        Args:
            fname: Optional YAML file merged over the defaults
            enable_env_overrides: Whether to apply environment variable overrides
            env_prefix: Prefix for environment variables (default: 'PTYWATCH_')

        Raises:
            ConfigError: If the file is missing, oversized or not a YAML mapping
        """
        super().__init__()
        self._env_prefix = env_prefix
        self._config_path = Path(fname).resolve() if fname else None

        data = copy.deepcopy(DEFAULTS)
        if self._config_path is not None:
            _deep_merge(data, self._load_file(self._config_path))
        if enable_env_overrides:
            data = self._apply_env_overrides(data)
        try:
            self.set(**data)
        except ValueError as e:
            raise ConfigError(str(e)) from None

    @property
    def path(self) -> Path | None:
        """Config file this instance was loaded from, if any."""
        return self._config_path

    @staticmethod
    def _load_file(path: Path) -> dict[str, Any]:
        if not path.is_file():
            raise ConfigError("configuration file not found", path=str(path))
        _check_file_size(path)

        with open(path) as f:
            try:
                content = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"invalid YAML: {e}", path=str(path)) from None

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError("configuration root must be a mapping", path=str(path))
        return content

    def _apply_env_overrides(self, data: dict[str, Any]) -> dict[str, Any]:
        """Apply PTYWATCH_SECTION__KEY=value overrides, values parsed as YAML."""
        for env_key, env_value in os.environ.items():
            if not env_key.startswith(self._env_prefix):
                continue
            path = [
                part.lower()
                for part in env_key[len(self._env_prefix) :].split(ENV_PATH_SEPARATOR)
                if part
            ]
            if not path:
                continue
            self._set_nested_value(data, path, self._convert_env_value(env_value))
        return data

    @staticmethod
    def _convert_env_value(value: str) -> Any:
        """Interpret env values as YAML scalars/lists; fall back to the raw string."""
        try:
            return yaml.safe_load(value)
        except yaml.YAMLError:
            return value

    @staticmethod
    def _set_nested_value(data: dict[str, Any], path: list[str], value: Any) -> None:
        current = data
        for part in path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[path[-1]] = value

    def _require(self, path: str) -> Any:
        value = self.get(path)
        if value is None:
            raise ConfigError("missing configuration value", key=path)
        return value

    def duration(self, path: str) -> float:
        """Get a duration value in seconds."""
        return parse_duration(self._require(path))

    def signal(self, path: str) -> signal.Signals:
        """Get a single signal value."""
        return parse_signal(self._require(path))

    def signals(self, path: str) -> list[signal.Signals]:
        """Get a list of signals; a scalar is treated as a one-element list."""
        value = self._require(path)
        if not isinstance(value, list):
            value = [value]
        return [parse_signal(v) for v in value]

    def integer(self, path: str) -> int:
        """Get a positive integer value."""
        value = self._require(path)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ConfigError("expected a positive integer", key=path, value=value)
        return value
