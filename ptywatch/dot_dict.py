"""
Attribute-style dictionary used for configuration data.

DotDict stores nested mappings as nested DotDict instances so configuration
can be read either as ``cfg.supervisor.grace`` or ``cfg.get("supervisor.grace")``.
"""

from collections.abc import ItemsView, KeysView
from typing import Any


class DotDict:
    """
    Dictionary-like object with attribute-style access and dot-path lookup.

    Example:
        >>> d = DotDict(watch={"root": ".", "quiet": "100ms"})
        >>> d.watch.root
        '.'
        >>> d.get("watch.quiet")
        '100ms'
    """

    # Keys that would shadow methods used by the config layer
    _RESERVED_KEYS = frozenset({"set", "dict", "get", "has"})

    def __init__(self, **kwargs: Any) -> None:
        self.set(**kwargs)

    def set(self, **kwargs: Any) -> "DotDict":
        """
        Set multiple key-value pairs, converting nested dicts to DotDict.

        Returns:
            self: For method chaining

        Raises:
            ValueError: If a key would shadow a method name
        """
        for key, val in kwargs.items():
            key = str(key)
            if key in self._RESERVED_KEYS:
                raise ValueError(
                    f"Key '{key}' is reserved and cannot be used (would shadow method)"
                )
            setattr(self, key, self._map_entry(val))
        return self

    @classmethod
    def _map_entry(cls, val: Any) -> Any:
        if isinstance(val, dict):
            return DotDict(**val)
        if isinstance(val, list):
            return [cls._map_entry(v) for v in val]
        return val

    def _public(self) -> dict[str, Any]:
        # Underscore attributes belong to subclasses (e.g. Config._config_path)
        return {k: v for k, v in self.__dict__.items() if not k.startswith("_")}

    def dict(self) -> dict[str, Any]:
        """Recursively convert to plain dicts and lists."""

        def convert(val: Any) -> Any:
            if isinstance(val, DotDict):
                return val.dict()
            if isinstance(val, list):
                return [convert(v) for v in val]
            return val

        return {key: convert(val) for key, val in self._public().items()}

    def keys(self) -> KeysView[str]:
        return self._public().keys()

    def items(self) -> ItemsView[str, Any]:
        return self._public().items()

    def __contains__(self, key: Any) -> bool:
        return key in self._public()

    def __getitem__(self, key: str) -> Any:
        return self._public()[key]

    def __len__(self) -> int:
        return len(self._public())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DotDict):
            return self.dict() == other.dict()
        if isinstance(other, dict):
            return self.dict() == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"DotDict({self.dict()!r})"

    def has(self, path: str) -> bool:
        """
        Check if a dot-separated path exists.

        Args:
            path: Dot-separated path to check (e.g., "supervisor.grace")
        """
        sentinel = object()
        return self.get(path, sentinel) is not sentinel

    def get(self, path: str, default: Any = None) -> Any:
        """
        Get value by dot-separated path.

        Follows dict.get() semantics: returns default if the path is not found.

        Args:
            path: Dot-separated path (e.g., "watch.ignore")
            default: Value returned when any path component is missing
        """
        if not path:
            return default

        cur: Any = self
        for item in path.split("."):
            if not item:
                continue
            if not isinstance(cur, DotDict) or item not in cur:
                return default
            cur = cur[item]
        return cur
