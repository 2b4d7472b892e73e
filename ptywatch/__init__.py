"""
ptywatch: re-run an interactive command whenever a directory changes.

The command runs on a pseudo-terminal of its own, keeps receiving terminal
input and window-size changes, and is hung up gracefully before each restart.
"""

from importlib.metadata import PackageNotFoundError, version

# Version is read from package metadata (pyproject.toml)
try:
    __version__ = version("ptywatch")
except PackageNotFoundError:
    # Package not installed, use fallback (development mode)
    __version__ = "0.1.0-dev"

__all__ = ["__version__"]
