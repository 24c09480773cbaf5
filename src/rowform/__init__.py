"""rowform - An active-record mapper with live-schema auto-migrations."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("rowform")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
