"""modpm: dependency manager for configuration modules."""

from .version import __version__

__all__ = ["__version__"]
