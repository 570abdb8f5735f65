"""Filesystem resize engine for snapshot volume images."""

from .__version__ import __version__


__all__ = ["__version__"]
