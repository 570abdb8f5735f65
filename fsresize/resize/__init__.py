"""Filesystem resize engine."""

from fsresize.resize.base import Resizer, ResizeSession
from fsresize.resize.ext import ExtResizer
from fsresize.resize.factory import ResizerFactory, build_default_factory
from fsresize.resize.ntfs import NtfsResizer
from fsresize.resize.xfs import XfsResizer


__all__ = [
    "ExtResizer",
    "NtfsResizer",
    "Resizer",
    "ResizeSession",
    "ResizerFactory",
    "XfsResizer",
    "build_default_factory",
]
