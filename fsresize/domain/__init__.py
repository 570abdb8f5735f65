"""Domain models for filesystem resize operations."""

from __future__ import annotations

from .models import (
    PERCENT_COMPLETE,
    STAGE_COMPLETE,
    STAGE_FAILED,
    CalcMinSizeProgress,
    FilesystemType,
    JobFiles,
    MinimumSize,
    ResizeJob,
    ResizeProgress,
)


__all__ = [
    "PERCENT_COMPLETE",
    "STAGE_COMPLETE",
    "STAGE_FAILED",
    "CalcMinSizeProgress",
    "FilesystemType",
    "JobFiles",
    "MinimumSize",
    "ResizeJob",
    "ResizeProgress",
]
