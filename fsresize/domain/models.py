"""Domain model for filesystem resize operations.

Type-safe value objects for resize job identity, output file locations and
the progress snapshots returned to callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from fsresize.storage.exceptions import UnknownFilesystemError


STAGE_COMPLETE = "Complete"
STAGE_FAILED = "Failed"
PERCENT_COMPLETE = 100


# ==============================================================================
# Filesystem Domain
# ==============================================================================


class FilesystemType(Enum):
    """Filesystem types the resize engine knows how to handle."""

    EXT2 = "ext2"
    EXT3 = "ext3"
    EXT4 = "ext4"
    NTFS = "ntfs"
    XFS = "xfs"

    @property
    def family(self) -> str:
        """Resizer family: "ext", "ntfs" or "xfs"."""
        if self in (FilesystemType.EXT2, FilesystemType.EXT3, FilesystemType.EXT4):
            return "ext"
        return self.value

    @classmethod
    def from_string(cls, value: Optional[str]) -> FilesystemType:
        """Resolve a recorded filesystem string, ignoring case.

        Raises:
            UnknownFilesystemError: If the string names no supported filesystem
        """
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise UnknownFilesystemError(value)


# ==============================================================================
# Job Domain
# ==============================================================================


@dataclass(frozen=True)
class ResizeJob:
    """Identity of one resize job: a volume image inside a snapshot clone.

    The job hash names the background job and its output files, so the same
    (agent, snapshot, volume) always maps to the same job.
    """

    agent_key: str
    snapshot_epoch: str
    volume_guid: str
    extension: str = "bmr"

    @property
    def job_hash(self) -> str:
        return f"{self.agent_key}-resize-{self.snapshot_epoch}-{self.volume_guid}"

    def clone_dir(self, image_root: Path | str) -> Path:
        return Path(image_root) / f"{self.agent_key}-{self.snapshot_epoch}-{self.extension}"

    def image_path(self, image_root: Path | str) -> Path:
        """Path of the flat volume image (e.g. /homePool/agent-123-bmr/guid.datto)."""
        return self.clone_dir(image_root) / f"{self.volume_guid}.datto"


@dataclass(frozen=True)
class JobFiles:
    """Output and marker files used to reconstruct a job's state."""

    stdout: Path
    stderr: Path
    cleaned: Path
    lock: Path

    @classmethod
    def for_job(cls, status_dir: Path | str, job_hash: str) -> JobFiles:
        base = Path(status_dir)
        return cls(
            stdout=base / f"{job_hash}.log",
            stderr=base / f"{job_hash}.stdErr",
            cleaned=base / f"{job_hash}.cleaned",
            lock=base / f"{job_hash}.lock",
        )


# ==============================================================================
# Progress Domain
# ==============================================================================


@dataclass(frozen=True)
class ResizeProgress:
    """Snapshot of a resize-to-size job."""

    running: bool
    stage: Optional[str]
    percent: Optional[float]
    std_err: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "stage": self.stage,
            "percent": self.percent,
            "stdErr": self.std_err,
        }


@dataclass(frozen=True)
class CalcMinSizeProgress:
    """Snapshot of an asynchronous minimum size calculation."""

    running: bool
    stage: str
    percent_complete: float
    std_err: Optional[str]
    current_volume_size: int = 0
    minimum_volume_size: int = 0
    cluster_size: int = 0

    @property
    def is_complete(self) -> bool:
        return self.stage == STAGE_COMPLETE

    @property
    def is_failed(self) -> bool:
        return self.stage == STAGE_FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "stage": self.stage,
            "percentComplete": self.percent_complete,
            "stdErr": self.std_err,
            "currentVolumeSize": self.current_volume_size,
            "minimumVolumeSize": self.minimum_volume_size,
            "clusterSize": self.cluster_size,
        }


@dataclass(frozen=True)
class MinimumSize:
    """Result of a synchronous minimum size calculation, in bytes."""

    original_size: int
    min_size: int
    cluster_size: Optional[int] = None

    def to_dict(self) -> dict[str, int]:
        result = {"originalSize": self.original_size, "minSize": self.min_size}
        if self.cluster_size is not None:
            result["clusterSize"] = self.cluster_size
        return result
