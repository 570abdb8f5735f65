"""Snapshot volume metadata lookup.

Each snapshot clone directory carries a ``voltab`` JSON file describing the
volumes captured in it. Two layouts are accepted:

    [{"uuid": "<guid>", "fstype": "ntfs", "label": "C", ...}, ...]

or a mapping keyed by volume GUID:

    {"<guid>": {"fstype": "ext4", ...}, ...}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from fsresize.domain.models import ResizeJob
from fsresize.logging import LoggerFactory
from fsresize.storage.exceptions import VolumeNotFoundError


log = LoggerFactory.for_system()


class VolumeMetadataStore:
    """Reads recorded filesystem types from snapshot metadata."""

    def __init__(self, image_root: Path | str, metadata_filename: str = "voltab"):
        self.image_root = Path(image_root)
        self.metadata_filename = metadata_filename

    def metadata_path(self, job: ResizeJob) -> Path:
        return job.clone_dir(self.image_root) / self.metadata_filename

    def get_volume(self, job: ResizeJob) -> dict[str, Any]:
        """Return the metadata entry for the job's volume.

        Raises:
            VolumeNotFoundError: If the metadata file is missing, unreadable,
                or has no entry for the volume
        """
        path = self.metadata_path(job)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise VolumeNotFoundError(job.volume_guid, f"no metadata at {path}") from None
        except (OSError, json.JSONDecodeError) as error:
            log.error(f"Unable to read volume metadata {path}: {error}")
            raise VolumeNotFoundError(job.volume_guid, "unreadable metadata") from error

        if isinstance(data, dict):
            entry = data.get(job.volume_guid)
            if isinstance(entry, dict):
                return entry
        elif isinstance(data, list):
            for entry in data:
                if isinstance(entry, dict) and entry.get("uuid") == job.volume_guid:
                    return entry

        raise VolumeNotFoundError(job.volume_guid)

    def get_filesystem_type(self, job: ResizeJob) -> str:
        """Recorded filesystem type string for the job's volume (as stored)."""
        entry = self.get_volume(job)
        return str(entry.get("fstype") or entry.get("filesystem") or "")
