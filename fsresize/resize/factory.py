"""Pick the resizer for a volume from its recorded filesystem type."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from fsresize.config import settings
from fsresize.domain.models import FilesystemType, ResizeJob
from fsresize.logging import LoggerFactory
from fsresize.resize.base import Resizer, ResizeSession
from fsresize.resize.ext import ExtResizer
from fsresize.resize.ntfs import NtfsResizer
from fsresize.resize.xfs import XfsResizer
from fsresize.storage.commands import run_command
from fsresize.storage.jobs import ScreenJobRunner
from fsresize.storage.loop import LoopManager
from fsresize.storage.metadata import VolumeMetadataStore


log = LoggerFactory.for_system()

RESIZERS: dict[str, Callable[[ResizeSession], Resizer]] = {
    "ext": ExtResizer,
    "ntfs": NtfsResizer,
    "xfs": XfsResizer,
}


class ResizerFactory:
    """Builds resizers bound to one volume, wired to shared collaborators."""

    def __init__(
        self,
        metadata: VolumeMetadataStore,
        loop_manager: LoopManager,
        job_runner: ScreenJobRunner,
        runner: Callable = run_command,
        *,
        status_dir: Path | str = settings.DEFAULT_STATUS_DIR,
        default_extension: str = "bmr",
        helper_binary: str = "fsresize-helper",
        tool_timeout: float = settings.DEFAULT_TOOL_TIMEOUT_SECONDS,
    ):
        self.metadata = metadata
        self.loop_manager = loop_manager
        self.job_runner = job_runner
        self.runner = runner
        self.status_dir = Path(status_dir)
        self.default_extension = default_extension
        self.helper_binary = helper_binary
        self.tool_timeout = tool_timeout

    def get_resizer(
        self,
        agent_key: str,
        snapshot_epoch: str | int,
        volume_guid: str,
        extension: Optional[str] = None,
    ) -> Resizer:
        """Return the resizer matching the volume's filesystem.

        Raises:
            VolumeNotFoundError: If the snapshot metadata has no such volume
            UnknownFilesystemError: If the recorded filesystem is not supported
        """
        job = ResizeJob(
            agent_key=agent_key,
            snapshot_epoch=str(snapshot_epoch),
            volume_guid=volume_guid,
            extension=extension or self.default_extension,
        )
        recorded = self.metadata.get_filesystem_type(job)
        filesystem = FilesystemType.from_string(recorded)
        log.debug(f"Volume {volume_guid} has filesystem {filesystem.value}")

        session = ResizeSession(
            job,
            image_root=self.metadata.image_root,
            status_dir=self.status_dir,
            loop_manager=self.loop_manager,
            job_runner=self.job_runner,
            runner=self.runner,
            filesystem=filesystem.family,
            helper_binary=self.helper_binary,
            tool_timeout=self.tool_timeout,
        )
        return RESIZERS[filesystem.family](session)


def build_default_factory() -> ResizerFactory:
    """Wire a factory from the current settings."""
    loop_manager = LoopManager(
        runner=run_command,
        partition_scan_attempts=settings.get_int("partition_scan_attempts", 60),
        partition_scan_interval=settings.get_float("partition_scan_interval", 0.5),
        detach_attempts=settings.get_int("loop_detach_attempts", 5),
    )
    job_runner = ScreenJobRunner(
        runner=run_command,
        timeout=settings.get_float("screen_timeout_seconds", settings.DEFAULT_SCREEN_TIMEOUT_SECONDS),
    )
    metadata = VolumeMetadataStore(
        settings.get_path("image_root"),
        settings.get_setting("metadata_filename", "voltab"),
    )
    return ResizerFactory(
        metadata,
        loop_manager,
        job_runner,
        run_command,
        status_dir=settings.get_path("status_dir"),
        default_extension=settings.get_setting("default_extension", "bmr"),
        helper_binary=settings.get_setting("helper_binary", "fsresize-helper"),
        tool_timeout=settings.get_float(
            "tool_timeout_seconds", settings.DEFAULT_TOOL_TIMEOUT_SECONDS
        ),
    )
