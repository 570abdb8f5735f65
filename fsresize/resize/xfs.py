"""XFS support. XFS cannot shrink, so its minimum size is its current size."""

from __future__ import annotations

from fsresize.domain.models import CalcMinSizeProgress, MinimumSize, ResizeProgress
from fsresize.resize import parsers
from fsresize.resize.base import ResizeSession
from fsresize.storage.exceptions import ResizeError, ResizeInfoError, UnsupportedOperationError


HELPER_COMMAND = "asset:snapshot:xfs:calcminsize"
STAGE_CALCMINSIZE = "Calculate minimum XFS size"


class XfsResizer:
    filesystem = "xfs"

    def __init__(self, session: ResizeSession):
        self.session = session
        self.log = session.log

    def calculate_minimum_size(self) -> MinimumSize:
        """Current size of the partition, reported as both original and minimum."""
        session = self.session
        session.ensure_loop()
        try:
            size = session.get_partition_size()
        finally:
            session.release_loop()
        return MinimumSize(original_size=size, min_size=size)

    def resize_safety_run(self, target_size: int) -> bool:
        return True

    def resize_to_size(self, target_size: int) -> bool:
        raise UnsupportedOperationError("resize_to_size", self.filesystem)

    def generate_progress_object(self) -> ResizeProgress:
        raise UnsupportedOperationError("generate_progress_object", self.filesystem)

    def get_resize_progress(self) -> ResizeProgress:
        raise UnsupportedOperationError("get_resize_progress", self.filesystem)

    def stop_resize(self) -> bool:
        return self.session.stop()

    def calculate_minimum_size_start(self) -> bool:
        session = self.session
        with session.guard_start():
            session.clear_output_files()
            try:
                partition = session.partition_path()
                return session.launch(session.helper_command(HELPER_COMMAND, "--path", partition))
            except (ResizeError, OSError) as error:
                self.log.error(
                    f"RSZ0017 Error starting xfs filesystem minimum size calculation: {error}"
                )
                raise ResizeInfoError(
                    "Error starting xfs filesystem minimum size calculation"
                ) from error
            finally:
                session.release_loop(keep_output=True)

    def calculate_minimum_size_generate_progress_object(self) -> CalcMinSizeProgress:
        return self.session.calc_min_size_progress(
            lambda output: parsers.parse_calc_min_size_output(output, STAGE_CALCMINSIZE)
        )

    def calculate_minimum_size_stop(self) -> bool:
        return self.session.stop()
