"""Resize support for NTFS filesystems (ntfsresize).

ntfsresize only reports an estimate of how far a volume can shrink, and that
estimate is not always a safe target. The minimum size is therefore found by
a bounded search: starting from the estimate, grow the candidate 5% at a time
(aligned to the cluster size) and accept the first candidate a no-action dry
run agrees with.
"""

from __future__ import annotations

from fsresize.domain.models import (
    PERCENT_COMPLETE,
    STAGE_COMPLETE,
    CalcMinSizeProgress,
    MinimumSize,
    ResizeProgress,
)
from fsresize.resize import parsers
from fsresize.resize.base import ResizeSession
from fsresize.storage.exceptions import (
    CannotResizeError,
    CommandError,
    ResizeError,
    ResizeInfoError,
    SizeParseError,
)


NTFSRESIZE = "ntfsresize"
FLAG_INFO_ONLY = "-i"
FLAG_FORCE = "-f"
FLAG_BAD_SECTORS = "-b"
FLAG_SIZE = "-s"
FLAG_NO_ACTION = "-n"

HELPER_COMMAND = "asset:snapshot:ntfs:calcminsize"
HELPER_MODE_ESTIMATED = "estimated"
HELPER_MODE_PRECISE = "precise"

STAGE_CALCMINSIZE = "Calculate minimum NTFS size"


class NtfsResizer:
    """Minimum size search and shrinking for NTFS filesystems."""

    filesystem = "ntfs"

    def __init__(self, session: ResizeSession):
        self.session = session
        self.log = session.log

    def calculate_minimum_size(self) -> MinimumSize:
        """Run ``ntfsresize --info`` and search for the smallest safe size.

        Raises:
            ResizeInfoError: If the info run fails or its output cannot be parsed
            CannotResizeError: If a candidate grows past the current size
        """
        session = self.session
        partition = session.partition_path()
        try:
            try:
                result = session.run_tool(
                    [NTFSRESIZE, FLAG_INFO_ONLY, FLAG_FORCE, FLAG_BAD_SECTORS, partition]
                )
                info = parsers.parse_ntfs_info(result.stdout)
            except (CommandError, SizeParseError) as error:
                self.log.error(f"RSZ0100 Error in ntfsresize info: {error}")
                raise ResizeInfoError("Error in ntfsresize info") from error

            min_size = self._attempt_size_reduction(info)
        finally:
            session.release_loop()

        return MinimumSize(
            original_size=info.original_size,
            min_size=min_size,
            cluster_size=info.cluster_size,
        )

    def resize_safety_run(self, target_size: int) -> bool:
        """Dry run ``ntfsresize -n`` at ``target_size``. A failing run returns False."""
        partition = self.session.partition_path()
        command = [
            NTFSRESIZE,
            FLAG_FORCE,
            FLAG_BAD_SECTORS,
            FLAG_NO_ACTION,
            FLAG_SIZE,
            str(target_size),
            partition,
        ]
        try:
            result = self.session.run_tool(command, check=False)
        except CommandError as error:
            self.log.debug(f"Safety run for {target_size} could not run: {error}")
            return False
        return result.returncode == 0

    def _attempt_size_reduction(self, info: parsers.NtfsInfo) -> int:
        candidate = info.recommended_min
        for attempt, candidate in parsers.ntfs_candidates(info.recommended_min, info.cluster_size):
            if candidate > info.original_size:
                raise CannotResizeError(self.session.image_path)

            if self.resize_safety_run(candidate):
                self.log.info(f"Safety run passed on attempt {attempt} for size {candidate}")
                return candidate

        self.log.warning(
            f"No safety run passed after {parsers.NTFS_MAX_STEPS - 1} attempts, "
            f"defaulting to {candidate}"
        )
        return candidate

    # ------------------------------------------------------------------
    # Resize to size
    # ------------------------------------------------------------------

    def resize_to_size(self, target_size: int) -> bool:
        session = self.session
        with session.guard_start():
            session.clear_output_files()
            partition = session.partition_path()
            self.log.info(f"Resizing {partition} to {target_size} bytes")
            return session.launch(
                [NTFSRESIZE, FLAG_FORCE, FLAG_BAD_SECTORS, FLAG_SIZE, str(target_size), partition]
            )

    def generate_progress_object(self) -> ResizeProgress:
        """Progress of a running ``ntfsresize``.

        Example output:
            Checking filesystem consistency ...
            100.00 percent completed
            Accounting clusters ...
            Relocating needed data ...
             42.17 percent completed\\r 42.18 percent completed\\r...
        """
        session = self.session
        running = session.is_running()
        stage = parsers.STAGE_CONSISTENCY_CHECK
        percent = 0.0

        marker = session.scan_stdout(parsers.scan_ntfs_resize_lines)
        if marker == STAGE_COMPLETE:
            stage, percent = STAGE_COMPLETE, PERCENT_COMPLETE
        elif marker == parsers.STAGE_RELOCATING_DATA:
            stage = parsers.STAGE_RELOCATING_DATA
            percent = parsers.parse_ntfs_progress_tail(
                session.read_stdout_tail(parsers.NTFS_TAIL_BYTES)
            )

        return ResizeProgress(
            running=running,
            stage=stage,
            percent=percent,
            std_err=session.read_stderr(),
        )

    def get_resize_progress(self) -> ResizeProgress:
        return self.session.get_resize_progress(self.generate_progress_object)

    def stop_resize(self) -> bool:
        return self.session.stop()

    # ------------------------------------------------------------------
    # Asynchronous minimum size
    # ------------------------------------------------------------------

    def calculate_minimum_size_start(self) -> bool:
        """Start the two phase minimum size calculation.

        Phase 1 (``--mode estimated``) is quick and runs here. Phase 2
        (``--mode precise``) runs the dry run search and is launched as a
        background job; the loop is released once it has been launched.

        Raises:
            ResizeInfoError: If either phase could not be started
        """
        session = self.session
        with session.guard_start():
            session.clear_output_files()
            try:
                partition = session.partition_path()
                estimate = self._calculate_estimated_minimum_size(partition)
                command = session.helper_command(
                    HELPER_COMMAND,
                    "--mode",
                    HELPER_MODE_PRECISE,
                    "--recommended-min",
                    str(estimate.minimum_volume_size),
                    "--cluster-size",
                    str(estimate.cluster_size),
                    "--original-size",
                    str(estimate.current_volume_size),
                    "--path",
                    partition,
                )
                return session.launch(command)
            except (ResizeError, OSError) as error:
                self.log.error(f"RSZ0016 Error starting ntfs minimum size calculation: {error}")
                raise ResizeInfoError(
                    "Error in starting ntfs minimum size calculation"
                ) from error
            finally:
                session.release_loop(keep_output=True)

    def calculate_minimum_size_generate_progress_object(self) -> CalcMinSizeProgress:
        return self.session.calc_min_size_progress(
            lambda output: parsers.parse_ntfs_precise_output(output, STAGE_CALCMINSIZE)
        )

    def calculate_minimum_size_stop(self) -> bool:
        return self.session.stop()

    def _calculate_estimated_minimum_size(self, partition: str) -> parsers.SizeReport:
        session = self.session
        command = session.helper_command(
            HELPER_COMMAND, "--mode", HELPER_MODE_ESTIMATED, "--path", partition
        )
        try:
            output = session.run_tool(command).stdout
            return session.parse_size_report(output)
        except (CommandError, SizeParseError) as error:
            self.log.error(f"RSZ0000 Error during ntfs estimated minimum size: {error}")
            raise ResizeInfoError("Error in calculateEstimatedMinimumSize") from error
