"""Resize support for ext2/ext3/ext4 filesystems (resize2fs, e2fsck)."""

from __future__ import annotations

import re
import subprocess
from typing import Optional

from fsresize.domain.models import MinimumSize, ResizeProgress
from fsresize.resize import parsers
from fsresize.resize.base import ResizeSession
from fsresize.storage.exceptions import (
    CannotResizeError,
    CommandError,
    FsckError,
    ResizeCommandError,
    ResizeError,
    ResizeInfoError,
    ResizeParseError,
)


RESIZE2FS = "resize2fs"
RESIZE_ESTIMATE_FLAG = "-P"
RESIZE_FORCE_FLAG = "-f"
RESIZE_PROGRESS_FLAG = "-p"

E2FSCK = "e2fsck"
FSCK_FORCE_FLAG = "-f"
FSCK_NO_INTERACTIVE_FLAG = "-a"
# e2fsck exits 1 when it fixed errors, which still leaves a usable filesystem
FSCK_ALLOWED_EXIT_CODES = (0, 1)

STAT = "stat"

HELPER_COMMAND = "asset:snapshot:ext:calcminsize"
STAGE_CALCMINSIZE = "Calculate minimum EXT size"


class ExtResizer:
    """Minimum size calculation and shrinking for ext filesystems."""

    filesystem = "ext"

    def __init__(self, session: ResizeSession):
        self.session = session
        self.log = session.log

    # ------------------------------------------------------------------
    # Synchronous minimum size
    # ------------------------------------------------------------------

    def calculate_minimum_size(self) -> MinimumSize:
        """Minimum size from ``resize2fs -P``, after a passing e2fsck.

        Can run for a very long time on large volumes; prefer
        calculate_minimum_size_start() behind request time budgets.

        Raises:
            CannotResizeError: If e2fsck reports uncorrected errors
            ResizeCommandError: If resize2fs fails
            ResizeParseError: If the estimate line is missing
        """
        session = self.session
        session.ensure_loop()
        try:
            if not self.can_resize():
                raise CannotResizeError(session.image_path)

            try:
                output = self._run_resize(estimate=True).stdout
            except ResizeCommandError:
                self.log.error("RSZ0002 Error running resize estimate")
                raise

            min_blocks = parsers.parse_ext_estimate(output)
            if min_blocks is None:
                self.log.error("RSZ0003 Could not match resize estimate.")
                raise ResizeParseError()

            original_size = session.get_partition_size()
            block_size = self._get_filesystem_block_size()
        finally:
            session.release_loop()

        self.log.info(f"Minimum size is {min_blocks} blocks of {block_size} bytes")
        return MinimumSize(original_size=original_size, min_size=min_blocks * block_size)

    def can_resize(self) -> bool:
        """Run a forced e2fsck; False if the filesystem is not healthy enough to shrink."""
        self.session.ensure_loop()
        try:
            self._fsck()
        except (FsckError, CommandError):
            return False
        return True

    def resize_safety_run(self, target_size: Optional[int] = None) -> bool:
        # resize2fs has no dry run mode
        return True

    def verify_resize(self, target_blocks: int) -> bool:
        """Check a finished resize by asking resize2fs for the same size again.

        resize2fs answers "The filesystem is already N (4k) blocks long.
        Nothing to do!" when the resize took effect.
        """
        if self.session.loop is None:
            return False

        try:
            result = self._run_resize(target=target_blocks)
        except ResizeCommandError as error:
            self.log.error(f"RSZ0011 Error verifying resize: {error}")
            return False

        pattern = rf"already {target_blocks}.+blocks long"
        if re.search(pattern, f"{result.stdout}\n{result.stderr}"):
            return True

        self.log.warning("RSZ0013 Resize could not be verified")
        return False

    # ------------------------------------------------------------------
    # Resize to size
    # ------------------------------------------------------------------

    def resize_to_size(self, target_size: int) -> bool:
        """Launch ``resize2fs -f -p`` for ``target_size`` bytes as a background job.

        Returns:
            Whether the job was launched
        """
        session = self.session
        with session.guard_start():
            session.clear_output_files()
            partition = session.partition_path()
            target_blocks = target_size // self._get_filesystem_block_size()
            self.log.info(f"Resizing {partition} to {target_blocks} blocks")
            return session.launch(
                [RESIZE2FS, RESIZE_FORCE_FLAG, RESIZE_PROGRESS_FLAG, partition, str(target_blocks)]
            )

    def generate_progress_object(self) -> ResizeProgress:
        session = self.session
        std_err = session.read_stderr()
        progress = session.read_stdout()
        if progress is None:
            session.poll_log.debug(f"RSZ0008 Progress file does not exist: {session.files.stdout}")
        elif not progress.strip():
            session.poll_log.debug(f"RSZ0009 Progress file is empty: {session.files.stdout}")

        stage, percent = parsers.parse_ext_progress(progress, std_err)
        return ResizeProgress(
            running=session.is_running(),
            stage=stage,
            percent=percent,
            std_err=std_err,
        )

    def get_resize_progress(self) -> ResizeProgress:
        return self.session.get_resize_progress(self.generate_progress_object)

    def stop_resize(self) -> bool:
        return self.session.stop()

    # ------------------------------------------------------------------
    # Asynchronous minimum size
    # ------------------------------------------------------------------

    def calculate_minimum_size_start(self) -> bool:
        """Launch the calcminsize helper against the loop partition.

        The loop is released as soon as the helper has been launched.

        Raises:
            ResizeInfoError: If the helper could not be started
        """
        session = self.session
        with session.guard_start():
            session.clear_output_files()
            try:
                partition = session.partition_path()
                return session.launch(session.helper_command(HELPER_COMMAND, "--path", partition))
            except (ResizeError, OSError) as error:
                self.log.error(
                    f"RSZ0002 Error starting ext filesystem minimum size calculation: {error}"
                )
                raise ResizeInfoError(
                    "Error starting ext filesystem minimum size calculation"
                ) from error
            finally:
                session.release_loop(keep_output=True)

    def calculate_minimum_size_generate_progress_object(self):
        return self.session.calc_min_size_progress(
            lambda output: parsers.parse_calc_min_size_output(output, STAGE_CALCMINSIZE)
        )

    def calculate_minimum_size_stop(self) -> bool:
        return self.session.stop()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _fsck(self) -> None:
        partition = self.session.partition_path()
        self.log.info("RSZ0004 Checking filesystem for errors.")
        result = self.session.run_tool(
            [E2FSCK, FSCK_FORCE_FLAG, FSCK_NO_INTERACTIVE_FLAG, partition], check=False
        )
        self.log.info(f"RSZ0005 fsck output: {(result.stdout or '').strip()}")

        if result.returncode not in FSCK_ALLOWED_EXIT_CODES:
            self.log.info(
                f"RSZ0006 Filesystem contains errors (exit code {result.returncode}): "
                f"{(result.stderr or '').strip()}"
            )
            raise FsckError(result.returncode)

    def _run_resize(
        self, estimate: bool = False, target: Optional[int] = None
    ) -> subprocess.CompletedProcess:
        command = [RESIZE2FS, self.session.partition_path()]
        if estimate:
            command.append(RESIZE_ESTIMATE_FLAG)
        if target is not None:
            command.append(str(target))

        try:
            result = self.session.run_tool(command)
        except CommandError as error:
            self.log.error(f"RSZ0015 Error executing resize: {error.stderr.strip()}")
            raise ResizeCommandError() from error

        self.log.debug(f"RSZ0014 Resize output: {result.stdout.strip()}")
        return result

    def _get_filesystem_block_size(self) -> int:
        # %s prints the block size in file-system mode
        command = [STAT, "--file-system", self.session.partition_path(), "--format=%s"]
        try:
            output = self.session.run_tool(command).stdout
        except CommandError as error:
            self.log.error(f"RSZ0010 Error executing stat: {error}")
            raise
        return int(output.strip())
