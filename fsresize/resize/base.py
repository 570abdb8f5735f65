"""Shared resize lifecycle: loop ownership, job files and background launch.

Each filesystem resizer composes a ResizeSession instead of inheriting from a
common base. The session owns everything that is the same for every
filesystem:

    - the loop device bound to the volume image, and whether this job owes
      its cleanup (persisted in ``<hash>.cleaned`` so a later process that
      only polls can still tear it down)
    - the ``<hash>.log`` / ``<hash>.stdErr`` output files that are the only
      channel between a detached job and the processes polling it
    - launching detached jobs, checking whether they are alive, stopping them

Ownership rule: a loop that already existed for the image when setup ran is
adopted without taking ownership, and cleanup for it is a no-op.
"""

from __future__ import annotations

import os
import shlex
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator, Iterable, Optional, Protocol, TypeVar

from fsresize.config.settings import DEFAULT_TOOL_TIMEOUT_SECONDS
from fsresize.domain.models import (
    CalcMinSizeProgress,
    JobFiles,
    MinimumSize,
    ResizeJob,
    ResizeProgress,
)
from fsresize.logging import LoggerFactory
from fsresize.resize import parsers
from fsresize.storage.commands import run_command
from fsresize.storage.exceptions import (
    CommandError,
    JobAlreadyRunningError,
    LoopDeviceError,
    LoopSetupError,
    ResizeError,
    SizeParseError,
)
from fsresize.storage.job_lock import job_start_lock
from fsresize.storage.jobs import ScreenJobRunner
from fsresize.storage.loop import LoopInfo, LoopManager


LOOP_PARTITION_NUMBER = 1
BLOCKDEV = "blockdev"

T = TypeVar("T")


class Resizer(Protocol):
    """Operations every filesystem resizer provides."""

    session: ResizeSession

    def calculate_minimum_size(self) -> MinimumSize:
        ...

    def resize_safety_run(self, target_size: int) -> bool:
        ...

    def resize_to_size(self, target_size: int) -> bool:
        ...

    def generate_progress_object(self) -> ResizeProgress:
        ...

    def get_resize_progress(self) -> ResizeProgress:
        ...

    def stop_resize(self) -> bool:
        ...

    def calculate_minimum_size_start(self) -> bool:
        ...

    def calculate_minimum_size_generate_progress_object(self) -> CalcMinSizeProgress:
        ...

    def calculate_minimum_size_stop(self) -> bool:
        ...


class ResizeSession:
    """Loop, file and job state for one (agent, snapshot, volume) resize job."""

    def __init__(
        self,
        job: ResizeJob,
        *,
        image_root: Path | str,
        status_dir: Path | str,
        loop_manager: LoopManager,
        job_runner: ScreenJobRunner,
        runner: Callable = run_command,
        filesystem: str = "",
        helper_binary: str = "fsresize-helper",
        tool_timeout: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        loop: Optional[LoopInfo] = None,
    ):
        self.job = job
        self.image_path = str(job.image_path(image_root))
        self.job_hash = job.job_hash
        self.files = JobFiles.for_job(status_dir, self.job_hash)
        self.loop_manager = loop_manager
        self.job_runner = job_runner
        self.helper_binary = helper_binary
        self.tool_timeout = tool_timeout
        self.loop = loop
        self._run = runner
        self.log = LoggerFactory.for_resize(self.job_hash, filesystem or None)
        self.poll_log = LoggerFactory.for_poll(self.job_hash)

    # ------------------------------------------------------------------
    # Loop lifecycle
    # ------------------------------------------------------------------

    def setup_loop(self, file: Optional[str] = None) -> LoopInfo:
        """Bind the image (or ``file``) to a loop device.

        An existing binding is adopted and marked as not ours to clean up.

        Raises:
            LoopSetupError: If no loop could be found or created
        """
        target = file or self.image_path
        try:
            loops = self.loop_manager.get_loops_on_file(target)
            if loops:
                self.log.debug(f"RSZ1001 File is already looped: {target}")
                self.loop = loops[0]
                self.set_clean_status(True)
                return self.loop

            self.loop = self.loop_manager.create(target, part_scan=True)
        except (LoopDeviceError, CommandError) as error:
            self.log.error(f"RSZ1002 Failed to setup loop device for {target}: {error}")
            raise LoopSetupError(target, str(error)) from error

        self.set_clean_status(False)
        return self.loop

    def ensure_loop(self) -> LoopInfo:
        if self.loop is None:
            return self.setup_loop()
        return self.loop

    def partition_path(self) -> str:
        """Device node of the image's first partition, setting up the loop if needed."""
        return self.ensure_loop().partition_path(LOOP_PARTITION_NUMBER)

    def clean_up_loop(self, loop: Optional[LoopInfo] = None, keep_output: bool = False) -> bool:
        """Destroy the loop if this job owns it.

        Safe to call repeatedly: it does nothing when cleanup is not owed.
        Without a loop in memory (a polling process), every loop on the
        image file is destroyed.

        Args:
            loop: Loop to destroy (defaults to the session's loop)
            keep_output: Leave the stdout file in place

        Returns:
            False if cleanup was owed but no loop was found, True otherwise
        """
        if not self.needs_cleanup():
            return True

        loop = loop or self.loop
        if loop is None:
            loops = self.loop_manager.get_loops_on_file(self.image_path)
            if not loops:
                self.log.info("RSZ1003 No loop to destroy")
                return False
            for found in loops:
                self.loop_manager.destroy(found)
            return True

        if not keep_output:
            self.files.stdout.unlink(missing_ok=True)
        self.loop_manager.destroy(loop)
        self.loop = None
        return True

    def release_loop(self, keep_output: bool = False) -> bool:
        """clean_up_loop() for ``finally`` blocks: failures are logged, never raised.

        Returns:
            Whether the cleanup completed
        """
        try:
            return self.clean_up_loop(keep_output=keep_output)
        except (ResizeError, OSError) as error:
            self.log.warning(f"RSZ1006 Failed to release loop for {self.image_path}: {error}")
            return False

    # ------------------------------------------------------------------
    # Marker and output files
    # ------------------------------------------------------------------

    def needs_cleanup(self) -> bool:
        """True unless the ``.cleaned`` marker says the loop is already clean."""
        try:
            marker = self.files.cleaned.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return True
        try:
            return int(marker or "0") == 0
        except ValueError:
            return True

    def set_clean_status(self, is_already_clean: bool) -> None:
        self.files.cleaned.parent.mkdir(parents=True, exist_ok=True)
        self.files.cleaned.write_text("1" if is_already_clean else "0", encoding="utf-8")

    def clear_output_files(self) -> None:
        """Remove stale progress and error files.

        The marker is removed too unless a loop is held, in which case it
        still records whether that loop is ours to destroy.
        """
        stale = [self.files.stdout, self.files.stderr]
        if self.loop is None:
            stale.append(self.files.cleaned)
        for path in stale:
            path.unlink(missing_ok=True)

    def read_stdout(self) -> Optional[str]:
        return self._read(self.files.stdout)

    def read_stderr(self) -> Optional[str]:
        return self._read(self.files.stderr)

    def scan_stdout(self, scanner: Callable[[Iterable[str]], T]) -> Optional[T]:
        """Feed the stdout file line by line to ``scanner`` (None if there is no file)."""
        try:
            with open(self.files.stdout, encoding="utf-8", errors="replace") as handle:
                return scanner(handle)
        except FileNotFoundError:
            return None

    def read_stdout_tail(self, size: int) -> str:
        """Last ``size`` bytes of the stdout file, with carriage returns intact."""
        try:
            with open(self.files.stdout, "rb") as handle:
                handle.seek(0, os.SEEK_END)
                handle.seek(max(handle.tell() - size, 0))
                return handle.read().decode("utf-8", errors="replace")
        except FileNotFoundError:
            return ""

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_for_size(self, output: str, pattern: str) -> int:
        """Parse one integer out of tool output.

        Raises:
            SizeParseError: If the pattern does not match
        """
        try:
            return parsers.require_size(output, pattern)
        except SizeParseError:
            self.log.error(
                f"RFS0001 Unable to parse calculateMinimumSize output {output!r} with {pattern!r}"
            )
            raise

    def parse_size_report(self, output: str) -> parsers.SizeReport:
        return parsers.SizeReport(
            current_volume_size=self.parse_for_size(output, parsers.REGEX_ORIGINAL_SIZE),
            minimum_volume_size=self.parse_for_size(output, parsers.REGEX_MIN_VOLUME_SIZE),
            cluster_size=self.parse_for_size(output, parsers.REGEX_CLUSTER_SIZE),
        )

    # ------------------------------------------------------------------
    # Commands and background jobs
    # ------------------------------------------------------------------

    def run_tool(self, command: list[str], check: bool = True):
        """Run a filesystem tool synchronously with the long tool timeout."""
        return self._run(command, check=check, timeout=self.tool_timeout)

    def helper_command(self, subcommand: str, *args: str) -> list[str]:
        return [self.helper_binary, subcommand, *args]

    def get_partition_size(self) -> int:
        """Size in bytes of the loop partition (``blockdev --getsize64``)."""
        partition = self.partition_path()
        try:
            output = self.run_tool([BLOCKDEV, "--getsize64", partition]).stdout
        except CommandError as error:
            self.log.error(f"RSZ0012 Blockdev execution failed: {error}")
            raise
        return int(output.strip())

    def launch(self, command: list[str]) -> bool:
        """Start ``command`` detached, writing to the job's stdout/stderr files.

        Returns:
            Whether the background job was launched (not whether it will succeed)
        """
        self.files.stdout.parent.mkdir(parents=True, exist_ok=True)
        shell_command = " ".join(shlex.quote(str(part)) for part in command)
        shell_command += (
            f" 2> {shlex.quote(str(self.files.stderr))}"
            f" 1> {shlex.quote(str(self.files.stdout))}"
        )
        launched = self.job_runner.run_in_background_without_escaping(shell_command, self.job_hash)
        if launched:
            self.log.info(f"Started background job: {command[0]}")
        else:
            self.log.error(f"Failed to start background job: {command[0]}")
        return launched

    def is_running(self) -> bool:
        return self.job_runner.is_running(self.job_hash)

    def stop(self) -> bool:
        """Kill the job's background process. Stopping a finished job succeeds."""
        stopped = self.job_runner.kill(self.job_hash)
        self.log.info(f"Stop requested, job stopped: {stopped}")
        return stopped

    @contextmanager
    def guard_start(self) -> Generator[None, None, None]:
        """Serialise starts for this job and refuse to start over a live job.

        Raises:
            JobAlreadyRunningError: If the job's background process is alive
        """
        with job_start_lock(self.files.lock, self.job_hash):
            if self.is_running():
                self.log.warning(f"RSZ1005 Refusing to start, job {self.job_hash} is running")
                raise JobAlreadyRunningError(self.job_hash)
            yield

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def get_resize_progress(self, generate: Callable[[], ResizeProgress]) -> ResizeProgress:
        """Build resize progress, releasing the loop once the job has stopped.

        Cleanup failures are logged and never reach the caller.
        """
        progress = generate()
        self.poll_log.trace(
            f"Resize progress: running={progress.running} stage={progress.stage} "
            f"percent={progress.percent}"
        )

        if not progress.running and self.needs_cleanup():
            try:
                self.clean_up_loop()
                self.set_clean_status(True)
            except (ResizeError, OSError) as error:
                self.log.warning(f"RSZ1004 Loop cleanup after resize failed: {error}")

        return progress

    def calc_min_size_progress(
        self, parse: Callable[[Optional[str]], parsers.CalcMinSizeState]
    ) -> CalcMinSizeProgress:
        """Build minimum size progress from the helper's stdout file."""
        running = self.is_running()
        try:
            state = parse(self.read_stdout())
        except SizeParseError as error:
            self.log.error(
                f"RFS0001 Unable to parse calculateMinimumSize output {error.output!r} "
                f"with {error.pattern!r}"
            )
            raise

        sizes = state.sizes
        progress = CalcMinSizeProgress(
            running=running,
            stage=state.stage,
            percent_complete=state.percent_complete,
            std_err=self.read_stderr(),
            current_volume_size=sizes.current_volume_size if sizes else 0,
            minimum_volume_size=sizes.minimum_volume_size if sizes else 0,
            cluster_size=sizes.cluster_size if sizes else 0,
        )
        self.poll_log.trace(
            f"Minimum size progress: running={running} stage={progress.stage} "
            f"percent={progress.percent_complete}"
        )
        return progress
