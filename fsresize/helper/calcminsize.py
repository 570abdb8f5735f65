"""Minimum size calculations run by the privileged helper.

The helper works on a device path it is handed and reports only through
fixed-format lines on stdout, which the resizers parse from the job's output
file while it runs. Every line is flushed as soon as it is written.
"""

from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from fsresize.config.settings import DEFAULT_TOOL_TIMEOUT_SECONDS
from fsresize.logging import LoggerFactory
from fsresize.resize import parsers
from fsresize.resize.ext import E2FSCK, FSCK_ALLOWED_EXIT_CODES, RESIZE2FS, STAT
from fsresize.resize.ntfs import FLAG_BAD_SECTORS, FLAG_FORCE, FLAG_INFO_ONLY, FLAG_NO_ACTION
from fsresize.resize.ntfs import FLAG_SIZE, NTFSRESIZE
from fsresize.storage.commands import run_command
from fsresize.storage.exceptions import (
    CannotResizeError,
    CommandError,
    ResizeCommandError,
    ResizeParseError,
    SizeParseError,
)


SUCCESS_LINE = "Successfully calculated minimum filesystem size"


class MinimumSizeCalculator:
    """Runs the native tools against ``path`` and prints the results."""

    def __init__(
        self,
        runner: Callable = run_command,
        out: Optional[TextIO] = None,
        timeout: float = DEFAULT_TOOL_TIMEOUT_SECONDS,
        job_id: Optional[str] = None,
    ):
        self._run = runner
        self._out = out or sys.stdout
        self._timeout = timeout
        self.log = LoggerFactory.for_helper(job_id)

    def _write(self, line: str) -> None:
        print(line, file=self._out, flush=True)

    def _write_sizes(self, report: parsers.SizeReport) -> None:
        for line in parsers.format_size_report(report):
            self._write(line)

    def _tool(self, command: list[str], check: bool = True):
        return self._run(command, check=check, timeout=self._timeout)

    # ------------------------------------------------------------------
    # EXT / XFS
    # ------------------------------------------------------------------

    def ext(self, path: str) -> parsers.SizeReport:
        """e2fsck, then ``resize2fs -P``.

        Raises:
            CannotResizeError: If e2fsck leaves errors behind
            ResizeCommandError: If resize2fs fails
            ResizeParseError: If resize2fs printed no estimate
        """
        fsck = self._tool([E2FSCK, "-f", "-a", path], check=False)
        if fsck.returncode not in FSCK_ALLOWED_EXIT_CODES:
            self.log.warning(f"e2fsck exited with {fsck.returncode} on {path}")
            raise CannotResizeError(path)

        try:
            estimate = self._tool([RESIZE2FS, path, "-P"]).stdout
        except CommandError as error:
            raise ResizeCommandError() from error

        min_blocks = parsers.parse_ext_estimate(estimate)
        if min_blocks is None:
            raise ResizeParseError()

        block_size = self._block_size(path)
        report = parsers.SizeReport(
            current_volume_size=self._device_size(path),
            minimum_volume_size=min_blocks * block_size,
            cluster_size=block_size,
        )
        self._write(SUCCESS_LINE)
        self._write_sizes(report)
        return report

    def xfs(self, path: str) -> parsers.SizeReport:
        """XFS cannot shrink: the minimum is the current size."""
        size = self._device_size(path)
        report = parsers.SizeReport(
            current_volume_size=size,
            minimum_volume_size=size,
            cluster_size=self._block_size(path),
        )
        self._write(SUCCESS_LINE)
        self._write_sizes(report)
        return report

    # ------------------------------------------------------------------
    # NTFS
    # ------------------------------------------------------------------

    def ntfs_estimated(self, path: str) -> parsers.SizeReport:
        """Sizes from ``ntfsresize --info``; the minimum is ntfsresize's own estimate."""
        output = self._tool([NTFSRESIZE, FLAG_INFO_ONLY, FLAG_FORCE, FLAG_BAD_SECTORS, path]).stdout
        info = parsers.parse_ntfs_info(output)
        report = parsers.SizeReport(
            current_volume_size=info.original_size,
            minimum_volume_size=info.recommended_min,
            cluster_size=info.cluster_size,
        )
        self._write_sizes(report)
        return report

    def ntfs_precise(
        self, path: str, recommended_min: int, cluster_size: int, original_size: int
    ) -> parsers.SizeReport:
        """Dry run candidates 5% apart until ntfsresize accepts one.

        Prints a "Checking attempt" line per candidate so callers can follow
        progress, then either a "Success on attempt" line or, when no
        candidate passed, an "Unable to calculate" line naming the fallback.

        Raises:
            CannotResizeError: If a candidate grows past ``original_size``
        """
        max_steps = parsers.NTFS_MAX_STEPS
        candidate = recommended_min
        for attempt, candidate in parsers.ntfs_candidates(recommended_min, cluster_size):
            self._write(f"Checking attempt {attempt} of {max_steps} for size {candidate}")

            if candidate > original_size:
                raise CannotResizeError(path)

            try:
                report = self._dry_run(path, candidate)
            except (CommandError, SizeParseError) as error:
                self.log.debug(f"Dry run at {candidate} failed: {error}")
                continue

            self._write(f"Success on attempt {attempt} of {max_steps} for size {candidate}")
            self._write_sizes(report)
            return report

        self._write(
            f"Unable to calculate a minimum size after {max_steps} attempts. "
            f"Defaulting to {candidate}."
        )
        report = parsers.SizeReport(
            current_volume_size=original_size,
            minimum_volume_size=candidate,
            cluster_size=cluster_size,
        )
        self._write_sizes(report)
        return report

    def _dry_run(self, path: str, size: int) -> parsers.SizeReport:
        output = self._tool(
            [NTFSRESIZE, FLAG_FORCE, FLAG_BAD_SECTORS, FLAG_NO_ACTION, FLAG_SIZE, str(size), path]
        ).stdout
        return parsers.SizeReport(
            current_volume_size=parsers.require_size(output, parsers.REGEX_NTFS_ORIGINAL_SIZE),
            minimum_volume_size=parsers.require_size(output, parsers.REGEX_NTFS_NEW_VOLUME_SIZE),
            cluster_size=parsers.require_size(output, parsers.REGEX_NTFS_CLUSTER_SIZE),
        )

    # ------------------------------------------------------------------
    # Device facts
    # ------------------------------------------------------------------

    def _device_size(self, path: str) -> int:
        return int(self._tool(["blockdev", "--getsize64", path]).stdout.strip())

    def _block_size(self, path: str) -> int:
        return int(self._tool([STAT, "--file-system", path, "--format=%s"]).stdout.strip())
