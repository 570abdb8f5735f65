"""Parsers for resize tool output.

Every function here is pure: it takes text already read from a tool or an
output file and returns a typed result. File access and logging live in the
resizers.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from fsresize.domain.models import PERCENT_COMPLETE, STAGE_COMPLETE, STAGE_FAILED
from fsresize.storage.exceptions import SizeParseError


# Fixed-format lines printed by the calcminsize helper
REGEX_ORIGINAL_SIZE = r"Current volume size:[ ]?([0-9]+) bytes"
REGEX_CLUSTER_SIZE = r"Cluster size:[ ]+([0-9]+) bytes"
REGEX_MIN_VOLUME_SIZE = r"Minimum volume size:[ ]+([0-9]+) bytes"

# Raw ntfsresize --info output
REGEX_NTFS_ORIGINAL_SIZE = r"Current volume size:[ ]([0-9]+) bytes"
REGEX_NTFS_CLUSTER_SIZE = r"Cluster size[ ]+: ([0-9]+) bytes"
REGEX_NTFS_RECOMMENDED_MIN = r"You might resize at ([0-9]+) bytes"
REGEX_NTFS_NEW_VOLUME_SIZE = r"New volume size[ ]+: ([0-9]+) bytes"

REGEX_EXT_ESTIMATE = r".+: ([0-9]+)"
REGEX_CHECKING_ATTEMPT = r"Checking attempt ([0-9]+) of ([0-9]+)"

EXT_PASS_WIDTH = 40
EXT_PASS_RELOCATING = "Relocating blocks"
EXT_PASS_INODE_TABLE = "Scanning inode table"
EXT_PASS_INODE_REFERENCES = "Updating inode references"

# Attempts 1..19, each adding 5% to the recommended minimum
NTFS_MAX_STEPS = 20
NTFS_STEP_DIVISOR = 20

NTFS_TAIL_BYTES = 50
STAGE_CONSISTENCY_CHECK = "Consistency Check"
STAGE_RELOCATING_DATA = "Relocating Data"


@dataclass(frozen=True)
class SizeReport:
    """Sizes printed by the calcminsize helper, in bytes."""

    current_volume_size: int
    minimum_volume_size: int
    cluster_size: int


@dataclass(frozen=True)
class CalcMinSizeState:
    """What a calcminsize output file says about the job."""

    stage: str
    percent_complete: float
    sizes: Optional[SizeReport] = None


@dataclass(frozen=True)
class NtfsInfo:
    """Sizes reported by ``ntfsresize --info``, in bytes."""

    original_size: int
    cluster_size: int
    recommended_min: int


# ==============================================================================
# Generic helpers
# ==============================================================================


def parse_for_size(output: Optional[str], pattern: str) -> Optional[int]:
    """Extract an integer with a pattern that has exactly one capturing group.

    Returns:
        The parsed value, or None if the pattern does not match

    Raises:
        ValueError: If the pattern does not have exactly one group
    """
    regex = re.compile(pattern)
    if regex.groups != 1:
        raise ValueError(f"Size pattern must have exactly one group: {pattern}")
    match = regex.search(output or "")
    if match and match.group(1):
        return int(match.group(1).strip())
    return None


def require_size(output: Optional[str], pattern: str) -> int:
    """Like parse_for_size, but a missing value raises SizeParseError."""
    value = parse_for_size(output, pattern)
    if value is None:
        raise SizeParseError(output or "", pattern)
    return value


def parse_size_report(output: str) -> SizeReport:
    """Parse the three fixed-format size lines printed by the helper."""
    return SizeReport(
        current_volume_size=require_size(output, REGEX_ORIGINAL_SIZE),
        minimum_volume_size=require_size(output, REGEX_MIN_VOLUME_SIZE),
        cluster_size=require_size(output, REGEX_CLUSTER_SIZE),
    )


def format_size_report(report: SizeReport) -> list[str]:
    """Lines the helper prints so that parse_size_report can read them back."""
    return [
        f"Current volume size: {report.current_volume_size} bytes",
        f"Minimum volume size: {report.minimum_volume_size} bytes",
        f"Cluster size: {report.cluster_size} bytes",
    ]


# ==============================================================================
# EXT (resize2fs)
# ==============================================================================


def parse_ext_estimate(output: str) -> Optional[int]:
    """Block count from ``resize2fs -P`` ("Estimated minimum size of the filesystem: N")."""
    return parse_for_size(output, REGEX_EXT_ESTIMATE)


def ext_is_noop(std_err: Optional[str]) -> bool:
    """resize2fs had nothing to do: the filesystem is already the requested size."""
    if not std_err:
        return False
    return "The filesystem is already" in std_err and "Nothing to do!" in std_err


def ext_is_complete(progress: str) -> bool:
    return bool(re.search(r"is now", progress)) and bool(re.search(r"blocks long", progress))


def ext_pass_percent(progress: str, marker: str) -> float:
    """Percent of a resize2fs pass from its 40-character bar of ``X`` marks."""
    match = re.search(re.escape(marker) + r"(.*)", progress)
    if not match:
        return 0
    filled = min(match.group(1).count("X"), EXT_PASS_WIDTH)
    return (filled / EXT_PASS_WIDTH) * 100


def parse_ext_progress(
    progress: Optional[str], std_err: Optional[str] = None
) -> tuple[Optional[str], Optional[float]]:
    """Stage and percent of a ``resize2fs -p`` run.

    Example output:
        Resizing the filesystem on /dev/loop0p1 to 1847218 (4k) blocks.
        Begin pass 2 (max = 826001)
        Relocating blocks             XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX
        Begin pass 3 (max = 152)
        Scanning inode table          XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX-
        Begin pass 4 (max = 22996)
        Updating inode references     ----------------------------------------
        The filesystem on /dev/loop0p1 is now 1847218 (4k) blocks long.

    Returns:
        (stage, percent); (None, None) when nothing recognisable was written
    """
    if ext_is_noop(std_err):
        return STAGE_COMPLETE, PERCENT_COMPLETE

    if not progress or not progress.strip():
        return None, None

    if ext_is_complete(progress):
        return STAGE_COMPLETE, PERCENT_COMPLETE

    # Later passes supersede earlier ones
    for marker in (EXT_PASS_INODE_REFERENCES, EXT_PASS_INODE_TABLE, EXT_PASS_RELOCATING):
        if marker in progress:
            return marker, ext_pass_percent(progress, marker)

    return None, None


def parse_calc_min_size_output(output: Optional[str], running_stage: str) -> CalcMinSizeState:
    """State of an ext/xfs helper run from its stdout.

    Example output (success):
        Successfully calculated minimum filesystem size
        Current volume size: 267386880 bytes
        Minimum volume size: 27074560 bytes
        Cluster size: 4096 bytes

    Example output (failure):
        /dev/loop1p1 cannot be resized

    Anything else means the helper is still working.
    """
    if output is None:
        return CalcMinSizeState(running_stage, 0)
    if "cannot be resized" in output:
        return CalcMinSizeState(STAGE_FAILED, PERCENT_COMPLETE)
    if "Successfully calculated minimum filesystem size" in output:
        return CalcMinSizeState(STAGE_COMPLETE, PERCENT_COMPLETE, parse_size_report(output))
    return CalcMinSizeState(running_stage, 0)


# ==============================================================================
# NTFS (ntfsresize)
# ==============================================================================


def parse_ntfs_info(output: str) -> NtfsInfo:
    """Parse ``ntfsresize -i -f -b`` output.

    Example output:
        Cluster size       : 4096 bytes
        Current volume size: 64317551104 bytes (64318 MB)
        You might resize at 21653872640 bytes or 21654 MB (freeing 42664 MB).

    Raises:
        SizeParseError: If any of the three values is missing
    """
    return NtfsInfo(
        original_size=require_size(output, REGEX_NTFS_ORIGINAL_SIZE),
        cluster_size=require_size(output, REGEX_NTFS_CLUSTER_SIZE),
        recommended_min=require_size(output, REGEX_NTFS_RECOMMENDED_MIN),
    )


def ntfs_candidate_size(recommended_min: int, cluster_size: int, attempt: int) -> int:
    """Recommended minimum plus ``attempt`` x 5%, rounded up to a whole cluster."""
    grown = recommended_min * (1 + (attempt / NTFS_STEP_DIVISOR))
    return math.ceil(grown / cluster_size) * cluster_size


def ntfs_candidates(recommended_min: int, cluster_size: int) -> Iterator[tuple[int, int]]:
    """Yield (attempt, candidate size) for attempts 1..19."""
    for attempt in range(1, NTFS_MAX_STEPS):
        yield attempt, ntfs_candidate_size(recommended_min, cluster_size, attempt)


def scan_ntfs_resize_lines(lines: Iterable[str]) -> Optional[str]:
    """Find the first terminal or relocation marker in ntfsresize output.

    Returns:
        STAGE_COMPLETE, STAGE_RELOCATING_DATA, or None if neither was seen
    """
    for line in lines:
        if "Nothing to do" in line or "Successfully resized" in line:
            return STAGE_COMPLETE
        if "Relocating needed data" in line:
            return STAGE_RELOCATING_DATA
    return None


def parse_ntfs_progress_tail(tail: str) -> float:
    """Percent from the last bytes of an ntfsresize log during relocation.

    ntfsresize rewrites its progress line with carriage returns, so only the
    last ``\\r`` separated chunk matters. Once relocation has started, a tail
    without "percent completed" means the tool has moved past it.
    """
    chunks = tail.strip().split("\r")
    last = chunks[-1].strip() if chunks else ""
    if "percent completed" in last:
        try:
            return float(last.split(" ")[0].strip())
        except ValueError:
            return 0.0
    return 100.00


def parse_ntfs_precise_output(output: Optional[str], running_stage: str) -> CalcMinSizeState:
    """State of an NTFS ``--mode precise`` helper run from its stdout.

    Example output (success):
        Checking attempt 1 of 20 for size 15478689792
        Checking attempt 2 of 20 for size 16215769088
        Success on attempt 2 of 20 for size 16215769088
        Current volume size: 64317551104 bytes
        Minimum volume size: 16215769088 bytes
        Cluster size: 4096 bytes

    Example output (failure):
        Checking attempt 19 of 20 for size 12319772672
        Unable to calculate a minimum size after 20 attempts. Defaulting to 12319772672.

    Output with no recognisable marker counts as failed.
    """
    if output is None:
        return CalcMinSizeState(running_stage, 0)
    if "Unable to calculate a minimum size after" in output or "cannot be resized" in output:
        return CalcMinSizeState(STAGE_FAILED, PERCENT_COMPLETE)
    if "Success on attempt" in output:
        return CalcMinSizeState(STAGE_COMPLETE, PERCENT_COMPLETE, parse_size_report(output))

    attempts = re.findall(REGEX_CHECKING_ATTEMPT, output)
    if attempts:
        current, total = attempts[-1]
        return CalcMinSizeState(running_stage, int(100.0 * float(current) / float(total)))

    return CalcMinSizeState(STAGE_FAILED, 0)
