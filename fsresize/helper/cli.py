"""``fsresize-helper``: privileged minimum size calculations.

Usage:
    fsresize-helper asset:snapshot:ext:calcminsize --path /dev/loop44p1
    fsresize-helper asset:snapshot:xfs:calcminsize --path /dev/loop44p1
    fsresize-helper asset:snapshot:ntfs:calcminsize --mode estimated --path /dev/loop42p1
    fsresize-helper asset:snapshot:ntfs:calcminsize --mode precise --path /dev/loop42p1 \\
        --recommended-min 21059436544 --cluster-size 4096 --original-size 64317551104
"""

from __future__ import annotations

import argparse
import sys
from typing import Callable, Optional, TextIO

from fsresize.config import settings
from fsresize.helper.calcminsize import MinimumSizeCalculator
from fsresize.logging import operation_context, setup_logging
from fsresize.storage.commands import run_command
from fsresize.storage.exceptions import CannotResizeError, ResizeError


EXT_COMMAND = "asset:snapshot:ext:calcminsize"
XFS_COMMAND = "asset:snapshot:xfs:calcminsize"
NTFS_COMMAND = "asset:snapshot:ntfs:calcminsize"

MODE_ESTIMATED = "estimated"
MODE_PRECISE = "precise"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fsresize-helper", description="Calculate the minimum size of a filesystem"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, label in ((EXT_COMMAND, "ext2/3/4"), (XFS_COMMAND, "XFS")):
        subparser = subparsers.add_parser(name, help=f"Minimum size of an {label} filesystem")
        subparser.add_argument("--path", required=True, help="Block device holding the filesystem")

    ntfs = subparsers.add_parser(NTFS_COMMAND, help="Minimum size of an NTFS filesystem")
    ntfs.add_argument("--path", required=True, help="Block device holding the filesystem")
    ntfs.add_argument("--mode", choices=(MODE_ESTIMATED, MODE_PRECISE), default=MODE_ESTIMATED)
    ntfs.add_argument("--recommended-min", type=int, help="ntfsresize's estimated minimum, bytes")
    ntfs.add_argument("--cluster-size", type=int, help="Filesystem cluster size, bytes")
    ntfs.add_argument("--original-size", type=int, help="Current volume size, bytes")
    return parser


def main(
    argv: Optional[list[str]] = None,
    out: Optional[TextIO] = None,
    runner: Callable = run_command,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    precise_sizes = None
    if args.command == NTFS_COMMAND and args.mode == MODE_PRECISE:
        precise_sizes = (args.recommended_min, args.cluster_size, args.original_size)
        if None in precise_sizes:
            parser.error("--mode precise needs --recommended-min, --cluster-size, --original-size")

    setup_logging(debug=args.debug)
    out = out or sys.stdout
    calculator = MinimumSizeCalculator(
        runner=runner,
        out=out,
        timeout=settings.get_float("tool_timeout_seconds", settings.DEFAULT_TOOL_TIMEOUT_SECONDS),
    )

    try:
        with operation_context("calcminsize", command=args.command, path=args.path):
            if args.command == EXT_COMMAND:
                calculator.ext(args.path)
            elif args.command == XFS_COMMAND:
                calculator.xfs(args.path)
            elif precise_sizes is not None:
                calculator.ntfs_precise(args.path, *precise_sizes)
            else:
                calculator.ntfs_estimated(args.path)
    except CannotResizeError as error:
        print(str(error), file=out, flush=True)
        return 1
    except ResizeError as error:
        print(f"Error: {error} (code {error.code})", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
