"""``fsresize``: operator entry point for the resize engine.

Every command prints a JSON object on stdout, e.g.:

    $ fsresize min-size-status agent1 1700000000 0f3c...
    {"running": true, "stage": "Calculate minimum NTFS size", "percentComplete": 45, ...}
"""

import argparse
import json
import sys

from fsresize.logging import LoggerFactory, setup_logging
from fsresize.resize.factory import build_default_factory
from fsresize.storage.exceptions import ResizeError


log = LoggerFactory.for_system()

COMMANDS = (
    "min-size",
    "resize",
    "status",
    "stop",
    "min-size-start",
    "min-size-status",
    "min-size-stop",
)


def build_parser():
    parser = argparse.ArgumentParser(prog="fsresize", description="Snapshot filesystem resize")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every progress poll")

    volume = argparse.ArgumentParser(add_help=False)
    volume.add_argument("agent", help="Agent key")
    volume.add_argument("snapshot", help="Snapshot epoch")
    volume.add_argument("guid", help="Volume GUID")
    volume.add_argument("--extension", default=None, help="Clone extension (default from settings)")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("min-size", parents=[volume], help="Calculate minimum size (blocking)")
    resize = subparsers.add_parser("resize", parents=[volume], help="Start a resize")
    resize.add_argument("--target-size", type=int, required=True, help="Target size in bytes")
    subparsers.add_parser("status", parents=[volume], help="Progress of a resize")
    subparsers.add_parser("stop", parents=[volume], help="Stop a resize")
    subparsers.add_parser("min-size-start", parents=[volume], help="Start a minimum size calculation")
    subparsers.add_parser(
        "min-size-status", parents=[volume], help="Progress of a minimum size calculation"
    )
    subparsers.add_parser("min-size-stop", parents=[volume], help="Stop a minimum size calculation")
    return parser


def run(args, factory):
    """Dispatch one command and return its JSON-serialisable result."""
    resizer = factory.get_resizer(args.agent, args.snapshot, args.guid, args.extension)
    command = args.command
    if command == "min-size":
        return resizer.calculate_minimum_size().to_dict()
    if command == "resize":
        return {"started": resizer.resize_to_size(args.target_size)}
    if command == "status":
        return resizer.get_resize_progress().to_dict()
    if command == "stop":
        return {"screendead": resizer.stop_resize()}
    if command == "min-size-start":
        return {"started": resizer.calculate_minimum_size_start()}
    if command == "min-size-status":
        return resizer.calculate_minimum_size_generate_progress_object().to_dict()
    if command == "min-size-stop":
        return {"screendead": resizer.calculate_minimum_size_stop()}
    raise ValueError(f"Unknown command: {command}")


def main(argv=None, factory=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace)

    factory = factory or build_default_factory()
    try:
        result = run(args, factory)
    except ResizeError as error:
        log.error(f"{args.command} failed for {args.guid}: {error} (code {error.code})")
        print(json.dumps({"error": str(error), "code": error.code}))
        return 1

    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
