from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "FSRESIZE_LOG_DIR",
        Path.home() / ".local" / "state" / "fsresize" / "logs",
    )
)


def _should_log_poll(record) -> bool:
    """Filter routine status poll logs - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    # Always log warnings and above
    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "poll" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Tool failures, loop setup failures
    - SUCCESS/INFO: Resize and calculation jobs started/finished
    - DEBUG: Command lines and raw tool output
    - TRACE: Every progress poll

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/fsresize/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr)
    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_should_log_poll,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "<blue>{extra[job_id]: <30}</blue> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <30} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <30} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Structured JSON Log (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier (the resize job hash)
        tags: Tags for filtering (e.g., ["resize", "ntfs"])
        source: Source component (e.g., "resize", "loop", "jobs")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Automatically logs operation start, completion, and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "calcminsize")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("calcminsize", path="/dev/loop3p1") as log:
            log.debug("Running e2fsck")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(f"{operation} completed", duration_seconds=round(duration, 2))
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source, tags, and context for the domain.
    """

    @staticmethod
    def for_resize(job_id: str | None = None, filesystem: str | None = None) -> Logger:
        """Logger for resize and minimum size operations on one volume."""
        tags = ["resize", "storage"]
        if filesystem:
            tags.append(filesystem)
        return logger.bind(job_id=job_id or "-", source="resize", tags=tags)

    @staticmethod
    def for_poll(job_id: str | None = None) -> Logger:
        """Logger for progress polling (TRACE-level noise by default)."""
        return logger.bind(job_id=job_id or "-", source="poll", tags=["resize", "poll"])

    @staticmethod
    def for_loop() -> Logger:
        """Logger for loop device management."""
        return logger.bind(source="loop", tags=["loop", "block"])

    @staticmethod
    def for_jobs() -> Logger:
        """Logger for the background job runner."""
        return logger.bind(source="jobs", tags=["jobs", "screen"])

    @staticmethod
    def for_helper(job_id: str | None = None) -> Logger:
        """Logger for the privileged calcminsize helper."""
        if job_id is None:
            job_id = f"helper-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="helper", tags=["helper", "calcminsize"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, config, commands)."""
        return logger.bind(source="system", tags=["system"])
