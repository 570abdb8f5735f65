"""External command execution helpers."""

from __future__ import annotations

import subprocess
from typing import Optional, Sequence

from fsresize.logging import LoggerFactory
from fsresize.storage.exceptions import CommandError


log = LoggerFactory.for_system()


def run_command(
    command: Sequence[str],
    check: bool = True,
    timeout: Optional[float] = None,
    log_output: bool = True,
    log_command: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command and capture its output.

    Args:
        command: Argument list; never passed through a shell
        check: Raise CommandError on a non-zero exit code
        timeout: Seconds to wait before giving up (None waits forever)
        log_output: Log stdout/stderr at DEBUG even on success
        log_command: Log the command line and return code

    Returns:
        The completed process, with text stdout/stderr

    Raises:
        CommandError: If the command fails (check=True), times out, or
            cannot be executed at all
    """
    command = [str(part) for part in command]
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as error:
        log.error(f"Command timed out after {timeout}s: {' '.join(command)}")
        raise CommandError(
            command,
            None,
            stdout=_decode(error.stdout),
            stderr=_decode(error.stderr),
            message=f"Command timed out after {timeout}s ({' '.join(command)})",
        ) from error
    except OSError as error:
        log.error(f"Command could not be executed: {' '.join(command)}: {error}")
        raise CommandError(command, None, stderr=str(error)) from error

    if result.stdout and (log_output or result.returncode != 0):
        log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")

    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


def _decode(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = ["run_command"]
