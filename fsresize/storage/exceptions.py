"""Custom exceptions for filesystem resize operations.

This module defines a hierarchy of exceptions for resize operations. Every
exception carries a stable numeric ``code`` so callers that only see the
message and code can still tell failures apart.

Exception Hierarchy:
    ResizeError (base)
        ├── LoopSetupError              101
        ├── CannotResizeError           102
        ├── ResizeCommandError          200
        ├── ResizeParseError            210
        ├── FsckError                   230
        ├── ResizeInfoError             300
        ├── SizeParseError              310
        ├── UnsupportedOperationError   400
        ├── UnknownFilesystemError      401
        ├── VolumeNotFoundError         402
        ├── JobAlreadyRunningError      403
        ├── CommandError                500
        └── LoopDeviceError             510

Usage:
    from fsresize.storage.exceptions import CannotResizeError

    if candidate > original_size:
        raise CannotResizeError(image_path)
"""

from __future__ import annotations


class ResizeError(Exception):
    """Base exception for all resize operations."""

    code = 1

    def __init__(self, message: str = "", code: int | None = None):
        if code is not None:
            self.code = code
        super().__init__(message)


class LoopSetupError(ResizeError):
    """A loop device could not be set up for the image file."""

    code = 101

    def __init__(self, image_path: str, reason: str = ""):
        self.image_path = image_path
        self.reason = reason
        msg = "Failed to setup loop device."
        if reason:
            msg += f" {reason}"
        super().__init__(msg)


class CannotResizeError(ResizeError):
    """The filesystem cannot be shrunk."""

    code = 102

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"{path} cannot be resized")


class ResizeCommandError(ResizeError):
    """The resize tool exited with an error."""

    code = 200

    def __init__(self, message: str = "Error running resize"):
        super().__init__(message)


class ResizeParseError(ResizeError):
    """The resize tool output did not contain the expected line."""

    code = 210

    def __init__(self, message: str = "Error parsing resize estimate."):
        super().__init__(message)


class FsckError(ResizeError):
    """The filesystem check reported uncorrected errors."""

    code = 230

    def __init__(self, exit_code: int | None):
        self.exit_code = exit_code
        super().__init__(f"Unable to run fsck (exit code {exit_code}).")


class ResizeInfoError(ResizeError):
    """Gathering size information, or starting a calculation, failed."""

    code = 300


class SizeParseError(ResizeError):
    """A size value could not be parsed from tool output."""

    code = 310

    def __init__(self, output: str, pattern: str):
        self.output = output
        self.pattern = pattern
        super().__init__(
            f"Failed to parse calculateMinimumSize output '{output}' with '{pattern}'"
        )


class UnsupportedOperationError(ResizeError):
    """The operation is not supported for this filesystem type."""

    code = 400

    def __init__(self, operation: str, filesystem: str):
        self.operation = operation
        self.filesystem = filesystem
        super().__init__(f"{operation} is not supported for {filesystem} filesystems")


class UnknownFilesystemError(ResizeError):
    """No resizer exists for the recorded filesystem type."""

    code = 401

    def __init__(self, filesystem: str | None):
        self.filesystem = filesystem
        super().__init__(f"Unsupported filesystem type: {filesystem!r}")


class VolumeNotFoundError(ResizeError):
    """Snapshot metadata has no record of the volume."""

    code = 402

    def __init__(self, volume_guid: str, reason: str = ""):
        self.volume_guid = volume_guid
        self.reason = reason
        msg = f"Volume not found in snapshot metadata: {volume_guid}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class JobAlreadyRunningError(ResizeError):
    """A job for the same agent, snapshot and volume is already running."""

    code = 403

    def __init__(self, job_hash: str):
        self.job_hash = job_hash
        super().__init__(f"Job {job_hash} is already running")


class CommandError(ResizeError):
    """An external command failed or timed out."""

    code = 500

    def __init__(
        self,
        command: list[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
        message: str | None = None,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        if message is None:
            detail = self.stderr.strip() or self.stdout.strip() or "Command failed"
            message = f"Command failed ({' '.join(self.command)}): {detail}"
        super().__init__(message)


class LoopDeviceError(ResizeError):
    """A loop device operation failed."""

    code = 510
