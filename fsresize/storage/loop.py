"""Loop device management for flat volume images.

Native filesystem tools need a block device, so every image is exposed
through a loop device (``losetup``) with partition scanning enabled. The
image's first partition then appears as ``<loop>p1``.

Functions:
    - LoopManager.create(): Attach a file to a free loop device
    - LoopManager.get_loops_on_file(): Find loops already attached to a file
    - LoopManager.destroy(): Detach a loop and wait until the kernel lets go
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from fsresize.logging import LoggerFactory
from fsresize.storage.commands import run_command
from fsresize.storage.exceptions import LoopDeviceError


log = LoggerFactory.for_loop()

LOSETUP = "losetup"

# Initial wait between detach checks, doubled after each attempt (1, 2, 4, 8s)
HUNG_LOOP_WAIT_INTERVAL = 1.0


@dataclass(frozen=True)
class LoopInfo:
    """A loop device and the file backing it."""

    path: str
    backing_file: Optional[str] = None

    def partition_path(self, number: int = 1) -> str:
        """Device node for a partition of this loop (e.g. /dev/loop3p1)."""
        return f"{self.path}p{number}"


class LoopManager:
    """Creates, finds and destroys loop devices through ``losetup``."""

    def __init__(
        self,
        runner: Callable = run_command,
        sleep: Callable[[float], None] = time.sleep,
        partition_scan_attempts: int = 60,
        partition_scan_interval: float = 0.5,
        detach_attempts: int = 5,
    ):
        self._run = runner
        self._sleep = sleep
        self._partition_scan_attempts = partition_scan_attempts
        self._partition_scan_interval = partition_scan_interval
        self._detach_attempts = detach_attempts

    def create(self, file: str | Path, part_scan: bool = True) -> LoopInfo:
        """Attach ``file`` to the first free loop device.

        Raises:
            LoopDeviceError: If the file does not exist or losetup fails
        """
        backing_file = self._resolve(file)
        command = [LOSETUP, "--show", "--find"]
        if part_scan:
            command.append("--partscan")
        command.append(backing_file)

        result = self._run(command, check=False)
        if result.returncode != 0:
            raise LoopDeviceError(f"Loop creation failed: {(result.stderr or '').strip()}")

        loop_path = result.stdout.strip()
        log.debug(f"LOP1001 Created loop {loop_path} for {backing_file}")

        if part_scan:
            self._wait_for_partitions(loop_path)

        return LoopInfo(loop_path, backing_file)

    def get_loops_on_file(self, file: str | Path) -> list[LoopInfo]:
        """Return every loop device currently attached to ``file``."""
        backing_file = self._resolve(file)
        result = self._run(
            [LOSETUP, "--list", "--json", "--associated", backing_file], check=False
        )
        if result.returncode != 0:
            return []

        loops = self._parse_loops(result.stdout)
        for loop in loops:
            log.debug(f"LOP1009 Found loop at {loop.path} for {os.path.basename(backing_file)}")
        return loops

    def get_loops(self) -> list[LoopInfo]:
        result = self._run([LOSETUP, "--list", "--json"], check=False)
        if result.returncode != 0:
            return []
        return self._parse_loops(result.stdout)

    def exists(self, loop_path: str) -> bool:
        return any(loop.path == loop_path for loop in self.get_loops())

    def destroy(self, loop: LoopInfo) -> None:
        """Detach ``loop`` and wait for the kernel to release it.

        Raises:
            LoopDeviceError: If the loop is still attached after all retries
        """
        if not self.exists(loop.path):
            log.warning(f"LOP1012 Trying to delete nonexistent loop device {loop.path}")
            return

        log.debug(f"LOP1017 Detaching {loop.backing_file} from loop device {loop.path}")
        result = self._run([LOSETUP, "--detach", loop.path], check=False)
        if result.returncode != 0:
            log.error(
                f"LOP1011 Error detaching loop device {loop.path}: "
                f"{(result.stderr or '').strip()}"
            )

        wait = HUNG_LOOP_WAIT_INTERVAL
        for attempt in range(self._detach_attempts):
            if not self.exists(loop.path):
                log.info(f"LOP1014 Deleted loop device {loop.path} no longer exists")
                return

            if attempt < self._detach_attempts - 1:
                log.warning(
                    f"LOP1016 Loop {loop.path} still in use, flushing buffers and retrying"
                )
                self._run(["blockdev", "--flushbufs", loop.path], check=False)
                self._sleep(wait)
                wait *= 2

        log.critical(f"LOP1006 Failed to destroy loop device {loop.path}")
        raise LoopDeviceError(
            f"Timed out detaching loop device {loop.path} "
            f"with backing file {loop.backing_file}."
        )

    def _wait_for_partitions(self, loop_path: str) -> bool:
        for _ in range(self._partition_scan_attempts):
            if self._partition_nodes(loop_path):
                return True
            self._sleep(self._partition_scan_interval)

        log.warning(f"LOP1003 Failed to find partitions under {loop_path}")
        return False

    @staticmethod
    def _partition_nodes(loop_path: str) -> list[Path]:
        device = Path(loop_path)
        return sorted(device.parent.glob(f"{device.name}p*"))

    @staticmethod
    def _resolve(file: str | Path) -> str:
        path = Path(file)
        if not path.exists():
            raise LoopDeviceError(f'The given target file "{file}" does not exist.')
        return str(path.resolve())

    @staticmethod
    def _parse_loops(output: str) -> list[LoopInfo]:
        try:
            decoded = json.loads(output or "{}")
        except json.JSONDecodeError:
            log.warning("LOP1010 Unable to decode losetup output")
            return []
        loops = []
        for device in decoded.get("loopdevices", []):
            name = device.get("name") or ""
            if name:
                loops.append(LoopInfo(name, device.get("back-file") or None))
        return loops
