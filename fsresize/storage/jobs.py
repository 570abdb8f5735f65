"""Detached background jobs run under GNU screen.

Long tool runs (resize2fs, ntfsresize, the calcminsize helper) are started in
a detached ``screen`` session named after the job hash, so they outlive the
process that launched them. Later processes poll ``screen -ls`` to learn
whether the job is still alive.
"""

from __future__ import annotations

import os
import re
import signal
import time
from typing import Callable, Sequence

from fsresize.logging import LoggerFactory
from fsresize.storage.commands import run_command
from fsresize.storage.exceptions import CommandError


log = LoggerFactory.for_jobs()

SCREEN_BINARY = "screen"

# Maximum socket path length (108) minus path prefix (19), PID (5),
# delimiter and terminator (2) and headroom (3).
MAXIMUM_SCREEN_NAME_LENGTH = 79
DETAILS_OMISSION_STRING = "---"

_SCREEN_LINE = re.compile(r"^\s*(\d+)\.(\S+)")


class ScreenJobRunner:
    """Launch, inspect and kill named background jobs."""

    def __init__(
        self,
        runner: Callable = run_command,
        kill: Callable[[int, int], None] = os.kill,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float | None = None,
    ):
        self._run = runner
        self._kill = kill
        self._sleep = sleep
        self._timeout = timeout

    def run_in_background(self, command: Sequence[str], job_name: str) -> bool:
        """Run ``command`` in a detached screen called ``job_name``.

        Returns:
            True if screen launched the session, False otherwise
        """
        short_name = self.get_short_name(job_name)
        full_command = [SCREEN_BINARY, "-dmS", short_name, *command]
        log.debug(f"SCN0002 Starting screen: {' '.join(full_command)}")
        try:
            result = self._run(full_command, check=False, timeout=self._timeout)
        except CommandError as error:
            log.error(f"SCN0000 Error launching screen {short_name}: {error}")
            return False

        if result.returncode != 0:
            log.error(
                f"SCN0000 Error launching screen {short_name}: "
                f"{(result.stderr or result.stdout or '').strip()}"
            )
            return False
        return True

    def run_in_background_without_escaping(self, command: str, job_name: str) -> bool:
        """Run a shell command line (pipes, redirects) in a detached screen.

        The caller is responsible for quoting every argument.
        """
        return self.run_in_background(["/bin/bash", "-c", command], job_name)

    def is_running(self, job_name: str) -> bool:
        return self._get_pid(job_name) > 0

    def kill(self, job_name: str, sig: int = signal.SIGKILL) -> bool:
        """Kill the named job.

        Returns:
            True if the job is no longer running (including when it never was)
        """
        pid = self._get_pid(job_name)
        if pid > 0:
            if pid <= 1:
                return False
            try:
                self._kill(pid, sig)
            except ProcessLookupError:
                log.debug(f"SCN0004 Screen {job_name} exited before it was signalled")
            self._sleep(0.1)
            self._run([SCREEN_BINARY, "-wipe"], check=False)
            self._sleep(0.1)

        return not self.is_running(job_name)

    def get_screens(self, job_name: str = "") -> dict[int, str]:
        """Map PID to session name for the job's session (every session if ``job_name`` is empty)."""
        result = self._run([SCREEN_BINARY, "-ls"], check=False)
        output = result.stdout or ""
        if result.returncode != 0 and not output.startswith("No Sockets found"):
            log.warning(f"SCN0003 screen -ls did not run successfully: {(result.stderr or '').strip()}")

        session_name = self.get_short_name(job_name)
        screens: dict[int, str] = {}
        # Example line: "  22382.agent-resize-1700000000-guid   (03/29/2017 10:18:01 AM)  (Detached)"
        for line in output.splitlines():
            match = _SCREEN_LINE.match(line)
            if match and (job_name == "" or match.group(2) == session_name):
                screens[int(match.group(1))] = match.group(2)
        return screens

    @staticmethod
    def get_short_name(job_name: str) -> str:
        """Shorten a job name to fit screen's socket path limit.

        Keeps the beginning and the end of the name joined by ``---``.
        """
        if len(job_name) <= MAXIMUM_SCREEN_NAME_LENGTH:
            return job_name
        side = ScreenJobRunner._side_length()
        return job_name[:side] + DETAILS_OMISSION_STRING + job_name[-side:]

    def _get_pid(self, job_name: str) -> int:
        screens = self.get_screens(job_name)
        if not screens:
            return 0
        return list(screens)[-1]

    @staticmethod
    def _side_length() -> int:
        return (MAXIMUM_SCREEN_NAME_LENGTH - len(DETAILS_OMISSION_STRING)) // 2
