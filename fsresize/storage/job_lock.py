"""Per-job start lock so two starts for the same volume cannot overlap.

Job hashes and output files are deterministic per (agent, snapshot, volume),
so a second start would overwrite the first job's files and screen. Starts
are serialised with an in-process lock plus an ``flock`` on a lock file next
to the job's output files, which also covers separate processes.

Usage:
    from fsresize.storage.job_lock import job_start_lock

    with job_start_lock(files.lock, job_hash):
        if runner.is_running(job_hash):
            raise JobAlreadyRunningError(job_hash)
        runner.run_in_background(...)
"""

from __future__ import annotations

import fcntl
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from fsresize.logging import LoggerFactory


log = LoggerFactory.for_jobs()

# Lock for thread-safe access to the per-job lock table
_lock = threading.Lock()

_job_locks: dict[str, threading.Lock] = {}


def _thread_lock_for(job_hash: str) -> threading.Lock:
    with _lock:
        return _job_locks.setdefault(job_hash, threading.Lock())


@contextmanager
def job_start_lock(lock_path: Path, job_hash: str) -> Generator[None, None, None]:
    """Hold the start lock for ``job_hash`` for the duration of the block.

    Args:
        lock_path: Lock file (created if missing)
        job_hash: Job identifier, used for the in-process lock
    """
    thread_lock = _thread_lock_for(job_hash)
    with thread_lock:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(lock_path, "a") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            log.debug(f"Start lock acquired for {job_hash}")
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                log.debug(f"Start lock released for {job_hash}")
