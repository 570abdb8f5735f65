"""
Pytest configuration and shared fixtures for fsresize tests.

This module provides common fixtures and utilities used across all test modules.
No fixture runs a real filesystem tool, loop device or screen session.
"""

import subprocess
from pathlib import Path
from typing import Callable
from unittest.mock import Mock

import pytest
from loguru import logger

from fsresize.domain.models import ResizeJob
from fsresize.resize.base import ResizeSession
from fsresize.storage.jobs import ScreenJobRunner
from fsresize.storage.loop import LoopInfo, LoopManager


AGENT = "agent1"
SNAPSHOT = "1700000000"
GUID = "0f3c9a4e-5d1b-4c7a-9e2f-7b6a1c2d3e4f"


def completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    """Build a finished process result like run_command returns."""
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


# ==============================================================================
# Logging
# ==============================================================================


@pytest.fixture(autouse=True)
def quiet_logging():
    """
    Auto-use fixture that removes loguru sinks around each test.

    Keeps enqueued sinks from an earlier setup_logging() call from leaking
    into later tests.
    """
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def log_records():
    """
    Fixture capturing loguru records emitted during the test.

    Returns:
        List that receives each record dict.
    """
    records = []
    logger.add(lambda message: records.append(message.record), level="TRACE", enqueue=False)
    return records


# ==============================================================================
# Job Fixtures
# ==============================================================================


@pytest.fixture
def image_root(tmp_path) -> Path:
    root = tmp_path / "homePool"
    root.mkdir()
    return root


@pytest.fixture
def status_dir(tmp_path) -> Path:
    keys = tmp_path / "keys"
    keys.mkdir()
    return keys


@pytest.fixture
def resize_job() -> ResizeJob:
    """Fixture providing the job identity used across resizer tests."""
    return ResizeJob(AGENT, SNAPSHOT, GUID)


@pytest.fixture
def image_file(image_root, resize_job) -> Path:
    """
    Fixture providing an existing (empty) volume image for the job.

    Returns:
        Path to <image_root>/<agent>-<snapshot>-bmr/<guid>.datto
    """
    path = resize_job.image_path(image_root)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"")
    return path


# ==============================================================================
# Collaborator Mock Fixtures
# ==============================================================================


@pytest.fixture
def loop_info(image_file) -> LoopInfo:
    return LoopInfo("/dev/loop7", str(image_file))


@pytest.fixture
def mock_loop_manager(loop_info) -> Mock:
    """
    Fixture providing a LoopManager double.

    No loop exists for the image until create() is called.
    """
    manager = Mock(spec=LoopManager)
    manager.get_loops_on_file.return_value = []
    manager.create.return_value = loop_info
    return manager


@pytest.fixture
def mock_job_runner() -> Mock:
    """Fixture providing a ScreenJobRunner double with no running jobs."""
    runner = Mock(spec=ScreenJobRunner)
    runner.is_running.return_value = False
    runner.run_in_background_without_escaping.return_value = True
    runner.kill.return_value = True
    return runner


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("subprocess.run")


@pytest.fixture
def mock_runner() -> Mock:
    """Fixture providing a run_command double that succeeds with no output."""
    return Mock(return_value=completed())


@pytest.fixture
def make_session(
    resize_job, image_root, status_dir, mock_loop_manager, mock_job_runner, mock_runner
) -> Callable[..., ResizeSession]:
    """
    Fixture returning a ResizeSession builder wired to the mock collaborators.

    Keyword arguments override the session's constructor arguments.
    """

    def build(**overrides) -> ResizeSession:
        kwargs = dict(
            image_root=image_root,
            status_dir=status_dir,
            loop_manager=mock_loop_manager,
            job_runner=mock_job_runner,
            runner=mock_runner,
            helper_binary="fsresize-helper",
            tool_timeout=60,
        )
        kwargs.update(overrides)
        return ResizeSession(resize_job, **kwargs)

    return build


@pytest.fixture
def session(make_session) -> ResizeSession:
    return make_session()
