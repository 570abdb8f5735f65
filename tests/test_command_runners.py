"""Tests for external command execution helpers."""
import subprocess
from unittest.mock import Mock

import pytest

from fsresize.storage.commands import run_command
from fsresize.storage.exceptions import CommandError


class TestRunCommand:
    """Tests for run_command function."""

    def test_successful_command(self, mock_subprocess_run):
        """Test successful command execution."""
        mock_subprocess_run.return_value = Mock(returncode=0, stdout="output", stderr="")

        result = run_command(["blockdev", "--getsize64", "/dev/loop0p1"])

        assert result.stdout == "output"
        mock_subprocess_run.assert_called_once_with(
            ["blockdev", "--getsize64", "/dev/loop0p1"],
            text=True,
            capture_output=True,
            timeout=None,
        )

    def test_arguments_are_stringified(self, mock_subprocess_run):
        """Test non-string arguments are converted before execution."""
        mock_subprocess_run.return_value = Mock(returncode=0, stdout="", stderr="")

        run_command(["resize2fs", "/dev/loop0p1", 1847218], timeout=5)

        args, kwargs = mock_subprocess_run.call_args
        assert args[0] == ["resize2fs", "/dev/loop0p1", "1847218"]
        assert kwargs["timeout"] == 5

    def test_failure_raises_with_details(self, mock_subprocess_run):
        """Test a non-zero exit raises CommandError with output attached."""
        mock_subprocess_run.return_value = Mock(returncode=8, stdout="", stderr="Bad magic number")

        with pytest.raises(CommandError, match="Bad magic number") as exc_info:
            run_command(["e2fsck", "-f", "-a", "/dev/loop0p1"])

        assert exc_info.value.returncode == 8
        assert exc_info.value.stderr == "Bad magic number"
        assert exc_info.value.command == ["e2fsck", "-f", "-a", "/dev/loop0p1"]

    def test_failure_without_check(self, mock_subprocess_run):
        """Test check=False returns the failed result instead of raising."""
        mock_subprocess_run.return_value = Mock(returncode=1, stdout="", stderr="fixed errors")

        result = run_command(["e2fsck", "-f", "-a", "/dev/loop0p1"], check=False)

        assert result.returncode == 1

    def test_timeout_raises_command_error(self, mock_subprocess_run):
        """Test a timeout is reported as CommandError."""
        mock_subprocess_run.side_effect = subprocess.TimeoutExpired(
            ["ntfsresize"], 10, output=b"partial", stderr=None
        )

        with pytest.raises(CommandError, match="timed out") as exc_info:
            run_command(["ntfsresize", "-i", "/dev/loop0p1"], timeout=10)

        assert exc_info.value.returncode is None
        assert exc_info.value.stdout == "partial"

    def test_missing_binary_raises_command_error(self, mock_subprocess_run):
        """Test a missing executable is reported as CommandError."""
        mock_subprocess_run.side_effect = FileNotFoundError("No such file: 'ntfsresize'")

        with pytest.raises(CommandError, match="ntfsresize"):
            run_command(["ntfsresize", "-i", "/dev/loop0p1"])

