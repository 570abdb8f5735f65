"""Tests for resizer selection by recorded filesystem type."""

import json
from pathlib import Path

import pytest

from conftest import AGENT, GUID, SNAPSHOT
from fsresize.config import settings
from fsresize.resize.ext import ExtResizer
from fsresize.resize.factory import ResizerFactory, build_default_factory
from fsresize.resize.ntfs import NtfsResizer
from fsresize.resize.xfs import XfsResizer
from fsresize.storage.exceptions import UnknownFilesystemError, VolumeNotFoundError
from fsresize.storage.metadata import VolumeMetadataStore


@pytest.fixture
def write_fstype(image_root):
    def write(fstype, extension="bmr"):
        clone = image_root / f"{AGENT}-{SNAPSHOT}-{extension}"
        clone.mkdir(parents=True, exist_ok=True)
        (clone / "voltab").write_text(json.dumps([{"uuid": GUID, "fstype": fstype}]))

    return write


@pytest.fixture
def factory(image_root, status_dir, mock_loop_manager, mock_job_runner, mock_runner):
    return ResizerFactory(
        VolumeMetadataStore(image_root),
        mock_loop_manager,
        mock_job_runner,
        mock_runner,
        status_dir=status_dir,
        helper_binary="/usr/sbin/fsresize-helper",
        tool_timeout=120,
    )


class TestGetResizer:
    """Tests for ResizerFactory.get_resizer()."""

    @pytest.mark.parametrize(
        "fstype, resizer_class",
        [
            ("ext2", ExtResizer),
            ("ext3", ExtResizer),
            ("ext4", ExtResizer),
            ("ntfs", NtfsResizer),
            ("xfs", XfsResizer),
            ("NTFS", NtfsResizer),
        ],
    )
    def test_selects_by_filesystem(self, factory, write_fstype, fstype, resizer_class):
        write_fstype(fstype)

        resizer = factory.get_resizer(AGENT, SNAPSHOT, GUID)

        assert isinstance(resizer, resizer_class)

    def test_unknown_filesystem(self, factory, write_fstype):
        write_fstype("btrfs")

        with pytest.raises(UnknownFilesystemError):
            factory.get_resizer(AGENT, SNAPSHOT, GUID)

    def test_unknown_volume(self, factory):
        with pytest.raises(VolumeNotFoundError):
            factory.get_resizer(AGENT, SNAPSHOT, GUID)

    def test_session_wiring(self, factory, write_fstype, image_root, status_dir):
        """Test the session is bound to the job and the factory's settings."""
        write_fstype("ext4")

        session = factory.get_resizer(AGENT, int(SNAPSHOT), GUID).session

        assert session.job_hash == f"{AGENT}-resize-{SNAPSHOT}-{GUID}"
        assert session.image_path == str(image_root / f"{AGENT}-{SNAPSHOT}-bmr" / f"{GUID}.datto")
        assert session.files.stdout == status_dir / f"{session.job_hash}.log"
        assert session.helper_binary == "/usr/sbin/fsresize-helper"
        assert session.tool_timeout == 120

    def test_extension(self, factory, write_fstype, image_root):
        write_fstype("xfs", extension="export")

        resizer = factory.get_resizer(AGENT, SNAPSHOT, GUID, extension="export")

        assert resizer.session.image_path.endswith(f"{AGENT}-{SNAPSHOT}-export/{GUID}.datto")


class TestBuildDefaultFactory:
    """Tests for build_default_factory()."""

    def test_uses_settings(self, monkeypatch):
        monkeypatch.setattr(
            settings.settings_store,
            "values",
            dict(settings.DEFAULT_SETTINGS, image_root="/tank", status_dir="/run/fsresize"),
        )

        factory = build_default_factory()

        assert factory.metadata.image_root == Path("/tank")
        assert factory.status_dir == Path("/run/fsresize")
        assert factory.tool_timeout == settings.DEFAULT_TOOL_TIMEOUT_SECONDS
