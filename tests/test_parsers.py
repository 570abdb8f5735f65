"""Tests for fsresize.resize.parsers (pure output parsing)."""

import pytest

from fsresize.resize import parsers
from fsresize.storage.exceptions import SizeParseError


EXT_PASSES_OUTPUT = """/dev/loop0p1 1847218
resize2fs 1.42.13 (17-May-2015)
Resizing the filesystem on /dev/loop0p1 to 1847218 (4k) blocks.
Begin pass 2 (max = 826001)
Relocating blocks             XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX
Begin pass 3 (max = 152)
Scanning inode table          XXXXXXXXXXXXXXXXXXXX--------------------
"""

NTFS_INFO_OUTPUT = """ntfsresize v2017.3.23AR.3 (libntfs-3g)
Device name        : /dev/loop42p1
NTFS volume version: 3.1
Cluster size       : 4096 bytes
Current volume size: 64317551104 bytes (64318 MB)
Current device size: 64329105920 bytes (64330 MB)
Checking filesystem consistency ...
100.00 percent completed
Accounting clusters ...
Space in use       : 21654 MB (33.7%)
Collecting resizing constraints ...
You might resize at 21653872640 bytes or 21654 MB (freeing 42664 MB).
Please make a test run using both the -n and -s options before real resizing!
"""

HELPER_SUCCESS_OUTPUT = """Successfully calculated minimum filesystem size
Current volume size: 267386880 bytes
Minimum volume size: 27074560 bytes
Cluster size: 4096 bytes
"""


class TestParseForSize:
    """Tests for parse_for_size() and require_size()."""

    def test_parses_first_group(self):
        """Test the captured integer is returned."""
        assert parsers.parse_for_size("Cluster size: 4096 bytes", parsers.REGEX_CLUSTER_SIZE) == 4096

    def test_no_match_returns_none(self):
        """Test a non-matching pattern yields None."""
        assert parsers.parse_for_size("nothing here", parsers.REGEX_CLUSTER_SIZE) is None
        assert parsers.parse_for_size(None, parsers.REGEX_CLUSTER_SIZE) is None

    def test_pattern_needs_one_group(self):
        """Test patterns without exactly one group are rejected."""
        with pytest.raises(ValueError):
            parsers.parse_for_size("123", r"[0-9]+")
        with pytest.raises(ValueError):
            parsers.parse_for_size("1 2", r"([0-9]) ([0-9])")

    def test_require_size_raises(self):
        """Test require_size raises SizeParseError with output and pattern."""
        with pytest.raises(SizeParseError) as exc_info:
            parsers.require_size("garbage", parsers.REGEX_MIN_VOLUME_SIZE)
        assert exc_info.value.output == "garbage"
        assert exc_info.value.pattern == parsers.REGEX_MIN_VOLUME_SIZE

    def test_size_report_roundtrip(self):
        """Test helper size lines parse back into the same report."""
        report = parsers.SizeReport(64317551104, 21375324672, 4096)
        output = "\n".join(parsers.format_size_report(report))
        assert parsers.parse_size_report(output) == report


class TestExtProgress:
    """Tests for resize2fs progress parsing."""

    def test_half_scanned_inode_table(self):
        """Test 20 of 40 fill characters is 50% of the inode table pass."""
        stage, percent = parsers.parse_ext_progress(EXT_PASSES_OUTPUT)
        assert stage == "Scanning inode table"
        assert percent == 50

    def test_single_marker_line(self):
        """Test the bare pass line from resize2fs."""
        output = "Scanning inode table          XXXXXXXXXXXXXXXXXXXX--------------------"
        assert parsers.parse_ext_progress(output) == ("Scanning inode table", 50)

    def test_noop_in_stderr_wins(self):
        """Test "already ... Nothing to do!" completes regardless of stdout."""
        std_err = "The filesystem is already 1560686 blocks long.  Nothing to do!"
        assert parsers.parse_ext_progress(EXT_PASSES_OUTPUT, std_err) == ("Complete", 100)
        assert parsers.parse_ext_progress(None, std_err) == ("Complete", 100)

    def test_noop_needs_both_phrases(self):
        """Test a partial no-op message is not treated as complete."""
        assert not parsers.ext_is_noop("The filesystem is already 100 blocks long.")
        assert not parsers.ext_is_noop("Nothing to do!")
        assert not parsers.ext_is_noop(None)

    def test_terminal_phrase_completes(self):
        """Test "is now ... blocks long" means the resize finished."""
        output = EXT_PASSES_OUTPUT + (
            "Begin pass 4 (max = 22996)\n"
            "Updating inode references     XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX\n"
            "The filesystem on /dev/loop0p1 is now 1847218 (4k) blocks long.\n"
        )
        assert parsers.parse_ext_progress(output) == ("Complete", 100)

    def test_later_pass_supersedes(self):
        """Test the latest pass determines stage and percent."""
        output = EXT_PASSES_OUTPUT + (
            "Begin pass 4 (max = 22996)\n"
            "Updating inode references     XXXXXXXXXX------------------------------\n"
        )
        assert parsers.parse_ext_progress(output) == ("Updating inode references", 25)

    def test_full_pass_is_not_completion(self):
        """Test a pass at 100% is reported as that pass, not Complete."""
        output = "Relocating blocks             " + "X" * 40
        assert parsers.parse_ext_progress(output) == ("Relocating blocks", 100)

    def test_missing_or_empty_output(self):
        """Test no output gives the ambiguous (None, None)."""
        assert parsers.parse_ext_progress(None) == (None, None)
        assert parsers.parse_ext_progress("   \n") == (None, None)

    def test_unrecognised_output(self):
        """Test output without pass markers gives (None, None)."""
        assert parsers.parse_ext_progress("resize2fs 1.46.5 (30-Dec-2021)\n") == (None, None)

    def test_pass_percent_caps_at_width(self):
        """Test stray X characters never exceed 100%."""
        assert parsers.ext_pass_percent("Relocating blocks " + "X" * 45, "Relocating blocks") == 100

    def test_ext_estimate(self):
        """Test the block count is read from resize2fs -P output."""
        output = "resize2fs 1.46.5 (30-Dec-2021)\nEstimated minimum size of the filesystem: 6610\n"
        assert parsers.parse_ext_estimate(output) == 6610
        assert parsers.parse_ext_estimate("resize2fs 1.46.5") is None


class TestCalcMinSizeOutput:
    """Tests for ext/xfs helper output parsing."""

    def test_success(self):
        """Test success gives Complete with sizes."""
        state = parsers.parse_calc_min_size_output(HELPER_SUCCESS_OUTPUT, "Calculate minimum EXT size")
        assert state.stage == "Complete"
        assert state.percent_complete == 100
        assert state.sizes == parsers.SizeReport(267386880, 27074560, 4096)

    def test_cannot_be_resized(self):
        """Test the failure line gives Failed."""
        state = parsers.parse_calc_min_size_output(
            "/dev/loop1p1 cannot be resized\n", "Calculate minimum EXT size"
        )
        assert (state.stage, state.percent_complete, state.sizes) == ("Failed", 100, None)

    @pytest.mark.parametrize("output", [None, "", "e2fsck 1.46.5\n"])
    def test_unrecognised_is_still_running(self, output):
        """Test output without markers means still calculating."""
        state = parsers.parse_calc_min_size_output(output, "Calculate minimum EXT size")
        assert (state.stage, state.percent_complete) == ("Calculate minimum EXT size", 0)

    def test_success_with_missing_sizes_raises(self):
        """Test a success marker without size lines is a parse failure."""
        with pytest.raises(SizeParseError):
            parsers.parse_calc_min_size_output(
                "Successfully calculated minimum filesystem size\n", "Calculate minimum EXT size"
            )

    def test_idempotent(self):
        """Test repeated parsing of unchanged output gives equal results."""
        first = parsers.parse_calc_min_size_output(HELPER_SUCCESS_OUTPUT, "stage")
        second = parsers.parse_calc_min_size_output(HELPER_SUCCESS_OUTPUT, "stage")
        assert first == second


class TestNtfsInfo:
    """Tests for ntfsresize --info parsing."""

    def test_parse_info(self):
        """Test the three sizes are read from ntfsresize -i output."""
        info = parsers.parse_ntfs_info(NTFS_INFO_OUTPUT)
        assert info == parsers.NtfsInfo(
            original_size=64317551104, cluster_size=4096, recommended_min=21653872640
        )

    def test_missing_recommendation_raises(self):
        """Test incomplete info output raises SizeParseError."""
        output = NTFS_INFO_OUTPUT.replace("You might resize at", "Unable to resize at")
        with pytest.raises(SizeParseError):
            parsers.parse_ntfs_info(output)


class TestNtfsCandidates:
    """Tests for the NTFS minimum size search candidates."""

    def test_first_candidate(self):
        """Test attempt 1 adds 5% and rounds up to a whole cluster."""
        # 100000 * 1.05 / 4096 = 25.63 clusters
        assert parsers.ntfs_candidate_size(100000, 4096, 1) == 26 * 4096

    def test_nineteen_candidates(self):
        """Test the search evaluates attempts 1 through 19."""
        candidates = list(parsers.ntfs_candidates(21653872640, 4096))
        assert [attempt for attempt, _ in candidates] == list(range(1, 20))

    def test_candidates_are_cluster_multiples(self):
        """Test every candidate is an exact multiple of the cluster size."""
        for cluster_size in (512, 4096, 65536):
            for _, size in parsers.ntfs_candidates(21653872641, cluster_size):
                assert size % cluster_size == 0

    def test_candidates_grow(self):
        """Test candidates increase with each attempt."""
        sizes = [size for _, size in parsers.ntfs_candidates(21653872640, 4096)]
        assert sizes == sorted(sizes)
        assert sizes[0] >= 21653872640 * 1.05


class TestNtfsResizeProgress:
    """Tests for ntfsresize progress parsing."""

    def test_scan_complete_markers(self):
        """Test both completion phrases are recognised."""
        lines = ["ntfsresize v2017.3.23\n", "Nothing to do: NTFS volume size is already OK.\n"]
        assert parsers.scan_ntfs_resize_lines(lines) == "Complete"
        lines = ["Successfully resized NTFS on device '/dev/loop6p1'.\n"]
        assert parsers.scan_ntfs_resize_lines(lines) == "Complete"

    def test_scan_relocating(self):
        """Test the relocation marker switches stage."""
        lines = ["Accounting clusters ...\n", "Relocating needed data ...\n"]
        assert parsers.scan_ntfs_resize_lines(lines) == "Relocating Data"

    def test_scan_nothing(self):
        """Test output without markers gives None."""
        assert parsers.scan_ntfs_resize_lines(["Checking filesystem consistency ...\n"]) is None

    def test_tail_percent(self):
        """Test the last carriage-return chunk gives the percent."""
        tail = " 42.16 percent completed\r 42.17 percent completed\r 42.18 percent completed"
        assert parsers.parse_ntfs_progress_tail(tail) == 42.18

    def test_tail_without_percent_is_done(self):
        """Test relocation is finished once the tail stops showing percentages."""
        tail = "100.00 percent completed\rUpdating $BadClust file ...\rUpdating Boot record ..."
        assert parsers.parse_ntfs_progress_tail(tail) == 100.0


class TestNtfsPreciseOutput:
    """Tests for NTFS precise helper output parsing."""

    STAGE = "Calculate minimum NTFS size"

    def test_checking_attempts(self):
        """Test percent follows the last Checking attempt line."""
        output = (
            "Checking attempt 1 of 20 for size 15478689792\n"
            "Checking attempt 9 of 20 for size 21375328256\n"
        )
        state = parsers.parse_ntfs_precise_output(output, self.STAGE)
        assert (state.stage, state.percent_complete) == (self.STAGE, 45)

    def test_success(self):
        """Test success gives Complete with sizes."""
        output = (
            "Checking attempt 9 of 20 for size 21375328256\n"
            "Success on attempt 9 of 20 for size 21375328256\n"
            "Current volume size: 64317551104 bytes\n"
            "Minimum volume size: 21375324672 bytes\n"
            "Cluster size: 4096 bytes\n"
        )
        state = parsers.parse_ntfs_precise_output(output, self.STAGE)
        assert state.stage == "Complete"
        assert state.sizes == parsers.SizeReport(64317551104, 21375324672, 4096)

    def test_unable(self):
        """Test exhausting the attempts is Failed."""
        output = (
            "Checking attempt 19 of 20 for size 12319772672\n"
            "Unable to calculate a minimum size after 20 attempts. Defaulting to 12319772672.\n"
            "Current volume size: 64317551104 bytes\n"
            "Minimum volume size: 12319772672 bytes\n"
            "Cluster size: 4096 bytes\n"
        )
        state = parsers.parse_ntfs_precise_output(output, self.STAGE)
        assert (state.stage, state.percent_complete, state.sizes) == ("Failed", 100, None)

    def test_cannot_be_resized(self):
        """Test a candidate past the original size is Failed."""
        output = "Checking attempt 1 of 20 for size 106496\n/dev/loop3p1 cannot be resized\n"
        assert parsers.parse_ntfs_precise_output(output, self.STAGE).stage == "Failed"

    def test_unrecognised_output_is_failed(self):
        """Test output without any marker counts as failed."""
        state = parsers.parse_ntfs_precise_output("Traceback (most recent call last)\n", self.STAGE)
        assert state.stage == "Failed"

    def test_no_output_yet(self):
        """Test a missing output file is still calculating."""
        state = parsers.parse_ntfs_precise_output(None, self.STAGE)
        assert (state.stage, state.percent_complete) == (self.STAGE, 0)
