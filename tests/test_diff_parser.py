"""Tests for changed-line extraction and line helpers."""

from diff_parser import (
    extract_changed_lines,
    find_nearest_changed_line,
    language_for_filename,
    number_lines,
)


class TestExtractChangedLines:
    """Test destination line numbers derived from patches."""

    def test_single_added_line_between_context(self) -> None:
        """Only the added line is recorded; context advances the counter."""
        patch = "@@ -1,2 +1,3 @@\n line1\n+line2\n line3\n"
        assert extract_changed_lines(patch) == [2]

    def test_empty_patch(self) -> None:
        """Empty or missing patch yields nothing to scan."""
        assert extract_changed_lines("") == []
        assert extract_changed_lines(None) == []
        assert extract_changed_lines("   \n") == []

    def test_removed_lines_do_not_advance_counter(self) -> None:
        """A removed line belongs to the old file and is never reported."""
        patch = "@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"
        assert extract_changed_lines(patch) == [2]

    def test_pure_deletion(self) -> None:
        """A patch that only removes lines has no changed lines."""
        patch = "@@ -1,3 +1,1 @@\n a\n-b\n-c\n"
        assert extract_changed_lines(patch) == []

    def test_multiple_hunks_reset_counter(self) -> None:
        """Each hunk header restarts at its declared new-range start."""
        patch = (
            "@@ -1,2 +1,3 @@\n"
            " one\n"
            "+two\n"
            " three\n"
            "@@ -20,2 +21,4 @@\n"
            " twenty-one\n"
            "+twenty-two\n"
            "+twenty-three\n"
            " twenty-four\n"
        )
        assert extract_changed_lines(patch) == [2, 22, 23]

    def test_new_file(self) -> None:
        """Every line of a newly added file is changed."""
        patch = "@@ -0,0 +1,3 @@\n+a\n+b\n+c\n"
        assert extract_changed_lines(patch) == [1, 2, 3]

    def test_hunk_header_without_lengths(self) -> None:
        """Single-line ranges omit the length part of the header."""
        patch = "@@ -5 +5 @@\n-old\n+new\n"
        assert extract_changed_lines(patch) == [5]

    def test_full_diff_with_headers(self) -> None:
        """File headers are ignored and never counted as added lines."""
        patch = (
            "--- a/src/app.js\n"
            "+++ b/src/app.js\n"
            "@@ -1,2 +1,3 @@\n"
            " const a = 1;\n"
            "+const b = 2;\n"
            " const c = 3;\n"
        )
        assert extract_changed_lines(patch) == [2]

    def test_truncated_patch_falls_back_to_scan(self) -> None:
        """A hunk shorter than its header declares is still scanned."""
        patch = "@@ -1,10 +1,12 @@\n first\n+added\n+also added\n"
        assert extract_changed_lines(patch) == [2, 3]

    def test_no_newline_marker_is_ignored(self) -> None:
        """The 'No newline at end of file' marker does not move the counter."""
        patch = "@@ -1,1 +1,2 @@\n a\n+b\n\\ No newline at end of file\n"
        assert extract_changed_lines(patch) == [2]

    def test_lines_are_increasing_within_hunk(self) -> None:
        """Recorded numbers never go backwards inside a hunk."""
        patch = "@@ -10,4 +10,6 @@\n x\n+y\n-z\n+w\n q\n+r\n s\n"
        lines = extract_changed_lines(patch)
        assert lines == sorted(lines)
        assert all(n >= 10 for n in lines)


class TestLanguageForFilename:
    """Test the extension table."""

    def test_known_extensions(self) -> None:
        """Common extensions map to their language."""
        assert language_for_filename("src/App.tsx") == "typescript"
        assert language_for_filename("index.js") == "javascript"
        assert language_for_filename("tool.PY") == "python"

    def test_unknown_extension_is_text(self) -> None:
        """Unknown or missing extensions map to text."""
        assert language_for_filename("Dockerfile") == "text"
        assert language_for_filename("notes.xyz") == "text"
        assert language_for_filename("dir.v2/Makefile") == "text"


class TestFindNearestChangedLine:
    """Test snapping analyzer lines onto changed lines."""

    def test_exact_match(self) -> None:
        """A changed line snaps to itself."""
        assert find_nearest_changed_line([4, 9], 9) == 9

    def test_nearby_line(self) -> None:
        """A line within range snaps to the closest changed line."""
        assert find_nearest_changed_line([4, 9], 7) == 9
        assert find_nearest_changed_line([4, 9], 5) == 4

    def test_out_of_range(self) -> None:
        """Lines too far from any change are dropped."""
        assert find_nearest_changed_line([4], 20) is None


class TestNumberLines:
    """Test the numbered excerpt format."""

    def test_whole_file(self) -> None:
        """Every line gets a right-aligned number prefix."""
        assert number_lines("a\nb") == "   1| a\n   2| b"

    def test_selected_lines_with_gap(self) -> None:
        """Gaps between selected regions are marked."""
        content = "\n".join(f"line{i}" for i in range(1, 11))
        out = number_lines(content, only=[2, 8], context=1)
        assert out.split("\n") == [
            "   1| line1",
            "   2| line2",
            "   3| line3",
            "    ...",
            "   7| line7",
            "   8| line8",
            "   9| line9",
        ]
