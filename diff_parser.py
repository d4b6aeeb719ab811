"""Changed-line extraction for unified diff patches, using the unidiff library."""

import logging
import re
from collections.abc import Collection, Iterable

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

logger = logging.getLogger(__name__)

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

# Extension -> language tag handed to the analyzer. Unknown -> "text".
LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "java": "java",
    "cpp": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "c": "c",
    "go": "go",
    "rs": "rust",
    "php": "php",
    "rb": "ruby",
    "json": "json",
    "md": "markdown",
}


def language_for_filename(filename: str) -> str:
    """Map a file name to a language tag via its extension."""
    basename = filename.rsplit("/", 1)[-1]
    if "." not in basename:
        return "text"
    extension = basename.rsplit(".", 1)[-1].lower()
    return LANGUAGE_BY_EXTENSION.get(extension, "text")


def extract_changed_lines(patch: str | None) -> list[int]:
    """
    Return the destination line numbers added by a unified diff patch.

    Context lines advance the destination counter but are not recorded;
    removed lines belong to the old file and are ignored. The result keeps
    the order lines were encountered in, with duplicates dropped.

    Args:
        patch: Patch text for one file, as GitHub returns it (hunks only,
            no ``---``/``+++`` headers), or a full single-file diff.

    Returns:
        Changed line numbers; empty for a missing or empty patch
        (binary files, pure renames).
    """
    if not patch or not patch.strip():
        return []

    try:
        lines = _changed_lines_unidiff(patch)
    except UnidiffParseError as e:
        # GitHub truncates very large patches mid-hunk, which unidiff rejects
        logger.debug("unidiff could not parse patch (%s); scanning hunks directly", e)
        lines = _changed_lines_scan(patch)

    return _dedupe(lines)


def _with_file_headers(patch: str) -> str:
    if patch.startswith(("--- ", "diff ")):
        return patch
    return f"--- a/file\n+++ b/file\n{patch}"


def _changed_lines_unidiff(patch: str) -> list[int]:
    patch_set = PatchSet(_with_file_headers(patch))
    changed: list[int] = []
    for patched_file in patch_set:
        for hunk in patched_file:
            for line in hunk:
                if line.is_added and line.target_line_no is not None:
                    changed.append(line.target_line_no)
    return changed


def _changed_lines_scan(patch: str) -> list[int]:
    """Walk hunk headers and body lines without validating hunk lengths."""
    changed: list[int] = []
    current: int | None = None

    for raw in patch.splitlines():
        header = _HUNK_HEADER.match(raw)
        if header:
            current = int(header.group(3)) - 1
            continue
        if raw.startswith("diff "):
            current = None
            continue
        if current is None or raw.startswith(("+++", "---")):
            continue

        if raw.startswith("+"):
            current += 1
            changed.append(current)
        elif raw.startswith(" ") or raw == "":
            current += 1
        # "-" lines and "\ No newline at end of file" leave the counter alone

    return changed


def _dedupe(lines: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    result: list[int] = []
    for line in lines:
        if line not in seen:
            seen.add(line)
            result.append(line)
    return result


def find_nearest_changed_line(
    changed_lines: Collection[int],
    target_line: int,
    max_distance: int = 3,
) -> int | None:
    """
    Find the changed line closest to *target_line*.

    LLM findings sometimes point one or two lines off (a context line around
    the change). This snaps them back onto a line that was actually changed.

    Returns:
        Nearest changed line number, or None if none within range
    """
    if target_line in changed_lines:
        return target_line

    for distance in range(1, max_distance + 1):
        if target_line + distance in changed_lines:
            return target_line + distance
        if target_line - distance in changed_lines:
            return target_line - distance

    return None


def number_lines(content: str, only: Collection[int] | None = None, context: int = 0) -> str:
    """
    Prefix lines with their 1-based number ("  42| code").

    Args:
        content: Full file content
        only: Restrict output to these lines (plus *context* around each);
            ``None`` numbers the whole file
        context: Extra lines to show on each side of every selected line

    Returns:
        Numbered excerpt; gaps between selected regions are marked with "...".
    """
    source = content.split("\n")
    if only is None:
        wanted = range(1, len(source) + 1)
    else:
        selected: set[int] = set()
        for line_no in only:
            for n in range(line_no - context, line_no + context + 1):
                if 1 <= n <= len(source):
                    selected.add(n)
        wanted = sorted(selected)

    out: list[str] = []
    previous = 0
    for n in wanted:
        if previous and n > previous + 1:
            out.append("    ...")
        out.append(f"{n:4}| {source[n - 1]}")
        previous = n
    return "\n".join(out)
