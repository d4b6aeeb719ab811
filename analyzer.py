"""Code analyzers: a deterministic rule engine and a Gemini-backed reviewer."""

import hashlib
import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

from google.api_core.exceptions import GoogleAPIError
from google.genai import errors as genai_errors
from pydantic import ValidationError

from config import (
    DEFAULT_MODEL,
    RETRYABLE_GEMINI_ERRORS,
    USE_MOCK,
    ReviewConfig,
    call_gemini,
    extract_json_object,
    parse_llm_json,
)
from diff_parser import find_nearest_changed_line, number_lines
from errors import AuthError, ReviewBotError, UpstreamUnavailable
from mock_data import MOCK_RESPONSE
from models import Category, Finding, FixedContent, ReviewResult, Severity
from prompts import FIX_PROMPT, FULL_REVIEW_PROMPT, SCOPED_REVIEW_PROMPT

logger = logging.getLogger(__name__)

# Token limits (conservative estimates)
# Gemini 2.5 Flash has ~1M context, but we keep chunks small for better results
MAX_LINES_PER_CHUNK = 200  # Max lines to send in one request
MAX_CHARS_PER_CHUNK = 15000  # Max characters (~3750 tokens)

# Lines of surrounding context shown around each changed line
SCOPE_CONTEXT_LINES = 3


class CodeAnalyzer(Protocol):
    """Produces findings for source text and corrected text for findings."""

    def analyze_scoped(
        self, content: str, filename: str, language: str, line_numbers: list[int]
    ) -> list[Finding]: ...

    def analyze_full(self, content: str, filename: str, language: str) -> list[Finding]: ...

    def fix(self, content: str, findings: list[Finding]) -> str: ...


# ---------------------------------------------------------------------------
# Fix application
# ---------------------------------------------------------------------------
def apply_suggested_fixes(content: str, findings: list[Finding]) -> str:
    """
    Replace each finding's ``original_code`` line with its ``suggested_code``.

    Fixes are applied bottom-up so earlier line numbers stay valid when a
    suggestion spans several lines. A fix is skipped when the line no longer
    matches ``original_code`` (the file moved on since analysis).
    """
    candidates = [
        f for f in findings if f.fixable and f.suggested_code is not None and f.original_code
    ]
    if not candidates:
        return content

    lines = content.split("\n")
    applied = 0
    done: set[int] = set()

    for finding in sorted(candidates, key=lambda f: f.line, reverse=True):
        index = finding.line - 1
        if index >= len(lines) or index in done:
            continue
        if lines[index].strip() != finding.original_code.strip():
            logger.debug(
                "Skipped fix at %s:%d (content mismatch)", finding.file, finding.line
            )
            continue
        lines[index : index + 1] = finding.suggested_code.split("\n")
        done.add(index)
        applied += 1

    logger.info("Applied %d of %d suggested fixes", applied, len(candidates))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Static rule engine
# ---------------------------------------------------------------------------
_NEEDS_SEMICOLON = [
    re.compile(r"^(let|const|var)\s+\w+.*[^{};]$"),
    re.compile(r"^return\s+.*[^{};]$"),
    re.compile(r"^throw\s+.*[^{};]$"),
    re.compile(r"^import\s+.*[^{};]$"),
    re.compile(r"^export\s+.*[^{};]$"),
    re.compile(r"\w+\([^)]*\)\s*$"),
    re.compile(r"^\w+\s*=\s*.*[^{};]$"),
]

_NO_SEMICOLON = [
    re.compile(r"^(if|for|while|switch|try|catch|finally|function|class)\s*[({]"),
    re.compile(r"^\s*[{}]\s*$"),
    re.compile(r"^//"),
    re.compile(r"^/\*"),
    re.compile(r"^export\s+default\s+"),
]

_JS_LANGUAGES = {"javascript", "typescript"}
MAX_LINE_LENGTH = 80


def should_have_semicolon(statement: str) -> bool:
    if any(p.search(statement) for p in _NO_SEMICOLON):
        return False
    return any(p.search(statement) for p in _NEEDS_SEMICOLON)


def _has_error_handling(lines: list[str], index: int, window: int = 10) -> bool:
    start = max(0, index - window)
    end = min(len(lines), index + window)
    return any(
        "try {" in line or "catch" in line or ".catch(" in line for line in lines[start:end]
    )


class StaticAnalyzer:
    """Deterministic line rules (eslint/prettier style) for JS/TS plus universal checks.

    Results are cached per file content (least recently used first out once
    ``cache_size`` entries are held), so re-reviewing unchanged code is free
    and yields identical findings.
    """

    def __init__(self, cache_size: int = 512) -> None:
        self.cache_size = cache_size
        self._cache: OrderedDict[str, list[Finding]] = OrderedDict()
        self._cache_lock = threading.Lock()

    def analyze_scoped(
        self, content: str, filename: str, language: str, line_numbers: list[int]
    ) -> list[Finding]:
        # Rules need the whole file for context; keep only findings on changed lines
        scope = set(line_numbers)
        return [
            f for f in self.analyze_full(content, filename, language) if f.line in scope
        ]

    def analyze_full(self, content: str, filename: str, language: str) -> list[Finding]:
        digest = hashlib.sha256(f"{filename}\0{language}\0{content}".encode()).hexdigest()
        with self._cache_lock:
            cached = self._cache.get(digest)
            if cached is not None:
                self._cache.move_to_end(digest)
                return list(cached)

        findings = self._run_rules(content, filename, language)
        with self._cache_lock:
            self._cache[digest] = findings
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return list(findings)

    def fix(self, content: str, findings: list[Finding]) -> str:
        return apply_suggested_fixes(content, findings)

    def _run_rules(self, content: str, filename: str, language: str) -> list[Finding]:
        lines = content.split("\n")
        findings: list[Finding] = []
        is_js = language in _JS_LANGUAGES

        def add(
            index: int,
            severity: Severity,
            rule: str,
            category: Category,
            message: str,
            suggestion: str,
            suggested: str | None = None,
        ) -> None:
            findings.append(
                Finding(
                    file=filename,
                    line=index + 1,
                    severity=severity,
                    rule=rule,
                    category=category,
                    message=message,
                    suggestion=suggestion,
                    original_code=lines[index],
                    suggested_code=suggested,
                    fixable=suggested is not None,
                )
            )

        for index, line in enumerate(lines):
            stripped = line.strip()
            if not stripped or stripped.startswith(("//", "/*", "*")):
                continue

            if is_js:
                self._js_rules(lines, index, line, stripped, add)

            if "eval(" in line:
                add(
                    index,
                    "critical",
                    "no-eval",
                    "security",
                    "Use of eval() is dangerous and should be avoided",
                    "Replace eval() with JSON.parse() or an explicit function call",
                )

            if "innerHTML" in line and "=" in line:
                add(
                    index,
                    "critical",
                    "no-inner-html",
                    "unsafe-dom-write",
                    "Potential XSS vulnerability with innerHTML",
                    "Use textContent, or sanitize the HTML before assigning innerHTML",
                    re.sub(r"\.innerHTML\s*=", ".textContent =", line, count=1),
                )

            if is_js and len(line) > MAX_LINE_LENGTH:
                add(
                    index,
                    "info",
                    "prettier/printWidth",
                    "formatting",
                    f"Line too long ({len(line)} characters, max {MAX_LINE_LENGTH})",
                    "Break long lines for better readability",
                )

        return _dedupe_by_rule(findings)

    @staticmethod
    def _js_rules(
        lines: list[str],
        index: int,
        line: str,
        stripped: str,
        add: Callable[..., None],
    ) -> None:
        if "console.log" in line and "//" not in line:
            add(
                index,
                "warning",
                "no-console",
                "debug-statement",
                "console.log statement should be removed for production",
                "Remove console.log statements or use a proper logging library",
                re.sub(r"console\.log\([^)]*\);?", "", line).rstrip(),
            )

        if should_have_semicolon(stripped) and not stripped.endswith(";"):
            add(
                index,
                "critical",
                "semi",
                "semicolon",
                "Missing semicolon",
                "Add a semicolon at the end of the statement",
                line.rstrip() + ";",
            )

        if "==" in line and "===" not in line and "!==" not in line:
            add(
                index,
                "critical",
                "eqeqeq",
                "strict-equality",
                "Use strict equality (===) instead of loose equality (==)",
                "Use === and !== for equality checks",
                re.sub(r"([^=!])==([^=])", r"\1===\2", line),
            )

        if "await " in line and not _has_error_handling(lines, index):
            indent = line[: len(line) - len(line.lstrip())]
            add(
                index,
                "critical",
                "require-await-error-handling",
                "error-handling",
                "Async operation without error handling",
                "Wrap await calls in try/catch blocks",
                f"{indent}try {{\n{line}\n{indent}}} catch (error) {{\n"
                f"{indent}  console.error('Error:', error);\n{indent}}}",
            )

        if re.match(r"^var\s+", stripped):
            add(
                index,
                "critical",
                "no-var",
                "best-practice",
                "Unexpected var, use let or const instead",
                "Use let or const for block scoping",
                re.sub(r"^(\s*)var\s+", r"\1let ", line),
            )

        declared = re.match(r"^let\s+(\w+)\s*=", stripped)
        if declared:
            name = declared.group(1)
            following = "\n".join(lines[index + 1 : index + 20])
            if not any(f"{name}{op}" in following for op in (" =", "++", "--")):
                add(
                    index,
                    "warning",
                    "prefer-const",
                    "best-practice",
                    f"'{name}' is never reassigned. Use 'const' instead",
                    "Use const for variables that are never reassigned",
                    re.sub(r"^(\s*)let\s+", r"\1const ", line),
                )

        if '"' in line and "'" in line and "`" not in line:
            add(
                index,
                "warning",
                "prettier/quotes",
                "formatting",
                "Inconsistent quote style - prefer single quotes",
                "Use consistent quote style (single quotes preferred)",
                line.replace('"', "'"),
            )

        if re.search(r'"\s*\+\s*\w+\s*\+\s*"', line):
            add(
                index,
                "warning",
                "prefer-template",
                "best-practice",
                "Prefer template literals over string concatenation",
                "Use template literals for string interpolation",
                re.sub(r'"([^"]*?)"\s*\+\s*(\w+)\s*\+\s*"([^"]*?)"', r"`\1${\2}\3`", line),
            )


def _dedupe_by_rule(findings: list[Finding]) -> list[Finding]:
    """Keep the first finding per (file, line, rule)."""
    seen: set[tuple[str, int, str | None]] = set()
    unique: list[Finding] = []
    for finding in findings:
        key = (finding.file, finding.line, finding.rule)
        if key not in seen:
            seen.add(key)
            unique.append(finding)
    return unique


# ---------------------------------------------------------------------------
# Chunking helpers
# ---------------------------------------------------------------------------
def chunk_code(
    code: str,
    max_lines: int = MAX_LINES_PER_CHUNK,
    max_chars: int = MAX_CHARS_PER_CHUNK,
) -> list[str]:
    """
    Split large code into reviewable chunks.

    Each chunk keeps the "  42| " prefixes from :func:`number_lines`, so
    line numbers stay absolute across chunks.

    Args:
        code: Code string with line numbers (e.g., "   1| def foo():")
        max_lines: Maximum lines per chunk
        max_chars: Maximum characters per chunk

    Returns:
        List of code chunks, each small enough for one API call
    """
    lines = code.split("\n")

    # If code is small enough, return as-is
    if len(lines) <= max_lines and len(code) <= max_chars:
        return [code]

    chunks: list[str] = []
    current_chunk: list[str] = []
    current_chars = 0

    for line in lines:
        line_with_newline = line + "\n"

        would_exceed_lines = len(current_chunk) >= max_lines
        would_exceed_chars = current_chars + len(line_with_newline) > max_chars

        if current_chunk and (would_exceed_lines or would_exceed_chars):
            chunks.append("\n".join(current_chunk))
            current_chunk = []
            current_chars = 0

        current_chunk.append(line)
        current_chars += len(line_with_newline)

    if current_chunk:
        chunks.append("\n".join(current_chunk))

    return chunks


def _compact_ranges(line_numbers: list[int]) -> str:
    """[1, 2, 3, 7] -> "1-3, 7"."""
    ordered = sorted(set(line_numbers))
    parts: list[str] = []
    start = prev = ordered[0]
    for n in ordered[1:]:
        if n == prev + 1:
            prev = n
            continue
        parts.append(f"{start}-{prev}" if start != prev else str(start))
        start = prev = n
    parts.append(f"{start}-{prev}" if start != prev else str(start))
    return ", ".join(parts)


# ---------------------------------------------------------------------------
# Gemini analyzer
# ---------------------------------------------------------------------------
class GeminiAnalyzer:
    """LLM reviewer using numbered-line prompts and JSON responses."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        use_mock: bool = USE_MOCK,
        snap_distance: int = 3,
    ) -> None:
        self.model = model
        self.use_mock = use_mock
        self.snap_distance = snap_distance

    def analyze_scoped(
        self, content: str, filename: str, language: str, line_numbers: list[int]
    ) -> list[Finding]:
        if not line_numbers:
            return []

        changed = set(line_numbers)
        code = number_lines(content, only=line_numbers, context=SCOPE_CONTEXT_LINES)
        ranges = _compact_ranges(line_numbers)

        findings: list[Finding] = []
        for raw in self._review_chunks(
            code,
            filename,
            lambda chunk: SCOPED_REVIEW_PROMPT.format(
                filename=filename, language=language, changed_lines=ranges, code=chunk
            ),
        ):
            if raw.line is None:
                continue
            line = find_nearest_changed_line(changed, raw.line, self.snap_distance)
            if line is None:
                logger.debug("Dropped finding outside changed lines: %s:%s", filename, raw.line)
                continue
            findings.append(raw.to_finding(filename, line))
        return findings

    def analyze_full(self, content: str, filename: str, language: str) -> list[Finding]:
        code = number_lines(content)
        total = content.count("\n") + 1
        findings: list[Finding] = []
        for raw in self._review_chunks(
            code,
            filename,
            lambda chunk: FULL_REVIEW_PROMPT.format(
                filename=filename, language=language, code=chunk
            ),
        ):
            if raw.line is None or not 1 <= raw.line <= total:
                continue
            findings.append(raw.to_finding(filename))
        return findings

    def fix(self, content: str, findings: list[Finding]) -> str:
        if not findings:
            return content
        if self.use_mock or all(f.suggested_code is not None for f in findings):
            return apply_suggested_fixes(content, findings)

        filename = findings[0].file
        issues = "\n".join(
            f"- line {f.line}: {f.message}"
            + (f" (suggestion: {f.suggestion})" if f.suggestion else "")
            for f in findings
        )
        prompt = FIX_PROMPT.format(filename=filename, issues=issues, code=content)
        obj = extract_json_object(self._call(prompt, filename))
        if obj is None:
            raise UpstreamUnavailable(f"Unparseable fix response for {filename}")
        try:
            return FixedContent.model_validate(obj).content
        except ValidationError as e:
            raise UpstreamUnavailable(f"Invalid fix response for {filename}: {e}") from e

    # -- helpers -------------------------------------------------------------
    def _review_chunks(self, code: str, filename: str, build_prompt: Callable[[str], str]):
        chunks = chunk_code(code)
        if len(chunks) > 1:
            logger.info("  Large file detected - splitting into %d chunks", len(chunks))

        for i, chunk in enumerate(chunks, 1):
            if len(chunks) > 1:
                logger.info("  Reviewing chunk %d/%d of %s...", i, len(chunks), filename)
            result = self._ask(build_prompt(chunk), filename)
            yield from result.findings

    def _ask(self, prompt: str, filename: str) -> ReviewResult:
        result = parse_llm_json(self._call(prompt, filename))
        if result is None:
            raise UpstreamUnavailable(f"Unparseable analyzer response for {filename}")
        return result

    def _call(self, prompt: str, filename: str) -> str:
        if self.use_mock:
            logger.info("[MOCK MODE - No API call made] %s", filename)
            return MOCK_RESPONSE

        try:
            return call_gemini(prompt, self.model)
        except RETRYABLE_GEMINI_ERRORS as e:
            raise UpstreamUnavailable(f"Gemini unavailable for {filename}: {e}") from e
        except genai_errors.ClientError as e:
            if e.code in (401, 403):
                raise AuthError(f"Gemini rejected the API key: {e}") from e
            if e.code == 429:
                raise UpstreamUnavailable(f"Gemini rate limit hit for {filename}: {e}") from e
            raise ReviewBotError(f"Gemini rejected the request for {filename}: {e}") from e
        except genai_errors.APIError as e:
            raise UpstreamUnavailable(f"Gemini error for {filename}: {e}") from e
        except GoogleAPIError as e:
            raise UpstreamUnavailable(f"Gemini error for {filename}: {e}") from e


def make_analyzer(config: ReviewConfig) -> CodeAnalyzer:
    """Pick the analysis backend named in *config*."""
    if config.analyzer == "gemini":
        return GeminiAnalyzer(model=config.model)
    if config.analyzer == "static":
        return StaticAnalyzer()
    raise ValueError(f"Unknown analyzer {config.analyzer!r}; expected 'static' or 'gemini'")
