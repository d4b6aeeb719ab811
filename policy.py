"""Severity filtering, verdict and fix-explanation rules."""

from collections.abc import Iterable
from dataclasses import dataclass

from models import Category, Finding, Verdict

SURFACED_SEVERITIES: frozenset[str] = frozenset({"critical", "warning"})


def surfaced(findings: Iterable[Finding]) -> list[Finding]:
    """Drop info findings; critical and warning findings always pass."""
    return [f for f in findings if f.severity in SURFACED_SEVERITIES]


def determine_verdict(findings: list[Finding]) -> Verdict:
    """
    Decide the review verdict for a pull request.

    Any critical finding requests changes; no findings approves;
    warnings alone leave a comment.
    """
    if any(f.severity == "critical" for f in findings):
        return "request-changes"
    if not findings:
        return "approve"
    return "comment"


def group_by_file(findings: Iterable[Finding]) -> dict[str, list[Finding]]:
    """Group findings by file, keeping first-seen file order."""
    grouped: dict[str, list[Finding]] = {}
    for finding in findings:
        grouped.setdefault(finding.file, []).append(finding)
    return grouped


def file_major_order(findings: Iterable[Finding], file_order: list[str]) -> list[Finding]:
    """Sort by position of the file in *file_order*, then by line."""
    rank = {name: i for i, name in enumerate(file_order)}
    return sorted(findings, key=lambda f: (rank.get(f.file, len(rank)), f.line))


# ---------------------------------------------------------------------------
# Fix explanations
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FixExplanation:
    what: str
    why: str
    impact: str


_EXPLANATIONS: dict[Category, FixExplanation] = {
    "semicolon": FixExplanation(
        what="Added a semicolon at the end of the statement",
        why=(
            "Terminates the statement explicitly instead of relying on automatic "
            "semicolon insertion, which can merge statements once code is minified."
        ),
        impact="Prevents unexpected statement combinations",
    ),
    "debug-statement": FixExplanation(
        what="Removed the console.log debug statement",
        why=(
            "Debug output does not belong in production; it can leak sensitive "
            "data and clutters the console for end users."
        ),
        impact="Cleaner production code with no data exposure through logs",
    ),
    "strict-equality": FixExplanation(
        what="Replaced loose equality (==) with strict equality (===)",
        why=(
            "Strict equality compares value and type without coercion, "
            "so '0' == 0 style surprises cannot happen."
        ),
        impact="Predictable comparisons and no type-coercion bugs",
    ),
    "error-handling": FixExplanation(
        what="Wrapped the async operation in a try/catch block",
        why=(
            "Network or server failures raised by the awaited call are caught "
            "instead of crashing the caller."
        ),
        impact="Failures are handled instead of crashing the application",
    ),
    "unused-variable": FixExplanation(
        what="Prefixed the unused variable name with an underscore",
        why=(
            "The underscore convention marks the variable as intentionally "
            "unused for readers and linters."
        ),
        impact="Removes the warning and documents intentional non-use",
    ),
    "unsafe-dom-write": FixExplanation(
        what="Replaced innerHTML with textContent",
        why=(
            "textContent inserts text without interpreting HTML, so user input "
            "cannot inject scripts (XSS)."
        ),
        impact="Closes a cross-site scripting vector",
    ),
}

# Rule ids emitted by linters / the static analyzer.
_RULE_CATEGORIES: dict[str, Category] = {
    "semi": "semicolon",
    "no-console": "debug-statement",
    "eqeqeq": "strict-equality",
    "require-await-error-handling": "error-handling",
    "no-unused-vars": "unused-variable",
    "no-inner-html": "unsafe-dom-write",
}

# Last resort for analyzers that emit neither category nor a known rule id.
_MESSAGE_PHRASES: tuple[tuple[str, Category], ...] = (
    ("semicolon", "semicolon"),
    ("console.log", "debug-statement"),
    ("strict equality", "strict-equality"),
    ("error handling", "error-handling"),
    ("try-catch", "error-handling"),
    ("unused", "unused-variable"),
    ("innerhtml", "unsafe-dom-write"),
    ("xss", "unsafe-dom-write"),
)

GENERIC_EXPLANATION = FixExplanation(
    what="Applied coding-standard fix",
    why="The change follows the project's coding standards and resolves the reported issue.",
    impact="Improves code quality and maintainability",
)


def fix_category(finding: Finding) -> Category | None:
    """Resolve the explanation category: structured field, rule id, then message."""
    if finding.category in _EXPLANATIONS:
        return finding.category
    if finding.rule and finding.rule.lower() in _RULE_CATEGORIES:
        return _RULE_CATEGORIES[finding.rule.lower()]
    message = finding.message.lower()
    for phrase, category in _MESSAGE_PHRASES:
        if phrase in message:
            return category
    return None


def explain_fix(finding: Finding) -> FixExplanation:
    category = fix_category(finding)
    if category is None:
        return GENERIC_EXPLANATION
    return _EXPLANATIONS[category]
