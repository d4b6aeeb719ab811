"""Data models for review findings, outcomes and stored review state."""

import hashlib
from datetime import UTC, datetime
from typing import Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

Severity = Literal["critical", "warning", "info"]
Verdict = Literal["approve", "request-changes", "comment"]
ReviewStatus = Literal["in-progress", "completed"]
ReviewKind = Literal["pull_request", "branch"]

# Structured fix categories; drive the commit-message explanations.
Category = Literal[
    "semicolon",
    "debug-statement",
    "strict-equality",
    "error-handling",
    "unused-variable",
    "unsafe-dom-write",
    "formatting",
    "best-practice",
    "security",
    "performance",
]

# Analyzer severities outside the canonical three (GitHub-style and LLM-style).
_SEVERITY_ALIASES: dict[str, str] = {
    "critical": "critical",
    "high": "critical",
    "error": "critical",
    "warning": "warning",
    "medium": "warning",
    "info": "info",
    "low": "info",
}


def _normalise_severity(value: object) -> object:
    if isinstance(value, str):
        return _SEVERITY_ALIASES.get(value.strip().lower(), value)
    return value


def finding_key(file: str, line: int, rule: str | None, severity: str, message: str) -> str:
    """Stable identity token for a finding.

    Built from ``(file, line, rule-or-severity, message)`` so the same issue in
    unchanged code hashes to the same token on every review.
    """
    raw = f"{file}:{line}:{rule or severity}:{message}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------
class Finding(BaseModel):
    """One issue located on one line of one file."""

    model_config = ConfigDict(frozen=True)

    file: str = Field(description="Path relative to the repository root")
    line: int = Field(ge=1, description="1-based line at the reviewed revision")
    severity: Severity
    rule: str | None = Field(default=None, description="Short rule id, e.g. 'semi'")
    category: Category | None = None
    message: str
    suggestion: str | None = None
    original_code: str | None = None
    suggested_code: str | None = None
    fixable: bool = False
    id: str | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, value: object) -> object:
        return _normalise_severity(value)

    @property
    def key(self) -> str:
        return finding_key(self.file, self.line, self.rule, self.severity, self.message)

    def tracked(self) -> "TrackedFinding":
        """Attach the identity used for resolution tracking."""
        key = self.key
        return TrackedFinding(**self.model_dump(exclude={"id", "hash"}), id=self.id or key, hash=key)


class TrackedFinding(Finding):
    """A finding as persisted in the unresolved set."""

    id: str
    hash: str


class AnalyzerFinding(BaseModel):
    """A finding as returned by the LLM, before it is attributed to a file."""

    severity: Severity = "warning"
    line: int | None = Field(default=None, description="Line number in the file")
    rule: str | None = None
    category: Category | None = None
    message: str = Field(description="What the issue is")
    suggestion: str | None = Field(default=None, description="How to fix it")
    original_code: str | None = None
    suggested_code: str | None = None
    fixable: bool = False

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, value: object) -> object:
        return _normalise_severity(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: object) -> object:
        # Unknown categories degrade to "no category" rather than failing the parse
        if isinstance(value, str):
            value = value.strip().lower()
            return value if value in get_args(Category) else None
        return value

    def to_finding(self, file: str, line: int | None = None) -> Finding:
        return Finding(
            file=file,
            line=line if line is not None else self.line,
            severity=self.severity,
            rule=self.rule,
            category=self.category,
            message=self.message,
            suggestion=self.suggestion,
            original_code=self.original_code,
            suggested_code=self.suggested_code,
            fixable=self.fixable,
        )


class ReviewResult(BaseModel):
    """Complete output of one analyzer call."""

    findings: list[AnalyzerFinding] = Field(default_factory=list)
    summary: str = Field(default="", description="Brief overall summary")


class FixedContent(BaseModel):
    """LLM response for a whole-file fix."""

    content: str


# ---------------------------------------------------------------------------
# Review outcomes
# ---------------------------------------------------------------------------
class FileChange(BaseModel):
    """Per-file diff metadata recorded for display."""

    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    scanned_lines: list[int] = Field(default_factory=list)
    error: str | None = None


class PullRequestSummary(BaseModel):
    number: int
    title: str
    author: str
    head_branch: str
    base_branch: str
    head_sha: str = ""
    files_changed: int = 0

    @computed_field
    @property
    def branch_label(self) -> str:
        return f"{self.head_branch} → {self.base_branch}"


class ReviewOutcome(BaseModel):
    """Result of reviewing one pull request or one branch snapshot."""

    repository: str
    kind: ReviewKind
    findings: list[Finding] = Field(default_factory=list)
    file_changes: list[FileChange] = Field(default_factory=list)
    verdict: Verdict | None = None
    is_own_pr: bool = False
    auto_merged: bool = False
    pull_request: PullRequestSummary | None = None
    issue_number: int | None = None
    review_body: str = ""
    status: ReviewStatus = "in-progress"

    @computed_field
    @property
    def issues_found(self) -> int:
        return len(self.findings)

    @computed_field
    @property
    def critical_issues(self) -> int:
        return sum(1 for f in self.findings if f.severity == "critical")


class FixDetail(BaseModel):
    file: str
    line: int
    rule: str | None = None
    issue: str
    fix: str
    rationale: str
    impact: str = ""


class FailedFile(BaseModel):
    file: str
    reason: str


class FixOutcome(BaseModel):
    """Result of one ``fix_issues_with_ai`` batch."""

    success: bool = True
    already_fixed: bool = False
    fixed_files: list[str] = Field(default_factory=list)
    fixed_issues: int = 0
    fix_details: list[FixDetail] = Field(default_factory=list)
    failed_files: list[FailedFile] = Field(default_factory=list)
    closed_issues: list[int] = Field(default_factory=list)
    cancelled: bool = False
    message: str = ""


# ---------------------------------------------------------------------------
# Stored state
# ---------------------------------------------------------------------------
class ReviewRecord(BaseModel):
    """The current review for one repository (one per repository)."""

    repository: str
    recorded_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    outcome: ReviewOutcome

    @property
    def status(self) -> ReviewStatus:
        return self.outcome.status


class FixRecord(BaseModel):
    """One entry of the append-only fix history."""

    repository: str
    recorded_at: datetime = Field(default_factory=utcnow)
    issues_fixed: int = 0
    files_fixed: list[str] = Field(default_factory=list)
    resolved_ids: list[str] = Field(default_factory=list)
    single_fix: bool = False
    all_fixed: bool = False


class RepositoryReviewState(BaseModel):
    repository: str
    unresolved_findings: list[TrackedFinding] = Field(default_factory=list)
    review: ReviewRecord | None = None
    fixes: list[FixRecord] = Field(default_factory=list)


class DashboardStats(BaseModel):
    reviews_completed: int = 0
    issues_resolved: int = 0
    open_findings: int = 0
    time_saved_hours: float = 0.0
