"""Shared test fixtures."""

import hashlib
from collections import Counter
from pathlib import Path

import pytest

import analyzer as analyzer_module
from analyzer import apply_suggested_fixes
from config import ReviewConfig
from errors import FixConflict, ResourceNotFound
from github_client import ChangedFile, IssueSummary, PRMetadata, RepositorySummary
from models import Finding
from review_bot import ReviewBot
from state_store import SQLiteStateStore

REPO = "octocat/shop"


@pytest.fixture(autouse=True)
def _prevent_real_api_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    """Safety: block real Gemini calls in all tests."""

    def _blocked(*args: object, **kwargs: object) -> str:
        raise AssertionError("Real Gemini call attempted in tests")

    monkeypatch.setattr(analyzer_module, "call_gemini", _blocked)


def _blob_sha(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


class FakeSourceProvider:
    """In-memory SourceProvider that counts every call."""

    def __init__(self, login: str = "reviewer") -> None:
        self.login = login
        self.calls: Counter[str] = Counter()
        self.pulls: dict[int, PRMetadata] = {}
        self.pull_files: dict[int, list[ChangedFile]] = {}
        self.files: dict[str, str] = {}
        self.issues: dict[int, IssueSummary] = {}
        self.reviews: list[tuple[int, str, str]] = []
        self.merged: list[int] = []
        self.commits: list[tuple[str, str, str]] = []
        self.comments: list[tuple[int, str]] = []
        self.read_errors: dict[str, Exception] = {}
        # Content written by "someone else" right after a token is read
        self.concurrent_edits: dict[str, str] = {}

    # -- fixtures helpers ----------------------------------------------------
    def add_pull(
        self, number: int, files: dict[str, tuple[str, str | None]], author: str = "contributor"
    ) -> None:
        """Register a PR; *files* maps filename -> (content, patch)."""
        self.pulls[number] = PRMetadata(
            number=number,
            title=f"Change #{number}",
            author=author,
            draft=False,
            state="open",
            base_branch="main",
            head_branch=f"feature-{number}",
            head_sha=f"sha{number}",
            changed_files=len(files),
        )
        self.pull_files[number] = []
        for filename, (content, patch) in files.items():
            self.files[filename] = content
            additions = sum(1 for line in (patch or "").split("\n") if line.startswith("+"))
            self.pull_files[number].append(
                ChangedFile(
                    filename=filename,
                    status="modified",
                    additions=additions,
                    deletions=0,
                    changes=additions,
                    patch=patch,
                )
            )

    # -- reads ---------------------------------------------------------------
    def current_user(self) -> str:
        self.calls["current_user"] += 1
        return self.login

    def list_repositories(self) -> list[RepositorySummary]:
        self.calls["list_repositories"] += 1
        return [RepositorySummary(REPO, False, "main", len(self.issues), f"https://github.com/{REPO}")]

    def get_pull_request(self, repo: str, number: int) -> PRMetadata:
        self.calls["get_pull_request"] += 1
        if number not in self.pulls:
            raise ResourceNotFound(f"PR #{number} not found")
        return self.pulls[number]

    def get_pull_request_files(self, repo: str, number: int) -> list[ChangedFile]:
        self.calls["get_pull_request_files"] += 1
        return self.pull_files[number]

    def get_file_content(self, repo: str, path: str, ref: str | None = None) -> str | None:
        self.calls["get_file_content"] += 1
        if path in self.read_errors:
            raise self.read_errors[path]
        return self.files.get(path)

    def get_file_revision_token(self, repo: str, path: str, ref: str | None = None) -> str | None:
        self.calls["get_file_revision_token"] += 1
        if path not in self.files:
            return None
        token = _blob_sha(self.files[path])
        if path in self.concurrent_edits:
            self.files[path] = self.concurrent_edits.pop(path)
        return token

    def list_open_issues(self, repo: str) -> list[IssueSummary]:
        self.calls["list_open_issues"] += 1
        return [i for i in self.issues.values() if i.state == "open"]

    # -- writes --------------------------------------------------------------
    def update_file(
        self, repo: str, path: str, content: str, message: str, expected_token: str
    ) -> str:
        self.calls["update_file"] += 1
        if _blob_sha(self.files[path]) != expected_token:
            raise FixConflict(path)
        self.files[path] = content
        self.commits.append((path, content, message))
        return _blob_sha(message + content)

    def create_review(self, repo: str, number: int, body: str, verdict: str) -> int:
        self.calls["create_review"] += 1
        self.reviews.append((number, body, verdict))
        return len(self.reviews)

    def merge_pull_request(self, repo: str, number: int) -> bool:
        self.calls["merge_pull_request"] += 1
        self.merged.append(number)
        return True

    def create_issue(self, repo: str, title: str, body: str) -> int:
        self.calls["create_issue"] += 1
        number = len(self.issues) + 1
        self.issues[number] = IssueSummary(number=number, title=title, body=body, state="open")
        return number

    def update_issue(self, repo: str, number: int, state: str) -> None:
        self.calls["update_issue"] += 1
        issue = self.issues[number]
        self.issues[number] = IssueSummary(issue.number, issue.title, issue.body, state)

    def add_issue_comment(self, repo: str, number: int, body: str) -> int:
        self.calls["add_issue_comment"] += 1
        self.comments.append((number, body))
        return len(self.comments)

    @property
    def write_calls(self) -> int:
        return sum(
            self.calls[name]
            for name in (
                "update_file",
                "create_review",
                "merge_pull_request",
                "create_issue",
                "update_issue",
                "add_issue_comment",
            )
        )


class FakeAnalyzer:
    """CodeAnalyzer returning canned findings per file."""

    def __init__(self, findings: dict[str, list[Finding]] | None = None) -> None:
        self.findings = findings or {}
        self.errors: dict[str, Exception] = {}
        self.scoped_calls: list[tuple[str, list[int]]] = []
        self.full_calls: list[str] = []
        self.fix_calls: list[str] = []

    def analyze_scoped(
        self, content: str, filename: str, language: str, line_numbers: list[int]
    ) -> list[Finding]:
        self.scoped_calls.append((filename, list(line_numbers)))
        if filename in self.errors:
            raise self.errors[filename]
        return list(self.findings.get(filename, []))

    def analyze_full(self, content: str, filename: str, language: str) -> list[Finding]:
        self.full_calls.append(filename)
        if filename in self.errors:
            raise self.errors[filename]
        return list(self.findings.get(filename, []))

    def fix(self, content: str, findings: list[Finding]) -> str:
        self.fix_calls.append(findings[0].file)
        if findings[0].file in self.errors:
            raise self.errors[findings[0].file]
        return apply_suggested_fixes(content, findings)


def make_finding(
    file: str = "src/app.js",
    line: int = 1,
    severity: str = "warning",
    message: str = "Something is off",
    **kwargs: object,
) -> Finding:
    """Helper to create test findings."""
    return Finding(file=file, line=line, severity=severity, message=message, **kwargs)


@pytest.fixture
def provider() -> FakeSourceProvider:
    return FakeSourceProvider()


@pytest.fixture
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def store(tmp_path: Path) -> SQLiteStateStore:
    with SQLiteStateStore(tmp_path / "state.db") as s:
        yield s


@pytest.fixture
def config() -> ReviewConfig:
    return ReviewConfig(auto_merge=False, auto_fix=True, analyzer="static")


@pytest.fixture
def bot(
    provider: FakeSourceProvider,
    fake_analyzer: FakeAnalyzer,
    store: SQLiteStateStore,
    config: ReviewConfig,
) -> ReviewBot:
    return ReviewBot(provider, fake_analyzer, store, config)
