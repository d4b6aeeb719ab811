"""GitHub API client for PR, content and issue operations."""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol

import requests
import requests.exceptions
from github import Auth, Github
from github.GithubException import GithubException

from config import validate_repo, with_retry
from errors import (
    AuthError,
    FixConflict,
    ResourceNotFound,
    ReviewBotError,
    UpstreamUnavailable,
)
from models import Verdict

logger = logging.getLogger(__name__)

# Only idempotent reads are retried; writes surface the first failure.
_RETRYABLE_NETWORK_ERRORS: tuple[type[Exception], ...] = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)

_REVIEW_EVENTS: dict[str, str] = {
    "approve": "APPROVE",
    "request-changes": "REQUEST_CHANGES",
    "comment": "COMMENT",
}


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass
class PRMetadata:
    """Pull Request metadata."""

    number: int
    title: str
    author: str
    draft: bool
    state: str
    base_branch: str
    head_branch: str
    head_sha: str
    changed_files: int
    description: str | None = None


@dataclass
class ChangedFile:
    """A file changed in a Pull Request."""

    filename: str
    status: str  # added, removed, modified, renamed
    additions: int  # lines added
    deletions: int  # lines deleted
    changes: int  # total lines changed
    patch: str | None  # the diff/patch for this file


@dataclass
class RepositorySummary:
    full_name: str
    private: bool
    default_branch: str
    open_issues_count: int
    html_url: str


@dataclass
class IssueSummary:
    number: int
    title: str
    body: str | None
    state: str


# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------
class SourceProvider(Protocol):
    """Hosted version-control operations the review bot depends on.

    ``repo`` is always the full "owner/repo" name.
    """

    def current_user(self) -> str: ...

    def list_repositories(self) -> list[RepositorySummary]: ...

    def get_pull_request(self, repo: str, number: int) -> PRMetadata: ...

    def get_pull_request_files(self, repo: str, number: int) -> list[ChangedFile]: ...

    def get_file_content(self, repo: str, path: str, ref: str | None = None) -> str | None: ...

    def get_file_revision_token(
        self, repo: str, path: str, ref: str | None = None
    ) -> str | None: ...

    def update_file(
        self, repo: str, path: str, content: str, message: str, expected_token: str
    ) -> str: ...

    def create_review(self, repo: str, number: int, body: str, verdict: Verdict) -> int: ...

    def merge_pull_request(self, repo: str, number: int) -> bool: ...

    def create_issue(self, repo: str, title: str, body: str) -> int: ...

    def update_issue(self, repo: str, number: int, state: str) -> None: ...

    def add_issue_comment(self, repo: str, number: int, body: str) -> int: ...

    def list_open_issues(self, repo: str) -> list[IssueSummary]: ...


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
def _error_message(e: GithubException) -> str:
    data = getattr(e, "data", None)
    if isinstance(data, dict):
        return str(data.get("message", e))
    return str(e)


def _from_github(e: GithubException, what: str) -> ReviewBotError:
    message = _error_message(e)
    status = e.status or 0

    if status == 401:
        return AuthError(f"GitHub rejected the token ({what}): {message}")
    if status in (403, 429):
        if "rate limit" in message.lower():
            return UpstreamUnavailable(f"GitHub rate limit hit ({what}): {message}")
        return AuthError(f"Access denied ({what}): {message}")
    if status == 404:
        return ResourceNotFound(f"Not found: {what}")
    if status >= 500:
        return UpstreamUnavailable(f"GitHub unavailable ({what}): {status} {message}")
    return ReviewBotError(f"GitHub API error ({what}): {message}")


@contextmanager
def _translate_errors(what: str) -> Iterator[None]:
    """Re-raise PyGithub / requests failures as pipeline errors."""
    try:
        yield
    except GithubException as e:
        raise _from_github(e, what) from e
    except requests.exceptions.RequestException as e:
        raise UpstreamUnavailable(f"GitHub unreachable ({what}): {e}") from e


# ---------------------------------------------------------------------------
# PyGithub-backed provider
# ---------------------------------------------------------------------------
class GitHubClient:
    """SourceProvider implementation on top of PyGithub."""

    def __init__(self, token: str | None = None, client: Github | None = None) -> None:
        if client is None:
            token = token or os.getenv("GITHUB_TOKEN")
            if not token:
                raise ValueError(
                    "GITHUB_TOKEN not found. Set it in .env file.\n"
                    "Get your token at: https://github.com/settings/tokens"
                )
            client = Github(auth=Auth.Token(token))
        self._client = client
        self._login: str | None = None

    # -- reads ---------------------------------------------------------------
    def current_user(self) -> str:
        if self._login is None:
            with _translate_errors("authenticated user"):
                self._login = self._read_login()
        return self._login

    @with_retry(max_retries=3, base_delay=1.0, retryable=_RETRYABLE_NETWORK_ERRORS)
    def _read_login(self) -> str:
        return self._client.get_user().login

    def list_repositories(self) -> list[RepositorySummary]:
        with _translate_errors("repository list"):
            return self._read_repositories()

    @with_retry(max_retries=3, base_delay=1.0, retryable=_RETRYABLE_NETWORK_ERRORS)
    def _read_repositories(self) -> list[RepositorySummary]:
        return [
            RepositorySummary(
                full_name=r.full_name,
                private=r.private,
                default_branch=r.default_branch,
                open_issues_count=r.open_issues_count,
                html_url=r.html_url,
            )
            for r in self._client.get_user().get_repos(sort="updated")
        ]

    def get_pull_request(self, repo: str, number: int) -> PRMetadata:
        """
        Fetch PR metadata from GitHub.

        Raises:
            ResourceNotFound: If the PR does not exist
            AuthError: If the token cannot read the repository
        """
        repo = validate_repo(repo)
        with _translate_errors(f"PR #{number} in {repo}"):
            return self._read_pull(repo, number)

    @with_retry(max_retries=3, base_delay=1.0, retryable=_RETRYABLE_NETWORK_ERRORS)
    def _read_pull(self, repo: str, number: int) -> PRMetadata:
        pr = self._client.get_repo(repo).get_pull(number)
        return PRMetadata(
            number=pr.number,
            title=pr.title,
            author=pr.user.login,
            draft=pr.draft,
            state=pr.state,
            base_branch=pr.base.ref,
            head_branch=pr.head.ref,
            head_sha=pr.head.sha,
            changed_files=pr.changed_files,
            description=pr.body,
        )

    def get_pull_request_files(self, repo: str, number: int) -> list[ChangedFile]:
        """Fetch the files changed in a PR, with per-file patches."""
        repo = validate_repo(repo)
        with _translate_errors(f"files of PR #{number} in {repo}"):
            return self._read_pull_files(repo, number)

    @with_retry(max_retries=3, base_delay=1.0, retryable=_RETRYABLE_NETWORK_ERRORS)
    def _read_pull_files(self, repo: str, number: int) -> list[ChangedFile]:
        pr = self._client.get_repo(repo).get_pull(number)
        return [
            ChangedFile(
                filename=f.filename,
                status=f.status,
                additions=f.additions,
                deletions=f.deletions,
                changes=f.changes,
                patch=f.patch,
            )
            for f in pr.get_files()
        ]

    def get_file_content(self, repo: str, path: str, ref: str | None = None) -> str | None:
        """Return the decoded file text, or None if it does not exist."""
        repo = validate_repo(repo)
        try:
            with _translate_errors(f"{path} in {repo}"):
                content_file = self._read_contents(repo, path, ref)
        except ResourceNotFound:
            return None
        if content_file is None:
            return None

        try:
            return content_file.decoded_content.decode("utf-8")
        except UnicodeDecodeError:
            logger.info("Skipping %s: not UTF-8 text", path)
            return None

    def get_file_revision_token(
        self, repo: str, path: str, ref: str | None = None
    ) -> str | None:
        """Return the blob SHA GitHub requires for a conflict-safe update."""
        repo = validate_repo(repo)
        try:
            with _translate_errors(f"{path} in {repo}"):
                content_file = self._read_contents(repo, path, ref)
        except ResourceNotFound:
            return None
        return content_file.sha if content_file is not None else None

    @with_retry(max_retries=3, base_delay=1.0, retryable=_RETRYABLE_NETWORK_ERRORS)
    def _read_contents(self, repo: str, path: str, ref: str | None):
        repository = self._client.get_repo(repo)
        if ref:
            result = repository.get_contents(path, ref=ref)
        else:
            result = repository.get_contents(path)
        # A directory comes back as a list
        return None if isinstance(result, list) else result

    def list_open_issues(self, repo: str) -> list[IssueSummary]:
        repo = validate_repo(repo)
        with _translate_errors(f"open issues of {repo}"):
            return self._read_open_issues(repo)

    @with_retry(max_retries=3, base_delay=1.0, retryable=_RETRYABLE_NETWORK_ERRORS)
    def _read_open_issues(self, repo: str) -> list[IssueSummary]:
        return [
            IssueSummary(number=i.number, title=i.title, body=i.body, state=i.state)
            for i in self._client.get_repo(repo).get_issues(state="open")
            if i.pull_request is None
        ]

    # -- writes --------------------------------------------------------------
    def update_file(
        self, repo: str, path: str, content: str, message: str, expected_token: str
    ) -> str:
        """
        Commit new content for *path*, guarded by the blob SHA read earlier.

        Returns:
            The new commit SHA

        Raises:
            FixConflict: If the file changed since *expected_token* was read
        """
        repo = validate_repo(repo)
        try:
            with _translate_errors(f"update {path} in {repo}"):
                result = self._client.get_repo(repo).update_file(
                    path, message, content, expected_token
                )
        except ReviewBotError as e:
            cause = e.__cause__
            if isinstance(cause, GithubException) and (
                cause.status == 409
                or (cause.status == 422 and "sha" in _error_message(cause).lower())
            ):
                raise FixConflict(path, f"{path} changed since it was read") from cause
            raise

        commit_sha = result["commit"].sha
        logger.info("Committed %s (%s)", path, commit_sha[:7])
        return commit_sha

    def create_review(self, repo: str, number: int, body: str, verdict: Verdict) -> int:
        """Submit a review with an overall verdict. Returns the review ID."""
        repo = validate_repo(repo)
        with _translate_errors(f"review on PR #{number} in {repo}"):
            pr = self._client.get_repo(repo).get_pull(number)
            # Get the latest commit SHA (required for review API)
            commit = pr.get_commits().reversed[0]
            github_review = pr.create_review(
                commit=commit,
                body=body,
                event=_REVIEW_EVENTS[verdict],
            )

        logger.info("Posted %s review %d on PR #%d", verdict, github_review.id, number)
        return github_review.id

    def merge_pull_request(self, repo: str, number: int) -> bool:
        repo = validate_repo(repo)
        with _translate_errors(f"merge PR #{number} in {repo}"):
            status = self._client.get_repo(repo).get_pull(number).merge(merge_method="merge")
        logger.info("Merged PR #%d in %s: %s", number, repo, status.merged)
        return bool(status.merged)

    def create_issue(self, repo: str, title: str, body: str) -> int:
        repo = validate_repo(repo)
        with _translate_errors(f"create issue in {repo}"):
            issue = self._client.get_repo(repo).create_issue(title=title, body=body)
        logger.info("Opened issue #%d in %s", issue.number, repo)
        return issue.number

    def update_issue(self, repo: str, number: int, state: str) -> None:
        repo = validate_repo(repo)
        with _translate_errors(f"update issue #{number} in {repo}"):
            issue = self._client.get_repo(repo).get_issue(number)
            if state == "closed":
                issue.edit(state="closed", state_reason="completed")
            else:
                issue.edit(state=state)

    def add_issue_comment(self, repo: str, number: int, body: str) -> int:
        repo = validate_repo(repo)
        with _translate_errors(f"comment on issue #{number} in {repo}"):
            comment = self._client.get_repo(repo).get_issue(number).create_comment(body)
        return comment.id
