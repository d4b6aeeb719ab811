"""Review pipeline: PR reviews, branch reviews and AI fixes with tracked state."""

import logging
import threading
from collections.abc import Iterable

from agent import PullRequestReviewAgent
from analyzer import CodeAnalyzer
from config import ReviewConfig, validate_repo
from diff_parser import language_for_filename
from errors import (
    AuthError,
    ResourceNotFound,
    ReviewBotError,
    raise_if_cancelled,
)
from formatting import (
    format_commit_message,
    format_resolution_comment,
    format_tracking_issue,
    is_tracking_issue,
    tracking_issue_title,
)
from github_client import RepositorySummary, SourceProvider
from models import (
    FailedFile,
    FileChange,
    Finding,
    FixDetail,
    FixOutcome,
    FixRecord,
    ReviewOutcome,
)
from policy import explain_fix, file_major_order, group_by_file, surfaced
from state_store import ReviewStateStore

logger = logging.getLogger(__name__)

# Entry points and config files scanned by a branch review, in order.
BRANCH_REVIEW_CANDIDATES: tuple[str, ...] = (
    "src/index.js",
    "src/index.ts",
    "src/App.js",
    "src/App.tsx",
    "src/main.tsx",
    "src/main.js",
    "index.js",
    "index.ts",
    "app.js",
    "app.ts",
    "server.js",
    "server.ts",
    "package.json",
    "tsconfig.json",
    "webpack.config.js",
    "vite.config.ts",
    "vite.config.js",
)


class ReviewBot:
    """Reviews pull requests and branches, applies fixes and records the results."""

    def __init__(
        self,
        provider: SourceProvider,
        analyzer: CodeAnalyzer,
        store: ReviewStateStore,
        config: ReviewConfig | None = None,
    ) -> None:
        self.provider = provider
        self.analyzer = analyzer
        self.store = store
        self.config = config or ReviewConfig()
        self.agent = PullRequestReviewAgent(provider, analyzer, self.config)

    # =========================================================================
    # REVIEWS
    # =========================================================================
    def review_pull_request(
        self,
        owner: str,
        repo: str,
        pull_number: int,
        cancel: threading.Event | None = None,
    ) -> ReviewOutcome:
        """
        Review the changed lines of a pull request.

        The review is submitted (and the PR merged when allowed) unless the
        PR belongs to the authenticated user. The outcome replaces the stored
        review for the repository.
        """
        full_name = validate_repo(f"{owner}/{repo}")
        outcome = self.agent.run(full_name, pull_number, cancel)
        return self._record_review(outcome)

    def review_main_branch(
        self,
        owner: str,
        repo: str,
        cancel: threading.Event | None = None,
    ) -> ReviewOutcome:
        """
        Review the entry-point and config files on the default branch.

        Whole files are analyzed. When issues remain a tracking issue is opened.
        """
        full_name = validate_repo(f"{owner}/{repo}")
        logger.info("🔍 Reviewing main branch of %s...", full_name)

        findings: list[Finding] = []
        file_changes: list[FileChange] = []
        read_errors: list[ReviewBotError] = []

        for path in BRANCH_REVIEW_CANDIDATES:
            raise_if_cancelled(cancel, f"Branch review of {full_name}")
            try:
                content = self.provider.get_file_content(full_name, path)
            except AuthError:
                raise
            except ReviewBotError as e:
                logger.warning("   Could not read %s: %s", path, e.message)
                read_errors.append(e)
                continue
            if content is None:
                continue

            total_lines = content.count("\n") + 1
            try:
                file_findings = self.analyzer.analyze_full(
                    content, path, language_for_filename(path)
                )
            except AuthError:
                raise
            except ReviewBotError as e:
                logger.error("   ❌ Failed to review %s: %s", path, e.message)
                file_changes.append(
                    FileChange(filename=path, status="unchanged", error=e.message)
                )
                continue

            kept = surfaced(file_findings)
            logger.info("   %s: %d issue(s)", path, len(kept))
            findings.extend(kept)
            file_changes.append(
                FileChange(
                    filename=path,
                    status="unchanged",
                    scanned_lines=list(range(1, total_lines + 1)),
                )
            )

        if not file_changes and read_errors:
            # Nothing could be read at all: the branch itself is unavailable
            raise read_errors[-1]

        findings = file_major_order(findings, [c.filename for c in file_changes])
        raise_if_cancelled(cancel, f"Branch review of {full_name}")

        issue_number = None
        if findings:
            issue_number = self.provider.create_issue(
                full_name, tracking_issue_title(findings), format_tracking_issue(findings)
            )
            logger.info("   📌 Opened tracking issue #%d", issue_number)
        else:
            logger.info("   ✅ No issues found on the main branch")

        outcome = ReviewOutcome(
            repository=full_name,
            kind="branch",
            findings=findings,
            file_changes=file_changes,
            issue_number=issue_number,
        )
        return self._record_review(outcome)

    def resume_review(self, owner: str, repo: str) -> ReviewOutcome:
        """Rebuild the current review from the stored unresolved findings."""
        full_name = validate_repo(f"{owner}/{repo}")
        state = self.store.get_state(full_name)
        if state.review is None:
            raise ResourceNotFound(f"No review recorded for {full_name}")

        unresolved = state.unresolved_findings
        status = "completed" if not unresolved else state.review.status
        return state.review.outcome.model_copy(update={"findings": unresolved, "status": status})

    def _record_review(self, outcome: ReviewOutcome) -> ReviewOutcome:
        if not outcome.findings:
            outcome = outcome.model_copy(update={"status": "completed"})
        self.store.record_review(outcome.repository, outcome)
        logger.info(
            "📊 %s: %d issue(s), %d critical",
            outcome.repository,
            outcome.issues_found,
            outcome.critical_issues,
        )
        return outcome

    # =========================================================================
    # FIXES
    # =========================================================================
    def fix_issues_with_ai(
        self,
        owner: str,
        repo: str,
        findings: Iterable[Finding],
        cancel: threading.Event | None = None,
    ) -> FixOutcome:
        """
        Fix the fixable *findings* file by file and commit each corrected file.

        Every commit uses the revision token read before the content, so a file
        changed in between fails with FixConflict instead of being overwritten.
        A failing file does not stop the batch. Unfixable findings are never
        sent to the analyzer and stay unresolved. Tracking issues opened by the
        branch review are commented on and closed once something was fixed.
        """
        full_name = validate_repo(f"{owner}/{repo}")
        findings = list(findings)
        if not findings:
            logger.info("Nothing to fix for %s", full_name)
            return FixOutcome(success=True, already_fixed=True, message="No issues to fix")

        grouped = group_by_file(findings)
        logger.info("🔧 Fixing %d issue(s) in %d file(s)...", len(findings), len(grouped))

        fixed_files: list[str] = []
        fix_details: list[FixDetail] = []
        failed_files: list[FailedFile] = []
        processed: list[Finding] = []
        cancelled = False

        try:
            for path, file_findings in grouped.items():
                if cancel is not None and cancel.is_set():
                    logger.warning("Fix of %s cancelled; %d file(s) done", full_name, len(fixed_files))
                    cancelled = True
                    break
                fixable = [f for f in file_findings if f.fixable]
                if not fixable:
                    logger.info("   %s has no fixable issues, skipping", path)
                    continue
                try:
                    changed = self._fix_file(full_name, path, fixable)
                except AuthError:
                    raise
                except ReviewBotError as e:
                    logger.error("   ❌ Could not fix %s: %s", path, e.message)
                    failed_files.append(FailedFile(file=path, reason=e.message))
                    continue

                processed.extend(fixable)
                if changed:
                    fixed_files.append(path)
                    fix_details.extend(self._fix_details(fixable))
        finally:
            # Commits already made stay made; record them even when aborting
            if processed:
                self._record_fix(full_name, processed, fixed_files, fix_details)

        closed: list[int] = []
        if fix_details and not cancelled:
            closed = self._close_tracking_issues(full_name, fix_details)

        already_fixed = not fixed_files and not failed_files
        success = bool(processed) or not failed_files
        if not processed and not failed_files and not cancelled:
            message = "No fixable issues found"
        elif already_fixed:
            message = "All issues were already fixed"
        else:
            message = f"Fixed {len(fix_details)} issue(s) in {len(fixed_files)} file(s)"
            if failed_files:
                message += f"; {len(failed_files)} file(s) failed"
        if cancelled:
            message += " (cancelled)"

        logger.info("   %s", message)
        return FixOutcome(
            success=success,
            already_fixed=already_fixed,
            fixed_files=fixed_files,
            fixed_issues=len(fix_details),
            fix_details=fix_details,
            failed_files=failed_files,
            closed_issues=closed,
            cancelled=cancelled,
            message=message,
        )

    def fix_unresolved(
        self, owner: str, repo: str, cancel: threading.Event | None = None
    ) -> FixOutcome:
        """Fix every stored unresolved finding of the repository."""
        if not self.config.auto_fix:
            raise ReviewBotError("Auto-fix is disabled (AUTO_FIX=false)")
        full_name = validate_repo(f"{owner}/{repo}")
        return self.fix_issues_with_ai(owner, repo, self.store.get_unresolved(full_name), cancel)

    def _fix_file(self, repo: str, path: str, findings: list[Finding]) -> bool:
        """Fix one file; return True when a commit was made."""
        token = self.provider.get_file_revision_token(repo, path)
        content = self.provider.get_file_content(repo, path)
        if token is None or content is None:
            raise ResourceNotFound(f"{path} not found in {repo}")

        corrected = self.analyzer.fix(content, findings)
        if corrected == content:
            logger.info("   %s already clean, nothing to commit", path)
            return False

        sha = self.provider.update_file(
            repo, path, corrected, format_commit_message(path, findings), token
        )
        logger.info("   ✅ Committed fix for %s (%s)", path, sha[:7])
        return True

    @staticmethod
    def _fix_details(findings: list[Finding]) -> list[FixDetail]:
        details = []
        for finding in findings:
            explanation = explain_fix(finding)
            details.append(
                FixDetail(
                    file=finding.file,
                    line=finding.line,
                    rule=finding.rule,
                    issue=finding.message,
                    fix=explanation.what,
                    rationale=explanation.why,
                    impact=explanation.impact,
                )
            )
        return details

    def _record_fix(
        self,
        repo: str,
        processed: list[Finding],
        fixed_files: list[str],
        fix_details: list[FixDetail],
    ) -> None:
        tokens: list[str] = []
        for finding in processed:
            tracked = finding.tracked()
            tokens.extend((tracked.id, tracked.hash))
        record = FixRecord(
            repository=repo,
            issues_fixed=len(fix_details),
            files_fixed=fixed_files,
            single_fix=len(processed) == 1,
        )
        self.store.resolve(repo, tokens, record)

    def _close_tracking_issues(self, repo: str, details: list[FixDetail]) -> list[int]:
        """Comment on and close the open tracking issues of *repo*."""
        closed: list[int] = []
        try:
            issues = self.provider.list_open_issues(repo)
        except AuthError:
            raise
        except ReviewBotError as e:
            logger.warning("Could not list issues of %s: %s", repo, e.message)
            return closed

        comment = format_resolution_comment(repo, details)
        for issue in issues:
            if not is_tracking_issue(issue.title, issue.body):
                continue
            try:
                self.provider.add_issue_comment(repo, issue.number, comment)
                self.provider.update_issue(repo, issue.number, "closed")
            except AuthError:
                raise
            except ReviewBotError as e:
                logger.warning("Could not close issue #%d: %s", issue.number, e.message)
                continue
            logger.info("   🗂️  Closed tracking issue #%d", issue.number)
            closed.append(issue.number)
        return closed

    # =========================================================================
    # PASS-THROUGH
    # =========================================================================
    def list_repositories(self) -> list[RepositorySummary]:
        return self.provider.list_repositories()
