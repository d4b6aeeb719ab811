"""
ReviewAI Agent - LangGraph-based pull request review

The review runs as a state machine:

    fetch_pr_data -> analyze_files -> decide_verdict -> submit_review -> merge_pull_request

Submission is skipped for the caller's own pull requests, and merging only
happens when the verdict allows it and auto-merge is configured.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from langgraph.graph import END, START, StateGraph

from analyzer import CodeAnalyzer
from config import ReviewConfig
from diff_parser import extract_changed_lines, language_for_filename
from errors import AuthError, ResourceNotFound, ReviewBotError, raise_if_cancelled
from formatting import format_review_body
from github_client import ChangedFile, PRMetadata, SourceProvider
from models import (
    FileChange,
    Finding,
    PullRequestSummary,
    ReviewOutcome,
    Verdict,
)
from policy import determine_verdict, file_major_order, surfaced

logger = logging.getLogger(__name__)


# =============================================================================
# STATE DEFINITION
# =============================================================================
@dataclass
class ReviewState:
    """
    State that flows through the review graph.

    Each node reads what it needs and returns updates to specific fields.
    """

    # Input (required)
    repo: str  # e.g., "octocat/hello-world"
    pr_number: int  # e.g., 1
    cancel: threading.Event | None = None

    # Populated by fetch_pr_data
    pull_request: PRMetadata | None = None
    files: list[ChangedFile] = field(default_factory=list)
    is_own_pr: bool = False

    # Populated by analyze_files
    file_changes: list[FileChange] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)

    # Populated by decide_verdict
    verdict: Verdict | None = None
    review_body: str = ""

    # Output
    review_id: int | None = None
    auto_merged: bool = False


class PullRequestReviewAgent:
    """Runs one pull request through the review graph."""

    def __init__(
        self,
        provider: SourceProvider,
        analyzer: CodeAnalyzer,
        config: ReviewConfig,
    ) -> None:
        self.provider = provider
        self.analyzer = analyzer
        self.config = config
        self._graph = self.build_graph().compile()

    # =========================================================================
    # NODES
    # =========================================================================
    def fetch_pr_data(self, state: ReviewState) -> dict:
        """
        Node 1: Fetch identity, PR metadata and changed files.

        Failures here abort the whole review.
        """
        logger.info("📥 Fetching PR #%d from %s...", state.pr_number, state.repo)

        user = self.provider.current_user()
        pr = self.provider.get_pull_request(state.repo, state.pr_number)
        files = self.provider.get_pull_request_files(state.repo, state.pr_number)

        is_own_pr = user.lower() == pr.author.lower()
        if is_own_pr:
            logger.info("   PR #%d was opened by %s (you); analysis only", pr.number, user)

        logger.info("   Found %d changed file(s)", len(files))
        return {"pull_request": pr, "files": files, "is_own_pr": is_own_pr}

    def analyze_files(self, state: ReviewState) -> dict:
        """
        Node 2: Analyze the changed lines of every file.

        Reads run on a bounded pool when ``max_workers > 1``; results keep the
        diff order either way.
        """
        files = state.files
        ref = state.pull_request.head_sha if state.pull_request else None

        def scan(changed: ChangedFile) -> tuple[FileChange, list[Finding]]:
            return self.scan_file(state.repo, ref, changed, state.cancel)

        if self.config.max_workers > 1 and len(files) > 1:
            logger.info("🔍 Analysing %d file(s) with %d workers...", len(files), self.config.max_workers)
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                results = list(pool.map(scan, files))
        else:
            logger.info("🔍 Analysing %d file(s)...", len(files))
            results = [scan(changed) for changed in files]

        file_changes = [change for change, _ in results]
        findings = [finding for _, file_findings in results for finding in file_findings]
        ordered = file_major_order(findings, [f.filename for f in files])

        logger.info("   Found %d issue(s)", len(ordered))
        return {"file_changes": file_changes, "findings": ordered}

    def decide_verdict(self, state: ReviewState) -> dict:
        """Node 3: Compute the verdict and the review body."""
        raise_if_cancelled(state.cancel, f"Review of {state.repo}#{state.pr_number}")

        verdict = determine_verdict(state.findings)
        logger.info("⚖️  Verdict: %s", verdict)
        return {"verdict": verdict, "review_body": format_review_body(state.findings)}

    def submit_review(self, state: ReviewState) -> dict:
        """Node 4: Post the review with its verdict."""
        logger.info("📝 Posting review to GitHub...")
        review_id = self.provider.create_review(
            state.repo, state.pr_number, state.review_body, state.verdict
        )
        logger.info("   ✅ Posted review #%d", review_id)
        return {"review_id": review_id}

    def merge_pull_request(self, state: ReviewState) -> dict:
        """Node 5: Merge the PR."""
        logger.info("🔀 Auto-merging PR #%d...", state.pr_number)
        merged = self.provider.merge_pull_request(state.repo, state.pr_number)
        if not merged:
            logger.warning("   GitHub declined to merge PR #%d", state.pr_number)
        return {"auto_merged": merged}

    # =========================================================================
    # PER-FILE SCAN
    # =========================================================================
    def scan_file(
        self,
        repo: str,
        ref: str | None,
        changed: ChangedFile,
        cancel: threading.Event | None = None,
    ) -> tuple[FileChange, list[Finding]]:
        """
        Analyze one changed file, scoped to its changed lines.

        Per-file failures are logged and recorded on the returned FileChange;
        only AuthError and cancellation escape.
        """
        raise_if_cancelled(cancel, f"Review of {repo}")

        change = FileChange(
            filename=changed.filename,
            status=changed.status,
            additions=changed.additions,
            deletions=changed.deletions,
            changes=changed.changes,
        )
        if changed.status == "removed":
            return change, []

        lines = extract_changed_lines(changed.patch)
        if not lines:
            logger.info("   Skipping %s (nothing to scan)", changed.filename)
            return change, []
        change = change.model_copy(update={"scanned_lines": lines})

        try:
            content = self.provider.get_file_content(repo, changed.filename, ref=ref)
            if content is None:
                raise ResourceNotFound(f"{changed.filename} not found at {ref}")
            language = language_for_filename(changed.filename)
            findings = self.analyzer.analyze_scoped(content, changed.filename, language, lines)
        except AuthError:
            raise
        except ReviewBotError as e:
            logger.error("   ❌ Failed to review %s: %s", changed.filename, e.message)
            return change.model_copy(update={"error": e.message}), []

        kept = surfaced(findings)
        logger.info(
            "   %s: %d changed line(s), %d issue(s)", changed.filename, len(lines), len(kept)
        )
        return change, kept

    # =========================================================================
    # DECISION FUNCTIONS (for conditional edges)
    # =========================================================================
    @staticmethod
    def should_submit(state: ReviewState) -> str:
        if state.is_own_pr:
            logger.info("🔀 Decision: own PR → skipping review and merge")
            return "end"
        return "submit_review"

    def should_merge(self, state: ReviewState) -> str:
        if state.verdict != "request-changes" and self.config.auto_merge:
            return "merge_pull_request"
        return "end"

    # =========================================================================
    # GRAPH CONSTRUCTION
    # =========================================================================
    def build_graph(self) -> StateGraph:
        graph = StateGraph(ReviewState)

        graph.add_node("fetch_pr_data", self.fetch_pr_data)
        graph.add_node("analyze_files", self.analyze_files)
        graph.add_node("decide_verdict", self.decide_verdict)
        graph.add_node("submit_review", self.submit_review)
        graph.add_node("merge_pull_request", self.merge_pull_request)

        graph.add_edge(START, "fetch_pr_data")
        graph.add_edge("fetch_pr_data", "analyze_files")
        graph.add_edge("analyze_files", "decide_verdict")
        graph.add_conditional_edges(
            "decide_verdict",
            self.should_submit,
            {"submit_review": "submit_review", "end": END},
        )
        graph.add_conditional_edges(
            "submit_review",
            self.should_merge,
            {"merge_pull_request": "merge_pull_request", "end": END},
        )
        graph.add_edge("merge_pull_request", END)

        return graph

    def run(
        self, repo: str, pr_number: int, cancel: threading.Event | None = None
    ) -> ReviewOutcome:
        """Review *pr_number* in *repo* and return the outcome."""
        final = self._graph.invoke(ReviewState(repo=repo, pr_number=pr_number, cancel=cancel))

        pr: PRMetadata = final["pull_request"]
        return ReviewOutcome(
            repository=repo,
            kind="pull_request",
            findings=final["findings"],
            file_changes=final["file_changes"],
            verdict=final.get("verdict"),
            is_own_pr=final["is_own_pr"],
            auto_merged=final.get("auto_merged", False),
            pull_request=PullRequestSummary(
                number=pr.number,
                title=pr.title,
                author=pr.author,
                head_branch=pr.head_branch,
                base_branch=pr.base_branch,
                head_sha=pr.head_sha,
                files_changed=len(final["files"]),
            ),
            review_body=final.get("review_body", ""),
        )
