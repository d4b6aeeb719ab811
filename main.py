"""ReviewAI command line entry point."""

import argparse
import logging
import sys

from analyzer import make_analyzer
from config import DEFAULT_DB_PATH, ReviewConfig, split_repo
from errors import ReviewBotError
from github_client import GitHubClient
from models import FixOutcome, ReviewOutcome
from review_bot import ReviewBot
from state_store import SQLiteStateStore

logger = logging.getLogger(__name__)

_SEVERITY_ICONS = {"critical": "🔴", "warning": "🟡"}


def print_review(outcome: ReviewOutcome) -> None:
    """Pretty print a review outcome."""
    if outcome.pull_request:
        pr = outcome.pull_request
        print(f"\n📋 PR #{pr.number}: {pr.title} ({pr.branch_label}) by {pr.author}")
    else:
        print(f"\n📋 Main branch of {outcome.repository}")

    for finding in outcome.findings:
        icon = _SEVERITY_ICONS.get(finding.severity, "❓")
        print(f"{icon} {finding.file}:{finding.line} [{finding.rule or finding.severity}] {finding.message}")
        if finding.suggestion:
            print(f"   💡 Fix: {finding.suggestion}")

    for change in outcome.file_changes:
        if change.error:
            print(f"⚠️  {change.filename}: {change.error}")

    print(f"\n{outcome.issues_found} issue(s), {outcome.critical_issues} critical")
    if outcome.verdict:
        print(f"Verdict: {outcome.verdict}")
    if outcome.is_own_pr:
        print("Own pull request: review not submitted")
    if outcome.auto_merged:
        print("✅ Auto-merged")
    if outcome.issue_number:
        print(f"📌 Tracking issue #{outcome.issue_number}")


def print_fix(outcome: FixOutcome) -> None:
    print(f"\n🔧 {outcome.message}")
    for detail in outcome.fix_details:
        print(f"✅ {detail.file}:{detail.line} {detail.issue}")
        print(f"   {detail.fix}")
    for failed in outcome.failed_files:
        print(f"❌ {failed.file}: {failed.reason}")
    for number in outcome.closed_issues:
        print(f"🗂️  Closed issue #{number}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reviewai", description="AI pull request reviewer")
    parser.add_argument("--db", default=DEFAULT_DB_PATH, help="state database path")
    parser.add_argument("--analyzer", choices=["static", "gemini"], help="analysis backend")
    parser.add_argument("--auto-merge", action="store_true", default=None, help="merge PRs that pass")

    sub = parser.add_subparsers(dest="command", required=True)

    review_pr = sub.add_parser("review-pr", help="review a pull request")
    review_pr.add_argument("repo", help="owner/repo")
    review_pr.add_argument("number", type=int)

    review_branch = sub.add_parser("review-branch", help="review the main branch")
    review_branch.add_argument("repo", help="owner/repo")
    review_branch.add_argument(
        "--scheduled",
        action="store_true",
        help="invoked by a scheduler; skipped unless DAILY_REVIEW is on",
    )

    fix = sub.add_parser("fix", help="fix every unresolved finding")
    fix.add_argument("repo", help="owner/repo")

    resume = sub.add_parser("resume", help="show the stored review")
    resume.add_argument("repo", help="owner/repo")

    sub.add_parser("stats", help="dashboard totals")
    sub.add_parser("repos", help="list accessible repositories")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = ReviewConfig.from_env()
    if args.analyzer:
        config.analyzer = args.analyzer
    if args.auto_merge:
        config.auto_merge = True

    try:
        with SQLiteStateStore(args.db) as store:
            if args.command == "stats":
                stats = store.dashboard_stats()
                print(f"Reviews completed: {stats.reviews_completed}")
                print(f"Issues resolved:   {stats.issues_resolved}")
                print(f"Open findings:     {stats.open_findings}")
                print(f"Time saved:        {stats.time_saved_hours:g}h")
                return 0

            if args.command == "review-branch" and args.scheduled and not config.daily_review:
                logger.info("Daily review disabled (DAILY_REVIEW=false); skipping")
                return 0

            bot = ReviewBot(GitHubClient(), make_analyzer(config), store, config)

            if args.command == "repos":
                for repo in bot.list_repositories():
                    visibility = "private" if repo.private else "public"
                    print(f"{repo.full_name} ({visibility}, {repo.open_issues_count} open issues)")
                return 0

            owner, name = split_repo(args.repo)
            if args.command == "review-pr":
                print_review(bot.review_pull_request(owner, name, args.number))
            elif args.command == "review-branch":
                print_review(bot.review_main_branch(owner, name))
            elif args.command == "fix":
                outcome = bot.fix_unresolved(owner, name)
                print_fix(outcome)
                return 0 if outcome.success else 1
            elif args.command == "resume":
                print_review(bot.resume_review(owner, name))
        return 0

    except ValueError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except ReviewBotError as e:
        logger.error("%s: %s", type(e).__name__, e.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
