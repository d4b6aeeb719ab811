"""Markdown for review bodies, tracking issues, commit messages and resolutions."""

from models import Finding, FixDetail
from policy import explain_fix, group_by_file

TRACKING_MARKER = "<!-- reviewai:tracking-issue -->"
TRACKING_TITLE_PREFIX = "[ReviewAI] Daily Review:"
FOOTER = "*Generated by ReviewAI 🤖*"


def _severity_table(findings: list[Finding]) -> list[str]:
    critical = sum(1 for f in findings if f.severity == "critical")
    warning = sum(1 for f in findings if f.severity == "warning")
    return [
        "| Severity | Count |",
        "|----------|-------|",
        f"| 🔴 Critical | {critical} |",
        f"| 🟡 Warning | {warning} |",
    ]


def _suggested_diff(finding: Finding, indent: str = "  ") -> list[str]:
    if not (finding.original_code and finding.suggested_code):
        return []
    lines = [f"{indent}```diff"]
    lines.extend(f"{indent}- {line.strip()}" for line in finding.original_code.strip().split("\n"))
    lines.extend(f"{indent}+ {line.strip()}" for line in finding.suggested_code.strip().split("\n"))
    lines.append(f"{indent}```")
    return lines


def _file_section(filename: str, findings: list[Finding]) -> list[str]:
    lines = [f"### 📁 {filename}", ""]

    critical = [f for f in findings if f.severity == "critical"]
    warnings = [f for f in findings if f.severity == "warning"]

    if critical:
        lines.append("#### 🔴 Critical Issues")
        for f in critical:
            lines.append(f"- **Line {f.line}**: {f.message}")
            if f.suggestion:
                lines.append(f"  💡 **Fix**: {f.suggestion}")
            lines.extend(_suggested_diff(f))
        lines.append("")

    if warnings:
        lines.append("#### 🟡 Warnings")
        for f in warnings:
            lines.append(f"- **Line {f.line}**: {f.message}")
            if f.suggestion:
                lines.append(f"  💡 **Suggestion**: {f.suggestion}")
            lines.extend(_suggested_diff(f))
        lines.append("")

    return lines


def format_review_body(findings: list[Finding]) -> str:
    """Format the overall PR review body."""
    lines: list[str] = ["## 🤖 ReviewAI Review", ""]

    if not findings:
        lines.append("✅ **No issues found.** The changed lines look clean.")
        lines.append("\n---")
        lines.append(FOOTER)
        return "\n".join(lines)

    lines.append(f"Found **{len(findings)} issue(s)** in the changed lines:\n")
    lines.extend(_severity_table(findings))
    lines.append("")

    if any(f.severity == "critical" for f in findings):
        lines.append("⚠️ **Critical issues must be addressed before merging.**\n")

    for filename, file_findings in group_by_file(findings).items():
        lines.extend(_file_section(filename, file_findings))

    lines.append("---")
    lines.append(FOOTER)
    return "\n".join(lines)


def tracking_issue_title(findings: list[Finding]) -> str:
    return f"{TRACKING_TITLE_PREFIX} {len(findings)} issues found in main branch"


def format_tracking_issue(findings: list[Finding]) -> str:
    """Body of the tracking issue opened by a branch review."""
    lines: list[str] = [
        TRACKING_MARKER,
        "## 🔍 Main Branch Review",
        "",
        f"Found **{len(findings)} issue(s)** that need attention:\n",
    ]
    lines.extend(_severity_table(findings))
    lines.append("\n### Issues by File\n")

    for filename, file_findings in group_by_file(findings).items():
        lines.append(f"#### {filename}\n")
        for f in file_findings:
            emoji = "🔴" if f.severity == "critical" else "🟡"
            lines.append(f"{emoji} **Line {f.line}**: {f.message}")
            if f.suggestion:
                lines.append(f"   💡 **Fix**: {f.suggestion}")
            lines.extend(_suggested_diff(f, indent="   "))
            lines.append("")

    lines.append("---")
    lines.append(FOOTER)
    return "\n".join(lines)


def is_tracking_issue(title: str, body: str | None) -> bool:
    return title.startswith(TRACKING_TITLE_PREFIX) or TRACKING_MARKER in (body or "")


def format_commit_message(filename: str, findings: list[Finding]) -> str:
    """Commit message stating what each fix changed and why it matters."""
    lines = [f"ReviewAI: fix {len(findings)} issue(s) in {filename}", ""]
    for f in findings:
        explanation = explain_fix(f)
        lines.append(f"- Line {f.line}: {f.message}")
        lines.append(f"  What: {explanation.what}")
        lines.append(f"  Why: {explanation.why}")
    lines.append("")
    lines.append("Auto-fixed by ReviewAI")
    return "\n".join(lines)


def format_resolution_comment(repo: str, details: list[FixDetail]) -> str:
    """Comment posted on a tracking issue before it is closed."""
    files = {d.file for d in details}
    lines = [
        "## 🤖 ReviewAI Auto-Resolution",
        "",
        "The following fixes were committed:",
        "",
    ]
    for d in details:
        lines.append(f"- ✅ `{d.file}:{d.line}`: {d.issue}")
        lines.append(f"  - {d.fix}: {d.rationale}")
    lines.append("")
    lines.append(f"**{len(details)}** issue(s) fixed across **{len(files)}** file(s).")
    lines.append(f"See https://github.com/{repo}/commits for the changes.")
    lines.append("\n---")
    lines.append(FOOTER)
    return "\n".join(lines)
