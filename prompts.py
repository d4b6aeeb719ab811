"""Prompt templates for code analysis and fixing."""

# =============================================================================
# SHARED PREAMBLE - injected into every reviewer prompt
# =============================================================================

_SEVERITY_GUIDE = (
    "Severity definitions (use these exactly):\n"
    "- critical: bug, crash or security hole that must block the merge"
    " (injection, XSS, data loss, unhandled failure)\n"
    "- warning: real problem that should be fixed but does not block"
    " (loose equality, debug output, missing semicolon)\n"
    "- info: nit or stylistic preference\n"
)

_CATEGORY_GUIDE = (
    "When it applies, set \"category\" to one of: semicolon, debug-statement,"
    " strict-equality, error-handling, unused-variable, unsafe-dom-write,"
    " formatting, best-practice, security, performance. Otherwise use null.\n"
)

_SCOPED_CONTEXT = (
    "Lines are prefixed with their number (e.g. '  42| code'). "
    "Only the lines listed as CHANGED were modified in this pull request; "
    "the others are surrounding context.\n"
    "Report issues on CHANGED lines only and use the EXACT line number.\n"
)

_FULL_CONTEXT = (
    "Lines are prefixed with their number (e.g. '  42| code'). "
    "Use the EXACT line number in your findings.\n"
)

_CONFIDENCE = (
    "Only report issues you are CONFIDENT about. "
    "Do NOT speculate or report theoretical issues "
    "that require unlikely conditions.\n"
)

_FIX_QUALITY = (
    "When a one-line fix exists, set \"fixable\": true, copy the line verbatim "
    "into \"original_code\" and put the corrected line in \"suggested_code\".\n"
)

_OUTPUT_RULES = (
    "Respond with ONLY valid JSON. No markdown, no explanation, no extra text.\n"
)

_EMPTY_RESULT = (
    'If no issues found, return: {{"findings":[],"summary":"No issues found"}}\n'
)

_FORMAT = (
    "Required format:\n"
    '{{"findings":[{{"severity":"critical|warning|info",'
    '"category":"strict-equality","rule":"eqeqeq","line":1,'
    '"message":"issue","suggestion":"how to fix",'
    '"original_code":"if (a == b) {{","suggested_code":"if (a === b) {{",'
    '"fixable":true}}],"summary":"one line"}}\n'
)


# =============================================================================
# SCOPED REVIEW - pull request changed lines
# =============================================================================

SCOPED_REVIEW_PROMPT = (
    "You are an expert code reviewer. "
    "Review the changed lines of '{filename}' ({language}).\n"
    "\n"
    + _SCOPED_CONTEXT
    + "CHANGED lines: {changed_lines}\n"
    + "\n"
    + _SEVERITY_GUIDE
    + _CATEGORY_GUIDE
    + "\n"
    + _CONFIDENCE
    + _FIX_QUALITY
    + "\n"
    "```\n"
    "{code}\n"
    "```\n"
    "\n" + _OUTPUT_RULES + _EMPTY_RESULT + "\n" + _FORMAT
)


# =============================================================================
# FULL REVIEW - whole file on a branch snapshot
# =============================================================================

FULL_REVIEW_PROMPT = (
    "You are an expert code reviewer. "
    "Review '{filename}' ({language}) for bugs, security and best-practice issues.\n"
    "\n"
    + _FULL_CONTEXT
    + "\n"
    + _SEVERITY_GUIDE
    + _CATEGORY_GUIDE
    + "\n"
    + _CONFIDENCE
    + _FIX_QUALITY
    + "\n"
    "Do NOT flag:\n"
    "- Missing docs on obvious one-line functions\n"
    "- Standard boilerplate or framework patterns\n"
    "\n"
    "```\n"
    "{code}\n"
    "```\n"
    "\n" + _OUTPUT_RULES + _EMPTY_RESULT + "\n" + _FORMAT
)


# =============================================================================
# FIX - rewrite a file so the listed issues disappear
# =============================================================================

FIX_PROMPT = (
    "You are an expert software engineer. "
    "Fix ONLY the issues listed below in '{filename}'. "
    "Do not reformat, reorder or change anything else.\n"
    "\n"
    "Issues:\n"
    "{issues}\n"
    "\n"
    "File content:\n"
    "```\n"
    "{code}\n"
    "```\n"
    "\n" + _OUTPUT_RULES + "Required format:\n"
    '{{"content":"<the complete corrected file>"}}\n'
)
