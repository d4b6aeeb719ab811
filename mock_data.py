"""Mock responses for testing without API calls."""

# Captured Gemini response for a small JS change
MOCK_RESPONSE = """```json
{
  "findings": [
    {
      "severity": "critical",
      "category": "strict-equality",
      "rule": "eqeqeq",
      "line": 3,
      "message": "Loose equality (==) coerces types; `count == '0'` is true for the number 0.",
      "suggestion": "Use strict equality (===).",
      "original_code": "  if (count == '0') {",
      "suggested_code": "  if (count === '0') {",
      "fixable": true
    },
    {
      "severity": "warning",
      "category": "debug-statement",
      "rule": "no-console",
      "line": 4,
      "message": "console.log left in production code.",
      "suggestion": "Remove the debug statement or use a logger.",
      "original_code": "    console.log('empty cart');",
      "suggested_code": "",
      "fixable": true
    },
    {
      "severity": "LOW",
      "category": "formatting",
      "line": 6,
      "message": "Prefer a trailing newline at end of file.",
      "fixable": false
    }
  ],
  "summary": "Loose equality in the empty-cart check and a leftover debug log."
}
```"""
