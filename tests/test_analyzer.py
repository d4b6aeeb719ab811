"""Tests for the static rule engine, fix application and the Gemini analyzer."""

import httpx
import pytest
from conftest import make_finding
from google.api_core.exceptions import ServiceUnavailable
from google.genai import errors as genai_errors

import analyzer as analyzer_module
from analyzer import (
    GeminiAnalyzer,
    StaticAnalyzer,
    apply_suggested_fixes,
    chunk_code,
    make_analyzer,
)
from config import ReviewConfig
from errors import AuthError, ReviewBotError, UpstreamUnavailable

JS_SAMPLE = "\n".join(
    [
        "const total = 1",
        "if (total == 1) {",
        '  console.log("total");',
        "}",
    ]
)


@pytest.fixture
def static() -> StaticAnalyzer:
    return StaticAnalyzer()


class TestStaticAnalyzer:
    """Test the deterministic rules."""

    def test_js_rules(self, static: StaticAnalyzer) -> None:
        """Semicolon, equality and console rules fire on their lines."""
        findings = static.analyze_full(JS_SAMPLE, "src/app.js", "javascript")
        assert [(f.line, f.rule, f.severity) for f in findings] == [
            (1, "semi", "critical"),
            (2, "eqeqeq", "critical"),
            (3, "no-console", "warning"),
        ]
        assert all(f.file == "src/app.js" for f in findings)
        assert findings[1].category == "strict-equality"
        assert findings[1].suggested_code == "if (total === 1) {"

    def test_scoped_to_changed_lines(self, static: StaticAnalyzer) -> None:
        """Scoped analysis only reports the requested lines."""
        findings = static.analyze_scoped(JS_SAMPLE, "src/app.js", "javascript", [2])
        assert [f.rule for f in findings] == ["eqeqeq"]

    def test_js_rules_skip_other_languages(self, static: StaticAnalyzer) -> None:
        """JS-only rules do not run on Python files; eval is flagged everywhere."""
        findings = static.analyze_full("result = eval(expr)", "tool.py", "python")
        assert [(f.rule, f.severity, f.fixable) for f in findings] == [
            ("no-eval", "critical", False)
        ]

    def test_await_without_error_handling(self, static: StaticAnalyzer) -> None:
        content = "async function load() {\n  const data = await fetch(url);\n}"
        findings = static.analyze_full(content, "a.js", "javascript")
        assert [f.rule for f in findings] == ["require-await-error-handling"]
        assert "try {" in findings[0].suggested_code

    def test_await_inside_try_is_fine(self, static: StaticAnalyzer) -> None:
        content = (
            "async function load() {\n"
            "  try {\n"
            "    const data = await fetch(url);\n"
            "  } catch (error) {\n"
            "    handle(error);\n"
            "  }\n"
            "}"
        )
        findings = static.analyze_full(content, "a.js", "javascript")
        assert not [f for f in findings if f.rule == "require-await-error-handling"]

    def test_inner_html(self, static: StaticAnalyzer) -> None:
        findings = static.analyze_full("el.innerHTML = value;", "a.js", "javascript")
        assert [f.rule for f in findings] == ["no-inner-html"]
        assert findings[0].suggested_code == "el.textContent = value;"

    def test_long_line_is_info(self, static: StaticAnalyzer) -> None:
        """Line-length findings are informational only."""
        content = "const message = '" + "x" * 80 + "';"
        findings = static.analyze_full(content, "a.js", "javascript")
        assert [(f.rule, f.severity) for f in findings] == [("prettier/printWidth", "info")]

    def test_results_cached_by_content(self, static: StaticAnalyzer) -> None:
        """Re-analysing identical content yields identical findings."""
        first = static.analyze_full(JS_SAMPLE, "src/app.js", "javascript")
        second = static.analyze_full(JS_SAMPLE, "src/app.js", "javascript")
        assert first == second
        assert [f.key for f in first] == [f.key for f in second]

    def test_cache_is_bounded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The least recently used content is evicted once the cache is full."""
        static = StaticAnalyzer(cache_size=2)
        runs: list[str] = []
        run_rules = static._run_rules

        def counting(content: str, filename: str, language: str) -> list:
            runs.append(content)
            return run_rules(content, filename, language)

        monkeypatch.setattr(static, "_run_rules", counting)

        for content in ("a = 1", "b = 2", "a = 1", "c = 3", "a = 1", "b = 2"):
            static.analyze_full(content, "x.js", "javascript")

        assert len(static._cache) == 2
        assert runs == ["a = 1", "b = 2", "c = 3", "b = 2"]

    def test_fix_applies_suggestions(self, static: StaticAnalyzer) -> None:
        findings = static.analyze_full(JS_SAMPLE, "src/app.js", "javascript")
        fixed = static.fix(JS_SAMPLE, findings)
        assert fixed == "const total = 1;\nif (total === 1) {\n\n}"


class TestApplySuggestedFixes:
    """Test snippet-based fixing."""

    def test_skips_lines_that_moved(self) -> None:
        """A fix whose original line no longer matches is not applied."""
        finding = make_finding(
            line=1, original_code="a == b", suggested_code="a === b", fixable=True
        )
        assert apply_suggested_fixes("something else", [finding]) == "something else"

    def test_multi_line_suggestion_keeps_later_lines(self) -> None:
        """Bottom-up application keeps earlier line numbers valid."""
        content = "x = await a()\ny == 1"
        findings = [
            make_finding(
                line=1,
                original_code="x = await a()",
                suggested_code="try {\nx = await a()\n} catch (e) {}",
                fixable=True,
            ),
            make_finding(line=2, original_code="y == 1", suggested_code="y === 1", fixable=True),
        ]
        assert apply_suggested_fixes(content, findings) == (
            "try {\nx = await a()\n} catch (e) {}\ny === 1"
        )

    def test_unfixable_findings_ignored(self) -> None:
        finding = make_finding(line=1, original_code="a", suggested_code="b", fixable=False)
        assert apply_suggested_fixes("a", [finding]) == "a"


class TestGeminiAnalyzer:
    """Test the LLM analyzer with canned responses."""

    SIX_LINES = "\n".join(f"line {n}" for n in range(1, 7))

    def test_mock_scoped_snaps_to_changed_lines(self) -> None:
        """Findings near a changed line are moved onto it."""
        gemini = GeminiAnalyzer(use_mock=True)
        findings = gemini.analyze_scoped(self.SIX_LINES, "cart.js", "javascript", [3, 4])
        assert [(f.line, f.severity) for f in findings] == [
            (3, "critical"),
            (4, "warning"),
            (4, "info"),
        ]
        assert all(f.file == "cart.js" for f in findings)

    def test_mock_full_review(self) -> None:
        gemini = GeminiAnalyzer(use_mock=True)
        findings = gemini.analyze_full(self.SIX_LINES, "cart.js", "javascript")
        assert [f.line for f in findings] == [3, 4, 6]
        assert findings[0].rule == "eqeqeq"

    def test_no_changed_lines_makes_no_call(self) -> None:
        gemini = GeminiAnalyzer(use_mock=False)
        assert gemini.analyze_scoped("x", "a.js", "javascript", []) == []

    def test_unparseable_response_is_upstream_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(analyzer_module, "call_gemini", lambda prompt, model: "not json")
        gemini = GeminiAnalyzer(use_mock=False)
        with pytest.raises(UpstreamUnavailable):
            gemini.analyze_full("x = 1", "a.py", "python")

    def test_transient_error_is_upstream_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _down(prompt: str, model: str) -> str:
            raise ServiceUnavailable("backend down")

        monkeypatch.setattr(analyzer_module, "call_gemini", _down)
        gemini = GeminiAnalyzer(use_mock=False)
        with pytest.raises(UpstreamUnavailable):
            gemini.analyze_full("x = 1", "a.py", "python")

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("connection refused"),
            httpx.ReadTimeout("timed out"),
            genai_errors.APIError(499, {"error": {"code": 499, "message": "cancelled"}}),
        ],
    )
    def test_network_error_is_upstream_error(
        self, monkeypatch: pytest.MonkeyPatch, error: Exception
    ) -> None:
        """Transport failures surface as UpstreamUnavailable, not raw client errors."""

        def _fail(prompt: str, model: str) -> str:
            raise error

        monkeypatch.setattr(analyzer_module, "call_gemini", _fail)
        gemini = GeminiAnalyzer(use_mock=False)
        with pytest.raises(UpstreamUnavailable):
            gemini.analyze_scoped("x = 1", "a.py", "python", [1])

    @pytest.mark.parametrize(
        ("code", "expected"),
        [(403, AuthError), (429, UpstreamUnavailable), (400, ReviewBotError)],
    )
    def test_client_errors_are_mapped(
        self, monkeypatch: pytest.MonkeyPatch, code: int, expected: type[Exception]
    ) -> None:
        """Rejected keys are auth failures; rate limits are transient."""

        def _reject(prompt: str, model: str) -> str:
            raise genai_errors.ClientError(code, {"error": {"code": code, "message": "rejected"}})

        monkeypatch.setattr(analyzer_module, "call_gemini", _reject)
        gemini = GeminiAnalyzer(use_mock=False)
        with pytest.raises(expected):
            gemini.analyze_full("x = 1", "a.py", "python")

    def test_fix_without_snippets_asks_the_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        prompts: list[str] = []

        def _respond(prompt: str, model: str) -> str:
            prompts.append(prompt)
            return '{"content": "fixed content"}'

        monkeypatch.setattr(analyzer_module, "call_gemini", _respond)
        gemini = GeminiAnalyzer(use_mock=False)
        finding = make_finding(file="a.py", line=1, message="Division by zero")
        assert gemini.fix("x = 1 / 0", [finding]) == "fixed content"
        assert "Division by zero" in prompts[0]

    def test_fix_with_snippets_is_local(self) -> None:
        """Snippet fixes never reach the model (the autouse guard would fail)."""
        gemini = GeminiAnalyzer(use_mock=False)
        finding = make_finding(
            line=1, original_code="a == b", suggested_code="a === b", fixable=True
        )
        assert gemini.fix("a == b", [finding]) == "a === b"


class TestChunkCode:
    def test_small_code_is_one_chunk(self) -> None:
        assert chunk_code("   1| x") == ["   1| x"]

    def test_large_code_is_split_by_lines(self) -> None:
        code = "\n".join(f"{n:4}| x" for n in range(1, 451))
        chunks = chunk_code(code, max_lines=200)
        assert len(chunks) == 3
        assert chunks[1].startswith(" 201| ")


class TestMakeAnalyzer:
    def test_selects_backend(self) -> None:
        assert isinstance(make_analyzer(ReviewConfig(analyzer="static")), StaticAnalyzer)
        assert isinstance(make_analyzer(ReviewConfig(analyzer="gemini")), GeminiAnalyzer)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            make_analyzer(ReviewConfig(analyzer="magic"))
