# tests/test_checkers.py
"""
Tests for the checker framework: diagnostics, suppressions, the registry
and the runner.
"""

import json

import pytest

from wpsniff_shims.checkers import (
    CHECKER_EXCEPTION,
    TOKENIZER_EXCEPTION,
    CheckerRegistry,
    CheckerRunner,
    Diagnostic,
    DiagnosticSeverity,
    SourceLocation,
    SuppressionManager,
    TokenChecker,
    default_registry,
)
from wpsniff_shims.pattern_checkers import LocalhostChecker, TodoCommentChecker
from wpsniff_shims.tokens import TokenKind

LOCALHOST = "WPSniff.CodeAnalysis.Localhost.Found"


class VariableCounter(TokenChecker):
    name = "Test.Variables"
    error_ids = frozenset({"Seen"})

    def register(self):
        return frozenset({TokenKind.VARIABLE})

    def process_token(self, ctx, pos):
        self._emit(ctx, "Seen", "variable %s", pos, [ctx.stream[pos].text])
        self._emit(ctx, "Seen", "duplicate", pos)
        return None


class Boom(TokenChecker):
    name = "Test.Boom"
    error_ids = frozenset({"Never"})

    def register(self):
        return frozenset({TokenKind.VARIABLE})

    def process_token(self, ctx, pos):
        raise ValueError("kaboom")


def make_diag(code=LOCALHOST, file="a.php", line=3, severity=DiagnosticSeverity.ERROR):
    return Diagnostic(
        error_id=code,
        message="msg",
        severity=severity,
        location=SourceLocation(file=file, line=line, column=5),
    )


class TestDiagnostic:

    def test_gcc_format(self):
        assert make_diag().to_gcc_format() == f"a.php:3:5: error: msg [{LOCALHOST}]"

    def test_location_without_column(self):
        assert str(SourceLocation("a.php", 7)) == "a.php:7"

    def test_to_dict(self):
        d = make_diag(severity=DiagnosticSeverity.WARNING).to_dict()
        assert d["severity"] == "warning"
        assert d["code"] == LOCALHOST
        assert "extra" not in d
        assert json.loads(make_diag().to_json_str())["line"] == 3

    def test_full_code(self):
        assert LocalhostChecker.code("Found") == LOCALHOST
        assert LocalhostChecker.codes() == [LOCALHOST]


class TestEmit:

    def test_one_diagnostic_per_code_and_token(self, run_checker):
        diags = run_checker(VariableCounter, "$a = $b;")
        assert [d.message for d in diags] == ["variable $a", "variable $b"]
        assert diags[0].message_args == ("$a",)
        assert diags[0].checker_name == "Test.Variables"
        assert diags[0].severity is DiagnosticSeverity.WARNING
        assert diags[0].location.line == 2
        assert diags[0].location.column == 1


class TestSuppressionManager:

    def test_global_pattern(self):
        sm = SuppressionManager()
        sm.add_global_suppression("WPSniff.CodeAnalysis.*")
        assert sm.is_suppressed(make_diag())
        assert not sm.is_suppressed(make_diag(code="WPSniff.PHP.Heredoc.HeredocNotAllowed"))

    def test_file_pattern(self):
        sm = SuppressionManager()
        sm.add_file_suppression(LOCALHOST, "vendor/*")
        assert sm.is_suppressed(make_diag(file="vendor/lib.php"))
        assert not sm.is_suppressed(make_diag(file="src/lib.php"))

    def test_filter(self):
        sm = SuppressionManager()
        sm.add_global_suppression("*")
        assert sm.filter_diagnostics([make_diag(), make_diag()]) == []

    def test_for_stream_shares_rules(self, make_stream):
        sm = SuppressionManager()
        sm.add_global_suppression("X.*")
        stream = make_stream("$a = 1; // phpcs:ignore\n", path="a.php")
        child = sm.for_stream(stream)
        assert child.is_suppressed(make_diag(code="X.Y", line=99))
        assert child.is_suppressed(make_diag(line=2))
        assert not sm.is_suppressed(make_diag(line=2))


class TestInlineSuppressions:

    @pytest.mark.parametrize("src", [
        "$u = 'http://localhost/'; // phpcs:ignore WPSniff.CodeAnalysis.Localhost",
        "$u = 'http://localhost/'; // phpcs:ignore",
        "// phpcs:ignore WPSniff.CodeAnalysis.Localhost.Found -- local only\n$u = 'http://localhost/';",
        "// phpcs:disable\n$u = 'http://localhost/';\n// phpcs:enable",
        "$u = 'http://localhost/'; // @codingStandardsIgnoreLine",
    ])
    def test_suppressed(self, run_checker, src):
        assert run_checker(LocalhostChecker, src) == []

    @pytest.mark.parametrize("src", [
        "$u = 'http://localhost/'; // phpcs:ignore WPSniff.PHP",
        "// phpcs:disable\n// phpcs:enable\n$u = 'http://localhost/';",
        "$u = 'http://localhost/'; // WPCS: XSS ok.",
    ])
    def test_not_suppressed(self, run_checker, src):
        assert len(run_checker(LocalhostChecker, src)) == 1

    def test_disable_specific_code(self, run_checker):
        src = (
            "// phpcs:disable WPSniff.CodeAnalysis.Localhost\n"
            "$u = 'http://localhost/'; // TODO: move\n"
            "// phpcs:enable WPSniff.CodeAnalysis.Localhost\n"
        )
        diags = run_checker("*", src)
        assert [d.error_id for d in diags] == ["WPSniff.Commenting.TodoComment.Found"]


class TestRegistry:

    def test_register_and_lookup(self):
        registry = CheckerRegistry()
        registry.register(VariableCounter)
        registry.register(Boom)
        assert registry.names == ["Test.Boom", "Test.Variables"]
        assert "Test.Boom" in registry
        assert len(registry) == 2
        assert registry.get_by_name("Test.Variables") is VariableCounter
        assert registry.get_by_name("Nope") is None

    def test_disable_enable_patterns(self):
        registry = CheckerRegistry()
        registry.register(VariableCounter)
        registry.register(Boom)
        registry.disable("Test.*")
        assert registry.get_enabled() == []
        registry.enable("Test.Boom")
        assert registry.get_enabled() == [Boom]
        assert len(registry.get_all()) == 2

    def test_copy_is_independent(self):
        registry = CheckerRegistry()
        registry.register(Boom)
        clone = registry.copy()
        clone.unregister("Test.Boom")
        assert "Test.Boom" in registry
        assert "Test.Boom" not in clone

    def test_filter_by_error_id(self):
        registry = default_registry()
        assert registry.filter_by_error_id("UnsafeVerifyNonceElse")[0].name == "Security.VerifyNonce"
        assert registry.filter_by_error_id(LOCALHOST) == [LocalhostChecker]

    def test_default_registry_has_builtins(self):
        names = default_registry().names
        for name in (
            "Security.DirectDB", "Security.OutputEscaping", "Security.VerifyNonce",
            "Security.SettingSanitization", "Security.UnfilteredUploads",
            "Commenting.TodoComment", "Commenting.AllCapsComment",
            "CodeAnalysis.Localhost", "CodeAnalysis.ShortURL", "PHP.Heredoc",
            "PHP.DiscouragedFunctions", "PHP.RequiredFunctionParameters",
            "CodeAnalysis.LibrariesCore", "Language.I18nTextDomain",
            "Language.I18nFunctionParameters",
        ):
            assert name in names


class TestRunner:

    def test_results_aggregate(self):
        runner = CheckerRunner()
        results = runner.run_source(
            "<?php\n// TODO: fix\n$u = 'http://localhost/';\n",
            "plugin.php",
            checkers=["Commenting.*", "CodeAnalysis.Localhost"],
        )
        assert results.files == ["plugin.php"]
        assert results.error_count == 1
        assert results.warning_count == 1
        assert results.total_count == 2
        assert results.by_code(LOCALHOST)[0].location.line == 3
        assert "CodeAnalysis.Localhost" in results.checker_names
        assert "Commenting.AllCapsComment" in results.checker_names
        assert "Security.DirectDB" not in results.checker_names
        assert results.summary().startswith("Checked 1 file(s): 2 diagnostics (1 errors, 1 warnings)")

    def test_results_extend(self):
        runner = CheckerRunner()
        src = "<?php $u = 'http://localhost/';"
        results = runner.run_source(src, "a.php", checkers=["CodeAnalysis.Localhost"])
        results.extend(runner.run_source(src, "b.php", checkers=["CodeAnalysis.Localhost"]))
        assert results.files == ["a.php", "b.php"]
        assert results.checker_names == ["CodeAnalysis.Localhost"]
        assert len(results.diagnostics_by_checker["CodeAnalysis.Localhost"]) == 2
        assert [d.location.file for d in results.by_code(LOCALHOST)] == ["a.php", "b.php"]
        for gone in ("by_severity", "by_file", "to_json_lines", "to_gcc_format"):
            assert not hasattr(results, gone)

    def test_tokenizer_failure(self):
        results = CheckerRunner().run_source("<?php\n/* never closed", "bad.php")
        assert len(results.diagnostics) == 1
        d = results.diagnostics[0]
        assert d.error_id == TOKENIZER_EXCEPTION
        assert d.checker_name == "Internal"
        assert d.is_error
        assert d.location.line == 2
        assert "Unterminated comment" in d.message

    def test_crashing_checker_is_isolated(self):
        registry = CheckerRegistry()
        registry.register(Boom)
        registry.register(VariableCounter)
        results = CheckerRunner(registry=registry).run_source("<?php $a;", "x.php")
        crash = results.by_code(CHECKER_EXCEPTION)
        assert len(crash) == 1
        assert crash[0].message == "x.php: checker 'Test.Boom' failed: kaboom"
        assert len(results.diagnostics_by_checker["Test.Variables"]) == 1

    def test_global_suppressions_apply(self):
        sm = SuppressionManager()
        sm.add_global_suppression("WPSniff.CodeAnalysis.*")
        runner = CheckerRunner(suppressions=sm)
        results = runner.run_source("<?php $u = 'http://localhost/';", checkers=["CodeAnalysis.*"])
        assert results.diagnostics == []

    def test_fresh_checker_per_file(self):
        runner = CheckerRunner()
        src = "<?php\n$x = absint( $_GET['x'] );\n"
        runner.run_source(src, "one.php", checkers=["Security.DirectDB"])
        results = runner.run_source(
            '<?php\n$wpdb->query( "SELECT $x" );\n', "two.php", checkers=["Security.DirectDB"],
        )
        assert results.total_count == 1

    def test_run_paths(self, php_tree):
        root = php_tree({
            "plugin.php": "<?php $u = 'http://localhost/';",
            "inc/helpers.inc": "<?php $u = 'http://localhost/';",
            "vendor/lib.php": "<?php $u = 'http://localhost/';",
            "readme.txt": "http://localhost/",
        })
        runner = CheckerRunner(exclude_paths=["*/vendor/*"])
        results = runner.run_paths([str(root)], checkers=["CodeAnalysis.Localhost"])
        files = sorted(p.replace(str(root), "").replace("\\", "/") for p in results.files)
        assert files == ["/inc/helpers.inc", "/plugin.php"]
        assert results.error_count == 2

    def test_extensions(self, php_tree):
        root = php_tree({"a.php": "<?php", "b.module": "<?php"})
        runner = CheckerRunner(extensions=["module"])
        assert [p.endswith("b.module") for p in runner.iter_files([str(root)])] == [True]

    def test_excluded_file_argument(self):
        runner = CheckerRunner(exclude_paths=["*.min.php"])
        assert runner.is_excluded("assets/app.min.php")
        assert list(runner.iter_files(["assets/app.min.php"])) == []

    def test_unreadable_file(self, tmp_path):
        results = CheckerRunner().run_file(str(tmp_path / "missing.php"))
        assert [d.error_id for d in results.diagnostics] == [TOKENIZER_EXCEPTION]
        assert results.diagnostics[0].message.startswith("cannot read file:")
