# tests/test_reporter.py
"""
Tests for the diagnostic reporter and its output formats.
"""

import io
import json

import pytest

from wpsniff_shims.checkers import Diagnostic, DiagnosticSeverity, SourceLocation
from wpsniff_shims.reporter import FORMATS, Reporter, ReporterStats


def diag(severity=DiagnosticSeverity.ERROR, message="Unescaped parameter $x used in echo",
         extra="", file="plugin.php", line=4, column=6):
    return Diagnostic(
        error_id="WPSniff.Security.OutputEscaping.UnescapedOutputParameter",
        message=message,
        severity=severity,
        location=SourceLocation(file=file, line=line, column=column),
        checker_name="Security.OutputEscaping",
        message_args=("$x", "echo", ""),
        extra=extra,
    )


def run(fmt, diagnostics, **kwargs):
    out, err = io.StringIO(), io.StringIO()
    with Reporter(out, fmt=fmt, colour=False, tool_version="9.9", summary_stream=err, **kwargs) as rep:
        rep.extend(diagnostics)
    return out.getvalue(), err.getvalue(), rep


class TestStats:

    def test_summary_line(self):
        stats = ReporterStats()
        assert stats.summary_line() == "no diagnostics emitted"
        stats.record(DiagnosticSeverity.ERROR)
        stats.record(DiagnosticSeverity.WARNING)
        stats.record(DiagnosticSeverity.WARNING)
        assert stats.summary_line() == "1 error; 2 warnings (3 total)"
        assert stats.total == 3


class TestPlain:

    def test_one_line_per_diagnostic(self):
        trail = "$x assigned unsafely at line 2: $x = $_GET['x']"
        out, err, rep = run("plain", [diag(message="head\n" + trail, extra=trail)])
        assert out.splitlines() == [
            "plugin.php:4:6: error: head [WPSniff.Security.OutputEscaping.UnescapedOutputParameter]",
            "  note: " + trail,
        ]
        assert err == "  1 error (1 total)\n"
        assert rep.stats.error == 1

    def test_text_without_colour_is_plain(self):
        out, _, _ = run("text", [diag(severity=DiagnosticSeverity.WARNING)])
        assert out.startswith("plugin.php:4:6: warning: Unescaped parameter $x used in echo [")

    def test_empty_run(self):
        out, err, _ = run("plain", [])
        assert out == ""
        assert err == "  no diagnostics emitted\n"


class TestTerminal:

    def test_source_excerpt_and_notes(self, tmp_path):
        source = tmp_path / "plugin.php"
        source.write_text("<?php\n\n\n$a = 1; echo $x;\n", encoding="utf-8")
        out = io.StringIO()
        rep = Reporter(out, fmt="text", colour=True, tool_version="1", summary_stream=io.StringIO())
        rep.report(diag(file=str(source), extra="note one"))
        text = out.getvalue()
        assert "$a = 1; echo $x;" in text
        assert "^" in text
        assert "note one" in text
        assert str(source) in text


class TestDocuments:

    def test_json(self):
        out, _, _ = run("json", [diag(), diag(severity=DiagnosticSeverity.WARNING, line=9)])
        doc = json.loads(out)
        assert doc["tool"] == {"name": "wpsniff-shims", "version": "9.9"}
        assert doc["totals"] == {"errors": 1, "warnings": 1}
        assert [d["line"] for d in doc["diagnostics"]] == [4, 9]
        assert doc["diagnostics"][0]["checker"] == "Security.OutputEscaping"

    def test_sarif(self):
        out, _, _ = run("sarif", [diag(), diag(severity=DiagnosticSeverity.WARNING, column=0)])
        log = json.loads(out)
        assert log["version"] == "2.1.0"
        run0 = log["runs"][0]
        assert run0["tool"]["driver"]["name"] == "wpsniff-shims"
        assert [r["id"] for r in run0["tool"]["driver"]["rules"]] == [
            "WPSniff.Security.OutputEscaping.UnescapedOutputParameter",
        ]
        first, second = run0["results"]
        assert first["level"] == "error"
        assert second["level"] == "warning"
        assert first["locations"][0]["physicalLocation"]["region"] == {"startLine": 4, "startColumn": 6}
        assert "startColumn" not in second["locations"][0]["physicalLocation"]["region"]
        assert first["message"]["arguments"] == ["$x", "echo", ""]

    def test_html_escapes_content(self):
        out, _, _ = run("html", [diag(message="Unescaped parameter <b>$x</b> used in echo")])
        assert out.startswith("<!DOCTYPE html>")
        assert "&lt;b&gt;$x&lt;/b&gt;" in out
        assert "1 error (1 total)" in out

    def test_html_custom_template(self, tmp_path):
        template = tmp_path / "page.html"
        template.write_text("{{ diagnostics|length }} for {{ tool_name }}", encoding="utf-8")
        out, _, _ = run("html", [diag(), diag()], html_template=str(template))
        assert out == "2 for wpsniff-shims\n"


class TestReporter:

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="unknown report format"):
            Reporter(io.StringIO(), fmt="xml")

    def test_formats(self):
        assert FORMATS == ("text", "plain", "json", "sarif", "html")

    def test_finish_is_idempotent(self):
        out, err = io.StringIO(), io.StringIO()
        rep = Reporter(out, fmt="json", tool_version="1", summary_stream=err)
        rep.report(diag())
        rep.finish()
        stats = rep.finish()
        assert stats.error == 1
        assert out.getvalue().count('"diagnostics"') == 1
        assert err.getvalue().count("1 error") == 1

    def test_default_version(self):
        from wpsniff_shims import __version__
        out, _, _ = run("json", [])
        assert json.loads(out)["tool"]["version"] == "9.9"
        rep = Reporter(io.StringIO(), fmt="json", summary_stream=io.StringIO())
        assert rep.tool_version == __version__
