"""
wpsniff_shims/reporter.py
═════════════════════════

Diagnostic reporter.

Output formats
──────────────
  • text  : colourful rendering with a source excerpt and caret (default)
  • plain : one ``file:line:col: severity: message [code]`` line each
  • json  : one JSON document with every diagnostic and the counts
  • sarif : SARIF 2.1.0
  • html  : standalone page rendered with Jinja2

``text`` and ``plain`` write as diagnostics arrive; the document formats
are written once, by :meth:`Reporter.finish`.  Colour is disabled when
the stream is not a terminal or ``NO_COLOR`` is set.

Usage
─────
    from wpsniff_shims.reporter import Reporter

    with Reporter(sys.stdout, fmt="sarif") as rep:
        rep.extend(results.diagnostics)

License: MIT
"""

from __future__ import annotations

import json
import os
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, TextIO, Union

import jinja2
from termcolor import colored

from wpsniff_shims.checkers import Diagnostic, DiagnosticSeverity

FORMATS = ("text", "plain", "json", "sarif", "html")

TOOL_NAME = "wpsniff-shims"

_SEVERITY_COLORS = {
    DiagnosticSeverity.ERROR: "red",
    DiagnosticSeverity.WARNING: "yellow",
}

_SARIF_LEVELS = {
    DiagnosticSeverity.ERROR: "error",
    DiagnosticSeverity.WARNING: "warning",
}


@dataclass
class ReporterStats:
    """Aggregate counts per severity."""
    error: int = 0
    warning: int = 0

    def record(self, severity: DiagnosticSeverity) -> None:
        attr = severity.value
        setattr(self, attr, getattr(self, attr) + 1)

    @property
    def total(self) -> int:
        return self.error + self.warning

    def summary_line(self) -> str:
        parts: List[str] = []
        if self.error:
            parts.append(f"{self.error} error{'s' if self.error != 1 else ''}")
        if self.warning:
            parts.append(f"{self.warning} warning{'s' if self.warning != 1 else ''}")
        if not parts:
            return "no diagnostics emitted"
        return "; ".join(parts) + f" ({self.total} total)"


# ═════════════════════════════════════════════════════════════════════════
#  TERMINAL RENDERER
# ═════════════════════════════════════════════════════════════════════════

class _TerminalRenderer:
    """Render diagnostics to a terminal with colours and a source excerpt."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._sources: Dict[str, List[str]] = {}

    def render(self, diag: Diagnostic) -> None:
        color = _SEVERITY_COLORS[diag.severity]
        lines: List[str] = []

        # ── header: severity[code]: message ──────────────────────────
        head, _, _ = diag.message.partition("\n")
        sev_str = colored(f"{diag.severity.value}[{diag.error_id}]", color, attrs=["bold"])
        lines.append(f"{sev_str}: {colored(head, attrs=['bold'])}")

        loc = diag.location
        arrow = colored("-->", "blue", attrs=["bold"])
        lines.append(f"  {arrow} {loc}")

        src = self._source_line(loc.file, loc.line)
        if src is not None:
            gutter_w = len(str(loc.line)) + 1
            pipe = colored("|", "blue", attrs=["bold"])
            lines.append(f" {colored(str(loc.line).rjust(gutter_w), 'blue', attrs=['bold'])} {pipe} {src}")
            pad = " " * (loc.column - 1) if loc.column > 0 else ""
            lines.append(f" {' ' * gutter_w} {pipe} {pad}{colored('^', color, attrs=['bold'])}")

        # ── unwind trail ─────────────────────────────────────────────
        for note in diag.extra.splitlines():
            prefix = colored("note", "cyan", attrs=["bold"])
            lines.append(f"  = {prefix}: {note}")

        lines.append("")
        self._stream.write("\n".join(lines) + "\n")
        self._stream.flush()

    def _source_line(self, filepath: str, line: int) -> Optional[str]:
        """The source text of ``line``, or ``None`` if unreadable."""
        if not filepath or line <= 0:
            return None
        if filepath not in self._sources:
            try:
                text = Path(filepath).read_text(encoding="utf-8", errors="replace")
            except OSError:
                text = ""
            self._sources[filepath] = text.splitlines()
        src = self._sources[filepath]
        return src[line - 1].expandtabs(4) if line <= len(src) else None


# ═════════════════════════════════════════════════════════════════════════
#  PLAIN RENDERER
# ═════════════════════════════════════════════════════════════════════════

class _PlainRenderer:
    """Non-coloured renderer: one line per diagnostic, trail indented below."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def render(self, diag: Diagnostic) -> None:
        head, _, _ = diag.message.partition("\n")
        self._stream.write(
            f"{diag.location}: {diag.severity.value}: {head} [{diag.error_id}]\n"
        )
        for note in diag.extra.splitlines():
            self._stream.write(f"  note: {note}\n")
        self._stream.flush()


# ═════════════════════════════════════════════════════════════════════════
#  DOCUMENT BUILDERS
# ═════════════════════════════════════════════════════════════════════════

class _JsonBuilder:
    def __init__(self) -> None:
        self._items: List[Dict[str, Any]] = []

    def add(self, diag: Diagnostic) -> None:
        self._items.append(diag.to_dict())

    def render(self, stats: ReporterStats, tool_name: str, version: str) -> str:
        return json.dumps(
            {
                "tool": {"name": tool_name, "version": version},
                "totals": {"errors": stats.error, "warnings": stats.warning},
                "diagnostics": self._items,
            },
            indent=2,
        )


class _SarifBuilder:
    """Accumulates diagnostics and renders a SARIF 2.1.0 log."""

    SARIF_VERSION = "2.1.0"
    SARIF_SCHEMA = (
        "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/"
        "Schemata/sarif-schema-2.1.0.json"
    )

    def __init__(self) -> None:
        self._results: List[Dict[str, Any]] = []
        self._rules: Dict[str, Dict[str, Any]] = {}  # code → rule obj

    def add(self, diag: Diagnostic) -> None:
        if diag.error_id not in self._rules:
            self._rules[diag.error_id] = {
                "id": diag.error_id,
                "name": diag.error_id.rsplit(".", 1)[-1],
                "properties": {"checker": diag.checker_name},
            }

        loc = diag.location
        region: Dict[str, Any] = {"startLine": max(loc.line, 1)}
        if loc.column:
            region["startColumn"] = loc.column
        result: Dict[str, Any] = {
            "ruleId": diag.error_id,
            "level": _SARIF_LEVELS[diag.severity],
            "message": {"text": diag.message},
            "locations": [{
                "physicalLocation": {
                    "artifactLocation": {"uri": Path(loc.file).as_posix() if loc.file else ""},
                    "region": region,
                },
            }],
        }
        if diag.message_args:
            result["message"]["arguments"] = list(diag.message_args)
        self._results.append(result)

    def render(self, stats: ReporterStats, tool_name: str, version: str) -> str:
        sarif: Dict[str, Any] = {
            "$schema": self.SARIF_SCHEMA,
            "version": self.SARIF_VERSION,
            "runs": [
                {
                    "tool": {
                        "driver": {
                            "name": tool_name,
                            "version": version,
                            "rules": list(self._rules.values()),
                        }
                    },
                    "results": self._results,
                }
            ],
        }
        return json.dumps(sarif, indent=2)


class _HtmlBuilder:
    """Accumulates diagnostics and renders an HTML page via Jinja2."""

    def __init__(self, template_path: Optional[str] = None) -> None:
        self._diagnostics: List[Dict[str, Any]] = []
        self._template_path = template_path

    def add(self, diag: Diagnostic) -> None:
        head, _, _ = diag.message.partition("\n")
        entry = diag.to_dict()
        entry["message"] = head
        entry["notes"] = diag.extra.splitlines()
        self._diagnostics.append(entry)

    def render(self, stats: ReporterStats, tool_name: str, version: str) -> str:
        env = jinja2.Environment(autoescape=True)
        tmpl = env.from_string(self._load_template())
        return tmpl.render(
            diagnostics=self._diagnostics,
            stats=stats,
            tool_name=tool_name,
            version=version,
        )

    def _load_template(self) -> str:
        """Explicit path, then ``$WPSNIFF_HTML_TEMPLATE``, then the built-in page."""
        if self._template_path:
            return Path(self._template_path).read_text(encoding="utf-8")
        env_tmpl = os.environ.get("WPSNIFF_HTML_TEMPLATE", "")
        if env_tmpl and Path(env_tmpl).is_file():
            return Path(env_tmpl).read_text(encoding="utf-8")
        return _DEFAULT_HTML_TEMPLATE


# ═════════════════════════════════════════════════════════════════════════
#  REPORTER
# ═════════════════════════════════════════════════════════════════════════

_Builder = Union[_JsonBuilder, _SarifBuilder, _HtmlBuilder]


def _want_colour(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class Reporter:
    """
    Central diagnostic sink.

    Use as a context manager::

        with Reporter(sys.stdout) as rep:
            rep.extend(results.diagnostics)
        # finish() is called automatically

    Or manually::

        rep = Reporter(sys.stdout, fmt="json")
        rep.report(diag)
        stats = rep.finish()
    """

    def __init__(
        self,
        stream: TextIO = sys.stdout,
        fmt: str = "text",
        colour: Optional[bool] = None,
        tool_name: str = TOOL_NAME,
        tool_version: str = "",
        summary_stream: Optional[TextIO] = None,
        html_template: Optional[str] = None,
    ) -> None:
        if fmt not in FORMATS:
            raise ValueError(f"unknown report format '{fmt}' (expected one of {', '.join(FORMATS)})")
        if not tool_version:
            from wpsniff_shims import __version__
            tool_version = __version__
        self.fmt = fmt
        self.tool_name = tool_name
        self.tool_version = tool_version
        self.stats = ReporterStats()
        self._stream = stream
        self._summary_stream = summary_stream if summary_stream is not None else sys.stderr
        self._finished = False

        self._renderer: Optional[Union[_TerminalRenderer, _PlainRenderer]] = None
        self._builder: Optional[_Builder] = None
        if fmt == "text":
            use_colour = colour if colour is not None else _want_colour(stream)
            self._colour = use_colour
            self._renderer = _TerminalRenderer(stream) if use_colour else _PlainRenderer(stream)
        else:
            self._colour = False
            if fmt == "plain":
                self._renderer = _PlainRenderer(stream)
            elif fmt == "json":
                self._builder = _JsonBuilder()
            elif fmt == "sarif":
                self._builder = _SarifBuilder()
            else:
                self._builder = _HtmlBuilder(html_template)

    # ── context manager ──────────────────────────────────────────────

    def __enter__(self) -> "Reporter":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            self.finish()

    # ── collection ───────────────────────────────────────────────────

    def report(self, diag: Diagnostic) -> None:
        self.stats.record(diag.severity)
        if self._renderer is not None:
            self._renderer.render(diag)
        if self._builder is not None:
            self._builder.add(diag)

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        for diag in diagnostics:
            self.report(diag)

    # ── finalisation ─────────────────────────────────────────────────

    def finish(self) -> ReporterStats:
        """
        Write the document (for document formats) and the summary line.

        Calling it twice is harmless.
        """
        if self._finished:
            return self.stats
        self._finished = True

        if self._builder is not None:
            self._stream.write(self._builder.render(self.stats, self.tool_name, self.tool_version))
            self._stream.write("\n")
            self._stream.flush()

        summary = self.stats.summary_line()
        if self._colour:
            if self.stats.error:
                color = "red"
            elif self.stats.total:
                color = "yellow"
            else:
                color = "green"
            self._summary_stream.write(colored(f"  ╰─ {summary}", color, attrs=["bold"]) + "\n")
        else:
            self._summary_stream.write(f"  {summary}\n")
        return self.stats


# ═════════════════════════════════════════════════════════════════════════
#  DEFAULT HTML TEMPLATE
# ═════════════════════════════════════════════════════════════════════════

_DEFAULT_HTML_TEMPLATE = textwrap.dedent("""\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{{ tool_name }} report</title>
  <style>
    :root { --bg: #1e1e2e; --fg: #cdd6f4; --surface: #313244;
            --red: #f38ba8; --yellow: #f9e2af; --cyan: #89dceb;
            --blue: #89b4fa; --border: #45475a; }
    * { box-sizing: border-box; margin: 0; padding: 0; }
    body { font-family: 'Fira Code', 'Cascadia Code', monospace;
           background: var(--bg); color: var(--fg); padding: 2rem; }
    h1 { margin-bottom: 1rem; }
    .card { background: var(--surface); border: 1px solid var(--border);
            border-radius: 8px; padding: 1rem; margin-bottom: 1rem; }
    .sev-error   { border-left: 4px solid var(--red); }
    .sev-warning { border-left: 4px solid var(--yellow); }
    .badge { display: inline-block; padding: 2px 8px; border-radius: 4px;
             font-size: 0.85em; font-weight: bold; color: var(--bg); }
    .badge-error   { background: var(--red); }
    .badge-warning { background: var(--yellow); }
    .loc  { color: var(--blue); font-size: 0.9em; }
    .msg  { margin-top: 0.4rem; }
    .note { color: var(--cyan); margin-top: 0.3rem; font-size: 0.9em; }
    .summary { margin-top: 2rem; padding: 1rem; background: var(--surface);
               border-radius: 8px; text-align: center; font-size: 1.1em; }
  </style>
</head>
<body>
  <h1>{{ tool_name }} {{ version }}</h1>
  {% for d in diagnostics %}
  <div class="card sev-{{ d.severity }}">
    <span class="badge badge-{{ d.severity }}">{{ d.severity }}</span>
    <code>[{{ d.code }}]</code>
    <span class="loc">{{ d.file }}:{{ d.line }}{% if d.column %}:{{ d.column }}{% endif %}</span>
    <div class="msg">{{ d.message }}</div>
    {% for n in d.notes %}
      <div class="note">note: {{ n }}</div>
    {% endfor %}
  </div>
  {% endfor %}
  <div class="summary">{{ stats.summary_line() }}</div>
</body>
</html>
""")


__all__ = ["Reporter", "ReporterStats", "FORMATS", "TOOL_NAME"]
