"""
wpsniff_shims/checkers.py
═════════════════════════

Checker framework: diagnostics, suppressions, the ``Checker`` base
class, the registry and the per-file runner.

Architecture
────────────

  ┌─────────────────────────────────────────────────────────┐
  │                   CheckerRunner                         │
  │                                                         │
  │   path ──► lexer.tokenize_file ──► TokenStream          │
  │                                        │                │
  │  ┌──────────────┐  ┌──────────────┐  ┌─▼────────────┐   │
  │  │ DirectDB     │  │ VerifyNonce  │  │ TodoComment  │   │
  │  │  Checker     │  │  Checker     │  │  Checker ... │   │
  │  └──────┬───────┘  └──────┬───────┘  └──────┬───────┘   │
  │         │   fresh instances per file        │           │
  │  ┌──────▼───────────────────────────────────▼────────┐  │
  │  │           SuppressionManager                      │  │
  │  │  phpcs:ignore │ phpcs:disable │ exclude_codes     │  │
  │  └──────────────────────────┬────────────────────────┘  │
  │                             │                           │
  │  ┌──────────────────────────▼────────────────────────┐  │
  │  │        CheckerRunResults ──► reporter             │  │
  │  └───────────────────────────────────────────────────┘  │
  └─────────────────────────────────────────────────────────┘

Each Checker follows a four-phase lifecycle:

  1. **configure()**        — read properties, build per-file helpers
  2. **collect_evidence()** — walk the token stream
  3. **diagnose()**         — turn collected evidence into diagnostics
  4. **report()**           — return diagnostics, filtered by suppressions

Token-driven checkers derive from :class:`TokenChecker`, which walks the
stream once and hands every token of a registered kind to
``process_token``.

License: MIT
"""

from __future__ import annotations

import fnmatch
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
)

from wpsniff_shims.errors import CheckerError, TokenizerError
from wpsniff_shims.tokens import ALL_CODES, TokenKind, TokenStream, code_matches

logger = logging.getLogger(__name__)

RULE_PREFIX = "WPSniff"
TOKENIZER_EXCEPTION = "Internal.Tokenizer.Exception"
CHECKER_EXCEPTION = "Internal.Checker.Exception"

DEFAULT_EXTENSIONS: Tuple[str, ...] = (".php", ".inc")


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — DIAGNOSTIC MODEL
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticSeverity(Enum):
    """Severity levels reported by the checkers."""
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class SourceLocation:
    """A specific point in source code."""
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class Diagnostic:
    """
    A single diagnostic finding.

    Attributes
    ----------
    error_id     : Full rule code (e.g. "WPSniff.Security.DirectDB.UnescapedDBParameter")
    message      : Rendered message
    severity     : DiagnosticSeverity
    location     : Primary source location
    checker_name : Name of the checker that produced this
    message_args : Values substituted into the message template
    position     : Token index of the offending token (-1 if none)
    extra        : Additional context (unwind trail)
    evidence     : Machine-readable context for downstream tooling
    """
    error_id: str
    message: str
    severity: DiagnosticSeverity
    location: SourceLocation
    checker_name: str = ""
    message_args: Tuple[str, ...] = ()
    position: int = -1
    extra: str = ""
    evidence: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_error(self) -> bool:
        return self.severity is DiagnosticSeverity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict form used by the JSON reporter."""
        result: Dict[str, Any] = {
            "file": self.location.file,
            "line": self.location.line,
            "column": self.location.column,
            "severity": self.severity.value,
            "message": self.message,
            "code": self.error_id,
            "checker": self.checker_name,
            "args": list(self.message_args),
        }
        if self.extra:
            result["extra"] = self.extra
        return result

    def to_json_str(self) -> str:
        """Single-line JSON string."""
        return json.dumps(self.to_dict())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        sev = self.severity.value
        return f"{self.location}: {sev}: {self.message} [{self.error_id}]"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — SUPPRESSION MANAGER
# ═════════════════════════════════════════════════════════════════════════

class SuppressionManager:
    """
    Manages diagnostic suppressions from multiple sources.

    Sources:
      1. Inline annotations: ``// phpcs:ignore Code``, ``phpcs:disable``
         regions and ``@codingStandardsIgnore*`` markers, read from a
         stream's ignored-lines table
      2. File-level suppressions (glob over the path)
      3. Global suppressions (``exclude_codes`` / ``--exclude-code``)

    Code patterns are fnmatch-style and matched against full rule codes.
    Inline codes also match as dotted prefixes.  Legacy whitelist
    phrases (``WPCS: XSS ok``) are recorded in the same table but never
    match a rule code, so they do not drop diagnostics.

    Usage
    -----
    >>> sm = SuppressionManager()
    >>> sm.load_inline_suppressions(stream)
    >>> sm.add_file_suppression("WPSniff.Commenting.*", "vendor/*")
    >>> sm.add_global_suppression("WPSniff.PHP.Heredoc.*")
    >>> kept = sm.filter_diagnostics(diagnostics)
    """

    def __init__(self) -> None:
        # {(file, line)} → codes ignored at that location
        self._inline: Dict[Tuple[str, int], Set[str]] = defaultdict(set)
        # file pattern → set of code patterns
        self._file_level: Dict[str, Set[str]] = defaultdict(set)
        # globally suppressed code patterns
        self._global: Set[str] = set()

    def load_inline_suppressions(self, stream: TokenStream) -> None:
        for line, codes in stream.ignored_lines.items():
            self._inline[(stream.path, line)].update(codes)

    def for_stream(self, stream: TokenStream) -> "SuppressionManager":
        """A manager sharing this one's global and file rules, plus the
        inline annotations of ``stream``."""
        sm = SuppressionManager()
        sm._file_level = self._file_level
        sm._global = self._global
        sm.load_inline_suppressions(stream)
        return sm

    def add_file_suppression(self, error_id: str, file_pattern: str) -> None:
        """Suppress ``error_id`` in files matching ``file_pattern``."""
        self._file_level[file_pattern].add(error_id)

    def add_global_suppression(self, error_id: str) -> None:
        """Globally suppress ``error_id`` (fnmatch pattern)."""
        self._global.add(error_id)

    @staticmethod
    def _matches(patterns: Iterable[str], code: str) -> bool:
        return any(p == "*" or fnmatch.fnmatchcase(code, p) for p in patterns)

    def is_suppressed(self, diag: Diagnostic) -> bool:
        """Check whether a diagnostic should be suppressed."""
        eid = diag.error_id
        if self._matches(self._global, eid):
            return True

        loc = diag.location
        ignored = self._inline.get((loc.file, loc.line), set())
        if ALL_CODES in ignored or any(code_matches(i, eid) for i in ignored):
            return True

        for pattern, ids in self._file_level.items():
            if self._matches(ids, eid):
                if pattern == loc.file or fnmatch.fnmatch(loc.file, pattern):
                    return True
        return False

    def filter_diagnostics(
        self, diagnostics: Iterable[Diagnostic]
    ) -> List[Diagnostic]:
        """Return only non-suppressed diagnostics."""
        return [d for d in diagnostics if not self.is_suppressed(d)]


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — CHECKER BASE CLASSES
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class CheckerContext:
    """
    Shared context passed to every checker for one file.

    Attributes
    ----------
    stream       : the file's linked TokenStream
    suppressions : SuppressionManager
    options      : user-provided options dict
    properties   : checker name → rule-set property overrides
    stats        : mutable dict for timing / counting statistics
    """
    stream: TokenStream
    suppressions: SuppressionManager = field(default_factory=SuppressionManager)
    options: Dict[str, Any] = field(default_factory=dict)
    properties: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.stream.path

    def get_option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def properties_for(self, checker_name: str) -> Mapping[str, Any]:
        return self.properties.get(checker_name, {})


class Checker(ABC):
    """
    Abstract base class for all checkers.

    Lifecycle
    ─────────
      1. ``configure(ctx)``        — receive context, build helpers
      2. ``collect_evidence(ctx)`` — walk the stream
      3. ``diagnose(ctx)``         — correlate evidence into diagnostics
      4. ``report(ctx)``           — yield final diagnostics

    Subclass Contract
    ─────────────────
      - Override ``name``, ``description``, ``error_ids``
      - Implement ``collect_evidence()`` and ``diagnose()``
      - Optionally override ``configure()`` for custom setup
      - List accepted ``properties`` keys when the checker can be tuned
        from a ruleset file
    """

    name: ClassVar[str] = "base-checker"
    description: ClassVar[str] = ""
    error_ids: ClassVar[FrozenSet[str]] = frozenset()
    default_severity: ClassVar[DiagnosticSeverity] = DiagnosticSeverity.WARNING
    properties: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self) -> None:
        self._diagnostics: List[Diagnostic] = []
        self._reported: Set[Tuple[str, int]] = set()

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return list(self._diagnostics)

    @classmethod
    def code(cls, short_code: str) -> str:
        """Full rule code for one of this checker's short codes."""
        return f"{RULE_PREFIX}.{cls.name}.{short_code}"

    @classmethod
    def codes(cls) -> List[str]:
        return sorted(cls.code(c) for c in cls.error_ids)

    def configure(self, ctx: CheckerContext) -> None:
        """
        Called before evidence collection.

        Override to read properties or build helpers.
        Default implementation does nothing.
        """
        pass

    @abstractmethod
    def collect_evidence(self, ctx: CheckerContext) -> None:
        ...

    @abstractmethod
    def diagnose(self, ctx: CheckerContext) -> None:
        ...

    def report(self, ctx: CheckerContext) -> List[Diagnostic]:
        """
        Return final diagnostics, filtered by suppressions.

        Normally you don't need to override this.
        """
        return ctx.suppressions.filter_diagnostics(self._diagnostics)

    def _emit(
        self,
        ctx: CheckerContext,
        short_code: str,
        message: str,
        position: int,
        args: Sequence[Any] = (),
        severity: Optional[DiagnosticSeverity] = None,
        extra: str = "",
        evidence: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Create and store a diagnostic at the token ``position``.

        ``message`` is a ``%s`` template filled from ``args``.  Only the
        first diagnostic per code and token is kept.
        """
        code = self.code(short_code)
        if (code, position) in self._reported:
            return
        self._reported.add((code, position))
        tok = ctx.stream.get(position)
        str_args = tuple(str(a) for a in args)
        self._diagnostics.append(Diagnostic(
            error_id=code,
            message=message % str_args if str_args else message,
            severity=severity or self.default_severity,
            location=SourceLocation(
                file=ctx.path,
                line=tok.line if tok is not None else 0,
                column=tok.column if tok is not None else 0,
            ),
            checker_name=self.name,
            message_args=str_args,
            position=position,
            extra=extra,
            evidence=evidence or {},
        ))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.name}'>"


class TokenChecker(Checker):
    """
    A checker driven by one left-to-right walk over the stream.

    ``register()`` names the token kinds of interest; ``process_token``
    is called for each of them in file order and may return an index to
    resume the walk from.
    """

    def register(self) -> FrozenSet[TokenKind]:
        return frozenset()

    @abstractmethod
    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        ...

    def collect_evidence(self, ctx: CheckerContext) -> None:
        kinds = self.register()
        stream = ctx.stream
        i = 0
        while i < len(stream):
            if stream[i].kind in kinds:
                resume = self.process_token(ctx, i)
                if resume is not None and resume > i:
                    i = resume
                    continue
            i += 1

    def diagnose(self, ctx: CheckerContext) -> None:
        pass


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — CHECKER REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class CheckerRegistry:
    """
    Registry of available checkers with discovery and filtering.

    Usage
    -----
    >>> registry = CheckerRegistry()
    >>> registry.register(DirectDBChecker)
    >>> registry.disable("Commenting.*")
    >>> checkers = registry.get_enabled()
    """

    def __init__(self) -> None:
        self._checkers: Dict[str, Type[Checker]] = {}
        self._disabled: Set[str] = set()

    def register(self, checker_cls: Type[Checker]) -> None:
        """Register a checker class."""
        self._checkers[checker_cls.name] = checker_cls

    def unregister(self, name: str) -> None:
        """Remove a checker by name."""
        self._checkers.pop(name, None)

    def match(self, pattern: str) -> List[str]:
        """Registered names matching a name or fnmatch pattern."""
        return [n for n in self.names if fnmatch.fnmatchcase(n, pattern)]

    def disable(self, pattern: str) -> None:
        """Disable registered checkers by name or pattern."""
        self._disabled.update(self.match(pattern))

    def enable(self, pattern: str) -> None:
        """Re-enable disabled checkers by name or pattern."""
        self._disabled.difference_update(self.match(pattern))

    def get_all(self) -> List[Type[Checker]]:
        """Return all registered checker classes."""
        return [self._checkers[n] for n in self.names]

    def get_enabled(self) -> List[Type[Checker]]:
        """Return only enabled checker classes."""
        return [
            self._checkers[name] for name in self.names
            if name not in self._disabled
        ]

    def get_by_name(self, name: str) -> Optional[Type[Checker]]:
        return self._checkers.get(name)

    def filter_by_error_id(self, error_id: str) -> List[Type[Checker]]:
        """Return checkers that can produce the given rule code."""
        return [
            cls for cls in self.get_all()
            if error_id in cls.error_ids or error_id in cls.codes()
        ]

    def copy(self) -> "CheckerRegistry":
        clone = CheckerRegistry()
        clone._checkers = dict(self._checkers)
        clone._disabled = set(self._disabled)
        return clone

    @property
    def names(self) -> List[str]:
        return sorted(self._checkers.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._checkers

    def __len__(self) -> int:
        return len(self._checkers)


_DEFAULT_REGISTRY = CheckerRegistry()


def register_checker(checker_cls: Type[Checker]) -> Type[Checker]:
    """Class decorator adding a checker to the default registry."""
    _DEFAULT_REGISTRY.register(checker_cls)
    return checker_cls


def default_registry() -> CheckerRegistry:
    """The default registry, with every built-in checker loaded."""
    from wpsniff_shims import pattern_checkers, security_checkers  # noqa: F401
    return _DEFAULT_REGISTRY


# ═════════════════════════════════════════════════════════════════════════
#  PART 5 — CHECKER RUNNER
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class CheckerRunResults:
    """
    Aggregate results from running a suite of checkers.

    Attributes
    ----------
    diagnostics            : All diagnostics from all checkers
    diagnostics_by_checker : Diagnostics grouped by checker name
    stats                  : Timing and counting statistics
    checker_names          : Names of checkers that were run
    files                  : Files that were analysed
    """
    diagnostics: List[Diagnostic] = field(default_factory=list)
    diagnostics_by_checker: Dict[str, List[Diagnostic]] = field(
        default_factory=lambda: defaultdict(list)
    )
    stats: Dict[str, Any] = field(default_factory=dict)
    checker_names: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.is_error)

    @property
    def warning_count(self) -> int:
        return sum(
            1 for d in self.diagnostics
            if d.severity is DiagnosticSeverity.WARNING
        )

    @property
    def total_count(self) -> int:
        return len(self.diagnostics)

    def by_code(self, code: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.error_id == code]

    def extend(self, other: "CheckerRunResults") -> None:
        self.diagnostics.extend(other.diagnostics)
        for name, diags in other.diagnostics_by_checker.items():
            self.diagnostics_by_checker[name].extend(diags)
        for key, val in other.stats.items():
            self.stats[key] = self.stats.get(key, 0) + val
        for name in other.checker_names:
            if name not in self.checker_names:
                self.checker_names.append(name)
        self.files.extend(other.files)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Checked {len(self.files)} file(s): {self.total_count} diagnostics "
            f"({self.error_count} errors, {self.warning_count} warnings)",
        ]
        for name in self.checker_names:
            count = len(self.diagnostics_by_checker.get(name, []))
            elapsed = self.stats.get(f"{name}_elapsed_ms", 0)
            lines.append(f"  {name}: {count} findings ({elapsed:.1f}ms)")
        return "\n".join(lines)


def _fatal(path: str, code: str, message: str, line: int = 0, column: int = 0) -> Diagnostic:
    return Diagnostic(
        error_id=code,
        message=message,
        severity=DiagnosticSeverity.ERROR,
        location=SourceLocation(file=path, line=line, column=column),
        checker_name="Internal",
    )


class CheckerRunner:
    """
    Runs a suite of checkers over PHP files.

    Usage
    -----
    >>> runner = CheckerRunner()
    >>> results = runner.run_paths(["wp-content/plugins/my-plugin"])
    >>> print(results.summary())

    >>> # Or select specific checkers:
    >>> results = runner.run_source(code, checkers=["Security.DirectDB"])

    Parameters for constructor
    ─────────────────────────
    registry      : CheckerRegistry — source of checker classes
    suppressions  : SuppressionManager — global / file-level rules
    options       : dict — free-form options passed to every checker
    properties    : checker name → rule-set property overrides
    extensions    : file extensions picked up when walking directories
    exclude_paths : fnmatch globs of files to skip
    """

    def __init__(
        self,
        registry: Optional[CheckerRegistry] = None,
        suppressions: Optional[SuppressionManager] = None,
        options: Optional[Dict[str, Any]] = None,
        properties: Optional[Mapping[str, Mapping[str, Any]]] = None,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        exclude_paths: Sequence[str] = (),
    ) -> None:
        self.registry = registry or default_registry()
        self.suppressions = suppressions or SuppressionManager()
        self.options = options or {}
        self.properties = dict(properties or {})
        self.extensions = tuple(e if e.startswith(".") else f".{e}" for e in extensions)
        self.exclude_paths = tuple(exclude_paths)

    # ── selection ────────────────────────────────────────────────────

    def _select(self, checkers: Optional[Sequence[str]]) -> List[Type[Checker]]:
        if checkers is None:
            return self.registry.get_enabled()
        selected: List[Type[Checker]] = []
        for pattern in checkers:
            for name in self.registry.match(pattern):
                cls = self.registry.get_by_name(name)
                if cls is not None and cls not in selected:
                    selected.append(cls)
        return selected

    # ── file discovery ───────────────────────────────────────────────

    def is_excluded(self, path: str) -> bool:
        norm = path.replace(os.sep, "/")
        return any(
            fnmatch.fnmatch(norm, pat) or fnmatch.fnmatch(os.path.basename(norm), pat)
            for pat in self.exclude_paths
        )

    def iter_files(self, paths: Iterable[str]) -> Iterator[str]:
        """Expand directories into source files, in sorted order."""
        for path in paths:
            if os.path.isdir(path):
                for root, dirs, files in os.walk(path):
                    dirs.sort()
                    for name in sorted(files):
                        full = os.path.join(root, name)
                        if name.lower().endswith(self.extensions) and not self.is_excluded(full):
                            yield full
            elif not self.is_excluded(path):
                yield path
            else:
                logger.info("skipping excluded file %s", path)

    # ── running ──────────────────────────────────────────────────────

    def run_stream(
        self,
        stream: TokenStream,
        checkers: Optional[Sequence[str]] = None,
    ) -> CheckerRunResults:
        """
        Run checkers against one linked token stream.

        Every checker gets a fresh instance so no state survives
        between files.  A crashing checker yields one
        ``Internal.Checker.Exception`` diagnostic and the others still
        run.
        """
        results = CheckerRunResults(files=[stream.path])
        suppressions = self.suppressions.for_stream(stream)

        ctx = CheckerContext(
            stream=stream,
            suppressions=suppressions,
            options=self.options,
            properties=self.properties,
        )

        for cls in self._select(checkers):
            checker = cls()
            checker_name = cls.name
            results.checker_names.append(checker_name)

            t0 = time.monotonic()
            try:
                checker.configure(ctx)
                checker.collect_evidence(ctx)
                checker.diagnose(ctx)
                diags = checker.report(ctx)
            except Exception as exc:
                err = CheckerError(checker_name, str(exc), path=stream.path, cause=exc)
                logger.warning("%s", err, exc_info=logger.isEnabledFor(logging.DEBUG))
                diags = [_fatal(stream.path, CHECKER_EXCEPTION, str(err))]
            elapsed_ms = (time.monotonic() - t0) * 1000.0

            results.diagnostics.extend(diags)
            results.diagnostics_by_checker[checker_name].extend(diags)
            results.stats[f"{checker_name}_elapsed_ms"] = elapsed_ms

        return results

    def run_source(
        self,
        source: str,
        path: str = "<source>",
        checkers: Optional[Sequence[str]] = None,
    ) -> CheckerRunResults:
        from wpsniff_shims.lexer import tokenize_source
        try:
            stream = tokenize_source(source, path)
        except TokenizerError as exc:
            return self._tokenizer_failure(path, exc)
        return self.run_stream(stream, checkers)

    def run_file(
        self,
        path: str,
        checkers: Optional[Sequence[str]] = None,
    ) -> CheckerRunResults:
        from wpsniff_shims.lexer import tokenize_file
        try:
            stream = tokenize_file(path)
        except TokenizerError as exc:
            return self._tokenizer_failure(path, exc)
        except OSError as exc:
            logger.warning("cannot read %s: %s", path, exc)
            results = CheckerRunResults(files=[path])
            results.diagnostics.append(_fatal(path, TOKENIZER_EXCEPTION, f"cannot read file: {exc}"))
            return results
        return self.run_stream(stream, checkers)

    def _tokenizer_failure(self, path: str, exc: TokenizerError) -> CheckerRunResults:
        logger.warning("%s", exc)
        results = CheckerRunResults(files=[path])
        results.diagnostics.append(
            _fatal(path, TOKENIZER_EXCEPTION, exc.message, exc.line, exc.column)
        )
        return results

    def run_paths(
        self,
        paths: Iterable[str],
        checkers: Optional[Sequence[str]] = None,
    ) -> CheckerRunResults:
        """Run checkers over files and directories."""
        combined = CheckerRunResults()
        for path in self.iter_files(paths):
            logger.debug("checking %s", path)
            combined.extend(self.run_file(path, checkers))
        return combined


__all__ = [
    # Diagnostic model
    "Diagnostic",
    "DiagnosticSeverity",
    "SourceLocation",
    # Suppression
    "SuppressionManager",
    # Checker framework
    "Checker",
    "TokenChecker",
    "CheckerContext",
    "CheckerRegistry",
    "register_checker",
    "default_registry",
    # Runner
    "CheckerRunner",
    "CheckerRunResults",
    "RULE_PREFIX",
    "TOKENIZER_EXCEPTION",
    "CHECKER_EXCEPTION",
    "DEFAULT_EXTENSIONS",
]
