"""
wpsniff_shims/main.py
═════════════════════

Command-line interface.

Usage
─────
    wpsniff check [options] PATH...
    wpsniff list
    wpsniff tokens FILE

Commands
────────
    check     Run the checkers over files and directories
    list      Show the registered checkers and their rule codes
    tokens    Dump the linked token stream of one file

Exit codes
──────────
    0   no errors reported (warnings allowed)
    1   at least one error reported
    2   bad configuration, unreadable input or internal failure

License: MIT
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import textwrap
from typing import List, Optional, Sequence, TextIO

from wpsniff_shims import __version__
from wpsniff_shims.checkers import (
    CheckerRunner,
    DiagnosticSeverity,
    default_registry,
)
from wpsniff_shims.config import RulesetConfig, load_config
from wpsniff_shims.errors import ConfigError, TokenizerError
from wpsniff_shims.reporter import FORMATS, Reporter

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_FAILURE = 2

_LOG_FORMAT = "%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s"


def _configure_logging(verbosity: int) -> None:
    """0 → WARNING, 1 → INFO, 2+ → DEBUG, on stderr."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root = logging.getLogger("wpsniff_shims")
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False


# ═════════════════════════════════════════════════════════════════════════
#  COMMANDS
# ═════════════════════════════════════════════════════════════════════════

def cmd_check(args: argparse.Namespace) -> int:
    registry = default_registry()
    try:
        config = load_config(args.config, registry) if args.config else RulesetConfig()
    except ConfigError as exc:
        sys.stderr.write(f"wpsniff: {exc}\n")
        return EXIT_FAILURE

    for pattern in args.checker or ():
        if not registry.match(pattern):
            sys.stderr.write(f"wpsniff: no checker matches '{pattern}'\n")
            return EXIT_FAILURE
    missing = [p for p in args.paths if not os.path.exists(p)]
    if missing:
        sys.stderr.write(f"wpsniff: no such file or directory: {', '.join(missing)}\n")
        return EXIT_FAILURE

    suppressions = config.suppressions()
    for pattern in args.exclude_code or ():
        suppressions.add_global_suppression(pattern)

    runner = CheckerRunner(
        registry=config.apply(registry),
        suppressions=suppressions,
        properties=config.properties,
        extensions=config.extensions,
        exclude_paths=config.exclude_paths,
    )
    results = runner.run_paths(args.paths, args.checker)
    logger.info("%s", results.summary())

    diagnostics = results.diagnostics
    if args.no_warnings:
        diagnostics = [d for d in diagnostics if d.severity is not DiagnosticSeverity.WARNING]

    out: TextIO
    if args.output:
        try:
            out = open(args.output, "w", encoding="utf-8")
        except OSError as exc:
            sys.stderr.write(f"wpsniff: cannot write {args.output}: {exc.strerror}\n")
            return EXIT_FAILURE
    else:
        out = sys.stdout
    try:
        with Reporter(out, fmt=args.format) as rep:
            rep.extend(diagnostics)
        stats = rep.stats
    finally:
        if out is not sys.stdout:
            out.close()

    return EXIT_ERRORS if stats.error else EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    registry = default_registry()
    for cls in registry.get_all():
        sys.stdout.write(f"{cls.name}\n")
        if cls.description:
            sys.stdout.write(f"    {cls.description}\n")
        for code in cls.codes():
            sys.stdout.write(f"      {code}\n")
    return EXIT_OK


def cmd_tokens(args: argparse.Namespace) -> int:
    from wpsniff_shims.lexer import tokenize_file
    try:
        stream = tokenize_file(args.file)
    except TokenizerError as exc:
        sys.stderr.write(f"wpsniff: {exc}\n")
        return EXIT_FAILURE
    except OSError as exc:
        sys.stderr.write(f"wpsniff: cannot read {args.file}: {exc.strerror}\n")
        return EXIT_FAILURE

    for tok in stream:
        if args.skip_whitespace and tok.kind.name == "WHITESPACE":
            continue
        links: List[str] = []
        partner = tok.matching_position
        if partner is not None:
            links.append(f"match={partner}")
        if tok.parenthesis_owner is not None:
            links.append(f"owner={tok.parenthesis_owner}")
        if tok.scope_opener is not None:
            links.append(f"scope={tok.scope_opener}..{tok.scope_closer}")
        sys.stdout.write(
            f"{tok.index:>5} {tok.line:>4}:{tok.column:<3} {tok.kind.name:<26} "
            f"{tok.text!r}{'  ' + ' '.join(links) if links else ''}\n"
        )
    ignored = stream.ignored_lines
    if ignored:
        sys.stdout.write("\nignored lines:\n")
        for line in sorted(ignored):
            sys.stdout.write(f"  {line}: {', '.join(sorted(ignored[line]))}\n")
    return EXIT_OK


# ═════════════════════════════════════════════════════════════════════════
#  ARGUMENT PARSER
# ═════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the wpsniff CLI."""

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )

    parser = argparse.ArgumentParser(
        prog="wpsniff",
        description="Security and code-quality checks for WordPress PHP code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              %(prog)s check wp-content/plugins/my-plugin
              %(prog)s check -c 'Security.*' --format sarif -o report.sarif src/
              %(prog)s check --config ruleset.json plugin.php
              %(prog)s list
              %(prog)s tokens plugin.php
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    # ── check ────────────────────────────────────────────────────────

    p_check = subparsers.add_parser(
        "check",
        parents=[common],
        help="Check PHP files and directories",
    )
    p_check.add_argument("paths", nargs="+", metavar="PATH", help="Files or directories")
    p_check.add_argument("--config", metavar="FILE", help="JSON ruleset file")
    p_check.add_argument(
        "--format",
        choices=FORMATS,
        default="text",
        help="Report format (default: text)",
    )
    p_check.add_argument("-o", "--output", metavar="FILE", help="Write the report to FILE")
    p_check.add_argument(
        "-c", "--checker",
        action="append",
        metavar="NAME",
        help="Run only matching checkers (name or glob, repeatable)",
    )
    p_check.add_argument(
        "--exclude-code",
        action="append",
        metavar="PATTERN",
        help="Drop diagnostics whose rule code matches PATTERN (repeatable)",
    )
    p_check.add_argument(
        "--no-warnings",
        action="store_true",
        help="Report errors only",
    )
    p_check.set_defaults(func=cmd_check)

    # ── list ─────────────────────────────────────────────────────────

    p_list = subparsers.add_parser(
        "list",
        parents=[common],
        help="List registered checkers",
    )
    p_list.set_defaults(func=cmd_list)

    # ── tokens ───────────────────────────────────────────────────────

    p_tokens = subparsers.add_parser(
        "tokens",
        parents=[common],
        help="Dump the token stream of a file",
    )
    p_tokens.add_argument("file", metavar="FILE")
    p_tokens.add_argument(
        "--skip-whitespace",
        action="store_true",
        help="Omit whitespace tokens",
    )
    p_tokens.set_defaults(func=cmd_tokens)

    return parser


# ═════════════════════════════════════════════════════════════════════════
#  MAIN
# ═════════════════════════════════════════════════════════════════════════

def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the wpsniff CLI.

    Returns the process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    _configure_logging(args.verbose)

    try:
        return args.func(args)
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted.\n")
        return 130
    except BrokenPipeError:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
