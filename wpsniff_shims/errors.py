# wpsniff_shims/errors.py
"""
wpsniff-shims Error Types

Exceptions raised by the tokenizer, the configuration loader and the
checker runner.  Structural lookups inside the analysis engine never
raise: they return ``None`` and the caller treats the span as "could not
prove unsafe".  Only failures that stop a whole file (or the whole run)
are modelled here.

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Error Hierarchy                                    │
├─────────────────────────────────────────────────────────────────────────────┤
│  WpsniffError (base)                                                        │
│  ├── TokenizerError    - Source could not be lexed (per-file fatal)         │
│  ├── ConfigError       - Ruleset file is unreadable or invalid (run fatal)  │
│  └── CheckerError      - A checker crashed on one file (per-file fatal)     │
└─────────────────────────────────────────────────────────────────────────────┘

The runner converts ``TokenizerError`` and ``CheckerError`` into a single
error-severity diagnostic for the affected file and moves on.  The CLI
maps ``ConfigError`` to exit code 2.

License: MIT
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Optional


@unique
class ErrorPhase(Enum):
    """Pipeline phase an error originated from."""
    TOKENIZE = "tokenize"
    CONFIGURE = "configure"
    CHECK = "check"

    def __str__(self) -> str:
        return self.value


class WpsniffError(Exception):
    """
    Base exception for all wpsniff-shims errors.

    Carries the file the error relates to (when known) so callers can
    report it without re-deriving context.
    """

    phase: ErrorPhase = ErrorPhase.CHECK

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


class TokenizerError(WpsniffError):
    """Source text could not be turned into a token stream."""

    phase = ErrorPhase.TOKENIZE

    def __init__(
        self,
        message: str,
        line: int = 0,
        column: int = 0,
        path: str = "",
    ) -> None:
        super().__init__(message, path=path)
        self.line = line
        self.column = column

    def __str__(self) -> str:
        where = self.path or "<source>"
        if self.line:
            where = f"{where}:{self.line}:{self.column}"
        return f"{where}: {self.message}"


class ConfigError(WpsniffError):
    """The ruleset configuration is malformed or references unknown names."""

    phase = ErrorPhase.CONFIGURE


class CheckerError(WpsniffError):
    """A checker raised while processing a file."""

    def __init__(
        self,
        checker_name: str,
        message: str,
        path: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(f"checker '{checker_name}' failed: {message}", path=path)
        self.checker_name = checker_name
        self.cause = cause


__all__ = [
    "ErrorPhase",
    "WpsniffError",
    "TokenizerError",
    "ConfigError",
    "CheckerError",
]
