"""
wpsniff_shims/taint.py
══════════════════════

Taint state tracking for one file's analysis session.

The tracker is a flat running mapping, updated in file order:

    ┌─────────────────────────────────────────────────────────────────┐
    │   (scope_key, variable_key)  ──►  TaintEntry                    │
    │                                                                 │
    │   scope_key     index of the innermost enclosing function or    │
    │                 closure token, or GLOBAL_SCOPE                  │
    │   variable_key  canonical key from variables.render_variable    │
    │   entry.state   SANITIZED | UNSANITIZED                         │
    └─────────────────────────────────────────────────────────────────┘

Approximations
──────────────

  * Every assignment overwrites.  Branches of an ``if`` do not fork the
    state, so a variable sanitized in one branch stays sanitized after
    the ``if``.  This mirrors the behavior existing rule tests expect.
  * Entries are never removed.  Leaving a function does not reset the
    state of its variables.
  * All global-scope variables of a file share one namespace.

A variable that was never assigned has no entry; the classifier treats
it as unsafe.

License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterator, Optional, Tuple, Union

from wpsniff_shims.tokens import TokenKind, TokenStream

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"

ScopeKey = Union[int, str]

_SCOPE_KINDS = frozenset({TokenKind.FUNCTION, TokenKind.CLOSURE})


class SafetyState(Enum):
    """Safety classification of a tracked variable."""
    SANITIZED = auto()
    UNSANITIZED = auto()

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, slots=True)
class TaintEntry:
    """
    The latest observed state of one variable.

    Attributes:
        scope: Scope key the variable belongs to
        variable: Canonical variable key
        state: Safety classification
        position: Token index of the assignment target
        value_start: First token of the assigned value (``None`` for
            implicit assignments such as ``array_walk``)
        value_end: Token after the last token of the assigned value
        line: Source line of the assignment
    """
    scope: ScopeKey
    variable: str
    state: SafetyState
    position: int
    value_start: Optional[int] = None
    value_end: Optional[int] = None
    line: int = 0

    @property
    def is_sanitized(self) -> bool:
        return self.state is SafetyState.SANITIZED


def scope_of(stream: TokenStream, pos: int) -> ScopeKey:
    """Scope key for the token at ``pos``."""
    owner = stream.get_condition(pos, _SCOPE_KINDS)
    return GLOBAL_SCOPE if owner is None else owner


def key_prefixes(variable: str) -> Iterator[str]:
    """
    Shorter keys ``variable`` extends, longest first.

    >>> list(key_prefixes("$row[id]->name"))
    ['$row[id]', '$row']
    """
    cuts = []
    depth = 0
    for i, ch in enumerate(variable):
        if ch == "[":
            if depth == 0 and i > 0:
                cuts.append(i)
            depth += 1
        elif ch == "]":
            depth = max(depth - 1, 0)
        elif depth == 0 and i > 0 and (variable.startswith("->", i) or variable.startswith("::", i)):
            cuts.append(i)
    for cut in reversed(cuts):
        yield variable[:cut]


class TaintTracker:
    """
    Per-file mapping of variables to their safety state.

    Create a fresh tracker for every file; nothing is shared between
    sessions.
    """

    GLOBAL_SCOPE = GLOBAL_SCOPE

    def __init__(self) -> None:
        self._entries: Dict[Tuple[ScopeKey, str], TaintEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TaintEntry]:
        return iter(self._entries.values())

    # ── updates ──────────────────────────────────────────────────────

    def _mark(
        self,
        scope: ScopeKey,
        variable: str,
        state: SafetyState,
        position: int,
        value_start: Optional[int],
        value_end: Optional[int],
        line: int,
    ) -> TaintEntry:
        entry = TaintEntry(scope, variable, state, position, value_start, value_end, line)
        self._entries[(scope, variable)] = entry
        logger.debug("%s marked %s in scope %s at index %d", variable, state, scope, position)
        return entry

    def mark_sanitized(
        self,
        scope: ScopeKey,
        variable: str,
        position: int,
        value_start: Optional[int] = None,
        value_end: Optional[int] = None,
        line: int = 0,
    ) -> TaintEntry:
        return self._mark(scope, variable, SafetyState.SANITIZED,
                          position, value_start, value_end, line)

    def mark_unsanitized(
        self,
        scope: ScopeKey,
        variable: str,
        position: int,
        value_start: Optional[int] = None,
        value_end: Optional[int] = None,
        line: int = 0,
    ) -> TaintEntry:
        return self._mark(scope, variable, SafetyState.UNSANITIZED,
                          position, value_start, value_end, line)

    # ── queries ──────────────────────────────────────────────────────

    def entry(self, scope: ScopeKey, variable: str) -> Optional[TaintEntry]:
        """Exact-key entry, or ``None``."""
        return self._entries.get((scope, variable))

    def resolve(self, scope: ScopeKey, variable: str) -> Optional[TaintEntry]:
        """
        Entry for ``variable``, falling back to the keys it extends.

        ``$row->name`` resolves to the entry for ``$row`` when
        ``$row->name`` itself was never assigned.
        """
        found = self._entries.get((scope, variable))
        if found is not None:
            return found
        for prefix in key_prefixes(variable):
            found = self._entries.get((scope, prefix))
            if found is not None:
                return found
        return None

    def lookup(self, scope: ScopeKey, variable: str) -> Optional[SafetyState]:
        """Safety state of ``variable``; ``None`` means never assigned."""
        found = self.resolve(scope, variable)
        return found.state if found is not None else None

    def is_sanitized(self, scope: ScopeKey, variable: str) -> bool:
        return self.lookup(scope, variable) is SafetyState.SANITIZED

    def __repr__(self) -> str:
        return f"<TaintTracker entries={len(self._entries)}>"


__all__ = [
    "GLOBAL_SCOPE",
    "ScopeKey",
    "SafetyState",
    "TaintEntry",
    "TaintTracker",
    "scope_of",
    "key_prefixes",
]
