"""
wpsniff_shims/variables.py
══════════════════════════

Variable resolution: canonical keys for variable references.

A reference such as ``$rows[ 'id' ]->name`` is rendered to the key
``$rows[id]->name``.  Keys are compared textually by the taint tracker;
two references with the same key are the same variable.  This is an
approximation, not alias analysis.

Rendering rules (applied greedily after the leading ``$name``):

  ``[ ... ]``          every non-empty token inside, verbatim, except that
                       quoted string literals lose their quotes
  ``->name``           appended, unless ``name(`` follows (a method call:
                       rendering stops before the ``->``)
  ``::NAME``           appended, same rule as ``->``
  ``->123``            appended as ``[123]``
  anything else        rendering stops

Interpolated strings are scanned with one module-level compiled pattern;
``"$a[b]"``, ``"{$a['b']}"`` and ``"${a}"`` normalize to the same keys as
the equivalent code references.

License: MIT
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from wpsniff_shims.tokens import (
    EMPTY_KINDS,
    INTERPOLATED_KINDS,
    OBJECT_OPERATOR_KINDS,
    TokenKind,
    TokenStream,
)

logger = logging.getLogger(__name__)

MAX_RESOLUTION_STEPS = 200

_NAME = r"[a-zA-Z_\x7f-\uffff][a-zA-Z0-9_\x7f-\uffff]*"

INTERPOLATED_VARIABLE_RE = re.compile(
    r"(?<!\\)(?:\\\\)*\$\{?(" + _NAME + r")\}?"
    r"((?:\[[^\]]+\])*(?:->" + _NAME + r")*)"
)

_QUOTED_INDEX_RE = re.compile(r"\[\s*(['\"])(.*?)\1\s*\]")


def _strip_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    return text


def _render_index(stream: TokenStream, opener: int, closer: int) -> str:
    parts = ["["]
    for i in range(opener + 1, closer):
        tok = stream[i]
        if tok.kind in EMPTY_KINDS:
            continue
        if tok.kind is TokenKind.CONSTANT_ENCAPSED_STRING:
            parts.append(_strip_quotes(tok.text))
        else:
            parts.append(tok.text)
    parts.append("]")
    return "".join(parts)


def render_variable(stream: TokenStream, pos: int) -> Optional[Tuple[str, int]]:
    """
    Render the variable reference starting at ``pos``.

    Args:
        stream: token stream of the file.
        pos: index of a ``VARIABLE`` token.

    Returns:
        ``(canonical_key, end_position)`` where ``end_position`` is the
        last consumed token, or ``None`` if ``pos`` is not a variable.
    """
    tok = stream.get(pos)
    if tok is None or tok.kind is not TokenKind.VARIABLE:
        return None

    parts = [tok.text]
    end = pos
    steps = 0
    while steps < MAX_RESOLUTION_STEPS:
        steps += 1
        nxt = stream.next_non_empty(end + 1, local_only=False)
        if nxt is None:
            break
        t = stream[nxt]

        if t.kind is TokenKind.OPEN_SQUARE_BRACKET:
            if t.bracket_closer is None:
                break
            parts.append(_render_index(stream, nxt, t.bracket_closer))
            end = t.bracket_closer
            continue

        if t.kind in OBJECT_OPERATOR_KINDS or t.kind is TokenKind.DOUBLE_COLON:
            member = stream.next_non_empty(nxt + 1, local_only=False)
            if member is None:
                break
            m = stream[member]
            if m.kind is TokenKind.STRING:
                after = stream.next_non_empty(member + 1, local_only=False)
                if after is not None and stream[after].kind is TokenKind.OPEN_PARENTHESIS:
                    break
                glue = "::" if t.kind is TokenKind.DOUBLE_COLON else "->"
                parts.append(glue + m.text)
                end = member
                continue
            if m.kind is TokenKind.LNUMBER:
                parts.append(f"[{m.text}]")
                end = member
                continue
            break

        break
    else:
        logger.debug("variable resolution stopped after %d steps at index %d", steps, pos)

    return "".join(parts), end


def find_end_of_variable(stream: TokenStream, pos: int) -> Optional[int]:
    """Last token of the variable reference starting at ``pos``."""
    rendered = render_variable(stream, pos)
    return rendered[1] if rendered is not None else None


def variable_key(stream: TokenStream, pos: int) -> Optional[str]:
    rendered = render_variable(stream, pos)
    return rendered[0] if rendered is not None else None


def normalize_interpolated(name: str, rest: str = "") -> str:
    """Canonical key for a variable found inside a string."""
    rest = _QUOTED_INDEX_RE.sub(r"[\2]", rest)
    return "$" + name.strip("${}") + rest


def extract_interpolated_variables(text: str) -> List[str]:
    """
    Variable keys interpolated in a double-quoted string or heredoc body.

    Order of first appearance is kept; duplicates are dropped.
    """
    keys: List[str] = []
    for m in INTERPOLATED_VARIABLE_RE.finditer(text):
        key = normalize_interpolated(m.group(1), m.group(2))
        if key not in keys:
            keys.append(key)
    return keys


def interpolated_variables_at(stream: TokenStream, pos: int) -> List[str]:
    """Interpolated keys of the string token at ``pos`` (empty for other kinds)."""
    tok = stream.get(pos)
    if tok is None or tok.kind not in INTERPOLATED_KINDS:
        return []
    return extract_interpolated_variables(tok.text)


def find_variables_in_expression(
    stream: TokenStream, start: int, end: Optional[int] = None,
) -> List[str]:
    """Keys of every variable referenced in ``[start, end)``, strings included."""
    stop = len(stream) if end is None else min(end, len(stream))
    keys: List[str] = []
    i = start
    while i < stop:
        tok = stream[i]
        if tok.kind is TokenKind.VARIABLE:
            rendered = render_variable(stream, i)
            if rendered is not None:
                key, last = rendered
                if key not in keys:
                    keys.append(key)
                i = last + 1
                continue
        elif tok.kind in INTERPOLATED_KINDS:
            for key in extract_interpolated_variables(tok.text):
                if key not in keys:
                    keys.append(key)
        i += 1
    return keys


__all__ = [
    "MAX_RESOLUTION_STEPS",
    "INTERPOLATED_VARIABLE_RE",
    "render_variable",
    "find_end_of_variable",
    "variable_key",
    "normalize_interpolated",
    "extract_interpolated_variables",
    "interpolated_variables_at",
    "find_variables_in_expression",
]
