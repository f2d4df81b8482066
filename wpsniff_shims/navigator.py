"""
wpsniff_shims/navigator.py
══════════════════════════

Expression navigation over a token stream.

The engine has no AST.  Everything it knows about expression structure
comes from the queries in this module: where an expression ends, which
``if`` a token sits in, what block that ``if`` controls, whether a call
is negated, where the arguments of a call start and stop.

Conventions
───────────

  * Positions are token indices.  ``None`` means "not found"; callers
    treat it as "could not prove unsafe" and never as a crash.
  * Spans are returned as explicit ``(start, end)`` tuples.  Unless a
    docstring says otherwise, ``end`` is inclusive.
  * Bracketed groups are atomic: scanning jumps from an opener to its
    closer instead of descending.

:class:`ExpressionNavigator` wraps one stream; checkers hold one by
reference.

License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple

from wpsniff_shims.tokens import (
    ASSIGNMENT_KINDS,
    CLOSER_KINDS,
    EMPTY_KINDS,
    FUNCTION_NAME_KINDS,
    OBJECT_OPERATOR_KINDS,
    OPENER_KINDS,
    TokenKind,
    TokenStream,
)
from wpsniff_shims import variables

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  KIND GROUPS
# ═════════════════════════════════════════════════════════════════════════

EXPRESSION_STOPS: FrozenSet[TokenKind] = frozenset({
    TokenKind.SEMICOLON, TokenKind.COMMA, TokenKind.CLOSE_TAG,
})

STATEMENT_TERMINATORS: FrozenSet[TokenKind] = frozenset({
    TokenKind.SEMICOLON, TokenKind.CLOSE_TAG,
})

CONDITION_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.IF, TokenKind.ELSEIF,
})

BRANCH_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.IF, TokenKind.ELSEIF, TokenKind.ELSE,
})

AND_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.BOOLEAN_AND, TokenKind.LOGICAL_AND,
})

OR_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.BOOLEAN_OR, TokenKind.LOGICAL_OR,
})

LVALUE_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.VARIABLE, TokenKind.CLOSE_SQUARE_BRACKET, TokenKind.STRING,
})

# Tokens after which an identifier cannot be a constant.
CALL_FOLLOWERS: FrozenSet[TokenKind] = frozenset({
    TokenKind.OBJECT_OPERATOR, TokenKind.NULLSAFE_OBJECT_OPERATOR,
    TokenKind.DOUBLE_COLON, TokenKind.OPEN_CURLY_BRACKET,
    TokenKind.OPEN_SQUARE_BRACKET, TokenKind.OPEN_PARENTHESIS,
})

_START_STOPS: FrozenSet[TokenKind] = frozenset({
    TokenKind.SEMICOLON, TokenKind.OPEN_TAG, TokenKind.OPEN_TAG_WITH_ECHO,
    TokenKind.CLOSE_TAG, TokenKind.INLINE_HTML, TokenKind.OPEN_CURLY_BRACKET,
    TokenKind.COLON, TokenKind.COMMA, TokenKind.DOUBLE_ARROW,
    TokenKind.OPEN_PARENTHESIS, TokenKind.OPEN_SQUARE_BRACKET,
    TokenKind.ELSE, TokenKind.DO, TokenKind.TRY, TokenKind.FINALLY,
})

_CONTROL_PAREN_OWNERS: FrozenSet[TokenKind] = frozenset({
    TokenKind.IF, TokenKind.ELSEIF, TokenKind.FOREACH, TokenKind.FOR,
    TokenKind.WHILE, TokenKind.SWITCH, TokenKind.CATCH, TokenKind.DECLARE,
})

_EXPRESSION_SCOPES: FrozenSet[TokenKind] = frozenset({
    TokenKind.CLOSURE, TokenKind.FN, TokenKind.CLASS, TokenKind.MATCH,
})

MAX_NESTING_STEPS = 64


@dataclass(frozen=True)
class Parameter:
    """
    One argument of a call.

    ``start``/``end`` are the first and last non-empty tokens of the
    argument value (a named argument's label is excluded).  ``raw`` is
    the source text; ``clean`` is the same without comments.
    """
    position: int
    start: int
    end: int
    raw: str
    clean: str
    name: Optional[str] = None


class ExpressionNavigator:
    """
    Structural queries over one :class:`TokenStream`.

    Usage
    -----
    >>> nav = ExpressionNavigator(stream)
    >>> end = nav.find_end_of_expression(rhs_start)
    >>> params = nav.get_parameters(call_name_pos)
    """

    def __init__(self, stream: TokenStream) -> None:
        self.stream = stream

    # ── basic movement ───────────────────────────────────────────────

    def next_non_empty(
        self, pos: int, end: Optional[int] = None, local_only: bool = False,
    ) -> Optional[int]:
        return self.stream.next_non_empty(pos, end, local_only=local_only)

    def previous_non_empty(
        self, pos: int, end: Optional[int] = None, local_only: bool = False,
    ) -> Optional[int]:
        return self.stream.previous_non_empty(pos, end, local_only=local_only)

    def _kind(self, pos: Optional[int]) -> Optional[TokenKind]:
        return self.stream.kind_at(pos)

    # ── expression boundaries ────────────────────────────────────────

    def find_end_of_expression(self, pos: int) -> Optional[int]:
        """
        Last token of the expression starting at ``pos``.

        A bracket opener (or a parenthesis owner) returns its closer
        directly.  Otherwise the scan stops before ``;``, ``,``, ``?>``,
        an unmatched closing bracket, or end of file.
        """
        s = self.stream
        tok = s.get(pos)
        if tok is None:
            return None
        if tok.kind is not TokenKind.CLOSE_PARENTHESIS and tok.parenthesis_closer is not None:
            return tok.parenthesis_closer
        if tok.kind in (TokenKind.OPEN_SQUARE_BRACKET, TokenKind.OPEN_CURLY_BRACKET):
            return tok.bracket_closer

        prev: Optional[int] = None
        i = s.next_non_empty(pos)
        while i is not None:
            t = s[i]
            if t.kind in EXPRESSION_STOPS or t.kind in CLOSER_KINDS:
                return prev
            if t.kind in OPENER_KINDS:
                closer = t.matching_position
                if closer is None:
                    return None
                prev = closer
                i = s.next_non_empty(closer + 1)
                continue
            prev = i
            i = s.next_non_empty(i + 1)
        return prev

    def find_statement_terminator(self, pos: int) -> int:
        """
        Index of the ``;`` or ``?>`` ending the statement containing ``pos``.

        Stops early at an unmatched closing bracket; returns
        ``len(stream)`` when the file ends first.
        """
        s = self.stream
        i = pos
        while i < len(s):
            t = s[i]
            if t.kind in STATEMENT_TERMINATORS:
                return i
            if t.kind in OPENER_KINDS:
                closer = t.matching_position
                if closer is None:
                    return len(s)
                i = closer + 1
                continue
            if t.kind in CLOSER_KINDS:
                return i
            i += 1
        return len(s)

    def find_start_of_statement(self, pos: int) -> int:
        """First token of the statement (or argument) containing ``pos``."""
        s = self.stream
        last = pos
        i = pos - 1
        while i >= 0:
            t = s[i]
            k = t.kind
            if k in (TokenKind.CLOSE_PARENTHESIS, TokenKind.CLOSE_SQUARE_BRACKET):
                opener = t.matching_position
                if opener is None:
                    return last
                owner = t.parenthesis_owner
                if owner is not None and s[owner].kind in _CONTROL_PAREN_OWNERS:
                    return last
                last = opener
                i = opener - 1
                continue
            if k is TokenKind.CLOSE_CURLY_BRACKET:
                owner = t.scope_condition
                if owner is not None and s[owner].kind in _EXPRESSION_SCOPES:
                    last = owner
                    i = owner - 1
                    continue
                return last
            if k in _START_STOPS:
                return last
            if k not in EMPTY_KINDS:
                last = i
            i -= 1
        return last

    def find_end_of_statement(self, pos: int) -> int:
        """
        Last token of the statement starting at ``pos``.

        Returns the terminating ``;``/``?>`` itself, the closing brace of
        a control-structure block, or the last token before a ``,``,
        ``=>`` or unmatched closer.
        """
        s = self.stream
        last = pos
        i = pos
        while i < len(s):
            t = s[i]
            k = t.kind
            if k in STATEMENT_TERMINATORS:
                return i
            if i != pos and (k in (TokenKind.COMMA, TokenKind.DOUBLE_ARROW) or k in CLOSER_KINDS):
                return last
            if k in (TokenKind.OPEN_PARENTHESIS, TokenKind.OPEN_SQUARE_BRACKET):
                closer = t.matching_position
                if closer is None:
                    return last
                last = closer
                i = closer + 1
                continue
            if k is TokenKind.OPEN_CURLY_BRACKET:
                closer = t.bracket_closer
                if closer is None:
                    return last
                owner = t.scope_condition
                if owner is not None and s[owner].kind not in _EXPRESSION_SCOPES:
                    return closer
                last = closer
                i = closer + 1
                continue
            if k not in EMPTY_KINDS:
                last = i
            i += 1
        return last

    # ── assignments ──────────────────────────────────────────────────

    def find_assignment_operator(self, pos: int) -> Optional[int]:
        """
        Assignment operator whose target is the lvalue at ``pos``.

        Follows ``[...]`` index groups and ``->`` property chains.
        """
        s = self.stream
        for _ in range(MAX_NESTING_STEPS):
            if self._kind(pos) not in LVALUE_KINDS:
                return None
            nxt = s.next_non_empty(pos + 1, local_only=True)
            if nxt is None:
                return None
            t = s[nxt]
            if t.kind in ASSIGNMENT_KINDS:
                return nxt
            if t.kind is TokenKind.OPEN_SQUARE_BRACKET and t.bracket_closer is not None:
                pos = t.bracket_closer
                continue
            if t.kind in OBJECT_OPERATOR_KINDS:
                member = s.next_non_empty(nxt + 1, local_only=True)
                if member is None:
                    return None
                pos = member
                continue
            return None
        return None

    def is_assignment(self, pos: int) -> bool:
        return self.find_assignment_operator(pos) is not None

    def is_assignment_statement(self, pos: int) -> bool:
        """True if the statement containing ``pos`` assigns its value."""
        s = self.stream
        start = self.find_start_of_statement(pos)
        for _ in range(MAX_NESTING_STEPS):
            nested = s[start].nested_parenthesis
            if not nested:
                break
            start = self.find_start_of_statement(nested[0][0])
        return self.is_assignment(start)

    def is_return_statement(self, pos: int) -> bool:
        start = self.find_start_of_statement(pos)
        return self._kind(start) is TokenKind.RETURN

    # ── conditions ───────────────────────────────────────────────────

    def is_conditional_expression(self, pos: int) -> Optional[int]:
        """The ``if``/``elseif`` whose condition contains ``pos``."""
        tok = self.stream.get(pos)
        if tok is None:
            return None
        for opener, _ in reversed(tok.nested_parenthesis):
            owner = self.stream[opener].parenthesis_owner
            if owner is not None and self.stream[owner].kind in CONDITION_KINDS:
                return owner
        return None

    def get_expression_from_condition(self, pos: int) -> Optional[Tuple[int, int]]:
        """``(opener, closer)`` of the condition of the ``if``/``elseif`` at ``pos``."""
        tok = self.stream.get(pos)
        if tok is None or tok.kind not in CONDITION_KINDS:
            return None
        if tok.parenthesis_opener is None or tok.parenthesis_closer is None:
            return None
        return tok.parenthesis_opener, tok.parenthesis_closer

    def get_scope_from_condition(self, pos: int) -> Optional[Tuple[int, int]]:
        """
        ``(start, end)`` of the block controlled by ``if``/``elseif``/``else``.

        Brace (or alternative syntax) blocks return their opener and
        closer; a bare single statement returns its first and last token.
        """
        s = self.stream
        tok = s.get(pos)
        if tok is None or tok.kind not in BRANCH_KINDS:
            return None
        if tok.scope_opener is not None and tok.scope_closer is not None:
            return tok.scope_opener, tok.scope_closer
        if tok.parenthesis_closer is not None:
            start = s.next_non_empty(tok.parenthesis_closer + 1)
        else:
            start = s.next_non_empty(pos + 1)
        if start is None:
            return None
        return start, self.find_end_of_statement(start)

    def has_else(self, pos: int) -> Optional[int]:
        """The ``else``/``elseif`` following the branch at ``pos``, if any."""
        s = self.stream
        tok = s.get(pos)
        if tok is None:
            return None
        if tok.scope_closer is not None:
            closer = tok.scope_closer
            if s[closer].kind in (TokenKind.ELSE, TokenKind.ELSEIF):
                return closer
            nxt = s.next_non_empty(closer + 1)
        else:
            scope = self.get_scope_from_condition(pos)
            if scope is None:
                return None
            nxt = s.next_non_empty(scope[1] + 1)
        if nxt is not None and s[nxt].kind in (TokenKind.ELSE, TokenKind.ELSEIF):
            return nxt
        return None

    def _contains(
        self, kinds: FrozenSet[TokenKind], start: int, end: int, inside_brackets: bool,
    ) -> Optional[int]:
        s = self.stream
        i = start + 1
        while i < end:
            t = s[i]
            if t.kind in kinds:
                return i
            if not inside_brackets and t.kind is TokenKind.OPEN_PARENTHESIS:
                closer = t.parenthesis_closer
                if closer is None:
                    return None
                i = closer + 1
                continue
            i += 1
        return None

    def expression_contains_and(
        self, start: int, end: int, inside_brackets: bool = False,
    ) -> Optional[int]:
        """First ``&&``/``and`` strictly between ``start`` and ``end``."""
        return self._contains(AND_KINDS, start, end, inside_brackets)

    def expression_contains_or(
        self, start: int, end: int, inside_brackets: bool = False,
    ) -> Optional[int]:
        """First ``||``/``or`` strictly between ``start`` and ``end``."""
        return self._contains(OR_KINDS, start, end, inside_brackets)

    def expression_is_negated(self, pos: int) -> Optional[int]:
        """Position of the ``!`` applied to the call at ``pos``."""
        s = self.stream
        prev = s.previous_non_empty(pos - 1)
        if self._kind(prev) is TokenKind.NS_SEPARATOR:
            prev = s.previous_non_empty(prev - 1)
        if self._kind(prev) is TokenKind.BOOLEAN_NOT:
            return prev
        return None

    # ── ternaries ────────────────────────────────────────────────────

    def find_ternary(
        self, start: int, end: int, allow_empty: bool = False,
    ) -> Optional[int]:
        """
        Top-level ``?`` of a ternary in ``[start, end)``.

        Bracketed groups (call arguments included) are skipped.  A short
        ternary ``?:`` only counts with ``allow_empty``.
        """
        s = self.stream
        i = start
        while i < end:
            t = s[i]
            if t.kind in OPENER_KINDS:
                closer = t.matching_position
                if closer is None:
                    return None
                i = closer + 1
                continue
            if t.kind is TokenKind.INLINE_THEN:
                if not allow_empty:
                    nxt = s.next_non_empty(i + 1)
                    if self._kind(nxt) is TokenKind.INLINE_ELSE:
                        return None
                return i
            i += 1
        return None

    def find_ternary_else(self, then_pos: int, end: int) -> Optional[int]:
        """The ``:`` matching the ``?`` at ``then_pos``."""
        s = self.stream
        depth = 0
        i = then_pos + 1
        while i < end:
            t = s[i]
            if t.kind in OPENER_KINDS:
                closer = t.matching_position
                if closer is None:
                    return None
                i = closer + 1
                continue
            if t.kind is TokenKind.INLINE_THEN:
                depth += 1
            elif t.kind is TokenKind.INLINE_ELSE:
                if depth == 0:
                    return i
                depth -= 1
            i += 1
        return None

    # ── text and content ─────────────────────────────────────────────

    def get_expression_as_string(self, pos: int, end: Optional[int] = None) -> str:
        """Trimmed source text from ``pos`` to ``end`` (default: end of expression)."""
        if end is None:
            end = self.find_end_of_expression(pos)
        if end is None:
            return ""
        return self.stream.tokens_as_string(pos, end).strip()

    def find_variables_in_expression(
        self, start: int, end: Optional[int] = None,
    ) -> List[str]:
        return variables.find_variables_in_expression(self.stream, start, end)

    def find_functions_in_expression(self, start: int, end: int) -> List[str]:
        """Lower-cased names of functions called in ``[start, end)``."""
        s = self.stream
        names: List[str] = []
        for i in range(max(start, 0), min(end, len(s))):
            if s[i].kind is not TokenKind.STRING:
                continue
            nxt = s.next_non_empty(i + 1)
            if self._kind(nxt) is TokenKind.OPEN_PARENTHESIS:
                names.append(s[i].lower)
        return names

    def is_defined_constant(self, pos: int) -> bool:
        """True if the identifier at ``pos`` names a constant, not a call."""
        s = self.stream
        tok = s.get(pos)
        if tok is None or tok.kind not in (TokenKind.STRING, TokenKind.SELF, TokenKind.PARENT):
            return False
        nxt = s.next_non_empty(pos + 1)
        if self._kind(nxt) is TokenKind.DOUBLE_COLON:
            member = s.next_non_empty(nxt + 1)
            if self._kind(member) is not TokenKind.STRING:
                return False
            nxt = s.next_non_empty(member + 1)
        elif tok.kind is not TokenKind.STRING:
            return False
        return self._kind(nxt) not in CALL_FOLLOWERS

    def is_function_call(self, pos: int) -> bool:
        """True if the name at ``pos`` is called (not declared, not a method)."""
        s = self.stream
        tok = s.get(pos)
        if tok is None or tok.kind not in FUNCTION_NAME_KINDS:
            return False
        if self._kind(s.next_non_empty(pos + 1)) is not TokenKind.OPEN_PARENTHESIS:
            return False
        prev = s.previous_non_empty(pos - 1)
        if self._kind(prev) is TokenKind.NS_SEPARATOR:
            prev = s.previous_non_empty(prev - 1)
        return self._kind(prev) not in (
            TokenKind.OBJECT_OPERATOR, TokenKind.NULLSAFE_OBJECT_OPERATOR,
            TokenKind.DOUBLE_COLON, TokenKind.FUNCTION, TokenKind.NEW,
            TokenKind.BITWISE_AND,
        )

    # ── calls ────────────────────────────────────────────────────────

    def call_parentheses(self, pos: int) -> Optional[Tuple[int, int]]:
        """``(opener, closer)`` of the argument list of the call named at ``pos``."""
        s = self.stream
        tok = s.get(pos)
        if tok is None:
            return None
        if tok.kind is TokenKind.OPEN_PARENTHESIS:
            opener: Optional[int] = pos
        else:
            opener = s.next_non_empty(pos + 1)
        if self._kind(opener) is not TokenKind.OPEN_PARENTHESIS:
            return None
        closer = s[opener].parenthesis_closer
        if closer is None:
            return None
        return opener, closer

    def end_of_function_call(self, pos: int) -> Optional[int]:
        """Closing parenthesis of the call named at ``pos``."""
        parens = self.call_parentheses(pos)
        return parens[1] if parens is not None else None

    def get_parameters(self, pos: int) -> List[Parameter]:
        """
        Arguments passed to the call (or ``array(...)``/``[...]``) at ``pos``.

        Top-level commas split arguments; nested groups are atomic.  An
        empty trailing argument is dropped.
        """
        s = self.stream
        tok = s.get(pos)
        if tok is None:
            return []
        if tok.kind is TokenKind.OPEN_SQUARE_BRACKET:
            if tok.bracket_closer is None:
                return []
            opener, closer = pos, tok.bracket_closer
        else:
            parens = self.call_parentheses(pos)
            if parens is None:
                return []
            opener, closer = parens

        params: List[Parameter] = []
        seg_start = opener + 1
        i = seg_start
        while i <= closer:
            t = s[i]
            if i == closer or t.kind is TokenKind.COMMA:
                param = self._make_parameter(len(params) + 1, seg_start, i)
                if param is not None:
                    params.append(param)
                elif i != closer:
                    logger.debug("empty argument at index %d", i)
                seg_start = i + 1
                i += 1
                continue
            if t.kind in OPENER_KINDS and t.matching_position is not None:
                i = t.matching_position + 1
                continue
            i += 1
        return params

    def _make_parameter(self, position: int, start: int, stop: int) -> Optional[Parameter]:
        s = self.stream
        first = s.next_non_empty(start, stop)
        if first is None:
            return None
        last = s.previous_non_empty(stop - 1, start)
        if last is None:
            return None
        name: Optional[str] = None
        if s[first].kind is TokenKind.STRING:
            colon = s.next_non_empty(first + 1, stop)
            if self._kind(colon) is TokenKind.COLON:
                value = s.next_non_empty(colon + 1, stop)
                if value is None:
                    return None
                name = s[first].text
                first = value
        return Parameter(
            position=position,
            start=first,
            end=last,
            raw=s.tokens_as_string(first, last).strip(),
            clean=s.tokens_as_string(first, last, skip_comments=True).strip(),
            name=name,
        )

    def get_parameter(
        self, pos: int, position: int, name: Optional[str] = None,
    ) -> Optional[Parameter]:
        """
        One argument by named label (preferred) or 1-based position.

        Positional lookup counts only unnamed arguments.
        """
        params = self.get_parameters(pos)
        if name is not None:
            for p in params:
                if p.name == name:
                    return p
        positional = [p for p in params if p.name is None]
        if 0 < position <= len(positional):
            return positional[position - 1]
        return None


__all__ = [
    "ExpressionNavigator",
    "Parameter",
    "EXPRESSION_STOPS",
    "STATEMENT_TERMINATORS",
    "CONDITION_KINDS",
    "BRANCH_KINDS",
    "AND_KINDS",
    "OR_KINDS",
    "CALL_FOLLOWERS",
]
