"""
wpsniff_shims/sinks.py
══════════════════════

Sink detection: tokens whose operand must be escaped.

    ┌──────────────┬───────────────────────────────────────────────────┐
    │ rule mode    │ sinks                                             │
    ├──────────────┼───────────────────────────────────────────────────┤
    │ DATABASE     │ $wpdb->{unsafe_method}(...)   first argument      │
    │              │ sink_functions(...)           configured argument │
    │ OUTPUT       │ echo, print, <?=              rest of statement   │
    │              │ exit(...), die(...)           rest of statement   │
    │              │ sink_functions(...)           configured argument │
    └──────────────┴───────────────────────────────────────────────────┘

A ``Sink`` only says where to look; the escaping classifier decides
whether what it finds there is safe.

License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from wpsniff_shims.escaping import EscapingRuleSet, RuleMode
from wpsniff_shims.navigator import ExpressionNavigator
from wpsniff_shims.tokens import OBJECT_OPERATOR_KINDS, TokenKind, TokenStream

logger = logging.getLogger(__name__)

WPDB_VARIABLE = "$wpdb"


class SinkKind(Enum):
    METHOD = "method"            # $wpdb->query(...)
    FUNCTION = "function"        # mysqli_query(...), printf(...)
    STATEMENT = "statement"      # echo ..., print ..., <?= ...
    EXIT = "exit"                # exit(...), die(...)


@dataclass(frozen=True)
class Sink:
    """
    A detected sink.

    Attributes:
        kind: Sink shape
        position: Index of the sink token (method name, function name
            or keyword)
        name: Method, function or keyword name as written
        object_text: Receiver of a method sink (``$wpdb``), else empty
        param_index: 1-based argument to check; 0 means every argument,
            ``None`` means the rest of the statement
    """
    kind: SinkKind
    position: int
    name: str
    object_text: str = ""
    param_index: Optional[int] = None


class SinkDetector:
    """Recognises sinks for one rule set over one stream."""

    def __init__(
        self,
        stream: TokenStream,
        navigator: ExpressionNavigator,
        rules: EscapingRuleSet,
    ) -> None:
        self.stream = stream
        self.nav = navigator
        self.rules = rules

    def needs_escaping(self, pos: int) -> Optional[Sink]:
        """The sink at ``pos``, or ``None``."""
        tok = self.stream.get(pos)
        if tok is None:
            return None
        if tok.kind is TokenKind.STRING:
            sink = self._method_sink(pos) or self._function_sink(pos)
        elif self.rules.mode is RuleMode.OUTPUT:
            sink = self._output_statement_sink(pos)
        else:
            sink = None
        if sink is not None:
            logger.debug("sink %s (%s) at line %d", sink.name, sink.kind.value, tok.line)
        return sink

    def _method_sink(self, pos: int) -> Optional[Sink]:
        s = self.stream
        name = s[pos].lower
        if name not in self.rules.unsafe_methods:
            return None
        op = s.previous_non_empty(pos - 1)
        if s.kind_at(op) not in OBJECT_OPERATOR_KINDS:
            return None
        receiver = s.previous_non_empty(op - 1)
        if s.kind_at(receiver) is not TokenKind.VARIABLE or s[receiver].text != WPDB_VARIABLE:
            return None
        if s.kind_at(s.next_non_empty(pos + 1)) is not TokenKind.OPEN_PARENTHESIS:
            return None
        return Sink(SinkKind.METHOD, pos, s[pos].text, s[receiver].text, 1)

    def _function_sink(self, pos: int) -> Optional[Sink]:
        s = self.stream
        index = self.rules.sink_functions.get(s[pos].lower)
        if index is None or not self.nav.is_function_call(pos):
            return None
        return Sink(SinkKind.FUNCTION, pos, s[pos].text, "", index)

    def _output_statement_sink(self, pos: int) -> Optional[Sink]:
        s = self.stream
        tok = s[pos]
        if tok.kind in (TokenKind.ECHO, TokenKind.PRINT, TokenKind.OPEN_TAG_WITH_ECHO):
            return Sink(SinkKind.STATEMENT, pos, tok.text.strip())
        if tok.kind is TokenKind.EXIT:
            parens = self.nav.call_parentheses(pos)
            if parens is None:
                return None
            if s.next_non_empty(parens[0] + 1, parens[1]) is None:
                return None
            return Sink(SinkKind.EXIT, pos, tok.text)
        return None


__all__ = ["SinkKind", "Sink", "SinkDetector", "WPDB_VARIABLE"]
