"""
wpsniff_shims/security_checkers.py
══════════════════════════════════

Security checkers built on the escaping engine.

    ┌──────────────────────────────┬──────────────────────────────────────┐
    │ checker                      │ codes                                │
    ├──────────────────────────────┼──────────────────────────────────────┤
    │ Security.DirectDB            │ UnescapedDBParameter                 │
    │ Security.OutputEscaping      │ UnescapedOutputParameter             │
    │ Security.VerifyNonce         │ UnsafeVerifyNonceNegatedAnd          │
    │                              │ UnsafeVerifyNonceElse                │
    │                              │ UnsafeVerifyNonceStatement           │
    │ Security.SettingSanitization │ RegisterSettingMissing               │
    │                              │ RegisterSettingInvalid               │
    └──────────────────────────────┴──────────────────────────────────────┘

Per-token dispatch of the escaping checkers
───────────────────────────────────────────

    $var = <expr>;           classify <expr>, mark $var
    foreach (<expr> as $v)   classify <expr>, mark $v
    array_walk($a, 'esc')    mark $a sanitized when 'esc' escapes
    <sink>                   classify the sink's operand, report once

The taint tracker lives on the checker instance, and the runner builds a
fresh instance for every file.

License: MIT
"""

from __future__ import annotations

import logging
import re
from typing import ClassVar, FrozenSet, List, Optional

from wpsniff_shims.checkers import (
    CheckerContext,
    DiagnosticSeverity,
    TokenChecker,
    register_checker,
)
from wpsniff_shims.escaping import (
    OUTPUT_RULES,
    SQL_RULES,
    EscapingClassifier,
    EscapingRuleSet,
    RuleMode,
    UnsafeFinding,
    strip_quotes,
)
from wpsniff_shims.navigator import ExpressionNavigator, Parameter
from wpsniff_shims.sinks import Sink, SinkDetector, SinkKind
from wpsniff_shims.taint import TaintTracker, scope_of
from wpsniff_shims.tokens import FUNCTION_NAME_KINDS, TokenKind
from wpsniff_shims.variables import variable_key

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — ESCAPING CHECKERS
# ═════════════════════════════════════════════════════════════════════════

_DECLARATION_PAREN_OWNERS = frozenset({
    TokenKind.FUNCTION, TokenKind.CLOSURE, TokenKind.FN,
})

# Assignments that keep part of the previous value.
_PARTIAL_ASSIGNMENTS = frozenset({
    TokenKind.CONCAT_EQUAL, TokenKind.COALESCE_EQUAL,
})


class EscapingChecker(TokenChecker):
    """
    Reports unescaped values reaching the sinks of one rule set.

    Subclasses pick the rule set and the rule code.  Any rule-set field
    can be overridden per checker from a ruleset file's ``properties``.
    """

    base_rules: ClassVar[EscapingRuleSet]
    rule_code: ClassVar[str]
    properties: ClassVar[FrozenSet[str]] = EscapingRuleSet.field_names()
    default_severity = DiagnosticSeverity.ERROR

    def configure(self, ctx: CheckerContext) -> None:
        overrides = ctx.properties_for(self.name)
        self.rules = self.base_rules.with_overrides(**overrides) if overrides else self.base_rules
        self.nav = ExpressionNavigator(ctx.stream)
        self.tracker = TaintTracker()
        self.classifier = EscapingClassifier(ctx.stream, self.nav, self.tracker, self.rules)
        self.sinks = SinkDetector(ctx.stream, self.nav, self.rules)

    def register(self) -> FrozenSet[TokenKind]:
        kinds = {TokenKind.VARIABLE, TokenKind.STRING, TokenKind.FOREACH}
        if self.rules.mode is RuleMode.OUTPUT:
            kinds |= {
                TokenKind.ECHO, TokenKind.PRINT, TokenKind.EXIT,
                TokenKind.OPEN_TAG_WITH_ECHO,
            }
        return frozenset(kinds)

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        tok = ctx.stream[pos]

        if tok.kind is TokenKind.VARIABLE and self.nav.is_assignment(pos):
            self._track_assignment(ctx, pos)
            return None

        if tok.kind is TokenKind.FOREACH:
            self._track_foreach(ctx, pos)
            return None

        if tok.kind is TokenKind.STRING and tok.lower == "array_walk":
            self._track_array_walk(ctx, pos)

        sink = self.sinks.needs_escaping(pos)
        if sink is not None:
            self._check_sink(ctx, sink)
        return None

    # ── state updates ────────────────────────────────────────────────

    def _is_parameter_default(self, ctx: CheckerContext, pos: int) -> bool:
        nested = ctx.stream[pos].nested_parenthesis
        if not nested:
            return False
        owner = ctx.stream[nested[-1][0]].parenthesis_owner
        return owner is not None and ctx.stream[owner].kind in _DECLARATION_PAREN_OWNERS

    def _track_assignment(self, ctx: CheckerContext, pos: int) -> None:
        s = ctx.stream
        if self._is_parameter_default(ctx, pos):
            return
        op = self.nav.find_assignment_operator(pos)
        key = variable_key(s, pos)
        if op is None or key is None:
            return
        last = self.nav.find_end_of_expression(op + 1)
        if last is None:
            logger.debug("cannot delimit value assigned to %s at line %d", key, s[pos].line)
            return
        scope = scope_of(s, pos)
        verdict = self.classifier.evaluate(op + 1, last + 1, scope)
        if verdict.is_safe:
            if s[op].kind not in _PARTIAL_ASSIGNMENTS:
                self.tracker.mark_sanitized(scope, key, pos, op + 1, last + 1, s[pos].line)
        else:
            self.tracker.mark_unsanitized(scope, key, pos, op + 1, last + 1, s[pos].line)

    def _track_foreach(self, ctx: CheckerContext, pos: int) -> None:
        s = ctx.stream
        tok = s[pos]
        if tok.parenthesis_opener is None or tok.parenthesis_closer is None:
            return
        opener, closer = tok.parenthesis_opener, tok.parenthesis_closer
        as_pos = s.find_next(TokenKind.AS, opener + 1, closer)
        if as_pos is None:
            return
        target = s.next_non_empty(as_pos + 1, closer)
        if s.kind_at(target) is TokenKind.BITWISE_AND:
            target = s.next_non_empty(target + 1, closer)
        if target is None:
            return
        after = s.next_non_empty(target + 1, closer)
        if s.kind_at(after) is TokenKind.DOUBLE_ARROW:
            target = s.next_non_empty(after + 1, closer)
            if s.kind_at(target) is TokenKind.BITWISE_AND:
                target = s.next_non_empty(target + 1, closer)
        if target is None or s[target].kind is not TokenKind.VARIABLE:
            return
        key = variable_key(s, target)
        if key is None:
            return
        scope = scope_of(s, target)
        if self.classifier.evaluate(opener + 1, as_pos, scope).is_safe:
            self.tracker.mark_sanitized(scope, key, target, opener + 1, as_pos, s[target].line)
        else:
            self.tracker.mark_unsanitized(scope, key, target, opener + 1, as_pos, s[target].line)

    def _track_array_walk(self, ctx: CheckerContext, pos: int) -> None:
        s = ctx.stream
        if not self.nav.is_function_call(pos):
            return
        params = self.nav.get_parameters(pos)
        if len(params) < 2:
            return
        callback = strip_quotes(params[1].clean).lower()
        if callback not in self.rules.escaping_functions:
            return
        target = params[0].start
        if s[target].kind is not TokenKind.VARIABLE:
            return
        key = variable_key(s, target)
        if key is not None:
            self.tracker.mark_sanitized(scope_of(s, target), key, target, line=s[target].line)

    # ── sinks ────────────────────────────────────────────────────────

    def _sink_parameters(self, sink: Sink) -> List[Parameter]:
        if sink.param_index == 0:
            return self.nav.get_parameters(sink.position)
        param = self.nav.get_parameter(sink.position, sink.param_index or 1)
        return [param] if param is not None else []

    def _check_sink(self, ctx: CheckerContext, sink: Sink) -> None:
        if sink.kind in (SinkKind.METHOD, SinkKind.FUNCTION):
            for param in self._sink_parameters(sink):
                finding = self.classifier.check_expression(param.start, param.end + 1)
                if finding is not None:
                    self._report(ctx, sink, finding, param)
                    return
            return
        end = self.nav.find_statement_terminator(sink.position + 1)
        finding = self.classifier.check_expression(sink.position + 1, end)
        if finding is not None:
            self._report(ctx, sink, finding, None)

    def _report(
        self,
        ctx: CheckerContext,
        sink: Sink,
        finding: UnsafeFinding,
        param: Optional[Parameter],
    ) -> None:
        trail = self.classifier.unwind_unsafe_assignments(finding)
        extra = ("\n" + "\n".join(trail)).rstrip()
        warning = (
            self.is_warning_parameter(finding.expression)
            or self.is_suppressed_sink(ctx, sink)
            or (param is not None and self.is_warning_expression(param.clean))
        )
        if sink.kind is SinkKind.METHOD and param is not None:
            message = "Unescaped parameter %s used in %s->%s(%s)%s"
            args = [finding.expression, sink.object_text, sink.name, param.clean, extra]
        elif param is not None:
            message = "Unescaped parameter %s used in %s(%s)%s"
            args = [finding.expression, sink.name, param.clean, extra]
        else:
            message = "Unescaped parameter %s used in %s%s"
            args = [finding.expression, sink.name, extra]
        self._emit(
            ctx, self.rule_code, message, sink.position, args,
            severity=DiagnosticSeverity.WARNING if warning else DiagnosticSeverity.ERROR,
            extra=extra.strip(),
            evidence={
                "unsafe_position": finding.position,
                "variable": finding.variable,
                "trail": trail,
            },
        )

    # ── warning tie-break ────────────────────────────────────────────

    def is_warning_parameter(self, expression: str) -> bool:
        """True if the unsafe expression should only produce a warning."""
        rules = self.rules
        if any(expression.startswith(name) for name in rules.error_always_parameters):
            return False
        if rules.default_to_warning:
            return True
        for name in rules.warn_only_parameters:
            if re.search(r"(?<![\w$])" + re.escape(name) + r"(?!\w)", expression):
                return True
        return False

    def is_warning_expression(self, sql: str) -> bool:
        """True if the query text starts with a warn-only SQL prefix."""
        text = sql.lstrip(_QUOTE_CHARS).upper()
        return any(text.startswith(q.upper()) for q in self.rules.warn_only_queries)

    def is_suppressed_sink(self, ctx: CheckerContext, sink: Sink) -> bool:
        """True if any line of the sink call carries a legacy alias annotation."""
        s = ctx.stream
        if sink.kind is SinkKind.STATEMENT or sink.kind is SinkKind.EXIT:
            end = self.nav.find_statement_terminator(sink.position + 1)
        else:
            end = self.nav.end_of_function_call(sink.position)
        if end is None or end < sink.position:
            end = sink.position
        first = s[sink.position].line
        last = s[min(end, len(s) - 1)].end_line
        aliases = self.rules.suppression_aliases
        return any(s.is_ignored_line(line, aliases) for line in range(first, last + 1))


_QUOTE_CHARS = "'\""


@register_checker
class DirectDBChecker(EscapingChecker):
    name = "Security.DirectDB"
    description = "Unescaped values passed to $wpdb query methods and raw query functions"
    error_ids = frozenset({"UnescapedDBParameter"})
    base_rules = SQL_RULES
    rule_code = "UnescapedDBParameter"


@register_checker
class OutputEscapingChecker(EscapingChecker):
    name = "Security.OutputEscaping"
    description = "Unescaped values passed to echo, print, exit and printf"
    error_ids = frozenset({"UnescapedOutputParameter"})
    base_rules = OUTPUT_RULES
    rule_code = "UnescapedOutputParameter"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — NONCE VERIFICATION
# ═════════════════════════════════════════════════════════════════════════

ERROR_TERMINATORS: FrozenSet[str] = frozenset({
    "exit", "die", "return", "wp_die", "wp_send_json_error", "wp_nonce_ays",
})

_TERMINATOR_KINDS = FUNCTION_NAME_KINDS | {TokenKind.RETURN}


@register_checker
class VerifyNonceChecker(TokenChecker):
    """
    Flags ``wp_verify_nonce()`` calls whose result cannot stop the request.

    ``wp_verify_nonce()`` only returns a value; unlike
    ``check_admin_referer()`` it does not die.  A call is unsafe when:

      * it is negated, ANDed with another condition, and the guarded
        block terminates (``if ( $x && ! wp_verify_nonce() ) { die; }``
        lets the request through whenever ``$x`` is false);
      * it is ORed with another condition and the ``else`` block
        terminates;
      * it is a bare statement whose result is discarded.
    """

    name = "Security.VerifyNonce"
    description = "Unsafe use of wp_verify_nonce()"
    error_ids = frozenset({
        "UnsafeVerifyNonceNegatedAnd",
        "UnsafeVerifyNonceElse",
        "UnsafeVerifyNonceStatement",
    })
    default_severity = DiagnosticSeverity.ERROR

    def configure(self, ctx: CheckerContext) -> None:
        self.nav = ExpressionNavigator(ctx.stream)

    def register(self) -> FrozenSet[TokenKind]:
        return frozenset({TokenKind.STRING})

    def scope_contains_error_terminator(self, ctx: CheckerContext, start: int, end: int) -> Optional[int]:
        s = ctx.stream
        i = s.find_next(_TERMINATOR_KINDS, start, end + 1)
        while i is not None:
            if s[i].lower in ERROR_TERMINATORS:
                return i
            i = s.find_next(_TERMINATOR_KINDS, i + 1, end + 1)
        return None

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        s = ctx.stream
        nav = self.nav
        if s[pos].lower != "wp_verify_nonce" or not nav.is_function_call(pos):
            return None

        if_pos = nav.is_conditional_expression(pos)
        if if_pos is None:
            if not nav.is_return_statement(pos) and not nav.is_assignment_statement(pos):
                self._emit(
                    ctx, "UnsafeVerifyNonceStatement",
                    "Unconditional call to wp_verify_nonce(). Consider using check_admin_referer() instead.",
                    pos,
                )
            return None

        condition = nav.get_expression_from_condition(if_pos)
        if condition is None:
            return None
        expr_start, expr_end = condition

        if nav.expression_is_negated(pos) is not None:
            scope = nav.get_scope_from_condition(if_pos)
            and_pos = nav.expression_contains_and(expr_start, expr_end)
            if and_pos is None or scope is None:
                return None
            if self.scope_contains_error_terminator(ctx, *scope) is None:
                return None
            if and_pos > pos:
                return None
            if "wp_verify_nonce" in nav.find_functions_in_expression(expr_start, and_pos):
                return None
            self._emit(
                ctx, "UnsafeVerifyNonceNegatedAnd",
                "Unsafe use of wp_verify_nonce() in expression %s.",
                pos, [s.tokens_as_string(expr_start, expr_end)],
            )
            return None

        else_pos = nav.has_else(if_pos)
        if else_pos is None:
            return None
        scope = nav.get_scope_from_condition(else_pos)
        or_pos = nav.expression_contains_or(expr_start, expr_end)
        if or_pos is None or scope is None:
            return None
        if self.scope_contains_error_terminator(ctx, *scope) is None:
            return None
        if or_pos < pos:
            others = nav.find_functions_in_expression(expr_start, or_pos)
        else:
            others = nav.find_functions_in_expression(or_pos, expr_end)
        if "wp_verify_nonce" in others:
            return None
        self._emit(
            ctx, "UnsafeVerifyNonceElse",
            "Possibly unsafe use of wp_verify_nonce() in expression %s.",
            pos, [s.tokens_as_string(expr_start, expr_end)],
        )
        return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — SETTING SANITIZATION
# ═════════════════════════════════════════════════════════════════════════

_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")


@register_checker
class SettingSanitizationChecker(TokenChecker):
    """``register_setting()`` must be given a sanitization callback."""

    name = "Security.SettingSanitization"
    description = "register_setting() without a usable sanitization argument"
    error_ids = frozenset({"RegisterSettingMissing", "RegisterSettingInvalid"})
    default_severity = DiagnosticSeverity.ERROR

    target_functions: ClassVar[FrozenSet[str]] = frozenset({"register_setting"})

    def configure(self, ctx: CheckerContext) -> None:
        self.nav = ExpressionNavigator(ctx.stream)

    def register(self) -> FrozenSet[TokenKind]:
        return frozenset({TokenKind.STRING})

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        tok = ctx.stream[pos]
        if tok.lower not in self.target_functions or not self.nav.is_function_call(pos):
            return None
        third = self.nav.get_parameter(pos, 3, "args")
        if third is None:
            self._emit(ctx, "RegisterSettingMissing", "Sanitization missing for %s().", pos, [tok.text])
            return None
        content = strip_quotes(third.clean)
        if _NUMERIC_RE.match(content) or content.lower() in ("true", "false"):
            self._emit(
                ctx, "RegisterSettingInvalid",
                "Invalid sanitization in third parameter of %s().", pos, [tok.text],
            )
        return None


__all__ = [
    "EscapingChecker",
    "DirectDBChecker",
    "OutputEscapingChecker",
    "VerifyNonceChecker",
    "SettingSanitizationChecker",
    "ERROR_TERMINATORS",
]
