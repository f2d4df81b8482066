"""
wpsniff_shims/escaping.py
═════════════════════════

Escaping rule sets and the escaping classifier.

The classifier decides whether the value of an expression span is
provably escaped.  It has no type information: safety is read off the
shape of the expression, the names of the functions it calls, and the
taint state of the variables it references.

Evaluation order
────────────────

    ┌──────────────────────────────────────────────────────────────────┐
    │ 0. a, b  (echo list)           every argument, steps 1-4 each    │
    │ 1. low-precedence and/or/xor   the value ends before the keyword │
    │ 2. ternary  a ? b : c          safe iff b and c are safe         │
    │ 3. &&, ||, comparisons         boolean result, safe              │
    │ 4. operand walk                every operand must be safe        │
    └──────────────────────────────────────────────────────────────────┘

Operands in step 4:

    literal, constant, isset/empty, !, (int)/(float)/(bool)  safe
    "...$var..." / heredoc            every interpolated variable safe
    escaping_functions(...)           safe
    not_escaping_functions(...)       unsafe
    neutral_functions(...)            every argument safe
    implicit_safe_functions(...)      safe (Verdict.implicit)
    array_map('<escaping>', ...)      safe
    other call                        unsafe
    $var                              safe iff tracked as sanitized
    $obj->method(...)                 safe iff method in escaping_methods
    (...), array(...), [...]          recurse into the group
    anything else                     unsafe

The first unsafe operand short-circuits and is reported as an
:class:`UnsafeFinding`.

Rule sets
─────────

:data:`SQL_RULES` and :data:`OUTPUT_RULES` are the two presets.  Both are
immutable; :meth:`EscapingRuleSet.with_overrides` derives new ones.

License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

from wpsniff_shims.errors import ConfigError
from wpsniff_shims.navigator import ExpressionNavigator, STATEMENT_TERMINATORS
from wpsniff_shims.taint import ScopeKey, TaintTracker, scope_of
from wpsniff_shims.tokens import (
    ASSIGNMENT_KINDS,
    CAST_KINDS,
    EMPTY_KINDS,
    INTERPOLATED_KINDS,
    OBJECT_OPERATOR_KINDS,
    OPENER_KINDS,
    TokenKind,
    TokenStream,
)
from wpsniff_shims.variables import extract_interpolated_variables, render_variable

logger = logging.getLogger(__name__)

MAX_EVALUATION_DEPTH = 32
MAX_UNWIND_DEPTH = 10


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — RULE SETS
# ═════════════════════════════════════════════════════════════════════════

class RuleMode(Enum):
    """Which family of sinks a rule set guards."""
    DATABASE = "database"
    OUTPUT = "output"


# Fields holding function or method names; compared lower-cased.
_NAME_FIELDS = frozenset({
    "escaping_functions", "not_escaping_functions", "neutral_functions",
    "implicit_safe_functions", "safe_methods", "unsafe_methods",
    "escaping_methods",
})

_SET_FIELDS = _NAME_FIELDS | frozenset({
    "warn_only_parameters", "warn_only_queries", "error_always_parameters",
    "suppression_aliases", "safe_variable_prefixes",
})


@dataclass(frozen=True)
class EscapingRuleSet:
    """
    Static classification data for one analysis mode.

    Attributes:
        name: Short identifier (``"sql"``, ``"output"``)
        mode: Sink family the rule set guards
        escaping_functions: Calls whose result is always safe
        not_escaping_functions: Look-alike sanitizers that are unsafe
        neutral_functions: Safe iff every argument is safe
        implicit_safe_functions: Assumed safe
        safe_methods: ``$wpdb`` methods that escape their own arguments
        unsafe_methods: ``$wpdb`` methods whose arguments must be escaped
        escaping_methods: Methods whose result is safe (``prepare``)
        warn_only_parameters: Variable names that downgrade to a warning
        warn_only_queries: SQL prefixes that downgrade to a warning
        error_always_parameters: Superglobals that keep an error an error
        suppression_aliases: Legacy rule names whose annotation
            downgrades to a warning
        safe_variable_prefixes: Variable keys that are always safe
        sink_functions: Plain sink function name → 1-based argument to
            check, 0 for every argument
        default_to_warning: Unsafe findings are warnings unless an
            ``error_always_parameters`` name starts the expression
    """
    name: str
    mode: RuleMode
    escaping_functions: FrozenSet[str] = frozenset()
    not_escaping_functions: FrozenSet[str] = frozenset()
    neutral_functions: FrozenSet[str] = frozenset()
    implicit_safe_functions: FrozenSet[str] = frozenset()
    safe_methods: FrozenSet[str] = frozenset()
    unsafe_methods: FrozenSet[str] = frozenset()
    escaping_methods: FrozenSet[str] = frozenset()
    warn_only_parameters: FrozenSet[str] = frozenset()
    warn_only_queries: FrozenSet[str] = frozenset()
    error_always_parameters: FrozenSet[str] = frozenset()
    suppression_aliases: FrozenSet[str] = frozenset()
    safe_variable_prefixes: FrozenSet[str] = frozenset()
    sink_functions: Mapping[str, int] = field(default_factory=dict, hash=False)
    default_to_warning: bool = False

    def __post_init__(self) -> None:
        for name in _NAME_FIELDS:
            value = getattr(self, name)
            object.__setattr__(self, name, frozenset(v.lower() for v in value))
        object.__setattr__(
            self, "sink_functions",
            MappingProxyType({k.lower(): int(v) for k, v in self.sink_functions.items()}),
        )

    # ── lookups ──────────────────────────────────────────────────────

    def is_escaping_function(self, name: str) -> bool:
        return name.lower() in self.escaping_functions

    def is_not_escaping_function(self, name: str) -> bool:
        return name.lower() in self.not_escaping_functions

    def is_neutral_function(self, name: str) -> bool:
        return name.lower() in self.neutral_functions

    def is_implicit_safe_function(self, name: str) -> bool:
        return name.lower() in self.implicit_safe_functions

    # ── derivation ───────────────────────────────────────────────────

    @classmethod
    def field_names(cls) -> FrozenSet[str]:
        return frozenset(f.name for f in fields(cls)) - {"name", "mode"}

    def with_overrides(self, **overrides: Any) -> "EscapingRuleSet":
        """
        A copy with some fields replaced or edited.

        A list (or set) replaces a field.  A mapping with ``add`` and/or
        ``remove`` lists edits it.  ``sink_functions`` takes a mapping of
        name → argument position, or the same ``add``/``remove`` form
        where ``add`` is a mapping.

        Raises:
            ConfigError: on an unknown field or a malformed value.
        """
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in self.field_names():
                raise ConfigError(f"unknown rule set property '{key}' for '{self.name}'")
            current = getattr(self, key)
            if key in _SET_FIELDS:
                changes[key] = _edit_set(key, current, value)
            elif key == "sink_functions":
                changes[key] = _edit_mapping(key, current, value)
            elif key == "default_to_warning":
                if not isinstance(value, bool):
                    raise ConfigError(f"property '{key}' must be a boolean")
                changes[key] = value
        return replace(self, **changes)


def _edit_set(key: str, current: FrozenSet[str], value: Any) -> FrozenSet[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(v) for v in value)
    if isinstance(value, Mapping):
        extra = set(value) - {"add", "remove"}
        if extra:
            raise ConfigError(f"property '{key}' only accepts 'add' and 'remove', got {sorted(extra)}")
        result: Set[str] = set(current)
        result.update(str(v) for v in value.get("add", ()))
        lowered = key in _NAME_FIELDS
        for v in value.get("remove", ()):
            result.discard(str(v).lower() if lowered else str(v))
        return frozenset(result)
    raise ConfigError(f"property '{key}' must be a list or an add/remove mapping")


def _edit_mapping(key: str, current: Mapping[str, int], value: Any) -> Dict[str, int]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"property '{key}' must be a mapping")
    if set(value) <= {"add", "remove"} and value:
        result = dict(current)
        added = value.get("add", {})
        if not isinstance(added, Mapping):
            raise ConfigError(f"'{key}.add' must map names to argument positions")
        result.update(added)
        for name in value.get("remove", ()):
            result.pop(str(name).lower(), None)
        return result
    return dict(value)


_SHARED_IMPLICIT_SAFE = frozenset({
    "gmdate", "current_time", "mktime", "get_post_types",
    "get_charset_collate", "get_blog_prefix", "get_post_stati", "count",
    "strtotime", "uniqid", "md5", "sha1", "rand", "mt_rand", "max",
})

_SHARED_NEUTRAL = frozenset({
    "implode", "join", "array_keys", "array_values", "array_fill",
    "sprintf", "array_filter",
})

SQL_RULES = EscapingRuleSet(
    name="sql",
    mode=RuleMode.DATABASE,
    escaping_functions=frozenset({
        "absint", "floatval", "intval", "json_encode", "like_escape",
        "wp_json_encode", "isset", "esc_sql", "wp_parse_id_list",
        "bp_esc_like", "sanitize_sql_orderby",
    }),
    not_escaping_functions=frozenset({
        "addslashes", "addcslashes", "sanitize_text_field", "sanitize_title",
        "sanitize_key", "filter_input", "esc_attr",
    }),
    neutral_functions=_SHARED_NEUTRAL | {"sanitize_text_field"},
    implicit_safe_functions=_SHARED_IMPLICIT_SAFE | {"table_name"},
    safe_methods=frozenset({"delete", "replace", "update", "insert"}),
    unsafe_methods=frozenset({"query", "get_var", "get_col", "get_row", "get_results"}),
    escaping_methods=frozenset({"prepare", "_escape"}),
    warn_only_parameters=frozenset({
        "$table", "$table_name", "$table_prefix", "$column_name", "$this",
        "$order_by", "$orderby", "$where", "$wheres", "$join", "$joins",
        "$bp_prefix", "$where_sql", "$join_sql", "$from_sql", "$select_sql",
        "$meta_query_sql",
    }),
    warn_only_queries=frozenset({
        "CREATE TABLE", "SHOW TABLE", "DROP TABLE", "TRUNCATE TABLE",
    }),
    suppression_aliases=frozenset({
        "WordPress.DB.PreparedSQL.NotPrepared",
        "WordPress.DB.PreparedSQL.InterpolatedNotPrepared",
        "WordPress.DB.DirectDatabaseQuery.DirectQuery",
        "DB call",
        "unprepared SQL",
        "PreparedSQLPlaceholders replacement count",
    }),
    safe_variable_prefixes=frozenset({"$wpdb->"}),
    sink_functions={
        "mysql_query": 1,
        "mysqli_query": 2,
        "mysqli_real_query": 2,
        "mysqli_multi_query": 2,
    },
)

OUTPUT_RULES = EscapingRuleSet(
    name="output",
    mode=RuleMode.OUTPUT,
    escaping_functions=frozenset({
        "esc_html", "esc_html__", "esc_html_x", "esc_html_e", "esc_attr",
        "esc_attr__", "esc_attr_x", "esc_attr_e", "esc_url", "esc_js",
        "esc_textarea", "sanitize_text_field", "intval", "absint",
        "json_encode", "wp_json_encode", "htmlspecialchars", "wp_kses",
        "wp_kses_post", "wp_kses_data", "tag_escape",
    }),
    not_escaping_functions=frozenset({
        "addslashes", "addcslashes", "filter_input", "wp_strip_all_tags",
        "esc_url_raw",
    }),
    neutral_functions=_SHARED_NEUTRAL | {
        "__", "_x", "date", "date_i18n", "get_the_date", "get_comment_time",
        "get_comment_date", "comments_number", "get_the_category_list",
        "get_header_image_tag", "get_the_tag_list", "trim",
    },
    implicit_safe_functions=_SHARED_IMPLICIT_SAFE | {
        "get_avatar", "get_search_query", "get_bloginfo", "get_the_id",
        "wp_get_attachment_image", "post_class", "wp_trim_words",
        "paginate_links", "selected", "checked", "get_the_posts_pagination",
        "get_the_author_posts_link", "get_the_password_form",
        "get_the_tag_list", "get_the_post_thumbnail", "get_custom_logo",
        "plugin_dir_url", "admin_url", "get_admin_url",
        "get_field_description", "get_submit_button", "wp_star_rating",
        "get_settings_errors", "_draft_or_post_title", "_admin_search_query",
        "get_media_states", "get_post_states", "wp_readonly",
        "get_post_timestamp", "wp_get_code_editor_settings",
        "get_the_post_type_description", "has_custom_logo",
        "get_language_attributes", "get_the_archive_title", "disabled",
        "get_the_time", "get_post_time", "get_the_modified_time",
        "get_the_modified_date", "get_archives_link", "get_calendar",
        "wp_nav_menu", "get_post_format", "mysql2date", "wp_create_nonce",
    },
    error_always_parameters=frozenset({"$_GET", "$_POST", "$_REQUEST", "$_COOKIE"}),
    suppression_aliases=frozenset({
        "WordPress.Security.EscapeOutput.OutputNotEscaped",
        "WordPress.Security.EscapeOutput.UnsafePrintingFunction",
        "WordPress.XSS.EscapeOutput.OutputNotEscaped",
        "XSS",
    }),
    sink_functions={"printf": 0, "vprintf": 0},
    default_to_warning=True,
)

PRESETS: Dict[str, EscapingRuleSet] = {"sql": SQL_RULES, "output": OUTPUT_RULES}


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — VERDICTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UnsafeFinding:
    """
    The first operand that could not be proven safe.

    ``expression`` is the operand's source text; ``variable`` is its
    canonical key when the operand is a variable reference.
    """
    position: int
    expression: str
    variable: Optional[str] = None


@dataclass(frozen=True)
class Verdict:
    finding: Optional[UnsafeFinding] = None
    implicit: bool = False

    @property
    def is_safe(self) -> bool:
        return self.finding is None


SAFE = Verdict()


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — CLASSIFIER
# ═════════════════════════════════════════════════════════════════════════

_LOW_PRECEDENCE_KINDS = frozenset({
    TokenKind.LOGICAL_AND, TokenKind.LOGICAL_OR, TokenKind.LOGICAL_XOR,
})

_BOOLEAN_RESULT_KINDS = frozenset({
    TokenKind.BOOLEAN_AND, TokenKind.BOOLEAN_OR, TokenKind.IS_EQUAL,
    TokenKind.IS_NOT_EQUAL, TokenKind.IS_IDENTICAL, TokenKind.IS_NOT_IDENTICAL,
    TokenKind.LESS_THAN, TokenKind.GREATER_THAN, TokenKind.IS_SMALLER_OR_EQUAL,
    TokenKind.IS_GREATER_OR_EQUAL, TokenKind.SPACESHIP, TokenKind.INSTANCEOF,
})

_LIST_SEPARATOR_KINDS = frozenset({TokenKind.COMMA})

_SAFE_LITERAL_KINDS = frozenset({
    TokenKind.LNUMBER, TokenKind.DNUMBER, TokenKind.CONSTANT_ENCAPSED_STRING,
    TokenKind.NOWDOC, TokenKind.TRUE, TokenKind.FALSE, TokenKind.NULL,
    TokenKind.START_HEREDOC, TokenKind.END_HEREDOC, TokenKind.START_NOWDOC,
    TokenKind.END_NOWDOC,
})

_CONNECTIVE_KINDS = frozenset({
    TokenKind.STRING_CONCAT, TokenKind.COMMA, TokenKind.PLUS, TokenKind.MINUS,
    TokenKind.MULTIPLY, TokenKind.DIVIDE, TokenKind.MODULUS, TokenKind.POW,
    TokenKind.INC, TokenKind.DEC, TokenKind.COALESCE, TokenKind.DOUBLE_ARROW,
    TokenKind.ASPERAND, TokenKind.BITWISE_AND, TokenKind.BITWISE_OR,
    TokenKind.BITWISE_XOR, TokenKind.BITWISE_NOT, TokenKind.SL, TokenKind.SR,
    TokenKind.NS_SEPARATOR, TokenKind.ELLIPSIS,
})

_SAFE_CAST_KINDS = frozenset({
    TokenKind.INT_CAST, TokenKind.DOUBLE_CAST, TokenKind.BOOL_CAST,
})

_BOOLEAN_CALL_KINDS = frozenset({TokenKind.ISSET, TokenKind.EMPTY})

_UNARY_KINDS = CAST_KINDS | {
    TokenKind.BOOLEAN_NOT, TokenKind.ASPERAND, TokenKind.MINUS,
    TokenKind.PLUS, TokenKind.BITWISE_NOT,
}

_NAME_KINDS = frozenset({
    TokenKind.STRING, TokenKind.SELF, TokenKind.PARENT, TokenKind.STATIC,
})

_QUOTES = "'\""


def strip_quotes(text: str) -> str:
    """``'esc_html'`` → ``esc_html``."""
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in _QUOTES:
        return text[1:-1]
    return text


class EscapingClassifier:
    """
    Decides whether expression spans are provably escaped.

    Read-only with respect to the tracker: evaluating a span never
    changes taint state, so repeated evaluation of the same span gives
    the same verdict.

    All spans are half-open: ``end`` is the index after the last token.
    """

    def __init__(
        self,
        stream: TokenStream,
        navigator: ExpressionNavigator,
        tracker: TaintTracker,
        rules: EscapingRuleSet,
    ) -> None:
        self.stream = stream
        self.nav = navigator
        self.tracker = tracker
        self.rules = rules

    # ── public API ───────────────────────────────────────────────────

    def evaluate(
        self, start: int, end: int, scope: Optional[ScopeKey] = None,
    ) -> Verdict:
        """Verdict for the tokens in ``[start, end)``."""
        end = min(end, len(self.stream))
        first = self.stream.next_non_empty(start, end)
        if first is None:
            return SAFE
        if scope is None:
            scope = scope_of(self.stream, first)
        return self._evaluate(first, end, scope, 0)

    def check_expression(
        self, start: int, end: Optional[int] = None,
    ) -> Optional[UnsafeFinding]:
        """
        First unsafe operand of the expression at ``start``, or ``None``.

        Without ``end`` the expression runs to
        :meth:`ExpressionNavigator.find_end_of_expression`; if that
        cannot be determined nothing is reported.
        """
        if end is None:
            last = self.nav.find_end_of_expression(start)
            if last is None:
                return None
            end = last + 1
        return self.evaluate(start, end).finding

    def is_expression_safe(self, start: int, end: Optional[int] = None) -> bool:
        return self.check_expression(start, end) is None

    def get_unsafe_expression_as_string(self, start: int, end: Optional[int] = None) -> str:
        finding = self.check_expression(start, end)
        return finding.expression if finding is not None else ""

    def unwind_unsafe_assignments(
        self, finding: UnsafeFinding, scope: Optional[ScopeKey] = None,
    ) -> List[str]:
        """
        Assignments that made ``finding``'s variable unsafe, newest first.

        Each line reads ``"<key> assigned unsafely at line <n>: <stmt>"``.
        The chain follows the unsafe operand of every assigned value and
        stops on a cycle, a sanitized or unknown variable, or after
        :data:`MAX_UNWIND_DEPTH` steps.
        """
        if scope is None:
            scope = scope_of(self.stream, finding.position)
        lines: List[str] = []
        visited: Set[str] = set()
        current: Optional[UnsafeFinding] = finding
        for _ in range(MAX_UNWIND_DEPTH):
            if current is None or current.variable is None:
                break
            entry = self.tracker.resolve(scope, current.variable)
            if entry is None or entry.is_sanitized or entry.value_start is None:
                break
            if entry.variable in visited:
                break
            visited.add(entry.variable)
            stmt_end = entry.value_end if entry.value_end is not None else entry.value_start + 1
            # foreach bindings sit after their value
            first = min(entry.position, entry.value_start)
            last = max(entry.position, stmt_end - 1)
            stmt = self.stream.tokens_as_string(first, last, skip_comments=True)
            lines.append(
                f"{entry.variable} assigned unsafely at line {entry.line}: {' '.join(stmt.split())}"
            )
            current = self.evaluate(entry.value_start, stmt_end, scope=entry.scope).finding
        return lines

    # ── evaluation ───────────────────────────────────────────────────

    def _evaluate(self, start: int, end: int, scope: ScopeKey, depth: int) -> Verdict:
        s = self.stream
        first = s.next_non_empty(start, end)
        if first is None:
            return SAFE
        if depth > MAX_EVALUATION_DEPTH:
            logger.debug("evaluation depth exceeded at index %d", first)
            return Verdict(UnsafeFinding(first, self._operand_text(first, end)))

        stop = self._find_top_level(first, end, STATEMENT_TERMINATORS)
        if stop is not None:
            end = stop

        comma = self._find_top_level(first, end, _LIST_SEPARATOR_KINDS)
        if comma is not None:
            # echo a, b: each argument is its own expression
            implicit = False
            segment = first
            while comma is not None:
                verdict = self._evaluate(segment, comma, scope, depth)
                if not verdict.is_safe:
                    return verdict
                implicit = implicit or verdict.implicit
                segment = comma + 1
                comma = self._find_top_level(segment, end, _LIST_SEPARATOR_KINDS)
            verdict = self._evaluate(segment, end, scope, depth)
            if not verdict.is_safe:
                return verdict
            return Verdict(implicit=implicit or verdict.implicit)

        return self._evaluate_expression(first, end, scope, depth)

    def _evaluate_expression(self, first: int, end: int, scope: ScopeKey, depth: int) -> Verdict:
        low = self._find_top_level(first, end, _LOW_PRECEDENCE_KINDS)
        if low is not None:
            end = low

        then_pos = self.nav.find_ternary(first, end, allow_empty=True)
        if then_pos is not None:
            else_pos = self.nav.find_ternary_else(then_pos, end)
            if else_pos is not None:
                return self._evaluate_ternary(first, then_pos, else_pos, end, scope, depth)

        if self._find_top_level(first, end, _BOOLEAN_RESULT_KINDS) is not None:
            return SAFE

        return self._walk(first, end, scope, depth)

    def _evaluate_ternary(
        self, first: int, then_pos: int, else_pos: int, end: int,
        scope: ScopeKey, depth: int,
    ) -> Verdict:
        if self.stream.next_non_empty(then_pos + 1, end) == else_pos:
            then = self._evaluate(first, then_pos, scope, depth + 1)
        else:
            then = self._evaluate(then_pos + 1, else_pos, scope, depth + 1)
        if not then.is_safe:
            return then
        other = self._evaluate(else_pos + 1, end, scope, depth + 1)
        if not other.is_safe:
            return other
        return Verdict(implicit=then.implicit or other.implicit)

    def _find_top_level(self, start: int, end: int, kinds: FrozenSet[TokenKind]) -> Optional[int]:
        s = self.stream
        i = start
        while i < end:
            t = s[i]
            if t.kind in kinds:
                return i
            if t.kind in OPENER_KINDS:
                closer = t.matching_position
                if closer is None:
                    return None
                i = closer + 1
                continue
            i += 1
        return None

    def _walk(self, first: int, end: int, scope: ScopeKey, depth: int) -> Verdict:
        s = self.stream
        implicit = False
        i = first
        while i < end:
            tok = s[i]
            k = tok.kind
            if k in STATEMENT_TERMINATORS:
                break
            if k in EMPTY_KINDS or k in _CONNECTIVE_KINDS or k in _SAFE_LITERAL_KINDS:
                i += 1
                continue

            if k in INTERPOLATED_KINDS:
                for key in extract_interpolated_variables(tok.text):
                    if not self._is_variable_safe(scope, key):
                        return Verdict(UnsafeFinding(i, key, key))
                i += 1
                continue

            if k in _BOOLEAN_CALL_KINDS:
                closer = tok.parenthesis_closer
                i = (closer if closer is not None else i) + 1
                continue

            if k is TokenKind.BOOLEAN_NOT or k in _SAFE_CAST_KINDS:
                i = self._operand_end(i, end) + 1
                continue

            if k in CAST_KINDS:
                i += 1
                continue

            if k in OPENER_KINDS or (k in (TokenKind.ARRAY, TokenKind.LIST) and tok.parenthesis_opener is not None):
                opener = tok.parenthesis_opener if k in (TokenKind.ARRAY, TokenKind.LIST) else i
                closer = s[opener].matching_position
                if closer is None:
                    return SAFE
                verdict = self._evaluate_group(opener, closer, scope, depth)
                if not verdict.is_safe:
                    return verdict
                implicit = implicit or verdict.implicit
                i = closer + 1
                continue

            if k is TokenKind.VARIABLE:
                verdict, i = self._check_variable(i, end, scope, depth)
                if not verdict.is_safe:
                    return verdict
                continue

            if k in _NAME_KINDS:
                verdict, i = self._check_name(i, end, scope, depth)
                if not verdict.is_safe:
                    return verdict
                implicit = implicit or verdict.implicit
                continue

            return Verdict(UnsafeFinding(i, self._operand_text(i, end)))
        return Verdict(implicit=implicit)

    def _evaluate_group(self, opener: int, closer: int, scope: ScopeKey, depth: int) -> Verdict:
        """Every comma-separated element of a bracketed group must be safe."""
        params = self.nav.get_parameters(opener)
        implicit = False
        for p in params:
            verdict = self._evaluate(p.start, p.end + 1, scope, depth + 1)
            if not verdict.is_safe:
                return verdict
            implicit = implicit or verdict.implicit
        return Verdict(implicit=implicit)

    def _check_variable(
        self, pos: int, end: int, scope: ScopeKey, depth: int,
    ) -> Tuple[Verdict, int]:
        s = self.stream
        rendered = render_variable(s, pos)
        if rendered is None:
            return Verdict(UnsafeFinding(pos, s[pos].text)), pos + 1
        key, last = rendered
        after = s.next_non_empty(last + 1, end)
        after_kind = s.kind_at(after)

        if after_kind in ASSIGNMENT_KINDS:
            return SAFE, after + 1

        if after_kind is TokenKind.OPEN_PARENTHESIS:
            stop = self._operand_end(pos, end)
            return Verdict(UnsafeFinding(pos, self._text(pos, stop), key)), stop + 1

        consumed = last
        if after_kind in OBJECT_OPERATOR_KINDS or after_kind is TokenKind.DOUBLE_COLON:
            method, consumed = self._member_chain(last, end)
            if method is not None:
                if method in self.rules.escaping_methods:
                    return SAFE, consumed + 1
                return Verdict(UnsafeFinding(pos, self._text(pos, consumed))), consumed + 1

        if self._is_variable_safe(scope, key):
            return SAFE, consumed + 1
        return Verdict(UnsafeFinding(pos, self._text(pos, consumed), key)), consumed + 1

    def _member_chain(self, last: int, end: int) -> Tuple[Optional[str], int]:
        """Walk ``->a()->b[0]`` after ``last``; return the last method called and the chain end."""
        s = self.stream
        method: Optional[str] = None
        stop = last
        while True:
            nxt = s.next_non_empty(stop + 1, end)
            kind = s.kind_at(nxt)
            if kind is TokenKind.OPEN_SQUARE_BRACKET and s[nxt].bracket_closer is not None:
                stop = s[nxt].bracket_closer
                continue
            if kind not in OBJECT_OPERATOR_KINDS and kind is not TokenKind.DOUBLE_COLON:
                break
            member = s.next_non_empty(nxt + 1, end)
            if member is None:
                break
            stop = member
            call = s.next_non_empty(member + 1, end)
            if s.kind_at(call) is TokenKind.OPEN_PARENTHESIS and s[call].parenthesis_closer is not None:
                method = s[member].lower if s[member].kind is TokenKind.STRING else ""
                stop = s[call].parenthesis_closer
        return method, stop

    def _check_name(
        self, pos: int, end: int, scope: ScopeKey, depth: int,
    ) -> Tuple[Verdict, int]:
        s = self.stream
        nav = self.nav
        tok = s[pos]
        nxt = s.next_non_empty(pos + 1, end)
        nxt_kind = s.kind_at(nxt)

        if nav.is_defined_constant(pos):
            if nxt_kind is TokenKind.DOUBLE_COLON:
                member = s.next_non_empty(nxt + 1)
                return SAFE, (nxt if member is None else member) + 1
            return SAFE, pos + 1

        if nxt_kind is TokenKind.DOUBLE_COLON:
            method, stop = self._member_chain(pos, end)
            if method is not None and method in self.rules.escaping_methods:
                return SAFE, stop + 1
            return Verdict(UnsafeFinding(pos, self._text(pos, stop))), stop + 1

        if nxt_kind is TokenKind.OPEN_SQUARE_BRACKET and s[nxt].bracket_closer is not None:
            return SAFE, s[nxt].bracket_closer + 1

        if nxt_kind is not TokenKind.OPEN_PARENTHESIS or s[nxt].parenthesis_closer is None:
            return Verdict(UnsafeFinding(pos, tok.text)), pos + 1

        closer = s[nxt].parenthesis_closer
        stop = closer
        after = s.next_non_empty(closer + 1, end)
        if s.kind_at(after) in OBJECT_OPERATOR_KINDS:
            method, stop = self._member_chain(closer, end)
            if method is not None and method in self.rules.escaping_methods:
                return SAFE, stop + 1
            return Verdict(UnsafeFinding(pos, self._text(pos, stop))), stop + 1

        verdict = self._classify_call(tok.lower, pos, nxt, closer, scope, depth)
        return verdict, stop + 1

    def _classify_call(
        self, name: str, pos: int, opener: int, closer: int,
        scope: ScopeKey, depth: int,
    ) -> Verdict:
        rules = self.rules
        if name in rules.escaping_functions:
            return SAFE
        if name in rules.not_escaping_functions:
            return Verdict(UnsafeFinding(pos, self._text(pos, closer)))
        if name in rules.neutral_functions:
            verdict = self._evaluate_group(opener, closer, scope, depth)
            return verdict
        if name in rules.implicit_safe_functions:
            return Verdict(implicit=True)
        if name == "array_map":
            callback = self.nav.get_parameter(pos, 1, "callback")
            if callback is not None and strip_quotes(callback.clean).lower() in rules.escaping_functions:
                return SAFE
        return Verdict(UnsafeFinding(pos, self._text(pos, closer)))

    def _is_variable_safe(self, scope: ScopeKey, key: str) -> bool:
        if any(key.startswith(prefix) for prefix in self.rules.safe_variable_prefixes):
            return True
        return self.tracker.is_sanitized(scope, key)

    # ── spans ────────────────────────────────────────────────────────

    def _operand_end(self, pos: int, end: int) -> int:
        """Last token of the primary expression at (or after) ``pos``."""
        s = self.stream
        tok = s[pos]
        k = tok.kind
        if k in _UNARY_KINDS:
            nxt = s.next_non_empty(pos + 1, end)
            return pos if nxt is None else self._operand_end(nxt, end)
        if k in OPENER_KINDS:
            closer = tok.matching_position
            return pos if closer is None else closer
        if tok.parenthesis_closer is not None and tok.parenthesis_owner == pos:
            return tok.parenthesis_closer
        if k is TokenKind.VARIABLE:
            rendered = render_variable(s, pos)
            last = pos if rendered is None else rendered[1]
            nxt = s.next_non_empty(last + 1, end)
            if s.kind_at(nxt) is TokenKind.OPEN_PARENTHESIS and s[nxt].parenthesis_closer is not None:
                last = s[nxt].parenthesis_closer
            return self._member_chain(last, end)[1]
        if k in _NAME_KINDS:
            nxt = s.next_non_empty(pos + 1, end)
            if s.kind_at(nxt) is TokenKind.OPEN_PARENTHESIS and s[nxt].parenthesis_closer is not None:
                return self._member_chain(s[nxt].parenthesis_closer, end)[1]
            if s.kind_at(nxt) is TokenKind.DOUBLE_COLON:
                return self._member_chain(pos, end)[1]
        return pos

    def _text(self, start: int, stop: int) -> str:
        return self.stream.tokens_as_string(start, stop, skip_comments=True).strip()

    def _operand_text(self, pos: int, end: int) -> str:
        return self._text(pos, min(self._operand_end(pos, end), end - 1))


__all__ = [
    "RuleMode",
    "EscapingRuleSet",
    "SQL_RULES",
    "OUTPUT_RULES",
    "PRESETS",
    "UnsafeFinding",
    "Verdict",
    "EscapingClassifier",
    "strip_quotes",
    "MAX_EVALUATION_DEPTH",
    "MAX_UNWIND_DEPTH",
]
