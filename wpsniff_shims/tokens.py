"""
wpsniff_shims/tokens.py
═══════════════════════

Token model and indexed token-stream accessor.

Every analysis in the package works over a :class:`TokenStream`: an
immutable, indexed sequence of :class:`Token` records for one PHP file.
Each token carries its kind, raw text and source position plus the
structural metadata the engine needs to navigate without an AST:

  ┌──────────────────────────────────────────────────────────────────┐
  │  if ( $a ) { echo $b ; }                                         │
  │  │  │    │ │           │                                         │
  │  │  └────┘ │           │   parenthesis_opener / _closer / _owner │
  │  │         └───────────┘   scope_opener / _closer / _condition   │
  │  └─────────────────────── owner of both groups                   │
  │                                                                  │
  │  tokens inside the braces carry  conditions = ((0, IF),)         │
  │  tokens inside the parens carry  nested_parenthesis = ((2, 6),)  │
  └──────────────────────────────────────────────────────────────────┘

External tokenizer type names ("T_VARIABLE", "T_OPEN_SHORT_ARRAY", ...)
are mapped into the closed :class:`TokenKind` enum exactly once, at
ingestion, by :meth:`TokenKind.from_external`.  The structure linker in
PART 3 recomputes all grouping metadata from the token sequence, so the
reference lexer and externally produced records end up identical.

Positions are plain integer indices.  ``None`` is the "not found"
sentinel; position 0 is valid, so callers compare with ``is None``.

License: MIT
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum, auto
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — TOKEN KINDS
# ═════════════════════════════════════════════════════════════════════════

class TokenKind(Enum):
    """Closed set of PHP token kinds, named after the tokenizer's T_* codes."""

    # Markup
    OPEN_TAG = auto()               # <?php
    OPEN_TAG_WITH_ECHO = auto()     # <?=
    CLOSE_TAG = auto()              # ?>
    INLINE_HTML = auto()

    # Trivia
    WHITESPACE = auto()
    COMMENT = auto()
    DOC_COMMENT = auto()
    ATTRIBUTE = auto()              # #[...]

    # Data
    VARIABLE = auto()               # $name
    DOLLAR = auto()                 # $ of $$name / ${expr}
    STRING = auto()                 # bare identifier
    LNUMBER = auto()
    DNUMBER = auto()
    CONSTANT_ENCAPSED_STRING = auto()
    DOUBLE_QUOTED_STRING = auto()   # "..." with interpolation
    START_HEREDOC = auto()
    HEREDOC = auto()
    END_HEREDOC = auto()
    START_NOWDOC = auto()
    NOWDOC = auto()
    END_NOWDOC = auto()
    BACKTICK = auto()               # `shell`
    TRUE = auto()
    FALSE = auto()
    NULL = auto()

    # Brackets
    OPEN_PARENTHESIS = auto()
    CLOSE_PARENTHESIS = auto()
    OPEN_SQUARE_BRACKET = auto()
    CLOSE_SQUARE_BRACKET = auto()
    OPEN_CURLY_BRACKET = auto()
    CLOSE_CURLY_BRACKET = auto()

    # Punctuation
    SEMICOLON = auto()
    COMMA = auto()
    OBJECT_OPERATOR = auto()        # ->
    NULLSAFE_OBJECT_OPERATOR = auto()  # ?->
    DOUBLE_COLON = auto()           # ::
    DOUBLE_ARROW = auto()           # =>
    NS_SEPARATOR = auto()           # \
    ELLIPSIS = auto()
    COLON = auto()
    NULLABLE = auto()               # ?Type
    INLINE_THEN = auto()            # ternary ?
    INLINE_ELSE = auto()            # ternary :
    ASPERAND = auto()               # @

    # Assignment
    EQUAL = auto()
    PLUS_EQUAL = auto()
    MINUS_EQUAL = auto()
    MUL_EQUAL = auto()
    DIV_EQUAL = auto()
    CONCAT_EQUAL = auto()
    MOD_EQUAL = auto()
    POW_EQUAL = auto()
    AND_EQUAL = auto()
    OR_EQUAL = auto()
    XOR_EQUAL = auto()
    SL_EQUAL = auto()
    SR_EQUAL = auto()
    COALESCE_EQUAL = auto()

    # Operators
    STRING_CONCAT = auto()
    PLUS = auto()
    MINUS = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    MODULUS = auto()
    POW = auto()
    INC = auto()
    DEC = auto()
    BITWISE_AND = auto()
    BITWISE_OR = auto()
    BITWISE_XOR = auto()
    BITWISE_NOT = auto()
    SL = auto()
    SR = auto()
    BOOLEAN_AND = auto()
    BOOLEAN_OR = auto()
    BOOLEAN_NOT = auto()
    LOGICAL_AND = auto()
    LOGICAL_OR = auto()
    LOGICAL_XOR = auto()
    IS_EQUAL = auto()
    IS_NOT_EQUAL = auto()
    IS_IDENTICAL = auto()
    IS_NOT_IDENTICAL = auto()
    LESS_THAN = auto()
    GREATER_THAN = auto()
    IS_SMALLER_OR_EQUAL = auto()
    IS_GREATER_OR_EQUAL = auto()
    SPACESHIP = auto()
    COALESCE = auto()
    INSTANCEOF = auto()

    # Casts
    INT_CAST = auto()
    DOUBLE_CAST = auto()
    STRING_CAST = auto()
    ARRAY_CAST = auto()
    OBJECT_CAST = auto()
    BOOL_CAST = auto()
    UNSET_CAST = auto()

    # Keywords
    IF = auto()
    ELSEIF = auto()
    ELSE = auto()
    ENDIF = auto()
    FOREACH = auto()
    ENDFOREACH = auto()
    FOR = auto()
    ENDFOR = auto()
    WHILE = auto()
    ENDWHILE = auto()
    DO = auto()
    SWITCH = auto()
    ENDSWITCH = auto()
    CASE = auto()
    DEFAULT = auto()
    BREAK = auto()
    CONTINUE = auto()
    RETURN = auto()
    MATCH = auto()
    TRY = auto()
    CATCH = auto()
    FINALLY = auto()
    THROW = auto()
    FUNCTION = auto()
    CLOSURE = auto()                # anonymous function
    FN = auto()                     # arrow function
    USE = auto()
    CLASS = auto()
    INTERFACE = auto()
    TRAIT = auto()
    EXTENDS = auto()
    IMPLEMENTS = auto()
    ABSTRACT = auto()
    FINAL = auto()
    PUBLIC = auto()
    PROTECTED = auto()
    PRIVATE = auto()
    STATIC = auto()
    VAR = auto()
    READONLY = auto()
    CONST = auto()
    NEW = auto()
    CLONE = auto()
    ECHO = auto()
    PRINT = auto()
    EXIT = auto()                   # exit / die
    ISSET = auto()
    EMPTY = auto()
    UNSET = auto()
    EVAL = auto()
    INCLUDE = auto()
    INCLUDE_ONCE = auto()
    REQUIRE = auto()
    REQUIRE_ONCE = auto()
    GLOBAL = auto()
    NAMESPACE = auto()
    AS = auto()
    ARRAY = auto()
    LIST = auto()
    SELF = auto()
    PARENT = auto()
    DECLARE = auto()
    ENDDECLARE = auto()
    GOTO = auto()
    YIELD = auto()
    INSTEADOF = auto()

    UNKNOWN = auto()

    @classmethod
    def from_external(cls, type_name: str) -> "TokenKind":
        """
        Map an external tokenizer type name to a kind.

        Accepts names with or without the ``T_`` prefix.  Unknown names
        map to :attr:`UNKNOWN`.
        """
        name = type_name.upper()
        if name.startswith("T_"):
            name = name[2:]
        alias = _EXTERNAL_ALIASES.get(name)
        if alias is not None:
            return alias
        member = cls.__members__.get(name)
        if member is None:
            logger.debug("unmapped external token type %r", type_name)
            return cls.UNKNOWN
        return member


_EXTERNAL_ALIASES: Dict[str, TokenKind] = {
    "OPEN_SHORT_ARRAY": TokenKind.OPEN_SQUARE_BRACKET,
    "CLOSE_SHORT_ARRAY": TokenKind.CLOSE_SQUARE_BRACKET,
    "PAAMAYIM_NEKUDOTAYIM": TokenKind.DOUBLE_COLON,
    "ARRAY_HINT": TokenKind.STRING,
    "NAME_QUALIFIED": TokenKind.STRING,
    "NAME_FULLY_QUALIFIED": TokenKind.STRING,
    "NAME_RELATIVE": TokenKind.STRING,
    "DOC_COMMENT_OPEN_TAG": TokenKind.DOC_COMMENT,
    "DOC_COMMENT_CLOSE_TAG": TokenKind.DOC_COMMENT,
    "DOC_COMMENT_STRING": TokenKind.DOC_COMMENT,
    "DOC_COMMENT_TAG": TokenKind.DOC_COMMENT,
    "DOC_COMMENT_STAR": TokenKind.DOC_COMMENT,
    "DOC_COMMENT_WHITESPACE": TokenKind.DOC_COMMENT,
    "PHPCS_IGNORE": TokenKind.COMMENT,
    "PHPCS_DISABLE": TokenKind.COMMENT,
    "PHPCS_ENABLE": TokenKind.COMMENT,
    "PHPCS_SET": TokenKind.COMMENT,
    "PHPCS_IGNORE_FILE": TokenKind.COMMENT,
    "TYPE_UNION": TokenKind.BITWISE_OR,
    "TYPE_INTERSECTION": TokenKind.BITWISE_AND,
    "NULLSAFE_OBJECT_OPERATOR": TokenKind.NULLSAFE_OBJECT_OPERATOR,
    "BOOLEAN_CAST": TokenKind.BOOL_CAST,
    "INTEGER_CAST": TokenKind.INT_CAST,
    "FLOAT_CAST": TokenKind.DOUBLE_CAST,
    "ENCAPSED_AND_WHITESPACE": TokenKind.DOUBLE_QUOTED_STRING,
}


# ── Kind groups ─────────────────────────────────────────────────────────

EMPTY_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.WHITESPACE, TokenKind.COMMENT, TokenKind.DOC_COMMENT,
})

COMMENT_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.COMMENT, TokenKind.DOC_COMMENT,
})

ASSIGNMENT_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.EQUAL, TokenKind.PLUS_EQUAL, TokenKind.MINUS_EQUAL,
    TokenKind.MUL_EQUAL, TokenKind.DIV_EQUAL, TokenKind.CONCAT_EQUAL,
    TokenKind.MOD_EQUAL, TokenKind.POW_EQUAL, TokenKind.AND_EQUAL,
    TokenKind.OR_EQUAL, TokenKind.XOR_EQUAL, TokenKind.SL_EQUAL,
    TokenKind.SR_EQUAL, TokenKind.COALESCE_EQUAL,
})

OPENER_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.OPEN_PARENTHESIS, TokenKind.OPEN_SQUARE_BRACKET,
    TokenKind.OPEN_CURLY_BRACKET,
})

CLOSER_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.CLOSE_PARENTHESIS, TokenKind.CLOSE_SQUARE_BRACKET,
    TokenKind.CLOSE_CURLY_BRACKET,
})

TEXT_STRING_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.CONSTANT_ENCAPSED_STRING, TokenKind.DOUBLE_QUOTED_STRING,
    TokenKind.INLINE_HTML, TokenKind.HEREDOC, TokenKind.NOWDOC,
})

INTERPOLATED_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.DOUBLE_QUOTED_STRING, TokenKind.HEREDOC,
})

FUNCTION_NAME_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.STRING, TokenKind.EVAL, TokenKind.EXIT, TokenKind.INCLUDE,
    TokenKind.INCLUDE_ONCE, TokenKind.REQUIRE, TokenKind.REQUIRE_ONCE,
    TokenKind.ISSET, TokenKind.UNSET, TokenKind.EMPTY, TokenKind.SELF,
    TokenKind.PARENT, TokenKind.STATIC,
})

OBJECT_OPERATOR_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.OBJECT_OPERATOR, TokenKind.NULLSAFE_OBJECT_OPERATOR,
})

CAST_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.INT_CAST, TokenKind.DOUBLE_CAST, TokenKind.STRING_CAST,
    TokenKind.ARRAY_CAST, TokenKind.OBJECT_CAST, TokenKind.BOOL_CAST,
    TokenKind.UNSET_CAST,
})

PARENTHESIS_OWNER_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.IF, TokenKind.ELSEIF, TokenKind.FOREACH, TokenKind.FOR,
    TokenKind.WHILE, TokenKind.SWITCH, TokenKind.CATCH, TokenKind.DECLARE,
    TokenKind.ARRAY, TokenKind.LIST, TokenKind.ISSET, TokenKind.EMPTY,
    TokenKind.UNSET, TokenKind.CLOSURE, TokenKind.FN, TokenKind.MATCH,
})

# Owners whose closing parenthesis is directly followed by their body.
_PAREN_SCOPE_OWNERS: FrozenSet[TokenKind] = frozenset({
    TokenKind.IF, TokenKind.ELSEIF, TokenKind.FOREACH, TokenKind.FOR,
    TokenKind.WHILE, TokenKind.SWITCH, TokenKind.CATCH, TokenKind.DECLARE,
    TokenKind.CLOSURE, TokenKind.FUNCTION, TokenKind.MATCH,
})

_BARE_SCOPE_OWNERS: FrozenSet[TokenKind] = frozenset({
    TokenKind.ELSE, TokenKind.DO, TokenKind.TRY, TokenKind.FINALLY,
})

_DECLARATION_OWNERS: FrozenSet[TokenKind] = frozenset({
    TokenKind.FUNCTION, TokenKind.CLOSURE, TokenKind.CLASS,
    TokenKind.INTERFACE, TokenKind.TRAIT, TokenKind.NAMESPACE,
})

# Tokens that may sit between a declaration keyword and its "{".
_SIGNATURE_KINDS: FrozenSet[TokenKind] = frozenset({
    TokenKind.STRING, TokenKind.NS_SEPARATOR, TokenKind.COMMA,
    TokenKind.EXTENDS, TokenKind.IMPLEMENTS, TokenKind.COLON,
    TokenKind.NULLABLE, TokenKind.USE, TokenKind.BITWISE_AND,
    TokenKind.BITWISE_OR, TokenKind.STATIC, TokenKind.ARRAY,
    TokenKind.SELF, TokenKind.PARENT, TokenKind.NULL, TokenKind.FALSE,
    TokenKind.TRUE, TokenKind.ABSTRACT, TokenKind.FINAL, TokenKind.READONLY,
})

_NULLABLE_PRECEDERS: FrozenSet[TokenKind] = frozenset({
    TokenKind.OPEN_PARENTHESIS, TokenKind.COMMA, TokenKind.COLON,
    TokenKind.PUBLIC, TokenKind.PROTECTED, TokenKind.PRIVATE,
    TokenKind.STATIC, TokenKind.VAR, TokenKind.READONLY, TokenKind.CONST,
})

# Alternative-syntax families: owner kind → kinds that close its scope.
_ALT_ENDERS: Dict[TokenKind, FrozenSet[TokenKind]] = {
    TokenKind.IF: frozenset({TokenKind.ELSEIF, TokenKind.ELSE, TokenKind.ENDIF}),
    TokenKind.ELSEIF: frozenset({TokenKind.ELSEIF, TokenKind.ELSE, TokenKind.ENDIF}),
    TokenKind.ELSE: frozenset({TokenKind.ENDIF}),
    TokenKind.FOREACH: frozenset({TokenKind.ENDFOREACH}),
    TokenKind.FOR: frozenset({TokenKind.ENDFOR}),
    TokenKind.WHILE: frozenset({TokenKind.ENDWHILE}),
    TokenKind.SWITCH: frozenset({TokenKind.ENDSWITCH}),
    TokenKind.DECLARE: frozenset({TokenKind.ENDDECLARE}),
}

_ALT_FINAL: Dict[TokenKind, TokenKind] = {
    TokenKind.IF: TokenKind.ENDIF,
    TokenKind.ELSEIF: TokenKind.ENDIF,
    TokenKind.ELSE: TokenKind.ENDIF,
    TokenKind.FOREACH: TokenKind.ENDFOREACH,
    TokenKind.FOR: TokenKind.ENDFOR,
    TokenKind.WHILE: TokenKind.ENDWHILE,
    TokenKind.SWITCH: TokenKind.ENDSWITCH,
    TokenKind.DECLARE: TokenKind.ENDDECLARE,
}


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — TOKEN RECORD
# ═════════════════════════════════════════════════════════════════════════

class RawToken(NamedTuple):
    """Unlinked lexer output: kind, text and 1-based start position."""
    kind: TokenKind
    text: str
    line: int
    column: int = 0


@dataclass(frozen=True, slots=True)
class Token:
    """
    One token of a linked stream.

    Structure fields hold token indices into the same stream, or
    ``None`` when the token does not take part in that structure.
    """
    index: int
    kind: TokenKind
    text: str
    line: int
    column: int = 0
    bracket_opener: Optional[int] = None
    bracket_closer: Optional[int] = None
    parenthesis_opener: Optional[int] = None
    parenthesis_closer: Optional[int] = None
    parenthesis_owner: Optional[int] = None
    scope_opener: Optional[int] = None
    scope_closer: Optional[int] = None
    scope_condition: Optional[int] = None
    nested_parenthesis: Tuple[Tuple[int, int], ...] = ()
    conditions: Tuple[Tuple[int, TokenKind], ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.kind in EMPTY_KINDS

    @property
    def lower(self) -> str:
        return self.text.lower()

    @property
    def end_line(self) -> int:
        """Line on which the token's text ends."""
        return self.line + self.text.count("\n")

    @property
    def matching_position(self) -> Optional[int]:
        """Index of the partner bracket for bracket tokens."""
        if self.kind is TokenKind.OPEN_PARENTHESIS:
            return self.parenthesis_closer
        if self.kind is TokenKind.CLOSE_PARENTHESIS:
            return self.parenthesis_opener
        if self.kind in (TokenKind.OPEN_SQUARE_BRACKET, TokenKind.OPEN_CURLY_BRACKET):
            return self.bracket_closer
        if self.kind in (TokenKind.CLOSE_SQUARE_BRACKET, TokenKind.CLOSE_CURLY_BRACKET):
            return self.bracket_opener
        return None

    def __str__(self) -> str:
        return f"{self.kind.name}({self.text!r})@{self.line}:{self.column}"


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — STRUCTURE LINKER
# ═════════════════════════════════════════════════════════════════════════

class _StructureLinker:
    """
    Computes grouping metadata for a raw token sequence.

    Runs in five passes: bracket matching, parenthesis owners, ternary
    disambiguation, scope owners (braces and alternative syntax), then
    one sweep for nested parentheses and conditions.
    """

    def __init__(self, raw: Sequence[RawToken]) -> None:
        self.raw = raw
        n = len(raw)
        self.kinds: List[TokenKind] = [r.kind for r in raw]
        self.bracket_opener: List[Optional[int]] = [None] * n
        self.bracket_closer: List[Optional[int]] = [None] * n
        self.paren_opener: List[Optional[int]] = [None] * n
        self.paren_closer: List[Optional[int]] = [None] * n
        self.paren_owner: List[Optional[int]] = [None] * n
        self.scope_opener: List[Optional[int]] = [None] * n
        self.scope_closer: List[Optional[int]] = [None] * n
        self.scope_condition: List[Optional[int]] = [None] * n

    def link(self) -> List[Token]:
        self._match_brackets()
        self._assign_parenthesis_owners()
        self._disambiguate_ternaries()
        self._assign_brace_scopes()
        self._assign_alternative_scopes()
        return self._build()

    # ── helpers ──────────────────────────────────────────────────────

    def _prev_non_empty(self, i: int) -> Optional[int]:
        while i >= 0:
            if self.kinds[i] not in EMPTY_KINDS:
                return i
            i -= 1
        return None

    def _next_non_empty(self, i: int) -> Optional[int]:
        n = len(self.kinds)
        while i < n:
            if self.kinds[i] not in EMPTY_KINDS:
                return i
            i += 1
        return None

    # ── pass 1 ───────────────────────────────────────────────────────

    def _match_brackets(self) -> None:
        stacks: Dict[TokenKind, List[int]] = {
            TokenKind.OPEN_PARENTHESIS: [],
            TokenKind.OPEN_SQUARE_BRACKET: [],
            TokenKind.OPEN_CURLY_BRACKET: [],
        }
        closers = {
            TokenKind.CLOSE_PARENTHESIS: TokenKind.OPEN_PARENTHESIS,
            TokenKind.CLOSE_SQUARE_BRACKET: TokenKind.OPEN_SQUARE_BRACKET,
            TokenKind.CLOSE_CURLY_BRACKET: TokenKind.OPEN_CURLY_BRACKET,
        }
        for i, kind in enumerate(self.kinds):
            if kind in stacks:
                stacks[kind].append(i)
                continue
            opener_kind = closers.get(kind)
            if opener_kind is None:
                continue
            stack = stacks[opener_kind]
            if not stack:
                logger.debug("unmatched %s at index %d", kind.name, i)
                continue
            o = stack.pop()
            if kind is TokenKind.CLOSE_PARENTHESIS:
                self.paren_opener[o] = self.paren_opener[i] = o
                self.paren_closer[o] = self.paren_closer[i] = i
            else:
                self.bracket_opener[o] = self.bracket_opener[i] = o
                self.bracket_closer[o] = self.bracket_closer[i] = i

    # ── pass 2 ───────────────────────────────────────────────────────

    def _assign_parenthesis_owners(self) -> None:
        for i, kind in enumerate(self.kinds):
            if kind is not TokenKind.OPEN_PARENTHESIS or self.paren_closer[i] is None:
                continue
            closer = self.paren_closer[i]
            p = self._prev_non_empty(i - 1)
            if p is None:
                continue
            owner: Optional[int] = None
            if self.kinds[p] in PARENTHESIS_OWNER_KINDS:
                owner = p
            elif self.kinds[p] is TokenKind.STRING:
                q = self._prev_non_empty(p - 1)
                if q is not None and self.kinds[q] is TokenKind.BITWISE_AND:
                    q = self._prev_non_empty(q - 1)
                if q is not None and self.kinds[q] is TokenKind.FUNCTION:
                    owner = q
            if owner is None:
                continue
            self.paren_owner[i] = self.paren_owner[closer] = owner
            self.paren_owner[owner] = owner
            self.paren_opener[owner] = i
            self.paren_closer[owner] = closer

    # ── pass 3 ───────────────────────────────────────────────────────

    def _disambiguate_ternaries(self) -> None:
        pending: List[int] = [0]
        for i, kind in enumerate(self.kinds):
            if kind in OPENER_KINDS:
                pending.append(0)
            elif kind in CLOSER_KINDS:
                if len(pending) > 1:
                    pending.pop()
            elif kind is TokenKind.SEMICOLON:
                pending[-1] = 0
            elif kind is TokenKind.INLINE_THEN:
                p = self._prev_non_empty(i - 1)
                if p is not None and self.kinds[p] in _NULLABLE_PRECEDERS:
                    self.kinds[i] = TokenKind.NULLABLE
                else:
                    pending[-1] += 1
            elif kind in (TokenKind.COLON, TokenKind.INLINE_ELSE):
                if pending[-1] > 0:
                    self.kinds[i] = TokenKind.INLINE_ELSE
                    pending[-1] -= 1
                else:
                    self.kinds[i] = TokenKind.COLON

    # ── pass 4 ───────────────────────────────────────────────────────

    def _set_scope(self, owner: int, opener: int, closer: int) -> None:
        for idx in (owner, opener):
            self.scope_condition[idx] = owner
            self.scope_opener[idx] = opener
            self.scope_closer[idx] = closer
        # An alternative-syntax closer that opens the next branch keeps
        # its own scope metadata.
        if self.kinds[closer] not in (TokenKind.ELSE, TokenKind.ELSEIF):
            self.scope_condition[closer] = owner
            self.scope_opener[closer] = opener
            self.scope_closer[closer] = closer

    def _curly_owner(self, i: int) -> Optional[int]:
        p = self._prev_non_empty(i - 1)
        if p is None:
            return None
        kind = self.kinds[p]
        if kind in _BARE_SCOPE_OWNERS:
            return p
        if kind is TokenKind.CLOSE_PARENTHESIS:
            owner = self.paren_owner[p]
            if owner is not None and self.kinds[owner] in _PAREN_SCOPE_OWNERS:
                return owner
        j: Optional[int] = p
        while j is not None:
            kind = self.kinds[j]
            if kind in _DECLARATION_OWNERS:
                return j
            if kind is TokenKind.CLOSE_PARENTHESIS:
                opener = self.paren_opener[j]
                if opener is None:
                    return None
                j = self._prev_non_empty(opener - 1)
                continue
            if kind not in _SIGNATURE_KINDS:
                return None
            j = self._prev_non_empty(j - 1)
        return None

    def _assign_brace_scopes(self) -> None:
        for i, kind in enumerate(self.kinds):
            if kind is not TokenKind.OPEN_CURLY_BRACKET:
                continue
            closer = self.bracket_closer[i]
            if closer is None:
                continue
            owner = self._curly_owner(i)
            if owner is not None and self.scope_opener[owner] is None:
                self._set_scope(owner, i, closer)

    def _alt_colon(self, owner: int) -> Optional[int]:
        kind = self.kinds[owner]
        if kind is TokenKind.ELSE:
            after = owner
        else:
            after = self.paren_closer[owner]
            if after is None or self.paren_owner[after] != owner:
                return None
        nxt = self._next_non_empty(after + 1)
        if nxt is not None and self.kinds[nxt] is TokenKind.COLON:
            return nxt
        return None

    def _assign_alternative_scopes(self) -> None:
        for i, kind in enumerate(self.kinds):
            if kind not in _ALT_ENDERS or self.scope_opener[i] is not None:
                continue
            colon = self._alt_colon(i)
            if colon is None:
                continue
            closer = self._find_alt_closer(kind, colon)
            if closer is not None:
                self._set_scope(i, colon, closer)

    def _find_alt_closer(self, owner_kind: TokenKind, colon: int) -> Optional[int]:
        enders = _ALT_ENDERS[owner_kind]
        final = _ALT_FINAL[owner_kind]
        family_openers = {k for k, v in _ALT_FINAL.items() if v is final}
        depth = 0
        for j in range(colon + 1, len(self.kinds)):
            kind = self.kinds[j]
            if kind in family_openers and kind not in enders and self._alt_colon(j) is not None:
                depth += 1
            elif kind in enders:
                if depth == 0:
                    return j
                if kind is final:
                    depth -= 1
        return None

    # ── pass 5 ───────────────────────────────────────────────────────

    def _build(self) -> List[Token]:
        tokens: List[Token] = []
        paren_stack: List[Tuple[int, int]] = []
        scope_stack: List[Tuple[int, int]] = []  # (owner, closer)
        for i, raw in enumerate(self.raw):
            kind = self.kinds[i]
            while paren_stack and paren_stack[-1][1] <= i:
                paren_stack.pop()
            while scope_stack and scope_stack[-1][1] <= i:
                scope_stack.pop()
            tokens.append(Token(
                index=i,
                kind=kind,
                text=raw.text,
                line=raw.line,
                column=raw.column,
                bracket_opener=self.bracket_opener[i],
                bracket_closer=self.bracket_closer[i],
                parenthesis_opener=self.paren_opener[i],
                parenthesis_closer=self.paren_closer[i],
                parenthesis_owner=self.paren_owner[i],
                scope_opener=self.scope_opener[i],
                scope_closer=self.scope_closer[i],
                scope_condition=self.scope_condition[i],
                nested_parenthesis=tuple(paren_stack),
                conditions=tuple((o, self.kinds[o]) for o, _ in scope_stack),
            ))
            if kind is TokenKind.OPEN_PARENTHESIS and self.paren_closer[i] is not None:
                paren_stack.append((i, self.paren_closer[i]))
            owner = self.scope_condition[i]
            if owner is not None and self.scope_opener[i] == i and owner != i:
                scope_stack.append((owner, self.scope_closer[i]))
        return tokens


def link_tokens(raw: Sequence[RawToken]) -> List[Token]:
    """Link a raw token sequence into structured :class:`Token` records."""
    return _StructureLinker(raw).link()


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — SUPPRESSION ANNOTATIONS
# ═════════════════════════════════════════════════════════════════════════

ALL_CODES = ".all"

_COMMENT_MARKER_RE = re.compile(r"^\s*(?://|#|/\*+)\s*|\s*\*+/\s*$")
_PHPCS_RE = re.compile(r"phpcs:(ignoreFile|ignore|disable|enable)\b(.*)", re.IGNORECASE | re.DOTALL)
_LEGACY_RE = re.compile(r"@codingStandardsIgnore(Line|Start|End)\b")
_WPCS_RE = re.compile(r"\bWPCS:\s*(.+)", re.IGNORECASE | re.DOTALL)
_OK_PHRASE_RE = re.compile(r"([A-Za-z][\w .-]*?)\s+ok\b", re.IGNORECASE)
_DB_CALL_RE = re.compile(r"^db call ok\b", re.IGNORECASE)


def _annotation_codes(rest: str) -> FrozenSet[str]:
    rest = rest.split("--", 1)[0]
    rest = re.sub(r"\*+/\s*$", "", rest)
    codes = {c.strip() for c in rest.split(",") if c.strip()}
    return frozenset(codes) if codes else frozenset({ALL_CODES})


def _has_code_before(tokens: Sequence[Token], i: int) -> bool:
    line = tokens[i].line
    j = i - 1
    while j >= 0 and tokens[j].end_line == line:
        kind = tokens[j].kind
        if kind not in EMPTY_KINDS and kind not in (TokenKind.OPEN_TAG, TokenKind.INLINE_HTML):
            return True
        j -= 1
    return False


def collect_ignored_lines(tokens: Sequence[Token]) -> Dict[int, FrozenSet[str]]:
    """
    Build the ignored-lines table from annotation comments.

    Returns a mapping of line number to the codes or phrases ignored on
    that line; ``".all"`` stands for every code.
    """
    table: Dict[int, Set[str]] = defaultdict(set)
    disabled: List[Tuple[int, FrozenSet[str]]] = []
    last_line = tokens[-1].end_line if tokens else 0

    def close_regions(until: int, codes: Optional[FrozenSet[str]]) -> None:
        keep: List[Tuple[int, FrozenSet[str]]] = []
        for start, region_codes in disabled:
            if codes is None or codes & region_codes or ALL_CODES in codes:
                for line in range(start, until + 1):
                    table[line].update(region_codes)
            else:
                keep.append((start, region_codes))
        disabled[:] = keep

    for i, tok in enumerate(tokens):
        if tok.kind not in COMMENT_KINDS:
            continue
        text = _COMMENT_MARKER_RE.sub("", tok.text).strip()
        target = tok.line if _has_code_before(tokens, i) else tok.end_line + 1

        m = _PHPCS_RE.search(text)
        if m:
            verb = m.group(1).lower()
            codes = _annotation_codes(m.group(2))
            if verb == "ignore":
                table[target].update(codes)
            elif verb == "ignorefile":
                for line in range(1, last_line + 1):
                    table[line].add(ALL_CODES)
            elif verb == "disable":
                disabled.append((tok.line, codes))
            else:
                close_regions(tok.line, None if ALL_CODES in codes else codes)
            continue

        m = _LEGACY_RE.search(text)
        if m:
            verb = m.group(1)
            if verb == "Line":
                table[target].add(ALL_CODES)
            elif verb == "Start":
                disabled.append((tok.line, frozenset({ALL_CODES})))
            else:
                close_regions(tok.line, None)
            continue

        phrase_source: Optional[str] = None
        m = _WPCS_RE.search(text)
        if m:
            phrase_source = m.group(1)
        elif _DB_CALL_RE.search(text):
            phrase_source = text
        if phrase_source:
            for phrase in _OK_PHRASE_RE.findall(phrase_source):
                table[tok.line].add(phrase.strip())

    close_regions(last_line, None)
    return {line: frozenset(codes) for line, codes in table.items() if codes}


def code_matches(ignored: str, code: str) -> bool:
    """True if an ignored code (or dotted prefix, or phrase) covers ``code``."""
    if ignored == ALL_CODES:
        return True
    i, c = ignored.lower(), code.lower()
    return c == i or c.startswith(i + ".")


# ═════════════════════════════════════════════════════════════════════════
#  PART 5 — TOKEN STREAM
# ═════════════════════════════════════════════════════════════════════════

KindSpec = Union[TokenKind, Iterable[TokenKind]]


def _kind_set(kinds: KindSpec) -> FrozenSet[TokenKind]:
    if isinstance(kinds, TokenKind):
        return frozenset((kinds,))
    return frozenset(kinds)


class TokenStream:
    """
    Indexed, read-only view of one file's tokens.

    Usage
    -----
    >>> stream = TokenStream.from_records(records, path="plugin.php")
    >>> i = stream.find_next(TokenKind.VARIABLE, 0)
    >>> stream.next_non_empty(i + 1)
    """

    def __init__(
        self,
        tokens: Sequence[Token],
        path: str = "",
        ignored_lines: Optional[Mapping[int, FrozenSet[str]]] = None,
    ) -> None:
        self._tokens: Tuple[Token, ...] = tuple(tokens)
        self.path = path
        self.ignored_lines: Dict[int, FrozenSet[str]] = dict(
            ignored_lines if ignored_lines is not None else collect_ignored_lines(self._tokens)
        )

    # ── construction ─────────────────────────────────────────────────

    @classmethod
    def from_raw(cls, raw: Sequence[RawToken], path: str = "") -> "TokenStream":
        """Link raw lexer output into a stream."""
        return cls(link_tokens(raw), path=path)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        path: str = "",
    ) -> "TokenStream":
        """
        Ingest tokens produced by an external tokenizer.

        Each record needs ``type`` (e.g. ``"T_VARIABLE"``), ``content``
        and ``line``; ``column`` is optional.  Grouping metadata is
        recomputed from the sequence.
        """
        raw = [
            RawToken(
                kind=TokenKind.from_external(str(rec["type"])),
                text=str(rec.get("content", "")),
                line=int(rec.get("line", 0)),
                column=int(rec.get("column", 0)),
            )
            for rec in records
        ]
        return cls.from_raw(raw, path=path)

    # ── sequence protocol ────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._tokens)

    def __getitem__(self, index: int) -> Token:
        return self._tokens[index]

    def __iter__(self) -> Iterator[Token]:
        return iter(self._tokens)

    @property
    def tokens(self) -> Tuple[Token, ...]:
        return self._tokens

    def get(self, index: Optional[int]) -> Optional[Token]:
        """Token at ``index``, or ``None`` when out of range."""
        if index is None or index < 0 or index >= len(self._tokens):
            return None
        return self._tokens[index]

    def kind_at(self, index: Optional[int]) -> Optional[TokenKind]:
        tok = self.get(index)
        return tok.kind if tok is not None else None

    # ── searching ────────────────────────────────────────────────────

    def find_next(
        self,
        kinds: KindSpec,
        start: int,
        end: Optional[int] = None,
        exclude: bool = False,
        value: Optional[str] = None,
        local_only: bool = False,
    ) -> Optional[int]:
        """
        First index in ``[start, end)`` whose kind is in ``kinds``.

        With ``exclude`` the test is inverted.  ``value`` additionally
        requires an exact text match.  ``local_only`` stops the search
        after the first semicolon.
        """
        wanted = _kind_set(kinds)
        stop = len(self._tokens) if end is None else min(end, len(self._tokens))
        for i in range(max(start, 0), stop):
            tok = self._tokens[i]
            if (tok.kind in wanted) != exclude:
                if value is None or tok.text == value:
                    return i
            if local_only and tok.kind is TokenKind.SEMICOLON:
                break
        return None

    def find_previous(
        self,
        kinds: KindSpec,
        start: int,
        end: Optional[int] = None,
        exclude: bool = False,
        value: Optional[str] = None,
        local_only: bool = False,
    ) -> Optional[int]:
        """Last index in ``[end, start]`` (walking backwards) matching ``kinds``."""
        wanted = _kind_set(kinds)
        floor = -1 if end is None else end - 1
        i = min(start, len(self._tokens) - 1)
        while i > floor:
            tok = self._tokens[i]
            if (tok.kind in wanted) != exclude:
                if value is None or tok.text == value:
                    return i
            if local_only and tok.kind is TokenKind.SEMICOLON:
                break
            i -= 1
        return None

    def next_non_empty(
        self, start: int, end: Optional[int] = None, local_only: bool = True,
    ) -> Optional[int]:
        """First non-whitespace, non-comment token at or after ``start``."""
        return self.find_next(EMPTY_KINDS, start, end, exclude=True, local_only=local_only)

    def previous_non_empty(
        self, start: int, end: Optional[int] = None, local_only: bool = True,
    ) -> Optional[int]:
        """Last non-whitespace, non-comment token at or before ``start``."""
        return self.find_previous(EMPTY_KINDS, start, end, exclude=True, local_only=local_only)

    # ── structure queries ────────────────────────────────────────────

    def get_condition(
        self, pos: int, kinds: KindSpec, first: bool = False,
    ) -> Optional[int]:
        """
        Index of an enclosing scope owner of one of ``kinds``.

        Returns the innermost match by default, the outermost with
        ``first=True``.
        """
        tok = self.get(pos)
        if tok is None:
            return None
        wanted = _kind_set(kinds)
        conditions = tok.conditions if first else reversed(tok.conditions)
        for owner, kind in conditions:
            if kind in wanted:
                return owner
        return None

    def has_condition(self, pos: int, kinds: KindSpec) -> bool:
        return self.get_condition(pos, kinds) is not None

    def tokens_as_string(
        self, start: int, end: int, skip_comments: bool = False,
    ) -> str:
        """Concatenated text of tokens ``start`` through ``end`` inclusive."""
        stop = min(end, len(self._tokens) - 1)
        parts = []
        for i in range(max(start, 0), stop + 1):
            tok = self._tokens[i]
            if skip_comments and tok.kind in COMMENT_KINDS:
                continue
            parts.append(tok.text)
        return "".join(parts)

    def is_ignored_line(self, line: int, codes: Iterable[str]) -> bool:
        """True if any of ``codes`` is ignored on ``line``."""
        ignored = self.ignored_lines.get(line)
        if not ignored:
            return False
        return any(code_matches(i, c) for i in ignored for c in codes)

    def __repr__(self) -> str:
        return f"<TokenStream {self.path or '<source>'} tokens={len(self._tokens)}>"


__all__ = [
    "TokenKind",
    "RawToken",
    "Token",
    "TokenStream",
    "link_tokens",
    "collect_ignored_lines",
    "code_matches",
    "ALL_CODES",
    "EMPTY_KINDS",
    "COMMENT_KINDS",
    "ASSIGNMENT_KINDS",
    "OPENER_KINDS",
    "CLOSER_KINDS",
    "TEXT_STRING_KINDS",
    "INTERPOLATED_KINDS",
    "FUNCTION_NAME_KINDS",
    "OBJECT_OPERATOR_KINDS",
    "CAST_KINDS",
    "PARENTHESIS_OWNER_KINDS",
]
