"""
wpsniff_shims/lexer.py
══════════════════════

Reference PHP tokenizer built on tree-sitter-php.

Source text (PHP with embedded inline HTML) is parsed once with the
tree-sitter PHP grammar.  The leaves of the concrete syntax tree become
tokens; literals that the grammar splits further (strings, heredocs,
comments, attributes, ``$name``) are kept whole, and casts are folded
into one ``(int)`` token.  Whitespace is not part of the tree: it is
recovered from the byte gaps between leaves.

    source ──► tree_sitter.Parser ──► leaves ──► spans ──► RawToken list
                                                   │
                                      gaps become WHITESPACE
                                      tags absorb one newline

Identifiers and keywords are classified from their text, not from the
grammar's node types, so the kinds match what PHP's own tokenizer
reports: ``die`` and ``exit`` share ``EXIT``; a name after ``->``,
``::``, ``function`` or ``const`` is always ``STRING``; ``array``,
``list``, ``match`` and ``fn`` are keywords only before ``(``.

The grammar is error tolerant.  Syntax errors leave ERROR nodes whose
leaves are tokenized like any other; only a string, comment or heredoc
that never closes raises :class:`~wpsniff_shims.errors.TokenizerError`.

License: MIT
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import tree_sitter_php as tsphp
from tree_sitter import Language, Node, Parser

from wpsniff_shims.errors import TokenizerError
from wpsniff_shims.tokens import EMPTY_KINDS, RawToken, TokenKind, TokenStream

logger = logging.getLogger(__name__)

PHP_LANGUAGE = Language(tsphp.language_php())


KEYWORDS: Dict[str, TokenKind] = {
    "abstract": TokenKind.ABSTRACT,
    "and": TokenKind.LOGICAL_AND,
    "array": TokenKind.ARRAY,
    "as": TokenKind.AS,
    "break": TokenKind.BREAK,
    "case": TokenKind.CASE,
    "catch": TokenKind.CATCH,
    "class": TokenKind.CLASS,
    "clone": TokenKind.CLONE,
    "const": TokenKind.CONST,
    "continue": TokenKind.CONTINUE,
    "declare": TokenKind.DECLARE,
    "default": TokenKind.DEFAULT,
    "die": TokenKind.EXIT,
    "do": TokenKind.DO,
    "echo": TokenKind.ECHO,
    "else": TokenKind.ELSE,
    "elseif": TokenKind.ELSEIF,
    "empty": TokenKind.EMPTY,
    "enddeclare": TokenKind.ENDDECLARE,
    "endfor": TokenKind.ENDFOR,
    "endforeach": TokenKind.ENDFOREACH,
    "endif": TokenKind.ENDIF,
    "endswitch": TokenKind.ENDSWITCH,
    "endwhile": TokenKind.ENDWHILE,
    "eval": TokenKind.EVAL,
    "exit": TokenKind.EXIT,
    "extends": TokenKind.EXTENDS,
    "false": TokenKind.FALSE,
    "final": TokenKind.FINAL,
    "finally": TokenKind.FINALLY,
    "fn": TokenKind.FN,
    "for": TokenKind.FOR,
    "foreach": TokenKind.FOREACH,
    "function": TokenKind.FUNCTION,
    "global": TokenKind.GLOBAL,
    "goto": TokenKind.GOTO,
    "if": TokenKind.IF,
    "implements": TokenKind.IMPLEMENTS,
    "include": TokenKind.INCLUDE,
    "include_once": TokenKind.INCLUDE_ONCE,
    "instanceof": TokenKind.INSTANCEOF,
    "insteadof": TokenKind.INSTEADOF,
    "interface": TokenKind.INTERFACE,
    "isset": TokenKind.ISSET,
    "list": TokenKind.LIST,
    "match": TokenKind.MATCH,
    "namespace": TokenKind.NAMESPACE,
    "new": TokenKind.NEW,
    "null": TokenKind.NULL,
    "or": TokenKind.LOGICAL_OR,
    "parent": TokenKind.PARENT,
    "print": TokenKind.PRINT,
    "private": TokenKind.PRIVATE,
    "protected": TokenKind.PROTECTED,
    "public": TokenKind.PUBLIC,
    "readonly": TokenKind.READONLY,
    "require": TokenKind.REQUIRE,
    "require_once": TokenKind.REQUIRE_ONCE,
    "return": TokenKind.RETURN,
    "self": TokenKind.SELF,
    "static": TokenKind.STATIC,
    "switch": TokenKind.SWITCH,
    "throw": TokenKind.THROW,
    "trait": TokenKind.TRAIT,
    "true": TokenKind.TRUE,
    "try": TokenKind.TRY,
    "unset": TokenKind.UNSET,
    "use": TokenKind.USE,
    "var": TokenKind.VAR,
    "while": TokenKind.WHILE,
    "xor": TokenKind.LOGICAL_XOR,
    "yield": TokenKind.YIELD,
}

# Keywords that are only keywords when a "(" follows.
_CALL_ONLY_KEYWORDS = frozenset({"array", "list", "match", "fn"})

OPERATORS: Dict[str, TokenKind] = {
    "<=>": TokenKind.SPACESHIP,
    "**=": TokenKind.POW_EQUAL,
    "...": TokenKind.ELLIPSIS,
    "<<=": TokenKind.SL_EQUAL,
    ">>=": TokenKind.SR_EQUAL,
    "===": TokenKind.IS_IDENTICAL,
    "!==": TokenKind.IS_NOT_IDENTICAL,
    "??=": TokenKind.COALESCE_EQUAL,
    "?->": TokenKind.NULLSAFE_OBJECT_OPERATOR,
    "::": TokenKind.DOUBLE_COLON,
    "->": TokenKind.OBJECT_OPERATOR,
    "=>": TokenKind.DOUBLE_ARROW,
    "++": TokenKind.INC,
    "--": TokenKind.DEC,
    "==": TokenKind.IS_EQUAL,
    "!=": TokenKind.IS_NOT_EQUAL,
    "<>": TokenKind.IS_NOT_EQUAL,
    "<=": TokenKind.IS_SMALLER_OR_EQUAL,
    ">=": TokenKind.IS_GREATER_OR_EQUAL,
    "&&": TokenKind.BOOLEAN_AND,
    "||": TokenKind.BOOLEAN_OR,
    "??": TokenKind.COALESCE,
    "+=": TokenKind.PLUS_EQUAL,
    "-=": TokenKind.MINUS_EQUAL,
    "*=": TokenKind.MUL_EQUAL,
    "/=": TokenKind.DIV_EQUAL,
    ".=": TokenKind.CONCAT_EQUAL,
    "%=": TokenKind.MOD_EQUAL,
    "&=": TokenKind.AND_EQUAL,
    "|=": TokenKind.OR_EQUAL,
    "^=": TokenKind.XOR_EQUAL,
    "<<": TokenKind.SL,
    ">>": TokenKind.SR,
    "**": TokenKind.POW,
    ";": TokenKind.SEMICOLON,
    ",": TokenKind.COMMA,
    "(": TokenKind.OPEN_PARENTHESIS,
    ")": TokenKind.CLOSE_PARENTHESIS,
    "[": TokenKind.OPEN_SQUARE_BRACKET,
    "]": TokenKind.CLOSE_SQUARE_BRACKET,
    "{": TokenKind.OPEN_CURLY_BRACKET,
    "}": TokenKind.CLOSE_CURLY_BRACKET,
    "=": TokenKind.EQUAL,
    "+": TokenKind.PLUS,
    "-": TokenKind.MINUS,
    "*": TokenKind.MULTIPLY,
    "/": TokenKind.DIVIDE,
    "%": TokenKind.MODULUS,
    ".": TokenKind.STRING_CONCAT,
    "&": TokenKind.BITWISE_AND,
    "|": TokenKind.BITWISE_OR,
    "^": TokenKind.BITWISE_XOR,
    "~": TokenKind.BITWISE_NOT,
    "!": TokenKind.BOOLEAN_NOT,
    "<": TokenKind.LESS_THAN,
    ">": TokenKind.GREATER_THAN,
    "?": TokenKind.INLINE_THEN,
    ":": TokenKind.COLON,
    "@": TokenKind.ASPERAND,
    "\\": TokenKind.NS_SEPARATOR,
    "$": TokenKind.DOLLAR,
}

CASTS: Dict[str, TokenKind] = {
    "int": TokenKind.INT_CAST,
    "integer": TokenKind.INT_CAST,
    "bool": TokenKind.BOOL_CAST,
    "boolean": TokenKind.BOOL_CAST,
    "float": TokenKind.DOUBLE_CAST,
    "double": TokenKind.DOUBLE_CAST,
    "real": TokenKind.DOUBLE_CAST,
    "string": TokenKind.STRING_CAST,
    "binary": TokenKind.STRING_CAST,
    "array": TokenKind.ARRAY_CAST,
    "object": TokenKind.OBJECT_CAST,
    "unset": TokenKind.UNSET_CAST,
}

_IDENT_RE = re.compile(r"[A-Za-z_\x80-\uffff][A-Za-z0-9_\x80-\uffff]*")
_VARIABLE_RE = re.compile(r"\$[A-Za-z_\x80-\uffff][A-Za-z0-9_\x80-\uffff]*")
_NUMBER_RE = re.compile(
    r"0[xX][0-9a-fA-F_]+|0[bB][01_]+|0[oO][0-7_]+"
    r"|(?:\d[\d_]*(?:\.[\d_]*)?|\.\d[\d_]*)(?:[eE][+-]?\d[\d_]*)?"
)
_CAST_RE = re.compile(r"\(\s*([A-Za-z]+)\s*\)")
_HEREDOC_START_RE = re.compile(
    rb"<<<[ \t]*([\"']?)([A-Za-z_\x80-\xff][A-Za-z0-9_\x80-\xff]*)\1\r?\n"
)
_HEREDOC_LABEL_RE = re.compile(rb"<<<[ \t]*[\"']?([A-Za-z_\x80-\xff][A-Za-z0-9_\x80-\xff]*)")
_INTERPOLATION_RE = re.compile(
    r"(?:^|[^\\])(?:\\\\)*(?:\$[A-Za-z_\x80-\uffff]|\$\{|\{\$)"
)

_IDENT_AFTER: frozenset = frozenset({
    TokenKind.OBJECT_OPERATOR, TokenKind.NULLSAFE_OBJECT_OPERATOR,
    TokenKind.DOUBLE_COLON, TokenKind.FUNCTION, TokenKind.CONST,
})

# Grammar nodes emitted as a single token; their children are not visited.
_STRING_NODES = frozenset({"string", "encapsed_string"})
_HEREDOC_NODES = frozenset({"heredoc", "nowdoc"})
_ATOMIC_NODES = _STRING_NODES | _HEREDOC_NODES | {
    "comment", "shell_command_expression", "attribute_group",
    "variable_name", "text",
}

Span = Tuple[TokenKind, int, int]


class PhpLexer:
    """
    Tokenizer for PHP source files.

    Usage:
        lexer = PhpLexer(source_text, "plugin.php")
        raw_tokens = lexer.tokenize()
    """

    def __init__(self, source: str, filename: str = "<source>"):
        self.source = source
        self.filename = filename
        self._data = source.encode("utf-8")
        self._parser = Parser(PHP_LANGUAGE)
        self._last_kind: Optional[TokenKind] = None

    # ── entry point ──────────────────────────────────────────────────

    def tokenize(self) -> List[RawToken]:
        """Parse the source and return its raw tokens in order."""
        tree = self._parser.parse(self._data)
        if tree.root_node.has_error:
            logger.debug("%s: syntax errors in parse tree", self.filename)
        return self._materialize(self._collect(tree.root_node))

    # ── tree walk ────────────────────────────────────────────────────

    def _collect(self, root: Node) -> List[Span]:
        """Token spans (byte offsets) of every leaf, in document order."""
        spans: List[Span] = []
        stack: List[Node] = [root]
        while stack:
            node = stack.pop()
            if node.is_missing or node.end_byte <= node.start_byte:
                continue
            if node.type in _ATOMIC_NODES:
                self._emit_atomic(node, spans)
                continue
            if node.type == "cast_expression" and self._emit_cast(node, spans, stack):
                continue
            if node.child_count == 0:
                self._emit_leaf(node, spans)
                continue
            stack.extend(reversed(node.children))
        return spans

    def _push(self, spans: List[Span], kind: TokenKind, start: int, end: int) -> None:
        spans.append((kind, start, end))
        if kind not in EMPTY_KINDS:
            self._last_kind = kind

    def _emit_atomic(self, node: Node, spans: List[Span]) -> None:
        t = node.type
        start, end = node.start_byte, node.end_byte
        text = self._text(start, end)

        if t in _HEREDOC_NODES:
            self._emit_heredoc(node, spans)
            return
        if node.has_error:
            kind_name = "comment" if t == "comment" else "string"
            raise self._error(f"Unterminated {kind_name}", start)

        if t == "comment":
            is_doc = text.startswith("/**") and len(text) > 4 and text[3].isspace()
            kind = TokenKind.DOC_COMMENT if is_doc else TokenKind.COMMENT
        elif t in _STRING_NODES:
            body = text[1:] if text[:1] in "bB" else text
            if body.startswith('"') and _INTERPOLATION_RE.search(body[1:-1]):
                kind = TokenKind.DOUBLE_QUOTED_STRING
            else:
                kind = TokenKind.CONSTANT_ENCAPSED_STRING
        elif t == "shell_command_expression":
            kind = TokenKind.BACKTICK
        elif t == "attribute_group":
            kind = TokenKind.ATTRIBUTE
        elif t == "text":
            kind = TokenKind.INLINE_HTML
        elif _VARIABLE_RE.fullmatch(text):
            kind = TokenKind.VARIABLE
        else:
            # ${expr} and friends: tokenize the pieces.
            for child in node.children:
                spans.extend(self._collect(child))
            return
        self._push(spans, kind, start, end)

    def _emit_heredoc(self, node: Node, spans: List[Span]) -> None:
        data = self._data
        start, end = node.start_byte, node.end_byte
        opener = _HEREDOC_START_RE.match(data, start, end)
        label_match = _HEREDOC_LABEL_RE.match(data, start, end)
        label = label_match.group(1).decode("utf-8", "replace") if label_match else ""
        closing = None
        if opener is not None and not node.has_error:
            closing = re.compile(
                rb"^[ \t]*" + re.escape(opener.group(2)) + rb"(?![A-Za-z0-9_\x80-\xff])",
                re.MULTILINE,
            ).search(data, opener.end(), end)
        if opener is None or closing is None:
            raise self._error(f"Unterminated heredoc <<<{label}", start)

        nowdoc = opener.group(1) == b"'"
        self._push(spans, TokenKind.START_NOWDOC if nowdoc else TokenKind.START_HEREDOC, start, opener.end())
        if closing.start() > opener.end():
            self._push(spans, TokenKind.NOWDOC if nowdoc else TokenKind.HEREDOC, opener.end(), closing.start())
        self._push(spans, TokenKind.END_NOWDOC if nowdoc else TokenKind.END_HEREDOC, closing.start(), closing.end())

    def _emit_cast(self, node: Node, spans: List[Span], stack: List[Node]) -> bool:
        children = node.children
        close = next((i for i, c in enumerate(children) if c.type == ")"), None)
        if close is None or children[0].type != "(":
            return False
        start, end = children[0].start_byte, children[close].end_byte
        m = _CAST_RE.fullmatch(self._text(start, end))
        if m is None or m.group(1).lower() not in CASTS:
            return False
        self._push(spans, CASTS[m.group(1).lower()], start, end)
        stack.extend(reversed(children[close + 1:]))
        return True

    def _emit_leaf(self, node: Node, spans: List[Span]) -> None:
        start, end = node.start_byte, node.end_byte
        if end <= start:
            return
        text = self._text(start, end)
        if node.type == "php_tag" or text.startswith("<?"):
            kind = TokenKind.OPEN_TAG_WITH_ECHO if text == "<?=" else TokenKind.OPEN_TAG
        elif text.startswith("?>"):
            kind = TokenKind.CLOSE_TAG
        elif node.type == "text":
            kind = TokenKind.INLINE_HTML
        else:
            message = self._unterminated(start)
            if message is not None:
                raise self._error(message, start)
            kind = self._classify(text, end)
        self._push(spans, kind, start, end)

    # ── classification ───────────────────────────────────────────────

    def _classify(self, text: str, end: int) -> TokenKind:
        kind = OPERATORS.get(text)
        if kind is not None:
            return kind
        if _VARIABLE_RE.fullmatch(text):
            return TokenKind.VARIABLE
        if _IDENT_RE.fullmatch(text):
            return self._classify_word(text, end)
        if _NUMBER_RE.fullmatch(text):
            is_float = text[:2].lower() not in ("0x", "0b", "0o") and (
                "." in text or "e" in text.lower()
            )
            return TokenKind.DNUMBER if is_float else TokenKind.LNUMBER
        logger.debug("%s: unknown token %r", self.filename, text)
        return TokenKind.UNKNOWN

    def _classify_word(self, word: str, end: int) -> TokenKind:
        lower = word.lower()
        kind = KEYWORDS.get(lower, TokenKind.STRING)

        if self._last_kind in _IDENT_AFTER and kind is not TokenKind.STRING:
            # Method, property, constant and function names.
            return TokenKind.STRING
        if kind is TokenKind.FUNCTION:
            nxt = self._next_significant_char(end)
            if nxt == "&":
                amp = self._data.find(b"&", end)
                nxt = self._next_significant_char(amp + 1)
            if nxt == "(":
                return TokenKind.CLOSURE
        elif lower in _CALL_ONLY_KEYWORDS:
            nxt = self._next_significant_char(end)
            if nxt != "(" and not (lower == "fn" and nxt == "&"):
                return TokenKind.STRING
        return kind

    def _next_significant_char(self, start: int) -> Optional[str]:
        data = self._data
        i = start
        while i < len(data):
            if data[i:i + 1].isspace():
                i += 1
                continue
            if data.startswith(b"/*", i):
                close = data.find(b"*/", i + 2)
                if close < 0:
                    return None
                i = close + 2
                continue
            return chr(data[i])
        return None

    def _unterminated(self, start: int) -> Optional[str]:
        """Error message if an unclosed literal or comment opens at ``start``."""
        data = self._data
        if data.startswith(b"/*", start):
            return "Unterminated comment"
        if data.startswith(b"<<<", start):
            m = _HEREDOC_LABEL_RE.match(data, start)
            label = m.group(1).decode("utf-8", "replace") if m else ""
            return f"Unterminated heredoc <<<{label}"
        if data[start:start + 1] in (b"'", b'"', b"`"):
            return "Unterminated string"
        return None

    # ── spans to tokens ──────────────────────────────────────────────

    def _materialize(self, spans: List[Span]) -> List[RawToken]:
        """Fill gaps, fold tag line breaks, then compute line/column positions."""
        data = self._data
        laid: List[Span] = []
        pos = 0
        in_php = False

        def fill(start: int, end: int) -> None:
            gap = data[start:end]
            if not in_php:
                laid.append((TokenKind.INLINE_HTML, start, end))
            elif gap.isspace():
                laid.append((TokenKind.WHITESPACE, start, end))
            else:
                first = start + len(gap) - len(gap.lstrip())
                message = self._unterminated(first)
                if message is not None:
                    raise self._error(message, first)
                laid.append((TokenKind.UNKNOWN, start, end))

        for kind, start, end in spans:
            start = max(start, pos)
            if end <= start:
                continue
            if start > pos:
                fill(pos, start)
            if kind is TokenKind.OPEN_TAG:
                end += _newline_length(data, end, spaces=True)
                in_php = True
            elif kind is TokenKind.OPEN_TAG_WITH_ECHO:
                in_php = True
            elif kind is TokenKind.CLOSE_TAG:
                end += _newline_length(data, end, spaces=False)
                in_php = False
            laid.append((kind, start, end))
            pos = end
        if pos < len(data):
            fill(pos, len(data))

        tokens: List[RawToken] = []
        line, column = 1, 1
        for kind, start, end in laid:
            if tokens and kind is TokenKind.INLINE_HTML and tokens[-1].kind is kind:
                # gap and text node of the same HTML run
                prev = tokens.pop()
                line, column = prev.line, prev.column
                text = prev.text + data[start:end].decode("utf-8", "replace")
            else:
                text = data[start:end].decode("utf-8", "replace")
            tokens.append(RawToken(kind, text, line, column))
            newlines = text.count("\n")
            if newlines:
                line += newlines
                column = len(text) - text.rfind("\n")
            else:
                column += len(text)
        return tokens

    # ── helpers ──────────────────────────────────────────────────────

    def _text(self, start: int, end: int) -> str:
        return self._data[start:end].decode("utf-8", "replace")

    def _error(self, message: str, offset: int) -> TokenizerError:
        data = self._data
        line = data.count(b"\n", 0, offset) + 1
        line_start = data.rfind(b"\n", 0, offset) + 1
        column = len(data[line_start:offset].decode("utf-8", "replace")) + 1
        return TokenizerError(message, line=line, column=column, path=self.filename)


def _newline_length(data: bytes, pos: int, spaces: bool) -> int:
    """Length of the line break (or, for open tags, blank) PHP folds into a tag."""
    if data.startswith(b"\r\n", pos):
        return 2
    nxt = data[pos:pos + 1]
    if nxt == b"\n" or (spaces and nxt in (b" ", b"\t")):
        return 1
    return 0


def tokenize_source(source: str, path: str = "") -> TokenStream:
    """Lex and link PHP source text."""
    raw = PhpLexer(source, path or "<source>").tokenize()
    stream = TokenStream.from_raw(raw, path=path)
    logger.debug("tokenized %s: %d tokens", path or "<source>", len(stream))
    return stream


def tokenize_file(path: Union[str, Path]) -> TokenStream:
    """
    Read and tokenize a PHP file.

    Bytes that are not valid UTF-8 are replaced rather than rejected;
    ``OSError`` from reading propagates to the caller.
    """
    p = Path(path)
    source = p.read_bytes().decode("utf-8", errors="replace")
    return tokenize_source(source, str(p))


__all__ = [
    "PhpLexer",
    "PHP_LANGUAGE",
    "KEYWORDS",
    "OPERATORS",
    "CASTS",
    "tokenize_source",
    "tokenize_file",
]
