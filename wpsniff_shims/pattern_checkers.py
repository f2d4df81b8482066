"""
wpsniff_shims/pattern_checkers.py
═════════════════════════════════

Single-token sniffs.

Each checker here looks at one token (or one call) at a time and needs
no taint state:

    ┌───────────────────────────────────┬──────────────────────┬─────────┐
    │ checker                           │ looks at             │ level   │
    ├───────────────────────────────────┼──────────────────────┼─────────┤
    │ Commenting.TodoComment            │ comments             │ warning │
    │ Commenting.AllCapsComment         │ comments             │ warning │
    │ CodeAnalysis.Localhost            │ string literals      │ error   │
    │ CodeAnalysis.ShortURL             │ strings and comments │ warning │
    │ PHP.Heredoc                       │ <<<ID openers        │ error   │
    │ Security.UnfilteredUploads        │ define() calls       │ error   │
    │ PHP.DiscouragedFunctions          │ function calls       │ warning │
    │ PHP.RequiredFunctionParameters    │ function calls       │ error   │
    │ CodeAnalysis.LibrariesCore        │ script enqueues      │ error   │
    │ Language.I18nTextDomain           │ translation calls    │ error   │
    │ Language.I18nFunctionParameters   │ admin screen titles  │ warning │
    └───────────────────────────────────┴──────────────────────┴─────────┘

License: MIT
"""

from __future__ import annotations

import logging
import re
from typing import ClassVar, Dict, FrozenSet, List, Optional, Tuple

from wpsniff_shims.checkers import (
    CheckerContext,
    DiagnosticSeverity,
    TokenChecker,
    register_checker,
)
from wpsniff_shims.errors import ConfigError
from wpsniff_shims.escaping import strip_quotes
from wpsniff_shims.navigator import ExpressionNavigator, Parameter
from wpsniff_shims.tokens import COMMENT_KINDS, TEXT_STRING_KINDS, TokenKind

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — COMMENTS
# ═════════════════════════════════════════════════════════════════════════

@register_checker
class TodoCommentChecker(TokenChecker):
    name = "Commenting.TodoComment"
    description = "TODO markers left in comments"
    error_ids = frozenset({"Found"})
    default_severity = DiagnosticSeverity.WARNING

    def register(self) -> FrozenSet[TokenKind]:
        return COMMENT_KINDS

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        if "todo:" in ctx.stream[pos].lower:
            self._emit(ctx, "Found", 'Avoid "TODO" comment.', pos)
        return None


_COMMENT_OPEN_RE = re.compile(r"^\s*(//|#|/\*)")
_COMMENT_CLOSE_RE = re.compile(r"\*/\s*$")


@register_checker
class AllCapsCommentChecker(TokenChecker):
    """Comments written entirely in capital letters."""

    name = "Commenting.AllCapsComment"
    description = "Comments written in all capital letters"
    error_ids = frozenset({"Found"})
    default_severity = DiagnosticSeverity.WARNING

    def register(self) -> FrozenSet[TokenKind]:
        return frozenset({TokenKind.COMMENT})

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        text = _COMMENT_OPEN_RE.sub("", ctx.stream[pos].text)
        text = _COMMENT_CLOSE_RE.sub("", text).strip()
        # "// ---" and "// 404" have no case
        if not any(ch.isalpha() for ch in text):
            return None
        if text.upper() == text:
            self._emit(ctx, "Found", "Avoid using all capital letters in comments.", pos)
        return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — URLS
# ═════════════════════════════════════════════════════════════════════════

LOCALHOST_RE = re.compile(r"https?://(localhost|127.0.0.1|(.*\.local(host)?))/")


@register_checker
class LocalhostChecker(TokenChecker):
    name = "CodeAnalysis.Localhost"
    description = "Local development URLs in string literals"
    error_ids = frozenset({"Found"})
    default_severity = DiagnosticSeverity.ERROR

    def register(self) -> FrozenSet[TokenKind]:
        return TEXT_STRING_KINDS

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        content = ctx.stream[pos].text
        if "//" not in content:
            return None
        match = LOCALHOST_RE.search(content)
        if match is not None:
            self._emit(
                ctx, "Found", "Do not use Localhost/127.0.0.1 in your code. Found: %s",
                pos, [match.group(0)],
            )
        return None


SHORT_URL_DOMAINS: Tuple[str, ...] = (
    "adf.ly", "bit.do", "bit.ly", "clck.ru", "cutt.ly", "df.ly", "goo.gl",
    "is.gd", "lc.chat", "ow.ly", "polr.me", "rb.gy", "s2r.co", "short.link",
    "shorturl.at", "soo.gd", "tiny.cc", "tinyurl.com", "v.gd",
)


@register_checker
class ShortURLChecker(TokenChecker):
    """
    Links through URL shorteners.

    Comments are searched as written; string literals have their
    quotes removed first.
    """

    name = "CodeAnalysis.ShortURL"
    description = "Shortened URLs in strings and comments"
    error_ids = frozenset({"Found"})
    default_severity = DiagnosticSeverity.WARNING

    domains: ClassVar[Tuple[str, ...]] = SHORT_URL_DOMAINS

    def configure(self, ctx: CheckerContext) -> None:
        alternatives = "|".join(re.escape(d) for d in self.domains)
        self.pattern = re.compile(r"https?://(?:[^/\s]+\.)?(" + alternatives + ")")

    def register(self) -> FrozenSet[TokenKind]:
        return frozenset({
            TokenKind.COMMENT, TokenKind.DOC_COMMENT,
            TokenKind.CONSTANT_ENCAPSED_STRING, TokenKind.DOUBLE_QUOTED_STRING,
            TokenKind.HEREDOC, TokenKind.NOWDOC,
        })

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        tok = ctx.stream[pos]
        content = tok.text if tok.kind in COMMENT_KINDS else strip_quotes(tok.text)
        match = self.pattern.search(content)
        if match is not None:
            self._emit(
                ctx, "Found",
                "Shortened URL detected (%s). Use full URLs instead of URL shorteners.",
                pos, [match.group(1)],
            )
        return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — LANGUAGE CONSTRUCTS AND CALLS
# ═════════════════════════════════════════════════════════════════════════

@register_checker
class HeredocChecker(TokenChecker):
    name = "PHP.Heredoc"
    description = "Heredoc strings"
    error_ids = frozenset({"HeredocNotAllowed"})
    default_severity = DiagnosticSeverity.ERROR

    def register(self) -> FrozenSet[TokenKind]:
        return frozenset({TokenKind.START_HEREDOC})

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        self._emit(
            ctx, "HeredocNotAllowed",
            "Use of %s syntax (%s) is not allowed; use standard strings or inline HTML instead",
            pos, ["heredoc", ctx.stream[pos].text.strip()],
        )
        return None


UNFILTERED_UPLOADS = "ALLOW_UNFILTERED_UPLOADS"


@register_checker
class UnfilteredUploadsChecker(TokenChecker):
    name = "Security.UnfilteredUploads"
    description = "define('ALLOW_UNFILTERED_UPLOADS', ...)"
    error_ids = frozenset({"Prohibited"})
    default_severity = DiagnosticSeverity.ERROR

    def register(self) -> FrozenSet[TokenKind]:
        return frozenset({TokenKind.STRING})

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        s = ctx.stream
        if s[pos].text != "define" or s.kind_at(pos + 1) is not TokenKind.OPEN_PARENTHESIS:
            return None
        arg = s.find_next(TokenKind.WHITESPACE, pos + 2, exclude=True)
        if arg is None:
            return None
        if s[arg].kind is TokenKind.CONSTANT_ENCAPSED_STRING:
            constant = s[arg].text.strip("'\"")
        elif s[arg].kind is TokenKind.STRING:
            constant = s[arg].text
        else:
            return None
        if constant == UNFILTERED_UPLOADS:
            self._emit(ctx, "Prohibited", "Use of `ALLOW_UNFILTERED_UPLOADS` is prohibited.", pos)
        return None


class FunctionCallChecker(TokenChecker):
    """Base for checkers triggered by calls to a fixed set of functions."""

    target_functions: ClassVar[FrozenSet[str]] = frozenset()

    def configure(self, ctx: CheckerContext) -> None:
        self.nav = ExpressionNavigator(ctx.stream)

    def register(self) -> FrozenSet[TokenKind]:
        return frozenset({TokenKind.STRING})

    def process_token(self, ctx: CheckerContext, pos: int) -> Optional[int]:
        name = ctx.stream[pos].lower
        if name in self.target_functions and self.nav.is_function_call(pos):
            self.process_call(ctx, pos, name)
        return None

    def process_call(self, ctx: CheckerContext, pos: int, name: str) -> None:
        raise NotImplementedError


@register_checker
class DiscouragedFunctionsChecker(FunctionCallChecker):
    name = "PHP.DiscouragedFunctions"
    description = "Calls that are unnecessary on current WordPress"
    error_ids = frozenset({"LoadPluginTextdomainFound"})
    default_severity = DiagnosticSeverity.WARNING

    target_functions = frozenset({"load_plugin_textdomain"})

    def process_call(self, ctx: CheckerContext, pos: int, name: str) -> None:
        self._emit(
            ctx, "LoadPluginTextdomainFound",
            "Using %s() for loading the plugin translations is not needed "
            "for WordPress.org directory since WordPress 4.6.",
            pos, [name],
        )


def _error_code(text: str) -> str:
    """``parse_str_result`` → ``ParseStrResult``."""
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^A-Za-z0-9]+", text))


@register_checker
class RequiredFunctionParametersChecker(FunctionCallChecker):
    """Calls missing an argument that changes their behavior when left out."""

    name = "PHP.RequiredFunctionParameters"
    description = "Calls missing a required output argument"
    error_ids = frozenset({"ParseStrResultMissing"})
    default_severity = DiagnosticSeverity.ERROR

    # function -> (1-based position, parameter name)
    required: ClassVar[Dict[str, Tuple[int, str]]] = {"parse_str": (2, "result")}
    target_functions = frozenset(required)

    def process_call(self, ctx: CheckerContext, pos: int, name: str) -> None:
        position, param_name = self.required[name]
        if self.nav.get_parameter(pos, position, param_name) is not None:
            return
        self._emit(
            ctx, _error_code(f"{name}_{param_name}") + "Missing",
            'The "%s" parameter for function %s() is missing.',
            pos, [param_name, name],
        )


LIBRARY_FILE_PATTERNS: Tuple[str, ...] = (r"jquery\.min\.js", r"hoverintent\.js")


@register_checker
class LibrariesCoreChecker(FunctionCallChecker):
    """Scripts enqueued from a bundled copy of a library WordPress ships."""

    name = "CodeAnalysis.LibrariesCore"
    description = "Bundled copies of core JavaScript libraries"
    error_ids = frozenset({"Found"})
    default_severity = DiagnosticSeverity.ERROR

    target_functions = frozenset({"wp_enqueue_script", "wp_register_script"})

    def configure(self, ctx: CheckerContext) -> None:
        super().configure(ctx)
        self.pattern = re.compile("(" + "|".join(LIBRARY_FILE_PATTERNS) + ")", re.IGNORECASE)

    def process_call(self, ctx: CheckerContext, pos: int, name: str) -> None:
        src = self.nav.get_parameter(pos, 2, "src")
        if src is None:
            return
        if self.pattern.search(src.raw):
            self._emit(ctx, "Found", "Core library found.", src.start)


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — LANGUAGE
# ═════════════════════════════════════════════════════════════════════════

_I18N_SIGNATURES: Dict[str, Tuple[str, ...]] = {
    "simple": ("text", "domain"),
    "context": ("text", "context", "domain"),
    "number": ("single", "plural", "number", "domain"),
    "number_context": ("single", "plural", "number", "context", "domain"),
    "noopnumber": ("singular", "plural", "domain"),
    "noopnumber_context": ("singular", "plural", "context", "domain"),
}

_I18N_GROUPS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("simple", ("translate", "__", "esc_attr__", "esc_html__", "_e", "esc_attr_e", "esc_html_e")),
    ("context", ("translate_with_gettext_context", "_x", "_ex", "esc_attr_x", "esc_html_x")),
    ("number", ("_n",)),
    ("number_context", ("_nx",)),
    ("noopnumber", ("_n_noop",)),
    ("noopnumber_context", ("_nx_noop",)),
)

# function -> ordered parameter names; "domain" is the one checked
I18N_FUNCTIONS: Dict[str, Tuple[str, ...]] = {
    name: _I18N_SIGNATURES[group] for group, names in _I18N_GROUPS for name in names
}

# Context and text of a core string are joined with gettext's separator.
CONTEXT_GLUE = "\x04"

CORE_TRANSLATIONS: FrozenSet[str] = frozenset({
    "Add New", "Apply", "Back", "Cancel", "Close", "Delete", "Description",
    "Dismiss this notice.", "Edit", "Loading\u2026", "Name", "Next", "No",
    "Previous", "Remove", "Save", "Save Changes", "Search", "Settings",
    "Submit", "Title", "Update", "View", "Yes",
    "post type general name" + CONTEXT_GLUE + "Posts",
    "post type singular name" + CONTEXT_GLUE + "Post",
    "admin menu" + CONTEXT_GLUE + "Settings",
})


@register_checker
class I18nTextDomainChecker(FunctionCallChecker):
    """
    Translation calls without a text domain.

    Strings that WordPress core already translates may omit the domain;
    the ``core_translations`` property adds to the built-in list.
    """

    name = "Language.I18nTextDomain"
    description = "Translation calls missing the text domain"
    error_ids = frozenset({"MissingDomainRequired"})
    default_severity = DiagnosticSeverity.ERROR
    properties = frozenset({"core_translations"})

    target_functions = frozenset(I18N_FUNCTIONS)

    def configure(self, ctx: CheckerContext) -> None:
        super().configure(ctx)
        extra = ctx.properties_for(self.name).get("core_translations", ())
        if not isinstance(extra, (list, tuple, set, frozenset)):
            raise ConfigError(f"property 'core_translations' of '{self.name}' must be a list")
        self.core_translations = CORE_TRANSLATIONS | {str(v) for v in extra}

    def process_call(self, ctx: CheckerContext, pos: int, name: str) -> None:
        signature = I18N_FUNCTIONS[name]
        domain = self._argument(pos, signature, "domain")
        if domain is not None and strip_quotes(domain.clean).strip():
            return
        if self.is_core_translation(pos, signature):
            return
        self._emit(
            ctx, "MissingDomainRequired",
            "Missing text domain parameter in function call to %s().",
            pos, [name],
        )

    def is_core_translation(self, pos: int, signature: Tuple[str, ...]) -> bool:
        text_name = next((n for n in signature if n in ("text", "single", "singular")), None)
        text = self._argument(pos, signature, text_name) if text_name else None
        if text is None or not text.clean.strip():
            return False
        text_value = strip_quotes(text.clean)
        context = self._argument(pos, signature, "context")
        if context is not None and context.clean.strip():
            if strip_quotes(context.clean) + CONTEXT_GLUE + text_value in self.core_translations:
                return True
        return text_value in self.core_translations

    def _argument(self, pos: int, signature: Tuple[str, ...], name: str) -> Optional[Parameter]:
        if name not in signature:
            return None
        return self.nav.get_parameter(pos, signature.index(name) + 1, name)


_EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF"
    "\u2600-\u26FF\u2700-\u27BF\uFE00-\uFE0F\U0001F900-\U0001F9FF"
    "\U0001FA70-\U0001FAFF\u200D\u2300-\u23FF]"
)


def non_english_characters(text: str) -> List[str]:
    """Unique non-ASCII characters of ``text`` that are not emoji, in order."""
    found: List[str] = []
    for ch in text:
        if ord(ch) < 128 or _EMOJI_RE.match(ch) or ch in found:
            continue
        found.append(ch)
    return found


@register_checker
class I18nFunctionParametersChecker(FunctionCallChecker):
    """
    Admin screen titles written in a language other than English.

    Translatable strings must be in English so translators have a common
    source.  Literal arguments are checked directly; for a call such as
    ``__( '...' )`` the first string literal inside it is checked.
    """

    name = "Language.I18nFunctionParameters"
    description = "Non-English text in menu, meta box and settings titles"
    default_severity = DiagnosticSeverity.WARNING

    # function -> 1-based position -> parameter name
    checked: ClassVar[Dict[str, Dict[int, str]]] = {
        "add_menu_page": {1: "page_title", 2: "menu_title"},
        "add_meta_box": {2: "title"},
        "add_options_page": {1: "page_title", 2: "menu_title"},
        "add_settings_field": {2: "title"},
        "add_settings_section": {2: "title"},
        "add_submenu_page": {2: "page_title", 3: "menu_title"},
        "register_nav_menu": {2: "description"},
        "wp_add_dashboard_widget": {2: "widget_name"},
    }
    target_functions = frozenset(checked)
    error_ids = frozenset(
        _error_code(f"{func}_{param}") + "NonEnglishDetected"
        for func, params in checked.items()
        for param in params.values()
    )

    def process_call(self, ctx: CheckerContext, pos: int, name: str) -> None:
        for position, param_name in self.checked[name].items():
            param = self.nav.get_parameter(pos, position, param_name)
            if param is None:
                continue
            text = self._literal_text(ctx, param)
            if text is None or not non_english_characters(text):
                continue
            self._emit(
                ctx, _error_code(f"{name}_{param_name}") + "NonEnglishDetected",
                'The "%s" parameter for function %s() has non-English text.',
                pos, [param_name, name],
            )

    def _literal_text(self, ctx: CheckerContext, param: Parameter) -> Optional[str]:
        s = ctx.stream
        first = s[param.start]
        if first.kind is TokenKind.CONSTANT_ENCAPSED_STRING:
            return strip_quotes(first.text).strip()
        if first.kind is not TokenKind.STRING:
            return None
        opener = s.next_non_empty(param.start + 1, param.end + 1)
        if s.kind_at(opener) is not TokenKind.OPEN_PARENTHESIS:
            return None
        closer = s.find_next(TokenKind.CLOSE_PARENTHESIS, opener + 1, param.end + 1)
        if closer is None:
            return None
        literal = s.find_next(TokenKind.CONSTANT_ENCAPSED_STRING, opener + 1, closer)
        if literal is None:
            return None
        return strip_quotes(s[literal].text).strip()


__all__ = [
    "TodoCommentChecker",
    "AllCapsCommentChecker",
    "LocalhostChecker",
    "ShortURLChecker",
    "HeredocChecker",
    "UnfilteredUploadsChecker",
    "FunctionCallChecker",
    "DiscouragedFunctionsChecker",
    "RequiredFunctionParametersChecker",
    "LibrariesCoreChecker",
    "I18nTextDomainChecker",
    "I18nFunctionParametersChecker",
    "non_english_characters",
    "LOCALHOST_RE",
    "SHORT_URL_DOMAINS",
    "LIBRARY_FILE_PATTERNS",
    "I18N_FUNCTIONS",
    "CORE_TRANSLATIONS",
]
