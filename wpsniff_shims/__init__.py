"""
wpsniff_shims — Token-Level Security Analysis for WordPress PHP
===============================================================

This package checks WordPress plugin and theme code for unescaped values
reaching database queries and HTML output, unsafe nonce verification,
and a handful of code-quality patterns.  It works on a flat token
stream: there is no AST, no control-flow graph and no type inference.

Core modules
------------
tokens
    ``TokenKind``, ``Token`` and the ``TokenStream`` accessor.
lexer
    Reference PHP tokenizer producing linked token streams.
navigator
    Expression navigation: expression ends, conditions, call arguments.
variables
    Canonical variable keys and string-interpolation extraction.
taint
    Per-file variable safety state.
escaping
    Escaping rule sets and the escaping classifier.
sinks
    Sink detection for the database and output rule sets.
checkers
    Diagnostics, suppressions, checker registry and runner.
security_checkers / pattern_checkers
    The built-in checkers.
config
    JSON ruleset loading.
reporter
    Text, JSON, SARIF and HTML reports.

Quick start
-----------
>>> from wpsniff_shims import CheckerRunner
>>> results = CheckerRunner().run_source("<?php echo $_GET['q'];")
>>> [d.error_id for d in results.diagnostics]
['WPSniff.Security.OutputEscaping.UnescapedOutputParameter']

License: MIT
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import TYPE_CHECKING, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.2.0"
__license__ = "MIT"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Re-exported names, per submodule
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "WpsniffError",
        "TokenizerError",
        "ConfigError",
        "CheckerError",
    ],
    "tokens": [
        "TokenKind",
        "Token",
        "TokenStream",
    ],
    "lexer": [
        "PhpLexer",
        "tokenize_source",
        "tokenize_file",
    ],
    "navigator": [
        "ExpressionNavigator",
        "Parameter",
    ],
    "taint": [
        "SafetyState",
        "TaintTracker",
    ],
    "escaping": [
        "EscapingRuleSet",
        "EscapingClassifier",
        "SQL_RULES",
        "OUTPUT_RULES",
    ],
    "sinks": [
        "Sink",
        "SinkDetector",
    ],
    "checkers": [
        "Diagnostic",
        "DiagnosticSeverity",
        "Checker",
        "TokenChecker",
        "CheckerRegistry",
        "CheckerRunner",
        "register_checker",
        "default_registry",
    ],
    "security_checkers": [
        "DirectDBChecker",
        "OutputEscapingChecker",
        "VerifyNonceChecker",
        "SettingSanitizationChecker",
    ],
    "pattern_checkers": [],
    "config": [
        "RulesetConfig",
        "load_config",
    ],
    "reporter": [
        "Reporter",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import ``names`` from a submodule and bind them on the package."""
    mod = importlib.import_module(f"{__name__}.{module_rel_name}")
    current_module = sys.modules[__name__]
    for name in names:
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)
    setattr(current_module, module_rel_name, mod)
    __all__.append(module_rel_name)
    _log.debug("loaded %s", module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    return sorted(_CORE_MODULES)


__all__ += ["list_submodules", "__version__"]

# ---------------------------------------------------------------------------
# TYPE_CHECKING block — names bound dynamically above
# ---------------------------------------------------------------------------

if TYPE_CHECKING:
    from .errors import (
        WpsniffError as WpsniffError,
        TokenizerError as TokenizerError,
        ConfigError as ConfigError,
        CheckerError as CheckerError,
    )
    from .tokens import (
        TokenKind as TokenKind,
        Token as Token,
        TokenStream as TokenStream,
    )
    from .lexer import (
        PhpLexer as PhpLexer,
        tokenize_source as tokenize_source,
        tokenize_file as tokenize_file,
    )
    from .navigator import (
        ExpressionNavigator as ExpressionNavigator,
        Parameter as Parameter,
    )
    from .taint import (
        SafetyState as SafetyState,
        TaintTracker as TaintTracker,
    )
    from .escaping import (
        EscapingRuleSet as EscapingRuleSet,
        EscapingClassifier as EscapingClassifier,
        SQL_RULES as SQL_RULES,
        OUTPUT_RULES as OUTPUT_RULES,
    )
    from .sinks import (
        Sink as Sink,
        SinkDetector as SinkDetector,
    )
    from .checkers import (
        Diagnostic as Diagnostic,
        DiagnosticSeverity as DiagnosticSeverity,
        Checker as Checker,
        TokenChecker as TokenChecker,
        CheckerRegistry as CheckerRegistry,
        CheckerRunner as CheckerRunner,
        register_checker as register_checker,
        default_registry as default_registry,
    )
    from .security_checkers import (
        DirectDBChecker as DirectDBChecker,
        OutputEscapingChecker as OutputEscapingChecker,
        VerifyNonceChecker as VerifyNonceChecker,
        SettingSanitizationChecker as SettingSanitizationChecker,
    )
    from .config import (
        RulesetConfig as RulesetConfig,
        load_config as load_config,
    )
    from .reporter import Reporter as Reporter
