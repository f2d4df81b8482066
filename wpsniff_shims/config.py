"""
wpsniff_shims/config.py
═══════════════════════

JSON ruleset configuration.

A ruleset file selects checkers, silences codes and paths, and tunes the
escaping rule sets of individual checkers:

    {
      "checkers": {
        "enable":  ["Security.*"],
        "disable": ["Security.VerifyNonce"]
      },
      "exclude_codes": ["WPSniff.Commenting.*"],
      "exclude_paths": ["vendor/*", "*.min.php"],
      "extensions":    ["php", "inc"],
      "properties": {
        "Security.DirectDB": {
          "escaping_functions": {"add": ["my_esc_sql"]},
          "warn_only_parameters": ["$table"]
        }
      }
    }

``enable`` limits the run to the matching checkers; ``disable`` then
removes from that set.  Every name, code pattern and property is
validated when the file is loaded, so a typo fails the run up front
instead of silently doing nothing.

License: MIT
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from wpsniff_shims.checkers import (
    DEFAULT_EXTENSIONS,
    CheckerRegistry,
    SuppressionManager,
    default_registry,
)
from wpsniff_shims.errors import ConfigError

logger = logging.getLogger(__name__)

_TOP_LEVEL_KEYS = frozenset({
    "checkers", "exclude_codes", "exclude_paths", "extensions", "properties",
})
_CHECKER_KEYS = frozenset({"enable", "disable"})


@dataclass(frozen=True)
class RulesetConfig:
    """
    A validated ruleset.

    Attributes
    ----------
    enable        : Checker name patterns to run (empty = all)
    disable       : Checker name patterns to skip
    exclude_codes : fnmatch patterns over full rule codes
    exclude_paths : fnmatch patterns over file paths
    extensions    : File extensions scanned in directories
    properties    : Checker name → rule-set overrides
    path          : File the config was read from
    """
    enable: Tuple[str, ...] = ()
    disable: Tuple[str, ...] = ()
    exclude_codes: Tuple[str, ...] = ()
    exclude_paths: Tuple[str, ...] = ()
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    properties: Mapping[str, Mapping[str, Any]] = field(default_factory=dict, hash=False)
    path: str = ""

    @classmethod
    def from_dict(
        cls,
        data: Any,
        path: str = "",
        registry: Optional[CheckerRegistry] = None,
    ) -> "RulesetConfig":
        """
        Build and validate a config from decoded JSON.

        Raises:
            ConfigError: on unknown keys, checkers or properties, and on
                values of the wrong type.
        """
        if not isinstance(data, dict):
            raise ConfigError("ruleset must be a JSON object", path)
        unknown = set(data) - _TOP_LEVEL_KEYS
        if unknown:
            raise ConfigError(f"unknown key(s): {', '.join(sorted(unknown))}", path)

        registry = registry or default_registry()

        checkers = data.get("checkers", {})
        if not isinstance(checkers, dict):
            raise ConfigError("'checkers' must be an object", path)
        unknown = set(checkers) - _CHECKER_KEYS
        if unknown:
            raise ConfigError(f"unknown key(s) in 'checkers': {', '.join(sorted(unknown))}", path)
        enable = _string_list(checkers, "enable", path)
        disable = _string_list(checkers, "disable", path)
        for pattern in enable + disable:
            if not registry.match(pattern):
                raise ConfigError(f"no checker matches '{pattern}'", path)

        extensions = _string_list(data, "extensions", path) or DEFAULT_EXTENSIONS
        config = cls(
            enable=enable,
            disable=disable,
            exclude_codes=_string_list(data, "exclude_codes", path),
            exclude_paths=_string_list(data, "exclude_paths", path),
            extensions=tuple(e if e.startswith(".") else f".{e}" for e in extensions),
            properties=_validate_properties(data.get("properties", {}), path, registry),
            path=path,
        )
        logger.debug("loaded ruleset %s", config)
        return config

    # ── application ──────────────────────────────────────────────────

    def apply(self, registry: CheckerRegistry) -> CheckerRegistry:
        """A copy of ``registry`` with this config's selection applied."""
        selected = registry.copy()
        if self.enable:
            selected.disable("*")
            for pattern in self.enable:
                selected.enable(pattern)
        for pattern in self.disable:
            selected.disable(pattern)
        return selected

    def suppressions(self) -> SuppressionManager:
        sm = SuppressionManager()
        for pattern in self.exclude_codes:
            sm.add_global_suppression(pattern)
        return sm


def _string_list(data: Mapping[str, Any], key: str, path: str) -> Tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings", path)
    return tuple(value)


def _validate_properties(
    value: Any, path: str, registry: CheckerRegistry,
) -> Dict[str, Dict[str, Any]]:
    if not isinstance(value, dict):
        raise ConfigError("'properties' must be an object", path)
    result: Dict[str, Dict[str, Any]] = {}
    for name, overrides in value.items():
        cls = registry.get_by_name(name)
        if cls is None:
            raise ConfigError(f"properties given for unknown checker '{name}'", path)
        if not isinstance(overrides, dict):
            raise ConfigError(f"properties of '{name}' must be an object", path)
        unknown = set(overrides) - cls.properties
        if unknown:
            raise ConfigError(
                f"unknown propert{'y' if len(unknown) == 1 else 'ies'} for '{name}': "
                f"{', '.join(sorted(unknown))}",
                path,
            )
        base_rules = getattr(cls, "base_rules", None)
        if base_rules is not None:
            try:
                base_rules.with_overrides(**overrides)
            except ConfigError as exc:
                raise ConfigError(f"{name}: {exc.message}", path) from exc
        result[name] = dict(overrides)
    return result


def load_config(path: str, registry: Optional[CheckerRegistry] = None) -> RulesetConfig:
    """
    Read a JSON ruleset file.

    Raises:
        ConfigError: if the file cannot be read, is not valid JSON, or
            fails validation.
    """
    path = os.path.expanduser(path)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise ConfigError(f"cannot read ruleset: {exc.strerror or exc}", path) from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON at line {exc.lineno}: {exc.msg}", path) from exc
    return RulesetConfig.from_dict(data, path, registry)


__all__ = ["RulesetConfig", "load_config"]
