# tests/conftest.py
"""
Shared fixtures: tokenizing snippets and running checkers over them.
"""

import pytest

from wpsniff_shims.checkers import CheckerRegistry, CheckerRunner, default_registry
from wpsniff_shims.lexer import tokenize_source


@pytest.fixture
def make_stream():
    """Tokenize a PHP snippet; a missing open tag is added."""
    def _make(source, path="test.php"):
        if "<?" not in source:
            source = "<?php\n" + source
        return tokenize_source(source, path)
    return _make


@pytest.fixture
def run_checker():
    """
    Run one checker class (or registered checker name) over a snippet.

    Returns the list of reported diagnostics.
    """
    def _run(checker, source, properties=None, path="test.php"):
        if "<?" not in source:
            source = "<?php\n" + source
        if isinstance(checker, str):
            runner = CheckerRunner(registry=default_registry(), properties=properties)
            results = runner.run_source(source, path, checkers=[checker])
        else:
            registry = CheckerRegistry()
            registry.register(checker)
            runner = CheckerRunner(registry=registry, properties=properties)
            results = runner.run_source(source, path)
        return results.diagnostics
    return _run


@pytest.fixture
def php_tree(tmp_path):
    """Write ``{relative_path: source}`` under a temp dir and return it."""
    def _write(files):
        for rel, source in files.items():
            target = tmp_path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(source, encoding="utf-8")
        return tmp_path
    return _write
