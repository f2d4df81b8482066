# tests/test_taint.py
"""
Tests for the per-file taint tracker and scope keys.
"""

from wpsniff_shims.taint import (
    GLOBAL_SCOPE,
    SafetyState,
    TaintTracker,
    key_prefixes,
    scope_of,
)
from wpsniff_shims.tokens import TokenKind


class TestTracker:

    def test_unknown_variable(self):
        tracker = TaintTracker()
        assert tracker.lookup(GLOBAL_SCOPE, "$a") is None
        assert not tracker.is_sanitized(GLOBAL_SCOPE, "$a")

    def test_latest_mark_wins(self):
        tracker = TaintTracker()
        tracker.mark_unsanitized(GLOBAL_SCOPE, "$a", 3, 5, 8, line=2)
        tracker.mark_sanitized(GLOBAL_SCOPE, "$a", 12, line=3)
        assert tracker.lookup(GLOBAL_SCOPE, "$a") is SafetyState.SANITIZED
        assert len(tracker) == 1

    def test_scopes_are_separate(self):
        tracker = TaintTracker()
        tracker.mark_sanitized(GLOBAL_SCOPE, "$a", 1)
        assert tracker.lookup(42, "$a") is None
        assert tracker.is_sanitized(GLOBAL_SCOPE, "$a")

    def test_prefix_fallback(self):
        tracker = TaintTracker()
        tracker.mark_unsanitized(GLOBAL_SCOPE, "$row", 1, 2, 3)
        entry = tracker.resolve(GLOBAL_SCOPE, "$row[id]->name")
        assert entry.variable == "$row"
        assert tracker.lookup(GLOBAL_SCOPE, "$row->name") is SafetyState.UNSANITIZED

    def test_exact_key_beats_prefix(self):
        tracker = TaintTracker()
        tracker.mark_unsanitized(GLOBAL_SCOPE, "$row", 1)
        tracker.mark_sanitized(GLOBAL_SCOPE, "$row[id]", 5)
        assert tracker.is_sanitized(GLOBAL_SCOPE, "$row[id]")
        assert not tracker.is_sanitized(GLOBAL_SCOPE, "$row[name]")

    def test_entry_records_assignment(self):
        tracker = TaintTracker()
        entry = tracker.mark_unsanitized(GLOBAL_SCOPE, "$a", 7, 9, 14, line=4)
        assert entry.value_start == 9
        assert entry.value_end == 14
        assert entry.line == 4
        assert not entry.is_sanitized
        assert tracker.entry(GLOBAL_SCOPE, "$a") is entry
        assert list(tracker) == [entry]

    def test_state_str(self):
        assert str(SafetyState.SANITIZED) == "sanitized"


class TestKeyPrefixes:

    def test_longest_first(self):
        assert list(key_prefixes("$row[id]->name")) == ["$row[id]", "$row"]

    def test_nested_index_is_not_split(self):
        assert list(key_prefixes("$a[$b[1]]")) == ["$a"]

    def test_static_member(self):
        assert list(key_prefixes("$cls::NAME")) == ["$cls"]

    def test_plain_variable(self):
        assert list(key_prefixes("$a")) == []


class TestScopeOf:

    def test_global_code(self, make_stream):
        s = make_stream("$a = 1;")
        assert scope_of(s, s.find_next(TokenKind.VARIABLE, 0)) == GLOBAL_SCOPE

    def test_innermost_function(self, make_stream):
        s = make_stream("function f() { $g = function () { $a = 1; }; $b = 2; }")
        fn = s.find_next(TokenKind.FUNCTION, 0)
        closure = s.find_next(TokenKind.CLOSURE, 0)
        a = s.find_next(TokenKind.VARIABLE, 0, value="$a")
        b = s.find_next(TokenKind.VARIABLE, 0, value="$b")
        assert scope_of(s, a) == closure
        assert scope_of(s, b) == fn

    def test_control_blocks_do_not_open_scopes(self, make_stream):
        s = make_stream("if ( $x ) { $a = 1; }")
        a = s.find_next(TokenKind.VARIABLE, 0, value="$a")
        assert scope_of(s, a) == GLOBAL_SCOPE
