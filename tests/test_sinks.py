# tests/test_sinks.py
"""
Tests for sink detection under the database and output rule sets.
"""

import pytest

from wpsniff_shims.escaping import OUTPUT_RULES, SQL_RULES
from wpsniff_shims.navigator import ExpressionNavigator
from wpsniff_shims.sinks import SinkDetector, SinkKind
from wpsniff_shims.tokens import TokenKind


@pytest.fixture
def sinks_in(make_stream):
    """Every sink found in a snippet, in file order."""
    def _find(source, rules):
        s = make_stream(source)
        detector = SinkDetector(s, ExpressionNavigator(s), rules)
        found = []
        for i in range(len(s)):
            sink = detector.needs_escaping(i)
            if sink is not None:
                found.append(sink)
        return s, found
    return _find


class TestDatabaseSinks:

    def test_wpdb_method(self, sinks_in):
        s, found = sinks_in("$wpdb->get_results( $sql );", SQL_RULES)
        assert len(found) == 1
        sink = found[0]
        assert sink.kind is SinkKind.METHOD
        assert sink.name == "get_results"
        assert sink.object_text == "$wpdb"
        assert sink.param_index == 1
        assert s[sink.position].text == "get_results"

    def test_method_on_other_object_is_ignored(self, sinks_in):
        _, found = sinks_in("$db->query( $sql );", SQL_RULES)
        assert found == []

    def test_safe_method_is_ignored(self, sinks_in):
        _, found = sinks_in("$wpdb->insert( $table, $data );", SQL_RULES)
        assert found == []

    def test_property_named_like_method(self, sinks_in):
        _, found = sinks_in("$x = $wpdb->query;", SQL_RULES)
        assert found == []

    def test_raw_query_function(self, sinks_in):
        _, found = sinks_in("mysqli_query( $link, $sql );", SQL_RULES)
        assert [(f.kind, f.name, f.param_index) for f in found] == [
            (SinkKind.FUNCTION, "mysqli_query", 2),
        ]

    def test_echo_is_not_a_database_sink(self, sinks_in):
        _, found = sinks_in("echo $sql;", SQL_RULES)
        assert found == []


class TestOutputSinks:

    def test_echo_and_print(self, sinks_in):
        _, found = sinks_in("echo $a; print $b;", OUTPUT_RULES)
        assert [(f.kind, f.name) for f in found] == [
            (SinkKind.STATEMENT, "echo"), (SinkKind.STATEMENT, "print"),
        ]
        assert all(f.param_index is None for f in found)

    def test_short_echo_tag(self, sinks_in):
        _, found = sinks_in("<?= $a ?>", OUTPUT_RULES)
        assert [f.name for f in found] == ["<?="]

    def test_exit_with_argument(self, sinks_in):
        _, found = sinks_in("die( $msg ); exit; exit();", OUTPUT_RULES)
        assert [(f.kind, f.name) for f in found] == [(SinkKind.EXIT, "die")]

    def test_printf_checks_every_argument(self, sinks_in):
        _, found = sinks_in("printf( '%s', $a );", OUTPUT_RULES)
        assert found[0].kind is SinkKind.FUNCTION
        assert found[0].param_index == 0

    def test_method_named_printf_is_ignored(self, sinks_in):
        _, found = sinks_in("$obj->printf( $a );", OUTPUT_RULES)
        assert found == []

    def test_non_sink_token(self, make_stream):
        s = make_stream("$a;")
        detector = SinkDetector(s, ExpressionNavigator(s), OUTPUT_RULES)
        assert detector.needs_escaping(s.find_next(TokenKind.VARIABLE, 0)) is None
        assert detector.needs_escaping(len(s)) is None
