# tests/test_navigator.py
"""
Tests for ExpressionNavigator: expression and statement boundaries,
assignments, conditions, ternaries and call arguments.
"""

import pytest

from wpsniff_shims.navigator import ExpressionNavigator
from wpsniff_shims.tokens import TokenKind


@pytest.fixture
def nav_for(make_stream):
    def _build(source):
        stream = make_stream(source)
        return stream, ExpressionNavigator(stream)
    return _build


def find(stream, kind, text=None, start=0):
    i = stream.find_next(kind, start, value=text)
    assert i is not None
    return i


class TestExpressionEnd:

    def test_stops_before_semicolon(self, nav_for):
        s, nav = nav_for("$a = $b . foo( $c );")
        eq = find(s, TokenKind.EQUAL)
        last = nav.find_end_of_expression(eq + 1)
        assert s[last].kind is TokenKind.CLOSE_PARENTHESIS
        assert nav.get_expression_as_string(eq + 1) == "$b . foo( $c )"

    def test_stops_before_comma(self, nav_for):
        s, nav = nav_for("foo( $a + 1, $b );")
        a = find(s, TokenKind.VARIABLE, "$a")
        last = nav.find_end_of_expression(a)
        assert s[last].text == "1"

    def test_opener_returns_its_closer(self, nav_for):
        s, nav = nav_for("$x = [ 1, 2 ];")
        opener = find(s, TokenKind.OPEN_SQUARE_BRACKET)
        assert nav.find_end_of_expression(opener) == s[opener].bracket_closer

    def test_stops_at_unmatched_closer(self, nav_for):
        s, nav = nav_for("if ( $a && $b ) {}")
        a = find(s, TokenKind.VARIABLE, "$a")
        last = nav.find_end_of_expression(a)
        assert s[last].text == "$b"


class TestStatements:

    def test_statement_terminator(self, nav_for):
        s, nav = nav_for("echo foo( 1; 2 ), $a; $b;")
        echo = find(s, TokenKind.ECHO)
        term = nav.find_statement_terminator(echo + 1)
        assert s[term].kind is TokenKind.SEMICOLON
        assert s[term - 1].text == "$a"

    def test_statement_terminator_at_eof(self, nav_for):
        s, nav = nav_for("echo $a")
        echo = find(s, TokenKind.ECHO)
        assert nav.find_statement_terminator(echo) == len(s)

    def test_close_tag_terminates(self, nav_for):
        s, nav = nav_for("<?php echo $a ?>tail")
        echo = find(s, TokenKind.ECHO)
        assert s[nav.find_statement_terminator(echo)].kind is TokenKind.CLOSE_TAG

    def test_start_of_statement(self, nav_for):
        s, nav = nav_for("$x = 1; $y = foo( $z );")
        z = find(s, TokenKind.VARIABLE, "$z")
        y = find(s, TokenKind.VARIABLE, "$y")
        start = nav.find_start_of_statement(z)
        assert start == find(s, TokenKind.VARIABLE, "$z")
        call = find(s, TokenKind.STRING, "foo")
        assert nav.find_start_of_statement(call) == y

    def test_end_of_statement_block(self, nav_for):
        s, nav = nav_for("if ( $a ) { $b = 1; } $c = 2;")
        if_pos = find(s, TokenKind.IF)
        assert nav.find_end_of_statement(if_pos) == s[if_pos].scope_closer


class TestAssignments:

    def test_simple_assignment(self, nav_for):
        s, nav = nav_for("$a = 1;")
        a = find(s, TokenKind.VARIABLE)
        assert s[nav.find_assignment_operator(a)].kind is TokenKind.EQUAL
        assert nav.is_assignment(a)

    def test_index_and_property_targets(self, nav_for):
        s, nav = nav_for("$a['k'][0] = 1; $o->p->q .= 'x';")
        a = find(s, TokenKind.VARIABLE, "$a")
        o = find(s, TokenKind.VARIABLE, "$o")
        assert s[nav.find_assignment_operator(a)].kind is TokenKind.EQUAL
        assert s[nav.find_assignment_operator(o)].kind is TokenKind.CONCAT_EQUAL

    def test_comparison_is_not_assignment(self, nav_for):
        s, nav = nav_for("if ( $a == 1 ) {}")
        a = find(s, TokenKind.VARIABLE)
        assert not nav.is_assignment(a)

    def test_assignment_statement(self, nav_for):
        s, nav = nav_for("$ok = wp_verify_nonce( $n, 'act' );")
        call = find(s, TokenKind.STRING, "wp_verify_nonce")
        assert nav.is_assignment_statement(call)

    def test_return_statement(self, nav_for):
        s, nav = nav_for("function f() { return wp_verify_nonce( $n ); }")
        call = find(s, TokenKind.STRING, "wp_verify_nonce")
        assert nav.is_return_statement(call)
        assert not nav.is_assignment_statement(call)


class TestConditions:

    def test_conditional_expression(self, nav_for):
        s, nav = nav_for("if ( ! foo( $a ) ) { die; }")
        call = find(s, TokenKind.STRING, "foo")
        if_pos = find(s, TokenKind.IF)
        assert nav.is_conditional_expression(call) == if_pos
        opener, closer = nav.get_expression_from_condition(if_pos)
        assert s[opener].kind is TokenKind.OPEN_PARENTHESIS
        assert s[closer].kind is TokenKind.CLOSE_PARENTHESIS
        assert nav.expression_is_negated(call) is not None

    def test_not_conditional(self, nav_for):
        s, nav = nav_for("foo( $a );")
        assert nav.is_conditional_expression(find(s, TokenKind.STRING, "foo")) is None

    def test_scope_of_braced_block(self, nav_for):
        s, nav = nav_for("if ( $a ) { die; }")
        if_pos = find(s, TokenKind.IF)
        start, end = nav.get_scope_from_condition(if_pos)
        assert s[start].kind is TokenKind.OPEN_CURLY_BRACKET
        assert s[end].kind is TokenKind.CLOSE_CURLY_BRACKET

    def test_scope_of_single_statement(self, nav_for):
        s, nav = nav_for("if ( $a ) die( 'x' ); $b = 1;")
        if_pos = find(s, TokenKind.IF)
        start, end = nav.get_scope_from_condition(if_pos)
        assert s[start].kind is TokenKind.EXIT
        assert s[end].kind is TokenKind.SEMICOLON

    def test_has_else(self, nav_for):
        s, nav = nav_for("if ( $a ) { $b; } else { die; }")
        if_pos = find(s, TokenKind.IF)
        assert nav.has_else(if_pos) == find(s, TokenKind.ELSE)

    def test_has_no_else(self, nav_for):
        s, nav = nav_for("if ( $a ) { $b; } $c;")
        assert nav.has_else(find(s, TokenKind.IF)) is None

    def test_has_else_alternative_syntax(self, nav_for):
        s, nav = nav_for("if ( $a ): $b; else: die; endif;")
        assert nav.has_else(find(s, TokenKind.IF)) == find(s, TokenKind.ELSE)

    def test_contains_and_or(self, nav_for):
        s, nav = nav_for("if ( $a && ( $b || $c ) ) {}")
        if_pos = find(s, TokenKind.IF)
        opener, closer = nav.get_expression_from_condition(if_pos)
        assert s[nav.expression_contains_and(opener, closer)].kind is TokenKind.BOOLEAN_AND
        assert nav.expression_contains_or(opener, closer) is None
        assert nav.expression_contains_or(opener, closer, inside_brackets=True) is not None

    def test_logical_keywords(self, nav_for):
        s, nav = nav_for("if ( $a and $b ) {}")
        opener, closer = nav.get_expression_from_condition(find(s, TokenKind.IF))
        assert nav.expression_contains_and(opener, closer) is not None


class TestTernaries:

    def test_find_ternary_and_else(self, nav_for):
        s, nav = nav_for("$x = $a ? foo( $b ? 1 : 2 ) : $c;")
        eq = find(s, TokenKind.EQUAL)
        end = find(s, TokenKind.SEMICOLON, start=eq)
        then_pos = nav.find_ternary(eq + 1, end)
        assert s[then_pos].kind is TokenKind.INLINE_THEN
        else_pos = nav.find_ternary_else(then_pos, end)
        assert s[s.next_non_empty(else_pos + 1)].text == "$c"

    def test_short_ternary_needs_allow_empty(self, nav_for):
        s, nav = nav_for("$x = $a ?: $b;")
        eq = find(s, TokenKind.EQUAL)
        end = find(s, TokenKind.SEMICOLON, start=eq)
        assert nav.find_ternary(eq + 1, end) is None
        assert nav.find_ternary(eq + 1, end, allow_empty=True) is not None


class TestCalls:

    def test_is_function_call(self, nav_for):
        s, nav = nav_for("foo( 1 ); $o->bar( 2 ); function baz() {} new Qux();")
        assert nav.is_function_call(find(s, TokenKind.STRING, "foo"))
        assert not nav.is_function_call(find(s, TokenKind.STRING, "bar"))
        assert not nav.is_function_call(find(s, TokenKind.STRING, "baz"))
        assert not nav.is_function_call(find(s, TokenKind.STRING, "Qux"))

    def test_namespaced_call(self, nav_for):
        s, nav = nav_for("\\foo( 1 );")
        assert nav.is_function_call(find(s, TokenKind.STRING, "foo"))

    def test_get_parameters(self, nav_for):
        s, nav = nav_for("foo( $a, bar( $b, $c ), [ 1, 2 ], /* note */ 'x', );")
        params = nav.get_parameters(find(s, TokenKind.STRING, "foo"))
        assert [p.clean for p in params] == ["$a", "bar( $b, $c )", "[ 1, 2 ]", "'x'"]
        assert [p.position for p in params] == [1, 2, 3, 4]
        assert params[3].raw == "'x'"

    def test_parameter_spans_are_inclusive(self, nav_for):
        s, nav = nav_for("foo( $a . $b );")
        param = nav.get_parameter(find(s, TokenKind.STRING, "foo"), 1)
        assert s[param.start].text == "$a"
        assert s[param.end].text == "$b"

    def test_named_arguments(self, nav_for):
        s, nav = nav_for("foo( 'a', result: $out );")
        call = find(s, TokenKind.STRING, "foo")
        named = nav.get_parameter(call, 2, "result")
        assert named.name == "result"
        assert named.clean == "$out"
        assert nav.get_parameter(call, 2) is None

    def test_empty_call(self, nav_for):
        s, nav = nav_for("foo();")
        assert nav.get_parameters(find(s, TokenKind.STRING, "foo")) == []

    def test_short_array_elements(self, nav_for):
        s, nav = nav_for("$x = [ 'a' => 1, 'b' => 2 ];")
        params = nav.get_parameters(find(s, TokenKind.OPEN_SQUARE_BRACKET))
        assert [p.clean for p in params] == ["'a' => 1", "'b' => 2"]

    def test_functions_in_expression(self, nav_for):
        s, nav = nav_for("if ( foo( 1 ) && Bar( 2 ) && $x ) {}")
        opener, closer = nav.get_expression_from_condition(find(s, TokenKind.IF))
        assert nav.find_functions_in_expression(opener, closer) == ["foo", "bar"]

    def test_defined_constant(self, nav_for):
        s, nav = nav_for("$a = FOO . Bar::BAZ . baz();")
        assert nav.is_defined_constant(find(s, TokenKind.STRING, "FOO"))
        assert nav.is_defined_constant(find(s, TokenKind.STRING, "Bar"))
        assert not nav.is_defined_constant(find(s, TokenKind.STRING, "baz"))

    def test_end_of_function_call(self, nav_for):
        s, nav = nav_for("foo( bar() );")
        call = find(s, TokenKind.STRING, "foo")
        closer = nav.end_of_function_call(call)
        assert s[closer].parenthesis_opener == s.next_non_empty(call + 1)
