# tests/test_lexer.py
"""
Tests for the reference PHP lexer: token kinds, positions, strings,
heredocs, casts, keyword context and tokenizer errors.
"""

import pytest

from wpsniff_shims.errors import TokenizerError
from wpsniff_shims.lexer import PhpLexer, tokenize_file, tokenize_source
from wpsniff_shims.tokens import TokenKind


def significant(stream):
    return [(t.kind, t.text) for t in stream if t.kind is not TokenKind.WHITESPACE]


class TestTags:

    def test_open_tag_swallows_newline(self):
        stream = tokenize_source("<?php\n$a;")
        assert stream[0].kind is TokenKind.OPEN_TAG
        assert stream[0].text == "<?php\n"
        assert stream[1].kind is TokenKind.VARIABLE
        assert stream[1].line == 2
        assert stream[1].column == 1

    def test_inline_html_around_php(self):
        stream = tokenize_source("<p>Hi</p><?php echo 1; ?>\n<b>")
        kinds = [t.kind for t in stream]
        assert kinds[0] is TokenKind.INLINE_HTML
        assert TokenKind.CLOSE_TAG in kinds
        assert kinds[-1] is TokenKind.INLINE_HTML
        assert stream[-1].text == "<b>"

    def test_short_echo_tag(self):
        stream = tokenize_source("<?= $name ?>")
        assert stream[0].kind is TokenKind.OPEN_TAG_WITH_ECHO
        assert stream[0].text == "<?="

    def test_source_without_tag_is_html(self):
        stream = tokenize_source("just text")
        assert len(stream) == 1
        assert stream[0].kind is TokenKind.INLINE_HTML


class TestIdentifiers:

    def test_keywords_are_case_insensitive(self):
        stream = tokenize_source("<?php ECHO $a;")
        assert significant(stream)[1] == (TokenKind.ECHO, "ECHO")

    def test_die_and_exit_share_a_kind(self):
        stream = tokenize_source("<?php die; exit;")
        kinds = [k for k, _ in significant(stream)]
        assert kinds.count(TokenKind.EXIT) == 2

    def test_method_name_after_arrow_is_string(self):
        stream = tokenize_source("<?php $wpdb->print();")
        tokens = significant(stream)
        assert tokens[3] == (TokenKind.STRING, "print")

    def test_function_name_is_string(self):
        stream = tokenize_source("<?php function list() {}")
        tokens = significant(stream)
        assert tokens[1] == (TokenKind.FUNCTION, "function")
        assert tokens[2] == (TokenKind.STRING, "list")

    def test_anonymous_function_is_closure(self):
        stream = tokenize_source("<?php $f = function ($x) { return $x; };")
        kinds = [k for k, _ in significant(stream)]
        assert TokenKind.CLOSURE in kinds
        assert TokenKind.FUNCTION not in kinds

    @pytest.mark.parametrize("word", ["array", "list", "match", "fn"])
    def test_call_only_keywords_without_parenthesis(self, word):
        stream = tokenize_source(f"<?php $x = {word};")
        assert significant(stream)[3] == (TokenKind.STRING, word)

    def test_array_keyword_with_parenthesis(self):
        stream = tokenize_source("<?php $x = array(1);")
        assert significant(stream)[3][0] is TokenKind.ARRAY


class TestStrings:

    def test_plain_double_quoted_is_constant(self):
        stream = tokenize_source('<?php $a = "hello";')
        assert significant(stream)[3][0] is TokenKind.CONSTANT_ENCAPSED_STRING

    def test_interpolated_double_quoted(self):
        stream = tokenize_source('<?php $a = "id = $id";')
        assert significant(stream)[3] == (TokenKind.DOUBLE_QUOTED_STRING, '"id = $id"')

    def test_escaped_dollar_is_not_interpolation(self):
        stream = tokenize_source('<?php $a = "cost \\$name";')
        assert significant(stream)[3][0] is TokenKind.CONSTANT_ENCAPSED_STRING

    def test_curly_interpolation_with_nested_quotes(self):
        stream = tokenize_source('<?php $a = "x {$row["id"]} y";')
        assert significant(stream)[3] == (TokenKind.DOUBLE_QUOTED_STRING, '"x {$row["id"]} y"')

    def test_single_quoted_keeps_escapes(self):
        stream = tokenize_source("<?php $a = 'it\\'s';")
        assert significant(stream)[3] == (TokenKind.CONSTANT_ENCAPSED_STRING, "'it\\'s'")

    def test_multiline_string_advances_line(self):
        stream = tokenize_source("<?php $a = 'one\ntwo'; $b;")
        b = [t for t in stream if t.text == "$b"][0]
        assert b.line == 2


class TestHeredoc:

    def test_heredoc_tokens(self):
        source = "<?php\n$a = <<<EOT\nHello $name\nEOT;\n"
        stream = tokenize_source(source)
        kinds = [k for k, _ in significant(stream)]
        i = kinds.index(TokenKind.START_HEREDOC)
        assert kinds[i:i + 3] == [
            TokenKind.START_HEREDOC, TokenKind.HEREDOC, TokenKind.END_HEREDOC,
        ]
        start = [t for t in stream if t.kind is TokenKind.START_HEREDOC][0]
        assert start.text == "<<<EOT\n"

    def test_nowdoc_tokens(self):
        source = "<?php\n$a = <<<'EOT'\nraw $text\nEOT;\n"
        stream = tokenize_source(source)
        kinds = [t.kind for t in stream]
        assert TokenKind.START_NOWDOC in kinds
        assert TokenKind.NOWDOC in kinds
        assert TokenKind.HEREDOC not in kinds

    def test_unterminated_heredoc(self):
        with pytest.raises(TokenizerError) as exc:
            tokenize_source("<?php\n$a = <<<EOT\nnever closed\n")
        assert "EOT" in exc.value.message
        assert exc.value.line == 2


class TestOperatorsAndCasts:

    def test_int_cast(self):
        stream = tokenize_source("<?php $a = (int) $b;")
        assert significant(stream)[3] == (TokenKind.INT_CAST, "(int)")

    def test_parenthesised_constant_is_not_cast(self):
        stream = tokenize_source("<?php $a = (FOO);")
        assert significant(stream)[3][0] is TokenKind.OPEN_PARENTHESIS

    def test_longest_operator_wins(self):
        stream = tokenize_source("<?php $a ??= $b !== $c;")
        kinds = [k for k, _ in significant(stream)]
        assert TokenKind.COALESCE_EQUAL in kinds
        assert TokenKind.IS_NOT_IDENTICAL in kinds

    def test_ternary_resolved_by_linker(self):
        stream = tokenize_source("<?php $a = $b ? $c : $d;")
        kinds = [k for k, _ in significant(stream)]
        assert TokenKind.INLINE_THEN in kinds
        assert TokenKind.INLINE_ELSE in kinds
        assert TokenKind.COLON not in kinds

    def test_nullable_type(self):
        stream = tokenize_source("<?php function f(?int $a) {}")
        kinds = [k for k, _ in significant(stream)]
        assert TokenKind.NULLABLE in kinds
        assert TokenKind.INLINE_THEN not in kinds


class TestComments:

    def test_line_comment_excludes_newline(self):
        stream = tokenize_source("<?php // note\n$a;")
        comment = [t for t in stream if t.kind is TokenKind.COMMENT][0]
        assert comment.text == "// note"

    def test_doc_comment(self):
        stream = tokenize_source("<?php /** Doc. */ $a;")
        assert any(t.kind is TokenKind.DOC_COMMENT for t in stream)

    def test_hash_comment(self):
        stream = tokenize_source("<?php # note\n$a;")
        assert any(t.kind is TokenKind.COMMENT and t.text == "# note" for t in stream)

    def test_unterminated_block_comment(self):
        with pytest.raises(TokenizerError):
            tokenize_source("<?php /* open")


class TestErrors:

    def test_unterminated_string(self):
        with pytest.raises(TokenizerError) as exc:
            tokenize_source("<?php $a = 'open;", "broken.php")
        assert exc.value.path == "broken.php"
        assert "broken.php" in str(exc.value)

    def test_lexer_returns_raw_tokens(self):
        raw = PhpLexer("<?php $a;").tokenize()
        assert raw[0].kind is TokenKind.OPEN_TAG
        assert raw[1].text == "$a"


class TestTokenizeFile:

    def test_reads_file_and_records_path(self, tmp_path):
        path = tmp_path / "plugin.php"
        path.write_text("<?php echo 1;\n", encoding="utf-8")
        stream = tokenize_file(path)
        assert stream.path == str(path)
        assert stream[0].kind is TokenKind.OPEN_TAG

    def test_invalid_utf8_is_replaced(self, tmp_path):
        path = tmp_path / "latin.php"
        path.write_bytes(b"<?php $a = '\xe9';")
        stream = tokenize_file(path)
        assert any("\ufffd" in t.text for t in stream)

    def test_missing_file_raises_oserror(self, tmp_path):
        with pytest.raises(OSError):
            tokenize_file(tmp_path / "missing.php")


class TestParseTree:

    @pytest.mark.parametrize("source", [
        "<?php\nfunction f( $a ) {\n\treturn $a . 'x'; // done\n}\n",
        "<p><?= esc_html( $t ) ?></p>\n<?php if ( $a ) : ?>\n<b>\n<?php endif; ?>\n",
        "<?php\n$s = <<<EOT\nline $x\nEOT;\n$n = (int) $v;\n",
    ])
    def test_token_texts_rebuild_source(self, source):
        assert "".join(t.text for t in tokenize_source(source)) == source

    def test_whitespace_comes_from_gaps(self):
        stream = tokenize_source("<?php $a  =\t1;")
        gaps = [t.text for t in stream if t.kind is TokenKind.WHITESPACE]
        assert gaps == ["  ", "\t"]

    def test_syntax_errors_are_tolerated(self):
        stream = tokenize_source("<?php $a = ; $b->;")
        texts = [t.text for t in stream if t.kind is not TokenKind.WHITESPACE]
        assert "$a" in texts and "$b" in texts

    def test_error_position(self):
        with pytest.raises(TokenizerError) as exc:
            tokenize_source("<?php\n$ok = 1;\n  $a = \"open;\n")
        assert exc.value.line == 3
        assert "Unterminated string" in exc.value.message
