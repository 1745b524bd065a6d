"""
Tests for the shared SQL lexer - no DB required.
"""

import unittest
from sql_lexer import (
    TokenKind,
    tokenize,
    significant,
    split_statements,
    first_unterminated,
    unquote_name,
)


def kinds(sql):
    return [t.kind for t in significant(tokenize(sql))]


class TestTokenize(unittest.TestCase):

    def test_tokens_reproduce_input(self):
        sql = "SELECT [Name], N'it''s' -- note\nFROM dbo.T /* x */ WHERE a >= 1.5;"
        self.assertEqual("".join(t.text for t in tokenize(sql)), sql)

    def test_keyword_inside_string_is_one_string_token(self):
        tokens = significant(tokenize("SELECT 'DROP TABLE x; --' FROM t"))
        self.assertEqual(tokens[1].kind, TokenKind.STRING)
        self.assertEqual(tokens[1].text, "'DROP TABLE x; --'")
        self.assertFalse(any(t.is_word("DROP") for t in tokens))

    def test_doubled_quote_stays_inside_literal(self):
        tokens = significant(tokenize("SELECT 'O''Brien' AS n"))
        self.assertEqual(tokens[1].text, "'O''Brien'")
        self.assertTrue(tokens[2].is_word("AS"))

    def test_quoted_names(self):
        self.assertEqual(
            kinds('SELECT [Order Id], "delete", `x` FROM t'),
            [
                TokenKind.WORD, TokenKind.QUOTED_NAME, TokenKind.PUNCT,
                TokenKind.QUOTED_NAME, TokenKind.PUNCT, TokenKind.QUOTED_NAME,
                TokenKind.WORD, TokenKind.WORD,
            ],
        )

    def test_comments(self):
        tokens = tokenize("SELECT 1 -- trailing\n/* block */ */")
        found = [t.kind for t in tokens if t.kind is not TokenKind.WHITESPACE]
        self.assertIn(TokenKind.LINE_COMMENT, found)
        self.assertIn(TokenKind.BLOCK_COMMENT, found)
        self.assertEqual(found[-1], TokenKind.COMMENT_CLOSE)

    def test_variables_and_temp_names_are_words(self):
        tokens = significant(tokenize("SELECT @id FROM #temp"))
        self.assertEqual(tokens[1].text, "@id")
        self.assertEqual(tokens[3].text, "#temp")
        self.assertEqual(tokens[3].kind, TokenKind.WORD)

    def test_paren_depth(self):
        tokens = significant(tokenize("SELECT (SELECT MAX(x) FROM t) FROM u"))
        depth = {t.text: t.depth for t in tokens if t.kind is TokenKind.WORD}
        self.assertEqual(depth["MAX"], 1)
        self.assertEqual(depth["x"], 2)
        self.assertEqual(depth["u"], 0)
        opening = [t for t in tokens if t.is_punct("(")]
        self.assertEqual([t.depth for t in opening], [0, 1])

    def test_unbalanced_close_clamps_depth(self):
        tokens = significant(tokenize("SELECT 1) FROM t"))
        self.assertTrue(all(t.depth == 0 for t in tokens))


class TestUnterminated(unittest.TestCase):

    def test_open_string(self):
        token = first_unterminated(tokenize("SELECT 'abc FROM t"))
        self.assertIsNotNone(token)
        self.assertEqual(token.kind, TokenKind.STRING)
        self.assertEqual(token.start, 7)

    def test_open_bracket_name(self):
        self.assertIsNotNone(first_unterminated(tokenize("SELECT [abc FROM t")))

    def test_open_block_comment(self):
        token = first_unterminated(tokenize("SELECT 1 /* never closed"))
        self.assertEqual(token.kind, TokenKind.BLOCK_COMMENT)

    def test_all_terminated(self):
        self.assertIsNone(first_unterminated(tokenize("SELECT 'a', [b] FROM t")))

    def test_backslash_before_quote_is_ambiguous(self):
        token = first_unterminated(tokenize("SELECT 'a\\'' ; DROP TABLE t; SELECT 'b'"))
        self.assertIsNotNone(token)
        self.assertEqual(token.kind, TokenKind.STRING)
        self.assertEqual(token.start, 7)

    def test_escape_prefixed_string_is_ambiguous(self):
        token = first_unterminated(tokenize("SELECT e'plain' FROM t"))
        self.assertIsNotNone(token)
        self.assertEqual(token.text, "e'plain'")

    def test_backslash_in_double_quoted_name_is_ambiguous(self):
        self.assertIsNotNone(first_unterminated(tokenize('SELECT "a\\" ; DROP TABLE t; SELECT "b"')))

    def test_backslash_away_from_quote_is_fine(self):
        self.assertIsNone(first_unterminated(tokenize("SELECT 'C:\\temp' FROM t")))

    def test_word_ending_in_e_before_literal(self):
        tokens = significant(tokenize("SELECT Name FROM t WHERE'x'=Name"))
        self.assertTrue(tokens[4].is_word("WHERE"))
        self.assertEqual(tokens[5].text, "'x'")
        self.assertIsNone(first_unterminated(tokens))


class TestSplitStatements(unittest.TestCase):

    def test_trailing_semicolon_is_one_statement(self):
        self.assertEqual(len(split_statements(tokenize("SELECT 1;  "))), 1)

    def test_two_statements(self):
        self.assertEqual(len(split_statements(tokenize("SELECT 1; SELECT 2"))), 2)

    def test_semicolon_inside_literal(self):
        self.assertEqual(len(split_statements(tokenize("SELECT ';' FROM t"))), 1)

    def test_empty_segments_dropped(self):
        self.assertEqual(len(split_statements(tokenize(";;SELECT 1;;"))), 1)


class TestUnquoteName(unittest.TestCase):

    def test_variants(self):
        self.assertEqual(unquote_name("[Order Details]"), "Order Details")
        self.assertEqual(unquote_name('"Orders"'), "Orders")
        self.assertEqual(unquote_name("`Orders`"), "Orders")
        self.assertEqual(unquote_name('"a""b"'), 'a"b')
        self.assertEqual(unquote_name("Orders"), "Orders")


if __name__ == "__main__":
    unittest.main()
