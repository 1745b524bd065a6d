"""
Veritas - Shared SQL Lexer
==========================

One quote-aware, comment-aware tokenizer used by every guardrail check and
every rewriter. All rules see the same view of string literals, comments and
statement boundaries, so a keyword inside 'a string value' can never trip the
blacklist while a second statement hidden after a semicolon always can.

TOKEN KINDS
-----------
WORD          keyword or bare identifier (also @variables and #temp names)
NUMBER        numeric literal
STRING        'single quoted' literal, optionally N or E prefixed; '' inside a
              literal is an escaped quote
QUOTED_NAME   "double quoted", [bracketed] or `backticked` identifier
LINE_COMMENT  -- to end of line
BLOCK_COMMENT /* ... */
COMMENT_CLOSE a stray */ with no opening marker
PUNCT         ; , . ( )
OPERATOR      any other single character (*, =, <, +, ...)
WHITESPACE    runs of whitespace

Concatenating the text of every token reproduces the input exactly, so
rewriters can splice on token spans without losing formatting.

Quote handling follows a single boolean "inside a literal" flag toggled on
every quote character. A doubled '' therefore closes and reopens the literal,
which is the same thing as an escaped quote. Backslash is not an escape here,
but engines disagree: MySQL reads a backslash before a quote as an escape and
PostgreSQL does the same inside E-prefixed literals. A literal holding a
backslash before a quote character, or carrying the E prefix, is therefore
reported as unterminated so that no reading of it can hide a second statement.
"""

import re
import logging
from enum import Enum
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


class TokenKind(Enum):
    WORD = "WORD"
    NUMBER = "NUMBER"
    STRING = "STRING"
    QUOTED_NAME = "QUOTED_NAME"
    LINE_COMMENT = "LINE_COMMENT"
    BLOCK_COMMENT = "BLOCK_COMMENT"
    COMMENT_CLOSE = "COMMENT_CLOSE"
    PUNCT = "PUNCT"
    OPERATOR = "OPERATOR"
    WHITESPACE = "WHITESPACE"


_TRIVIA = frozenset({
    TokenKind.WHITESPACE,
    TokenKind.LINE_COMMENT,
    TokenKind.BLOCK_COMMENT,
})


@dataclass(frozen=True)
class Token:
    """A lexical token with its source span and parenthesis depth."""
    kind: TokenKind
    text: str
    start: int
    end: int
    depth: int
    terminated: bool = True

    @property
    def upper(self) -> str:
        return self.text.upper()

    @property
    def is_trivia(self) -> bool:
        return self.kind in _TRIVIA

    def is_word(self, *words: str) -> bool:
        """True if this is a WORD token matching any of ``words`` (case-insensitive)."""
        return self.kind is TokenKind.WORD and self.upper in words

    def is_punct(self, char: str) -> bool:
        return self.kind is TokenKind.PUNCT and self.text == char

    def is_operator(self, char: str) -> bool:
        return self.kind is TokenKind.OPERATOR and self.text == char


# Order matters: comments before operators, closed forms before open forms.
_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<line_comment>--[^\r\n]*)
    | (?P<block_comment>/\*.*?\*/)
    | (?P<open_block_comment>/\*.*)
    | (?P<comment_close>\*/)
    | (?P<string>[NnEe]?'(?:[^']|'')*')
    | (?P<open_string>[NnEe]?'.*)
    | (?P<quoted>"(?:[^"]|"")*"|\[[^\]]*\]|`[^`]*`)
    | (?P<open_quoted>["\[`].*)
    | (?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|\.\d+)
    | (?P<word>[@\#]*[^\W\d][\w@\#$]*)
    | (?P<punct>[;,.()])
    | (?P<operator>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_GROUP_KINDS = {
    "ws": (TokenKind.WHITESPACE, True),
    "line_comment": (TokenKind.LINE_COMMENT, True),
    "block_comment": (TokenKind.BLOCK_COMMENT, True),
    "open_block_comment": (TokenKind.BLOCK_COMMENT, False),
    "comment_close": (TokenKind.COMMENT_CLOSE, True),
    "string": (TokenKind.STRING, True),
    "open_string": (TokenKind.STRING, False),
    "quoted": (TokenKind.QUOTED_NAME, True),
    "open_quoted": (TokenKind.QUOTED_NAME, False),
    "number": (TokenKind.NUMBER, True),
    "word": (TokenKind.WORD, True),
    "punct": (TokenKind.PUNCT, True),
    "operator": (TokenKind.OPERATOR, True),
}


def _is_ambiguous_literal(kind: TokenKind, text: str) -> bool:
    """True if some engine would end this literal somewhere else."""
    if kind is TokenKind.STRING:
        return text[0] in "Ee" or "\\'" in text
    if kind is TokenKind.QUOTED_NAME and text.startswith('"'):
        return '\\"' in text
    return False


def tokenize(sql: str) -> List[Token]:
    """
    Split ``sql`` into tokens covering the entire input.

    Parenthesis depth is recorded per token. Both parentheses of a pair carry
    the depth of the enclosing level; tokens between them carry depth + 1.
    Unbalanced closing parentheses clamp the depth at zero.
    """
    tokens: List[Token] = []
    depth = 0
    pos = 0
    length = len(sql)

    while pos < length:
        match = _TOKEN_RE.match(sql, pos)
        group = match.lastgroup
        kind, terminated = _GROUP_KINDS[group]
        text = match.group(group)

        if terminated and _is_ambiguous_literal(kind, text):
            terminated = False

        if kind is TokenKind.PUNCT and text == ")":
            depth = max(0, depth - 1)

        tokens.append(Token(kind, text, pos, match.end(), depth, terminated))

        if kind is TokenKind.PUNCT and text == "(":
            depth += 1

        pos = match.end()

    return tokens


def significant(tokens: List[Token]) -> List[Token]:
    """Drop whitespace and comments."""
    return [t for t in tokens if not t.is_trivia]


def first_unterminated(tokens: List[Token]) -> Optional[Token]:
    """
    Return the first literal, quoted name or comment missing its closing
    marker, or whose end some engine would read differently.
    """
    return next((t for t in tokens if not t.terminated), None)


def split_statements(tokens: List[Token]) -> List[List[Token]]:
    """
    Split a token stream on ';' separators.

    String literals are single tokens, so a ';' inside a literal is never a
    separator. Segments holding only whitespace or comments are dropped, which
    makes a trailing ';' harmless.
    """
    statements: List[List[Token]] = []
    current: List[Token] = []

    for token in tokens:
        if token.is_punct(";"):
            if any(not t.is_trivia for t in current):
                statements.append(current)
            current = []
            continue
        current.append(token)

    if any(not t.is_trivia for t in current):
        statements.append(current)

    return statements


def unquote_name(text: str) -> str:
    """Strip [brackets], "double quotes" or `backticks` from one identifier part."""
    if len(text) >= 2 and (text[0], text[-1]) in (("[", "]"), ('"', '"'), ("`", "`")):
        inner = text[1:-1]
        if text[0] == '"':
            inner = inner.replace('""', '"')
        return inner
    return text
