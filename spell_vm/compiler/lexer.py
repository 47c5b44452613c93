"""
lexer.py — tokenizer for the expression part of a spell line.

The parser splits source into lines itself (the grammar is line-oriented);
this module only tokenizes the text of a condition or of a call's argument
list. Columns are 1-based and relative to the start of the line.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List

from ..errors import SpellSyntaxError


class TokenKind(Enum):
    NUMBER = "NUMBER"
    TRUE = "true"
    FALSE = "false"
    AND = "and"
    OR = "or"
    XOR = "xor"
    NOT = "not"
    IDENT = "IDENT"
    GE = ">="
    LE = "<="
    EQ = "="
    GT = ">"
    LT = "<"
    PLUS = "+"
    MINUS = "-"
    STAR = "*"
    SLASH = "/"
    CARET = "^"
    COMMA = ","
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    col: int


_KEYWORDS = {
    "true": TokenKind.TRUE,
    "false": TokenKind.FALSE,
    "and": TokenKind.AND,
    "or": TokenKind.OR,
    "xor": TokenKind.XOR,
    "not": TokenKind.NOT,
}

# Order matters: two-character operators before their one-character prefixes.
_PATTERNS = [
    (re.compile(r"\d+(?:\.\d+)?(?:[eE][+-]?\d+)?"), TokenKind.NUMBER),
    (re.compile(r"[A-Za-z_][A-Za-z0-9_]*"), TokenKind.IDENT),
    (re.compile(r">="), TokenKind.GE),
    (re.compile(r"<="), TokenKind.LE),
    (re.compile(r"="), TokenKind.EQ),
    (re.compile(r">"), TokenKind.GT),
    (re.compile(r"<"), TokenKind.LT),
    (re.compile(r"\+"), TokenKind.PLUS),
    (re.compile(r"-"), TokenKind.MINUS),
    (re.compile(r"\*"), TokenKind.STAR),
    (re.compile(r"/"), TokenKind.SLASH),
    (re.compile(r"\^"), TokenKind.CARET),
    (re.compile(r","), TokenKind.COMMA),
]

_WS = re.compile(r"\s+")


def tokenize(text: str, *, line: int = 0, col_offset: int = 0) -> List[Token]:
    """
    Tokenize `text`. Always ends with an EOF token.

    Raises SpellSyntaxError on characters outside the expression alphabet
    (parentheses included: grouping is not part of the grammar).
    """
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        ws = _WS.match(text, pos)
        if ws:
            pos = ws.end()
            continue
        for pattern, kind in _PATTERNS:
            m = pattern.match(text, pos)
            if not m:
                continue
            lexeme = m.group(0)
            if kind is TokenKind.IDENT:
                kind = _KEYWORDS.get(lexeme, TokenKind.IDENT)
            tokens.append(Token(kind, lexeme, col_offset + pos + 1))
            pos = m.end()
            break
        else:
            raise SpellSyntaxError(
                f"unexpected character {text[pos]!r} at column {col_offset + pos + 1}",
                line=line or None,
            )
    tokens.append(Token(TokenKind.EOF, "", col_offset + len(text) + 1))
    return tokens


__all__ = ["TokenKind", "Token", "tokenize"]
