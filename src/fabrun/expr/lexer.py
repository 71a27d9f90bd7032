# lexer.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..errors import ExpressionSyntaxError


class TokenKind(str, Enum):
    LPAREN = "("
    RPAREN = ")"
    COMMA = ","
    AND = "&&"
    OR = "||"
    NOT = "!"
    COMPARE = "compare"
    STRING = "string"
    NUMBER = "number"
    TRUE = "true"
    FALSE = "false"
    IDENT = "ident"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: object
    pos: int


# longest operators first
_COMPARE_OPS = ("==", "!=", "<=", ">=", "<", ">", "=")

# a '-' directly before a digit is a sign only where an operand may start
_OPERAND_START = (None, TokenKind.LPAREN, TokenKind.COMMA, TokenKind.AND,
                  TokenKind.OR, TokenKind.NOT, TokenKind.COMPARE)

_ESCAPES = {"\\": "\\", "'": "'", '"': '"', "n": "\n", "t": "\t"}


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch == "_"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_.-"


def tokenize(text: str) -> List[Token]:
    """Split an expression into tokens. Raises ExpressionSyntaxError."""
    tokens: List[Token] = []
    i = 0
    n = len(text)

    def last_kind() -> Optional[TokenKind]:
        return tokens[-1].kind if tokens else None

    while i < n:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        if ch == "(":
            tokens.append(Token(TokenKind.LPAREN, ch, i))
            i += 1
            continue
        if ch == ")":
            tokens.append(Token(TokenKind.RPAREN, ch, i))
            i += 1
            continue
        if ch == ",":
            tokens.append(Token(TokenKind.COMMA, ch, i))
            i += 1
            continue

        if text.startswith("&&", i):
            tokens.append(Token(TokenKind.AND, "&&", i))
            i += 2
            continue
        if text.startswith("||", i):
            tokens.append(Token(TokenKind.OR, "||", i))
            i += 2
            continue

        op = next((o for o in _COMPARE_OPS if text.startswith(o, i)), None)
        if op is not None:
            tokens.append(Token(TokenKind.COMPARE, "==" if op == "=" else op, i))
            i += len(op)
            continue

        if ch == "!":
            tokens.append(Token(TokenKind.NOT, ch, i))
            i += 1
            continue

        if ch in ("'", '"'):
            quote = ch
            start = i
            i += 1
            buf: List[str] = []
            while i < n and text[i] != quote:
                if text[i] == "\\" and i + 1 < n:
                    buf.append(_ESCAPES.get(text[i + 1], "\\" + text[i + 1]))
                    i += 2
                    continue
                buf.append(text[i])
                i += 1
            if i >= n:
                raise ExpressionSyntaxError("unterminated string literal", text, start)
            tokens.append(Token(TokenKind.STRING, "".join(buf), start))
            i += 1
            continue

        signed = ch == "-" and i + 1 < n and text[i + 1].isdigit() and last_kind() in _OPERAND_START
        if ch.isdigit() or signed:
            start = i
            i += 1
            while i < n and (text[i].isdigit() or text[i] == "."):
                i += 1
            raw = text[start:i]
            try:
                value = float(raw) if "." in raw else int(raw)
            except ValueError:
                raise ExpressionSyntaxError(f"invalid number literal: {raw}", text, start) from None
            tokens.append(Token(TokenKind.NUMBER, value, start))
            continue

        if _is_ident_start(ch):
            start = i
            while i < n and _is_ident_char(text[i]):
                i += 1
            word = text[start:i]
            if word == "true":
                tokens.append(Token(TokenKind.TRUE, True, start))
            elif word == "false":
                tokens.append(Token(TokenKind.FALSE, False, start))
            else:
                tokens.append(Token(TokenKind.IDENT, word, start))
            continue

        raise ExpressionSyntaxError(f"unexpected character {ch!r} at position {i}", text, i)

    tokens.append(Token(TokenKind.EOF, None, n))
    return tokens
