# parser.py
from __future__ import annotations

from typing import List

from ..errors import ExpressionSyntaxError
from .lexer import Token, TokenKind, tokenize
from .nodes import And, Call, Compare, Literal, Node, Not, Or, Variable


def strip_wrapper(text: str) -> str:
    """Remove an optional ${{ ... }} wrapper."""
    text = text.strip()
    if text.startswith("${{") and text.endswith("}}"):
        text = text[3:-2].strip()
    return text


class Parser:
    """
    Recursive-descent parser.

    Precedence, lowest first:
        or:         and ( "||" and )*
        and:        not ( "&&" not )*
        not:        "!" not | comparison
        comparison: primary ( OP primary )?
        primary:    literal | ident | ident "(" args ")" | "(" or ")"
    """

    def __init__(self, text: str):
        self.text = text
        self.tokens: List[Token] = tokenize(text)
        self.pos = 0

    # -- token helpers -------------------------------------------------

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind is not TokenKind.EOF:
            self.pos += 1
        return tok

    def _expect(self, kind: TokenKind, what: str) -> Token:
        tok = self._peek()
        if tok.kind is not kind:
            raise self._error(f"expected {what}", tok)
        return self._advance()

    def _error(self, message: str, tok: Token) -> ExpressionSyntaxError:
        found = "end of expression" if tok.kind is TokenKind.EOF else repr(str(tok.value))
        return ExpressionSyntaxError(f"{message}, found {found} at position {tok.pos}", self.text, tok.pos)

    # -- grammar -------------------------------------------------------

    def parse(self) -> Node:
        if self._peek().kind is TokenKind.EOF:
            raise ExpressionSyntaxError("empty expression", self.text, 0)
        node = self._parse_or()
        tok = self._peek()
        if tok.kind is TokenKind.RPAREN:
            raise self._error("unmatched closing parenthesis", tok)
        if tok.kind is not TokenKind.EOF:
            raise self._error("unexpected token", tok)
        return node

    def _parse_or(self) -> Node:
        left = self._parse_and()
        while self._peek().kind is TokenKind.OR:
            self._advance()
            left = Or(left, self._parse_and())
        return left

    def _parse_and(self) -> Node:
        left = self._parse_not()
        while self._peek().kind is TokenKind.AND:
            self._advance()
            left = And(left, self._parse_not())
        return left

    def _parse_not(self) -> Node:
        if self._peek().kind is TokenKind.NOT:
            self._advance()
            return Not(self._parse_not())
        return self._parse_comparison()

    def _parse_comparison(self) -> Node:
        left = self._parse_primary()
        if self._peek().kind is not TokenKind.COMPARE:
            return left
        op = str(self._advance().value)
        right = self._parse_primary()
        if self._peek().kind is TokenKind.COMPARE:
            raise self._error("chained comparison is not supported", self._peek())
        return Compare(op, left, right)

    def _parse_primary(self) -> Node:
        tok = self._peek()

        if tok.kind is TokenKind.LPAREN:
            self._advance()
            inner = self._parse_or()
            if self._peek().kind is not TokenKind.RPAREN:
                raise self._error("unmatched opening parenthesis", self._peek())
            self._advance()
            return inner

        if tok.kind in (TokenKind.STRING, TokenKind.NUMBER, TokenKind.TRUE, TokenKind.FALSE):
            self._advance()
            return Literal(tok.value)  # type: ignore[arg-type]

        if tok.kind is TokenKind.IDENT:
            self._advance()
            if self._peek().kind is TokenKind.LPAREN:
                return self._parse_call(str(tok.value))
            return Variable(str(tok.value))

        raise self._error("expected a value", tok)

    def _parse_call(self, name: str) -> Node:
        self._expect(TokenKind.LPAREN, "'('")
        args: List[Node] = []
        if self._peek().kind is not TokenKind.RPAREN:
            args.append(self._parse_or())
            while self._peek().kind is TokenKind.COMMA:
                self._advance()
                args.append(self._parse_or())
        if self._peek().kind is not TokenKind.RPAREN:
            raise self._error(f"unmatched opening parenthesis in call to {name}()", self._peek())
        self._advance()
        return Call(name, tuple(args))


def parse_expression(text: str) -> Node:
    """Parse expression text (optionally ${{ }}-wrapped) into an AST."""
    return Parser(strip_wrapper(text)).parse()
