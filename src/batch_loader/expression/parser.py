from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Iterator, Literal

from batch_loader.errors import ExpressionParseError
from batch_loader.expression.nodes import BinaryOp, Expression, Field, Number, Operator

TokenKind = Literal["number", "ident", "op", "lparen", "rparen"]

_TOKEN_RE = re.compile(
    r"(?P<number>\d+(?:\.\d+)?)"
    r"|(?P<ident>[A-Za-z][A-Za-z0-9_]*)"
    r"|(?P<op>[-+*/])"
    r"|(?P<lparen>\()"
    r"|(?P<rparen>\))"
)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    text: str
    pos: int        # offset in the whitespace-stripped expression


def tokenize(expression: str) -> Iterator[Token]:
    """
    Split an expression into tokens.

    All whitespace is removed first, so `a b` reads as the identifier `ab`.
    Raises `ExpressionParseError` on any character outside the grammar.
    """
    if not isinstance(expression, str):
        raise ExpressionParseError(f"expression must be a string, got {type(expression).__name__}")
    s = _WHITESPACE_RE.sub("", expression)
    pos = 0
    while pos < len(s):
        m = _TOKEN_RE.match(s, pos)
        if m is None:
            raise ExpressionParseError(f"unexpected character {s[pos]!r} at position {pos} in {s!r}")
        kind = m.lastgroup
        assert kind is not None
        yield Token(kind, m.group(), pos)  # type: ignore[arg-type]
        pos = m.end()


class _Parser:
    """
    Recursive descent over the token list.

        expr   := term (('+' | '-') term)*
        term   := factor (('*' | '/') factor)*
        factor := NUMBER | IDENT | '(' expr ')'

    The loops in `expr`/`term` fold to the left, so every operator is
    left-associative: `10-3-2` is `(10-3)-2`.
    """

    def __init__(self, source: str, tokens: list[Token]) -> None:
        self.source = source
        self.tokens = tokens
        self.i = 0

    def _peek(self) -> Token | None:
        return self.tokens[self.i] if self.i < len(self.tokens) else None

    def _fail(self, msg: str) -> ExpressionParseError:
        return ExpressionParseError(f"{msg} in {self.source!r}")

    def parse(self) -> Expression:
        if not self.tokens:
            raise self._fail("empty expression")
        node = self._expr()
        tok = self._peek()
        if tok is not None:
            raise self._fail(f"unexpected {tok.text!r} at position {tok.pos}")
        return node

    def _binary(self, operand, ops: tuple[str, ...]) -> Expression:
        node = operand()
        while True:
            tok = self._peek()
            if tok is None or tok.kind != "op" or tok.text not in ops:
                return node
            self.i += 1
            node = BinaryOp(Operator(tok.text), node, operand())

    def _expr(self) -> Expression:
        return self._binary(self._term, ("+", "-"))

    def _term(self) -> Expression:
        return self._binary(self._factor, ("*", "/"))

    def _factor(self) -> Expression:
        tok = self._peek()
        if tok is None:
            raise self._fail("unexpected end of expression")
        self.i += 1
        if tok.kind == "number":
            return Number(Decimal(tok.text))
        if tok.kind == "ident":
            return Field(tok.text)
        if tok.kind == "lparen":
            node = self._expr()
            close = self._peek()
            if close is None or close.kind != "rparen":
                raise self._fail(f"unbalanced '(' at position {tok.pos}")
            self.i += 1
            return node
        # operators here would be unary, which the grammar doesn't have
        raise self._fail(f"unexpected {tok.text!r} at position {tok.pos}")


@lru_cache(maxsize=512)
def parse_expression(expression: str) -> Expression:
    """
    Parse `expression` into an immutable tree.

    Cached, so the tree for a mapping's expression is built once and reused
    for every row. Field values are only read at evaluation time.
    """
    tokens = list(tokenize(expression))
    return _Parser(_WHITESPACE_RE.sub("", expression), tokens).parse()
