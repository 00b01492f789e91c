"""Streaming tokenizer for arithmetic expressions."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .ast import Callee
from .registry import BindingKind, Registry


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int
    end: int
    value: float | None = None
    slot: int | None = None
    callee: Callee | None = None
    message: str | None = None


_WHITESPACE = {" ", "\t", "\n", "\r"}

_PUNCTUATION = {
    "(": "LPAREN",
    ")": "RPAREN",
    ",": "SEP",
}

_NUMBER_RE = re.compile(
    r"""
    (?:
        [0-9]+(?:\.[0-9]*)?                   # integer part, optional fraction
      |
        \.[0-9]+                              # bare fraction
    )
    (?:[eE][+\-]?[0-9]+)?                     # exponent
    """,
    re.VERBOSE,
)
_IDENT_RE = re.compile(r"[a-z][a-z0-9_]*")


class Lexer:
    """Produces one token at a time; ``cursor`` sits just past the last token read."""

    def __init__(self, source: str, registry: Registry) -> None:
        self.source = source
        self.registry = registry
        self.cursor = 0

    def next_token(self) -> Token:
        source = self.source
        i = self.cursor
        while i < len(source) and source[i] in _WHITESPACE:
            i += 1
        self.cursor = i

        if i >= len(source):
            return Token("EOF", "", i, i)

        ch = source[i]

        m = _NUMBER_RE.match(source, i)
        if m:
            self.cursor = m.end()
            return Token("NUMBER", m.group(), i, m.end(), value=float(m.group()))

        m = _IDENT_RE.match(source, i)
        if m:
            self.cursor = m.end()
            return self._identifier(m.group(), i, m.end())

        self.cursor = i + 1

        callee = self.registry.operator(ch)
        if callee is not None:
            return Token("INFIX", ch, i, i + 1, callee=callee)

        kind = _PUNCTUATION.get(ch)
        if kind is not None:
            return Token(kind, ch, i, i + 1)

        return Token("ERROR", ch, i, i + 1, message=f"Unexpected character {ch!r}")

    def _identifier(self, name: str, start: int, end: int) -> Token:
        resolved = self.registry.resolve(name)
        if resolved is None:
            return Token("ERROR", name, start, end, message=f"Unknown identifier {name!r}")
        if resolved.kind is BindingKind.VARIABLE:
            return Token("VARIABLE", name, start, end, slot=resolved.slot)
        return Token("FUNCTION", name, start, end, callee=resolved.callee)


def tokenize(source: str, registry: Registry | None = None) -> list[Token]:
    """Collect tokens up to and including the first EOF or ERROR."""
    lexer = Lexer(source, registry if registry is not None else Registry())
    tokens: list[Token] = []
    while True:
        tok = lexer.next_token()
        tokens.append(tok)
        if tok.kind in {"EOF", "ERROR"}:
            return tokens
