"""Recursive-descent parser with explicit operator precedence.

Grammar, lowest to highest precedence::

    list   := expr (',' expr)*
    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/' | '%') factor)*
    factor := power ('^' power)*
    power  := ('+' | '-')* base
    base   := NUMBER | VARIABLE | FUNCTION0 ['(' ')'] | FUNCTION1 power
            | FUNCTIONn '(' expr (',' expr){n-1} ')' | '(' list ')'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .ast import Callee, Constant, Node, VariableRef, make_call
from .config import DEFAULT_OPTIONS, CompileOptions
from .errors import CompileError
from .lexer import Lexer, Token
from .registry import Registry

logger = logging.getLogger(__name__)

_ADDITIVE = {"+", "-"}
_MULTIPLICATIVE = {"*", "/", "%"}


@dataclass
class _Parser:
    lexer: Lexer
    registry: Registry
    options: CompileOptions = DEFAULT_OPTIONS
    token: Token = field(init=False)
    nesting: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self.token = self.lexer.next_token()

    def parse(self) -> Node:
        node = self._list()
        if self.token.kind == "ERROR":
            self._error(kind="lexical")
        if self.token.kind != "EOF":
            self._error("Unexpected trailing input", kind="trailing")
        return node

    def _advance(self) -> None:
        self.token = self.lexer.next_token()

    def _error(self, message: str | None = None, *, kind: str = "syntax") -> None:
        tok = self.token
        if tok.kind == "ERROR":
            kind = "lexical"
            message = tok.message
        found = "EOF" if tok.kind == "EOF" else f"{tok.kind}({tok.text})"
        raise CompileError(message or "Unexpected token", self.lexer.cursor, kind=kind, found=found)

    def _expect(self, kind: str) -> None:
        if self.token.kind != kind:
            self._error(f"Expected {kind}")
        self._advance()

    def _at_infix(self, symbols: set[str]) -> bool:
        return self.token.kind == "INFIX" and self.token.text in symbols

    def _enter(self) -> None:
        self.nesting += 1
        if self.nesting > self.options.max_nesting:
            logger.debug("rejecting nesting depth %d at offset %d", self.nesting, self.lexer.cursor)
            raise CompileError(
                f"Expression nesting exceeds maximum depth {self.options.max_nesting}",
                self.lexer.cursor,
                kind="depth",
            )

    def _leave(self) -> None:
        self.nesting -= 1

    def _list(self) -> Node:
        node = self._expr()
        while self.token.kind == "SEP":
            self._advance()
            node = make_call(self.registry.comma, node, self._expr())
        return node

    def _expr(self) -> Node:
        node = self._term()
        while self._at_infix(_ADDITIVE):
            callee = self.token.callee
            self._advance()
            node = make_call(callee, node, self._term())
        return node

    def _term(self) -> Node:
        node = self._factor()
        while self._at_infix(_MULTIPLICATIVE):
            callee = self.token.callee
            self._advance()
            node = make_call(callee, node, self._factor())
        return node

    def _factor(self) -> Node:
        if self.options.pow_from_right:
            return self._factor_from_right()
        node = self._power()
        while self._at_infix({"^"}):
            callee = self.token.callee
            self._advance()
            node = make_call(callee, node, self._power())
        return node

    def _factor_from_right(self) -> Node:
        # A leading sign applies to the whole chain: -a^b is -(a^b).
        negated, head = self._signed_base()
        operands = [head]
        callees: list[Callee] = []
        while self._at_infix({"^"}):
            callees.append(self.token.callee)
            self._advance()
            operands.append(self._power())

        node = operands[-1]
        for operand, callee in zip(reversed(operands[:-1]), reversed(callees), strict=True):
            node = make_call(callee, operand, node)
        if negated:
            node = make_call(self.registry.negate, node)
        return node

    def _power(self) -> Node:
        negated, node = self._signed_base()
        if negated:
            return make_call(self.registry.negate, node)
        return node

    def _signed_base(self) -> tuple[bool, Node]:
        negated = False
        while self._at_infix(_ADDITIVE):
            if self.token.text == "-":
                negated = not negated
            self._advance()
        return negated, self._base()

    def _base(self) -> Node:
        tok = self.token

        if tok.kind == "NUMBER":
            self._advance()
            return Constant(value=tok.value)

        if tok.kind == "VARIABLE":
            self._advance()
            return VariableRef(slot=tok.slot, name=tok.text)

        if tok.kind == "FUNCTION":
            return self._function_call(tok.callee)

        if tok.kind == "LPAREN":
            self._advance()
            self._enter()
            node = self._list()
            self._leave()
            self._expect("RPAREN")
            return node

        self._error()
        raise AssertionError("unreachable")

    def _function_call(self, callee: Callee) -> Node:
        self._advance()
        arity = callee.arity

        if arity == 0:
            if self.token.kind == "LPAREN":
                self._advance()
                self._expect("RPAREN")
            return make_call(callee)

        self._enter()
        if arity == 1:
            argument = self._power()
            self._leave()
            return make_call(callee, argument)

        if self.token.kind != "LPAREN":
            self._error(f"Expected '(' after {callee.name}")
        arguments: list[Node] = []
        for i in range(arity):
            self._advance()
            arguments.append(self._expr())
            if i < arity - 1 and self.token.kind != "SEP":
                self._error(f"{callee.name} expects {arity} arguments")
        self._expect("RPAREN")
        self._leave()
        return make_call(callee, *arguments)


def parse(source: str, registry: Registry | None = None, *, options: CompileOptions | None = None) -> Node:
    """Parse ``source`` into an unoptimized expression tree."""
    registry = registry if registry is not None else Registry()
    parser = _Parser(lexer=Lexer(source, registry), registry=registry, options=options or DEFAULT_OPTIONS)
    return parser.parse()
