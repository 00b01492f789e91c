"""gradexpr public API."""

from .ast import Call, Callee, Constant, Node, VariableRef
from .compiler import CompiledExpression, compile_expression, dispose, evaluate, interpret, lower_to_jax
from .config import CompileOptions
from .errors import (
    ArgumentError,
    BindingError,
    CompileError,
    DisposedError,
    ExprError,
    UnsupportedError,
)
from .lexer import Lexer, Token, tokenize
from .parser import parse
from .primitives import RandomSource
from .registry import Binding, BindingKind, Registry

__all__ = [
    "compile_expression",
    "evaluate",
    "dispose",
    "interpret",
    "lower_to_jax",
    "parse",
    "tokenize",
    "CompiledExpression",
    "CompileOptions",
    "Binding",
    "BindingKind",
    "Registry",
    "RandomSource",
    "Lexer",
    "Token",
    "Node",
    "Constant",
    "VariableRef",
    "Call",
    "Callee",
    "ExprError",
    "CompileError",
    "BindingError",
    "ArgumentError",
    "UnsupportedError",
    "DisposedError",
]
