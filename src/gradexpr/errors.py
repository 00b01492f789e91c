"""Structured error types for compile/evaluate separation."""

from __future__ import annotations


class ExprError(Exception):
    """Base class for structured gradexpr errors."""


class CompileError(ExprError):
    """Compilation failure reported at a 1-based cursor offset.

    ``kind`` is one of ``"lexical"``, ``"syntax"``, ``"trailing"`` or ``"depth"``.
    """

    def __init__(self, message: str, offset: int, kind: str = "syntax", found: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.offset = offset if offset > 0 else 1
        self.kind = kind
        self.found = found

    def __str__(self) -> str:
        found = ""
        if self.found is not None:
            found = f"; found {self.found}"
        return f"{self.message} at offset {self.offset} ({self.kind}){found}"


class BindingError(ExprError, ValueError):
    """Invalid variable or function binding declaration."""


class ArgumentError(ExprError, TypeError):
    """Variable values or gradient buffers do not match the compiled expression."""


class UnsupportedError(ExprError):
    """Construct cannot be expressed in the requested execution path."""


class DisposedError(ExprError):
    """The compiled expression was disposed and no longer owns a tree."""
