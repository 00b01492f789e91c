"""Variable/function bindings and name resolution."""

from __future__ import annotations

import re
from bisect import bisect_left
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable

from .ast import MAX_ARITY, Callee
from .errors import ArgumentError, BindingError
from .primitives import COMMA, NEGATE, OPERATORS, Builtin, RandomSource, builtin_table

_NAME_RE = re.compile(r"[a-z][a-z0-9_]*\Z")


class BindingKind(str, Enum):
    VARIABLE = "variable"
    FUNCTION = "function"


@dataclass(frozen=True)
class Binding:
    """A caller-declared name visible to expressions.

    Functions are called as ``fn(*args)``, or ``fn(context, *args)`` when a
    context is supplied. ``derivative`` takes the same arguments and returns
    one partial derivative per argument; without it the local gradient is zero.
    """

    name: str
    kind: BindingKind = BindingKind.VARIABLE
    arity: int = 0
    fn: Callable[..., float] | None = field(default=None, compare=False)
    context: object | None = field(default=None, compare=False)
    pure: bool = True
    derivative: Callable[..., Sequence[float]] | None = field(default=None, compare=False)
    jax_fn: Callable[..., object] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _NAME_RE.match(self.name):
            raise BindingError(f"Invalid binding name {self.name!r}; expected [a-z][a-z0-9_]*")
        kind = BindingKind(self.kind)
        object.__setattr__(self, "kind", kind)
        if kind is BindingKind.VARIABLE:
            if self.fn is not None or self.derivative is not None or self.jax_fn is not None:
                raise BindingError(f"Variable {self.name!r} cannot carry a callable")
            if self.arity != 0:
                raise BindingError(f"Variable {self.name!r} cannot declare an arity")
            return
        if isinstance(self.arity, bool) or not isinstance(self.arity, int) or not 0 <= self.arity <= MAX_ARITY:
            raise BindingError(f"Function {self.name!r} arity must be between 0 and {MAX_ARITY}, got {self.arity!r}")
        if not callable(self.fn):
            raise BindingError(f"Function {self.name!r} needs a callable")
        if self.derivative is not None and not callable(self.derivative):
            raise BindingError(f"Derivative of {self.name!r} must be callable")

    @classmethod
    def variable(cls, name: str) -> "Binding":
        return cls(name=name)

    @classmethod
    def function(
        cls,
        name: str,
        fn: Callable[..., float],
        arity: int,
        *,
        context: object | None = None,
        pure: bool = True,
        derivative: Callable[..., Sequence[float]] | None = None,
        jax_fn: Callable[..., object] | None = None,
    ) -> "Binding":
        return cls(
            name=name,
            kind=BindingKind.FUNCTION,
            arity=arity,
            fn=fn,
            context=context,
            pure=pure,
            derivative=derivative,
            jax_fn=jax_fn,
        )

    def callee(self) -> Callee:
        fn = self.fn
        derivative = self.derivative
        jax_fn = self.jax_fn
        if self.context is not None:
            fn = partial(fn, self.context)
            if derivative is not None:
                derivative = partial(derivative, self.context)
            if jax_fn is not None:
                jax_fn = partial(jax_fn, self.context)
        return Callee(
            name=self.name,
            arity=self.arity,
            kernel=_user_kernel(fn, derivative),
            pure=self.pure,
            jax_impl=jax_fn,
        )


def _user_kernel(fn: Callable[..., float], derivative: Callable[..., Sequence[float]] | None):
    if derivative is None:

        def kernel(*args):
            return fn(*args), None

    else:

        def kernel(*args):
            local = tuple(derivative(*args))
            if len(local) != len(args):
                raise ArgumentError(f"Derivative returned {len(local)} partials for {len(args)} arguments")
            return fn(*args), local

    return kernel


def as_binding(entry: Binding | str) -> Binding:
    if isinstance(entry, Binding):
        return entry
    if isinstance(entry, str):
        return Binding.variable(entry)
    raise BindingError(f"Expected a Binding or variable name, got {type(entry).__name__}")


@dataclass(frozen=True)
class Resolved:
    """Result of a name lookup: a variable slot or a callable."""

    name: str
    kind: BindingKind
    slot: int | None = None
    callee: Callee | None = None


class Registry:
    """Resolves identifiers against caller bindings first, then builtins.

    Caller bindings are scanned in order and the first match wins, which lets
    them shadow builtins. Variable bindings get dense slots in declaration order.
    """

    def __init__(
        self,
        bindings: Iterable[Binding | str] = (),
        *,
        natural_log: bool = False,
        rng: RandomSource | None = None,
    ) -> None:
        self.bindings: tuple[Binding, ...] = tuple(as_binding(entry) for entry in bindings)
        self.rng = rng
        self._builtins = builtin_table(natural_log)
        self._builtin_names = tuple(entry.name for entry in self._builtins)

        slots: list[int | None] = []
        names: list[str] = []
        for binding in self.bindings:
            if binding.kind is BindingKind.VARIABLE:
                slots.append(len(names))
                names.append(binding.name)
            else:
                slots.append(None)
        self._slots = tuple(slots)
        self.variable_names: tuple[str, ...] = tuple(names)
        self._callees: dict[str, Callee] = {}

    @property
    def variable_count(self) -> int:
        return len(self.variable_names)

    def resolve(self, name: str) -> Resolved | None:
        for index, binding in enumerate(self.bindings):
            if binding.name != name:
                continue
            if binding.kind is BindingKind.VARIABLE:
                return Resolved(name=name, kind=BindingKind.VARIABLE, slot=self._slots[index])
            return Resolved(name=name, kind=BindingKind.FUNCTION, callee=self._callee_for(name, binding))

        builtin = self.find_builtin(name)
        if builtin is None:
            return None
        return Resolved(name=name, kind=BindingKind.FUNCTION, callee=self._builtin_callee(builtin))

    def find_builtin(self, name: str) -> Builtin | None:
        i = bisect_left(self._builtin_names, name)
        if i < len(self._builtin_names) and self._builtin_names[i] == name:
            return self._builtins[i]
        return None

    def operator(self, symbol: str) -> Callee | None:
        builtin = OPERATORS.get(symbol)
        if builtin is None:
            return None
        return self._builtin_callee(builtin)

    @property
    def negate(self) -> Callee:
        return self._builtin_callee(NEGATE)

    @property
    def comma(self) -> Callee:
        return self._builtin_callee(COMMA)

    def _builtin_callee(self, builtin: Builtin) -> Callee:
        key = f"builtin:{builtin.name}"
        callee = self._callees.get(key)
        if callee is None:
            if builtin.uses_rng and self.rng is None:
                self.rng = RandomSource()
            callee = builtin.callee(rng=self.rng)
            self._callees[key] = callee
        return callee

    def _callee_for(self, name: str, binding: Binding) -> Callee:
        key = f"user:{name}"
        callee = self._callees.get(key)
        if callee is None:
            callee = binding.callee()
            self._callees[key] = callee
        return callee
