"""Compile-once, evaluate-many front door."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable, MutableSequence, Sequence
from dataclasses import dataclass, field

import jax
import numpy as np

from .ast import Node, count_calls
from .config import DEFAULT_OPTIONS, CompileOptions
from .errors import ArgumentError, DisposedError
from .evaluator import evaluate_node
from .lowering import lower_tree
from .optimizer import fold_constants
from .parser import parse
from .primitives import RandomSource
from .registry import Binding, Registry

logger = logging.getLogger(__name__)


@dataclass
class CompiledExpression:
    """An optimized expression tree plus the variable layout it was compiled for.

    The tree is never mutated after compilation, so one instance may be
    evaluated from several threads as long as each call brings its own buffers.
    """

    root: Node | None = field(repr=False)
    variable_names: tuple[str, ...] = ()
    source: str | None = None
    _lowered: object | None = field(default=None, init=False, repr=False)
    _transforms: dict[tuple[str, object], Callable[..., object]] = field(default_factory=dict, init=False, repr=False)
    _transform_counts: Counter = field(default_factory=Counter, init=False, repr=False)

    @property
    def variable_count(self) -> int:
        return len(self.variable_names)

    @property
    def disposed(self) -> bool:
        return self.root is None

    def _require_root(self) -> Node:
        if self.root is None:
            raise DisposedError("Compiled expression has been disposed")
        return self.root

    def _as_values(self, values) -> np.ndarray:
        if values is None:
            values = ()
        arr = np.asarray(values, dtype=np.float64)
        if arr.shape != (self.variable_count,):
            raise ArgumentError(f"Expected {self.variable_count} variable values, got shape {arr.shape}")
        return arr

    def evaluate(
        self,
        values: Sequence[float] | np.ndarray | None = (),
        gradient_out: MutableSequence[float] | np.ndarray | None = None,
    ) -> float:
        """Evaluate against ``values`` (one per variable, in slot order).

        When ``gradient_out`` is given, it receives the partial derivative of
        the result with respect to each variable.
        """
        root = self._require_root()
        arr = self._as_values(values)
        if gradient_out is None:
            value, _ = evaluate_node(root, arr)
            return float(value)

        if len(gradient_out) != self.variable_count:
            raise ArgumentError(f"Gradient buffer needs {self.variable_count} entries, got {len(gradient_out)}")
        value, grad = evaluate_node(root, arr, width=self.variable_count)
        for slot in range(self.variable_count):
            gradient_out[slot] = 0.0 if grad is None else float(grad[slot])
        return float(value)

    def value_and_grad(self, values: Sequence[float] | np.ndarray | None = ()) -> tuple[float, np.ndarray]:
        root = self._require_root()
        arr = self._as_values(values)
        value, grad = evaluate_node(root, arr, width=self.variable_count)
        if grad is None:
            grad = np.zeros(self.variable_count, dtype=np.float64)
        return float(value), grad

    def _bind_arguments(self, args: tuple[object, ...], kwargs: dict[str, object]) -> tuple[object, ...]:
        """Order call arguments by variable slot; keywords name variables."""
        if not kwargs:
            if len(args) != self.variable_count:
                raise ArgumentError(f"Expected {self.variable_count} arguments, got {len(args)}")
            return args
        if args:
            raise ArgumentError("Pass variable values positionally or by name, not both")
        unknown = sorted(set(kwargs).difference(self.variable_names))
        if unknown:
            raise ArgumentError(f"Unknown variables {unknown}; expected {list(self.variable_names)}")
        try:
            return tuple(kwargs[name] for name in self.variable_names)
        except KeyError as exc:
            raise ArgumentError(f"Missing value for variable {exc.args[0]!r}") from None

    def __call__(self, *args, **kwargs) -> float:
        return self.evaluate(self._bind_arguments(args, kwargs))

    def dispose(self) -> None:
        """Release the owned tree and every cached transform."""
        self.root = None
        self._lowered = None
        self._transforms.clear()

    def __enter__(self) -> "CompiledExpression":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    # JAX transforms over the lowered tree.

    def lower(self):
        """Return the tree as a traceable ``jax.numpy`` function of the variables."""
        root = self._require_root()
        if self._lowered is None:
            logger.debug("lowering %r to jax", self.source)
            self._lowered = lower_tree(root, self.variable_count)
        return self._lowered

    def trace(self, *args, **kwargs):
        """Emit the jaxpr of the lowered expression under sample inputs."""
        return jax.make_jaxpr(self.lower())(*self._bind_arguments(args, kwargs))

    def _transformed(self, kind: str, key: object, build: Callable[[Callable[..., object]], Callable[..., object]]):
        self._require_root()
        cached = self._transforms.get((kind, key))
        if cached is not None:
            self._transform_counts[kind, "hits"] += 1
            return cached

        self._transform_counts[kind, "misses"] += 1
        transformed = build(self.lower())

        def wrapped(*args, **kwargs):
            return transformed(*self._bind_arguments(args, kwargs))

        self._transforms[kind, key] = wrapped
        return wrapped

    def transform_cache_stats(self) -> dict[str, dict[str, int]]:
        """Hits, misses and live entries of the ``jit``/``grad``/``vmap`` caches."""
        return {
            kind: {
                "hits": self._transform_counts[kind, "hits"],
                "misses": self._transform_counts[kind, "misses"],
                "entries": sum(1 for cached_kind, _ in self._transforms if cached_kind == kind),
            }
            for kind in ("jit", "grad", "vmap")
        }

    def jit(self):
        """Return a JIT-compiled callable of the variables."""
        return self._transformed("jit", None, jax.jit)

    def grad(self, *, argnums: int | tuple[int, ...] = 0):
        """Return ``jax.grad`` of the lowered expression, jitted."""
        key = argnums if isinstance(argnums, int) else tuple(argnums)
        return self._transformed("grad", key, lambda fn: jax.jit(jax.grad(fn, argnums=key)))

    def vmap(self, *, in_axes=0, out_axes=0):
        """Return a vectorized callable over the lowered expression."""
        key = (repr(in_axes), repr(out_axes))
        return self._transformed("vmap", key, lambda fn: jax.vmap(fn, in_axes=in_axes, out_axes=out_axes))


def compile_expression(
    source: str,
    bindings: Iterable[Binding | str] = (),
    *,
    options: CompileOptions | None = None,
    rng: RandomSource | None = None,
    optimize: bool = True,
) -> CompiledExpression:
    """Compile ``source`` against ``bindings``.

    Bare strings in ``bindings`` declare variables. Raises ``CompileError``
    with a 1-based offset when the text cannot be compiled.
    """
    options = options or DEFAULT_OPTIONS
    if rng is None and options.seed is not None:
        rng = RandomSource(options.seed)
    registry = Registry(bindings, natural_log=options.natural_log, rng=rng)
    root = parse(source, registry, options=options)

    calls_before = count_calls(root)
    if optimize:
        root = fold_constants(root)
    logger.debug(
        "compiled %r: %d variables, %d of %d calls folded",
        source,
        registry.variable_count,
        calls_before - count_calls(root),
        calls_before,
    )
    return CompiledExpression(root=root, variable_names=registry.variable_names, source=source)


def evaluate(
    expr: CompiledExpression,
    values: Sequence[float] | np.ndarray | None = (),
    gradient_out: MutableSequence[float] | np.ndarray | None = None,
) -> float:
    return expr.evaluate(values, gradient_out)


def dispose(expr: CompiledExpression) -> None:
    expr.dispose()


def interpret(
    source: str,
    bindings: Iterable[Binding | str] = (),
    values: Sequence[float] | np.ndarray | None = (),
    *,
    options: CompileOptions | None = None,
) -> float:
    """Compile and evaluate once."""
    with compile_expression(source, bindings, options=options) as expr:
        return expr.evaluate(values)


def lower_to_jax(expr: CompiledExpression):
    return expr.lower()
