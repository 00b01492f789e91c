"""Builtin operators and functions.

Every kernel returns ``(value, local_gradient)`` where the local gradient holds
the partial derivative of the value with respect to each argument, evaluated
at the given arguments. Kernels expect ``numpy.float64`` arguments and rely on
NumPy's IEEE semantics, so callers run them under ``np.errstate``.
"""

from __future__ import annotations

import math
import os
import threading
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable

import jax
import jax.numpy as jnp
import jax.scipy.special as jsp
import numpy as np

from .ast import Callee, Kernel

_F64 = np.float64
_ONE = _F64(1.0)
_ZERO = _F64(0.0)
_NAN = _F64(math.nan)
_INF = _F64(math.inf)
_LN10 = _F64(math.log(10.0))

_UINT_MAX = 2**32 - 1
_ULONG_MAX = 2**64 - 1
_LOG_ULONG_MAX = math.log(_ULONG_MAX)
# Largest n with n! <= _ULONG_MAX.
_FAC_LIMIT = 20


@dataclass(frozen=True)
class Builtin:
    name: str
    arity: int
    kernel: Kernel = field(repr=False)
    jax_impl: Callable[..., object] | None = field(default=None, repr=False)
    pure: bool = True
    uses_rng: bool = False

    def callee(self, *, rng: "RandomSource | None" = None) -> Callee:
        kernel = self.kernel
        if self.uses_rng:
            if rng is None:
                raise ValueError(f"{self.name} needs a random source")
            kernel = rng.kernel
        return Callee(name=self.name, arity=self.arity, kernel=kernel, pure=self.pure, jax_impl=self.jax_impl)


class RandomSource:
    """Uniform [0, 1) draws from a splittable ``jax.random`` key.

    Draws are generated in batches so the per-call cost stays low.
    """

    def __init__(self, seed: int | None = None, *, batch_size: int = 256) -> None:
        if seed is None:
            seed = int.from_bytes(os.urandom(4), "little")
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.seed = seed
        self.batch_size = batch_size
        self._key = jax.random.PRNGKey(seed)
        self._pending: list[float] = []
        self._lock = threading.Lock()

    def draw(self) -> float:
        with self._lock:
            if not self._pending:
                self._key, subkey = jax.random.split(self._key)
                batch = jax.random.uniform(subkey, (self.batch_size,))
                self._pending = [float(v) for v in reversed(batch.tolist())]
            return self._pending.pop()

    def kernel(self) -> tuple[float, tuple[float, ...]]:
        return _F64(self.draw()), ()


# Combinatorics use the integer model of 64-bit unsigned arithmetic.


def factorial(a: float) -> float:
    if math.isnan(a) or a < 0.0:
        return _NAN
    if a > _UINT_MAX:
        return _INF
    result = 1
    for i in range(1, int(a) + 1):
        if i > _ULONG_MAX // result:
            return _INF
        result *= i
    return _F64(result)


def choose(n: float, r: float) -> float:
    if math.isnan(n) or math.isnan(r):
        return _NAN
    if n < 0.0 or r < 0.0 or n < r:
        return _NAN
    if n > _UINT_MAX or r > _UINT_MAX:
        return _INF
    un = int(n)
    ur = int(r)
    if ur > un // 2:
        ur = un - ur
    result = 1
    for i in range(1, ur + 1):
        step = un - ur + i
        if result > _ULONG_MAX // step:
            return _INF
        result = result * step // i
    return _F64(result)


def permutations(n: float, r: float) -> float:
    return _F64(choose(n, r)) * _F64(factorial(r))


# Operators.


def _add(a, b):
    return a + b, (_ONE, _ONE)


def _sub(a, b):
    return a - b, (_ONE, -_ONE)


def _mul(a, b):
    return a * b, (b, a)


def _div(a, b):
    r = _ONE / b
    return a * r, (r, -a * r * r)


def _negate(a):
    return -a, (-_ONE,)


def _comma(a, b):
    return b, (_ZERO, _ONE)


def _pow(a, b):
    r = np.power(a, b)
    return r, (b * np.power(a, b - _ONE), r * np.log(a))


def _fmod(a, b):
    return np.fmod(a, b), (_ONE, -np.trunc(a / b))


# Named functions.


def _abs(a):
    return np.abs(a), (np.sign(a),)


def _acos(a):
    return np.arccos(a), (-_ONE / np.sqrt(_ONE - a * a),)


def _asin(a):
    return np.arcsin(a), (_ONE / np.sqrt(_ONE - a * a),)


def _atan(a):
    return np.arctan(a), (_ONE / (_ONE + a * a),)


def _atan2(y, x):
    d = _ONE / (y * y + x * x)
    return np.arctan2(y, x), (x * d, -y * d)


def _ceil(a):
    return np.ceil(a), (_ZERO,)


def _cos(a):
    return np.cos(a), (-np.sin(a),)


def _cosh(a):
    return np.cosh(a), (np.sinh(a),)


def _e():
    return _F64(math.e), ()


def _exp(a):
    r = np.exp(a)
    return r, (r,)


def _fac(a):
    return factorial(a), (_ZERO,)


def _floor(a):
    return np.floor(a), (_ZERO,)


def _ln(a):
    return np.log(a), (_ONE / a,)


def _log10(a):
    return np.log10(a), (_ONE / (_LN10 * a),)


def _ncr(n, r):
    return choose(n, r), (_ZERO, _ZERO)


def _npr(n, r):
    return permutations(n, r), (_ZERO, _ZERO)


def _pi():
    return _F64(math.pi), ()


def _round(a):
    return np.floor(a + _F64(0.5)), (_ZERO,)


def _sign(a):
    return np.sign(a), (_ZERO,)


def _sin(a):
    return np.sin(a), (np.cos(a),)


def _sinh(a):
    return np.sinh(a), (np.cosh(a),)


def _sqrt(a):
    r = np.sqrt(a)
    return r, (_F64(0.5) / r,)


def _tan(a):
    c = np.cos(a)
    return np.tan(a), (_ONE / (c * c),)


def _tanh(a):
    c = np.cosh(a)
    return np.tanh(a), (_ONE / (c * c),)


def _unbound_random():
    raise RuntimeError("random is only callable through a RandomSource")


# JAX lowerings.


def _jax_fac(a):
    whole = jnp.trunc(a)
    value = jnp.round(jnp.exp(jsp.gammaln(whole + 1)))
    value = jnp.where(whole > _FAC_LIMIT, jnp.inf, value)
    return jnp.where(a < 0, jnp.nan, value)


def _jax_ncr(n, r):
    un = jnp.trunc(n)
    ur = jnp.minimum(jnp.trunc(r), un - jnp.trunc(r))
    log_value = jsp.gammaln(un + 1) - jsp.gammaln(ur + 1) - jsp.gammaln(un - ur + 1)
    # The integer model overflows once ur * ncr(n, r) passes _ULONG_MAX.
    overflow = (n > _UINT_MAX) | (r > _UINT_MAX) | (jnp.log(ur) + log_value > _LOG_ULONG_MAX)
    value = jnp.where(overflow, jnp.inf, jnp.round(jnp.exp(log_value)))
    return jnp.where((n >= 0) & (r >= 0) & (n >= r), value, jnp.nan)


def _jax_npr(n, r):
    return _jax_ncr(n, r) * _jax_fac(r)


def _jax_round(a):
    return jnp.floor(a + 0.5)


def _jax_comma(a, b):
    return b


OPERATORS: dict[str, Builtin] = {
    "+": Builtin("add", 2, _add, jnp.add),
    "-": Builtin("sub", 2, _sub, jnp.subtract),
    "*": Builtin("mul", 2, _mul, jnp.multiply),
    "/": Builtin("div", 2, _div, jnp.divide),
    "^": Builtin("pow", 2, _pow, jnp.power),
    "%": Builtin("fmod", 2, _fmod, jnp.fmod),
}
NEGATE = Builtin("negate", 1, _negate, jnp.negative)
COMMA = Builtin("comma", 2, _comma, _jax_comma)

_LOG10 = Builtin("log10", 1, _log10, jnp.log10)
_LN = Builtin("ln", 1, _ln, jnp.log)

_NAMED = (
    Builtin("abs", 1, _abs, jnp.abs),
    Builtin("acos", 1, _acos, jnp.arccos),
    Builtin("asin", 1, _asin, jnp.arcsin),
    Builtin("atan", 1, _atan, jnp.arctan),
    Builtin("atan2", 2, _atan2, jnp.arctan2),
    Builtin("ceil", 1, _ceil, jnp.ceil),
    Builtin("cos", 1, _cos, jnp.cos),
    Builtin("cosh", 1, _cosh, jnp.cosh),
    Builtin("e", 0, _e, lambda: jnp.asarray(jnp.e)),
    Builtin("exp", 1, _exp, jnp.exp),
    Builtin("fac", 1, _fac, _jax_fac),
    Builtin("floor", 1, _floor, jnp.floor),
    _LN,
    _LOG10,
    Builtin("ncr", 2, _ncr, _jax_ncr),
    Builtin("npr", 2, _npr, _jax_npr),
    Builtin("pi", 0, _pi, lambda: jnp.asarray(jnp.pi)),
    Builtin("pow", 2, _pow, jnp.power),
    Builtin("random", 0, _unbound_random, None, pure=False, uses_rng=True),
    Builtin("round", 1, _round, _jax_round),
    Builtin("sign", 1, _sign, jnp.sign),
    Builtin("sin", 1, _sin, jnp.sin),
    Builtin("sinh", 1, _sinh, jnp.sinh),
    Builtin("sqrt", 1, _sqrt, jnp.sqrt),
    Builtin("tan", 1, _tan, jnp.tan),
    Builtin("tanh", 1, _tanh, jnp.tanh),
)


@lru_cache(maxsize=2)
def builtin_table(natural_log: bool = False) -> tuple[Builtin, ...]:
    """Builtins sorted by name; ``log`` follows the ``natural_log`` option."""
    log = _LN if natural_log else _LOG10
    entries = list(_NAMED)
    entries.append(Builtin("log", 1, log.kernel, log.jax_impl))
    return tuple(sorted(entries, key=lambda entry: entry.name))
