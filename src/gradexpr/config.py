"""Compile-time options with environment-driven defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "0") == "1"


def _env_seed() -> int | None:
    raw = os.environ.get("GRADEXPR_SEED")
    if raw is None or raw == "":
        return None
    return int(raw)


_POW_FROM_RIGHT = _env_flag("GRADEXPR_POW_FROM_RIGHT")
_NATURAL_LOG = _env_flag("GRADEXPR_NATURAL_LOG")
_MAX_NESTING = max(1, int(os.environ.get("GRADEXPR_MAX_NESTING", "64")))
_SEED = _env_seed()


@dataclass(frozen=True)
class CompileOptions:
    """Knobs fixed at compile time.

    - `pow_from_right`: ``a^b^c`` parses as ``a^(b^c)`` and ``-a^b`` as ``-(a^b)``.
      The default is left-associative: ``(a^b)^c`` and ``(-a)^b``.
    - `natural_log`: ``log`` is the natural logarithm instead of base 10.
    - `max_nesting`: deepest parenthesis/function-argument nesting accepted.
    - `seed`: seed for the ``random`` builtin; ``None`` draws from OS entropy.
    """

    pow_from_right: bool = _POW_FROM_RIGHT
    natural_log: bool = _NATURAL_LOG
    max_nesting: int = _MAX_NESTING
    seed: int | None = _SEED

    def __post_init__(self) -> None:
        if self.max_nesting < 1:
            raise ValueError("max_nesting must be at least 1")


DEFAULT_OPTIONS = CompileOptions()
