"""Tree-walking evaluator with forward-mode gradients.

Each node yields its value and, when tracking is on, the gradient of that value
with respect to every variable slot. A ``None`` gradient means the subtree does
not depend on any variable. Call nodes combine their children's gradients with
the callee's local gradient by the chain rule.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from .ast import Call, Constant, Node, VariableRef, iter_postorder

_F64 = np.float64


def evaluate_node(
    node: Node,
    values: Sequence[float] | np.ndarray,
    *,
    width: int | None = None,
) -> tuple[np.float64, np.ndarray | None]:
    """Evaluate ``node`` against ``values`` indexed by variable slot.

    Pass ``width`` (the variable count) to also compute the gradient.
    """
    with np.errstate(all="ignore"):
        return _walk(node, values, width)


def _walk(root: Node, values, width: int | None) -> tuple[np.float64, np.ndarray | None]:
    # Operand stack: each finished node leaves one (value, gradient) pair.
    results: list[tuple[np.float64, np.ndarray | None]] = []
    for node in iter_postorder(root):
        if isinstance(node, Constant):
            results.append((_F64(node.value), None))
        elif isinstance(node, VariableRef):
            results.append(_variable(node, values, width))
        elif isinstance(node, Call):
            split = len(results) - node.callee.arity
            operands = results[split:]
            del results[split:]
            results.append(_apply(node, operands, width))
        else:
            raise TypeError(f"Unknown node type {type(node).__name__}")
    return results[-1]


def _variable(node: VariableRef, values, width: int | None) -> tuple[np.float64, np.ndarray | None]:
    value = _F64(values[node.slot])
    if width is None:
        return value, None
    grad = np.zeros(width, dtype=np.float64)
    grad[node.slot] = 1.0
    return value, grad


def _apply(node: Call, operands, width: int | None) -> tuple[np.float64, np.ndarray | None]:
    value, local = node.callee.kernel(*(arg for arg, _ in operands))
    value = _F64(value)
    if width is None or local is None:
        return value, None

    total = None
    for d, (_, grad) in zip(local, operands, strict=True):
        if grad is None or d == 0:
            continue
        term = _F64(d) * grad
        total = term if total is None else total + term
    return value, total
