"""Lowering of compiled expression trees to pure ``jax.numpy`` functions."""

from __future__ import annotations

from typing import Callable

import jax.numpy as jnp

from .ast import Call, Constant, Node, VariableRef, iter_postorder
from .errors import ArgumentError, UnsupportedError


def check_lowerable(root: Node) -> None:
    for node in iter_postorder(root):
        if isinstance(node, Call) and node.callee.jax_impl is None:
            raise UnsupportedError(f"No JAX lowering for {node.callee.name!r}")


def _emit(root: Node, args: tuple[object, ...]):
    results: list[object] = []
    for node in iter_postorder(root):
        if isinstance(node, Constant):
            results.append(jnp.asarray(float(node.value)))
        elif isinstance(node, VariableRef):
            results.append(args[node.slot])
        elif isinstance(node, Call):
            split = len(results) - node.arity
            operands = results[split:]
            del results[split:]
            results.append(node.callee.jax_impl(*operands))
        else:
            raise UnsupportedError(f"Unsupported node type {type(node).__name__}")
    return results[-1]


def lower_tree(root: Node, variable_count: int) -> Callable[..., object]:
    """Return ``f(*variables)`` computing ``root`` with ``jax.numpy`` operations.

    The result is traceable, so it composes with ``jax.jit``, ``jax.grad`` and
    ``jax.vmap``.
    """
    check_lowerable(root)

    def lowered(*args):
        if len(args) != variable_count:
            raise ArgumentError(f"Expected {variable_count} arguments, got {len(args)}")
        return _emit(root, args)

    return lowered
