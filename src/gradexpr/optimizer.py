"""Purity-gated constant folding."""

from __future__ import annotations

from .ast import Call, Constant, Node, iter_postorder, node_height
from .evaluator import evaluate_node


def fold_constants(root: Node) -> Node:
    """Replace every pure call whose arguments are all constants by its value.

    Impure calls are kept even with constant arguments, but their arguments
    are still folded.
    """
    results: list[Node] = []
    for node in iter_postorder(root):
        if not isinstance(node, Call):
            results.append(node)
            continue
        split = len(results) - node.arity
        children = tuple(results[split:])
        del results[split:]
        results.append(_fold_call(node, children))
    return results[-1]


def _fold_call(node: Call, children: tuple[Node, ...]) -> Node:
    if node.pure and all(isinstance(child, Constant) for child in children):
        folded = Call(callee=node.callee, children=children, height=1)
        value, _ = evaluate_node(folded, ())
        return Constant(value=value)

    if all(new is old for new, old in zip(children, node.children, strict=True)):
        return node
    height = 1 + max((node_height(child) for child in children), default=0)
    return Call(callee=node.callee, children=children, height=height)
