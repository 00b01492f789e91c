"""Expression tree nodes produced by the parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Iterator
from typing import Callable, Union

MAX_ARITY = 7

# kernel(*args) -> (value, local_gradient | None)
Kernel = Callable[..., tuple]


@dataclass(frozen=True)
class Callee:
    """A resolved operator or function, ready to be invoked."""

    name: str
    arity: int
    kernel: Kernel = field(repr=False, compare=False)
    pure: bool = True
    jax_impl: Callable[..., object] | None = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class Constant:
    value: float


@dataclass(frozen=True)
class VariableRef:
    slot: int
    name: str = ""


@dataclass(frozen=True)
class Call:
    callee: Callee
    children: tuple["Node", ...] = ()
    height: int = field(default=1, compare=False)

    def __post_init__(self) -> None:
        if len(self.children) != self.callee.arity:
            raise ValueError(
                f"{self.callee.name} expects {self.callee.arity} arguments, got {len(self.children)}"
            )

    @property
    def arity(self) -> int:
        return self.callee.arity

    @property
    def pure(self) -> bool:
        return self.callee.pure


Node = Union[Constant, VariableRef, Call]


def node_height(node: Node) -> int:
    if isinstance(node, Call):
        return node.height
    return 0


def make_call(callee: Callee, *children: Node) -> Call:
    height = 1 + max((node_height(child) for child in children), default=0)
    return Call(callee=callee, children=tuple(children), height=height)


def iter_postorder(root: Node) -> Iterator[Node]:
    """Yield every node of the tree, children before their parent, left to right.

    Uses an explicit stack, so tree height is not limited by the interpreter's
    recursion limit.
    """
    stack: list[tuple[Node, bool]] = [(root, False)]
    while stack:
        node, expanded = stack.pop()
        if isinstance(node, Call) and not expanded:
            stack.append((node, True))
            stack.extend((child, False) for child in reversed(node.children))
            continue
        yield node


def count_calls(node: Node) -> int:
    return sum(1 for current in iter_postorder(node) if isinstance(current, Call))
