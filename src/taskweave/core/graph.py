# src/taskweave/core/graph.py

"""
Task graph.

Nodes are either a Task (leaf, wraps one stage function) or a Composite
(Series / Parallel) whose children are referenced by name. Names are looked up
in the graph at run time, so one task can appear in several composites.

The graph is built once by the buildfile, then validated:
- every child reference resolves,
- no composite reaches itself through its children.
A validated graph is frozen; the Scheduler refuses graphs that do not validate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Iterator, Union

from .errors import CycleDetected, DuplicateName, GraphError, GraphFrozen, NodeNotFound, UnknownReference
from .ports import StageFunction

logger = logging.getLogger(__name__)


class CompositeKind(StrEnum):
    SERIES = "series"
    PARALLEL = "parallel"


@dataclass(frozen=True, slots=True)
class Task:
    name: str
    run: StageFunction


@dataclass(frozen=True, slots=True)
class Composite:
    name: str
    kind: CompositeKind
    children: tuple[str, ...] = ()


Node = Union[Task, Composite]


class TaskGraph:
    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._validated = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, node: Node) -> Node:
        if self._validated:
            raise GraphFrozen(f"Cannot register {name!r}: graph is already validated")
        if not name or not isinstance(name, str):
            raise GraphError(f"Invalid node name: {name!r}")
        if node.name != name:
            raise GraphError(f"Node name {node.name!r} does not match registration name {name!r}")
        if name in self._nodes:
            raise DuplicateName(name)
        self._nodes[name] = node
        logger.debug("Registered %s %r", _kind_label(node), name)
        return node

    def task(self, name: str, fn: StageFunction | None = None):
        """
        Register a stage function as a Task.

        Works directly (`graph.task("js", build_js)`) or as a decorator
        (`@graph.task("js")`).
        """
        if fn is None:
            def decorator(f: StageFunction) -> StageFunction:
                self.register(name, Task(name, f))
                return f

            return decorator
        return self.register(name, Task(name, fn))

    def series(self, name: str, *children: str) -> Composite:
        node = Composite(name, CompositeKind.SERIES, tuple(children))
        self.register(name, node)
        return node

    def parallel(self, name: str, *children: str) -> Composite:
        node = Composite(name, CompositeKind.PARALLEL, tuple(children))
        self.register(name, node)
        return node

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def resolve(self, name: str) -> Node:
        try:
            return self._nodes[name]
        except KeyError:
            raise NodeNotFound(name) from None

    def names(self) -> list[str]:
        return list(self._nodes)

    @property
    def is_validated(self) -> bool:
        return self._validated

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check references, then cycles. Freezes the graph on success.

        Raises UnknownReference or CycleDetected. Safe to call repeatedly.
        """
        if self._validated:
            return

        for node in self._nodes.values():
            if isinstance(node, Composite):
                for child in node.children:
                    if child not in self._nodes:
                        raise UnknownReference(node.name, child)

        cycle = self._find_cycle()
        if cycle is not None:
            raise CycleDetected(cycle)

        self._validated = True
        logger.debug("Task graph validated: %d nodes", len(self._nodes))

    def _find_cycle(self) -> tuple[str, ...] | None:
        # Iterative DFS with colours; the path stack gives the cycle on a back edge.
        white, grey, black = 0, 1, 2
        colour = {name: white for name in self._nodes}

        for start in self._nodes:
            if colour[start] != white:
                continue
            path: list[str] = [start]
            stack: list[Iterator[str]] = [iter(self._children(start))]
            colour[start] = grey

            while stack:
                child = next(stack[-1], None)
                if child is None:
                    stack.pop()
                    colour[path.pop()] = black
                    continue
                if colour[child] == grey:
                    idx = path.index(child)
                    return tuple(path[idx:]) + (child,)
                if colour[child] == white:
                    colour[child] = grey
                    path.append(child)
                    stack.append(iter(self._children(child)))

        return None

    def _children(self, name: str) -> tuple[str, ...]:
        node = self._nodes[name]
        return node.children if isinstance(node, Composite) else ()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def describe(self, name: str) -> str:
        """Indented tree of `name` (used by `taskweave list`)."""
        lines: list[str] = []

        def walk(n: str, depth: int) -> None:
            node = self.resolve(n)
            pad = "  " * depth
            if isinstance(node, Composite):
                lines.append(f"{pad}{n} [{node.kind.value}]")
                for child in node.children:
                    walk(child, depth + 1)
            else:
                lines.append(f"{pad}{n}")

        walk(name, 0)
        return "\n".join(lines)


def _kind_label(node: Node) -> str:
    return node.kind.value if isinstance(node, Composite) else "task"
