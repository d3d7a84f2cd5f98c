# src/taskweave/core/errors.py

"""
Error types.

Graph errors are construction-time and fatal: they are raised before any run
or watch starts. Stage failures are not exceptions at the Scheduler boundary;
they travel as RunOutcome values (see outcome.py).
"""

from __future__ import annotations


class GraphError(Exception):
    """Base class for task graph construction/validation errors."""


class DuplicateName(GraphError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Node {name!r} is already registered")
        self.name = name


class UnknownReference(GraphError):
    def __init__(self, composite: str, reference: str) -> None:
        super().__init__(f"{composite!r} references unknown node {reference!r}")
        self.composite = composite
        self.reference = reference


class CycleDetected(GraphError):
    def __init__(self, cycle: tuple[str, ...]) -> None:
        super().__init__("Cycle detected: " + " -> ".join(cycle))
        self.cycle = cycle


class NodeNotFound(GraphError, KeyError):
    def __init__(self, name: str) -> None:
        GraphError.__init__(self, f"No task or composite named {name!r}")
        self.name = name

    def __str__(self) -> str:
        # KeyError would repr() the message otherwise.
        return str(self.args[0])


class GraphFrozen(GraphError):
    """Registration attempted after the graph was validated."""


class StageError(Exception):
    """
    Raised by a stage function to report a failure with a readable cause.

    Any exception works; this one just keeps the cause text free of a type name.
    """


class WatchIOError(Exception):
    """Filesystem monitoring itself failed."""
