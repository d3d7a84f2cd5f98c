# src/taskweave/core/outcome.py

from __future__ import annotations

"""
Run outcomes.

A Scheduler run always ends in one of these values:
- Success
- Failure           (a leaf stage failed)
- AggregateFailure  (a Parallel group with one or more failing children)
- Cancelled         (cancellation was observed before the node started)

Series composites return the first non-ok child outcome unchanged.
"""

from dataclasses import dataclass, field
from typing import Iterator


@dataclass(frozen=True, slots=True)
class RunOutcome:
    node: str

    @property
    def ok(self) -> bool:
        return False

    def leaf_failures(self) -> Iterator["Failure"]:
        return iter(())

    def describe(self) -> str:
        return f"{self.node}: {type(self).__name__.lower()}"


@dataclass(frozen=True, slots=True)
class Success(RunOutcome):
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return True

    def describe(self) -> str:
        return f"{self.node}: ok"


@dataclass(frozen=True, slots=True)
class Failure(RunOutcome):
    cause: str = ""
    error: BaseException | None = field(default=None, compare=False, repr=False)

    def leaf_failures(self) -> Iterator["Failure"]:
        yield self

    def describe(self) -> str:
        return f"{self.node}: {self.cause}"


@dataclass(frozen=True, slots=True)
class AggregateFailure(RunOutcome):
    failures: tuple[RunOutcome, ...] = ()
    outcomes: tuple[RunOutcome, ...] = ()

    @property
    def failed_nodes(self) -> tuple[str, ...]:
        return tuple(f.node for f in self.failures)

    def leaf_failures(self) -> Iterator[Failure]:
        for f in self.failures:
            yield from f.leaf_failures()

    def describe(self) -> str:
        inner = "; ".join(f.describe() for f in self.failures)
        return f"{self.node}: {len(self.failures)} failed ({inner})"


@dataclass(frozen=True, slots=True)
class Cancelled(RunOutcome):
    def describe(self) -> str:
        return f"{self.node}: cancelled"
