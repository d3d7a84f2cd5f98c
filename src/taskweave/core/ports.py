# src/taskweave/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
Stage functions, event listeners and the reload target are supplied by the
buildfile / composition root, which keeps them swappable in tests.
"""

from typing import TYPE_CHECKING, Any, Awaitable, Iterable, Protocol, Union

if TYPE_CHECKING:
    from .context import TaskContext
    from .outcome import RunOutcome
    from ..reload.bus import ReloadScope

StageResult = Union["RunOutcome", bool, None]


class StageFunction(Protocol):
    """
    A build stage: `(context) -> result`, plain or async.

    Raise to fail (StageError gives a clean cause text). Return False to fail
    without a message, a RunOutcome to report one explicitly, anything else
    to succeed. Must be safe to call repeatedly.
    """

    def __call__(self, context: TaskContext) -> StageResult | Awaitable[StageResult]: ...


class RunEventListener(Protocol):
    """Scheduler observer: task_started / task_finished / task_failed / task_cancelled."""

    def __call__(self, kind: str, payload: dict[str, Any]) -> None: ...


class ReloadTarget(Protocol):
    """What the Watcher needs from the Reload Bus."""

    def broadcast(self, scope: ReloadScope, paths: Iterable[str] = ()) -> int: ...
