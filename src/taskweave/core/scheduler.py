# src/taskweave/core/scheduler.py

from __future__ import annotations

"""
Scheduler.

Runs one named node of a validated TaskGraph and returns a single RunOutcome:
- Task:     call the stage function (blocking ones on a bounded thread pool,
            coroutine functions on the loop) and map its result.
- Series:   children strictly in declared order, stop at the first non-ok outcome.
- Parallel: all children at once, wait for every one of them, aggregate failures.
            At most max_workers leaf tasks of one run execute at a time.

Stage failures never escape as exceptions; callers (CLI, Watcher) decide what
to do with the outcome. Cancellation is cooperative: the token is checked
before each Series child and before a Task starts; running stages are never
interrupted.

No locking between concurrent runs of the same node: callers that need
serialization (the Watcher) provide it.
"""

import asyncio
import inspect
import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable

from .context import CancelledRun, CancelToken, TaskContext
from .errors import StageError
from .graph import Composite, CompositeKind, Node, Task, TaskGraph
from .outcome import AggregateFailure, Cancelled, Failure, RunOutcome, Success
from .ports import RunEventListener, StageFunction

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True, slots=True)
class _RunState:
    cancel: CancelToken
    changed_paths: tuple[str, ...]
    # Leaf tasks of one run share max_workers slots; composites never hold one.
    slots: asyncio.Semaphore


def format_duration(seconds: float) -> str:
    """gulp-style duration: '12 ms', '1.4 s', '2.1 min'."""
    if seconds < 1.0:
        return f"{seconds * 1000:.0f} ms"
    if seconds < 60.0:
        return f"{seconds:.2f} s"
    return f"{seconds / 60.0:.1f} min"


def _cause(exc: BaseException) -> str:
    if isinstance(exc, StageError):
        return str(exc) or "stage error"
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def _is_async_stage(fn: Any) -> bool:
    if inspect.iscoroutinefunction(fn):
        return True
    call = getattr(fn, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


def _call_blocking(fn: StageFunction, ctx: TaskContext) -> Any:
    # Runs on a worker thread; a queued call that starts after cancellation never runs the stage.
    ctx.cancel.raise_if_cancelled()
    return fn(ctx)


class Scheduler:
    def __init__(
        self,
        graph: TaskGraph,
        *,
        max_workers: int | None = None,
        on_event: RunEventListener | None = None,
        settings: Any = None,
    ) -> None:
        # An invalid graph must never be runnable: this raises GraphError subclasses.
        graph.validate()

        self._graph = graph
        self._settings = settings
        self._max_workers = max(
            1, int(max_workers or getattr(settings, "max_workers", 0) or DEFAULT_MAX_WORKERS)
        )
        self._emit = on_event or (lambda *_: None)
        self._executor: ThreadPoolExecutor | None = None

        # Successful task completions by name, across all runs.
        self.completed: Counter[str] = Counter()

    @property
    def graph(self) -> TaskGraph:
        return self._graph

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        name: str,
        *,
        changed_paths: Iterable[str] = (),
        cancel: CancelToken | None = None,
    ) -> RunOutcome:
        """
        Run `name` to completion.

        Raises NodeNotFound for an unknown name; every other problem is
        reported through the returned outcome.
        """
        node = self._graph.resolve(name)
        state = _RunState(
            cancel=cancel or CancelToken(),
            changed_paths=tuple(changed_paths),
            slots=asyncio.Semaphore(self._max_workers),
        )
        return await self._run_node(node, state)

    def run_sync(
        self,
        name: str,
        *,
        changed_paths: Iterable[str] = (),
        cancel: CancelToken | None = None,
    ) -> RunOutcome:
        """Blocking wrapper for one-shot invocations (CLI `run`)."""
        return asyncio.run(self.run(name, changed_paths=changed_paths, cancel=cancel))

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ------------------------------------------------------------------
    # Node dispatch
    # ------------------------------------------------------------------

    async def _run_node(self, node: Node, state: _RunState) -> RunOutcome:
        if isinstance(node, Task):
            return await self._run_task(node, state)
        if node.kind is CompositeKind.SERIES:
            return await self._run_series(node, state)
        return await self._run_parallel(node, state)

    async def _run_series(self, node: Composite, state: _RunState) -> RunOutcome:
        logger.info("Starting '%s'...", node.name)
        started = time.perf_counter()

        for child in node.children:
            if state.cancel.cancelled:
                logger.info("'%s' cancelled before '%s'", node.name, child)
                return Cancelled(node.name)

            outcome = await self._run_node(self._graph.resolve(child), state)
            if not outcome.ok:
                logger.info(
                    "'%s' stopped after %s at '%s'",
                    node.name,
                    format_duration(time.perf_counter() - started),
                    child,
                )
                return outcome

        duration = time.perf_counter() - started
        logger.info("Finished '%s' after %s", node.name, format_duration(duration))
        return Success(node.name, duration)

    async def _run_parallel(self, node: Composite, state: _RunState) -> RunOutcome:
        logger.info("Starting '%s'...", node.name)
        started = time.perf_counter()

        # _run_node does not raise for stage problems, so gather always waits for every child.
        outcomes = await asyncio.gather(
            *(self._run_node(self._graph.resolve(child), state) for child in node.children)
        )
        duration = time.perf_counter() - started

        failures = tuple(o for o in outcomes if not o.ok and not isinstance(o, Cancelled))
        if failures:
            logger.error(
                "'%s' failed after %s: %d of %d failed (%s)",
                node.name,
                format_duration(duration),
                len(failures),
                len(outcomes),
                ", ".join(f.node for f in failures),
            )
            return AggregateFailure(node.name, failures=failures, outcomes=tuple(outcomes))

        if any(isinstance(o, Cancelled) for o in outcomes):
            logger.info("'%s' cancelled after %s", node.name, format_duration(duration))
            return Cancelled(node.name)

        logger.info("Finished '%s' after %s", node.name, format_duration(duration))
        return Success(node.name, duration)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def _run_task(self, task: Task, state: _RunState) -> RunOutcome:
        async with state.slots:
            return await self._run_task_slot(task, state)

    async def _run_task_slot(self, task: Task, state: _RunState) -> RunOutcome:
        # Cancellation may have arrived while waiting for a slot.
        if state.cancel.cancelled:
            self._emit("task_cancelled", {"node": task.name})
            return Cancelled(task.name)

        ctx = TaskContext(
            node=task.name,
            cancel=state.cancel,
            changed_paths=state.changed_paths,
            log=logging.getLogger(f"taskweave.stage.{task.name}"),
            settings=self._settings,
        )

        logger.info("Starting '%s'...", task.name)
        self._emit("task_started", {"node": task.name, "changed_paths": state.changed_paths})
        started = time.perf_counter()

        try:
            result = await self._invoke(task.run, ctx)
        except CancelledRun:
            self._emit("task_cancelled", {"node": task.name})
            logger.info("'%s' cancelled", task.name)
            return Cancelled(task.name)
        except Exception as exc:
            outcome: RunOutcome = Failure(task.name, cause=_cause(exc), error=exc)
        else:
            outcome = self._map_result(task.name, result, time.perf_counter() - started)

        duration = time.perf_counter() - started
        if outcome.ok:
            self.completed[task.name] += 1
            logger.info("Finished '%s' after %s", task.name, format_duration(duration))
            self._emit("task_finished", {"node": task.name, "duration": duration})
        elif isinstance(outcome, Cancelled):
            self._emit("task_cancelled", {"node": task.name})
        else:
            err = outcome.error if isinstance(outcome, Failure) else None
            logger.error(
                "'%s' errored after %s: %s",
                task.name,
                format_duration(duration),
                outcome.describe(),
                exc_info=err if err is not None and not isinstance(err, StageError) else None,
            )
            self._emit("task_failed", {"node": task.name, "outcome": outcome, "duration": duration})
        return outcome

    async def _invoke(self, fn: StageFunction, ctx: TaskContext) -> Any:
        if _is_async_stage(fn):
            return await fn(ctx)  # type: ignore[misc]

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(self._pool(), _call_blocking, fn, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="taskweave-stage"
            )
        return self._executor

    @staticmethod
    def _map_result(name: str, result: Any, duration: float) -> RunOutcome:
        if isinstance(result, RunOutcome):
            return result
        if result is False:
            return Failure(name, cause="stage reported failure")
        return Success(name, duration)
