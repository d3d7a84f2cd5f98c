# src/taskweave/watch/watcher.py

from __future__ import annotations

"""
Watcher.

Maps filesystem events to scheduler runs:
- every event matching a rule adds its path to that rule's pending set and
  restarts the rule's settle timer,
- when the timer fires, the rule's target runs once with all pending paths,
- a rule never runs twice at the same time: a batch that settles while the
  previous run is in flight is queued (at most one per rule) and starts when
  that run completes,
- after a successful run the rule's reload scope is broadcast.

Failed rebuilds are logged and the Watcher keeps going.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

import watchfiles

from ..core.context import CancelToken
from ..core.errors import WatchIOError
from ..core.outcome import Cancelled, Failure, RunOutcome
from ..core.ports import ReloadTarget
from ..core.scheduler import Scheduler
from ..reload.bus import ReloadScope
from .patterns import normalize_path
from .rules import EventKind, WatchRule, validate_rules

logger = logging.getLogger(__name__)

RunHook = Callable[[WatchRule, RunOutcome], None]


@dataclass(slots=True)
class WatchSession:
    """Runtime state of one rule."""

    rule: WatchRule
    pending: set[str] = field(default_factory=set)
    timer: asyncio.TimerHandle | None = None
    running: asyncio.Task | None = None
    cancel: CancelToken | None = None
    queued: set[str] | None = None
    last_outcome: RunOutcome | None = None
    runs: int = 0

    @property
    def idle(self) -> bool:
        return not self.pending and self.timer is None and self.running is None and self.queued is None


@dataclass(slots=True)
class Invocation:
    rule: str
    target: str | None
    paths: tuple[str, ...]
    started_at: float
    finished_at: float | None = None
    outcome: RunOutcome | None = None


class Watcher:
    def __init__(
        self,
        scheduler: Scheduler,
        rules: Iterable[WatchRule],
        *,
        root: str | Path = ".",
        bus: ReloadTarget | None = None,
        settings: Any = None,
        on_run: RunHook | None = None,
        history: int = 200,
    ) -> None:
        self._rules = tuple(rules)
        validate_rules(self._rules, scheduler.graph)

        self._scheduler = scheduler
        self._root = Path(root).resolve()
        self._bus = bus
        self._on_run = on_run
        self._debounce_ms = int(getattr(settings, "watch_debounce_ms", 50) or 50)
        self._step_ms = int(getattr(settings, "watch_step_ms", 50) or 50)

        self._sessions: dict[str, WatchSession] = {r.name: WatchSession(r) for r in self._rules}
        self._stop_event = asyncio.Event()
        self._monitor: asyncio.Task | None = None
        self._error: WatchIOError | None = None
        self._stopping = False

        self.invocations: deque[Invocation] = deque(maxlen=history)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def rules(self) -> tuple[WatchRule, ...]:
        return self._rules

    def session(self, rule: WatchRule | str) -> WatchSession:
        name = rule if isinstance(rule, str) else rule.name
        return self._sessions[name]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Arm filesystem monitoring on the root directory."""
        if not self._root.is_dir():
            raise WatchIOError(f"Watch root does not exist or is not a directory: {self._root}")
        self._stopping = False
        self._error = None
        self._stop_event.clear()
        self._monitor = asyncio.create_task(self._monitor_loop(), name="taskweave-watch")
        logger.info("Watching %s (%d rule(s))", self._root, len(self._rules))

    async def wait(self) -> None:
        """Block until monitoring ends; raises WatchIOError if it failed."""
        if self._monitor is not None:
            await self._monitor
        if self._error is not None:
            raise self._error

    async def stop(self) -> None:
        """Cancel timers, signal in-flight runs, release the filesystem watch."""
        self._stopping = True
        for session in self._sessions.values():
            if session.timer is not None:
                session.timer.cancel()
                session.timer = None
            session.pending.clear()
            session.queued = None
            if session.cancel is not None:
                session.cancel.cancel()

        self._stop_event.set()
        if self._monitor is not None:
            await self._monitor
            self._monitor = None

        running = [s.running for s in self._sessions.values() if s.running is not None]
        if running:
            logger.info("Waiting for %d running build(s) to finish...", len(running))
            await asyncio.wait(running)
        logger.info("Watcher stopped")

    async def _monitor_loop(self) -> None:
        try:
            async for changes in watchfiles.awatch(
                self._root,
                stop_event=self._stop_event,
                debounce=self._debounce_ms,
                step=self._step_ms,
                recursive=True,
            ):
                for change, path in changes:
                    try:
                        self.notify(path, EventKind.from_change(change))
                    except Exception:
                        # One bad path must not take the other rules down.
                        logger.exception("Failed to handle %s event for %s", change.name, path)
        except Exception as exc:
            logger.error("Watching %s failed: %s", self._root, exc)
            err = WatchIOError(f"Watching {self._root} failed: {exc}")
            err.__cause__ = exc
            self._error = err

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def notify(self, path: str | Path, kind: EventKind | str = EventKind.CHANGED) -> int:
        """
        Feed one filesystem event. Returns the number of rules it matched.

        Must be called on the event loop thread.
        """
        if self._stopping:
            return 0
        kind = EventKind(kind)
        rel = self._relative(path)
        if rel is None:
            return 0

        loop = asyncio.get_running_loop()
        matched = 0
        for rule in self._rules:
            if not rule.matches(rel, kind):
                continue
            matched += 1
            session = self._sessions[rule.name]
            session.pending.add(rel)
            if session.timer is not None:
                session.timer.cancel()
            session.timer = loop.call_later(rule.settle_delay, self._settle, session)
            logger.debug("%s %s -> %s (%d pending)", kind.value, rel, rule.name, len(session.pending))
        return matched

    def _relative(self, path: str | Path) -> str | None:
        p = Path(path)
        if not p.is_absolute():
            return normalize_path(p.as_posix())
        for candidate in (p, p.resolve()):
            try:
                return candidate.relative_to(self._root).as_posix()
            except ValueError:
                continue
        logger.debug("Ignoring event outside watch root: %s", p)
        return None

    def _settle(self, session: WatchSession) -> None:
        session.timer = None
        paths = session.pending
        session.pending = set()
        if not paths or self._stopping:
            return

        rule = session.rule
        if rule.target is None:
            self._broadcast(rule, paths)
            return

        if session.running is not None:
            if session.queued is None:
                session.queued = set()
            session.queued |= paths
            logger.info("'%s' is still running; queued %d change(s)", rule.target, len(session.queued))
            return

        self._start_run(session, paths)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def _start_run(self, session: WatchSession, paths: set[str]) -> None:
        token = CancelToken()
        session.cancel = token
        session.running = asyncio.create_task(
            self._run(session, tuple(sorted(paths)), token),
            name=f"taskweave-watch:{session.rule.name}",
        )

    async def _run(self, session: WatchSession, paths: tuple[str, ...], token: CancelToken) -> None:
        rule = session.rule
        target = rule.target
        assert target is not None
        loop = asyncio.get_running_loop()
        invocation = Invocation(rule=rule.name, target=target, paths=paths, started_at=loop.time())
        self.invocations.append(invocation)
        logger.info("%d change(s) matched %s, running '%s'", len(paths), rule.pattern, target)

        try:
            try:
                outcome = await self._scheduler.run(target, changed_paths=paths, cancel=token)
            except Exception as exc:
                logger.exception("Scheduler crashed while running '%s'", target)
                outcome = Failure(target, cause=str(exc) or type(exc).__name__, error=exc)

            invocation.finished_at = loop.time()
            invocation.outcome = outcome
            session.last_outcome = outcome
            session.runs += 1

            if outcome.ok:
                if rule.reload is not ReloadScope.NONE:
                    self._broadcast(rule, set(paths))
            elif isinstance(outcome, Cancelled):
                logger.info("Run of '%s' was cancelled", target)
            else:
                self._report_failure(rule, outcome)

            if self._on_run is not None:
                try:
                    self._on_run(rule, outcome)
                except Exception:
                    logger.exception("on_run hook failed for %s", rule.name)
        finally:
            session.running = None
            session.cancel = None
            queued = session.queued
            session.queued = None
            if queued and not self._stopping:
                self._start_run(session, queued)

    def _broadcast(self, rule: WatchRule, paths: set[str]) -> None:
        if self._bus is None:
            logger.debug("No reload bus; skipping %s reload for %s", rule.reload.value, rule.name)
            return
        self._bus.broadcast(rule.reload, sorted(paths))

    @staticmethod
    def _report_failure(rule: WatchRule, outcome: RunOutcome) -> None:
        logger.error("Rebuild for %s failed; keeping previous output. Watching continues.", rule.pattern)
        for leaf in outcome.leaf_failures():
            logger.error("  %s", leaf.describe())
