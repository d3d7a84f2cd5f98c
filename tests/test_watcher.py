# tests/test_watcher.py

from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace
from typing import Callable

import pytest

from taskweave.core.context import TaskContext
from taskweave.core.errors import StageError, UnknownReference, WatchIOError
from taskweave.core.graph import TaskGraph
from taskweave.core.outcome import Cancelled
from taskweave.core.scheduler import Scheduler
from taskweave.reload.bus import ReloadScope
from taskweave.watch.rules import EventKind, WatchRule
from taskweave.watch.watcher import Watcher

from .fakes import FakeReloadTarget, StageRecorder


async def _until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _watcher(
    graph: TaskGraph,
    rules: list[WatchRule],
    settings: SimpleNamespace,
    bus: FakeReloadTarget | None = None,
) -> Watcher:
    scheduler = Scheduler(graph, settings=settings)
    return Watcher(scheduler, rules, root=settings.root_dir, bus=bus, settings=settings)


@pytest.mark.asyncio
async def test_burst_of_events_collapses_into_one_run(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace
) -> None:
    graph.task("compileStyles", stages.ok("compileStyles"))
    rule = WatchRule("*.src", "compileStyles", settle_delay=0.3, reload=ReloadScope.STYLE)
    bus = FakeReloadTarget()
    watcher = _watcher(graph, [rule], settings, bus)
    loop = asyncio.get_running_loop()

    t0 = loop.time()
    watcher.notify("a.src")
    await asyncio.sleep(0.1)
    watcher.notify("b.src")
    await asyncio.sleep(0.15)
    watcher.notify("a.src")

    await _until(lambda: bus.sent)
    await asyncio.sleep(0.1)
    await watcher.stop()

    assert len(watcher.invocations) == 1
    inv = watcher.invocations[0]
    assert inv.paths == ("a.src", "b.src")
    assert 0.5 <= inv.started_at - t0 < 0.75
    assert stages.contexts["compileStyles"].changed_paths == ("a.src", "b.src")
    assert [(b.scope, b.paths) for b in bus.sent] == [(ReloadScope.STYLE, ("a.src", "b.src"))]


@pytest.mark.asyncio
async def test_event_after_settle_window_starts_a_second_run(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace
) -> None:
    graph.task("js", stages.ok("js"))
    watcher = _watcher(graph, [WatchRule("*.js", "js", settle_delay=0.05)], settings)

    watcher.notify("app/one.js")
    await _until(lambda: watcher.session("*.js -> js").runs == 1)
    watcher.notify("app/two.js")
    await _until(lambda: watcher.session("*.js -> js").runs == 2)
    await watcher.stop()

    assert [inv.paths for inv in watcher.invocations] == [("app/one.js",), ("app/two.js",)]


@pytest.mark.asyncio
async def test_runs_of_one_rule_never_overlap(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace
) -> None:
    graph.task("build", stages.ok("build", delay=0.3))
    rule = WatchRule("src/**", "build", events=EventKind, settle_delay=0.05)
    watcher = _watcher(graph, [rule], settings)
    session = watcher.session(rule)

    watcher.notify("src/one.txt")
    await _until(lambda: session.running is not None)
    watcher.notify("src/two.txt")
    await asyncio.sleep(0.07)
    assert session.queued == {"src/two.txt"}
    watcher.notify("src/three.txt", EventKind.CREATED)
    await asyncio.sleep(0.07)
    # Still one queued batch, now holding both paths.
    assert session.queued == {"src/two.txt", "src/three.txt"}

    await _until(lambda: session.runs == 2)
    await watcher.stop()

    first, second = watcher.invocations
    assert first.paths == ("src/one.txt",)
    assert second.paths == ("src/three.txt", "src/two.txt")
    assert second.started_at >= first.finished_at
    assert stages.max_active["build"] == 1


@pytest.mark.asyncio
async def test_different_rules_run_concurrently(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace
) -> None:
    graph.task("css", stages.ok("css", delay=0.15))
    graph.task("js", stages.ok("js", delay=0.15))
    rules = [WatchRule("*.scss", "css", settle_delay=0.01), WatchRule("*.js", "js", settle_delay=0.01)]
    watcher = _watcher(graph, rules, settings)

    watcher.notify("a.scss")
    watcher.notify("a.js")
    await _until(lambda: all(watcher.session(r).running is not None for r in rules))
    await _until(lambda: all(watcher.session(r).runs == 1 for r in rules))
    await watcher.stop()


@pytest.mark.asyncio
async def test_failed_rebuild_is_logged_and_watching_continues(
    graph: TaskGraph, settings: SimpleNamespace, caplog: pytest.LogCaptureFixture
) -> None:
    attempts: list[int] = []

    async def sass(ctx: TaskContext) -> None:
        attempts.append(1)
        if len(attempts) == 1:
            raise StageError("Undefined variable $brand")

    graph.task("sass", sass)
    bus = FakeReloadTarget()
    rule = WatchRule("*.scss", "sass", settle_delay=0.02, reload="style")
    watcher = _watcher(graph, [rule], settings, bus)
    caplog.set_level("INFO", logger="taskweave")

    watcher.notify("main.scss")
    await _until(lambda: watcher.session(rule).runs == 1)
    assert not watcher.session(rule).last_outcome.ok
    assert bus.sent == []
    assert any("Undefined variable $brand" in r.getMessage() for r in caplog.records)

    watcher.notify("main.scss")
    await _until(lambda: watcher.session(rule).runs == 2)
    await watcher.stop()

    assert watcher.session(rule).last_outcome.ok
    assert [b.scope for b in bus.sent] == [ReloadScope.STYLE]


@pytest.mark.asyncio
async def test_event_kind_filter(graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace) -> None:
    graph.task("img", stages.ok("img"))
    rule = WatchRule("images/**/*", "img", events={EventKind.CREATED}, settle_delay=0.01)
    watcher = _watcher(graph, [rule], settings)

    assert watcher.notify("images/logo.png", EventKind.CHANGED) == 0
    assert watcher.notify("images/logo.png", EventKind.DELETED) == 0
    assert watcher.notify("images/icons/new.png", "created") == 1

    await _until(lambda: watcher.session(rule).runs == 1)
    await watcher.stop()
    assert watcher.invocations[0].paths == ("images/icons/new.png",)


@pytest.mark.asyncio
async def test_reload_only_rule_broadcasts_without_running(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace
) -> None:
    graph.task("unused", stages.ok("unused"))
    bus = FakeReloadTarget()
    rule = WatchRule("*.html", reload=ReloadScope.FULL, settle_delay=0.02)
    watcher = _watcher(graph, [rule], settings, bus)

    watcher.notify("index.html")
    watcher.notify("about.html")
    await _until(lambda: bus.sent)
    await watcher.stop()

    assert stages.calls == []
    assert list(watcher.invocations) == []
    assert [(b.scope, b.paths) for b in bus.sent] == [(ReloadScope.FULL, ("about.html", "index.html"))]


@pytest.mark.asyncio
async def test_absolute_paths_are_made_relative_to_root(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace, tmp_path: Path
) -> None:
    graph.task("js", stages.ok("js"))
    rule = WatchRule("app/*.js", "js", settle_delay=0.01)
    watcher = _watcher(graph, [rule], settings)

    assert watcher.notify(tmp_path / "app" / "main.js") == 1
    assert watcher.notify(tmp_path.parent / "elsewhere" / "app" / "main.js") == 0

    await _until(lambda: watcher.session(rule).runs == 1)
    await watcher.stop()
    assert watcher.invocations[0].paths == ("app/main.js",)


@pytest.mark.asyncio
async def test_stop_cancels_pending_timers(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace
) -> None:
    graph.task("js", stages.ok("js"))
    rule = WatchRule("*.js", "js", settle_delay=0.1)
    watcher = _watcher(graph, [rule], settings)

    watcher.notify("a.js")
    await watcher.stop()
    await asyncio.sleep(0.15)

    assert stages.calls == []
    assert watcher.session(rule).idle
    assert watcher.notify("b.js") == 0


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_run_between_children(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace
) -> None:
    graph.task("first", stages.ok("first", delay=0.1))
    graph.task("second", stages.ok("second"))
    graph.series("pipeline", "first", "second")
    rule = WatchRule("*.txt", "pipeline", settle_delay=0.01)
    watcher = _watcher(graph, [rule], settings)

    watcher.notify("a.txt")
    await _until(lambda: "first" in stages.calls)
    await watcher.stop()

    assert stages.calls == ["first"]
    assert stages.finished == ["first"]
    assert isinstance(watcher.session(rule).last_outcome, Cancelled)


def test_unknown_target_is_rejected(graph: TaskGraph, settings: SimpleNamespace) -> None:
    graph.task("js", lambda ctx: None)
    scheduler = Scheduler(graph)
    with pytest.raises(UnknownReference) as exc:
        Watcher(scheduler, [WatchRule("*.scss", "sass")], root=settings.root_dir)
    assert exc.value.reference == "sass"


@pytest.mark.asyncio
async def test_missing_root_raises_watch_io_error(graph: TaskGraph, tmp_path: Path) -> None:
    graph.task("js", lambda ctx: None)
    watcher = Watcher(Scheduler(graph), [WatchRule("*.js", "js")], root=tmp_path / "missing")

    with pytest.raises(WatchIOError):
        await watcher.start()


@pytest.mark.asyncio
async def test_on_run_hook(graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace) -> None:
    graph.task("js", stages.ok("js"))
    rule = WatchRule("*.js", "js", settle_delay=0.01)
    seen: list[tuple[str, bool]] = []
    watcher = Watcher(
        Scheduler(graph),
        [rule],
        root=settings.root_dir,
        settings=settings,
        on_run=lambda r, outcome: seen.append((r.name, outcome.ok)),
    )

    watcher.notify("a.js")
    await _until(lambda: seen)
    await watcher.stop()
    assert seen == [("*.js -> js", True)]


@pytest.mark.asyncio
async def test_failing_on_run_hook_does_not_stop_the_rule(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace, caplog: pytest.LogCaptureFixture
) -> None:
    graph.task("js", stages.ok("js"))
    rule = WatchRule("*.js", "js", settle_delay=0.01)

    def hook(r: WatchRule, outcome) -> None:
        raise RuntimeError("hook exploded")

    watcher = Watcher(Scheduler(graph), [rule], root=settings.root_dir, settings=settings, on_run=hook)

    watcher.notify("a.js")
    await _until(lambda: watcher.session(rule).runs == 1 and watcher.session(rule).running is None)
    watcher.notify("b.js")
    await _until(lambda: watcher.session(rule).runs == 2)
    await watcher.stop()

    assert stages.calls == ["js", "js"]
    assert "on_run hook failed for *.js -> js" in caplog.text


@pytest.mark.asyncio
async def test_real_filesystem_events_trigger_a_run(
    graph: TaskGraph, stages: StageRecorder, settings: SimpleNamespace, tmp_path: Path
) -> None:
    (tmp_path / "src").mkdir()
    graph.task("build", stages.ok("build"))
    rule = WatchRule("src/*.txt", "build", events={EventKind.CREATED, EventKind.CHANGED}, settle_delay=0.05)
    watcher = _watcher(graph, [rule], settings)

    await watcher.start()
    try:
        # Give the OS watch a moment to arm.
        await asyncio.sleep(0.2)
        (tmp_path / "src" / "hello.txt").write_text("hi", "utf-8")
        await _until(lambda: watcher.session(rule).runs >= 1, timeout=5.0)
    finally:
        await watcher.stop()

    assert "src/hello.txt" in watcher.invocations[0].paths
