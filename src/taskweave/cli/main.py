# src/taskweave/cli/main.py

"""
CLI entrypoint.

    taskweave run NAME...      run tasks/composites once, exit 1 on failure
    taskweave watch            watch sources, rebuild, serve and live-reload
    taskweave list             show the task graph

Configuration errors (missing buildfile, unknown references, cycles) exit 2
before anything runs.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass
from pathlib import Path

import click

from ..cli.bootstrap import BuildfileError, create_scheduler, create_watch_stack, load_buildfile
from ..config import Settings, get_settings
from ..core.errors import GraphError, NodeNotFound, WatchIOError
from ..core.outcome import RunOutcome
from ..core.project import Project
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_CONFIG = 2


@dataclass(slots=True)
class _CliState:
    settings: Settings
    buildfile: Path


def _report(outcome: RunOutcome) -> None:
    click.echo(f"Build failed: {outcome.describe()}", err=True)
    for leaf in outcome.leaf_failures():
        click.echo(f"  - {leaf.node}: {leaf.cause}", err=True)


def _load(ctx: click.Context) -> Project:
    state: _CliState = ctx.obj
    try:
        return load_buildfile(state.buildfile, state.settings)
    except (BuildfileError, GraphError) as exc:
        logger.debug("Configuration error", exc_info=True)
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_CONFIG)
        raise  # unreachable: ctx.exit raises


@click.group()
@click.option(
    "--file",
    "-f",
    "buildfile",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Buildfile defining configure(project). Default: $TASKWEAVE_BUILDFILE or ./buildfile.py",
)
@click.option("--log-level", default=None, help="Console log level (default: $TASKWEAVE_LOG_LEVEL or INFO).")
@click.pass_context
def cli(ctx: click.Context, buildfile: Path | None, log_level: str | None) -> None:
    settings = get_settings()

    level_name = str(log_level or settings.log_level or "INFO").upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    ctx.obj = _CliState(settings=settings, buildfile=buildfile or settings.buildfile)


@cli.command()
@click.argument("names", nargs=-1)
@click.pass_context
def run(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Run NAMES once, in order (default: the buildfile's default target)."""
    project = _load(ctx)

    if not names:
        if project.default_target is None:
            raise click.UsageError("No task given and the buildfile sets no default_target.")
        names = (project.default_target,)

    scheduler = create_scheduler(project)
    try:
        for name in names:
            try:
                outcome = scheduler.run_sync(name)
            except NodeNotFound as exc:
                click.echo(f"Error: {exc}", err=True)
                ctx.exit(EXIT_CONFIG)
            if not outcome.ok:
                _report(outcome)
                ctx.exit(EXIT_FAILURE)
    finally:
        scheduler.close()


@cli.command()
@click.option("--serve/--no-serve", default=True, help="Serve the project's serve_root with live reload.")
@click.option(
    "--port",
    type=int,
    default=None,
    help="Dev server port (default: the buildfile's serve_port, else $TASKWEAVE_SERVER_PORT or 3000).",
)
@click.option("--initial", "initial", multiple=True, help="Run this task before watching (repeatable).")
@click.pass_context
def watch(ctx: click.Context, serve: bool, port: int | None, initial: tuple[str, ...]) -> None:
    """Watch sources, rebuild on change and notify browsers."""
    project = _load(ctx)
    for name in initial:
        if name not in project.graph:
            click.echo(f"Error: {NodeNotFound(name)}", err=True)
            ctx.exit(EXIT_CONFIG)

    code = asyncio.run(_watch_main(project, serve=serve, port=port, initial=initial))
    ctx.exit(code)


async def _watch_main(project: Project, *, serve: bool, port: int | None, initial: tuple[str, ...]) -> int:
    stack = create_watch_stack(project, serve=serve, port=port)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Some platforms do not support loop signal handlers.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)

    waiter: asyncio.Task | None = None
    stopper: asyncio.Task | None = None
    try:
        for name in initial:
            outcome = await stack.scheduler.run(name)
            if not outcome.ok:
                _report(outcome)
                return EXIT_FAILURE

        if stack.server is not None:
            await stack.server.start()
        await stack.watcher.start()

        waiter = asyncio.create_task(stack.watcher.wait())
        stopper = asyncio.create_task(stop.wait())
        done, _ = await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        if waiter in done:
            # Monitoring ended without a stop request: surface its error.
            waiter.result()
        return 0
    except WatchIOError as exc:
        logger.error("%s", exc)
        click.echo(f"Error: {exc}", err=True)
        return EXIT_FAILURE
    finally:
        try:
            await stack.watcher.stop()
            if stack.server is not None:
                await stack.server.stop()
        except Exception:
            logger.exception("Shutdown failed")
        stack.bus.close()
        stack.scheduler.close()
        for task in (waiter, stopper):
            if task is not None and not task.done():
                task.cancel()
        logger.info("Bye.")


@cli.command(name="list")
@click.pass_context
def list_nodes(ctx: click.Context) -> None:
    """Show every task and composite."""
    project = _load(ctx)
    graph = project.graph

    referenced = {child for node in graph for child in getattr(node, "children", ())}
    for name in graph.names():
        if name in referenced:
            continue
        marker = " (default)" if name == project.default_target else ""
        click.echo(graph.describe(name) + marker)

    if project.rules:
        click.echo("")
        click.echo("Watch rules:")
        for rule in project.rules:
            events = ",".join(sorted(e.value for e in rule.events))
            click.echo(
                f"  {rule.pattern} [{events}] -> {rule.target or '-'}"
                f" (settle {rule.settle_delay * 1000:.0f} ms, reload {rule.reload.value})"
            )


def main() -> None:
    cli(prog_name="taskweave")


if __name__ == "__main__":
    main()
