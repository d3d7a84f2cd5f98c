# src/taskweave/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- imports the buildfile and lets it configure a Project,
- validates the project before anything runs,
- wires Scheduler, ReloadBus, Watcher and DevServer from one Settings value.
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from ..config import Settings, get_settings
from ..core.errors import GraphError
from ..core.project import Project
from ..core.scheduler import Scheduler
from ..reload.bus import ReloadBus
from ..reload.server import DevServer
from ..watch.watcher import Watcher

logger = logging.getLogger(__name__)


class BuildfileError(Exception):
    """The buildfile is missing, fails to import, lacks configure() or configure() raised."""


def load_buildfile(path: str | Path, settings: Settings | None = None) -> Project:
    """
    Import `path` and call its `configure(project)`.

    Graph and watch-rule errors (GraphError subclasses) propagate unchanged:
    they are fatal and must be reported before any run starts. Anything else
    raised by configure() becomes a BuildfileError.
    """
    if settings is None:
        settings = get_settings()

    path = Path(path).resolve()
    if not path.is_file():
        raise BuildfileError(f"Buildfile not found: {path}")

    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
    module_name = f"_taskweave_buildfile_{digest}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise BuildfileError(f"Cannot import buildfile: {path}")

    # Buildfiles may import helper modules living next to them.
    build_dir = str(path.parent)
    if build_dir not in sys.path:
        sys.path.insert(0, build_dir)

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        sys.modules.pop(module_name, None)
        raise BuildfileError(f"Failed to import buildfile {path}: {exc}") from exc

    configure = getattr(module, "configure", None)
    if not callable(configure):
        raise BuildfileError(f"Buildfile {path} does not define configure(project)")

    project = Project(settings=settings, root=path.parent)
    try:
        configure(project)
    except GraphError:
        raise
    except Exception as exc:
        raise BuildfileError(f"Buildfile {path} failed in configure(): {exc}") from exc
    project.validate()

    logger.info(
        "Using buildfile %s (%d node(s), %d watch rule(s))",
        path,
        len(project.graph),
        len(project.rules),
    )
    return project


def create_scheduler(project: Project) -> Scheduler:
    settings = project.settings
    return Scheduler(
        project.graph,
        max_workers=getattr(settings, "max_workers", None),
        settings=settings,
    )


@dataclass(slots=True)
class WatchStack:
    scheduler: Scheduler
    bus: ReloadBus
    watcher: Watcher
    server: DevServer | None


def create_watch_stack(project: Project, *, serve: bool = True, port: int | None = None) -> WatchStack:
    """
    Scheduler + ReloadBus + Watcher (+ DevServer when the project has a serve root).

    Port precedence: explicit `port`, then the buildfile's serve_port, then settings.
    """
    settings = project.settings
    scheduler = create_scheduler(project)
    bus = ReloadBus(mailbox_size=int(getattr(settings, "reload_mailbox", 16)))
    watcher = Watcher(scheduler, project.rules, root=project.root, bus=bus, settings=settings)

    server: DevServer | None = None
    if serve:
        if project.serve_root is None:
            logger.warning("Buildfile sets no serve_root; dev server disabled.")
        else:
            server = DevServer(
                bus,
                project.root / project.serve_root,
                host=str(getattr(settings, "server_host", "127.0.0.1")),
                port=int(port or project.serve_port or getattr(settings, "server_port", 3000)),
            )
    return WatchStack(scheduler=scheduler, bus=bus, watcher=watcher, server=server)
