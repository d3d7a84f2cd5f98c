# src/taskweave/core/project.py

"""
Project: the value a buildfile configures.

Source/build paths and the serve root (plus an optional fixed port) live here
as explicit state, next to the task graph and the watch rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from ..reload.bus import ReloadScope
from ..watch.rules import EventKind, WatchRule, validate_rules
from .graph import TaskGraph

logger = logging.getLogger(__name__)


@dataclass
class Project:
    settings: Any
    root: Path = field(default_factory=lambda: Path("."))
    graph: TaskGraph = field(default_factory=TaskGraph)
    rules: list[WatchRule] = field(default_factory=list)
    paths: dict[str, Path] = field(default_factory=dict)
    serve_root: Path | None = None
    serve_port: int | None = None
    default_target: str | None = None

    def path(self, key: str) -> Path:
        """Look up a buildfile-declared path, resolved against the project root."""
        try:
            return self.root / self.paths[key]
        except KeyError:
            raise KeyError(f"Unknown project path {key!r}; known: {', '.join(sorted(self.paths))}") from None

    def watch(
        self,
        pattern: str,
        target: str | None = None,
        *,
        events: Iterable[EventKind | str] = (EventKind.CHANGED,),
        settle: float | None = None,
        reload: ReloadScope | str = ReloadScope.NONE,
        name: str = "",
    ) -> WatchRule:
        if settle is None:
            settle = float(getattr(self.settings, "settle_delay", 0.3))
        rule = WatchRule(
            pattern=pattern,
            target=target,
            events=frozenset(EventKind(e) for e in events),
            settle_delay=settle,
            reload=ReloadScope(reload),
            name=name,
        )
        self.rules.append(rule)
        return rule

    def validate(self) -> None:
        """Fatal checks before anything runs (graph, watch targets, default)."""
        self.graph.validate()
        validate_rules(self.rules, self.graph)
        if self.default_target is not None:
            self.graph.resolve(self.default_target)
        logger.debug(
            "Project validated: %d node(s), %d watch rule(s)", len(self.graph), len(self.rules)
        )
