# src/taskweave/watch/rules.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable

import watchfiles

from ..core.errors import DuplicateName, GraphError, UnknownReference
from ..core.graph import TaskGraph
from ..reload.bus import ReloadScope
from .patterns import compile_glob, normalize_path


class EventKind(StrEnum):
    CREATED = "created"
    CHANGED = "changed"
    DELETED = "deleted"

    @classmethod
    def from_change(cls, change: watchfiles.Change) -> EventKind:
        return _CHANGE_MAP[change]


_CHANGE_MAP = {
    watchfiles.Change.added: EventKind.CREATED,
    watchfiles.Change.modified: EventKind.CHANGED,
    watchfiles.Change.deleted: EventKind.DELETED,
}

ALL_EVENTS = frozenset(EventKind)


@dataclass(frozen=True, slots=True)
class WatchRule:
    """
    Glob pattern -> task (or task chain) to run once changes settle.

    `target=None` makes a reload-only rule: matching changes just notify the
    browsers (static HTML, already-built CSS).
    """

    pattern: str
    target: str | None = None
    events: frozenset[EventKind] = frozenset({EventKind.CHANGED})
    settle_delay: float = 0.3
    reload: ReloadScope = ReloadScope.NONE
    name: str = ""

    def __post_init__(self) -> None:
        if not self.pattern:
            raise GraphError("Watch rule needs a pattern")
        if self.settle_delay < 0:
            raise GraphError(f"Watch rule {self.pattern!r}: settle_delay must be non-negative")
        # Frozen dataclass: normalize through object.__setattr__.
        object.__setattr__(self, "events", frozenset(EventKind(e) for e in self.events))
        object.__setattr__(self, "reload", ReloadScope(self.reload))
        if self.target is None and self.reload is ReloadScope.NONE:
            raise GraphError(f"Watch rule {self.pattern!r} has neither a target nor a reload scope")
        if not self.events:
            raise GraphError(f"Watch rule {self.pattern!r} listens to no events")
        if not self.name:
            object.__setattr__(self, "name", f"{self.pattern} -> {self.target or 'reload'}")
        compile_glob(self.pattern)

    def matches(self, path: str, kind: EventKind) -> bool:
        return kind in self.events and compile_glob(self.pattern).match(normalize_path(path)) is not None


def validate_rules(rules: Iterable[WatchRule], graph: TaskGraph) -> None:
    """Every target must exist in the graph; rule names must be unique."""
    seen: set[str] = set()
    for rule in rules:
        if rule.name in seen:
            raise DuplicateName(rule.name)
        seen.add(rule.name)
        if rule.target is not None and rule.target not in graph:
            raise UnknownReference(f"watch:{rule.name}", rule.target)
