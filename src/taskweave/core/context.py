# src/taskweave/core/context.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any


class CancelToken:
    """
    Cooperative cancellation flag shared by every node of one run.

    Thread safe: blocking stage functions run on worker threads and may poll it.
    The scheduler checks it only at child-start boundaries; a stage that is
    already running is never interrupted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledRun()

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled})"


class CancelledRun(Exception):
    """Raised by CancelToken.raise_if_cancelled() inside a stage function."""


@dataclass(frozen=True, slots=True)
class TaskContext:
    """What a stage function receives."""

    node: str
    cancel: CancelToken
    changed_paths: tuple[str, ...] = ()
    log: logging.Logger = field(default_factory=lambda: logging.getLogger("taskweave.stage"))
    settings: Any = None

    @property
    def cancelled(self) -> bool:
        return self.cancel.cancelled
