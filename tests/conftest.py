# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskweave.core.graph import TaskGraph

from .fakes import StageRecorder


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with Scheduler/Watcher/Project.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        data_dir=tmp_path / ".local",
        root_dir=tmp_path,
        profile="dev",
        max_workers=4,
        settle_ms=300,
        settle_delay=0.3,
        watch_step_ms=20,
        watch_debounce_ms=20,
        server_host="127.0.0.1",
        server_port=3999,
        reload_mailbox=4,
    )


@pytest.fixture()
def graph() -> TaskGraph:
    return TaskGraph()


@pytest.fixture()
def stages() -> StageRecorder:
    return StageRecorder()
