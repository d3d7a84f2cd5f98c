# src/taskweave/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app, passed explicitly into the project,
  scheduler, watcher and dev server.
- No process-wide mutable path table: buildfiles describe their own paths on
  the Project they receive.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKWEAVE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    data_dir: Path

    # ---- Project ----
    buildfile: Path
    root_dir: Path
    profile: str

    # ---- Scheduler ----
    max_workers: int

    # ---- Watcher ----
    settle_ms: int
    watch_step_ms: int
    watch_debounce_ms: int

    # ---- Dev server / reload ----
    server_host: str
    server_port: int
    reload_mailbox: int

    @property
    def settle_delay(self) -> float:
        return max(0, self.settle_ms) / 1000.0

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskweave") or "taskweave"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskweave"))

        root_dir = _env_path(_k("ROOT_DIR"), Path("."))
        buildfile = _env_path(_k("BUILDFILE"), root_dir / "buildfile.py")
        # Free-form; buildfiles read it to pick a dev or build setup.
        profile = _env(_k("PROFILE"), "dev").strip() or "dev"

        # Parallel groups are bounded by this; stage functions are mostly IO-bound.
        max_workers = max(1, _env_int(_k("MAX_WORKERS"), min(32, (os.cpu_count() or 1) + 4)))

        settle_ms = _env_int(_k("SETTLE_MS"), 300)
        watch_step_ms = _env_int(_k("WATCH_STEP_MS"), 50)
        # watchfiles' own grouping window; kept short so per-rule settle timers decide.
        watch_debounce_ms = _env_int(_k("WATCH_DEBOUNCE_MS"), 50)

        server_host = _env(_k("SERVER_HOST"), "127.0.0.1")
        server_port = _env_int(_k("SERVER_PORT"), 3000)
        reload_mailbox = max(1, _env_int(_k("RELOAD_MAILBOX"), 16))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            buildfile=buildfile,
            root_dir=root_dir,
            profile=profile,
            max_workers=max_workers,
            settle_ms=settle_ms,
            watch_step_ms=watch_step_ms,
            watch_debounce_ms=watch_debounce_ms,
            server_host=server_host,
            server_port=server_port,
            reload_mailbox=reload_mailbox,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
