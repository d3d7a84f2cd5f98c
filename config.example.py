# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Build structure (tasks, composites, watch rules, source/build paths) lives in the buildfile,
not here. This file exists to make the repo self-documenting.
"""

ENV_VARS = {
    # App / logging
    "TASKWEAVE_APP_NAME": "App display name (default: taskweave).",
    "TASKWEAVE_LOG_LEVEL": "Console logging level (default: INFO).",
    "TASKWEAVE_DATA_DIR": "Local data directory for logs (default: .local/taskweave).",
    # Project
    "TASKWEAVE_ROOT_DIR": "Project root (default: current directory).",
    "TASKWEAVE_BUILDFILE": "Buildfile path (default: <root_dir>/buildfile.py).",
    "TASKWEAVE_PROFILE": "Profile name passed to the buildfile as settings.profile (default: dev).",
    # Scheduler
    "TASKWEAVE_MAX_WORKERS": "Worker threads for blocking stage functions (default: cpu_count + 4, max 32).",
    # Watcher
    "TASKWEAVE_SETTLE_MS": "Default quiet period before a watch rule runs (default: 300).",
    "TASKWEAVE_WATCH_STEP_MS": "Filesystem poll step in ms (default: 50).",
    "TASKWEAVE_WATCH_DEBOUNCE_MS": "Raw event grouping window in ms (default: 50).",
    # Dev server / reload
    "TASKWEAVE_SERVER_HOST": "Dev server host (default: 127.0.0.1).",
    "TASKWEAVE_SERVER_PORT": "Dev server port (default: 3000).",
    "TASKWEAVE_RELOAD_MAILBOX": "Pending reload notices per client before it is dropped (default: 16).",
}
