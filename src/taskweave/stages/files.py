# src/taskweave/stages/files.py

from __future__ import annotations

"""
File stages: the plain copy/clean steps a front-end build needs around its
real transforms. Content transforms (sass, minifiers, image optimizers) are
supplied by the buildfile.
"""

import shutil
from pathlib import Path

from ..core.context import TaskContext
from ..core.ports import StageFunction
from ..watch.patterns import compile_glob


def clean(path: str | Path) -> StageFunction:
    """Stage that removes `path` (a build directory) if it exists."""
    target = Path(path)

    def _clean(ctx: TaskContext) -> None:
        if target.is_dir():
            shutil.rmtree(target)
            ctx.log.info("Removed %s", target)
        elif target.exists():
            target.unlink()
            ctx.log.info("Removed %s", target)

    _clean.__name__ = f"clean[{target}]"
    return _clean


def copy(pattern: str, dest: str | Path, *, base: str | Path = ".") -> StageFunction:
    """
    Stage that copies files under `base` matching `pattern` into `dest`,
    keeping their path relative to `base`.
    """
    base_dir = Path(base)
    dest_dir = Path(dest)
    matcher = compile_glob(pattern)

    def _copy(ctx: TaskContext) -> int:
        if not base_dir.is_dir():
            ctx.log.warning("Nothing to copy: %s does not exist", base_dir)
            return 0

        copied = 0
        for src in sorted(base_dir.rglob("*")):
            if not src.is_file():
                continue
            rel = src.relative_to(base_dir).as_posix()
            if matcher.match(rel) is None:
                continue
            # Stop between files, never mid-file.
            ctx.cancel.raise_if_cancelled()
            out = dest_dir / rel
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, out)
            copied += 1

        ctx.log.info("Copied %d file(s) matching %s to %s", copied, pattern, dest_dir)
        return copied

    _copy.__name__ = f"copy[{pattern}]"
    return _copy
