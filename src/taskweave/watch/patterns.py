# src/taskweave/watch/patterns.py

from __future__ import annotations

"""
Glob patterns for watch rules.

Supported syntax:
- `*`      any run of characters except '/'
- `**`     any number of path segments (including none) when it is a whole segment
- `?`      one character except '/'
- `[...]`  character class (`[!...]` negates); an unclosed `[` is literal
- `{a,b}`  alternatives

A pattern without '/' matches the basename anywhere under the root, so
`*.scss` behaves like `**/*.scss`.
"""

import re
from functools import lru_cache
from pathlib import PurePath

from ..core.errors import GraphError

_CLASS_SPECIAL = re.compile(r"[\\\[\]^&~|]")


def normalize_path(path: str | PurePath) -> str:
    text = str(path).replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    return text


def _translate(pattern: str) -> str:
    out: list[str] = []
    i, n = 0, len(pattern)
    depth = 0  # inside {...}

    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                at_start = i == 0 or pattern[i - 1] == "/"
                j = i + 2
                if at_start and j < n and pattern[j] == "/":
                    out.append("(?:[^/]*/)*")
                    i = j + 1
                    continue
                if at_start and j == n:
                    out.append(".*")
                    i = j
                    continue
                out.append("[^/]*")
                i = j
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            # A ']' right after '[' or '[!' is a member, not the end.
            j = i + 1
            if j < n and pattern[j] == "!":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            j = pattern.find("]", j)
            if j == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : j]
                negate = body.startswith("!")
                if negate:
                    body = body[1:]
                # Only '-' keeps its meaning inside a class.
                body = _CLASS_SPECIAL.sub(r"\\\g<0>", body)
                out.append("[" + ("^" if negate else "") + body + "]")
                i = j
        elif c == "{":
            depth += 1
            out.append("(?:")
        elif c == "}" and depth:
            depth -= 1
            out.append(")")
        elif c == "," and depth:
            out.append("|")
        else:
            out.append(re.escape(c))
        i += 1

    return "".join(out)


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    pattern = normalize_path(pattern)
    body = _translate(pattern)
    if "/" not in pattern:
        body = "(?:.*/)?" + body
    try:
        return re.compile(r"\A" + body + r"\Z")
    except re.error as exc:
        raise GraphError(f"Invalid glob pattern {pattern!r}: {exc}") from exc


def glob_match(pattern: str, path: str | PurePath) -> bool:
    return compile_glob(pattern).match(normalize_path(path)) is not None
