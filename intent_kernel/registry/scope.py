"""
Scope matching — glob patterns over canonical resource paths.

Case-sensitive. `*` and `?` stay within one path segment, `[...]` is a
character class, and `**` spans any number of segments (including none).
"""

import re
from functools import lru_cache
from typing import Iterable


@lru_cache(maxsize=512)
def compile_scope_pattern(pattern: str) -> "re.Pattern[str]":
    pattern = pattern.strip()
    while pattern.startswith("./"):
        pattern = pattern[2:]

    out = []
    i, n = 0, len(pattern)
    while i < n:
        ch = pattern[i]
        if pattern.startswith("**", i):
            at_start = i == 0 or pattern[i - 1] == "/"
            followed_by_slash = pattern.startswith("/", i + 2)
            at_end = i + 2 == n
            if at_start and followed_by_slash:
                out.append("(?:.*/)?")          # "**/" → zero or more leading segments
                i += 3
                continue
            if at_start and at_end and i > 0:
                out.pop()                       # "dir/**" also matches "dir" itself
                out.append("(?:/.*)?")
                i += 2
                continue
            out.append(".*")
            i += 2
        elif ch == "*":
            out.append("[^/]*")
            i += 1
        elif ch == "?":
            out.append("[^/]")
            i += 1
        elif ch == "[":
            close = pattern.find("]", i + 1)
            if close == -1:
                out.append(re.escape(ch))
                i += 1
                continue
            body = pattern[i + 1:close]
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append("[" + body.replace("\\", "\\\\") + "]")
            i = close + 1
        else:
            out.append(re.escape(ch))
            i += 1
    return re.compile("".join(out) + r"\Z")


def matches_scope(resource: str, patterns: Iterable[str]) -> bool:
    """True when the resource matches any of the patterns."""
    return any(compile_scope_pattern(p).match(resource) for p in patterns)
