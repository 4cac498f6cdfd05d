import functools
import glob
import re
from typing import Callable, Iterable, Pattern, Tuple

from debassemble.exceptions import PathGlobError

_GLOB_PARTS = re.compile(r"[*?]|\[")

PathMatcher = Callable[[str], bool]


def _translate_class(pattern: str, start: int) -> Tuple[str, int]:
    # ``start`` points just after the opening "["
    i = start
    if i < len(pattern) and pattern[i] in "!^":
        i += 1
    if i < len(pattern) and pattern[i] == "]":
        i += 1
    end = pattern.find("]", i)
    if end < 0:
        raise PathGlobError(
            f'Invalid glob "{pattern}": The character class starting at offset {start - 1} is not terminated'
        )
    body = pattern[start:end]
    if body[:1] in ("!", "^"):
        body = "^" + body[1:]
    body = body.replace("\\", "\\\\")
    return f"(?!/)[{body}]", end + 1


@functools.lru_cache(256)
def compile_path_glob(pattern: str) -> Pattern[str]:
    """Compile a path glob into a regular expression

    Unlike `fnmatch`, the `*` and `?` wildcards never match a "/", so each
    wildcard stays within one path segment.  A run of stars such as `**` is
    the same as a single `*`.

    >>> bool(compile_path_glob("/etc/*/**").match("/etc/foo/bar.conf"))
    True
    >>> bool(compile_path_glob("/etc/*/**").match("/etc/foo/sub/bar.conf"))
    False
    >>> bool(compile_path_glob("/etc/*").match("/etc/foo/bar.conf"))
    False
    """
    parts = []
    pos = 0
    for m in _GLOB_PARTS.finditer(pattern):
        if m.start() < pos:
            # Skip wildcards consumed by a character class
            continue
        parts.append(re.escape(pattern[pos : m.start()]))
        token = m.group(0)
        if token == "*":
            parts.append("[^/]*")
            pos = m.end()
        elif token == "?":
            parts.append("[^/]")
            pos = m.end()
        else:
            translated, pos = _translate_class(pattern, m.end())
            parts.append(translated)
    parts.append(re.escape(pattern[pos:]))
    return re.compile("".join(parts) + r"\Z", re.DOTALL)


def path_matcher(patterns: Iterable[str]) -> PathMatcher:
    """Create a predicate matching a rooted path against any of the patterns"""
    exact = set()
    compiled = []
    for pattern in patterns:
        if glob.has_magic(pattern):
            compiled.append(compile_path_glob(pattern))
        else:
            exact.add(pattern)

    def _matches(path: str) -> bool:
        if path in exact:
            return True
        return any(p.match(path) for p in compiled)

    return _matches

