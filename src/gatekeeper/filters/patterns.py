"""Branch regex and path glob matching for admission rules.

Both matchers are lenient: a pattern that fails to compile degrades to a
literal comparison (exact match for branch regexes, substring containment for
globs) and a warning is logged once per pattern. Compiled patterns are
memoized, so repeated evaluation on the request path costs one dict lookup.

Glob syntax:
    **   any sequence of path segments, including none ("**/" may match "")
    *    any run of characters other than "/"
    everything else matches literally
"""

import re
from functools import lru_cache
from typing import Optional, Pattern

import structlog


logger = structlog.get_logger(__name__)

# Upper bound on memoized patterns per matcher
PATTERN_CACHE_SIZE = 1024


def glob_to_regex(glob: str) -> str:
    """Translate a path glob into an anchored-ready regular expression.

    Example:
        >>> glob_to_regex("docs/**")
        'docs/.*'
        >>> glob_to_regex("*.md")
        '[^/]*\\\\.md'
    """
    parts = []
    i = 0
    length = len(glob)
    while i < length:
        if glob.startswith("**", i):
            if glob.startswith("**/", i):
                parts.append("(?:.*/)?")
                i += 3
            else:
                parts.append(".*")
                i += 2
        elif glob[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(glob[i]))
            i += 1
    return "".join(parts)


@lru_cache(maxsize=PATTERN_CACHE_SIZE)
def _compile_glob(glob: str) -> Optional[Pattern[str]]:
    try:
        return re.compile(glob_to_regex(glob))
    except re.error as e:
        logger.warning(
            "Invalid path glob, falling back to substring match",
            pattern=glob,
            error=str(e),
        )
        return None


@lru_cache(maxsize=PATTERN_CACHE_SIZE)
def _compile_regex(pattern: str) -> Optional[Pattern[str]]:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning(
            "Invalid branch regex, falling back to exact match",
            pattern=pattern,
            error=str(e),
        )
        return None


def matches_glob(path: str, glob: str) -> bool:
    """Return True if the whole path matches glob."""
    compiled = _compile_glob(glob)
    if compiled is None:
        return glob in path
    return compiled.fullmatch(path) is not None


def matches_pattern(value: str, pattern: str) -> bool:
    """Return True if the regex pattern matches anywhere in value."""
    compiled = _compile_regex(pattern)
    if compiled is None:
        return value == pattern
    return compiled.search(value) is not None
