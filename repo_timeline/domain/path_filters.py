"""Path filter matching shared by commit parsing and change extraction.

A filter ending in "/" matches a directory prefix. A filter containing glob
characters is matched with fnmatch against the full path, and against the
file name when the pattern has no "/". Any other filter matches the exact
path or everything below it.
"""
from fnmatch import fnmatchcase
from typing import Iterable, Sequence

_GLOB_CHARS = set("*?[")


def _matches(path: str, path_filter: str) -> bool:
    if _GLOB_CHARS & set(path_filter):
        if fnmatchcase(path, path_filter):
            return True
        if "/" not in path_filter:
            return fnmatchcase(path.rsplit("/", 1)[-1], path_filter)
        return False
    if path_filter.endswith("/"):
        return path.startswith(path_filter)
    return path == path_filter or path.startswith(path_filter + "/")


def matches_path_filters(path: str, path_filters: Sequence[str]) -> bool:
    """Return True when path passes any filter (or there are no filters)."""
    if not path_filters:
        return True
    normalized = path.lstrip("/")
    return any(_matches(normalized, f.lstrip("/")) for f in path_filters)


def any_path_matches(paths: Iterable[str], path_filters: Sequence[str]) -> bool:
    """Return True when at least one of paths passes the filters."""
    if not path_filters:
        return True
    return any(matches_path_filters(p, path_filters) for p in paths)
