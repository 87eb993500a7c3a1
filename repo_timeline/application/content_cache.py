"""Bounded LRU cache with TTL and single-flight loading.

Keys are tuples whose first element is the repository id, e.g.
(repo_id, commit_hash, file_path) for file content or (repo_id, file_path)
for timelines, so one repository can be invalidated at once.
"""
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


logger = logging.getLogger(__name__)


class ContentCache:
    """LRU cache bounded by entry count and age.

    get_or_load runs at most one loader per key at a time; concurrent callers
    for the same key wait for and share that load. Loader errors reach every
    waiter and are not cached. None results are returned but not cached.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: float = 3600.0,
        name: str = "content",
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.name = name
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._inflight: Dict[Hashable, Future] = {}
        self._hits = 0
        self._misses = 0
        self._loads = 0
        self._evictions = 0

    def _lookup(self, key: Hashable) -> Tuple[bool, Any]:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        stored_at, value = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            self._evictions += 1
            return False, None
        self._entries.move_to_end(key)
        return True, value

    def _store(self, key: Hashable, value: Any) -> None:
        # Caller holds the lock
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            found, value = self._lookup(key)
            if found:
                self._hits += 1
            else:
                self._misses += 1
            return value

    def put(self, key: Hashable, value: Any) -> None:
        if value is None:
            return
        with self._lock:
            self._store(key, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """Return the cached value for key, loading it once if absent.

        Args:
            key: Cache key
            loader: Zero-argument callable producing the value

        Returns:
            The cached or freshly loaded value
        """
        with self._lock:
            found, value = self._lookup(key)
            if found:
                self._hits += 1
                return value
            self._misses += 1
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            return future.result()

        try:
            value = loader()
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(e)
            raise

        with self._lock:
            self._loads += 1
            if value is not None:
                self._store(key, value)
            self._inflight.pop(key, None)
        future.set_result(value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_repository(self, repo_id: int) -> int:
        """Drop every entry whose key belongs to repo_id."""
        with self._lock:
            keys = [k for k in self._entries if isinstance(k, tuple) and k and k[0] == repo_id]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(f"{self.name} cache: dropped {len(keys)} entries of repository {repo_id}")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "loads": self._loads,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
