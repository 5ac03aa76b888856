import copy
import threading
import time
from collections.abc import Callable
from typing import Any

from nodeflow.application.port import StatsCache


class InMemoryStatsCache(StatsCache):
    """Expiring key-value cache guarded by a single lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> tuple[bool, Any]:
        # Caller holds the lock.
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return False, None
        return True, value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            found, value = self._live(key)
        return copy.deepcopy(value) if found else default

    def update(self, key: str, fn: Callable[[Any], Any], ttl: float, default: Any = None) -> Any:
        with self._lock:
            found, value = self._live(key)
            new_value = fn(copy.deepcopy(value) if found else default)
            self._entries[key] = (new_value, self._clock() + ttl)
        return copy.deepcopy(new_value)

    def delete(self, key: str) -> bool:
        with self._lock:
            found, _ = self._live(key)
            self._entries.pop(key, None)
        return found
