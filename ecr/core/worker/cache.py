"""Bounded prediction cache keyed by (name, declared CR).

FIFO by default: a hit does not refresh an entry, so the earliest-inserted
key is always evicted first. The "lru" policy moves hits to the back.
"""

import json
import threading
from collections import OrderedDict
from typing import Any, Dict, Hashable, Optional, Tuple

DEFAULT_CAPACITY = 1000


def cache_key(stat: Any) -> Tuple[str, str]:
    """(name, cr) key of a stat block; cr is JSON-encoded so objects stay hashable."""
    if not isinstance(stat, dict):
        return ("None", "null")
    return (str(stat.get("name")), json.dumps(stat.get("cr"), sort_keys=True, default=str))


class PredictionCache:
    """Thread-safe bounded mapping with FIFO or LRU eviction."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, policy: str = "fifo"):
        if policy not in ("fifo", "lru"):
            raise ValueError(f"unknown cache policy {policy!r}")
        self.capacity = max(1, capacity)
        self.policy = policy
        self._entries: "OrderedDict[Hashable, Any]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            if key not in self._entries:
                self.misses += 1
                return None
            self.hits += 1
            if self.policy == "lru":
                self._entries.move_to_end(key)
            return self._entries[key]

    def put(self, key: Hashable, value: Any) -> None:
        """Insert, then evict the single oldest entry if over capacity."""
        with self._lock:
            if key in self._entries and self.policy == "lru":
                self._entries.move_to_end(key)
            self._entries[key] = value
            if len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "policy": self.policy,
                "hits": self.hits,
                "misses": self.misses,
            }
