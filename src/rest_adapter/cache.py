"""In-memory response cache with TTL expiry and LRU eviction."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    expires_at: float
    access_count: int = 0
    last_accessed: float = 0.0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "hit_rate": self.hit_rate}


def make_cache_key(operation_id: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Deterministic key: operation id plus sorted, ``None``-free parameters."""
    normalized = _normalize(params or {})
    return f"{operation_id}:{json.dumps(normalized, sort_keys=True, separators=(',', ':'), default=str)}"


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _normalize(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


class ResponseCache(Generic[T]):
    def __init__(
        self,
        ttl_seconds: float = 300,
        max_size: int = 1000,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.enabled = enabled
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()
        self._sweeper: Optional[asyncio.Task[None]] = None

    def get(self, key: str) -> Optional[T]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()
            if entry is None:
                self._stats.misses += 1
                logger.debug("Cache miss: %s", key)
                return None
            if now >= entry.expires_at:
                del self._entries[key]
                self._stats.misses += 1
                self._stats.size = len(self._entries)
                logger.debug("Cache miss (expired): %s", key)
                return None
            entry.access_count += 1
            entry.last_accessed = now
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry.value

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        if not self.enabled:
            return
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            else:
                self._evict_if_necessary()
            self._entries[key] = CacheEntry(
                value=value,
                created_at=now,
                expires_at=now + (self.ttl_seconds if ttl is None else ttl),
                last_accessed=now,
            )
            self._stats.sets += 1
            self._stats.size = len(self._entries)
            logger.debug("Cache set: %s (size=%s)", key, len(self._entries))

    def delete(self, key: str) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            if self._entries.pop(key, None) is None:
                return False
            self._stats.deletes += 1
            self._stats.size = len(self._entries)
            return True

    def has(self, key: str) -> bool:
        if not self.enabled:
            return False
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at

    def keys(self) -> List[str]:
        if not self.enabled:
            return []
        with self._lock:
            now = self._clock()
            return [key for key, entry in self._entries.items() if now < entry.expires_at]

    def clear(self) -> None:
        with self._lock:
            cleared = len(self._entries)
            self._entries.clear()
            self._stats.size = 0
        logger.info("Cache cleared (%s entries)", cleared)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return self._stats.as_dict()

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
            self._stats.size = len(self._entries)
        if expired:
            logger.debug("Cache sweep removed %s entries", len(expired))
        return len(expired)

    def start_sweeper(self, interval_seconds: float) -> None:
        if self._sweeper is not None or not self.enabled:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever(interval_seconds))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def _evict_if_necessary(self) -> None:
        while self._entries and len(self._entries) >= self.max_size:
            key, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("Cache eviction: %s (max_size=%s)", key, self.max_size)
