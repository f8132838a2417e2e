"""
Storage backends for the result cache.

- InMemoryCacheBackend: LRU OrderedDict with TTL, one per process
- RedisCacheBackend: JSON values under SETEX, shared across processes
"""

import json
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    fingerprint: str
    value: Any
    provider: Optional[str]
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(**data)


class CacheBackend(ABC):

    evictions: int = 0
    expirations: int = 0

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Live entry for key, or None if missing or expired."""
        pass

    @abstractmethod
    def set(self, key: str, entry: CacheEntry) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def clear(self) -> int:
        """Remove every entry; returns how many were removed."""
        pass

    @abstractmethod
    def size(self) -> int:
        pass


class InMemoryCacheBackend(CacheBackend):
    """
    LRU cache with per-entry expiry.

    All access goes through one RLock, so clear() never interleaves with
    a get() or set() in flight.
    """

    def __init__(self, max_entries: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self.evictions = 0
        self.expirations = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self.expirations += 1
                return None
            self._entries.move_to_end(key)
            return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            if self.max_entries:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    self.evictions += 1
                    logger.debug(f"Evicted cache entry {evicted[:12]}")

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            return removed

    def size(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self.expirations += len(expired)
            return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Entries as JSON strings; Redis handles expiry, LRU is left to maxmemory-policy."""

    def __init__(self, redis_client, prefix: str = "harmony:cache:", clock: Callable[[], float] = time.time):
        self.redis_client = redis_client
        self.prefix = prefix
        self._clock = clock
        self.evictions = 0
        self.expirations = 0

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisCacheBackend":
        import redis

        client = redis.from_url(redis_url, decode_responses=True)
        logger.info(f"Redis result cache initialized: {redis_url}")
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[CacheEntry]:
        raw = self.redis_client.get(self._key(key))
        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Dropping unreadable cache entry {key[:12]}: {e}")
            self.redis_client.delete(self._key(key))
            return None

    def set(self, key: str, entry: CacheEntry) -> None:
        ttl = max(1, math.ceil(entry.expires_at - self._clock()))
        self.redis_client.setex(self._key(key), ttl, json.dumps(entry.to_dict(), default=str))

    def delete(self, key: str) -> bool:
        return bool(self.redis_client.delete(self._key(key)))

    def clear(self) -> int:
        removed = 0
        for key in self.redis_client.scan_iter(match=f"{self.prefix}*"):
            removed += self.redis_client.delete(key)
        return removed

    def size(self) -> int:
        return sum(1 for _ in self.redis_client.scan_iter(match=f"{self.prefix}*"))
