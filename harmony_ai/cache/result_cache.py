"""
Result Cache

Content-addressed store of generated artifacts keyed by request
fingerprint. Hit/miss accounting lives here; expiry and eviction live in
the backend.
"""

import copy
import logging
import threading
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional, Tuple

from harmony_ai.cache.backends import CacheBackend, CacheEntry, InMemoryCacheBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    hit_rate: float
    size: int
    evictions: int
    expirations: int
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ResultCache:

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        default_ttl: float = 3600,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend or InMemoryCacheBackend(clock=clock)
        self.default_ttl = default_ttl
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def lookup(self, fingerprint: str, count: bool = True) -> Optional[CacheEntry]:
        """Live entry for a fingerprint. With count=True it is recorded as a hit or a miss."""
        if not self.enabled:
            return None

        entry = self.backend.get(fingerprint)
        if count:
            with self._lock:
                if entry is None:
                    self._misses += 1
                else:
                    self._hits += 1
        if entry is None:
            return None
        return CacheEntry(
            fingerprint=entry.fingerprint,
            value=copy.deepcopy(entry.value),
            provider=entry.provider,
            created_at=entry.created_at,
            expires_at=entry.expires_at,
        )

    def get(self, fingerprint: str) -> Tuple[Any, bool]:
        entry = self.lookup(fingerprint)
        if entry is None:
            return None, False
        return entry.value, True

    def put(self, fingerprint: str, value: Any, ttl: Optional[float] = None, provider: Optional[str] = None) -> None:
        if not self.enabled:
            return

        now = self._clock()
        self.backend.set(fingerprint, CacheEntry(
            fingerprint=fingerprint,
            value=copy.deepcopy(value),
            provider=provider,
            created_at=now,
            expires_at=now + (self.default_ttl if ttl is None else ttl),
        ))

    def invalidate(self, fingerprint: str) -> bool:
        return self.backend.delete(fingerprint)

    def invalidate_all(self) -> int:
        removed = self.backend.clear()
        logger.info(f"Result cache cleared ({removed} entries)")
        return removed

    def stats(self) -> CacheStats:
        with self._lock:
            hits, misses = self._hits, self._misses
        total = hits + misses
        return CacheStats(
            hits=hits,
            misses=misses,
            hit_rate=round(hits / total, 4) if total else 0.0,
            size=self.backend.size(),
            evictions=self.backend.evictions,
            expirations=self.backend.expirations,
            enabled=self.enabled,
        )
