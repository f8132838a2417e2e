"""
Token Bucket Rate Limiter

One bucket per (user, operation class). Admission is a single atomic
check-and-decrement, so two concurrent requests can never both take the
last token:
- In-memory backend (default): per-process, guarded by a lock
- Redis backend (optional): multi-process, atomic via a Lua script
"""

import math
import time
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from harmony_ai.ratelimit.config import RateLimitConfig
from harmony_ai.ratelimit.metrics import MetricsCollector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float  # seconds until one token is available; 0 when allowed


def _seconds_until_token(tokens: float, refill_per_sec: float) -> float:
    if tokens >= 1:
        return 0.0
    return (1 - tokens) / refill_per_sec


class RateLimiterBackend(ABC):
    """Storage for token buckets."""

    @abstractmethod
    def try_acquire(self, key: str, capacity: int, refill_per_sec: float, tokens: int = 1) -> RateLimitDecision:
        """
        Refill the bucket and take tokens if enough are available, atomically.

        Args:
            key: Bucket key, unique per user and operation class
            capacity: Maximum tokens (burst size)
            refill_per_sec: Tokens added per second
            tokens: Tokens to take
        """
        pass

    @abstractmethod
    def peek(self, key: str, capacity: int, refill_per_sec: float) -> Dict[str, Any]:
        """Current bucket state without consuming anything."""
        pass

    @abstractmethod
    def reset(self, key: Optional[str] = None) -> None:
        """Drop one bucket, or all of them."""
        pass


class InMemoryRateLimiter(RateLimiterBackend):
    """In-memory token buckets (per-process)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.buckets: Dict[str, Dict[str, float]] = {}
        self.lock = threading.Lock()
        self._clock = clock

    def _refilled_bucket(self, key: str, capacity: int, refill_per_sec: float) -> Dict[str, float]:
        now = self._clock()
        bucket = self.buckets.get(key)
        if bucket is None:
            # New buckets start full
            bucket = {"tokens": float(capacity), "last_refill": now}
            self.buckets[key] = bucket
        else:
            elapsed = max(0.0, now - bucket["last_refill"])
            bucket["tokens"] = min(float(capacity), bucket["tokens"] + elapsed * refill_per_sec)
            bucket["last_refill"] = now
        return bucket

    def try_acquire(self, key: str, capacity: int, refill_per_sec: float, tokens: int = 1) -> RateLimitDecision:
        with self.lock:
            bucket = self._refilled_bucket(key, capacity, refill_per_sec)

            if bucket["tokens"] >= tokens:
                bucket["tokens"] -= tokens
                return RateLimitDecision(True, int(bucket["tokens"]), 0.0)

            return RateLimitDecision(
                False, int(bucket["tokens"]), _seconds_until_token(bucket["tokens"], refill_per_sec)
            )

    def peek(self, key: str, capacity: int, refill_per_sec: float) -> Dict[str, Any]:
        with self.lock:
            bucket = self._refilled_bucket(key, capacity, refill_per_sec)
            return {
                "available_tokens": int(bucket["tokens"]),
                "retry_after": _seconds_until_token(bucket["tokens"], refill_per_sec),
            }

    def reset(self, key: Optional[str] = None) -> None:
        with self.lock:
            if key is None:
                self.buckets.clear()
            else:
                self.buckets.pop(key, None)


_ACQUIRE_SCRIPT = """
local key = KEYS[1]
local tokens_requested = tonumber(ARGV[1])
local capacity = tonumber(ARGV[2])
local refill_per_sec = tonumber(ARGV[3])
local now = tonumber(ARGV[4])
local ttl_ms = tonumber(ARGV[5])

local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
local current_tokens = tonumber(bucket[1])
local last_refill = tonumber(bucket[2])

if current_tokens == nil then
    current_tokens = capacity
    last_refill = now
end

local elapsed = math.max(0, now - last_refill)
current_tokens = math.min(capacity, current_tokens + elapsed * refill_per_sec)

local allowed = 0
if current_tokens >= tokens_requested then
    current_tokens = current_tokens - tokens_requested
    allowed = 1
end

redis.call('HSET', key, 'tokens', tostring(current_tokens), 'last_refill', tostring(now))
redis.call('PEXPIRE', key, ttl_ms)
return {allowed, tostring(current_tokens)}
"""


class RedisRateLimiter(RateLimiterBackend):
    """Redis-backed token buckets (multi-process)."""

    def __init__(self, redis_client, key_prefix: str = "ratelimit:bucket:"):
        """
        Args:
            redis_client: redis.Redis created with decode_responses=True
            key_prefix: Namespace for bucket hashes
        """
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self._acquire = redis_client.register_script(_ACQUIRE_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisRateLimiter":
        import redis

        try:
            client = redis.from_url(redis_url, decode_responses=True)
        except Exception as e:
            raise RuntimeError(f"Failed to connect to Redis: {e}")
        logger.info(f"Redis rate limiter initialized: {redis_url}")
        return cls(client)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    @staticmethod
    def _ttl_ms(capacity: int, refill_per_sec: float) -> int:
        # An idle bucket is full again after capacity/refill seconds; keep it a bit longer
        return int(math.ceil(capacity / refill_per_sec * 2 * 1000))

    def try_acquire(self, key: str, capacity: int, refill_per_sec: float, tokens: int = 1) -> RateLimitDecision:
        allowed, remaining = self._acquire(
            keys=[self._key(key)],
            args=[tokens, capacity, refill_per_sec, time.time(), self._ttl_ms(capacity, refill_per_sec)],
        )
        remaining = float(remaining)
        if int(allowed) == 1:
            return RateLimitDecision(True, int(remaining), 0.0)
        return RateLimitDecision(False, int(remaining), _seconds_until_token(remaining, refill_per_sec))

    def peek(self, key: str, capacity: int, refill_per_sec: float) -> Dict[str, Any]:
        tokens, last_refill = self.redis_client.hmget(self._key(key), "tokens", "last_refill")
        if tokens is None:
            available = float(capacity)
        else:
            elapsed = max(0.0, time.time() - float(last_refill))
            available = min(float(capacity), float(tokens) + elapsed * refill_per_sec)
        return {
            "available_tokens": int(available),
            "retry_after": _seconds_until_token(available, refill_per_sec),
        }

    def reset(self, key: Optional[str] = None) -> None:
        if key is not None:
            self.redis_client.delete(self._key(key))
            return
        for bucket_key in self.redis_client.scan_iter(match=f"{self.key_prefix}*"):
            self.redis_client.delete(bucket_key)


class RateLimiter:
    """
    Per-user, per-operation-class rate limiter.

    Independent of subscription tier: a premium user is still limited
    to the class's burst and refill rate.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        backend: Optional[RateLimiterBackend] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.metrics = metrics

        if backend is not None:
            self.backend = backend
        elif config.redis_url:
            logger.info("Using Redis rate limiter backend")
            self.backend = RedisRateLimiter.from_url(config.redis_url)
        else:
            logger.info("Using in-memory rate limiter backend")
            self.backend = InMemoryRateLimiter()

    @staticmethod
    def _bucket_key(user_id: str, operation_class: str) -> str:
        return f"{user_id}:{getattr(operation_class, 'value', operation_class)}"

    def try_acquire(self, user_id: str, operation_class: str) -> RateLimitDecision:
        """Take one token for this user and class, or report how long to wait."""
        if not self.config.enabled:
            return RateLimitDecision(True, -1, 0.0)

        capacity, refill = self.config.get_class_limit(operation_class)
        decision = self.backend.try_acquire(self._bucket_key(user_id, operation_class), capacity, refill)

        if not decision.allowed:
            logger.info(
                f"Rate limited user={user_id} class={operation_class} retry_after={decision.retry_after:.2f}s"
            )
            if self.metrics:
                self.metrics.record_rate_limited(str(getattr(operation_class, "value", operation_class)))
        return decision

    def allow(self, user_id: str, operation_class: str) -> bool:
        """Consume a token if one is available."""
        return self.try_acquire(user_id, operation_class).allowed

    def retry_after(self, user_id: str, operation_class: str) -> float:
        """Seconds until the next token; 0.0 when one is available now."""
        if not self.config.enabled:
            return 0.0
        capacity, refill = self.config.get_class_limit(operation_class)
        return self.backend.peek(self._bucket_key(user_id, operation_class), capacity, refill)["retry_after"]

    def get_status(self, user_id: str, operation_class: str) -> Dict[str, Any]:
        if not self.config.enabled:
            return {"enabled": False, "available_tokens": None, "capacity": None}

        capacity, refill = self.config.get_class_limit(operation_class)
        status = self.backend.peek(self._bucket_key(user_id, operation_class), capacity, refill)
        status.update({"enabled": True, "capacity": capacity, "refill_per_sec": refill})
        return status

    def reset(self, user_id: Optional[str] = None, operation_class: Optional[str] = None) -> None:
        """Reset one bucket, or every bucket when called without arguments."""
        if user_id is not None and operation_class is not None:
            self.backend.reset(self._bucket_key(user_id, operation_class))
        else:
            self.backend.reset()
