"""
Rate Limiting

Per-user token buckets for each operation class (ai-bio, ai-image,
ai-prompt), in memory or shared through Redis, plus the in-process
metrics collector the orchestrator reports to.
"""

from .config import RateLimitConfig
from .limiter import InMemoryRateLimiter, RateLimitDecision, RateLimiter, RedisRateLimiter
from .metrics import MetricsCollector

__all__ = [
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitDecision",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "MetricsCollector",
]
