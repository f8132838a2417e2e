"""
Shared fixtures: in-memory SQLite, fake provider adapters and a fully
wired orchestrator that never touches the network.
"""

import copy
import threading
import time

import pytest

from harmony_ai.cache.result_cache import ResultCache
from harmony_ai.database import build_engine, build_session_factory, init_db
from harmony_ai.history.store import InMemoryHistoryStore
from harmony_ai.orchestrator import Orchestrator
from harmony_ai.providers.base import ProviderAdapter
from harmony_ai.providers.registry import ProviderRegistry
from harmony_ai.quota.ledger import QuotaLedger
from harmony_ai.quota.store import InMemoryUsageStore
from harmony_ai.quota.tiers import StaticTierLimits
from harmony_ai.ratelimit.config import RateLimitConfig
from harmony_ai.ratelimit.limiter import InMemoryRateLimiter, RateLimiter
from harmony_ai.ratelimit.metrics import MetricsCollector
from harmony_ai.reliability.circuit_breaker import CircuitBreakerRegistry
from harmony_ai.schemas.operations import Operation


class FakeAdapter(ProviderAdapter):
    """Scripted provider: returns a fixed output or raises a fixed error."""

    def __init__(self, name, operations, output=None, error=None, delay=0.0, configured=True, gate=None):
        self.name = name
        self.supported_operations = frozenset(Operation(op) for op in operations)
        self.output = output if output is not None else {}
        self.error = error
        self.delay = delay
        self.configured = configured
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def is_configured(self):
        return self.configured

    def handlers(self):
        return {op: self._respond for op in self.supported_operations}

    def _respond(self, ctx, payload, options, timeout):
        with self._lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.output)


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def fake_adapter():
    return FakeAdapter


@pytest.fixture
def rate_config():
    return RateLimitConfig(enabled=True, redis_url=None)


@pytest.fixture
def make_orchestrator(rate_config):
    """Build an orchestrator around the given adapters with in-memory stores."""
    built = []

    def factory(adapters=(), priorities=None, history=None, tier_limits=None, cache=None, **kwargs):
        metrics = MetricsCollector()
        orchestrator = Orchestrator(
            registry=ProviderRegistry(adapters, priorities=priorities),
            rate_limiter=RateLimiter(rate_config, backend=InMemoryRateLimiter(), metrics=metrics),
            quota_ledger=QuotaLedger(InMemoryUsageStore(), tier_limits or StaticTierLimits(), metrics=metrics),
            cache=cache or ResultCache(),
            history=history or InMemoryHistoryStore(),
            breakers=kwargs.pop("breakers", None) or CircuitBreakerRegistry(failure_threshold=3, recovery_timeout=60),
            metrics=metrics,
            **kwargs,
        )
        built.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in built:
        orchestrator.shutdown()


@pytest.fixture
def bio_payload():
    return {
        "name": "Nova Pulse",
        "genre": "Electronic",
        "personalityTraits": ["mysterious", "bold"],
        "visualStyle": "neon cyberpunk",
        "speakingStyle": "poetic",
    }


@pytest.fixture
def rewrite_payload():
    return {
        "basePrompt": "a song about summer nights",
        "genre": "pop",
        "mood": "uplifting",
    }
