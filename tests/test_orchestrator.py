"""
Tests for the generation orchestrator.

Covers cache hits, coalescing of concurrent identical requests, quota and
rate-limit admission, provider fallback and degraded output, timeouts,
cancellation and history bookkeeping.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from harmony_ai.context import GenerationContext
from harmony_ai.errors import (
    GenerationCancelled,
    PersistenceError,
    ProviderUnavailable,
    QuotaExceeded,
    RateLimitExceeded,
    ValidationError,
)
from harmony_ai.history.store import InMemoryHistoryStore
from harmony_ai.models.generation import GenerationStatus
from harmony_ai.providers.fallback import FALLBACK_PROVIDER
from harmony_ai.providers.gemini import GeminiAdapter
from harmony_ai.quota.tiers import StaticTierLimits
from harmony_ai.ratelimit.config import RateLimitConfig
from harmony_ai.ratelimit.limiter import InMemoryRateLimiter, RateLimiter
from harmony_ai.schemas.generation import GenerationOptions, GenerationRequest
from harmony_ai.schemas.operations import Operation

BIO_OUTPUT = {"bio": "Nova Pulse crafts neon-lit electronic soundscapes."}
REWRITE_OUTPUT = {
    "rewritten_prompt": "Uplifting pop anthem about warm summer nights, bright synths, 120 BPM",
    "analysis": "Added tempo and instrumentation",
    "improvements": ["Added tempo", "Added instrumentation"],
}


def bio_request(payload, user_id="user-1", **kwargs):
    return GenerationRequest(operation=Operation.BIO, user_id=user_id, payload=payload, **kwargs)


def usage(orchestrator, user_id="user-1", metric="ai_generations", tier="free"):
    return orchestrator.quota_ledger.check_usage_limit(user_id, metric, tier).used


def test_successful_generation_is_recorded(make_orchestrator, fake_adapter, bio_payload):
    """Test a first generation calls the provider, counts quota and completes its record."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    ctx = GenerationContext(user_id="user-1")

    result = orchestrator.generate(ctx, bio_request(bio_payload, artist_id="artist-9"))

    assert result.output == BIO_OUTPUT
    assert result.provider == "gemini"
    assert result.from_cache is False
    assert result.degraded is False
    assert [a.outcome for a in result.attempts] == ["success"]
    assert usage(orchestrator) == 1

    record = orchestrator.history.get(result.generation_id, "user-1")
    assert record.status == GenerationStatus.COMPLETED
    assert record.provider_used == "gemini"
    assert record.refined_output == BIO_OUTPUT
    assert record.artist_id == "artist-9"
    assert record.completed_at is not None
    assert record.input_snapshot["payload"]["name"] == "Nova Pulse"


def test_cache_hit_has_no_side_effects(make_orchestrator, fake_adapter, bio_payload):
    """Test an identical request is served from cache without quota, rate or history use."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    ctx = GenerationContext(user_id="user-1")

    first = orchestrator.generate(ctx, bio_request(bio_payload))
    tokens_after_first = orchestrator.rate_limiter.get_status("user-1", "ai-bio")["available_tokens"]
    second = orchestrator.generate(ctx, bio_request(bio_payload))

    assert second.from_cache is True
    assert second.output == first.output
    assert second.generation_id is None
    assert gemini.calls == 1
    assert usage(orchestrator) == 1
    assert orchestrator.history.list("user-1").total == 1
    tokens_after_second = orchestrator.rate_limiter.get_status("user-1", "ai-bio")["available_tokens"]
    assert tokens_after_second >= tokens_after_first


def test_cache_stats_count_one_lookup_per_request(make_orchestrator, fake_adapter, bio_payload):
    """Test a fresh generation counts a single miss, so the hit rate is exact."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    ctx = GenerationContext(user_id="user-1")

    orchestrator.generate(ctx, bio_request(bio_payload))
    orchestrator.generate(ctx, bio_request(bio_payload))

    stats = orchestrator.cache.stats()
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == 0.5


def test_cache_is_shared_across_users(make_orchestrator, fake_adapter, bio_payload):
    """Test content, not identity, is cached for operations that are not user scoped."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])

    orchestrator.generate(GenerationContext(user_id="user-1"), bio_request(bio_payload))
    other = orchestrator.generate(GenerationContext(user_id="user-2"), bio_request(bio_payload, user_id="user-2"))

    assert other.from_cache is True
    assert gemini.calls == 1
    assert usage(orchestrator, "user-2") == 0


def test_payload_key_style_does_not_change_fingerprint(make_orchestrator, fake_adapter, bio_payload):
    """Test camelCase and snake_case payloads resolve to the same cache slot."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    ctx = GenerationContext(user_id="user-1")

    snake = {
        "name": "  Nova Pulse ",
        "genre": "Electronic",
        "personality_traits": ["mysterious", "bold"],
        "visual_style": "neon cyberpunk",
        "speaking_style": "poetic",
    }
    orchestrator.generate(ctx, bio_request(bio_payload))
    result = orchestrator.generate(ctx, bio_request(snake))

    assert result.from_cache is True
    assert gemini.calls == 1


def test_repeated_prompt_rewrite_served_from_cache(make_orchestrator, fake_adapter, rewrite_payload):
    """Test a repeated prompt rewrite returns from cache and leaves quota unchanged."""
    openai = fake_adapter("openai", [Operation.PROMPT_REWRITE], output=REWRITE_OUTPUT)
    orchestrator = make_orchestrator([openai])
    ctx = GenerationContext(user_id="user-1")
    payload = dict(rewrite_payload, tempo="120 BPM")
    request = GenerationRequest(operation=Operation.PROMPT_REWRITE, user_id="user-1", payload=payload)

    first = orchestrator.generate(ctx, request)
    used_after_first = usage(orchestrator, metric="prompt_refinements")
    second = orchestrator.generate(ctx, request)

    assert first.from_cache is False
    assert second.from_cache is True
    assert second.output == REWRITE_OUTPUT
    assert used_after_first == 1
    assert usage(orchestrator, metric="prompt_refinements") == 1
    assert usage(orchestrator, metric="ai_generations") == 0


def test_concurrent_identical_requests_call_provider_once(make_orchestrator, fake_adapter, bio_payload):
    """Test identical in-flight requests coalesce onto one provider call."""
    gate = threading.Event()
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT, gate=gate)
    orchestrator = make_orchestrator([gemini])
    results = {}
    errors = []

    def run(user_id):
        try:
            results[user_id] = orchestrator.generate(
                GenerationContext(user_id=user_id), bio_request(bio_payload, user_id=user_id)
            )
        except Exception as e:
            errors.append(e)

    leader = threading.Thread(target=run, args=("user-1",))
    leader.start()
    deadline = time.time() + 2
    while gemini.calls == 0 and time.time() < deadline:
        time.sleep(0.01)

    followers = [threading.Thread(target=run, args=(f"user-{i}",)) for i in range(2, 5)]
    for thread in followers:
        thread.start()
    time.sleep(0.2)
    gate.set()

    for thread in [leader] + followers:
        thread.join(timeout=5)

    assert errors == []
    assert gemini.calls == 1
    assert results["user-1"].from_cache is False
    for user_id in ("user-2", "user-3", "user-4"):
        assert results[user_id].output == BIO_OUTPUT
        assert results[user_id].from_cache is True
        assert usage(orchestrator, user_id) == 0
    assert any(results[u].coalesced for u in ("user-2", "user-3", "user-4"))
    assert usage(orchestrator, "user-1") == 1


def test_fallback_ordering_records_failed_attempts(make_orchestrator, fake_adapter, bio_payload):
    """Test providers are tried in order and each failure is recorded."""
    a = fake_adapter("alpha", [Operation.BIO], error=ProviderUnavailable("alpha", "API error 503"))
    b = fake_adapter("bravo", [Operation.BIO], error=ProviderUnavailable("bravo", "API error 500"))
    c = fake_adapter("charlie", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([a, b, c], priorities={Operation.BIO: ("alpha", "bravo", "charlie")})

    result = orchestrator.generate(GenerationContext(user_id="user-1"), bio_request(bio_payload))

    assert result.provider == "charlie"
    assert result.degraded is False
    assert [(a.provider, a.outcome) for a in result.attempts] == [
        ("alpha", "failed"),
        ("bravo", "failed"),
        ("charlie", "success"),
    ]
    record = orchestrator.history.get(result.generation_id, "user-1")
    assert record.attempts[0]["provider"] == "alpha"
    assert record.attempts[0]["error_type"] == "ProviderUnavailable"
    assert "503" in record.attempts[0]["error"]
    assert record.attempts[1]["provider"] == "bravo"
    assert orchestrator.metrics.get_counter("provider_failovers_total", {"from_provider": "alpha", "to_provider": "bravo"}) == 1


def test_preferred_providers_go_first(make_orchestrator, fake_adapter, bio_payload):
    """Test caller preferences come before the default priority list."""
    gemini = fake_adapter("gemini", [Operation.BIO], output={"bio": "from gemini"})
    openai = fake_adapter("openai", [Operation.BIO], output={"bio": "from openai"})
    orchestrator = make_orchestrator([gemini, openai])

    result = orchestrator.generate(
        GenerationContext(user_id="user-1"),
        bio_request(bio_payload, preferred_providers=("openai", "midjourney")),
    )

    assert result.provider == "openai"
    assert gemini.calls == 0
    assert any("midjourney" in w for w in result.warnings)


def test_all_providers_fail_returns_degraded_uncached(make_orchestrator, fake_adapter, bio_payload):
    """Test degraded output is returned, counted against quota, and never cached."""
    gemini = fake_adapter("gemini", [Operation.BIO], error=ProviderUnavailable("gemini", "down"))
    openai = fake_adapter("openai", [Operation.BIO], error=ProviderUnavailable("openai", "down"))
    orchestrator = make_orchestrator([gemini, openai])
    ctx = GenerationContext(user_id="user-1")

    first = orchestrator.generate(ctx, bio_request(bio_payload))
    second = orchestrator.generate(ctx, bio_request(bio_payload))

    assert first.degraded is True
    assert first.provider == FALLBACK_PROVIDER
    assert "Nova Pulse" in first.output["bio"]
    assert second.from_cache is False
    assert second.degraded is True
    assert gemini.calls == 2
    assert openai.calls == 2
    assert usage(orchestrator) == 2
    record = orchestrator.history.get(first.generation_id, "user-1")
    assert record.status == GenerationStatus.COMPLETED
    assert record.degraded is True


def test_unconfigured_provider_is_skipped(make_orchestrator, fake_adapter, bio_payload):
    """Test a provider without credentials is recorded as skipped, not called."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT, configured=False)
    openai = fake_adapter("openai", [Operation.BIO], output={"bio": "from openai"})
    orchestrator = make_orchestrator([gemini, openai])

    result = orchestrator.generate(GenerationContext(user_id="user-1"), bio_request(bio_payload))

    assert result.provider == "openai"
    assert gemini.calls == 0
    assert result.attempts[0].outcome == "skipped"
    assert result.attempts[0].error_type == "ProviderUnavailable"


def test_open_circuit_skips_provider(make_orchestrator, fake_adapter, bio_payload):
    """Test a provider is skipped once its circuit breaker opens."""
    gemini = fake_adapter("gemini", [Operation.BIO], error=ProviderUnavailable("gemini", "down"))
    openai = fake_adapter("openai", [Operation.BIO], output={"bio": "from openai"})
    orchestrator = make_orchestrator([gemini, openai])
    ctx = GenerationContext(user_id="user-1")

    for i in range(3):
        orchestrator.generate(ctx, bio_request(dict(bio_payload, name=f"Artist {i}")))
    result = orchestrator.generate(ctx, bio_request(dict(bio_payload, name="Artist 4")))

    assert gemini.calls == 3
    assert result.attempts[0].provider == "gemini"
    assert result.attempts[0].outcome == "skipped"
    assert result.attempts[0].error == "circuit open"
    assert result.provider == "openai"


def test_provider_timeout_moves_to_next(make_orchestrator, fake_adapter, bio_payload):
    """Test a slow provider is abandoned after the request timeout."""
    slow = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT, delay=1.0)
    fast = fake_adapter("openai", [Operation.BIO], output={"bio": "from openai"})
    orchestrator = make_orchestrator([slow, fast])

    start = time.time()
    result = orchestrator.generate(
        GenerationContext(user_id="user-1"),
        bio_request(bio_payload, options=GenerationOptions(timeout_seconds=0.1)),
    )

    assert time.time() - start < 0.9
    assert result.provider == "openai"
    assert result.attempts[0].outcome == "timeout"
    assert result.attempts[0].error_type == "ProviderTimeout"


def test_adapter_timeout_error_fails_fast(make_orchestrator, fake_adapter, bio_payload):
    """Test a TimeoutError raised by the adapter itself is a failed attempt, not a slow poll."""
    gemini = fake_adapter("gemini", [Operation.BIO], error=TimeoutError("socket read timed out"))
    openai = fake_adapter("openai", [Operation.BIO], output={"bio": "from openai"})
    orchestrator = make_orchestrator([gemini, openai])

    start = time.time()
    result = orchestrator.generate(
        GenerationContext(user_id="user-1"),
        bio_request(bio_payload, options=GenerationOptions(timeout_seconds=2)),
    )

    assert time.time() - start < 1
    assert result.provider == "openai"
    assert result.attempts[0].outcome == "failed"
    assert result.attempts[0].error_type == "TimeoutError"


def test_abandoned_provider_call_is_not_retried(make_orchestrator, bio_payload):
    """Test an HTTP call that outlives its timeout makes no further requests in the background."""

    def slow_busy_response(*args, **kwargs):
        time.sleep(0.3)
        return MagicMock(status_code=503, text="busy")

    session = MagicMock(spec=requests.Session)
    session.post.side_effect = slow_busy_response
    gemini = GeminiAdapter("key", "https://gemini.test/v1", max_retries=2, session=session, retry_delay=0)
    orchestrator = make_orchestrator([gemini])

    result = orchestrator.generate(
        GenerationContext(user_id="user-1"),
        bio_request(bio_payload, options=GenerationOptions(timeout_seconds=0.1)),
    )
    time.sleep(0.6)

    assert result.degraded is True
    assert result.attempts[0].outcome == "timeout"
    assert session.post.call_count == 1


def test_quota_exceeded_at_limit_without_provider_call(make_orchestrator, fake_adapter, bio_payload):
    """Test a free user at 10/10 generations is refused before any provider call."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    for i in range(10):
        orchestrator.quota_ledger.increment_usage("user-1", "ai_generations", f"seed-{i}")

    with pytest.raises(QuotaExceeded) as exc_info:
        orchestrator.generate(GenerationContext(user_id="user-1", tier="free"), bio_request(bio_payload))

    assert exc_info.value.used == 10
    assert exc_info.value.limit == 10
    assert gemini.calls == 0
    assert usage(orchestrator) == 10
    assert orchestrator.history.list("user-1").total == 0


def test_unlimited_tier_never_exceeds_quota(make_orchestrator, fake_adapter, bio_payload):
    """Test a zero limit means unlimited regardless of usage."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    for i in range(50):
        orchestrator.quota_ledger.increment_usage("user-1", "ai_generations", f"seed-{i}")

    result = orchestrator.generate(GenerationContext(user_id="user-1", tier="creator"), bio_request(bio_payload))

    assert result.provider == "gemini"
    assert usage(orchestrator, tier="creator") == 51


def test_tier_upgrade_applies_immediately(make_orchestrator, fake_adapter, bio_payload):
    """Test limits are read on every call, so an upgrade lifts the block at once."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini], tier_limits=StaticTierLimits())
    for i in range(10):
        orchestrator.quota_ledger.increment_usage("user-1", "ai_generations", f"seed-{i}")

    with pytest.raises(QuotaExceeded):
        orchestrator.generate(GenerationContext(user_id="user-1", tier="free"), bio_request(bio_payload))

    result = orchestrator.generate(GenerationContext(user_id="user-1", tier="premium"), bio_request(bio_payload))
    assert result.provider == "gemini"


def test_rate_limit_checked_before_quota(make_orchestrator, fake_adapter, bio_payload):
    """Test a rate-limited request consumes no quota and reports a retry delay."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    orchestrator.rate_limiter = RateLimiter(
        RateLimitConfig(ai_bio_capacity=1, ai_bio_refill_per_sec=0.01),
        backend=InMemoryRateLimiter(),
    )
    ctx = GenerationContext(user_id="user-1")

    orchestrator.generate(ctx, bio_request(bio_payload))
    with pytest.raises(RateLimitExceeded) as exc_info:
        orchestrator.generate(ctx, bio_request(dict(bio_payload, name="Someone Else")))

    assert exc_info.value.operation_class == "ai-bio"
    assert exc_info.value.retry_after > 0
    assert usage(orchestrator) == 1
    assert gemini.calls == 1


def test_validation_lists_every_violation(make_orchestrator, fake_adapter):
    """Test all payload problems are reported together and nothing is consumed."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])

    with pytest.raises(ValidationError) as exc_info:
        orchestrator.generate(GenerationContext(user_id="user-1"), bio_request({"name": "Solo"}))

    violations = exc_info.value.violations
    assert any(v.startswith("genre") for v in violations)
    assert any(v.startswith("personalityTraits") or v.startswith("personality_traits") for v in violations)
    assert any(v.startswith("visualStyle") or v.startswith("visual_style") for v in violations)
    assert gemini.calls == 0
    assert usage(orchestrator) == 0


def test_user_mismatch_is_rejected(make_orchestrator, fake_adapter, bio_payload):
    """Test a request cannot act on behalf of another user."""
    orchestrator = make_orchestrator([fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)])

    with pytest.raises(ValidationError) as exc_info:
        orchestrator.generate(GenerationContext(user_id="user-1"), bio_request(bio_payload, user_id="user-2"))

    assert any("user_id" in v for v in exc_info.value.violations)


def test_variation_count_bounds(make_orchestrator, fake_adapter):
    """Test variation counts outside 1..8 are rejected."""
    orchestrator = make_orchestrator([fake_adapter("nanobanana", [Operation.IMAGE_VARIATIONS])])
    request = GenerationRequest(
        operation=Operation.IMAGE_VARIATIONS,
        user_id="user-1",
        payload={"name": "Nova Pulse", "visualStyle": "neon"},
        options=GenerationOptions(variation_count=9),
    )

    with pytest.raises(ValidationError) as exc_info:
        orchestrator.generate(GenerationContext(user_id="user-1"), request)

    assert any("variation_count" in v for v in exc_info.value.violations)


def test_variation_count_changes_fingerprint(make_orchestrator, fake_adapter):
    """Test requests differing only in variation count do not share a cache slot."""
    openai = fake_adapter("openai", [Operation.PROMPT_VARIATIONS], output={"variations": ["a", "b"]})
    orchestrator = make_orchestrator([openai])
    ctx = GenerationContext(user_id="user-1")

    def request(count):
        return GenerationRequest(
            operation=Operation.PROMPT_VARIATIONS,
            user_id="user-1",
            payload={"basePrompt": "lofi beats"},
            options=GenerationOptions(variation_count=count),
        )

    orchestrator.generate(ctx, request(2))
    result = orchestrator.generate(ctx, request(3))

    assert result.from_cache is False
    assert openai.calls == 2


def test_cancellation_marks_record_failed_and_keeps_quota(make_orchestrator, fake_adapter, bio_payload):
    """Test cancelling stops waiting promptly, fails the record, and does not refund quota."""
    gate = threading.Event()
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT, gate=gate)
    history = InMemoryHistoryStore()
    orchestrator = make_orchestrator([gemini], history=history)
    ctx = GenerationContext(user_id="user-1")

    threading.Timer(0.1, ctx.cancel).start()
    start = time.time()
    try:
        with pytest.raises(GenerationCancelled):
            orchestrator.generate(ctx, bio_request(bio_payload))
        assert time.time() - start < 2
    finally:
        gate.set()

    page = history.list("user-1")
    assert page.total == 1
    assert page.items[0].status == GenerationStatus.FAILED
    assert page.items[0].error_message == "cancelled"
    assert usage(orchestrator) == 1


class FailingHistoryStore(InMemoryHistoryStore):
    def save(self, record):
        raise PersistenceError("database is locked")


def test_history_failure_still_returns_output(make_orchestrator, fake_adapter, bio_payload):
    """Test output survives a history write failure and the failure is reported."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini], history=FailingHistoryStore())

    result = orchestrator.generate(GenerationContext(user_id="user-1"), bio_request(bio_payload))

    assert result.output == BIO_OUTPUT
    assert result.generation_id is None
    assert any("History create failed" in w for w in result.warnings)
    assert usage(orchestrator) == 1


def test_every_fresh_generation_is_charged(make_orchestrator, fake_adapter, bio_payload):
    """Test each provider-backed generation consumes quota, so the limit always holds."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    ctx = GenerationContext(user_id="user-1")

    for i in range(10):
        orchestrator.generate(ctx, bio_request(dict(bio_payload, name=f"Artist {i}")))

    with pytest.raises(QuotaExceeded):
        orchestrator.generate(ctx, bio_request(dict(bio_payload, name="Artist 10")))

    assert gemini.calls == 10
    assert usage(orchestrator) == 10


def test_client_supplied_idempotency_key_is_ignored(make_orchestrator, fake_adapter, bio_payload):
    """Test a repeated client key cannot make fresh generations free."""
    gemini = fake_adapter("gemini", [Operation.BIO], output=BIO_OUTPUT)
    orchestrator = make_orchestrator([gemini])
    orchestrator.cache.enabled = False
    ctx = GenerationContext(user_id="user-1")

    for _ in range(3):
        orchestrator.generate(ctx, GenerationRequest.model_validate({
            "operation": "bio",
            "userId": "user-1",
            "payload": bio_payload,
            "idempotencyKey": "same",
        }))

    assert gemini.calls == 3
    assert usage(orchestrator) == 3
