"""
Component wiring.

Builds every component once per process from Settings. Redis backs the
rate limiter and result cache when REDIS_URL is set; history and usage
live in the SQL database.
"""

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from harmony_ai.cache.backends import InMemoryCacheBackend, RedisCacheBackend
from harmony_ai.cache.result_cache import ResultCache
from harmony_ai.config import Settings
from harmony_ai.database import build_engine, build_session_factory, init_db
from harmony_ai.history.store import SqlHistoryStore
from harmony_ai.orchestrator import Orchestrator
from harmony_ai.providers.gemini import GeminiAdapter
from harmony_ai.providers.nano_banana import NanoBananaAdapter
from harmony_ai.providers.openai_provider import OpenAIAdapter
from harmony_ai.providers.registry import ProviderRegistry
from harmony_ai.providers.seedance import SeedanceAdapter
from harmony_ai.quota.ledger import QuotaLedger
from harmony_ai.quota.store import SqlUsageStore
from harmony_ai.quota.tiers import StaticTierLimits
from harmony_ai.ratelimit.config import RateLimitConfig
from harmony_ai.ratelimit.limiter import RateLimiter
from harmony_ai.ratelimit.metrics import MetricsCollector
from harmony_ai.reliability.circuit_breaker import CircuitBreakerRegistry
from harmony_ai.service import GenerationService

logger = logging.getLogger(__name__)


def build_registry(settings: Settings) -> ProviderRegistry:
    retries = settings.PROVIDER_MAX_RETRIES
    return ProviderRegistry([
        GeminiAdapter(
            settings.GEMINI_API_KEY,
            settings.GEMINI_API_URL,
            model=settings.GEMINI_MODEL,
            max_tokens=settings.GEMINI_MAX_TOKENS,
            temperature=settings.GEMINI_TEMPERATURE,
            max_retries=retries,
        ),
        OpenAIAdapter(
            settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            organization=settings.OPENAI_ORGANIZATION,
            max_tokens=settings.OPENAI_MAX_TOKENS,
            temperature=settings.OPENAI_TEMPERATURE,
            max_retries=retries,
        ),
        NanoBananaAdapter(
            settings.NANO_BANANA_API_KEY,
            settings.NANO_BANANA_API_URL,
            model=settings.NANO_BANANA_MODEL,
            steps=settings.NANO_BANANA_STEPS,
            cfg_scale=settings.NANO_BANANA_CFG_SCALE,
            max_retries=retries,
        ),
        SeedanceAdapter(
            settings.SEEDANCE_API_KEY,
            settings.SEEDANCE_API_URL,
            model=settings.SEEDANCE_MODEL,
            quality=settings.SEEDANCE_QUALITY,
            max_retries=retries,
        ),
    ])


def build_result_cache(settings: Settings) -> ResultCache:
    if settings.REDIS_URL:
        logger.info("Using Redis result cache backend")
        backend = RedisCacheBackend.from_url(settings.REDIS_URL)
    else:
        backend = InMemoryCacheBackend(max_entries=settings.CACHE_MAX_ENTRIES)
    return ResultCache(backend, default_ttl=settings.CACHE_TTL_SEC, enabled=settings.CACHE_ENABLED)


def build_orchestrator(
    settings: Settings,
    session_factory: Optional[sessionmaker] = None,
    registry: Optional[ProviderRegistry] = None,
) -> Orchestrator:
    """
    Construct the orchestrator and everything it depends on.

    Args:
        session_factory: Reuse an existing database; otherwise one is built
            from DATABASE_URL and its tables are created.
        registry: Override the provider adapters (tests).
    """
    if session_factory is None:
        engine = build_engine(settings.DATABASE_URL)
        init_db(engine)
        session_factory = build_session_factory(engine)

    metrics = MetricsCollector()

    rate_config = RateLimitConfig.from_env()
    if settings.REDIS_URL and not rate_config.redis_url:
        rate_config.redis_url = settings.REDIS_URL
    rate_config.validate()

    if settings.TIER_LIMITS_FILE:
        tier_limits = StaticTierLimits.from_yaml(settings.TIER_LIMITS_FILE)
    else:
        tier_limits = StaticTierLimits()

    orchestrator = Orchestrator(
        registry=registry or build_registry(settings),
        rate_limiter=RateLimiter(rate_config, metrics=metrics),
        quota_ledger=QuotaLedger(SqlUsageStore(session_factory), tier_limits, metrics=metrics),
        cache=build_result_cache(settings),
        history=SqlHistoryStore(session_factory),
        breakers=CircuitBreakerRegistry(
            failure_threshold=settings.PROVIDER_FAILURE_THRESHOLD,
            recovery_timeout=settings.PROVIDER_RECOVERY_TIMEOUT_SEC,
        ),
        metrics=metrics,
        text_timeout=settings.TEXT_TIMEOUT_SEC,
        image_timeout=settings.IMAGE_TIMEOUT_SEC,
        max_workers=settings.PROVIDER_WORKERS,
    )

    configured = [adapter.name for adapter in orchestrator.registry.get_all() if adapter.is_configured()]
    logger.info(f"Generation orchestrator ready; configured providers: {configured or 'none (local templates only)'}")
    return orchestrator


def build_service(settings: Settings, **kwargs) -> GenerationService:
    return GenerationService(build_orchestrator(settings, **kwargs))
