"""
Generation service surface.

Everything the route layer needs besides generate(): history reads,
usage, and the administrative views over cache, quotas, providers and
metrics. No method here talks to a provider over the network.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from harmony_ai.context import GenerationContext
from harmony_ai.errors import GenerationNotFound
from harmony_ai.history.store import HistoryStore
from harmony_ai.orchestrator import Orchestrator
from harmony_ai.quota.ledger import QuotaLedger
from harmony_ai.quota.tiers import TierLimitProvider
from harmony_ai.schemas.generation import GenerationRecord, GenerationRequest, GenerationResult, HistoryFilters, HistoryPage
from harmony_ai.schemas.operations import OperationClass

logger = logging.getLogger(__name__)


class GenerationService:
    def __init__(self, orchestrator: Orchestrator):
        self.orchestrator = orchestrator

    @property
    def history(self) -> HistoryStore:
        return self.orchestrator.history

    @property
    def ledger(self) -> QuotaLedger:
        return self.orchestrator.quota_ledger

    def generate(self, ctx: GenerationContext, request: GenerationRequest) -> GenerationResult:
        return self.orchestrator.generate(ctx, request)

    # History

    def get_generation_history(
        self,
        user_id: str,
        filters: Optional[HistoryFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> HistoryPage:
        return self.history.list(user_id, filters, page=page, limit=limit)

    def get_generation(self, record_id: str, user_id: str) -> GenerationRecord:
        record = self.history.get(record_id, user_id)
        if record is None:
            raise GenerationNotFound(f"Generation {record_id} not found")
        return record

    def delete_generation(self, record_id: str, user_id: str) -> None:
        if not self.history.delete(record_id, user_id):
            raise GenerationNotFound(f"Generation {record_id} not found")
        logger.info(f"Deleted generation {record_id} for user {user_id}")

    def get_service_stats(self, user_id: str) -> Dict[str, Any]:
        """Counts by operation, provider usage and success rates for one user."""
        return self.history.stats(user_id)

    def get_usage(self, ctx: GenerationContext) -> Dict[str, Any]:
        usage = self.ledger.get_user_usage(ctx.user_id, ctx.tier)
        return {
            "tier": ctx.tier,
            "metrics": {metric: status.to_dict() for metric, status in usage.items()},
        }

    # Administration

    def get_cache_stats(self) -> Dict[str, Any]:
        stats = self.orchestrator.cache.stats().to_dict()
        stats["in_flight"] = self.orchestrator.single_flight.in_flight()
        return stats

    def clear_all_caches(self) -> Dict[str, Any]:
        cleared = self.orchestrator.cache.invalidate_all()
        logger.info(f"Cleared {cleared} cached generation results")
        return {"cleared": cleared}

    def get_service_quotas(self) -> Dict[str, Any]:
        """Rate-limit buckets per operation class and the tier limit table."""
        limiter_config = self.orchestrator.rate_limiter.config
        rate_limits = {}
        for operation_class in OperationClass:
            capacity, refill = limiter_config.get_class_limit(operation_class.value)
            rate_limits[operation_class.value] = {
                "capacity": capacity,
                "refill_per_minute": round(refill * 60, 3),
            }

        tier_limits: TierLimitProvider = self.ledger.tier_limits
        tiers = tier_limits.as_dict() if hasattr(tier_limits, "as_dict") else {}
        return {
            "rate_limiting_enabled": limiter_config.enabled,
            "rate_limits": rate_limits,
            "tiers": tiers,
        }

    def check_service_availability(self) -> Dict[str, Any]:
        """Key presence and circuit state per provider."""
        checked_at = datetime.now(timezone.utc).isoformat()
        breakers = self.orchestrator.breakers
        services = {}
        for adapter in self.orchestrator.registry.get_all():
            breaker = breakers.get(adapter.name)
            available = adapter.is_configured()
            services[adapter.name] = {
                **adapter.describe(),
                "available": available,
                "healthy": available and not breaker.is_open(),
                "circuit": breaker.get_state_info(),
                "last_check": checked_at,
            }
        return services

    def get_metrics(self) -> Dict[str, Any]:
        metrics = self.orchestrator.metrics.get_all_metrics()
        metrics["circuit_breakers"] = self.orchestrator.breakers.snapshot()
        return metrics
