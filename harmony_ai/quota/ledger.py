"""
Quota Ledger

Tracks per-user, per-metric usage for the current monthly period and
enforces subscription-tier limits. Usage is attempt-based: a
reservation is the usage increment and is never refunded, whatever
happens to the generation afterwards.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from harmony_ai.errors import QuotaExceeded
from harmony_ai.quota.store import APPLIED, DENIED, UsageStore
from harmony_ai.quota.tiers import (
    TierLimitProvider,
    current_period_start,
    is_unlimited,
    next_period_start,
)
from harmony_ai.ratelimit.metrics import MetricsCollector
from harmony_ai.schemas.operations import MetricType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageStatus:
    user_id: str
    metric_type: str
    used: int
    limit: int
    unlimited: bool
    period_start: datetime

    @property
    def allowed(self) -> bool:
        return self.unlimited or self.used < self.limit

    @property
    def remaining(self) -> Optional[int]:
        if self.unlimited:
            return None
        return max(0, self.limit - self.used)

    @property
    def resets_at(self) -> datetime:
        return next_period_start(self.period_start)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update({
            "allowed": self.allowed,
            "remaining": self.remaining,
            "period_start": self.period_start.isoformat(),
            "resets_at": self.resets_at.isoformat(),
        })
        return data


def _metric_name(metric_type) -> str:
    name = str(getattr(metric_type, "value", metric_type))
    try:
        return MetricType(name).value
    except ValueError:
        raise ValueError(f"Unknown metric type: {metric_type}")


class QuotaLedger:
    """
    Per-user usage counters checked against tier limits.

    Limits are read from the TierLimitProvider on every call, never
    cached, so mid-period upgrades apply immediately.
    """

    def __init__(
        self,
        store: UsageStore,
        tier_limits: TierLimitProvider,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.tier_limits = tier_limits
        self.clock = clock
        self.metrics = metrics

    def _status(self, user_id: str, metric: str, tier: str, used: int, period_start: datetime) -> UsageStatus:
        limit = self.tier_limits.get_limit(tier, metric)
        return UsageStatus(
            user_id=user_id,
            metric_type=metric,
            used=used,
            limit=limit,
            unlimited=is_unlimited(limit),
            period_start=period_start,
        )

    def check_usage_limit(self, user_id: str, metric_type, tier: str) -> UsageStatus:
        """Read-only view of where the user stands for this metric."""
        metric = _metric_name(metric_type)
        period_start = current_period_start(self.clock())
        used = self.store.get_count(user_id, metric, period_start)
        return self._status(user_id, metric, tier, used, period_start)

    def increment_usage(self, user_id: str, metric_type, idempotency_key: str, tier: str = "free") -> UsageStatus:
        """
        Count one unit of usage, exactly once per idempotency key.

        No limit is enforced here; callers that need admission control use reserve().
        """
        metric = _metric_name(metric_type)
        period_start = current_period_start(self.clock())
        outcome = self.store.increment(user_id, metric, period_start, idempotency_key)

        if outcome.status != APPLIED:
            logger.debug(f"Usage increment {idempotency_key} for {user_id}/{metric} already applied")
        return self._status(user_id, metric, tier, outcome.count, period_start)

    def reserve(self, user_id: str, metric_type, tier: str, idempotency_key: str) -> UsageStatus:
        """
        Admit and count one attempt in a single atomic step.

        Raises:
            QuotaExceeded: when used >= limit for a limited tier. Nothing is counted.

        A repeated idempotency key is admitted without counting again.
        """
        metric = _metric_name(metric_type)
        period_start = current_period_start(self.clock())
        limit = self.tier_limits.get_limit(tier, metric)

        outcome = self.store.increment(
            user_id,
            metric,
            period_start,
            idempotency_key,
            limit=None if is_unlimited(limit) else limit,
        )

        if outcome.status == DENIED:
            logger.info(f"Quota exceeded for user={user_id} metric={metric}: {outcome.count}/{limit}")
            if self.metrics:
                self.metrics.record_quota_exceeded(metric)
            raise QuotaExceeded(metric, outcome.count, limit)

        return self._status(user_id, metric, tier, outcome.count, period_start)

    def get_user_usage(self, user_id: str, tier: str) -> Dict[str, UsageStatus]:
        """Status for every metric in the current period, including untouched ones."""
        period_start = current_period_start(self.clock())
        counts = self.store.get_counts(user_id, period_start)
        return {
            metric.value: self._status(user_id, metric.value, tier, counts.get(metric.value, 0), period_start)
            for metric in MetricType
        }
