"""
Subscription tier limits.

Limits are monthly and looked up on every quota call, so a tier change
takes effect on the user's next request. A limit of 0 (or below) means
unlimited.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional

import yaml

from harmony_ai.schemas.operations import MetricType

logger = logging.getLogger(__name__)

DEFAULT_TIER = "free"

DEFAULT_TIER_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {
        MetricType.AI_GENERATIONS.value: 10,
        MetricType.TRACK_UPLOADS.value: 5,
        MetricType.PROMPT_REFINEMENTS.value: 20,
        MetricType.STORAGE_USAGE.value: 1024,
    },
    "premium": {
        MetricType.AI_GENERATIONS.value: 100,
        MetricType.TRACK_UPLOADS.value: 50,
        MetricType.PROMPT_REFINEMENTS.value: 200,
        MetricType.STORAGE_USAGE.value: 10240,
    },
    "creator": {metric.value: 0 for metric in MetricType},
    "enterprise": {metric.value: 0 for metric in MetricType},
}


def is_unlimited(limit: int) -> bool:
    return limit <= 0


def current_period_start(now: Optional[datetime] = None) -> datetime:
    """First instant of the UTC calendar month containing now."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_period_start(period_start: datetime) -> datetime:
    if period_start.month == 12:
        return period_start.replace(year=period_start.year + 1, month=1)
    return period_start.replace(month=period_start.month + 1)


class TierLimitProvider(ABC):
    """Source of per-tier, per-metric monthly limits."""

    @abstractmethod
    def get_limit(self, tier: str, metric_type: str) -> int:
        pass


class StaticTierLimits(TierLimitProvider):
    """
    Tier table held in memory.

    Unknown tiers are treated as the free tier. A metric missing from a
    tier's table falls back to the free tier's value for that metric.
    """

    def __init__(self, limits: Optional[Dict[str, Dict[str, int]]] = None):
        self.limits = {tier: dict(values) for tier, values in (limits or DEFAULT_TIER_LIMITS).items()}

    @classmethod
    def from_yaml(cls, path: str) -> "StaticTierLimits":
        """
        Load overrides on top of the default table.

        Expected shape::

            tiers:
              premium:
                ai_generations_monthly: 150
                prompt_refinements: 300
        """
        with open(path, "r", encoding="utf-8") as fh:
            document = yaml.safe_load(fh) or {}

        limits = {tier: dict(values) for tier, values in DEFAULT_TIER_LIMITS.items()}
        for tier, values in (document.get("tiers") or {}).items():
            table = limits.setdefault(str(tier).lower(), {})
            for key, value in (values or {}).items():
                metric = str(key)
                if metric.endswith("_monthly"):
                    metric = metric[: -len("_monthly")]
                table[metric] = int(value)

        logger.info(f"Loaded tier limits from {path}: {sorted(limits)}")
        return cls(limits)

    def get_limit(self, tier: str, metric_type: str) -> int:
        metric = str(getattr(metric_type, "value", metric_type))
        tier_key = (tier or DEFAULT_TIER).lower()

        table = self.limits.get(tier_key)
        if table is None:
            logger.warning(f"Unknown subscription tier '{tier}', applying {DEFAULT_TIER} limits")
            table = self.limits[DEFAULT_TIER]

        if metric in table:
            return table[metric]
        return self.limits[DEFAULT_TIER].get(metric, 0)

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {tier: dict(values) for tier, values in self.limits.items()}
