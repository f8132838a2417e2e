"""
Quota Management

Monthly per-user usage counters checked against subscription-tier limits.
"""

from .ledger import QuotaLedger, UsageStatus
from .store import InMemoryUsageStore, SqlUsageStore, UsageStore
from .tiers import StaticTierLimits, TierLimitProvider

__all__ = [
    "QuotaLedger",
    "UsageStatus",
    "UsageStore",
    "InMemoryUsageStore",
    "SqlUsageStore",
    "TierLimitProvider",
    "StaticTierLimits",
]
