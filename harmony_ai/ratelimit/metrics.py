"""
Metrics Collection for the generation pipeline

Counters, gauges and latency histograms for requests, cache hits, rate
limiting, quota denials, provider failures, failovers and degraded
results. In-memory, thread-safe, one instance per process.
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_HISTOGRAM_WINDOW = 1000


class MetricsCollector:
    """Thread-safe metrics collector."""

    def __init__(self):
        self.lock = threading.Lock()
        self.counters = defaultdict(int)
        self.gauges = {}
        self.histograms = defaultdict(list)
        self.start_time = datetime.now(timezone.utc)

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None, value: int = 1):
        key = self._make_key(name, labels)
        with self.lock:
            self.counters[key] += value

    def set_gauge(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        key = self._make_key(name, labels)
        with self.lock:
            self.gauges[key] = value

    def observe_histogram(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        """Record an observation; only the most recent observations are kept."""
        key = self._make_key(name, labels)
        with self.lock:
            values = self.histograms[key]
            values.append(value)
            if len(values) > _HISTOGRAM_WINDOW:
                del values[: len(values) - _HISTOGRAM_WINDOW]

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        key = self._make_key(name, labels)
        with self.lock:
            return self.counters.get(key, 0)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        key = self._make_key(name, labels)
        with self.lock:
            return self.gauges.get(key)

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """Get histogram statistics (count, min, max, avg, p50, p95, p99)."""
        key = self._make_key(name, labels)
        with self.lock:
            return self._summarize(self.histograms.get(key, []))

    def get_all_metrics(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
                "histograms": {key: self._summarize(values) for key, values in self.histograms.items()},
                "metadata": {
                    "start_time": self.start_time.isoformat(),
                    "uptime_seconds": (datetime.now(timezone.utc) - self.start_time).total_seconds(),
                },
            }

    # Pipeline events

    def record_request(self, operation: str):
        self.increment_counter("generation_requests_total", {"operation": operation})

    def record_cache_hit(self, operation: str, coalesced: bool = False):
        name = "generation_coalesced_total" if coalesced else "generation_cache_hits_total"
        self.increment_counter(name, {"operation": operation})

    def record_rate_limited(self, operation_class: str):
        self.increment_counter("generation_rate_limited_total", {"operation_class": operation_class})

    def record_quota_exceeded(self, metric_type: str):
        self.increment_counter("generation_quota_exceeded_total", {"metric_type": metric_type})

    def record_provider_failure(self, provider: str, error_type: str):
        self.increment_counter("provider_failures_total", {"provider": provider, "error_type": error_type})

    def record_failover(self, from_provider: str, to_provider: str):
        self.increment_counter("provider_failovers_total", {
            "from_provider": from_provider,
            "to_provider": to_provider,
        })

    def record_degraded(self, operation: str):
        self.increment_counter("generation_degraded_total", {"operation": operation})

    def record_circuit_state(self, provider: str, is_open: bool):
        self.set_gauge("provider_circuit_open", {"provider": provider}, 1.0 if is_open else 0.0)

    def record_latency(self, provider: str, latency_ms: float):
        self.observe_histogram("provider_latency_ms", {"provider": provider}, latency_ms)

    @staticmethod
    def _summarize(values) -> Dict[str, float]:
        if not values:
            return {}
        ordered = sorted(values)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p50": ordered[int(count * 0.5)],
            "p95": ordered[min(count - 1, int(count * 0.95))],
            "p99": ordered[min(count - 1, int(count * 0.99))],
        }

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key from metric name and labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}:{label_str}"
