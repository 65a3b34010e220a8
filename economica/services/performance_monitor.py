"""Performance monitoring and alerting for query orchestration."""

import statistics
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from economica.core.logging import get_logger

logger = get_logger(__name__)


class PerformanceMetric:
    """Single performance metric with history."""

    def __init__(self, name: str, window_size: int = 1000):
        """Initialize performance metric."""
        self.name = name
        self.window_size = window_size
        self.values: Deque[float] = deque(maxlen=window_size)
        self.timestamps: Deque[datetime] = deque(maxlen=window_size)
        self.total_count = 0
        self.total_sum = 0.0

    def record(self, value: float, timestamp: Optional[datetime] = None):
        """Record a new value."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        self.values.append(value)
        self.timestamps.append(timestamp)
        self.total_count += 1
        self.total_sum += value

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics for this metric."""
        if not self.values:
            return {
                "count": 0,
                "mean": 0,
                "min": 0,
                "max": 0,
                "p50": 0,
                "p95": 0,
                "p99": 0,
                "window_size": 0
            }

        sorted_values = sorted(self.values)
        last_index = len(sorted_values) - 1

        def percentile(ratio: float) -> float:
            return sorted_values[min(int(len(sorted_values) * ratio), last_index)]

        return {
            "count": self.total_count,
            "mean": statistics.mean(self.values),
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "p50": percentile(0.5),
            "p95": percentile(0.95),
            "p99": percentile(0.99),
            "window_size": len(self.values)
        }


@dataclass
class Alert:
    """A threshold crossing worth telling an operator about."""
    kind: str
    severity: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "severity": self.severity,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class PerformanceMonitor:
    """Collects counters, latencies and alerts for one service instance.

    Every recorded event is also logged with structured ``extra`` fields so
    the JSON log stream carries the same information as the in-memory
    summary.
    """

    def __init__(self, slow_operation_threshold_ms: float = 30000.0, window_size: int = 1000, max_alerts: int = 100):
        self.slow_operation_threshold_ms = slow_operation_threshold_ms
        self.window_size = window_size
        self.metrics: Dict[str, PerformanceMetric] = {}
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.alerts: Deque[Alert] = deque(maxlen=max_alerts)
        self.start_time = datetime.now(timezone.utc)

    def _metric(self, metric_name: str) -> PerformanceMetric:
        if metric_name not in self.metrics:
            self.metrics[metric_name] = PerformanceMetric(metric_name, self.window_size)
        return self.metrics[metric_name]

    def record_latency(self, metric_name: str, latency_ms: float):
        """Record a latency measurement, alerting when it is slow."""
        self._metric(metric_name).record(latency_ms)
        if latency_ms > self.slow_operation_threshold_ms:
            self.record_alert(
                "slow_operation",
                f"{metric_name} took {latency_ms:.0f}ms",
                severity="warning",
                operation=metric_name,
                duration_ms=latency_ms,
            )

    def record_value(self, metric_name: str, value: float):
        """Record a non-latency metric value (e.g., ratios)."""
        self._metric(metric_name).record(value)

    def increment_counter(self, counter_name: str, value: int = 1):
        """Increment a counter."""
        self.counters[counter_name] += value

    def set_gauge(self, gauge_name: str, value: float):
        """Set a gauge value."""
        self.gauges[gauge_name] = value

    def record_cache_event(self, event: str, tier: Optional[str] = None, key: Optional[str] = None):
        """Record a cache hit, miss, set or skip."""
        self.increment_counter(f"cache_{event}")
        if tier:
            self.increment_counter(f"cache_{tier}_{event}")
        logger.debug("cache %s", event, extra={"event": f"cache_{event}", "tier": tier, "cache_key": key})

    def record_provider_call(
        self,
        provider: str,
        duration_ms: float,
        cost: float,
        success: bool,
        tokens: int = 0,
        error: Optional[str] = None,
    ):
        """Record one premium provider call."""
        self.record_latency(f"provider_{provider}_latency_ms", duration_ms)
        self.increment_counter("provider_calls")
        self.increment_counter(f"provider_{provider}_{'success' if success else 'failure'}")
        if tokens:
            self.increment_counter(f"tokens_{provider}", tokens)
        self.gauges[f"provider_{provider}_cost_total"] = self.gauges.get(f"provider_{provider}_cost_total", 0.0) + cost

        extra = {
            "event": "provider_call",
            "provider": provider,
            "duration_ms": round(duration_ms, 2),
            "cost": cost,
            "tokens": tokens,
            "success": success,
        }
        if success:
            logger.info("Provider %s answered in %.0fms", provider, duration_ms, extra=extra)
        else:
            extra["error"] = error
            logger.warning("Provider %s failed after %.0fms: %s", provider, duration_ms, error, extra=extra)

    def record_search(self, results: int, total: int, latency_ms: float):
        """Record one knowledge base search."""
        self.record_latency("knowledge_search_latency_ms", latency_ms)
        self.increment_counter("knowledge_searches")
        if total == 0:
            self.increment_counter("knowledge_search_empty")
        logger.debug(
            "Knowledge search returned %d of %d matches in %.1fms", results, total, latency_ms,
            extra={"event": "knowledge_search", "results": results, "total": total, "duration_ms": latency_ms},
        )

    def record_stage(self, stage: str, query_id: str, **details: Any):
        """Record an orchestration stage transition."""
        self.increment_counter(f"stage_{stage}")
        logger.info("Query %s: %s", query_id, stage, extra={"event": "stage", "stage": stage, "query_id": query_id, **details})

    def record_alert(self, kind: str, message: str, severity: str = "warning", **details: Any) -> Alert:
        """Record and log an alert."""
        alert = Alert(kind=kind, severity=severity, message=message, details=details)
        self.alerts.append(alert)
        self.increment_counter(f"alerts_{kind}")
        log = logger.error if severity == "critical" else logger.warning
        log(message, extra={"event": "alert", "alert_kind": kind, "severity": severity, **details})
        return alert

    @asynccontextmanager
    async def measure_latency(self, metric_name: str):
        """Context manager to measure latency."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.record_latency(metric_name, (time.perf_counter() - start_time) * 1000)

    def get_recent_alerts(self, limit: int = 20) -> List[Dict[str, Any]]:
        return [alert.to_dict() for alert in list(self.alerts)[-limit:]]

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics."""
        uptime_seconds = (datetime.now(timezone.utc) - self.start_time).total_seconds()

        return {
            "uptime_seconds": uptime_seconds,
            "start_time": self.start_time.isoformat(),
            "latencies": {
                name: metric.get_stats()
                for name, metric in self.metrics.items()
                if "latency" in name
            },
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "cache_performance": self._get_cache_performance(),
            "recent_alerts": self.get_recent_alerts(),
        }

    def _get_cache_performance(self) -> Dict[str, Any]:
        """Get cache performance metrics."""
        hits = self.counters.get("cache_hit", 0)
        misses = self.counters.get("cache_miss", 0)
        total = hits + misses

        return {
            "hits": hits,
            "misses": misses,
            "sets": self.counters.get("cache_set", 0),
            "hit_rate": hits / total if total > 0 else 0,
            "by_tier": {
                tier: self.counters.get(f"cache_{tier}_hit", 0)
                for tier in ("l1", "l2", "l3")
            },
        }

    def reset_metrics(self):
        """Reset all metrics (useful for testing)."""
        self.metrics.clear()
        self.counters.clear()
        self.gauges.clear()
        self.alerts.clear()
        self.start_time = datetime.now(timezone.utc)
