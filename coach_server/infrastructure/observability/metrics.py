import math
from bisect import bisect_left
from typing import Dict, Any, List, Optional, Sequence
import structlog

logger = structlog.get_logger(__name__)

# Upper bounds in milliseconds; the last bucket catches everything above
DEFAULT_LATENCY_BUCKETS_MS: Sequence[float] = (
    1, 2, 5, 10, 25, 50, 100, 250, 500,
    1000, 2500, 5000, 10000, 30000, 60000, 120000,
)


class LatencyHistogram:
    """Fixed-bucket latency histogram.

    Percentiles are resolved to the upper bound of the bucket holding the
    requested rank and clamped to the observed maximum, so the result does
    not depend on the order in which samples arrived.
    """

    def __init__(self, bounds: Sequence[float] = DEFAULT_LATENCY_BUCKETS_MS):
        self.bounds: List[float] = sorted(bounds)
        self.counts: List[int] = [0] * (len(self.bounds) + 1)
        self.count = 0
        self.total = 0.0
        self.min = float("inf")
        self.max = 0.0

    def observe(self, value_ms: float) -> None:
        index = bisect_left(self.bounds, value_ms)
        self.counts[index] += 1
        self.count += 1
        self.total += value_ms
        self.min = min(self.min, value_ms)
        self.max = max(self.max, value_ms)

    def percentile(self, q: float) -> float:
        if self.count == 0:
            return 0.0

        rank = max(1, math.ceil(q * self.count))
        cumulative = 0
        for index, bucket_count in enumerate(self.counts):
            cumulative += bucket_count
            if cumulative >= rank:
                if index < len(self.bounds):
                    return min(self.bounds[index], self.max)
                return self.max
        return self.max

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0.0,
            "min": self.min if self.count else 0.0,
            "max": self.max,
            "p50": self.percentile(0.50),
            "p95": self.percentile(0.95),
            "p99": self.percentile(0.99),
        }


class MetricsCollector:
    """Collect and export process-local service metrics"""

    def __init__(self, bucket_bounds_ms: Sequence[float] = DEFAULT_LATENCY_BUCKETS_MS):
        self.bucket_bounds_ms = bucket_bounds_ms
        self.latencies: Dict[str, LatencyHistogram] = {}
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        histogram = self.latencies.get(operation)
        if histogram is None:
            histogram = LatencyHistogram(self.bucket_bounds_ms)
            self.latencies[operation] = histogram
        histogram.observe(duration_ms)

        logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        self.counters[name] = self.counters.get(name, 0) + value

        logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def set_gauge(self, name: str, value: float):
        self.gauges[name] = value

    def record_request(self, method: str, path: str, status_code: int, duration_ms: float):
        self.record_latency(f"http.{method} {path}", duration_ms)
        self.increment_counter("http.requests")
        if status_code >= 500:
            self.increment_counter("http.errors")

    def record_stage(self, stage: str, duration_ms: float):
        self.record_latency(f"pipeline.{stage}", duration_ms)

    def record_pipeline_error(self, code: str):
        self.increment_counter("pipeline.errors")
        self.increment_counter(f"errors.{code}")

    def record_tool_execution(self, tool_id: str, success: bool):
        self.increment_counter("tools.executions")
        self.increment_counter(f"tools.{tool_id}.executions")
        if not success:
            self.increment_counter("tools.failures")

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        return {
            "latency": {name: hist.summary() for name, hist in self.latencies.items()},
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
        }
