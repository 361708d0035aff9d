"""
In-process metrics for the round engine
Counters for trades, claims and transfers; gauges for round state;
latency samples for RPC and pipeline steps
"""

import statistics
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class LatencySummary:
    """Summary of recorded latencies for one operation"""
    operation: str
    count: int
    p50: float
    p95: float
    mean: float
    max: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "p50": self.p50,
            "p95": self.p95,
            "mean": self.mean,
            "max": self.max,
        }


class MetricsCollector:
    """Collects counters, gauges and latency samples"""

    def __init__(self, enable_histogram: bool = True, max_samples: int = 10000):
        self.enable_histogram = enable_histogram
        self.max_samples = max_samples

        self._latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=self.max_samples))
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, latency_ms: float) -> None:
        """Record one latency sample (milliseconds) and bump its call counter"""
        if self.enable_histogram:
            self._latencies[operation].append(latency_ms)
        self._counters[f"{operation}_count"] += 1

    def increment_counter(self, metric_name: str, value: int = 1) -> None:
        self._counters[metric_name] += value

    def set_gauge(self, metric_name: str, value: float) -> None:
        self._gauges[metric_name] = value

    def get_counter(self, metric_name: str) -> int:
        return self._counters.get(metric_name, 0)

    def get_gauge(self, metric_name: str) -> float:
        return self._gauges.get(metric_name, 0.0)

    def get_latency_summary(self, operation: str) -> Optional[LatencySummary]:
        """
        Summarize latencies for an operation

        Returns:
            LatencySummary or None if nothing was recorded
        """
        samples = sorted(self._latencies.get(operation, []))
        if not samples:
            return None

        return LatencySummary(
            operation=operation,
            count=len(samples),
            p50=self._percentile(samples, 50),
            p95=self._percentile(samples, 95),
            mean=statistics.mean(samples),
            max=samples[-1]
        )

    def export_metrics(self) -> Dict[str, Any]:
        """Export all metrics as a JSON-serializable dict"""
        latencies = {}
        for operation in list(self._latencies.keys()):
            summary = self.get_latency_summary(operation)
            if summary:
                latencies[operation] = summary.to_dict()

        return {
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "latencies": latencies,
        }

    def reset(self) -> None:
        """Reset all metrics (used by tests)"""
        self._latencies.clear()
        self._counters.clear()
        self._gauges.clear()

    @staticmethod
    def _percentile(sorted_data: List[float], percentile: float) -> float:
        if len(sorted_data) == 1:
            return sorted_data[0]

        index = (percentile / 100) * (len(sorted_data) - 1)
        lower = int(index)
        upper = min(lower + 1, len(sorted_data) - 1)
        weight = index - lower
        return sorted_data[lower] * (1 - weight) + sorted_data[upper] * weight


class LatencyTimer:
    """Context manager recording the wall time of a block"""

    def __init__(self, metrics: MetricsCollector, operation: str):
        self.metrics = metrics
        self.operation = operation
        self.start_time: Optional[float] = None
        self.latency_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.latency_ms = (time.perf_counter() - self.start_time) * 1000
            self.metrics.record_latency(self.operation, self.latency_ms)


# Global metrics instance (initialized by main)
_global_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance"""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def init_metrics(enable_histogram: bool = True, max_samples: int = 10000) -> MetricsCollector:
    """
    Configure the global metrics collector

    Modules hold the instance from import time, so it is reconfigured in place.
    """
    collector = get_metrics()
    collector.enable_histogram = enable_histogram
    collector.max_samples = max_samples
    collector.reset()
    return collector
