"""
In-process metrics for the mirror bot
Counts processed events, mirrored trades and exit sweeps, and times external calls
"""

import statistics
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class LatencyStats:
    """Summary of recorded latencies for one operation"""
    operation: str
    count: int
    p50: float
    p95: float
    mean: float
    max: float


class MetricsCollector:
    """Counters, gauges and latency samples keyed by name and optional labels"""

    def __init__(self, max_samples: int = 5000):
        self._latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_samples))
        self._counters: Dict[tuple, int] = defaultdict(int)
        self._gauges: Dict[tuple, float] = {}

    @staticmethod
    def _key(name: str, labels: Optional[Dict[str, str]]) -> tuple:
        return (name, tuple(sorted(labels.items())) if labels else ())

    def increment_counter(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._counters[self._key(metric_name, labels)] += value

    def set_gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._gauges[self._key(metric_name, labels)] = value

    def record_latency(self, operation: str, latency_ms: float) -> None:
        self._latencies[operation].append(latency_ms)

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        return self._counters.get(self._key(metric_name, labels), 0)

    def get_gauge(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self._gauges.get(self._key(metric_name, labels), 0.0)

    def get_latency_stats(self, operation: str) -> Optional[LatencyStats]:
        """
        Summarize recorded latencies

        Returns:
            LatencyStats, or None when nothing was recorded for the operation
        """
        samples = sorted(self._latencies.get(operation, []))
        if not samples:
            return None

        return LatencyStats(
            operation=operation,
            count=len(samples),
            p50=self._percentile(samples, 50),
            p95=self._percentile(samples, 95),
            mean=statistics.mean(samples),
            max=samples[-1]
        )

    def export_metrics(self) -> Dict:
        """Export counters, gauges and latency summaries as a JSON-friendly dict"""
        def flatten(key: tuple) -> str:
            name, labels = key
            if not labels:
                return name
            rendered = ",".join(f"{k}={v}" for k, v in labels)
            return f"{name}{{{rendered}}}"

        exported = {
            "counters": {flatten(k): v for k, v in self._counters.items()},
            "gauges": {flatten(k): v for k, v in self._gauges.items()},
            "latencies": {}
        }
        for operation in list(self._latencies.keys()):
            stats = self.get_latency_stats(operation)
            if stats:
                exported["latencies"][operation] = {
                    "count": stats.count,
                    "p50": stats.p50,
                    "p95": stats.p95,
                    "mean": stats.mean,
                    "max": stats.max
                }
        return exported

    def reset(self) -> None:
        self._latencies.clear()
        self._counters.clear()
        self._gauges.clear()

    @staticmethod
    def _percentile(sorted_data: List[float], percentile: float) -> float:
        if len(sorted_data) == 1:
            return sorted_data[0]
        rank = (percentile / 100) * (len(sorted_data) - 1)
        lower = int(rank)
        upper = min(lower + 1, len(sorted_data) - 1)
        weight = rank - lower
        return sorted_data[lower] * (1 - weight) + sorted_data[upper] * weight


class LatencyTimer:
    """Context manager that records the wall time of a block in milliseconds"""

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


_global_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Return the process-wide collector, creating it on first use"""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics
