# mirai_webhook/infra/metrics.py
from __future__ import annotations
from collections import defaultdict, deque
from threading import Lock
from typing import Dict
from dataclasses import dataclass, field
from mirai_webhook.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Counter:
    """Simple counter metric"""
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


HISTOGRAM_WINDOW = 1000


@dataclass
class Histogram:
    """Track distribution of the most recent values (e.g., dispatch durations)"""
    values: deque[float] = field(default_factory=lambda: deque(maxlen=HISTOGRAM_WINDOW))

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        sorted_values = sorted(self.values)
        count = len(sorted_values)

        def percentile(p: float) -> float:
            idx = int(count * p)
            return sorted_values[min(idx, count - 1)]

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p95": percentile(0.95),
        }


class MetricsCollector:
    """
    Lightweight in-process metrics.
    """

    def __init__(self):
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_counter(self, name: str, **labels) -> int:
        key = self._make_key(name, labels or None)
        with self._lock:
            counter = self._counters.get(key)
            return counter.value if counter else 0

    def get_metrics(self) -> dict:
        """Get all current metrics"""
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            histograms = {k: v.get_stats() for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Global metrics collector
_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class AppMetrics:
    """Application-level metrics tracking"""

    @staticmethod
    def dispatch_completed(topic_id: str, succeeded: int, failed: int, elapsed_ms: int) -> None:
        inc_counter("dispatches_total", topic_id=topic_id)
        inc_counter("targets_delivered_total", succeeded, topic_id=topic_id)
        if failed:
            inc_counter("targets_failed_total", failed, topic_id=topic_id)
        observe_histogram("dispatch_duration_ms", elapsed_ms, topic_id=topic_id)

    @staticmethod
    def auth_failed(topic_id: str) -> None:
        inc_counter("auth_failures_total", topic_id=topic_id)

    @staticmethod
    def gateway_connected() -> None:
        inc_counter("gateway_connections_total")

    @staticmethod
    def gateway_disconnected() -> None:
        inc_counter("gateway_disconnects_total")

    @staticmethod
    def gateway_send(command: str, code: int) -> None:
        inc_counter("gateway_sends_total", command=command, status="ok" if code == 0 else "failed")
