"""
Prometheus Metrics

Provides application metrics in Prometheus format:
- HTTP request metrics (count, duration, status codes)
- Cache metrics (hit / miss / stale-serve per tier)
- Upstream calendar API metrics (calls, failures, latency)
"""

from typing import Dict, List
import time
from collections import defaultdict
from threading import Lock


class Counter:
    """Simple counter metric."""

    metric_type = "counter"

    def __init__(self, name: str, description: str, labels: tuple = ()):
        self.name = name
        self.description = description
        self.labels = labels
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = Lock()

    def _key(self, label_values: dict) -> tuple:
        return tuple(label_values.get(l, '') for l in self.labels)

    def inc(self, value: float = 1, **label_values):
        """Increment counter."""
        key = self._key(label_values)
        with self._lock:
            self._values[key] += value

    def get(self, **label_values) -> float:
        """Current value for one label combination."""
        key = self._key(label_values)
        with self._lock:
            return self._values.get(key, 0.0)

    def get_all(self) -> Dict[tuple, float]:
        with self._lock:
            return dict(self._values)

    def reset(self):
        with self._lock:
            self._values.clear()


class Gauge(Counter):
    """Simple gauge metric (can go up and down)."""

    metric_type = "gauge"

    def set(self, value: float, **label_values):
        key = self._key(label_values)
        with self._lock:
            self._values[key] = value

    def dec(self, value: float = 1, **label_values):
        self.inc(-value, **label_values)


class Histogram:
    """Simple histogram metric."""

    metric_type = "histogram"
    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float('inf'))

    def __init__(self, name: str, description: str, labels: tuple = (), buckets: tuple = None):
        self.name = name
        self.description = description
        self.labels = labels
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._counts: Dict[tuple, Dict[float, int]] = defaultdict(lambda: defaultdict(int))
        self._sums: Dict[tuple, float] = defaultdict(float)
        self._totals: Dict[tuple, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, **label_values):
        """Record an observation."""
        key = tuple(label_values.get(l, '') for l in self.labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[key][bucket] += 1

    def time(self, **label_values):
        """Context manager to time a block of code."""
        return _HistogramTimer(self, label_values)

    def get_all(self) -> Dict:
        with self._lock:
            return {
                'counts': {k: dict(v) for k, v in self._counts.items()},
                'sums': dict(self._sums),
                'totals': dict(self._totals)
            }

    def reset(self):
        with self._lock:
            self._counts.clear()
            self._sums.clear()
            self._totals.clear()


class _HistogramTimer:
    """Context manager for timing code blocks."""

    def __init__(self, histogram: Histogram, label_values: dict):
        self.histogram = histogram
        self.label_values = label_values
        self.start_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.perf_counter() - self.start_time
        self.histogram.observe(duration, **self.label_values)


# ================================
# APPLICATION METRICS
# ================================

# HTTP Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labels=("method", "path", "status_code")
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labels=("method", "path")
)

# Cache Metrics
cache_requests_total = Counter(
    "cache_requests_total",
    "Cache operations by tier and result",
    labels=("operation", "tier", "result")
)

cache_circuit_open = Gauge(
    "cache_circuit_open",
    "1 while the distributed cache tier is bypassed"
)

# Upstream Metrics
upstream_requests_total = Counter(
    "upstream_requests_total",
    "Upstream calendar API calls",
    labels=("operation", "status")
)

upstream_request_duration_seconds = Histogram(
    "upstream_request_duration_seconds",
    "Upstream calendar API call duration in seconds",
    labels=("operation",)
)

# Availability Metrics
availability_requests_total = Counter(
    "availability_requests_total",
    "Availability checks by cache status",
    labels=("cache_status",)
)

cache_invalidations_total = Counter(
    "cache_invalidations_total",
    "Cache invalidations by trigger",
    labels=("trigger",)
)

REGISTRY: List = [
    http_requests_total,
    http_request_duration_seconds,
    cache_requests_total,
    cache_circuit_open,
    upstream_requests_total,
    upstream_request_duration_seconds,
    availability_requests_total,
    cache_invalidations_total,
]


def _label_str(labels: tuple, key: tuple) -> str:
    return ",".join(f'{k}="{v}"' for k, v in zip(labels, key))


def format_prometheus_metrics() -> str:
    """Format all metrics in Prometheus text format."""
    lines = []

    for metric in REGISTRY:
        lines.append(f"# HELP {metric.name} {metric.description}")
        lines.append(f"# TYPE {metric.name} {metric.metric_type}")

        if isinstance(metric, Histogram):
            data = metric.get_all()
            for key in data['sums'].keys():
                label_str = _label_str(metric.labels, key)
                for bucket in metric.buckets:
                    le = "+Inf" if bucket == float('inf') else bucket
                    bucket_labels = f'{label_str},le="{le}"' if label_str else f'le="{le}"'
                    lines.append(f'{metric.name}_bucket{{{bucket_labels}}} {data["counts"].get(key, {}).get(bucket, 0)}')
                lines.append(f'{metric.name}_sum{{{label_str}}} {data["sums"][key]}')
                lines.append(f'{metric.name}_count{{{label_str}}} {data["totals"][key]}')
            continue

        for key, value in metric.get_all().items():
            label_str = _label_str(metric.labels, key)
            if label_str:
                lines.append(f'{metric.name}{{{label_str}}} {value}')
            else:
                lines.append(f'{metric.name} {value}')

    return "\n".join(lines) + "\n"


def reset_metrics():
    """Clear all metric values (tests)."""
    for metric in REGISTRY:
        metric.reset()


# ================================
# CONVENIENCE FUNCTIONS
# ================================

def record_http_request(method: str, path: str, status_code: int, duration: float):
    """Record an HTTP request."""
    http_requests_total.inc(method=method, path=path, status_code=str(status_code))
    http_request_duration_seconds.observe(duration, method=method, path=path)


def record_cache_result(operation: str, tier: str, result: str):
    """Record a cache lookup/write outcome ("hit", "miss", "stale", "error", "ok")."""
    cache_requests_total.inc(operation=operation, tier=tier, result=result)


def record_upstream_call(operation: str, success: bool, duration: float):
    """Record an upstream calendar API call."""
    status = "success" if success else "error"
    upstream_requests_total.inc(operation=operation, status=status)
    upstream_request_duration_seconds.observe(duration, operation=operation)


def record_availability_request(cache_status: str):
    availability_requests_total.inc(cache_status=cache_status)
