"""
Shared metrics configuration for the RetroLens access layer.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest

from shared.logging import get_logger


class MetricsCollector:
    """Centralized metrics collector for client components.

    Each collector owns its registry unless one is passed in, so several
    runtimes (or tests) in one process never register the same series twice.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self.logger = get_logger(f"{service_name}.metrics")
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics."""
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total backend HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "Backend HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_cache_metrics()
        self._setup_session_metrics()

    def _setup_cache_metrics(self):
        """Set up query cache metrics."""
        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total cache hits",
            ["namespace"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total cache misses",
            ["namespace"],
            registry=self.registry
        )

        self._metrics["cache_fetches_total"] = Counter(
            "cache_fetches_total",
            "Total cache fetches by outcome",
            ["namespace", "result"],
            registry=self.registry
        )

        self._metrics["cache_evictions_total"] = Counter(
            "cache_evictions_total",
            "Total evicted cache entries",
            registry=self.registry
        )

        self._metrics["cache_entries"] = Gauge(
            "cache_entries",
            "Number of cache entries",
            registry=self.registry
        )

    def _setup_session_metrics(self):
        """Set up session sync metrics."""
        self._metrics["session_syncs_total"] = Counter(
            "session_syncs_total",
            "Total identity sync attempts by outcome",
            ["result"],
            registry=self.registry
        )

    def get_sample_value(self, name: str, **labels) -> Optional[float]:
        """Read a sample back from the registry."""
        return self.registry.get_sample_value(name, labels)

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self.increment_counter(
            "http_requests_total",
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        )
        self.observe_histogram("http_request_duration_seconds", duration, method=method, endpoint=endpoint)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        self.increment_counter("errors_total", error_type=error_type, service=service or self.service_name)

    def increment_counter(self, metric_name: str, amount: float = 1.0, **labels):
        """Increment a counter metric."""
        self._apply(metric_name, "inc", amount, labels)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        self._apply(metric_name, "set", value, labels)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        self._apply(metric_name, "observe", value, labels)

    def _apply(self, metric_name: str, op: str, value: float, labels: Dict[str, Any]):
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        try:
            with self._lock:
                target = metric.labels(**labels) if labels else metric
                getattr(target, op)(value)
        except Exception as exc:  # pragma: no cover - metrics failures never break callers
            self.logger.debug("Failed to record metric", metric=metric_name, error=str(exc))


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a client component."""
    return MetricsCollector(service_name, registry)
