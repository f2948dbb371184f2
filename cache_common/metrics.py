"""
Shared metrics configuration for the resilient cache service.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest

from cache_common.events import CacheEvent, EventType

CONNECTION_STATES = (
    "disconnected",
    "connecting",
    "connected",
    "reconnecting",
    "permanently_failed",
    "closed",
)


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances (for
    example in tests) never clash on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

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
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._setup_cache_metrics()

    def _setup_cache_metrics(self):
        """Set up cache client metrics."""
        self._metrics["connection_state"] = Gauge(
            "cache_connection_state",
            "1 for the current remote-store connection state, 0 otherwise",
            ["state"],
            registry=self.registry
        )
        for state in CONNECTION_STATES:
            self._metrics["connection_state"].labels(state=state).set(0)

        self._metrics["reconnect_attempts_total"] = Counter(
            "cache_reconnect_attempts_total",
            "Total scheduled reconnect attempts",
            registry=self.registry
        )

        self._metrics["cache_operations_total"] = Counter(
            "cache_operations_total",
            "Total cache operations",
            ["operation", "outcome", "source"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def set_connection_state(self, state: str):
        """Flip the connection state gauge to ``state``."""
        with self._lock:
            for known in CONNECTION_STATES:
                self._metrics["connection_state"].labels(state=known).set(1 if known == state else 0)

    def record_operation(self, operation: str, outcome: str, source: str):
        """Record a cache operation outcome."""
        self._metrics["cache_operations_total"].labels(
            operation=operation,
            outcome=outcome,
            source=source
        ).inc()

    def observe_event(self, cache_event: CacheEvent) -> None:
        """Event listener feeding connection and operation metrics."""
        fields = cache_event.fields
        if cache_event.event is EventType.CONNECTION_STATE_CHANGED:
            self.set_connection_state(fields.get("current", ""))
            if fields.get("current") == "reconnecting":
                self._metrics["reconnect_attempts_total"].inc()
        elif cache_event.event is EventType.OPERATION_SUCCEEDED:
            self.record_operation(fields.get("operation", "unknown"), "success", fields.get("source", "remote"))
        elif cache_event.event is EventType.OPERATION_FAILED:
            self.record_operation(fields.get("operation", "unknown"), "failure", fields.get("source", "none"))

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
