"""
Prometheus metrics for the rollout services.

Each collector owns its registry, so several services (or tests) can
build collectors in one process without clashing on metric names.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Sequence, Tuple, Type, Union

from prometheus_client import Counter, Histogram, Info, CollectorRegistry

Metric = Union[Counter, Histogram]

# name -> (type, help, labels)
COMMON_METRICS: Dict[str, Tuple[Type[Metric], str, Sequence[str]]] = {
    "http_requests_total": (Counter, "Total HTTP requests", ("method", "endpoint", "status_code")),
    "http_request_duration_seconds": (Histogram, "HTTP request duration in seconds", ("method", "endpoint")),
    "health_check_total": (Counter, "Total health check requests", ("status",)),
    "errors_total": (Counter, "Total errors", ("error_type", "service")),
}

ROLLOUT_METRICS: Dict[str, Tuple[Type[Metric], str, Sequence[str]]] = {
    "eligibility_decisions_total": (Counter, "Eligibility decisions by outcome", ("decision",)),
    "eligibility_evaluation_duration_seconds": (Histogram, "Eligibility evaluation duration in seconds", ()),
    "experiments_total": (Counter, "Experiment executions by outcome", ("experiment", "outcome")),
    "observation_duration_seconds": (
        Histogram, "Control and candidate execution duration in seconds", ("experiment", "role")
    ),
    "candidate_errors_total": (Counter, "Candidate errors contained by the runner", ("experiment",)),
    "publication_failures_total": (Counter, "Result publication failures", ("publisher",)),
}

SERVICE_METRICS = {
    "rollout": ROLLOUT_METRICS,
}


class MetricsCollector:
    """Named counters and histograms for one service.

    Recording into a metric the service does not declare is a no-op, so
    shared components can record unconditionally.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Metric] = {}

        info = Info("service_info", "Service information", registry=self.registry)
        info.info({"service": service_name, "version": "1.0.0"})

        definitions = dict(COMMON_METRICS)
        definitions.update(SERVICE_METRICS.get(service_name, {}))
        for name, (metric_type, documentation, labels) in definitions.items():
            self._metrics[name] = metric_type(name, documentation, list(labels), registry=self.registry)

    def get_metric(self, name: str) -> Optional[Metric]:
        return self._metrics.get(name)

    def get_sample_value(self, name: str, **labels) -> Optional[float]:
        """Read a sample back from this collector's registry."""
        return self.registry.get_sample_value(name, labels)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.increment_counter("http_requests_total", method=method, endpoint=endpoint, status_code=str(status_code))
        self.observe_histogram("http_request_duration_seconds", duration, method=method, endpoint=endpoint)

    def record_health_check(self, status: str):
        self.increment_counter("health_check_total", status=status)

    def record_error(self, error_type: str, service: Optional[str] = None):
        self.increment_counter("errors_total", error_type=error_type, service=service or self.service_name)

    @contextmanager
    def time_operation(self, metric_name: str, **labels) -> Iterator[None]:
        """Observe the wall time of the block into a histogram."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe_histogram(metric_name, time.perf_counter() - started, **labels)

    def increment_counter(self, metric_name: str, **labels):
        metric = self._child(metric_name, labels)
        if metric is not None:
            metric.inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        metric = self._child(metric_name, labels)
        if metric is not None:
            metric.observe(value)

    def _child(self, metric_name: str, labels: Dict[str, Any]):
        metric = self._metrics.get(metric_name)
        if metric is None:
            return None
        return metric.labels(**labels) if labels else metric


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Build a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
