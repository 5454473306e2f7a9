"""Prometheus metrics for the cache and job services.

Provides metrics collection and exposure:
- HTTP request metrics (latency, count)
- Cache metrics (hits per tier, misses, remote errors)
- Job metrics (outcomes per queue, execution time)

Usage:
    from engageiq.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.jobs_total.labels(queue="data-sync", outcome="completed").inc()
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from engageiq.config import settings

if TYPE_CHECKING:
    from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

# Path segments that look like identifiers (numbers, uuids, long tokens)
_ID_SEGMENT = re.compile(r"^(\d+|[0-9a-fA-F-]{32,36}|[A-Za-z0-9_-]{20,})$")


class NoOpMetric:
    """No-op metric for when metrics are disabled."""

    def labels(self, **kwargs: Any) -> "NoOpMetric":
        """Return self for chaining."""
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def dec(self, amount: float = 1) -> None:
        pass

    def set(self, value: float) -> None:
        pass

    def observe(self, value: float) -> None:
        pass


_NOOP = NoOpMetric()


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    # HTTP metrics
    http_requests_total: Any = _NOOP
    http_request_duration_seconds: Any = _NOOP

    # Cache metrics
    cache_hits_total: Any = _NOOP
    cache_misses_total: Any = _NOOP
    cache_errors_total: Any = _NOOP

    # Job metrics
    jobs_total: Any = _NOOP
    job_duration_seconds: Any = _NOOP

    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not settings.enable_metrics:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        self._registry = REGISTRY

        self.http_requests_total = Counter(
            "engageiq_http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
        )

        self.http_request_duration_seconds = Histogram(
            "engageiq_http_request_duration_seconds",
            "HTTP request latency in seconds",
            ["method", "path"],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        self.cache_hits_total = Counter(
            "engageiq_cache_hits_total",
            "Cache hits",
            ["tier"],
        )

        self.cache_misses_total = Counter(
            "engageiq_cache_misses_total",
            "Cache misses (both tiers)",
        )

        self.cache_errors_total = Counter(
            "engageiq_cache_errors_total",
            "Remote cache tier errors",
            ["operation"],
        )

        self.jobs_total = Counter(
            "engageiq_jobs_total",
            "Job executions by outcome",
            ["queue", "outcome"],
        )

        self.job_duration_seconds = Histogram(
            "engageiq_job_duration_seconds",
            "Job execution time in seconds",
            ["queue"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for HTTP request count and latency."""

    def __init__(self, app: "ASGIApp") -> None:
        super().__init__(app)
        self.metrics = get_metrics()

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        if request.url.path in ("/health", "/metrics"):
            return await call_next(request)

        method = request.method
        path = normalize_path(request.url.path)
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.perf_counter() - start_time
            self.metrics.http_requests_total.labels(
                method=method, path=path, status=status_code
            ).inc()
            self.metrics.http_request_duration_seconds.labels(
                method=method, path=path
            ).observe(duration)


def normalize_path(path: str) -> str:
    """Replace identifier segments with a placeholder to bound label cardinality.

    Examples:
        /jobs/sync/42 -> /jobs/sync/{id}
    """
    parts = [
        "{id}" if _ID_SEGMENT.match(part) else part for part in path.strip("/").split("/") if part
    ]
    return "/" + "/".join(parts)


def record_cache_hit(tier: str) -> None:
    """Record a cache hit on the given tier (local or remote)."""
    get_metrics().cache_hits_total.labels(tier=tier).inc()


def record_cache_miss() -> None:
    """Record a miss on both tiers."""
    get_metrics().cache_misses_total.inc()


def record_cache_error(operation: str) -> None:
    """Record a swallowed remote-tier failure."""
    get_metrics().cache_errors_total.labels(operation=operation).inc()


def record_job(queue: str, outcome: str, duration: float | None = None) -> None:
    """Record a job outcome.

    Args:
        queue: Queue name
        outcome: completed, retried, deferred or failed
        duration: Execution time in seconds
    """
    metrics = get_metrics()
    metrics.jobs_total.labels(queue=queue, outcome=outcome).inc()
    if duration is not None:
        metrics.job_duration_seconds.labels(queue=queue).observe(duration)
