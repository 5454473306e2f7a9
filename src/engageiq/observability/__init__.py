"""Observability for the cache and job services.

Provides metrics and structured logging:
- Prometheus metrics for cache tiers and job outcomes
- Request/response instrumentation
- JSON structured logging with request and job correlation
"""

from engageiq.observability.logging import (
    LogContext,
    configure_logging,
    get_logger,
    job_id_var,
    queue_name_var,
    request_id_var,
    user_id_var,
)
from engageiq.observability.metrics import (
    MetricsMiddleware,
    get_metrics,
    metrics_registry,
)

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "LogContext",
    "request_id_var",
    "job_id_var",
    "queue_name_var",
    "user_id_var",
    # Metrics
    "metrics_registry",
    "get_metrics",
    "MetricsMiddleware",
]
