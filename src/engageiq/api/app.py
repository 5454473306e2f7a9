"""FastAPI application factory.

Creates the application with:
- Health, cache, job and metrics routers
- Response caching, cache invalidation and cache stats middleware
- Lifecycle management for the cache sweeper, Redis and (optionally) workers
- Prometheus metrics and structured logging
- ORJSON for fast JSON serialization
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, ORJSONResponse

from engageiq.api.middleware import (
    CacheInvalidationMiddleware,
    CacheRule,
    CacheStatsMiddleware,
    CorrelationMiddleware,
    ResponseCacheMiddleware,
    analytics_rule,
    smart_rule,
    social_rule,
    user_rule,
)
from engageiq.api.routers import cache as cache_router
from engageiq.api.routers import health
from engageiq.api.routers import jobs as jobs_router
from engageiq.api.routers import metrics as metrics_router
from engageiq.config import Settings
from engageiq.config import settings as default_settings
from engageiq.errors import QueueBackendError, QueueClosedError
from engageiq.observability import configure_logging
from engageiq.observability.metrics import MetricsMiddleware, get_metrics
from engageiq.services import Services

logger = logging.getLogger(__name__)

DEFAULT_CACHE_RULES: tuple[CacheRule, ...] = (
    analytics_rule("/analytics"),
    social_rule("/social"),
    user_rule("/users"),
    smart_rule("/reports", strategy="moderate"),
)

# Invalidated after any successful mutating request
DEFAULT_INVALIDATION_PATTERNS = ("user:{user_id}:*", "analytics:{user_id}:*")


async def queue_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc) or type(exc).__name__})


def create_app(
    config: Settings | None = None,
    services: Services | None = None,
    cache_rules: Sequence[CacheRule] = DEFAULT_CACHE_RULES,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings (defaults to the environment)
        services: Prebuilt services; built from ``config`` when omitted
        cache_rules: Which GET routes the response cache serves
    """
    config = config or default_settings
    services = services or Services.build(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Start the services on startup, close them on shutdown."""
        configure_logging(json_format=config.env != "dev", level=config.log_level)
        get_metrics()

        logger.info(f"Starting {config.app_name} ({config.env})")
        await services.start(run_workers=config.api_run_workers)

        yield

        logger.info(f"Shutting down {config.app_name}")
        await services.close()

    app = FastAPI(
        title="EngageIQ",
        description="Two-tier response cache and background jobs for social analytics",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.services = services

    # Innermost first: caching sees requests after correlation and metrics
    app.add_middleware(ResponseCacheMiddleware, cache=services.cache, rules=cache_rules)
    app.add_middleware(
        CacheInvalidationMiddleware,
        cache=services.cache,
        patterns=DEFAULT_INVALIDATION_PATTERNS,
    )
    app.add_middleware(CacheStatsMiddleware, cache=services.cache)
    if config.enable_metrics:
        app.add_middleware(MetricsMiddleware)
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(QueueBackendError, queue_unavailable_handler)
    app.add_exception_handler(QueueClosedError, queue_unavailable_handler)

    app.include_router(health.router)
    app.include_router(cache_router.router)
    app.include_router(jobs_router.router)
    app.include_router(metrics_router.router)

    return app
