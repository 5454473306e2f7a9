"""Health check endpoints.

- /health/live - Liveness check (always OK while the process runs)
- /health      - Cache round trip and job queue reachability
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from engageiq.api.deps import ServicesDep
from engageiq.cache.service import CacheService
from engageiq.jobs.service import JobQueueService

router = APIRouter(tags=["health"])

CHECK_TIMEOUT = 5.0


class HealthStatus(str, Enum):
    """Health check status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    latency_ms: float
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            result["message"] = self.message
        return result


async def check_cache(cache: CacheService) -> ComponentHealth:
    """Round trip through the remote cache tier."""
    start = time.monotonic()
    try:
        report = await asyncio.wait_for(cache.health_check(), timeout=CHECK_TIMEOUT)
        status = HealthStatus(report["status"])
        message = report["details"]
    except asyncio.TimeoutError:
        status, message = HealthStatus.UNHEALTHY, "Cache check timed out"
    return ComponentHealth(
        name="cache",
        status=status,
        latency_ms=(time.monotonic() - start) * 1000,
        message=message,
    )


async def check_queues(jobs: JobQueueService) -> ComponentHealth:
    """Read the queue counts from the backend."""
    start = time.monotonic()
    try:
        await asyncio.wait_for(jobs.get_queue_stats(), timeout=CHECK_TIMEOUT)
        status, message = HealthStatus.HEALTHY, None
    except asyncio.TimeoutError:
        status, message = HealthStatus.UNHEALTHY, "Queue check timed out"
    except Exception as e:
        status, message = HealthStatus.UNHEALTHY, str(e)
    return ComponentHealth(
        name="queues",
        status=status,
        latency_ms=(time.monotonic() - start) * 1000,
        message=message,
    )


@router.get("/health/live")
async def liveness() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health")
async def full_health(services: ServicesDep) -> JSONResponse:
    """Full health report.

    A degraded cache still serves traffic (200); an unreachable backend
    returns 503.
    """
    components = await asyncio.gather(check_cache(services.cache), check_queues(services.jobs))

    overall = max((c.status for c in components), key=_SEVERITY.__getitem__)
    return JSONResponse(
        status_code=503 if overall == HealthStatus.UNHEALTHY else 200,
        content={
            "status": overall.value,
            "checks": {c.name: c.to_dict() for c in components},
        },
    )
