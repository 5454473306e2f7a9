"""Cache inspection and invalidation endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from engageiq.api.deps import ServicesDep

router = APIRouter(prefix="/cache", tags=["cache"])


class InvalidateRequest(BaseModel):
    """Keys to drop; at least one selector is required."""

    pattern: str | None = Field(default=None, description="Glob pattern, e.g. 'user:42:*'")
    keys: list[str] = Field(default_factory=list, description="Exact keys")
    tags: list[str] = Field(default_factory=list, description="Invalidation tags")


@router.get("/stats")
async def cache_stats(services: ServicesDep) -> dict[str, Any]:
    return await services.cache.get_stats()


@router.post("/invalidate")
async def invalidate(request: InvalidateRequest, services: ServicesDep) -> dict[str, int]:
    if request.pattern is None and not request.keys and not request.tags:
        raise HTTPException(status_code=422, detail="Provide a pattern, keys or tags")

    removed = 0
    if request.pattern is not None:
        removed += await services.cache.invalidate(request.pattern)
    if request.keys:
        removed += await services.cache.invalidate_multiple(request.keys)
    if request.tags:
        removed += await services.cache.invalidate_tags(request.tags)
    return {"removed": removed}
