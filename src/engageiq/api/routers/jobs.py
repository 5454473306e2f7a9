"""Job queue endpoints.

Provides endpoints for:
- Per-queue job counts
- Triggering account syncs for a user
- Inspecting a job by id
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from engageiq.api.deps import ServicesDep
from engageiq.jobs.payloads import QueueName, payload_to_dict
from engageiq.jobs.queue import Job

router = APIRouter(prefix="/jobs", tags=["jobs"])


class JobResponse(BaseModel):
    """Job details response."""

    id: str
    queue: str
    status: str
    payload: dict[str, Any]
    priority: int
    attempts: int
    max_attempts: int
    created_at: float
    ready_at: float | None = None
    started_at: float | None = None
    finished_at: float | None = None
    result: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobResponse:
        return cls(
            id=job.id,
            queue=job.queue.value,
            status=job.status.value,
            payload=payload_to_dict(job.payload),
            priority=job.priority,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            created_at=job.created_at,
            ready_at=job.ready_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            result=job.result,
            error=job.error,
        )


class SyncResponse(BaseModel):
    user_id: str
    jobs: list[JobResponse]


@router.get("/stats")
async def queue_stats(services: ServicesDep) -> dict[str, dict[str, int]]:
    return await services.jobs.get_queue_stats()


@router.post("/sync/{user_id}", status_code=202)
async def sync_user(
    user_id: str, services: ServicesDep, platform: str | None = None
) -> SyncResponse:
    """Enqueue a sync job for each of the user's linked accounts."""
    accounts = await services.store.list_accounts(user_id, platform)
    if not accounts:
        raise HTTPException(status_code=404, detail=f"No linked accounts for user {user_id}")

    jobs = [
        await services.jobs.add_data_sync_job(user_id, account.platform, account.id)
        for account in accounts
    ]
    return SyncResponse(user_id=user_id, jobs=[JobResponse.from_job(j) for j in jobs])


@router.get("/{queue}/{job_id}")
async def get_job(queue: QueueName, job_id: str, services: ServicesDep) -> JobResponse:
    job = await services.jobs.get_job(queue, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return JobResponse.from_job(job)
