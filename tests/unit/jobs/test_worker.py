"""Tests for job worker functionality."""

import asyncio
from typing import Any

import pytest

from engageiq.errors import JobDeferred, PermanentJobError
from engageiq.jobs.config import DEFAULT_QUEUE_CONFIGS
from engageiq.jobs.payloads import EmailJob, QueueName
from engageiq.jobs.queue import Job, JobQueue, JobStatus
from engageiq.jobs.worker import QueueWorker, job_handler
from engageiq.observability.logging import job_id_var, queue_name_var
from tests.fakes import FakeClock, FakeRedis


def email(n: int = 0) -> EmailJob:
    return EmailJob(to=f"user{n}@example.com", subject="Hi", template="welcome")


@pytest.fixture
def queue(redis: FakeRedis, clock: FakeClock) -> JobQueue:
    config = DEFAULT_QUEUE_CONFIGS[QueueName.EMAIL]
    return JobQueue(redis, config, clock=clock)  # type: ignore[arg-type]


async def wait_for_counts(queue: JobQueue, key: str, expected: int) -> None:
    for _ in range(200):
        if (await queue.counts())[key] == expected:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"{key} never reached {expected}: {await queue.counts()}")


class TestProcessing:
    async def test_success_completes_job(self, queue: JobQueue) -> None:
        async def handler(job: Job) -> dict[str, Any]:
            return {"sent": job.payload.to}  # type: ignore[union-attr]

        await queue.add(email(1), job_id="j")
        worker = QueueWorker(queue, handler)

        assert await worker.drain() == 1

        job = await queue.get_job("j")
        assert job is not None
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"sent": "user1@example.com"}

    async def test_handler_error_retries(self, queue: JobQueue) -> None:
        async def handler(job: Job) -> None:
            raise RuntimeError("smtp unavailable")

        await queue.add(email(), job_id="j")
        await QueueWorker(queue, handler).process_next()

        job = await queue.get_job("j")
        assert job is not None
        assert job.status == JobStatus.DELAYED
        assert job.attempts == 1
        assert job.error == "smtp unavailable"

    async def test_permanent_error_fails_immediately(self, queue: JobQueue) -> None:
        async def handler(job: Job) -> None:
            raise PermanentJobError("bad address")

        await queue.add(email(), job_id="j")
        await QueueWorker(queue, handler).process_next()

        job = await queue.get_job("j")
        assert job is not None
        assert job.status == JobStatus.FAILED
        assert job.attempts == 1

    async def test_deferred_job_keeps_attempt(self, queue: JobQueue, clock: FakeClock) -> None:
        async def handler(job: Job) -> None:
            raise JobDeferred(120, reason="provider throttled")

        await queue.add(email(), job_id="j")
        await QueueWorker(queue, handler).process_next()

        job = await queue.get_job("j")
        assert job is not None
        assert job.status == JobStatus.DELAYED
        assert job.attempts == 0
        assert job.deferrals == 1
        assert job.ready_at == clock() + 120

    async def test_timeout_counts_as_failure(self, queue: JobQueue) -> None:
        async def handler(job: Job) -> None:
            await asyncio.sleep(5)

        await queue.add(email(), job_id="j")
        await QueueWorker(queue, handler, job_timeout=0.01).process_next()

        job = await queue.get_job("j")
        assert job is not None
        assert job.status == JobStatus.DELAYED
        assert "timed out" in (job.error or "")

    async def test_handler_timeout_error_without_job_timeout(self, queue: JobQueue) -> None:
        async def handler(job: Job) -> None:
            raise TimeoutError("read timed out on smtp socket")

        await queue.add(email(), job_id="j")
        await QueueWorker(queue, handler).process_next()

        job = await queue.get_job("j")
        assert job is not None
        assert job.status == JobStatus.DELAYED
        assert job.error == "read timed out on smtp socket"

    async def test_log_context_carries_job(self, queue: JobQueue) -> None:
        seen: dict[str, str] = {}

        async def handler(job: Job) -> None:
            seen["job_id"] = job_id_var.get()
            seen["queue"] = queue_name_var.get()

        await queue.add(email(), job_id="j")
        await QueueWorker(queue, handler).process_next()

        assert seen == {"job_id": "j", "queue": "email"}
        assert job_id_var.get() == ""

    async def test_drain_respects_max_jobs(self, queue: JobQueue) -> None:
        async def handler(job: Job) -> None:
            return None

        for n in range(3):
            await queue.add(email(n))

        assert await QueueWorker(queue, handler).drain(max_jobs=2) == 2
        assert (await queue.counts())["waiting"] == 1

    async def test_process_next_on_empty_queue(self, queue: JobQueue) -> None:
        async def handler(job: Job) -> None:
            return None

        assert await QueueWorker(queue, handler).process_next() is None


class TestLifecycle:
    async def test_start_processes_jobs_until_stopped(self, queue: JobQueue) -> None:
        done = asyncio.Event()

        async def handler(job: Job) -> None:
            done.set()

        worker = QueueWorker(queue, handler, concurrency=1, poll_interval=0.01)
        await worker.start()
        assert worker.is_running

        await queue.add(email(), job_id="j")
        await asyncio.wait_for(done.wait(), timeout=2)
        await worker.stop(timeout=1)

        assert not worker.is_running
        job = await queue.get_job("j")
        assert job is not None
        assert job.status == JobStatus.COMPLETED

    async def test_concurrency_is_bounded(self, queue: JobQueue) -> None:
        running = 0
        peak = 0

        async def handler(job: Job) -> None:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        for n in range(6):
            await queue.add(email(n))

        async with QueueWorker(queue, handler, concurrency=2, poll_interval=0.01):
            await wait_for_counts(queue, "completed", 6)

        assert peak == 2

    async def test_stop_waits_for_active_job(self, queue: JobQueue) -> None:
        started = asyncio.Event()

        async def handler(job: Job) -> None:
            started.set()
            await asyncio.sleep(0.05)

        await queue.add(email(), job_id="j")
        worker = QueueWorker(queue, handler, poll_interval=0.01)
        await worker.start()
        await asyncio.wait_for(started.wait(), timeout=2)

        await worker.stop(timeout=2)

        job = await queue.get_job("j")
        assert job is not None
        assert job.status == JobStatus.COMPLETED
        assert worker.active_jobs == 0

    async def test_stop_without_start(self, queue: JobQueue) -> None:
        async def handler(job: Job) -> None:
            return None

        await QueueWorker(queue, handler).stop()


class TestHeartbeat:
    async def test_running_job_is_not_recovered(self, queue: JobQueue, clock: FakeClock) -> None:
        """A slow job past the stalled cutoff still runs exactly once."""
        runs: list[str] = []
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(job: Job) -> None:
            runs.append(job.id)
            started.set()
            await release.wait()

        await queue.add(email(), job_id="slow")
        worker = QueueWorker(queue, handler, poll_interval=0.01, heartbeat_interval=0.01)
        await worker.start()
        await asyncio.wait_for(started.wait(), timeout=2)

        clock.advance(3601)
        await asyncio.sleep(0.05)

        assert await queue.recover_stalled(3600) == 0

        release.set()
        await wait_for_counts(queue, "completed", 1)
        await worker.stop(timeout=2)

        assert runs == ["slow"]
        counts = await queue.counts()
        assert counts["waiting"] == 0
        assert counts["active"] == 0

    async def test_claim_without_worker_is_recovered(
        self, queue: JobQueue, clock: FakeClock
    ) -> None:
        await queue.add(email(), job_id="orphan")
        await queue.claim()
        clock.advance(3601)

        assert await queue.recover_stalled(3600) == 1

    async def test_heartbeat_after_finish_does_not_reclaim(self, queue: JobQueue) -> None:
        await queue.add(email(), job_id="j")
        job = await queue.claim()
        assert job is not None
        await queue.complete(job)

        await queue.heartbeat(job)

        assert (await queue.counts())["active"] == 0


class TestJobHandlerDecorator:
    def test_marks_queue(self) -> None:
        @job_handler(QueueName.EMAIL)
        async def handle(job: Job) -> None:
            return None

        assert handle.__job_queue__ == QueueName.EMAIL  # type: ignore[attr-defined]
