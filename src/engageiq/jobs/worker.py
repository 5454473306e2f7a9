"""Background worker for processing queued jobs.

Provides a worker that:
- Claims jobs from one named queue in priority order
- Runs a fixed number of consumer loops (the queue's concurrency ceiling)
- Retries failed jobs with the queue's backoff, or defers them on rate limits
- Optionally bounds each job with an execution timeout
- Heartbeats running jobs so stalled-job recovery only takes dead claims
- Supports graceful shutdown

Example:
    worker = QueueWorker(queue, handle_sync, concurrency=5)
    await worker.start()
    ...
    await worker.stop(timeout=30)

    # Or inline, for tests and one-shot runs
    processed = await worker.drain()
"""

from __future__ import annotations

import asyncio
import logging
import time
from types import TracebackType
from typing import Any, Awaitable, Callable

from engageiq.errors import JobDeferred, PermanentJobError
from engageiq.jobs.payloads import QueueName
from engageiq.jobs.queue import Job, JobQueue
from engageiq.observability.logging import LogContext
from engageiq.observability.metrics import record_job

logger = logging.getLogger(__name__)

# Type alias for job handlers
JobHandler = Callable[[Job], Awaitable[dict[str, Any] | None]]


class QueueWorker:
    """Consumes one queue with a bounded number of concurrent jobs.

    Each consumer loop processes one job at a time, so at most
    ``concurrency`` jobs from this queue run simultaneously in this process.
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: JobHandler,
        concurrency: int | None = None,
        poll_interval: float = 1.0,
        job_timeout: float | None = None,
        heartbeat_interval: float = 30.0,
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.concurrency = concurrency or queue.config.concurrency
        self.poll_interval = poll_interval
        self.job_timeout = job_timeout
        self.heartbeat_interval = heartbeat_interval
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._active = 0

    @property
    def name(self) -> str:
        return self.queue.name.value

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_jobs(self) -> int:
        """Number of jobs currently executing."""
        return self._active

    async def start(self) -> None:
        """Start the consumer loops."""
        if self._running:
            return

        self._running = True
        self._shutdown_event.clear()
        self._tasks = [
            asyncio.create_task(self._consume(slot), name=f"{self.name}-worker-{slot}")
            for slot in range(self.concurrency)
        ]
        logger.info(f"Worker started: {self.name} (concurrency {self.concurrency})")

    async def stop(self, timeout: float | None = None) -> None:
        """Stop claiming jobs and wait for active ones to finish.

        Jobs still running after ``timeout`` seconds are cancelled; their
        claims stay in the active set until stalled-job recovery returns them.
        """
        if not self._running and not self._tasks:
            return

        logger.info(f"Stopping worker: {self.name}")
        self._running = False
        self._shutdown_event.set()

        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Worker {self.name}: cancelled {len(pending)} job(s) on timeout")
                await asyncio.gather(*pending, return_exceptions=True)
            self._tasks = []

        logger.info(f"Worker stopped: {self.name}")

    async def _consume(self, slot: int) -> None:
        """Single consumer loop."""
        while self._running:
            try:
                job = await self.queue.claim()
            except Exception as e:
                logger.error(f"Error claiming jobs on {self.name}: {e}")
                job = None

            if job is None:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue

            try:
                await self._process_job(job)
            except Exception as e:
                # Bookkeeping failed (backend down); the claim is recovered later
                logger.error(f"Error recording outcome of job {job.id}: {e}")

    async def _heartbeat(self, job: Job) -> None:
        """Keep the claim fresh so stalled-job recovery leaves it alone."""
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.queue.heartbeat(job)
            except Exception as e:
                logger.warning(f"Heartbeat failed for job {job.id}: {e}")

    async def _run_handler(self, job: Job) -> dict[str, Any] | None:
        heartbeat = asyncio.create_task(self._heartbeat(job), name=f"{job.id}-heartbeat")
        try:
            if self.job_timeout is None:
                return await self.handler(job)
            return await asyncio.wait_for(self.handler(job), timeout=self.job_timeout)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)

    async def _process_job(self, job: Job) -> None:
        """Run the handler for a claimed job and record the outcome.

        Args:
            job: Job in the active state
        """
        self._active += 1
        start = time.perf_counter()

        with LogContext(job_id=job.id, queue_name=self.name):
            try:
                logger.info(f"Processing job: {job.id}")
                result = await self._run_handler(job)
            except JobDeferred as e:
                await self.queue.defer(job, e.delay, e.reason)
                record_job(self.name, "deferred")
            except PermanentJobError as e:
                logger.error(f"Job {job.id} cannot succeed: {e}")
                await self.queue.fail(job, str(e), retry=False)
                record_job(self.name, "failed", time.perf_counter() - start)
            except asyncio.TimeoutError as e:
                if self.job_timeout is not None:
                    error = f"Job timed out after {self.job_timeout}s"
                else:
                    error = str(e) or type(e).__name__
                retried = await self.queue.fail(job, error, retry=True)
                record_job(self.name, "retried" if retried else "failed")
            except Exception as e:
                retried = await self.queue.fail(job, str(e) or type(e).__name__, retry=True)
                record_job(self.name, "retried" if retried else "failed")
            else:
                await self.queue.complete(job, result)
                record_job(self.name, "completed", time.perf_counter() - start)
            finally:
                self._active -= 1

    async def process_next(self) -> Job | None:
        """Claim and process one job inline.

        Returns:
            The processed job, or None if nothing was ready
        """
        job = await self.queue.claim()
        if job is None:
            return None
        await self._process_job(job)
        return job

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process ready jobs inline until the queue has none left.

        Useful for testing or cron-like execution.

        Returns:
            Number of jobs processed
        """
        count = 0
        while max_jobs is None or count < max_jobs:
            if await self.process_next() is None:
                break
            count += 1
        return count

    async def __aenter__(self) -> "QueueWorker":
        """Context manager entry."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit."""
        await self.stop()


def job_handler(queue: QueueName) -> Callable[[JobHandler], JobHandler]:
    """Decorator to mark a function as the handler for a queue.

    Example:
        @job_handler(QueueName.EMAIL)
        async def handle_email(job: Job) -> dict:
            ...

        # Later, register with the job service
        service.register_processor(QueueName.EMAIL, handle_email)
    """

    def decorator(func: JobHandler) -> JobHandler:
        func.__job_queue__ = queue  # type: ignore[attr-defined]
        return func

    return decorator
