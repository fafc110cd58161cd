"""Job runner: bounded background execution with handles and status polling."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from qachatops.executor.artifact_recorder import new_job_id
from qachatops.executor.executor import Executor, failed_result
from qachatops.models.test_plan import TestPlan, TestRequest
from qachatops.models.test_result import TestExecutionResult

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass
class JobHandle:
    job_id: str
    request: TestRequest
    plan: TestPlan
    status: JobStatus = JobStatus.QUEUED
    submitted_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    result: Optional[TestExecutionResult] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None

    @property
    def done(self) -> bool:
        return self.status.is_terminal

    async def wait(self) -> TestExecutionResult:
        if self.task is not None and not self.task.done():
            await asyncio.wait({self.task})
        if self.result is None:
            raise RuntimeError(f"Job {self.job_id} has no result")
        return self.result


class JobRunner:
    """Runs submitted jobs in the background, at most ``max_concurrent_jobs`` at a time.

    ``submit`` returns immediately with a handle; callers poll ``status`` or
    await ``wait``. Every submitted job ends in a terminal status with a
    result, even if the executor itself raises.

    Finished handles stay queryable until ``forget`` is called or, when
    ``max_retained_jobs`` is set, until newer finished jobs push them out
    (oldest submission first). Callers holding a handle can still ``wait`` on it.
    """

    def __init__(
        self,
        executor: Executor,
        max_concurrent_jobs: int = 2,
        on_complete: Optional[Callable[[JobHandle], None]] = None,
        max_retained_jobs: Optional[int] = None,
    ):
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        if max_retained_jobs is not None and max_retained_jobs < 0:
            raise ValueError("max_retained_jobs must not be negative")
        self.executor = executor
        self.max_concurrent_jobs = max_concurrent_jobs
        self.max_retained_jobs = max_retained_jobs
        self.on_complete = on_complete
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._jobs: dict[str, JobHandle] = {}

    def submit(self, request: TestRequest, plan: TestPlan) -> JobHandle:
        """Queue a job. Must be called from a running event loop."""
        job_id = new_job_id()
        while job_id in self._jobs:
            job_id = new_job_id()
        handle = JobHandle(job_id=job_id, request=request, plan=plan)
        self._jobs[job_id] = handle
        handle.task = asyncio.create_task(self._run(handle), name=f"job-{job_id}")
        logger.info("Queued job %s (%s)", job_id, request.url)
        return handle

    def get(self, job_id: str) -> Optional[JobHandle]:
        return self._jobs.get(job_id)

    def status(self, job_id: str) -> JobStatus:
        handle = self._jobs.get(job_id)
        if handle is None:
            raise KeyError(f"Unknown job: {job_id}")
        return handle.status

    def cancel(self, job_id: str) -> bool:
        """Ask a job to stop. Returns False if it is unknown or already finished."""
        handle = self._jobs.get(job_id)
        if handle is None or handle.done:
            return False
        logger.info("Cancelling job %s", job_id)
        handle.cancel_event.set()
        return True

    def forget(self, job_id: str) -> bool:
        """Drop a finished job's handle. Returns False if it is unknown or still active."""
        handle = self._jobs.get(job_id)
        if handle is None or not handle.done:
            return False
        del self._jobs[job_id]
        logger.debug("Forgot job %s", job_id)
        return True

    def _prune_finished(self) -> None:
        if self.max_retained_jobs is None:
            return
        finished = [h for h in self._jobs.values() if h.done]
        excess = len(finished) - self.max_retained_jobs
        for handle in finished[:max(0, excess)]:
            del self._jobs[handle.job_id]

    async def wait(self, job_id: str) -> TestExecutionResult:
        handle = self._jobs.get(job_id)
        if handle is None:
            raise KeyError(f"Unknown job: {job_id}")
        return await handle.wait()

    async def drain(self) -> list[TestExecutionResult]:
        """Wait for every submitted job and return results in submission order."""
        return [await h.wait() for h in list(self._jobs.values())]

    def stats(self) -> dict[str, int]:
        counts = {s.value: 0 for s in JobStatus}
        for handle in self._jobs.values():
            counts[handle.status.value] += 1
        counts["total"] = len(self._jobs)
        return counts

    async def _run(self, handle: JobHandle) -> None:
        try:
            async with self._semaphore:
                if handle.cancel_event.is_set():
                    handle.result = failed_result(
                        handle.job_id, handle.request, f"Job {handle.job_id} cancelled before start",
                    )
                    handle.status = JobStatus.CANCELLED
                    return

                handle.status = JobStatus.RUNNING
                handle.started_at = time.time()
                logger.debug("Job %s started", handle.job_id)
                result = await self.executor.execute(
                    handle.request, handle.plan,
                    cancel_event=handle.cancel_event, job_id=handle.job_id,
                )
                handle.result = result
                if result.success:
                    handle.status = JobStatus.SUCCEEDED
                elif handle.cancel_event.is_set():
                    handle.status = JobStatus.CANCELLED
                else:
                    handle.status = JobStatus.FAILED
        except asyncio.CancelledError:
            handle.result = failed_result(handle.job_id, handle.request, f"Job {handle.job_id} cancelled")
            handle.status = JobStatus.CANCELLED
            raise
        except Exception as e:
            logger.error("Job %s crashed: %s", handle.job_id, e)
            handle.result = failed_result(handle.job_id, handle.request, str(e) or type(e).__name__)
            handle.status = JobStatus.FAILED
        finally:
            handle.finished_at = time.time()
            logger.info("Job %s finished: %s", handle.job_id, handle.status.value)
            if self.on_complete is not None:
                try:
                    self.on_complete(handle)
                except Exception as e:
                    logger.warning("Completion callback failed for job %s: %s", handle.job_id, e)
            self._prune_finished()
