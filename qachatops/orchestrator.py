"""Host facade: wires config, artifact layout, executor and job runner together."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path

from qachatops.executor.artifact_recorder import ArtifactLayout
from qachatops.executor.executor import Executor
from qachatops.jobs import JobHandle, JobRunner
from qachatops.models.config import EngineConfig
from qachatops.models.test_plan import TestJob, TestPlan, TestRequest
from qachatops.models.test_result import TestExecutionResult

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs jobs for a host process and persists their results."""

    def __init__(self, config: EngineConfig):
        self.config = config
        self.layout = ArtifactLayout(Path(config.artifacts_root))
        self.layout.ensure()
        self.executor = Executor(config, self.layout)

    def run_job(self, request: TestRequest, plan: TestPlan) -> TestExecutionResult:
        """Execute one job to completion."""
        return asyncio.run(self._run_job(request, plan))

    async def _run_job(self, request: TestRequest, plan: TestPlan) -> TestExecutionResult:
        result = await self.executor.execute(request, plan)
        self._save_result(result)
        return result

    def run_batch(self, jobs: list[TestJob]) -> list[TestExecutionResult]:
        """Execute several jobs concurrently, bounded by ``max_concurrent_jobs``."""
        return asyncio.run(self._run_batch(jobs))

    async def _run_batch(self, jobs: list[TestJob]) -> list[TestExecutionResult]:
        start = time.time()
        logger.info("=== Running %d jobs (max %d concurrent) ===",
                    len(jobs), self.config.max_concurrent_jobs)
        runner = JobRunner(
            self.executor,
            max_concurrent_jobs=self.config.max_concurrent_jobs,
            on_complete=self._on_job_complete,
        )
        handles = [runner.submit(job.request, job.plan) for job in jobs]
        results = [await h.wait() for h in handles]
        stats = runner.stats()
        logger.info("=== Batch complete in %.1fs: %d succeeded, %d failed, %d cancelled ===",
                    time.time() - start, stats["succeeded"], stats["failed"], stats["cancelled"])
        return results

    def _on_job_complete(self, handle: JobHandle) -> None:
        if handle.result is not None:
            self._save_result(handle.result)

    def _save_result(self, result: TestExecutionResult) -> Path:
        """Persist a result next to the job's artifacts."""
        path = self.layout.result_path(result.job_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Saving result to %s", path)
        with open(path, "w") as f:
            json.dump(result.model_dump(mode="json", by_alias=True), f, indent=2)
        return path

    def load_result(self, job_id: str) -> TestExecutionResult:
        path = self.layout.result_path(job_id)
        if not path.exists():
            raise FileNotFoundError(f"No result found for job {job_id}")
        with open(path) as f:
            data = json.load(f)
        return TestExecutionResult.model_validate(data)

    def list_screenshots(self, job_id: str) -> list[str]:
        return [str(p) for p in self.layout.screenshots_for(job_id)]
