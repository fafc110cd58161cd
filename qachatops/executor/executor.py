"""Job executor: runs one test plan in its own Playwright session."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Optional, TypeVar

from playwright.async_api import Browser, Page, async_playwright

from qachatops.models.config import EngineConfig
from qachatops.models.test_plan import TestPlan, TestRequest
from qachatops.models.test_result import CleanupFailure, ExecutedStep, TestExecutionResult
from qachatops.url_utils import ensure_scheme, is_http_url
from qachatops.utils.browser_stealth import create_stealth_context, launch_stealth_browser

from .action_runner import execute_step
from .artifact_recorder import ArtifactLayout, ArtifactRecorder, new_job_id
from .finalizer import Finalizer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobCancelledError(Exception):
    """The job's cancel event fired before the plan finished."""


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def failed_result(
    job_id: str,
    request: TestRequest,
    error_message: str,
    started_at: str = "",
    duration_seconds: float = 0.0,
) -> TestExecutionResult:
    """A result for a job that never got to run its plan."""
    return TestExecutionResult(
        job_id=job_id,
        url=request.url,
        test_intent=request.test_intent,
        success=False,
        duration_seconds=duration_seconds,
        started_at=started_at or _utc_now(),
        completed_at=_utc_now(),
        error_message=error_message,
    )


async def _until_cancelled(awaitable: Awaitable[T], cancel_event: Optional[asyncio.Event], job_id: str) -> T:
    """Await ``awaitable`` unless ``cancel_event`` fires first."""
    if cancel_event is None:
        return await awaitable
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()
    if work in done:
        return work.result()
    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    raise JobCancelledError(f"Job {job_id} cancelled")


class Executor:
    """Executes a test plan against a live site using Playwright.

    Every call to ``execute`` gets its own browser, context and page; nothing
    is shared between jobs, so several executions may run concurrently.
    """

    def __init__(self, config: EngineConfig, layout: ArtifactLayout | None = None):
        self.config = config
        self.layout = layout or ArtifactLayout(Path(config.artifacts_root))
        self.layout.ensure()

    async def execute(
        self,
        request: TestRequest,
        plan: TestPlan,
        cancel_event: Optional[asyncio.Event] = None,
        job_id: Optional[str] = None,
    ) -> TestExecutionResult:
        """Execute a plan and return the aggregated result.

        Step failures and session faults are reported in the result, never
        raised. Artifact finalization runs exactly once on every path.
        """
        job_id = job_id or new_job_id()
        started_at = _utc_now()
        start_time = time.monotonic()
        logger.info("Starting job %s: %s on %s (%d steps)",
                    job_id, request.test_intent or plan.description, request.url, len(plan.steps))

        if not request.url.strip():
            logger.error("Job %s has no target URL", job_id)
            return failed_result(job_id, request, "Test request has no URL", started_at)
        if not is_http_url(ensure_scheme(request.url)):
            logger.error("Job %s has an invalid target URL: %s", job_id, request.url)
            return failed_result(job_id, request, f"Invalid URL: {request.url}", started_at)

        recorder = ArtifactRecorder(self.layout, job_id)
        recorder.video_dir.mkdir(parents=True, exist_ok=True)
        executed: list[ExecutedStep] = []
        error_message: Optional[str] = None
        cleanup_failures: list[CleanupFailure] = []

        try:
            async with async_playwright() as p:
                logger.debug("Launching stealth Chromium for job %s...", job_id)
                browser = await launch_stealth_browser(p, self.config.session)
                try:
                    error_message, cleanup_failures = await self._run_session(
                        browser, request, plan, recorder, executed, cancel_event,
                    )
                finally:
                    await self._close_browser(browser, job_id)
        except Exception as e:
            logger.error("Job %s could not run: %s", job_id, e)
            error_message = error_message or str(e) or type(e).__name__
            if recorder.video_dir.exists() and not recorder.video_path:
                try:
                    recorder.remove_video_dir()
                except OSError as cleanup_error:
                    logger.warning("Could not remove video dir for job %s: %s", job_id, cleanup_error)

        success = error_message is None and all(s.success or s.is_optional for s in executed)
        duration = time.monotonic() - start_time

        result = TestExecutionResult(
            job_id=job_id,
            url=request.url,
            test_intent=request.test_intent,
            success=success,
            duration_seconds=round(duration, 2),
            started_at=started_at,
            completed_at=_utc_now(),
            executed_steps=executed,
            screenshot_paths=list(recorder.screenshots),
            trace_path=recorder.trace_path,
            video_path=recorder.video_path,
            error_message=error_message,
            cleanup_failures=cleanup_failures,
        )
        logger.info("Job %s %s: %d/%d steps succeeded (%.1fs)",
                    job_id, "PASSED" if success else "FAILED",
                    result.steps_passed, len(executed), duration)
        return result

    async def _run_session(
        self,
        browser: Browser,
        request: TestRequest,
        plan: TestPlan,
        recorder: ArtifactRecorder,
        executed: list[ExecutedStep],
        cancel_event: Optional[asyncio.Event],
    ) -> tuple[Optional[str], list[CleanupFailure]]:
        """Run the plan in a fresh context and tear the context down."""
        job_id = recorder.job_id
        context = await create_stealth_context(
            browser, self.config.session, record_video_dir=str(recorder.video_dir),
        )
        trace_started = await recorder.start_trace(context)
        finalizer = Finalizer(job_id)
        error_message: Optional[str] = None
        page: Optional[Page] = None

        try:
            page = await context.new_page()
            try:
                await self._run_steps(page, request, plan, recorder, executed, cancel_event)
            except Exception as e:
                logger.error("Job %s execution failed: %s", job_id, e)
                error_message = str(e) or type(e).__name__
                await recorder.take_screenshot(page, "error")
            await recorder.take_screenshot(page, "final")
        except Exception as e:
            logger.error("Job %s could not open a page: %s", job_id, e)
            error_message = error_message or str(e) or type(e).__name__
        finally:
            if page is not None:
                finalizer.add("close_page", page.close)
            if trace_started:
                finalizer.add("stop_trace", lambda: recorder.stop_trace(context))
            finalizer.add("close_context", context.close)
            finalizer.add("flush_video",
                          lambda: asyncio.sleep(self.config.timings.video_flush_delay_ms / 1000))
            finalizer.add("relocate_video", recorder.relocate_video)
            finalizer.add("remove_video_dir", recorder.remove_video_dir)
            cleanup_failures = await finalizer.run()

        return error_message, cleanup_failures

    async def _run_steps(
        self,
        page: Page,
        request: TestRequest,
        plan: TestPlan,
        recorder: ArtifactRecorder,
        executed: list[ExecutedStep],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        """Run steps in plan order, stopping after a failed required step."""
        job_id = recorder.job_id
        total = len(plan.steps)
        for index, step in enumerate(plan.steps):
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(f"Job {job_id} cancelled")

            logger.debug("  Step %d/%d: %s %s", index + 1, total, step.action,
                         step.description or step.target)
            outcome = await _until_cancelled(
                execute_step(page, step, index, request, recorder, self.config.timings),
                cancel_event, job_id,
            )
            executed.append(outcome)

            if not outcome.success and not step.is_optional:
                logger.warning("Critical step %d failed, stopping job %s: %s",
                               index + 1, job_id, step.description or step.action)
                break
            if not outcome.success:
                logger.info("Optional step %d failed, continuing", index + 1)

    @staticmethod
    async def _close_browser(browser: Browser, job_id: str) -> None:
        try:
            await browser.close()
        except Exception as e:
            logger.warning("Browser close failed for job %s: %s", job_id, e)
