"""Step executor: translates plan steps into Playwright calls."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Mapping, Optional

from playwright.async_api import ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from qachatops.models.config import ExecutionTimings
from qachatops.models.test_plan import TestRequest, TestStep
from qachatops.models.test_result import ExecutedStep
from qachatops.url_utils import ensure_scheme

from .artifact_recorder import ArtifactRecorder
from .selector_resolver import (
    INTENT_CLICK,
    INTENT_TYPE,
    INTENT_VERIFY,
    looks_like_password,
    resolve_target,
)

logger = logging.getLogger(__name__)

# Values used when the request does not carry the named parameter.
PLACEHOLDER_DEFAULTS: dict[str, str] = {
    "email": "test@example.com",
    "password": "Password123!",
    "username": "testuser",
    "search": "laptop",
}

_PLACEHOLDER_RE = re.compile(r"\{(" + "|".join(PLACEHOLDER_DEFAULTS) + r")\}")


class UnsupportedActionError(ValueError):
    """The step action is not one the executor knows."""


def substitute_placeholders(value: str, parameters: Mapping[str, str]) -> str:
    """Replace ``{email}``-style tokens with request parameters or defaults.

    Unknown ``{name}`` tokens are left untouched.
    """
    def _replacer(match: re.Match) -> str:
        name = match.group(1)
        if name in parameters:
            return parameters[name]
        return PLACEHOLDER_DEFAULTS[name]

    return _PLACEHOLDER_RE.sub(_replacer, value or "")


def parse_wait_ms(value: Optional[str], default_ms: int) -> int:
    try:
        return max(0, int(str(value).strip()))
    except (TypeError, ValueError):
        return default_ms


async def _navigate(page: Page, url: str, timings: ExecutionTimings) -> None:
    logger.info("Navigating to: %s", url)
    try:
        await page.goto(url, wait_until="networkidle", timeout=timings.navigate_idle_timeout_ms)
    except PlaywrightTimeoutError:
        logger.warning("Network idle timeout, retrying with DOMContentLoaded")
        await page.goto(
            url, wait_until="domcontentloaded", timeout=timings.navigate_fallback_timeout_ms,
        )
    # client-side rendering
    await page.wait_for_timeout(timings.navigate_settle_ms)


async def _click(page: Page, element: ElementHandle, timings: ExecutionTimings) -> None:
    await element.scroll_into_view_if_needed()
    await page.wait_for_timeout(timings.pre_action_settle_ms)
    await element.click(timeout=timings.element_action_timeout_ms)


async def _wait_after_click(page: Page, timings: ExecutionTimings) -> None:
    try:
        await page.wait_for_load_state("domcontentloaded", timeout=timings.load_state_timeout_ms)
    except PlaywrightTimeoutError:
        logger.debug("Load state wait timed out after click, continuing")


async def _fill(page: Page, element: ElementHandle, text: str, timings: ExecutionTimings) -> None:
    await element.scroll_into_view_if_needed()
    await element.click(timeout=timings.element_action_timeout_ms)  # focus
    await page.wait_for_timeout(timings.pre_action_settle_ms)
    await element.fill(text, timeout=timings.element_action_timeout_ms)


async def run_action(
    page: Page,
    step: TestStep,
    request: TestRequest,
    recorder: ArtifactRecorder,
    timings: ExecutionTimings,
) -> Optional[str]:
    """Execute a single step on the page.

    Returns the path of the screenshot the step produced, if any. Raises on
    failure; ``execute_step`` turns that into a failed ``ExecutedStep``.
    """
    if not step.is_supported:
        raise UnsupportedActionError(f"Action '{step.action}' is not supported")
    action = step.normalized_action
    logger.debug("Running step: %s | target=%s | %s", action, step.target, step.description)

    match action:
        case "navigate":
            url = ensure_scheme(step.target or request.url)
            await _navigate(page, url, timings)
            return await recorder.take_screenshot(page, "navigate")

        case "click":
            resolved = await resolve_target(
                page, step.target, INTENT_CLICK, timings,
                act=lambda el: _click(page, el, timings),
            )
            await _wait_after_click(page, timings)
            logger.info("Clicked element using %s selector: %s", resolved.tier, resolved.selector)
            await page.wait_for_timeout(timings.click_settle_ms)
            return await recorder.take_screenshot(page, "click")

        case "type":
            raw_value = step.value or ""
            text = substitute_placeholders(raw_value, request.parameters)
            resolved = await resolve_target(
                page, step.target, INTENT_TYPE, timings, value=raw_value,
                act=lambda el: _fill(page, el, text, timings),
            )
            logger.info("Typed %r into %s selector: %s",
                        "***" if looks_like_password(step.target, raw_value) else text,
                        resolved.tier, resolved.selector)
            await page.wait_for_timeout(timings.type_settle_ms)
            return await recorder.take_screenshot(page, "type")

        case "verify":
            resolved = await resolve_target(page, step.target, INTENT_VERIFY, timings)
            logger.info("Verified element: %s", resolved.selector)
            return None

        case "wait":
            wait_ms = parse_wait_ms(step.value, timings.default_wait_ms)
            logger.debug("Waiting %dms...", wait_ms)
            await page.wait_for_timeout(wait_ms)
            return None

        case "screenshot":
            return await recorder.take_screenshot(page, step.target or "screenshot")

        case "scroll":
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            await page.wait_for_timeout(timings.scroll_settle_ms)
            return None

    raise UnsupportedActionError(f"Action '{step.action}' has no handler")


async def execute_step(
    page: Page,
    step: TestStep,
    step_index: int,
    request: TestRequest,
    recorder: ArtifactRecorder,
    timings: ExecutionTimings,
) -> ExecutedStep:
    """Run one step and report its outcome. Never raises for step failures."""
    timestamp = datetime.now(timezone.utc)
    logger.info("Executing step %d: %s - %s", step_index + 1, step.action, step.description)

    try:
        screenshot_path = await run_action(page, step, request, recorder, timings)
    except Exception as e:
        error = str(e) or type(e).__name__
        logger.error("Step %d failed: %s (%s)", step_index + 1, step.description or step.action, error)
        error_screenshot = await recorder.take_screenshot(page, "error")
        return ExecutedStep(
            step_index=step_index,
            action=step.action,
            description=step.description,
            success=False,
            is_optional=step.is_optional,
            error=error,
            timestamp=timestamp,
            screenshot_path=error_screenshot,
        )

    return ExecutedStep(
        step_index=step_index,
        action=step.action,
        description=step.description,
        success=True,
        is_optional=step.is_optional,
        timestamp=timestamp,
        screenshot_path=screenshot_path,
    )
