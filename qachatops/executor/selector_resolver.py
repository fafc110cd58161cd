"""Target resolution: turn loosely specified selector hints into a live element.

Plans come from a planner that only guesses at the page markup, so a step
target is a comma-separated list of candidate selectors. Resolution walks a
fixed chain of tiers and the first visible match wins:

1. explicit candidates, in the order given
2. heuristic button discovery (click only)
3. login/sign-in link discovery (click only)
4. input discovery with retries (type only)

When the caller passes an ``act`` coroutine (the click or fill itself), a
match only wins once ``act`` succeeds on it; a match that cannot be acted on
is recorded and the search moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import ElementHandle, Page

from qachatops.models.config import ExecutionTimings

logger = logging.getLogger(__name__)

INTENT_CLICK = "click"
INTENT_TYPE = "type"
INTENT_VERIFY = "verify"

KIND_CSS = "css"
KIND_TEXT = "text"
KIND_XPATH = "xpath"
KIND_ROLE = "role"

ElementAction = Callable[[ElementHandle], Awaitable[Any]]


@dataclass(frozen=True)
class SelectorCandidate:
    """One alternative from a step target."""

    selector: str
    kind: str  # css, text, xpath, role

    @property
    def query(self) -> str:
        """Selector string as Playwright's engines expect it.

        Playwright only auto-detects XPath starting with ``//`` or ``..``, so
        other XPath forms such as ``(//button)[2]`` get an explicit engine prefix.
        """
        if self.kind == KIND_XPATH and not self.selector.lower().startswith(("xpath=", "//", "..")):
            return f"xpath={self.selector}"
        return self.selector


@dataclass(frozen=True)
class HeuristicPattern:
    selector: str
    accept_any: bool = False  # last resort: take any visible match


CLICK_HEURISTICS: tuple[HeuristicPattern, ...] = (
    HeuristicPattern("button[type='submit']"),
    HeuristicPattern("input[type='submit']"),
    HeuristicPattern("button:has-text('Log in')"),
    HeuristicPattern("button:has-text('Sign in')"),
    HeuristicPattern("button:has-text('Login')"),
    HeuristicPattern("button:has-text('Submit')"),
    HeuristicPattern("a:has-text('Log in')"),
    HeuristicPattern("a:has-text('Sign in')"),
    HeuristicPattern("a:has-text('Login')"),
    HeuristicPattern("[role='button']:has-text('Log')"),
    HeuristicPattern("[role='button']:has-text('Sign')"),
    HeuristicPattern(".login-btn"),
    HeuristicPattern(".signin-btn"),
    HeuristicPattern("#login-button"),
    HeuristicPattern("button", accept_any=True),
)

AFFIRMATIVE_WORDS = ("log", "sign", "submit", "enter")
LINK_TEXT_WORDS = ("log", "sign")
LINK_HREF_WORDS = ("login", "signin")

PASSWORD_INPUT_SELECTOR = "input[type='password']:visible"
EMAIL_INPUT_SELECTOR = (
    "input[type='email']:visible, "
    "input[type='text']:visible:not([type='hidden']):not([type='submit'])"
)
GENERIC_INPUT_SELECTOR = (
    "input:visible:not([type='password']):not([type='hidden'])"
    ":not([type='submit']):not([type='checkbox']):not([type='radio'])"
)


class ElementNotFoundError(Exception):
    """No tier produced a usable element for a step target."""

    def __init__(self, target: str, intent: str, attempts: list[dict]):
        self.target = target
        self.intent = intent
        self.attempts = attempts
        self.last_error = next((a["error"] for a in reversed(attempts) if a.get("error")), None)
        message = (
            f"Could not find element to {intent} for '{target}' "
            f"({len(attempts)} strategies attempted)"
        )
        if self.last_error:
            message += f": {self.last_error}"
        super().__init__(message)


@dataclass
class ResolvedTarget:
    element: ElementHandle
    selector: str
    tier: str  # candidate, heuristic, link, input
    attempts: list[dict] = field(default_factory=list)


def split_selector_list(target: str) -> list[str]:
    """Split a target on top-level commas.

    Commas inside quotes, ``[...]`` or ``(...)`` belong to the selector, so
    ``button:has-text('Yes, continue'), #ok`` yields two candidates.
    """
    parts: list[str] = []
    buf: list[str] = []
    quote: Optional[str] = None
    depth = 0
    for ch in target or "":
        if quote:
            buf.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    parts.append("".join(buf))
    return [p.strip() for p in parts if p.strip()]


def _classify(selector: str) -> str:
    lowered = selector.lower()
    if lowered.startswith(("xpath=", "//", "(//")):
        return KIND_XPATH
    if lowered.startswith("role="):
        return KIND_ROLE
    if "text=" in lowered or ":has-text(" in lowered or ":text(" in lowered:
        return KIND_TEXT
    return KIND_CSS


def parse_candidates(target: str) -> list[SelectorCandidate]:
    """Parse a step target into an ordered list of typed candidates."""
    return [SelectorCandidate(selector=s, kind=_classify(s)) for s in split_selector_list(target)]


def looks_like_password(target: str, value: str = "") -> bool:
    return "password" in (target or "").lower() or "password" in (value or "").lower()


def looks_like_email(target: str, value: str = "") -> bool:
    value = value or ""
    return "email" in (target or "").lower() or "{email}" in value or "@" in value


def candidate_timeout(intent: str, target: str, value: str, timings: ExecutionTimings) -> int:
    """Per-candidate visibility timeout for an intent.

    Password fields often render only after a previous step, so they get the
    longer window.
    """
    if intent == INTENT_VERIFY:
        return timings.verify_timeout_ms
    if intent == INTENT_TYPE and looks_like_password(target, value):
        return timings.password_candidate_timeout_ms
    return timings.candidate_timeout_ms


def _is_affirmative(text: str) -> bool:
    text = text.strip().lower()
    return not text or any(word in text for word in AFFIRMATIVE_WORDS)


async def _is_usable(element: ElementHandle, intent: str) -> bool:
    if not await element.is_visible():
        return False
    if intent in (INTENT_CLICK, INTENT_TYPE):
        return await element.is_enabled()
    return True


async def _act_on(element: ElementHandle, act: Optional[ElementAction]) -> Optional[str]:
    """Run ``act`` on a match. Returns the error message if it failed."""
    if act is None:
        return None
    try:
        await act(element)
    except Exception as e:
        return str(e) or type(e).__name__
    return None


def _record(attempts: list[dict], tier: str, selector: str, success: bool, error: Optional[str] = None) -> None:
    entry = {"tier": tier, "selector": selector, "success": success}
    if error:
        entry["error"] = error
    attempts.append(entry)


async def try_candidates(
    page: Page,
    candidates: list[SelectorCandidate],
    intent: str,
    timeout_ms: int,
    attempts: list[dict],
    act: Optional[ElementAction] = None,
) -> Optional[ResolvedTarget]:
    """Tier 1: the caller's candidates, in order."""
    for candidate in candidates:
        try:
            element = await page.wait_for_selector(candidate.query, state="visible", timeout=timeout_ms)
            usable = element is not None and await _is_usable(element, intent)
        except Exception as e:
            logger.debug("Candidate '%s' not usable: %s", candidate.selector, e)
            usable = False
        if not usable:
            _record(attempts, "candidate", candidate.selector, False)
            continue

        error = await _act_on(element, act)
        if error:
            logger.info("Candidate '%s' matched but %s failed: %s", candidate.selector, intent, error)
            _record(attempts, "candidate", candidate.selector, False, error)
            continue
        _record(attempts, "candidate", candidate.selector, True)
        logger.debug("Resolved '%s' (%s candidate)", candidate.selector, candidate.kind)
        return ResolvedTarget(element, candidate.selector, "candidate", attempts)
    return None


async def discover_clickable(
    page: Page,
    attempts: list[dict],
    act: Optional[ElementAction] = None,
) -> Optional[ResolvedTarget]:
    """Tier 2: generic submit/login affordances, in fixed priority order."""
    for pattern in CLICK_HEURISTICS:
        try:
            elements = await page.query_selector_all(pattern.selector)
        except Exception as e:
            logger.debug("Heuristic '%s' failed: %s", pattern.selector, e)
            elements = []
        error = None
        for element in elements:
            try:
                if not await element.is_visible():
                    continue
                text = await element.inner_text()
            except Exception as e:
                logger.debug("Skipping detached match for '%s': %s", pattern.selector, e)
                continue
            if not (pattern.accept_any or _is_affirmative(text)):
                continue
            error = await _act_on(element, act)
            if error:
                logger.debug("Fallback match for %s not clickable: %s", pattern.selector, error)
                continue
            _record(attempts, "heuristic", pattern.selector, True)
            logger.info("Fallback matched %s (text: %r)", pattern.selector, text.strip())
            return ResolvedTarget(element, pattern.selector, "heuristic", attempts)
        _record(attempts, "heuristic", pattern.selector, False, error)
    return None


async def discover_link(
    page: Page,
    attempts: list[dict],
    act: Optional[ElementAction] = None,
) -> Optional[ResolvedTarget]:
    """Tier 3: any visible link that looks like a login/sign-in entry point."""
    try:
        links = await page.query_selector_all("a")
    except Exception as e:
        logger.debug("Link discovery failed: %s", e)
        links = []
    error = None
    for link in links:
        try:
            if not await link.is_visible():
                continue
            text = (await link.inner_text()).lower()
            href = (await link.get_attribute("href") or "").lower()
        except Exception as e:
            logger.debug("Skipping detached link: %s", e)
            continue
        if not (any(w in text for w in LINK_TEXT_WORDS) or any(w in href for w in LINK_HREF_WORDS)):
            continue
        error = await _act_on(link, act)
        if error:
            logger.debug("Link %r not clickable: %s", text.strip(), error)
            continue
        _record(attempts, "link", "a", True)
        logger.info("Fallback matched link %r (href: %s)", text.strip(), href)
        return ResolvedTarget(link, "a", "link", attempts)
    _record(attempts, "link", "a", False, error)
    return None


async def discover_input(
    page: Page,
    target: str,
    value: str,
    timings: ExecutionTimings,
    attempts: list[dict],
    act: Optional[ElementAction] = None,
) -> Optional[ResolvedTarget]:
    """Tier 4: a broad input search, retried because fields render late."""
    if looks_like_password(target, value):
        logger.info("Waiting for password field to appear...")
        await page.wait_for_timeout(timings.password_appear_delay_ms)
        selector = PASSWORD_INPUT_SELECTOR
    elif looks_like_email(target, value):
        selector = EMAIL_INPUT_SELECTOR
    else:
        selector = GENERIC_INPUT_SELECTOR

    tries = max(1, timings.input_discovery_attempts)
    for attempt in range(tries):
        try:
            elements = await page.query_selector_all(selector)
        except Exception as e:
            logger.debug("Input discovery query failed: %s", e)
            elements = []
        error = None
        for element in elements:
            try:
                if not await element.is_visible():
                    continue
            except Exception as e:
                logger.debug("Skipping detached input: %s", e)
                continue
            error = await _act_on(element, act)
            if error:
                logger.debug("Discovered input not fillable: %s", error)
                continue
            _record(attempts, "input", selector, True)
            logger.info("Input found by discovery (attempt %d)", attempt + 1)
            return ResolvedTarget(element, selector, "input", attempts)
        _record(attempts, "input", selector, False, error)
        if attempt < tries - 1:
            logger.debug("Input not found, retrying (attempt %d/%d)", attempt + 1, tries)
            await page.wait_for_timeout(timings.input_retry_delay_ms)
    return None


async def resolve_target(
    page: Page,
    target: str,
    intent: str,
    timings: ExecutionTimings,
    value: str = "",
    act: Optional[ElementAction] = None,
) -> ResolvedTarget:
    """Find the element a step should act on.

    Args:
        target: Comma-separated candidate selectors from the plan step.
        intent: ``click``, ``type`` or ``verify``; decides the fallback tiers.
        value: Raw (unsubstituted) step value, used as a field-type hint.
        act: Optional coroutine performing the step's interaction. A match
            only wins once ``act`` succeeds on it.

    Raises:
        ElementNotFoundError: when every tier is exhausted.
    """
    attempts: list[dict] = []
    candidates = parse_candidates(target)
    timeout_ms = candidate_timeout(intent, target, value, timings)

    resolved = await try_candidates(page, candidates, intent, timeout_ms, attempts, act)
    if resolved:
        return resolved

    if intent == INTENT_CLICK:
        logger.warning("Selectors failed for '%s', attempting button discovery", target)
        resolved = await discover_clickable(page, attempts, act)
        if resolved is None:
            logger.warning("Button discovery failed, trying link discovery")
            resolved = await discover_link(page, attempts, act)
    elif intent == INTENT_TYPE:
        logger.warning("Selectors failed for '%s', attempting input discovery", target)
        resolved = await discover_input(page, target, value, timings, attempts, act)

    if resolved:
        return resolved
    raise ElementNotFoundError(target, intent, attempts)
