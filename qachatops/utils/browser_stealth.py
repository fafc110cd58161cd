"""Browser session setup: applies the session policy and reduces bot detection signals."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright

from qachatops.models.config import SessionPolicy

_STEALTH_INIT_SCRIPT = """
// navigator.webdriver is the first thing bot checks read
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });

// Headless Chromium reports an empty plugin list
Object.defineProperty(navigator, 'plugins', {
    get: () => {
        const plugins = [
            { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
            { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
            { name: 'Native Client', filename: 'internal-nacl-plugin' },
        ];
        plugins.length = 3;
        return plugins;
    },
});

Object.defineProperty(navigator, 'languages', {
    get: () => ['en-US', 'en'],
});

window.chrome = window.chrome || {};
window.chrome.runtime = window.chrome.runtime || {};

// Headless answers the notifications permission query with 'denied' immediately
if (window.navigator.permissions && window.navigator.permissions.query) {
    const originalQuery = window.navigator.permissions.query.bind(window.navigator.permissions);
    window.navigator.permissions.query = (parameters) =>
        parameters && parameters.name === 'notifications'
            ? Promise.resolve({ state: Notification.permission })
            : originalQuery(parameters);
}
"""


async def launch_stealth_browser(playwright: Playwright, policy: SessionPolicy) -> Browser:
    """Launch Chromium with the policy's anti-automation arguments."""
    return await playwright.chromium.launch(
        headless=policy.headless,
        slow_mo=policy.slow_mo_ms,
        args=list(policy.launch_args),
    )


async def create_stealth_context(
    browser: Browser,
    policy: SessionPolicy,
    record_video_dir: Optional[str] = None,
) -> BrowserContext:
    """Create a browser context with the policy and stealth patches applied.

    Args:
        record_video_dir: Optional directory for Playwright video recording.
            When provided, every page in the context is recorded as a .webm
            file at viewport size.
    """
    viewport = policy.viewport.as_playwright()
    context_kwargs: dict = {
        "viewport": viewport,
        "user_agent": policy.user_agent,
        "locale": policy.locale,
        "timezone_id": policy.timezone_id,
        "permissions": list(policy.permissions),
        "extra_http_headers": dict(policy.extra_http_headers),
    }
    if record_video_dir:
        context_kwargs["record_video_dir"] = record_video_dir
        context_kwargs["record_video_size"] = viewport

    context = await browser.new_context(**context_kwargs)
    await context.add_init_script(_STEALTH_INIT_SCRIPT)
    if policy.extra_init_script:
        await context.add_init_script(policy.extra_init_script)
    return context
