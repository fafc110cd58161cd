"""Tests for browser session setup: policy application and video recording."""

import pytest
from unittest.mock import AsyncMock

from qachatops.models.config import DEFAULT_USER_AGENT, SessionPolicy, ViewportConfig
from qachatops.utils.browser_stealth import create_stealth_context, launch_stealth_browser


def _mock_browser():
    mock_browser = AsyncMock()
    mock_context = AsyncMock()
    mock_browser.new_context = AsyncMock(return_value=mock_context)
    return mock_browser, mock_context


class TestLaunchStealthBrowser:

    @pytest.mark.asyncio
    async def test_launch_uses_policy(self):
        playwright = AsyncMock()
        policy = SessionPolicy(headless=False, slow_mo_ms=0)

        await launch_stealth_browser(playwright, policy)

        kwargs = playwright.chromium.launch.call_args.kwargs
        assert kwargs["headless"] is False
        assert kwargs["slow_mo"] == 0
        assert "--disable-blink-features=AutomationControlled" in kwargs["args"]

    @pytest.mark.asyncio
    async def test_default_policy_slows_actions(self):
        playwright = AsyncMock()

        await launch_stealth_browser(playwright, SessionPolicy())

        kwargs = playwright.chromium.launch.call_args.kwargs
        assert kwargs["headless"] is True
        assert kwargs["slow_mo"] == 100


class TestCreateStealthContext:
    """Tests for create_stealth_context with video recording support."""

    @pytest.mark.asyncio
    async def test_policy_applied_to_context(self):
        mock_browser, _ = _mock_browser()

        await create_stealth_context(mock_browser, SessionPolicy())

        call_kwargs = mock_browser.new_context.call_args.kwargs
        assert call_kwargs["viewport"] == {"width": 1920, "height": 1080}
        assert call_kwargs["user_agent"] == DEFAULT_USER_AGENT
        assert call_kwargs["locale"] == "en-US"
        assert call_kwargs["timezone_id"] == "America/New_York"
        assert call_kwargs["permissions"] == ["geolocation"]
        assert call_kwargs["extra_http_headers"]["Accept-Language"].startswith("en-US")

    @pytest.mark.asyncio
    async def test_no_video_by_default(self):
        """When record_video_dir is not provided, no video kwargs are passed."""
        mock_browser, _ = _mock_browser()

        await create_stealth_context(mock_browser, SessionPolicy())

        call_kwargs = mock_browser.new_context.call_args.kwargs
        assert "record_video_dir" not in call_kwargs
        assert "record_video_size" not in call_kwargs

    @pytest.mark.asyncio
    async def test_video_dir_passed_when_provided(self):
        """When record_video_dir is given, both dir and size are passed."""
        mock_browser, _ = _mock_browser()
        policy = SessionPolicy(viewport=ViewportConfig(width=1280, height=720))

        await create_stealth_context(mock_browser, policy, record_video_dir="/tmp/video")

        call_kwargs = mock_browser.new_context.call_args.kwargs
        assert call_kwargs["record_video_dir"] == "/tmp/video"
        assert call_kwargs["record_video_size"] == {"width": 1280, "height": 720}

    @pytest.mark.asyncio
    async def test_stealth_script_applied(self):
        """Stealth init script is always added."""
        mock_browser, mock_context = _mock_browser()

        await create_stealth_context(mock_browser, SessionPolicy(), record_video_dir="/tmp/video")

        mock_context.add_init_script.assert_called_once()
        script = mock_context.add_init_script.call_args.args[0]
        assert "webdriver" in script

    @pytest.mark.asyncio
    async def test_extra_init_script_added_after_stealth(self):
        mock_browser, mock_context = _mock_browser()
        policy = SessionPolicy(extra_init_script="window.__qa = true;")

        await create_stealth_context(mock_browser, policy)

        assert mock_context.add_init_script.call_count == 2
        assert mock_context.add_init_script.call_args_list[1].args[0] == "window.__qa = true;"
