"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
from playwright.async_api import Browser, BrowserContext, Page

from qachatops.executor.artifact_recorder import ArtifactLayout, ArtifactRecorder
from qachatops.models.config import EngineConfig, ExecutionTimings
from qachatops.models.test_plan import TestPlan, TestRequest, TestStep, TestType


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def timings() -> ExecutionTimings:
    """Default timings; page waits are mocked so nothing actually sleeps."""
    return ExecutionTimings(video_flush_delay_ms=0)


@pytest.fixture
def engine_config(tmp_path: Path, timings: ExecutionTimings) -> EngineConfig:
    """Create an engine configuration rooted in a temp directory."""
    return EngineConfig(
        artifacts_root=str(tmp_path / "artifacts"),
        max_concurrent_jobs=2,
        timings=timings,
    )


# ============================================================================
# Request / Plan Fixtures
# ============================================================================


@pytest.fixture
def login_request() -> TestRequest:
    """Create a login test request."""
    return TestRequest(
        url="https://example.com/login",
        test_intent="Test login",
        type=TestType.LOGIN,
        parameters={"email": "qa@example.com", "password": "s3cret!"},
    )


@pytest.fixture
def login_plan() -> TestPlan:
    """The standard five-step login plan."""
    return TestPlan(
        description="Log in and reach the dashboard",
        steps=[
            TestStep(action="navigate", target="", description="Open login page"),
            TestStep(action="type", target="input[type='email'], #email",
                     value="{email}", description="Enter email"),
            TestStep(action="type", target="input[type='password']",
                     value="{password}", description="Enter password"),
            TestStep(action="click", target="button[type='submit']", description="Submit"),
            TestStep(action="verify", target=".dashboard", description="Dashboard visible",
                     is_optional=True),
        ],
    )


# ============================================================================
# Artifact Fixtures
# ============================================================================


@pytest.fixture
def layout(tmp_path: Path) -> ArtifactLayout:
    """Create an artifact layout with its directories."""
    layout = ArtifactLayout(tmp_path / "artifacts")
    layout.ensure()
    return layout


@pytest.fixture
def recorder(layout: ArtifactLayout) -> ArtifactRecorder:
    """Create a recorder for a fixed job id."""
    return ArtifactRecorder(layout, "job00001")


# ============================================================================
# Mock Fixtures
# ============================================================================


def make_element(visible: bool = True, text: str = "", href=None, enabled: bool = True) -> AsyncMock:
    """Create a mock Playwright element handle."""
    el = AsyncMock()
    el.is_visible = AsyncMock(return_value=visible)
    el.is_enabled = AsyncMock(return_value=enabled)
    el.inner_text = AsyncMock(return_value=text)
    el.get_attribute = AsyncMock(return_value=href)
    el.click = AsyncMock()
    el.fill = AsyncMock()
    el.scroll_into_view_if_needed = AsyncMock()
    return el


@pytest.fixture
def element_factory():
    """Fixture that provides the make_element helper."""
    return make_element


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock(spec=Page)
    page.url = "https://example.com"
    page.on = Mock()
    page.screenshot = AsyncMock()
    page.goto = AsyncMock()
    page.evaluate = AsyncMock()
    page.close = AsyncMock()
    page.wait_for_selector = AsyncMock(return_value=make_element())
    page.query_selector_all = AsyncMock(return_value=[])
    page.wait_for_load_state = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    return page


@pytest.fixture
def mock_context(mock_page: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser context."""
    context = AsyncMock(spec=BrowserContext)
    context.new_page = AsyncMock(return_value=mock_page)
    context.tracing = AsyncMock()
    context.tracing.start = AsyncMock()
    context.tracing.stop = AsyncMock()
    context.close = AsyncMock()
    return context


@pytest.fixture
def mock_browser(mock_context: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser."""
    browser = AsyncMock(spec=Browser)
    browser.new_context = AsyncMock(return_value=mock_context)
    browser.close = AsyncMock()
    return browser
