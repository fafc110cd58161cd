"""Configuration models for the execution engine."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_LAUNCH_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-web-security",
    "--no-sandbox",
)


class ViewportConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = 1920
    height: int = 1080

    def as_playwright(self) -> dict:
        return {"width": self.width, "height": self.height}


class SessionPolicy(BaseModel):
    """Fixed browser session settings applied to every job.

    The policy is immutable: vary it per environment by building a new
    ``EngineConfig`` rather than mutating a shared instance.
    """

    model_config = ConfigDict(frozen=True)

    headless: bool = True
    slow_mo_ms: int = 100
    launch_args: tuple[str, ...] = DEFAULT_LAUNCH_ARGS
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"
    timezone_id: str = "America/New_York"
    permissions: tuple[str, ...] = ("geolocation",)
    extra_http_headers: dict[str, str] = Field(
        default_factory=lambda: {
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate, br",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        }
    )
    extra_init_script: Optional[str] = None


class ExecutionTimings(BaseModel):
    """Timeouts and settle delays, all in milliseconds."""

    # navigate
    navigate_idle_timeout_ms: int = 30000
    navigate_fallback_timeout_ms: int = 20000
    navigate_settle_ms: int = 2000

    # element resolution
    candidate_timeout_ms: int = 3000
    password_candidate_timeout_ms: int = 5000
    verify_timeout_ms: int = 5000
    password_appear_delay_ms: int = 2000
    input_discovery_attempts: int = 3
    input_retry_delay_ms: int = 1500

    # element interaction
    element_action_timeout_ms: int = 5000
    pre_action_settle_ms: int = 300
    load_state_timeout_ms: int = 10000
    click_settle_ms: int = 1000
    type_settle_ms: int = 500
    scroll_settle_ms: int = 500
    default_wait_ms: int = 2000

    # finalization
    video_flush_delay_ms: int = 500


class EngineConfig(BaseModel):
    # Artifacts
    artifacts_root: str = "wwwroot/artifacts"

    # Job scheduling
    max_concurrent_jobs: int = Field(default=2, ge=1)

    # Browser session
    session: SessionPolicy = Field(default_factory=SessionPolicy)

    # Waits
    timings: ExecutionTimings = Field(default_factory=ExecutionTimings)

    @classmethod
    def load(cls, path: str | Path) -> "EngineConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
