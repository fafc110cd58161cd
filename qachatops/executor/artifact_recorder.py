"""Artifact recorder: screenshots, trace and video for a single job."""

from __future__ import annotations

import logging
import re
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from playwright.async_api import BrowserContext, Page

logger = logging.getLogger(__name__)

_LABEL_RE = re.compile(r"[^A-Za-z0-9_-]+")


def new_job_id() -> str:
    """Short unique token used as the artifact key for one job."""
    return uuid.uuid4().hex[:8]


def sanitize_label(label: str) -> str:
    cleaned = _LABEL_RE.sub("-", label or "").strip("-")
    return cleaned[:60] or "screenshot"


class ArtifactLayout:
    """Filesystem layout shared by all jobs.

    Reporting collaborators key off these paths, so they are part of the
    external contract::

        {root}/screenshots/{job_id}_{label}_{HHMMSS}.png
        {root}/videos/{job_id}.webm
        {root}/traces/{job_id}.zip
        {root}/results/{job_id}.json
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.screenshots_dir = self.root / "screenshots"
        self.videos_dir = self.root / "videos"
        self.traces_dir = self.root / "traces"
        self.results_dir = self.root / "results"

    def ensure(self) -> None:
        for d in (self.screenshots_dir, self.videos_dir, self.traces_dir, self.results_dir):
            d.mkdir(parents=True, exist_ok=True)

    def trace_path(self, job_id: str) -> Path:
        return self.traces_dir / f"{job_id}.zip"

    def video_temp_dir(self, job_id: str) -> Path:
        return self.videos_dir / job_id

    def video_path(self, job_id: str, suffix: str = ".webm") -> Path:
        return self.videos_dir / f"{job_id}{suffix}"

    def result_path(self, job_id: str) -> Path:
        return self.results_dir / f"{job_id}.json"

    def screenshots_for(self, job_id: str) -> list[Path]:
        if not self.screenshots_dir.exists():
            return []
        return sorted(self.screenshots_dir.glob(f"{job_id}_*.png"))


class ArtifactRecorder:
    """Captures the artifacts of one job. Capture failures never fail the job."""

    def __init__(self, layout: ArtifactLayout, job_id: str):
        self.layout = layout
        self.job_id = job_id
        self.video_dir = layout.video_temp_dir(job_id)
        self.screenshots: list[str] = []
        self.trace_path: Optional[str] = None
        self.video_path: Optional[str] = None

    def _screenshot_path(self, label: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%H%M%S")
        base = f"{self.job_id}_{sanitize_label(label)}_{stamp}"
        path = self.layout.screenshots_dir / f"{base}.png"
        n = 2
        while path.exists() or str(path) in self.screenshots:
            path = self.layout.screenshots_dir / f"{base}_{n}.png"
            n += 1
        return path

    async def take_screenshot(self, page: Page, label: str) -> Optional[str]:
        """Capture a full-page screenshot and return its path, or None on failure."""
        path = self._screenshot_path(label)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
        except Exception as e:
            logger.warning("Screenshot '%s' failed for job %s: %s", label, self.job_id, e)
            return None
        self.screenshots.append(str(path))
        logger.debug("Screenshot saved: %s", path)
        return str(path)

    async def start_trace(self, context: BrowserContext) -> bool:
        """Begin trace recording. Returns False (and logs) when tracing is unavailable."""
        try:
            await context.tracing.start(screenshots=True, snapshots=True, sources=True)
            return True
        except Exception as e:
            logger.warning("Trace start failed for job %s: %s", self.job_id, e)
            return False

    async def stop_trace(self, context: BrowserContext) -> str:
        """Stop tracing and write the archive to the job's trace path."""
        path = self.layout.trace_path(self.job_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        await context.tracing.stop(path=str(path))
        self.trace_path = str(path)
        logger.info("Trace saved: %s", path)
        return self.trace_path

    def relocate_video(self) -> Optional[str]:
        """Move the recorded video out of the temp dir to ``videos/{job_id}.<ext>``."""
        if not self.video_dir.exists():
            logger.warning("No video directory for job %s", self.job_id)
            return None
        videos = sorted(self.video_dir.glob("*.webm")) or sorted(
            p for p in self.video_dir.iterdir() if p.is_file()
        )
        if not videos:
            logger.warning("No video produced for job %s", self.job_id)
            return None
        if len(videos) > 1:
            logger.debug("Job %s produced %d videos, keeping %s", self.job_id, len(videos), videos[0].name)
        target = self.layout.video_path(self.job_id, videos[0].suffix or ".webm")
        shutil.move(str(videos[0]), str(target))
        self.video_path = str(target)
        logger.info("Video saved: %s", target)
        return self.video_path

    def remove_video_dir(self) -> None:
        if self.video_dir.exists():
            shutil.rmtree(self.video_dir)
