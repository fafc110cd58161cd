"""Job finalizer: ordered teardown that records failures instead of raising them."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from qachatops.models.test_result import CleanupFailure

logger = logging.getLogger(__name__)

CleanupAction = Callable[[], Union[Awaitable[Any], Any]]


class Finalizer:
    """Runs registered cleanup steps once, in registration order.

    A failing step is logged and recorded as a ``CleanupFailure``; the
    remaining steps still run.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._steps: list[tuple[str, CleanupAction]] = []
        self._failures: list[CleanupFailure] | None = None

    def add(self, name: str, action: CleanupAction) -> None:
        if self._failures is not None:
            raise RuntimeError(f"Finalizer for job {self.job_id} already ran")
        self._steps.append((name, action))

    @property
    def has_run(self) -> bool:
        return self._failures is not None

    async def run(self) -> list[CleanupFailure]:
        if self._failures is not None:
            logger.debug("Finalizer for job %s already ran, skipping", self.job_id)
            return list(self._failures)

        failures: list[CleanupFailure] = []
        for name, action in self._steps:
            try:
                result = action()
                if inspect.isawaitable(result):
                    await result
                logger.debug("Cleanup '%s' done for job %s", name, self.job_id)
            except Exception as e:
                logger.warning("Cleanup '%s' failed for job %s: %s", name, self.job_id, e)
                failures.append(CleanupFailure(step=name, error=str(e) or type(e).__name__))
        self._failures = failures
        return list(failures)
