"""Tests for result models."""

from datetime import datetime, timezone

from qachatops.models.test_result import CleanupFailure, ExecutedStep, TestExecutionResult


def _step(index, success, optional=False):
    return ExecutedStep(
        step_index=index,
        action="click",
        description=f"step {index}",
        success=success,
        is_optional=optional,
        error=None if success else "boom",
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class TestTestExecutionResult:

    def test_counters(self):
        result = TestExecutionResult(
            job_id="abc12345",
            executed_steps=[_step(0, True), _step(1, False, optional=True), _step(2, True)],
        )
        assert result.steps_passed == 2
        assert result.steps_failed == 1

    def test_camel_case_dump(self):
        result = TestExecutionResult(
            job_id="abc12345",
            url="https://example.com",
            executed_steps=[_step(0, True)],
            cleanup_failures=[CleanupFailure(step="close_context", error="gone")],
        )

        data = result.model_dump(mode="json", by_alias=True)

        assert data["jobId"] == "abc12345"
        assert data["screenshotPaths"] == []
        assert data["executedSteps"][0]["stepIndex"] == 0
        assert data["executedSteps"][0]["isOptional"] is False
        assert data["cleanupFailures"] == [{"step": "close_context", "error": "gone"}]
        assert data["aiAnalysis"] == ""

    def test_round_trip_from_camel_case(self):
        result = TestExecutionResult(job_id="abc12345", executed_steps=[_step(0, False)])
        data = result.model_dump(mode="json", by_alias=True)

        restored = TestExecutionResult.model_validate(data)

        assert restored == result

    def test_analysis_attached_by_copy(self):
        result = TestExecutionResult(job_id="abc12345")
        analysed = result.model_copy(update={"ai_analysis": "Looks fine"})
        assert result.ai_analysis == ""
        assert analysed.ai_analysis == "Looks fine"
