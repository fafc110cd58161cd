"""Tests for request and plan models."""

import json

import pytest
from pydantic import ValidationError

from qachatops.models.test_plan import TestJob, TestPlan, TestRequest, TestStep, TestType


class TestTestRequest:
    """Tests for TestRequest model."""

    def test_defaults(self):
        request = TestRequest()
        assert request.url == ""
        assert request.test_intent == ""
        assert request.type == TestType.GENERAL
        assert request.parameters == {}

    def test_parses_camel_case(self):
        request = TestRequest.model_validate({
            "url": "https://example.com",
            "testIntent": "Test login",
            "type": "Login",
            "parameters": {"email": "a@b.c"},
        })
        assert request.test_intent == "Test login"
        assert request.type == TestType.LOGIN
        assert request.parameters == {"email": "a@b.c"}

    @pytest.mark.parametrize("raw,expected", [
        ("login", TestType.LOGIN),
        ("ADD_TO_CART", TestType.ADD_TO_CART),
        ("form submission", TestType.FORM_SUBMISSION),
        ("something-else", TestType.GENERAL),
        (None, TestType.GENERAL),
    ])
    def test_type_is_lenient(self, raw, expected):
        assert TestRequest(type=raw).type == expected

    def test_parameters_stringified(self):
        request = TestRequest(parameters={"qty": 2, "note": None})
        assert request.parameters == {"qty": "2", "note": ""}

    def test_frozen(self):
        request = TestRequest(url="https://example.com")
        with pytest.raises(ValidationError):
            request.url = "https://other.com"


class TestTestStep:
    """Tests for TestStep model."""

    def test_minimal_step(self):
        step = TestStep(action="wait")
        assert step.target == ""
        assert step.value is None
        assert step.is_optional is False

    def test_requires_action(self):
        with pytest.raises(ValidationError):
            TestStep()

    def test_none_target_becomes_empty(self):
        assert TestStep(action="scroll", target=None).target == ""

    def test_normalized_action(self):
        step = TestStep(action="  Click ")
        assert step.normalized_action == "click"
        assert step.is_supported

    def test_unsupported_action(self):
        assert not TestStep(action="hover").is_supported

    def test_parses_is_optional_alias(self):
        step = TestStep.model_validate({"action": "verify", "target": ".ok", "isOptional": True})
        assert step.is_optional is True


class TestTestPlan:

    def test_empty_plan(self):
        plan = TestPlan()
        assert plan.steps == []
        assert plan.selectors == {}

    def test_step_order_preserved(self):
        plan = TestPlan.model_validate({
            "description": "d",
            "steps": [{"action": "navigate"}, {"action": "click", "target": "#a"}],
            "selectors": {"submit": "#a"},
        })
        assert [s.action for s in plan.steps] == ["navigate", "click"]
        assert plan.selectors["submit"] == "#a"


class TestTestJob:

    def test_load(self, tmp_path):
        path = tmp_path / "job.json"
        path.write_text(json.dumps({
            "request": {"url": "example.com", "testIntent": "smoke"},
            "plan": {"description": "d", "steps": [{"action": "navigate"}]},
        }))

        job = TestJob.load(path)

        assert job.request.url == "example.com"
        assert len(job.plan.steps) == 1

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TestJob.load(tmp_path / "missing.json")

    def test_plan_defaults_to_empty(self):
        job = TestJob.model_validate({"request": {"url": "https://example.com"}})
        assert job.plan.steps == []
