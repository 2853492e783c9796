"""Tests for attempt prompts and retry feedback."""

import json

from agentcast.runtime.prompts import (
    DEFAULT_WORKFLOW_INSTRUCTIONS,
    build_attempt_prompt,
    build_retry_feedback,
    build_system_prompt,
    build_task_prompt,
)
from agentcast.runtime.types import AttemptFailure, AttemptRecord

SCHEMA = {
    "type": "object",
    "properties": {"name": {"type": "string"}, "age": {"type": "integer"}},
    "required": ["name", "age"],
}


def _record(**overrides):
    values = dict(
        attempt_number=1,
        prompt_sent="Extract the person.",
        raw_agent_output="",
        submitted_value={"name": "Bob", "age": "30"},
        validation_errors=("At path '/age': '30' is not of type 'integer'",),
        elapsed=1.0,
        submitted=True,
        failure=AttemptFailure.SCHEMA_VIOLATION,
    )
    values.update(overrides)
    return AttemptRecord(**values)


class TestTaskPrompt:
    def test_without_payload_is_unchanged(self):
        assert build_task_prompt("Extract the person.") == "Extract the person."

    def test_payload_kept_apart_from_instructions(self):
        prompt = build_task_prompt("Extract the person.", "Bob is 30 years old.")
        assert prompt.startswith("<context>\nBob is 30 years old.\n</context>")
        assert "<task>\nExtract the person.\n</task>" in prompt
        assert "<output_format>" in prompt

    def test_structured_payload_is_json(self):
        prompt = build_task_prompt("Extract.", {"bio": "Bob"})
        assert '"bio": "Bob"' in prompt


class TestSystemPrompt:
    def test_lists_tools(self):
        text = build_system_prompt(["mcp__agentcast__example", "mcp__agentcast__submit"])
        assert text.startswith(DEFAULT_WORKFLOW_INSTRUCTIONS)
        assert "Available tools: mcp__agentcast__example, mcp__agentcast__submit" in text

    def test_custom_instructions(self):
        text = build_system_prompt(["submit"], "Be brief.")
        assert text.startswith("Be brief.")


class TestRetryFeedback:
    def test_contains_errors_and_previous_submission(self):
        feedback = build_retry_feedback(_record(), 2, 3, SCHEMA)
        assert feedback.startswith("Attempt 2 of 3.")
        assert "  - At path '/age': '30' is not of type 'integer'" in feedback
        assert json.dumps({"name": "Bob", "age": "30"}, indent=2) in feedback
        assert "  - age (integer)" in feedback
        assert "Expected schema:" in feedback

    def test_schema_can_be_omitted(self):
        feedback = build_retry_feedback(_record(), 2, 3, SCHEMA, include_schema=False)
        assert "Expected schema:" not in feedback

    def test_missing_submission(self):
        record = _record(
            submitted=False,
            submitted_value=None,
            validation_errors=("agent did not submit a result",),
            failure=AttemptFailure.NO_SUBMISSION,
        )
        feedback = build_retry_feedback(record, 2, 2, SCHEMA)
        assert "agent did not submit a result" in feedback
        assert "did not call the 'submit' tool" in feedback
        assert "Your previous submission:" not in feedback

    def test_acceptance_rejection(self):
        record = _record(
            submitted_value={"name": "Bob", "age": 30},
            validation_errors=("submission matches the schema but was rejected: unknown person",),
            failure=AttemptFailure.CALLBACK_REJECTED,
        )
        feedback = build_retry_feedback(record, 2, 3, SCHEMA)
        assert "  - submission matches the schema but was rejected: unknown person" in feedback
        assert "rejected by the caller's acceptance check" in feedback
        assert json.dumps({"name": "Bob", "age": 30}, indent=2) in feedback


class TestAttemptPrompt:
    def test_first_attempt_is_task_prompt(self):
        assert build_attempt_prompt("Task", 1, 3, SCHEMA) == "Task"

    def test_retry_appends_feedback_to_original_task(self):
        prompt = build_attempt_prompt("Task", 2, 3, SCHEMA, previous=_record())
        assert prompt.startswith("Task\n\nAttempt 2 of 3.")
