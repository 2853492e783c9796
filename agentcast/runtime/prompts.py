"""
prompts.py - Prompt construction for extraction attempts.

Attempt 1 sends the task prompt (with any payload wrapped in its own block so
the agent can tell data from instructions). Every later attempt sends the
same task prompt followed by feedback on the attempt before it:

    <task prompt>

    Attempt 2 of 3. Your previous attempt did not produce a valid result.

    Errors:
      - At path '/age': '30' is not of type 'integer'

    Your previous submission:
    {"name": "Bob", "age": "30"}
    ...

Only the immediately previous attempt is described; earlier history is
already reflected in it.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from .types import AttemptFailure, AttemptRecord, JsonValue

DEFAULT_WORKFLOW_INSTRUCTIONS = """You are a structured data extraction agent.

MANDATORY WORKFLOW:
1. Call the 'example' tool FIRST to see the expected output format
2. Draft your answer based on the example and the provided context
3. Call 'validate' with your draft to check for errors
4. If validation fails, fix the errors and call 'validate' again
5. Once validation passes, call 'submit' with the validated value

RULES:
- You MUST complete all steps above in order
- Do NOT respond with freeform text as your final answer
- Do NOT output raw JSON in your response text
- ONLY the 'submit' tool call marks task completion
- The task is NOT complete until you call 'submit'"""

OUTPUT_FORMAT_INSTRUCTIONS = (
    "Use ONLY the tools listed in the system prompt. "
    "Final submission MUST be via the 'submit' tool."
)


def build_system_prompt(tool_names: List[str], instructions: Optional[str] = None) -> str:
    """Workflow instructions plus the exact tool names the agent may call."""
    workflow = instructions or DEFAULT_WORKFLOW_INSTRUCTIONS
    return (
        f"{workflow}\n\nAvailable tools: {', '.join(tool_names)}\n\n"
        "You MUST use ONLY these tools. Do NOT output raw JSON text as your response."
    )


def format_payload(payload: JsonValue) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, indent=2, ensure_ascii=False)


def build_task_prompt(prompt: str, payload: Optional[JsonValue] = None) -> str:
    """Build the attempt-1 prompt.

    Without a payload the prompt is returned unchanged.
    """
    if payload is None:
        return prompt
    return (
        f"<context>\n{format_payload(payload)}\n</context>\n\n"
        f"<task>\n{prompt}\n</task>\n\n"
        f"<output_format>\n{OUTPUT_FORMAT_INSTRUCTIONS}\n</output_format>"
    )


def build_retry_feedback(
    previous: AttemptRecord,
    attempt: int,
    max_attempts: int,
    schema: Dict[str, Any],
    include_schema: bool = True,
) -> str:
    """Describe why ``previous`` failed, for the prompt of ``attempt``.

    Args:
        previous: Record of the attempt that just failed.
        attempt: Number of the attempt about to start (1-indexed).
        max_attempts: Attempt budget.
        schema: Target schema.
        include_schema: Repeat the full schema.

    Returns:
        Feedback text listing every error and echoing the previous submission.
    """
    lines = [f"Attempt {attempt} of {max_attempts}. Your previous attempt did not produce a valid result."]

    lines.append("")
    lines.append("Errors:")
    for error in previous.validation_errors:
        lines.append(f"  - {error}")

    lines.append("")
    if previous.failure == AttemptFailure.CALLBACK_REJECTED:
        lines.append(
            "Your previous submission matched the schema but was rejected by the "
            "caller's acceptance check. Address the reason above."
        )
    if previous.submitted:
        lines.append("Your previous submission:")
        lines.append(_pretty(previous.submitted_value))
    else:
        lines.append("Your previous attempt did not call the 'submit' tool, so nothing was submitted.")

    hints = _required_field_hints(schema)
    if hints:
        lines.append("")
        lines.append("Required fields:")
        lines.extend(hints)

    if include_schema:
        lines.append("")
        lines.append("Expected schema:")
        lines.append(json.dumps(schema, indent=2, ensure_ascii=False))

    lines.append("")
    lines.append(
        "Fix all errors, check your value with the 'validate' tool, "
        "then deliver it with the 'submit' tool."
    )
    return "\n".join(lines)


def build_attempt_prompt(
    task_prompt: str,
    attempt: int,
    max_attempts: int,
    schema: Dict[str, Any],
    previous: Optional[AttemptRecord] = None,
    include_schema: bool = True,
) -> str:
    """The full prompt for ``attempt``: the task, then feedback when retrying."""
    if previous is None:
        return task_prompt
    feedback = build_retry_feedback(previous, attempt, max_attempts, schema, include_schema)
    return f"{task_prompt}\n\n{feedback}"


def _pretty(value: Any) -> str:
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(value)


def _required_field_hints(schema: Dict[str, Any]) -> List[str]:
    properties = schema.get("properties") or {}
    hints = []
    for field_name in schema.get("required") or []:
        prop = properties.get(field_name) or {}
        hint = f"  - {field_name}"
        if "type" in prop:
            hint += f" ({prop['type']})"
        if "enum" in prop:
            hint += f" - one of: {prop['enum']}"
        hints.append(hint)
    return hints
