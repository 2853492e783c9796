"""
types.py - Request, attempt and outcome types for structured extraction.

ExtractionOutcome is the only thing extract() returns. It is a union of three
dataclasses and callers branch on the concrete type (or on ``kind``):

    outcome = await extract(request)
    if isinstance(outcome, Success):
        use(outcome.value)
    elif isinstance(outcome, MaxRetriesExceeded):
        for record in outcome.attempts:
            print(record.attempt_number, record.validation_errors)
    else:  # AgentError
        print(outcome.cause)

Every variant carries ExtractionMetrics.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .containment import ContainmentPolicy

JsonValue = Any


# =============================================================================
# Request
# =============================================================================


@dataclass(frozen=True)
class ExtractionRequest:
    """Immutable input for one extraction call.

    Attributes:
        schema: JSON Schema the final value must satisfy.
        prompt: Task instructions for the agent.
        payload: Optional context data, delivered separately from instructions.
        max_attempts: Attempt budget shared by every failure kind.
        timeout_per_attempt: Hard limit in seconds for one agent process.
        containment_policy: Tool and filesystem restrictions for the agent.
        include_schema_in_feedback: Repeat the schema in retry feedback.
        strict: Treat object schemas without additionalProperties as closed.
        example: Value the example tool returns instead of a generated one.
        on_submit: Acceptance check run on each schema-valid submission.
            Returns None to accept or a reason to reject; a rejection is
            fed back to the agent and uses up the attempt like a schema
            violation.
    """

    schema: Dict[str, Any]
    prompt: str
    payload: Optional[JsonValue] = None
    max_attempts: int = 3
    timeout_per_attempt: float = 300.0
    containment_policy: ContainmentPolicy = field(default_factory=ContainmentPolicy)
    include_schema_in_feedback: bool = True
    strict: bool = True
    example: Optional[JsonValue] = None
    on_submit: Optional[Callable[[JsonValue], Optional[str]]] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.schema, dict):
            raise ValueError("schema must be a JSON object")
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValueError("prompt must be a non-empty string")
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise ValueError("max_attempts must be an integer")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.timeout_per_attempt <= 0:
            raise ValueError("timeout_per_attempt must be positive")
        if self.on_submit is not None and not callable(self.on_submit):
            raise ValueError("on_submit must be callable")
        # The caller keeps their dict; we keep a private copy.
        object.__setattr__(self, "schema", copy.deepcopy(self.schema))
        object.__setattr__(self, "payload", copy.deepcopy(self.payload))
        object.__setattr__(self, "example", copy.deepcopy(self.example))

    @classmethod
    def create(cls, schema: Dict[str, Any], prompt: str, **overrides: Any) -> "ExtractionRequest":
        """Build a request, filling unset fields from runtime configuration."""
        from agentcast.config import runtime_config

        values: Dict[str, Any] = {
            "max_attempts": runtime_config.get_max_attempts(),
            "timeout_per_attempt": runtime_config.get_attempt_timeout(),
            "include_schema_in_feedback": runtime_config.include_schema_in_feedback(),
            "strict": runtime_config.is_strict_validation(),
        }
        values.update(overrides)
        return cls(schema=schema, prompt=prompt, **values)


# =============================================================================
# Tool listing
# =============================================================================


@dataclass(frozen=True)
class ToolDefinition:
    """One bridge operation as advertised to the agent."""

    name: str
    description: str
    parameters_schema: Dict[str, Any]

    def to_wire(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": copy.deepcopy(self.parameters_schema),
        }


# =============================================================================
# Attempt history
# =============================================================================


class AttemptFailure(str, Enum):
    """Why an attempt did not produce a valid value."""

    SCHEMA_VIOLATION = "schema_violation"
    NO_SUBMISSION = "no_submission"
    TIMEOUT = "timeout"
    EXIT_CODE = "exit_code"
    IO_ERROR = "io_error"
    CALLBACK_REJECTED = "callback_rejected"


@dataclass(frozen=True)
class AttemptRecord:
    """What happened during one attempt. Never mutated once created."""

    attempt_number: int
    prompt_sent: str
    raw_agent_output: str
    submitted_value: Optional[JsonValue]
    validation_errors: Tuple[str, ...]
    elapsed: float
    submitted: bool = False
    failure: Optional[AttemptFailure] = None
    exit_code: Optional[int] = None
    tool_calls: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return self.submitted and not self.validation_errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "prompt_sent": self.prompt_sent,
            "raw_agent_output": self.raw_agent_output,
            "submitted": self.submitted,
            "submitted_value": self.submitted_value,
            "validation_errors": list(self.validation_errors),
            "elapsed": round(self.elapsed, 3),
            "failure": self.failure.value if self.failure else None,
            "exit_code": self.exit_code,
            "tool_calls": list(self.tool_calls),
        }


# =============================================================================
# Metrics
# =============================================================================


@dataclass(frozen=True)
class ExtractionMetrics:
    """Cost accounting carried by every outcome.

    The estimated token counts use the chars/4 heuristic. When the agent
    reports real usage, input_tokens and output_tokens prefer it.
    """

    attempts: int
    wall_time: float
    estimated_input_tokens: int
    estimated_output_tokens: int
    reported_input_tokens: Optional[int] = None
    reported_output_tokens: Optional[int] = None

    @property
    def input_tokens(self) -> int:
        if self.reported_input_tokens is not None:
            return self.reported_input_tokens
        return self.estimated_input_tokens

    @property
    def output_tokens(self) -> int:
        if self.reported_output_tokens is not None:
            return self.reported_output_tokens
        return self.estimated_output_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "wall_time": round(self.wall_time, 3),
            "estimated_input_tokens": self.estimated_input_tokens,
            "estimated_output_tokens": self.estimated_output_tokens,
            "reported_input_tokens": self.reported_input_tokens,
            "reported_output_tokens": self.reported_output_tokens,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class Success:
    """A submitted value passed validation."""

    value: JsonValue
    metrics: ExtractionMetrics
    kind: str = field(default="success", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "value": self.value, "metrics": self.metrics.to_dict()}


@dataclass(frozen=True)
class MaxRetriesExceeded:
    """Every attempt in the budget failed. ``attempts`` holds all of them."""

    attempts: List[AttemptRecord]
    raw_output_of_last: str
    metrics: ExtractionMetrics
    kind: str = field(default="max_retries_exceeded", init=False)

    @property
    def last_errors(self) -> Tuple[str, ...]:
        return self.attempts[-1].validation_errors if self.attempts else ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "attempts": [a.to_dict() for a in self.attempts],
            "raw_output_of_last": self.raw_output_of_last,
            "metrics": self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class AgentError:
    """The agent could not be run at all, so no further attempts were made."""

    cause: str
    metrics: ExtractionMetrics
    attempts: List[AttemptRecord] = field(default_factory=list)
    error: Optional[BaseException] = field(default=None, compare=False, repr=False)
    kind: str = field(default="agent_error", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "cause": self.cause,
            "attempts": [a.to_dict() for a in self.attempts],
            "metrics": self.metrics.to_dict(),
        }


ExtractionOutcome = Union[Success, MaxRetriesExceeded, AgentError]
