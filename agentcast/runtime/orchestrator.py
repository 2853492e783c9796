"""
orchestrator.py - Retry state machine for structured extraction.

One extract() call runs up to ``max_attempts`` strictly sequential attempts.
Each attempt serves the tool bridge, spawns the agent through the adapter,
waits for it to finish (or terminates it), then validates whatever it
submitted:

    INIT -> DISPATCHING -> AWAITING_AGENT -> VALIDATING -+-> SUCCEEDED
                 ^                                       |
                 +------------- RETRYING <---------------+-> EXHAUSTED
                                                         +-> AGENT_FAULTED

Schema violations, acceptance-check rejections, missing submissions,
timeouts, non-zero exits and capture failures all become AttemptRecords and
draw from the same budget. Only a failure to run the agent at all (spawn,
adapter, sandbox or bridge failure, invalid schema) ends the extraction
early, as AgentError. Metrics are attached to
every outcome.

The sandbox directory, bridge endpoint and agent process are scoped with
context managers, so they are torn down on every exit path, including
cancellation of the caller's task.

Usage:
    request = ExtractionRequest(schema=schema, prompt="Extract the person.")
    outcome = await extract(request)
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple

from agentcast.config import runtime_config

from .bridge import ToolBridge
from .containment import ContainmentPolicy, sandbox_directory
from .errors import AdapterError, BridgeError, InvalidSchemaError, SchemaViolation, SpawnError
from .metrics import MetricsTracker
from .prompts import build_attempt_prompt, build_task_prompt
from .stream_events import is_error_result, result_text
from .supervisor import EventCallback, ExitOutcome, ProcessSupervisor
from .types import (
    AgentError,
    AttemptFailure,
    AttemptRecord,
    ExtractionOutcome,
    ExtractionRequest,
    MaxRetriesExceeded,
    Success,
)

if TYPE_CHECKING:
    from agentcast.adapters.base import AgentAdapter

logger = logging.getLogger(__name__)

NO_SUBMISSION_CAUSE = "agent did not submit a result"
REJECTED_CAUSE = "submission matches the schema but was rejected"

_STDERR_TAIL_CHARS = 300


class ExtractionState(str, Enum):
    INIT = "init"
    DISPATCHING = "dispatching"
    AWAITING_AGENT = "awaiting_agent"
    VALIDATING = "validating"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    AGENT_FAULTED = "agent_faulted"


TERMINAL_STATES = frozenset(
    [ExtractionState.SUCCEEDED, ExtractionState.EXHAUSTED, ExtractionState.AGENT_FAULTED]
)


@dataclass
class _ExtractionRun:
    """Mutable state of one extract() call. Never shared between calls."""

    request: ExtractionRequest
    state: ExtractionState = ExtractionState.INIT
    history: List[AttemptRecord] = field(default_factory=list)
    tracker: MetricsTracker = field(default_factory=MetricsTracker)
    transitions: List[ExtractionState] = field(default_factory=list)

    def transition(self, state: ExtractionState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"extraction already finished in state {self.state.value}")
        logger.debug("state %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)


class ExtractionOrchestrator:
    """Runs extraction requests against one agent adapter.

    The orchestrator holds no per-request state, so one instance can serve
    several concurrent extract() calls.

    Args:
        adapter: Builds agent command lines (default: Claude Code).
        supervisor: Process supervisor (default: configured from runtime.yaml).
        on_event: Observer called with every agent output event.
        sandbox_root: Parent directory for sandbox directories.
        bridge_host: Interface the tool bridge binds to.
    """

    def __init__(
        self,
        adapter: Optional["AgentAdapter"] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        on_event: Optional[EventCallback] = None,
        sandbox_root: Optional[str] = None,
        bridge_host: Optional[str] = None,
    ):
        if adapter is None:
            from agentcast.adapters.claude import ClaudeCodeAdapter

            adapter = ClaudeCodeAdapter()
        self.adapter = adapter
        self.supervisor = supervisor or ProcessSupervisor()
        self.on_event = on_event
        self.sandbox_root = sandbox_root if sandbox_root is not None else runtime_config.get_sandbox_root()
        self.bridge_host = bridge_host

    async def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        """Run the retry loop for ``request`` and return its outcome.

        Never raises for agent behaviour; only caller cancellation propagates.
        """
        run = _ExtractionRun(request)
        logger.info(
            "Starting extraction with %s (max_attempts=%d, timeout_per_attempt=%.1fs)",
            _adapter_name(self.adapter),
            request.max_attempts,
            request.timeout_per_attempt,
        )

        try:
            bridge = ToolBridge(
                request.schema,
                request.containment_policy,
                strict=request.strict,
                example=request.example,
            )
        except InvalidSchemaError as e:
            return self._agent_faulted(run, str(e), e)

        task_prompt = build_task_prompt(request.prompt, request.payload)

        with contextlib.ExitStack() as stack:
            try:
                policy = stack.enter_context(
                    sandbox_directory(request.containment_policy, root=self.sandbox_root)
                )
            except OSError as e:
                return self._agent_faulted(run, f"cannot create sandbox directory: {e}", e)

            for attempt in range(1, request.max_attempts + 1):
                previous = run.history[-1] if run.history else None
                prompt = build_attempt_prompt(
                    task_prompt,
                    attempt,
                    request.max_attempts,
                    request.schema,
                    previous=previous,
                    include_schema=request.include_schema_in_feedback,
                )

                try:
                    record = await self._run_attempt(run, bridge, policy, attempt, prompt)
                except (SpawnError, AdapterError, BridgeError) as e:
                    return self._agent_faulted(run, str(e), e)

                run.history.append(record)
                if record.is_valid:
                    return self._succeeded(run, record)

                will_retry = attempt < request.max_attempts
                logger.debug(
                    "retry_decision attempt=%d/%d will_retry=%s reason=%s",
                    attempt,
                    request.max_attempts,
                    will_retry,
                    record.failure.value if record.failure else "unknown",
                )
                if will_retry:
                    run.transition(ExtractionState.RETRYING)

        return self._exhausted(run)

    async def _run_attempt(
        self,
        run: _ExtractionRun,
        bridge: ToolBridge,
        policy: ContainmentPolicy,
        attempt: int,
        prompt: str,
    ) -> AttemptRecord:
        request = run.request
        run.transition(ExtractionState.DISPATCHING)
        bridge.begin_attempt(attempt)
        started = time.monotonic()

        async with bridge.serve(self.bridge_host) as endpoint:
            try:
                invocation = self.adapter.build_invocation(prompt, policy, endpoint.url)
            except Exception as e:
                raise AdapterError(_adapter_name(self.adapter), e) from e
            logger.debug(
                "prompt_sent_to_agent attempt=%d/%d prompt_chars=%d binary=%s",
                attempt,
                request.max_attempts,
                len(prompt),
                invocation.binary_path,
            )
            run.transition(ExtractionState.AWAITING_AGENT)
            outcome = await self.supervisor.run(
                invocation.binary_path,
                invocation.args,
                env=invocation.env,
                cwd=invocation.cwd or policy.sandbox_directory,
                timeout=request.timeout_per_attempt,
                input=invocation.input,
                on_event=self.on_event,
            )

        elapsed = time.monotonic() - started
        submission = bridge.take_submission()
        run.tracker.record_attempt(prompt, outcome.stdout, outcome.usage)
        logger.debug(
            "agent_response_received attempt=%d status=%s exit_code=%s submitted=%s elapsed=%.2fs",
            attempt,
            outcome.status.value,
            outcome.exit_code,
            submission is not None,
            elapsed,
        )

        run.transition(ExtractionState.VALIDATING)
        tool_calls = tuple(call.tool for call in bridge.call_log)
        raw_output = _raw_output(outcome)

        if submission is not None:
            failure: Optional[AttemptFailure] = None
            errors: Tuple[str, ...] = ()
            try:
                bridge.validator.check(submission.value)
            except SchemaViolation as e:
                errors = tuple(str(issue) for issue in e.issues)
                failure = AttemptFailure.SCHEMA_VIOLATION
            if not errors and request.on_submit is not None:
                reason = _acceptance_check(request.on_submit, submission.value, attempt)
                if reason is not None:
                    errors = (reason,)
                    failure = AttemptFailure.CALLBACK_REJECTED
            logger.debug(
                "validation_result attempt=%d valid=%s errors=%d failure=%s",
                attempt,
                not errors,
                len(errors),
                failure.value if failure else None,
            )
            return AttemptRecord(
                attempt_number=attempt,
                prompt_sent=prompt,
                raw_agent_output=raw_output,
                submitted_value=submission.value,
                validation_errors=errors,
                elapsed=elapsed,
                submitted=True,
                failure=failure,
                exit_code=outcome.exit_code,
                tool_calls=tool_calls,
            )

        cause, failure = _missing_submission_cause(outcome, request.timeout_per_attempt)
        logger.debug("validation_result attempt=%d valid=False cause=%s", attempt, cause)
        return AttemptRecord(
            attempt_number=attempt,
            prompt_sent=prompt,
            raw_agent_output=raw_output,
            submitted_value=None,
            validation_errors=(cause,),
            elapsed=elapsed,
            submitted=False,
            failure=failure,
            exit_code=outcome.exit_code,
            tool_calls=tool_calls,
        )

    # -------------------------------------------------------------------------
    # Terminal outcomes
    # -------------------------------------------------------------------------

    def _succeeded(self, run: _ExtractionRun, record: AttemptRecord) -> Success:
        run.transition(ExtractionState.SUCCEEDED)
        metrics = run.tracker.finalize()
        logger.info(
            "extraction_outcome=success attempts=%d wall_time=%.2fs",
            metrics.attempts,
            metrics.wall_time,
        )
        return Success(value=record.submitted_value, metrics=metrics)

    def _exhausted(self, run: _ExtractionRun) -> MaxRetriesExceeded:
        run.transition(ExtractionState.EXHAUSTED)
        metrics = run.tracker.finalize()
        last = run.history[-1]
        logger.warning(
            "extraction_outcome=max_retries_exceeded attempts=%d wall_time=%.2fs last_errors=%s",
            metrics.attempts,
            metrics.wall_time,
            "; ".join(last.validation_errors),
        )
        return MaxRetriesExceeded(
            attempts=list(run.history),
            raw_output_of_last=last.raw_agent_output,
            metrics=metrics,
        )

    def _agent_faulted(self, run: _ExtractionRun, cause: str, error: BaseException) -> AgentError:
        run.transition(ExtractionState.AGENT_FAULTED)
        metrics = run.tracker.finalize()
        logger.warning("extraction_outcome=agent_error attempts=%d cause=%s", metrics.attempts, cause)
        return AgentError(cause=cause, metrics=metrics, attempts=list(run.history), error=error)


def _adapter_name(adapter: "AgentAdapter") -> str:
    return getattr(adapter, "name", type(adapter).__name__)


def _acceptance_check(
    callback: Callable[[Any], Optional[str]], value: Any, attempt: int
) -> Optional[str]:
    """Run the caller's acceptance check on a schema-valid value.

    The callback returns None (or an empty string) to accept and a reason to
    reject. A callback that raises rejects the value with the exception as
    the reason. Returns the rejection message, or None when accepted.
    """
    try:
        reason = callback(copy.deepcopy(value))
    except Exception as e:
        logger.warning("Acceptance check raised in attempt %d: %s", attempt, e)
        reason = f"{type(e).__name__}: {e}"
    if not reason:
        return None
    logger.info("Acceptance check rejected attempt %d: %s", attempt, reason)
    return f"{REJECTED_CAUSE}: {reason}"


def _raw_output(outcome: ExitOutcome) -> str:
    if not outcome.stderr:
        return outcome.stdout
    if not outcome.stdout:
        return f"[stderr]\n{outcome.stderr}"
    return f"{outcome.stdout}\n[stderr]\n{outcome.stderr}"


def _missing_submission_cause(outcome: ExitOutcome, timeout: float) -> Tuple[str, AttemptFailure]:
    """Explain why an attempt ended without a submission."""
    if outcome.io_error is not None:
        return f"agent output could not be captured: {outcome.io_error}", AttemptFailure.IO_ERROR
    if outcome.timed_out:
        return f"agent timed out after {timeout:g}s without submitting a result", AttemptFailure.TIMEOUT
    if outcome.exit_code not in (0, None):
        cause = f"agent exited with code {outcome.exit_code} without submitting a result"
        tail = outcome.stderr.strip()[-_STDERR_TAIL_CHARS:]
        if tail:
            cause += f" (stderr: {tail})"
        return cause, AttemptFailure.EXIT_CODE
    for event in reversed(outcome.events):
        if is_error_result(event):
            detail = result_text(event) or event.text
            return f"{NO_SUBMISSION_CAUSE} (agent reported an error: {detail})", AttemptFailure.NO_SUBMISSION
    return NO_SUBMISSION_CAUSE, AttemptFailure.NO_SUBMISSION


# =============================================================================
# Entry points
# =============================================================================


async def extract(
    request: ExtractionRequest,
    adapter: Optional["AgentAdapter"] = None,
    supervisor: Optional[ProcessSupervisor] = None,
    on_event: Optional[EventCallback] = None,
) -> ExtractionOutcome:
    """Obtain a schema-conforming value for ``request`` from an agent."""
    orchestrator = ExtractionOrchestrator(adapter=adapter, supervisor=supervisor, on_event=on_event)
    return await orchestrator.extract(request)


def extract_sync(
    request: ExtractionRequest,
    adapter: Optional["AgentAdapter"] = None,
    supervisor: Optional[ProcessSupervisor] = None,
    on_event: Optional[EventCallback] = None,
) -> ExtractionOutcome:
    """Synchronous wrapper around extract()."""
    return asyncio.run(extract(request, adapter=adapter, supervisor=supervisor, on_event=on_event))
