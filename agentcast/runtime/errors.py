"""
errors.py - Exception hierarchy for agentcast.

Retry-contract failures (timeouts, schema violations, missing submissions,
stream capture failures) are caught by the orchestrator and turned into
attempt records. Only setup failures (SpawnError, AdapterError, BridgeError,
InvalidSchemaError) end an extraction early, and even those are returned as
an AgentError outcome rather than raised to the caller of extract().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:
    from .schema_tools import ValidationIssue


class AgentcastError(Exception):
    """Base exception for agentcast errors."""

    pass


# =============================================================================
# Process errors
# =============================================================================


class SpawnError(AgentcastError):
    """Raised when the agent binary cannot be executed."""

    def __init__(self, binary_path: str, cause: Optional[BaseException] = None):
        self.binary_path = binary_path
        self.cause = cause
        msg = f"failed to spawn agent binary '{binary_path}'"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class AdapterError(AgentcastError):
    """Raised when an adapter cannot prepare the command line for an attempt."""

    def __init__(self, adapter: str, cause: BaseException):
        self.adapter = adapter
        self.cause = cause
        super().__init__(f"adapter '{adapter}' could not prepare the agent: {cause}")


class AgentTimeoutError(AgentcastError):
    """Raised when an agent process outlives its per-attempt timeout."""

    def __init__(self, timeout: float, pid: Optional[int] = None):
        self.timeout = timeout
        self.pid = pid
        super().__init__(f"agent timed out after {timeout:g}s")


class ProcessIOError(AgentcastError):
    """Raised when capturing an output stream fails."""

    def __init__(self, stream: str, reason: str):
        self.stream = stream
        self.reason = reason
        super().__init__(f"failed to capture {stream}: {reason}")


# =============================================================================
# Schema errors
# =============================================================================


class InvalidSchemaError(AgentcastError):
    """Raised when the caller's schema is not itself a valid JSON Schema."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"invalid JSON schema: {message}")


class SchemaViolation(AgentcastError):
    """Raised when a candidate value does not conform to the schema."""

    def __init__(self, issues: Iterable["ValidationIssue"]):
        self.issues: List["ValidationIssue"] = list(issues)
        super().__init__("; ".join(str(i) for i in self.issues) or "schema violation")


# =============================================================================
# Tool bridge errors
# =============================================================================


class ToolCallError(AgentcastError):
    """Base class for errors returned to the agent over the bridge."""

    kind = "error"
    status_code = 400


class ToolNotPermitted(ToolCallError):
    """Raised when the agent calls a tool outside the containment allowlist."""

    kind = "tool_not_permitted"
    status_code = 403

    def __init__(self, tool: str, allowed: Iterable[str], reason: Optional[str] = None):
        self.tool = tool
        self.allowed = sorted(allowed)
        msg = reason or (
            f"tool '{tool}' is not permitted; allowed tools: {', '.join(self.allowed)}"
        )
        super().__init__(msg)


class ToolNotFound(ToolCallError):
    """Raised when a permitted tool name has no handler."""

    kind = "not_found"
    status_code = 404

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"tool '{tool}' not found")


class ToolArgumentError(ToolCallError):
    """Raised when a tool call is missing a required argument."""

    kind = "bad_arguments"
    status_code = 400

    def __init__(self, tool: str, message: str):
        self.tool = tool
        super().__init__(f"{tool}: {message}")


class BridgeError(AgentcastError):
    """Raised when the tool bridge endpoint cannot be started."""

    pass
