"""
agentcast: schema-conforming structured output from CLI AI agents.

The caller supplies a JSON Schema and a prompt. agentcast spawns the agent,
gives it exactly three tools (example, validate, submit) and retries with
validation feedback until the agent submits a conforming value or the
attempt budget runs out.

Quick Start:
    from agentcast import ExtractionRequest, Success, extract_sync

    schema = {
        "type": "object",
        "properties": {"name": {"type": "string"}, "age": {"type": "integer"}},
        "required": ["name", "age"],
    }
    request = ExtractionRequest(
        schema=schema,
        prompt="Extract the person mentioned in the text.",
        payload="Bob turned thirty last week.",
    )
    outcome = extract_sync(request)
    if isinstance(outcome, Success):
        print(outcome.value, outcome.metrics.attempts)

Custom agents:
    from agentcast import CommandAdapter, extract

    outcome = await extract(request, adapter=CommandAdapter("my-agent", ["--json"]))
"""

__version__ = "0.1.0"

# Request and outcome types
from .runtime.types import (
    AgentError,
    AttemptFailure,
    AttemptRecord,
    ExtractionMetrics,
    ExtractionOutcome,
    ExtractionRequest,
    MaxRetriesExceeded,
    Success,
    ToolDefinition,
)

# Containment
from .runtime.containment import (
    BRIDGE_TOOL_NAMES,
    BuiltinToolsMode,
    ContainmentPolicy,
)

# Core components
from .runtime.bridge import ToolBridge, build_tool_listing
from .runtime.orchestrator import ExtractionOrchestrator, extract, extract_sync
from .runtime.supervisor import ExitOutcome, ProcessStatus, ProcessSupervisor

# Errors
from .runtime.errors import (
    AdapterError,
    AgentcastError,
    AgentTimeoutError,
    InvalidSchemaError,
    ProcessIOError,
    SchemaViolation,
    SpawnError,
    ToolNotFound,
    ToolNotPermitted,
)

# Adapters
from .adapters import AgentAdapter, AgentInvocation, ClaudeCodeAdapter, CommandAdapter

__all__ = [
    # Version
    "__version__",
    # Types
    "AgentError",
    "AttemptFailure",
    "AttemptRecord",
    "ExtractionMetrics",
    "ExtractionOutcome",
    "ExtractionRequest",
    "MaxRetriesExceeded",
    "Success",
    "ToolDefinition",
    # Containment
    "BRIDGE_TOOL_NAMES",
    "BuiltinToolsMode",
    "ContainmentPolicy",
    # Core
    "ExitOutcome",
    "ExtractionOrchestrator",
    "ProcessStatus",
    "ProcessSupervisor",
    "ToolBridge",
    "build_tool_listing",
    "extract",
    "extract_sync",
    # Errors
    "AdapterError",
    "AgentcastError",
    "AgentTimeoutError",
    "InvalidSchemaError",
    "ProcessIOError",
    "SchemaViolation",
    "SpawnError",
    "ToolNotFound",
    "ToolNotPermitted",
    # Adapters
    "AgentAdapter",
    "AgentInvocation",
    "ClaudeCodeAdapter",
    "CommandAdapter",
]
