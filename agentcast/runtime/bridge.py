"""
bridge.py - Tool bridge serving example/validate/submit to a spawned agent.

The bridge owns the three schema-driven operations for one extraction
request and exposes them over a loopback HTTP endpoint:

    GET  /tools   -> {"tools": [{name, description, parameters}, ...]}
    POST /call    {tool, arguments} -> {"result": ...}
                                     |  {"error": {"message", "kind"}}
    GET  /health

Errors map to status codes: 403 tool_not_permitted, 404 not_found,
400 bad_arguments. Agents that speak MCP over stdio reach the endpoint
through agentcast.runtime.relay.

``submit`` never fails on the wire. Its argument is stored for the
orchestrator, which takes it once per attempt. A second submit in the same
attempt replaces the first (last write wins) and is logged.

Usage:
    bridge = ToolBridge(schema, policy)
    bridge.begin_attempt(1)
    async with bridge.serve() as endpoint:
        ...  # spawn agent pointed at endpoint.url
    submission = bridge.take_submission()
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import socket
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Sequence

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from agentcast.config import runtime_config

from .containment import ContainmentPolicy, PreCallHook, create_allowlist_hook
from .errors import BridgeError, ToolArgumentError, ToolCallError, ToolNotFound, ToolNotPermitted
from .schema_tools import SchemaValidator, build_example
from .types import JsonValue, ToolDefinition

logger = logging.getLogger(__name__)

VALID_RESULT = "valid"
SUBMIT_RESULT = "acknowledged"

_SERVER_START_TIMEOUT = 10.0
_SERVER_STOP_TIMEOUT = 5.0


# =============================================================================
# Tool listing
# =============================================================================


def build_tool_listing(schema: Dict[str, Any]) -> List[ToolDefinition]:
    """Build the example/validate/submit definitions for ``schema``."""
    return [
        ToolDefinition(
            name="example",
            description=(
                "Get an example JSON value in the expected format. "
                "Call this first to see the required structure."
            ),
            parameters_schema={"type": "object", "properties": {}, "additionalProperties": False},
        ),
        ToolDefinition(
            name="validate",
            description=(
                "Validate a candidate JSON value against the required schema. Returns "
                "'valid' or a list of every violation. Use this before submitting."
            ),
            parameters_schema={
                "type": "object",
                "properties": {
                    "candidate": {"description": "The JSON value to check."},
                },
                "required": ["candidate"],
                "additionalProperties": False,
            },
        ),
        ToolDefinition(
            name="submit",
            description=(
                "Submit the final JSON value. This is the only accepted way to "
                "deliver your answer. Required schema: " + _compact(schema)
            ),
            parameters_schema={
                "type": "object",
                "properties": {
                    "value": {"description": "The final JSON value."},
                },
                "required": ["value"],
                "additionalProperties": False,
            },
        ),
    ]


def _compact(schema: Dict[str, Any]) -> str:
    return json.dumps(schema, separators=(",", ":"), sort_keys=True)


# =============================================================================
# Wire models
# =============================================================================


class ToolCallRequest(BaseModel):
    """Body of POST /call."""

    tool: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolCallResponse(BaseModel):
    """Successful tool call."""

    result: Any


class ErrorBody(BaseModel):
    message: str
    kind: str = "error"


class ErrorEnvelope(BaseModel):
    """Failed tool call."""

    error: ErrorBody


class ToolListResponse(BaseModel):
    tools: List[Dict[str, Any]]


# =============================================================================
# Bridge
# =============================================================================


@dataclass(frozen=True)
class Submission:
    """A value handed to the orchestrator by ``submit``.

    ``sequence`` counts submit calls in the attempt; values above 1 mean
    earlier submissions were replaced.
    """

    value: JsonValue
    sequence: int


@dataclass(frozen=True)
class ToolCallRecord:
    tool: str
    allowed: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class BridgeEndpoint:
    host: str
    port: int

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


class ToolBridge:
    """Serves the three bridge tools for one extraction request.

    Args:
        schema: Target schema of the request.
        policy: Active containment policy; its allowlist gates every call.
        strict: Strict validation (see schema_tools).
        example: Caller-supplied example returned by ``example`` instead of
            one generated from the schema.
        hooks: Extra pre-call hooks, run after the allowlist check.
    """

    def __init__(
        self,
        schema: Dict[str, Any],
        policy: Optional[ContainmentPolicy] = None,
        strict: bool = True,
        example: Optional[JsonValue] = None,
        hooks: Optional[Sequence[PreCallHook]] = None,
    ):
        self.schema = copy.deepcopy(schema)
        self.policy = policy or ContainmentPolicy()
        self.validator = SchemaValidator(self.schema, strict=strict)
        self.listing = build_tool_listing(self.schema)
        self.example_value = copy.deepcopy(example) if example is not None else build_example(self.schema)
        self.hooks: List[PreCallHook] = [create_allowlist_hook(self.policy), *(hooks or [])]

        self.attempt = 0
        self._pending: Optional[Submission] = None
        self._submit_count = 0
        self.call_log: List[ToolCallRecord] = []

    # -------------------------------------------------------------------------
    # Attempt state
    # -------------------------------------------------------------------------

    def begin_attempt(self, attempt: int) -> None:
        """Reset per-attempt state (pending submission and call log)."""
        self.attempt = attempt
        self._pending = None
        self._submit_count = 0
        self.call_log = []

    def take_submission(self) -> Optional[Submission]:
        """Hand the pending submission to the caller. Returns None after the first take."""
        submission, self._pending = self._pending, None
        return submission

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def dispatch(self, tool: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Run one tool call.

        Raises:
            ToolNotPermitted: ``tool`` is rejected by the allowlist or a hook.
            ToolNotFound: ``tool`` is permitted but has no handler.
            ToolArgumentError: Required argument missing or unexpected ones given.
        """
        arguments = arguments or {}
        context = {"attempt": self.attempt}
        for hook in self.hooks:
            allow, reason = hook(tool, arguments, context)
            if not allow:
                logger.info("Rejected tool call %r in attempt %d: %s", tool, self.attempt, reason)
                self.call_log.append(ToolCallRecord(tool, allowed=False, error=reason))
                raise ToolNotPermitted(tool, self.policy.allowed_tool_names, reason)

        handler = {
            "example": self._example,
            "validate": self._validate,
            "submit": self._submit,
        }.get(tool)
        if handler is None:
            self.call_log.append(ToolCallRecord(tool, allowed=True, error="not found"))
            raise ToolNotFound(tool)

        try:
            result = handler(arguments)
        except ToolArgumentError as e:
            self.call_log.append(ToolCallRecord(tool, allowed=True, error=str(e)))
            raise
        self.call_log.append(ToolCallRecord(tool, allowed=True))
        return result

    def _example(self, arguments: Dict[str, Any]) -> Any:
        _check_arguments("example", arguments, required=())
        return copy.deepcopy(self.example_value)

    def _validate(self, arguments: Dict[str, Any]) -> Any:
        _check_arguments("validate", arguments, required=("candidate",))
        errors = self.validator.error_messages(arguments["candidate"])
        logger.debug("validate in attempt %d: %d error(s)", self.attempt, len(errors))
        return errors if errors else VALID_RESULT

    def _submit(self, arguments: Dict[str, Any]) -> Any:
        _check_arguments("submit", arguments, required=("value",))
        self._submit_count += 1
        if self._pending is not None:
            logger.warning(
                "Agent submitted again in attempt %d (submission #%d); replacing pending value",
                self.attempt,
                self._submit_count,
            )
        self._pending = Submission(value=copy.deepcopy(arguments["value"]), sequence=self._submit_count)
        return SUBMIT_RESULT

    # -------------------------------------------------------------------------
    # HTTP endpoint
    # -------------------------------------------------------------------------

    def create_app(self) -> FastAPI:
        """Create the FastAPI application serving this bridge."""
        app = FastAPI(
            title="agentcast tool bridge",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )

        @app.exception_handler(ToolCallError)
        async def tool_error_handler(request: Request, exc: ToolCallError) -> JSONResponse:
            body = ErrorEnvelope(error=ErrorBody(message=str(exc), kind=exc.kind))
            return JSONResponse(status_code=exc.status_code, content=body.model_dump())

        @app.exception_handler(RequestValidationError)
        async def request_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
            body = ErrorEnvelope(error=ErrorBody(message=f"malformed call request: {exc.errors()}", kind="bad_request"))
            return JSONResponse(status_code=400, content=body.model_dump())

        @app.get("/health")
        async def health() -> Dict[str, Any]:
            return {"status": "ok", "attempt": self.attempt}

        @app.get("/tools", response_model=ToolListResponse)
        async def list_tools() -> ToolListResponse:
            return ToolListResponse(tools=[t.to_wire() for t in self.listing])

        @app.post("/call", response_model=ToolCallResponse)
        async def call_tool(request: ToolCallRequest) -> ToolCallResponse:
            return ToolCallResponse(result=self.dispatch(request.tool, request.arguments))

        return app

    @contextlib.asynccontextmanager
    async def serve(self, host: Optional[str] = None) -> AsyncIterator[BridgeEndpoint]:
        """Serve the bridge on a loopback port for the duration of the block.

        Raises:
            BridgeError: The server did not start.
        """
        host = host or runtime_config.get_bridge_host()
        with _bound_socket(host) as sock:
            port = sock.getsockname()[1]
            config = uvicorn.Config(
                self.create_app(),
                log_config=None,
                log_level="warning",
                access_log=False,
                lifespan="off",
            )
            server = _EmbeddedServer(config)
            task = asyncio.create_task(server.serve(sockets=[sock]))
            try:
                await _wait_started(server, task)
                endpoint = BridgeEndpoint(host=host, port=port)
                logger.debug("Tool bridge listening on %s", endpoint.url)
                yield endpoint
            finally:
                server.should_exit = True
                try:
                    await asyncio.wait_for(asyncio.shield(task), _SERVER_STOP_TIMEOUT)
                except asyncio.TimeoutError:
                    server.force_exit = True
                    task.cancel()
                finally:
                    await asyncio.gather(task, return_exceptions=True)
                logger.debug("Tool bridge on port %d stopped", port)


def _check_arguments(tool: str, arguments: Dict[str, Any], required: Sequence[str]) -> None:
    if not isinstance(arguments, dict):
        raise ToolArgumentError(tool, "arguments must be a JSON object")
    missing = [name for name in required if name not in arguments]
    if missing:
        raise ToolArgumentError(tool, f"missing required argument(s): {', '.join(missing)}")
    unexpected = sorted(set(arguments) - set(required))
    if unexpected:
        raise ToolArgumentError(tool, f"unexpected argument(s): {', '.join(unexpected)}")


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves the host's signal handlers alone."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


@contextlib.contextmanager
def _bound_socket(host: str) -> Iterator[socket.socket]:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, 0))
        sock.listen(64)
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise BridgeError(f"cannot bind tool bridge on {host}: {e}") from e
    try:
        yield sock
    finally:
        sock.close()


async def _wait_started(server: uvicorn.Server, task: "asyncio.Task[None]") -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + _SERVER_START_TIMEOUT
    while not server.started:
        if task.done():
            exc = task.exception() if not task.cancelled() else None
            raise BridgeError(f"tool bridge exited during startup: {exc}")
        if loop.time() > deadline:
            raise BridgeError("tool bridge did not start in time")
        await asyncio.sleep(0.01)
