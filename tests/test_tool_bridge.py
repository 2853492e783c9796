"""Tests for the ToolBridge: listing, dispatch, containment and the HTTP endpoint."""

from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from agentcast.runtime.bridge import (
    SUBMIT_RESULT,
    VALID_RESULT,
    ToolBridge,
    build_tool_listing,
)
from agentcast.runtime.containment import ContainmentPolicy
from agentcast.runtime.errors import (
    InvalidSchemaError,
    ToolArgumentError,
    ToolNotFound,
    ToolNotPermitted,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def bridge(person_schema):
    b = ToolBridge(person_schema)
    b.begin_attempt(1)
    return b


@pytest.fixture
def client(bridge):
    return TestClient(bridge.create_app())


# =============================================================================
# Listing
# =============================================================================


class TestToolListing:
    def test_exactly_three_tools(self, person_schema):
        listing = build_tool_listing(person_schema)
        assert [t.name for t in listing] == ["example", "validate", "submit"]

    def test_submit_description_embeds_schema(self, person_schema):
        submit = build_tool_listing(person_schema)[2]
        assert '"required":["name","age"]' in submit.description

    def test_parameter_schemas(self, person_schema):
        example, validate, submit = build_tool_listing(person_schema)
        assert example.parameters_schema["properties"] == {}
        assert validate.parameters_schema["required"] == ["candidate"]
        assert submit.parameters_schema["required"] == ["value"]

    def test_wire_format(self, person_schema):
        wire = build_tool_listing(person_schema)[1].to_wire()
        assert set(wire) == {"name", "description", "parameters"}


# =============================================================================
# Dispatch
# =============================================================================


class TestDispatch:
    def test_example_returns_generated_value(self, bridge):
        assert bridge.dispatch("example") == {"name": "example", "age": 1}

    def test_example_prefers_caller_example(self, person_schema):
        b = ToolBridge(person_schema, example={"name": "Alice", "age": 30})
        assert b.dispatch("example") == {"name": "Alice", "age": 30}

    def test_validate_valid(self, bridge):
        assert bridge.dispatch("validate", {"candidate": {"name": "Bob", "age": 30}}) == VALID_RESULT

    def test_validate_returns_every_error(self, bridge):
        result = bridge.dispatch("validate", {"candidate": {"name": 1, "age": "30"}})
        assert result == [
            "At path '/age': '30' is not of type 'integer'",
            "At path '/name': 1 is not of type 'string'",
        ]

    def test_validate_does_not_submit(self, bridge):
        bridge.dispatch("validate", {"candidate": {"name": "Bob", "age": 30}})
        assert bridge.take_submission() is None

    def test_submit_stores_value(self, bridge):
        assert bridge.dispatch("submit", {"value": {"name": "Bob", "age": "30"}}) == SUBMIT_RESULT
        submission = bridge.take_submission()
        assert submission.value == {"name": "Bob", "age": "30"}
        assert submission.sequence == 1
        assert bridge.take_submission() is None

    def test_second_submit_replaces_first(self, bridge):
        bridge.dispatch("submit", {"value": {"name": "A", "age": 1}})
        bridge.dispatch("submit", {"value": {"name": "B", "age": 2}})
        submission = bridge.take_submission()
        assert submission.value == {"name": "B", "age": 2}
        assert submission.sequence == 2

    def test_submit_value_is_copied(self, bridge):
        value = {"name": "Bob", "age": 30}
        bridge.dispatch("submit", {"value": value})
        value["age"] = 99
        assert bridge.take_submission().value["age"] == 30

    def test_begin_attempt_clears_pending_and_log(self, bridge):
        bridge.dispatch("submit", {"value": 1})
        bridge.begin_attempt(2)
        assert bridge.take_submission() is None
        assert bridge.call_log == []
        assert bridge.attempt == 2

    def test_disallowed_tool(self, bridge):
        with pytest.raises(ToolNotPermitted) as exc_info:
            bridge.dispatch("shell_exec", {"command": "ls"})
        message = str(exc_info.value)
        assert "shell_exec" in message
        assert "example, submit, validate" in message
        assert bridge.call_log[-1].allowed is False

    def test_widened_but_unknown_tool_is_not_found(self, person_schema):
        b = ToolBridge(person_schema, ContainmentPolicy().widen("lookup"))
        with pytest.raises(ToolNotFound):
            b.dispatch("lookup")

    def test_missing_argument(self, bridge):
        with pytest.raises(ToolArgumentError) as exc_info:
            bridge.dispatch("submit", {})
        assert "value" in str(exc_info.value)

    def test_unexpected_argument(self, bridge):
        with pytest.raises(ToolArgumentError):
            bridge.dispatch("example", {"verbose": True})

    def test_extra_hook_can_reject(self, person_schema):
        def no_submit(tool, arguments, context):
            return (tool != "submit", "submissions closed")

        b = ToolBridge(person_schema, hooks=[no_submit])
        with pytest.raises(ToolNotPermitted) as exc_info:
            b.dispatch("submit", {"value": 1})
        assert str(exc_info.value) == "submissions closed"

    def test_call_log_records_calls(self, bridge):
        bridge.dispatch("example")
        bridge.dispatch("validate", {"candidate": {}})
        assert [c.tool for c in bridge.call_log] == ["example", "validate"]

    def test_invalid_schema(self):
        with pytest.raises(InvalidSchemaError):
            ToolBridge({"type": 12})


# =============================================================================
# HTTP endpoint
# =============================================================================


class TestHttpEndpoint:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "attempt": 1}

    def test_list_tools(self, client):
        tools = client.get("/tools").json()["tools"]
        assert [t["name"] for t in tools] == ["example", "validate", "submit"]
        assert "parameters" in tools[0]

    def test_call_example(self, client):
        response = client.post("/call", json={"tool": "example", "arguments": {}})
        assert response.status_code == 200
        assert response.json() == {"result": {"name": "example", "age": 1}}

    def test_call_validate_errors(self, client):
        response = client.post("/call", json={"tool": "validate", "arguments": {"candidate": {"name": "x"}}})
        assert response.status_code == 200
        assert response.json()["result"] == ["At path '/': 'age' is a required property"]

    def test_not_permitted_is_403(self, client):
        response = client.post("/call", json={"tool": "shell_exec", "arguments": {}})
        assert response.status_code == 403
        assert response.json()["error"]["kind"] == "tool_not_permitted"

    def test_bad_arguments_is_400(self, client):
        response = client.post("/call", json={"tool": "validate", "arguments": {}})
        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "bad_arguments"

    def test_malformed_request_is_400(self, client):
        response = client.post("/call", json={"arguments": {}})
        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "bad_request"

    def test_submit_over_http(self, client, bridge):
        response = client.post("/call", json={"tool": "submit", "arguments": {"value": {"name": "Bob", "age": 30}}})
        assert response.json() == {"result": SUBMIT_RESULT}
        assert bridge.take_submission().value == {"name": "Bob", "age": 30}


class TestServe:
    @pytest.mark.asyncio
    async def test_serve_on_loopback(self, bridge):
        async with bridge.serve("127.0.0.1") as endpoint:
            assert endpoint.host == "127.0.0.1"
            assert endpoint.port > 0
            async with httpx.AsyncClient(base_url=endpoint.url) as http:
                response = await http.post(
                    "/call", json={"tool": "submit", "arguments": {"value": {"name": "Bob", "age": 30}}}
                )
                assert response.status_code == 200
        assert bridge.take_submission().value == {"name": "Bob", "age": 30}

    @pytest.mark.asyncio
    async def test_port_released_after_exit(self, bridge):
        async with bridge.serve("127.0.0.1") as endpoint:
            url = endpoint.url
        async with httpx.AsyncClient() as http:
            with pytest.raises(httpx.ConnectError):
                await http.get(url + "/health")

    @pytest.mark.asyncio
    async def test_serve_twice(self, bridge):
        ports = []
        for attempt in (1, 2):
            bridge.begin_attempt(attempt)
            async with bridge.serve("127.0.0.1") as endpoint:
                async with httpx.AsyncClient(base_url=endpoint.url) as http:
                    body = (await http.get("/health")).json()
                assert body["attempt"] == attempt
                ports.append(endpoint.port)
        assert len(ports) == 2

    def test_listing_is_json_serializable(self, bridge):
        json.dumps([t.to_wire() for t in bridge.listing])
