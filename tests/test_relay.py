"""Tests for the stdio MCP relay.

The bridge is replaced by an httpx.MockTransport. The BridgeClient helpers are
tested directly; one class runs the MCP server against an in-memory client
session to check the protocol mapping end to end.
"""

import json

import httpx
import pytest
from mcp.shared.memory import create_connected_server_and_client_session

from agentcast.runtime import relay
from agentcast.runtime.relay import BridgeClient, RelayError, create_server

TOOLS = [
    {"name": "example", "description": "Get an example", "parameters": {"type": "object", "properties": {}}},
    {
        "name": "validate",
        "description": "Validate",
        "parameters": {"type": "object", "properties": {"candidate": {}}, "required": ["candidate"]},
    },
    {
        "name": "submit",
        "description": "Submit",
        "parameters": {"type": "object", "properties": {"value": {}}, "required": ["value"]},
    },
]


def _bridge_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/tools":
        return httpx.Response(200, json={"tools": TOOLS})
    if request.url.path == "/call":
        body = json.loads(request.content)
        if body["tool"] == "example":
            return httpx.Response(200, json={"result": {"name": "example"}})
        if body["tool"] == "validate":
            return httpx.Response(200, json={"result": "valid"})
        return httpx.Response(
            403,
            json={"error": {"message": f"tool '{body['tool']}' is not permitted", "kind": "tool_not_permitted"}},
        )
    return httpx.Response(404)


@pytest.fixture
def bridge():
    client = httpx.AsyncClient(transport=httpx.MockTransport(_bridge_handler), base_url="http://bridge")
    return BridgeClient("http://bridge", client=client)


# =============================================================================
# Bridge client
# =============================================================================


class TestBridgeClient:
    @pytest.mark.asyncio
    async def test_list_maps_parameters_to_input_schema(self, bridge):
        tools = await bridge.list_tools()
        assert [t.name for t in tools] == ["example", "validate", "submit"]
        assert tools[2].inputSchema["required"] == ["value"]
        await bridge.aclose()

    @pytest.mark.asyncio
    async def test_call_returns_text_content(self, bridge):
        content = await bridge.call_tool("example", {})
        assert json.loads(content[0].text) == {"name": "example"}
        await bridge.aclose()

    @pytest.mark.asyncio
    async def test_string_result_is_passed_through(self, bridge):
        content = await bridge.call_tool("validate", {"candidate": 1})
        assert content[0].text == "valid"
        await bridge.aclose()

    @pytest.mark.asyncio
    async def test_bridge_error_raises_with_message(self, bridge):
        with pytest.raises(RelayError) as exc_info:
            await bridge.call_tool("Bash", None)
        assert str(exc_info.value) == "tool 'Bash' is not permitted"
        await bridge.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_bridge(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://bridge")
        bridge = BridgeClient("http://bridge", client=client)
        with pytest.raises(RelayError) as exc_info:
            await bridge.call_tool("example", {})
        assert "tool bridge unavailable" in str(exc_info.value)
        await bridge.aclose()


# =============================================================================
# MCP session
# =============================================================================


class TestMcpSession:
    @pytest.mark.asyncio
    async def test_list_and_call_over_mcp(self, bridge):
        server = create_server(bridge, "agentcast")
        async with create_connected_server_and_client_session(server) as session:
            listing = await session.list_tools()
            assert [t.name for t in listing.tools] == ["example", "validate", "submit"]

            result = await session.call_tool("example", {})
            assert result.isError is False
            assert json.loads(result.content[0].text) == {"name": "example"}

            rejected = await session.call_tool("shell_exec", {"command": "ls"})
            assert rejected.isError is True
            assert "not permitted" in rejected.content[0].text
        await bridge.aclose()


class TestMain:
    def test_requires_endpoint(self, monkeypatch):
        monkeypatch.delenv("AGENTCAST_BRIDGE_URL", raising=False)
        with pytest.raises(SystemExit):
            relay.main([])
