"""
relay.py - stdio MCP server that relays tool calls to the tool bridge.

Agent CLIs such as Claude Code load tools from MCP servers they launch
themselves over stdio. The relay is that server: it lists the bridge's tools
and forwards every call to the bridge's HTTP endpoint, so the bridge (and
the submission it records) stays in the host process.

Bridge errors (not permitted, not found, bad arguments) are raised from the
call handler, which the MCP server turns into tool results with
``isError: true`` so the agent can read them and adapt.

Usage (standalone):
    python -m agentcast.runtime.relay --endpoint http://127.0.0.1:50123
    AGENTCAST_BRIDGE_URL=http://127.0.0.1:50123 python -m agentcast.runtime.relay

Usage (with Claude Code):
    ClaudeCodeAdapter writes an --mcp-config entry that starts this module.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import httpx
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "agentcast"
ENDPOINT_ENV = "AGENTCAST_BRIDGE_URL"


class RelayError(Exception):
    """A tool call the bridge rejected or could not serve."""

    pass


# ============================================================================
# Bridge client
# ============================================================================


class BridgeClient:
    """Async HTTP client for one tool bridge endpoint.

    Args:
        endpoint: Base URL of the bridge.
        client: HTTP client to use (tests pass one with a mock transport).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        endpoint: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.endpoint, timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def list_tools(self) -> List[Tool]:
        """Fetch the bridge's tool listing as MCP tools."""
        response = await self.client.get("/tools")
        response.raise_for_status()
        return [
            Tool(
                name=tool["name"],
                description=tool.get("description", ""),
                inputSchema=tool.get("parameters") or {"type": "object"},
            )
            for tool in response.json().get("tools", [])
        ]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
        """Forward one call to the bridge.

        Raises:
            RelayError: The bridge rejected the call or is unreachable.
        """
        try:
            response = await self.client.post("/call", json={"tool": name, "arguments": arguments or {}})
        except httpx.HTTPError as e:
            logger.error("Bridge request failed: %s", e)
            raise RelayError(f"tool bridge unavailable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_success and isinstance(body, dict) and "result" in body:
            result = body["result"]
            text = result if isinstance(result, str) else json.dumps(result, indent=2)
            return [TextContent(type="text", text=text)]

        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            message = str(error["message"])
        else:
            message = f"tool call failed with HTTP {response.status_code}"
        logger.debug("Tool %s failed: %s", name, message)
        raise RelayError(message)


# ============================================================================
# MCP Server
# ============================================================================


def create_server(bridge: BridgeClient, server_name: str = DEFAULT_SERVER_NAME) -> Server:
    """Create the MCP server exposing ``bridge``'s tools."""
    server = Server(server_name)

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        return await bridge.list_tools()

    @server.call_tool()
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        return await bridge.call_tool(name, arguments)

    return server


async def serve(endpoint: str, server_name: str = DEFAULT_SERVER_NAME) -> None:
    """Run the relay on stdin/stdout until the agent closes the stream."""
    bridge = BridgeClient(endpoint)
    server = create_server(bridge, server_name)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        await bridge.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="agentcast-relay",
        description="stdio MCP relay for the agentcast tool bridge",
    )
    parser.add_argument(
        "--endpoint",
        default=os.environ.get(ENDPOINT_ENV),
        help=f"Bridge base URL (default: ${ENDPOINT_ENV})",
    )
    parser.add_argument("--server-name", default=DEFAULT_SERVER_NAME)
    args = parser.parse_args(argv)

    if not args.endpoint:
        parser.error(f"--endpoint or {ENDPOINT_ENV} is required")

    # stdout carries protocol messages; logs go to stderr.
    logging.basicConfig(
        level=os.environ.get("AGENTCAST_RELAY_LOG_LEVEL", "WARNING"),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(serve(args.endpoint, args.server_name))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
