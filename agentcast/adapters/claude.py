"""Adapter for the Claude Code CLI.

Builds a ``claude --print`` invocation that:
- streams events as JSON lines (--output-format stream-json --verbose)
- loads only the agentcast relay as MCP server (--mcp-config + --strict-mcp-config)
- disables built-in tools (--tools "") or limits them to an explicit list
- pre-approves the bridge tools as mcp__<server>__<tool> (--allowed-tools)
- disallows every other standard tool, since allowlists alone only affect prompting
- disables slash commands when the policy asks for it
- appends the example -> validate -> submit workflow to the system prompt

Prompts larger than ARG_THRESHOLD bytes go through stdin instead of argv.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from agentcast.config import runtime_config
from agentcast.runtime.containment import BuiltinToolsMode, ContainmentPolicy
from agentcast.runtime.prompts import build_system_prompt

from .base import AgentInvocation

logger = logging.getLogger(__name__)

ARG_THRESHOLD = 30_000
MCP_CONFIG_FILENAME = ".agentcast-mcp.json"

_PACKAGE_ROOT = Path(__file__).resolve().parents[2]


def mcp_tool_name(server_name: str, tool: str) -> str:
    """Name under which Claude Code exposes an MCP tool."""
    return f"mcp__{server_name}__{tool}"


@dataclass
class ClaudeCodeAdapter:
    """Invocation builder for ``claude``.

    Args:
        binary_path: CLI to run (default from config / AGENTCAST_CLAUDE_PATH).
        model: Model override (default from config / AGENTCAST_CLAUDE_MODEL).
        server_name: MCP server name the bridge tools appear under.
        instructions: Replaces the default workflow instructions.
        system_prompt: Caller text placed before the workflow instructions.
        extra_args: Additional CLI arguments placed before the prompt.
        env: Extra environment variables for the CLI.
        relay_command: Command that starts the stdio relay.
    """

    binary_path: Optional[str] = None
    model: Optional[str] = None
    server_name: Optional[str] = None
    instructions: Optional[str] = None
    system_prompt: Optional[str] = None
    extra_args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    relay_command: Optional[List[str]] = None
    name: str = "claude"

    def __post_init__(self) -> None:
        if self.binary_path is None:
            self.binary_path = runtime_config.get_claude_path()
        if self.model is None:
            self.model = runtime_config.get_claude_model()
        if self.server_name is None:
            self.server_name = runtime_config.get_server_name()
        if self.relay_command is None:
            self.relay_command = [sys.executable, "-m", "agentcast.runtime.relay"]

    def allowed_tools(self, policy: ContainmentPolicy) -> List[str]:
        """Tools pre-approved for the CLI: bridge tools plus allowed built-ins."""
        assert self.server_name is not None
        tools = [mcp_tool_name(self.server_name, t) for t in sorted(policy.allowed_tool_names)]
        if policy.builtin_tools_mode == BuiltinToolsMode.EXPLICIT_ALLOW:
            tools.extend(policy.builtin_tools)
        return tools

    def mcp_config(self, tool_endpoint: str) -> Dict[str, Any]:
        assert self.relay_command is not None and self.server_name is not None
        return {
            "mcpServers": {
                self.server_name: {
                    "command": self.relay_command[0],
                    "args": [
                        *self.relay_command[1:],
                        "--endpoint",
                        tool_endpoint,
                        "--server-name",
                        self.server_name,
                    ],
                    "env": {"PYTHONPATH": str(_PACKAGE_ROOT)},
                }
            }
        }

    def write_mcp_config(self, directory: Path, tool_endpoint: str) -> Path:
        """Write the MCP config for this attempt into ``directory``."""
        path = Path(directory) / MCP_CONFIG_FILENAME
        path.write_text(json.dumps(self.mcp_config(tool_endpoint), indent=2), encoding="utf-8")
        return path

    def build_invocation(
        self,
        prompt: str,
        containment_policy: ContainmentPolicy,
        tool_endpoint: str,
    ) -> AgentInvocation:
        """Build the ``claude`` command line for one attempt.

        Raises:
            ValueError: The policy has no sandbox directory to hold the MCP config.
        """
        policy = containment_policy
        if policy.sandbox_directory is None:
            raise ValueError("ClaudeCodeAdapter requires a policy bound to a sandbox directory")
        assert self.binary_path is not None

        config_path = self.write_mcp_config(policy.sandbox_directory, tool_endpoint)
        allowed = self.allowed_tools(policy)

        args: List[str] = ["--print", "--output-format", "stream-json", "--verbose"]
        if self.model:
            args += ["--model", self.model]

        system_prompt = build_system_prompt(
            [t for t in allowed if t.startswith("mcp__")], self.instructions
        )
        if self.system_prompt:
            system_prompt = f"{self.system_prompt}\n\n{system_prompt}"
        args += ["--append-system-prompt", system_prompt]

        args += ["--mcp-config", str(config_path), "--strict-mcp-config"]

        if policy.builtin_tools_mode == BuiltinToolsMode.DISABLED:
            args += ["--tools", ""]
        else:
            args += ["--tools", ",".join(policy.builtin_tools)]

        args += ["--allowed-tools", ",".join(allowed)]
        disallowed = policy.disallowed_builtin_tools()
        if disallowed:
            args += ["--disallowed-tools", ",".join(disallowed)]

        if policy.disable_interactive_escapes:
            args.append("--disable-slash-commands")

        args += self.extra_args

        stdin_input: Optional[bytes] = None
        encoded = prompt.encode("utf-8")
        if len(encoded) > ARG_THRESHOLD:
            logger.debug("Prompt is %d bytes; delivering it on stdin", len(encoded))
            stdin_input = encoded
        else:
            args.append(prompt)

        return AgentInvocation(
            binary_path=self.binary_path,
            args=args,
            env=dict(self.env),
            cwd=policy.sandbox_directory,
            input=stdin_input,
        )
