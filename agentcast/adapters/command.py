"""Generic adapter for agents driven by a plain command line.

The prompt is passed as the last argument and in ``AGENTCAST_PROMPT``; the
bridge endpoint is passed in ``AGENTCAST_BRIDGE_URL``. Useful for in-house
agents and for tests.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agentcast.runtime.containment import ContainmentPolicy

from .base import AgentInvocation

PROMPT_ENV = "AGENTCAST_PROMPT"
ENDPOINT_ENV = "AGENTCAST_BRIDGE_URL"
ALLOWED_TOOLS_ENV = "AGENTCAST_ALLOWED_TOOLS"


@dataclass
class CommandAdapter:
    """Runs ``binary_path *args <prompt>``.

    Args:
        binary_path: Executable to run.
        args: Fixed arguments placed before the prompt.
        env: Extra environment variables.
        pass_prompt_as_argument: Append the prompt to argv.
    """

    binary_path: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    pass_prompt_as_argument: bool = True
    name: str = "command"

    def build_invocation(
        self,
        prompt: str,
        containment_policy: ContainmentPolicy,
        tool_endpoint: str,
    ) -> AgentInvocation:
        args = list(self.args)
        if self.pass_prompt_as_argument:
            args.append(prompt)

        env = dict(self.env)
        env[PROMPT_ENV] = prompt
        env[ENDPOINT_ENV] = tool_endpoint
        env[ALLOWED_TOOLS_ENV] = json.dumps(sorted(containment_policy.allowed_tool_names))

        return AgentInvocation(
            binary_path=self.binary_path,
            args=args,
            env=env,
            cwd=containment_policy.sandbox_directory,
        )


def python_agent(script: str, *script_args: str, env: Optional[Dict[str, str]] = None) -> CommandAdapter:
    """Adapter running a Python agent script with the current interpreter."""
    return CommandAdapter(
        binary_path=sys.executable,
        args=[script, *script_args],
        env=dict(env or {}),
    )
