"""
base.py - Agent adapter interface.

An adapter turns (prompt, containment policy, tool endpoint) into a
ready-to-spawn command line. Everything that differs between agent CLIs
(flag names, how tools are registered, how built-in capabilities are
switched off) lives behind this interface; the orchestrator never branches
on which agent it is driving.

Contract: when ``policy.builtin_tools_mode`` is DISABLED the invocation must
make a best effort to keep the agent to the three bridge tools. The bridge's
allowlist is the only check the host performs itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from agentcast.runtime.containment import ContainmentPolicy


@dataclass(frozen=True)
class AgentInvocation:
    """A command line ready for ProcessSupervisor.spawn().

    Attributes:
        binary_path: Executable to run.
        args: Arguments after the executable.
        env: Variables layered over the host environment.
        cwd: Working directory (normally the policy's sandbox directory).
        input: Bytes for stdin, for prompts too large for argv.
    """

    binary_path: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[Path] = None
    input: Optional[bytes] = None


@runtime_checkable
class AgentAdapter(Protocol):
    """Builds the invocation of one agent CLI."""

    name: str

    def build_invocation(
        self,
        prompt: str,
        containment_policy: ContainmentPolicy,
        tool_endpoint: str,
    ) -> AgentInvocation:
        """Build the command line for one attempt.

        Args:
            prompt: Full prompt for this attempt (task plus any feedback).
            containment_policy: Active policy, bound to the sandbox directory.
            tool_endpoint: Base URL of the tool bridge for this attempt.
        """
        ...
