"""Containment policy for spawned agents.

This module provides:
- ContainmentPolicy, the immutable tool/filesystem restriction attached to a request
- The bridge tool allowlist and the standard agent tool set
- An allowlist hook the tool bridge runs before dispatching a call
- The ephemeral sandbox directory each request owns

Containment is best-effort on the agent side (adapters translate the policy
into CLI flags); the allowlist check in the bridge is the one enforcement
point the host controls directly.
"""

from __future__ import annotations

import contextlib
import logging
import shutil
import tempfile
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

BRIDGE_TOOL_NAMES: Tuple[str, ...] = ("example", "validate", "submit")

# Built-in tools of CLI coding agents. Allowlists alone only affect permission
# prompting, so adapters also pass the complement as a disallow list.
ALL_STANDARD_TOOLS = frozenset([
    "Read", "Write", "Edit", "MultiEdit",
    "Bash", "Glob", "Grep",
    "BashOutput", "KillBash",
    "WebFetch", "WebSearch",
    "TodoRead", "TodoWrite",
    "Task", "Agent",
    "NotebookEdit", "NotebookRead",
    "AskUserQuestion",
    "ExitPlanMode",
    "ListMcpResources", "ReadMcpResource",
])

SANDBOX_PREFIX = "agentcast-"

# (tool_name, arguments, context) -> (allow, reason)
PreCallHook = Callable[[str, Dict[str, Any], Dict[str, Any]], Tuple[bool, Optional[str]]]


class BuiltinToolsMode(str, Enum):
    """How the agent's own built-in tools are exposed."""

    DISABLED = "disabled"
    EXPLICIT_ALLOW = "explicit_allow"


@dataclass(frozen=True)
class ContainmentPolicy:
    """Tool and filesystem restrictions applied before an agent is spawned.

    Attributes:
        allowed_tool_names: Bridge tools the agent may call. Exactly the three
            bridge tools unless widened explicitly.
        builtin_tools_mode: Whether the agent's built-in tools are disabled or
            limited to ``builtin_tools``.
        builtin_tools: Built-in tools allowed under EXPLICIT_ALLOW.
        sandbox_directory: Working directory for the agent. Set by
            sandbox_directory() for the lifetime of one request.
        disable_interactive_escapes: Disable slash commands and similar
            interactive features.
    """

    allowed_tool_names: FrozenSet[str] = field(default_factory=lambda: frozenset(BRIDGE_TOOL_NAMES))
    builtin_tools_mode: BuiltinToolsMode = BuiltinToolsMode.DISABLED
    builtin_tools: Tuple[str, ...] = ()
    sandbox_directory: Optional[Path] = None
    disable_interactive_escapes: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "allowed_tool_names", frozenset(self.allowed_tool_names))
        object.__setattr__(self, "builtin_tools", tuple(self.builtin_tools))
        if self.builtin_tools_mode == BuiltinToolsMode.DISABLED and self.builtin_tools:
            raise ValueError("builtin_tools requires builtin_tools_mode=EXPLICIT_ALLOW")
        if self.sandbox_directory is not None:
            object.__setattr__(self, "sandbox_directory", Path(self.sandbox_directory))

    @classmethod
    def explicit_allow(cls, builtin_tools: List[str], **kwargs: Any) -> "ContainmentPolicy":
        """Policy that lets the agent keep the named built-in tools."""
        return cls(
            builtin_tools_mode=BuiltinToolsMode.EXPLICIT_ALLOW,
            builtin_tools=tuple(builtin_tools),
            **kwargs,
        )

    def permits(self, tool_name: str) -> bool:
        return tool_name in self.allowed_tool_names

    def widen(self, *tool_names: str) -> "ContainmentPolicy":
        """Return a copy whose allowlist also contains ``tool_names``."""
        return replace(self, allowed_tool_names=self.allowed_tool_names | frozenset(tool_names))

    def with_sandbox(self, directory: Path) -> "ContainmentPolicy":
        return replace(self, sandbox_directory=Path(directory))

    def disallowed_builtin_tools(self) -> List[str]:
        """Standard agent tools that are not explicitly allowed, sorted."""
        if self.builtin_tools_mode == BuiltinToolsMode.DISABLED:
            return sorted(ALL_STANDARD_TOOLS)
        allowed = frozenset(self.builtin_tools)
        return sorted(t for t in ALL_STANDARD_TOOLS if t not in allowed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed_tool_names": sorted(self.allowed_tool_names),
            "builtin_tools_mode": self.builtin_tools_mode.value,
            "builtin_tools": list(self.builtin_tools),
            "sandbox_directory": str(self.sandbox_directory) if self.sandbox_directory else None,
            "disable_interactive_escapes": self.disable_interactive_escapes,
        }


def create_allowlist_hook(policy: ContainmentPolicy) -> PreCallHook:
    """Create a pre-call hook that rejects tools outside the policy allowlist.

    Args:
        policy: The active containment policy.

    Returns:
        A callable taking (tool_name, arguments, context) and returning
        (allow, reason).

    Example:
        >>> hook = create_allowlist_hook(ContainmentPolicy())
        >>> hook("shell_exec", {}, {})
        (False, "tool 'shell_exec' is not permitted; allowed tools: example, submit, validate")
    """
    allowed = policy.allowed_tool_names

    def allowlist_hook(
        tool_name: str, arguments: Dict[str, Any], context: Dict[str, Any]
    ) -> Tuple[bool, Optional[str]]:
        if tool_name in allowed:
            return True, None
        return False, (
            f"tool '{tool_name}' is not permitted; allowed tools: {', '.join(sorted(allowed))}"
        )

    return allowlist_hook


@contextlib.contextmanager
def sandbox_directory(
    policy: ContainmentPolicy, root: Optional[str] = None
) -> Iterator[ContainmentPolicy]:
    """Create the request's sandbox directory and remove it on exit.

    Yields a copy of ``policy`` bound to the new directory. Removal happens on
    every exit path, including exceptions and task cancellation.

    Args:
        policy: Policy to bind.
        root: Parent directory (None = system temp dir).
    """
    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=SANDBOX_PREFIX, dir=root))
    logger.debug("Created sandbox directory %s", path)
    try:
        yield policy.with_sandbox(path)
    finally:
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            logger.warning("Sandbox directory %s could not be fully removed", path)
        else:
            logger.debug("Removed sandbox directory %s", path)
