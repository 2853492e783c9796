"""Agent adapters: per-CLI command line construction."""

from .base import AgentAdapter, AgentInvocation
from .claude import ClaudeCodeAdapter
from .command import CommandAdapter, python_agent

__all__ = [
    "AgentAdapter",
    "AgentInvocation",
    "ClaudeCodeAdapter",
    "CommandAdapter",
    "python_agent",
]
