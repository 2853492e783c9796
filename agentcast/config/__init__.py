"""Configuration for agentcast."""

from .runtime_config import (
    get_attempt_timeout,
    get_bridge_host,
    get_channel_capacity,
    get_claude_model,
    get_claude_path,
    get_grace_period,
    get_max_attempts,
    get_max_line_bytes,
    get_max_output_bytes,
    get_sandbox_root,
    get_server_name,
    include_schema_in_feedback,
    is_strict_validation,
    reload_config,
)

__all__ = [
    "get_attempt_timeout",
    "get_bridge_host",
    "get_channel_capacity",
    "get_claude_model",
    "get_claude_path",
    "get_grace_period",
    "get_max_attempts",
    "get_max_line_bytes",
    "get_max_output_bytes",
    "get_sandbox_root",
    "get_server_name",
    "include_schema_in_feedback",
    "is_strict_validation",
    "reload_config",
]
