"""Runtime configuration registry.

Provides centralized defaults for extraction, process supervision, the tool
bridge and sandboxing. Environment variables take precedence over YAML config.

Usage:
    from agentcast.config.runtime_config import (
        get_max_attempts,
        get_attempt_timeout,
        get_grace_period,
        get_channel_capacity,
    )
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

_CONFIG_PATH = Path(__file__).parent / "runtime.yaml"
_cached_config: Optional[Dict[str, Any]] = None

MAX_CHANNEL_CAPACITY = 100_000


def _default_config() -> Dict[str, Any]:
    """Return default configuration if file doesn't exist."""
    return {
        "version": "1.0",
        "extraction": {
            "max_attempts": 3,
            "timeout_per_attempt": 300,
            "include_schema_in_feedback": True,
            "strict_validation": True,
        },
        "process": {
            "grace_period": 5,
            "channel_capacity": 256,
            "max_output_bytes": 10 * 1024 * 1024,
            "max_line_bytes": 8 * 1024 * 1024,
        },
        "bridge": {
            "host": "127.0.0.1",
            "server_name": "agentcast",
        },
        "sandbox": {
            "root": None,
        },
        "agents": {
            "claude": {"path": "claude", "model": None},
        },
    }


def _config_path() -> Path:
    override = os.environ.get("AGENTCAST_CONFIG")
    if override:
        return Path(override)
    return _CONFIG_PATH


def _load_config() -> Dict[str, Any]:
    """Load runtime.yaml with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            _cached_config = yaml.safe_load(f) or _default_config()
    else:
        _cached_config = _default_config()

    return _cached_config


def reload_config() -> None:
    """Force reload of configuration (useful for testing)."""
    global _cached_config
    _cached_config = None
    _load_config()


def _section(name: str) -> Dict[str, Any]:
    return _load_config().get(name) or {}


def _env_int(name: str) -> Optional[int]:
    env_val = os.environ.get(name)
    if env_val is not None:
        try:
            return int(env_val)
        except ValueError:
            pass
    return None


def _env_float(name: str) -> Optional[float]:
    env_val = os.environ.get(name)
    if env_val is not None:
        try:
            return float(env_val)
        except ValueError:
            pass
    return None


def _env_bool(name: str) -> Optional[bool]:
    env_val = os.environ.get(name)
    if env_val is not None:
        return env_val.lower() in ("1", "true", "yes")
    return None


# =============================================================================
# Extraction
# =============================================================================


def get_max_attempts() -> int:
    """Get the default attempt budget for one extraction request."""
    env_val = _env_int("AGENTCAST_MAX_ATTEMPTS")
    if env_val is not None and env_val > 0:
        return env_val
    return int(_section("extraction").get("max_attempts", 3))


def get_attempt_timeout() -> float:
    """Get the default per-attempt timeout in seconds."""
    env_val = _env_float("AGENTCAST_ATTEMPT_TIMEOUT")
    if env_val is not None and env_val > 0:
        return env_val
    return float(_section("extraction").get("timeout_per_attempt", 300))


def include_schema_in_feedback() -> bool:
    """Check whether retry feedback should repeat the expected schema."""
    env_val = _env_bool("AGENTCAST_FEEDBACK_SCHEMA")
    if env_val is not None:
        return env_val
    return bool(_section("extraction").get("include_schema_in_feedback", True))


def is_strict_validation() -> bool:
    """Check whether object schemas without additionalProperties are closed."""
    env_val = _env_bool("AGENTCAST_STRICT_VALIDATION")
    if env_val is not None:
        return env_val
    return bool(_section("extraction").get("strict_validation", True))


# =============================================================================
# Process supervision
# =============================================================================


def get_grace_period() -> float:
    """Get seconds between the graceful termination signal and force-kill."""
    env_val = _env_float("AGENTCAST_GRACE_PERIOD")
    if env_val is not None and env_val >= 0:
        return env_val
    return float(_section("process").get("grace_period", 5))


def get_channel_capacity() -> int:
    """Get the capacity of the bounded output event queue.

    Returns:
        Capacity clamped to [1, MAX_CHANNEL_CAPACITY].
    """
    env_val = _env_int("AGENTCAST_CHANNEL_CAPACITY")
    if env_val is None:
        env_val = int(_section("process").get("channel_capacity", 256))
    return max(1, min(env_val, MAX_CHANNEL_CAPACITY))


def get_max_output_bytes() -> int:
    """Get the per-stream capture limit in bytes."""
    env_val = _env_int("AGENTCAST_MAX_OUTPUT_BYTES")
    if env_val is not None and env_val > 0:
        return env_val
    return int(_section("process").get("max_output_bytes", 10 * 1024 * 1024))


def get_max_line_bytes() -> int:
    """Get the longest single output line the readers will buffer."""
    return int(_section("process").get("max_line_bytes", 8 * 1024 * 1024))


# =============================================================================
# Bridge, sandbox, agents
# =============================================================================


def get_bridge_host() -> str:
    """Get the interface the tool bridge binds to."""
    env_val = os.environ.get("AGENTCAST_BRIDGE_HOST")
    if env_val:
        return env_val
    return str(_section("bridge").get("host", "127.0.0.1"))


def get_server_name() -> str:
    """Get the server name agents see the bridge tools under."""
    return str(_section("bridge").get("server_name", "agentcast"))


def get_sandbox_root() -> Optional[str]:
    """Get the parent directory for sandbox directories (None = system temp)."""
    env_val = os.environ.get("AGENTCAST_SANDBOX_ROOT")
    if env_val:
        return env_val
    return _section("sandbox").get("root")


def get_claude_path() -> str:
    """Get the Claude Code CLI binary."""
    env_val = os.environ.get("AGENTCAST_CLAUDE_PATH")
    if env_val:
        return env_val
    claude = (_section("agents").get("claude") or {})
    return str(claude.get("path") or "claude")


def get_claude_model() -> Optional[str]:
    """Get the model override passed to the Claude Code CLI, if any."""
    env_val = os.environ.get("AGENTCAST_CLAUDE_MODEL")
    if env_val:
        return env_val
    claude = (_section("agents").get("claude") or {})
    return claude.get("model")
