"""Shared fixtures for agentcast tests."""

import copy
import sys
from pathlib import Path

import pytest

# Add repo root to path so agentcast imports work without installation
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from agentcast.config import runtime_config  # noqa: E402

FAKE_AGENT = Path(__file__).resolve().parent / "fake_agent.py"

PERSON_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "age": {"type": "integer"},
    },
    "required": ["name", "age"],
}


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Keep AGENTCAST_* variables from the host out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("AGENTCAST_"):
            monkeypatch.delenv(key, raising=False)
    runtime_config.reload_config()
    yield
    runtime_config.reload_config()


@pytest.fixture
def person_schema():
    return copy.deepcopy(PERSON_SCHEMA)


@pytest.fixture
def fake_agent():
    """Build a CommandAdapter running tests/fake_agent.py in a given mode."""
    from agentcast.adapters import CommandAdapter

    def _make(mode, *args):
        return CommandAdapter(
            binary_path=sys.executable,
            args=[str(FAKE_AGENT), mode, *[str(a) for a in args]],
            env={"PYTHONPATH": str(repo_root)},
        )

    return _make
