"""Tests for the agentcast command-line interface."""

import io
import json
import shlex
import sys
from pathlib import Path

import pytest

from agentcast import __version__
from agentcast.cli import main

FAKE_AGENT = Path(__file__).resolve().parent / "fake_agent.py"


@pytest.fixture
def schema_file(tmp_path, person_schema):
    path = tmp_path / "person.json"
    path.write_text(json.dumps(person_schema), encoding="utf-8")
    return path


def _write_json(tmp_path, name, value):
    path = tmp_path / name
    path.write_text(json.dumps(value), encoding="utf-8")
    return str(path)


def _agent_command(mode, *args):
    return shlex.join([sys.executable, str(FAKE_AGENT), mode, *args])


class TestGeneral:
    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == f"agentcast {__version__}"

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 2
        assert "usage:" in capsys.readouterr().out


class TestExampleCommand:
    def test_prints_example(self, schema_file, capsys):
        assert main(["example", "--schema", str(schema_file)]) == 0
        assert json.loads(capsys.readouterr().out) == {"name": "example", "age": 1}

    def test_invalid_schema(self, tmp_path, capsys):
        path = _write_json(tmp_path, "bad.json", {"type": 5})
        assert main(["example", "--schema", path]) == 2
        assert "invalid JSON schema" in capsys.readouterr().err

    def test_missing_schema_file(self, tmp_path, capsys):
        assert main(["example", "--schema", str(tmp_path / "nope.json")]) == 2
        assert "cannot read schema" in capsys.readouterr().err


class TestValidateCommand:
    def test_valid(self, schema_file, tmp_path, capsys):
        candidate = _write_json(tmp_path, "c.json", {"name": "Bob", "age": 30})
        assert main(["validate", "--schema", str(schema_file), "--candidate", candidate]) == 0
        assert capsys.readouterr().out.strip() == "valid"

    def test_invalid(self, schema_file, tmp_path, capsys):
        candidate = _write_json(tmp_path, "c.json", {"name": "Bob", "age": "30"})
        assert main(["validate", "--schema", str(schema_file), "--candidate", candidate]) == 1
        assert capsys.readouterr().out.strip() == "- At path '/age': '30' is not of type 'integer'"

    def test_json_output(self, schema_file, tmp_path, capsys):
        candidate = _write_json(tmp_path, "c.json", {"name": "Bob"})
        assert main(["validate", "-s", str(schema_file), "-c", candidate, "--json"]) == 1
        data = json.loads(capsys.readouterr().out)
        assert data == {"valid": False, "errors": ["At path '/': 'age' is a required property"]}

    def test_lenient_allows_extra_fields(self, schema_file, tmp_path):
        candidate = _write_json(tmp_path, "c.json", {"name": "Bob", "age": 30, "email": "b@x"})
        assert main(["validate", "-s", str(schema_file), "-c", candidate]) == 1
        assert main(["validate", "-s", str(schema_file), "-c", candidate, "--lenient"]) == 0

    def test_candidate_from_stdin(self, schema_file, monkeypatch, capsys):
        monkeypatch.setattr(sys, "stdin", io.StringIO('{"name": "Bob", "age": 30}'))
        assert main(["validate", "-s", str(schema_file), "-c", "-"]) == 0


class TestExtractCommand:
    def test_success(self, schema_file, capsys):
        value = {"name": "Bob", "age": 30}
        code = main([
            "extract",
            "--schema", str(schema_file),
            "--prompt", "Extract the person.",
            "--timeout", "60",
            "--agent-command", _agent_command("submit", json.dumps(value)),
        ])
        assert code == 0
        assert json.loads(capsys.readouterr().out) == value

    def test_exhausted(self, schema_file, capsys):
        code = main([
            "extract",
            "--schema", str(schema_file),
            "--prompt", "Extract the person.",
            "--max-attempts", "1",
            "--timeout", "60",
            "--agent-command", _agent_command("submit", json.dumps({"name": "Bob"})),
        ])
        assert code == 1
        err = capsys.readouterr().err
        assert "Extraction failed after 1 attempt(s)" in err
        assert "'age' is a required property" in err

    def test_json_outcome(self, schema_file, tmp_path, capsys):
        payload = tmp_path / "bio.txt"
        payload.write_text("Bob is 30.", encoding="utf-8")
        code = main([
            "extract",
            "-s", str(schema_file),
            "-p", "Extract the person.",
            "--payload-file", str(payload),
            "--timeout", "60",
            "--agent-command", _agent_command("submit", json.dumps({"name": "Bob", "age": 30})),
            "--json",
        ])
        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert data["kind"] == "success"
        assert data["metrics"]["attempts"] == 1

    def test_agent_not_found(self, schema_file, tmp_path, capsys):
        code = main([
            "extract",
            "-s", str(schema_file),
            "-p", "Extract.",
            "--agent-command", str(tmp_path / "missing-agent"),
        ])
        assert code == 2
        assert "Agent error" in capsys.readouterr().err

    def test_prompt_required(self, schema_file, capsys):
        assert main(["extract", "-s", str(schema_file)]) == 2
        assert "--prompt" in capsys.readouterr().err

    def test_invalid_max_attempts(self, schema_file, capsys):
        code = main(["extract", "-s", str(schema_file), "-p", "x", "--max-attempts", "0"])
        assert code == 2
        assert "max_attempts" in capsys.readouterr().err
