"""
Command-line interface for agentcast.

Usage:
    agentcast extract --schema person.json --prompt "Extract the person" --payload-file bio.txt
    agentcast extract --schema person.json --prompt "..." --agent-command "python my_agent.py"
    agentcast example --schema person.json
    agentcast validate --schema person.json --candidate draft.json
    agentcast relay --endpoint http://127.0.0.1:50123
    agentcast --version

Exit codes:
    0  success / valid
    1  extraction exhausted its attempts / candidate invalid
    2  usage error, invalid schema, or the agent could not be run
"""

from __future__ import annotations

import argparse
import json
import logging
import shlex
import sys
from pathlib import Path
from typing import Any, List, Optional

from . import __version__
from .adapters import ClaudeCodeAdapter, CommandAdapter
from .runtime.containment import ContainmentPolicy
from .runtime.errors import InvalidSchemaError
from .runtime.orchestrator import extract_sync
from .runtime.schema_tools import SchemaValidator, build_example
from .runtime.types import AgentError, ExtractionRequest, MaxRetriesExceeded, Success


def _load_json(path: str) -> Any:
    """Load JSON from a file path, or from stdin when path is '-'."""
    if path == "-":
        return json.load(sys.stdin)
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _load_schema(path: str) -> Optional[dict]:
    try:
        schema = _load_json(path)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: cannot read schema {path}: {e}", file=sys.stderr)
        return None
    if not isinstance(schema, dict):
        print(f"Error: schema {path} must be a JSON object", file=sys.stderr)
        return None
    return schema


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_extract(args: argparse.Namespace) -> int:
    """Run an extraction and print the outcome."""
    _configure_logging(args.verbose)

    schema = _load_schema(args.schema)
    if schema is None:
        return 2

    prompt = args.prompt
    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text(encoding="utf-8")
    if not prompt:
        print("Error: --prompt or --prompt-file is required", file=sys.stderr)
        return 2

    payload = None
    if args.payload_file:
        payload = Path(args.payload_file).read_text(encoding="utf-8")

    policy = ContainmentPolicy()
    if args.allow_builtin:
        policy = ContainmentPolicy.explicit_allow(args.allow_builtin)

    overrides = {"payload": payload, "containment_policy": policy}
    if args.max_attempts is not None:
        overrides["max_attempts"] = args.max_attempts
    if args.timeout is not None:
        overrides["timeout_per_attempt"] = args.timeout

    try:
        request = ExtractionRequest.create(schema, prompt, **overrides)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.agent_command:
        parts = shlex.split(args.agent_command)
        adapter: Any = CommandAdapter(binary_path=parts[0], args=parts[1:])
    else:
        adapter = ClaudeCodeAdapter(binary_path=args.claude_path, model=args.model)

    outcome = extract_sync(request, adapter=adapter)

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2))
    elif isinstance(outcome, Success):
        print(json.dumps(outcome.value, indent=2))
    elif isinstance(outcome, MaxRetriesExceeded):
        print(f"Extraction failed after {outcome.metrics.attempts} attempt(s):", file=sys.stderr)
        for record in outcome.attempts:
            print(f"  Attempt {record.attempt_number}:", file=sys.stderr)
            for error in record.validation_errors:
                print(f"    - {error}", file=sys.stderr)
    else:
        print(f"Agent error: {outcome.cause}", file=sys.stderr)

    if isinstance(outcome, Success):
        return 0
    if isinstance(outcome, AgentError):
        return 2
    return 1


def cmd_example(args: argparse.Namespace) -> int:
    """Print the example value generated for a schema."""
    schema = _load_schema(args.schema)
    if schema is None:
        return 2
    try:
        SchemaValidator(schema)
    except InvalidSchemaError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    print(json.dumps(build_example(schema), indent=2))
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a candidate file against a schema."""
    schema = _load_schema(args.schema)
    if schema is None:
        return 2
    try:
        validator = SchemaValidator(schema, strict=not args.lenient)
    except InvalidSchemaError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    try:
        candidate = _load_json(args.candidate)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: cannot read candidate {args.candidate}: {e}", file=sys.stderr)
        return 2

    errors = validator.error_messages(candidate)
    if args.json:
        print(json.dumps({"valid": not errors, "errors": errors}, indent=2))
    elif errors:
        for error in errors:
            print(f"  - {error}")
    else:
        print("valid")
    return 1 if errors else 0


def cmd_relay(args: argparse.Namespace) -> int:
    """Run the stdio MCP relay."""
    from .runtime import relay

    relay_argv = []
    if args.endpoint:
        relay_argv += ["--endpoint", args.endpoint]
    if args.server_name:
        relay_argv += ["--server-name", args.server_name]
    return relay.main(relay_argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog="agentcast",
        description="Schema-conforming structured output from CLI AI agents",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"agentcast {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Extract command
    extract_parser = subparsers.add_parser("extract", help="Run a structured extraction")
    extract_parser.add_argument("--schema", "-s", required=True, help="JSON Schema file")
    extract_parser.add_argument("--prompt", "-p", help="Task prompt")
    extract_parser.add_argument("--prompt-file", help="Read the task prompt from a file")
    extract_parser.add_argument("--payload-file", help="Context data file, kept apart from the prompt")
    extract_parser.add_argument("--max-attempts", type=int, help="Attempt budget")
    extract_parser.add_argument("--timeout", type=float, help="Per-attempt timeout in seconds")
    extract_parser.add_argument(
        "--agent-command",
        help="Run this command as the agent instead of Claude Code",
    )
    extract_parser.add_argument("--claude-path", help="Claude Code CLI binary")
    extract_parser.add_argument("--model", help="Model passed to Claude Code")
    extract_parser.add_argument(
        "--allow-builtin",
        action="append",
        metavar="TOOL",
        help="Keep one of the agent's built-in tools (repeatable)",
    )
    extract_parser.add_argument("--json", action="store_true", help="Print the full outcome as JSON")
    extract_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    # Example command
    example_parser = subparsers.add_parser("example", help="Print an example value for a schema")
    example_parser.add_argument("--schema", "-s", required=True, help="JSON Schema file")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a JSON file against a schema")
    validate_parser.add_argument("--schema", "-s", required=True, help="JSON Schema file")
    validate_parser.add_argument("--candidate", "-c", required=True, help="Candidate JSON file ('-' for stdin)")
    validate_parser.add_argument(
        "--lenient",
        action="store_true",
        help="Do not close objects that omit additionalProperties",
    )
    validate_parser.add_argument("--json", action="store_true", help="Output JSON")

    # Relay command
    relay_parser = subparsers.add_parser("relay", help="Run the stdio MCP relay")
    relay_parser.add_argument("--endpoint", help="Bridge base URL")
    relay_parser.add_argument("--server-name", help="Server name reported to the agent")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    commands = {
        "extract": cmd_extract,
        "example": cmd_example,
        "validate": cmd_validate,
        "relay": cmd_relay,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
