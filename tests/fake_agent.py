#!/usr/bin/env python3
"""
Scripted stand-in for a CLI agent, used by the orchestrator tests.

Run as: fake_agent.py <mode> [mode args...] <prompt>

The prompt is always the last argument (CommandAdapter appends it). The
bridge URL comes from AGENTCAST_BRIDGE_URL. Output mimics stream-json.

Modes:
    submit <json>                   example -> validate -> submit <json>
    sequence <state_dir> <json>...  submit the n-th value on the n-th run
    sleep <seconds>                 never submit
    forbidden <json>                call shell_exec, then submit <json>
    exit <code>                     write to stderr and exit with <code>
    double <json1> <json2>          submit twice in one run
"""

import json
import os
import sys
import time
from pathlib import Path

import httpx


def emit(obj):
    print(json.dumps(obj), flush=True)


def call(client, tool, arguments=None):
    emit({
        "type": "assistant",
        "message": {"content": [{"type": "tool_use", "name": tool, "input": arguments or {}}]},
    })
    response = client.post("/call", json={"tool": tool, "arguments": arguments or {}})
    emit({"type": "user", "message": {"content": [{"type": "tool_result", "content": response.text}]}})
    return response


def finish(text="done"):
    emit({"type": "result", "result": text, "usage": {"input_tokens": 100, "output_tokens": 20}})


def submit_flow(client, value):
    call(client, "example")
    call(client, "validate", {"candidate": value})
    call(client, "submit", {"value": value})


def main(argv):
    mode, args, prompt = argv[0], argv[1:-1], argv[-1]
    client = httpx.Client(base_url=os.environ["AGENTCAST_BRIDGE_URL"], timeout=10)
    emit({"type": "system", "subtype": "init", "cwd": os.getcwd()})

    if mode == "submit":
        submit_flow(client, json.loads(args[0]))
    elif mode == "sequence":
        state_dir = Path(args[0])
        runs = sorted(state_dir.glob("run-*.txt"))
        n = len(runs)
        (state_dir / f"run-{n:03d}.txt").write_text(prompt, encoding="utf-8")
        values = args[1:]
        submit_flow(client, json.loads(values[min(n, len(values) - 1)]))
    elif mode == "sleep":
        call(client, "example")
        time.sleep(float(args[0]))
    elif mode == "forbidden":
        response = call(client, "shell_exec", {"command": "rm -rf /"})
        emit({"type": "assistant", "message": {"content": [{"type": "text", "text": f"status {response.status_code}"}]}})
        submit_flow(client, json.loads(args[0]))
    elif mode == "exit":
        print("fatal: agent crashed", file=sys.stderr, flush=True)
        return int(args[0])
    elif mode == "double":
        call(client, "submit", {"value": json.loads(args[0])})
        call(client, "submit", {"value": json.loads(args[1])})
    else:
        print(f"unknown mode {mode}", file=sys.stderr)
        return 2

    finish()
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
