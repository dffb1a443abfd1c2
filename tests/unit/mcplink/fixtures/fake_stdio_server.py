# -*- coding: utf-8 -*-
"""Minimal stdio MCP server used by the stdio transport tests.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Usage: fake_stdio_server.py MODE

Modes:
    normal         answer initialize, tools/list, tools/call and ping
    chatty         like normal, but also emits noise, notifications and a ping request
    silent         read requests and never answer
    exit           print to stderr and exit with code 3 immediately
    echo           print ``{}`` and exit, like ``echo {}``
    crash_on_call  exit with code 1 when a tool is called
"""

# Standard
import json
import sys
import time

TOOLS = [
    {"name": "echo", "description": "Echo the text argument", "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}}},
    {"name": "sleep", "description": "Sleep for a number of seconds", "inputSchema": {"type": "object"}},
]


def send(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def reply(request_id, result):
    send({"jsonrpc": "2.0", "id": request_id, "result": result})


def main(mode):
    if mode == "exit":
        sys.stderr.write("fatal: bad configuration\n")
        sys.stderr.flush()
        sys.exit(3)
    if mode == "echo":
        sys.stdout.write("{}\n")
        sys.stdout.flush()
        return

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        message = json.loads(line)
        method = message.get("method")
        request_id = message.get("id")
        if mode == "silent" or request_id is None or method is None:
            continue

        if method == "initialize":
            if mode == "chatty":
                sys.stdout.write("starting up, please wait\n")
                send({"jsonrpc": "2.0", "method": "notifications/message", "params": {"level": "info", "data": "hello"}})
                send({"jsonrpc": "2.0", "id": "srv-1", "method": "ping"})
            reply(
                request_id,
                {
                    "protocolVersion": message["params"]["protocolVersion"],
                    "capabilities": {"tools": {}, "resources": {}},
                    "serverInfo": {"name": "fake-stdio", "version": "0.1.0"},
                },
            )
        elif method == "tools/list":
            reply(request_id, {"tools": TOOLS})
        elif method == "tools/call":
            if mode == "crash_on_call":
                sys.stderr.write("crashing on purpose\n")
                sys.stderr.flush()
                sys.exit(1)
            name = message["params"]["name"]
            arguments = message["params"].get("arguments") or {}
            if name == "sleep":
                time.sleep(float(arguments.get("seconds", 0)))
                reply(request_id, {"content": [{"type": "text", "text": "slept"}]})
            elif name == "echo":
                reply(request_id, {"content": [{"type": "text", "text": arguments.get("text", "")}]})
            else:
                reply(request_id, {"content": [{"type": "text", "text": f"unknown tool {name}"}], "isError": True})
        elif method == "ping":
            reply(request_id, {})
        else:
            send({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32601, "message": f"Method not found: {method}"}})


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else "normal")
