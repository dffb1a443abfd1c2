# -*- coding: utf-8 -*-
"""Shared fixtures for mcplink unit tests.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

``FakeClient`` is an in-memory transport: requests are answered by a
``FakeServer`` on separate tasks, so responses arrive asynchronously through
the correlator exactly like they would from a real transport.
"""

# Standard
import asyncio
from pathlib import Path
import sys
from typing import Any, Callable, Dict, List, Optional

# Third-Party
import orjson
import pytest

# First-Party
from mcplink.errors import ConnectionLost
from mcplink.schemas import ServerEndpoint, TransportKind
from mcplink.transports.base import McpClient

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeServer:
    """Scriptable MCP server behind a FakeClient."""

    def __init__(self, name: str = "fake", tools: Optional[List[Dict[str, Any]]] = None):
        self.name = name
        self.tools = tools if tools is not None else [{"name": "echo", "description": "Echo the input", "inputSchema": {"type": "object"}}]
        self.protocol_version = "2025-03-26"
        self.capabilities: Dict[str, Any] = {"tools": {}}
        self.call_delay = 0.0
        self.open_delay = 0.0
        self.open_error: Optional[BaseException] = None
        self.init_error: Optional[Dict[str, Any]] = None
        self.silent_methods: set = set()
        self.events: List[tuple] = []
        self.notifications: List[str] = []
        self.opens = 0
        self.closes = 0
        self.list_calls = 0

    async def handle(self, message: Dict[str, Any]) -> Dict[str, Any]:
        method = message["method"]
        params = message.get("params") or {}
        if method == "initialize":
            if self.init_error is not None:
                return {"error": self.init_error}
            return {
                "result": {
                    "protocolVersion": self.protocol_version,
                    "capabilities": self.capabilities,
                    "serverInfo": {"name": self.name, "version": "1.0.0"},
                }
            }
        if method == "tools/list":
            self.list_calls += 1
            return {"result": {"tools": self.tools}}
        if method == "tools/call":
            name = params["name"]
            self.events.append(("start", name))
            if self.call_delay:
                await asyncio.sleep(self.call_delay)
            self.events.append(("end", name))
            if name == "fail":
                return {"result": {"content": [{"type": "text", "text": "tool failed"}], "isError": True}}
            text = orjson.dumps({"server": self.name, "tool": name, "arguments": params.get("arguments")}).decode()
            return {"result": {"content": [{"type": "text", "text": text}]}}
        return {"error": {"code": -32601, "message": f"Method not found: {method}"}}


class FakeClient(McpClient):
    """McpClient whose wire is a FakeServer."""

    kind = TransportKind.STDIO

    def __init__(self, endpoint: ServerEndpoint, server: FakeServer):
        super().__init__(endpoint)
        self.server = server
        self._tasks: set = set()

    async def _open(self, timeout: float) -> None:
        self.server.opens += 1
        if self.server.open_delay:
            await asyncio.sleep(self.server.open_delay)
        if self.server.open_error is not None:
            raise self.server.open_error

    async def _send(self, message: Dict[str, Any]) -> None:
        if "id" not in message:
            self.server.notifications.append(message["method"])
            return
        if message["method"] in self.server.silent_methods:
            return
        task = asyncio.create_task(self._respond(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _respond(self, message: Dict[str, Any]) -> None:
        reply = await self.server.handle(message)
        self._correlator.deliver({"jsonrpc": "2.0", "id": message["id"], **reply})

    async def _close_transport(self) -> None:
        self.server.closes += 1
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def drop(self, reason: str = "server went away") -> None:
        """Simulate the transport dying underneath the client."""
        self._correlator.close(ConnectionLost(reason))


class FakeBackends:
    """Client factory handing out FakeClients, one FakeServer per stdio command."""

    def __init__(self) -> None:
        self.servers: Dict[str, FakeServer] = {}
        self.clients: List[FakeClient] = []

    def server(self, command: str, **kwargs: Any) -> FakeServer:
        if command not in self.servers:
            self.servers[command] = FakeServer(name=command, **kwargs)
        return self.servers[command]

    def __call__(self, endpoint: ServerEndpoint) -> FakeClient:
        client = FakeClient(endpoint, self.server(endpoint.command or "fake"))
        self.clients.append(client)
        return client


@pytest.fixture
def fake_backends() -> FakeBackends:
    """Fresh fake client factory."""
    return FakeBackends()


@pytest.fixture
def make_endpoint() -> Callable[..., ServerEndpoint]:
    """Build a stdio endpoint whose command names the fake server."""

    def _make(command: str = "fake", *args: str) -> ServerEndpoint:
        return ServerEndpoint(kind="stdio", command=command, args=list(args))

    return _make


@pytest.fixture
def fake_stdio_command() -> Callable[..., ServerEndpoint]:
    """Build an endpoint running the fake stdio server script in a given mode."""

    def _make(mode: str = "normal", *extra: str) -> ServerEndpoint:
        return ServerEndpoint(kind="stdio", command=sys.executable, args=[str(FIXTURES_DIR / "fake_stdio_server.py"), mode, *extra])

    return _make
