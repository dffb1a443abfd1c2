# -*- coding: utf-8 -*-
"""Tests for the protocol layer shared by all transports.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti
"""

# Standard
import asyncio

# Third-Party
import pytest

# First-Party
from mcplink.errors import ConnectError, ConnectionLost, HandshakeTimeoutError, McpTimeoutError, ProtocolError, ToolExecutionError
from mcplink.transports import base as base_module


class TestConnect:
    """The initialize handshake."""

    @pytest.mark.asyncio
    async def test_handshake_records_server_info_and_sends_initialized(self, fake_backends, make_endpoint):
        client = fake_backends(make_endpoint("alpha"))
        info = await client.connect(timeout=1)

        assert info.name == "alpha"
        assert info.tools_supported
        assert client.is_connected
        assert fake_backends.servers["alpha"].notifications == ["notifications/initialized"]
        # Connecting again is a no-op
        assert await client.connect(timeout=1) is info
        assert fake_backends.servers["alpha"].opens == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_rejected_initialize_is_connect_error(self, fake_backends, make_endpoint):
        server = fake_backends.server("alpha")
        server.init_error = {"code": -32602, "message": "unsupported client"}
        client = fake_backends(make_endpoint("alpha"))

        with pytest.raises(ConnectError, match="server rejected initialize"):
            await client.connect(timeout=1)
        assert client.is_closed
        assert server.closes == 1

    @pytest.mark.asyncio
    async def test_unsupported_protocol_version_is_connect_error(self, fake_backends, make_endpoint):
        fake_backends.server("alpha").protocol_version = "1999-01-01"
        client = fake_backends(make_endpoint("alpha"))
        with pytest.raises(ConnectError, match="unsupported protocol version"):
            await client.connect(timeout=1)

    @pytest.mark.asyncio
    async def test_malformed_initialize_result_is_protocol_error(self, fake_backends, make_endpoint, monkeypatch):
        server = fake_backends.server("alpha")

        async def handle(message):
            return {"result": "not an object"}

        monkeypatch.setattr(server, "handle", handle)
        client = fake_backends(make_endpoint("alpha"))
        with pytest.raises(ProtocolError):
            await client.connect(timeout=1)
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_silent_server_is_handshake_timeout(self, fake_backends, make_endpoint):
        fake_backends.server("alpha").silent_methods.add("initialize")
        client = fake_backends(make_endpoint("alpha"))
        with pytest.raises(HandshakeTimeoutError) as exc_info:
            await client.connect(timeout=0.1)
        assert isinstance(exc_info.value, McpTimeoutError)
        assert isinstance(exc_info.value, ConnectError)
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_slow_open_is_handshake_timeout(self, fake_backends, make_endpoint):
        fake_backends.server("alpha").open_delay = 1.0
        client = fake_backends(make_endpoint("alpha"))
        with pytest.raises(HandshakeTimeoutError):
            await client.connect(timeout=0.1)

    @pytest.mark.asyncio
    async def test_open_failure_propagates_and_closes(self, fake_backends, make_endpoint):
        fake_backends.server("alpha").open_error = ConnectError("refused", status_code=503)
        client = fake_backends(make_endpoint("alpha"))
        with pytest.raises(ConnectError) as exc_info:
            await client.connect(timeout=1)
        assert exc_info.value.status_code == 503
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_connect_after_close_is_connection_lost(self, fake_backends, make_endpoint):
        client = fake_backends(make_endpoint("alpha"))
        await client.close()
        with pytest.raises(ConnectionLost):
            await client.connect(timeout=1)


class TestOperations:
    """tools/list and tools/call."""

    @pytest.mark.asyncio
    async def test_list_tools_follows_cursor(self, fake_backends, make_endpoint, monkeypatch):
        server = fake_backends.server("alpha")
        original = server.handle
        pages = {None: ([{"name": "a"}], "p2"), "p2": ([{"name": "b"}], "p3"), "p3": ([{"name": "c"}], None)}

        async def handle(message):
            if message["method"] != "tools/list":
                return await original(message)
            cursor = (message.get("params") or {}).get("cursor")
            tools, next_cursor = pages[cursor]
            result = {"tools": tools}
            if next_cursor:
                result["nextCursor"] = next_cursor
            return {"result": result}

        monkeypatch.setattr(server, "handle", handle)
        async with fake_backends(make_endpoint("alpha")) as client:
            tools = await client.list_tools(timeout=1)
            assert [t.name for t in tools] == ["a", "b", "c"]
            assert client.tools == tools
            assert tools[0].input_schema == {"type": "object"}

    @pytest.mark.asyncio
    async def test_endless_cursor_stops_at_page_limit(self, fake_backends, make_endpoint, monkeypatch):
        server = fake_backends.server("alpha")
        original = server.handle

        async def handle(message):
            if message["method"] == "tools/list":
                return {"result": {"tools": [{"name": "loop"}], "nextCursor": "again"}}
            return await original(message)

        monkeypatch.setattr(server, "handle", handle)
        monkeypatch.setattr(base_module, "MAX_LIST_PAGES", 3)
        async with fake_backends(make_endpoint("alpha")) as client:
            assert len(await client.list_tools(timeout=1)) == 3

    @pytest.mark.asyncio
    async def test_tool_error_is_data_not_exception(self, fake_backends, make_endpoint):
        async with fake_backends(make_endpoint("alpha")) as client:
            result = await client.call_tool("fail", {}, timeout=1)
            assert result.success is False
            assert result.is_error is True
            assert result.error == "tool failed"
            with pytest.raises(ToolExecutionError, match="tool failed"):
                result.raise_for_error()

    @pytest.mark.asyncio
    async def test_jsonrpc_error_on_call_is_failed_result(self, fake_backends, make_endpoint, monkeypatch):
        server = fake_backends.server("alpha")
        original = server.handle

        async def handle(message):
            if message["method"] == "tools/call":
                return {"error": {"code": -32602, "message": "Unknown tool: nope"}}
            return await original(message)

        monkeypatch.setattr(server, "handle", handle)
        async with fake_backends(make_endpoint("alpha")) as client:
            result = await client.call_tool("nope", timeout=1)
            assert result.success is False
            assert "Unknown tool: nope" in result.error

    @pytest.mark.asyncio
    async def test_successful_call_measures_elapsed_time(self, fake_backends, make_endpoint):
        fake_backends.server("alpha").call_delay = 0.05
        async with fake_backends(make_endpoint("alpha")) as client:
            result = await client.call_tool("echo", {"text": "hi"}, timeout=1)
            assert result.success is True
            assert result.elapsed_ms >= 40

    @pytest.mark.asyncio
    async def test_operations_require_connection(self, fake_backends, make_endpoint):
        client = fake_backends(make_endpoint("alpha"))
        with pytest.raises(ConnectionLost, match="not connected"):
            await client.list_tools(timeout=1)
        with pytest.raises(ConnectionLost):
            await client.call_tool("echo", timeout=1)

    @pytest.mark.asyncio
    async def test_transport_death_fails_call(self, fake_backends, make_endpoint):
        fake_backends.server("alpha").call_delay = 1.0
        async with fake_backends(make_endpoint("alpha")) as client:
            call = asyncio.create_task(client.call_tool("echo", timeout=5))
            await asyncio.sleep(0.05)
            client.drop("pipe closed")
            with pytest.raises(ConnectionLost, match="pipe closed"):
                await call
            assert not client.is_connected


class TestInboundRouting:
    """Messages initiated by the server."""

    @pytest.mark.asyncio
    async def test_server_ping_is_answered(self, fake_backends, make_endpoint):
        client = fake_backends(make_endpoint("alpha"))
        reply = client._handle_inbound({"jsonrpc": "2.0", "id": "srv-7", "method": "ping"})
        assert reply == {"jsonrpc": "2.0", "id": "srv-7", "result": {}}

    @pytest.mark.asyncio
    async def test_other_server_requests_get_method_not_found(self, fake_backends, make_endpoint):
        client = fake_backends(make_endpoint("alpha"))
        reply = client._handle_inbound({"jsonrpc": "2.0", "id": 9, "method": "sampling/createMessage"})
        assert reply["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_notifications_are_dropped(self, fake_backends, make_endpoint):
        client = fake_backends(make_endpoint("alpha"))
        assert client._handle_inbound({"jsonrpc": "2.0", "method": "notifications/tools/list_changed"}) is None


class TestClose:
    """Idempotent close."""

    @pytest.mark.asyncio
    async def test_close_twice_releases_transport_once(self, fake_backends, make_endpoint):
        client = fake_backends(make_endpoint("alpha"))
        await client.connect(timeout=1)
        await client.close()
        await client.close()
        assert fake_backends.servers["alpha"].closes == 1
        assert client.is_closed
        assert not client.is_connected
