# -*- coding: utf-8 -*-
"""Tests for the plain HTTP transport using httpx.MockTransport.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti
"""

# Standard
import time

# Third-Party
import httpx
import orjson
import pytest

# First-Party
from mcplink.config import settings
from mcplink.errors import ConnectError, ConnectionLost, McpTimeoutError, ProtocolError
from mcplink.schemas import ServerEndpoint
from mcplink.transports.correlator import RequestCorrelator
from mcplink.transports.http_transport import check_response_status, exchange_timeout, HttpClient

URL = "http://mcp.test/rpc"


class MockMcpHttpServer:
    """Request/response MCP server for MockTransport."""

    def __init__(self, sse_framing: bool = False, session_id: str = None):
        self.sse_framing = sse_framing
        self.session_id = session_id
        self.requests = []
        self.forget_session = False

    def reply(self, payload, headers=None):
        headers = dict(headers or {})
        if self.session_id:
            headers["mcp-session-id"] = self.session_id
        if self.sse_framing:
            body = b"event: message\ndata: " + orjson.dumps(payload) + b"\n\n"
            headers["content-type"] = "text/event-stream"
            return httpx.Response(200, content=body, headers=headers)
        return httpx.Response(200, json=payload, headers=headers)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        message = orjson.loads(request.content)
        self.requests.append((request, message))
        if self.forget_session and request.headers.get("mcp-session-id"):
            return httpx.Response(404, text="unknown session")
        if "id" not in message:
            return httpx.Response(202)
        method = message["method"]
        if method == "initialize":
            result = {"protocolVersion": "2025-03-26", "capabilities": {"tools": {}}, "serverInfo": {"name": "http-fake", "version": "2.0"}}
        elif method == "tools/list":
            result = {"tools": [{"name": "search", "description": "Search", "inputSchema": {"type": "object"}}]}
        elif method == "tools/call":
            result = {"content": [{"type": "text", "text": message["params"]["arguments"].get("q", "")}]}
        else:
            return self.reply({"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32601, "message": "nope"}})
        return self.reply({"jsonrpc": "2.0", "id": message["id"], "result": result})


def _client(handler, headers=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    endpoint = ServerEndpoint(kind="http", url=URL, headers=headers or {})
    return HttpClient(endpoint, http_client=http), http


class TestHttpClient:
    """Round trips over POST."""

    @pytest.mark.asyncio
    async def test_round_trip_with_json_bodies(self):
        server = MockMcpHttpServer()
        client, http = _client(server, headers={"Authorization": "Bearer secret"})
        try:
            info = await client.connect(timeout=5)
            assert info.name == "http-fake"
            tools = await client.list_tools(timeout=5)
            assert [t.name for t in tools] == ["search"]
            result = await client.call_tool("search", {"q": "mcp"}, timeout=5)
            assert result.content == [{"type": "text", "text": "mcp"}]
        finally:
            await client.close()

        methods = [message.get("method") for _, message in server.requests]
        assert methods == ["initialize", "notifications/initialized", "tools/list", "tools/call"]
        assert all(request.headers["authorization"] == "Bearer secret" for request, _ in server.requests)
        assert not http.is_closed  # injected clients are not closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_sse_framed_replies_are_accepted(self):
        client, http = _client(MockMcpHttpServer(sse_framing=True))
        async with client:
            result = await client.call_tool("search", {"q": "framed"}, timeout=5)
            assert result.content[0]["text"] == "framed"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_session_id_is_echoed(self):
        server = MockMcpHttpServer(session_id="sess-123")
        client, http = _client(server)
        async with client:
            await client.list_tools(timeout=5)
            assert client.session_id == "sess-123"
        assert "mcp-session-id" not in server.requests[0][0].headers
        assert server.requests[-1][0].headers["mcp-session-id"] == "sess-123"
        await http.aclose()

    @pytest.mark.asyncio
    async def test_http_500_during_handshake_is_connect_error_with_status(self):
        client, http = _client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(ConnectError) as exc_info:
            await client.connect(timeout=5)
        assert exc_info.value.status_code == 500
        assert client.is_closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_server_is_connect_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, http = _client(refuse)
        with pytest.raises(ConnectError, match="failed to reach"):
            await client.connect(timeout=5)
        await http.aclose()

    @pytest.mark.asyncio
    async def test_http_timeout_is_timeout_error(self):
        def slow(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        client, http = _client(slow)
        with pytest.raises(McpTimeoutError):
            await client.connect(timeout=5)
        await http.aclose()

    @pytest.mark.asyncio
    async def test_forgotten_session_is_connection_lost(self):
        server = MockMcpHttpServer(session_id="sess-1")
        client, http = _client(server)
        async with client:
            server.forget_session = True
            with pytest.raises(ConnectionLost):
                await client.call_tool("search", {"q": "x"}, timeout=5)
        await http.aclose()

    @pytest.mark.asyncio
    async def test_private_client_is_created_and_closed(self, monkeypatch):
        server = MockMcpHttpServer()
        created = []
        real_async_client = httpx.AsyncClient

        def factory(**kwargs):
            kwargs.pop("verify", None)
            http = real_async_client(transport=httpx.MockTransport(server), **kwargs)
            created.append(http)
            return http

        monkeypatch.setattr(httpx, "AsyncClient", factory)
        client = HttpClient(ServerEndpoint(kind="http", url=URL))
        await client.connect(timeout=5)
        await client.close()
        assert len(created) == 1
        assert created[0].is_closed


class TestCheckResponseStatus:
    """Status code mapping."""

    def _response(self, status):
        return httpx.Response(status, text="body", request=httpx.Request("POST", URL))

    def test_success_passes(self):
        check_response_status(self._response(200), connected=True, target=URL)

    def test_after_handshake_error_is_protocol_error(self):
        with pytest.raises(ProtocolError, match="HTTP 502"):
            check_response_status(self._response(502), connected=True, target=URL)

    def test_404_without_session_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            check_response_status(self._response(404), connected=True, target=URL)

    def test_404_with_session_is_connection_lost(self):
        with pytest.raises(ConnectionLost):
            check_response_status(self._response(404), connected=True, target=URL, session_id="s")


class TestPerCallTimeouts:
    """Each POST reads for as long as the call it carries may take."""

    @pytest.mark.asyncio
    async def test_short_handshake_then_long_call(self):
        server = MockMcpHttpServer()
        read_timeouts = {}

        def handler(request):
            read_timeouts[orjson.loads(request.content)["method"]] = request.extensions["timeout"]["read"]
            return server(request)

        # Client-wide read timeout far below the call deadline, like a shared pool client
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=0.1)
        client = HttpClient(ServerEndpoint(kind="http", url=URL), http_client=http)
        await client.connect(timeout=0.5)
        result = await client.call_tool("search", {"q": "slow"}, timeout=30.0)
        await client.close()
        await http.aclose()

        assert result.success
        assert read_timeouts["initialize"] <= 1.5
        assert read_timeouts["tools/call"] >= 30.0
        assert read_timeouts["notifications/initialized"] == settings.httpx_read_timeout

    @pytest.mark.asyncio
    async def test_exchange_timeout_without_pending_call(self):
        correlator = RequestCorrelator()
        assert exchange_timeout(correlator, {"jsonrpc": "2.0", "method": "notifications/initialized"}).read == settings.httpx_read_timeout
        # A reply to a server request reuses the server's id; it must not pick up our deadlines
        assert exchange_timeout(correlator, {"jsonrpc": "2.0", "id": 1, "result": {}}).read == settings.httpx_read_timeout


class TestMalformedReplies:
    """A reply that does not answer the request fails fast."""

    @pytest.mark.asyncio
    async def test_body_without_response_is_protocol_error(self):
        server = MockMcpHttpServer()

        def handler(request):
            if orjson.loads(request.content).get("method") == "tools/list":
                return httpx.Response(200, json={"unexpected": "shape"})
            return server(request)

        client, http = _client(handler)
        async with client:
            started = time.monotonic()
            with pytest.raises(ProtocolError, match="has no response for id"):
                await client.list_tools(timeout=5)
            assert time.monotonic() - started < 1.0
        await http.aclose()

    @pytest.mark.asyncio
    async def test_response_for_another_id_is_protocol_error(self):
        def handler(request):
            message = orjson.loads(request.content)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": message["id"] + 100, "result": {}})

        client, http = _client(handler)
        with pytest.raises(ProtocolError):
            await client.connect(timeout=5)
        assert client.is_closed
        await http.aclose()
