# -*- coding: utf-8 -*-
"""Location: ./mcplink/transports/base.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Base MCP client.

:class:`McpClient` implements the protocol side of every transport: the
``initialize`` handshake, ``tools/list`` with pagination, ``tools/call`` and
idempotent close. Subclasses only provide the wire: ``_open`` to set the
transport up, ``_send`` to put one envelope on it, and ``_close_transport``
to tear it down. Inbound responses are handed to ``self._correlator``.

Use :func:`mcplink.transports.create_client` to obtain the right subclass for
an endpoint.
"""

# Future
from __future__ import annotations

# Standard
from abc import ABC, abstractmethod
import asyncio
import time
from typing import Any, Dict, List, Optional

# Third-Party
import anyio

# First-Party
from mcplink.config import settings
from mcplink.errors import ConnectError, ConnectionLost, HandshakeTimeoutError, JsonRpcError, McpError, McpTimeoutError, ProtocolError
from mcplink.schemas import ServerEndpoint, ServerInfo, ToolCallResult, ToolDescriptor, TransportKind
from mcplink.services.logging_service import LoggingService
from mcplink.transports.correlator import RequestCorrelator
from mcplink.utils import jsonrpc

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

# Upper bound on tools/list pages, guards against a server that loops its cursor
MAX_LIST_PAGES = 100


class McpClient(ABC):
    """One connection to one MCP server.

    Attributes:
        endpoint: The endpoint this client talks to.
        server_info: Handshake result, set once ``connect`` succeeds.
        tools: Catalog from the most recent ``list_tools``.
    """

    kind: TransportKind

    def __init__(self, endpoint: ServerEndpoint):
        """Initialize the client.

        Args:
            endpoint: Target server.
        """
        self.endpoint = endpoint
        self.server_info: Optional[ServerInfo] = None
        self.tools: List[ToolDescriptor] = []
        self._correlator = RequestCorrelator()
        self._connected = False
        self._closed = False

    @property
    def is_connected(self) -> bool:
        """Whether the handshake completed and the transport is still alive."""
        return self._connected and not self._closed and not self._correlator.is_closed

    @property
    def is_closed(self) -> bool:
        """Whether ``close`` was called or the transport died."""
        return self._closed

    # ------------------------------------------------------------------ #
    # Transport hooks
    # ------------------------------------------------------------------ #
    @abstractmethod
    async def _open(self, timeout: float) -> None:
        """Set up the transport (spawn, open stream). Called once by ``connect``."""

    @abstractmethod
    async def _send(self, message: Dict[str, Any]) -> None:
        """Write one envelope. Responses must reach ``self._correlator.deliver``."""

    @abstractmethod
    async def _close_transport(self) -> None:
        """Release transport resources. Called at most once."""

    async def _handshake_failure(self, exc: ConnectionLost) -> McpError:
        """Translate a connection loss during the handshake.

        Args:
            exc: The loss reported by the transport.

        Returns:
            The error ``connect`` should raise.
        """
        return ConnectError(f"connection lost during handshake: {exc}")

    def _on_initialized(self) -> None:
        """Hook run after a successful handshake."""

    # ------------------------------------------------------------------ #
    # Protocol operations
    # ------------------------------------------------------------------ #
    async def connect(self, timeout: Optional[float] = None) -> ServerInfo:
        """Open the transport and run the ``initialize`` handshake.

        Args:
            timeout: Overall deadline for setup plus handshake; defaults to
                ``settings.default_timeout``.

        Returns:
            ServerInfo: What the server reported.

        Raises:
            ConnectError: Spawn/connect failure, HTTP error status, rejected
                handshake, unsupported protocol version or handshake timeout
                (:class:`HandshakeTimeoutError`).
            ProtocolError: The server answered with something that is not MCP.
            ConnectionLost: The client was already closed.
        """
        if self._closed:
            raise ConnectionLost("client is closed")
        if self._connected and self.server_info is not None:
            return self.server_info

        timeout = timeout if timeout is not None else settings.default_timeout
        deadline = time.monotonic() + timeout
        target = self.endpoint.describe()

        try:
            try:
                await asyncio.wait_for(self._open(timeout), timeout)
            except McpError:
                raise
            except asyncio.TimeoutError:
                raise HandshakeTimeoutError(f"timed out after {timeout:g}s connecting to {target}", timeout=timeout) from None

            remaining = max(deadline - time.monotonic(), 0.001)
            params = {
                "protocolVersion": settings.protocol_version,
                "capabilities": {},
                "clientInfo": {"name": settings.client_name, "version": settings.client_version},
            }
            try:
                result = await self._request("initialize", params, remaining)
            except HandshakeTimeoutError:
                raise
            except McpTimeoutError:
                raise HandshakeTimeoutError(f"timed out after {timeout:g}s waiting for initialize from {target}", timeout=timeout) from None
            except ConnectionLost as exc:
                raise await self._handshake_failure(exc) from exc
            except JsonRpcError as exc:
                raise ConnectError(f"server rejected initialize: {exc}") from exc

            info = ServerInfo.from_initialize_result(result)
            if info.protocol_version not in settings.supported_protocol_versions:
                raise ConnectError(f"unsupported protocol version {info.protocol_version!r} from {target}")
        except McpError as exc:
            logger.warning(f"Handshake with {self.kind.value} server {target} failed: {exc}")
            await self.close()
            raise
        except BaseException:
            await self.close()
            raise

        self.server_info = info
        self._connected = True
        await self._notify("notifications/initialized")
        self._on_initialized()
        logger.info(f"Connected to {self.kind.value} server {target}: {info.name} {info.version} (protocol {info.protocol_version})")
        return info

    async def list_tools(self, timeout: Optional[float] = None) -> List[ToolDescriptor]:
        """Fetch the tool catalog, following ``nextCursor`` pages.

        Args:
            timeout: Deadline per page; defaults to ``settings.default_timeout``.

        Returns:
            The tools. Also cached on ``self.tools``.

        Raises:
            ProtocolError: Malformed response or a JSON-RPC error.
            McpTimeoutError: No response in time.
            ConnectionLost: Transport died or client not connected.
        """
        self._ensure_connected()
        timeout = timeout if timeout is not None else settings.default_timeout
        tools: List[ToolDescriptor] = []
        cursor: Optional[str] = None
        for _ in range(MAX_LIST_PAGES):
            result = await self._request("tools/list", {"cursor": cursor} if cursor else None, timeout)
            if not isinstance(result, dict):
                raise ProtocolError("tools/list result must be an object")
            tools.extend(ToolDescriptor.parse_list(result.get("tools")))
            cursor = result.get("nextCursor")
            if not cursor:
                break
        else:
            logger.warning(f"Stopped paging tools/list from {self.endpoint.describe()} after {MAX_LIST_PAGES} pages")
        self.tools = tools
        return tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> ToolCallResult:
        """Invoke a tool.

        A tool that fails (``isError``) or a server that rejects the call with
        a JSON-RPC error produces a failed :class:`ToolCallResult`; only
        transport problems raise.

        Args:
            name: Tool name as listed by the server.
            arguments: Tool arguments.
            timeout: Deadline; defaults to ``settings.default_timeout``.

        Returns:
            ToolCallResult: The outcome.

        Raises:
            McpTimeoutError: No response in time.
            ConnectionLost: Transport died or client not connected.
            ProtocolError: Malformed response.
        """
        self._ensure_connected()
        timeout = timeout if timeout is not None else settings.default_timeout
        started = time.monotonic()
        try:
            result = await self._request("tools/call", {"name": name, "arguments": arguments or {}}, timeout)
        except JsonRpcError as exc:
            return ToolCallResult.failure(str(exc), elapsed_ms=_elapsed_ms(started))
        return ToolCallResult.from_call_result(result, elapsed_ms=_elapsed_ms(started))

    async def close(self) -> None:
        """Close the client. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        self._connected = False
        self._correlator.close(ConnectionLost(f"connection to {self.endpoint.describe()} closed"))

        with anyio.move_on_after(settings.cleanup_timeout) as scope:
            try:
                await self._close_transport()
            except Exception as e:
                logger.debug(f"Error closing {self.kind.value} transport: {e}")
        if scope.cancelled_caught:
            logger.warning(f"Transport cleanup timed out for {self.endpoint.describe()} - proceeding anyway")

    async def __aenter__(self) -> "McpClient":
        """Connect on entry.

        Returns:
            McpClient: This client.
        """
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Close on exit.

        Args:
            exc_type: Exception type if an exception was raised.
            exc_val: Exception value if an exception was raised.
            exc_tb: Exception traceback if an exception was raised.
        """
        await self.close()

    # ------------------------------------------------------------------ #
    # Helpers for subclasses
    # ------------------------------------------------------------------ #
    async def _request(self, method: str, params: Optional[Dict[str, Any]], timeout: float) -> Any:
        """Send a request through the correlator and unwrap its result.

        Args:
            method: JSON-RPC method.
            params: Parameters object.
            timeout: Deadline in seconds.

        Returns:
            The ``result`` member.

        Raises:
            JsonRpcError: The server answered with an error object.
            ProtocolError: The response has neither result nor error.
        """
        response = await self._correlator.send_and_await(jsonrpc.build_request(method, params), timeout, self._send)
        if "error" in response:
            raise JsonRpcError.from_payload(response["error"])
        if "result" not in response:
            raise ProtocolError(f"response to '{method}' has neither result nor error")
        return response["result"]

    async def _notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification. Failures are logged, not raised.

        Args:
            method: Notification method.
            params: Optional parameters.
        """
        try:
            await self._send(jsonrpc.build_request(method, params))
        except McpError as e:
            logger.warning(f"Failed to send {method} to {self.endpoint.describe()}: {e}")

    def _handle_inbound(self, message: Any) -> Optional[Dict[str, Any]]:
        """Route one decoded inbound message.

        Responses go to the correlator. Notifications are dropped. Server
        requests get a reply envelope, which the caller must send back.

        Args:
            message: Decoded JSON value.

        Returns:
            A reply envelope for server requests, otherwise None.
        """
        kind = jsonrpc.message_kind(message)
        if kind == "response":
            self._correlator.deliver(message)
        elif kind == "notification":
            logger.debug(f"Dropping notification {message.get('method')} from {self.endpoint.describe()}")
        elif kind == "request":
            if message.get("method") == "ping":
                return jsonrpc.build_result(message.get("id"), {})
            return jsonrpc.build_error(message.get("id"), jsonrpc.METHOD_NOT_FOUND, f"Method not found: {message.get('method')}")
        else:
            logger.debug(f"Ignoring non JSON-RPC message from {self.endpoint.describe()}: {str(message)[:200]}")
        return None

    def _ensure_connected(self) -> None:
        """Raise unless the handshake completed and the client is open.

        Raises:
            ConnectionLost: If the client is closed or was never connected.
        """
        if self._closed:
            raise ConnectionLost(f"connection to {self.endpoint.describe()} is closed")
        if not self._connected:
            raise ConnectionLost(f"not connected to {self.endpoint.describe()}")


def _elapsed_ms(started: float) -> float:
    """Milliseconds since ``started``.

    Args:
        started: ``time.monotonic()`` reading.

    Returns:
        Elapsed milliseconds.
    """
    return (time.monotonic() - started) * 1000.0
