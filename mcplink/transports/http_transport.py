# -*- coding: utf-8 -*-
"""Location: ./mcplink/transports/http_transport.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Plain HTTP Transport Implementation.

Every JSON-RPC message is one POST to the endpoint URL. The response body is
either a single JSON-RPC object or, for servers that always frame replies,
an SSE body carrying it; either way messages are delivered through the
correlator so the request id is honoured. Endpoint headers (bearer tokens,
API keys) are sent verbatim and ``mcp-session-id`` is echoed once the server
assigns one.
"""

# Future
from __future__ import annotations

# Standard
from typing import Any, Dict, Optional

# Third-Party
import httpx

# First-Party
from mcplink.errors import ConnectError, ConnectionLost, McpError, McpTimeoutError, ProtocolError
from mcplink.schemas import ServerEndpoint, TransportKind
from mcplink.services.http_client_service import build_http_client, get_http_timeout
from mcplink.services.logging_service import LoggingService
from mcplink.transports.base import McpClient
from mcplink.transports.correlator import RequestCorrelator
from mcplink.utils import jsonrpc
from mcplink.utils.sse import parse_sse_messages
from mcplink.utils.url_auth import redact_headers, sanitize_exception_message

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

SESSION_ID_HEADER = "mcp-session-id"
PROTOCOL_VERSION_HEADER = "mcp-protocol-version"
EVENT_STREAM = "text/event-stream"

# Past the call deadline, so the correlator rather than httpx reports the timeout
_READ_GRACE_SECONDS = 1.0


def exchange_timeout(correlator: RequestCorrelator, message: Dict[str, Any]) -> httpx.Timeout:
    """httpx timeout for the POST carrying ``message``.

    A request reads until its call's deadline, however long that is;
    notifications and replies to server requests use the configured default.

    Args:
        correlator: Correlator holding the pending call.
        message: Outbound envelope.

    Returns:
        httpx.Timeout: Per-request timeout.
    """
    left = correlator.time_left(message.get("id")) if "method" in message else None
    if left is None:
        return get_http_timeout()
    return get_http_timeout(read_timeout=left + _READ_GRACE_SECONDS)


def check_response_status(response: httpx.Response, *, connected: bool, target: str, session_id: Optional[str] = None) -> None:
    """Map an HTTP error status onto the error taxonomy.

    Args:
        response: The response; its body must already be read.
        connected: Whether the handshake has completed.
        target: Log safe endpoint description.
        session_id: Server assigned session id, if any.

    Raises:
        ConnectError: Error status before the handshake completed.
        ConnectionLost: 404 for a known session (the server forgot it).
        ProtocolError: Any other error status.

    Examples:
        >>> resp = httpx.Response(500, request=httpx.Request("POST", "http://h/mcp"))
        >>> try:
        ...     check_response_status(resp, connected=False, target="http://h/mcp")
        ... except ConnectError as exc:
        ...     (exc.status_code, str(exc))
        (500, 'HTTP 500 from http://h/mcp')
    """
    status = response.status_code
    if status < 400:
        return
    if not connected:
        raise ConnectError(f"HTTP {status} from {target}", status_code=status)
    if status == 404 and session_id:
        raise ConnectionLost(f"session {session_id} is no longer known to {target} (HTTP 404)")
    raise ProtocolError(f"HTTP {status} from {target}: {response.text[:200]}")


class HttpClient(McpClient):
    """MCP client speaking request/response JSON-RPC over HTTP POST."""

    kind = TransportKind.HTTP

    def __init__(self, endpoint: ServerEndpoint, http_client: Optional[httpx.AsyncClient] = None):
        """Initialize the client.

        Args:
            endpoint: HTTP endpoint (url, headers).
            http_client: Optional client to use instead of a private one; it
                is not closed by :meth:`close`.
        """
        super().__init__(endpoint)
        self._http = http_client
        self._owns_http = http_client is None
        self._session_id: Optional[str] = None

    @property
    def session_id(self) -> Optional[str]:
        """Server assigned ``mcp-session-id``, if any."""
        return self._session_id

    async def _open(self, timeout: float) -> None:
        """Create the private HTTP client when none was injected.

        Read deadlines are set per POST by :func:`exchange_timeout`.

        Args:
            timeout: Handshake deadline (unused; the POSTs carry their own).
        """
        if self._http is None:
            self._http = build_http_client()
        logger.debug(f"Opening HTTP session to {self.endpoint.describe()} with headers {redact_headers(self.endpoint.headers)}")

    def _request_headers(self) -> Dict[str, str]:
        """Headers for a POST.

        Returns:
            Header mapping.
        """
        headers = {"Content-Type": "application/json", "Accept": f"application/json, {EVENT_STREAM}"}
        headers.update(self.endpoint.headers)
        if self._session_id:
            headers[SESSION_ID_HEADER] = self._session_id
        return headers

    def _require_http(self) -> httpx.AsyncClient:
        """Return the HTTP client.

        Returns:
            The client.

        Raises:
            ConnectionLost: If the transport is not open.
        """
        if self._http is None or self._closed:
            raise ConnectionLost(f"HTTP transport to {self.endpoint.describe()} is not open")
        return self._http

    def _capture_session_id(self, response: httpx.Response) -> None:
        """Remember the server assigned session id.

        Args:
            response: Any response from the server.
        """
        session_id = response.headers.get(SESSION_ID_HEADER)
        if session_id and session_id != self._session_id:
            logger.debug(f"Server {self.endpoint.describe()} assigned session id {session_id}")
            self._session_id = session_id

    def _check_answered(self, message: Dict[str, Any]) -> None:
        """Fail a request whose reply body did not carry its response.

        Args:
            message: The posted envelope.

        Raises:
            ProtocolError: If ``message`` is a request still waiting for its response.
        """
        if "method" in message and self._correlator.is_waiting(message.get("id")):
            raise ProtocolError(f"reply to '{message['method']}' from {self.endpoint.describe()} has no response for id {message.get('id')}")

    def _transport_error(self, exc: httpx.HTTPError) -> McpError:
        """Translate an httpx failure.

        Args:
            exc: The httpx error.

        Returns:
            McpTimeoutError, ConnectError (before the handshake) or ConnectionLost.
        """
        target = self.endpoint.describe()
        detail = sanitize_exception_message(str(exc)) or type(exc).__name__
        if isinstance(exc, httpx.TimeoutException):
            return McpTimeoutError(f"HTTP request to {target} timed out: {detail}")
        if not self._connected:
            return ConnectError(f"failed to reach {target}: {detail}")
        return ConnectionLost(f"HTTP request to {target} failed: {detail}")

    async def _send(self, message: Dict[str, Any]) -> None:
        """POST one envelope and deliver whatever comes back.

        Args:
            message: Envelope to send.

        Raises:
            McpError: Transport failure or error status, see :func:`check_response_status`.
            ProtocolError: The body does not answer the posted request.
        """
        client = self._require_http()
        try:
            response = await client.post(
                self.endpoint.url or "",
                content=jsonrpc.dumps(message),
                headers=self._request_headers(),
                timeout=exchange_timeout(self._correlator, message),
            )
        except httpx.HTTPError as exc:
            raise self._transport_error(exc) from exc

        self._capture_session_id(response)
        check_response_status(response, connected=self._connected, target=self.endpoint.describe(), session_id=self._session_id)
        if response.status_code == 202 or not response.content:
            return
        await self._deliver_body(response.headers.get("content-type", ""), response.text)
        self._check_answered(message)

    async def _deliver_body(self, content_type: str, body: str) -> None:
        """Parse a response body and route the messages it carries.

        Args:
            content_type: Response content type.
            body: Response text.

        Raises:
            ProtocolError: If a JSON body cannot be parsed.
        """
        if EVENT_STREAM in content_type:
            messages = parse_sse_messages(body)
        else:
            decoded = jsonrpc.loads(body)
            messages = decoded if isinstance(decoded, list) else [decoded]
        for message in messages:
            await self._route(message)

    async def _route(self, message: Any) -> None:
        """Deliver one inbound message, answering server requests.

        Args:
            message: Decoded message.
        """
        reply = self._handle_inbound(message)
        if reply is not None:
            try:
                await self._send(reply)
            except McpError as e:
                logger.debug(f"Could not answer server request: {e}")

    async def _close_transport(self) -> None:
        """Close the private HTTP client."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None
