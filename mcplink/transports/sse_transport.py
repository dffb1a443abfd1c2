# -*- coding: utf-8 -*-
"""Location: ./mcplink/transports/sse_transport.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

SSE Transport Implementation.

The legacy MCP SSE transport uses two channels:

* a long lived ``GET`` event stream; its first ``endpoint`` event names the
  URL that accepts client messages, later ``message`` events carry responses,
  notifications and server requests, possibly interleaved;
* one ``POST`` per outbound message to that endpoint, answered with
  ``202 Accepted`` (some servers answer inline with the JSON response).

Inbound responses are matched to callers by id through the correlator. When
the stream ends, every pending call fails with ConnectionLost.
"""

# Future
from __future__ import annotations

# Standard
import asyncio
from typing import Any, Dict, Optional

# Third-Party
import httpx

# First-Party
from mcplink.errors import ConnectError, ConnectionLost, McpError, ProtocolError
from mcplink.schemas import ServerEndpoint, TransportKind
from mcplink.services.http_client_service import build_http_client, get_stream_timeout
from mcplink.services.logging_service import LoggingService
from mcplink.transports.base import McpClient
from mcplink.transports.http_transport import check_response_status, EVENT_STREAM, exchange_timeout
from mcplink.utils import jsonrpc
from mcplink.utils.sse import aiter_events, decode_event_data
from mcplink.utils.url_auth import redact_headers, sanitize_exception_message, sanitize_url_for_logging

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


def resolve_message_endpoint(base_url: str, data: str) -> str:
    """Resolve the ``endpoint`` event payload against the stream URL.

    The payload is usually a path, occasionally a JSON encoded string or an
    absolute URL.

    Args:
        base_url: URL of the event stream.
        data: Raw event data.

    Returns:
        Absolute URL for POSTing messages.

    Raises:
        ProtocolError: If the payload is empty.

    Examples:
        >>> resolve_message_endpoint("http://h:8000/sse", "/messages/?session_id=abc")
        'http://h:8000/messages/?session_id=abc'
        >>> resolve_message_endpoint("http://h:8000/sse", '"/messages?x=1"')
        'http://h:8000/messages?x=1'
        >>> resolve_message_endpoint("http://h:8000/sse", "https://other/msg")
        'https://other/msg'
    """
    value = data.strip()
    if value.startswith('"'):
        try:
            decoded = jsonrpc.loads(value)
        except ProtocolError:
            decoded = value
        value = str(decoded).strip()
    if not value:
        raise ProtocolError("endpoint event carried no URL")
    return str(httpx.URL(base_url).join(value))


class SseClient(McpClient):
    """MCP client for the two-channel SSE transport."""

    kind = TransportKind.SSE

    def __init__(self, endpoint: ServerEndpoint, http_client: Optional[httpx.AsyncClient] = None):
        """Initialize the client.

        Args:
            endpoint: SSE endpoint (stream url, headers).
            http_client: Optional client to use instead of a private one; it
                is not closed by :meth:`close`.
        """
        super().__init__(endpoint)
        self._http = http_client
        self._owns_http = http_client is None
        self._stream: Optional[httpx.Response] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._endpoint_ready: Optional[asyncio.Future[str]] = None
        self._post_url: Optional[str] = None

    @property
    def message_url(self) -> Optional[str]:
        """URL announced by the ``endpoint`` event."""
        return self._post_url

    async def _open(self, timeout: float) -> None:
        """Open the event stream and wait for the ``endpoint`` event.

        Args:
            timeout: Handshake deadline; the stream itself has no read deadline.

        Raises:
            ConnectError: If the stream cannot be opened or ends before announcing an endpoint.
        """
        target = self.endpoint.describe()
        if self._http is None:
            self._http = build_http_client()

        headers = {"Accept": EVENT_STREAM, "Cache-Control": "no-cache", **self.endpoint.headers}
        logger.debug(f"Opening event stream {target} with headers {redact_headers(headers)}")
        request = self._http.build_request("GET", self.endpoint.url or "", headers=headers, timeout=get_stream_timeout())
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise ConnectError(f"failed to reach {target}: {sanitize_exception_message(str(exc)) or type(exc).__name__}") from exc

        if response.status_code >= 400:
            await response.aclose()
            raise ConnectError(f"HTTP {response.status_code} from {target}", status_code=response.status_code)
        content_type = response.headers.get("content-type", "")
        if EVENT_STREAM not in content_type:
            await response.aclose()
            raise ConnectError(f"expected {EVENT_STREAM} from {target}, got {content_type or 'no content type'}")

        self._stream = response
        self._endpoint_ready = asyncio.get_running_loop().create_future()
        self._reader_task = asyncio.create_task(self._read_events(response), name=f"mcp-sse-reader-{target}")
        self._post_url = await self._endpoint_ready
        logger.debug(f"SSE server {target} accepts messages at {sanitize_url_for_logging(self._post_url)}")

    async def _read_events(self, response: httpx.Response) -> None:
        """Dispatch stream events until the stream ends.

        Args:
            response: The open event stream.
        """
        reason = "event stream closed by server"
        try:
            async for event in aiter_events(response.aiter_lines()):
                if event.event == "endpoint":
                    self._announce_endpoint(event.data)
                elif event.event == "message":
                    message = decode_event_data(event)
                    if message is not None:
                        await self._route(message)
                else:
                    logger.debug(f"Ignoring SSE event '{event.event}' from {self.endpoint.describe()}")
        except httpx.HTTPError as exc:
            reason = f"event stream failed: {sanitize_exception_message(str(exc)) or type(exc).__name__}"

        if self._endpoint_ready is not None and not self._endpoint_ready.done():
            self._endpoint_ready.set_exception(ConnectError(f"{reason} before announcing a message endpoint"))
        failed = self._correlator.close(ConnectionLost(f"{reason} ({self.endpoint.describe()})"))
        if not self._closed:
            logger.warning(f"SSE {reason} for {self.endpoint.describe()} ({failed} pending call(s) failed)")

    def _announce_endpoint(self, data: str) -> None:
        """Record the message endpoint from an ``endpoint`` event.

        Args:
            data: Event payload.
        """
        try:
            url = resolve_message_endpoint(self.endpoint.url or "", data)
        except ProtocolError as exc:
            if self._endpoint_ready is not None and not self._endpoint_ready.done():
                self._endpoint_ready.set_exception(exc)
            return
        if self._endpoint_ready is not None and not self._endpoint_ready.done():
            self._endpoint_ready.set_result(url)
        else:
            self._post_url = url

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

    async def _send(self, message: Dict[str, Any]) -> None:
        """POST one envelope to the message endpoint.

        Args:
            message: Envelope to send.

        Raises:
            ConnectionLost: If the stream is gone or the POST fails after the handshake.
            ConnectError: If the POST fails before the handshake completed.
        """
        if self._http is None or self._post_url is None or self._closed:
            raise ConnectionLost(f"SSE transport to {self.endpoint.describe()} is not open")

        headers = {"Content-Type": "application/json", **self.endpoint.headers}
        try:
            response = await self._http.post(self._post_url, content=jsonrpc.dumps(message), headers=headers, timeout=exchange_timeout(self._correlator, message))
        except httpx.HTTPError as exc:
            detail = sanitize_exception_message(str(exc)) or type(exc).__name__
            if self._connected:
                raise ConnectionLost(f"POST to {sanitize_url_for_logging(self._post_url)} failed: {detail}") from exc
            raise ConnectError(f"POST to {sanitize_url_for_logging(self._post_url)} failed: {detail}") from exc

        check_response_status(response, connected=self._connected, target=sanitize_url_for_logging(self._post_url))
        # Some servers answer inline instead of on the stream
        if response.status_code != 202 and response.content and "json" in response.headers.get("content-type", ""):
            try:
                inline = jsonrpc.loads(response.content)
            except ProtocolError:
                logger.debug(f"Ignoring unparseable inline reply from {sanitize_url_for_logging(self._post_url)}")
                return
            for item in inline if isinstance(inline, list) else [inline]:
                self._handle_inbound(item)

    async def _close_transport(self) -> None:
        """Stop the reader, close the stream and the private client."""
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
        if self._stream is not None:
            await self._stream.aclose()
            self._stream = None
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None
