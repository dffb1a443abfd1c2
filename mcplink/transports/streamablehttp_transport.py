# -*- coding: utf-8 -*-
"""Location: ./mcplink/transports/streamablehttp_transport.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Streamable HTTP Transport Implementation.

Each request is a POST; the server answers either with a JSON body or with
a ``text/event-stream`` body that may carry notifications and server
requests before the response. SSE bodies are consumed incrementally and the
stream is released as soon as the response to the posted request has been
delivered, so a server that keeps the stream open does not stall the call.

After the handshake the negotiated ``mcp-protocol-version`` header is sent
on every request, and the server session is terminated with ``DELETE`` on
close.
"""

# Future
from __future__ import annotations

# Standard
from typing import Any, Dict

# Third-Party
import httpx

# First-Party
from mcplink.config import settings
from mcplink.schemas import TransportKind
from mcplink.services.logging_service import LoggingService
from mcplink.transports.http_transport import check_response_status, EVENT_STREAM, exchange_timeout, HttpClient, PROTOCOL_VERSION_HEADER, SESSION_ID_HEADER
from mcplink.utils import jsonrpc
from mcplink.utils.sse import aiter_events, decode_event_data

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


class StreamableHttpClient(HttpClient):
    """MCP client for the streamable HTTP transport."""

    kind = TransportKind.STREAMABLE_HTTP

    def _request_headers(self) -> Dict[str, str]:
        """Headers for a POST, including the negotiated protocol version.

        Returns:
            Header mapping.
        """
        headers = super()._request_headers()
        if self._connected and self.server_info is not None:
            headers[PROTOCOL_VERSION_HEADER] = self.server_info.protocol_version
        return headers

    async def _send(self, message: Dict[str, Any]) -> None:
        """POST one envelope and consume the (possibly streamed) reply.

        Args:
            message: Envelope to send.

        Raises:
            McpError: Transport failure or error status.
            ProtocolError: A JSON body does not answer the posted request.
        """
        client = self._require_http()
        request = client.build_request(
            "POST",
            self.endpoint.url or "",
            content=jsonrpc.dumps(message),
            headers=self._request_headers(),
            timeout=exchange_timeout(self._correlator, message),
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise self._transport_error(exc) from exc

        try:
            self._capture_session_id(response)
            content_type = response.headers.get("content-type", "")
            if response.status_code >= 400 or EVENT_STREAM not in content_type:
                await response.aread()
                check_response_status(response, connected=self._connected, target=self.endpoint.describe(), session_id=self._session_id)
                if response.status_code != 202 and response.content:
                    await self._deliver_body(content_type, response.text)
                    self._check_answered(message)
                return

            await self._consume_stream(response, message.get("id"))
        except httpx.HTTPError as exc:
            raise self._transport_error(exc) from exc
        finally:
            await response.aclose()

    async def _consume_stream(self, response: httpx.Response, request_id: Any) -> None:
        """Deliver SSE events until the response to ``request_id`` arrives.

        Args:
            response: Streaming response.
            request_id: Id of the posted request, None for notifications.
        """
        async for event in aiter_events(response.aiter_lines()):
            if event.event != "message":
                continue
            message = decode_event_data(event)
            if message is None:
                continue
            await self._route(message)
            if request_id is not None and isinstance(message, dict) and message.get("id") == request_id and jsonrpc.message_kind(message) == "response":
                return

    async def _close_transport(self) -> None:
        """Terminate the server session, then release the HTTP client."""
        if self._http is not None and self._session_id:
            headers = {**self.endpoint.headers, SESSION_ID_HEADER: self._session_id}
            try:
                await self._http.delete(self.endpoint.url or "", headers=headers, timeout=settings.cleanup_timeout)
            except httpx.HTTPError as e:
                logger.debug(f"Session DELETE to {self.endpoint.describe()} failed: {e}")
        await super()._close_transport()
