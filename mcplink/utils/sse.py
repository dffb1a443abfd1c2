# -*- coding: utf-8 -*-
"""Location: ./mcplink/utils/sse.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Incremental Server-Sent Events decoding.

Lines go in one at a time (without their line terminator, as produced by
``httpx.Response.aiter_lines``); a complete :class:`SSEEvent` comes out
whenever a blank line ends an event.

Examples:
    >>> from mcplink.utils.sse import iter_events
    >>> events = list(iter_events("event: endpoint\\ndata: /messages?sid=1\\n\\n: keepalive\\n\\ndata: {\\"a\\": 1}\\n\\n"))
    >>> [(e.event, e.data) for e in events]
    [('endpoint', '/messages?sid=1'), ('message', '{"a": 1}')]
"""

# Standard
from dataclasses import dataclass
import logging
from typing import Any, AsyncIterator, Iterator, List, Optional

# First-Party
from mcplink.errors import ProtocolError
from mcplink.utils import jsonrpc

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass
class SSEEvent:
    """One dispatched event."""

    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Line oriented SSE parser following the WHATWG event stream rules."""

    def __init__(self) -> None:
        self._event: Optional[str] = None
        self._data: List[str] = []
        self._last_id: Optional[str] = None
        self._retry: Optional[int] = None

    def feed_line(self, line: str) -> Optional[SSEEvent]:
        """Consume one line.

        Args:
            line: A line without its terminator.

        Returns:
            The completed event when ``line`` is blank and data was buffered,
            otherwise None.

        Examples:
            >>> d = SSEDecoder()
            >>> d.feed_line("data: first") is None
            True
            >>> d.feed_line("data: second") is None
            True
            >>> d.feed_line("").data
            'first\\nsecond'
        """
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def flush(self) -> Optional[SSEEvent]:
        """Dispatch whatever is buffered when the stream ends without a blank line.

        Returns:
            The pending event, if any.
        """
        return self._dispatch()

    def _dispatch(self) -> Optional[SSEEvent]:
        """Emit the buffered event and reset per-event state.

        Returns:
            The event or None when nothing was buffered.
        """
        if not self._data and self._event is None:
            return None
        event = SSEEvent(event=self._event or "message", data="\n".join(self._data), id=self._last_id, retry=self._retry)
        self._event = None
        self._data = []
        return event


def iter_events(text: str) -> Iterator[SSEEvent]:
    """Decode a complete SSE body.

    Args:
        text: The full body.

    Yields:
        SSEEvent: Each event in order.
    """
    decoder = SSEDecoder()
    for line in text.splitlines():
        event = decoder.feed_line(line)
        if event is not None:
            yield event
    tail = decoder.flush()
    if tail is not None:
        yield tail


async def aiter_events(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Decode an SSE stream from an async line iterator.

    Args:
        lines: Async iterator of lines, e.g. ``response.aiter_lines()``.

    Yields:
        SSEEvent: Each event as soon as it is complete.
    """
    decoder = SSEDecoder()
    async for line in lines:
        event = decoder.feed_line(line)
        if event is not None:
            yield event
    tail = decoder.flush()
    if tail is not None:
        yield tail


def decode_event_data(event: SSEEvent) -> Optional[Any]:
    """Decode the JSON payload of a ``message`` event.

    Args:
        event: The event.

    Returns:
        Decoded value, or None for empty, ``[DONE]`` or non-JSON data.

    Examples:
        >>> decode_event_data(SSEEvent(data='{"id": 1}'))
        {'id': 1}
        >>> decode_event_data(SSEEvent(data="[DONE]")) is None
        True
    """
    data = event.data.strip()
    if not data or data == DONE_SENTINEL:
        return None
    try:
        return jsonrpc.loads(data)
    except ProtocolError:
        logger.debug(f"Ignoring non-JSON SSE data: {data[:200]}")
        return None


def parse_sse_messages(body: str) -> List[Any]:
    """Extract JSON messages from an SSE framed body.

    Servers sometimes answer with a bare JSON document despite declaring
    ``text/event-stream``; when no event carries JSON the whole body is tried
    as JSON.

    Args:
        body: Response body text.

    Returns:
        Decoded messages in order.

    Examples:
        >>> parse_sse_messages('event: message\\ndata: {"id": 2, "result": {}}\\n\\n')
        [{'id': 2, 'result': {}}]
        >>> parse_sse_messages('{"id": 3, "result": {}}')
        [{'id': 3, 'result': {}}]
    """
    messages = []
    for event in iter_events(body):
        if event.event != "message":
            continue
        decoded = decode_event_data(event)
        if decoded is not None:
            messages.append(decoded)
    if not messages and body.strip():
        try:
            messages.append(jsonrpc.loads(body.strip()))
        except ProtocolError:
            logger.debug(f"Response body carried no JSON-RPC messages: {body[:200]}")
    return messages
