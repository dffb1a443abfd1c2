# -*- coding: utf-8 -*-
"""Location: ./mcplink/transports/factory.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Transport client factory.

Examples:
    >>> from mcplink.schemas import ServerEndpoint
    >>> from mcplink.transports.factory import create_client
    >>> type(create_client(ServerEndpoint(kind="sse", url="http://localhost:8000/sse"))).__name__
    'SseClient'
    >>> type(create_client(ServerEndpoint(kind="stdio", command="cat"))).__name__
    'StdioClient'
"""

# Standard
from typing import assert_never, Callable, Optional

# Third-Party
import httpx

# First-Party
from mcplink.schemas import ServerEndpoint, TransportKind
from mcplink.transports.base import McpClient
from mcplink.transports.http_transport import HttpClient
from mcplink.transports.sse_transport import SseClient
from mcplink.transports.stdio_transport import StdioClient
from mcplink.transports.streamablehttp_transport import StreamableHttpClient

ClientFactory = Callable[[ServerEndpoint], McpClient]


def create_client(endpoint: ServerEndpoint, http_client: Optional[httpx.AsyncClient] = None) -> McpClient:
    """Build an unconnected client for ``endpoint``.

    Args:
        endpoint: Target server.
        http_client: Shared HTTP client for the HTTP family; ignored for stdio.

    Returns:
        McpClient: A client of the class matching ``endpoint.kind``.
    """
    kind = endpoint.kind
    if kind is TransportKind.STDIO:
        return StdioClient(endpoint)
    elif kind is TransportKind.HTTP:
        return HttpClient(endpoint, http_client=http_client)
    elif kind is TransportKind.SSE:
        return SseClient(endpoint, http_client=http_client)
    elif kind is TransportKind.STREAMABLE_HTTP:
        return StreamableHttpClient(endpoint, http_client=http_client)
    else:
        assert_never(kind)
