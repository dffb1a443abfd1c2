# -*- coding: utf-8 -*-
"""Location: ./mcplink/services/http_client_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

HTTP client construction for the HTTP-family transports.

Two ways to get an ``httpx.AsyncClient``:

- :func:`get_http_client` returns one pooled client shared by every session
  the gateway server opens, so backends on the same host reuse connections.
  It is closed by :meth:`SharedHttpClient.shutdown` in the server lifespan.
- :func:`build_http_client` makes a private client. Transports that were not
  handed a shared client (connection tester, CLI) build one per session and
  close it with the session.

Both are configured from ``settings.httpx_*`` (``MCPLINK_HTTPX_*`` in the
environment). Event streams use :func:`get_stream_timeout`, which keeps the
connect deadline but never times out a read.
"""

# Standard
import asyncio
from typing import Optional

# Third-Party
import httpx

# First-Party
from mcplink.config import settings
from mcplink.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


def get_http_limits() -> httpx.Limits:
    """Connection pool limits from settings.

    Returns:
        httpx.Limits: Configured limits.
    """
    return httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )


def get_http_timeout(read_timeout: Optional[float] = None, connect_timeout: Optional[float] = None) -> httpx.Timeout:
    """Request timeouts from settings, with optional read/connect overrides.

    Args:
        read_timeout: Seconds to wait for response data.
        connect_timeout: Seconds to wait for a connection.

    Returns:
        httpx.Timeout: Configured timeout.

    Examples:
        >>> get_http_timeout(read_timeout=7.0).read
        7.0
    """
    return httpx.Timeout(
        connect=connect_timeout or settings.httpx_connect_timeout,
        read=read_timeout or settings.httpx_read_timeout,
        write=settings.httpx_write_timeout,
        pool=settings.httpx_pool_timeout,
    )


def get_stream_timeout() -> httpx.Timeout:
    """Timeout for SSE streams: bounded connect, unbounded read.

    Returns:
        httpx.Timeout: Timeout without a read deadline.

    Examples:
        >>> get_stream_timeout().read is None
        True
    """
    return httpx.Timeout(
        connect=settings.httpx_connect_timeout,
        read=None,
        write=settings.httpx_write_timeout,
        pool=settings.httpx_pool_timeout,
    )


def get_default_verify() -> bool:
    """TLS verification flag; False only when ``skip_ssl_verify`` is set."""
    return not settings.skip_ssl_verify


def build_http_client(read_timeout: Optional[float] = None) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` configured from settings.

    Args:
        read_timeout: Read deadline for the client; settings default if None.

    Returns:
        httpx.AsyncClient: A new client. The caller closes it.
    """
    return httpx.AsyncClient(
        timeout=get_http_timeout(read_timeout=read_timeout),
        limits=get_http_limits(),
        verify=get_default_verify(),
        follow_redirects=True,
    )


class SharedHttpClient:
    """Process wide holder of the pooled client used by the gateway server."""

    _instance: Optional["SharedHttpClient"] = None
    _lock: Optional[asyncio.Lock] = None
    _lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def __init__(self) -> None:
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    async def get_instance(cls) -> "SharedHttpClient":
        """Return the holder, opening its client on first use.

        Returns:
            SharedHttpClient: Holder with an open client.
        """
        async with cls._get_lock():
            if cls._instance is None:
                cls._instance = cls()
            if cls._instance._client is None:  # pylint: disable=protected-access
                cls._instance._client = build_http_client()  # pylint: disable=protected-access
                logger.info(f"Shared HTTP client opened (max_connections={settings.httpx_max_connections}, keepalive={settings.httpx_max_keepalive_connections})")
        return cls._instance

    @classmethod
    def _get_lock(cls) -> asyncio.Lock:
        """The holder's lock, created inside the running event loop."""
        loop = asyncio.get_running_loop()
        if cls._lock is None or cls._lock_loop is not loop:
            cls._lock = asyncio.Lock()
            cls._lock_loop = loop
        return cls._lock

    @property
    def client(self) -> httpx.AsyncClient:
        """The open client.

        Raises:
            RuntimeError: If the holder has no client yet.
        """
        if self._client is None:
            raise RuntimeError("SharedHttpClient not initialized. Call get_instance() first.")
        return self._client

    @classmethod
    async def shutdown(cls) -> None:
        """Close the pooled client and forget the holder."""
        instance, cls._instance = cls._instance, None
        if instance is not None and instance._client is not None:  # pylint: disable=protected-access
            await instance._client.aclose()  # pylint: disable=protected-access
            logger.info("Shared HTTP client closed")


async def get_http_client() -> httpx.AsyncClient:
    """Pooled client shared by gateway sessions.

    Returns:
        httpx.AsyncClient: The shared client.
    """
    return (await SharedHttpClient.get_instance()).client
