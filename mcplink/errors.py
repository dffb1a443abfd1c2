# -*- coding: utf-8 -*-
"""Location: ./mcplink/errors.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Exception hierarchy for MCP clients, sessions and the gateway.

Transport level failures are exceptions. A tool reporting its own failure
is data (see :class:`mcplink.schemas.ToolCallResult`) and only becomes a
:class:`ToolExecutionError` when a caller asks for it explicitly.

Examples:
    >>> from mcplink.errors import ConnectError, McpError
    >>> err = ConnectError("HTTP 500 from http://x/mcp", status_code=500)
    >>> (isinstance(err, McpError), err.status_code)
    (True, 500)
"""

# Standard
from typing import Any, Optional


class McpError(Exception):
    """Base class for every error raised by mcplink."""

    def __init__(self, message: str):
        """Initialize the error.

        Args:
            message: Human readable description.
        """
        self.message = message
        super().__init__(message)


class ConnectError(McpError):
    """The server could not be reached, spawned or initialized.

    Attributes:
        status_code: HTTP status when the failure came from an HTTP response.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        """Initialize a connect error.

        Args:
            message: Human readable description.
            status_code: Optional HTTP status code.

        Examples:
            >>> ConnectError("spawn failed").status_code is None
            True
        """
        self.status_code = status_code
        super().__init__(message)


class ProtocolError(McpError):
    """A message did not have the expected JSON-RPC or MCP shape."""


class JsonRpcError(ProtocolError):
    """The server answered a request with a JSON-RPC error object.

    Attributes:
        code: JSON-RPC error code.
        data: Optional error data.
    """

    def __init__(self, message: str, code: int = -32603, data: Any = None):
        """Initialize from the pieces of a JSON-RPC error.

        Args:
            message: Error message reported by the server.
            code: JSON-RPC error code.
            data: Optional structured data.
        """
        self.code = code
        self.data = data
        super().__init__(message)

    @classmethod
    def from_payload(cls, payload: Any) -> "JsonRpcError":
        """Build from the ``error`` member of a response.

        Args:
            payload: The error object; tolerated if it is not a mapping.

        Returns:
            JsonRpcError: The error.

        Examples:
            >>> err = JsonRpcError.from_payload({"code": -32601, "message": "Method not found"})
            >>> (err.code, str(err))
            (-32601, 'Method not found')
            >>> JsonRpcError.from_payload("boom").code
            -32603
        """
        if not isinstance(payload, dict):
            return cls(str(payload))
        code = payload.get("code")
        return cls(str(payload.get("message") or "unknown error"), code=code if isinstance(code, int) else -32603, data=payload.get("data"))


class McpTimeoutError(McpError, TimeoutError):
    """No response arrived before the deadline.

    Attributes:
        timeout: The deadline that elapsed, in seconds.
    """

    def __init__(self, message: str, timeout: Optional[float] = None):
        """Initialize a timeout error.

        Args:
            message: Human readable description.
            timeout: Deadline in seconds.

        Examples:
            >>> err = McpTimeoutError("no reply", timeout=1.5)
            >>> (isinstance(err, TimeoutError), err.timeout)
            (True, 1.5)
        """
        self.timeout = timeout
        super().__init__(message)


class HandshakeTimeoutError(ConnectError, McpTimeoutError):
    """The initialize handshake did not finish in time."""

    def __init__(self, message: str, timeout: Optional[float] = None):
        """Initialize a handshake timeout.

        Args:
            message: Human readable description.
            timeout: Deadline in seconds.
        """
        McpError.__init__(self, message)
        self.status_code = None
        self.timeout = timeout


class ConnectionLost(McpError):
    """The transport died; every pending call on it fails with this."""


class SessionNotFoundError(ConnectionLost):
    """The session id is unknown, closed or expired."""


class RoutingError(McpError):
    """A gateway tool name does not map to a registered backend."""


class BackendConflictError(McpError):
    """A backend id or namespace prefix is already registered."""


class ToolExecutionError(McpError):
    """A tool reported a failure of its own.

    Attributes:
        content: Content blocks the tool returned alongside the failure.
    """

    def __init__(self, message: str, content: Any = None):
        """Initialize the error.

        Args:
            message: Failure description from the tool.
            content: Content payload returned with the failure.
        """
        self.content = content
        super().__init__(message)
