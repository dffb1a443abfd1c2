# -*- coding: utf-8 -*-
"""Location: ./mcplink/services/connection_tester.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Connection Tester.

Validates a server configuration before it is saved: opens a fresh
transport, performs the handshake, lists the tools and closes again. It
never touches the session manager, and it never raises for a failing
server. Every failure becomes a report with ``success=False`` and a reason an
end user can read.

Examples:
    >>> import asyncio
    >>> from mcplink.services.connection_tester import ConnectionTester
    >>> report = asyncio.run(ConnectionTester().test_config("stdio"))
    >>> (report.success, report.error)
    (False, 'STDIO MCP requires a command')
"""

# Standard
import time
from typing import Dict, List, Optional

# Third-Party
from pydantic import ValidationError

# First-Party
from mcplink.config import settings
from mcplink.errors import ConnectError, ConnectionLost, HandshakeTimeoutError, JsonRpcError, McpError, McpTimeoutError, ProtocolError
from mcplink.schemas import ServerEndpoint, TestReport
from mcplink.services.logging_service import LoggingService
from mcplink.transports.factory import ClientFactory, create_client
from mcplink.utils.url_auth import sanitize_exception_message

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


def describe_failure(exc: BaseException, timeout: float) -> str:
    """Turn an exception into a one-line reason for the user.

    Args:
        exc: The failure.
        timeout: The deadline that was in force.

    Returns:
        Human readable reason.

    Examples:
        >>> describe_failure(McpTimeoutError("no response to 'initialize'"), 30.0)
        'timed out after 30s'
        >>> describe_failure(ConnectError("process exited before handshake"), 30.0)
        'process exited before handshake'
        >>> describe_failure(RuntimeError("boom"), 30.0)
        'unexpected error: boom'
    """
    if isinstance(exc, (HandshakeTimeoutError, McpTimeoutError)):
        return f"timed out after {timeout:g}s"
    if isinstance(exc, JsonRpcError):
        return f"server returned error {exc.code}: {exc.message}"
    if isinstance(exc, ProtocolError):
        return f"protocol error: {exc.message}"
    if isinstance(exc, (ConnectError, ConnectionLost, McpError)):
        return sanitize_exception_message(exc.message)
    return f"unexpected error: {sanitize_exception_message(str(exc)) or type(exc).__name__}"


def _elapsed_ms(started: float) -> float:
    """Milliseconds since ``started``."""
    return round((time.monotonic() - started) * 1000.0, 3)


class ConnectionTester:
    """One-shot connectivity checks for MCP server configurations."""

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        """Initialize the tester.

        Args:
            client_factory: Builds an unconnected client; defaults to
                :func:`mcplink.transports.factory.create_client`.
        """
        self._client_factory: ClientFactory = client_factory or create_client

    async def test(self, endpoint: ServerEndpoint, timeout: Optional[float] = None) -> TestReport:
        """Connect, list tools and disconnect.

        Args:
            endpoint: Server to test.
            timeout: Deadline for the whole test, handshake and listing
                together; defaults to ``settings.default_timeout``.

        Returns:
            TestReport: Outcome; never raises for server failures.
        """
        timeout = timeout if timeout is not None else settings.default_timeout
        started = time.monotonic()
        client = self._client_factory(endpoint)
        try:
            info = await client.connect(timeout)
            remaining = timeout - (time.monotonic() - started)
            if remaining <= 0:
                raise McpTimeoutError("no time left to list tools", timeout=timeout)
            tools = await client.list_tools(remaining)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            reason = describe_failure(exc, timeout)
            logger.info(f"Connection test failed for {endpoint.kind.value} server {endpoint.describe()}: {reason}")
            return TestReport(success=False, error=reason, elapsed_ms=_elapsed_ms(started))
        finally:
            await client.close()

        logger.info(f"Connection test passed for {endpoint.describe()}: {info.name} with {len(tools)} tool(s)")
        return TestReport(
            success=True,
            server_info=info,
            tools=tools,
            tool_count=len(tools),
            resources_supported=info.resources_supported,
            prompts_supported=info.prompts_supported,
            elapsed_ms=_elapsed_ms(started),
        )

    async def test_config(
        self,
        kind: str,
        command: Optional[str] = None,
        args: Optional[List[str]] = None,
        url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> TestReport:
        """Validate raw configuration fields, then test them.

        Args:
            kind: Transport name (``stdio``, ``http``, ``sse``, ``streamable-http``).
            command: stdio command.
            args: stdio arguments.
            url: HTTP-family URL.
            headers: HTTP-family headers.
            env: stdio environment additions.
            timeout: Deadline for the whole test.

        Returns:
            TestReport: Outcome; configuration errors are reported, not raised.
        """
        record = {"type": kind, "command": command, "args": args, "url": url, "headers": headers, "env": env}
        try:
            endpoint = ServerEndpoint.from_record(record)
        except ValidationError as exc:
            return TestReport(success=False, error=_validation_reason(exc, kind))
        return await self.test(endpoint, timeout)


def _validation_reason(exc: ValidationError, kind: str) -> str:
    """Reduce a validation error to its first message.

    Args:
        exc: The validation error.
        kind: The transport name that was supplied.

    Returns:
        Reason text.
    """
    error = exc.errors()[0]
    if error.get("loc") == ("kind",):
        return f"Unknown MCP type: {kind}"
    message = str(error.get("msg", "invalid configuration"))
    return message.removeprefix("Value error, ")
