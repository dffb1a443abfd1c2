# -*- coding: utf-8 -*-
"""Location: ./mcplink/transports/stdio_transport.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

stdio Transport Implementation.

Spawns the server as a child process and exchanges newline-delimited JSON
over its stdin/stdout. A reader task parses stdout line by line and hands
responses to the correlator; stderr is collected into a bounded tail for
diagnostics and never parsed.

Timeout policy: a call that times out only loses its own pending entry. The
child is killed when the connection itself is abandoned (handshake timeout or
close), not because one tool was slow.
"""

# Future
from __future__ import annotations

# Standard
import asyncio
from collections import deque
import os
from typing import Any, Deque, Dict, List, Optional

# First-Party
from mcplink.config import settings
from mcplink.errors import ConnectError, ConnectionLost, McpError, ProtocolError
from mcplink.schemas import ServerEndpoint, TransportKind
from mcplink.services.logging_service import LoggingService
from mcplink.transports.base import McpClient
from mcplink.utils import jsonrpc

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

# How long a failed handshake waits for the reader to drain buffered output
_DRAIN_GRACE_SECONDS = 1.0


class StdioClient(McpClient):
    """MCP client for a server running as a child process."""

    kind = TransportKind.STDIO

    def __init__(self, endpoint: ServerEndpoint):
        """Initialize the client.

        Args:
            endpoint: stdio endpoint (command, args, env).
        """
        super().__init__(endpoint)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stdout_task: Optional[asyncio.Task[None]] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None
        self._write_lock = asyncio.Lock()
        self._stderr_tail: Deque[str] = deque(maxlen=settings.stdio_stderr_tail_lines)
        self._garbage: Optional[str] = None

    @property
    def pid(self) -> Optional[int]:
        """Child process id, if spawned."""
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        """Exit code once the child has exited."""
        return self._process.returncode if self._process else None

    @property
    def stderr_tail(self) -> List[str]:
        """Most recent stderr lines."""
        return list(self._stderr_tail)

    async def _open(self, timeout: float) -> None:
        """Spawn the child process and start the readers.

        Args:
            timeout: Unused; spawning is not bounded separately.

        Raises:
            ConnectError: If the process cannot be spawned.
        """
        command = self.endpoint.command or ""
        env = {**os.environ, **self.endpoint.env}
        try:
            self._process = await asyncio.create_subprocess_exec(
                command,
                *self.endpoint.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=settings.stdio_line_limit,
            )
        except (OSError, ValueError) as exc:
            raise ConnectError(f"failed to spawn '{command}': {exc}") from exc

        logger.debug(f"Spawned stdio server '{self.endpoint.describe()}' (pid={self._process.pid})")
        self._stdout_task = asyncio.create_task(self._read_stdout(), name=f"mcp-stdio-stdout-{self._process.pid}")
        self._stderr_task = asyncio.create_task(self._read_stderr(), name=f"mcp-stdio-stderr-{self._process.pid}")

    async def _send(self, message: Dict[str, Any]) -> None:
        """Write one JSON line to the child's stdin.

        Args:
            message: Envelope to send.

        Raises:
            ConnectionLost: If stdin is closed or the pipe is broken.
        """
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            raise ConnectionLost(f"stdin of '{self.endpoint.describe()}' is closed")

        data = jsonrpc.dumps(message) + b"\n"
        async with self._write_lock:
            try:
                process.stdin.write(data)
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                raise ConnectionLost(f"stdin of '{self.endpoint.describe()}' is closed: {exc}") from exc

    async def _read_stdout(self) -> None:
        """Parse stdout lines until EOF, then fail everything still pending."""
        process = self._process
        assert process is not None and process.stdout is not None  # nosec B101 - set by _open
        while True:
            try:
                line = await process.stdout.readline()
            except ValueError:
                logger.warning(f"Discarding stdout line over {settings.stdio_line_limit} bytes from '{self.endpoint.describe()}'")
                continue
            if not line:
                break
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue

            try:
                message = jsonrpc.loads(text)
            except ProtocolError:
                self._note_garbage(text)
                continue
            if jsonrpc.message_kind(message) is None:
                self._note_garbage(text)
                continue

            reply = self._handle_inbound(message)
            if reply is not None:
                try:
                    await self._send(reply)
                except McpError as e:
                    logger.debug(f"Could not answer server request: {e}")

        await self._on_stdout_closed()

    async def _read_stderr(self) -> None:
        """Keep a tail of stderr for diagnostics."""
        process = self._process
        assert process is not None and process.stderr is not None  # nosec B101 - set by _open
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug(f"[{self.endpoint.command}] {text}")

    async def _on_stdout_closed(self) -> None:
        """Fail pending calls once the child stops producing output."""
        process = self._process
        code: Optional[int] = None
        if process is not None:
            try:
                code = await asyncio.wait_for(process.wait(), _DRAIN_GRACE_SECONDS)
            except asyncio.TimeoutError:
                code = process.returncode
        if code is not None and self._stderr_task is not None and not self._stderr_task.done():
            # Child is gone, so stderr hits EOF shortly; keep its last words
            await asyncio.wait({self._stderr_task}, timeout=_DRAIN_GRACE_SECONDS)

        reason = f"process '{self.endpoint.describe()}' exited" if code is not None else f"stdout of '{self.endpoint.describe()}' closed"
        if code is not None:
            reason += f" with code {code}"
        if self._stderr_tail:
            reason += f": {self._stderr_tail[-1]}"

        failed = self._correlator.close(ConnectionLost(reason))
        if not self._closed:
            logger.warning(f"{reason} ({failed} pending call(s) failed)")

    def _note_garbage(self, text: str) -> None:
        """Remember the first stdout line that was not JSON-RPC.

        Args:
            text: The offending line.
        """
        if self._garbage is None:
            self._garbage = text
        logger.debug(f"Ignoring non JSON-RPC stdout from '{self.endpoint.describe()}': {text[:200]}")

    async def _handshake_failure(self, exc: ConnectionLost) -> McpError:
        """Explain why the child went away before completing the handshake.

        Args:
            exc: The connection loss.

        Returns:
            ProtocolError when the child printed non-protocol output, otherwise
            ConnectError.
        """
        readers = {task for task in (self._stdout_task, self._stderr_task) if task is not None and not task.done()}
        if readers:
            await asyncio.wait(readers, timeout=_DRAIN_GRACE_SECONDS * 2)

        if self._garbage is not None:
            return ProtocolError(f"'{self.endpoint.describe()}' does not speak JSON-RPC; it printed: {self._garbage[:200]}")

        detail = ""
        if self.returncode is not None:
            detail = f" (exit code {self.returncode})"
        if self._stderr_tail:
            detail += f": {self._stderr_tail[-1]}"
        return ConnectError(f"process exited before handshake{detail}")

    async def _close_transport(self) -> None:
        """Terminate the child, escalating to kill after the grace period."""
        process = self._process
        if process is not None and process.returncode is None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), settings.stdio_terminate_grace)
            except asyncio.TimeoutError:
                logger.warning(f"Process '{self.endpoint.describe()}' (pid={process.pid}) ignored SIGTERM, killing")
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        tasks = [task for task in (self._stdout_task, self._stderr_task) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
