# -*- coding: utf-8 -*-
"""Location: ./mcplink/transports/correlator.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Request Correlator.

Matches inbound JSON-RPC responses to the outbound call that issued their id.
Every transport client owns one correlator; ids are allocated from a
per-correlator counter, start at 1 and are never reset or reused.

A pending call ends in exactly one of three ways:

* the matching response is delivered,
* its deadline passes (:class:`~mcplink.errors.McpTimeoutError`),
* the transport fails (:class:`~mcplink.errors.ConnectionLost`).

In every case the entry is removed, so a response arriving afterwards is
dropped.

Examples:
    >>> import asyncio
    >>> from mcplink.transports.correlator import RequestCorrelator
    >>> async def demo():
    ...     correlator = RequestCorrelator()
    ...     async def write(message):
    ...         correlator.deliver({"jsonrpc": "2.0", "id": message["id"], "result": {"ok": True}})
    ...     return await correlator.send_and_await({"jsonrpc": "2.0", "method": "ping"}, 1.0, write)
    >>> asyncio.run(demo())["result"]
    {'ok': True}
"""

# Standard
import asyncio
import copy
from dataclasses import dataclass
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

# First-Party
from mcplink.errors import ConnectionLost, McpError, McpTimeoutError

logger = logging.getLogger(__name__)

WriteFn = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(eq=False)
class PendingCall:
    """An outbound request waiting for its response."""

    id: int
    method: str
    deadline: float
    future: "asyncio.Future[Dict[str, Any]]"


class RequestCorrelator:
    """Allocate request ids and route responses to their waiters."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingCall] = {}
        self._closed_error: Optional[ConnectionLost] = None

    @property
    def pending_count(self) -> int:
        """Number of calls currently waiting for a response."""
        return len(self._pending)

    @property
    def is_closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed_error is not None

    def next_id(self) -> int:
        """Allocate the next request id.

        Returns:
            A fresh id.

        Examples:
            >>> c = RequestCorrelator()
            >>> (c.next_id(), c.next_id())
            (1, 2)
        """
        return next(self._ids)

    async def send_and_await(self, message: Dict[str, Any], timeout: float, write: WriteFn) -> Dict[str, Any]:
        """Send a request and wait for its response.

        The deadline covers both the write and the wait, so a write path
        that blocks (a stalled pipe, a slow POST) is bounded as well.

        Args:
            message: Request envelope without an ``id``.
            timeout: Seconds to wait.
            write: Coroutine function that puts the envelope on the wire.

        Returns:
            The response envelope (``result`` or ``error``).

        Raises:
            ConnectionLost: If the correlator is closed or the transport fails.
            McpTimeoutError: If the deadline passes first.
        """
        if self._closed_error is not None:
            raise ConnectionLost(self._closed_error.message)

        loop = asyncio.get_running_loop()
        request_id = self.next_id()
        method = str(message.get("method", ""))
        call = PendingCall(id=request_id, method=method, deadline=loop.time() + timeout, future=loop.create_future())
        self._pending[request_id] = call
        outbound = {**message, "id": request_id}

        async def exchange() -> Dict[str, Any]:
            await write(outbound)
            return await call.future

        try:
            return await asyncio.wait_for(exchange(), timeout)
        except McpError:
            raise
        except asyncio.TimeoutError:
            raise McpTimeoutError(f"no response to '{method}' (id={request_id}) within {timeout:g}s", timeout=timeout) from None
        finally:
            self._pending.pop(request_id, None)
            if not call.future.done():
                call.future.cancel()

    def time_left(self, request_id: Any) -> Optional[float]:
        """Seconds until the deadline of a pending call.

        Args:
            request_id: Id of an outbound request.

        Returns:
            Remaining seconds (never negative), or None if nothing is pending under that id.
        """
        call = self._pending.get(request_id)
        if call is None:
            return None
        return max(call.deadline - asyncio.get_running_loop().time(), 0.0)

    def is_waiting(self, request_id: Any) -> bool:
        """Whether a call is still waiting for its response.

        Args:
            request_id: Id of an outbound request.

        Returns:
            True if the call is pending and unanswered.
        """
        call = self._pending.get(request_id)
        return call is not None and not call.future.done()

    def deliver(self, message: Dict[str, Any]) -> bool:
        """Hand an inbound response to its waiter.

        Args:
            message: A decoded response envelope.

        Returns:
            True if a pending call was fulfilled. Notifications, unknown ids
            and duplicates return False.
        """
        request_id = message.get("id")
        if isinstance(request_id, str) and request_id.isdigit():
            request_id = int(request_id)
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            logger.debug(f"Dropping message without a usable id: {str(message)[:200]}")
            return False

        call = self._pending.get(request_id)
        if call is None or call.future.done():
            logger.debug(f"Dropping response for unknown or completed request id={request_id}")
            return False

        call.future.set_result(message)
        return True

    def fail_all(self, exc: BaseException) -> int:
        """Fail every pending call with a copy of ``exc``.

        Each waiter gets its own instance.

        Args:
            exc: Exception to raise in each waiter.

        Returns:
            Number of calls failed.
        """
        failed = 0
        for call in list(self._pending.values()):
            if not call.future.done():
                call.future.set_exception(copy.copy(exc))
                failed += 1
        return failed

    def close(self, exc: Optional[ConnectionLost] = None) -> int:
        """Fail all pending calls and refuse new ones.

        Args:
            exc: Error delivered to waiters and later senders.

        Returns:
            Number of calls failed.
        """
        if self._closed_error is None:
            self._closed_error = exc or ConnectionLost("connection closed")
        return self.fail_all(self._closed_error)
