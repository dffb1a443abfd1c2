# -*- coding: utf-8 -*-
"""
MCP Session Manager Implementation.

Keeps MCP transport connections alive across tool invocations instead of
reconnecting for every call. Each session owns exactly one transport client
and is keyed by an opaque session id; equivalent endpoints (same identity
key) share one session.

Concurrency model:
    - The session map is guarded by a short lock that is never held across
      network or process I/O.
    - Opening is serialized per endpoint identity so concurrent callers for
      the same new endpoint never start two transports.
    - Calls are serialized per session by the session guard; different
      sessions never block each other.
    - The idle sweep skips sessions whose guard is held or that have callers
      queued on it, and closing is check-and-set so a transport is closed
      exactly once even when an explicit close races the sweep.

Usage:
    async with SessionManager(idle_timeout=300) as manager:
        handle = await manager.open_or_get(endpoint)
        result = await manager.call(handle.session_id, "echo", {"text": "hi"})

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti
"""

# flake8: noqa: DAR101, DAR201, DAR401

# Future
from __future__ import annotations

# Standard
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import time
from typing import Any, Dict, List, Optional
import uuid

# Third-Party
import anyio
import httpx

# First-Party
from mcplink.config import settings
from mcplink.errors import ConnectionLost, SessionNotFoundError
from mcplink.schemas import ServerEndpoint, ServerInfo, SessionInfo, ToolCallResult, ToolDescriptor
from mcplink.services.logging_service import LoggingService
from mcplink.transports.base import McpClient
from mcplink.transports.factory import ClientFactory, create_client

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


@dataclass(eq=False)  # eq=False keeps instances hashable by identity
class ManagedSession:
    """A live session and its lifecycle metadata."""

    id: str
    endpoint: ServerEndpoint
    client: McpClient
    identity_key: str
    name: Optional[str] = None
    tools: List[ToolDescriptor] = field(default_factory=list)
    tools_loaded: bool = False
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.monotonic)
    last_used_wall: float = field(default_factory=time.time)
    use_count: int = 0
    pending_calls: int = 0
    guard: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _closed: bool = field(default=False, repr=False)

    @property
    def server_info(self) -> Optional[ServerInfo]:
        """Handshake information captured when the session opened."""
        return self.client.server_info

    @property
    def idle_seconds(self) -> float:
        """Seconds since the session was last used."""
        return time.monotonic() - self.last_used

    @property
    def in_use(self) -> bool:
        """Whether a call holds or waits for the guard."""
        return self.guard.locked() or self.pending_calls > 0

    @property
    def is_closed(self) -> bool:
        """Whether the session has been closed."""
        return self._closed

    def mark_closed(self) -> None:
        """Mark this session as closed."""
        self._closed = True

    def touch(self) -> None:
        """Record activity now."""
        self.last_used = time.monotonic()
        self.last_used_wall = time.time()

    def to_info(self) -> SessionInfo:
        """Public snapshot of this session.

        Returns:
            SessionInfo: The snapshot.
        """
        return SessionInfo(
            id=self.id,
            name=self.name,
            kind=self.endpoint.kind,
            target=self.endpoint.describe(),
            server_info=self.server_info,
            tool_count=len(self.tools),
            created_at=datetime.fromtimestamp(self.created_at, tz=timezone.utc),
            last_used_at=datetime.fromtimestamp(self.last_used_wall, tz=timezone.utc),
            idle_seconds=round(self.idle_seconds, 3),
        )


@dataclass(frozen=True)
class SessionHandle:
    """Caller side reference to a session.

    Holding a handle does not keep the session alive; once the session is
    closed or swept, using the handle raises SessionNotFoundError (a
    ConnectionLost).
    """

    session_id: str
    endpoint: ServerEndpoint
    server_info: Optional[ServerInfo]
    manager: "SessionManager" = field(repr=False, compare=False)

    async def call(self, tool_name: str, arguments: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> ToolCallResult:
        """Invoke a tool on this session.

        Args:
            tool_name: Tool to call.
            arguments: Tool arguments.
            timeout: Call deadline.

        Returns:
            ToolCallResult: The outcome.
        """
        return await self.manager.call(self.session_id, tool_name, arguments, timeout)

    async def list_tools(self, refresh: bool = False, timeout: Optional[float] = None) -> List[ToolDescriptor]:
        """Return this session's tool catalog.

        Args:
            refresh: Re-list instead of using the cache.
            timeout: List deadline.

        Returns:
            The tools.
        """
        return await self.manager.list_tools(self.session_id, refresh=refresh, timeout=timeout)

    async def close(self) -> None:
        """Close this session."""
        await self.manager.close(self.session_id)


class SessionManager:  # pylint: disable=too-many-instance-attributes
    """
    Registry of live MCP sessions keyed by session id.

    Thread-Safety:
        Designed for asyncio concurrency; not safe for multi-threaded access.

    Features:
        - Session reuse for equivalent endpoints
        - Per-endpoint serialized opening
        - Per-session call serialization
        - Idle expiry, on lookup and by background sweep
        - Idempotent close, graceful close_all()
        - Metrics for monitoring
    """

    def __init__(
        self,
        idle_timeout: Optional[float] = None,
        sweep_interval: Optional[float] = None,
        default_timeout: Optional[float] = None,
        client_factory: Optional[ClientFactory] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the session manager.

        Args:
            idle_timeout: Seconds of inactivity after which a session expires.
            sweep_interval: Seconds between background sweeps (see :meth:`start`).
            default_timeout: Default connect/list/call timeout.
            client_factory: Builds an unconnected client for an endpoint.
            http_client: Shared HTTP client for HTTP-family transports when
                no ``client_factory`` is given.
        """
        self._idle_timeout = idle_timeout if idle_timeout is not None else settings.session_idle_timeout
        self._sweep_interval = sweep_interval if sweep_interval is not None else settings.session_sweep_interval
        self._default_timeout = default_timeout if default_timeout is not None else settings.default_timeout
        self._client_factory: ClientFactory = client_factory or (lambda endpoint: create_client(endpoint, http_client=http_client))

        # State - the map lock guards the dicts below, per-identity locks serialize opening and live while a caller holds or awaits them
        self._map_lock = asyncio.Lock()
        self._sessions: Dict[str, ManagedSession] = {}
        self._by_identity: Dict[str, str] = {}
        self._open_locks: Dict[str, asyncio.Lock] = {}
        self._open_waiters: Dict[str, int] = {}

        # Metrics
        self._opened = 0
        self._reused = 0
        self._expired = 0
        self._closed_count = 0
        self._calls = 0
        self._connection_failures = 0

        # Lifecycle
        self._sweeper_task: Optional[asyncio.Task[None]] = None
        self._closed = False

    async def __aenter__(self) -> "SessionManager":
        """Async context manager entry.

        Returns:
            SessionManager: This manager.
        """
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit - closes all sessions.

        Args:
            exc_type: Exception type if an exception was raised.
            exc_val: Exception value if an exception was raised.
            exc_tb: Exception traceback if an exception was raised.
        """
        await self.close_all()

    @property
    def idle_timeout(self) -> float:
        """Inactivity threshold in seconds."""
        return self._idle_timeout

    # ------------------------------------------------------------------ #
    # Opening and lookup
    # ------------------------------------------------------------------ #
    async def open_or_get(
        self, endpoint: ServerEndpoint, timeout: Optional[float] = None, name: Optional[str] = None, identity: Optional[str] = None
    ) -> SessionHandle:
        """
        Return a session for ``endpoint``, connecting one if needed.

        Args:
            endpoint: Target server.
            timeout: Connect deadline; defaults to the manager's default timeout.
            name: Optional label shown in session listings.
            identity: Reuse key; defaults to ``endpoint.identity_key()``. Callers
                that must not share a session pass their own key.

        Returns:
            SessionHandle: Handle to the live session.

        Raises:
            ConnectionLost: If the manager is closed.
            ConnectError, ProtocolError: From the transport handshake.
        """
        if self._closed:
            raise ConnectionLost("session manager is closed")

        key = identity or endpoint.identity_key()
        session = await self._lookup_identity(key)
        if session is not None:
            return self._reuse(session)

        async with self._map_lock:
            open_lock = self._open_locks.setdefault(key, asyncio.Lock())
            self._open_waiters[key] = self._open_waiters.get(key, 0) + 1

        try:
            async with open_lock:
                # Another caller may have finished opening while we waited
                session = await self._lookup_identity(key)
                if session is not None:
                    return self._reuse(session)
                session = await self._connect_new(endpoint, key, timeout, name)
        finally:
            async with self._map_lock:
                self._release_open_lock(key)

        self._opened += 1
        logger.info(f"Opened session {session.id} for {endpoint.kind.value} server {endpoint.describe()}")
        return self._handle(session)

    async def _connect_new(self, endpoint: ServerEndpoint, key: str, timeout: Optional[float], name: Optional[str]) -> ManagedSession:
        """Connect a fresh client and register it. Caller holds the identity's open lock."""
        client = self._client_factory(endpoint)
        try:
            await client.connect(timeout if timeout is not None else self._default_timeout)
        except Exception:
            self._connection_failures += 1
            raise

        session = ManagedSession(id=uuid.uuid4().hex, endpoint=endpoint, client=client, identity_key=key, name=name)
        async with self._map_lock:
            if not self._closed:
                self._sessions[session.id] = session
                self._by_identity[key] = session.id
        if self._closed:
            await self._close_session(session)
            raise ConnectionLost("session manager closed while connecting")
        return session

    def _release_open_lock(self, key: str) -> None:
        """Forget an identity's open lock once no caller is opening it. Caller holds the map lock."""
        remaining = self._open_waiters.get(key, 0) - 1
        if remaining > 0:
            self._open_waiters[key] = remaining
            return
        self._open_waiters.pop(key, None)
        self._open_locks.pop(key, None)

    def _reuse(self, session: ManagedSession) -> SessionHandle:
        """Count a reuse and hand out a handle."""
        self._reused += 1
        session.touch()
        return self._handle(session)

    def _handle(self, session: ManagedSession) -> SessionHandle:
        """Build a handle for ``session``."""
        return SessionHandle(session_id=session.id, endpoint=session.endpoint, server_info=session.server_info, manager=self)

    def _is_expired(self, session: ManagedSession) -> bool:
        """Whether ``session`` should be treated as gone.

        A session whose guard is held or awaited never expires; the call in
        flight discards it itself if its transport died.
        """
        if session.is_closed:
            return True
        if session.in_use:
            return False
        return not session.client.is_connected or session.idle_seconds > self._idle_timeout

    def _pop(self, session_id: str) -> Optional[ManagedSession]:
        """Remove a session from both maps. Caller holds the map lock."""
        session = self._sessions.pop(session_id, None)
        if session is not None and self._by_identity.get(session.identity_key) == session_id:
            del self._by_identity[session.identity_key]
        return session

    async def _lookup_identity(self, key: str) -> Optional[ManagedSession]:
        """Find a live session for an endpoint identity, evicting an expired one."""
        async with self._map_lock:
            session_id = self._by_identity.get(key)
            session = self._sessions.get(session_id) if session_id else None
            if session is None or not self._is_expired(session):
                return session
            self._pop(session.id)
        await self._expire(session)
        return None

    async def _get_live(self, session_id: str) -> ManagedSession:
        """Find a live session by id, evicting it if expired.

        Raises:
            SessionNotFoundError: Unknown, closed or expired session.
        """
        async with self._map_lock:
            session = self._sessions.get(session_id)
            if session is not None and not self._is_expired(session):
                return session
            if session is not None:
                self._pop(session_id)
        if session is not None:
            await self._expire(session)
        raise SessionNotFoundError(f"session {session_id} not found or expired")

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #
    async def call(self, session_id: str, tool_name: str, arguments: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> ToolCallResult:
        """
        Invoke a tool on a session, serialized with other calls on it.

        Args:
            session_id: Session to use.
            tool_name: Tool to call.
            arguments: Tool arguments.
            timeout: Call deadline; defaults to the manager's default timeout.

        Returns:
            ToolCallResult: The outcome; tool failures are data.

        Raises:
            SessionNotFoundError: Unknown, closed or expired session.
            ConnectionLost: The transport died; the session is removed.
            McpTimeoutError: No response in time; the session stays open.
        """
        session = await self._get_live(session_id)
        # Registered before the first await so a concurrent sweep sees the session as busy
        session.pending_calls += 1
        session.touch()
        try:
            async with session.guard:
                if session.is_closed:
                    raise SessionNotFoundError(f"session {session_id} was closed")
                try:
                    result = await session.client.call_tool(tool_name, arguments, timeout if timeout is not None else self._default_timeout)
                except ConnectionLost as exc:
                    await self._discard(session, f"connection lost during call: {exc}")
                    raise
                session.use_count += 1
                self._calls += 1
                return result
        finally:
            session.pending_calls -= 1
            session.touch()

    async def list_tools(self, session_id: str, refresh: bool = False, timeout: Optional[float] = None) -> List[ToolDescriptor]:
        """
        Return a session's tool catalog.

        The catalog is cached after the first listing; it is only re-fetched
        when ``refresh`` is set.

        Args:
            session_id: Session to use.
            refresh: Re-list even if cached.
            timeout: List deadline.

        Returns:
            The tools.

        Raises:
            SessionNotFoundError: Unknown, closed or expired session.
            ConnectionLost: The transport died; the session is removed.
        """
        session = await self._get_live(session_id)
        if session.tools_loaded and not refresh:
            session.touch()
            return list(session.tools)

        session.pending_calls += 1
        try:
            async with session.guard:
                if session.is_closed:
                    raise SessionNotFoundError(f"session {session_id} was closed")
                try:
                    tools = await session.client.list_tools(timeout if timeout is not None else self._default_timeout)
                except ConnectionLost as exc:
                    await self._discard(session, f"connection lost while listing tools: {exc}")
                    raise
                session.tools = tools
                session.tools_loaded = True
                return list(tools)
        finally:
            session.pending_calls -= 1
            session.touch()

    async def close(self, session_id: str) -> bool:
        """
        Close a session. Never raises; closing an unknown session is a no-op.

        Args:
            session_id: Session to close.

        Returns:
            True if a session was closed by this call.
        """
        async with self._map_lock:
            session = self._pop(session_id)
        if session is None:
            return False
        return await self._close_session(session)

    async def _discard(self, session: ManagedSession, reason: str) -> None:
        """Remove and close a session whose transport failed."""
        self._connection_failures += 1
        logger.warning(f"Dropping session {session.id} ({session.endpoint.describe()}): {reason}")
        async with self._map_lock:
            if self._sessions.get(session.id) is session:
                self._pop(session.id)
        await self._close_session(session)

    async def _expire(self, session: ManagedSession) -> None:
        """Close a session removed for idleness or a dead transport."""
        if await self._close_session(session):
            self._expired += 1
            logger.info(f"Expired session {session.id} ({session.endpoint.describe()}) after {session.idle_seconds:.1f}s idle")

    async def _close_session(self, session: ManagedSession) -> bool:
        """
        Close a session's transport exactly once.

        Uses a timeout so a transport that does not shut down cannot block
        the caller indefinitely.

        Returns:
            True if this call performed the close.
        """
        if session.is_closed:
            return False
        session.mark_closed()

        with anyio.move_on_after(settings.cleanup_timeout * 2) as scope:
            try:
                await session.client.close()
            except Exception as e:
                logger.debug(f"Error closing session {session.id}: {e}")
        if scope.cancelled_caught:
            logger.warning(f"Session cleanup timed out for {session.endpoint.describe()} - proceeding anyway")

        self._closed_count += 1
        logger.debug(f"Closed session {session.id} for {session.endpoint.describe()} (uses={session.use_count})")
        return True

    # ------------------------------------------------------------------ #
    # Idle sweep
    # ------------------------------------------------------------------ #
    async def sweep_idle(self) -> int:
        """
        Close sessions idle beyond the threshold or with a dead transport.

        Sessions whose guard is held, or that have callers waiting for it,
        are skipped.

        Returns:
            Number of sessions closed.
        """
        async with self._map_lock:
            expired = [session for session in self._sessions.values() if self._is_expired(session)]
            for session in expired:
                self._pop(session.id)

        for session in expired:
            await self._expire(session)
        if expired:
            logger.debug(f"Idle sweep closed {len(expired)} session(s)")
        return len(expired)

    def start(self) -> None:
        """Start the background idle sweeper. Requires a running event loop."""
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.create_task(self._sweep_loop(), name="mcp-session-sweeper")
            logger.info(f"Session sweeper started (idle_timeout={self._idle_timeout:g}s, interval={self._sweep_interval:g}s)")

    async def _sweep_loop(self) -> None:
        """Run :meth:`sweep_idle` every ``sweep_interval`` seconds."""
        while not self._closed:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep_idle()
            except Exception as e:
                logger.error(f"Idle sweep failed: {e}", exc_info=True)

    async def close_all(self) -> None:
        """Stop the sweeper and close every session."""
        self._closed = True
        if self._sweeper_task is not None and not self._sweeper_task.done():
            self._sweeper_task.cancel()
            await asyncio.gather(self._sweeper_task, return_exceptions=True)
        self._sweeper_task = None

        async with self._map_lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._by_identity.clear()
            self._open_locks.clear()
            self._open_waiters.clear()

        if sessions:
            await asyncio.gather(*(self._close_session(session) for session in sessions))
            logger.info(f"Closed {len(sessions)} session(s)")

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    def has_session(self, session_id: str) -> bool:
        """Whether ``session_id`` names a live, non-expired session."""
        session = self._sessions.get(session_id)
        return session is not None and not self._is_expired(session)

    def session_count(self) -> int:
        """Number of live, non-expired sessions."""
        return sum(1 for session in self._sessions.values() if not self._is_expired(session))

    def get_session_info(self, session_id: str) -> Optional[SessionInfo]:
        """Snapshot of one session, None if absent or expired."""
        session = self._sessions.get(session_id)
        if session is None or self._is_expired(session):
            return None
        return session.to_info()

    def list_sessions(self) -> List[SessionInfo]:
        """Snapshots of all live sessions, oldest first."""
        live = [session for session in self._sessions.values() if not self._is_expired(session)]
        return [session.to_info() for session in sorted(live, key=lambda s: s.created_at)]

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get manager metrics for monitoring.

        Returns:
            Dict with counters and current session count.
        """
        return {
            "sessions": len(self._sessions),
            "opened": self._opened,
            "reused": self._reused,
            "expired": self._expired,
            "closed": self._closed_count,
            "calls": self._calls,
            "connection_failures": self._connection_failures,
            "idle_timeout_seconds": self._idle_timeout,
        }


# Global session manager instance
_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get the global session manager instance.

    Returns:
        The global SessionManager instance.

    Raises:
        RuntimeError: If the manager has not been initialized.
    """
    if _session_manager is None:
        raise RuntimeError("Session manager not initialized. Call init_session_manager() first.")
    return _session_manager


def init_session_manager(
    idle_timeout: Optional[float] = None,
    sweep_interval: Optional[float] = None,
    default_timeout: Optional[float] = None,
    client_factory: Optional[ClientFactory] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> SessionManager:
    """Initialize the global session manager.

    Args:
        See SessionManager.__init__ for argument descriptions.

    Returns:
        The initialized SessionManager instance.
    """
    global _session_manager  # pylint: disable=global-statement
    _session_manager = SessionManager(
        idle_timeout=idle_timeout,
        sweep_interval=sweep_interval,
        default_timeout=default_timeout,
        client_factory=client_factory,
        http_client=http_client,
    )
    logger.info("Session manager initialized")
    return _session_manager


async def close_session_manager() -> None:
    """Close the global session manager."""
    global _session_manager  # pylint: disable=global-statement
    if _session_manager is not None:
        await _session_manager.close_all()
        _session_manager = None
        logger.info("Session manager closed")
