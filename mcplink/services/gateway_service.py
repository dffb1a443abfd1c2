# -*- coding: utf-8 -*-
"""Location: ./mcplink/services/gateway_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Gateway Service.

Aggregates several backend MCP servers behind one virtual server. Every
backend gets a namespace prefix; its tools are exposed as
``<prefix>__<tool>`` so two backends declaring the same tool name stay
distinct. Calls are routed back by splitting the name on the first
separator.

Backends connect lazily through the session manager. While assembling the
catalog a failing backend is skipped and recorded in ``diagnostics``; one
dead backend never hides the others. Dispatch errors for a specific call
propagate to the caller.

Examples:
    >>> from mcplink.services.gateway_service import sanitize_prefix
    >>> sanitize_prefix("My Server (prod)")
    'My_Server_prod'
    >>> sanitize_prefix("__weird__name__")
    'weird_name'
"""

# Standard
import asyncio
from dataclasses import dataclass, field
import re
from typing import Any, Dict, List, Optional, Tuple

# First-Party
from mcplink.config import settings
from mcplink.errors import BackendConflictError, ConnectionLost, McpError, RoutingError, SessionNotFoundError
from mcplink.schemas import BackendInfo, BackendStatus, ServerEndpoint, ToolCallResult, ToolDescriptor
from mcplink.services.connection_tester import describe_failure
from mcplink.services.endpoint_source import EndpointSource
from mcplink.services.logging_service import LoggingService
from mcplink.services.session_manager import SessionHandle, SessionManager

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

_INVALID_PREFIX_CHARS = re.compile(r"[^A-Za-z0-9-]+")


def sanitize_prefix(name: str) -> str:
    """Derive a namespace prefix from a backend name.

    Only ASCII letters, digits and ``-`` survive; every other run of
    characters becomes a single ``_`` and leading/trailing underscores are
    dropped. The result therefore never contains ``__``, which keeps
    ``<prefix>__<tool>`` unambiguous.

    Args:
        name: Backend name.

    Returns:
        The prefix, ``backend`` if nothing usable remains.
    """
    cleaned = _INVALID_PREFIX_CHARS.sub("_", name).strip("_")
    return cleaned or "backend"


@dataclass(eq=False)
class GatewayRegistration:
    """One backend known to the gateway."""

    backend_id: str
    endpoint: ServerEndpoint
    prefix: str
    session_id: Optional[str] = None
    status: BackendStatus = BackendStatus.DISCONNECTED
    last_error: Optional[str] = None
    restart_count: int = 0
    tools: Optional[List[ToolDescriptor]] = field(default=None, repr=False)

    def to_info(self) -> BackendInfo:
        """Public snapshot.

        Returns:
            BackendInfo: The snapshot.
        """
        return BackendInfo(
            backend_id=self.backend_id,
            prefix=self.prefix,
            kind=self.endpoint.kind,
            target=self.endpoint.describe(),
            status=self.status,
            error=self.last_error,
            session_id=self.session_id,
            tool_count=len(self.tools or []),
            restart_count=self.restart_count,
        )


class GatewayService:
    """Merge backend tool catalogs and route calls to their owners."""

    def __init__(self, session_manager: SessionManager, separator: Optional[str] = None, default_timeout: Optional[float] = None):
        """Initialize the gateway.

        Args:
            session_manager: Manager that owns the backend sessions.
            separator: Prefix/tool separator; defaults to ``settings.tool_name_separator``.
            default_timeout: Default timeout for connect, list and call.
        """
        self._manager = session_manager
        self._separator = separator or settings.tool_name_separator
        self._default_timeout = default_timeout if default_timeout is not None else settings.default_timeout
        self._registrations: Dict[str, GatewayRegistration] = {}
        self._by_prefix: Dict[str, GatewayRegistration] = {}
        self._routes: Dict[str, Tuple[str, str]] = {}
        self._diagnostics: Dict[str, str] = {}

    @property
    def separator(self) -> str:
        """Separator between prefix and tool name."""
        return self._separator

    @property
    def diagnostics(self) -> Dict[str, str]:
        """Failure reasons per backend from the last catalog assembly."""
        return dict(self._diagnostics)

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #
    def register(self, backend_id: str, endpoint: ServerEndpoint, prefix: Optional[str] = None) -> GatewayRegistration:
        """Add a backend. Does not connect.

        Args:
            backend_id: Unique backend name.
            endpoint: Backend server.
            prefix: Namespace prefix; derived from ``backend_id`` when omitted.

        Returns:
            GatewayRegistration: The new registration.

        Raises:
            BackendConflictError: If the id or prefix is taken.
            ValueError: If the prefix contains the separator.
        """
        if backend_id in self._registrations:
            raise BackendConflictError(f"backend '{backend_id}' is already registered")
        effective_prefix = sanitize_prefix(prefix or backend_id)
        if self._separator in effective_prefix:
            raise ValueError(f"prefix '{effective_prefix}' must not contain the separator '{self._separator}'")
        owner = self._by_prefix.get(effective_prefix)
        if owner is not None:
            raise BackendConflictError(f"prefix '{effective_prefix}' of backend '{backend_id}' is already used by backend '{owner.backend_id}'")

        registration = GatewayRegistration(backend_id=backend_id, endpoint=endpoint, prefix=effective_prefix)
        self._registrations[backend_id] = registration
        self._by_prefix[effective_prefix] = registration
        logger.info(f"Registered backend '{backend_id}' ({endpoint.kind.value} {endpoint.describe()}) with prefix '{effective_prefix}'")
        return registration

    async def unregister(self, backend_id: str) -> bool:
        """Remove a backend and close its session.

        Args:
            backend_id: Backend to remove.

        Returns:
            True if the backend was registered.
        """
        registration = self._registrations.pop(backend_id, None)
        if registration is None:
            return False
        self._by_prefix.pop(registration.prefix, None)
        self._routes = {name: route for name, route in self._routes.items() if route[0] != backend_id}
        self._diagnostics.pop(backend_id, None)
        if registration.session_id:
            await self._manager.close(registration.session_id)
        logger.info(f"Unregistered backend '{backend_id}'")
        return True

    def load_backends(self, source: EndpointSource) -> List[str]:
        """Register every record from an endpoint source.

        Args:
            source: Provider of backend records.

        Returns:
            Backend ids registered.
        """
        registered = []
        for record in source.load():
            self.register(record.backend_id, record.endpoint, prefix=record.prefix)
            registered.append(record.backend_id)
        return registered

    def backends(self) -> List[BackendInfo]:
        """Snapshot of every registration.

        Returns:
            Backend snapshots in registration order.
        """
        return [registration.to_info() for registration in self._registrations.values()]

    # ------------------------------------------------------------------ #
    # Catalog and dispatch
    # ------------------------------------------------------------------ #
    async def catalog(self, refresh: bool = False, timeout: Optional[float] = None) -> List[ToolDescriptor]:
        """Merged, prefixed tool catalog of every reachable backend.

        Backends are listed concurrently. A backend that fails to connect or
        list is skipped and its reason stored in :attr:`diagnostics`.

        Args:
            refresh: Re-list every backend instead of using cached catalogs.
            timeout: Per-backend deadline.

        Returns:
            The merged catalog.
        """
        registrations = list(self._registrations.values())
        results = await asyncio.gather(*(self._list_backend(r, refresh, timeout) for r in registrations), return_exceptions=True)

        merged: List[ToolDescriptor] = []
        routes: Dict[str, Tuple[str, str]] = {}
        diagnostics: Dict[str, str] = {}
        for registration, result in zip(registrations, results):
            if isinstance(result, BaseException):
                reason = describe_failure(result, timeout if timeout is not None else self._default_timeout)
                diagnostics[registration.backend_id] = reason
                registration.status = BackendStatus.FAILED
                registration.last_error = reason
                logger.warning(f"Backend '{registration.backend_id}' left out of catalog: {reason}")
                continue

            for tool in result:
                name = f"{registration.prefix}{self._separator}{tool.name}"
                if name in routes:
                    logger.warning(f"Backend '{registration.backend_id}' lists tool '{tool.name}' more than once; keeping the first")
                    continue
                routes[name] = (registration.backend_id, tool.name)
                description = f"[{registration.backend_id}] {tool.description}" if tool.description else f"[{registration.backend_id}]"
                merged.append(ToolDescriptor(name=name, description=description, input_schema=tool.input_schema))

        self._routes = routes
        self._diagnostics = diagnostics
        return merged

    def resolve(self, prefixed_name: str) -> Tuple[str, str]:
        """Split a gateway tool name into backend id and original tool name.

        Args:
            prefixed_name: Name as exposed by :meth:`catalog`.

        Returns:
            ``(backend_id, tool_name)``.

        Raises:
            RoutingError: If the prefix is missing or unknown, or the backend's
                cached catalog does not contain the tool.
        """
        prefix, sep, tool_name = prefixed_name.partition(self._separator)
        if not sep or not prefix or not tool_name:
            raise RoutingError(f"tool '{prefixed_name}' has no backend prefix")
        registration = self._by_prefix.get(prefix)
        if registration is None:
            raise RoutingError(f"unknown backend prefix '{prefix}' in tool '{prefixed_name}'")
        if registration.tools is not None and all(tool.name != tool_name for tool in registration.tools):
            raise RoutingError(f"backend '{registration.backend_id}' has no tool '{tool_name}'")
        return registration.backend_id, tool_name

    async def dispatch(self, prefixed_name: str, arguments: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> ToolCallResult:
        """Route a tool call to its backend.

        Args:
            prefixed_name: Gateway tool name.
            arguments: Tool arguments.
            timeout: Call deadline.

        Returns:
            ToolCallResult: The backend's result.

        Raises:
            RoutingError: Unknown prefix or tool.
            McpError: Connect or call failure for this backend.
        """
        backend_id, tool_name = self.resolve(prefixed_name)
        registration = self._registrations[backend_id]
        timeout = timeout if timeout is not None else self._default_timeout

        handle = await self._session_for(registration, timeout)
        try:
            return await self._manager.call(handle.session_id, tool_name, arguments, timeout)
        except SessionNotFoundError:
            # Swept or closed before the call was sent; reopen once
            registration.session_id = None
            handle = await self._session_for(registration, timeout)
            return await self._manager.call(handle.session_id, tool_name, arguments, timeout)
        except ConnectionLost as exc:
            registration.session_id = None
            registration.status = BackendStatus.DISCONNECTED
            registration.last_error = str(exc)
            raise

    async def restart_backend(self, backend_id: str, timeout: Optional[float] = None) -> BackendInfo:
        """Drop a backend's session and reconnect it.

        Args:
            backend_id: Backend to restart.
            timeout: Connect and list deadline.

        Returns:
            BackendInfo: The backend after reconnecting.

        Raises:
            RoutingError: Unknown backend.
            McpError: The backend failed to come back; its status is ``failed``.
        """
        registration = self._registrations.get(backend_id)
        if registration is None:
            raise RoutingError(f"unknown backend '{backend_id}'")

        registration.status = BackendStatus.RESTARTING
        registration.restart_count += 1
        if registration.session_id:
            await self._manager.close(registration.session_id)
        registration.session_id = None
        registration.tools = None
        logger.info(f"Restarting backend '{backend_id}' (restart #{registration.restart_count})")

        try:
            await self._list_backend(registration, refresh=True, timeout=timeout)
        except McpError as exc:
            registration.status = BackendStatus.FAILED
            registration.last_error = describe_failure(exc, timeout if timeout is not None else self._default_timeout)
            raise
        return registration.to_info()

    async def shutdown(self) -> None:
        """Close every backend session. Registrations are kept."""
        for registration in self._registrations.values():
            if registration.session_id:
                await self._manager.close(registration.session_id)
            registration.session_id = None
            registration.status = BackendStatus.DISCONNECTED
        self._routes.clear()
        logger.info(f"Gateway shut down {len(self._registrations)} backend(s)")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _session_for(self, registration: GatewayRegistration, timeout: Optional[float]) -> SessionHandle:
        """Open or reuse the backend's session, tracking its status.

        Each backend gets its own session even when another backend has an
        equivalent endpoint, so closing one never touches the other.

        Args:
            registration: The backend.
            timeout: Connect deadline.

        Returns:
            SessionHandle: The live session.
        """
        if registration.session_id is None or not self._manager.has_session(registration.session_id):
            registration.status = BackendStatus.CONNECTING
        try:
            handle = await self._manager.open_or_get(
                registration.endpoint,
                timeout if timeout is not None else self._default_timeout,
                name=registration.backend_id,
                identity=f"{registration.backend_id}:{registration.endpoint.identity_key()}",
            )
        except Exception as exc:
            registration.status = BackendStatus.FAILED
            registration.last_error = str(exc)
            registration.session_id = None
            raise
        registration.session_id = handle.session_id
        registration.status = BackendStatus.CONNECTED
        registration.last_error = None
        return handle

    async def _list_backend(self, registration: GatewayRegistration, refresh: bool, timeout: Optional[float]) -> List[ToolDescriptor]:
        """List one backend's tools, reopening once if its session vanished.

        Args:
            registration: The backend.
            refresh: Bypass the session's cached catalog.
            timeout: Deadline.

        Returns:
            The backend's tools.
        """
        timeout = timeout if timeout is not None else self._default_timeout
        handle = await self._session_for(registration, timeout)
        try:
            tools = await self._manager.list_tools(handle.session_id, refresh=refresh, timeout=timeout)
        except ConnectionLost:
            registration.session_id = None
            handle = await self._session_for(registration, timeout)
            tools = await self._manager.list_tools(handle.session_id, refresh=True, timeout=timeout)
        registration.tools = tools
        return tools
