# -*- coding: utf-8 -*-
"""Location: ./mcplink/schemas.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Pydantic models shared by transports, sessions and the gateway.

Examples:
    >>> from mcplink.schemas import ServerEndpoint, TransportKind
    >>> ep = ServerEndpoint(kind="stdio", command="uvx", args=["mcp-server-time"])
    >>> ep.kind is TransportKind.STDIO
    True
    >>> ep.describe()
    'uvx mcp-server-time'
"""

# Standard
from datetime import datetime
from enum import Enum
import hashlib
from typing import Any, Dict, List, Mapping, NoReturn, Optional, Tuple

# Third-Party
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator, ValidationError
import orjson

# First-Party
from mcplink.errors import ProtocolError, ToolExecutionError
from mcplink.utils.url_auth import sanitize_url_for_logging


class TransportKind(str, Enum):
    """Closed set of transports an endpoint can declare."""

    STDIO = "stdio"
    HTTP = "http"
    SSE = "sse"
    STREAMABLE_HTTP = "streamable-http"

    @classmethod
    def _missing_(cls, value: object) -> Optional["TransportKind"]:
        """Accept common spellings of the transport names.

        Args:
            value: Raw value that did not match a member.

        Returns:
            The matching member or None.

        Examples:
            >>> TransportKind("streamable_http")
            <TransportKind.STREAMABLE_HTTP: 'streamable-http'>
            >>> TransportKind("STREAMABLEHTTP").value
            'streamable-http'
            >>> TransportKind("SSE")
            <TransportKind.SSE: 'sse'>
        """
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower().replace("_", "-")
        if normalized == "streamablehttp":
            normalized = "streamable-http"
        for member in cls:
            if member.value == normalized:
                return member
        return None


class FrozenDict(dict):
    """A dict that refuses in-place changes.

    Examples:
        >>> d = FrozenDict({"a": "1"})
        >>> d["a"]
        '1'
        >>> try:
        ...     d["b"] = "2"
        ... except TypeError as exc:
        ...     str(exc)
        'FrozenDict is read-only'
    """

    def _readonly(self, *args: Any, **kwargs: Any) -> NoReturn:
        raise TypeError("FrozenDict is read-only")

    __setitem__ = __delitem__ = __ior__ = _readonly
    clear = pop = popitem = setdefault = update = _readonly

    def __hash__(self) -> int:  # type: ignore[override]
        return hash(tuple(sorted(self.items())))

    def __reduce__(self) -> Any:
        return (FrozenDict, (dict(self),))


class ServerEndpoint(BaseModel):
    """Connection parameters of one MCP server. Immutable, including ``args``,
    ``env`` and ``headers``, so ``identity_key`` never changes.

    stdio endpoints use ``command``/``args``/``env``; the HTTP family uses
    ``url``/``headers``.
    """

    model_config = ConfigDict(frozen=True)

    kind: TransportKind
    command: Optional[str] = None
    args: Tuple[str, ...] = ()
    env: Dict[str, str] = Field(default_factory=FrozenDict)
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=FrozenDict)

    @field_validator("env", "headers", mode="after")
    @classmethod
    def _freeze_mapping(cls, value: Dict[str, str]) -> Dict[str, str]:
        """Copy a validated mapping into a FrozenDict.

        Args:
            value: Validated mapping.

        Returns:
            A read-only copy.
        """
        return FrozenDict(value)

    @model_validator(mode="after")
    def _check_parameters(self) -> "ServerEndpoint":
        """Require the parameters the declared transport needs.

        Returns:
            The endpoint.

        Raises:
            ValueError: If a command or URL is missing or malformed.

        Examples:
            >>> try:
            ...     ServerEndpoint(kind="http")
            ... except ValueError as exc:
            ...     "HTTP MCP requires a URL" in str(exc)
            True
        """
        if self.kind is TransportKind.STDIO:
            if not self.command or not self.command.strip():
                raise ValueError("STDIO MCP requires a command")
        else:
            if not self.url or not self.url.strip():
                raise ValueError("HTTP MCP requires a URL")
            if not self.url.lower().startswith(("http://", "https://")):
                raise ValueError(f"URL must start with http:// or https://: {sanitize_url_for_logging(self.url)}")
        return self

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ServerEndpoint":
        """Build an endpoint from a persisted configuration record.

        Records look like ``{"type": "stdio", "command": ..., "args": [...],
        "env": {...}}`` or ``{"type": "http", "url": ..., "headers": {...}}``.
        ``kind`` is accepted in place of ``type``.

        Args:
            record: The configuration mapping.

        Returns:
            ServerEndpoint: The validated endpoint.

        Examples:
            >>> ServerEndpoint.from_record({"type": "sse", "url": "http://h/sse", "args": None}).kind.value
            'sse'
        """
        return cls(
            kind=record.get("kind") or record.get("type") or "stdio",
            command=record.get("command"),
            args=tuple(record.get("args") or ()),
            env=dict(record.get("env") or {}),
            url=record.get("url"),
            headers=dict(record.get("headers") or {}),
        )

    def identity_key(self) -> str:
        """Stable digest identifying equivalent endpoints.

        Two endpoints with the same transport and parameters produce the
        same key regardless of mapping order.

        Returns:
            Hex sha256 digest.

        Examples:
            >>> a = ServerEndpoint(kind="http", url="http://h/mcp", headers={"a": "1", "b": "2"})
            >>> b = ServerEndpoint(kind="http", url="http://h/mcp", headers={"b": "2", "a": "1"})
            >>> a.identity_key() == b.identity_key()
            True
        """
        canonical = orjson.dumps(self.model_dump(mode="json"), option=orjson.OPT_SORT_KEYS)
        return hashlib.sha256(canonical).hexdigest()

    def describe(self) -> str:
        """Short, log safe description of the endpoint.

        Returns:
            The command line for stdio, the sanitized URL otherwise.
        """
        if self.kind is TransportKind.STDIO:
            return " ".join([self.command or "", *self.args]).strip()
        return sanitize_url_for_logging(self.url or "")


class ServerInfo(BaseModel):
    """What a server told us about itself during the handshake."""

    protocol_version: str
    name: str = "unknown"
    version: str = "unknown"
    capabilities: Dict[str, Any] = Field(default_factory=dict)

    @property
    def tools_supported(self) -> bool:
        """Whether the server declared the ``tools`` capability."""
        return "tools" in self.capabilities

    @property
    def resources_supported(self) -> bool:
        """Whether the server declared the ``resources`` capability."""
        return "resources" in self.capabilities

    @property
    def prompts_supported(self) -> bool:
        """Whether the server declared the ``prompts`` capability."""
        return "prompts" in self.capabilities

    @classmethod
    def from_initialize_result(cls, result: Any) -> "ServerInfo":
        """Parse the result of an ``initialize`` request.

        Args:
            result: The ``result`` member of the response.

        Returns:
            ServerInfo: Parsed handshake information.

        Raises:
            ProtocolError: If the result is not an object or lacks a protocol version.

        Examples:
            >>> info = ServerInfo.from_initialize_result({
            ...     "protocolVersion": "2024-11-05",
            ...     "capabilities": {"tools": {}, "prompts": {}},
            ...     "serverInfo": {"name": "demo", "version": "1.2"},
            ... })
            >>> (info.name, info.tools_supported, info.resources_supported, info.prompts_supported)
            ('demo', True, False, True)
        """
        if not isinstance(result, dict):
            raise ProtocolError(f"initialize result must be an object, got {type(result).__name__}")
        version = result.get("protocolVersion")
        if not isinstance(version, str) or not version:
            raise ProtocolError("initialize result is missing protocolVersion")
        server = result.get("serverInfo") if isinstance(result.get("serverInfo"), dict) else {}
        capabilities = result.get("capabilities") if isinstance(result.get("capabilities"), dict) else {}
        return cls(
            protocol_version=version,
            name=str(server.get("name") or "unknown"),
            version=str(server.get("version") or "unknown"),
            capabilities=capabilities,
        )


class ToolDescriptor(BaseModel):
    """One tool as advertised by ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"}, alias="inputSchema")

    @classmethod
    def parse_list(cls, items: Any) -> List["ToolDescriptor"]:
        """Validate the ``tools`` array of a ``tools/list`` result.

        Args:
            items: The raw array.

        Returns:
            Parsed descriptors.

        Raises:
            ProtocolError: If the array or one of its entries is malformed.

        Examples:
            >>> [t.name for t in ToolDescriptor.parse_list([{"name": "echo", "inputSchema": {"type": "object"}}])]
            ['echo']
        """
        if not isinstance(items, list):
            raise ProtocolError("tools/list result is missing the tools array")
        try:
            return [cls.model_validate(item) for item in items]
        except ValidationError as exc:
            raise ProtocolError(f"malformed tool descriptor: {exc.errors()[0]['msg']}") from exc

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with protocol field names.

        Returns:
            Mapping suitable for a ``tools/list`` response.
        """
        return self.model_dump(by_alias=True, exclude_none=True)


class ToolCallResult(BaseModel):
    """Outcome of one ``tools/call``.

    ``success`` is False when the tool reported a failure (``isError``) or the
    server rejected the call with a JSON-RPC error. Transport failures never
    produce a result; they raise.
    """

    success: bool
    content: Any = None
    is_error: bool = False
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @classmethod
    def from_call_result(cls, result: Any, elapsed_ms: float) -> "ToolCallResult":
        """Build from the ``result`` member of a ``tools/call`` response.

        Args:
            result: The raw result.
            elapsed_ms: Round trip duration.

        Returns:
            ToolCallResult: The parsed outcome.

        Raises:
            ProtocolError: If the result is not an object.

        Examples:
            >>> r = ToolCallResult.from_call_result({"content": [{"type": "text", "text": "boom"}], "isError": True}, 3.0)
            >>> (r.success, r.error)
            (False, 'boom')
        """
        if not isinstance(result, dict):
            raise ProtocolError(f"tools/call result must be an object, got {type(result).__name__}")
        content = result.get("content", [])
        is_error = bool(result.get("isError", False))
        error = (_first_text(content) or "tool reported an error") if is_error else None
        return cls(success=not is_error, content=content, is_error=is_error, error=error, elapsed_ms=elapsed_ms)

    @classmethod
    def failure(cls, message: str, elapsed_ms: float, content: Any = None) -> "ToolCallResult":
        """Build a failed result carrying only a message.

        Args:
            message: Failure description.
            elapsed_ms: Round trip duration.
            content: Optional content payload.

        Returns:
            ToolCallResult: The failed result.
        """
        return cls(success=False, content=content, is_error=True, error=message, elapsed_ms=elapsed_ms)

    def raise_for_error(self) -> "ToolCallResult":
        """Raise :class:`ToolExecutionError` if the tool failed.

        Returns:
            This result when it succeeded.

        Raises:
            ToolExecutionError: If ``success`` is False.
        """
        if not self.success:
            raise ToolExecutionError(self.error or "tool reported an error", content=self.content)
        return self

    def to_wire(self) -> Dict[str, Any]:
        """Serialize as a ``tools/call`` result.

        Returns:
            Mapping with ``content`` and ``isError``.
        """
        content = self.content
        if not isinstance(content, list):
            content = [{"type": "text", "text": self.error or ""}] if self.error else []
        return {"content": content, "isError": not self.success}


def _first_text(content: Any) -> Optional[str]:
    """Return the first text block of a content array.

    Args:
        content: Content array from a tool result.

    Returns:
        The text, or None.
    """
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                return str(block["text"])
    return None


class TestReport(BaseModel):
    """Result of a one-shot connectivity test."""

    __test__ = False  # not a pytest test class

    success: bool
    server_info: Optional[ServerInfo] = None
    tools: List[ToolDescriptor] = Field(default_factory=list)
    tool_count: Optional[int] = None
    resources_supported: bool = False
    prompts_supported: bool = False
    error: Optional[str] = None
    elapsed_ms: float = 0.0


class SessionInfo(BaseModel):
    """Public snapshot of a live session."""

    id: str
    name: Optional[str] = None
    kind: TransportKind
    target: str
    server_info: Optional[ServerInfo] = None
    tool_count: int = 0
    created_at: datetime
    last_used_at: datetime
    idle_seconds: float = 0.0


class BackendStatus(str, Enum):
    """Lifecycle state of a gateway backend."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    RESTARTING = "restarting"


class BackendInfo(BaseModel):
    """Public snapshot of a gateway backend registration."""

    backend_id: str
    prefix: str
    kind: TransportKind
    target: str
    status: BackendStatus
    error: Optional[str] = None
    session_id: Optional[str] = None
    tool_count: int = 0
    restart_count: int = 0
