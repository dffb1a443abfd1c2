# -*- coding: utf-8 -*-
"""Location: ./mcplink/utils/jsonrpc.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

JSON-RPC 2.0 envelope helpers.

Examples:
    >>> from mcplink.utils.jsonrpc import build_request, message_kind
    >>> message_kind(build_request("tools/list", request_id=1))
    'request'
    >>> message_kind({"jsonrpc": "2.0", "id": 1, "result": {}})
    'response'
    >>> message_kind({"jsonrpc": "2.0", "method": "notifications/progress"})
    'notification'
    >>> message_kind({"hello": "world"}) is None
    True
"""

# Standard
from typing import Any, Dict, Optional, Union

# Third-Party
import orjson

# First-Party
from mcplink.errors import ProtocolError

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RequestId = Union[int, str]


def build_request(method: str, params: Optional[Dict[str, Any]] = None, request_id: Optional[RequestId] = None) -> Dict[str, Any]:
    """Build a request (or, without an id, a notification).

    Args:
        method: Method name.
        params: Optional parameters object.
        request_id: Request id; omitted for notifications.

    Returns:
        The envelope.

    Examples:
        >>> build_request("ping", request_id=7)
        {'jsonrpc': '2.0', 'method': 'ping', 'id': 7}
        >>> build_request("notifications/initialized")
        {'jsonrpc': '2.0', 'method': 'notifications/initialized'}
    """
    message: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    if request_id is not None:
        message["id"] = request_id
    return message


def build_result(request_id: Optional[RequestId], result: Any) -> Dict[str, Any]:
    """Build a success response.

    Args:
        request_id: Id of the request being answered.
        result: Result payload.

    Returns:
        The envelope.
    """
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def build_error(request_id: Optional[RequestId], code: int, message: str, data: Any = None) -> Dict[str, Any]:
    """Build an error response.

    Args:
        request_id: Id of the request being answered, None if unknown.
        code: JSON-RPC error code.
        message: Error message.
        data: Optional error data.

    Returns:
        The envelope.

    Examples:
        >>> build_error(3, METHOD_NOT_FOUND, "Method not found")
        {'jsonrpc': '2.0', 'id': 3, 'error': {'code': -32601, 'message': 'Method not found'}}
    """
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def message_kind(message: Any) -> Optional[str]:
    """Classify a decoded JSON value.

    Args:
        message: Decoded JSON value.

    Returns:
        ``"request"``, ``"notification"``, ``"response"`` or None if the value
        is not a JSON-RPC envelope.
    """
    if not isinstance(message, dict) or message.get("jsonrpc") != JSONRPC_VERSION:
        return None
    if "method" in message:
        return "request" if message.get("id") is not None else "notification"
    if "id" in message and ("result" in message or "error" in message):
        return "response"
    return None


def dumps(message: Any) -> bytes:
    """Encode a message as compact JSON bytes.

    Args:
        message: The envelope.

    Returns:
        UTF-8 JSON bytes without a trailing newline.
    """
    return orjson.dumps(message)


def loads(data: Union[bytes, str]) -> Any:
    """Decode JSON text.

    Args:
        data: JSON bytes or text.

    Returns:
        Decoded value.

    Raises:
        ProtocolError: If the text is not valid JSON.

    Examples:
        >>> loads(b'{"a": 1}')
        {'a': 1}
        >>> try:
        ...     loads("not json")
        ... except ProtocolError as exc:
        ...     str(exc).startswith("invalid JSON")
        True
    """
    try:
        return orjson.loads(data)
    except orjson.JSONDecodeError as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc
