# -*- coding: utf-8 -*-
"""Location: ./mcplink/gateway_server.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Gateway MCP server.

Re-exposes the gateway's merged catalog as an MCP server of its own over
streamable HTTP (JSON responses) at ``POST /mcp``:

- ``initialize`` answers with the gateway's server info and ``tools``
  capability, echoing the client's protocol version when supported;
- ``tools/list`` returns :meth:`GatewayService.catalog`;
- ``tools/call`` forwards to :meth:`GatewayService.dispatch`;
- ``ping`` answers with an empty result;
- notifications are accepted with ``202``.

``GET /health`` is a liveness probe and ``GET /status`` reports backends,
catalog diagnostics and session metrics.
"""

# Standard
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional
import uuid

# Third-Party
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
import orjson

# First-Party
from mcplink import __version__
from mcplink.config import settings
from mcplink.errors import McpError, McpTimeoutError, RoutingError
from mcplink.services.endpoint_source import YamlEndpointSource
from mcplink.services.gateway_service import GatewayService
from mcplink.services.http_client_service import get_http_client, SharedHttpClient
from mcplink.services.logging_service import LoggingService
from mcplink.services.session_manager import close_session_manager, init_session_manager, SessionManager
from mcplink.utils import jsonrpc
from mcplink.utils.orjson_response import ORJSONResponse

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

GATEWAY_SERVER_NAME = "mcplink-gateway"
SESSION_ID_HEADER = "mcp-session-id"


async def handle_rpc(gateway: GatewayService, message: Any) -> Optional[Dict[str, Any]]:
    """Answer one JSON-RPC message addressed to the gateway.

    Args:
        gateway: The gateway to serve.
        message: Decoded message.

    Returns:
        The response envelope, or None for notifications and responses.
    """
    kind = jsonrpc.message_kind(message)
    if kind is None:
        request_id = message.get("id") if isinstance(message, dict) else None
        return jsonrpc.build_error(request_id, jsonrpc.INVALID_REQUEST, "Invalid Request")
    if kind != "request":
        return None

    request_id = message["id"]
    method = message["method"]
    params = message.get("params") or {}
    if not isinstance(params, dict):
        return jsonrpc.build_error(request_id, jsonrpc.INVALID_PARAMS, "params must be an object")

    if method == "initialize":
        requested = params.get("protocolVersion")
        version = requested if requested in settings.supported_protocol_versions else settings.protocol_version
        return jsonrpc.build_result(
            request_id,
            {
                "protocolVersion": version,
                "capabilities": {"tools": {"listChanged": False}},
                "serverInfo": {"name": GATEWAY_SERVER_NAME, "version": __version__},
            },
        )

    if method == "ping":
        return jsonrpc.build_result(request_id, {})

    if method == "tools/list":
        tools = await gateway.catalog()
        return jsonrpc.build_result(request_id, {"tools": [tool.to_wire() for tool in tools]})

    if method == "tools/call":
        name = params.get("name")
        if not isinstance(name, str) or not name:
            return jsonrpc.build_error(request_id, jsonrpc.INVALID_PARAMS, "tools/call requires a tool name")
        arguments = params.get("arguments") or {}
        try:
            result = await gateway.dispatch(name, arguments)
        except RoutingError as exc:
            return jsonrpc.build_error(request_id, jsonrpc.INVALID_PARAMS, str(exc))
        except McpTimeoutError as exc:
            return jsonrpc.build_error(request_id, jsonrpc.INTERNAL_ERROR, f"backend timed out: {exc}")
        except McpError as exc:
            return jsonrpc.build_error(request_id, jsonrpc.INTERNAL_ERROR, f"backend error: {exc}")
        return jsonrpc.build_result(request_id, result.to_wire())

    return jsonrpc.build_error(request_id, jsonrpc.METHOD_NOT_FOUND, f"Method not found: {method}")


def create_app(gateway: Optional[GatewayService] = None, session_manager: Optional[SessionManager] = None) -> FastAPI:
    """Build the gateway server application.

    When no gateway is injected, the lifespan creates a session manager on the
    shared HTTP client, loads backends from ``settings.gateway_backends_file``
    and starts the idle sweeper; everything is closed on shutdown.

    Args:
        gateway: Pre-built gateway (tests, embedding).
        session_manager: Manager used by ``gateway``; reported on ``/status``.

    Returns:
        FastAPI: The application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create and tear down the gateway.

        Args:
            app: The application.

        Yields:
            None
        """
        owned = gateway is None
        if owned:
            logging_service.initialize()
            manager = init_session_manager(http_client=await get_http_client())
            manager.start()
            service = GatewayService(manager)
            if settings.gateway_backends_file:
                loaded = service.load_backends(YamlEndpointSource(settings.gateway_backends_file))
                logger.info(f"Loaded {len(loaded)} backend(s) from {settings.gateway_backends_file}")
            app.state.gateway = service
            app.state.session_manager = manager
        else:
            app.state.gateway = gateway
            app.state.session_manager = session_manager
        try:
            yield
        finally:
            if owned:
                await app.state.gateway.shutdown()
                await close_session_manager()
                await SharedHttpClient.shutdown()
                logging_service.shutdown()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[SESSION_ID_HEADER],
    )

    @app.post("/mcp")
    async def mcp_endpoint(request: Request) -> Response:
        """Streamable HTTP MCP endpoint (JSON responses).

        Args:
            request: Incoming request.

        Returns:
            Response: JSON-RPC response, batch response or 202.
        """
        service: GatewayService = request.app.state.gateway
        try:
            payload = orjson.loads(await request.body())
        except orjson.JSONDecodeError:
            return ORJSONResponse(jsonrpc.build_error(None, jsonrpc.PARSE_ERROR, "Parse error"), status_code=400)

        session_id = request.headers.get(SESSION_ID_HEADER) or uuid.uuid4().hex
        headers = {SESSION_ID_HEADER: session_id}

        if isinstance(payload, list):
            replies = [reply for reply in [await handle_rpc(service, item) for item in payload] if reply is not None]
            if not replies:
                return Response(status_code=202, headers=headers)
            return ORJSONResponse(replies, headers=headers)

        reply = await handle_rpc(service, payload)
        if reply is None:
            return Response(status_code=202, headers=headers)
        return ORJSONResponse(reply, headers=headers)

    @app.delete("/mcp")
    async def mcp_terminate() -> Response:
        """Accept session termination; the gateway keeps no per-client state.

        Returns:
            Response: 204.
        """
        return Response(status_code=204)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        """Liveness probe.

        Returns:
            Status payload.
        """
        return {"status": "healthy"}

    @app.get("/status")
    async def status(request: Request) -> ORJSONResponse:
        """Backends, diagnostics and session metrics.

        Args:
            request: Incoming request.

        Returns:
            ORJSONResponse: Status document.
        """
        service: GatewayService = request.app.state.gateway
        manager: Optional[SessionManager] = request.app.state.session_manager
        return ORJSONResponse(
            {
                "server": {"name": GATEWAY_SERVER_NAME, "version": __version__},
                "backends": [info.model_dump(mode="json") for info in service.backends()],
                "diagnostics": service.diagnostics,
                "sessions": manager.get_metrics() if manager is not None else None,
            }
        )

    return app
