# -*- coding: utf-8 -*-
"""Location: ./mcplink/config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

MCP Link configuration.

All settings can be overridden with environment variables using the
``MCPLINK_`` prefix (``MCPLINK_DEFAULT_TIMEOUT=10``) or a ``.env`` file.

Examples:
    >>> from mcplink.config import Settings
    >>> s = Settings(_env_file=None)
    >>> s.default_timeout
    30.0
    >>> s.gateway_port
    23848
"""

# Standard
from functools import lru_cache
import json
import logging
from typing import Any, List, Literal, Optional

# Third-Party
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_PORT = 23848
SUPPORTED_PROTOCOL_VERSIONS = ["2024-11-05", "2025-03-26", "2025-06-18"]


class Settings(BaseSettings):
    """Runtime configuration for transports, sessions and the gateway."""

    app_name: str = Field(default="MCP Link", description="Human readable application name")

    # Protocol
    protocol_version: str = Field(default="2025-03-26", description="Protocol version offered in the initialize request")
    supported_protocol_versions: List[str] = Field(default_factory=lambda: list(SUPPORTED_PROTOCOL_VERSIONS), description="Protocol versions accepted from servers")
    client_name: str = Field(default="mcplink", description="clientInfo.name sent during the handshake")
    client_version: str = Field(default="0.4.0", description="clientInfo.version sent during the handshake")

    # Timeouts and session lifecycle
    default_timeout: float = Field(default=30.0, description="Default timeout in seconds for connect, list and call operations")
    session_idle_timeout: float = Field(default=300.0, description="Close sessions idle for longer than this many seconds")
    session_sweep_interval: float = Field(default=30.0, description="Seconds between background idle sweeps")
    cleanup_timeout: float = Field(default=5.0, description="Upper bound in seconds for closing a single transport")

    # stdio transport
    stdio_terminate_grace: float = Field(default=2.0, description="Seconds to wait after SIGTERM before killing a child process")
    stdio_stderr_tail_lines: int = Field(default=50, description="Number of stderr lines kept for diagnostics")
    stdio_line_limit: int = Field(default=16 * 1024 * 1024, description="Maximum bytes in one stdout line from a child process")

    # HTTP client settings
    httpx_max_connections: int = Field(default=100, description="Maximum total concurrent HTTP connections")
    httpx_max_keepalive_connections: int = Field(default=50, description="Maximum idle keepalive connections to retain")
    httpx_keepalive_expiry: float = Field(default=30.0, description="Seconds before idle keepalive connections are closed")
    httpx_connect_timeout: float = Field(default=5.0, description="Timeout in seconds for establishing new connections")
    httpx_read_timeout: float = Field(default=120.0, description="Timeout in seconds for reading response data")
    httpx_write_timeout: float = Field(default=30.0, description="Timeout in seconds for writing request data")
    httpx_pool_timeout: float = Field(default=10.0, description="Timeout in seconds waiting for a pooled connection")
    skip_ssl_verify: bool = Field(default=False, description="Skip TLS verification for upstream MCP servers. Development only.")

    # Gateway
    gateway_host: str = Field(default="127.0.0.1", description="Host the gateway server binds to")
    gateway_port: int = Field(default=DEFAULT_GATEWAY_PORT, description="Port the gateway server binds to")
    gateway_backends_file: Optional[str] = Field(default=None, description="YAML file listing backend MCP servers")
    tool_name_separator: str = Field(default="__", description="Separator between backend prefix and tool name")
    cors_origins: str = Field(default="*", description="Allowed CORS origins, JSON array or comma separated")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log output format")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    model_config = SettingsConfigDict(env_prefix="MCPLINK_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator(
        "default_timeout",
        "session_idle_timeout",
        "session_sweep_interval",
        "cleanup_timeout",
        "stdio_terminate_grace",
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        """Reject zero or negative durations.

        Args:
            value: The configured number of seconds.

        Returns:
            The value unchanged.

        Raises:
            ValueError: If the value is not strictly positive.
        """
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        """Upper-case and validate the log level name.

        Args:
            value: Raw level from the environment.

        Returns:
            Canonical level name.

        Raises:
            ValueError: If the level is unknown to the logging module.

        Examples:
            >>> Settings(log_level="debug", _env_file=None).log_level
            'DEBUG'
        """
        level = str(value).strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {value}")
        return level

    @field_validator("tool_name_separator")
    @classmethod
    def _separator_not_empty(cls, value: str) -> str:
        """Require a non-empty tool name separator.

        Args:
            value: Configured separator.

        Returns:
            The separator.

        Raises:
            ValueError: If the separator is empty.
        """
        if not value:
            raise ValueError("tool_name_separator cannot be empty")
        return value

    @property
    def cors_origin_list(self) -> List[str]:
        """Parse ``cors_origins`` as a JSON array or a comma separated string.

        Returns:
            List of origins.

        Examples:
            >>> Settings(cors_origins='["https://a.com", "https://b.com"]', _env_file=None).cors_origin_list
            ['https://a.com', 'https://b.com']
            >>> Settings(cors_origins="https://x.com , https://y.com", _env_file=None).cors_origin_list
            ['https://x.com', 'https://y.com']
        """
        raw = self.cors_origins.strip()
        if raw.startswith("["):
            try:
                return [str(origin).strip() for origin in json.loads(raw)]
            except json.JSONDecodeError:
                logger.warning("Invalid JSON for cors_origins, falling back to comma separated parsing")
        return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: The process wide settings.
    """
    return Settings()


settings = get_settings()
