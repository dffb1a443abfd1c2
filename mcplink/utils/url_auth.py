# -*- coding: utf-8 -*-
"""Location: ./mcplink/utils/url_auth.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Redaction helpers for URLs and headers that end up in logs and reports.

Endpoint URLs frequently carry API keys in the query string and endpoint
headers carry bearer tokens. Anything user visible (log lines, test reports,
gateway status) goes through these helpers first.
"""

# Standard
import re
from typing import Dict, FrozenSet, Mapping
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

SENSITIVE_QUERY_PARAMS: FrozenSet[str] = frozenset(
    {
        "api_key",
        "apikey",
        "api-key",
        "key",
        "token",
        "access_token",
        "auth",
        "auth_token",
        "secret",
        "password",
        "credential",
    }
)

SENSITIVE_HEADERS: FrozenSet[str] = frozenset({"authorization", "proxy-authorization", "cookie", "x-api-key", "x-auth-token"})


def sanitize_url_for_logging(url: str) -> str:
    """Redact sensitive query parameters and userinfo from a URL.

    Args:
        url: The URL to sanitize.

    Returns:
        URL with secrets replaced by ``REDACTED``.

    Examples:
        >>> sanitize_url_for_logging("https://api.example.com/mcp?api_key=secret&q=search")
        'https://api.example.com/mcp?api_key=REDACTED&q=search'
        >>> sanitize_url_for_logging("https://user:pw@host/mcp")
        'https://REDACTED@host/mcp'
        >>> sanitize_url_for_logging("http://localhost:3000/mcp")
        'http://localhost:3000/mcp'
    """
    parsed = urlparse(url)

    if "@" in parsed.netloc:
        parsed = parsed._replace(netloc="REDACTED@" + parsed.netloc.rsplit("@", 1)[1])

    if parsed.query:
        params = parse_qs(parsed.query, keep_blank_values=True)
        sanitized: Dict[str, str] = {}
        for k, v in params.items():
            sanitized[k] = "REDACTED" if k.lower() in SENSITIVE_QUERY_PARAMS else (v[0] if v else "")
        parsed = parsed._replace(query=urlencode(sanitized))

    return urlunparse(parsed)


# Regex to match URLs in text (http:// or https://)
_URL_PATTERN = re.compile(r"https?://[^\s<>\"']+")


def sanitize_exception_message(message: str) -> str:
    """Sanitize every URL embedded in an exception message.

    httpx errors include the full request URL in ``str(exc)``.

    Args:
        message: The exception message.

    Returns:
        Message with embedded URLs sanitized.

    Examples:
        >>> sanitize_exception_message("Error connecting to https://api.example.com?token=abc&q=test")
        'Error connecting to https://api.example.com?token=REDACTED&q=test'
    """
    if not message:
        return message
    return _URL_PATTERN.sub(lambda match: sanitize_url_for_logging(match.group(0)), message)


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy a header mapping with credential values masked.

    Args:
        headers: Header mapping.

    Returns:
        New mapping safe to log.

    Examples:
        >>> redact_headers({"Authorization": "Bearer abc", "X-Trace": "1"})
        {'Authorization': 'REDACTED', 'X-Trace': '1'}
    """
    return {k: ("REDACTED" if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}
