# -*- coding: utf-8 -*-
"""Location: ./mcplink/transports/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

MCP transport clients (stdio, HTTP, SSE, streamable HTTP).
"""
