# -*- coding: utf-8 -*-
"""Location: ./mcplink/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

MCP Link - Model Context Protocol client, session engine and tool gateway.
"""

__author__ = "Mihai Criveti"
__copyright__ = "Copyright 2025"
__license__ = "Apache 2.0"
__version__ = "0.4.0"
__description__ = "MCP client transports, session management and tool aggregation gateway"
__url__ = "https://github.com/IBM/mcp-context-forge"
__download_url__ = "https://github.com/IBM/mcp-context-forge"
__packages__ = ["mcplink"]
