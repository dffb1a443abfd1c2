# -*- coding: utf-8 -*-
"""Location: ./mcplink/utils/orjson_response.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

orjson backed JSON response for the gateway server.
"""

# Standard
from typing import Any

# Third-Party
from fastapi.responses import JSONResponse
import orjson


class ORJSONResponse(JSONResponse):
    """JSON response using orjson for faster serialization.

    Example:
        >>> response = ORJSONResponse(content={"status": "healthy"})
        >>> (response.media_type, response.body)
        ('application/json', b'{"status":"healthy"}')
    """

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        """Render content to JSON bytes using orjson.

        Args:
            content: The content to serialize to JSON.

        Returns:
            JSON bytes ready for HTTP response.
        """
        return orjson.dumps(content, option=orjson.OPT_NON_STR_KEYS)
