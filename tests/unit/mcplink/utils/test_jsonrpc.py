# -*- coding: utf-8 -*-
"""Tests for JSON-RPC envelope helpers.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti
"""

# Third-Party
import pytest

# First-Party
from mcplink.errors import ProtocolError
from mcplink.utils import jsonrpc


class TestBuilders:
    def test_request_with_params(self):
        assert jsonrpc.build_request("tools/call", {"name": "x"}, 4) == {"jsonrpc": "2.0", "method": "tools/call", "params": {"name": "x"}, "id": 4}

    def test_error_with_data(self):
        error = jsonrpc.build_error(None, jsonrpc.PARSE_ERROR, "Parse error", data={"line": 1})
        assert error == {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error", "data": {"line": 1}}}

    def test_result(self):
        assert jsonrpc.build_result("a", {"ok": True})["result"] == {"ok": True}


class TestMessageKind:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ({"jsonrpc": "2.0", "id": 1, "method": "ping"}, "request"),
            ({"jsonrpc": "2.0", "method": "notifications/initialized"}, "notification"),
            ({"jsonrpc": "2.0", "id": 1, "result": {}}, "response"),
            ({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "x"}}, "response"),
            ({"jsonrpc": "1.0", "id": 1, "result": {}}, None),
            ({}, None),
            ({"jsonrpc": "2.0", "id": 1}, None),
            ([{"jsonrpc": "2.0", "id": 1, "result": {}}], None),
            ("text", None),
        ],
    )
    def test_classification(self, message, expected):
        assert jsonrpc.message_kind(message) == expected


class TestCodec:
    def test_dumps_is_compact_bytes(self):
        assert jsonrpc.dumps({"a": 1}) == b'{"a":1}'

    def test_loads_accepts_text(self):
        assert jsonrpc.loads('[1, 2]') == [1, 2]

    def test_loads_rejects_garbage(self):
        with pytest.raises(ProtocolError, match="invalid JSON"):
            jsonrpc.loads(b"\xff\xfe")
