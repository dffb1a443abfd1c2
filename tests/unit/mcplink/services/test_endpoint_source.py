# -*- coding: utf-8 -*-
"""Tests for endpoint sources.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti
"""

# Third-Party
import pytest

# First-Party
from mcplink.schemas import TransportKind
from mcplink.services.endpoint_source import parse_backend_entry, YamlEndpointSource


class TestParseBackendEntry:
    def test_explicit_type_and_prefix(self):
        record = parse_backend_entry("docs", {"type": "sse", "url": "http://h/sse", "prefix": "d", "headers": {"X-Key": 1}})
        assert record.endpoint.kind is TransportKind.SSE
        assert record.prefix == "d"
        assert record.endpoint.headers == {"X-Key": "1"}

    def test_env_references_are_expanded(self, monkeypatch):
        monkeypatch.setenv("DOCS_TOKEN", "t0k")
        record = parse_backend_entry("docs", {"url": "https://h/mcp", "headers": {"Authorization": "Bearer ${DOCS_TOKEN}"}})
        assert record.endpoint.headers["Authorization"] == "Bearer t0k"

    def test_invalid_entry(self):
        with pytest.raises(ValueError, match="backend 'bad'"):
            parse_backend_entry("bad", {"type": "http"})

    def test_non_mapping(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            parse_backend_entry("bad", ["uvx"])


class TestYamlEndpointSource:
    def test_backends_list(self, tmp_path):
        path = tmp_path / "backends.yaml"
        path.write_text(
            """
backends:
  - id: time
    command: uvx
    args: [mcp-server-time, --local-timezone, UTC]
    env:
      TZ: UTC
  - id: docs
    type: streamable_http
    url: http://localhost:9000/mcp
  - id: old
    command: legacy
    enabled: false
""",
            encoding="utf-8",
        )
        records = YamlEndpointSource(path).load()
        assert [r.backend_id for r in records] == ["time", "docs"]
        assert records[0].endpoint.args == ("mcp-server-time", "--local-timezone", "UTC")
        assert records[0].endpoint.env == {"TZ": "UTC"}
        assert records[1].endpoint.kind is TransportKind.STREAMABLE_HTTP

    def test_mcp_servers_mapping(self, tmp_path):
        path = tmp_path / "servers.yaml"
        path.write_text("mcpServers:\n  time:\n    command: uvx\n  remote:\n    type: http\n    url: https://r/mcp\n", encoding="utf-8")
        records = YamlEndpointSource(str(path)).load()
        assert [(r.backend_id, r.endpoint.kind.value) for r in records] == [("time", "stdio"), ("remote", "http")]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            YamlEndpointSource(tmp_path / "nope.yaml").load()

    @pytest.mark.parametrize(
        "content,match",
        [
            ("backends: [unclosed", "Invalid YAML"),
            ("- a\n- b\n", "top level must be a mapping"),
            ("servers: {}\n", "expected a 'backends' list"),
            ("backends:\n  - command: uvx\n", "has no id"),
            ("backends: {a: 1}\n", "must be a list"),
        ],
    )
    def test_malformed_files(self, tmp_path, content, match):
        path = tmp_path / "bad.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ValueError, match=match):
            YamlEndpointSource(path).load()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValueError, match="expected a 'backends' list"):
            YamlEndpointSource(path).load()
