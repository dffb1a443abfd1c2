# -*- coding: utf-8 -*-
"""Tests for the mcplink command line.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti
"""

# Standard
from unittest.mock import AsyncMock, patch

# Third-Party
import orjson
import pytest

# First-Party
from mcplink import __version__
from mcplink import cli
from mcplink.config import settings
from mcplink.schemas import ServerInfo, TestReport, ToolDescriptor


class TestParsePairs:
    def test_env_keeps_value_verbatim(self):
        assert cli.parse_pairs(["A= spaced "], "=", "--env") == {"A": " spaced "}

    def test_header_value_is_stripped(self):
        assert cli.parse_pairs(["X-Api-Key:  abc"], ":", "--header") == {"X-Api-Key": "abc"}

    @pytest.mark.parametrize("item", ["novalue", "=value"])
    def test_malformed_item(self, item):
        with pytest.raises(ValueError, match="--env expects KEY=VALUE"):
            cli.parse_pairs([item], "=", "--env")


class TestParser:
    def test_subcommand_is_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            cli.build_parser().parse_args(["--version"])
        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_test_defaults(self):
        ns = cli.build_parser().parse_args(["test", "--type", "http", "--url", "http://h/mcp"])
        assert (ns.kind, ns.url, ns.args, ns.env, ns.header) == ("http", "http://h/mcp", [], [], [])
        assert ns.timeout == settings.default_timeout

    def test_serve_options(self):
        ns = cli.build_parser().parse_args(["serve", "--config", "b.yaml", "--port", "9000"])
        assert (ns.command_name, ns.config, ns.port) == ("serve", "b.yaml", 9000)


class TestRunTest:
    def test_success_prints_report(self, capsys):
        report = TestReport(
            success=True,
            server_info=ServerInfo(protocol_version="2025-03-26", name="time"),
            tools=[ToolDescriptor(name="now")],
            tool_count=1,
            elapsed_ms=12.5,
        )
        with patch.object(cli.ConnectionTester, "test_config", new=AsyncMock(return_value=report)) as test_config:
            code = cli.main(["test", "--type", "stdio", "--command", "uvx", "--arg", "mcp-server-time", "--env", "TZ=UTC", "--timeout", "5"])

        assert code == 0
        test_config.assert_awaited_once_with("stdio", command="uvx", args=["mcp-server-time"], url=None, headers={}, env={"TZ": "UTC"}, timeout=5.0)
        printed = orjson.loads(capsys.readouterr().out)
        assert printed["success"] is True
        assert printed["tool_count"] == 1
        assert printed["server_info"]["name"] == "time"

    def test_failure_exit_status(self, capsys):
        report = TestReport(success=False, error="process exited before handshake")
        with patch.object(cli.ConnectionTester, "test_config", new=AsyncMock(return_value=report)):
            code = cli.main(["test", "--type", "streamable-http", "--url", "http://h/mcp", "--header", "Authorization: Bearer t"])

        assert code == 1
        assert orjson.loads(capsys.readouterr().out)["error"] == "process exited before handshake"

    def test_bad_header_is_usage_error(self, capsys):
        with patch.object(cli.ConnectionTester, "test_config", new=AsyncMock()) as test_config:
            code = cli.main(["test", "--type", "http", "--url", "http://h/mcp", "--header", "broken"])

        assert code == 2
        test_config.assert_not_awaited()
        captured = capsys.readouterr()
        assert "--header expects KEY:VALUE, got 'broken'" in captured.err
        assert captured.out == ""


class TestRunServe:
    def test_serve_runs_uvicorn(self, monkeypatch):
        monkeypatch.setattr(settings, "gateway_backends_file", None)
        with patch("mcplink.cli.uvicorn.run") as run:
            code = cli.main(["serve", "--config", "backends.yaml", "--host", "0.0.0.0", "--port", "9100", "--log-level", "debug"])
        cli.logging_service.shutdown()

        assert code == 0
        assert settings.gateway_backends_file == "backends.yaml"
        _, kwargs = run.call_args
        assert (kwargs["host"], kwargs["port"], kwargs["log_level"]) == ("0.0.0.0", 9100, "debug")
