# -*- coding: utf-8 -*-
"""Tests for mcplink settings.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti
"""

# Third-Party
from pydantic import ValidationError
import pytest

# First-Party
from mcplink.config import DEFAULT_GATEWAY_PORT, get_settings, Settings


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.default_timeout == 30.0
        assert s.session_idle_timeout == 300.0
        assert s.gateway_host == "127.0.0.1"
        assert s.gateway_port == DEFAULT_GATEWAY_PORT
        assert s.tool_name_separator == "__"
        assert s.protocol_version in s.supported_protocol_versions
        assert s.cors_origin_list == ["*"]

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("MCPLINK_DEFAULT_TIMEOUT", "12.5")
        monkeypatch.setenv("MCPLINK_LOG_FORMAT", "json")
        monkeypatch.setenv("MCPLINK_GATEWAY_BACKENDS_FILE", "/etc/mcplink/backends.yaml")
        s = Settings(_env_file=None)
        assert s.default_timeout == 12.5
        assert s.log_format == "json"
        assert s.gateway_backends_file == "/etc/mcplink/backends.yaml"

    @pytest.mark.parametrize("field", ["default_timeout", "session_idle_timeout", "cleanup_timeout"])
    def test_non_positive_timeouts_rejected(self, field):
        with pytest.raises(ValidationError, match="greater than zero"):
            Settings(_env_file=None, **{field: 0})

    def test_log_level_normalized_and_validated(self):
        assert Settings(_env_file=None, log_level="warning").log_level == "WARNING"
        with pytest.raises(ValidationError, match="unknown log level"):
            Settings(_env_file=None, log_level="chatty")

    def test_empty_separator_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, tool_name_separator="")

    def test_invalid_json_cors_falls_back_to_csv(self):
        assert Settings(_env_file=None, cors_origins="[broken").cors_origin_list == ["[broken"]

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
