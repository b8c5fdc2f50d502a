"""Tests for runtime configuration resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from devicelink.config import (
    DEFAULT_TOKEN,
    RuntimeConfig,
    load_config,
    mask_secret,
    read_config_file,
    warn_if_default_token,
)
from devicelink.protocol.errors import ConfigError


class TestDefaults:
    """Built-in defaults."""

    def test_defaults(self) -> None:
        config = load_config(environ={})

        assert config.host == "0.0.0.0"
        assert config.port == 8765
        assert config.auth_token == DEFAULT_TOKEN
        assert config.relay_url is None
        assert config.reconnect_delay == 5.0
        assert config.auth_timeout == 30.0
        assert config.uses_default_token

    def test_default_token_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("WARNING"):
            assert warn_if_default_token(RuntimeConfig())

        assert "default auth token" in caplog.text

    def test_custom_token_no_warning(self) -> None:
        assert not warn_if_default_token(RuntimeConfig(auth_token="other"))


class TestEnvironment:
    """DEVICELINK_* environment variables."""

    def test_from_env(self) -> None:
        config = RuntimeConfig.from_env(
            {
                "DEVICELINK_PORT": "9000",
                "DEVICELINK_TOKEN": "envtok",
                "DEVICELINK_RELAY_URL": "wss://relay/ws",
                "DEVICELINK_RECONNECT_DELAY": "2.5",
                "DEVICELINK_ADB_SERIAL": "emulator-5554",
            }
        )

        assert config.port == 9000
        assert config.auth_token == "envtok"
        assert config.relay_url == "wss://relay/ws"
        assert config.reconnect_delay == 2.5
        assert config.adb_serial == "emulator-5554"

    def test_empty_env_values_ignored(self) -> None:
        config = RuntimeConfig.from_env({"DEVICELINK_PORT": ""})

        assert config.port == 8765

    def test_invalid_env_value(self) -> None:
        with pytest.raises(ConfigError, match="port"):
            RuntimeConfig.from_env({"DEVICELINK_PORT": "eighty"})


class TestPrecedence:
    """CLI > file > environment > defaults."""

    def test_file_over_env(self, tmp_path: Path) -> None:
        path = tmp_path / "device.yaml"
        path.write_text("port: 9100\nauth_token: filetok\n")

        config = load_config(path, environ={"DEVICELINK_PORT": "9000"})

        assert config.port == 9100
        assert config.auth_token == "filetok"

    def test_cli_over_file(self, tmp_path: Path) -> None:
        path = tmp_path / "device.yaml"
        path.write_text("port: 9100\n")

        config = load_config(path, environ={}, port=9200, auth_token=None)

        assert config.port == 9200
        assert config.auth_token == DEFAULT_TOKEN

    def test_none_overrides_ignored(self) -> None:
        config = load_config(environ={"DEVICELINK_HOST": "127.0.0.1"}, host=None)

        assert config.host == "127.0.0.1"


class TestValidation:
    """Invalid values are rejected with ConfigError."""

    def test_port_out_of_range(self) -> None:
        with pytest.raises(ConfigError, match="port"):
            load_config(environ={}, port=70000)

    def test_negative_delay(self) -> None:
        with pytest.raises(ConfigError, match="reconnect_delay"):
            load_config(environ={}, reconnect_delay=-1)

    def test_zero_auth_timeout(self) -> None:
        with pytest.raises(ConfigError, match="auth_timeout"):
            load_config(environ={}, auth_timeout=0)

    def test_empty_token(self) -> None:
        with pytest.raises(ConfigError, match="auth_token"):
            RuntimeConfig(auth_token="").validate()

    def test_unknown_log_level(self) -> None:
        with pytest.raises(ConfigError, match="log level"):
            load_config(environ={"DEVICELINK_LOG_LEVEL": "chatty"})

    def test_bool_rejected(self) -> None:
        with pytest.raises(ConfigError):
            RuntimeConfig().merge({"port": True})

    def test_unknown_key(self) -> None:
        with pytest.raises(ConfigError, match="unknown config key"):
            RuntimeConfig().merge({"colour": "blue"})


class TestConfigFile:
    """YAML configuration files."""

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert read_config_file(path) == {}

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")

        with pytest.raises(ConfigError, match="mapping"):
            read_config_file(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("port: [unclosed\n")

        with pytest.raises(ConfigError, match="invalid YAML"):
            read_config_file(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="cannot read"):
            read_config_file(tmp_path / "nope.yaml")


class TestMasking:
    """Token masking for display."""

    def test_mask_long_secret(self) -> None:
        assert mask_secret("supersecret") == "su****"

    def test_mask_short_secret(self) -> None:
        assert mask_secret("abc") == "****"

    def test_to_dict_masks_token(self) -> None:
        data = RuntimeConfig(auth_token="supersecret").to_dict()

        assert data["auth_token"] == "su****"
        assert data["port"] == 8765

    def test_to_dict_unmasked(self) -> None:
        assert RuntimeConfig(auth_token="abc").to_dict(mask_token=False)["auth_token"] == "abc"
