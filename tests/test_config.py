"""
Tests for client configuration.
"""

from pathlib import Path

import pytest

from balancebridge.config import (
    DEFAULT_RELAYS,
    REQUEST_KIND,
    RESPONSE_KIND,
    BridgeConfig,
    ConfigError,
)


class TestDefaults:
    def test_protocol_constants(self):
        assert REQUEST_KIND == 30078
        assert RESPONSE_KIND == 30079
        assert "wss://relay.damus.io" in DEFAULT_RELAYS

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("UMBREL_APP_DATA_DIR", raising=False)

        config = BridgeConfig()

        assert config.data_dir == Path("./data")
        assert config.request_timeout == 30.0
        assert config.encrypt_payloads is False
        assert config.verify_signatures is True
        config.validate()

    def test_umbrel_data_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("UMBREL_APP_DATA_DIR", str(tmp_path))

        config = BridgeConfig()

        assert config.data_dir == tmp_path
        assert config.identity_path == tmp_path / "nostr_secret.hex"
        assert config.pairing_path == tmp_path / "pairing.json"

    def test_data_dir_string_is_coerced(self):
        assert BridgeConfig(data_dir="/tmp/bb").data_dir == Path("/tmp/bb")


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"request_timeout": 0},
            {"request_timeout": -1},
            {"connect_timeout": 0},
            {"subscription_window": 0},
            {"heartbeat": -1},
            {"clock_skew": -1},
            {"request_kind": RESPONSE_KIND},
        ],
    )
    def test_rejects_out_of_range(self, kwargs):
        with pytest.raises(ConfigError):
            BridgeConfig(**kwargs).validate()

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)

    def test_zero_heartbeat_allowed(self):
        BridgeConfig(heartbeat=0).validate()


class TestSerialization:
    def test_dict_roundtrip(self, tmp_path):
        config = BridgeConfig(data_dir=tmp_path, request_timeout=5.0, encrypt_payloads=True)

        restored = BridgeConfig.from_dict(config.to_dict())

        assert restored == config

    def test_from_dict_ignores_unknown_keys(self, tmp_path):
        config = BridgeConfig.from_dict({"data_dir": str(tmp_path), "colour": "blue"})

        assert config.data_dir == tmp_path

    def test_from_dict_validates(self):
        with pytest.raises(ConfigError):
            BridgeConfig.from_dict({"request_timeout": 0})


class TestFromEnv:
    def test_reads_prefixed_variables(self, tmp_path):
        config = BridgeConfig.from_env(
            {
                "BALANCEBRIDGE_DATA_DIR": str(tmp_path),
                "BALANCEBRIDGE_REQUEST_TIMEOUT": "12.5",
                "BALANCEBRIDGE_CLOCK_SKEW": "3",
                "BALANCEBRIDGE_ENCRYPT_PAYLOADS": "yes",
                "BALANCEBRIDGE_SEND_HELLO": "0",
            }
        )

        assert config.data_dir == tmp_path
        assert config.request_timeout == 12.5
        assert config.clock_skew == 3
        assert config.encrypt_payloads is True
        assert config.send_hello is False

    def test_empty_environment_gives_defaults(self, monkeypatch):
        monkeypatch.delenv("UMBREL_APP_DATA_DIR", raising=False)

        assert BridgeConfig.from_env({}) == BridgeConfig()

    def test_invalid_number(self):
        with pytest.raises(ValueError):
            BridgeConfig.from_env({"BALANCEBRIDGE_REQUEST_TIMEOUT": "soon"})

    def test_out_of_range_value(self):
        with pytest.raises(ConfigError):
            BridgeConfig.from_env({"BALANCEBRIDGE_REQUEST_TIMEOUT": "-1"})
