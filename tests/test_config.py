"""
Tests for configuration loading.
"""

import ipaddress

import pytest

from portwarden.config import (
    Config,
    DEFAULT_GATEWAY,
    get_config,
    reset_config,
    set_config,
)


class TestConfig:
    """Tests for the Config dataclass."""

    def test_defaults(self):
        config = Config()
        assert config.gateway == DEFAULT_GATEWAY == "10.2.0.1"
        assert config.lifetime == 360
        assert config.notifier == "qbittorrent"
        assert config.gateway_address == ipaddress.IPv4Address("10.2.0.1")
        config.validate()

    def test_save_load(self, tmp_path):
        path = tmp_path / "portwarden.json"
        config = Config(gateway="192.168.1.1", notifier="file", port_file="/tmp/port")
        config.save(path)

        loaded = Config.load(path)

        assert loaded == config

    def test_load_missing_file(self, tmp_path):
        assert Config.load(tmp_path / "nope.json") == Config()

    def test_from_dict_ignores_unknown(self):
        config = Config.from_dict({"gateway": "192.168.0.1", "legacy": True})
        assert config.gateway == "192.168.0.1"

    def test_env_gateway(self):
        config = Config().with_env({"NATPMP_GATEWAY_IP": "10.0.0.1"})
        assert config.gateway == "10.0.0.1"

    def test_env_typed_fields(self):
        config = Config().with_env({
            "PORTWARDEN_LIFETIME": "60",
            "PORTWARDEN_NOTIFY_RETRY_DELAY": "1.5",
            "PORTWARDEN_NOTIFIER": "file",
            "PORTWARDEN_PORT_FILE": "/run/port",
        })
        assert config.lifetime == 60
        assert config.notify_retry_delay == 1.5
        assert config.notifier == "file"
        assert config.port_file == "/run/port"

    @pytest.mark.parametrize("name", [
        "PORTWARDEN_LIFETIME",
        "PORTWARDEN_MAX_UNEXPECTED",
        "PORTWARDEN_NOTIFY_RETRY_DELAY",
    ])
    def test_env_not_a_number(self, name):
        with pytest.raises(ValueError, match=f"Invalid {name}: 'abc'"):
            Config().with_env({name: "abc"})

    def test_empty_env_ignored(self):
        config = Config().with_env({"NATPMP_GATEWAY_IP": ""})
        assert config.gateway == DEFAULT_GATEWAY

    def test_env_beats_file(self, tmp_path, monkeypatch):
        path = tmp_path / "portwarden.json"
        Config(gateway="192.168.1.1", lifetime=120).save(path)
        monkeypatch.setenv("NATPMP_GATEWAY_IP", "10.8.0.1")

        config = Config.from_env(path)

        assert config.gateway == "10.8.0.1"
        assert config.lifetime == 120

    def test_overrides_skip_none(self):
        config = Config().with_overrides(gateway="10.1.1.1", lifetime=None)
        assert config.gateway == "10.1.1.1"
        assert config.lifetime == 360


class TestValidation:
    """Tests for Config.validate."""

    @pytest.mark.parametrize("kwargs", [
        {"gateway": "router.local"},
        {"gateway": "fe80::1"},
        {"lifetime": 0},
        {"max_unexpected": -1},
        {"notifier": "webhook"},
        {"notifier": "file"},
        {"notify_retry_delay": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            Config(**kwargs).validate()


class TestGlobalConfig:
    """Tests for the global config instance."""

    def test_set_get_reset(self):
        reset_config()
        config = Config(gateway="10.9.9.9")
        set_config(config)
        assert get_config() is config
        reset_config()

    def test_get_loads_from_env(self, monkeypatch):
        reset_config()
        monkeypatch.setenv("NATPMP_GATEWAY_IP", "10.7.7.7")
        try:
            assert get_config().gateway == "10.7.7.7"
        finally:
            reset_config()
