"""Relay configuration tests."""

import pytest

from relay.config import RelayConfig, get_config, reset_config


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()


class TestDefaults:
    def test_defaults(self, monkeypatch):
        for key in ("SNAKE_RELAY_PORT", "SNAKE_RELAY_TICK", "SNAKE_RELAY_PATH"):
            monkeypatch.delenv(key, raising=False)
        cfg = RelayConfig()
        assert cfg.port == 3000
        assert cfg.path == "/ws"
        assert cfg.tick_interval == 0.05
        assert cfg.max_segments == 100

    def test_frozen(self):
        cfg = RelayConfig()
        with pytest.raises(AttributeError):
            cfg.port = 1


class TestEnvOverride:
    def test_env_values(self, monkeypatch):
        monkeypatch.setenv("SNAKE_RELAY_PORT", "4567")
        monkeypatch.setenv("SNAKE_RELAY_TICK", "0.1")
        monkeypatch.setenv("SNAKE_RELAY_PATH", "/snake")
        cfg = RelayConfig.from_env()
        assert cfg.port == 4567
        assert cfg.tick_interval == 0.1
        assert cfg.path == "/snake"

    def test_bad_env_value_falls_back(self, monkeypatch):
        monkeypatch.setenv("SNAKE_RELAY_PORT", "not-a-number")
        monkeypatch.setenv("SNAKE_RELAY_HOST", "   ")
        cfg = RelayConfig()
        assert cfg.port == 3000
        assert cfg.host == "0.0.0.0"

    def test_get_config_cached(self, monkeypatch):
        monkeypatch.setenv("SNAKE_RELAY_MAX_SEGMENTS", "50")
        first = get_config()
        monkeypatch.setenv("SNAKE_RELAY_MAX_SEGMENTS", "60")
        assert get_config() is first
        assert first.max_segments == 50
        reset_config()
        assert get_config().max_segments == 60


class TestConfigValidation:
    def test_default_config_valid(self):
        errors = RelayConfig().validate()
        assert errors == [], f"Default config errors: {errors}"

    def test_port_range(self):
        assert any("port" in e for e in RelayConfig(port=70000).validate())
        assert RelayConfig(port=0).validate() == []

    def test_path_must_be_absolute(self):
        assert any("path" in e for e in RelayConfig(path="ws").validate())

    def test_tick_positive(self):
        assert any("tick_interval" in e for e in RelayConfig(tick_interval=0).validate())

    def test_per_ip_not_above_total(self):
        errors = RelayConfig(max_connections=2, max_connections_per_ip=5).validate()
        assert any("max_connections_per_ip" in e for e in errors)

    def test_message_size_floor(self):
        assert any("max_message_size" in e for e in RelayConfig(max_message_size=10).validate())

    def test_rate(self):
        assert RelayConfig(rate_limit=0).validate()
        assert RelayConfig(rate_burst=0).validate()

    def test_reconnect(self):
        assert RelayConfig(reconnect_base_delay=-1).validate()
        assert RelayConfig(max_reconnect_attempts=-1).validate()

    def test_locale(self):
        assert any("locale" in e for e in RelayConfig(locale="ja_JP").validate())
        assert RelayConfig(locale="en_US").validate() == []
