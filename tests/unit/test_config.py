"""Unit tests for config loading."""

import pytest

from redis_tui.config import ADDRESS_ENV_VAR, ClientConfig, load_config


@pytest.fixture(autouse=True)
def _no_address_env(monkeypatch):
    monkeypatch.delenv(ADDRESS_ENV_VAR, raising=False)


class TestClientConfig:
    def test_defaults(self):
        config = ClientConfig.from_dict({})

        assert config.address == "localhost:6379"
        assert config.retry_delay == 2.0
        assert config.connect_timeout is None
        assert config.exit_on_connect_failure is False
        assert config.scan_match == "*"
        assert config.scan_count is None
        assert config.log_file is None
        assert config.log_level == "INFO"

    def test_nested_values(self):
        config = ClientConfig.from_dict({
            "server": {"address": "cache:6380"},
            "client": {"retry_delay": 5, "connect_timeout": 1.5, "exit_on_connect_failure": True},
            "explore": {"match": "user:*", "count": 1000},
            "logging": {"file": "/tmp/redis-tui.log", "level": "debug"},
        })

        assert config.address == "cache:6380"
        assert config.retry_delay == 5.0
        assert config.connect_timeout == 1.5
        assert config.exit_on_connect_failure is True
        assert config.scan_match == "user:*"
        assert config.scan_count == 1000
        assert config.log_file == "/tmp/redis-tui.log"
        assert config.log_level == "DEBUG"

    def test_empty_sections(self):
        config = ClientConfig.from_dict({"server": None, "client": None})
        assert config.address == "localhost:6379"

    def test_env_overrides_address(self, monkeypatch):
        monkeypatch.setenv(ADDRESS_ENV_VAR, "env-host:7000")
        config = ClientConfig.from_dict({"server": {"address": "cache:6380"}})
        assert config.address == "env-host:7000"


class TestLoadConfig:
    def test_missing_file_returns_empty(self, tmp_path):
        assert load_config(str(tmp_path / "nope.yaml")) == {}

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "redis-tui.yaml"
        path.write_text("server:\n  address: db:6379\nexplore:\n  match: 'session:*'\n")

        data = load_config(str(path))

        assert data == {"server": {"address": "db:6379"}, "explore": {"match": "session:*"}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "redis-tui.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "redis-tui.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(str(path))
