"""Tests for configuration loading."""

import pytest

from todo_sync.config import (
    ClientConfig,
    TransportConfig,
    config_summary,
    load_config,
    save_config,
)
from todo_sync.errors import ConfigError


class TestClientConfig:

    def test_defaults(self):
        config = ClientConfig()
        assert config.api_url == "http://localhost:3000"
        assert config.timeout == 30.0
        assert config.stale_times["todos"] == 300.0
        assert config.gc_time == 600.0

    def test_yaml_roundtrip(self, tmp_path):
        config = ClientConfig(api_url="https://todo.example.com", timeout=5, data_dir=str(tmp_path))
        restored = ClientConfig.from_yaml(config.to_yaml())
        assert restored == config

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError):
            ClientConfig.from_yaml("api_url: x\nflavor: vanilla\n")

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigError):
            ClientConfig.from_yaml("- a\n- b\n")

    def test_unknown_backend_rejected(self):
        with pytest.raises(ConfigError):
            ClientConfig(session_backend="cloud")

    def test_transport_config(self):
        transport = ClientConfig(api_url="https://x", max_retries=1).transport_config()
        assert transport.base_url == "https://x"
        assert transport.max_retries == 1
        assert "POST" not in transport.retry_methods


class TestTransportConfig:

    def test_post_cannot_be_retried(self):
        with pytest.raises(ConfigError):
            TransportConfig(retry_methods=["get", "post"])

    def test_timeout_must_be_positive(self):
        with pytest.raises(ConfigError):
            TransportConfig(timeout=0)


class TestLoadConfig:

    def test_missing_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TODO_SYNC_API_URL", raising=False)
        config = load_config(tmp_path / "config.yaml")
        assert config.api_url == "http://localhost:3000"
        assert config.data_dir == str(tmp_path)

    def test_save_then_load(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TODO_SYNC_API_URL", raising=False)
        path = tmp_path / "config.yaml"
        save_config(ClientConfig(api_url="https://saved", data_dir=str(tmp_path)), path)
        assert load_config(path).api_url == "https://saved"

    def test_session_stays_next_to_existing_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TODO_SYNC_API_URL", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("api_url: https://from-file\n")
        config = load_config(path)
        assert config.api_url == "https://from-file"
        assert config.data_dir == str(tmp_path)
        assert config.get_session_path() == tmp_path / "session.json"

    def test_explicit_data_dir_wins(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(f"data_dir: {tmp_path / 'elsewhere'}\n")
        assert load_config(path).data_dir == str(tmp_path / "elsewhere")

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TODO_SYNC_API_URL", "https://env")
        monkeypatch.setenv("TODO_SYNC_TIMEOUT", "12.5")
        monkeypatch.setenv("TODO_SYNC_SESSION_BACKEND", "memory")
        config = load_config(tmp_path / "config.yaml")
        assert config.api_url == "https://env"
        assert config.timeout == 12.5
        assert config.session_backend == "memory"

    def test_bad_env_timeout(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TODO_SYNC_TIMEOUT", "fast")
        with pytest.raises(ConfigError):
            load_config(tmp_path / "config.yaml")

    def test_summary(self):
        assert config_summary(ClientConfig())["session_backend"] == "file"
