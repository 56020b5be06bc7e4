"""Tests for configuration loading."""

import os
import pytest

from cardsync.config import Config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove CARDSYNC_ variables inherited from the environment."""
    for key in list(os.environ):
        if key.startswith("CARDSYNC_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_defaults(self):
        config = load_config()

        assert config.storage.db_path == "~/.cardsync/cardsync.db"
        assert config.storage.base_key == "cards"
        assert config.remote.backend == "none"
        assert config.remote.timeout_seconds == 10.0
        assert config.remote.max_chunk_size == 1500
        assert config.sync.enabled is True
        assert config.sync.interval_seconds == 10.0
        assert config.sync.throttle_seconds == 5.0

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config == Config()


class TestYamlLoading:
    """Tests for reading the YAML file."""

    def test_sections(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "storage:\n"
            "  db_path: /tmp/cards.db\n"
            "remote:\n"
            "  backend: http\n"
            "  url: https://kv.example.com\n"
            "  max_chunk_size: 800\n"
            "sync:\n"
            "  enabled: false\n"
            "  throttle_seconds: 1.5\n"
        )

        config = load_config(path)

        assert config.storage.db_path == "/tmp/cards.db"
        assert config.storage.base_key == "cards"
        assert config.remote.backend == "http"
        assert config.remote.url == "https://kv.example.com"
        assert config.remote.max_chunk_size == 800
        assert config.remote.timeout_seconds == 10.0
        assert config.sync.enabled is False
        assert config.sync.throttle_seconds == 1.5

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) == Config()

    def test_invalid_chunk_size(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("remote:\n  max_chunk_size: 0\n")

        with pytest.raises(ValueError, match="max_chunk_size"):
            load_config(path)


class TestEnvOverrides:
    """Tests for CARDSYNC_ environment variables."""

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("remote:\n  backend: memory\n")
        monkeypatch.setenv("CARDSYNC_REMOTE_BACKEND", "HTTP")
        monkeypatch.setenv("CARDSYNC_REMOTE_URL", "http://localhost:8080")
        monkeypatch.setenv("CARDSYNC_REMOTE_TIMEOUT", "2.5")

        config = load_config(path)

        assert config.remote.backend == "http"
        assert config.remote.url == "http://localhost:8080"
        assert config.remote.timeout_seconds == 2.5

    def test_storage_and_sync(self, monkeypatch):
        monkeypatch.setenv("CARDSYNC_DB_PATH", "/data/cards.db")
        monkeypatch.setenv("CARDSYNC_BASE_KEY", "deck")
        monkeypatch.setenv("CARDSYNC_MAX_CHUNK_SIZE", "500")
        monkeypatch.setenv("CARDSYNC_SYNC_INTERVAL", "30")
        monkeypatch.setenv("CARDSYNC_SYNC_THROTTLE", "0")

        config = load_config()

        assert config.storage.db_path == "/data/cards.db"
        assert config.storage.base_key == "deck"
        assert config.remote.max_chunk_size == 500
        assert config.sync.interval_seconds == 30.0
        assert config.sync.throttle_seconds == 0.0

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("no", False)])
    def test_sync_enabled(self, monkeypatch, value, expected):
        monkeypatch.setenv("CARDSYNC_SYNC_ENABLED", value)

        assert load_config().sync.enabled is expected
