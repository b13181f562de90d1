# tests/config/test_loader.py
"""
Tests for the configuration loader.
"""

from __future__ import annotations

import json

import pytest

from src.config import settings
from src.config.loader import Settings, get_config_path, load_config_json


@pytest.fixture
def custom_config(tmp_path, monkeypatch):
    """Points CONFIG_PATH at a temporary config.json."""
    def _write(data: dict):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        monkeypatch.setenv("CONFIG_PATH", str(path))
        return path
    return _write


class TestConfigFile:

    def test_project_config_exists(self, config_path) -> None:
        assert config_path.exists()
        assert "MAX_SEARCH_RETRIES" in json.loads(config_path.read_text(encoding="utf-8"))

    def test_config_path_override(self, custom_config) -> None:
        path = custom_config({})

        assert get_config_path() == path

    def test_missing_file(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "absent.json"))

        with pytest.raises(FileNotFoundError):
            load_config_json()


class TestSettings:

    def test_loaded_dispatch_defaults(self) -> None:
        assert settings.search.SEARCH_RADIUS_MIN_KM == 1.0
        assert settings.search.SEARCH_RADIUS_MAX_KM == 5.0
        assert settings.search.MAX_SEARCH_RETRIES == 3
        assert settings.redis_ttl.DRIVERS_READY_TTL == 120
        assert settings.rabbitmq.RABBITMQ_EXCHANGE == "dispatch.events"
        assert settings.timeouts.SEARCH_STALL_TIMEOUT == 60

    def test_values_from_file(self, custom_config, monkeypatch) -> None:
        monkeypatch.delenv("DB_HOST", raising=False)
        custom_config({
            "_comment_search": "ignored",
            "MAX_SEARCH_RETRIES": 5,
            "DRIVERS_READY_TTL": 60,
            "RESILIENCE_MAX_ATTEMPTS": 4,
            "DB_HOST": "db.internal",
        })

        loaded = Settings.from_config_json()

        assert loaded.search.MAX_SEARCH_RETRIES == 5
        assert loaded.redis_ttl.DRIVERS_READY_TTL == 60
        assert loaded.resilience.MAX_ATTEMPTS == 4
        assert loaded.database.DB_HOST == "db.internal"
        assert loaded.search.SEARCH_RADIUS_STEP_KM == 1.0

    def test_environment_wins(self, custom_config, monkeypatch) -> None:
        custom_config({"REDIS_HOST": "from-file", "DISPATCH_API_PORT": 8000})
        monkeypatch.setenv("REDIS_HOST", "from-env")
        monkeypatch.setenv("DISPATCH_API_PORT", "9001")

        loaded = Settings.from_config_json()

        assert loaded.redis.REDIS_HOST == "from-env"
        assert loaded.deployment.DISPATCH_API_PORT == 9001

    def test_connection_urls(self, custom_config, monkeypatch) -> None:
        for name in ("DB_HOST", "DB_USER", "DB_NAME", "REDIS_HOST", "RABBITMQ_HOST", "RABBITMQ_USER", "RABBITMQ_PASSWORD"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("DB_PASSWORD", "secret")
        monkeypatch.setenv("REDIS_PASSWORD", "")
        custom_config({"DB_HOST": "pg", "DB_NAME": "rides", "REDIS_HOST": "cache", "RABBITMQ_HOST": "mq"})

        loaded = Settings.from_config_json()

        assert loaded.database.dsn == "postgresql://postgres:secret@pg:5432/rides"
        assert loaded.redis.url == "redis://cache:6379/0"
        assert loaded.rabbitmq.url == "amqp://guest:guest@mq:5672/"
