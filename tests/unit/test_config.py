"""Tests for configuration validation"""
import pytest

from habitquest import config
from habitquest.db.connection import create_document_store
from habitquest.db.memory_store import InMemoryDocumentStore
from habitquest.exceptions import ConfigurationError


class TestConfigValidation:

    def test_defaults_are_valid(self, monkeypatch):
        monkeypatch.setattr(config, "STORE_BACKEND", "memory")
        config.validate_config()

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setattr(config, "STORE_BACKEND", "mongo")

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate_config()

        assert exc_info.value.config_key == "STORE_BACKEND"

    def test_postgres_requires_database_url(self, monkeypatch):
        monkeypatch.setattr(config, "STORE_BACKEND", "postgres")
        monkeypatch.setattr(config, "DATABASE_URL", "")

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate_config()

        assert exc_info.value.config_key == "DATABASE_URL"

    def test_insight_timeout_must_be_positive(self, monkeypatch):
        monkeypatch.setattr(config, "STORE_BACKEND", "memory")
        monkeypatch.setattr(config, "INSIGHT_TIMEOUT_SECONDS", 0)

        with pytest.raises(ConfigurationError):
            config.validate_config()

    def test_negative_sweep_interval(self, monkeypatch):
        monkeypatch.setattr(config, "STORE_BACKEND", "memory")
        monkeypatch.setattr(config, "SWEEP_INTERVAL_SECONDS", -1)

        with pytest.raises(ConfigurationError):
            config.validate_config()


@pytest.mark.asyncio
async def test_memory_store_is_default(monkeypatch):
    monkeypatch.setattr(config, "STORE_BACKEND", "memory")

    store = await create_document_store()

    assert isinstance(store, InMemoryDocumentStore)
