import logging

import pytest
from pydantic import ValidationError

from shared_memory.config import SharedMemorySettings, configure_logging, get_settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("SHARED_MEMORY_DATABASE_URL", raising=False)

    settings = SharedMemorySettings(_env_file=None)

    assert settings.database_url == "sqlite:///shared_memory.db"
    assert settings.embedding_model == "sentence-transformers/all-MiniLM-L6-v2"
    assert settings.embedding_dimension == 384
    assert settings.embedding_batch_size == 10
    assert settings.max_context_tokens == 4000
    assert settings.min_similarity_score == 0.3
    assert settings.max_chunks_per_query == 10
    assert settings.cache_ttl_seconds == 300
    assert settings.cache_max_entries == 100
    assert settings.retention_days == 30


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SHARED_MEMORY_DATABASE_URL", "sqlite://")
    monkeypatch.setenv("SHARED_MEMORY_MAX_CONTEXT_TOKENS", "1234")
    monkeypatch.setenv("SHARED_MEMORY_ENABLE_CACHING", "false")

    settings = SharedMemorySettings(_env_file=None)

    assert settings.database_url == "sqlite://"
    assert settings.max_context_tokens == 1234
    assert settings.enable_caching is False


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        SharedMemorySettings(_env_file=None, embedding_batch_size=0)
    with pytest.raises(ValidationError):
        SharedMemorySettings(_env_file=None, min_similarity_score=2.0)


def test_get_settings_is_cached():
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()


def test_configure_logging_installs_one_handler():
    logger = logging.getLogger("shared_memory")
    before = list(logger.handlers)
    try:
        configure_logging("debug")
        configure_logging("DEBUG")

        added = [h for h in logger.handlers if h not in before]
        assert len(added) == 1
        assert logger.level == logging.DEBUG
        assert "%(levelname)s" in added[0].formatter._fmt
    finally:
        for handler in [h for h in logger.handlers if h not in before]:
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
