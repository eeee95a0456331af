import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SharedMemorySettings(BaseSettings):
    """
    Settings for a shared-memory deployment.

    Every field can be set from the environment with the SHARED_MEMORY_
    prefix (SHARED_MEMORY_DATABASE_URL, SHARED_MEMORY_EMBEDDING_MODEL, ...)
    or from a .env file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHARED_MEMORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    database_url: str = "sqlite:///shared_memory.db"

    # Embeddings
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_device: Optional[str] = None
    embedding_cache_folder: Optional[str] = None
    embedding_dimension: int = Field(default=384, gt=0)
    embedding_batch_size: int = Field(default=10, gt=0)

    # Knowledge base
    knowledge_conversation_id: str = "knowledge-base"
    max_context_tokens: int = Field(default=4000, gt=0)
    min_similarity_score: float = Field(default=0.3, ge=-1.0, le=1.0)
    max_chunks_per_query: int = Field(default=10, gt=0)
    enable_caching: bool = True
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_max_entries: int = Field(default=100, gt=0)

    # Maintenance
    retention_days: int = Field(default=30, ge=0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> SharedMemorySettings:
    return SharedMemorySettings()


def configure_logging(level: str = "INFO") -> None:
    """Send shared_memory logs to stderr at the given level."""
    logger = logging.getLogger("shared_memory")
    logger.setLevel(level.upper())

    if not any(getattr(h, "_shared_memory", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._shared_memory = True
        logger.addHandler(handler)
