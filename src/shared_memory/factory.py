"""
Composition root.

Wires one SQLAlchemy store and one EmbeddingGenerator into both the
conversation memory service and the document knowledge base, so the
embedding model is loaded once per process.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from shared_memory.config import SharedMemorySettings, configure_logging, get_settings
from shared_memory.embeddings import EmbeddingGenerator, SentenceTransformerEncoder, TextEncoder
from shared_memory.extractors import PatternMemoryExtractor
from shared_memory.knowledge import DocumentManager, KnowledgeBase, QueryCache
from shared_memory.memory_service import SharedMemoryService
from shared_memory.storage.sqlalchemy import SQLAlchemyMemoryStore

logger = logging.getLogger(__name__)


@dataclass
class MemorySystem:
    settings: SharedMemorySettings
    engine: Engine
    store: SQLAlchemyMemoryStore
    embeddings: EmbeddingGenerator
    extractor: PatternMemoryExtractor
    memory: SharedMemoryService
    knowledge_base: KnowledgeBase

    async def initialize(self) -> None:
        await self.memory.initialize()
        await self.knowledge_base.initialize()

    def shutdown(self) -> None:
        self.memory.shutdown()
        self.knowledge_base.clear_cache()
        self.engine.dispose()


def create_memory_system(
    settings: Optional[SharedMemorySettings] = None,
    encoder: Optional[TextEncoder] = None,
    engine: Optional[Engine] = None,
) -> MemorySystem:
    """
    Build every component from settings. Tables are created if missing and
    package logging is configured at settings.log_level.

    Args:
        settings: Defaults to get_settings()
        encoder: Text encoder; defaults to a SentenceTransformerEncoder for
            settings.embedding_model
        engine: SQLAlchemy engine; defaults to one for settings.database_url

    The embedding model is not loaded until initialize() is awaited.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    engine = engine or create_engine(settings.database_url)

    store = SQLAlchemyMemoryStore(engine, embedding_dimension=settings.embedding_dimension)
    store.create_tables()

    if encoder is None:
        encoder = SentenceTransformerEncoder(
            model_name=settings.embedding_model,
            device=settings.embedding_device,
            cache_folder=settings.embedding_cache_folder,
            dimension=settings.embedding_dimension,
        )
    embeddings = EmbeddingGenerator(encoder, batch_size=settings.embedding_batch_size)

    extractor = PatternMemoryExtractor()
    memory = SharedMemoryService(
        store, embeddings, extractor, retention_days=settings.retention_days
    )

    documents = DocumentManager(
        store, embeddings, conversation_id=settings.knowledge_conversation_id
    )
    knowledge_base = KnowledgeBase(
        documents,
        max_context_tokens=settings.max_context_tokens,
        min_similarity_score=settings.min_similarity_score,
        max_chunks_per_query=settings.max_chunks_per_query,
        enable_caching=settings.enable_caching,
        cache=QueryCache(
            ttl_seconds=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries
        ),
    )

    logger.info(
        f"Memory system created (database={engine.url.render_as_string(hide_password=True)}, "
        f"model={encoder.model_name})"
    )
    return MemorySystem(
        settings=settings,
        engine=engine,
        store=store,
        embeddings=embeddings,
        extractor=extractor,
        memory=memory,
        knowledge_base=knowledge_base,
    )
