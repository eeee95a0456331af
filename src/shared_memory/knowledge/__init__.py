"""
Document knowledge base.

Files are chunked, embedded and stored as facts of a dedicated
conversation; KnowledgeBase turns similarity search over those chunks into
token-budgeted prompt context.
"""

from shared_memory.knowledge.chunking import TextChunk, chunk_document
from shared_memory.knowledge.document_manager import SUPPORTED_EXTENSIONS, DocumentManager
from shared_memory.knowledge.knowledge_base import KnowledgeBase
from shared_memory.knowledge.models import (
    ChunkMetadata,
    Document,
    DocumentChunk,
    DocumentMetadata,
    KnowledgeBaseStats,
    QueryMetadata,
    QueryResult,
    QuerySource,
    SearchResult,
)
from shared_memory.knowledge.query_cache import QueryCache

__all__ = [
    "KnowledgeBase",
    "DocumentManager",
    "QueryCache",
    "SUPPORTED_EXTENSIONS",
    "TextChunk",
    "chunk_document",
    # Models
    "ChunkMetadata",
    "Document",
    "DocumentChunk",
    "DocumentMetadata",
    "KnowledgeBaseStats",
    "QueryMetadata",
    "QueryResult",
    "QuerySource",
    "SearchResult",
]
