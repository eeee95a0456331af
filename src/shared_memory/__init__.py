"""
shared-memory: Conversation memory and document retrieval shared across chat models.

Core components:
- memory_service: SharedMemoryService facade (store, search, extract, context assembly)
- embeddings: Embedding generation with pluggable text encoders
- storage: MemoryStore protocol with in-memory and SQLAlchemy implementations
- extractors: Rule-based extraction of facts, relationships and summaries
- knowledge: Document chunking, indexing and token-budgeted retrieval
- models: Core data models (MemoryFact, ConversationSummary, EntityRelationship, ...)
"""

__version__ = "0.1.0"

from shared_memory.config import SharedMemorySettings, configure_logging, get_settings
from shared_memory.errors import (
    DimensionMismatchError,
    InvalidInputError,
    ModelUnavailableError,
    NotFoundError,
    SharedMemoryError,
    StorageError,
)
from shared_memory.factory import MemorySystem, create_memory_system
from shared_memory.knowledge import KnowledgeBase
from shared_memory.memory_service import SharedMemoryService
from shared_memory.models import (
    ConversationSummary,
    ConversationSummaryDraft,
    EntityRelationship,
    EntityRelationshipDraft,
    MemoryFact,
    MemoryFactDraft,
    MemorySearchQuery,
    SharedMemoryContext,
)

__all__ = [
    "__version__",
    # Models
    "MemoryFact",
    "MemoryFactDraft",
    "ConversationSummary",
    "ConversationSummaryDraft",
    "EntityRelationship",
    "EntityRelationshipDraft",
    "MemorySearchQuery",
    "SharedMemoryContext",
    # Services
    "SharedMemoryService",
    "KnowledgeBase",
    "MemorySystem",
    "create_memory_system",
    # Config
    "SharedMemorySettings",
    "configure_logging",
    "get_settings",
    # Errors
    "SharedMemoryError",
    "InvalidInputError",
    "DimensionMismatchError",
    "StorageError",
    "ModelUnavailableError",
    "NotFoundError",
]
