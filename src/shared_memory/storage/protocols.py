"""
Storage protocol for conversation memory.

The protocol is implementation-agnostic and can be backed by any database
(SQLite or PostgreSQL through SQLAlchemy, in-memory for tests, etc.).
Methods are synchronous and each runs as one short transaction.
"""

from datetime import datetime
from typing import List, Optional, Protocol

from typing_extensions import runtime_checkable

from shared_memory.models import (
    CleanupResult,
    ConversationSummary,
    ConversationSummaryDraft,
    EntityRelationship,
    EntityRelationshipDraft,
    MemoryFact,
    MemoryFactDraft,
    MemoryFactUpdate,
    MemorySearchQuery,
    MemorySearchResult,
    MemoryStats,
)


@runtime_checkable
class MemoryStore(Protocol):
    """
    Protocol for conversation-scoped storage of facts, summaries and relationships.

    Every item belongs to exactly one conversation. Deleting the conversation
    deletes its items. Implementations are the only code that mutates
    persisted state; callers receive copies.
    """

    def ensure_conversation(self, conversation_id: str, title: Optional[str] = None) -> None:
        """Register a conversation if it is not known yet."""
        ...

    def touch_conversation(self, conversation_id: str) -> None:
        """Set the conversation's updated timestamp to now (registering it if needed)."""
        ...

    def get_conversation_updated_at(self, conversation_id: str) -> Optional[datetime]:
        """Last update time of a conversation, or None if unknown."""
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        """
        Delete a conversation and everything it owns.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        ...

    def add_fact(
        self,
        conversation_id: str,
        fact: MemoryFactDraft,
        embedding: Optional[List[float]] = None,
    ) -> str:
        """
        Persist a fact.

        Args:
            conversation_id: Owning conversation (registered if unknown)
            fact: The fact to store
            embedding: Optional embedding vector

        Returns:
            The generated fact ID
        """
        ...

    def add_summary(
        self,
        conversation_id: str,
        summary: ConversationSummaryDraft,
        embedding: Optional[List[float]] = None,
    ) -> str:
        """Persist a summary and return its generated ID."""
        ...

    def add_relationship(
        self,
        conversation_id: str,
        relationship: EntityRelationshipDraft,
        embedding: Optional[List[float]] = None,
    ) -> str:
        """Persist a relationship and return its generated ID."""
        ...

    def get_fact(self, fact_id: str) -> Optional[MemoryFact]:
        """Retrieve a fact by ID, or None if it does not exist."""
        ...

    def get_facts(self, conversation_id: str, limit: Optional[int] = None) -> List[MemoryFact]:
        """Facts of a conversation, relevance descending then newest first."""
        ...

    def get_summaries(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[ConversationSummary]:
        """Summaries of a conversation, latest time range start first."""
        ...

    def get_relationships(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[EntityRelationship]:
        """Relationships of a conversation, confidence descending then newest first."""
        ...

    def update_fact(self, fact_id: str, updates: MemoryFactUpdate) -> None:
        """
        Apply a partial update to a fact. An update with no fields set is a no-op.

        Raises:
            NotFoundError: If the fact does not exist
        """
        ...

    def delete_fact(self, fact_id: str) -> None:
        """
        Delete a fact.

        Raises:
            NotFoundError: If the fact does not exist
        """
        ...

    def delete_summary(self, summary_id: str) -> None:
        """Delete a summary. Raises NotFoundError if it does not exist."""
        ...

    def delete_relationship(self, relationship_id: str) -> None:
        """Delete a relationship. Raises NotFoundError if it does not exist."""
        ...

    def search_memory(self, conversation_id: str, query: MemorySearchQuery) -> MemorySearchResult:
        """
        Case-insensitive substring search within one conversation.

        Args:
            conversation_id: Conversation to search
            query: Text and filters (type, relevance, time range, tags, sources, limit)

        Returns:
            Matching items with total count and elapsed milliseconds
        """
        ...

    def cleanup_old_memory(self, conversation_id: str, retention_days: int) -> CleanupResult:
        """
        Delete items older than now - retention_days in one conversation.

        retention_days=0 deletes everything in the conversation.

        Raises:
            InvalidInputError: If retention_days is negative
        """
        ...

    def get_memory_stats(self, conversation_id: str) -> MemoryStats:
        """Counts, average fact relevance and fact timestamp bounds."""
        ...
